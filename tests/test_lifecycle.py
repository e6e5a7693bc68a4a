import unittest
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from lotteryengine.campaigns import CampaignStatus
from lotteryengine.drawing.selection import DrawnWinner
from lotteryengine.errors import (
    CampaignNotFound,
    CampaignNotLotteryEligible,
    InvalidDrawDate,
    InvalidLotteryParameters,
    LotteryNotDrawable,
    LotteryNotFound,
)
from lotteryengine.lifecycle import (
    LotteryLifecycleManager,
    PrizeSpec,
    all_of,
    always_drawable,
    draw_date_reached,
    minimum_sales_ratio,
)
from lotteryengine.models import Lottery, LotteryStatus, LotteryTicket

from support import START, FakeClock, campaign_resolver, memory_sessionmaker, prizes


class LotteryCreationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_sessionmaker()
        self.clock = FakeClock()
        self.manager = LotteryLifecycleManager(
            self.Session, campaign_resolver(), clock=self.clock
        )
        self.draw_date = START + timedelta(days=7)

    def tearDown(self) -> None:
        self.engine.dispose()

    def _create(self, **overrides):
        kwargs = dict(
            campaign_id="camp-1",
            draw_date=self.draw_date,
            ticket_price=Decimal("5.00"),
            currency="eur",
            max_tickets=10,
            prizes=prizes("Grand prize", "Runner-up"),
        )
        kwargs.update(overrides)
        return self.manager.create_lottery(**kwargs)

    def test_create_persists_active_lottery(self) -> None:
        lottery = self._create()

        self.assertIsNotNone(lottery.id)
        self.assertEqual(lottery.status, LotteryStatus.ACTIVE.value)
        self.assertEqual(lottery.currency, "EUR")
        self.assertEqual(lottery.sold_tickets, 0)

        stored = self.manager.get_lottery(lottery.id)
        self.assertEqual([p.name for p in stored.prizes], ["Grand prize", "Runner-up"])
        self.assertEqual([p.position for p in stored.prizes], [0, 1])
        self.assertEqual(stored.tickets, [])
        self.assertEqual(stored.winners, [])
        self.assertEqual(stored.ticket_price, Decimal("5.00"))

    def test_prizes_may_be_mappings(self) -> None:
        lottery = self._create(
            prizes=[{"name": "Bike", "value": "250", "description": "A red bike"}]
        )
        stored = self.manager.get_lottery(lottery.id)
        self.assertEqual(stored.prizes[0].value, Decimal("250"))
        self.assertEqual(stored.prizes[0].description, "A red bike")

    def test_unknown_campaign(self) -> None:
        with self.assertRaises(CampaignNotFound):
            self._create(campaign_id="missing")

    def test_campaign_must_be_lottery_eligible_and_active(self) -> None:
        for resolver in (
            campaign_resolver(eligible=False),
            campaign_resolver(status=CampaignStatus.PAUSED),
            campaign_resolver(status=CampaignStatus.COMPLETED),
        ):
            with self.subTest(resolver=resolver):
                manager = LotteryLifecycleManager(self.Session, resolver, clock=self.clock)
                with self.assertRaises(CampaignNotLotteryEligible):
                    manager.create_lottery(
                        "camp-1", self.draw_date, 5, "EUR", 10, prizes("Grand prize")
                    )

    def test_draw_date_bounds(self) -> None:
        with self.assertRaises(InvalidDrawDate):
            self._create(draw_date=START)
        with self.assertRaises(InvalidDrawDate):
            self._create(draw_date=START - timedelta(days=1))
        with self.assertRaises(InvalidDrawDate):
            self._create(draw_date=START + timedelta(days=61))
        # Naive datetimes are read as UTC.
        lottery = self._create(draw_date=(START + timedelta(days=1)).replace(tzinfo=None))
        self.assertIsNotNone(lottery.id)

    def test_invalid_parameters(self) -> None:
        cases = {
            "zero capacity": dict(max_tickets=0),
            "capacity over cap": dict(max_tickets=100_001),
            "float capacity": dict(max_tickets=1.5),
            "zero price": dict(ticket_price=0),
            "price over cap": dict(ticket_price=Decimal("1000000.01")),
            "price not a number": dict(ticket_price="free"),
            "missing currency": dict(currency=""),
            "no prizes": dict(prizes=[]),
            "too many prizes": dict(prizes=prizes(*[f"Prize {i}" for i in range(101)])),
            "short prize name": dict(prizes=[PrizeSpec(name="TV")]),
            "long description": dict(
                prizes=[PrizeSpec(name="Grand prize", description="x" * 1001)]
            ),
            "negative prize value": dict(
                prizes=[PrizeSpec(name="Grand prize", value=Decimal("-1"))]
            ),
            "prize without name": dict(prizes=[{"value": 10}]),
        }
        for label, overrides in cases.items():
            with self.subTest(label):
                with self.assertRaises(InvalidLotteryParameters):
                    self._create(**overrides)

        with self.Session() as session:
            self.assertEqual(session.scalars(select(Lottery)).all(), [])


class LotteryTransitionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_sessionmaker()
        self.clock = FakeClock()
        self.manager = LotteryLifecycleManager(
            self.Session, campaign_resolver(), clock=self.clock
        )
        self.lottery = self.manager.create_lottery(
            "camp-1",
            START + timedelta(days=7),
            Decimal("5.00"),
            "EUR",
            4,
            prizes("Grand prize", "Runner-up"),
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _add_ticket(self, number: str, user_id: str = "alice") -> LotteryTicket:
        with self.Session.begin() as session:
            ticket = LotteryTicket(
                lottery_id=self.lottery.id,
                number=number,
                user_id=user_id,
                transaction_id=f"txn-{number}",
            )
            session.add(ticket)
            lottery = session.get(Lottery, self.lottery.id)
            lottery.sold_tickets += 1
            session.flush()
            return ticket

    def _status(self) -> str:
        with self.Session() as session:
            return session.get(Lottery, self.lottery.id).status

    def test_transition_to_drawing_once(self) -> None:
        drawing = self.manager.transition_to_drawing(self.lottery.id)
        self.assertEqual(drawing.status, LotteryStatus.DRAWING.value)
        self.assertEqual(len(drawing.prizes), 2)

        with self.assertRaises(LotteryNotDrawable):
            self.manager.transition_to_drawing(self.lottery.id)
        self.assertEqual(self._status(), LotteryStatus.DRAWING.value)

    def test_unknown_lottery(self) -> None:
        with self.assertRaises(LotteryNotFound):
            self.manager.transition_to_drawing(999)
        with self.assertRaises(LotteryNotFound):
            self.manager.transition_to_completed(999, [])
        with self.assertRaises(LotteryNotFound):
            self.manager.get_lottery(999)

    def test_policy_refusal_leaves_lottery_active(self) -> None:
        with self.assertRaises(LotteryNotDrawable) as ctx:
            self.manager.transition_to_drawing(self.lottery.id, draw_date_reached)
        self.assertIn("not reached", ctx.exception.reason)
        self.assertEqual(self._status(), LotteryStatus.ACTIVE.value)

        self.clock.advance(days=7)
        self.manager.transition_to_drawing(self.lottery.id, draw_date_reached)
        self.assertEqual(self._status(), LotteryStatus.DRAWING.value)

    def test_complete_requires_drawing(self) -> None:
        with self.assertRaises(LotteryNotDrawable):
            self.manager.transition_to_completed(self.lottery.id, [])
        self.assertEqual(self._status(), LotteryStatus.ACTIVE.value)

    def test_complete_stores_winners_atomically(self) -> None:
        ticket = self._add_ticket("AAAA0001")
        drawing = self.manager.transition_to_drawing(self.lottery.id)
        first_prize = drawing.prizes[0]
        drawn = [
            DrawnWinner(
                position=0,
                prize_id=first_prize.id,
                prize_name=first_prize.name,
                ticket_id=ticket.id,
                ticket_number=ticket.number,
                user_id="alice",
                drawn_at=self.clock(),
            )
        ]

        rows = self.manager.transition_to_completed(self.lottery.id, drawn)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].prize.name, "Grand prize")
        stored = self.manager.get_lottery(self.lottery.id)
        self.assertEqual(stored.status, LotteryStatus.COMPLETED.value)
        self.assertIsNotNone(stored.drawn_at)
        self.assertEqual([w.ticket_number for w in stored.winners], ["AAAA0001"])
        self.assertEqual(len(self.manager.list_winners(self.lottery.id)), 1)

        audit = self.manager.list_audit_entries(self.lottery.id)
        self.assertEqual(
            [(a.action, a.actor, a.ticket_number) for a in audit],
            [("WINNER_SELECTION", "SYSTEM", "AAAA0001")],
        )
        self.assertEqual(audit[0].selection_method, "CRYPTOGRAPHIC_RANDOM")
        self.assertEqual(len(self.manager.locks), 0)

        with self.assertRaises(LotteryNotDrawable):
            self.manager.transition_to_completed(self.lottery.id, [])

    def test_revert_to_active_reopens_drawing(self) -> None:
        self.manager.transition_to_drawing(self.lottery.id)

        with self.assertLogs("lotteryengine.lifecycle", level="WARNING"):
            self.manager.revert_to_active(self.lottery.id)

        self.assertEqual(self._status(), LotteryStatus.ACTIVE.value)
        with self.assertRaises(LotteryNotDrawable):
            self.manager.revert_to_active(self.lottery.id)
        self.manager.transition_to_drawing(self.lottery.id)
        self.assertEqual(self._status(), LotteryStatus.DRAWING.value)

    def test_list_tickets_filters_by_user(self) -> None:
        self._add_ticket("AAAA0001", "alice")
        self._add_ticket("AAAA0002", "bob")
        self._add_ticket("AAAA0003", "alice")

        self.assertEqual(len(self.manager.list_tickets(self.lottery.id)), 3)
        self.assertEqual(
            [t.number for t in self.manager.list_tickets(self.lottery.id, "alice")],
            ["AAAA0001", "AAAA0003"],
        )


class DrawPolicyTests(unittest.TestCase):
    def _lottery(self, sold: int, max_tickets: int = 4) -> Lottery:
        return Lottery(
            campaign_id="camp-1",
            draw_date=START,
            ticket_price=Decimal("1"),
            currency="EUR",
            max_tickets=max_tickets,
            sold_tickets=sold,
        )

    def test_always_drawable(self) -> None:
        self.assertIsNone(always_drawable(self._lottery(0), START))

    def test_draw_date_reached(self) -> None:
        lottery = self._lottery(0)
        self.assertIsNotNone(draw_date_reached(lottery, START - timedelta(seconds=1)))
        self.assertIsNone(draw_date_reached(lottery, START))

    def test_minimum_sales_ratio(self) -> None:
        policy = minimum_sales_ratio(0.25)
        self.assertIsNotNone(policy(self._lottery(0), START))
        self.assertIsNone(policy(self._lottery(1), START))
        with self.assertRaises(ValueError):
            minimum_sales_ratio(1.5)

    def test_all_of_returns_first_refusal(self) -> None:
        policy = all_of(draw_date_reached, minimum_sales_ratio(0.5))
        early = START - timedelta(days=1)
        self.assertIn("draw date", policy(self._lottery(0), early))
        self.assertIn("tickets sold", policy(self._lottery(1), START))
        self.assertIsNone(policy(self._lottery(2), START))

    def test_module_exports_its_own_names(self) -> None:
        import lotteryengine.lifecycle as lifecycle

        self.assertIn("PrizeInput", lifecycle.__all__)
        self.assertNotIn("utc_now", lifecycle.__all__)
        for name in lifecycle.__all__:
            self.assertTrue(hasattr(lifecycle, name), name)


if __name__ == "__main__":
    unittest.main()
