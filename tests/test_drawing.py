import unittest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from lotteryengine.drawing.engine import DrawingEngine
from lotteryengine.errors import DrawingAborted, DrawingPersistenceError, LotteryNotDrawable
from lotteryengine.events import DrawingCompleted, EventBus
from lotteryengine.ledger import TicketLedger
from lotteryengine.lifecycle import LotteryLifecycleManager, always_drawable
from lotteryengine.models import Lottery, LotteryStatus
from lotteryengine.sales.service import TicketSalesService

from support import (
    START,
    FakeClock,
    ScriptedRandomSource,
    campaign_resolver,
    memory_sessionmaker,
    prizes,
)


class DrawingEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = memory_sessionmaker()
        self.clock = FakeClock()
        self.lifecycle = LotteryLifecycleManager(
            self.Session, campaign_resolver(), clock=self.clock
        )
        self.sales = TicketSalesService(
            self.Session, random_source=ScriptedRandomSource(), clock=self.clock
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _lottery(self, *prize_names: str, max_tickets: int = 10) -> Lottery:
        return self.lifecycle.create_lottery(
            "camp-1",
            START + timedelta(days=7),
            Decimal("1.00"),
            "EUR",
            max_tickets,
            prizes(*prize_names),
        )

    def _drawing_engine(self, indices=(), events=None, **kwargs) -> DrawingEngine:
        return DrawingEngine(
            self.Session,
            self.lifecycle,
            random_source=ScriptedRandomSource(indices=indices),
            events=events,
            clock=self.clock,
            **kwargs,
        )

    def _status(self, lottery_id: int) -> str:
        with self.Session() as session:
            return session.get(Lottery, lottery_id).status

    def test_two_tickets_two_prizes(self) -> None:
        lottery = self._lottery("Grand prize", "Runner-up")
        first = self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        second = self.sales.purchase_ticket(lottery.id, "bob", "EUR")

        winners = self._drawing_engine(indices=[1, 0]).perform_drawing(
            lottery.id, always_drawable
        )

        self.assertEqual(
            [(w.prize.name, w.ticket_number, w.user_id) for w in winners],
            [
                ("Grand prize", second.number, "bob"),
                ("Runner-up", first.number, "alice"),
            ],
        )
        stored = self.lifecycle.get_lottery(lottery.id)
        self.assertEqual(stored.status, LotteryStatus.COMPLETED.value)
        self.assertEqual(len(stored.winners), 2)
        self.assertTrue(all(w.draw_date is not None for w in stored.winners))

    def test_one_ticket_three_prizes(self) -> None:
        lottery = self._lottery("Grand prize", "Runner-up", "Third place")
        ticket = self.sales.purchase_ticket(lottery.id, "alice", "EUR")

        winners = self._drawing_engine().perform_drawing(lottery.id, always_drawable)

        self.assertEqual(len(winners), 1)
        self.assertEqual(winners[0].ticket_number, ticket.number)
        self.assertEqual(winners[0].prize.name, "Grand prize")
        self.assertEqual(self._status(lottery.id), LotteryStatus.COMPLETED.value)

    def test_no_tickets_completes_without_winners(self) -> None:
        lottery = self._lottery("Grand prize")
        winners = self._drawing_engine().perform_drawing(lottery.id, always_drawable)
        self.assertEqual(winners, [])
        self.assertEqual(self._status(lottery.id), LotteryStatus.COMPLETED.value)

    def test_drawing_twice_is_refused(self) -> None:
        lottery = self._lottery("Grand prize", "Runner-up")
        self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        self.sales.purchase_ticket(lottery.id, "bob", "EUR")
        engine = self._drawing_engine()
        winners = engine.perform_drawing(lottery.id, always_drawable)

        with self.assertRaises(LotteryNotDrawable):
            engine.perform_drawing(lottery.id, always_drawable)

        stored = self.lifecycle.get_lottery(lottery.id)
        self.assertEqual(
            [w.ticket_number for w in stored.winners],
            [w.ticket_number for w in winners],
        )

    def test_default_policy_waits_for_draw_date(self) -> None:
        lottery = self._lottery("Grand prize")
        engine = self._drawing_engine()

        with self.assertRaises(LotteryNotDrawable):
            engine.perform_drawing(lottery.id)
        self.assertEqual(self._status(lottery.id), LotteryStatus.ACTIVE.value)

        self.clock.advance(days=7)
        engine.perform_drawing(lottery.id)
        self.assertEqual(self._status(lottery.id), LotteryStatus.COMPLETED.value)

    def test_same_random_script_gives_same_winners(self) -> None:
        results = []
        for _ in range(2):
            engine, Session = memory_sessionmaker()
            try:
                lifecycle = LotteryLifecycleManager(
                    Session, campaign_resolver(), clock=self.clock
                )
                sales = TicketSalesService(
                    Session, random_source=ScriptedRandomSource(), clock=self.clock
                )
                lottery = lifecycle.create_lottery(
                    "camp-1",
                    START + timedelta(days=7),
                    1,
                    "EUR",
                    10,
                    prizes("Grand prize", "Runner-up", "Third place"),
                )
                for user in ("u1", "u2", "u3", "u4", "u5"):
                    sales.purchase_ticket(lottery.id, user, "EUR")
                drawing = DrawingEngine(
                    Session,
                    lifecycle,
                    random_source=ScriptedRandomSource(indices=[3, 3, 0]),
                    clock=self.clock,
                )
                winners = drawing.perform_drawing(lottery.id, always_drawable)
                results.append([(w.position, w.user_id) for w in winners])
            finally:
                engine.dispose()

        self.assertEqual(results[0], results[1])
        self.assertEqual(results[0], [(0, "u4"), (1, "u5"), (2, "u1")])

    def test_persistence_failure_is_fatal(self) -> None:
        lottery = self._lottery("Grand prize", "Runner-up")
        self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        self.sales.purchase_ticket(lottery.id, "bob", "EUR")
        engine = self._drawing_engine(indices=[0, 0])

        with patch.object(
            self.lifecycle,
            "transition_to_completed",
            side_effect=SQLAlchemyError("disk full"),
        ):
            with self.assertLogs("lotteryengine.drawing.engine", level="CRITICAL"):
                with self.assertRaises(DrawingPersistenceError) as ctx:
                    engine.perform_drawing(lottery.id, always_drawable)

        error = ctx.exception
        self.assertEqual(error.lottery_id, lottery.id)
        self.assertEqual([w.user_id for w in error.winners], ["alice", "bob"])
        self.assertIsInstance(error.cause, SQLAlchemyError)
        self.assertEqual(self._status(lottery.id), LotteryStatus.DRAWING.value)

        with self.assertRaises(LotteryNotDrawable):
            engine.perform_drawing(lottery.id, always_drawable)
        self.assertEqual(self.lifecycle.list_winners(lottery.id), [])

    def test_failure_before_selection_reopens_lottery(self) -> None:
        lottery = self._lottery("Grand prize")
        ticket = self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        ledger = TicketLedger()
        engine = self._drawing_engine(ledger=ledger)
        locked = OperationalError(
            "SELECT lottery_tickets", {}, Exception("database is locked")
        )

        with patch.object(ledger, "snapshot", side_effect=locked):
            with self.assertLogs("lotteryengine.drawing.engine", level="ERROR"):
                with self.assertRaises(DrawingAborted) as ctx:
                    engine.perform_drawing(lottery.id, always_drawable)

        self.assertTrue(ctx.exception.reverted)
        self.assertIs(ctx.exception.cause, locked)
        self.assertEqual(self._status(lottery.id), LotteryStatus.ACTIVE.value)
        self.assertEqual(self.lifecycle.list_winners(lottery.id), [])

        winners = engine.perform_drawing(lottery.id, always_drawable)
        self.assertEqual([w.ticket_number for w in winners], [ticket.number])
        self.assertEqual(self._status(lottery.id), LotteryStatus.COMPLETED.value)

    def test_failure_before_selection_without_reopen_is_critical(self) -> None:
        lottery = self._lottery("Grand prize")
        self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        ledger = TicketLedger()
        engine = self._drawing_engine(ledger=ledger)

        with patch.object(ledger, "snapshot", side_effect=SQLAlchemyError("gone")):
            with patch.object(
                self.lifecycle,
                "revert_to_active",
                side_effect=SQLAlchemyError("still gone"),
            ):
                with self.assertLogs("lotteryengine.drawing.engine", level="CRITICAL"):
                    with self.assertRaises(DrawingAborted) as ctx:
                        engine.perform_drawing(lottery.id, always_drawable)

        self.assertFalse(ctx.exception.reverted)
        self.assertEqual(self._status(lottery.id), LotteryStatus.DRAWING.value)

    def test_winner_selection_is_audited(self) -> None:
        lottery = self._lottery("Grand prize", "Runner-up")
        first = self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        second = self.sales.purchase_ticket(lottery.id, "bob", "EUR")

        self._drawing_engine(indices=[1, 0]).perform_drawing(lottery.id, always_drawable)

        audit = self.lifecycle.list_audit_entries(lottery.id)
        self.assertEqual(
            [(a.action, a.ticket_number, a.selection_method) for a in audit],
            [
                ("WINNER_SELECTION", second.number, "SCRIPTED"),
                ("WINNER_SELECTION", first.number, "SCRIPTED"),
            ],
        )

    def test_drawing_completed_event(self) -> None:
        lottery = self._lottery("Grand prize")
        ticket = self.sales.purchase_ticket(lottery.id, "alice", "EUR")
        bus = EventBus()
        received = []
        bus.subscribe(DrawingCompleted, received.append)

        self._drawing_engine(events=bus).perform_drawing(lottery.id, always_drawable)

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].lottery_id, lottery.id)
        self.assertEqual(
            [(w.user_id, w.ticket_number, w.prize_name) for w in received[0].winners],
            [("alice", ticket.number, "Grand prize")],
        )


if __name__ == "__main__":
    unittest.main()
