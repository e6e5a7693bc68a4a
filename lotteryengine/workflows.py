from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy.orm import sessionmaker

from .config import LotterySettings, load_settings
from .db.engine import get_sessionmaker, make_engine
from .drawing.engine import DrawingEngine
from .drawing.sampling import RandomSource
from .events import EventBus
from .ledger import TicketLedger
from .lifecycle import (
    DrawEligibilityPolicy,
    LotteryLifecycleManager,
    PrizeInput,
    draw_date_reached,
)
from .locks import KeyedLockRegistry
from .models import (
    AuditAction,
    Lottery,
    LotteryAuditEntry,
    LotteryStatus,
    LotteryTicket,
    LotteryWinner,
)
from .sales.rate_limit import SlidingWindowRateLimiter
from .sales.service import TicketSalesService

if TYPE_CHECKING:
    from .campaigns.resolver import CampaignResolver

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    """Outcome of :func:`validate_lottery_integrity`."""

    lottery_id: int
    issues: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues


class LotteryService:
    """Entry point wiring the lifecycle manager, sales service and drawing engine.

    All three share one :class:`KeyedLockRegistry`, one ledger and one event
    bus so that purchases and drawings of the same lottery serialize against
    each other.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        campaign_resolver: "CampaignResolver",
        *,
        settings: Optional[LotterySettings] = None,
        random_source: Optional[RandomSource] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        events: Optional[EventBus] = None,
        default_draw_policy: Optional[DrawEligibilityPolicy] = draw_date_reached,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Wire the lottery components together.

        Parameters
        ----------
        session_factory : sessionmaker
            Factory bound to the lottery database.
        campaign_resolver : CampaignResolver
            Campaign collaborator consulted on lottery creation.
        settings : Optional[LotterySettings]
            Sales policy. Defaults to :class:`LotterySettings` defaults.
        random_source : Optional[RandomSource]
            Randomness for ticket numbers and draws. Defaults to the secure
            source.
        rate_limiter : Optional[SlidingWindowRateLimiter]
            Per-user purchase limiter.
        events : Optional[EventBus]
            Bus receiving domain events. A fresh bus is created when omitted.
        default_draw_policy : Optional[DrawEligibilityPolicy]
            Rule applied by :meth:`perform_drawing` when no policy is given.
        clock : Optional[Callable[[], datetime]]
            Aware UTC clock shared by every component.
        """
        self.session_factory = session_factory
        self.settings = settings or LotterySettings()
        self.events = events or EventBus()
        self.locks = KeyedLockRegistry()
        self.ledger = TicketLedger()
        clock_kwargs = {"clock": clock} if clock is not None else {}

        self.lifecycle = LotteryLifecycleManager(
            session_factory,
            campaign_resolver,
            ledger=self.ledger,
            locks=self.locks,
            **clock_kwargs,
        )
        self.sales = TicketSalesService(
            session_factory,
            ledger=self.ledger,
            rate_limiter=rate_limiter,
            random_source=random_source,
            settings=self.settings,
            locks=self.locks,
            events=self.events,
            **clock_kwargs,
        )
        self.drawing = DrawingEngine(
            session_factory,
            self.lifecycle,
            ledger=self.ledger,
            random_source=random_source,
            events=self.events,
            default_policy=default_draw_policy,
            **clock_kwargs,
        )

    @classmethod
    def from_settings(
        cls,
        campaign_resolver: Optional["CampaignResolver"] = None,
        database_url: Optional[str] = None,
        settings: Optional[LotterySettings] = None,
        **kwargs: Any,
    ) -> "LotteryService":
        """Build a service from ``DB_URL`` and the ``LOTTERY_*`` environment variables.

        When no resolver is given the HTTP campaign resolver is used, which
        reads ``CAMPAIGN_API_BASE_URL``.
        """
        if campaign_resolver is None:
            from .campaigns.api import HttpCampaignResolver

            campaign_resolver = HttpCampaignResolver()
        engine = make_engine(database_url)
        return cls(
            get_sessionmaker(engine),
            campaign_resolver,
            settings=settings or load_settings(),
            **kwargs,
        )

    def create_lottery(
        self,
        campaign_id: str,
        draw_date: datetime,
        ticket_price: Any,
        currency: str,
        max_tickets: int,
        prizes: Sequence[PrizeInput],
    ) -> Lottery:
        return self.lifecycle.create_lottery(
            campaign_id, draw_date, ticket_price, currency, max_tickets, prizes
        )

    def purchase_ticket(
        self,
        lottery_id: int,
        user_id: str,
        currency: str,
        transaction_id: Optional[str] = None,
    ) -> LotteryTicket:
        return self.sales.purchase_ticket(lottery_id, user_id, currency, transaction_id)

    def perform_drawing(
        self, lottery_id: int, policy: Optional[DrawEligibilityPolicy] = None
    ) -> list[LotteryWinner]:
        return self.drawing.perform_drawing(lottery_id, policy)

    def get_lottery(self, lottery_id: int) -> Lottery:
        return self.lifecycle.get_lottery(lottery_id)

    def list_tickets(
        self, lottery_id: int, user_id: Optional[str] = None
    ) -> list[LotteryTicket]:
        return self.lifecycle.list_tickets(lottery_id, user_id)

    def list_winners(self, lottery_id: int) -> list[LotteryWinner]:
        return self.lifecycle.list_winners(lottery_id)

    def list_audit_entries(self, lottery_id: int) -> list[LotteryAuditEntry]:
        return self.lifecycle.list_audit_entries(lottery_id)


def purchase_tickets(
    service: LotteryService,
    lottery_id: int,
    user_id: str,
    currency: str,
    quantity: int,
) -> list[LotteryTicket]:
    """Buy ``quantity`` tickets for one user, one purchase at a time.

    Each ticket is its own committed purchase. If a purchase fails the tickets
    bought so far are kept and the error propagates.

    Parameters
    ----------
    service : LotteryService
        Configured lottery service.
    lottery_id : int
        Target lottery.
    user_id : str
        Buyer.
    currency : str
        Payment currency.
    quantity : int
        Number of tickets to buy. Must be positive.

    Returns
    -------
    list[LotteryTicket]
        Tickets in purchase order.
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    tickets = []
    for _ in range(quantity):
        tickets.append(service.purchase_ticket(lottery_id, user_id, currency))
    return tickets


def validate_lottery_integrity(
    service: LotteryService, lottery_id: int
) -> IntegrityReport:
    """Audit a lottery's stored state.

    Checks that ``sold_tickets`` matches the ledger and the capacity, that no
    ticket number or winning ticket repeats, that a completed lottery holds
    ``min(prizes, tickets)`` winners with a matching ``WINNER_SELECTION``
    audit entry each, that no user holds more than ``max_tickets_per_user``
    tickets and that the prize pool does not exceed the potential ticket
    revenue.
    """
    lottery = service.get_lottery(lottery_id)
    report = IntegrityReport(lottery_id=lottery_id)

    tickets = lottery.tickets
    if lottery.sold_tickets != len(tickets):
        report.issues.append(
            f"sold_tickets={lottery.sold_tickets} but {len(tickets)} tickets recorded"
        )
    if lottery.sold_tickets > lottery.max_tickets:
        report.issues.append("More tickets sold than capacity")
    if len({t.number for t in tickets}) != len(tickets):
        report.issues.append("Duplicate ticket numbers detected")

    winners = lottery.winners
    if len({w.ticket_number for w in winners}) != len(winners):
        report.issues.append("A ticket won more than one prize")
    if lottery.status == LotteryStatus.COMPLETED.value:
        expected = min(len(lottery.prizes), len(tickets))
        if len(winners) != expected:
            report.issues.append(
                f"Expected {expected} winner(s), found {len(winners)}"
            )
    elif winners:
        report.issues.append(f"Winners recorded while lottery is {lottery.status}")

    selections = sorted(
        entry.ticket_number
        for entry in service.list_audit_entries(lottery_id)
        if entry.action == AuditAction.WINNER_SELECTION.value
    )
    if selections != sorted(w.ticket_number for w in winners):
        report.issues.append("Winner audit trail does not match the recorded winners")

    per_user = Counter(t.user_id for t in tickets)
    limit = service.settings.max_tickets_per_user
    over = sorted(user for user, held in per_user.items() if held > limit)
    if over:
        report.issues.append(
            f"User(s) above the {limit} ticket limit: {', '.join(over)}"
        )

    prize_pool = sum((p.value for p in lottery.prizes), 0)
    if prize_pool > lottery.ticket_price * lottery.max_tickets:
        report.issues.append("Total prize value exceeds potential ticket sales")

    if report.issues:
        logger.warning(
            f"Lottery {lottery_id} failed integrity check: {'; '.join(report.issues)}"
        )
    return report


__all__ = [
    "IntegrityReport",
    "LotteryService",
    "purchase_tickets",
    "validate_lottery_integrity",
]
