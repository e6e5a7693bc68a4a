"""Lottery creation and status transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload, selectinload, sessionmaker

from .campaigns.resolver import CampaignResolver
from .db.utils import ensure_utc, utc_now
from .errors import (
    CampaignNotFound,
    CampaignNotLotteryEligible,
    InvalidDrawDate,
    InvalidLotteryParameters,
    LotteryNotDrawable,
    LotteryNotFound,
)
from .ledger import TicketLedger
from .locks import KeyedLockRegistry
from .models import (
    AuditAction,
    Lottery,
    LotteryAuditEntry,
    LotteryPrize,
    LotteryStatus,
    LotteryTicket,
    LotteryWinner,
)
from .drawing.selection import DrawnWinner

logger = logging.getLogger(__name__)

MAX_TICKETS_LIMIT = 100_000
MAX_TICKET_PRICE = Decimal("1000000")
MAX_PRIZES = 100
MAX_PRIZE_VALUE = Decimal("1000000")

Clock = Callable[[], datetime]

# A policy returns ``None`` when the lottery may be drawn, otherwise the reason
# it may not.
DrawEligibilityPolicy = Callable[[Lottery, datetime], Optional[str]]


@dataclass(frozen=True)
class PrizeSpec:
    """Prize descriptor supplied when creating a lottery."""

    name: str
    value: Decimal = Decimal("0")
    description: Optional[str] = None
    currency: Optional[str] = None


PrizeInput = Union[PrizeSpec, Mapping[str, Any]]


# -------- draw eligibility policies --------
def always_drawable(lottery: Lottery, now: datetime) -> Optional[str]:
    return None


def draw_date_reached(lottery: Lottery, now: datetime) -> Optional[str]:
    """Refuse to draw before the lottery's scheduled ``draw_date``."""
    if now < ensure_utc(lottery.draw_date):
        return f"draw date {ensure_utc(lottery.draw_date).isoformat()} not reached"
    return None


def minimum_sales_ratio(ratio: float) -> DrawEligibilityPolicy:
    """Require at least ``ratio`` of the capacity to be sold before drawing."""
    if not 0 <= ratio <= 1:
        raise ValueError("ratio must be between 0 and 1")

    def policy(lottery: Lottery, now: datetime) -> Optional[str]:
        required = lottery.max_tickets * ratio
        if lottery.sold_tickets < required:
            return (
                f"only {lottery.sold_tickets} of {lottery.max_tickets} tickets sold "
                f"(need {ratio:.0%})"
            )
        return None

    return policy


def all_of(*policies: DrawEligibilityPolicy) -> DrawEligibilityPolicy:
    """Combine policies; the first refusal wins."""

    def policy(lottery: Lottery, now: datetime) -> Optional[str]:
        for candidate in policies:
            reason = candidate(lottery, now)
            if reason is not None:
                return reason
        return None

    return policy


# -------- parameter validation --------
def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidLotteryParameters(f"{field} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidLotteryParameters(f"{field} must be a number") from exc
    if not result.is_finite():
        raise InvalidLotteryParameters(f"{field} must be finite")
    return result


def _coerce_prize(position: int, raw: PrizeInput) -> LotteryPrize:
    if isinstance(raw, PrizeSpec):
        name, value = raw.name, raw.value
        description, currency = raw.description, raw.currency
    elif isinstance(raw, Mapping):
        if "name" not in raw:
            raise InvalidLotteryParameters(f"Prize #{position + 1} is missing a name")
        name = raw["name"]
        value = raw.get("value", Decimal("0"))
        description = raw.get("description")
        currency = raw.get("currency")
    else:
        raise InvalidLotteryParameters(
            f"Prize #{position + 1} must be a PrizeSpec or a mapping"
        )

    if not isinstance(name, str) or not 3 <= len(name.strip()) <= 100:
        raise InvalidLotteryParameters(
            f"Prize #{position + 1} name must be 3-100 characters"
        )
    if description is not None and len(description) > 1000:
        raise InvalidLotteryParameters(
            f"Prize #{position + 1} description cannot exceed 1000 characters"
        )
    prize_value = _to_decimal(value, f"Prize #{position + 1} value")
    if prize_value < 0 or prize_value > MAX_PRIZE_VALUE:
        raise InvalidLotteryParameters(
            f"Prize #{position + 1} value must be between 0 and {MAX_PRIZE_VALUE}"
        )
    return LotteryPrize(
        position=position,
        name=name.strip(),
        value=prize_value,
        description=description,
        currency=currency.strip().upper() if currency else None,
    )


def _validate_parameters(
    ticket_price: Any,
    currency: Optional[str],
    max_tickets: Any,
    prizes: Sequence[PrizeInput],
) -> tuple[Decimal, str, int, list[LotteryPrize]]:
    price = _to_decimal(ticket_price, "ticket_price")
    if price <= 0 or price > MAX_TICKET_PRICE:
        raise InvalidLotteryParameters(
            f"ticket_price must be greater than 0 and at most {MAX_TICKET_PRICE}"
        )

    if not currency or not str(currency).strip():
        raise InvalidLotteryParameters("currency is required")

    if isinstance(max_tickets, bool) or not isinstance(max_tickets, int):
        raise InvalidLotteryParameters("max_tickets must be an integer")
    if max_tickets < 1 or max_tickets > MAX_TICKETS_LIMIT:
        raise InvalidLotteryParameters(
            f"max_tickets must be between 1 and {MAX_TICKETS_LIMIT}"
        )

    if isinstance(prizes, (str, bytes)) or not prizes:
        raise InvalidLotteryParameters("At least one prize must be specified")
    if len(prizes) > MAX_PRIZES:
        raise InvalidLotteryParameters(f"Cannot exceed {MAX_PRIZES} prizes")

    prize_rows = [_coerce_prize(position, raw) for position, raw in enumerate(prizes)]
    return price, str(currency).strip().upper(), max_tickets, prize_rows


class LotteryLifecycleManager:
    """Gatekeeper for lottery creation and the ``ACTIVE -> DRAWING -> COMPLETED`` machine.

    Every public method runs in its own transaction obtained from
    ``session_factory``. Transitions are compare-and-swap updates on
    ``status`` executed while holding the lottery's in-process lock, so a
    transition races safely both with other threads and with other processes
    sharing the database.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        campaign_resolver: CampaignResolver,
        *,
        ledger: Optional[TicketLedger] = None,
        locks: Optional[KeyedLockRegistry] = None,
        clock: Clock = utc_now,
    ) -> None:
        """Create a lifecycle manager.

        Parameters
        ----------
        session_factory : sessionmaker
            Factory producing sessions bound to the lottery database.
        campaign_resolver : CampaignResolver
            Collaborator answering campaign eligibility lookups.
        ledger : Optional[TicketLedger], default: None
            Ticket ledger used for read helpers.
        locks : Optional[KeyedLockRegistry], default: None
            Per-lottery locks. Share one registry between the lifecycle
            manager, the sales service and the drawing engine.
        clock : Callable[[], datetime], default: ``utc_now``
            Source of the current time.
        """

        self._session_factory = session_factory
        self._campaigns = campaign_resolver
        self._ledger = ledger or TicketLedger()
        self.locks = locks or KeyedLockRegistry()
        self._clock = clock

    # -------- creation --------
    def create_lottery(
        self,
        campaign_id: str,
        draw_date: datetime,
        ticket_price: Any,
        currency: str,
        max_tickets: int,
        prizes: Sequence[PrizeInput],
    ) -> Lottery:
        """Validate the request against the campaign and persist an ``ACTIVE`` lottery.

        Raises
        ------
        InvalidLotteryParameters
            If price, currency, capacity or prizes are malformed.
        CampaignNotFound
            If the campaign collaborator does not know ``campaign_id``.
        CampaignNotLotteryEligible
            If the campaign has not opted into lottery mode or is not active.
        InvalidDrawDate
            If ``draw_date`` is not in the future or is after the campaign end.
        """
        logger.debug(f"Creating lottery for campaign {campaign_id}")
        price, currency_code, capacity, prize_rows = _validate_parameters(
            ticket_price, currency, max_tickets, prizes
        )

        campaign = self._campaigns.resolve_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        if not campaign.is_lottery_eligible:
            raise CampaignNotLotteryEligible(campaign_id, "lottery mode is not enabled")
        if not campaign.is_active:
            raise CampaignNotLotteryEligible(
                campaign_id, f"campaign status is {campaign.status.value}"
            )

        if not isinstance(draw_date, datetime):
            raise InvalidDrawDate("draw_date must be a datetime")
        draw_at = ensure_utc(draw_date)
        now = self._clock()
        if draw_at <= now:
            raise InvalidDrawDate("Draw date must be in the future")
        if draw_at > ensure_utc(campaign.end_date):
            raise InvalidDrawDate("Draw date cannot be after campaign end date")

        with self._session_factory.begin() as session:
            lottery = Lottery(
                campaign_id=campaign_id,
                draw_date=draw_at,
                ticket_price=price,
                currency=currency_code,
                max_tickets=capacity,
                prizes=prize_rows,
                status=LotteryStatus.ACTIVE.value,
                sold_tickets=0,
                created_at=now,
                updated_at=now,
            )
            session.add(lottery)
            session.flush()

        logger.info(
            f"Created lottery {lottery.id} for campaign {campaign_id} "
            f"({capacity} tickets, {len(prize_rows)} prizes)"
        )
        return lottery

    # -------- reads --------
    def get_lottery(self, lottery_id: int) -> Lottery:
        """Return the lottery with prizes, tickets and winners loaded."""
        with self._session_factory() as session:
            lottery = session.scalar(
                select(Lottery)
                .where(Lottery.id == lottery_id)
                .options(
                    selectinload(Lottery.prizes),
                    selectinload(Lottery.tickets),
                    selectinload(Lottery.winners).joinedload(LotteryWinner.prize),
                )
            )
            if lottery is None:
                raise LotteryNotFound(lottery_id)
            return lottery

    def list_tickets(
        self, lottery_id: int, user_id: Optional[str] = None
    ) -> list[LotteryTicket]:
        with self._session_factory() as session:
            self._require(session, lottery_id)
            if user_id is None:
                return self._ledger.snapshot(session, lottery_id)
            return self._ledger.tickets_for_user(session, lottery_id, user_id)

    def list_winners(self, lottery_id: int) -> list[LotteryWinner]:
        with self._session_factory() as session:
            self._require(session, lottery_id)
            stmt = (
                select(LotteryWinner)
                .where(LotteryWinner.lottery_id == lottery_id)
                .options(joinedload(LotteryWinner.prize))
                .order_by(LotteryWinner.position.asc())
            )
            return list(session.scalars(stmt).all())

    def list_audit_entries(self, lottery_id: int) -> list[LotteryAuditEntry]:
        """Return the lottery's audit trail, oldest first."""
        with self._session_factory() as session:
            self._require(session, lottery_id)
            stmt = (
                select(LotteryAuditEntry)
                .where(LotteryAuditEntry.lottery_id == lottery_id)
                .order_by(LotteryAuditEntry.id.asc())
            )
            return list(session.scalars(stmt).all())

    # -------- transitions --------
    def transition_to_drawing(
        self,
        lottery_id: int,
        policy: Optional[DrawEligibilityPolicy] = None,
    ) -> Lottery:
        """Move an ``ACTIVE`` lottery to ``DRAWING``.

        Exactly one of several concurrent callers succeeds. Once this returns,
        no further ticket can be sold.

        Parameters
        ----------
        lottery_id : int
            Lottery to lock for drawing.
        policy : Optional[DrawEligibilityPolicy], default: None
            Extra eligibility rule evaluated before the swap, e.g.
            :func:`draw_date_reached`. ``None`` applies no extra rule.

        Returns
        -------
        Lottery
            The lottery, now in ``DRAWING``, with its prizes loaded.

        Raises
        ------
        LotteryNotFound
            If the lottery does not exist.
        LotteryNotDrawable
            If the lottery is not ``ACTIVE``, the policy refuses it, or another
            caller won the race.
        """
        with self.locks.hold(lottery_id):
            with self._session_factory.begin() as session:
                lottery = self._require(session, lottery_id)
                if lottery.status != LotteryStatus.ACTIVE.value:
                    raise LotteryNotDrawable(lottery_id, f"status is {lottery.status}")

                now = self._clock()
                if policy is not None:
                    reason = policy(lottery, now)
                    if reason is not None:
                        raise LotteryNotDrawable(lottery_id, reason)

                result = session.execute(
                    update(Lottery)
                    .where(
                        Lottery.id == lottery_id,
                        Lottery.status == LotteryStatus.ACTIVE.value,
                    )
                    .values(status=LotteryStatus.DRAWING.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise LotteryNotDrawable(
                        lottery_id, "another drawing already claimed this lottery"
                    )
                session.refresh(lottery)
                # Load prizes while the session is open.
                lottery.prizes

        logger.info(f"Lottery {lottery_id} locked for drawing")
        return lottery

    def revert_to_active(self, lottery_id: int) -> None:
        """Put a ``DRAWING`` lottery back to ``ACTIVE``.

        Only valid while no winner has been selected, i.e. when a drawing
        failed between :meth:`transition_to_drawing` and the selection.

        Raises
        ------
        LotteryNotDrawable
            If the lottery is not in ``DRAWING``.
        """
        with self.locks.hold(lottery_id):
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(Lottery)
                    .where(
                        Lottery.id == lottery_id,
                        Lottery.status == LotteryStatus.DRAWING.value,
                    )
                    .values(status=LotteryStatus.ACTIVE.value, updated_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    lottery = self._require(session, lottery_id)
                    raise LotteryNotDrawable(
                        lottery_id, f"cannot reopen from status {lottery.status}"
                    )

        logger.warning(f"Lottery {lottery_id} reopened after an aborted drawing")

    def transition_to_completed(
        self,
        lottery_id: int,
        winners: Sequence[DrawnWinner],
        selection_method: str = "CRYPTOGRAPHIC_RANDOM",
    ) -> list[LotteryWinner]:
        """Store ``winners`` and move the lottery from ``DRAWING`` to ``COMPLETED``.

        The winners, one ``WINNER_SELECTION`` audit entry per winner and the
        status change are written in one transaction: either all of them are
        stored or nothing changes.

        Raises
        ------
        LotteryNotFound
            If the lottery does not exist.
        LotteryNotDrawable
            If the lottery is not in ``DRAWING``.
        """
        with self.locks.hold(lottery_id):
            with self._session_factory.begin() as session:
                now = self._clock()
                result = session.execute(
                    update(Lottery)
                    .where(
                        Lottery.id == lottery_id,
                        Lottery.status == LotteryStatus.DRAWING.value,
                    )
                    .values(
                        status=LotteryStatus.COMPLETED.value,
                        drawn_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    lottery = self._require(session, lottery_id)
                    raise LotteryNotDrawable(
                        lottery_id,
                        f"cannot complete from status {lottery.status}",
                    )

                rows = [
                    LotteryWinner(
                        lottery_id=lottery_id,
                        position=winner.position,
                        prize_id=winner.prize_id,
                        ticket_id=winner.ticket_id,
                        user_id=winner.user_id,
                        ticket_number=winner.ticket_number,
                        draw_date=winner.drawn_at,
                    )
                    for winner in winners
                ]
                session.add_all(rows)
                session.add_all(
                    LotteryAuditEntry(
                        lottery_id=lottery_id,
                        action=AuditAction.WINNER_SELECTION,
                        ticket_number=winner.ticket_number,
                        selection_method=selection_method,
                        created_at=winner.drawn_at,
                    )
                    for winner in winners
                )
                session.flush()
                for row in rows:
                    # Load the prize so callers can serialize detached rows.
                    row.prize

        # A completed lottery takes no further writes.
        self.locks.discard(lottery_id)
        logger.info(f"Lottery {lottery_id} completed with {len(rows)} winner(s)")
        return rows

    def _require(self, session: Session, lottery_id: int) -> Lottery:
        lottery = Lottery.get_by_id(session, lottery_id)
        if lottery is None:
            raise LotteryNotFound(lottery_id)
        return lottery


__all__ = [
    "DrawEligibilityPolicy",
    "LotteryLifecycleManager",
    "PrizeInput",
    "PrizeSpec",
    "all_of",
    "always_drawable",
    "draw_date_reached",
    "minimum_sales_ratio",
]
