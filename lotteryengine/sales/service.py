"""Ticket purchase path: availability, throttling, numbering and ledger append."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from ..config import LotterySettings
from ..db.utils import ensure_utc, utc_now
from ..drawing.sampling import RandomSource, SecureRandomSource
from ..errors import (
    CurrencyMismatch,
    DuplicateTransaction,
    LotteryNotFound,
    LotterySoldOut,
    TicketLedgerError,
    TicketLimitExceeded,
    TicketNumberExhausted,
)
from ..events import EventBus, LotteryEvent, TicketIssued, TicketsSoldOut, publish_if
from ..ledger import TicketLedger
from ..locks import KeyedLockRegistry
from ..models import Lottery, LotteryStatus, LotteryTicket
from .rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class TicketSalesService:
    """Issue tickets against the shared ledger.

    A purchase runs inside the lottery's in-process lock and a single database
    transaction. The capacity slot is taken with a conditional update, so a
    lottery can never be oversold even when several processes share the
    database.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        ledger: Optional[TicketLedger] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        random_source: Optional[RandomSource] = None,
        settings: Optional[LotterySettings] = None,
        locks: Optional[KeyedLockRegistry] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger or TicketLedger()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._random = random_source or SecureRandomSource()
        self.settings = settings or LotterySettings()
        self.locks = locks or KeyedLockRegistry()
        self._events = events
        self._clock = clock

    def purchase_ticket(
        self,
        lottery_id: int,
        user_id: str,
        currency: str,
        transaction_id: Optional[str] = None,
    ) -> LotteryTicket:
        """Sell one ticket of ``lottery_id`` to ``user_id``.

        Parameters
        ----------
        lottery_id : int
            Target lottery.
        user_id : str
            Buyer.
        currency : str
            Currency the buyer pays in. Must match the lottery's currency.
        transaction_id : Optional[str], default: None
            Payment correlation id. Supplying the id of a ticket already sold
            to the same user in the same lottery returns that ticket again.
            When omitted a fresh id is generated.

        Returns
        -------
        LotteryTicket
            The committed ticket.

        Raises
        ------
        LotteryNotFound
            If the lottery does not exist.
        LotterySoldOut
            If the lottery is full or no longer ``ACTIVE``.
        CurrencyMismatch
            If ``currency`` is missing or differs from the lottery's.
        DuplicateTransaction
            If ``transaction_id`` already backs another purchase.
        RateLimitExceeded
            If the user exhausted the per-window purchase budget.
        TicketLimitExceeded
            If the user already holds ``max_tickets_per_user`` tickets of the
            lottery.
        TicketNumberExhausted
            If no unused ticket number was found.
        TicketLedgerError
            If the ledger kept failing with transient storage errors.
        """
        if not user_id:
            raise ValueError("user_id is required")

        txn_id = transaction_id or self._random.transaction_id()
        pending_events: list[LotteryEvent] = []
        storage_attempts = 0
        collisions = 0

        with self.locks.hold(lottery_id):
            while True:
                try:
                    ticket = self._purchase_once(
                        lottery_id,
                        user_id,
                        currency,
                        txn_id,
                        replay_allowed=transaction_id is not None,
                        recovering=storage_attempts > 0,
                        pending_events=pending_events,
                    )
                    break
                except IntegrityError as exc:
                    # Another writer took the number or the transaction id
                    # between our check and our insert.
                    collisions += 1
                    if collisions >= self.settings.max_ticket_number_attempts:
                        raise TicketNumberExhausted(
                            f"Could not store a unique ticket for lottery {lottery_id}"
                        ) from exc
                    logger.warning(
                        f"Integrity conflict while issuing a ticket for lottery "
                        f"{lottery_id}; retrying"
                    )
                except OperationalError as exc:
                    storage_attempts += 1
                    if storage_attempts >= self.settings.purchase_retry_attempts:
                        logger.error(
                            f"Ledger append for lottery {lottery_id} failed after "
                            f"{storage_attempts} attempt(s)"
                        )
                        raise TicketLedgerError(
                            lottery_id,
                            f"Could not record ticket for lottery {lottery_id}: {exc}",
                        ) from exc
                    logger.warning(
                        f"Transient storage error on lottery {lottery_id} "
                        f"(attempt {storage_attempts}); retrying"
                    )

        for event in pending_events:
            publish_if(self._events, event)
        return ticket

    def _purchase_once(
        self,
        lottery_id: int,
        user_id: str,
        currency: str,
        transaction_id: str,
        *,
        replay_allowed: bool,
        recovering: bool,
        pending_events: list[LotteryEvent],
    ) -> LotteryTicket:
        with self._session_factory() as session:
            lottery = Lottery.get_by_id(session, lottery_id)
            if lottery is None:
                raise LotteryNotFound(lottery_id)

            existing = self._ledger.find_by_transaction(session, transaction_id)
            if existing is not None:
                same_buyer = (
                    existing.lottery_id == lottery_id and existing.user_id == user_id
                )
                if recovering and same_buyer:
                    # An earlier attempt committed before its error surfaced.
                    logger.warning(
                        f"Recovered ticket {existing.number} committed by an earlier "
                        f"attempt for user {user_id} on lottery {lottery_id}"
                    )
                    self.rate_limiter.record(
                        lottery_id, user_id, self.settings.rate_limit_window
                    )
                    self._queue_events(
                        pending_events,
                        existing,
                        ensure_utc(existing.purchase_date),
                        lottery.sold_tickets,
                        lottery.max_tickets,
                    )
                    return existing
                if replay_allowed and same_buyer:
                    logger.debug(
                        f"Replayed purchase for user {user_id} on lottery {lottery_id}"
                    )
                    return existing
                raise DuplicateTransaction(transaction_id)

            now = self._clock()
            self._check_available(lottery, now)
            if not currency or currency.strip().upper() != lottery.currency.upper():
                raise CurrencyMismatch(
                    f"Lottery {lottery_id} sells tickets in {lottery.currency}, "
                    f"got {currency!r}"
                )
            limit = self.settings.max_tickets_per_user
            if self._ledger.count(session, lottery_id, user_id) >= limit:
                raise TicketLimitExceeded(lottery_id, user_id, limit)

            stamp = self.rate_limiter.check_and_record(
                lottery_id,
                user_id,
                self.settings.rate_limit_window,
                self.settings.max_tickets_per_window,
            )
            try:
                number = self._generate_number(session, lottery_id)
                if not self._ledger.reserve_slot(session, lottery_id):
                    raise LotterySoldOut(lottery_id)
                ticket = self._ledger.append(
                    session,
                    lottery_id,
                    number=number,
                    user_id=user_id,
                    transaction_id=transaction_id,
                    purchase_date=now,
                )
                session.refresh(lottery)
                sold, capacity = lottery.sold_tickets, lottery.max_tickets
                session.commit()
            except BaseException:
                session.rollback()
                self.rate_limiter.release(lottery_id, user_id, stamp)
                raise

        logger.info(
            f"Issued ticket {ticket.number} to user {user_id} on lottery "
            f"{lottery_id} ({sold}/{capacity})"
        )
        self._queue_events(pending_events, ticket, now, sold, capacity)
        return ticket

    def _queue_events(
        self,
        pending_events: list[LotteryEvent],
        ticket: LotteryTicket,
        occurred_at: datetime,
        sold: int,
        capacity: int,
    ) -> None:
        pending_events.append(
            TicketIssued(
                lottery_id=ticket.lottery_id,
                occurred_at=occurred_at,
                user_id=ticket.user_id,
                ticket_number=ticket.number,
                transaction_id=ticket.transaction_id,
                sold_tickets=sold,
                max_tickets=capacity,
            )
        )
        if sold >= capacity:
            logger.info(f"Lottery {ticket.lottery_id} sold out")
            pending_events.append(
                TicketsSoldOut(
                    lottery_id=ticket.lottery_id,
                    occurred_at=occurred_at,
                    max_tickets=capacity,
                )
            )

    def _check_available(self, lottery: Lottery, now: datetime) -> None:
        if lottery.status != LotteryStatus.ACTIVE.value:
            raise LotterySoldOut(lottery.id, f"lottery is {lottery.status}")
        if lottery.sold_tickets >= lottery.max_tickets:
            raise LotterySoldOut(lottery.id)
        if self.settings.close_sales_at_draw_date and now >= ensure_utc(
            lottery.draw_date
        ):
            raise LotterySoldOut(lottery.id, "sales closed at the draw date")

    def _generate_number(self, session: Session, lottery_id: int) -> str:
        attempts = self.settings.max_ticket_number_attempts
        for attempt in range(1, attempts + 1):
            number = self._random.ticket_number(self.settings.ticket_number_length)
            if not self._ledger.number_exists(session, lottery_id, number):
                return number
            logger.debug(
                f"Ticket number collision on lottery {lottery_id} (attempt {attempt})"
            )
        raise TicketNumberExhausted(
            f"No unused ticket number for lottery {lottery_id} after {attempts} attempts"
        )


__all__ = ["TicketSalesService"]
