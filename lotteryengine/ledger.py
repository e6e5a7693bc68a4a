"""Persistent, append-only record of the tickets issued for each lottery."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import Lottery, LotteryStatus, LotteryTicket


class TicketLedger:
    """Session-bound operations on the ``lottery_tickets`` table.

    The ledger never commits; callers own the transaction. Capacity is
    consumed with a conditional ``UPDATE`` so that two writers can never both
    take the last slot, regardless of how many processes share the database.
    """

    def reserve_slot(self, session: Session, lottery_id: int) -> bool:
        """Increment ``sold_tickets`` if the lottery is active and not full.

        Returns ``True`` when a slot was taken. The in-session ``Lottery``
        instance, if any, is refreshed by the caller when needed.
        """
        stmt = (
            update(Lottery)
            .where(
                Lottery.id == lottery_id,
                Lottery.status == LotteryStatus.ACTIVE.value,
                Lottery.sold_tickets < Lottery.max_tickets,
            )
            .values(
                sold_tickets=Lottery.sold_tickets + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        return result.rowcount == 1

    def number_exists(self, session: Session, lottery_id: int, number: str) -> bool:
        """Return ``True`` if ``number`` is already issued (or pending) in the lottery."""
        for obj in session.new:
            if (
                isinstance(obj, LotteryTicket)
                and obj.lottery_id == lottery_id
                and obj.number == number
            ):
                return True
        existing = session.scalar(
            select(LotteryTicket.id).where(
                LotteryTicket.lottery_id == lottery_id,
                LotteryTicket.number == number,
            )
        )
        return existing is not None

    def append(
        self,
        session: Session,
        lottery_id: int,
        *,
        number: str,
        user_id: str,
        transaction_id: str,
        purchase_date: datetime,
    ) -> LotteryTicket:
        """Insert the ticket row and flush it. A slot must already be reserved."""
        ticket = LotteryTicket(
            lottery_id=lottery_id,
            number=number,
            user_id=user_id,
            transaction_id=transaction_id,
            purchase_date=purchase_date,
        )
        session.add(ticket)
        session.flush()
        return ticket

    def find_by_transaction(
        self, session: Session, transaction_id: str
    ) -> Optional[LotteryTicket]:
        return LotteryTicket.get_by_transaction_id(session, transaction_id)

    def snapshot(self, session: Session, lottery_id: int) -> list[LotteryTicket]:
        """Return every ticket of the lottery in issue order."""
        stmt = (
            select(LotteryTicket)
            .where(LotteryTicket.lottery_id == lottery_id)
            .order_by(LotteryTicket.id.asc())
        )
        return list(session.scalars(stmt).all())

    def count(
        self, session: Session, lottery_id: int, user_id: Optional[str] = None
    ) -> int:
        """Count the lottery's tickets, optionally only those held by ``user_id``."""
        stmt = select(func.count(LotteryTicket.id)).where(
            LotteryTicket.lottery_id == lottery_id
        )
        if user_id is not None:
            stmt = stmt.where(LotteryTicket.user_id == user_id)
        return session.scalar(stmt) or 0

    def tickets_for_user(
        self, session: Session, lottery_id: int, user_id: str
    ) -> list[LotteryTicket]:
        stmt = (
            select(LotteryTicket)
            .where(
                LotteryTicket.lottery_id == lottery_id,
                LotteryTicket.user_id == user_id,
            )
            .order_by(LotteryTicket.id.asc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["TicketLedger"]
