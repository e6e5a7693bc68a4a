from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, UniqueConstraint, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .lottery import Lottery


class LotteryTicket(Base):
    """A ticket issued to a user. Rows are append-only."""

    __tablename__ = "lottery_tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    lottery_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lotteries.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    lottery: Mapped["Lottery"] = relationship(back_populates="tickets")

    __table_args__ = (
        UniqueConstraint("lottery_id", "number", name="uq_lottery_ticket_number"),
        UniqueConstraint("transaction_id", name="uq_lottery_ticket_transaction"),
        Index("ix_lottery_tickets_lottery_user", "lottery_id", "user_id"),
    )

    def __init__(
        self,
        *,
        number: str,
        user_id: str,
        transaction_id: str,
        lottery_id: Optional[int] = None,
        purchase_date: Optional[datetime] = None,
    ) -> None:
        self.number = number
        self.user_id = user_id
        self.transaction_id = transaction_id
        if lottery_id is not None:
            self.lottery_id = lottery_id
        if purchase_date is not None:
            self.purchase_date = purchase_date

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LotteryTicket(id={self.id}, lottery_id={self.lottery_id}, "
            f"number='{self.number}', user_id='{self.user_id}')>"
        )

    @classmethod
    def get_by_transaction_id(
        cls, session: Session, transaction_id: str
    ) -> Optional["LotteryTicket"]:
        return session.scalar(select(cls).where(cls.transaction_id == transaction_id))

    def to_json(self) -> dict[str, Any]:
        return {
            "lottery_id": self.lottery_id,
            "number": self.number,
            "user_id": self.user_id,
            "purchase_date": dt_iso(self.purchase_date),
            "transaction_id": self.transaction_id,
        }
