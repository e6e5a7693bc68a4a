from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .lottery import Lottery, LotteryPrize
    from .ticket import LotteryTicket


class LotteryWinner(Base):
    """Immutable record binding a winning ticket to the prize it won."""

    __tablename__ = "lottery_winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    lottery_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lotteries.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """Order in which the winner was drawn (matches the prize position)."""

    prize_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lottery_prizes.id", ondelete="CASCADE"), nullable=False
    )
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lottery_tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False)
    draw_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    lottery: Mapped["Lottery"] = relationship(back_populates="winners")
    prize: Mapped["LotteryPrize"] = relationship()
    ticket: Mapped["LotteryTicket"] = relationship()

    __table_args__ = (
        UniqueConstraint("lottery_id", "ticket_id", name="uq_lottery_winner_ticket"),
        UniqueConstraint("lottery_id", "prize_id", name="uq_lottery_winner_prize"),
        UniqueConstraint("lottery_id", "position", name="uq_lottery_winner_position"),
    )

    def __init__(
        self,
        *,
        position: int,
        prize_id: int,
        ticket_id: int,
        user_id: str,
        ticket_number: str,
        draw_date: datetime,
        lottery_id: Optional[int] = None,
    ) -> None:
        self.position = position
        self.prize_id = prize_id
        self.ticket_id = ticket_id
        self.user_id = user_id
        self.ticket_number = ticket_number
        self.draw_date = draw_date
        if lottery_id is not None:
            self.lottery_id = lottery_id

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LotteryWinner(lottery_id={self.lottery_id}, position={self.position}, "
            f"ticket_number='{self.ticket_number}', user_id='{self.user_id}')>"
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "user_id": self.user_id,
            "ticket_number": self.ticket_number,
            "prize": self.prize.to_json() if self.prize is not None else None,
            "draw_date": dt_iso(self.draw_date),
        }
