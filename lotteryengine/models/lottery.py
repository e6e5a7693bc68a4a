"""Database models describing a lottery and its prize tiers."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base, ID_TYPE
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .ticket import LotteryTicket
    from .winner import LotteryWinner


class LotteryStatus(str, enum.Enum):
    """Lifecycle states of a lottery.

    The only legal transitions are ``ACTIVE -> DRAWING -> COMPLETED``.
    """

    ACTIVE = "ACTIVE"
    DRAWING = "DRAWING"
    COMPLETED = "COMPLETED"


class Lottery(Base):
    """A fixed-capacity ticket pool attached to a campaign."""

    __tablename__ = "lotteries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    """Identifier of the owning campaign in the campaign service."""

    draw_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Scheduled draw time. Never later than the campaign end date."""

    ticket_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    """Price of a single ticket."""

    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    """Currency code of ``ticket_price`` (upper case)."""

    max_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    """Total ticket capacity."""

    sold_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Number of issued tickets. Always equal to ``len(tickets)``."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LotteryStatus.ACTIVE.value
    )
    """One of :class:`LotteryStatus`."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    drawn_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Timestamp of the ``DRAWING -> COMPLETED`` transition."""

    prizes: Mapped[list["LotteryPrize"]] = relationship(
        back_populates="lottery",
        cascade="all, delete-orphan",
        order_by="LotteryPrize.position",
    )
    """Prize tiers in draw order (first prize drawn first)."""

    tickets: Mapped[list["LotteryTicket"]] = relationship(
        back_populates="lottery",
        cascade="all, delete-orphan",
        order_by="LotteryTicket.id",
    )
    """Issued tickets in issue order."""

    winners: Mapped[list["LotteryWinner"]] = relationship(
        back_populates="lottery",
        cascade="all, delete-orphan",
        order_by="LotteryWinner.position",
    )
    """Winners, populated once when the drawing completes."""

    __table_args__ = (
        CheckConstraint("max_tickets > 0", name="max_tickets_positive"),
        CheckConstraint(
            "sold_tickets >= 0 AND sold_tickets <= max_tickets",
            name="sold_tickets_within_capacity",
        ),
        CheckConstraint(
            "status IN ('ACTIVE','DRAWING','COMPLETED')", name="status_enum"
        ),
        Index("ix_lotteries_status", "status"),
    )

    def __init__(
        self,
        *,
        campaign_id: str,
        draw_date: datetime,
        ticket_price: Decimal,
        currency: str,
        max_tickets: int,
        prizes: Optional[list["LotteryPrize"]] = None,
        status: str = LotteryStatus.ACTIVE.value,
        sold_tickets: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.campaign_id = campaign_id
        self.draw_date = draw_date
        self.ticket_price = ticket_price
        self.currency = currency
        self.max_tickets = max_tickets
        self.status = status
        self.sold_tickets = sold_tickets
        # Start with loaded collections so a freshly created lottery stays
        # usable after its session closes.
        self.prizes = list(prizes) if prizes is not None else []
        self.tickets = []
        self.winners = []
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Lottery(id={self.id}, campaign_id='{self.campaign_id}', "
            f"status='{self.status}', sold_tickets={self.sold_tickets}/"
            f"{self.max_tickets})>"
        )

    @classmethod
    def get_by_id(cls, session: Session, lottery_id: int) -> Optional["Lottery"]:
        """Return the lottery with ``lottery_id`` if it exists."""

        return session.scalar(select(cls).where(cls.id == lottery_id))

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "draw_date": dt_iso(self.draw_date),
            "ticket_price": str(self.ticket_price),
            "currency": self.currency,
            "max_tickets": self.max_tickets,
            "sold_tickets": self.sold_tickets,
            "status": self.status,
            "prizes": [prize.to_json() for prize in self.prizes],
            "winners": [winner.to_json() for winner in self.winners],
            "created_at": dt_iso(self.created_at),
            "updated_at": dt_iso(self.updated_at),
            "drawn_at": dt_iso(self.drawn_at),
        }


class LotteryPrize(Base):
    """One prize tier of a lottery."""

    __tablename__ = "lottery_prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    lottery_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lotteries.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """Zero-based draw precedence."""

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    lottery: Mapped["Lottery"] = relationship(back_populates="prizes")

    __table_args__ = (
        UniqueConstraint("lottery_id", "position", name="uq_lottery_prize_position"),
    )

    def __init__(
        self,
        *,
        position: int,
        name: str,
        value: Decimal = Decimal("0"),
        description: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> None:
        self.position = position
        self.name = name
        self.value = value
        self.description = description
        self.currency = currency

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<LotteryPrize(id={self.id}, position={self.position}, name='{self.name}')>"

    def to_json(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "name": self.name,
            "description": self.description,
            "value": str(self.value),
            "currency": self.currency,
        }


__all__ = ["Lottery", "LotteryPrize", "LotteryStatus"]
