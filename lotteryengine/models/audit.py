from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, ID_TYPE
from ..db.utils import dt_iso

SYSTEM_ACTOR = "SYSTEM"


class AuditAction(str, enum.Enum):
    WINNER_SELECTION = "WINNER_SELECTION"


class LotteryAuditEntry(Base):
    """Append-only audit record attached to a lottery.

    One ``WINNER_SELECTION`` row is written per drawn winner, in the same
    transaction that stores the winners.
    """

    __tablename__ = "lottery_audit"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    lottery_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("lotteries.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    """One of :class:`AuditAction`."""

    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    """User id, or ``SYSTEM`` for engine-initiated actions."""

    ticket_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    selection_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """How the winner was picked, e.g. ``CRYPTOGRAPHIC_RANDOM``."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (Index("ix_lottery_audit_lottery_action", "lottery_id", "action"),)

    def __init__(
        self,
        *,
        lottery_id: int,
        action: AuditAction,
        actor: str = SYSTEM_ACTOR,
        ticket_number: Optional[str] = None,
        selection_method: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.lottery_id = lottery_id
        self.action = AuditAction(action).value
        self.actor = actor
        self.ticket_number = ticket_number
        self.selection_method = selection_method
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<LotteryAuditEntry(lottery_id={self.lottery_id}, action='{self.action}', "
            f"ticket_number='{self.ticket_number}')>"
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "lottery_id": self.lottery_id,
            "action": self.action,
            "actor": self.actor,
            "ticket_number": self.ticket_number,
            "selection_method": self.selection_method,
            "created_at": dt_iso(self.created_at),
        }
