from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .audit import AuditAction, LotteryAuditEntry  # noqa: F401
from .lottery import Lottery, LotteryPrize, LotteryStatus  # noqa: F401
from .ticket import LotteryTicket  # noqa: F401
from .winner import LotteryWinner  # noqa: F401

__all__ = [
    "AuditAction",
    "Base",
    "Lottery",
    "LotteryAuditEntry",
    "LotteryPrize",
    "LotteryStatus",
    "LotteryTicket",
    "LotteryWinner",
]
