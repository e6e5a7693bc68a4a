"""Exceptions raised by the lottery engine.

Every failure surfaced to callers derives from :class:`LotteryError` so that
an application layer can map the whole family in one place. Where a built-in
exception describes the same category (``LookupError``, ``ValueError``,
``RuntimeError``) it is used as a second base.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .drawing.selection import DrawnWinner


class LotteryError(Exception):
    """Base class for all lottery engine errors."""


class CampaignNotFound(LotteryError, LookupError):
    def __init__(self, campaign_id: str) -> None:
        self.campaign_id = campaign_id
        super().__init__(f"Campaign '{campaign_id}' not found")


class CampaignNotLotteryEligible(LotteryError):
    def __init__(self, campaign_id: str, reason: str) -> None:
        self.campaign_id = campaign_id
        self.reason = reason
        super().__init__(
            f"Campaign '{campaign_id}' cannot host a lottery: {reason}"
        )


class InvalidDrawDate(LotteryError, ValueError):
    pass


class InvalidLotteryParameters(LotteryError, ValueError):
    pass


class LotteryNotFound(LotteryError, LookupError):
    def __init__(self, lottery_id: int) -> None:
        self.lottery_id = lottery_id
        super().__init__(f"Lottery {lottery_id} not found")


class LotterySoldOut(LotteryError):
    """No ticket can be issued: capacity reached or sales closed."""

    def __init__(self, lottery_id: int, reason: str = "no tickets available") -> None:
        self.lottery_id = lottery_id
        self.reason = reason
        super().__init__(f"Lottery {lottery_id} is not selling tickets: {reason}")


class CurrencyMismatch(LotteryError, ValueError):
    pass


class DuplicateTransaction(LotteryError):
    """A transaction id already backs a different ticket purchase."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__("Transaction id is already bound to another ticket")


class RateLimitExceeded(LotteryError):
    """The user hit the per-window purchase cap for a lottery.

    ``retry_after`` is the number of seconds until the oldest purchase in the
    window expires.
    """

    def __init__(self, lottery_id: int, user_id: str, retry_after: float) -> None:
        self.lottery_id = lottery_id
        self.user_id = user_id
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded for user '{user_id}' on lottery {lottery_id}; "
            f"retry in {retry_after:.0f}s"
        )


class TicketLimitExceeded(LotteryError):
    """The user already holds the maximum number of tickets of a lottery."""

    def __init__(self, lottery_id: int, user_id: str, limit: int) -> None:
        self.lottery_id = lottery_id
        self.user_id = user_id
        self.limit = limit
        super().__init__(
            f"User '{user_id}' already holds {limit} ticket(s) of lottery {lottery_id}"
        )


class TicketNumberExhausted(LotteryError, RuntimeError):
    pass


class LotteryNotDrawable(LotteryError):
    def __init__(self, lottery_id: int, reason: str) -> None:
        self.lottery_id = lottery_id
        self.reason = reason
        super().__init__(f"Lottery {lottery_id} cannot be drawn: {reason}")


class TicketLedgerError(LotteryError):
    """Storage failure while appending a ticket. Safe to retry."""

    def __init__(self, lottery_id: int, message: str) -> None:
        self.lottery_id = lottery_id
        super().__init__(message)


class DrawingAborted(LotteryError):
    """The drawing failed before any winner was selected.

    ``reverted`` tells whether the lottery was put back to ``ACTIVE``. When it
    was, the drawing can simply be run again.
    """

    def __init__(
        self,
        lottery_id: int,
        cause: Optional[BaseException] = None,
        reverted: bool = True,
    ) -> None:
        self.lottery_id = lottery_id
        self.cause = cause
        self.reverted = reverted
        state = "reopened" if reverted else "left in DRAWING"
        super().__init__(
            f"Drawing for lottery {lottery_id} failed before selecting winners; "
            f"lottery {state}"
        )


class DrawingPersistenceError(LotteryError):
    """Winners were drawn but could not be stored.

    The lottery is left in ``DRAWING`` and must be reconciled by hand using
    the winners carried on this exception. It must never be re-drawn.
    """

    def __init__(
        self,
        lottery_id: int,
        winners: Sequence["DrawnWinner"],
        cause: Optional[BaseException] = None,
    ) -> None:
        self.lottery_id = lottery_id
        self.winners = list(winners)
        self.cause = cause
        super().__init__(
            f"Drawing for lottery {lottery_id} produced {len(self.winners)} "
            "winner(s) that could not be persisted; manual reconciliation required"
        )


__all__ = [
    "LotteryError",
    "CampaignNotFound",
    "CampaignNotLotteryEligible",
    "InvalidDrawDate",
    "InvalidLotteryParameters",
    "LotteryNotFound",
    "LotterySoldOut",
    "CurrencyMismatch",
    "DuplicateTransaction",
    "RateLimitExceeded",
    "TicketLimitExceeded",
    "TicketNumberExhausted",
    "LotteryNotDrawable",
    "TicketLedgerError",
    "DrawingAborted",
    "DrawingPersistenceError",
]
