"""Without-replacement winner selection over a ticket snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from .sampling import RandomSource
from ..models import LotteryPrize, LotteryTicket


@dataclass(frozen=True)
class DrawnWinner:
    """In-memory result of one draw step, before it is persisted.

    Attributes
    ----------
    position : int
        Draw order, equal to the prize's position.
    prize_id : int
        Prize awarded.
    prize_name : str
        Prize name, kept for logging and reconciliation.
    ticket_id : int
        Winning ticket row.
    ticket_number : str
        Winning ticket number.
    user_id : str
        Owner of the winning ticket.
    drawn_at : datetime
        Timestamp shared by every winner of the drawing.
    """

    position: int
    prize_id: int
    prize_name: str
    ticket_id: int
    ticket_number: str
    user_id: str
    drawn_at: datetime


def select_winners(
    tickets: Sequence[LotteryTicket],
    prizes: Sequence[LotteryPrize],
    random_source: RandomSource,
    drawn_at: datetime,
) -> list[DrawnWinner]:
    """Award each prize, in order, to a distinct ticket.

    Parameters
    ----------
    tickets : Sequence[LotteryTicket]
        Snapshot of the ledger. It is copied; the caller's sequence is not
        modified.
    prizes : Sequence[LotteryPrize]
        Prizes in draw order.
    random_source : RandomSource
        Source of uniform indices.
    drawn_at : datetime
        Timestamp recorded on every winner.

    Returns
    -------
    list[DrawnWinner]
        ``min(len(prizes), len(tickets))`` winners, one per prize starting with
        the first. A ticket wins at most once.

    Notes
    -----
    For every prize a uniform index into the remaining pool is drawn and the
    ticket at that index is removed from the pool. When the pool runs dry the
    remaining prizes are left unawarded; that is not an error.
    """

    pool = list(tickets)
    winners: list[DrawnWinner] = []
    for prize in prizes:
        if not pool:
            break
        index = random_source.randbelow(len(pool))
        if not 0 <= index < len(pool):
            raise ValueError(
                f"Random source returned index {index} outside [0, {len(pool)})"
            )
        ticket = pool.pop(index)
        winners.append(
            DrawnWinner(
                position=prize.position,
                prize_id=prize.id,
                prize_name=prize.name,
                ticket_id=ticket.id,
                ticket_number=ticket.number,
                user_id=ticket.user_id,
                drawn_at=drawn_at,
            )
        )
    return winners


__all__ = ["DrawnWinner", "select_winners"]
