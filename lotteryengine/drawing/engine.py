"""Drawing workflow: lock the lottery, pick winners, persist them."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..db.utils import utc_now
from ..errors import DrawingAborted, DrawingPersistenceError
from ..events import DrawingCompleted, EventBus, WinnerSummary, publish_if
from ..ledger import TicketLedger
from ..lifecycle import DrawEligibilityPolicy, LotteryLifecycleManager, draw_date_reached
from ..models import LotteryWinner
from .sampling import RandomSource, SecureRandomSource
from .selection import select_winners

logger = logging.getLogger(__name__)


class DrawingEngine:
    """Run the drawing of a lottery exactly once.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory producing sessions bound to the lottery database.
    lifecycle : LotteryLifecycleManager
        Owner of the status transitions.
    ledger : Optional[TicketLedger], default: None
        Source of the ticket snapshot.
    random_source : Optional[RandomSource], default: None
        Index source for the draw. Defaults to :class:`SecureRandomSource`.
    events : Optional[EventBus], default: None
        Receives :class:`DrawingCompleted` after the winners are stored.
    default_policy : Optional[DrawEligibilityPolicy], default: ``draw_date_reached``
        Eligibility rule used when :meth:`perform_drawing` gets no policy.
        ``None`` disables the rule.
    clock : Callable[[], datetime], default: ``utc_now``
        Source of the draw timestamp.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        lifecycle: LotteryLifecycleManager,
        *,
        ledger: Optional[TicketLedger] = None,
        random_source: Optional[RandomSource] = None,
        events: Optional[EventBus] = None,
        default_policy: Optional[DrawEligibilityPolicy] = draw_date_reached,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._lifecycle = lifecycle
        self._ledger = ledger or TicketLedger()
        self._random = random_source or SecureRandomSource()
        self._events = events
        self._default_policy = default_policy
        self._clock = clock

    def perform_drawing(
        self,
        lottery_id: int,
        policy: Optional[DrawEligibilityPolicy] = None,
    ) -> list[LotteryWinner]:
        """Draw and store the winners of ``lottery_id``.

        Returns
        -------
        list[LotteryWinner]
            Persisted winners in prize order. Empty when no ticket was sold.

        Raises
        ------
        LotteryNotFound
            If the lottery does not exist.
        LotteryNotDrawable
            If the lottery is not ``ACTIVE`` or the policy refuses it. Not
            retried.
        DrawingAborted
            If the ticket snapshot or the selection failed. No winner was drawn
            and the lottery is normally back to ``ACTIVE``, see
            :attr:`DrawingAborted.reverted`.
        DrawingPersistenceError
            If winners were drawn but could not be stored. The lottery stays in
            ``DRAWING`` and is never drawn again.
        """
        lottery = self._lifecycle.transition_to_drawing(
            lottery_id, policy if policy is not None else self._default_policy
        )
        prizes = list(lottery.prizes)

        try:
            with self._session_factory() as session:
                tickets = self._ledger.snapshot(session, lottery_id)
            drawn_at = self._clock()
            drawn = select_winners(tickets, prizes, self._random, drawn_at)
        except Exception as exc:
            # Nothing was drawn yet, so the lottery can be reopened and retried.
            self._abort(lottery_id, exc)
            raise DrawingAborted(lottery_id, exc) from exc
        logger.debug(
            f"Drew {len(drawn)} winner(s) from {len(tickets)} ticket(s) for "
            f"lottery {lottery_id}"
        )

        try:
            winners = self._lifecycle.transition_to_completed(
                lottery_id, drawn, self._random.selection_method
            )
        except SQLAlchemyError as exc:
            summary = ", ".join(
                f"#{w.position} {w.prize_name} -> {w.user_id}/{w.ticket_number}"
                for w in drawn
            )
            logger.critical(
                f"Winners of lottery {lottery_id} could not be persisted; lottery "
                f"left in DRAWING. Drawn: [{summary}]"
            )
            raise DrawingPersistenceError(lottery_id, drawn, exc) from exc

        publish_if(
            self._events,
            DrawingCompleted(
                lottery_id=lottery_id,
                occurred_at=drawn_at,
                winners=tuple(
                    WinnerSummary(
                        position=w.position,
                        user_id=w.user_id,
                        ticket_number=w.ticket_number,
                        prize_name=w.prize_name,
                    )
                    for w in drawn
                ),
            ),
        )
        return winners

    def _abort(self, lottery_id: int, cause: Exception) -> None:
        try:
            self._lifecycle.revert_to_active(lottery_id)
        except Exception as exc:
            logger.critical(
                f"Drawing of lottery {lottery_id} failed before selection ({cause}) "
                f"and the lottery could not be reopened: {exc}"
            )
            raise DrawingAborted(lottery_id, cause, reverted=False) from exc
        logger.error(
            f"Drawing of lottery {lottery_id} failed before selection, lottery "
            f"reopened: {cause}"
        )


__all__ = ["DrawingEngine"]
