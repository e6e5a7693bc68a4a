"""Domain events published for external notifier collaborators.

Events are immutable, named in the past tense, and published only after the
change they describe has been committed.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, DefaultDict, Optional, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotteryEvent:
    lottery_id: int
    occurred_at: datetime


@dataclass(frozen=True)
class TicketIssued(LotteryEvent):
    """A ticket was appended to the ledger."""

    user_id: str
    ticket_number: str
    transaction_id: str
    sold_tickets: int
    max_tickets: int


@dataclass(frozen=True)
class TicketsSoldOut(LotteryEvent):
    """The last available ticket was sold."""

    max_tickets: int


@dataclass(frozen=True)
class WinnerSummary:
    position: int
    user_id: str
    ticket_number: str
    prize_name: str


@dataclass(frozen=True)
class DrawingCompleted(LotteryEvent):
    """Winners were drawn and stored."""

    winners: tuple[WinnerSummary, ...]


Handler = Callable[[LotteryEvent], None]


class EventBus:
    """Synchronous publish/subscribe hub.

    Subscribers registered for a base class also receive its subclasses, so
    ``subscribe(LotteryEvent, handler)`` observes every event. A failing
    handler is logged and does not prevent delivery to the others: by the time
    an event is published the underlying change is already committed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: DefaultDict[Type[LotteryEvent], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[LotteryEvent], handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[LotteryEvent], handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

    def publish(self, event: LotteryEvent) -> int:
        """Deliver ``event`` and return the number of handlers that succeeded."""
        with self._lock:
            targets = [
                handler
                for event_type, handlers in self._handlers.items()
                if isinstance(event, event_type)
                for handler in handlers
            ]
        delivered = 0
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    f"Event handler {handler!r} failed for {type(event).__name__} "
                    f"on lottery {event.lottery_id}"
                )
                continue
            delivered += 1
        return delivered


def publish_if(bus: Optional[EventBus], event: LotteryEvent) -> None:
    if bus is not None:
        bus.publish(event)


__all__ = [
    "DrawingCompleted",
    "EventBus",
    "LotteryEvent",
    "TicketsSoldOut",
    "TicketIssued",
    "WinnerSummary",
    "publish_if",
]
