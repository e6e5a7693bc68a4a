"""Sliding-window purchase limiter keyed by ``(lottery_id, user_id)``."""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict, deque
from datetime import timedelta
from typing import Callable, Deque, Dict, Tuple, Union

from ..errors import RateLimitExceeded

logger = logging.getLogger(__name__)

RateLimitKey = Tuple[int, str]
Window = Union[timedelta, float, int]


def _window_seconds(window: Window) -> float:
    seconds = window.total_seconds() if isinstance(window, timedelta) else float(window)
    if seconds <= 0:
        raise ValueError("window must be positive")
    return seconds


class SlidingWindowRateLimiter:
    """Track recent purchase timestamps per user and lottery.

    Each key holds a deque of monotonic timestamps, oldest first. Entries that
    fall out of the window are evicted lazily whenever the key is touched.
    Every ``prune_every`` recorded checks, keys that have gone quiet are
    dropped so memory stays bounded by the number of recently active buyers.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        prune_every: int = 256,
    ) -> None:
        if prune_every < 1:
            raise ValueError("prune_every must be at least 1")
        self._clock = clock
        self._prune_every = prune_every
        self._checks = 0
        self._lock = threading.Lock()
        self._events: Dict[RateLimitKey, Deque[float]] = defaultdict(deque)
        self._key_windows: Dict[RateLimitKey, float] = {}

    def check_and_record(
        self,
        lottery_id: int,
        user_id: str,
        window: Window,
        max_per_window: int,
    ) -> float:
        """Record a purchase for ``(lottery_id, user_id)`` if under the limit.

        Parameters
        ----------
        lottery_id : int
            Lottery the purchase targets.
        user_id : str
            Purchasing user.
        window : timedelta | float
            Trailing window length (seconds when numeric).
        max_per_window : int
            Purchases allowed inside the window.

        Returns
        -------
        float
            Clock value recorded for this purchase. Pass it to :meth:`release`
            to undo the record when the purchase does not go through.

        Raises
        ------
        RateLimitExceeded
            When ``max_per_window`` purchases are already inside the window.
            Nothing is recorded in that case.
        """
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        seconds = _window_seconds(window)
        key = (lottery_id, user_id)

        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._checks >= self._prune_every:
                self._checks = 0
                self._prune_locked(now)
            bucket = self._events[key]
            self._key_windows[key] = seconds
            self._evict(bucket, now, seconds)

            if len(bucket) >= max_per_window:
                retry_after = max(bucket[0] + seconds - now, 0.0)
                logger.warning(
                    f"Rate limit hit for user {user_id} on lottery {lottery_id} "
                    f"({len(bucket)}/{max_per_window})"
                )
                raise RateLimitExceeded(lottery_id, user_id, retry_after)

            bucket.append(now)
            return now

    def record(self, lottery_id: int, user_id: str, window: Window) -> float:
        """Record a purchase that already went through, bypassing the limit."""
        seconds = _window_seconds(window)
        key = (lottery_id, user_id)
        with self._lock:
            now = self._clock()
            bucket = self._events[key]
            self._key_windows[key] = seconds
            self._evict(bucket, now, seconds)
            bucket.append(now)
            return now

    def release(self, lottery_id: int, user_id: str, timestamp: float) -> bool:
        """Remove one purchase previously recorded at ``timestamp``."""
        key = (lottery_id, user_id)
        with self._lock:
            bucket = self._events.get(key)
            if not bucket:
                return False
            try:
                bucket.remove(timestamp)
            except ValueError:
                return False
            if not bucket:
                self._drop(key)
            return True

    def recent_count(self, lottery_id: int, user_id: str, window: Window) -> int:
        """Return the number of purchases currently inside ``window``."""
        seconds = _window_seconds(window)
        key = (lottery_id, user_id)
        with self._lock:
            bucket = self._events.get(key)
            if not bucket:
                return 0
            now = self._clock()
            return sum(1 for ts in bucket if now - ts < seconds)

    def prune(self) -> int:
        """Drop keys whose recorded purchases have all left their window.

        Returns the number of keys removed.
        """
        with self._lock:
            return self._prune_locked(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _prune_locked(self, now: float) -> int:
        removed = 0
        for key in list(self._events):
            bucket = self._events[key]
            self._evict(bucket, now, self._key_windows.get(key, 0.0))
            if not bucket:
                self._drop(key)
                removed += 1
        if removed:
            logger.debug(f"Pruned {removed} idle rate-limit keys")
        return removed

    def _drop(self, key: RateLimitKey) -> None:
        self._events.pop(key, None)
        self._key_windows.pop(key, None)

    @staticmethod
    def _evict(bucket: Deque[float], now: float, seconds: float) -> None:
        # A timestamp exactly ``seconds`` old is outside the window.
        while bucket and now - bucket[0] >= seconds:
            bucket.popleft()


__all__ = ["SlidingWindowRateLimiter"]
