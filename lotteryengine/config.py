"""Runtime policy settings for ticket sales and drawing."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class LotterySettings:
    """Policy constants consumed by the sales service and drawing engine.

    Attributes
    ----------
    rate_limit_window : timedelta
        Trailing window used by the per-user purchase limiter.
    max_tickets_per_window : int
        Purchases allowed per ``(lottery, user)`` inside ``rate_limit_window``.
    ticket_number_length : int
        Width of generated ticket numbers.
    max_ticket_number_attempts : int
        Consecutive collisions tolerated before giving up on a purchase.
    purchase_retry_attempts : int
        Attempts made when the ledger append hits a transient storage error.
    close_sales_at_draw_date : bool
        When ``True`` purchases are refused once ``draw_date`` has passed even
        if the drawing has not started yet.
    max_tickets_per_user : int
        Lifetime cap on the tickets one user may hold in a single lottery.
    """

    rate_limit_window: timedelta = timedelta(minutes=5)
    max_tickets_per_window: int = 100
    ticket_number_length: int = 8
    max_ticket_number_attempts: int = 32
    purchase_retry_attempts: int = 3
    close_sales_at_draw_date: bool = False
    max_tickets_per_user: int = 10

    def __post_init__(self) -> None:
        if self.rate_limit_window.total_seconds() <= 0:
            raise ValueError("rate_limit_window must be positive")
        if self.max_tickets_per_window < 1:
            raise ValueError("max_tickets_per_window must be at least 1")
        if self.ticket_number_length < 4:
            raise ValueError("ticket_number_length must be at least 4")
        if self.max_ticket_number_attempts < 1:
            raise ValueError("max_ticket_number_attempts must be at least 1")
        if self.purchase_retry_attempts < 1:
            raise ValueError("purchase_retry_attempts must be at least 1")
        if self.max_tickets_per_user < 1:
            raise ValueError("max_tickets_per_user must be at least 1")


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer") from exc


def _bool_setting(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable '{name}' must be a boolean")


def load_settings(env: Optional[Mapping[str, str]] = None) -> LotterySettings:
    """Build :class:`LotterySettings` from environment variables.

    ``.env`` is loaded first when reading from the process environment.
    Unset variables fall back to the dataclass defaults.
    """

    if env is None:
        load_dotenv()
        env = os.environ

    defaults = LotterySettings()
    window_seconds = _int_setting(
        env,
        "LOTTERY_RATE_LIMIT_WINDOW_SECONDS",
        int(defaults.rate_limit_window.total_seconds()),
    )
    return LotterySettings(
        rate_limit_window=timedelta(seconds=window_seconds),
        max_tickets_per_window=_int_setting(
            env, "LOTTERY_MAX_TICKETS_PER_WINDOW", defaults.max_tickets_per_window
        ),
        ticket_number_length=_int_setting(
            env, "LOTTERY_TICKET_NUMBER_LENGTH", defaults.ticket_number_length
        ),
        max_ticket_number_attempts=_int_setting(
            env,
            "LOTTERY_MAX_TICKET_NUMBER_ATTEMPTS",
            defaults.max_ticket_number_attempts,
        ),
        purchase_retry_attempts=_int_setting(
            env, "LOTTERY_PURCHASE_RETRY_ATTEMPTS", defaults.purchase_retry_attempts
        ),
        close_sales_at_draw_date=_bool_setting(
            env, "LOTTERY_CLOSE_SALES_AT_DRAW_DATE", defaults.close_sales_at_draw_date
        ),
        max_tickets_per_user=_int_setting(
            env, "LOTTERY_MAX_TICKETS_PER_USER", defaults.max_tickets_per_user
        ),
    )


__all__ = ["LotterySettings", "load_settings"]
