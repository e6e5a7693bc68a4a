"""Shared fakes for the lottery engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lotteryengine.campaigns import CampaignInfo, CampaignStatus, StaticCampaignResolver
from lotteryengine.lifecycle import PrizeSpec
from lotteryengine.models import Base

START = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Aware UTC clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ScriptedRandomSource:
    """Random source replaying fixed draw indices and ticket numbers.

    Once the scripted numbers run out, sequential numbers ``T0000001``,
    ``T0000002``... are produced. Draw indices default to ``0``.
    """

    selection_method = "SCRIPTED"

    def __init__(
        self,
        indices: Iterable[int] = (),
        numbers: Iterable[str] = (),
    ) -> None:
        self.indices = list(indices)
        self.numbers = list(numbers)
        self.randbelow_calls: list[int] = []
        self._counter = 0
        self._txn = 0

    def randbelow(self, upper: int) -> int:
        self.randbelow_calls.append(upper)
        if self.indices:
            return self.indices.pop(0)
        return 0

    def ticket_number(self, length: int) -> str:
        if self.numbers:
            return self.numbers.pop(0)
        self._counter += 1
        return f"T{self._counter:0{length - 1}d}"

    def transaction_id(self) -> str:
        self._txn += 1
        return f"txn-{self._txn:06d}"


def memory_sessionmaker():
    """Return ``(engine, Session)`` for a fresh in-memory database."""
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, future=True, expire_on_commit=False)
    return engine, Session


def campaign_resolver(
    campaign_id: str = "camp-1",
    *,
    eligible: bool = True,
    status: CampaignStatus = CampaignStatus.ACTIVE,
    end_date: Optional[datetime] = None,
) -> StaticCampaignResolver:
    resolver = StaticCampaignResolver()
    resolver.add(
        CampaignInfo(
            campaign_id=campaign_id,
            is_lottery_eligible=eligible,
            status=status,
            end_date=end_date or START + timedelta(days=60),
        )
    )
    return resolver


def prizes(*names: str) -> list[PrizeSpec]:
    return [
        PrizeSpec(name=name, value=Decimal(len(names) - i))
        for i, name in enumerate(names)
    ]
