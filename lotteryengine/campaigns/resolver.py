"""Read-only view of the campaign service consumed by the lifecycle manager."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Protocol

from ..db.utils import ensure_utc


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class CampaignInfo:
    """Subset of a campaign needed to validate a new lottery.

    Attributes
    ----------
    campaign_id : str
        Identifier in the campaign service.
    is_lottery_eligible : bool
        Whether the campaign opted into lottery mode.
    status : CampaignStatus
        Current campaign status.
    end_date : datetime
        Campaign end; a lottery must be drawn on or before it.
    """

    campaign_id: str
    is_lottery_eligible: bool
    status: CampaignStatus
    end_date: datetime

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "CampaignInfo":
        """Build from the campaign API's JSON body.

        Both ``camelCase`` (as served by the platform API) and ``snake_case``
        keys are accepted.
        """

        def pick(*names: str) -> object:
            for name in names:
                if name in payload:
                    return payload[name]
            raise ValueError(f"Campaign payload is missing '{names[0]}'")

        raw_end = pick("endDate", "end_date")
        if isinstance(raw_end, datetime):
            end_date = raw_end
        elif isinstance(raw_end, str):
            end_date = datetime.fromisoformat(raw_end.replace("Z", "+00:00"))
        else:
            raise ValueError("Campaign end date must be an ISO 8601 string")

        return cls(
            campaign_id=str(pick("id", "campaignId", "campaign_id")),
            is_lottery_eligible=bool(
                pick("isLottery", "isLotteryEligible", "is_lottery_eligible")
            ),
            status=CampaignStatus(str(pick("status")).upper()),
            end_date=ensure_utc(end_date),
        )


class CampaignResolver(Protocol):
    def resolve_campaign(self, campaign_id: str) -> Optional[CampaignInfo]:
        """Return the campaign or ``None`` when it does not exist."""
        ...


class StaticCampaignResolver:
    """In-memory resolver for tests, scripts and embedded deployments."""

    def __init__(self, campaigns: Optional[Mapping[str, CampaignInfo]] = None) -> None:
        self._campaigns: dict[str, CampaignInfo] = dict(campaigns or {})

    def add(self, campaign: CampaignInfo) -> None:
        self._campaigns[campaign.campaign_id] = campaign

    def resolve_campaign(self, campaign_id: str) -> Optional[CampaignInfo]:
        return self._campaigns.get(campaign_id)


__all__ = [
    "CampaignInfo",
    "CampaignResolver",
    "CampaignStatus",
    "StaticCampaignResolver",
]
