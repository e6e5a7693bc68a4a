"""Campaign collaborator interface and implementations."""

from .api import HttpCampaignResolver
from .resolver import (
    CampaignInfo,
    CampaignResolver,
    CampaignStatus,
    StaticCampaignResolver,
)

__all__ = [
    "CampaignInfo",
    "CampaignResolver",
    "CampaignStatus",
    "HttpCampaignResolver",
    "StaticCampaignResolver",
]
