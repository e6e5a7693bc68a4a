import logging
import os
from typing import Any, Mapping, Optional
from urllib.parse import quote, urljoin

import requests
from dotenv import load_dotenv

from .resolver import CampaignInfo

logger = logging.getLogger(__name__)


class HttpCampaignResolver:
    """Resolve campaigns through the platform's campaign REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        api_token: Optional[str] = None,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = base_url or os.getenv("CAMPAIGN_API_BASE_URL")
        if not url:
            raise ValueError("Environment variable 'CAMPAIGN_API_BASE_URL' is not set")

        self.base_url = url.rstrip("/")
        self.api_token = api_token or os.getenv("CAMPAIGN_API_TOKEN")
        self.timeout = timeout
        self.session = session or requests.Session()

    # -------- headers --------
    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    # -------- core request --------
    def _get(self, path: str) -> Optional[Any]:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method="GET",
            url=url,
            headers=self.headers,
            timeout=self.timeout,
        )
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def resolve_campaign(self, campaign_id: str) -> Optional[CampaignInfo]:
        """Fetch ``campaign_id`` and map it to :class:`CampaignInfo`.

        Returns ``None`` when the API answers 404. Other HTTP failures raise
        :class:`requests.HTTPError`.
        """
        # Never log the token; the id is enough to trace the call.
        logger.debug(f"Resolving campaign {campaign_id}")
        payload = self._get(f"/api/v1/campaigns/{quote(str(campaign_id), safe='')}")
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise RuntimeError(f"Unexpected campaign response: {payload!r}")
        # Some deployments wrap entities in {"data": {...}}.
        body = payload.get("data", payload)
        return CampaignInfo.from_payload(body)


__all__ = ["HttpCampaignResolver"]
