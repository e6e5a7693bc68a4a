import json
import os
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

import requests

from lotteryengine.campaigns import (
    CampaignInfo,
    CampaignStatus,
    HttpCampaignResolver,
    StaticCampaignResolver,
)


class DummyResponse:
    def __init__(self, json_data=None, status_code: int = 200):
        self._json = json_data
        self.status_code = status_code
        self.content = json.dumps(json_data).encode() if json_data is not None else b""

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class DummySession:
    def __init__(self, response: DummyResponse):
        self.response = response
        self.calls = []

    def request(self, method, url, headers=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "headers": headers, "timeout": timeout}
        )
        return self.response


CAMPAIGN_PAYLOAD = {
    "id": "camp-42",
    "title": "Spring fundraiser",
    "isLottery": True,
    "status": "active",
    "endDate": "2030-03-01T00:00:00Z",
}


class TestHttpCampaignResolver(unittest.TestCase):
    @patch("lotteryengine.campaigns.api.load_dotenv")
    def test_requires_base_url(self, mock_load_dotenv):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                HttpCampaignResolver()

    @patch("lotteryengine.campaigns.api.load_dotenv")
    def test_base_url_from_environment(self, mock_load_dotenv):
        env = {
            "CAMPAIGN_API_BASE_URL": "https://campaigns.example.com/",
            "CAMPAIGN_API_TOKEN": "secret",
        }
        with patch.dict(os.environ, env, clear=True):
            resolver = HttpCampaignResolver(session=DummySession(DummyResponse()))
        self.assertEqual(resolver.base_url, "https://campaigns.example.com")
        self.assertEqual(resolver.headers["Authorization"], "Bearer secret")

    def test_resolve_campaign(self):
        session = DummySession(DummyResponse(CAMPAIGN_PAYLOAD))
        resolver = HttpCampaignResolver(
            "https://campaigns.example.com", session=session, timeout=3
        )

        campaign = resolver.resolve_campaign("camp-42")

        self.assertEqual(
            campaign,
            CampaignInfo(
                campaign_id="camp-42",
                is_lottery_eligible=True,
                status=CampaignStatus.ACTIVE,
                end_date=datetime(2030, 3, 1, tzinfo=timezone.utc),
            ),
        )
        self.assertTrue(campaign.is_active)
        call = session.calls[0]
        self.assertEqual(call["method"], "GET")
        self.assertEqual(
            call["url"], "https://campaigns.example.com/api/v1/campaigns/camp-42"
        )
        self.assertEqual(call["timeout"], 3)

    def test_campaign_id_is_quoted(self):
        session = DummySession(DummyResponse(CAMPAIGN_PAYLOAD))
        resolver = HttpCampaignResolver("https://campaigns.example.com", session=session)
        resolver.resolve_campaign("a/b")
        self.assertTrue(session.calls[0]["url"].endswith("/api/v1/campaigns/a%2Fb"))

    def test_wrapped_payload(self):
        session = DummySession(DummyResponse({"data": CAMPAIGN_PAYLOAD}))
        resolver = HttpCampaignResolver("https://campaigns.example.com", session=session)
        self.assertEqual(resolver.resolve_campaign("camp-42").campaign_id, "camp-42")

    def test_not_found_returns_none(self):
        session = DummySession(DummyResponse({"message": "nope"}, status_code=404))
        resolver = HttpCampaignResolver("https://campaigns.example.com", session=session)
        self.assertIsNone(resolver.resolve_campaign("missing"))

    def test_server_error_propagates(self):
        session = DummySession(DummyResponse({"message": "boom"}, status_code=500))
        resolver = HttpCampaignResolver("https://campaigns.example.com", session=session)
        with self.assertRaises(requests.HTTPError):
            resolver.resolve_campaign("camp-42")

    def test_unexpected_payload(self):
        session = DummySession(DummyResponse(["not", "an", "object"]))
        resolver = HttpCampaignResolver("https://campaigns.example.com", session=session)
        with self.assertRaises(RuntimeError):
            resolver.resolve_campaign("camp-42")


class TestCampaignInfo(unittest.TestCase):
    def test_snake_case_payload(self):
        info = CampaignInfo.from_payload(
            {
                "campaign_id": "c1",
                "is_lottery_eligible": False,
                "status": "PAUSED",
                "end_date": "2030-03-01T09:00:00+09:00",
            }
        )
        self.assertFalse(info.is_lottery_eligible)
        self.assertFalse(info.is_active)
        self.assertEqual(info.end_date, datetime(2030, 3, 1, 0, 0, tzinfo=timezone.utc))

    def test_missing_field(self):
        with self.assertRaises(ValueError):
            CampaignInfo.from_payload({"id": "c1", "status": "ACTIVE"})

    def test_static_resolver(self):
        info = CampaignInfo(
            campaign_id="c1",
            is_lottery_eligible=True,
            status=CampaignStatus.ACTIVE,
            end_date=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
        resolver = StaticCampaignResolver({"c1": info})
        self.assertIs(resolver.resolve_campaign("c1"), info)
        self.assertIsNone(resolver.resolve_campaign("c2"))


if __name__ == "__main__":
    unittest.main()
