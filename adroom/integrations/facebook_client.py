"""
Facebook Graph API client for AdRoom.

Wraps the handful of Graph API calls the automation passes need: campaign
insights, campaign updates (pause / daily budget), page posts, and the
engagement calls (like, reply, message). Stateless: every call takes the
caller's access token.

Non-2xx responses raise AdPlatformError carrying the upstream
`error.message`, so call sites can record the failure and carry on.

API Reference: https://developers.facebook.com/docs/graph-api
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from adroom.exceptions import AdPlatformError

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com/v19.0"

INSIGHT_FIELDS = "spend,impressions,clicks,cpc,cpm,ctr,actions,action_values"

# action_values entries that count as revenue, in order of preference
PURCHASE_ACTION_TYPES = (
    "omni_purchase",
    "purchase",
    "offsite_conversion.fb_pixel_purchase",
)


@dataclass
class CampaignInsights:
    """Delivery metrics for an ad account or campaign over one date preset."""

    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    action_values: list[dict[str, Any]] = field(default_factory=list)

    @property
    def revenue(self) -> float:
        """Purchase value if reported, else the first action value."""
        if not self.action_values:
            return 0.0
        by_type = {
            item.get("action_type"): item.get("value")
            for item in self.action_values
        }
        for action_type in PURCHASE_ACTION_TYPES:
            if by_type.get(action_type) is not None:
                return float(by_type[action_type])
        return float(self.action_values[0].get("value") or 0)

    @property
    def roas(self) -> float:
        return self.revenue / self.spend if self.spend > 0 else 0.0

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> CampaignInsights:
        return cls(
            spend=float(raw.get("spend") or 0),
            impressions=int(raw.get("impressions") or 0),
            clicks=int(raw.get("clicks") or 0),
            action_values=list(raw.get("action_values") or []),
        )


class FacebookAdsClient:
    """
    Graph API client for ads, page posts and engagement.

    Pass `transport` (e.g. httpx.MockTransport) to route requests through
    a test double instead of the network.
    """

    def __init__(
        self,
        base_url: str = GRAPH_API_BASE,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    # ─── HTTP ──────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        query = {"access_token": access_token, **(params or {})}

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.request(
                method,
                url,
                params=query,
                json=payload,
                headers={"Content-Type": "application/json"},
            )

        if response.is_error:
            raise AdPlatformError(
                self._error_message(response),
                status_code=response.status_code,
                details={"path": path},
            )
        return response.json() if response.content else {}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            return response.reason_phrase or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.reason_phrase or f"HTTP {response.status_code}"

    # ─── Ads ───────────────────────────────────────────────────────────

    async def get_insights(
        self,
        access_token: str,
        ad_account_id: str,
        campaign_id: Optional[str] = None,
        *,
        date_preset: str = "today",
    ) -> Optional[CampaignInsights]:
        """
        Fetch insights at account level, or for one campaign.

        `date_preset="maximum"` returns lifetime totals.

        Returns:
            CampaignInsights, or None when the API reports no rows.
        """
        params: dict[str, Any] = {
            "fields": INSIGHT_FIELDS,
            "date_preset": date_preset,
            "level": "campaign" if campaign_id else "account",
        }
        if campaign_id:
            params["filtering"] = json.dumps([{
                "field": "campaign.id",
                "operator": "EQUAL",
                "value": campaign_id,
            }])

        data = await self._request(
            "GET", f"{ad_account_id}/insights", access_token, params=params
        )
        rows = data.get("data") or []
        return CampaignInsights.from_api(rows[0]) if rows else None

    async def update_campaign(
        self,
        access_token: str,
        campaign_id: str,
        *,
        status: Optional[str] = None,
        daily_budget: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Update a campaign's status and/or daily budget.

        The Graph API uses POST on the object for updates.
        """
        payload: dict[str, Any] = {}
        if status is not None:
            payload["status"] = status
        if daily_budget is not None:
            payload["daily_budget"] = daily_budget
        if not payload:
            raise ValueError("update_campaign needs status or daily_budget")

        result = await self._request("POST", campaign_id, access_token, payload=payload)
        logger.info(
            "facebook_campaign_updated",
            extra={"campaign_id": campaign_id, "updates": payload},
        )
        return result

    # ─── Page Content ──────────────────────────────────────────────────

    async def post_content(
        self,
        access_token: str,
        page_id: str,
        message: str,
        image_url: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Publish a post on the page. With an image, posts to /photos.

        Returns:
            Dict with the platform post `id`.
        """
        endpoint = "photos" if image_url else "feed"
        payload: dict[str, Any] = {"message": message}
        if image_url:
            payload["url"] = image_url

        result = await self._request(
            "POST", f"{page_id}/{endpoint}", access_token, payload=payload
        )
        logger.info(
            "facebook_post_published",
            extra={"page_id": page_id, "post_id": result.get("id")},
        )
        return result

    async def get_latest_post(
        self, access_token: str, page_id: str
    ) -> Optional[dict[str, Any]]:
        """Get the page's most recent post, or None if it has none."""
        data = await self._request(
            "GET",
            f"{page_id}/feed",
            access_token,
            params={"limit": 1, "fields": "id,message,created_time"},
        )
        rows = data.get("data") or []
        return rows[0] if rows else None

    # ─── Engagement ────────────────────────────────────────────────────

    async def like_object(self, access_token: str, object_id: str) -> dict[str, Any]:
        return await self._request("POST", f"{object_id}/likes", access_token)

    async def reply_to_comment(
        self, access_token: str, comment_id: str, message: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST", f"{comment_id}/comments", access_token,
            payload={"message": message},
        )

    async def send_message(
        self, access_token: str, recipient_id: str, message: str
    ) -> dict[str, Any]:
        """Send a Messenger message from the page to a user (by PSID)."""
        return await self._request(
            "POST", "me/messages", access_token,
            payload={
                "recipient": {"id": recipient_id},
                "messaging_type": "RESPONSE",
                "message": {"text": message},
            },
        )
