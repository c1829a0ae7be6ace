"""
Platform Intelligence Engine (IPE).

One cycle (hourly in production):

1. Monitor: fetch the configured newsroom feeds, keep the first N chars.
2. Algorithms: ask the model for algorithm shifts, feature updates and
   policy changes in those snippets.
3. Trends: ask the model to forecast from the top global strategy stats.
4. Opportunities: combine shifts and trends into first-mover gaps.
5. Risks: assess compliance risk of policy changes and high-impact shifts.
6. Dispatch: log every item to ipe_intelligence_log with a priority from
   its impact score and an expiry.

Every model step returns a list of items. A reply that cannot be parsed,
or a failed model call, yields no items for that step only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from adroom.config.schema import IntelligenceSettings
from adroom.exceptions import DependencyError, GenerationError
from adroom.models import IntelligenceLogEntry, priority_for_impact
from adroom.observability.logging_config import run_context

logger = logging.getLogger(__name__)

ANALYST_PROMPT = (
    "You are the AdRoom Platform Intelligence analyst. You monitor social "
    "media platforms and ad performance data for changes that matter to "
    "advertisers. Always answer with a JSON object of the form "
    '{"items": [...]}.'
)

ITEM_FORMAT = """{
  "items": [
    {
      "platform": "facebook" | "instagram" | "tiktok" | "string",
      "type": "%s",
      "summary": "Short description",
      "confidence": number (0-100),
      "impact_score": number (1-10),
      "recommended_action": "Actionable advice for advertisers"
    }
  ]
}"""

RISK_IMPACT_THRESHOLD = 7


@dataclass
class IntelligenceCycleResult:
    shifts: list[dict[str, Any]] = field(default_factory=list)
    trends: list[dict[str, Any]] = field(default_factory=list)
    opportunities: list[dict[str, Any]] = field(default_factory=list)
    risks: list[dict[str, Any]] = field(default_factory=list)
    dispatched: int = 0

    @property
    def items(self) -> list[dict[str, Any]]:
        return [*self.shifts, *self.trends, *self.opportunities, *self.risks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "shifts": len(self.shifts),
            "trends": len(self.trends),
            "opportunities": len(self.opportunities),
            "risks": len(self.risks),
            "dispatched": self.dispatched,
        }


def _impact(item: dict[str, Any]) -> float:
    try:
        return float(item.get("impact_score") or 0)
    except (TypeError, ValueError):
        return 0.0


class PlatformIntelligenceEngine:
    """
    Runs the monitor → analyze → dispatch cycle.

    Pass `transport` (e.g. httpx.MockTransport) to serve the feeds from a
    test double.
    """

    def __init__(
        self,
        db: Any,
        text_client: Any,
        settings: Optional[IntelligenceSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.text = text_client
        self.settings = settings or IntelligenceSettings()
        self._transport = transport
        self._timeout = timeout
        self._clock = clock

    async def run_cycle(self) -> IntelligenceCycleResult:
        with run_context("ipe"):
            logger.info("intelligence_cycle_started")
            result = IntelligenceCycleResult()

            snippets = await self.monitor_platforms()
            result.shifts = await self.analyze_algorithms(snippets)
            result.trends = await self.analyze_trends()
            result.opportunities = await self.detect_opportunities(
                result.shifts, result.trends
            )
            result.risks = await self.assess_risks(result.shifts)
            result.dispatched = self.dispatch_intelligence(result.items)

            logger.info("intelligence_cycle_completed", extra=result.to_dict())
            return result

    # ─── Monitor ───────────────────────────────────────────────────────

    async def monitor_platforms(self) -> list[dict[str, str]]:
        """Fetch each feed. Failed sources are logged and skipped."""
        snippets: list[dict[str, str]] = []
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            for source in self.settings.sources:
                try:
                    response = await client.get(source.url)
                except httpx.HTTPError as e:
                    logger.warning(
                        "feed_fetch_error",
                        extra={"source": source.name, "error": str(e)[:200]},
                    )
                    continue
                if response.is_error:
                    logger.warning(
                        "feed_fetch_failed",
                        extra={"source": source.name, "status": response.status_code},
                    )
                    continue
                snippets.append({
                    "source": source.name,
                    "content": response.text[: self.settings.snippet_chars],
                })
        return snippets

    # ─── Analysis ──────────────────────────────────────────────────────

    async def analyze_algorithms(
        self, snippets: list[dict[str, str]]
    ) -> list[dict[str, Any]]:
        if not snippets:
            return []
        return await self._ask("algorithm_analysis", {
            "task": (
                "Analyze the following text snippets from social media "
                "platform newsrooms. Detect announcements or patterns "
                "indicating algorithm changes, new features, or policy "
                "updates: ranking factors, features affecting reach, ad "
                "policy changes. Return an empty items list if nothing "
                "significant is found."
            ),
            "data": snippets,
            "format": ITEM_FORMAT % "algorithm_shift | feature_update | policy_change",
        })

    async def analyze_trends(self) -> list[dict[str, Any]]:
        """Forecast the next 30 days from the top global strategy stats."""
        stats = self.db.list_top_global_stats(limit=20)
        if not stats:
            return []
        return await self._ask("trend_forecast", {
            "task": (
                "Analyze the following global ad performance data. Identify "
                "emerging trends and forecast what will work in the next 30 days."
            ),
            "data": stats,
            "format": ITEM_FORMAT % "trend_forecast",
        })

    async def detect_opportunities(
        self,
        shifts: list[dict[str, Any]],
        trends: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        if not shifts and not trends:
            return []
        return await self._ask("opportunity_detection", {
            "task": (
                "Based on the identified algorithm shifts and market trends, "
                "detect specific high-value opportunities for advertisers. "
                "Look for first-mover advantage gaps."
            ),
            "shifts": shifts,
            "trends": trends,
            "format": ITEM_FORMAT % "opportunity_gap",
        })

    async def assess_risks(
        self, shifts: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Assess policy changes and shifts with impact >= 7."""
        flagged = [
            s for s in shifts
            if s.get("type") == "policy_change" or _impact(s) >= RISK_IMPACT_THRESHOLD
        ]
        if not flagged:
            return []
        return await self._ask("risk_assessment", {
            "task": (
                "Evaluate the following platform changes for compliance risks "
                "to advertisers. Flag any update that could lead to ad "
                "rejections, bans, or reduced reach if ignored. A high "
                "impact_score means high danger."
            ),
            "changes": flagged,
            "format": ITEM_FORMAT % "compliance_risk",
        })

    async def _ask(self, step: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            reply = await self.text.complete_json(ANALYST_PROMPT, payload)
        except (GenerationError, DependencyError) as e:
            logger.warning(
                "intelligence_step_failed",
                extra={"step": step, "error": str(e)[:200]},
            )
            return []

        # Models sometimes return a bare array despite the object format
        items = reply.get("items") if isinstance(reply, dict) else reply
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict) and item.get("summary")]

    # ─── Dispatch ──────────────────────────────────────────────────────

    def dispatch_intelligence(self, items: list[dict[str, Any]]) -> int:
        """Log each item. Returns the number written."""
        expires_at = self._clock() + timedelta(days=self.settings.expiry_days)
        written = 0

        for item in items:
            impact = _impact(item)
            entry = IntelligenceLogEntry(
                intelligence_type=str(item.get("type") or "general"),
                platform=str(item.get("platform") or "General"),
                summary=str(item["summary"]),
                details=item,
                priority=priority_for_impact(impact),
                recommended_actions=(
                    [str(item["recommended_action"])]
                    if item.get("recommended_action") else []
                ),
                expires_at=expires_at,
            )
            try:
                self.db.insert_intelligence(entry)
            except Exception as e:
                logger.error(
                    "intelligence_dispatch_failed",
                    extra={"summary": entry.summary[:100], "error": str(e)[:200]},
                )
                continue

            written += 1
            if entry.priority == 1:
                logger.warning(
                    "urgent_intelligence",
                    extra={"platform": entry.platform, "summary": entry.summary},
                )
        return written
