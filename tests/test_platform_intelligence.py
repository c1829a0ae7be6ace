"""
Tests for the PlatformIntelligenceEngine.

Feeds are served by httpx.MockTransport; the model by MockTextClient.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from adroom.config.schema import FeedSource, IntelligenceSettings
from adroom.exceptions import DependencyError
from adroom.integrations.supabase_client import AdRoomDB
from adroom.intelligence.platform_intelligence import PlatformIntelligenceEngine
from adroom.testing.mock_llm import MockTextClient
from adroom.testing.mock_supabase import MockSupabase

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)

SETTINGS = IntelligenceSettings(
    sources=[
        FeedSource(name="Meta Newsroom", url="https://feeds.example/meta"),
        FeedSource(name="TikTok Newsroom", url="https://feeds.example/tiktok"),
    ],
    snippet_chars=100,
)


def _feed_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/meta":
        return httpx.Response(200, text="<rss>" + "x" * 500 + "</rss>")
    return httpx.Response(503, text="unavailable")


def _items(*items: dict[str, Any]) -> str:
    return json.dumps({"items": list(items)})


SHIFT = {
    "platform": "facebook",
    "type": "policy_change",
    "summary": "Stricter health claim review",
    "confidence": 80,
    "impact_score": 9,
    "recommended_action": "Remove before/after imagery",
}
TREND = {
    "platform": "instagram",
    "type": "trend_forecast",
    "summary": "Short-form video dominant in beauty",
    "impact_score": 6,
    "recommended_action": "Shift budget to Reels",
}
OPPORTUNITY = {
    "platform": "instagram",
    "type": "opportunity_gap",
    "summary": "Early Reels ads inventory is cheap",
    "impact_score": 4,
}
RISK = {
    "platform": "facebook",
    "type": "compliance_risk",
    "summary": "Health ads may be rejected",
    "impact_score": 8,
    "recommended_action": "Review copy",
}


def _make_engine(
    replies: list[str],
    *,
    stats: list[dict[str, Any]] | None = None,
    handler=_feed_handler,
):
    client = MockSupabase({
        "global_strategy_memory": stats if stats is not None else [
            {"category": "beauty", "average_roas": 3.2},
        ],
        "ipe_intelligence_log": [],
    })
    text = MockTextClient(replies, default=_items())
    engine = PlatformIntelligenceEngine(
        AdRoomDB(client=client),
        text,
        SETTINGS,
        transport=httpx.MockTransport(handler),
        clock=lambda: NOW,
    )
    return engine, client, text


class TestMonitorPlatforms:
    @pytest.mark.asyncio
    async def test_failed_source_skipped(self):
        engine, _, _ = _make_engine([])
        snippets = await engine.monitor_platforms()
        assert [s["source"] for s in snippets] == ["Meta Newsroom"]

    @pytest.mark.asyncio
    async def test_snippet_truncated(self):
        engine, _, _ = _make_engine([])
        snippets = await engine.monitor_platforms()
        assert len(snippets[0]["content"]) == 100

    @pytest.mark.asyncio
    async def test_connection_error_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("dns failure", request=request)

        engine, _, _ = _make_engine([], handler=handler)
        assert await engine.monitor_platforms() == []


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_full_cycle_dispatches_everything(self):
        engine, client, text = _make_engine([
            _items(SHIFT),
            _items(TREND),
            _items(OPPORTUNITY),
            _items(RISK),
        ])

        result = await engine.run_cycle()

        assert result.to_dict() == {
            "shifts": 1, "trends": 1, "opportunities": 1, "risks": 1, "dispatched": 4,
        }
        assert text.call_count == 4
        logged = client.rows("ipe_intelligence_log")
        assert [e["intelligence_type"] for e in logged] == [
            "policy_change", "trend_forecast", "opportunity_gap", "compliance_risk",
        ]

    @pytest.mark.asyncio
    async def test_priority_from_impact(self):
        engine, client, _ = _make_engine([
            _items(SHIFT), _items(TREND), _items(OPPORTUNITY), _items(RISK),
        ])

        await engine.run_cycle()

        priorities = {e["summary"]: e["priority"] for e in client.rows("ipe_intelligence_log")}
        assert priorities[SHIFT["summary"]] == 1
        assert priorities[TREND["summary"]] == 2
        assert priorities[OPPORTUNITY["summary"]] == 3
        assert priorities[RISK["summary"]] == 1

    @pytest.mark.asyncio
    async def test_entries_expire_in_seven_days(self):
        engine, client, _ = _make_engine([_items(SHIFT), _items(), _items(), _items()])

        await engine.run_cycle()

        entry = client.rows("ipe_intelligence_log")[0]
        expires_at = datetime.fromisoformat(entry["expires_at"].replace("Z", "+00:00"))
        assert expires_at == NOW + timedelta(days=7)
        assert entry["recommended_actions"] == [SHIFT["recommended_action"]]
        assert entry["details"]["confidence"] == 80

    @pytest.mark.asyncio
    async def test_no_feeds_skips_algorithm_step(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        engine, _, text = _make_engine([_items(TREND), _items(OPPORTUNITY)], handler=handler)

        result = await engine.run_cycle()

        assert result.shifts == []
        assert len(result.trends) == 1
        # trends + opportunities only; no shifts means no risk step
        assert text.call_count == 2

    @pytest.mark.asyncio
    async def test_no_stats_skips_trend_step(self):
        engine, _, text = _make_engine([_items(), _items()], stats=[])
        result = await engine.run_cycle()
        assert result.trends == []
        assert text.call_count == 1

    @pytest.mark.asyncio
    async def test_unparseable_reply_yields_no_items(self):
        engine, _, _ = _make_engine(["not json", _items(TREND), _items()])

        result = await engine.run_cycle()

        assert result.shifts == []
        assert len(result.trends) == 1

    @pytest.mark.asyncio
    async def test_model_failure_yields_no_items(self):
        engine, client, _ = _make_engine([])
        engine.text = MockTextClient(error=DependencyError("down", service="openai"))

        result = await engine.run_cycle()

        assert result.items == []
        assert client.rows("ipe_intelligence_log") == []

    @pytest.mark.asyncio
    async def test_bare_array_reply_accepted(self):
        engine, _, _ = _make_engine([json.dumps([SHIFT]), _items(), _items(), _items()])
        result = await engine.run_cycle()
        assert len(result.shifts) == 1


class TestAssessRisks:
    @pytest.mark.asyncio
    async def test_only_policy_or_high_impact_assessed(self):
        engine, _, text = _make_engine([_items(RISK)])
        low = {"type": "feature_update", "summary": "New sticker", "impact_score": 3}
        high = {"type": "algorithm_shift", "summary": "Video weight up", "impact_score": 7}

        await engine.assess_risks([low, high])

        payload = text.calls[0]["payload"]
        assert "Video weight up" in payload
        assert "New sticker" not in payload

    @pytest.mark.asyncio
    async def test_nothing_flagged_skips_model(self):
        engine, _, text = _make_engine([])
        low = {"type": "feature_update", "summary": "New sticker", "impact_score": 3}
        assert await engine.assess_risks([low]) == []
        assert text.call_count == 0


class TestDispatch:
    def test_items_without_platform_default_general(self):
        engine, client, _ = _make_engine([])
        written = engine.dispatch_intelligence([{"type": "trend_forecast", "summary": "x"}])
        assert written == 1
        entry = client.rows("ipe_intelligence_log")[0]
        assert entry["platform"] == "General"
        assert entry["priority"] == 3
        assert entry["recommended_actions"] == []

    def test_store_failure_skips_item(self):
        engine, client, _ = _make_engine([])
        client.failing_tables.add("ipe_intelligence_log")
        assert engine.dispatch_intelligence([SHIFT]) == 0
