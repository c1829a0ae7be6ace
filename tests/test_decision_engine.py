"""
Tests for the DecisionEngine.

Covers prompt construction, reply validation (GenerationError on bad
JSON or wrong shape), argument validation, and risk evaluation.
"""

from __future__ import annotations

import json

import pytest

from adroom.exceptions import GenerationError
from adroom.models import ContextBundle
from adroom.strategy.decision_engine import (
    SYSTEM_PROMPT,
    DecisionEngine,
    build_risk_prompt,
    build_strategy_prompt,
)
from adroom.testing.mock_llm import MockTextClient


VALID_DECISION = {
    "free_strategy": {
        "platforms": ["instagram", "tiktok"],
        "content_plan": {"pillars": ["education", "behind the scenes"]},
        "engagement_plan": {"reply_within_hours": 2},
        "expected_outcomes": {"reach": 20000},
    },
    "paid_strategy": {
        "platforms": ["facebook"],
        "budget_recommendation": 50,
        "content_plan": {"creatives": 3},
        "campaign_structure": {"ad_sets": 2},
        "expected_outcomes": {"target_roas": 2.5},
    },
    "comparison": {
        "summary": "Paid reaches buyers faster.",
        "recommendation": "paid",
    },
}


@pytest.fixture
def context():
    return ContextBundle(
        user={"user_id": "user-1", "business_name": "Glow Co"},
        context_type="product",
        context={"product_id": "prod-1", "name": "Vitamin C Serum"},
        history=[{"strategy_id": "s1", "roas": 1.8}],
        platform_status=[{"platform": "facebook", "status": "stable"}],
        global_trends=[{"category": "beauty", "average_roas": 3.1}],
    )


class TestBuildStrategyPrompt:
    def test_embeds_every_context_field(self, context):
        prompt = build_strategy_prompt(context, "sales", 30)

        assert "Glow Co" in prompt
        assert "Vitamin C Serum" in prompt
        assert '"roas": 1.8' in prompt
        assert '"status": "stable"' in prompt
        assert '"average_roas": 3.1' in prompt
        assert "CAMPAIGN GOAL: sales" in prompt
        assert "DURATION: 30 days" in prompt

    def test_labels_context_type(self, context):
        context.context_type = "service"
        assert "SERVICE CONTEXT" in build_strategy_prompt(context, "leads", 7)

    def test_asks_for_both_branches(self, context):
        prompt = build_strategy_prompt(context, "sales", 30)
        assert "free_strategy" in prompt
        assert "paid_strategy" in prompt
        assert "comparison" in prompt


class TestGenerateStrategy:
    @pytest.mark.asyncio
    async def test_valid_reply(self, context):
        text = MockTextClient([json.dumps(VALID_DECISION)])
        engine = DecisionEngine(text)

        decision = await engine.generate_strategy(context, "sales", 30)

        assert decision.free_strategy.platforms == ["instagram", "tiktok"]
        assert decision.paid_strategy.budget_recommendation == 50
        assert decision.paid_strategy.expected_outcomes["target_roas"] == 2.5
        assert decision.comparison.recommendation == "paid"

    @pytest.mark.asyncio
    async def test_uses_json_mode_and_system_prompt(self, context):
        text = MockTextClient([json.dumps(VALID_DECISION)])

        await DecisionEngine(text).generate_strategy(context, "sales", 30)

        assert text.call_count == 1
        assert text.calls[0]["json_mode"] is True
        assert text.calls[0]["system_prompt"] == SYSTEM_PROMPT
        assert "CAMPAIGN GOAL: sales" in text.calls[0]["payload"]

    @pytest.mark.asyncio
    async def test_fenced_reply_is_accepted(self, context):
        reply = f"```json\n{json.dumps(VALID_DECISION)}\n```"
        decision = await DecisionEngine(MockTextClient([reply])).generate_strategy(
            context, "awareness", 14
        )
        assert decision.free_strategy.platforms

    @pytest.mark.asyncio
    async def test_unparseable_reply_raises(self, context):
        engine = DecisionEngine(MockTextClient(["Here is your strategy: ..."]))
        with pytest.raises(GenerationError) as exc:
            await engine.generate_strategy(context, "sales", 30)
        assert "Here is your strategy" in exc.value.raw_text

    @pytest.mark.asyncio
    async def test_missing_branch_raises(self, context):
        partial = {k: v for k, v in VALID_DECISION.items() if k != "paid_strategy"}
        engine = DecisionEngine(MockTextClient([json.dumps(partial)]))
        with pytest.raises(GenerationError, match="wrong shape"):
            await engine.generate_strategy(context, "sales", 30)

    @pytest.mark.asyncio
    async def test_non_numeric_budget_raises(self, context):
        bad = json.loads(json.dumps(VALID_DECISION))
        bad["paid_strategy"]["budget_recommendation"] = "a lot"
        engine = DecisionEngine(MockTextClient([json.dumps(bad)]))
        with pytest.raises(GenerationError):
            await engine.generate_strategy(context, "sales", 30)

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self, context):
        text = MockTextClient(["not json", json.dumps(VALID_DECISION)])
        with pytest.raises(GenerationError):
            await DecisionEngine(text).generate_strategy(context, "sales", 30)
        assert text.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("goal,duration", [("", 30), ("   ", 30), ("sales", 0)])
    async def test_invalid_arguments(self, context, goal, duration):
        text = MockTextClient([json.dumps(VALID_DECISION)])
        with pytest.raises(ValueError):
            await DecisionEngine(text).generate_strategy(context, goal, duration)
        assert text.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_context_still_generates(self):
        text = MockTextClient([json.dumps(VALID_DECISION)])
        decision = await DecisionEngine(text).generate_strategy(
            ContextBundle(), "sales", 30
        )
        assert decision.comparison.summary


class TestEvaluateRisk:
    def test_prompt(self):
        prompt = build_risk_prompt("Lose 10kg in a week!", "facebook")
        assert "facebook advertising policies" in prompt
        assert "Lose 10kg in a week!" in prompt

    @pytest.mark.asyncio
    async def test_valid_reply(self):
        reply = json.dumps({
            "compliant": False,
            "risk_level": "high",
            "issues": ["Unrealistic health claim"],
        })
        risk = await DecisionEngine(MockTextClient([reply])).evaluate_risk(
            "Lose 10kg in a week!", "facebook"
        )
        assert risk.compliant is False
        assert risk.risk_level == "high"
        assert risk.issues == ["Unrealistic health claim"]

    @pytest.mark.asyncio
    async def test_unknown_risk_level_raises(self):
        reply = json.dumps({"compliant": True, "risk_level": "extreme"})
        with pytest.raises(GenerationError):
            await DecisionEngine(MockTextClient([reply])).evaluate_risk("hi", "tiktok")

    @pytest.mark.asyncio
    async def test_unparseable_reply_raises(self):
        with pytest.raises(GenerationError):
            await DecisionEngine(MockTextClient(["maybe?"])).evaluate_risk("hi", "facebook")
