"""
Decision Engine: turns a context bundle into a two-branch strategy.

Builds one instruction embedding the user's profile, strategy history,
product/service record, platform status, global trends, goal and duration,
and asks the text model for a strict JSON document with a free (organic)
branch, a paid branch, and a comparison.

A reply that is not JSON, or not shaped like a StrategyDecision, raises
GenerationError. There is no retry and no fallback template.

Usage:
    engine = DecisionEngine(text_client)
    decision = await engine.generate_strategy(context, "sales", 30)
    risk = await engine.evaluate_risk("Buy now!", "facebook")
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from adroom.exceptions import GenerationError
from adroom.models import ContextBundle, RiskAssessment, StrategyDecision

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are the AdRoom AI Core Brain. You are an expert marketing "
    "strategist capable of generating comprehensive, data-driven "
    "marketing strategies."
)

STRATEGY_OUTPUT_FORMAT = """{
  "free_strategy": {
    "platforms": ["..."],
    "content_plan": { ... },
    "engagement_plan": { ... },
    "expected_outcomes": { ... }
  },
  "paid_strategy": {
    "platforms": ["..."],
    "budget_recommendation": number,
    "content_plan": { ... },
    "campaign_structure": { ... },
    "expected_outcomes": { "target_roas": number, ... }
  },
  "comparison": {
    "summary": "...",
    "recommendation": "..."
  }
}"""

RISK_OUTPUT_FORMAT = (
    '{ "compliant": boolean, "risk_level": "low"|"medium"|"high", "issues": [] }'
)


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def build_strategy_prompt(
    context: ContextBundle, goal: str, duration_days: int
) -> str:
    """Render the strategy instruction for one context bundle."""
    return f"""
Generate a comprehensive marketing strategy based on the following context.

USER CONTEXT:
- Profile: {_dump(context.user)}
- History: {_dump(context.history)}

{context.context_type.upper()} CONTEXT:
- Details: {_dump(context.context)}

GLOBAL INTELLIGENCE:
- Platform Status: {_dump(context.platform_status)}
- Global Trends: {_dump(context.global_trends)}

CAMPAIGN GOAL: {goal}
DURATION: {duration_days} days

TASK:
Generate TWO detailed strategies:
1. A FREE (Organic) Strategy: content, community and viral growth. No ad spend.
2. A PAID (Ads) Strategy: ROAS, targeting and scaling. Include a numeric
   daily budget recommendation.

For each strategy, provide:
- Platform selection (why these platforms?)
- Content pillars and schedule
- Engagement tactics
- Expected outcomes (reach, engagement, conversions)
- Key risks and mitigation

Output ONLY valid JSON in the following format:
{STRATEGY_OUTPUT_FORMAT}
""".strip()


def build_risk_prompt(content: str, platform: str) -> str:
    return (
        f"Evaluate the following content for compliance with {platform} "
        f"advertising policies.\n"
        f'Content: "{content}"\n\n'
        f"Return JSON: {RISK_OUTPUT_FORMAT}"
    )


class DecisionEngine:
    """Strategy generation and content risk evaluation."""

    def __init__(self, text_client: Any):
        self.text = text_client

    async def generate_strategy(
        self,
        context: ContextBundle,
        goal: str,
        duration_days: int,
    ) -> StrategyDecision:
        """
        Generate the free and paid strategies for a goal and duration.

        Raises:
            ValueError: If goal is empty or duration_days is not positive.
            GenerationError: If the reply is not a valid StrategyDecision.
        """
        if not goal or not goal.strip():
            raise ValueError("goal must not be empty")
        if duration_days <= 0:
            raise ValueError("duration_days must be positive")

        logger.info(
            "strategy_generation_started",
            extra={
                "goal": goal,
                "duration_days": duration_days,
                "degraded_reads": context.errors,
            },
        )

        prompt = build_strategy_prompt(context, goal, duration_days)
        parsed = await self.text.complete_json(SYSTEM_PROMPT, prompt)

        try:
            decision = StrategyDecision.model_validate(parsed)
        except ValidationError as e:
            raise GenerationError(
                f"Strategy reply has the wrong shape: {e.error_count()} error(s)",
                raw_text=_dump(parsed),
                details={"errors": e.errors(include_url=False)},
            ) from e

        logger.info(
            "strategy_generated",
            extra={
                "free_platforms": decision.free_strategy.platforms,
                "paid_platforms": decision.paid_strategy.platforms,
                "budget_recommendation": decision.paid_strategy.budget_recommendation,
            },
        )
        return decision

    async def evaluate_risk(self, content: str, platform: str) -> RiskAssessment:
        """
        Single-shot policy compliance check for one piece of content.

        Raises:
            GenerationError: If the reply is not a valid RiskAssessment.
        """
        parsed = await self.text.complete_json(
            SYSTEM_PROMPT, build_risk_prompt(content, platform)
        )
        try:
            return RiskAssessment.model_validate(parsed)
        except ValidationError as e:
            raise GenerationError(
                "Risk reply has the wrong shape",
                raw_text=_dump(parsed),
            ) from e
