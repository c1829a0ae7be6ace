"""
Learning Loop: turns finished strategies into reusable patterns.

Runs once a day over strategies that were completed or paused within the
lookback window. For each one the text model is asked for the patterns
behind its result:

    {"patterns": [{"type": "positive", "insight": "...",
                   "confidence": 0.9, "applicability": "global"}],
     "suggested_profile_update": {"performance_patterns": {...}}}

Two writes follow:
1. The suggested performance_patterns are merged into the owner's
   user_memory row (new keys win).
2. If the strategy beat the ROAS threshold and at least one confident
   global pattern was found, the category's global_strategy_memory row
   folds the strategy's ROAS into its running average.

Both feed MemoryRetriever, so the next generated strategy sees them.

Usage:
    loop = LearningLoop(db, text_client)
    report = await loop.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from adroom.config.schema import LearningSettings
from adroom.exceptions import DependencyError, GenerationError
from adroom.models import StrategyRecord
from adroom.observability.logging_config import run_context

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"

LEARNING_PROMPT = """\
Analyze the performance of this marketing strategy.
Identify specific patterns that led to success or failure.

Extract 3-5 key learnings as a JSON object:
{
  "patterns": [
    {
      "type": "positive" | "negative",
      "insight": "Video ads on TikTok outperformed images by 40%",
      "confidence": 0.9,
      "applicability": "category_specific" | "global"
    }
  ],
  "suggested_profile_update": {
    "performance_patterns": { ...new patterns to merge into the user profile... }
  }
}"""


@dataclass
class LearningReport:
    strategies_analyzed: int = 0
    profiles_updated: int = 0
    global_updates: int = 0
    insights: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategies_analyzed": self.strategies_analyzed,
            "profiles_updated": self.profiles_updated,
            "global_updates": self.global_updates,
            "insights": len(self.insights),
            "errors": list(self.errors),
        }


def performance_summary(
    strategy: StrategyRecord, category: Optional[str]
) -> dict[str, Any]:
    """The figures the model sees for one strategy."""
    return {
        "goal": strategy.goal,
        "duration": strategy.duration_days,
        "spend": strategy.total_spend,
        "roas": strategy.roas,
        "clicks": strategy.clicks,
        "impressions": strategy.impressions,
        "platform_breakdown": strategy.platform_data,
        "optimizations": [
            entry.model_dump(mode="json") for entry in strategy.optimizations_applied
        ],
        "product_category": category,
    }


def _confidence(pattern: dict[str, Any]) -> float:
    try:
        return float(pattern.get("confidence") or 0)
    except (TypeError, ValueError):
        return 0.0


class LearningLoop:
    """
    Daily analysis of finished strategies.

    A failure on one strategy (model, parse or store) is logged and the
    loop moves on to the next.
    """

    def __init__(
        self,
        db: Any,
        text_client: Any,
        settings: Optional[LearningSettings] = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.text = text_client
        self.settings = settings or LearningSettings()
        self._clock = clock

    async def run(self) -> LearningReport:
        report = LearningReport()
        with run_context("learn"):
            since = self._clock() - timedelta(hours=self.settings.lookback_hours)
            strategies = self.db.list_finished_strategies(
                since, limit=self.settings.batch_size
            )
            logger.info(
                "learning_cycle_started",
                extra={"strategy_count": len(strategies)},
            )

            for strategy in strategies:
                try:
                    await self.learn_from_strategy(strategy, report)
                except Exception as e:
                    logger.error(
                        "learning_failed",
                        extra={"strategy_id": strategy.strategy_id, "error": str(e)[:200]},
                    )
                    report.errors.append(f"{strategy.strategy_id}: {e}")

            logger.info("learning_cycle_completed", extra=report.to_dict())
            return report

    async def learn_from_strategy(
        self, strategy: StrategyRecord, report: LearningReport
    ) -> Optional[dict[str, Any]]:
        """
        Analyze one strategy and apply what was learned.

        Returns:
            The parsed learnings, or None if the model gave nothing usable.
        """
        category = self._category(strategy)
        try:
            learnings = await self.text.complete_json(
                LEARNING_PROMPT, performance_summary(strategy, category)
            )
        except (GenerationError, DependencyError) as e:
            logger.warning(
                "learning_analysis_failed",
                extra={"strategy_id": strategy.strategy_id, "error": str(e)[:200]},
            )
            return None
        report.strategies_analyzed += 1
        if not isinstance(learnings, dict):
            return None

        update = learnings.get("suggested_profile_update") or {}
        patterns = update.get("performance_patterns") if isinstance(update, dict) else None
        if isinstance(patterns, dict) and patterns:
            if self.merge_profile_patterns(strategy.user_id, patterns):
                report.profiles_updated += 1

        if self._has_global_pattern(learnings) and strategy.roas > self.settings.global_roas_threshold:
            if self.fold_into_global_stats(category or DEFAULT_CATEGORY, strategy.roas):
                report.global_updates += 1

        report.insights.append({"strategy_id": strategy.strategy_id, "learnings": learnings})
        return learnings

    def merge_profile_patterns(self, user_id: str, patterns: dict[str, Any]) -> bool:
        """Merge new patterns over the profile's existing ones. False if no profile."""
        profile = self.db.get_user_memory(user_id)
        if profile is None:
            return False
        merged = {**(profile.get("performance_patterns") or {}), **patterns}
        self.db.update_user_memory(user_id, {"performance_patterns": merged})
        logger.info(
            "profile_patterns_merged",
            extra={"user_id": user_id, "pattern_keys": sorted(patterns)},
        )
        return True

    def fold_into_global_stats(self, category: str, roas: float) -> bool:
        """Add one strategy's ROAS to the category's running average."""
        stats = self.db.get_global_stats(category)
        if stats is None:
            return False
        count = int(stats.get("total_strategies_run") or 0) + 1
        average = float(stats.get("average_roas") or 0)
        new_average = (average * (count - 1) + roas) / count
        self.db.update_global_stats(stats["id"], {
            "total_strategies_run": count,
            "average_roas": new_average,
        })
        logger.info(
            "global_stats_updated",
            extra={"category": category, "average_roas": round(new_average, 3)},
        )
        return True

    def _has_global_pattern(self, learnings: dict[str, Any]) -> bool:
        patterns = learnings.get("patterns") or []
        return any(
            isinstance(p, dict)
            and p.get("applicability") == "global"
            and _confidence(p) > self.settings.global_confidence_threshold
            for p in patterns
        )

    def _category(self, strategy: StrategyRecord) -> Optional[str]:
        if not strategy.product_id:
            return None
        product = self.db.get_context_record("product", strategy.product_id)
        return (product or {}).get("category")
