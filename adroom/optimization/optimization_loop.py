"""
Optimization Loop: tiered ROAS response for active paid strategies.

Runs once per invocation (every 6 hours in production) over every
strategy with status "active" and version "paid". For each one the stored
ROAS is compared with the strategy's target and the ratio is classified
into one action:

    ratio < 0.1   PAUSE_AND_ALERT   pause campaign, mark paused, priority-1 alert
    ratio < 0.2   PAUSE_AD_SET      pause campaign
    ratio < 0.4   SWAP_CREATIVE     log only
    ratio < 0.6   REFINE_AUDIENCE   log only
    ratio < 0.8   LOWER_BID         daily budget -10%
    ratio > 1.2   SCALE_UP          daily budget +20%

Thresholds are strict and checked most severe first, so a ratio sitting on
a threshold falls into the next less severe bucket (0.8 -> no action).

ROAS itself is recomputed by the execution engine; a stored ROAS of 0
means "no data yet" and the strategy is skipped.

Safety Model:
1. Ad platform failures are recorded in the action's reason, never raised
2. A failure on one strategy never stops the others
3. Every action is appended to the strategy's optimization log (max 50)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from adroom.config.schema import OptimizationSettings
from adroom.exceptions import AdPlatformError
from adroom.models import (
    IntelligenceLogEntry,
    OptimizationAction,
    OptimizationLogEntry,
    StrategyRecord,
    StrategyStatus,
    StrategyVersion,
)
from adroom.observability.logging_config import run_context

logger = logging.getLogger(__name__)


# ── Tier Constants ───────────────────────────────────────────

# (tier, ratio threshold, action), most severe first
OPTIMIZATION_TIERS: tuple[tuple[int, float, OptimizationAction], ...] = (
    (5, 0.1, OptimizationAction.PAUSE_AND_ALERT),
    (4, 0.2, OptimizationAction.PAUSE_AD_SET),
    (3, 0.4, OptimizationAction.SWAP_CREATIVE),
    (2, 0.6, OptimizationAction.REFINE_AUDIENCE),
    (1, 0.8, OptimizationAction.LOWER_BID),
)

SCALE_UP_THRESHOLD = 1.2

PAUSE_ACTIONS = frozenset({
    OptimizationAction.PAUSE_AND_ALERT,
    OptimizationAction.PAUSE_AD_SET,
})

BUDGET_ACTIONS = frozenset({
    OptimizationAction.LOWER_BID,
    OptimizationAction.SCALE_UP,
})

ACTION_REASONS = {
    OptimizationAction.PAUSE_AND_ALERT: (
        "Critical Underperformance (ROAS {roas:.2f} vs Target {target}). "
        "Immediate intervention required."
    ),
    OptimizationAction.PAUSE_AD_SET: (
        "Significant underperformance. Pausing low-performing ad sets "
        "to conserve budget."
    ),
    OptimizationAction.SWAP_CREATIVE: (
        "Creative fatigue detected. Rotating to fresh assets."
    ),
    OptimizationAction.REFINE_AUDIENCE: (
        "Audience match low. Narrowing targeting parameters."
    ),
    OptimizationAction.LOWER_BID: (
        "ROAS slightly below target. Lowering daily budget by 10%."
    ),
    OptimizationAction.SCALE_UP: (
        "High Performance! Increasing daily budget by 20%."
    ),
}

CRITICAL_INTELLIGENCE_TYPE = "performance_critical"


def classify_performance(ratio: float) -> Optional[OptimizationAction]:
    """Pick the optimization action for a ROAS / target ratio, if any."""
    for _tier, threshold, action in OPTIMIZATION_TIERS:
        if ratio < threshold:
            return action
    if ratio > SCALE_UP_THRESHOLD:
        return OptimizationAction.SCALE_UP
    return None


def append_log_entry(
    log: list[OptimizationLogEntry],
    entry: OptimizationLogEntry,
    max_entries: int = 50,
) -> list[OptimizationLogEntry]:
    """Return a new log with `entry` appended, dropping the oldest past the cap."""
    return [*log, entry][-max_entries:]


@dataclass
class OptimizationResult:
    """What the loop did to one strategy."""

    strategy_id: str
    action: OptimizationAction
    reason: str
    performance_ratio: float
    budget_before: Optional[int] = None
    budget_after: Optional[int] = None
    api_executed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy_id": self.strategy_id,
            "action": self.action.value,
            "reason": self.reason,
            "performance_ratio": round(self.performance_ratio, 4),
            "budget_before": self.budget_before,
            "budget_after": self.budget_after,
            "api_executed": self.api_executed,
        }


class OptimizationLoop:
    """
    One pass of tiered optimization over active paid strategies.

    Collaborators are injected: `db` (AdRoomDB) and `ads`
    (FacebookAdsClient or a double).
    """

    def __init__(
        self,
        db: Any,
        ads: Any,
        settings: Optional[OptimizationSettings] = None,
    ):
        self.db = db
        self.ads = ads
        self.settings = settings or OptimizationSettings()

    async def run(self) -> list[OptimizationResult]:
        """
        Optimize every active paid strategy, in store order.

        Returns:
            One OptimizationResult per strategy that triggered an action.
        """
        with run_context("optimize"):
            strategies = self.db.list_active_strategies(StrategyVersion.PAID)
            logger.info(
                "optimization_loop_started",
                extra={"strategy_count": len(strategies)},
            )

            results: list[OptimizationResult] = []
            for strategy in strategies:
                try:
                    result = await self.optimize_strategy(strategy)
                except Exception as e:
                    logger.error(
                        "optimization_failed",
                        extra={
                            "strategy_id": strategy.strategy_id,
                            "error": str(e)[:200],
                        },
                    )
                    continue
                if result is not None:
                    results.append(result)

            logger.info(
                "optimization_loop_completed",
                extra={"actions": len(results)},
            )
            return results

    async def optimize_strategy(
        self, strategy: StrategyRecord
    ) -> Optional[OptimizationResult]:
        """Classify one strategy and apply its action. None if no action."""
        current_roas = strategy.roas or 0
        if current_roas == 0:
            logger.info(
                "optimization_skipped_no_roas",
                extra={"strategy_id": strategy.strategy_id},
            )
            return None

        target_roas = strategy.target_roas or self.settings.default_target_roas
        ratio = current_roas / target_roas
        action = classify_performance(ratio)
        if action is None:
            return None

        logger.info(
            "optimization_triggered",
            extra={
                "strategy_id": strategy.strategy_id,
                "action": action.value,
                "performance_ratio": round(ratio, 4),
            },
        )

        reason = ACTION_REASONS[action].format(roas=current_roas, target=target_roas)
        budget_before = int(strategy.budget_daily or self.settings.fallback_daily_budget)
        budget_after = self._new_budget(action, budget_before)

        api_executed = False
        config = self.db.get_ad_config(strategy.user_id)
        token = config.access_token if config else None
        if token and strategy.platform_campaign_id:
            try:
                await self._execute_on_platform(
                    action, token, strategy.platform_campaign_id, budget_after
                )
                api_executed = action in PAUSE_ACTIONS or action in BUDGET_ACTIONS
            except (AdPlatformError, httpx.HTTPError) as e:
                logger.warning(
                    "optimization_api_failed",
                    extra={
                        "strategy_id": strategy.strategy_id,
                        "action": action.value,
                        "error": str(e)[:200],
                    },
                )
                reason += f" [API Execution Failed: {e}]"
        else:
            reason += " [Skipped API: No Token or Campaign ID]"

        entry = OptimizationLogEntry(
            action=action,
            reason=reason,
            metrics_before={
                "roas": current_roas,
                "target_roas": target_roas,
                "performance_ratio": round(ratio, 4),
                "budget_daily": budget_before,
            },
            metrics_after={
                "roas": current_roas,
                "budget_daily": budget_after if budget_after is not None else budget_before,
            },
        )
        updates: dict[str, Any] = {
            "optimizations_applied": append_log_entry(
                strategy.optimizations_applied,
                entry,
                self.settings.max_log_entries,
            ),
        }
        if budget_after is not None:
            updates["budget_daily"] = budget_after
        if action == OptimizationAction.PAUSE_AND_ALERT:
            updates["status"] = StrategyStatus.PAUSED.value
            self.db.insert_intelligence(IntelligenceLogEntry(
                intelligence_type=CRITICAL_INTELLIGENCE_TYPE,
                priority=1,
                platform="system",
                summary=(
                    f"Strategy Halted: {strategy.strategy_name or strategy.strategy_id} "
                    f"critically underperforming."
                ),
                details={"strategy_id": strategy.strategy_id, "reason": reason},
                affected_strategies=[strategy.strategy_id],
            ))

        self.db.update_strategy(strategy.strategy_id, updates)

        return OptimizationResult(
            strategy_id=strategy.strategy_id,
            action=action,
            reason=reason,
            performance_ratio=ratio,
            budget_before=budget_before if budget_after is not None else None,
            budget_after=budget_after,
            api_executed=api_executed,
        )

    def _new_budget(self, action: OptimizationAction, budget: int) -> Optional[int]:
        if action == OptimizationAction.SCALE_UP:
            return math.floor(budget * self.settings.scale_up_factor)
        if action == OptimizationAction.LOWER_BID:
            return math.floor(budget * self.settings.lower_bid_factor)
        return None

    async def _execute_on_platform(
        self,
        action: OptimizationAction,
        token: str,
        campaign_id: str,
        new_budget: Optional[int],
    ) -> None:
        if action in PAUSE_ACTIONS:
            await self.ads.update_campaign(token, campaign_id, status="PAUSED")
        elif action in BUDGET_ACTIONS and new_budget is not None:
            await self.ads.update_campaign(token, campaign_id, daily_budget=new_budget)
