"""
Execution Engine: publishes scheduled content and ingests ad metrics.

Runs every 15 minutes over every active strategy:

1. Content: calendar posts scheduled within the last hour and not yet
   posted are published to the owner's Facebook page and marked posted.
   A failed post stays unposted and is reported in the pass result.
2. Metrics (paid strategies with a daily budget): lifetime insights are
   pulled and total_spend / roas / clicks / impressions recomputed. An
   insights failure keeps the last known values.
3. Budget guardrail: once total_spend reaches budget_total the strategy is
   paused and a priority-1 budget_exhausted entry is logged.

The ROAS written here is what the optimization loop classifies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx

from adroom.exceptions import AdPlatformError
from adroom.models import (
    AdPlatformConfig,
    IntelligenceLogEntry,
    ScheduledPost,
    StrategyRecord,
    StrategyStatus,
)
from adroom.observability.logging_config import run_context

logger = logging.getLogger(__name__)

POST_GRACE_PERIOD = timedelta(hours=1)

BUDGET_EXHAUSTED_TYPE = "budget_exhausted"
BUDGET_EXHAUSTED_NOTE = "[System] Paused due to budget exhaustion."


@dataclass
class ExecutionReport:
    """Outcome of one execution pass."""

    posts_published: list[dict[str, Any]] = field(default_factory=list)
    posts_failed: list[dict[str, Any]] = field(default_factory=list)
    metrics_updated: list[dict[str, Any]] = field(default_factory=list)
    strategies_paused: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "posts_published": self.posts_published,
            "posts_failed": self.posts_failed,
            "metrics_updated": self.metrics_updated,
            "strategies_paused": self.strategies_paused,
        }


def due_posts(
    posts: list[ScheduledPost],
    now: datetime,
    grace: timedelta = POST_GRACE_PERIOD,
) -> list[ScheduledPost]:
    """Unposted calendar entries scheduled in the window (now - grace, now]."""
    return [
        post for post in posts
        if not post.posted and now - grace < post.scheduled_time <= now
    ]


class ExecutionEngine:
    """
    One pass of content execution and metrics ingestion.

    Collaborators are injected: `db` (AdRoomDB) and `ads`
    (FacebookAdsClient or a double).
    """

    def __init__(
        self,
        db: Any,
        ads: Any,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.ads = ads
        self._clock = clock

    async def run(self) -> ExecutionReport:
        report = ExecutionReport()
        with run_context("execute"):
            strategies = self.db.list_active_strategies()
            logger.info(
                "execution_cycle_started",
                extra={"strategy_count": len(strategies)},
            )
            for strategy in strategies:
                try:
                    await self.execute_strategy(strategy, report)
                except Exception as e:
                    logger.error(
                        "execution_failed",
                        extra={
                            "strategy_id": strategy.strategy_id,
                            "error": str(e)[:200],
                        },
                    )
            logger.info(
                "execution_cycle_completed",
                extra={
                    "published": len(report.posts_published),
                    "failed": len(report.posts_failed),
                    "paused": len(report.strategies_paused),
                },
            )
            return report

    async def execute_strategy(
        self, strategy: StrategyRecord, report: ExecutionReport
    ) -> dict[str, Any]:
        """
        Publish due posts, refresh metrics and apply the budget guardrail.

        Returns:
            The updates written to the strategy row (empty if none).
        """
        config = self.db.get_ad_config(strategy.user_id)
        updates: dict[str, Any] = {}

        if await self._publish_due_posts(strategy, config, report):
            updates["content_calendar"] = strategy.content_calendar

        if strategy.is_paid and (strategy.budget_daily or 0) > 0:
            metrics = await self._ingest_metrics(strategy, config)
            if metrics is not None:
                updates.update(metrics)
                report.metrics_updated.append(
                    {"strategy_id": strategy.strategy_id, **metrics}
                )

            total_spend = updates.get("total_spend", strategy.total_spend)
            if strategy.budget_total is not None and total_spend >= strategy.budget_total:
                updates["status"] = StrategyStatus.PAUSED.value
                updates["notes"] = (
                    f"{strategy.notes}\n{BUDGET_EXHAUSTED_NOTE}"
                    if strategy.notes else BUDGET_EXHAUSTED_NOTE
                )
                self.db.insert_intelligence(IntelligenceLogEntry(
                    intelligence_type=BUDGET_EXHAUSTED_TYPE,
                    priority=1,
                    platform="system",
                    summary=(
                        f"Strategy Paused: {strategy.strategy_name or strategy.strategy_id} "
                        f"reached budget limit."
                    ),
                    details={
                        "strategy_id": strategy.strategy_id,
                        "total_spend": total_spend,
                        "budget_total": strategy.budget_total,
                    },
                    affected_strategies=[strategy.strategy_id],
                ))
                report.strategies_paused.append(strategy.strategy_id)
                logger.warning(
                    "budget_exhausted",
                    extra={
                        "strategy_id": strategy.strategy_id,
                        "total_spend": total_spend,
                        "budget_total": strategy.budget_total,
                    },
                )

        if updates:
            self.db.update_strategy(strategy.strategy_id, updates)
        return updates

    # ─── Content ───────────────────────────────────────────────────────

    async def _publish_due_posts(
        self,
        strategy: StrategyRecord,
        config: Optional[AdPlatformConfig],
        report: ExecutionReport,
    ) -> bool:
        """Publish due posts in place. Returns True if any post was marked."""
        now = self._clock()
        changed = False

        for post in due_posts(strategy.content_calendar.posts, now):
            try:
                if "facebook" not in post.platform:
                    raise AdPlatformError(f"Unsupported platform: {post.platform}")
                if config is None or not config.access_token or not config.page_id:
                    raise AdPlatformError("Missing Facebook configuration or token.")
                result = await self.ads.post_content(
                    config.access_token, config.page_id, post.content, post.image_url
                )
            except (AdPlatformError, httpx.HTTPError) as e:
                logger.warning(
                    "scheduled_post_failed",
                    extra={
                        "strategy_id": strategy.strategy_id,
                        "post_id": post.id,
                        "error": str(e)[:200],
                    },
                )
                report.posts_failed.append({
                    "strategy_id": strategy.strategy_id,
                    "post_id": post.id,
                    "error": str(e),
                })
                continue

            post.posted = True
            post.posted_at = now
            post.platform_post_id = result.get("id")
            changed = True
            report.posts_published.append({
                "strategy_id": strategy.strategy_id,
                "post_id": post.id,
                "platform_post_id": post.platform_post_id,
            })

        return changed

    # ─── Metrics ───────────────────────────────────────────────────────

    async def _ingest_metrics(
        self,
        strategy: StrategyRecord,
        config: Optional[AdPlatformConfig],
    ) -> Optional[dict[str, Any]]:
        if config is None or not config.access_token or not config.ad_account_id:
            logger.info(
                "metrics_skipped_no_config",
                extra={"strategy_id": strategy.strategy_id},
            )
            return None

        try:
            insights = await self.ads.get_insights(
                config.access_token,
                config.ad_account_id,
                strategy.platform_campaign_id,
                date_preset="maximum",
            )
        except (AdPlatformError, httpx.HTTPError) as e:
            logger.warning(
                "metrics_fetch_failed",
                extra={"strategy_id": strategy.strategy_id, "error": str(e)[:200]},
            )
            return None

        if insights is None:
            return None
        return {
            "total_spend": insights.spend,
            "roas": insights.roas,
            "clicks": insights.clicks,
            "impressions": insights.impressions,
        }
