"""
Autonomous Worker: the recurring engagement sweep.

One call to `run()` is one sweep (every 15 minutes in production):

1. Daily post: for each active strategy whose owner has a connected page,
   publish generated copy unless the page already posted in the last 24h.
2. Interactions: like and reply to pending comments, reply to pending
   direct messages.
3. Lead follow-up: message up to 10 leads, stalest first, that were
   contacted more than 24h ago and mark them follow_up_sent. Repeated
   send failures end in follow_up_failed.

Each comment/message flag is claimed with a conditional update before the
platform call, so two overlapping sweeps never act on the same record. A
failed platform call releases the claim for a later sweep.

Inbound webhooks (new comment, new message, scheduled task) go through
`handle_event()`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from adroom.config.schema import WorkerSettings
from adroom.integrations.supabase_client import INTERACTION_TABLES
from adroom.models import (
    AdPlatformConfig,
    InteractionRecord,
    LeadRecord,
    LeadStatus,
    StrategyRecord,
)
from adroom.observability.logging_config import run_context

logger = logging.getLogger(__name__)

DAILY_POST_PROMPT = "Write a short, engaging Facebook post."

COMMENT_REPLY_PROMPT = (
    "You are an engaging human social media manager. Reply to the comment "
    "naturally. Keep it short. Do NOT sound like a bot."
)

MESSAGE_REPLY_PROMPT = (
    "You are a helpful customer support agent for the brand. Reply to the "
    "DM warmly and helpfully. Do NOT sound like a bot."
)

_GRAPH_OFFSET_RE = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_graph_time(value: str) -> datetime:
    """Parse a Graph API timestamp such as 2024-05-01T10:00:00+0000."""
    normalized = _GRAPH_OFFSET_RE.sub(r"\1:\2", value.strip())
    parsed = datetime.fromisoformat(normalized.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class WorkerReport:
    """Counters for one sweep."""

    posts_published: int = 0
    posts_skipped: int = 0
    posts_blocked: int = 0
    users_without_config: int = 0
    interactions_handled: int = 0
    leads_followed_up: int = 0
    leads_failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "posts_published": self.posts_published,
            "posts_skipped": self.posts_skipped,
            "posts_blocked": self.posts_blocked,
            "users_without_config": self.users_without_config,
            "interactions_handled": self.interactions_handled,
            "leads_followed_up": self.leads_followed_up,
            "leads_failed": self.leads_failed,
            "errors": list(self.errors),
        }


class AutonomousWorker:
    """
    Sequential engagement sweep over active strategies, interactions
    and leads.

    Collaborators are injected: `db` (AdRoomDB), `ads` (FacebookAdsClient),
    `text_client` (TextClient) and, optionally, a ContentModerator used
    when `settings.moderate_daily_posts` is on.
    """

    def __init__(
        self,
        db: Any,
        ads: Any,
        text_client: Any,
        moderator: Any = None,
        settings: Optional[WorkerSettings] = None,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.ads = ads
        self.text = text_client
        self.moderator = moderator
        self.settings = settings or WorkerSettings()
        self._clock = clock

    # ─── Sweep ─────────────────────────────────────────────────────────

    async def run(self) -> WorkerReport:
        """Run one full sweep. Per-record failures are logged, not raised."""
        report = WorkerReport()
        with run_context("worker"):
            strategies = self.db.list_active_strategies()
            logger.info(
                "worker_cycle_started",
                extra={"strategy_count": len(strategies)},
            )

            for strategy in strategies:
                try:
                    config = self.db.get_ad_config(strategy.user_id)
                    if config is None or not config.access_token or not config.page_id:
                        report.users_without_config += 1
                        continue
                    await self.check_and_execute_daily_post(config, strategy, report)
                except Exception as e:
                    self._record_error(report, "daily_post", strategy.strategy_id, e)

            await self.process_pending_interactions(report)
            await self.follow_up_leads(report)

            logger.info("worker_cycle_completed", extra=report.to_dict())
            return report

    # ─── Daily Post ────────────────────────────────────────────────────

    async def check_and_execute_daily_post(
        self,
        config: AdPlatformConfig,
        strategy: StrategyRecord,
        report: WorkerReport,
    ) -> Optional[dict[str, Any]]:
        """
        Publish generated copy if the page has not posted recently.

        Returns:
            The Graph API response for a published post, else None.
        """
        latest = await self.ads.get_latest_post(config.access_token, config.page_id)
        if latest and latest.get("created_time"):
            window_start = self._clock() - timedelta(hours=self.settings.post_window_hours)
            try:
                if parse_graph_time(latest["created_time"]) > window_start:
                    report.posts_skipped += 1
                    logger.info(
                        "daily_post_exists",
                        extra={"user_id": config.user_id},
                    )
                    return None
            except ValueError:
                logger.warning(
                    "daily_post_time_unparseable",
                    extra={"user_id": config.user_id, "created_time": latest["created_time"]},
                )

        topic = strategy.strategy_name or strategy.goal or "our latest news"
        tone = strategy.brand_voice or "friendly"
        content = await self.text.complete(
            DAILY_POST_PROMPT, f"Topic: {topic}. Tone: {tone}."
        )

        if self.settings.moderate_daily_posts and self.moderator is not None:
            verdict = self.moderator.analyze(content)
            if not verdict.is_safe:
                report.posts_blocked += 1
                logger.warning(
                    "daily_post_blocked",
                    extra={"user_id": config.user_id, "issues": verdict.issues},
                )
                return None

        result = await self.ads.post_content(config.access_token, config.page_id, content)
        report.posts_published += 1
        logger.info(
            "daily_post_published",
            extra={"user_id": config.user_id, "strategy_id": strategy.strategy_id},
        )
        return result

    # ─── Interactions ──────────────────────────────────────────────────

    async def process_pending_interactions(self, report: WorkerReport) -> None:
        """
        Answer pending comments and messages, oldest first.

        Only owners with a connected page are swept, so records that can
        never be answered do not crowd out the ones that can.
        """
        user_ids = self.db.list_configured_user_ids()
        if not user_ids:
            return
        for table in INTERACTION_TABLES:
            handler = self.handle_comment if table == "comments" else self.handle_message
            for record in self.db.list_pending_interactions(table, user_ids=user_ids):
                try:
                    if await handler(record):
                        report.interactions_handled += 1
                except Exception as e:
                    self._record_error(report, table, record.id, e)

    async def handle_comment(self, comment: InteractionRecord) -> bool:
        """
        Like and reply to one comment. Returns True if anything was done.

        Platform failures release the claimed flag and propagate.
        """
        config = self.db.get_ad_config(comment.user_id)
        if config is None or not config.access_token:
            logger.info("comment_no_config", extra={"user_id": comment.user_id})
            return False
        if not comment.external_id:
            self._close_unanswerable("comments", comment, "no_external_id")
            return False

        acted = False
        if not comment.is_liked and self.db.claim_flag("comments", comment.id, "is_liked"):
            try:
                await self.ads.like_object(config.access_token, comment.external_id)
            except Exception:
                self.db.release_flag("comments", comment.id, "is_liked")
                raise
            acted = True

        if not comment.is_replied and self.db.claim_flag("comments", comment.id, "is_replied"):
            try:
                reply = await self.text.complete(COMMENT_REPLY_PROMPT, comment.content)
                await self.ads.reply_to_comment(
                    config.access_token, comment.external_id, reply
                )
            except Exception:
                self.db.release_flag("comments", comment.id, "is_replied")
                raise
            self.db.update_interaction("comments", comment.id, {"reply_content": reply})
            acted = True

        return acted

    async def handle_message(self, message: InteractionRecord) -> bool:
        """Reply to one inbound direct message. Returns True if replied."""
        if message.is_from_page or message.is_replied:
            return False

        config = self.db.get_ad_config(message.user_id)
        if config is None or not config.access_token:
            return False
        if not message.sender_id:
            self._close_unanswerable("messages", message, "no_sender")
            return False

        if not self.db.claim_flag("messages", message.id, "is_replied"):
            return False
        try:
            reply = await self.text.complete(MESSAGE_REPLY_PROMPT, message.content)
            await self.ads.send_message(config.access_token, message.sender_id, reply)
        except Exception:
            self.db.release_flag("messages", message.id, "is_replied")
            raise
        self.db.update_interaction("messages", message.id, {"reply_content": reply})
        return True

    def _close_unanswerable(
        self, table: str, record: InteractionRecord, reason: str
    ) -> None:
        """Mark a record the page can never answer so sweeps stop selecting it."""
        if self.db.claim_flag(table, record.id, "is_replied"):
            logger.warning(
                "interaction_unanswerable",
                extra={"table": table, "record_id": record.id, "reason": reason},
            )

    # ─── Lead Follow-up ────────────────────────────────────────────────

    async def follow_up_leads(self, report: WorkerReport) -> None:
        """
        Message stale contacted leads.

        A failed send keeps the lead "contacted" and pushes its
        last_interaction forward, so it is retried one full window later
        and stale healthy leads are not held behind it. After
        `max_follow_up_attempts` failures the lead is marked
        follow_up_failed. A lead with no messaging channel is marked sent.
        """
        cutoff = self._clock() - timedelta(hours=self.settings.follow_up_after_hours)
        leads = self.db.list_leads_due_for_follow_up(
            cutoff, limit=self.settings.lead_batch_size
        )

        for lead in leads:
            try:
                note = await self._send_follow_up(lead)
            except Exception as e:
                report.leads_failed += 1
                self._record_error(report, "lead_follow_up", lead.id, e)
                attempts = lead.follow_up_attempts + 1
                updates: dict[str, Any] = {
                    "follow_up_attempts": attempts,
                    "last_interaction": self._clock(),
                    "notes": f"Auto follow-up failed: {e}",
                }
                if attempts >= self.settings.max_follow_up_attempts:
                    updates["status"] = LeadStatus.FOLLOW_UP_FAILED.value
                self.db.update_lead(lead.id, updates)
                continue

            self.db.update_lead(lead.id, {
                "status": LeadStatus.FOLLOW_UP_SENT.value,
                "last_interaction": self._clock(),
                "notes": note,
            })
            report.leads_followed_up += 1

    async def _send_follow_up(self, lead: LeadRecord) -> str:
        config = self.db.get_ad_config(lead.user_id) if lead.user_id else None
        if not lead.sender_id or config is None or not config.access_token:
            return "Auto follow-up skipped: no messaging channel"
        await self.ads.send_message(
            config.access_token, lead.sender_id, self.settings.follow_up_message
        )
        return "Auto follow-up sent"

    # ─── Webhooks ──────────────────────────────────────────────────────

    async def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """
        Dispatch one inbound database webhook.

        Payload: {"type": "INSERT", "table": "comments", "record": {...}}
        or {"type": "SCHEDULED_TASK"} for the lead follow-up.
        """
        event_type = event.get("type")
        table = event.get("table")

        if event_type == "SCHEDULED_TASK":
            report = WorkerReport()
            await self.follow_up_leads(report)
            return {"handled": "follow_up", **report.to_dict()}

        if event_type == "INSERT" and table in INTERACTION_TABLES:
            record = InteractionRecord.model_validate(event.get("record") or {})
            if table == "comments":
                acted = await self.handle_comment(record)
            else:
                acted = await self.handle_message(record)
            return {"handled": table, "acted": acted}

        logger.info("webhook_ignored", extra={"type": event_type, "table": table})
        return {"handled": None}

    @staticmethod
    def _record_error(
        report: WorkerReport, task: str, record_id: str, error: Exception
    ) -> None:
        logger.error(
            "worker_task_failed",
            extra={"task": task, "record_id": record_id, "error": str(error)[:200]},
        )
        report.errors.append(f"{task}:{record_id}: {error}")
