"""
Supabase client wrapper for AdRoom.

Provides typed operations for the strategy, memory, intelligence and
engagement tables. Rows are converted to the models in adroom.models on
read; JSON columns are serialized back to plain lists/dicts on write.

Every mutation is a single-row insert or update. No multi-row
transaction is exposed.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ValidationError
from supabase import Client, create_client

from adroom.exceptions import ConfigurationError, StoreError
from adroom.models import (
    AdPlatformConfig,
    IntelligenceLogEntry,
    InteractionRecord,
    LeadRecord,
    LeadStatus,
    StrategyRecord,
    StrategyStatus,
    StrategyVersion,
)

logger = logging.getLogger(__name__)

# contextType -> (table, id column)
CONTEXT_TABLES = {
    "product": ("product_memory", "product_id"),
    "service": ("service_memory", "service_id"),
    "brand": ("brand_memory", "brand_id"),
}

INTERACTION_TABLES = ("comments", "messages")

HISTORY_COLUMNS = "strategy_id, goal, status, roas, total_spend, platform_data, outcomes"


def _to_json(value: Any) -> Any:
    """Serialize models (and lists of models) for a JSON column."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_json(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AdRoomDB:
    """
    Database client for AdRoom.

    Uses the Supabase service role key (bypasses RLS). Pass `client` to
    reuse an existing (or in-memory test) client.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            url = os.environ.get("SUPABASE_URL")
            key = os.environ.get("SUPABASE_SERVICE_KEY")
            if not url or not key:
                raise ConfigurationError(
                    "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
                )
            client = create_client(url, key)
        self.client = client

    # ------------------------------------------------------------------
    # Memory (context retrieval)
    # ------------------------------------------------------------------

    def get_user_memory(self, user_id: str) -> Optional[dict]:
        """Get the user's profile row."""
        result = (
            self.client.table("user_memory")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_context_record(
        self, context_type: str, context_id: str
    ) -> Optional[dict]:
        """Get a product, service or brand record by its id."""
        if context_type not in CONTEXT_TABLES:
            raise ValueError(
                f"Unknown context type '{context_type}'. "
                f"Expected one of: {', '.join(CONTEXT_TABLES)}"
            )
        table, id_column = CONTEXT_TABLES[context_type]
        result = (
            self.client.table(table)
            .select("*")
            .eq(id_column, context_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_strategy_history(self, user_id: str, limit: int = 5) -> list[dict]:
        """Get summaries of the user's most recent strategies, newest first."""
        return (
            self.client.table("strategy_memory")
            .select(HISTORY_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        ).data or []

    def list_platform_memory(self) -> list[dict]:
        """Get every platform status row."""
        return (
            self.client.table("platform_memory")
            .select("*")
            .execute()
        ).data or []

    def list_global_trends(
        self, category: Optional[str] = None, limit: int = 10
    ) -> list[dict]:
        """Get global strategy trends, optionally for one category."""
        query = self.client.table("global_strategy_memory").select("*")
        if category:
            query = query.eq("category", category)
        return query.limit(limit).execute().data or []

    def list_top_global_stats(self, limit: int = 20) -> list[dict]:
        """Get the best-performing global strategy aggregates by ROAS."""
        return (
            self.client.table("global_strategy_memory")
            .select("*")
            .order("average_roas", desc=True)
            .limit(limit)
            .execute()
        ).data or []

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def list_active_strategies(
        self, version: Optional[StrategyVersion] = None
    ) -> list[StrategyRecord]:
        """
        Get every active strategy, optionally restricted to one version.

        Rows that do not validate are logged and skipped.

        Raises:
            StoreError: If the query itself fails.
        """
        query = (
            self.client.table("strategy_memory")
            .select("*")
            .eq("status", StrategyStatus.ACTIVE.value)
        )
        if version is not None:
            query = query.eq("strategy_version", version.value)

        try:
            rows = query.execute().data or []
        except Exception as e:
            raise StoreError(
                f"Failed to list active strategies: {e}",
                table="strategy_memory",
                operation="select",
            ) from e

        strategies = []
        for row in rows:
            try:
                strategies.append(StrategyRecord.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "strategy_row_invalid",
                    extra={
                        "strategy_id": row.get("strategy_id"),
                        "error": str(e)[:200],
                    },
                )
        return strategies

    def update_strategy(
        self, strategy_id: str, updates: dict[str, Any]
    ) -> dict:
        """
        Update one strategy row. Model values are serialized to JSON.

        Raises:
            StoreError: If the update fails.
        """
        payload = {key: _to_json(value) for key, value in updates.items()}
        try:
            result = (
                self.client.table("strategy_memory")
                .update(payload)
                .eq("strategy_id", strategy_id)
                .execute()
            )
        except Exception as e:
            raise StoreError(
                f"Failed to update strategy {strategy_id}: {e}",
                table="strategy_memory",
                operation="update",
                details={"strategy_id": strategy_id},
            ) from e
        return result.data[0] if result.data else {}

    def list_finished_strategies(
        self, updated_since: datetime, limit: int = 10
    ) -> list[StrategyRecord]:
        """Get completed or paused strategies changed since `updated_since`, newest first."""
        rows = (
            self.client.table("strategy_memory")
            .select("*")
            .in_("status", [StrategyStatus.COMPLETED.value, StrategyStatus.PAUSED.value])
            .gt("updated_at", updated_since.isoformat())
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        ).data or []
        return [StrategyRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Learned patterns
    # ------------------------------------------------------------------

    def update_user_memory(self, user_id: str, updates: dict[str, Any]) -> dict:
        """Update the user's profile row. Returns {} if the user has none."""
        result = (
            self.client.table("user_memory")
            .update(updates)
            .eq("user_id", user_id)
            .execute()
        )
        return result.data[0] if result.data else {}

    def get_global_stats(self, category: str) -> Optional[dict]:
        """Get the aggregate row for one category."""
        result = (
            self.client.table("global_strategy_memory")
            .select("*")
            .eq("category", category)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def update_global_stats(self, row_id: Any, updates: dict[str, Any]) -> dict:
        result = (
            self.client.table("global_strategy_memory")
            .update(updates)
            .eq("id", row_id)
            .execute()
        )
        return result.data[0] if result.data else {}

    # ------------------------------------------------------------------
    # Ad platform configuration
    # ------------------------------------------------------------------

    def get_ad_config(self, user_id: str) -> Optional[AdPlatformConfig]:
        """Get a user's Facebook credentials, or None if not connected."""
        result = (
            self.client.table("ad_configs")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return AdPlatformConfig.model_validate(result.data[0])

    def list_configured_user_ids(self) -> list[str]:
        """Get the owners whose Facebook connection has an access token."""
        rows = (
            self.client.table("ad_configs")
            .select("user_id, access_token")
            .execute()
        ).data or []
        return [row["user_id"] for row in rows if row.get("access_token")]

    # ------------------------------------------------------------------
    # Intelligence log
    # ------------------------------------------------------------------

    def insert_intelligence(self, entry: IntelligenceLogEntry) -> dict:
        """Append one entry to the intelligence log."""
        result = (
            self.client.table("ipe_intelligence_log")
            .insert(entry.model_dump(mode="json"))
            .execute()
        )
        return result.data[0] if result.data else {}

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    def list_leads_due_for_follow_up(
        self, older_than: datetime, limit: int = 10
    ) -> list[LeadRecord]:
        """Get contacted leads last touched before `older_than`, stalest first."""
        rows = (
            self.client.table("leads")
            .select("*")
            .eq("status", LeadStatus.CONTACTED.value)
            .lt("last_interaction", older_than.isoformat())
            .order("last_interaction")
            .limit(limit)
            .execute()
        ).data or []
        return [LeadRecord.model_validate(row) for row in rows]

    def update_lead(self, lead_id: str, updates: dict[str, Any]) -> dict:
        """Update one lead row."""
        payload = {key: _to_json(value) for key, value in updates.items()}
        result = (
            self.client.table("leads")
            .update(payload)
            .eq("id", lead_id)
            .execute()
        )
        return result.data[0] if result.data else {}

    # ------------------------------------------------------------------
    # Interactions (comments / messages)
    # ------------------------------------------------------------------

    def get_interaction(
        self, table: str, record_id: str
    ) -> Optional[InteractionRecord]:
        """Get a comment or message by id."""
        self._check_interaction_table(table)
        result = (
            self.client.table(table)
            .select("*")
            .eq("id", record_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return InteractionRecord.model_validate(result.data[0])

    def list_pending_interactions(
        self,
        table: str,
        user_ids: Optional[list[str]] = None,
        limit: int = 50,
    ) -> list[InteractionRecord]:
        """
        Get comments or messages that have not been replied to, oldest first.

        Messages sent by the page itself are excluded. Pass `user_ids` to
        restrict the sweep to owners that can actually be answered for.
        """
        self._check_interaction_table(table)
        query = (
            self.client.table(table)
            .select("*")
            .eq("is_replied", False)
        )
        if table == "messages":
            query = query.eq("is_from_page", False)
        if user_ids is not None:
            query = query.in_("user_id", user_ids)
        rows = query.order("created_at").limit(limit).execute().data or []
        return [InteractionRecord.model_validate(row) for row in rows]

    def claim_flag(self, table: str, record_id: str, flag: str) -> bool:
        """
        Atomically flip a boolean flag from false to true.

        The update only matches while the flag is still false, so exactly
        one concurrent caller gets a row back. Returns True for that caller.
        """
        self._check_interaction_table(table)
        result = (
            self.client.table(table)
            .update({flag: True})
            .eq("id", record_id)
            .eq(flag, False)
            .execute()
        )
        return bool(result.data)

    def release_flag(self, table: str, record_id: str, flag: str) -> None:
        """Undo a claim so a later sweep can retry the record."""
        self._check_interaction_table(table)
        (
            self.client.table(table)
            .update({flag: False})
            .eq("id", record_id)
            .execute()
        )

    def update_interaction(
        self, table: str, record_id: str, updates: dict[str, Any]
    ) -> dict:
        self._check_interaction_table(table)
        result = (
            self.client.table(table)
            .update(updates)
            .eq("id", record_id)
            .execute()
        )
        return result.data[0] if result.data else {}

    @staticmethod
    def _check_interaction_table(table: str) -> None:
        if table not in INTERACTION_TABLES:
            raise ValueError(f"Not an interaction table: {table}")
