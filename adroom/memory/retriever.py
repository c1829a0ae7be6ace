"""
Memory Retriever: assembles the context bundle for strategy generation.

Five independent reads against the store:
    1. the user's profile (user_memory)
    2. the product / service / brand record, when an id is given
    3. the 5 most recent strategies for the user
    4. every platform status row (platform_memory)
    5. up to 10 global trend rows, filtered by the context's category

The reads share no transaction. A read that finds nothing yields the empty
default; a read that fails also yields the empty default but is named in
`ContextBundle.errors`, so callers can tell "no data" from "lookup failed".

Usage:
    retriever = MemoryRetriever(db)
    context = retriever.get_context("user-1", "prod-9", "product")
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

from adroom.integrations.supabase_client import AdRoomDB, CONTEXT_TABLES
from adroom.models import ContextBundle

logger = logging.getLogger(__name__)

T = TypeVar("T")

HISTORY_LIMIT = 5
TRENDS_LIMIT = 10


class MemoryRetriever:
    """Read-only view over the memory tables."""

    def __init__(self, db: AdRoomDB):
        self.db = db

    def get_context(
        self,
        user_id: str,
        context_id: Optional[str] = None,
        context_type: str = "product",
    ) -> ContextBundle:
        """
        Retrieve all memory relevant to one user and (optionally) one
        product, service or brand.

        Raises:
            ValueError: If context_type is not product, service or brand.
        """
        if context_type not in CONTEXT_TABLES:
            raise ValueError(
                f"Unknown context type '{context_type}'. "
                f"Expected one of: {', '.join(CONTEXT_TABLES)}"
            )

        logger.info(
            "memory_retrieval_started",
            extra={
                "user_id": user_id,
                "context_type": context_type,
                "context_id": context_id,
            },
        )
        errors: list[str] = []

        user = self._read(
            "user", lambda: self.db.get_user_memory(user_id), None, errors
        )

        context: Optional[dict[str, Any]] = None
        if context_id:
            context = self._read(
                context_type,
                lambda: self.db.get_context_record(context_type, context_id),
                None,
                errors,
            )

        history = self._read(
            "history",
            lambda: self.db.get_strategy_history(user_id, limit=HISTORY_LIMIT),
            [],
            errors,
        )
        platform_status = self._read(
            "platform_status", self.db.list_platform_memory, [], errors
        )

        category = (context or {}).get("category")
        global_trends = self._read(
            "global_trends",
            lambda: self.db.list_global_trends(category=category, limit=TRENDS_LIMIT),
            [],
            errors,
        )

        return ContextBundle(
            user=user or {},
            context_type=context_type,
            context=context,
            history=history or [],
            platform_status=platform_status or [],
            global_trends=global_trends or [],
            errors=errors,
        )

    @staticmethod
    def _read(
        name: str,
        fetch: Callable[[], T],
        default: T,
        errors: list[str],
    ) -> T:
        try:
            return fetch()
        except Exception as e:
            logger.warning(
                "memory_read_failed",
                extra={"read": name, "error": str(e)[:200]},
            )
            errors.append(name)
            return default
