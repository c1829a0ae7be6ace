"""
Tests for MemoryRetriever.

Covers missing rows (empty defaults), failed reads (degraded bundle with
errors), context type routing and the category filter on global trends.
"""

from __future__ import annotations

import pytest

from adroom.integrations.supabase_client import AdRoomDB
from adroom.memory.retriever import HISTORY_LIMIT, MemoryRetriever
from adroom.testing.mock_supabase import MockSupabase


@pytest.fixture
def tables():
    return {
        "user_memory": [{"user_id": "user-1", "business_name": "Glow Co"}],
        "product_memory": [
            {"product_id": "prod-1", "name": "Serum", "category": "beauty"},
            {"product_id": "prod-2", "name": "Widget", "category": None},
        ],
        "service_memory": [{"service_id": "svc-1", "name": "Consulting"}],
        "brand_memory": [],
        "strategy_memory": [
            {
                "strategy_id": f"s{i}",
                "user_id": "user-1",
                "goal": "sales",
                "created_at": f"2024-01-{i + 1:02d}T00:00:00+00:00",
            }
            for i in range(7)
        ] + [{"strategy_id": "other", "user_id": "user-2", "created_at": "2024-02-01"}],
        "platform_memory": [
            {"platform": "facebook", "status": "stable"},
            {"platform": "instagram", "status": "volatile"},
        ],
        "global_strategy_memory": [
            {"category": "beauty", "average_roas": 3.1},
            {"category": "fitness", "average_roas": 2.2},
        ] + [{"category": "general", "average_roas": 1.0} for _ in range(12)],
    }


@pytest.fixture
def client(tables):
    return MockSupabase(tables)


@pytest.fixture
def retriever(client):
    return MemoryRetriever(AdRoomDB(client=client))


class TestEmptyMemory:
    def test_unknown_user_yields_empty_defaults(self):
        retriever = MemoryRetriever(AdRoomDB(client=MockSupabase()))

        bundle = retriever.get_context("nobody")

        assert bundle.user == {}
        assert bundle.history == []
        assert bundle.context is None
        assert bundle.platform_status == []
        assert bundle.global_trends == []
        assert bundle.errors == []
        assert bundle.is_degraded is False

    def test_missing_context_record_is_none(self, retriever):
        bundle = retriever.get_context("user-1", "prod-404", "product")
        assert bundle.context is None
        assert bundle.errors == []


class TestFullContext:
    def test_user_profile(self, retriever):
        bundle = retriever.get_context("user-1")
        assert bundle.user["business_name"] == "Glow Co"

    def test_history_newest_first_and_limited(self, retriever):
        bundle = retriever.get_context("user-1")
        assert len(bundle.history) == HISTORY_LIMIT
        assert bundle.history[0]["strategy_id"] == "s6"
        assert all(h["strategy_id"] != "other" for h in bundle.history)

    def test_platform_status_unfiltered(self, retriever):
        bundle = retriever.get_context("user-1")
        assert len(bundle.platform_status) == 2

    def test_product_context(self, retriever):
        bundle = retriever.get_context("user-1", "prod-1", "product")
        assert bundle.context_type == "product"
        assert bundle.context["name"] == "Serum"

    def test_service_context(self, retriever):
        bundle = retriever.get_context("user-1", "svc-1", "service")
        assert bundle.context["name"] == "Consulting"

    def test_no_context_id_skips_context_read(self, retriever):
        bundle = retriever.get_context("user-1", None, "brand")
        assert bundle.context is None
        assert bundle.context_type == "brand"

    def test_unknown_context_type_raises(self, retriever):
        with pytest.raises(ValueError, match="Unknown context type"):
            retriever.get_context("user-1", "x", "campaign")


class TestGlobalTrends:
    def test_filtered_by_context_category(self, retriever):
        bundle = retriever.get_context("user-1", "prod-1", "product")
        assert [t["category"] for t in bundle.global_trends] == ["beauty"]

    def test_unfiltered_without_category(self, retriever):
        bundle = retriever.get_context("user-1", "prod-2", "product")
        assert len(bundle.global_trends) == 10

    def test_unfiltered_without_context(self, retriever):
        bundle = retriever.get_context("user-1")
        assert len(bundle.global_trends) == 10


class TestDegradedReads:
    def test_failed_read_is_recorded(self, client, retriever):
        client.failing_tables.add("platform_memory")

        bundle = retriever.get_context("user-1")

        assert bundle.platform_status == []
        assert bundle.errors == ["platform_status"]
        assert bundle.is_degraded is True
        # The other reads still succeed
        assert bundle.user["business_name"] == "Glow Co"
        assert len(bundle.history) == HISTORY_LIMIT

    def test_failed_user_read_differs_from_missing_user(self, client, retriever):
        client.failing_tables.add("user_memory")

        bundle = retriever.get_context("user-1")

        assert bundle.user == {}
        assert "user" in bundle.errors

    def test_failed_context_read_named_by_type(self, client, retriever):
        client.failing_tables.add("product_memory")

        bundle = retriever.get_context("user-1", "prod-1", "product")

        assert bundle.context is None
        assert bundle.errors == ["product"]

    def test_every_read_failing_never_raises(self, client, retriever):
        client.failing_tables.update({
            "user_memory", "product_memory", "strategy_memory",
            "platform_memory", "global_strategy_memory",
        })

        bundle = retriever.get_context("user-1", "prod-1", "product")

        assert bundle.errors == [
            "user", "product", "history", "platform_status", "global_trends",
        ]
