"""Tests for the Supabase-backed store using a mocked client."""

from unittest.mock import MagicMock, patch

import pytest

from cancelflow.core.protocols import Step, SubscriptionStatus, Variant
from cancelflow.services import create_store
from cancelflow.services.memory import InMemoryStore
from cancelflow.services.supabase_store import SupabaseStore
from cancelflow.utils.audit import AuditLogger
from cancelflow.utils.config import AppConfig, StoreBackend
from cancelflow.utils.exceptions import ConfigurationError, StoreError, StoreUnavailable


def make_client(data: list | None = None, error: Exception | None = None):
    """A supabase client double whose query builder chains onto itself."""
    query = MagicMock()
    for name in ("select", "eq", "order", "limit", "insert", "update"):
        getattr(query, name).return_value = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = MagicMock(data=data or [])
    client = MagicMock()
    client.table.return_value = query
    return client, query


SUBSCRIPTION_ROW = {
    "id": "sub-1",
    "user_id": "user-1",
    "monthly_price": 25,
    "status": "active",
    "created_at": "2025-01-01T00:00:00Z",
}

CANCELLATION_ROW = {
    "id": "c-1",
    "user_id": "user-1",
    "subscription_id": "sub-1",
    "downsell_variant": "B",
    "cancellation_step": "job-search-survey",
    "reason": "Other: The roles were all outside my field.",
    "accepted_downsell": False,
    "created_at": "2025-01-02T00:00:00Z",
    "extra_column": "ignored",
}


class TestLookups:
    """Tests for get_subscription and get_cancellation."""

    @pytest.mark.asyncio
    async def test_get_subscription_filters_active_newest(self) -> None:
        client, query = make_client([SUBSCRIPTION_ROW])
        store = SupabaseStore(client)

        subscription = await store.get_subscription("user-1")

        client.table.assert_called_with("subscriptions")
        query.eq.assert_any_call("user_id", "user-1")
        query.eq.assert_any_call("status", "active")
        query.order.assert_called_once_with("created_at", desc=True)
        query.limit.assert_called_once_with(1)
        assert subscription.id == "sub-1"
        assert subscription.monthly_price == 25.0

    @pytest.mark.asyncio
    async def test_get_subscription_none(self) -> None:
        client, _ = make_client([])
        assert await SupabaseStore(client).get_subscription("user-1") is None

    @pytest.mark.asyncio
    async def test_get_cancellation_parses_row(self) -> None:
        client, _ = make_client([CANCELLATION_ROW])

        record = await SupabaseStore(client).get_cancellation("user-1")

        assert record.downsell_variant is Variant.B
        assert record.cancellation_step is Step.JOB_SEARCH_SURVEY
        assert record.created_at.year == 2025

    @pytest.mark.asyncio
    async def test_lookup_failure_raises_unavailable(self) -> None:
        client, _ = make_client(error=ConnectionError("refused"))
        audit = AuditLogger()

        with pytest.raises(StoreUnavailable):
            await SupabaseStore(client, audit).get_cancellation("user-1")
        assert audit.find("database_error")[0].details["operation"] == "getCancellation"


class TestWrites:
    """Tests for create and update operations."""

    @pytest.mark.asyncio
    async def test_create_inserts_with_timestamp(self) -> None:
        client, query = make_client([CANCELLATION_ROW])

        record = await SupabaseStore(client).create_cancellation(
            {"user_id": "user-1", "subscription_id": "sub-1", "downsell_variant": "B"}
        )

        inserted = query.insert.call_args.args[0]
        assert inserted["downsell_variant"] == "B"
        assert "created_at" in inserted
        assert record.id == "c-1"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_variant(self) -> None:
        client, _ = make_client([CANCELLATION_ROW])
        with pytest.raises(StoreError):
            await SupabaseStore(client).create_cancellation(
                {"user_id": "user-1", "subscription_id": "sub-1", "downsell_variant": "C"}
            )

    @pytest.mark.asyncio
    async def test_update_scoped_to_id_and_user(self) -> None:
        client, query = make_client([])

        ok = await SupabaseStore(client).update_cancellation(
            "c-1", "user-1", {"job_found": False}
        )

        assert ok is True
        payload = query.update.call_args.args[0]
        assert payload["job_found"] is False
        assert "updated_at" in payload
        query.eq.assert_any_call("id", "c-1")
        query.eq.assert_any_call("user_id", "user-1")

    @pytest.mark.asyncio
    async def test_update_failure_returns_false(self) -> None:
        client, _ = make_client(error=RuntimeError("boom"))
        assert not await SupabaseStore(client).update_cancellation("c-1", "user-1", {})

    @pytest.mark.asyncio
    async def test_update_subscription_status(self) -> None:
        client, query = make_client([])

        ok = await SupabaseStore(client).update_subscription_status(
            "user-1", SubscriptionStatus.PENDING_CANCELLATION
        )

        assert ok is True
        assert query.update.call_args.args[0]["status"] == "pending_cancellation"


class TestCreateStore:
    """Tests for the create_store factory."""

    def test_memory_backend(self) -> None:
        assert isinstance(create_store(AppConfig()), InMemoryStore)

    def test_supabase_backend(self) -> None:
        config = AppConfig(
            store_backend=StoreBackend.SUPABASE,
            supabase_url="https://example.supabase.co",
            supabase_key="anon-key",
        )
        with patch("cancelflow.services.supabase_store.create_client") as create:
            store = create_store(config)

        create.assert_called_once_with("https://example.supabase.co", "anon-key")
        assert isinstance(store, SupabaseStore)

    def test_supabase_without_credentials(self) -> None:
        with pytest.raises(ConfigurationError):
            create_store(AppConfig(store_backend=StoreBackend.SUPABASE))
