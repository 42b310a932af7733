"""Supabase-backed cancellation store.

Queries run against the ``subscriptions`` and ``cancellations`` tables
through the synchronous supabase-py client, off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from supabase import Client, create_client

from cancelflow.core.protocols import (
    AuditLoggerProtocol,
    CancellationRecord,
    Subscription,
    SubscriptionStatus,
    Variant,
)
from cancelflow.utils.config import AppConfig
from cancelflow.utils.exceptions import ConfigurationError, StoreError, StoreUnavailable

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_TABLE = "subscriptions"
CANCELLATIONS_TABLE = "cancellations"


class SupabaseStore:
    """CancellationStoreProtocol over a Supabase project.

    Lookups and creation raise ``StoreUnavailable`` when a query fails.
    Updates return False instead; every failure is audit-logged as a
    ``database_error``.
    """

    def __init__(self, client: Client, audit: AuditLoggerProtocol | None = None):
        """Initialize the store.

        Args:
            client: A configured supabase-py Client.
            audit: Optional audit sink for database errors.
        """
        self.client = client
        self.audit = audit

    @classmethod
    def from_config(
        cls, config: AppConfig, audit: AuditLoggerProtocol | None = None
    ) -> SupabaseStore:
        """Create a store from SUPABASE_URL / SUPABASE_KEY settings."""
        if not config.supabase_url or not config.supabase_key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY are required")
        return cls(create_client(config.supabase_url, config.supabase_key), audit)

    async def get_subscription(self, user_id: str) -> Subscription | None:
        query = (
            self.client.table(SUBSCRIPTIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("status", SubscriptionStatus.ACTIVE.value)
            .order("created_at", desc=True)
            .limit(1)
        )
        rows = await self._fetch(query, "getSubscription", user_id)
        return Subscription.from_dict(rows[0]) if rows else None

    async def get_cancellation(self, user_id: str) -> CancellationRecord | None:
        query = (
            self.client.table(CANCELLATIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .limit(1)
        )
        rows = await self._fetch(query, "getCancellation", user_id)
        return CancellationRecord.from_dict(rows[0]) if rows else None

    async def create_cancellation(self, fields: dict[str, Any]) -> CancellationRecord:
        user_id = fields.get("user_id")
        if not user_id or not fields.get("subscription_id"):
            raise StoreError("Missing required cancellation data")
        if fields.get("downsell_variant") not in (Variant.A.value, Variant.B.value):
            raise StoreError("Invalid downsell variant")

        row = {**fields, "created_at": _now()}
        query = self.client.table(CANCELLATIONS_TABLE).insert(row)
        rows = await self._fetch(query, "createCancellation", user_id)
        if not rows:
            raise StoreError("Insert returned no cancellation record")
        return CancellationRecord.from_dict(rows[0])

    async def update_cancellation(
        self, cancellation_id: str, user_id: str, fields: dict[str, Any]
    ) -> bool:
        if not cancellation_id or not user_id:
            return False
        query = (
            self.client.table(CANCELLATIONS_TABLE)
            .update({**fields, "updated_at": _now()})
            .eq("id", cancellation_id)
            .eq("user_id", user_id)  # scoped to the owner
        )
        return await self._write(query, "updateCancellation", user_id)

    async def update_subscription_status(
        self, user_id: str, status: SubscriptionStatus
    ) -> bool:
        query = (
            self.client.table(SUBSCRIPTIONS_TABLE)
            .update({"status": SubscriptionStatus(status).value, "updated_at": _now()})
            .eq("user_id", user_id)
        )
        return await self._write(query, "updateSubscriptionStatus", user_id)

    async def _fetch(self, query: Any, operation: str, user_id: str | None) -> list[dict]:
        try:
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            self._log_error(operation, user_id, e)
            raise StoreUnavailable(f"{operation} failed: {e}") from e
        return response.data or []

    async def _write(self, query: Any, operation: str, user_id: str) -> bool:
        try:
            await asyncio.to_thread(query.execute)
        except Exception as e:
            self._log_error(operation, user_id, e)
            return False
        return True

    def _log_error(self, operation: str, user_id: str | None, error: Exception) -> None:
        logger.warning("Supabase %s failed: %s", operation, error)
        if self.audit is not None:
            self.audit.log_security_event(
                "database_error", user_id, {"operation": operation, "error": str(error)}
            )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
