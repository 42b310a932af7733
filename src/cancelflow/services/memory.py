"""In-memory cancellation store for tests and embedding."""

from __future__ import annotations

import uuid
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any

from cancelflow.core.protocols import (
    CancellationRecord,
    Subscription,
    SubscriptionStatus,
)
from cancelflow.utils.exceptions import StoreError

_RECORD_FIELDS = frozenset(f.name for f in fields(CancellationRecord))


class InMemoryStore:
    """Dict-backed store implementing CancellationStoreProtocol.

    Records are copied on the way in and out, so callers never share state
    with the store. "Most recent" means most recently inserted.

    Attributes:
        subscriptions: Subscription rows in insertion order.
        cancellations: Cancellation rows in insertion order.
        update_calls: Every accepted update as ``(cancellation_id, fields)``.
    """

    def __init__(self, subscriptions: list[Subscription] | None = None):
        self.subscriptions: list[Subscription] = []
        self.cancellations: list[CancellationRecord] = []
        self.update_calls: list[tuple[str, dict[str, Any]]] = []
        for subscription in subscriptions or []:
            self.add_subscription(subscription)

    def add_subscription(self, subscription: Subscription) -> Subscription:
        """Seed a subscription row."""
        stored = replace(subscription)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self.subscriptions.append(stored)
        return replace(stored)

    def add_cancellation(self, record: CancellationRecord) -> CancellationRecord:
        """Seed a cancellation row, e.g. one left by an earlier visit."""
        stored = replace(record)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self.cancellations.append(stored)
        return replace(stored)

    async def get_subscription(self, user_id: str) -> Subscription | None:
        for subscription in reversed(self.subscriptions):
            if (
                subscription.user_id == user_id
                and subscription.status is SubscriptionStatus.ACTIVE
            ):
                return replace(subscription)
        return None

    async def get_cancellation(self, user_id: str) -> CancellationRecord | None:
        for record in reversed(self.cancellations):
            if record.user_id == user_id:
                return replace(record)
        return None

    async def create_cancellation(self, fields: dict[str, Any]) -> CancellationRecord:
        if not fields.get("user_id") or not fields.get("subscription_id"):
            raise StoreError("Missing required cancellation data")
        row = dict(fields)
        row["id"] = str(uuid.uuid4())
        row["created_at"] = datetime.now(timezone.utc)
        try:
            record = CancellationRecord.from_dict(row)
        except (KeyError, ValueError) as e:
            raise StoreError(f"Invalid cancellation data: {e}") from e
        self.cancellations.append(record)
        return replace(record)

    async def update_cancellation(
        self, cancellation_id: str, user_id: str, fields: dict[str, Any]
    ) -> bool:
        for index, record in enumerate(self.cancellations):
            if record.id != cancellation_id or record.user_id != user_id:
                continue
            if not set(fields) <= _RECORD_FIELDS:
                return False
            row = record.to_dict()
            row.update(fields)
            row["updated_at"] = datetime.now(timezone.utc)
            try:
                self.cancellations[index] = CancellationRecord.from_dict(row)
            except (KeyError, ValueError):
                return False
            self.update_calls.append((cancellation_id, dict(fields)))
            return True
        return False

    async def update_subscription_status(
        self, user_id: str, status: SubscriptionStatus
    ) -> bool:
        updated = False
        for subscription in self.subscriptions:
            if subscription.user_id == user_id:
                subscription.status = SubscriptionStatus(status)
                subscription.updated_at = datetime.now(timezone.utc)
                updated = True
        return updated

    def latest_cancellation(self, user_id: str) -> CancellationRecord | None:
        """Synchronous peek at the newest record, for assertions."""
        for record in reversed(self.cancellations):
            if record.user_id == user_id:
                return replace(record)
        return None
