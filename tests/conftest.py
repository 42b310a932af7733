"""Shared pytest fixtures for cancelflow tests.

This module provides common fixtures used across unit and integration tests.
Fixtures include an in-memory store seeded with an active subscription, an
audit logger, config, variant resolver doubles and ready-made flows.
"""

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from cancelflow.core.engine import CancellationFlow
from cancelflow.core.protocols import (
    CancellationStoreProtocol,
    Subscription,
    Variant,
)
from cancelflow.core.variant import VariantResolver
from cancelflow.services.memory import InMemoryStore
from cancelflow.utils.audit import AuditLogger
from cancelflow.utils.config import AppConfig, PersistenceMode

USER_ID = "550e8400-e29b-41d4-a716-446655440001"
SUBSCRIPTION_ID = "sub-0001"


@pytest.fixture
def app_config() -> AppConfig:
    """AppConfig with test-appropriate settings.

    Persistence is awaited inline so assertions can read the store right
    after a transition; retries do not sleep.

    Returns:
        AppConfig: Configuration for tests.
    """
    return AppConfig(
        persistence_mode=PersistenceMode.AWAIT,
        persist_retries=1,
        retry_backoff=0,
    )


@pytest.fixture
def audit() -> AuditLogger:
    """In-memory AuditLogger; inspect ``audit.events`` or ``audit.find``."""
    return AuditLogger()


@pytest.fixture
def memory_store() -> InMemoryStore:
    """InMemoryStore seeded with one active $25 subscription for USER_ID."""
    return InMemoryStore(
        subscriptions=[
            Subscription(id=SUBSCRIPTION_ID, user_id=USER_ID, monthly_price=25.0)
        ]
    )


@pytest.fixture
def mock_store() -> MagicMock:
    """Mock store conforming to CancellationStoreProtocol.

    All methods are AsyncMocks; configure return values per test.
    """
    store = MagicMock(spec=CancellationStoreProtocol)
    store.get_subscription = AsyncMock(return_value=None)
    store.get_cancellation = AsyncMock(return_value=None)
    store.create_cancellation = AsyncMock()
    store.update_cancellation = AsyncMock(return_value=True)
    store.update_subscription_status = AsyncMock(return_value=True)
    return store


def fixed_variant(variant: Variant) -> MagicMock:
    """A VariantResolver double that always answers ``variant``."""
    resolver = MagicMock(spec=VariantResolver)
    resolver.get_or_assign_variant = AsyncMock(return_value=variant)
    return resolver


@pytest.fixture
def make_flow(
    memory_store: InMemoryStore, app_config: AppConfig, audit: AuditLogger
) -> Callable[..., CancellationFlow]:
    """Factory building a CancellationFlow over the seeded memory store.

    Args (of the returned factory):
        variant: Variant the resolver double returns; None uses the real
            hash-based resolver.
        on_outcome: Optional completion callback.
        config: Optional config override.

    Returns:
        Callable returning a new, unopened CancellationFlow.
    """

    def _make(
        variant: Variant | None = Variant.A,
        on_outcome: Callable[[bool], None] | None = None,
        config: AppConfig | None = None,
    ) -> CancellationFlow:
        return CancellationFlow(
            store=memory_store,
            config=config or app_config,
            audit=audit,
            variant_resolver=fixed_variant(variant) if variant else None,
            on_outcome=on_outcome,
        )

    return _make


@pytest.fixture
def outcomes() -> list[bool]:
    """Collects values passed to ``on_outcome``."""
    return []


@pytest.fixture
def user_id() -> str:
    """The user owning the seeded subscription."""
    return USER_ID
