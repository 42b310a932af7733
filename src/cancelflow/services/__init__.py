"""Services module for record store backends."""

from cancelflow.core.protocols import AuditLoggerProtocol, CancellationStoreProtocol
from cancelflow.services.memory import InMemoryStore
from cancelflow.services.supabase_store import SupabaseStore
from cancelflow.utils.config import AppConfig, StoreBackend


def create_store(
    config: AppConfig, audit: AuditLoggerProtocol | None = None
) -> CancellationStoreProtocol:
    """Create the store selected by configuration.

    Args:
        config: Application configuration.
        audit: Optional audit sink passed to backends that log errors.

    Returns:
        Store instance implementing CancellationStoreProtocol

    Raises:
        ConfigurationError: If the supabase backend lacks credentials.
    """
    if config.store_backend is StoreBackend.SUPABASE:
        return SupabaseStore.from_config(config, audit)
    return InMemoryStore()


__all__ = [
    "InMemoryStore",
    "SupabaseStore",
    "create_store",
]
