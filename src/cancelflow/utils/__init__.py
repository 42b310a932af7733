"""Utilities module for cancelflow."""

from .audit import AuditEvent, AuditLogger
from .config import AppConfig, ConfigLoader, PersistenceMode, StoreBackend
from .exceptions import (
    CancelFlowError,
    ConfigurationError,
    FinalizationFailed,
    InitializationFailed,
    InputRejected,
    InvalidTransition,
    PermanentError,
    StepUpdateFailed,
    StoreError,
    StoreUnavailable,
    TransientError,
)
from .validation import sanitize_for_store, sanitize_string

__all__ = [
    "AppConfig",
    "AuditEvent",
    "AuditLogger",
    "CancelFlowError",
    "ConfigLoader",
    "ConfigurationError",
    "FinalizationFailed",
    "InitializationFailed",
    "InputRejected",
    "InvalidTransition",
    "PermanentError",
    "PersistenceMode",
    "StepUpdateFailed",
    "StoreBackend",
    "StoreError",
    "StoreUnavailable",
    "TransientError",
    "sanitize_for_store",
    "sanitize_string",
]
