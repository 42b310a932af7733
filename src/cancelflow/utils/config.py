"""Configuration management for cancelflow."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TypeVar

from dotenv import load_dotenv

from cancelflow.utils.exceptions import ConfigurationError

DEFAULT_AB_SALT = "migrate_mate_ab_salt"

E = TypeVar("E", bound=Enum)


class PersistenceMode(Enum):
    """How the flow controller issues its per-transition writes."""

    FIRE_AND_FORGET = "fire_and_forget"
    AWAIT = "await"


class StoreBackend(Enum):
    """Which cancellation store implementation to build."""

    MEMORY = "memory"
    SUPABASE = "supabase"


@dataclass
class AppConfig:
    """Application configuration."""

    ab_salt: str = DEFAULT_AB_SALT
    store_backend: StoreBackend = StoreBackend.MEMORY
    supabase_url: str | None = None
    supabase_key: str | None = None
    persistence_mode: PersistenceMode = PersistenceMode.FIRE_AND_FORGET
    persist_retries: int = 1  # 1 = single attempt, no retry
    retry_backoff: float = 0.5  # seconds, doubled per attempt
    feedback_min_length: int = 25
    max_text_length: int = 2000  # store-level cap; steps enforce their own
    downsell_discount_percent: int = 50
    audit_log_file: Path | None = None


class ConfigLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load() -> AppConfig:
        """Load configuration from environment.

        Raises:
            ConfigurationError: If required configuration is missing or invalid.
        """
        load_dotenv()  # Load .env file if present

        store_backend = ConfigLoader._get_enum_env(
            "CANCELFLOW_STORE", StoreBackend, StoreBackend.MEMORY
        )
        supabase_url = os.environ.get("SUPABASE_URL")
        supabase_key = os.environ.get("SUPABASE_KEY")
        if store_backend is StoreBackend.SUPABASE and not (
            supabase_url and supabase_key
        ):
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_KEY are required when "
                "CANCELFLOW_STORE=supabase"
            )

        audit_log = os.environ.get("CANCELFLOW_AUDIT_LOG")

        config = AppConfig(
            ab_salt=os.environ.get("CANCELFLOW_AB_SALT", DEFAULT_AB_SALT),
            store_backend=store_backend,
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            persistence_mode=ConfigLoader._get_enum_env(
                "CANCELFLOW_PERSISTENCE_MODE",
                PersistenceMode,
                PersistenceMode.FIRE_AND_FORGET,
            ),
            persist_retries=ConfigLoader._get_int_env(
                "CANCELFLOW_PERSIST_RETRIES", 1
            ),
            retry_backoff=ConfigLoader._get_float_env(
                "CANCELFLOW_RETRY_BACKOFF", 0.5
            ),
            feedback_min_length=ConfigLoader._get_int_env(
                "CANCELFLOW_FEEDBACK_MIN_LENGTH", 25
            ),
            max_text_length=ConfigLoader._get_int_env(
                "CANCELFLOW_MAX_TEXT_LENGTH", 2000
            ),
            downsell_discount_percent=ConfigLoader._get_int_env(
                "CANCELFLOW_DOWNSELL_DISCOUNT_PERCENT", 50
            ),
            audit_log_file=Path(audit_log) if audit_log else None,
        )

        if config.persist_retries < 1:
            raise ConfigurationError(
                "CANCELFLOW_PERSIST_RETRIES must be at least 1, "
                f"got {config.persist_retries}"
            )
        if not 0 < config.downsell_discount_percent < 100:
            raise ConfigurationError(
                "CANCELFLOW_DOWNSELL_DISCOUNT_PERCENT must be between 1 and 99, "
                f"got {config.downsell_discount_percent}"
            )
        return config

    @staticmethod
    def _get_int_env(name: str, default: int) -> int:
        """Get an integer environment variable.

        Args:
            name: The environment variable name.
            default: The default value if not set.

        Returns:
            The integer value.

        Raises:
            ConfigurationError: If the value is not a valid integer.
        """
        value = os.environ.get(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {name}: '{value}' is not a valid integer"
            ) from e

    @staticmethod
    def _get_float_env(name: str, default: float) -> float:
        """Get a float environment variable.

        Raises:
            ConfigurationError: If the value is not a valid number.
        """
        value = os.environ.get(name)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {name}: '{value}' is not a valid number"
            ) from e

    @staticmethod
    def _get_enum_env(name: str, enum_cls: type[E], default: E) -> E:
        """Get an enum-valued environment variable, matched case-insensitively.

        Raises:
            ConfigurationError: If the value is not one of the enum's values.
        """
        value = os.environ.get(name)
        if value is None:
            return default
        try:
            return enum_cls(value.strip().lower())
        except ValueError as e:
            allowed = ", ".join(str(member.value) for member in enum_cls)
            raise ConfigurationError(
                f"Invalid value for {name}: '{value}' (expected one of {allowed})"
            ) from e
