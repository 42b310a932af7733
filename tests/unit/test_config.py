"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from cancelflow.utils.config import (
    DEFAULT_AB_SALT,
    AppConfig,
    ConfigLoader,
    PersistenceMode,
    StoreBackend,
)
from cancelflow.utils.exceptions import ConfigurationError


def load(env: dict[str, str]) -> AppConfig:
    """Load config from exactly ``env``, ignoring any .env file."""
    with patch.dict(os.environ, env, clear=True), patch(
        "cancelflow.utils.config.load_dotenv"
    ):
        return ConfigLoader.load()


class TestConfigLoader:
    """Tests for ConfigLoader.load."""

    def test_defaults(self) -> None:
        config = load({})
        assert config.ab_salt == DEFAULT_AB_SALT
        assert config.store_backend is StoreBackend.MEMORY
        assert config.persistence_mode is PersistenceMode.FIRE_AND_FORGET
        assert config.persist_retries == 1
        assert config.feedback_min_length == 25
        assert config.max_text_length == 2000
        assert config.downsell_discount_percent == 50
        assert config.audit_log_file is None

    def test_reads_environment(self) -> None:
        config = load(
            {
                "CANCELFLOW_AB_SALT": "pepper",
                "CANCELFLOW_PERSISTENCE_MODE": "AWAIT",
                "CANCELFLOW_PERSIST_RETRIES": "3",
                "CANCELFLOW_RETRY_BACKOFF": "0.25",
                "CANCELFLOW_AUDIT_LOG": "/tmp/audit.jsonl",
            }
        )
        assert config.ab_salt == "pepper"
        assert config.persistence_mode is PersistenceMode.AWAIT
        assert config.persist_retries == 3
        assert config.retry_backoff == 0.25
        assert config.audit_log_file == Path("/tmp/audit.jsonl")

    def test_supabase_requires_credentials(self) -> None:
        with pytest.raises(ConfigurationError, match="SUPABASE_URL"):
            load({"CANCELFLOW_STORE": "supabase"})

    def test_supabase_with_credentials(self) -> None:
        config = load(
            {
                "CANCELFLOW_STORE": "supabase",
                "SUPABASE_URL": "https://example.supabase.co",
                "SUPABASE_KEY": "anon-key",
            }
        )
        assert config.store_backend is StoreBackend.SUPABASE
        assert config.supabase_url == "https://example.supabase.co"

    def test_invalid_integer(self) -> None:
        with pytest.raises(ConfigurationError, match="not a valid integer"):
            load({"CANCELFLOW_PERSIST_RETRIES": "many"})

    def test_invalid_float(self) -> None:
        with pytest.raises(ConfigurationError, match="not a valid number"):
            load({"CANCELFLOW_RETRY_BACKOFF": "soon"})

    def test_invalid_enum_lists_allowed_values(self) -> None:
        with pytest.raises(ConfigurationError, match="fire_and_forget, await"):
            load({"CANCELFLOW_PERSISTENCE_MODE": "eventually"})

    def test_retries_must_be_positive(self) -> None:
        with pytest.raises(ConfigurationError):
            load({"CANCELFLOW_PERSIST_RETRIES": "0"})

    def test_discount_must_be_a_percentage(self) -> None:
        with pytest.raises(ConfigurationError):
            load({"CANCELFLOW_DOWNSELL_DISCOUNT_PERCENT": "100"})
