"""Unit tests for configuration."""

import pytest

from arcle.core.config import Config
from arcle.core.exceptions import ConfigurationError
from arcle.core.types import Network


class TestConfig:
    """Tests for Config construction and validation."""

    def test_defaults(self) -> None:
        """Test the defaults that drive polling and confirmation."""
        config = Config(circle_api_key="key")

        assert config.network == Network.ARC_TESTNET
        assert config.hash_provider_attempts == 20
        assert config.hash_resolution_timeout == 15.0
        assert config.reconcile_delays == (0.0, 2.0, 5.0, 10.0, 20.0)
        assert config.session_keys_enabled is False

    def test_missing_api_key(self) -> None:
        with pytest.raises(ConfigurationError, match="circle_api_key is required"):
            Config(circle_api_key="")

    def test_session_keys_need_delegation_url(self) -> None:
        with pytest.raises(ConfigurationError, match="delegation_api_url"):
            Config(circle_api_key="key", session_keys_enabled=True)

    def test_reconcile_delays_must_not_decrease(self) -> None:
        with pytest.raises(ConfigurationError, match="non-decreasing"):
            Config(circle_api_key="key", reconcile_delays=(0.0, 5.0, 2.0))

    def test_redis_backend_needs_url(self) -> None:
        with pytest.raises(ConfigurationError, match="redis_url"):
            Config(circle_api_key="key", storage_backend="redis")

    def test_poll_limits_validated(self) -> None:
        with pytest.raises(ConfigurationError):
            Config(circle_api_key="key", hash_provider_attempts=0)
        with pytest.raises(ConfigurationError):
            Config(circle_api_key="key", hash_poll_interval=0)

    def test_with_updates_returns_new_config(self) -> None:
        config = Config(circle_api_key="key")
        updated = config.with_updates(hash_poll_interval=1.5)

        assert updated.hash_poll_interval == 1.5
        assert config.hash_poll_interval == 0.5

    def test_masked_api_key(self) -> None:
        assert Config(circle_api_key="abcdefghijkl").masked_api_key() == "abcd...ijkl"
        assert Config(circle_api_key="short").masked_api_key() == "****"


class TestConfigFromEnv:
    """Tests for environment loading."""

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CIRCLE_API_KEY", "env-key")
        monkeypatch.setenv("ARCLE_NETWORK", "base_sepolia")
        monkeypatch.setenv("ARCLE_HASH_POLL_INTERVAL", "0.25")
        monkeypatch.setenv("ARCLE_RECONCILE_DELAYS", "0,1,3")
        monkeypatch.setenv("ARCLE_SESSION_KEYS_ENABLED", "true")
        monkeypatch.setenv("ARCLE_DELEGATION_API_URL", "https://delegation.test")

        config = Config.from_env()

        assert config.circle_api_key == "env-key"
        assert config.network == Network.BASE_SEPOLIA
        assert config.hash_poll_interval == 0.25
        assert config.reconcile_delays == (0.0, 1.0, 3.0)
        assert config.session_keys_enabled is True

    def test_from_env_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CIRCLE_API_KEY", raising=False)

        with pytest.raises(ConfigurationError, match="CIRCLE_API_KEY"):
            Config.from_env()

    def test_overrides_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CIRCLE_API_KEY", "env-key")

        config = Config.from_env(circle_api_key="override", hash_provider_attempts=5)

        assert config.circle_api_key == "override"
        assert config.hash_provider_attempts == 5

    def test_invalid_number(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CIRCLE_API_KEY", "env-key")
        monkeypatch.setenv("ARCLE_HASH_POLL_INTERVAL", "soon")

        with pytest.raises(ConfigurationError, match="must be a number"):
            Config.from_env()
