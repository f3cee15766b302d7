"""
Configuration management for arcle.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any

from arcle.core.exceptions import ConfigurationError
from arcle.core.types import Network


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _env_float(name: str, default: float) -> float:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """Orchestrator configuration."""

    circle_api_key: str
    network: Network = Network.ARC_TESTNET
    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    env: str = "development"

    # Remote services
    circle_api_base_url: str = "https://api.circle.com/v1/w3s"
    gateway_api_url: str = "https://gateway-api-testnet.circle.com/v1"
    iris_api_url: str = "https://iris-api-sandbox.circle.com"
    indexer_api_url: str = "https://testnet.arcscan.app/api"
    explorer_url: str = "https://testnet.arcscan.app"
    delegation_api_url: str | None = None
    http_timeout: float = 30.0

    # Session-key delegation
    session_keys_enabled: bool = False

    # Credential refresh (seconds)
    token_refresh_interval: float = 300.0
    token_refresh_horizon: float = 300.0
    token_lifetime: float = 3600.0

    # Hash resolution
    hash_provider_attempts: int = 20
    hash_poll_interval: float = 0.5
    hash_resolution_timeout: float = 15.0
    indexer_window: float = 60.0
    token_decimals: int = 6

    # Direct challenge-status polling (fallback diagnostic)
    challenge_poll_attempts: int = 60
    challenge_poll_interval: float = 2.0

    # Optimistic balance reconciliation offsets
    reconcile_delays: tuple[float, ...] = (0.0, 2.0, 5.0, 10.0, 20.0)

    # Wallet monitors
    balance_poll_interval: float = 5.0
    incoming_poll_interval: float = 30.0
    monitor_idle_threshold: float = 30.0
    monitor_pause_after_idle: float = 300.0

    # Bridge
    bridge_poll_interval: float = 10.0
    bridge_poll_attempts: int = 120
    gateway_deposit_poll_interval: float = 2.0
    gateway_deposit_poll_attempts: int = 60

    # Risk
    risk_warning_threshold: int = 50
    large_amount_threshold: str = "1000"

    # Webhooks
    webhook_public_key: str | None = None

    # Yield
    usyc_teller_address: str = "0x5c73e1cfdd85b7f1d608f7f7736fc8c653513b7a"
    usyc_token_address: str = "0x136471a34f6ef19fe571effc1ca711fdb8e49f2b"

    def __post_init__(self) -> None:
        if not self.circle_api_key:
            raise ConfigurationError("circle_api_key is required")
        if self.hash_provider_attempts < 1 or self.challenge_poll_attempts < 1:
            raise ConfigurationError("poll attempt limits must be at least 1")
        if self.hash_poll_interval <= 0 or self.challenge_poll_interval <= 0:
            raise ConfigurationError("poll intervals must be positive")
        if list(self.reconcile_delays) != sorted(self.reconcile_delays):
            raise ConfigurationError("reconcile_delays must be non-decreasing")
        if self.session_keys_enabled and not self.delegation_api_url:
            raise ConfigurationError("delegation_api_url is required when session keys are enabled")
        if self.storage_backend == "redis" and not self.redis_url:
            raise ConfigurationError("redis_url is required for the redis storage backend")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        circle_api_key = overrides.pop("circle_api_key", None) or _get_env_var(
            "CIRCLE_API_KEY", required=True
        )

        network_str = overrides.pop("network", None) or _get_env_var(
            "ARCLE_NETWORK", default="ARC-TESTNET"
        )
        network = Network.from_string(network_str) if isinstance(network_str, str) else network_str

        reconcile_raw = _get_env_var("ARCLE_RECONCILE_DELAYS")
        reconcile_delays = (
            tuple(float(part) for part in reconcile_raw.split(","))
            if reconcile_raw
            else cls.reconcile_delays
        )

        values: dict[str, Any] = {
            "circle_api_key": circle_api_key,
            "network": network,
            "storage_backend": _get_env_var("ARCLE_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("ARCLE_REDIS_URL"),
            "log_level": _get_env_var("ARCLE_LOG_LEVEL", default="INFO"),
            "env": _get_env_var("ARCLE_ENV", default="development"),
            "circle_api_base_url": _get_env_var(
                "ARCLE_CIRCLE_API_URL", default=cls.circle_api_base_url
            ),
            "gateway_api_url": _get_env_var("ARCLE_GATEWAY_API_URL", default=cls.gateway_api_url),
            "iris_api_url": _get_env_var("ARCLE_IRIS_API_URL", default=cls.iris_api_url),
            "indexer_api_url": _get_env_var("ARCLE_INDEXER_API_URL", default=cls.indexer_api_url),
            "explorer_url": _get_env_var("ARCLE_EXPLORER_URL", default=cls.explorer_url),
            "delegation_api_url": _get_env_var("ARCLE_DELEGATION_API_URL"),
            "http_timeout": _env_float("ARCLE_HTTP_TIMEOUT", cls.http_timeout),
            "session_keys_enabled": _env_bool("ARCLE_SESSION_KEYS_ENABLED", False),
            "token_refresh_interval": _env_float(
                "ARCLE_TOKEN_REFRESH_INTERVAL", cls.token_refresh_interval
            ),
            "token_refresh_horizon": _env_float(
                "ARCLE_TOKEN_REFRESH_HORIZON", cls.token_refresh_horizon
            ),
            "hash_provider_attempts": _env_int(
                "ARCLE_HASH_PROVIDER_ATTEMPTS", cls.hash_provider_attempts
            ),
            "hash_poll_interval": _env_float("ARCLE_HASH_POLL_INTERVAL", cls.hash_poll_interval),
            "hash_resolution_timeout": _env_float(
                "ARCLE_HASH_RESOLUTION_TIMEOUT", cls.hash_resolution_timeout
            ),
            "indexer_window": _env_float("ARCLE_INDEXER_WINDOW", cls.indexer_window),
            "challenge_poll_attempts": _env_int(
                "ARCLE_CHALLENGE_POLL_ATTEMPTS", cls.challenge_poll_attempts
            ),
            "challenge_poll_interval": _env_float(
                "ARCLE_CHALLENGE_POLL_INTERVAL", cls.challenge_poll_interval
            ),
            "reconcile_delays": reconcile_delays,
            "balance_poll_interval": _env_float(
                "ARCLE_BALANCE_POLL_INTERVAL", cls.balance_poll_interval
            ),
            "incoming_poll_interval": _env_float(
                "ARCLE_INCOMING_POLL_INTERVAL", cls.incoming_poll_interval
            ),
            "bridge_poll_interval": _env_float("ARCLE_BRIDGE_POLL_INTERVAL", cls.bridge_poll_interval),
            "risk_warning_threshold": _env_int(
                "ARCLE_RISK_WARNING_THRESHOLD", cls.risk_warning_threshold
            ),
            "webhook_public_key": _get_env_var("ARCLE_WEBHOOK_PUBLIC_KEY"),
        }
        teller = _get_env_var("ARCLE_USYC_TELLER_ADDRESS")
        if teller:
            values["usyc_teller_address"] = teller

        values.update(overrides)
        return cls(**values)

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = asdict(self)
        current.update(updates)
        return Config(**current)

    def masked_api_key(self) -> str:
        """Return API key with most characters masked for safe logging."""
        if len(self.circle_api_key) <= 8:
            return "****"
        return self.circle_api_key[:4] + "..." + self.circle_api_key[-4:]
