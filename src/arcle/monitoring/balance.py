"""
Balance monitor.

Polls a wallet's USDC balance through the adaptive monitor. A move of at
least ``MIN_BALANCE_CHANGE`` counts as activity and is reported as
``on_balance_change(old, new, change)``.
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.logging import get_logger
from arcle.monitoring.adaptive import AdaptiveMonitor, MonitorHandle, PollConfig

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager

MIN_BALANCE_CHANGE = Decimal("0.000001")

BalanceCallback = Callable[[Decimal, Decimal, Decimal], Any]


def balance_key(wallet_id: str, address: str) -> tuple[str, str, str]:
    return ("balance", wallet_id, address.lower())


def balance_changed(old: Decimal, new: Decimal) -> bool:
    return abs(new - old) >= MIN_BALANCE_CHANGE


class BalanceMonitor:
    def __init__(
        self,
        monitor: AdaptiveMonitor,
        credentials: CredentialManager,
        circle: CircleClient,
        config: Config,
    ) -> None:
        self._monitor = monitor
        self._credentials = credentials
        self._circle = circle
        self._config = config
        self._logger = get_logger("monitor.balance")

    def poll_config(self) -> PollConfig:
        return PollConfig(
            active_interval=self._config.balance_poll_interval,
            idle_threshold=self._config.monitor_idle_threshold,
            pause_after_idle=self._config.monitor_pause_after_idle,
        )

    def start(
        self,
        owner_id: str,
        wallet_id: str,
        address: str,
        on_balance_change: BalanceCallback,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> MonitorHandle:
        async def poll() -> Decimal:
            return await self._credentials.call_with_auth(
                owner_id, lambda credential: self._circle.get_usdc_balance(credential, wallet_id)
            )

        def on_change(old: Decimal, new: Decimal) -> Any:
            self._logger.info(f"Balance of wallet {wallet_id} changed {old} -> {new}")
            return on_balance_change(old, new, new - old)

        return self._monitor.start(
            balance_key(wallet_id, address),
            poll,
            self.poll_config(),
            is_change=balance_changed,
            on_change=on_change,
            on_error=on_error,
        )

    def stop(self, wallet_id: str, address: str) -> bool:
        return self._monitor.stop(balance_key(wallet_id, address))

    def mark_activity(self, wallet_id: str, address: str) -> None:
        self._monitor.mark_activity(balance_key(wallet_id, address))
