"""
Displayed balances.

The balance shown to the user is debited optimistically when an intent starts
settling, floored at zero, and overwritten by every later successful fetch.
Reconciliation fetches run at expanding offsets to absorb provider indexing
lag.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.exceptions import InsufficientBalanceError
from arcle.core.logging import get_logger
from arcle.monitoring.adaptive import AdaptiveMonitor, MonitorHandle, PollConfig

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager

BalanceListener = Callable[[str, Decimal], Any]

ZERO = Decimal("0")


class BalanceTracker:
    def __init__(
        self,
        config: Config,
        circle: CircleClient,
        credentials: CredentialManager,
        monitor: AdaptiveMonitor,
    ) -> None:
        self._config = config
        self._circle = circle
        self._credentials = credentials
        self._monitor = monitor
        self._displayed: dict[str, Decimal] = {}
        self._listeners: list[BalanceListener] = []
        self._logger = get_logger("balances")

    def add_listener(self, listener: BalanceListener) -> None:
        """Called with ``(wallet_id, displayed_balance)`` on every change."""
        self._listeners.append(listener)

    def displayed(self, wallet_id: str) -> Decimal | None:
        return self._displayed.get(wallet_id)

    async def set_balance(self, wallet_id: str, amount: Decimal) -> None:
        self._displayed[wallet_id] = amount
        for listener in self._listeners:
            try:
                result = listener(wallet_id, amount)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(f"Balance listener failed: {e}", exc_info=True)

    async def apply_debit(self, wallet_id: str, amount: Decimal) -> Decimal:
        """Optimistically subtract ``amount`` from the displayed balance, never below zero."""
        current = self._displayed.get(wallet_id, ZERO)
        updated = max(current - amount, ZERO)
        await self.set_balance(wallet_id, updated)
        self._logger.debug(f"Optimistic debit on wallet {wallet_id}: {current} -> {updated}")
        return updated

    async def fetch(self, owner_id: str, wallet_id: str) -> Decimal:
        """Authoritative USDC balance straight from the provider."""
        return await self._credentials.call_with_auth(
            owner_id, lambda credential: self._circle.get_usdc_balance(credential, wallet_id)
        )

    async def refresh(self, owner_id: str, wallet_id: str) -> Decimal:
        """Fetch and overwrite the displayed balance."""
        balance = await self.fetch(owner_id, wallet_id)
        await self.set_balance(wallet_id, balance)
        return balance

    async def ensure_sufficient(self, owner_id: str, wallet_id: str, amount: Decimal) -> Decimal:
        """
        Check ``amount`` against a fresh balance.

        Raises:
            InsufficientBalanceError: The fresh balance is below ``amount``
        """
        balance = await self.refresh(owner_id, wallet_id)
        if balance < amount:
            raise InsufficientBalanceError(
                "Insufficient USDC balance",
                current_balance=balance,
                required_amount=amount,
                wallet_id=wallet_id,
            )
        return balance

    def schedule_reconciliation(
        self,
        owner_id: str,
        wallet_id: str,
        on_refresh: Callable[[Decimal], Any] | None = None,
        tag: str | None = None,
    ) -> MonitorHandle:
        """
        Re-fetch the balance at each of the configured reconciliation offsets.

        One schedule runs per ``(wallet_id, tag)``; starting it again restarts
        the offsets.
        """

        async def poll() -> Decimal:
            balance = await self.refresh(owner_id, wallet_id)
            if on_refresh is not None:
                result = on_refresh(balance)
                if inspect.isawaitable(result):
                    await result
            return balance

        return self._monitor.start(
            ("reconcile", wallet_id, tag),
            poll,
            PollConfig(schedule=tuple(self._config.reconcile_delays), pause_after_idle=None),
        )
