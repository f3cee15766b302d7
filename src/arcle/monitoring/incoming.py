"""
Incoming-transfer monitor.

Watches the most recent inbound transactions of a wallet and reports each
confirmed one exactly once. The first poll only seeds the set of known
transactions, so history is never replayed as new arrivals.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.logging import get_logger
from arcle.core.types import TransactionInfo, TransactionType
from arcle.monitoring.adaptive import AdaptiveMonitor, MonitorHandle, PollConfig

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager

RECENT_TRANSACTIONS = 50

IncomingCallback = Callable[[TransactionInfo], Any]


def incoming_key(wallet_id: str, address: str) -> tuple[str, str, str]:
    return ("incoming", wallet_id, address.lower())


class _InboundWatch:
    """Known-transaction bookkeeping for one wallet."""

    def __init__(self) -> None:
        self.seen: set[str] | None = None

    def new_arrivals(self, transactions: list[TransactionInfo]) -> list[TransactionInfo]:
        confirmed = [
            tx
            for tx in transactions
            if tx.transaction_type == TransactionType.INBOUND and tx.is_confirmed()
        ]
        if self.seen is None:
            self.seen = {tx.id for tx in confirmed}
            return []
        arrivals = [tx for tx in confirmed if tx.id not in self.seen]
        self.seen.update(tx.id for tx in arrivals)
        return arrivals


class IncomingTransferMonitor:
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
        self._logger = get_logger("monitor.incoming")

    def poll_config(self) -> PollConfig:
        return PollConfig(
            active_interval=self._config.incoming_poll_interval,
            idle_threshold=self._config.monitor_idle_threshold,
            pause_after_idle=self._config.monitor_pause_after_idle,
        )

    def start(
        self,
        owner_id: str,
        wallet_id: str,
        address: str,
        on_incoming: IncomingCallback,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> MonitorHandle:
        watch = _InboundWatch()

        async def poll() -> list[TransactionInfo]:
            transactions = await self._credentials.call_with_auth(
                owner_id,
                lambda credential: self._circle.list_transactions(
                    credential,
                    wallet_id=wallet_id,
                    transaction_type=TransactionType.INBOUND,
                    page_size=RECENT_TRANSACTIONS,
                ),
            )
            return watch.new_arrivals(transactions)

        async def on_change(_old: list[TransactionInfo], arrivals: list[TransactionInfo]) -> None:
            for tx in arrivals:
                self._logger.info(
                    f"Incoming transfer {tx.id} of {tx.amount} to wallet {wallet_id}"
                )
                result = on_incoming(tx)
                if inspect.isawaitable(result):
                    await result

        return self._monitor.start(
            incoming_key(wallet_id, address),
            poll,
            self.poll_config(),
            is_change=lambda _old, new: bool(new),
            on_change=on_change,
            on_error=on_error,
        )

    def stop(self, wallet_id: str, address: str) -> bool:
        return self._monitor.stop(incoming_key(wallet_id, address))

    def mark_activity(self, wallet_id: str, address: str) -> None:
        self._monitor.mark_activity(incoming_key(wallet_id, address))
