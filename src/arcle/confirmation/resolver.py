"""
Transaction hash resolver.

Turns a provider operation (a transaction id, or the challenge that produced
one) into an on-chain transaction hash. The provider's transaction record is
the primary source. After ``hash_provider_attempts`` lookups without a hash,
the ArcScan indexer is asked as well, keyed by sender, recipient, exact amount
in token units and a recency window. Whichever source answers first is
accepted. Once a hash is found it is cached and never re-queried.

``wait_for_hash`` drives ``resolve_hash`` through the adaptive monitor and
turns the time ceiling into ``PROCESSING`` instead of polling forever.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from arcle.confirmation.indexer import ArcScanClient
from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.exceptions import NetworkError, SessionExpiredError, WalletError
from arcle.core.gateway_client import usdc_to_units
from arcle.core.logging import get_logger
from arcle.core.types import Credential, TransactionInfo, TransactionType
from arcle.intents.validation import is_valid_tx_hash
from arcle.monitoring.adaptive import AdaptiveMonitor, PollConfig

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager


class HashStatus(str, Enum):
    FOUND = "found"
    PENDING = "pending"
    NOT_FOUND = "not-found"
    FAILED = "failed"
    PROCESSING = "processing"


@dataclass(frozen=True)
class HashResolution:
    status: HashStatus
    tx_hash: str | None = None
    source: str | None = None
    transaction_id: str | None = None
    reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (HashStatus.FOUND, HashStatus.FAILED, HashStatus.PROCESSING)


@dataclass(frozen=True)
class HashContext:
    """What the resolver may use to find the hash of one operation."""

    owner_id: str
    wallet_id: str
    transaction_id: str | None = None
    challenge_id: str | None = None
    from_address: str | None = None
    to_address: str | None = None
    amount: Decimal | None = None
    not_before: datetime | None = None

    @property
    def indexer_searchable(self) -> bool:
        return bool(self.from_address and self.to_address and self.amount is not None)


class HashResolver:
    def __init__(
        self,
        config: Config,
        circle: CircleClient,
        credentials: CredentialManager,
        indexer: ArcScanClient | None,
        monitor: AdaptiveMonitor,
    ) -> None:
        self._config = config
        self._circle = circle
        self._credentials = credentials
        self._indexer = indexer
        self._monitor = monitor
        self._found: dict[str, HashResolution] = {}
        self._attempts: dict[str, int] = {}
        self._transaction_ids: dict[str, str] = {}
        self._logger = get_logger("confirmation")

    def attempts(self, operation_id: str) -> int:
        return self._attempts.get(operation_id, 0)

    def forget(self, operation_id: str) -> None:
        self._found.pop(operation_id, None)
        self._attempts.pop(operation_id, None)
        self._transaction_ids.pop(operation_id, None)

    async def resolve_hash(self, operation_id: str, context: HashContext) -> HashResolution:
        """
        One resolution attempt.

        Returns the cached result without any remote call once a hash was
        found. Transient provider or indexer errors count as ``PENDING``.

        Raises:
            SessionExpiredError: The provider rejected the credential twice
        """
        cached = self._found.get(operation_id)
        if cached is not None:
            return cached

        attempt = self._attempts.get(operation_id, 0) + 1
        self._attempts[operation_id] = attempt

        try:
            transaction = await self._credentials.call_with_auth(
                context.owner_id, lambda credential: self._lookup(operation_id, context, credential)
            )
        except (NetworkError, WalletError) as e:
            self._logger.debug(f"Provider lookup for {operation_id} failed: {e}")
            transaction = None

        resolution = self._from_transaction(transaction)
        if resolution.status in (HashStatus.FOUND, HashStatus.FAILED):
            return self._remember(operation_id, resolution)

        if attempt >= self._config.hash_provider_attempts and context.indexer_searchable:
            indexed = await self._search_indexer(operation_id, context)
            if indexed is not None:
                return self._remember(operation_id, indexed)

        return resolution

    def _remember(self, operation_id: str, resolution: HashResolution) -> HashResolution:
        if resolution.status == HashStatus.FOUND:
            self._found[operation_id] = resolution
            self._logger.info(
                f"Resolved {operation_id} to {resolution.tx_hash} via {resolution.source}"
            )
        else:
            self._logger.warning(f"Operation {operation_id} failed on chain: {resolution.reason}")
        return resolution

    async def _lookup(
        self, operation_id: str, context: HashContext, credential: Credential
    ) -> TransactionInfo | None:
        transaction_id = self._transaction_ids.get(operation_id) or context.transaction_id
        if transaction_id is None and context.challenge_id:
            challenge = await self._circle.get_challenge(credential, context.challenge_id)
            correlation_ids = challenge.get("correlationIds") or []
            if correlation_ids:
                transaction_id = correlation_ids[0]
        if transaction_id is not None:
            self._transaction_ids[operation_id] = transaction_id
            return await self._circle.get_transaction(credential, transaction_id)
        return await self._match_recent(context, credential)

    async def _match_recent(
        self, context: HashContext, credential: Credential
    ) -> TransactionInfo | None:
        """Match the wallet's recent outbound transfers when no id is known."""
        if not context.to_address or context.amount is None:
            return None
        transactions = await self._circle.list_transactions(
            credential,
            wallet_id=context.wallet_id,
            transaction_type=TransactionType.OUTBOUND,
            page_size=20,
        )
        recipient = context.to_address.lower()
        for tx in transactions:
            if (tx.destination_address or "").lower() != recipient or tx.amount != context.amount:
                continue
            if context.not_before and tx.create_date and tx.create_date < context.not_before:
                continue
            return tx
        return None

    @staticmethod
    def _from_transaction(transaction: TransactionInfo | None) -> HashResolution:
        if transaction is None:
            return HashResolution(HashStatus.NOT_FOUND)
        if transaction.is_failed():
            return HashResolution(
                HashStatus.FAILED,
                transaction_id=transaction.id,
                reason=transaction.error_reason or transaction.state.value,
            )
        if is_valid_tx_hash(transaction.tx_hash):
            return HashResolution(
                HashStatus.FOUND,
                tx_hash=transaction.tx_hash,
                source="provider",
                transaction_id=transaction.id,
            )
        return HashResolution(HashStatus.PENDING, transaction_id=transaction.id)

    async def _search_indexer(
        self, operation_id: str, context: HashContext
    ) -> HashResolution | None:
        if self._indexer is None:
            return None
        units = usdc_to_units(context.amount, self._config.token_decimals)
        try:
            tx_hash = await self._indexer.find_transfer(
                context.from_address,
                context.to_address,
                units,
                self._config.indexer_window,
            )
        except NetworkError as e:
            self._logger.debug(f"Indexer lookup for {operation_id} failed: {e}")
            return None
        if not is_valid_tx_hash(tx_hash):
            return None
        return HashResolution(
            HashStatus.FOUND,
            tx_hash=tx_hash,
            source="indexer",
            transaction_id=self._transaction_ids.get(operation_id),
        )

    async def wait_for_hash(self, operation_id: str, context: HashContext) -> HashResolution:
        """
        Poll ``resolve_hash`` until it finds a hash or a terminal failure.

        Gives up after ``hash_resolution_timeout`` seconds with ``PROCESSING``.
        """
        key = ("hash", operation_id)
        fatal: list[SessionExpiredError] = []
        interval = self._config.hash_poll_interval

        def on_error(exc: Exception) -> None:
            if isinstance(exc, SessionExpiredError):
                fatal.append(exc)
                self._monitor.stop(key)

        result = await self._monitor.run_until(
            key,
            lambda: self.resolve_hash(operation_id, context),
            PollConfig(
                active_interval=interval,
                idle_interval=interval,
                pause_after_idle=None,
                max_duration=self._config.hash_resolution_timeout,
                max_backoff=interval,
            ),
            is_done=lambda resolution: resolution.status in (HashStatus.FOUND, HashStatus.FAILED),
            on_error=on_error,
        )
        if fatal:
            raise fatal[0]
        if result.completed:
            return result.value

        self._logger.warning(
            f"No hash for {operation_id} after {self._config.hash_resolution_timeout}s; "
            "marking as processing"
        )
        last = result.value if isinstance(result.value, HashResolution) else None
        return HashResolution(
            HashStatus.PROCESSING,
            transaction_id=last.transaction_id if last else self._transaction_ids.get(operation_id),
            reason="Transaction is still processing; check the wallet activity for its status",
        )
