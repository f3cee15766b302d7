"""Arcle - orchestrator entry point for the UI layer."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import timedelta
from decimal import Decimal
from typing import Any

from arcle.authorization.resolver import AuthorizationResolver
from arcle.authorization.session_keys import DelegationClient, SessionKeyRegistry
from arcle.bridge.iris import IrisClient
from arcle.bridge.protocol import BridgeSettlement
from arcle.confirmation.indexer import ArcScanClient
from arcle.confirmation.resolver import HashResolver
from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.events import ChallengeEvent, NotificationType
from arcle.core.exceptions import ConfigurationError
from arcle.core.gateway_client import GatewayAPIClient
from arcle.core.logging import configure_logging, get_logger
from arcle.core.outcomes import StepOutcome
from arcle.core.types import (
    AmountType,
    BridgeMode,
    Challenge,
    ChallengePurpose,
    Credential,
    Intent,
    IntentKind,
    Network,
    SessionKey,
    WalletInfo,
)
from arcle.credentials.manager import CredentialManager
from arcle.credentials.store import CredentialStore
from arcle.intents.balances import BalanceTracker
from arcle.intents.challenges import ChallengeRegistry
from arcle.intents.manager import IntentManager
from arcle.intents.validation import explorer_tx_url
from arcle.monitoring.adaptive import AdaptiveMonitor
from arcle.monitoring.balance import BalanceCallback, BalanceMonitor
from arcle.monitoring.incoming import IncomingCallback, IncomingTransferMonitor
from arcle.risk.factors import RecipientHistory
from arcle.risk.scorer import RiskScorer
from arcle.storage import StorageBackend, get_storage
from arcle.webhooks.parser import WebhookParser


class Arcle:
    """
    Authorization & settlement orchestrator.

    One instance serves many owners and wallets; all work runs on the
    current asyncio event loop.

    Example:
        >>> arcle = Arcle(Config.from_env())
        >>> await arcle.sign_in("user-1")
        >>> intent = arcle.create_intent(IntentKind.TRANSFER, "user-1", wallet_id, "10.00", "0xabc...")
        >>> outcome = await arcle.confirm_intent(intent)
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        circle: CircleClient | None = None,
        gateway: GatewayAPIClient | None = None,
        iris: IrisClient | None = None,
        indexer: ArcScanClient | None = None,
        delegation: DelegationClient | None = None,
    ) -> None:
        self._config = config or Config.from_env()
        configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing arcle (network: {self._config.network.value}, "
            f"key: {self._config.masked_api_key()})"
        )

        if storage is None:
            kwargs = {"redis_url": self._config.redis_url} if self._config.redis_url else {}
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage
        timeout = self._config.http_timeout

        self._circle = circle or CircleClient(self._config)
        self._gateway = gateway or GatewayAPIClient(
            base_url=self._config.gateway_api_url, timeout=timeout
        )
        self._iris = iris or IrisClient(self._config.iris_api_url, timeout=timeout)
        self._indexer = indexer or ArcScanClient(self._config.indexer_api_url, timeout=timeout)
        if delegation is None and self._config.session_keys_enabled:
            delegation = DelegationClient(
                self._config.delegation_api_url, self._config.circle_api_key, timeout=timeout
            )
        self._delegation = delegation

        self._monitor = AdaptiveMonitor()
        self._credentials = CredentialManager(
            self._config, self._circle, CredentialStore(storage), self._monitor
        )
        self._challenges = ChallengeRegistry(storage, self._circle, self._credentials)
        self._session_keys = (
            SessionKeyRegistry(storage, delegation) if self._config.session_keys_enabled else None
        )
        self._authorizer = AuthorizationResolver(
            self._config, self._circle, self._credentials, self._challenges, self._session_keys
        )
        self._hashes = HashResolver(
            self._config, self._circle, self._credentials, self._indexer, self._monitor
        )
        self._balances = BalanceTracker(self._config, self._circle, self._credentials, self._monitor)
        self._bridge = BridgeSettlement(
            self._config, self._gateway, self._iris, self._hashes, self._monitor, storage
        )
        history = RecipientHistory(storage)
        self._intents = IntentManager(
            self._config,
            self._circle,
            self._credentials,
            self._challenges,
            self._authorizer,
            self._hashes,
            self._balances,
            self._bridge,
            RiskScorer.default(
                history,
                warning_threshold=self._config.risk_warning_threshold,
                large_amount=Decimal(self._config.large_amount_threshold),
            ),
            history,
            self._monitor,
            self._session_keys,
        )
        self._balance_monitor = BalanceMonitor(
            self._monitor, self._credentials, self._circle, self._config
        )
        self._incoming_monitor = IncomingTransferMonitor(
            self._monitor, self._credentials, self._circle, self._config
        )
        self._webhook_parser = WebhookParser(self._config.webhook_public_key)
        self._watches: dict[str, set[tuple[str, str]]] = {}

        self._credentials.add_refresh_listener(self._challenges.update_credentials)
        self._credentials.add_session_expired_listener(self._reset_owner)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def intents(self) -> IntentManager:
        return self._intents

    @property
    def credentials(self) -> CredentialManager:
        return self._credentials

    @property
    def balances(self) -> BalanceTracker:
        return self._balances

    @property
    def monitor(self) -> AdaptiveMonitor:
        return self._monitor

    @property
    def hashes(self) -> HashResolver:
        return self._hashes

    # ==================== Session ====================

    async def sign_in(self, owner_id: str, device_id: str | None = None) -> Credential:
        """Register the owner with the provider if needed and issue a credential."""
        await self._circle.create_user(owner_id)
        return await self._credentials.sign_in(owner_id, device_id)

    def start(self) -> None:
        """Start the proactive credential refresh. Call from inside the event loop."""
        self._credentials.start_proactive_refresh()

    async def _reset_owner(self, owner_id: str) -> None:
        cleared = await self._challenges.clear_owner(owner_id)
        for wallet_id, address in self._watches.pop(owner_id, set()):
            self._balance_monitor.stop(wallet_id, address)
            self._incoming_monitor.stop(wallet_id, address)
        self._logger.warning(
            f"Session reset for owner {owner_id}: {cleared} challenge records cleared"
        )

    # ==================== Intents ====================

    def create_intent(
        self,
        kind: IntentKind,
        owner_user_id: str,
        wallet_id: str,
        amount: AmountType,
        destination: str | None = None,
        **kwargs: Any,
    ) -> Intent:
        return self._intents.create_intent(
            kind, owner_user_id, wallet_id, amount, destination, **kwargs
        )

    def create_bridge_intent(
        self,
        owner_user_id: str,
        wallet_id: str,
        amount: AmountType,
        recipient: str,
        from_chain: Network | str,
        to_chain: Network | str,
        mode: BridgeMode | str = BridgeMode.STANDARD,
    ) -> Intent:
        return self._intents.create_intent(
            IntentKind.BRIDGE,
            owner_user_id,
            wallet_id,
            amount,
            recipient,
            blockchain=from_chain,
            from_chain=from_chain,
            to_chain=to_chain,
            bridge_mode=mode,
        )

    async def confirm_intent(self, intent: Intent) -> StepOutcome:
        return await self._intents.confirm_intent(intent)

    async def cancel_intent(self, intent_id: str) -> bool:
        return await self._intents.cancel_intent(intent_id)

    async def on_challenge_result(
        self,
        challenge_id: str,
        result: ChallengeEvent | Mapping[str, Any],
    ) -> StepOutcome:
        """
        Forward a challenge completion reported by the client SDK or a webhook.

        ``result`` may be a ``ChallengeEvent`` or the provider's challenge
        payload (``status``, ``errorCode``, ``errorMessage``...).
        """
        if not isinstance(result, ChallengeEvent):
            result = ChallengeEvent.from_notification({"id": challenge_id, **result})
        return await self._intents.on_challenge_result(challenge_id, result)

    async def await_challenge(self, challenge_id: str) -> StepOutcome:
        return await self._intents.await_challenge(challenge_id)

    async def approve_session(
        self,
        intent_id: str,
        spending_limit: AmountType,
        duration: timedelta = timedelta(hours=24),
        allowed_actions: list[IntentKind] | None = None,
        max_per_transaction: AmountType | None = None,
    ) -> StepOutcome:
        return await self._intents.approve_session(
            intent_id, spending_limit, duration, allowed_actions, max_per_transaction
        )

    async def decline_session(self, intent_id: str) -> StepOutcome:
        return await self._intents.decline_session(intent_id)

    async def list_session_keys(self, wallet_id: str) -> list[SessionKey]:
        if self._session_keys is None:
            return []
        return await self._session_keys.list_for_wallet(wallet_id)

    async def revoke_session_key(self, key_id: str) -> bool:
        if self._session_keys is None:
            raise ConfigurationError("Session keys are not configured")
        return await self._session_keys.revoke(key_id)

    # ==================== Wallets ====================

    async def create_wallet(
        self, owner_id: str, blockchains: list[Network | str] | None = None
    ) -> Challenge:
        """Start PIN setup and wallet creation; the user completes the returned challenge."""
        chains = [
            chain.value if isinstance(chain, Network) else str(chain)
            for chain in (blockchains or [self._config.network])
        ]

        async def initialize(credential: Credential) -> tuple[str, Credential]:
            return await self._circle.initialize_user(credential, chains), credential

        challenge_id, credential = await self._credentials.call_with_auth(owner_id, initialize)
        challenge = Challenge(
            id=challenge_id,
            owner_user_id=owner_id,
            wallet_id=f"setup:{owner_id}",
            purpose=ChallengePurpose.WALLET_CREATION,
            auth_token=credential.auth_token,
            encryption_key=credential.encryption_key,
            resume_context={"owner_user_id": owner_id, "blockchains": chains},
        )
        return await self._challenges.register(challenge)

    async def list_wallets(self, owner_id: str) -> list[WalletInfo]:
        """The owner's wallets from the provider; also kept in the wallet store."""
        wallets = await self._credentials.call_with_auth(owner_id, self._circle.list_wallets)
        await self._credentials.store.save_wallets(owner_id, wallets)
        return wallets

    def start_wallet_monitoring(
        self,
        owner_id: str,
        wallet_id: str,
        address: str,
        on_balance_change: BalanceCallback | None = None,
        on_incoming: IncomingCallback | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> None:
        """Watch a wallet's balance and incoming transfers with adaptive polling."""
        if on_balance_change is not None:
            self._balance_monitor.start(owner_id, wallet_id, address, on_balance_change, on_error)
        if on_incoming is not None:
            self._incoming_monitor.start(owner_id, wallet_id, address, on_incoming, on_error)
        self._watches.setdefault(owner_id, set()).add((wallet_id, address))

    def stop_wallet_monitoring(self, wallet_id: str, address: str) -> None:
        self._balance_monitor.stop(wallet_id, address)
        self._incoming_monitor.stop(wallet_id, address)
        for watches in self._watches.values():
            watches.discard((wallet_id, address))

    # ==================== Webhooks ====================

    async def handle_webhook(
        self, payload: str | bytes | dict[str, Any], headers: Mapping[str, str]
    ) -> StepOutcome | None:
        """
        Verify a provider notification and act on it.

        Challenge notifications are processed as completions; transaction
        notifications wake the matching wallet monitors.

        Raises:
            InvalidSignatureError: If the signature does not verify
            ValidationError: If the payload is malformed
        """
        event = self._webhook_parser.handle(payload, headers)
        if event.type == NotificationType.CHALLENGE:
            challenge_event = self._webhook_parser.challenge_event(event)
            return await self._intents.on_challenge_result(
                challenge_event.challenge_id, challenge_event
            )
        if event.type in (NotificationType.TRANSACTION_INBOUND, NotificationType.TRANSACTION_OUTBOUND):
            wallet_id = event.data.get("walletId")
            for watches in self._watches.values():
                for watched_wallet, address in watches:
                    if watched_wallet == wallet_id:
                        self._balance_monitor.mark_activity(watched_wallet, address)
                        self._incoming_monitor.mark_activity(watched_wallet, address)
        return None

    def explorer_url(self, tx_hash: str | None) -> str | None:
        """Explorer link for a chain hash; None for anything that is not one."""
        return explorer_tx_url(self._config.explorer_url, tx_hash)

    # ==================== Lifecycle ====================

    async def close(self) -> None:
        self._credentials.stop_proactive_refresh()
        await self._bridge.stop()
        self._monitor.stop_all()
        await self._circle.close()
        await self._gateway.close()
        await self._iris.close()
        await self._indexer.close()
        if self._delegation is not None:
            await self._delegation.close()
        await self._storage.close()
        self._logger.info("arcle closed")

    async def __aenter__(self) -> Arcle:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
