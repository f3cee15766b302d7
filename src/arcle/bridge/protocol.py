"""
Bridge settlement protocol.

Drives the sub-state machine nested under a bridge intent:

    depositing (fast mode, first use) -> signing -> submitting -> monitoring
        -> complete | failed

Fast mode settles through Circle Gateway out of a pre-funded balance: when the
depositor's Gateway balance cannot cover the transfer, USDC is approved and
deposited first, and the transfer is re-initiated by itself once the deposit
is visible. The burn intent is then signed through a typed-data step and
submitted to Gateway.

Standard mode is CCTP v2: approve TokenMessengerV2, ``depositForBurn``, then
observe Iris attestation while the forwarding service mints on the
destination chain.

Every user-facing step is returned to the caller as a ``PendingOperation`` to
authorize; this module never talks to the user. Monitoring runs in the
background and reports through listeners.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from arcle.authorization.operations import PendingOperation, StepCompletion
from arcle.bridge.iris import IrisClient, attestation_progress
from arcle.bridge.routes import validate_route
from arcle.bridge.signatures import extract_signature
from arcle.confirmation.resolver import HashContext, HashResolver, HashStatus
from arcle.core.cctp_constants import (
    APPROVE_SIGNATURE,
    DEFAULT_MAX_FEE as CCTP_MAX_FEE,
    DEPOSIT_FOR_BURN_SIGNATURE,
    EMPTY_DESTINATION_CALLER,
    STANDARD_TRANSFER_THRESHOLD,
    get_cctp_domain,
    get_token_messenger_v2,
    get_usdc_address,
)
from arcle.core.config import Config
from arcle.core.exceptions import BridgeError, NetworkError, SignatureNotFoundError
from arcle.core.gateway_client import (
    DEFAULT_MAX_FEE as GATEWAY_MAX_FEE,
    GATEWAY_DEPOSIT_SIGNATURE,
    BurnIntent,
    GatewayAPIClient,
    SignedBurnIntent,
    TransferSpec,
    address_to_bytes32,
    generate_salt,
    get_domain_for_network,
    get_gateway_minter,
    get_gateway_wallet,
    usdc_to_units,
)
from arcle.core.logging import bind_logger, get_logger
from arcle.core.types import (
    BridgeMode,
    BridgeStatus,
    BridgeTransfer,
    ChallengePurpose,
    Intent,
    IntentKind,
)
from arcle.intents.validation import is_valid_tx_hash
from arcle.monitoring.adaptive import AdaptiveMonitor, PollConfig
from arcle.storage.base import StorageBackend

STEP_APPROVE = "approve"
STEP_DEPOSIT = "deposit"
STEP_SIGN = "sign"
STEP_BURN = "burn"

GATEWAY_COMPLETE_STATES = frozenset({"complete", "completed", "finalized"})
GATEWAY_FAILED_STATES = frozenset({"failed", "expired"})

BridgeListener = Callable[[BridgeTransfer, BridgeError | None], Any]
PayloadFetcher = Callable[[], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class BridgeStep:
    """
    Where the bridge stands after a protocol call.

    ``operation`` set: the caller must authorize it next. Otherwise the
    transfer has been submitted and is being monitored.
    """

    transfer: BridgeTransfer
    operation: PendingOperation | None = None
    tx_hash: str | None = None

    @property
    def submitted(self) -> bool:
        return self.operation is None


def _gateway_progress(status: str) -> str:
    if status in GATEWAY_COMPLETE_STATES:
        return "complete"
    if status in GATEWAY_FAILED_STATES:
        return "failed"
    return "pending"


class BridgeSettlement:
    """Cross-chain settlement for bridge intents, in fast or standard mode."""

    COLLECTION = "bridges"

    def __init__(
        self,
        config: Config,
        gateway: GatewayAPIClient,
        iris: IrisClient,
        hash_resolver: HashResolver,
        monitor: AdaptiveMonitor,
        storage: StorageBackend,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._iris = iris
        self._hash_resolver = hash_resolver
        self._monitor = monitor
        self._storage = storage
        self._listeners: list[BridgeListener] = []
        self._watchers: set[asyncio.Task[None]] = set()
        self._logger = get_logger("bridge")

    def add_listener(self, listener: BridgeListener) -> None:
        """Called with ``(transfer, error)`` when monitoring ends."""
        self._listeners.append(listener)

    # ==================== Records ====================

    async def get(self, bridge_id: str) -> BridgeTransfer | None:
        data = await self._storage.get(self.COLLECTION, bridge_id)
        return BridgeTransfer.from_dict(data) if data else None

    async def save(self, transfer: BridgeTransfer) -> None:
        await self._storage.save(self.COLLECTION, transfer.id, transfer.to_dict())

    async def fail(self, transfer: BridgeTransfer, reason: str) -> None:
        transfer.status = BridgeStatus.FAILED
        transfer.error = reason
        await self.save(transfer)
        self._monitor.stop(("gateway-deposit", transfer.id))

    def _error(
        self, transfer: BridgeTransfer, message: str, source_leg_done: bool = False
    ) -> BridgeError:
        return BridgeError(
            message,
            source_chain=transfer.from_chain.value,
            destination_chain=transfer.to_chain.value,
            mode=transfer.mode.value,
            source_leg_done=source_leg_done,
        )

    # ==================== Entry ====================

    async def start(self, intent: Intent) -> BridgeStep:
        """
        Open a bridge transfer for ``intent`` and return its first step.

        Raises:
            UnsupportedRouteError: The route is not served in the chosen mode
            BridgeError: The intent has no source address to bridge from
        """
        mode = intent.bridge_mode or BridgeMode.STANDARD
        source, destination = validate_route(
            intent.from_chain or intent.blockchain, intent.to_chain, mode
        )
        transfer = BridgeTransfer(
            id=f"br_{uuid.uuid4().hex}",
            intent_id=intent.id,
            wallet_id=intent.wallet_id,
            from_chain=source,
            to_chain=destination,
            amount=intent.amount,
            recipient=intent.destination,
            mode=mode,
        )
        if not intent.source_address:
            raise self._error(transfer, "Source wallet address is unknown")
        intent.bridge_id = transfer.id
        self._logger.info(
            f"Bridge {transfer.id}: {intent.amount} USDC {source.value} -> {destination.value} "
            f"({mode.value})"
        )
        if mode == BridgeMode.FAST:
            return await self._initiate_fast(intent, transfer)

        transfer.status = BridgeStatus.SIGNING
        await self.save(transfer)
        return BridgeStep(transfer, self._standard_approve(intent, transfer))

    async def advance(
        self,
        intent: Intent,
        purpose: ChallengePurpose,
        context: dict[str, Any],
        completion: StepCompletion,
        fetch_payload: PayloadFetcher | None = None,
    ) -> BridgeStep:
        """
        Continue after one authorized step completed.

        Raises:
            BridgeError: The bridge cannot continue; funds are intact
            SignatureNotFoundError: The signing step yielded no signature
        """
        transfer = await self.get(context.get("bridge_id") or intent.bridge_id or "")
        if transfer is None:
            raise BridgeError(
                "Bridge record not found",
                source_chain=str(intent.from_chain),
                destination_chain=str(intent.to_chain),
                mode=str(intent.bridge_mode),
            )
        step = context.get("step")
        log = bind_logger(self._logger, bridge=transfer.id, step=step)
        log.info(f"Step {purpose.value} completed")

        if purpose == ChallengePurpose.GATEWAY_DEPOSIT:
            if step == STEP_APPROVE:
                return BridgeStep(transfer, self._gateway_deposit(intent, transfer, context))
            return await self._after_deposit(intent, transfer)
        if purpose == ChallengePurpose.GATEWAY_TRANSFER_SIGN:
            return await self._submit_fast(intent, transfer, completion, fetch_payload)
        if purpose == ChallengePurpose.BRIDGE_BURN:
            if step == STEP_APPROVE:
                return BridgeStep(transfer, self._standard_burn(intent, transfer))
            return await self._after_burn(intent, transfer, completion)
        raise self._error(transfer, f"Unexpected bridge step {purpose.value}")

    # ==================== Fast mode (Gateway) ====================

    def _required_gateway_balance(self, transfer: BridgeTransfer) -> Decimal:
        fee = Decimal(GATEWAY_MAX_FEE) / (Decimal(10) ** self._config.token_decimals)
        return transfer.amount + fee

    async def _initiate_fast(self, intent: Intent, transfer: BridgeTransfer) -> BridgeStep:
        domain = get_domain_for_network(transfer.from_chain)
        required = self._required_gateway_balance(transfer)
        try:
            available = await self._gateway.available_balance(intent.source_address, domain)
        except NetworkError as e:
            raise self._error(transfer, f"Gateway balance unavailable: {e.message}") from e

        if available < required:
            if transfer.deposit_submitted:
                raise self._error(transfer, "Gateway deposit is not spendable yet")
            shortfall = required - available
            transfer.status = BridgeStatus.DEPOSITING
            await self.save(transfer)
            self._logger.info(
                f"Bridge {transfer.id}: Gateway balance {available} < {required}; "
                f"depositing {shortfall} first"
            )
            return BridgeStep(transfer, self._gateway_approve(intent, transfer, shortfall))

        burn_intent = self._build_burn_intent(intent, transfer)
        transfer.burn_intent = burn_intent.to_api_dict()
        transfer.status = BridgeStatus.SIGNING
        await self.save(transfer)
        operation = PendingOperation.sign_typed_data(
            ChallengePurpose.GATEWAY_TRANSFER_SIGN,
            intent.wallet_id,
            IntentKind.BRIDGE,
            burn_intent.to_typed_data(),
            self._context(intent, transfer, STEP_SIGN),
            memo=f"Bridge {transfer.amount} USDC to {transfer.to_chain.value}",
            amount=transfer.amount,
        )
        return BridgeStep(transfer, operation)

    def _gateway_approve(
        self, intent: Intent, transfer: BridgeTransfer, deposit: Decimal
    ) -> PendingOperation:
        units = usdc_to_units(deposit, self._config.token_decimals)
        return PendingOperation.contract_call(
            ChallengePurpose.GATEWAY_DEPOSIT,
            intent.wallet_id,
            IntentKind.BRIDGE,
            get_usdc_address(transfer.from_chain),
            APPROVE_SIGNATURE,
            [get_gateway_wallet(transfer.from_chain), str(units)],
            self._context(intent, transfer, STEP_APPROVE, deposit_units=str(units)),
        )

    def _gateway_deposit(
        self, intent: Intent, transfer: BridgeTransfer, context: dict[str, Any]
    ) -> PendingOperation:
        units = context["deposit_units"]
        return PendingOperation.contract_call(
            ChallengePurpose.GATEWAY_DEPOSIT,
            intent.wallet_id,
            IntentKind.BRIDGE,
            get_gateway_wallet(transfer.from_chain),
            GATEWAY_DEPOSIT_SIGNATURE,
            [get_usdc_address(transfer.from_chain), units],
            self._context(intent, transfer, STEP_DEPOSIT, deposit_units=units),
        )

    async def _after_deposit(self, intent: Intent, transfer: BridgeTransfer) -> BridgeStep:
        transfer.deposit_submitted = True
        await self.save(transfer)

        domain = get_domain_for_network(transfer.from_chain)
        required = self._required_gateway_balance(transfer)
        interval = self._config.gateway_deposit_poll_interval
        result = await self._monitor.run_until(
            ("gateway-deposit", transfer.id),
            lambda: self._gateway.available_balance(intent.source_address, domain),
            PollConfig(
                active_interval=interval,
                idle_interval=interval,
                pause_after_idle=None,
                max_attempts=self._config.gateway_deposit_poll_attempts,
            ),
            is_done=lambda balance: balance >= required,
        )
        stored = await self.get(transfer.id)
        if stored is not None and stored.is_terminal:
            self._logger.info(
                f"Bridge {transfer.id} ended during the deposit wait ({stored.status.value})"
            )
            return BridgeStep(stored)
        if not result.completed:
            raise self._error(
                transfer,
                "The Gateway deposit was not confirmed in time; the deposited USDC stays "
                "in your Gateway balance",
            )
        self._logger.info(f"Bridge {transfer.id}: deposit visible, re-initiating transfer")
        return await self._initiate_fast(intent, transfer)

    def _build_burn_intent(self, intent: Intent, transfer: BridgeTransfer) -> BurnIntent:
        depositor = address_to_bytes32(intent.source_address)
        spec = TransferSpec(
            version=1,
            source_domain=get_domain_for_network(transfer.from_chain),
            destination_domain=get_domain_for_network(transfer.to_chain),
            source_contract=address_to_bytes32(get_gateway_wallet(transfer.from_chain)),
            destination_contract=address_to_bytes32(get_gateway_minter(transfer.to_chain)),
            source_token=address_to_bytes32(get_usdc_address(transfer.from_chain)),
            destination_token=address_to_bytes32(get_usdc_address(transfer.to_chain)),
            source_depositor=depositor,
            destination_recipient=address_to_bytes32(transfer.recipient),
            source_signer=depositor,
            value=usdc_to_units(transfer.amount, self._config.token_decimals),
            salt=generate_salt(),
        )
        return BurnIntent(spec=spec)

    async def _submit_fast(
        self,
        intent: Intent,
        transfer: BridgeTransfer,
        completion: StepCompletion,
        fetch_payload: PayloadFetcher | None,
    ) -> BridgeStep:
        signature = completion.signature or extract_signature(completion.payload)
        if signature is None and fetch_payload is not None:
            self._logger.info(f"Bridge {transfer.id}: signature not in completion; fetching challenge")
            signature = extract_signature(await fetch_payload())
        if signature is None:
            await self.fail(transfer, "signature not found")
            raise SignatureNotFoundError(
                "The signed burn intent could not be read from the wallet provider's response",
                challenge_id=completion.challenge_id,
            )

        transfer.status = BridgeStatus.SUBMITTING
        await self.save(transfer)
        signed = SignedBurnIntent(BurnIntent.from_api_dict(transfer.burn_intent), signature)
        try:
            attestation = await self._gateway.transfer([signed])
        except NetworkError as e:
            await self.fail(transfer, e.message)
            raise self._error(transfer, f"Gateway rejected the transfer: {e.message}") from e

        transfer.transfer_id = attestation.transfer_id
        transfer.status = BridgeStatus.MONITORING
        await self.save(transfer)
        self._logger.info(
            f"Bridge {transfer.id}: Gateway accepted transfer {attestation.transfer_id} "
            f"(fee {attestation.total_fee})"
        )
        self._watch(intent, transfer, None)
        return BridgeStep(transfer)

    # ==================== Standard mode (CCTP v2) ====================

    def _standard_approve(self, intent: Intent, transfer: BridgeTransfer) -> PendingOperation:
        units = usdc_to_units(transfer.amount, self._config.token_decimals)
        return PendingOperation.contract_call(
            ChallengePurpose.BRIDGE_BURN,
            intent.wallet_id,
            IntentKind.BRIDGE,
            get_usdc_address(transfer.from_chain),
            APPROVE_SIGNATURE,
            [get_token_messenger_v2(transfer.from_chain), str(units)],
            self._context(intent, transfer, STEP_APPROVE),
        )

    def _standard_burn(self, intent: Intent, transfer: BridgeTransfer) -> PendingOperation:
        units = usdc_to_units(transfer.amount, self._config.token_decimals)
        return PendingOperation.contract_call(
            ChallengePurpose.BRIDGE_BURN,
            intent.wallet_id,
            IntentKind.BRIDGE,
            get_token_messenger_v2(transfer.from_chain),
            DEPOSIT_FOR_BURN_SIGNATURE,
            [
                str(units),
                str(get_cctp_domain(transfer.to_chain)),
                address_to_bytes32(transfer.recipient),
                get_usdc_address(transfer.from_chain),
                EMPTY_DESTINATION_CALLER,
                str(CCTP_MAX_FEE),
                str(STANDARD_TRANSFER_THRESHOLD),
            ],
            self._context(intent, transfer, STEP_BURN),
            amount=transfer.amount,
        )

    def _burn_hash_context(
        self, intent: Intent, transfer: BridgeTransfer, completion: StepCompletion
    ) -> HashContext:
        return HashContext(
            owner_id=intent.owner_user_id,
            wallet_id=intent.wallet_id,
            transaction_id=completion.transaction_id,
            challenge_id=completion.challenge_id,
            from_address=intent.source_address,
            to_address=get_token_messenger_v2(transfer.from_chain),
            amount=transfer.amount,
        )

    async def _after_burn(
        self, intent: Intent, transfer: BridgeTransfer, completion: StepCompletion
    ) -> BridgeStep:
        transfer.status = BridgeStatus.SUBMITTING
        await self.save(transfer)
        hash_context = self._burn_hash_context(intent, transfer, completion)

        if is_valid_tx_hash(completion.tx_hash):
            transfer.source_tx_hash = completion.tx_hash
        elif completion.operation_id is not None:
            resolution = await self._hash_resolver.wait_for_hash(
                completion.operation_id, hash_context
            )
            if resolution.status in (HashStatus.FOUND, HashStatus.FAILED):
                self._hash_resolver.forget(completion.operation_id)
            if resolution.status == HashStatus.FAILED:
                await self.fail(transfer, resolution.reason or "burn failed")
                raise self._error(transfer, f"The burn transaction failed: {resolution.reason}")
            if resolution.status == HashStatus.FOUND:
                transfer.source_tx_hash = resolution.tx_hash

        transfer.status = BridgeStatus.MONITORING
        await self.save(transfer)
        self._watch(intent, transfer, hash_context if transfer.source_tx_hash is None else None)
        return BridgeStep(transfer, tx_hash=transfer.source_tx_hash)

    # ==================== Monitoring ====================

    def _watch(
        self, intent: Intent, transfer: BridgeTransfer, hash_context: HashContext | None
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._monitor_transfer(transfer, hash_context), name=f"arcle-bridge:{transfer.id}"
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)

    async def _poll_transfer(
        self, transfer: BridgeTransfer, hash_context: HashContext | None
    ) -> str:
        if transfer.mode == BridgeMode.FAST:
            return _gateway_progress(await self._gateway.transfer_status(transfer.transfer_id))

        if transfer.source_tx_hash is None:
            operation_id = hash_context.transaction_id or hash_context.challenge_id
            resolution = await self._hash_resolver.resolve_hash(operation_id, hash_context)
            if resolution.status == HashStatus.FAILED:
                return "failed"
            if resolution.status != HashStatus.FOUND:
                return "pending"
            transfer.source_tx_hash = resolution.tx_hash
            await self.save(transfer)

        domain = get_cctp_domain(transfer.from_chain)
        return attestation_progress(await self._iris.messages(domain, transfer.source_tx_hash))

    async def _monitor_transfer(
        self, transfer: BridgeTransfer, hash_context: HashContext | None
    ) -> None:
        interval = self._config.bridge_poll_interval
        result = await self._monitor.run_until(
            ("bridge", transfer.id),
            lambda: self._poll_transfer(transfer, hash_context),
            PollConfig(
                active_interval=interval,
                idle_interval=interval,
                pause_after_idle=None,
                max_attempts=self._config.bridge_poll_attempts,
            ),
            is_done=lambda progress: progress in ("complete", "failed"),
        )
        if hash_context is not None:
            self._hash_resolver.forget(hash_context.transaction_id or hash_context.challenge_id)
        if result.reason == "stopped":
            return

        error: BridgeError | None = None
        if result.completed and result.value == "complete":
            transfer.status = BridgeStatus.COMPLETE
            await self.save(transfer)
            self._logger.info(f"Bridge {transfer.id} complete")
        else:
            reason = (
                "The destination chain did not confirm the transfer"
                if result.completed
                else "The destination chain has not confirmed the transfer yet"
            )
            await self.fail(transfer, reason)
            error = self._error(transfer, reason, source_leg_done=True)
            self._logger.error(f"Bridge {transfer.id} failed after submission: {reason}")
        await self._notify(transfer, error)

    async def _notify(self, transfer: BridgeTransfer, error: BridgeError | None) -> None:
        for listener in self._listeners:
            try:
                result = listener(transfer, error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(f"Bridge listener failed: {e}", exc_info=True)

    async def stop(self) -> None:
        """Cancel background monitoring; records keep their last status."""
        watchers = list(self._watchers)
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)

    @staticmethod
    def _context(
        intent: Intent, transfer: BridgeTransfer, step: str, **extra: Any
    ) -> dict[str, Any]:
        context = intent.resume_context()
        context.update(bridge_id=transfer.id, step=step, **extra)
        return context
