"""
Intent & challenge lifecycle manager.

The intent state machine:

    draft -> confirmed -> authorizing -> settling -> settled

with failed and cancelled reachable as listed in ALLOWED_TRANSITIONS.

Every step returns a ``StepOutcome`` (``Ok``, ``NeedsChallenge``,
``NeedsApproval``, ``Failed`` or ``Ignored``). Structural errors become a
``Failed`` outcome with a specific reason; only ``SessionExpiredError``
escapes to the caller.

Challenge completions arrive from outside (webhook or client SDK callback).
Everything needed to continue lives in the challenge's resume context, so a
completion is processed correctly even when the live intent object was lost
or changed in between.
"""

from __future__ import annotations

import inspect
import uuid
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from arcle.authorization.operations import PendingOperation, StepCompletion
from arcle.authorization.resolver import AuthorizationResolver
from arcle.authorization.session_keys import SessionKeyRegistry
from arcle.bridge.protocol import BridgeSettlement
from arcle.confirmation.resolver import HashContext, HashResolution, HashResolver, HashStatus
from arcle.core.cctp_constants import APPROVE_SIGNATURE, get_usdc_address
from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.events import ChallengeEvent, parse_challenge_status
from arcle.core.exceptions import (
    ArcleError,
    BridgeError,
    ChallengeExpiredError,
    ChallengeFailedError,
    ConfigurationError,
    DelegationError,
    InvalidTransitionError,
    NetworkError,
    SessionExpiredError,
    ValidationError,
    WalletError,
)
from arcle.core.gateway_client import usdc_to_units
from arcle.core.logging import bind_logger, get_logger
from arcle.core.outcomes import (
    Authorization,
    AuthPath,
    Failed,
    Ignored,
    NeedsApproval,
    NeedsChallenge,
    Ok,
    StepOutcome,
)
from arcle.core.types import (
    AmountType,
    BridgeMode,
    BridgeTransfer,
    Challenge,
    ChallengePurpose,
    ChallengeStatus,
    Intent,
    IntentKind,
    IntentStatus,
    Network,
    normalize_network,
    to_decimal,
    utcnow,
)
from arcle.intents.balances import BalanceTracker
from arcle.intents.challenges import ChallengeRegistry
from arcle.intents.validation import is_valid_tx_hash, normalize_address
from arcle.monitoring.adaptive import AdaptiveMonitor, PollConfig
from arcle.risk.factors import RecipientHistory, RiskContext
from arcle.risk.scorer import RiskScorer

if TYPE_CHECKING:
    from datetime import timedelta

    from arcle.credentials.manager import CredentialManager


ALLOWED_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.DRAFT: frozenset(
        {IntentStatus.CONFIRMED, IntentStatus.FAILED, IntentStatus.CANCELLED}
    ),
    IntentStatus.CONFIRMED: frozenset(
        {IntentStatus.AUTHORIZING, IntentStatus.FAILED, IntentStatus.CANCELLED}
    ),
    IntentStatus.AUTHORIZING: frozenset(
        {IntentStatus.SETTLING, IntentStatus.FAILED, IntentStatus.CANCELLED}
    ),
    IntentStatus.SETTLING: frozenset({IntentStatus.SETTLED, IntentStatus.FAILED}),
    IntentStatus.SETTLED: frozenset(),
    IntentStatus.FAILED: frozenset(),
    IntentStatus.CANCELLED: frozenset(),
}

CANCELLABLE = frozenset({IntentStatus.DRAFT, IntentStatus.CONFIRMED, IntentStatus.AUTHORIZING})

# Kinds whose settlement lowers the wallet's USDC balance by the intent amount
DEBITING_KINDS = frozenset({IntentKind.TRANSFER, IntentKind.BRIDGE, IntentKind.YIELD_SUBSCRIBE})

STEP_APPROVE = "approve"
STEP_COMPLETE = "complete"

IntentListener = Callable[[Intent], Any]


class IntentManager:
    """
    Drives intents from confirmation to settlement.

    Holds the in-flight intents of one orchestrator instance; challenge
    records in storage are the durable part.
    """

    def __init__(
        self,
        config: Config,
        circle: CircleClient,
        credentials: CredentialManager,
        challenges: ChallengeRegistry,
        authorizer: AuthorizationResolver,
        hashes: HashResolver,
        balances: BalanceTracker,
        bridge: BridgeSettlement,
        risk: RiskScorer,
        history: RecipientHistory,
        monitor: AdaptiveMonitor,
        session_keys: SessionKeyRegistry | None = None,
    ) -> None:
        self._config = config
        self._circle = circle
        self._credentials = credentials
        self._challenges = challenges
        self._authorizer = authorizer
        self._hashes = hashes
        self._balances = balances
        self._bridge = bridge
        self._risk = risk
        self._history = history
        self._monitor = monitor
        self._session_keys = session_keys
        self._intents: dict[str, Intent] = {}
        self._awaiting_approval: dict[str, PendingOperation] = {}
        self._listeners: list[IntentListener] = []
        self._logger = get_logger("intents")
        bridge.add_listener(self._on_bridge_finished)

    # ==================== Records ====================

    def create_intent(
        self,
        kind: IntentKind,
        owner_user_id: str,
        wallet_id: str,
        amount: AmountType,
        destination: str | None = None,
        blockchain: Network | str | None = None,
        from_chain: Network | str | None = None,
        to_chain: Network | str | None = None,
        bridge_mode: BridgeMode | str | None = None,
        agent_id: str | None = None,
        source_address: str | None = None,
    ) -> Intent:
        """
        Create a draft intent.

        Yield intents need no destination; the teller contract is used.

        Raises:
            ValidationError: Missing or non-positive amount, missing destination
        """
        value = to_decimal(amount)
        if value <= 0:
            raise ValidationError("Amount must be positive")
        if kind in (IntentKind.YIELD_SUBSCRIBE, IntentKind.YIELD_REDEEM):
            destination = destination or self._config.usyc_teller_address
        if not destination:
            raise ValidationError("Destination is required")
        if kind == IntentKind.BRIDGE and (from_chain is None or to_chain is None):
            raise ValidationError("Bridge intents need a source and destination chain")

        network = normalize_network(blockchain) or self._config.network
        intent = Intent(
            id=f"int_{uuid.uuid4().hex}",
            kind=kind,
            owner_user_id=owner_user_id,
            wallet_id=wallet_id,
            amount=value,
            destination=destination,
            source_address=source_address,
            blockchain=network,
            from_chain=normalize_network(from_chain),
            to_chain=normalize_network(to_chain),
            bridge_mode=BridgeMode(bridge_mode) if bridge_mode else None,
            agent_id=agent_id,
        )
        self._intents[intent.id] = intent
        return intent

    def get(self, intent_id: str) -> Intent | None:
        return self._intents.get(intent_id)

    def forget(self, intent_id: str) -> None:
        """Drop the live intent; a later completion rebuilds it from the challenge."""
        self._intents.pop(intent_id, None)
        self._awaiting_approval.pop(intent_id, None)

    def add_listener(self, listener: IntentListener) -> None:
        """Called with the intent after every status change."""
        self._listeners.append(listener)

    async def _notify(self, intent: Intent) -> None:
        for listener in self._listeners:
            try:
                result = listener(intent)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(f"Intent listener failed: {e}", exc_info=True)

    async def _transition(self, intent: Intent, target: IntentStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[intent.status]:
            raise InvalidTransitionError(intent.id, intent.status.value, target.value)
        self._logger.info(f"Intent {intent.id}: {intent.status.value} -> {target.value}")
        intent.status = target
        intent.updated_at = utcnow()
        await self._notify(intent)
        if intent.is_terminal:
            self.forget(intent.id)

    async def _fail(self, intent: Intent, error: ArcleError) -> Failed:
        intent.failure_reason = error.user_message()
        log = bind_logger(self._logger, intent=intent.id, wallet=intent.wallet_id)
        if error.funds_moved or isinstance(error, BridgeError):
            log.error(f"Intent failed: {error}")
        else:
            log.warning(f"Intent failed: {error}")
        self._awaiting_approval.pop(intent.id, None)
        # A failed intent is no longer tracked; stale challenges must not rebuild it
        for challenge in await self._challenges.pending_for_intent(intent.id):
            await self._challenges.cancel(challenge.id)
        await self._release_bridge(intent, error.message)
        if not intent.is_terminal:
            await self._transition(intent, IntentStatus.FAILED)
        return Failed(intent, error.message, error)

    async def _release_bridge(self, intent: Intent, reason: str) -> None:
        if not intent.bridge_id:
            return
        transfer = await self._bridge.get(intent.bridge_id)
        if transfer is not None and not transfer.is_terminal:
            await self._bridge.fail(transfer, reason)

    # ==================== Confirmation ====================

    async def confirm_intent(self, intent: Intent) -> StepOutcome:
        """
        Confirm a draft intent and start authorizing its first step.

        Raises:
            SessionExpiredError: The provider rejected the credential after a refresh
        """
        if intent.status != IntentStatus.DRAFT:
            raise InvalidTransitionError(intent.id, intent.status.value, IntentStatus.CONFIRMED.value)
        self._intents[intent.id] = intent

        try:
            intent.destination = normalize_address(intent.destination)
            if intent.source_address:
                intent.source_address = normalize_address(intent.source_address)
        except ArcleError as e:
            return await self._fail(intent, e)

        if intent.kind in (IntentKind.TRANSFER, IntentKind.BRIDGE):
            assessment = await self._risk.assess(
                RiskContext(
                    owner_user_id=intent.owner_user_id,
                    wallet_id=intent.wallet_id,
                    destination=intent.destination,
                    amount=intent.amount,
                    kind=intent.kind,
                )
            )
            intent.risk_score = assessment.score
            if assessment.warning is not None:
                intent.warnings.append(assessment.warning.message)

        await self._transition(intent, IntentStatus.CONFIRMED)
        try:
            await self._prepare(intent)
            operation = await self._first_operation(intent)
            if intent.status == IntentStatus.CANCELLED:
                await self._release_bridge(intent, "cancelled")
                return Ignored("Intent was cancelled")
            await self._transition(intent, IntentStatus.AUTHORIZING)
            return await self._authorize(intent, operation)
        except SessionExpiredError:
            raise
        except ArcleError as e:
            return await self._fail(intent, e)

    async def _prepare(self, intent: Intent) -> None:
        """Fill the source address and check funds against a fresh balance."""
        if not intent.source_address:
            wallet = await self._credentials.call_with_auth(
                intent.owner_user_id,
                lambda credential: self._circle.get_wallet(credential, intent.wallet_id),
            )
            intent.source_address = wallet.address

        if intent.kind in DEBITING_KINDS:
            balance = await self._balances.ensure_sufficient(
                intent.owner_user_id, intent.wallet_id, intent.amount
            )
        else:
            balance = await self._balances.refresh(intent.owner_user_id, intent.wallet_id)
        intent.metadata["balance_before"] = str(balance)

    async def _first_operation(self, intent: Intent) -> PendingOperation:
        if intent.kind == IntentKind.TRANSFER:
            return PendingOperation.transfer(
                intent.wallet_id, intent.destination, intent.amount, intent.resume_context()
            )
        if intent.kind == IntentKind.BRIDGE:
            step = await self._bridge.start(intent)
            return step.operation
        return self._yield_approve(intent)

    # ==================== Authorization ====================

    async def _authorize(self, intent: Intent, operation: PendingOperation) -> StepOutcome:
        if intent.status == IntentStatus.CANCELLED:
            return Ignored("Intent was cancelled", intent.challenge_id)
        started_at = utcnow()
        authorization = await self._authorizer.authorize(
            intent, operation, force_interactive=bool(intent.metadata.get("interactive"))
        )
        # cancel_intent may have run while the authorizer was awaiting the provider
        if intent.status == IntentStatus.CANCELLED:
            return await self._abandon_authorization(intent, authorization)
        if authorization.path == AuthPath.CHALLENGE:
            intent.challenge_id = authorization.challenge.id
            return NeedsChallenge(intent, authorization.challenge)
        if authorization.path == AuthPath.NEEDS_APPROVAL:
            self._awaiting_approval[intent.id] = operation
            return NeedsApproval(intent, authorization.reason)

        result = authorization.result
        completion = StepCompletion(
            transaction_id=result.transaction_id,
            tx_hash=result.tx_hash,
            signature=result.signature,
            started_at=started_at,
            payload=result.raw or {},
        )
        return await self._continue(intent, operation.purpose, operation.resume_context, completion)

    async def _abandon_authorization(
        self, intent: Intent, authorization: Authorization
    ) -> Ignored:
        if authorization.path == AuthPath.CHALLENGE:
            challenge_id = authorization.challenge.id
            await self._challenges.cancel(challenge_id)
            self._logger.info(
                f"Intent {intent.id} was cancelled while challenge {challenge_id} was created"
            )
            return Ignored("Intent was cancelled", challenge_id)
        if authorization.path == AuthPath.DELEGATED:
            self._logger.warning(
                f"Intent {intent.id} was cancelled after delegated execution of "
                f"transaction {authorization.result.transaction_id}"
            )
        return Ignored("Intent was cancelled", intent.challenge_id)

    async def approve_session(
        self,
        intent_id: str,
        spending_limit: AmountType,
        duration: timedelta,
        allowed_actions: list[IntentKind] | None = None,
        max_per_transaction: AmountType | None = None,
    ) -> StepOutcome:
        """
        Grant a session key after first-time consent and retry the pending step.

        A grant the delegation service rejects falls back to the interactive
        challenge.

        Raises:
            ConfigurationError: Session keys are not configured
            ValidationError: The intent is not waiting for approval
        """
        if self._session_keys is None:
            raise ConfigurationError("Session keys are not configured")
        intent, operation = self._take_awaiting(intent_id)
        try:
            await self._session_keys.grant(
                intent.wallet_id,
                to_decimal(spending_limit),
                duration,
                agent_id=intent.agent_id,
                allowed_actions=allowed_actions,
                max_per_transaction=to_decimal(max_per_transaction)
                if max_per_transaction is not None
                else None,
            )
        except (DelegationError, NetworkError) as e:
            self._logger.warning(f"Session key grant failed, using a challenge instead: {e}")
            intent.metadata["interactive"] = True
        return await self._resume_authorization(intent, operation)

    async def decline_session(self, intent_id: str) -> StepOutcome:
        """Continue with interactive challenges for the rest of this intent."""
        intent, operation = self._take_awaiting(intent_id)
        intent.metadata["interactive"] = True
        return await self._resume_authorization(intent, operation)

    def _take_awaiting(self, intent_id: str) -> tuple[Intent, PendingOperation]:
        intent = self._intents.get(intent_id)
        operation = self._awaiting_approval.pop(intent_id, None)
        if intent is None or operation is None:
            raise ValidationError(f"Intent {intent_id} is not waiting for session approval")
        return intent, operation

    async def _resume_authorization(
        self, intent: Intent, operation: PendingOperation
    ) -> StepOutcome:
        try:
            return await self._authorize(intent, operation)
        except SessionExpiredError:
            raise
        except ArcleError as e:
            return await self._fail(intent, e)

    # ==================== Cancellation ====================

    async def cancel_intent(self, intent_id: str) -> bool:
        """
        Cancel an intent before settlement begins.

        Pending challenges are released locally; the provider-side challenge
        stays live and its completion is ignored. Returns False (a no-op)
        once settlement has begun or the intent is unknown.
        """
        intent = self._intents.get(intent_id)
        if intent is None or intent.status not in CANCELLABLE:
            return False
        for challenge in await self._challenges.pending_for_intent(intent_id):
            await self._challenges.cancel(challenge.id)
        self._awaiting_approval.pop(intent_id, None)
        await self._transition(intent, IntentStatus.CANCELLED)
        await self._release_bridge(intent, "cancelled")
        return True

    # ==================== Challenge completion ====================

    async def on_challenge_result(self, challenge_id: str, event: ChallengeEvent) -> StepOutcome:
        """
        Process a challenge completion.

        Duplicate, unknown, cancelled and concurrent completions are ignored.
        The wallet's reentrancy latch is held for the whole step.

        Raises:
            SessionExpiredError: The provider rejected the credential after a refresh
        """
        if event.status == ChallengeStatus.PENDING:
            return Ignored("Challenge is not finished", challenge_id)
        challenge = await self._challenges.get(challenge_id)
        if challenge is None:
            return Ignored("Unknown challenge", challenge_id)

        async with self._challenges.processing(challenge.wallet_id) as acquired:
            if not acquired:
                self._logger.info(
                    f"Ignoring completion of {challenge_id}: wallet {challenge.wallet_id} is busy"
                )
                return Ignored("Another completion is being processed for this wallet", challenge_id)

            challenge = await self._challenges.get(challenge_id)
            if challenge.cancelled:
                return Ignored("Challenge was cancelled", challenge_id)
            if not challenge.is_pending:
                return Ignored("Challenge was already processed", challenge_id)
            await self._challenges.mark(challenge_id, event.status)

            if challenge.purpose == ChallengePurpose.WALLET_CREATION:
                return self._wallet_created(challenge, event)

            intent = self._resume_intent(challenge)
            if intent.status == IntentStatus.CANCELLED:
                return Ignored("Intent was cancelled", challenge_id)
            if intent.is_terminal:
                return Ignored(f"Intent is already {intent.status.value}", challenge_id)

            try:
                if event.status == ChallengeStatus.EXPIRED:
                    raise ChallengeExpiredError("The authorization request expired", challenge_id)
                if not event.succeeded:
                    raise ChallengeFailedError(
                        event.error_message or "The authorization was declined", challenge_id
                    )
                completion = self._completion_from(challenge, event)
                return await self._continue(
                    intent,
                    challenge.purpose,
                    challenge.resume_context,
                    completion,
                    fetch_payload=lambda: self._fetch_challenge(challenge),
                )
            except SessionExpiredError:
                raise
            except ArcleError as e:
                return await self._fail(intent, e)

    def _resume_intent(self, challenge: Challenge) -> Intent:
        context = challenge.resume_context
        stored = Intent.from_resume_context(context)
        live = self._intents.get(stored.id)
        if live is None:
            self._logger.info(f"Rebuilt intent {stored.id} from challenge {challenge.id}")
            stored.challenge_id = challenge.id
            self._intents[stored.id] = stored
            return stored

        if live.amount != stored.amount or live.destination.lower() != stored.destination.lower():
            self._logger.warning(
                f"Intent {live.id} changed since challenge {challenge.id} was raised; "
                f"settling the authorized {stored.amount} to {stored.destination}"
            )
            live.amount = stored.amount
            live.destination = stored.destination
        live.source_address = live.source_address or stored.source_address
        live.bridge_id = live.bridge_id or stored.bridge_id
        return live

    @staticmethod
    def _completion_from(challenge: Challenge, event: ChallengeEvent) -> StepCompletion:
        result = event.result or {}
        correlation_ids = result.get("correlationIds") or []
        return StepCompletion(
            challenge_id=challenge.id,
            transaction_id=result.get("transactionId") or (correlation_ids[0] if correlation_ids else None),
            tx_hash=result.get("txHash"),
            started_at=challenge.created_at,
            payload=result,
        )

    async def _fetch_challenge(self, challenge: Challenge) -> dict[str, Any]:
        return await self._credentials.call_with_auth(
            challenge.owner_user_id,
            lambda credential: self._circle.get_challenge(credential, challenge.id),
        )

    def _wallet_created(self, challenge: Challenge, event: ChallengeEvent) -> StepOutcome:
        if event.succeeded:
            self._logger.info(f"Wallet setup completed for {challenge.owner_user_id}")
            return Ok(None, message="Wallet created")
        error = ChallengeFailedError(
            event.error_message or "Wallet setup was not completed", challenge.id
        )
        return Failed(None, error.message, error)

    async def await_challenge(self, challenge_id: str) -> StepOutcome:
        """
        Poll the provider for a challenge's status and process it.

        A fallback diagnostic for when no completion event arrives; bounded by
        ``challenge_poll_attempts``.
        """
        challenge = await self._challenges.get(challenge_id)
        if challenge is None:
            return Ignored("Unknown challenge", challenge_id)
        interval = self._config.challenge_poll_interval
        result = await self._monitor.run_until(
            ("challenge", challenge_id),
            lambda: self._fetch_challenge(challenge),
            PollConfig(
                active_interval=interval,
                idle_interval=interval,
                pause_after_idle=None,
                max_attempts=self._config.challenge_poll_attempts,
            ),
            is_done=lambda data: parse_challenge_status(data.get("status"))
            != ChallengeStatus.PENDING,
        )
        if not result.completed:
            return Ignored(
                f"Challenge still pending after {result.attempts} status checks", challenge_id
            )
        data = result.value
        error_code = data.get("errorCode")
        event = ChallengeEvent(
            challenge_id=challenge_id,
            status=parse_challenge_status(data.get("status")),
            result=data,
            error_code=str(error_code) if error_code is not None else None,
            error_message=data.get("errorMessage"),
        )
        return await self.on_challenge_result(challenge_id, event)

    # ==================== Step chaining ====================

    async def _continue(
        self,
        intent: Intent,
        purpose: ChallengePurpose,
        context: dict[str, Any],
        completion: StepCompletion,
        fetch_payload: Callable[[], Any] | None = None,
    ) -> StepOutcome:
        if purpose == ChallengePurpose.TRANSFER:
            return await self._settle(intent, completion, self._transfer_hash_context(intent, completion))

        if purpose == ChallengePurpose.YIELD_APPROVE:
            return await self._authorize(intent, self._yield_complete(intent))
        if purpose == ChallengePurpose.YIELD_COMPLETE:
            return await self._settle(
                intent,
                completion,
                HashContext(
                    owner_id=intent.owner_user_id,
                    wallet_id=intent.wallet_id,
                    transaction_id=completion.transaction_id,
                    challenge_id=completion.challenge_id,
                ),
            )

        step = await self._bridge.advance(intent, purpose, context, completion, fetch_payload)
        if intent.is_terminal:
            return Ignored(f"Intent is already {intent.status.value}", completion.challenge_id)
        if step.operation is not None:
            return await self._authorize(intent, step.operation)
        return await self._bridge_submitted(intent, step.transfer, step.tx_hash)

    @staticmethod
    def _transfer_hash_context(intent: Intent, completion: StepCompletion) -> HashContext:
        return HashContext(
            owner_id=intent.owner_user_id,
            wallet_id=intent.wallet_id,
            transaction_id=completion.transaction_id,
            challenge_id=completion.challenge_id,
            from_address=intent.source_address,
            to_address=intent.destination,
            amount=intent.amount,
            not_before=completion.started_at,
        )

    # ==================== Yield ====================

    def _yield_approve(self, intent: Intent) -> PendingOperation:
        if intent.kind == IntentKind.YIELD_SUBSCRIBE:
            token = get_usdc_address(intent.blockchain)
        else:
            token = self._config.usyc_token_address
        units = usdc_to_units(intent.amount, self._config.token_decimals)
        context = intent.resume_context()
        context["step"] = STEP_APPROVE
        return PendingOperation.contract_call(
            ChallengePurpose.YIELD_APPROVE,
            intent.wallet_id,
            intent.kind,
            token,
            APPROVE_SIGNATURE,
            [self._config.usyc_teller_address, str(units)],
            context,
        )

    def _yield_complete(self, intent: Intent) -> PendingOperation:
        signature = "buy(uint256)" if intent.kind == IntentKind.YIELD_SUBSCRIBE else "sell(uint256)"
        units = usdc_to_units(intent.amount, self._config.token_decimals)
        context = intent.resume_context()
        context["step"] = STEP_COMPLETE
        return PendingOperation.contract_call(
            ChallengePurpose.YIELD_COMPLETE,
            intent.wallet_id,
            intent.kind,
            self._config.usyc_teller_address,
            signature,
            [str(units)],
            context,
            amount=intent.amount if intent.kind in DEBITING_KINDS else Decimal("0"),
        )

    # ==================== Settlement ====================

    async def _settle(
        self, intent: Intent, completion: StepCompletion, hash_context: HashContext
    ) -> StepOutcome:
        await self._transition(intent, IntentStatus.SETTLING)
        if intent.kind in DEBITING_KINDS:
            await self._balances.apply_debit(intent.wallet_id, intent.amount)
        intent.transaction_id = completion.transaction_id

        if is_valid_tx_hash(completion.tx_hash):
            resolution = HashResolution(
                HashStatus.FOUND,
                tx_hash=completion.tx_hash,
                source="provider",
                transaction_id=completion.transaction_id,
            )
        elif completion.operation_id is None:
            resolution = HashResolution(
                HashStatus.PROCESSING,
                reason="Transaction is still processing; check the wallet activity for its status",
            )
        else:
            resolution = await self._hashes.wait_for_hash(completion.operation_id, hash_context)
            self._hashes.forget(completion.operation_id)

        if resolution.status == HashStatus.FAILED:
            await self._reconcile(intent)
            return await self._fail(
                intent,
                WalletError(
                    f"The transaction was rejected: {resolution.reason}",
                    wallet_id=intent.wallet_id,
                ),
            )

        intent.transaction_id = resolution.transaction_id or intent.transaction_id
        if resolution.status == HashStatus.FOUND:
            intent.tx_hash = resolution.tx_hash
            await self._transition(intent, IntentStatus.SETTLED)
            await self._record_recipient(intent)
            await self._reconcile(intent)
            return Ok(intent, tx_hash=resolution.tx_hash)

        if await self._balance_effect_observed(intent):
            await self._settle_optimistically(intent)
        await self._reconcile(intent)
        return Ok(intent, processing=True, message=resolution.reason)

    async def _balance_effect_observed(self, intent: Intent, balance: Decimal | None = None) -> bool:
        before = intent.metadata.get("balance_before")
        if before is None:
            return False
        if balance is None:
            try:
                balance = await self._balances.fetch(intent.owner_user_id, intent.wallet_id)
            except (NetworkError, WalletError) as e:
                self._logger.debug(f"Balance check for intent {intent.id} failed: {e}")
                return False
        if intent.kind in DEBITING_KINDS:
            return balance <= Decimal(before) - intent.amount
        return balance > Decimal(before)

    async def _settle_optimistically(self, intent: Intent) -> None:
        intent.settled_optimistically = True
        await self._transition(intent, IntentStatus.SETTLED)
        await self._record_recipient(intent)
        self._logger.info(f"Intent {intent.id} settled on observed balance; hash unresolved")

    async def _reconcile(self, intent: Intent) -> None:
        async def on_refresh(balance: Decimal) -> None:
            if intent.status == IntentStatus.SETTLING and intent.kind != IntentKind.BRIDGE:
                if await self._balance_effect_observed(intent, balance):
                    await self._settle_optimistically(intent)

        self._balances.schedule_reconciliation(
            intent.owner_user_id, intent.wallet_id, on_refresh, tag=intent.id
        )

    async def _record_recipient(self, intent: Intent) -> None:
        if intent.kind == IntentKind.TRANSFER:
            await self._history.record(intent.owner_user_id, intent.destination)

    # ==================== Bridge ====================

    async def _bridge_submitted(
        self, intent: Intent, transfer: BridgeTransfer, tx_hash: str | None
    ) -> StepOutcome:
        await self._transition(intent, IntentStatus.SETTLING)
        await self._balances.apply_debit(intent.wallet_id, intent.amount)
        intent.tx_hash = tx_hash
        return Ok(
            intent,
            tx_hash=tx_hash,
            processing=True,
            message=f"Bridge to {transfer.to_chain.value} submitted; waiting for the destination chain",
        )

    async def _on_bridge_finished(self, transfer: BridgeTransfer, error: BridgeError | None) -> None:
        intent = self._intents.get(transfer.intent_id)
        if intent is None or intent.status != IntentStatus.SETTLING:
            self._logger.info(f"Bridge {transfer.id} finished for an intent no longer tracked")
            return
        if error is None:
            await self._transition(intent, IntentStatus.SETTLED)
        else:
            intent.failure_reason = error.user_message()
            await self._transition(intent, IntentStatus.FAILED)
        try:
            await self._balances.refresh(intent.owner_user_id, intent.wallet_id)
        except (NetworkError, WalletError) as e:
            self._logger.warning(f"Balance refresh after bridge {transfer.id} failed: {e}")
