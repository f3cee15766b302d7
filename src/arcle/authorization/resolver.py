"""
Authorization-path resolver.

Decides how one pending operation gets authorized:

1. Delegation enabled and an active session key covers it: execute through
   the delegated channel, no interactive step.
2. Delegation enabled but no active key: report ``needs-approval`` so the UI
   can ask for first-time consent.
3. Otherwise create an interactive challenge carrying the resume context.

A key that exists but cannot cover the amount, or a delegated execution that
fails, falls through to step 3. Nothing is silently rejected.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from arcle.authorization.operations import OperationType, PendingOperation
from arcle.authorization.session_keys import SessionKeyRegistry
from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.exceptions import DelegationError, NetworkError, ValidationError
from arcle.core.logging import bind_logger, get_logger
from arcle.core.outcomes import Authorization, DelegatedResult
from arcle.core.types import Challenge, Credential, Intent, SessionKey
from arcle.intents.challenges import ChallengeRegistry

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager


class AuthorizationResolver:
    def __init__(
        self,
        config: Config,
        circle: CircleClient,
        credentials: CredentialManager,
        challenges: ChallengeRegistry,
        session_keys: SessionKeyRegistry | None = None,
    ) -> None:
        self._config = config
        self._circle = circle
        self._credentials = credentials
        self._challenges = challenges
        self._session_keys = session_keys
        self._logger = get_logger("authorization")

    @property
    def delegation_enabled(self) -> bool:
        return (
            self._config.session_keys_enabled
            and self._session_keys is not None
            and self._session_keys.delegation is not None
        )

    async def authorize(
        self,
        intent: Intent,
        operation: PendingOperation | None = None,
        force_interactive: bool = False,
    ) -> Authorization:
        """
        Resolve the authorization path for ``operation`` (a plain transfer of
        the intent when omitted).

        Raises:
            ChallengeInProgressError: The wallet already has a live challenge
            SessionExpiredError: The provider rejected the credential twice
        """
        if operation is None:
            operation = PendingOperation.transfer(
                intent.wallet_id, intent.destination, intent.amount, intent.resume_context()
            )
        log = bind_logger(self._logger, intent=intent.id, wallet=intent.wallet_id)

        if self.delegation_enabled and not force_interactive:
            key = await self._session_keys.find_active(
                intent.wallet_id, operation.action, agent_id=intent.agent_id
            )
            if key is None:
                log.info("No active session key; asking for approval")
                return Authorization.needs_approval(
                    "Approve a spending session to skip the PIN prompt for this wallet"
                )
            if key.can_cover(operation.amount):
                result = await self._execute_delegated(key, operation, log)
                if result is not None:
                    return Authorization.delegated(result)
            else:
                log.info(
                    f"Session key {key.id} cannot cover {operation.amount} "
                    f"(remaining {key.remaining}); using a challenge"
                )

        challenge = await self.create_challenge(intent, operation)
        return Authorization.via_challenge(challenge)

    async def _execute_delegated(
        self, key: SessionKey, operation: PendingOperation, log
    ) -> DelegatedResult | None:
        reserved = await self._session_keys.reserve(key.id, operation.amount)
        if reserved is None:
            log.info(f"Session key {key.id} could not reserve {operation.amount}")
            return None
        try:
            result = await self._session_keys.delegation.execute(reserved, operation)
        except (DelegationError, NetworkError) as e:
            await self._session_keys.release(key.id, operation.amount)
            log.warning(f"Delegated execution failed, falling back to a challenge: {e}")
            return None
        log.info(
            f"Delegated {operation.purpose.value} via session key {key.id} "
            f"(used {reserved.spending_used} of {reserved.spending_limit})"
        )
        return result

    async def create_challenge(self, intent: Intent, operation: PendingOperation) -> Challenge:
        """
        Create an interactive challenge for ``operation`` and register it as
        the wallet's outstanding challenge.
        """
        wallet_id = operation.wallet_id
        async with self._challenges.creation_lock(wallet_id):
            await self._challenges.ensure_available(wallet_id, intent.owner_user_id)

            async def create(credential: Credential) -> tuple[str, Credential]:
                return await self._request_challenge(credential, operation), credential

            challenge_id, credential = await self._credentials.call_with_auth(
                intent.owner_user_id, create
            )
            challenge = Challenge(
                id=challenge_id,
                owner_user_id=intent.owner_user_id,
                wallet_id=wallet_id,
                purpose=operation.purpose,
                auth_token=credential.auth_token,
                encryption_key=credential.encryption_key,
                resume_context=dict(operation.resume_context),
                intent_id=intent.id,
            )
            return await self._challenges.register(challenge)

    async def _request_challenge(self, credential: Credential, operation: PendingOperation) -> str:
        if operation.type == OperationType.TRANSFER:
            if not operation.destination:
                raise ValidationError("Transfer operation without a destination")
            return await self._circle.create_transfer_challenge(
                credential, operation.wallet_id, operation.destination, operation.amount
            )
        if operation.type == OperationType.CONTRACT_EXECUTION:
            return await self._circle.create_contract_execution_challenge(
                credential,
                operation.wallet_id,
                operation.contract_address,
                operation.abi_function_signature,
                list(operation.abi_parameters),
            )
        return await self._circle.create_typed_data_challenge(
            credential, operation.wallet_id, operation.typed_data, memo=operation.memo
        )
