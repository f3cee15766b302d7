"""
Exception hierarchy for arcle.

All orchestrator exceptions inherit from ArcleError. Fatal errors carry a
``user_message()`` that says what failed, whether funds moved and what the
user can do next.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class ArcleError(Exception):
    """
    Base exception for all arcle errors.

    Example:
        >>> try:
        ...     await arcle.confirm_intent(intent)
        ... except ArcleError as e:
        ...     print(e.user_message())
    """

    #: Whether any funds left the wallet when this error was raised.
    funds_moved: bool = False
    #: Suggested next step shown to the user.
    next_step: str = "Please try again."

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def user_message(self) -> str:
        funds = (
            "Funds have left your wallet."
            if self.funds_moved
            else "No funds were moved."
        )
        return f"{self.message}. {funds} {self.next_step}"


class ConfigurationError(ArcleError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Required configuration values are not provided
    - Configuration values fail validation
    """

    pass


class ValidationError(ArcleError):
    """
    Input validation error.

    Raised when:
    - Required parameters are missing
    - An intent or challenge referenced by id does not exist
    """

    pass


class WalletError(ArcleError):
    """
    Wallet operation rejected by the custody provider.

    Raised when:
    - Wallet not found
    - Provider returns a non-retryable 4xx for a wallet call
    """

    def __init__(
        self,
        message: str,
        wallet_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.wallet_id = wallet_id


class InvalidDestinationError(ArcleError):
    """
    Destination address is unusable.

    Raised when:
    - Address is not a 20-byte hex address
    - Mixed-case address fails its EIP-55 checksum
    - Address is the null address
    """

    next_step = "Check the recipient address and try again."

    def __init__(
        self,
        message: str,
        address: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.address = address


class InsufficientBalanceError(ArcleError):
    """
    Wallet does not have enough balance for the intent.

    Raised when:
    - A fresh balance fetch right before submission is below the amount
    """

    next_step = "Add funds or lower the amount."

    def __init__(
        self,
        message: str,
        current_balance: Decimal,
        required_amount: Decimal,
        wallet_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.current_balance = current_balance
        self.required_amount = required_amount
        self.wallet_id = wallet_id
        self.shortfall = required_amount - current_balance

    def __str__(self) -> str:
        return (
            f"{self.message} | "
            f"Balance: {self.current_balance}, Required: {self.required_amount}, "
            f"Shortfall: {self.shortfall}"
        )


class NetworkError(ArcleError):
    """
    Network or API communication error (transient).

    Raised when:
    - HTTP request fails (timeout, connection error)
    - Provider returns a 5xx or rate limits the request
    """

    next_step = "Check your connection and try again in a moment."

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class AuthExpiredError(ArcleError):
    """
    The provider rejected the user token (401/403).

    Handled by refreshing the credential once and retrying once.
    """

    next_step = "Sign in again to continue."

    def __init__(
        self,
        message: str = "Authorization token rejected",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class CredentialUnavailableError(ArcleError):
    """No credential is cached, stored or refreshable for the owner."""

    next_step = "Sign in to continue."

    def __init__(self, message: str, owner_id: str | None = None) -> None:
        super().__init__(message)
        self.owner_id = owner_id


class RefreshFailedError(ArcleError):
    """Token refresh was attempted and failed."""

    next_step = "Sign in again to continue."

    def __init__(
        self,
        message: str,
        owner_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.owner_id = owner_id


class SessionExpiredError(ArcleError):
    """
    The session can no longer be recovered.

    Raised when a refresh-and-retry still fails authorization. All local
    credential and wallet state is invalidated and the user must sign in again.
    """

    next_step = "Your session has ended. Sign in again to continue."

    def __init__(self, message: str = "Session expired", owner_id: str | None = None) -> None:
        super().__init__(message)
        self.owner_id = owner_id


class ChallengeError(ArcleError):
    """Base for errors tied to one provider challenge."""

    def __init__(
        self,
        message: str,
        challenge_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.challenge_id = challenge_id


class ChallengeFailedError(ChallengeError):
    """The user or provider rejected the challenge."""

    next_step = "Start the action again when you are ready."


class ChallengeExpiredError(ChallengeError):
    """The challenge expired before the user completed it."""

    next_step = "Start the action again and complete the PIN prompt in time."


class ChallengeInProgressError(ChallengeError):
    """Another challenge for the same wallet is still outstanding."""

    next_step = "Finish or cancel the pending authorization first."


class SignatureNotFoundError(ChallengeError):
    """
    The signing challenge completed but no signature could be located.

    A known limitation: the provider's completion payload does not have a
    contractual shape for typed-data signatures.
    """

    next_step = (
        "The signing result could not be read from the wallet provider. "
        "Your funds are safe; try the bridge again."
    )


class DelegationError(ArcleError):
    """Delegated execution through a session key failed."""

    def __init__(
        self,
        message: str,
        session_key_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.session_key_id = session_key_id


class UnsupportedRouteError(ArcleError):
    """
    Bridge route cannot be served.

    Raised when:
    - Source and destination chains are the same
    - Either chain is outside the supported set

    ``supported_chains`` always lists the chains the caller can pick from.
    """

    next_step = "Pick a different source or destination chain."

    def __init__(
        self,
        message: str,
        supported_chains: list[str],
        source_chain: str | None = None,
        destination_chain: str | None = None,
    ) -> None:
        super().__init__(message, {"supported_chains": supported_chains})
        self.supported_chains = supported_chains
        self.source_chain = source_chain
        self.destination_chain = destination_chain

    def user_message(self) -> str:
        return (
            f"{self.message}. No funds were moved. "
            f"Supported chains: {', '.join(self.supported_chains)}."
        )


class BridgeError(ArcleError):
    """
    Cross-chain settlement error.

    Raised when:
    - Gateway rejects the signed burn intent
    - The Gateway deposit never becomes spendable
    - Destination leg stalls after the source leg succeeded
    """

    def __init__(
        self,
        message: str,
        source_chain: str,
        destination_chain: str,
        mode: str,
        source_leg_done: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.source_chain = source_chain
        self.destination_chain = destination_chain
        self.mode = mode
        self.source_leg_done = source_leg_done

    def __str__(self) -> str:
        return (
            f"[bridge:{self.mode}] {self.message} "
            f"({self.source_chain} -> {self.destination_chain})"
        )

    def user_message(self) -> str:
        if self.source_leg_done:
            return (
                f"{self.message}. Your source funds are intact and accounted for; "
                "the transfer to the destination chain needs investigation or a retry."
            )
        return f"{self.message}. Your source funds are intact. Try the bridge again."


class InvalidTransitionError(ArcleError):
    """An intent was asked to move to a state its current state cannot reach."""

    def __init__(self, intent_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Intent {intent_id} cannot move from {current} to {target}",
            {"intent_id": intent_id, "current": current, "target": target},
        )
        self.intent_id = intent_id
        self.current = current
        self.target = target
