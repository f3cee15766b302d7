"""
arcle - Authorization & Settlement Orchestrator for custodial USDC wallets

Turns a user intent (transfer, bridge, yield) into an on-chain-confirmed
operation: interactive challenge or session-key delegation, hash
confirmation with indexer fallback, CCTP / Gateway bridge settlement and
transparent credential refresh.

Usage:
    >>> from arcle import Arcle, IntentKind
    >>>
    >>> arcle = Arcle()
    >>> await arcle.sign_in("user-1")
    >>> intent = arcle.create_intent(IntentKind.TRANSFER, "user-1", "wallet-123", "10.00", "0x...")
    >>> outcome = await arcle.confirm_intent(intent)
    >>> if isinstance(outcome, NeedsChallenge):
    ...     # the UI shows the PIN prompt, then forwards the completion
    ...     await arcle.on_challenge_result(outcome.challenge.id, {"status": "COMPLETE"})
"""

from arcle.client import Arcle
from arcle.core.config import Config
from arcle.core.events import ChallengeEvent
from arcle.core.exceptions import (
    ArcleError,
    AuthExpiredError,
    BridgeError,
    ChallengeExpiredError,
    ChallengeFailedError,
    ChallengeInProgressError,
    ConfigurationError,
    CredentialUnavailableError,
    InsufficientBalanceError,
    InvalidDestinationError,
    InvalidTransitionError,
    NetworkError,
    RefreshFailedError,
    SessionExpiredError,
    SignatureNotFoundError,
    UnsupportedRouteError,
    ValidationError,
    WalletError,
)
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
    BridgeMode,
    BridgeStatus,
    BridgeTransfer,
    Challenge,
    ChallengePurpose,
    ChallengeStatus,
    Credential,
    Intent,
    IntentKind,
    IntentStatus,
    Network,
    SessionKey,
    TransactionInfo,
    WalletInfo,
)
from arcle.risk.scorer import RiskElevatedWarning

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "Arcle",
    # Config
    "Config",
    # Outcomes
    "Authorization",
    "AuthPath",
    "Failed",
    "Ignored",
    "NeedsApproval",
    "NeedsChallenge",
    "Ok",
    "StepOutcome",
    # Types
    "BridgeMode",
    "BridgeStatus",
    "BridgeTransfer",
    "Challenge",
    "ChallengeEvent",
    "ChallengePurpose",
    "ChallengeStatus",
    "Credential",
    "Intent",
    "IntentKind",
    "IntentStatus",
    "Network",
    "SessionKey",
    "TransactionInfo",
    "WalletInfo",
    "RiskElevatedWarning",
    # Exceptions
    "ArcleError",
    "AuthExpiredError",
    "BridgeError",
    "ChallengeExpiredError",
    "ChallengeFailedError",
    "ChallengeInProgressError",
    "ConfigurationError",
    "CredentialUnavailableError",
    "InsufficientBalanceError",
    "InvalidDestinationError",
    "InvalidTransitionError",
    "NetworkError",
    "RefreshFailedError",
    "SessionExpiredError",
    "SignatureNotFoundError",
    "UnsupportedRouteError",
    "ValidationError",
    "WalletError",
]
