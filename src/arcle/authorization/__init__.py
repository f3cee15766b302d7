"""Authorization-path resolution: session-key delegation or interactive challenge."""

from arcle.authorization.operations import OperationType, PendingOperation, StepCompletion
from arcle.authorization.resolver import AuthorizationResolver
from arcle.authorization.session_keys import DelegationClient, SessionKeyRegistry

__all__ = [
    "AuthorizationResolver",
    "DelegationClient",
    "OperationType",
    "PendingOperation",
    "SessionKeyRegistry",
    "StepCompletion",
]
