"""
Step results for the orchestrator.

Every step of the intent lifecycle returns one of these frozen records instead
of raising, so the state machine can dispatch on the result type. Only
``SessionExpiredError`` escapes as an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeAlias

from arcle.core.exceptions import ArcleError
from arcle.core.types import Challenge, Intent


class AuthPath(str, Enum):
    DELEGATED = "delegated"
    CHALLENGE = "challenge"
    NEEDS_APPROVAL = "needs-approval"


@dataclass(frozen=True)
class DelegatedResult:
    """What the delegated-execution channel returned for one operation."""

    session_key_id: str
    transaction_id: str | None = None
    tx_hash: str | None = None
    signature: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(frozen=True)
class Authorization:
    """Outcome of the authorization resolver for one operation."""

    path: AuthPath
    result: DelegatedResult | None = None
    challenge: Challenge | None = None
    reason: str | None = None

    @classmethod
    def delegated(cls, result: DelegatedResult) -> Authorization:
        return cls(path=AuthPath.DELEGATED, result=result)

    @classmethod
    def via_challenge(cls, challenge: Challenge) -> Authorization:
        return cls(path=AuthPath.CHALLENGE, challenge=challenge)

    @classmethod
    def needs_approval(cls, reason: str) -> Authorization:
        return cls(path=AuthPath.NEEDS_APPROVAL, reason=reason)


@dataclass(frozen=True)
class Ok:
    """The intent settled, or is settling with nothing left for the user to do."""

    intent: Intent | None
    tx_hash: str | None = None
    processing: bool = False
    message: str | None = None


@dataclass(frozen=True)
class NeedsChallenge:
    """The user must complete ``challenge`` before the intent can continue."""

    intent: Intent
    challenge: Challenge


@dataclass(frozen=True)
class NeedsApproval:
    """Delegation is enabled but no session key is active; ask for consent."""

    intent: Intent
    reason: str


@dataclass(frozen=True)
class Failed:
    intent: Intent | None
    reason: str
    error: ArcleError | None = None

    @property
    def funds_moved(self) -> bool:
        return bool(self.error and self.error.funds_moved)

    @property
    def user_message(self) -> str:
        if self.error is not None:
            return self.error.user_message()
        return f"{self.reason}. No funds were moved. Please try again."


@dataclass(frozen=True)
class Ignored:
    """A completion that must not be processed (duplicate, cancelled, unknown)."""

    reason: str
    challenge_id: str | None = None


StepOutcome: TypeAlias = Ok | NeedsChallenge | NeedsApproval | Failed | Ignored
