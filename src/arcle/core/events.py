"""
Provider notification events.

Circle pushes challenge and transaction notifications; the UI layer (or a
webhook endpoint) turns them into these records and hands them to the
orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from arcle.core.types import ChallengeStatus


class NotificationType(str, Enum):
    CHALLENGE = "challenges"
    TRANSACTION_INBOUND = "transactions.inbound"
    TRANSACTION_OUTBOUND = "transactions.outbound"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: str) -> NotificationType:
        if raw.startswith("challenges"):
            return cls.CHALLENGE
        for member in (cls.TRANSACTION_INBOUND, cls.TRANSACTION_OUTBOUND):
            if raw == member.value:
                return member
        return cls.UNKNOWN


@dataclass
class WebhookEvent:
    """A verified provider notification."""

    id: str
    type: NotificationType
    raw_type: str
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    raw_payload: dict[str, Any] = field(default_factory=dict)


# Provider challenge statuses mapped onto ours
_CHALLENGE_STATUS = {
    "COMPLETE": ChallengeStatus.COMPLETE,
    "COMPLETED": ChallengeStatus.COMPLETE,
    "FAILED": ChallengeStatus.FAILED,
    "EXPIRED": ChallengeStatus.EXPIRED,
    "PENDING": ChallengeStatus.PENDING,
    "IN_PROGRESS": ChallengeStatus.PENDING,
}


def parse_challenge_status(raw: str | None) -> ChallengeStatus:
    return _CHALLENGE_STATUS.get((raw or "").upper(), ChallengeStatus.PENDING)


@dataclass(frozen=True)
class ChallengeEvent:
    """Completion report for one challenge, from a webhook or the client SDK callback."""

    challenge_id: str
    status: ChallengeStatus
    result: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChallengeStatus.COMPLETE

    @classmethod
    def from_notification(cls, data: dict[str, Any]) -> ChallengeEvent:
        error_code = data.get("errorCode")
        return cls(
            challenge_id=data["id"],
            status=parse_challenge_status(data.get("status")),
            result=data,
            error_code=str(error_code) if error_code is not None else None,
            error_message=data.get("errorMessage"),
        )
