"""
Challenge registry.

Owns the per-wallet challenge invariants:

- at most one outstanding challenge per wallet
- a reentrancy latch held while a completion is processed, released on every
  exit path
- challenge records persisted with their resume context, so a reloaded
  orchestrator can still finish the intent behind a challenge

Records are marked complete rather than deleted, so a duplicate completion
can be recognised and ignored.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from arcle.core.circle_client import CircleClient
from arcle.core.events import parse_challenge_status
from arcle.core.exceptions import ChallengeInProgressError, NetworkError
from arcle.core.logging import get_logger
from arcle.core.types import Challenge, ChallengeStatus, Credential, utcnow
from arcle.storage.base import StorageBackend

if TYPE_CHECKING:
    from arcle.credentials.manager import CredentialManager


class ChallengeRegistry:
    COLLECTION = "challenges"

    def __init__(
        self,
        storage: StorageBackend,
        circle: CircleClient,
        credentials: CredentialManager,
    ) -> None:
        self._storage = storage
        self._circle = circle
        self._credentials = credentials
        self._latched: set[str] = set()
        self._creation_locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger("challenges")

    # ==================== Records ====================

    async def get(self, challenge_id: str) -> Challenge | None:
        data = await self._storage.get(self.COLLECTION, challenge_id)
        return Challenge.from_dict(data) if data else None

    async def save(self, challenge: Challenge) -> None:
        await self._storage.save(self.COLLECTION, challenge.id, challenge.to_dict())

    async def outstanding(self, wallet_id: str) -> Challenge | None:
        """The wallet's pending, non-cancelled challenge, if any."""
        records = await self._storage.query(
            self.COLLECTION,
            {"wallet_id": wallet_id, "status": ChallengeStatus.PENDING.value, "cancelled": False},
        )
        if not records:
            return None
        return max((Challenge.from_dict(r) for r in records), key=lambda c: c.created_at)

    async def pending_for_intent(self, intent_id: str) -> list[Challenge]:
        records = await self._storage.query(
            self.COLLECTION, {"intent_id": intent_id, "status": ChallengeStatus.PENDING.value}
        )
        return [Challenge.from_dict(r) for r in records]

    # ==================== Outstanding slot ====================

    def creation_lock(self, wallet_id: str) -> asyncio.Lock:
        """Held while checking the slot and creating a challenge for ``wallet_id``."""
        return self._creation_locks.setdefault(wallet_id, asyncio.Lock())

    async def ensure_available(self, wallet_id: str, owner_id: str) -> None:
        """
        Make sure ``wallet_id`` has no outstanding challenge.

        A challenge the user abandoned stays pending locally; the provider's
        view decides whether it may be replaced.

        Raises:
            ChallengeInProgressError: The outstanding challenge is still live
        """
        current = await self.outstanding(wallet_id)
        if current is None:
            return

        try:
            data = await self._credentials.call_with_auth(
                owner_id, lambda credential: self._circle.get_challenge(credential, current.id)
            )
        except NetworkError as e:
            raise ChallengeInProgressError(
                "Another authorization is pending for this wallet",
                challenge_id=current.id,
            ) from e

        status = parse_challenge_status(data.get("status"))
        if status == ChallengeStatus.PENDING:
            raise ChallengeInProgressError(
                "Another authorization is pending for this wallet",
                challenge_id=current.id,
            )
        self._logger.info(
            f"Replacing challenge {current.id} on wallet {wallet_id}; provider reports {status.value}"
        )
        await self.mark(current.id, status)

    async def register(self, challenge: Challenge) -> Challenge:
        await self.save(challenge)
        self._logger.info(
            f"Challenge {challenge.id} ({challenge.purpose.value}) outstanding "
            f"for wallet {challenge.wallet_id}"
        )
        return challenge

    async def mark(self, challenge_id: str, status: ChallengeStatus) -> Challenge | None:
        challenge = await self.get(challenge_id)
        if challenge is None:
            return None
        challenge.status = status
        challenge.completed_at = utcnow()
        await self.save(challenge)
        return challenge

    async def cancel(self, challenge_id: str) -> bool:
        """
        Release the wallet slot held by ``challenge_id``.

        The provider-side challenge stays live; its eventual completion is
        ignored.
        """
        challenge = await self.get(challenge_id)
        if challenge is None or not challenge.is_pending:
            return False
        challenge.cancelled = True
        await self.save(challenge)
        self._logger.info(f"Challenge {challenge_id} cancelled locally")
        return True

    # ==================== Reentrancy latch ====================

    @asynccontextmanager
    async def processing(self, wallet_id: str) -> AsyncIterator[bool]:
        """
        Latch completion processing for ``wallet_id``.

        Yields True when the latch was taken, False when another completion
        for the wallet is already being processed.
        """
        if wallet_id in self._latched:
            yield False
            return
        self._latched.add(wallet_id)
        try:
            yield True
        finally:
            self._latched.discard(wallet_id)

    def is_processing(self, wallet_id: str) -> bool:
        return wallet_id in self._latched

    # ==================== Credential propagation ====================

    async def update_credentials(self, credential: Credential) -> int:
        """Carry a refreshed token into every pending challenge of its owner."""
        records = await self._storage.query(
            self.COLLECTION,
            {"owner_user_id": credential.owner_id, "status": ChallengeStatus.PENDING.value},
        )
        for record in records:
            challenge = Challenge.from_dict(record)
            challenge.auth_token = credential.auth_token
            challenge.encryption_key = credential.encryption_key
            await self.save(challenge)
        if records:
            self._logger.debug(
                f"Updated credentials on {len(records)} pending challenges "
                f"for owner {credential.owner_id}"
            )
        return len(records)

    async def clear_owner(self, owner_id: str) -> int:
        return await self._storage.delete_where(self.COLLECTION, {"owner_user_id": owner_id})
