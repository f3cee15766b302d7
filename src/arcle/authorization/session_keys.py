"""
Session keys and the delegated-execution channel.

A session key is a time-boxed, spend-limited grant for one wallet. While an
active key can cover an operation, the operation runs through the delegation
service without an interactive challenge.

Spending is reserved before execution and released if the delegated call
fails, so two concurrent intents can never overrun a key's limit.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any

import httpx

from arcle.authorization.operations import OperationType, PendingOperation
from arcle.core.exceptions import DelegationError, NetworkError, ValidationError
from arcle.core.logging import get_logger
from arcle.core.outcomes import DelegatedResult
from arcle.core.types import IntentKind, SessionKey, utcnow
from arcle.storage.base import StorageBackend


class DelegationClient:
    """
    Client for the delegated-execution service.

    Example:
        >>> client = DelegationClient("https://delegation.example", api_key)
        >>> result = await client.execute(key, operation)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._logger = get_logger("delegation")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self, method: str, path: str, body: Any = None, session_key_id: str | None = None
    ) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self._base_url}{path}"
        self._logger.debug(f"{method} {url}")
        try:
            response = await client.request(
                method, url, json=body, headers={"Authorization": f"Bearer {self._api_key}"}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise NetworkError(
                    f"Delegation service unavailable (HTTP {status})", status_code=status, url=url
                ) from e
            raise DelegationError(
                f"Delegation service rejected {method} {path}: {e.response.text[:200]}",
                session_key_id=session_key_id,
                details={"status_code": status},
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Delegation service unreachable: {e}", url=url) from e
        if not response.content:
            return {}
        payload = response.json()
        return payload.get("data", payload) if isinstance(payload, dict) else {}

    async def register(self, key: SessionKey) -> None:
        await self._request("POST", "/session-keys", key.to_dict(), key.id)

    async def revoke(self, key_id: str) -> None:
        await self._request("DELETE", f"/session-keys/{key_id}", session_key_id=key_id)

    async def execute(self, key: SessionKey, operation: PendingOperation) -> DelegatedResult:
        """Run ``operation`` under ``key`` without user interaction."""
        body: dict[str, Any] = {
            "idempotencyKey": str(uuid.uuid4()),
            "walletId": operation.wallet_id,
            "type": operation.type.value,
            "action": operation.action.value,
        }
        if operation.type == OperationType.TRANSFER:
            body["destinationAddress"] = operation.destination
            body["amount"] = str(operation.amount)
        elif operation.type == OperationType.CONTRACT_EXECUTION:
            body["contractAddress"] = operation.contract_address
            body["abiFunctionSignature"] = operation.abi_function_signature
            body["abiParameters"] = list(operation.abi_parameters)
        else:
            body["typedData"] = operation.typed_data
        data = await self._request("POST", f"/session-keys/{key.id}/execute", body, key.id)
        return DelegatedResult(
            session_key_id=key.id,
            transaction_id=data.get("transactionId"),
            tx_hash=data.get("txHash"),
            signature=data.get("signature"),
            raw=data,
        )


class SessionKeyRegistry:
    """Session-key grants persisted in the ``session_keys`` collection."""

    COLLECTION = "session_keys"

    def __init__(self, storage: StorageBackend, delegation: DelegationClient | None = None) -> None:
        self._storage = storage
        self._delegation = delegation
        self._locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger("session_keys")

    @property
    def delegation(self) -> DelegationClient | None:
        return self._delegation

    def _lock(self, key_id: str) -> asyncio.Lock:
        return self._locks.setdefault(key_id, asyncio.Lock())

    async def _save(self, key: SessionKey) -> None:
        await self._storage.save(self.COLLECTION, key.id, key.to_dict())

    async def grant(
        self,
        wallet_id: str,
        spending_limit: Decimal,
        duration: timedelta,
        agent_id: str | None = None,
        allowed_actions: list[IntentKind] | None = None,
        max_per_transaction: Decimal | None = None,
    ) -> SessionKey:
        if spending_limit <= 0:
            raise ValidationError("Session key spending limit must be positive")
        if duration.total_seconds() <= 0:
            raise ValidationError("Session key duration must be positive")
        key = SessionKey(
            id=f"sk_{uuid.uuid4().hex}",
            wallet_id=wallet_id,
            spending_limit=spending_limit,
            expires_at=utcnow() + duration,
            agent_id=agent_id,
            allowed_actions=list(allowed_actions or IntentKind),
            max_per_transaction=max_per_transaction,
        )
        if self._delegation is not None:
            await self._delegation.register(key)
        await self._save(key)
        self._logger.info(
            f"Granted session key {key.id} for wallet {wallet_id}: "
            f"limit {spending_limit}, expires {key.expires_at.isoformat()}"
        )
        return key

    async def get(self, key_id: str) -> SessionKey | None:
        data = await self._storage.get(self.COLLECTION, key_id)
        return SessionKey.from_dict(data) if data else None

    async def list_for_wallet(self, wallet_id: str, include_inactive: bool = False) -> list[SessionKey]:
        records = await self._storage.query(self.COLLECTION, {"wallet_id": wallet_id})
        keys = [SessionKey.from_dict(r) for r in records]
        if not include_inactive:
            keys = [k for k in keys if k.is_active()]
        return keys

    async def find_active(
        self, wallet_id: str, action: IntentKind, agent_id: str | None = None
    ) -> SessionKey | None:
        """
        Best active key for ``action`` on ``wallet_id``.

        Checked in order: scope/agent, expiry, allowed action. The spending
        limit is left to the caller so an under-funded key can fall through to
        the interactive path instead of being treated as absent.
        """
        candidates = [
            key
            for key in await self.list_for_wallet(wallet_id, include_inactive=True)
            if (key.agent_id is None or key.agent_id == agent_id)
            and key.is_active()
            and key.allows(action)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda k: k.remaining)

    async def reserve(self, key_id: str, amount: Decimal) -> SessionKey | None:
        """Add ``amount`` to the key's spending if it still fits. None if it does not."""
        async with self._lock(key_id):
            key = await self.get(key_id)
            if key is None or not key.is_active() or not key.can_cover(amount):
                return None
            key.spending_used += amount
            await self._save(key)
            return key

    async def release(self, key_id: str, amount: Decimal) -> None:
        """Undo a reservation whose delegated execution failed."""
        async with self._lock(key_id):
            key = await self.get(key_id)
            if key is None:
                return
            key.spending_used = max(key.spending_used - amount, Decimal("0"))
            await self._save(key)

    async def revoke(self, key_id: str) -> bool:
        key = await self.get(key_id)
        if key is None:
            return False
        if self._delegation is not None:
            await self._delegation.revoke(key_id)
        key.revoked = True
        await self._save(key)
        self._logger.info(f"Revoked session key {key_id}")
        return True
