"""
Credential and wallet store.

The durable side of credential resolution: the manager reads here after its
in-memory cache and before falling back to a refresh.
"""

from __future__ import annotations

from arcle.core.types import Credential, WalletInfo
from arcle.storage.base import StorageBackend


class CredentialStore:
    """Load / save / clear credentials and known wallets by owner id."""

    CREDENTIALS = "credentials"
    WALLETS = "wallets"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def load(self, owner_id: str) -> Credential | None:
        data = await self._storage.get(self.CREDENTIALS, owner_id)
        if data is None:
            return None
        return Credential.from_dict(data)

    async def save(self, credential: Credential) -> None:
        await self._storage.save(self.CREDENTIALS, credential.owner_id, credential.to_dict())

    async def save_wallets(self, owner_id: str, wallets: list[WalletInfo]) -> None:
        await self._storage.save(
            self.WALLETS,
            owner_id,
            {
                "owner_id": owner_id,
                "wallets": [
                    {"id": w.id, "address": w.address, "blockchain": w.blockchain}
                    for w in wallets
                ],
            },
        )

    async def load_wallets(self, owner_id: str) -> list[dict]:
        data = await self._storage.get(self.WALLETS, owner_id)
        return data["wallets"] if data else []

    async def clear(self, owner_id: str) -> None:
        """Forget everything stored for ``owner_id``."""
        await self._storage.delete(self.CREDENTIALS, owner_id)
        await self._storage.delete(self.WALLETS, owner_id)

    async def clear_all(self) -> None:
        await self._storage.clear(self.CREDENTIALS)
        await self._storage.clear(self.WALLETS)
