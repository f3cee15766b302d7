"""
ArcScan indexer client.

Secondary source for transaction hashes when the custody provider lags behind
the chain. Speaks the Etherscan-compatible ``module``/``action`` query API.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from arcle.core.exceptions import NetworkError
from arcle.core.logging import get_logger
from arcle.core.types import utcnow


@dataclass(frozen=True)
class IndexedTransfer:
    """One ERC-20 transfer event as reported by the indexer."""

    tx_hash: str
    from_address: str
    to_address: str
    value: int
    timestamp: datetime
    token_address: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> IndexedTransfer:
        return cls(
            tx_hash=data["hash"],
            from_address=data.get("from", ""),
            to_address=data.get("to", ""),
            value=int(data.get("value", "0")),
            timestamp=datetime.fromtimestamp(int(data.get("timeStamp", "0")), tz=timezone.utc),
            token_address=data.get("contractAddress"),
        )


class ArcScanClient:
    """
    Client for the ArcScan explorer API.

    Example:
        >>> indexer = ArcScanClient("https://testnet.arcscan.app/api")
        >>> tx_hash = await indexer.find_transfer(sender, recipient, 10_000_000, 60)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._logger = get_logger("indexer")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _query(self, **params: Any) -> Any:
        client = await self._get_client()
        self._logger.debug(f"GET {self._base_url} {params.get('module')}/{params.get('action')}")
        try:
            response = await client.get(self._base_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Indexer returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                url=self._base_url,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Indexer unreachable: {e}", url=self._base_url) from e

        payload = response.json()
        result = payload.get("result")
        if payload.get("status") == "0" and not isinstance(result, list):
            # "No transactions found" comes back as status 0 with an empty list
            raise NetworkError(f"Indexer error: {payload.get('message')}: {result}")
        return result

    async def token_transfers(self, address: str, limit: int = 50) -> list[IndexedTransfer]:
        """Most recent token transfers touching ``address``, newest first."""
        result = await self._query(
            module="account",
            action="tokentx",
            address=address,
            page=1,
            offset=limit,
            sort="desc",
        )
        return [IndexedTransfer.from_api_response(item) for item in result or []]

    async def find_transfer(
        self,
        from_address: str,
        to_address: str,
        amount_units: int,
        window: float,
        now: datetime | None = None,
    ) -> str | None:
        """
        Hash of a transfer ``from_address -> to_address`` of exactly
        ``amount_units`` seen within the last ``window`` seconds.
        """
        since = (now or utcnow()) - timedelta(seconds=window)
        sender = from_address.lower()
        recipient = to_address.lower()
        for transfer in await self.token_transfers(from_address):
            if transfer.timestamp < since:
                break
            if (
                transfer.from_address.lower() == sender
                and transfer.to_address.lower() == recipient
                and transfer.value == amount_units
            ):
                return transfer.tx_hash
        return None

    async def get_transaction_status(self, tx_hash: str) -> str:
        """``success``, ``failed`` or ``pending`` for a mined or in-flight hash."""
        result = await self._query(module="transaction", action="gettxreceiptstatus", txhash=tx_hash)
        status = (result or {}).get("status", "")
        if status == "1":
            return "success"
        if status == "0":
            return "failed"
        return "pending"
