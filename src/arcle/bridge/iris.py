"""
Iris attestation client (CCTP v2).

Standard-mode bridges are finished by Circle's forwarding service once Iris
has attested the burn; this client only observes that progress.
"""

from __future__ import annotations

from typing import Any

import httpx

from arcle.core.cctp_constants import ATTESTATION_COMPLETE, get_iris_v2_attestation_url
from arcle.core.exceptions import NetworkError
from arcle.core.logging import get_logger

FORWARD_FAILED_STATES = frozenset({"FAILED", "ERROR"})


def attestation_progress(messages: list[dict[str, Any]]) -> str:
    """``complete``, ``failed`` or ``pending`` for the messages of one burn."""
    if not messages:
        return "pending"
    message = messages[0]
    forward_state = str(message.get("forwardState") or "").upper()
    if forward_state in FORWARD_FAILED_STATES:
        return "failed"
    if message.get("status") == ATTESTATION_COMPLETE and message.get("attestation"):
        return "complete"
    return "pending"


class IrisClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._logger = get_logger("iris")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def messages(self, source_domain: int, tx_hash: str) -> list[dict[str, Any]]:
        """CCTP messages emitted by burn ``tx_hash``; empty until Iris indexes it."""
        client = await self._get_client()
        url = get_iris_v2_attestation_url(self._base_url, source_domain, tx_hash)
        try:
            response = await client.get(url)
        except httpx.TransportError as e:
            raise NetworkError(f"Iris unreachable: {e}", url=url) from e
        if response.status_code == 404:
            self._logger.debug(f"Burn {tx_hash} not yet indexed by Iris")
            return []
        if response.status_code >= 400:
            raise NetworkError(
                f"Iris returned HTTP {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response.json().get("messages", [])
