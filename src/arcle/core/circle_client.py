"""
Circle user-controlled wallets client.

Async REST wrapper over Circle's W3S user-controlled wallet endpoints. Every
user-scoped call takes the caller's captured ``Credential``; this client never
stores tokens itself. Provider failures are translated at this boundary:
401/403 become ``AuthExpiredError``, 5xx / 429 / transport problems become
``NetworkError`` and any other 4xx becomes ``WalletError``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from arcle.core.config import Config
from arcle.core.exceptions import (
    AuthExpiredError,
    NetworkError,
    WalletError,
)
from arcle.core.logging import get_logger
from arcle.core.types import (
    Balance,
    Credential,
    TransactionInfo,
    TransactionType,
    WalletInfo,
)
from arcle.resilience.retry import execute_with_retry, retrying


@dataclass(frozen=True)
class UserToken:
    """Raw token material returned by the token endpoints."""

    user_token: str
    encryption_key: str
    refresh_token: str | None = None


class CircleClient:
    """Async client for wallet, transaction, signing and challenge operations."""

    def __init__(
        self,
        config: Config,
        http_client: httpx.AsyncClient | None = None,
        retry_attempts: int = 3,
        retry_wait: float = 1.0,
    ) -> None:
        self._config = config
        self._base_url = config.circle_api_base_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self._retry_attempts = retry_attempts
        self._retry_wait = retry_wait
        self._logger = get_logger("circle")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._config.http_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self, credential: Credential | None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._config.circle_api_key}",
            "Content-Type": "application/json",
        }
        if credential is not None:
            headers["X-User-Token"] = credential.auth_token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        credential: Credential | None = None,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        client = await self._get_client()
        url = f"{self._base_url}{path}"
        self._logger.debug(f"{method} {url}")
        try:
            response = await client.request(
                method, url, headers=self._headers(credential), json=body, params=params
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timed out calling {path}", url=url) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection error calling {path}: {e}", url=url) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthExpiredError(
                f"Provider rejected user token for {path}",
                status_code=status,
            )
        if status == 429 or status >= 500:
            raise NetworkError(
                f"Provider unavailable for {path} (HTTP {status})",
                status_code=status,
                url=url,
            )
        if status == 404 and allow_not_found:
            return None
        if status >= 400:
            raise WalletError(
                f"Provider rejected {method} {path}: {_error_message(response)}",
                details={"status_code": status, "path": path},
            )
        payload = response.json() if response.content else {}
        return payload.get("data", {}) if isinstance(payload, dict) else {}

    async def _get(
        self,
        path: str,
        credential: Credential | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """GETs are idempotent, so transient failures are retried."""
        return await execute_with_retry(
            self._request,
            "GET",
            path,
            credential,
            None,
            params,
            allow_not_found,
            policy=retrying(
                attempts=self._retry_attempts,
                wait_min=self._retry_wait,
                wait_max=self._retry_wait * 8,
            ),
        )

    async def _post(
        self, path: str, body: dict[str, Any], credential: Credential | None = None
    ) -> dict[str, Any]:
        data = await self._request("POST", path, credential, body=body)
        return data or {}

    # ==================== User & Token Operations ====================

    async def create_user(self, user_id: str) -> None:
        """Register a user with the provider (no-op if it already exists)."""
        try:
            await self._post("/users", {"userId": user_id})
        except WalletError as e:
            if e.details.get("status_code") != 409:
                raise
            self._logger.debug(f"User {user_id} already exists")

    async def create_user_token(self, user_id: str) -> UserToken:
        """Issue a fresh user token (valid for 60 minutes)."""
        data = await self._post("/users/token", {"userId": user_id})
        return _parse_user_token(data)

    async def refresh_user_token(self, credential: Credential) -> UserToken:
        """Exchange the refresh token for a new user token."""
        if not credential.refresh_token or not credential.device_id:
            raise AuthExpiredError("No refresh token or device id to refresh with")
        data = await self._post(
            "/users/token/refresh",
            {
                "idempotencyKey": str(uuid.uuid4()),
                "refreshToken": credential.refresh_token,
                "deviceId": credential.device_id,
            },
            credential,
        )
        return _parse_user_token(data)

    async def initialize_user(
        self,
        credential: Credential,
        blockchains: list[str],
        account_type: str = "SCA",
    ) -> str:
        """Start PIN setup + wallet creation. Returns the challenge id."""
        data = await self._post(
            "/user/initialize",
            {
                "idempotencyKey": str(uuid.uuid4()),
                "accountType": account_type,
                "blockchains": blockchains,
            },
            credential,
        )
        return _challenge_id(data, "/user/initialize")

    # ==================== Wallet Operations ====================

    async def list_wallets(self, credential: Credential) -> list[WalletInfo]:
        data = await self._get("/wallets", credential)
        return [WalletInfo.from_api_response(w) for w in (data or {}).get("wallets", [])]

    async def get_wallet(self, credential: Credential, wallet_id: str) -> WalletInfo:
        data = await self._get(f"/wallets/{wallet_id}", credential, allow_not_found=True)
        if not data or "wallet" not in data:
            raise WalletError(f"Wallet {wallet_id} not found", wallet_id=wallet_id)
        return WalletInfo.from_api_response(data["wallet"])

    # ==================== Balance Operations ====================

    async def get_wallet_balances(self, credential: Credential, wallet_id: str) -> list[Balance]:
        data = await self._get(f"/wallets/{wallet_id}/balances", credential)
        return [Balance.from_api_response(b) for b in (data or {}).get("tokenBalances", [])]

    async def get_usdc_balance(self, credential: Credential, wallet_id: str) -> Decimal:
        """USDC balance of a wallet; zero when the wallet holds none."""
        for balance in await self.get_wallet_balances(credential, wallet_id):
            if balance.token.is_usdc:
                return balance.amount
        return Decimal("0")

    async def find_usdc_token_id(self, credential: Credential, wallet_id: str) -> str | None:
        for balance in await self.get_wallet_balances(credential, wallet_id):
            if balance.token.is_usdc:
                return balance.token.id
        return None

    # ==================== Transaction Operations ====================

    async def list_transactions(
        self,
        credential: Credential,
        wallet_id: str | None = None,
        transaction_type: TransactionType | None = None,
        page_size: int = 50,
    ) -> list[TransactionInfo]:
        params: dict[str, Any] = {"pageSize": page_size}
        if wallet_id:
            params["walletIds"] = wallet_id
        if transaction_type:
            params["txType"] = transaction_type.value
        data = await self._get("/transactions", credential, params=params)
        return [
            TransactionInfo.from_api_response(tx) for tx in (data or {}).get("transactions", [])
        ]

    async def get_transaction(
        self, credential: Credential, transaction_id: str
    ) -> TransactionInfo | None:
        """Fetch a transaction record; None if the provider has no record yet."""
        data = await self._get(
            f"/transactions/{transaction_id}", credential, allow_not_found=True
        )
        if not data or "transaction" not in data:
            return None
        return TransactionInfo.from_api_response(data["transaction"])

    async def create_transfer_challenge(
        self,
        credential: Credential,
        wallet_id: str,
        destination_address: str,
        amount: Decimal,
        token_id: str | None = None,
        fee_level: str = "MEDIUM",
    ) -> str:
        """Create a USDC transfer that the user must approve. Returns the challenge id."""
        if token_id is None:
            token_id = await self.find_usdc_token_id(credential, wallet_id)
            if token_id is None:
                raise WalletError("Wallet holds no USDC token", wallet_id=wallet_id)
        data = await self._post(
            "/user/transactions/transfer",
            {
                "idempotencyKey": str(uuid.uuid4()),
                "walletId": wallet_id,
                "destinationAddress": destination_address,
                "amounts": [str(amount)],
                "tokenId": token_id,
                "feeLevel": fee_level,
            },
            credential,
        )
        return _challenge_id(data, "/user/transactions/transfer")

    async def create_contract_execution_challenge(
        self,
        credential: Credential,
        wallet_id: str,
        contract_address: str,
        abi_function_signature: str,
        abi_parameters: list[Any],
        fee_level: str = "MEDIUM",
    ) -> str:
        """Create a contract call that the user must approve. Returns the challenge id."""
        data = await self._post(
            "/user/transactions/contractExecution",
            {
                "idempotencyKey": str(uuid.uuid4()),
                "walletId": wallet_id,
                "contractAddress": contract_address,
                "abiFunctionSignature": abi_function_signature,
                "abiParameters": abi_parameters,
                "feeLevel": fee_level,
            },
            credential,
        )
        return _challenge_id(data, "/user/transactions/contractExecution")

    # ==================== Signing Operations ====================

    async def create_typed_data_challenge(
        self,
        credential: Credential,
        wallet_id: str,
        typed_data: dict[str, Any],
        memo: str | None = None,
    ) -> str:
        """Ask the user to sign EIP-712 typed data. Returns the challenge id."""
        body: dict[str, Any] = {"walletId": wallet_id, "data": json.dumps(typed_data)}
        if memo:
            body["memo"] = memo
        data = await self._post("/user/sign/typedData", body, credential)
        return _challenge_id(data, "/user/sign/typedData")

    # ==================== Challenge Operations ====================

    async def get_challenge(self, credential: Credential, challenge_id: str) -> dict[str, Any]:
        """Fetch a challenge record (fallback diagnostic, not the primary path)."""
        data = await self._get(f"/user/challenges/{challenge_id}", credential)
        return (data or {}).get("challenge", {})


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


def _challenge_id(data: dict[str, Any], path: str) -> str:
    challenge_id = data.get("challengeId")
    if not challenge_id:
        raise WalletError(f"Provider returned no challengeId for {path}", details={"data": data})
    return challenge_id


def _parse_user_token(data: dict[str, Any]) -> UserToken:
    token = data.get("userToken")
    key = data.get("encryptionKey")
    if not token or not key:
        raise AuthExpiredError("Provider returned no user token")
    return UserToken(
        user_token=token,
        encryption_key=key,
        refresh_token=data.get("refreshToken"),
    )
