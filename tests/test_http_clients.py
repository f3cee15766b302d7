"""
Tests for the remote service clients against httpx mock transports.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from arcle.authorization.operations import PendingOperation
from arcle.authorization.session_keys import DelegationClient
from arcle.bridge.iris import IrisClient, attestation_progress
from arcle.confirmation.indexer import ArcScanClient
from arcle.core.circle_client import CircleClient
from arcle.core.exceptions import (
    AuthExpiredError,
    DelegationError,
    NetworkError,
    WalletError,
)
from arcle.core.gateway_client import (
    BurnIntent,
    GatewayAPIClient,
    SignedBurnIntent,
    TransferSpec,
    address_to_bytes32,
    usdc_to_units,
)
from arcle.core.types import SessionKey, utcnow

SENDER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
TX_HASH = "0x" + "ab" * 32


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCircleClient:
    def _client(self, config, handler) -> CircleClient:
        return CircleClient(config, http_client=mock_client(handler), retry_wait=0.01)

    @pytest.mark.asyncio
    async def test_user_token_header_and_balance(self, config, credential) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["user_token"] = request.headers.get("X-User-Token")
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json={
                    "data": {
                        "tokenBalances": [
                            {"amount": "3", "token": {"id": "t-eth", "symbol": "ETH"}},
                            {"amount": "42.5", "token": {"id": "t-usdc", "symbol": "USDC"}},
                        ]
                    }
                },
            )

        client = self._client(config, handler)

        assert await client.get_usdc_balance(credential, "wallet-123") == Decimal("42.5")
        assert await client.find_usdc_token_id(credential, "wallet-123") == "t-usdc"
        assert seen["user_token"] == "token-1"
        assert seen["auth"] == "Bearer test_api_key_1234"

    @pytest.mark.asyncio
    async def test_unauthorized_is_auth_expired(self, config, credential) -> None:
        client = self._client(config, lambda request: httpx.Response(401, json={}))

        with pytest.raises(AuthExpiredError):
            await client.list_wallets(credential)

    @pytest.mark.asyncio
    async def test_server_error_retried_then_network_error(self, config, credential) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        client = self._client(config, handler)

        with pytest.raises(NetworkError) as exc_info:
            await client.get_transaction(credential, "tx-1")

        assert exc_info.value.status_code == 503
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self, config, credential) -> None:
        responses = [
            httpx.Response(500),
            httpx.Response(
                200,
                json={"data": {"transaction": {"id": "tx-1", "state": "COMPLETE", "txHash": TX_HASH}}},
            ),
        ]
        client = self._client(config, lambda request: responses.pop(0))

        tx = await client.get_transaction(credential, "tx-1")

        assert tx.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_missing_transaction_is_none(self, config, credential) -> None:
        client = self._client(config, lambda request: httpx.Response(404, json={}))

        assert await client.get_transaction(credential, "tx-1") is None

    @pytest.mark.asyncio
    async def test_client_error_is_wallet_error(self, config, credential) -> None:
        client = self._client(
            config, lambda request: httpx.Response(400, json={"message": "Invalid amount"})
        )

        with pytest.raises(WalletError, match="Invalid amount"):
            await client.create_transfer_challenge(
                credential, "wallet-123", RECIPIENT, Decimal("1"), token_id="t-usdc"
            )

    @pytest.mark.asyncio
    async def test_contract_execution_returns_challenge_id(self, config, credential) -> None:
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"data": {"challengeId": "ch-77"}})

        client = self._client(config, handler)

        challenge_id = await client.create_contract_execution_challenge(
            credential, "wallet-123", RECIPIENT, "approve(address,uint256)", [SENDER, "1000000"]
        )

        assert challenge_id == "ch-77"
        assert bodies[0]["abiParameters"] == [SENDER, "1000000"]
        assert bodies[0]["idempotencyKey"]

    @pytest.mark.asyncio
    async def test_refresh_requires_refresh_token(self, config, credential) -> None:
        client = self._client(config, lambda request: httpx.Response(200, json={}))

        with pytest.raises(AuthExpiredError):
            await client.refresh_user_token(credential.with_token(refresh_token=None))


class TestGatewayAPIClient:
    @pytest.mark.asyncio
    async def test_available_balance_for_domain(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["sources"] == [{"depositor": SENDER, "domain": 26}]
            return httpx.Response(
                200, json={"balances": [{"domain": 26, "depositor": SENDER, "balance": "12.01"}]}
            )

        client = GatewayAPIClient(http_client=mock_client(handler))

        assert await client.available_balance(SENDER, 26) == Decimal("12.01")

    @pytest.mark.asyncio
    async def test_transfer_returns_attestation(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body[0]["signature"] == "0xsig"
            assert body[0]["burnIntent"]["maxFee"] == "2010000"
            return httpx.Response(
                200,
                json={
                    "transferId": "tr-1",
                    "attestation": "0xatt",
                    "signature": "0xop",
                    "fees": {"total": "0.02"},
                    "expirationBlock": "100",
                },
            )

        client = GatewayAPIClient(http_client=mock_client(handler))
        intent = BurnIntent(spec=TransferSpec(value=usdc_to_units(Decimal("10"))))

        attestation = await client.transfer([SignedBurnIntent(intent, "0xsig")])

        assert attestation.transfer_id == "tr-1"
        assert attestation.total_fee == Decimal("0.02")
        assert attestation.expiration_block == 100

    @pytest.mark.asyncio
    async def test_http_error_is_network_error(self) -> None:
        client = GatewayAPIClient(
            http_client=mock_client(lambda request: httpx.Response(400, text="bad intent"))
        )

        with pytest.raises(NetworkError, match="HTTP 400"):
            await client.transfer_status("tr-1")

    def test_helpers(self) -> None:
        assert usdc_to_units(Decimal("12.01")) == 12_010_000
        assert address_to_bytes32(SENDER) == "0x" + "0" * 24 + "11" * 20


class TestIrisClient:
    @pytest.mark.asyncio
    async def test_not_indexed_yet(self) -> None:
        client = IrisClient("https://iris", http_client=mock_client(lambda r: httpx.Response(404)))

        assert await client.messages(0, TX_HASH) == []

    @pytest.mark.asyncio
    async def test_messages(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["transactionHash"] == TX_HASH
            return httpx.Response(
                200, json={"messages": [{"status": "complete", "attestation": "0xatt"}]}
            )

        client = IrisClient("https://iris", http_client=mock_client(handler))
        messages = await client.messages(0, TX_HASH)

        assert attestation_progress(messages) == "complete"

    def test_attestation_progress(self) -> None:
        assert attestation_progress([]) == "pending"
        assert attestation_progress([{"status": "pending_confirmations"}]) == "pending"
        assert attestation_progress([{"status": "complete", "forwardState": "FAILED"}]) == "failed"


class TestArcScanClient:
    def _transfers(self, now: datetime) -> list[dict]:
        def entry(tx_hash, to, value, age):
            return {
                "hash": tx_hash,
                "from": SENDER,
                "to": to,
                "value": str(value),
                "timeStamp": str(int((now - timedelta(seconds=age)).timestamp())),
            }

        return [
            entry("0x" + "01" * 32, RECIPIENT, 5_000_000, 10),
            entry(TX_HASH, RECIPIENT, 10_000_000, 20),
            entry("0x" + "02" * 32, RECIPIENT, 10_000_000, 600),
        ]

    @pytest.mark.asyncio
    async def test_find_transfer_matches_amount_and_parties(self) -> None:
        now = utcnow()
        transfers = self._transfers(now)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["action"] == "tokentx"
            return httpx.Response(200, json={"status": "1", "message": "OK", "result": transfers})

        client = ArcScanClient("https://arcscan/api", http_client=mock_client(handler))

        assert await client.find_transfer(SENDER, RECIPIENT, 10_000_000, 60, now) == TX_HASH
        assert await client.find_transfer(SENDER, RECIPIENT, 7_000_000, 60, now) is None

    @pytest.mark.asyncio
    async def test_find_transfer_respects_window(self) -> None:
        now = utcnow()
        transfers = self._transfers(now)[2:]
        client = ArcScanClient(
            "https://arcscan/api",
            http_client=mock_client(
                lambda r: httpx.Response(200, json={"status": "1", "result": transfers})
            ),
        )

        assert await client.find_transfer(SENDER, RECIPIENT, 10_000_000, 60, now) is None

    @pytest.mark.asyncio
    async def test_empty_result_is_not_an_error(self) -> None:
        client = ArcScanClient(
            "https://arcscan/api",
            http_client=mock_client(
                lambda r: httpx.Response(
                    200, json={"status": "0", "message": "No transactions found", "result": []}
                )
            ),
        )

        assert await client.token_transfers(SENDER) == []

    @pytest.mark.asyncio
    async def test_receipt_status(self) -> None:
        client = ArcScanClient(
            "https://arcscan/api",
            http_client=mock_client(
                lambda r: httpx.Response(200, json={"status": "1", "result": {"status": "1"}})
            ),
        )

        assert await client.get_transaction_status(TX_HASH) == "success"


class TestDelegationClient:
    def _key(self) -> SessionKey:
        return SessionKey(
            id="sk_1",
            wallet_id="wallet-123",
            spending_limit=Decimal("50"),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    @pytest.mark.asyncio
    async def test_execute_transfer(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/session-keys/sk_1/execute"
            body = json.loads(request.content)
            assert body["amount"] == "5"
            assert body["destinationAddress"] == RECIPIENT
            return httpx.Response(200, json={"data": {"transactionId": "tx-9", "txHash": TX_HASH}})

        client = DelegationClient("https://delegation", "key", http_client=mock_client(handler))
        operation = PendingOperation.transfer("wallet-123", RECIPIENT, Decimal("5"), {})

        result = await client.execute(self._key(), operation)

        assert result.transaction_id == "tx-9"
        assert result.tx_hash == TX_HASH
        assert result.session_key_id == "sk_1"

    @pytest.mark.asyncio
    async def test_rejection_is_delegation_error(self) -> None:
        client = DelegationClient(
            "https://delegation",
            "key",
            http_client=mock_client(lambda r: httpx.Response(403, text="limit exceeded")),
        )
        operation = PendingOperation.transfer("wallet-123", RECIPIENT, Decimal("5"), {})

        with pytest.raises(DelegationError):
            await client.execute(self._key(), operation)
