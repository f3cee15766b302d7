"""
Circle Gateway API client for fast cross-chain settlement.

Gateway settles a transfer in seconds out of a pre-funded unified balance: the
user deposits USDC into the GatewayWallet contract once, then each transfer is
an off-chain EIP-712 "burn intent" signed by the user and submitted here.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from arcle.core.exceptions import NetworkError
from arcle.core.logging import get_logger
from arcle.core.types import Network

# Gateway domain IDs for supported chains (same numbering as CCTP)
GATEWAY_DOMAINS = {
    Network.ETH: 0,
    Network.AVAX: 1,
    Network.OP: 2,
    Network.ARB: 3,
    Network.BASE: 6,
    Network.MATIC: 7,
    Network.ETH_SEPOLIA: 0,
    Network.AVAX_FUJI: 1,
    Network.OP_SEPOLIA: 2,
    Network.ARB_SEPOLIA: 3,
    Network.BASE_SEPOLIA: 6,
    Network.MATIC_AMOY: 7,
    Network.ARC_TESTNET: 26,
}

GATEWAY_WALLET_TESTNET = "0x0077777d7EBA4688BDeF3E311b846F25870A19B9"
GATEWAY_MINTER_TESTNET = "0x0022222ABE238Cc2C7Bb1f21003F0a260052475B"
GATEWAY_WALLET_MAINNET = "0x77777777Dcc4d5A8B6E418Fd04D8997ef11000eE"
GATEWAY_MINTER_MAINNET = "0x2222222d7164433c4C09B0b0D809a9b52C04C205"

GATEWAY_DEPOSIT_SIGNATURE = "deposit(address,uint256)"

# Burn intent defaults
DEFAULT_MAX_BLOCK_HEIGHT = 999_999_999_999
DEFAULT_MAX_FEE = 2_010_000  # 2.01 USDC in subunits

EIP712_DOMAIN = {"name": "GatewayWallet", "version": "1"}

EIP712_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
    ],
    "TransferSpec": [
        {"name": "version", "type": "uint32"},
        {"name": "sourceDomain", "type": "uint32"},
        {"name": "destinationDomain", "type": "uint32"},
        {"name": "sourceContract", "type": "bytes32"},
        {"name": "destinationContract", "type": "bytes32"},
        {"name": "sourceToken", "type": "bytes32"},
        {"name": "destinationToken", "type": "bytes32"},
        {"name": "sourceDepositor", "type": "bytes32"},
        {"name": "destinationRecipient", "type": "bytes32"},
        {"name": "sourceSigner", "type": "bytes32"},
        {"name": "destinationCaller", "type": "bytes32"},
        {"name": "value", "type": "uint256"},
        {"name": "salt", "type": "bytes32"},
        {"name": "hookData", "type": "bytes"},
    ],
    "BurnIntent": [
        {"name": "maxBlockHeight", "type": "uint256"},
        {"name": "maxFee", "type": "uint256"},
        {"name": "spec", "type": "TransferSpec"},
    ],
}


@dataclass
class TransferSpec:
    """Specification for a Gateway transfer (EIP-712 compatible, bytes32 addresses)."""

    version: int = 1
    source_domain: int = 0
    destination_domain: int = 0
    source_contract: str = ""
    destination_contract: str = ""
    source_token: str = ""
    destination_token: str = ""
    source_depositor: str = ""
    destination_recipient: str = ""
    source_signer: str = ""
    destination_caller: str = "0x" + "0" * 64
    value: int = 0
    salt: str = ""
    hook_data: str = "0x"

    def to_api_dict(self) -> dict[str, Any]:
        """Convert to Gateway API / EIP-712 message format."""
        return {
            "version": self.version,
            "sourceDomain": self.source_domain,
            "destinationDomain": self.destination_domain,
            "sourceContract": self.source_contract,
            "destinationContract": self.destination_contract,
            "sourceToken": self.source_token,
            "destinationToken": self.destination_token,
            "sourceDepositor": self.source_depositor,
            "destinationRecipient": self.destination_recipient,
            "sourceSigner": self.source_signer,
            "destinationCaller": self.destination_caller,
            "value": str(self.value),
            "salt": self.salt,
            "hookData": self.hook_data,
        }

    @classmethod
    def from_api_dict(cls, data: dict[str, Any]) -> TransferSpec:
        return cls(
            version=int(data.get("version", 1)),
            source_domain=int(data["sourceDomain"]),
            destination_domain=int(data["destinationDomain"]),
            source_contract=data["sourceContract"],
            destination_contract=data["destinationContract"],
            source_token=data["sourceToken"],
            destination_token=data["destinationToken"],
            source_depositor=data["sourceDepositor"],
            destination_recipient=data["destinationRecipient"],
            source_signer=data["sourceSigner"],
            destination_caller=data.get("destinationCaller", "0x" + "0" * 64),
            value=int(data["value"]),
            salt=data["salt"],
            hook_data=data.get("hookData", "0x"),
        )


@dataclass
class BurnIntent:
    """A burn intent authorizing Gateway to spend from the unified balance."""

    spec: TransferSpec
    max_block_height: int = DEFAULT_MAX_BLOCK_HEIGHT
    max_fee: int = DEFAULT_MAX_FEE

    def to_api_dict(self) -> dict[str, Any]:
        """Convert to Gateway API format for /transfer endpoint."""
        return {
            "maxBlockHeight": str(self.max_block_height),
            "maxFee": str(self.max_fee),
            "spec": self.spec.to_api_dict(),
        }

    @classmethod
    def from_api_dict(cls, data: dict[str, Any]) -> BurnIntent:
        return cls(
            spec=TransferSpec.from_api_dict(data["spec"]),
            max_block_height=int(data.get("maxBlockHeight", DEFAULT_MAX_BLOCK_HEIGHT)),
            max_fee=int(data.get("maxFee", DEFAULT_MAX_FEE)),
        )

    def to_typed_data(self) -> dict[str, Any]:
        """EIP-712 payload the user signs through a typed-data challenge."""
        return {
            "types": EIP712_TYPES,
            "domain": dict(EIP712_DOMAIN),
            "primaryType": "BurnIntent",
            "message": self.to_api_dict(),
        }


@dataclass
class SignedBurnIntent:
    """A signed burn intent ready for Gateway API submission."""

    burn_intent: BurnIntent
    signature: str

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "burnIntent": self.burn_intent.to_api_dict(),
            "signature": self.signature,
        }


@dataclass
class TransferAttestation:
    """Response from Gateway API transfer endpoint."""

    transfer_id: str
    attestation: str
    signature: str
    total_fee: Decimal
    expiration_block: int
    per_intent_fees: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class GatewayBalance:
    """Unified balance for a depositor on one domain."""

    domain: int
    balance: Decimal
    depositor: str = ""


class GatewayAPIClient:
    """
    Client for Circle Gateway API.

    Example:
        >>> client = GatewayAPIClient()
        >>> balances = await client.balances("USDC", "0x123...", domains=[26])
    """

    TESTNET_BASE_URL = "https://gateway-api-testnet.circle.com/v1"
    MAINNET_BASE_URL = "https://gateway-api.circle.com/v1"

    def __init__(
        self,
        base_url: str | None = None,
        is_testnet: bool = True,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Gateway API client.

        Args:
            base_url: Override base URL (uses testnet/mainnet defaults if None)
            is_testnet: Use testnet URL if base_url not provided
            timeout: Request timeout in seconds
            http_client: Pre-built client (tests inject one with a mock transport)
        """
        self._base_url = (base_url or (
            self.TESTNET_BASE_URL if is_testnet else self.MAINNET_BASE_URL
        )).rstrip("/")
        self._timeout = timeout
        self._logger = get_logger("gateway_api")
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self._base_url}{path}"
        self._logger.debug(f"{method} {url}")
        try:
            response = await client.request(method, url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"Gateway API returned HTTP {e.response.status_code} for {path}: "
                f"{e.response.text[:200]}",
                status_code=e.response.status_code,
                url=url,
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Gateway API unreachable: {e}", url=url) from e
        return response.json()

    async def balances(
        self,
        token: str,
        depositor: str,
        domains: list[int],
    ) -> list[GatewayBalance]:
        """
        Get unified token balances for a depositor.

        Args:
            token: Token symbol (e.g. "USDC")
            depositor: Depositor address
            domains: Domain IDs to check

        Returns:
            List of balances per domain
        """
        body = {
            "token": token,
            "sources": [{"depositor": depositor, "domain": d} for d in domains],
        }
        data = await self._request("POST", "/balances", body)
        return [
            GatewayBalance(
                domain=int(bal.get("domain", 0)),
                balance=Decimal(str(bal.get("balance", "0"))),
                depositor=bal.get("depositor", depositor),
            )
            for bal in data.get("balances", [])
        ]

    async def available_balance(self, depositor: str, domain: int, token: str = "USDC") -> Decimal:
        """Deposited balance spendable from ``domain``."""
        total = Decimal("0")
        for bal in await self.balances(token, depositor, [domain]):
            if bal.domain == domain:
                total += bal.balance
        return total

    async def transfer(self, signed_intents: list[SignedBurnIntent]) -> TransferAttestation:
        """Submit signed burn intents and receive the mint attestation."""
        body = [intent.to_api_dict() for intent in signed_intents]
        data = await self._request("POST", "/transfer", body)

        fees = data.get("fees", {})
        return TransferAttestation(
            transfer_id=data.get("transferId", ""),
            attestation=data.get("attestation", ""),
            signature=data.get("signature", ""),
            total_fee=Decimal(str(fees.get("total", "0"))),
            expiration_block=int(data.get("expirationBlock", "0")),
            per_intent_fees=fees.get("perIntent", []),
        )

    async def transfer_status(self, transfer_id: str) -> str:
        """Lowercased status of a submitted transfer (e.g. ``pending``, ``complete``)."""
        data = await self._request("GET", f"/transfer/{transfer_id}")
        return str(data.get("status", "pending")).lower()


def generate_salt() -> str:
    """Generate a random 32-byte salt for burn intent."""
    return "0x" + secrets.token_hex(32)


def usdc_to_units(amount: Decimal, decimals: int = 6) -> int:
    """Convert a USDC decimal amount to smallest units."""
    return int(amount * (Decimal(10) ** decimals))


def address_to_bytes32(address: str) -> str:
    """Left-pad a 20-byte EVM address to a 32-byte hex string."""
    addr = address.lower().removeprefix("0x")
    return "0x" + addr.zfill(64)


def get_domain_for_network(network: Network) -> int | None:
    return GATEWAY_DOMAINS.get(network)


def get_gateway_wallet(network: Network) -> str:
    return GATEWAY_WALLET_TESTNET if network.is_testnet() else GATEWAY_WALLET_MAINNET


def get_gateway_minter(network: Network) -> str:
    return GATEWAY_MINTER_TESTNET if network.is_testnet() else GATEWAY_MINTER_MAINNET
