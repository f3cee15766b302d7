"""
Type definitions for arcle.

Enums and dataclasses shared by the orchestrator: the provider-side records
(wallets, balances, transactions), the user intent and its challenge, session
key grants, bridge transfer records and the credential snapshot.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import (
    Any,
    TypeAlias,
)

# Type alias for flexible amount input
AmountType: TypeAlias = Decimal | int | float | str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_dt(val: str | datetime | None) -> datetime | None:
    """Parse ISO timestamps as returned by Circle (``Z`` suffix allowed)."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    if isinstance(val, str) and val:
        return datetime.fromisoformat(val.replace("Z", "+00:00"))
    return None


def to_decimal(amount: AmountType) -> Decimal:
    """Normalize an amount to Decimal without float artifacts."""
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


class Network(str, Enum):
    """Blockchains reachable through Circle user-controlled wallets."""

    # Ethereum
    ETH = "ETH"
    ETH_SEPOLIA = "ETH-SEPOLIA"

    # Avalanche
    AVAX = "AVAX"
    AVAX_FUJI = "AVAX-FUJI"

    # Polygon
    MATIC = "MATIC"
    MATIC_AMOY = "MATIC-AMOY"

    # Arbitrum
    ARB = "ARB"
    ARB_SEPOLIA = "ARB-SEPOLIA"

    # Base
    BASE = "BASE"
    BASE_SEPOLIA = "BASE-SEPOLIA"

    # Optimism
    OP = "OP"
    OP_SEPOLIA = "OP-SEPOLIA"

    # Arc
    ARC_TESTNET = "ARC-TESTNET"

    @classmethod
    def from_string(cls, value: str) -> "Network":
        value_upper = value.upper().replace("_", "-")
        for member in cls:
            if member.value == value_upper:
                return member
        raise ValueError(f"Unknown network: {value}. Supported: {[n.value for n in cls]}")

    def is_testnet(self) -> bool:
        testnet_suffix = ("-SEPOLIA", "-TESTNET", "-FUJI", "-AMOY")
        return self.value.endswith(testnet_suffix)


def normalize_network(network: Network | str | None) -> Network | None:
    """
    Normalize a network value to a Network enum.

    Raises:
        ValueError: If string cannot be converted to Network
    """
    if network is None:
        return None
    if isinstance(network, Network):
        return network
    return Network.from_string(str(network))


class WalletState(str, Enum):
    """Wallet lifecycle state from Circle API."""

    LIVE = "LIVE"
    FROZEN = "FROZEN"


class TransactionState(str, Enum):
    """Transaction state from Circle API."""

    INITIATED = "INITIATED"
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    COMPLETE = "COMPLETE"
    COMPLETED = "COMPLETED"
    CLEARED = "CLEARED"
    STUCK = "STUCK"
    FAILED = "FAILED"
    DENIED = "DENIED"
    CANCELLED = "CANCELLED"


# Provider states that mean "on chain" vs "will never land"
CONFIRMED_STATES = frozenset(
    {
        TransactionState.SENT,
        TransactionState.CONFIRMED,
        TransactionState.COMPLETE,
        TransactionState.COMPLETED,
        TransactionState.CLEARED,
    }
)
FAILED_STATES = frozenset(
    {TransactionState.FAILED, TransactionState.DENIED, TransactionState.CANCELLED}
)


class TransactionType(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


@dataclass
class TokenInfo:
    """Token information from Circle API."""

    id: str
    blockchain: str
    symbol: str
    name: str = ""
    decimals: int = 6
    is_native: bool = False
    token_address: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "TokenInfo":
        return cls(
            id=data["id"],
            blockchain=data.get("blockchain", ""),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=int(data.get("decimals", 6)),
            is_native=data.get("isNative", False),
            token_address=data.get("tokenAddress"),
        )

    @property
    def is_usdc(self) -> bool:
        return self.symbol in ("USDC", "USDC-TESTNET")


@dataclass
class Balance:
    """Wallet token balance."""

    amount: Decimal
    token: TokenInfo

    @property
    def currency(self) -> str:
        return self.token.symbol

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Balance":
        return cls(
            amount=Decimal(data["amount"]),
            token=TokenInfo.from_api_response(data["token"]),
        )


@dataclass
class WalletInfo:
    """User-controlled wallet as returned by Circle."""

    id: str
    address: str
    blockchain: str
    state: WalletState
    wallet_set_id: str | None = None
    account_type: str | None = None
    user_id: str | None = None
    name: str | None = None
    create_date: datetime | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "WalletInfo":
        return cls(
            id=data["id"],
            address=data["address"],
            blockchain=data["blockchain"],
            state=WalletState(data.get("state", "LIVE")),
            wallet_set_id=data.get("walletSetId"),
            account_type=data.get("accountType"),
            user_id=data.get("userId"),
            name=data.get("name"),
            create_date=parse_dt(data.get("createDate")),
        )


@dataclass
class TransactionInfo:
    """Transaction information from Circle API."""

    id: str
    state: TransactionState
    blockchain: str | None = None
    tx_hash: str | None = None
    wallet_id: str | None = None
    source_address: str | None = None
    destination_address: str | None = None
    transaction_type: TransactionType | None = None
    operation: str | None = None
    token_id: str | None = None
    amounts: list[str] = field(default_factory=list)
    create_date: datetime | None = None
    update_date: datetime | None = None
    error_reason: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "TransactionInfo":
        tx_type = data.get("transactionType")
        return cls(
            id=data["id"],
            state=TransactionState(data["state"]),
            blockchain=data.get("blockchain"),
            tx_hash=data.get("txHash") or None,
            wallet_id=data.get("walletId"),
            source_address=data.get("sourceAddress"),
            destination_address=data.get("destinationAddress"),
            transaction_type=TransactionType(tx_type) if tx_type else None,
            operation=data.get("operation"),
            token_id=data.get("tokenId"),
            amounts=data.get("amounts", []),
            create_date=parse_dt(data.get("createDate")),
            update_date=parse_dt(data.get("updateDate")),
            error_reason=data.get("errorReason"),
        )

    @property
    def amount(self) -> Decimal | None:
        if not self.amounts:
            return None
        return Decimal(self.amounts[0])

    def is_confirmed(self) -> bool:
        return self.state in CONFIRMED_STATES

    def is_failed(self) -> bool:
        return self.state in FAILED_STATES

    def is_terminal(self) -> bool:
        return self.is_failed() or self.state in (
            TransactionState.COMPLETE,
            TransactionState.COMPLETED,
            TransactionState.CLEARED,
        )


# ==================== Orchestrator records ====================


class IntentKind(str, Enum):
    """Value-moving actions a user can request."""

    TRANSFER = "transfer"
    BRIDGE = "bridge"
    YIELD_SUBSCRIBE = "yield-subscribe"
    YIELD_REDEEM = "yield-redeem"


class IntentStatus(str, Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    AUTHORIZING = "authorizing"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_INTENT_STATES = frozenset(
    {IntentStatus.SETTLED, IntentStatus.FAILED, IntentStatus.CANCELLED}
)


class BridgeMode(str, Enum):
    STANDARD = "standard"  # CCTP burn / attest / mint
    FAST = "fast"  # Gateway pre-funded deposit + burn intent


class BridgeStatus(str, Enum):
    DEPOSITING = "depositing"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    MONITORING = "monitoring"
    COMPLETE = "complete"
    FAILED = "failed"


class ChallengePurpose(str, Enum):
    WALLET_CREATION = "wallet-creation"
    TRANSFER = "transfer"
    GATEWAY_DEPOSIT = "gateway-deposit"
    GATEWAY_TRANSFER_SIGN = "gateway-transfer-sign"
    BRIDGE_BURN = "bridge-burn"
    YIELD_APPROVE = "yield-approve"
    YIELD_COMPLETE = "yield-complete"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class Intent:
    """A requested value-moving action and its lifecycle state."""

    id: str
    kind: IntentKind
    owner_user_id: str
    wallet_id: str
    amount: Decimal
    destination: str
    source_address: str | None = None
    blockchain: Network = Network.ARC_TESTNET
    status: IntentStatus = IntentStatus.DRAFT
    from_chain: Network | None = None
    to_chain: Network | None = None
    bridge_mode: BridgeMode | None = None
    agent_id: str | None = None
    risk_score: int = 0
    warnings: list[str] = field(default_factory=list)
    challenge_id: str | None = None
    bridge_id: str | None = None
    transaction_id: str | None = None
    tx_hash: str | None = None
    failure_reason: str | None = None
    settled_optimistically: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INTENT_STATES

    def resume_context(self) -> dict[str, Any]:
        """The data needed to finish this intent without the live object."""
        return {
            "intent_id": self.id,
            "kind": self.kind.value,
            "owner_user_id": self.owner_user_id,
            "wallet_id": self.wallet_id,
            "amount": str(self.amount),
            "destination": self.destination,
            "source_address": self.source_address,
            "blockchain": self.blockchain.value,
            "from_chain": self.from_chain.value if self.from_chain else None,
            "to_chain": self.to_chain.value if self.to_chain else None,
            "bridge_mode": self.bridge_mode.value if self.bridge_mode else None,
            "agent_id": self.agent_id,
            "bridge_id": self.bridge_id,
            "balance_before": self.metadata.get("balance_before"),
        }

    @classmethod
    def from_resume_context(cls, context: dict[str, Any]) -> "Intent":
        """Re-derive an intent from a challenge record after a reload."""
        metadata = {}
        if context.get("balance_before") is not None:
            metadata["balance_before"] = context["balance_before"]
        return cls(
            id=context["intent_id"],
            kind=IntentKind(context["kind"]),
            owner_user_id=context["owner_user_id"],
            wallet_id=context["wallet_id"],
            amount=Decimal(context["amount"]),
            destination=context["destination"],
            source_address=context.get("source_address"),
            blockchain=Network(context.get("blockchain") or Network.ARC_TESTNET.value),
            status=IntentStatus.AUTHORIZING,
            from_chain=normalize_network(context.get("from_chain")),
            to_chain=normalize_network(context.get("to_chain")),
            bridge_mode=BridgeMode(context["bridge_mode"]) if context.get("bridge_mode") else None,
            agent_id=context.get("agent_id"),
            bridge_id=context.get("bridge_id"),
            metadata=metadata,
        )


@dataclass
class Challenge:
    """A provider-issued authorization request awaiting the user."""

    id: str
    owner_user_id: str
    wallet_id: str
    purpose: ChallengePurpose
    auth_token: str = field(repr=False)
    encryption_key: str = field(repr=False)
    resume_context: dict[str, Any] = field(default_factory=dict)
    intent_id: str | None = None
    status: ChallengeStatus = ChallengeStatus.PENDING
    cancelled: bool = False
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ChallengeStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "wallet_id": self.wallet_id,
            "purpose": self.purpose.value,
            "auth_token": self.auth_token,
            "encryption_key": self.encryption_key,
            "resume_context": self.resume_context,
            "intent_id": self.intent_id,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Challenge":
        return cls(
            id=data["id"],
            owner_user_id=data["owner_user_id"],
            wallet_id=data["wallet_id"],
            purpose=ChallengePurpose(data["purpose"]),
            auth_token=data["auth_token"],
            encryption_key=data["encryption_key"],
            resume_context=data.get("resume_context", {}),
            intent_id=data.get("intent_id"),
            status=ChallengeStatus(data.get("status", "pending")),
            cancelled=data.get("cancelled", False),
            created_at=parse_dt(data.get("created_at")) or utcnow(),
            completed_at=parse_dt(data.get("completed_at")),
        )


@dataclass
class SessionKey:
    """A scoped, time-boxed, spend-limited delegation grant."""

    id: str
    wallet_id: str
    spending_limit: Decimal
    expires_at: datetime
    spending_used: Decimal = Decimal("0")
    agent_id: str | None = None
    allowed_actions: list[IntentKind] = field(default_factory=lambda: list(IntentKind))
    max_per_transaction: Decimal | None = None
    revoked: bool = False
    created_at: datetime = field(default_factory=utcnow)

    @property
    def remaining(self) -> Decimal:
        return max(self.spending_limit - self.spending_used, Decimal("0"))

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_active(self, now: datetime | None = None) -> bool:
        return not self.revoked and not self.is_expired(now)

    def allows(self, action: IntentKind) -> bool:
        return action in self.allowed_actions

    def can_cover(self, amount: Decimal) -> bool:
        if self.max_per_transaction is not None and amount > self.max_per_transaction:
            return False
        return self.spending_used + amount <= self.spending_limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "spending_limit": str(self.spending_limit),
            "spending_used": str(self.spending_used),
            "expires_at": self.expires_at.isoformat(),
            "agent_id": self.agent_id,
            "allowed_actions": [a.value for a in self.allowed_actions],
            "max_per_transaction": str(self.max_per_transaction)
            if self.max_per_transaction is not None
            else None,
            "revoked": self.revoked,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionKey":
        return cls(
            id=data["id"],
            wallet_id=data["wallet_id"],
            spending_limit=Decimal(data["spending_limit"]),
            spending_used=Decimal(data.get("spending_used", "0")),
            expires_at=parse_dt(data["expires_at"]),
            agent_id=data.get("agent_id"),
            allowed_actions=[IntentKind(a) for a in data.get("allowed_actions", [])],
            max_per_transaction=Decimal(data["max_per_transaction"])
            if data.get("max_per_transaction")
            else None,
            revoked=data.get("revoked", False),
            created_at=parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class BridgeTransfer:
    """Cross-chain settlement record owned by one bridge intent."""

    id: str
    intent_id: str
    wallet_id: str
    from_chain: Network
    to_chain: Network
    amount: Decimal
    recipient: str
    mode: BridgeMode = BridgeMode.STANDARD
    status: BridgeStatus = BridgeStatus.SIGNING
    source_tx_hash: str | None = None
    burn_intent: dict[str, Any] | None = None
    transfer_id: str | None = None
    deposit_submitted: bool = False
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (BridgeStatus.COMPLETE, BridgeStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "intent_id": self.intent_id,
            "wallet_id": self.wallet_id,
            "from_chain": self.from_chain.value,
            "to_chain": self.to_chain.value,
            "amount": str(self.amount),
            "recipient": self.recipient,
            "mode": self.mode.value,
            "status": self.status.value,
            "source_tx_hash": self.source_tx_hash,
            "burn_intent": self.burn_intent,
            "transfer_id": self.transfer_id,
            "deposit_submitted": self.deposit_submitted,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BridgeTransfer":
        return cls(
            id=data["id"],
            intent_id=data["intent_id"],
            wallet_id=data["wallet_id"],
            from_chain=Network(data["from_chain"]),
            to_chain=Network(data["to_chain"]),
            amount=Decimal(data["amount"]),
            recipient=data["recipient"],
            mode=BridgeMode(data.get("mode", "standard")),
            status=BridgeStatus(data.get("status", "signing")),
            source_tx_hash=data.get("source_tx_hash"),
            burn_intent=data.get("burn_intent"),
            transfer_id=data.get("transfer_id"),
            deposit_submitted=data.get("deposit_submitted", False),
            error=data.get("error"),
            created_at=parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass(frozen=True)
class Credential:
    """
    Snapshot of a user's provider credential.

    Frozen: a refresh produces a new instance, so a consumer that captured one
    at the start of an operation keeps a consistent view.
    """

    owner_id: str
    auth_token: str = field(repr=False)
    encryption_key: str = field(repr=False)
    expires_at: datetime
    refresh_token: str | None = field(default=None, repr=False)
    device_id: str | None = None

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        return (now or utcnow()) + timedelta(seconds=seconds) >= self.expires_at

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_within(0, now)

    def with_token(self, **changes: Any) -> "Credential":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "auth_token": self.auth_token,
            "encryption_key": self.encryption_key,
            "expires_at": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        return cls(
            owner_id=data["owner_id"],
            auth_token=data["auth_token"],
            encryption_key=data["encryption_key"],
            expires_at=parse_dt(data["expires_at"]),
            refresh_token=data.get("refresh_token"),
            device_id=data.get("device_id"),
        )
