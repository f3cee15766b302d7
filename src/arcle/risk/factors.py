"""
Risk factors.

Each factor inspects an intent's destination and amount and returns a risk
contribution between 0.0 and 1.0, scaled by its weight in score points.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from arcle.core.types import IntentKind, utcnow
from arcle.storage.base import StorageBackend


@dataclass(frozen=True)
class RiskContext:
    """What a factor may look at."""

    owner_user_id: str
    wallet_id: str
    destination: str
    amount: Decimal
    kind: IntentKind = IntentKind.TRANSFER


@dataclass(frozen=True)
class FactorResult:
    risk: float
    reason: str | None = None


class RiskFactor(ABC):
    """
    Abstract base class for risk factors.

    ``weight`` is the number of score points the factor adds at full risk.
    """

    def __init__(self, weight: float) -> None:
        self.weight = weight

    @abstractmethod
    async def evaluate(self, context: RiskContext) -> FactorResult:
        """
        Returns:
            Risk contribution (0.0 = none, 1.0 = full weight) and a reason
            to show the user when the contribution is non-zero.
        """


class RecipientHistory:
    """Addresses each owner has settled to before."""

    COLLECTION = "recipient_history"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    @staticmethod
    def _make_key(owner_user_id: str, address: str) -> str:
        return f"{owner_user_id}:{address.lower()}"

    async def get(self, owner_user_id: str, address: str) -> dict | None:
        return await self._storage.get(self.COLLECTION, self._make_key(owner_user_id, address))

    async def record(self, owner_user_id: str, address: str) -> None:
        """Count one settled transfer to ``address``."""
        key = self._make_key(owner_user_id, address)
        now = utcnow().isoformat()
        existing = await self._storage.get(self.COLLECTION, key)
        if existing is None:
            existing = {"first_seen": now, "transaction_count": 0}
        existing["transaction_count"] = int(existing.get("transaction_count", 0)) + 1
        existing["last_seen"] = now
        await self._storage.save(self.COLLECTION, key, existing)


class KnownScamFactor(RiskFactor):
    """Destination appears on a blocklist of reported scam addresses."""

    def __init__(self, addresses: set[str] | None = None, weight: float = 100.0) -> None:
        super().__init__(weight)
        self._addresses = {a.lower() for a in (addresses or set())}

    async def evaluate(self, context: RiskContext) -> FactorResult:
        if context.destination.lower() in self._addresses:
            return FactorResult(1.0, "Address is reported as a scam")
        return FactorResult(0.0)


class NewRecipientFactor(RiskFactor):
    """
    First transfer to this address.

    A known address that never received a settled transfer counts as zero
    history, which is weighted separately.
    """

    def __init__(
        self,
        history: RecipientHistory,
        weight: float = 20.0,
        zero_history_weight: float = 30.0,
    ) -> None:
        super().__init__(weight + zero_history_weight)
        self._history = history
        self._new_share = weight / (weight + zero_history_weight)

    async def evaluate(self, context: RiskContext) -> FactorResult:
        entry = await self._history.get(context.owner_user_id, context.destination)
        if entry is None:
            return FactorResult(1.0, "New address (never sent to before)")
        if int(entry.get("transaction_count", 0)) == 0:
            return FactorResult(1.0 - self._new_share, "Address has zero transaction history")
        return FactorResult(0.0)


class AmountFactor(RiskFactor):
    """Risk scales linearly between the low and high amount thresholds."""

    def __init__(
        self,
        weight: float = 10.0,
        low_threshold: Decimal = Decimal("1000"),
        high_threshold: Decimal = Decimal("10000"),
    ) -> None:
        super().__init__(weight)
        self.low_threshold = low_threshold
        self.high_threshold = high_threshold

    async def evaluate(self, context: RiskContext) -> FactorResult:
        amount = context.amount
        if amount <= self.low_threshold:
            return FactorResult(0.0)
        if amount >= self.high_threshold:
            return FactorResult(1.0, "Large transaction amount")
        risk = (amount - self.low_threshold) / (self.high_threshold - self.low_threshold)
        return FactorResult(float(risk), "Large transaction amount")
