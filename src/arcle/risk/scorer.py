"""
Risk scorer.

Aggregates risk factors into a 0-100 score. The score never blocks an intent:
at or above the warning threshold it produces a ``RiskElevatedWarning`` that
the UI shows while the user keeps the final say.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from arcle.core.logging import get_logger
from arcle.risk.factors import (
    AmountFactor,
    KnownScamFactor,
    NewRecipientFactor,
    RecipientHistory,
    RiskContext,
    RiskFactor,
)


@dataclass(frozen=True)
class RiskElevatedWarning:
    """Non-blocking warning attached to an intent."""

    score: int
    reasons: tuple[str, ...]

    @property
    def message(self) -> str:
        return f"Elevated risk ({self.score}/100): " + "; ".join(self.reasons)


@dataclass
class RiskAssessment:
    score: int
    level: str
    reasons: list[str] = field(default_factory=list)
    warning: RiskElevatedWarning | None = None


class RiskScorer:
    """
    Weighted risk score.

    Levels:
    - Low (< 30)
    - Medium (30-69)
    - High (>= 70)
    """

    MEDIUM_LEVEL = 30
    HIGH_LEVEL = 70

    def __init__(self, factors: list[RiskFactor] | None = None, warning_threshold: int = 50) -> None:
        self._factors: list[RiskFactor] = list(factors or [])
        self.warning_threshold = warning_threshold
        self._logger = get_logger("risk")

    @classmethod
    def default(
        cls,
        history: RecipientHistory,
        warning_threshold: int = 50,
        large_amount: Decimal = Decimal("1000"),
        scam_addresses: set[str] | None = None,
    ) -> RiskScorer:
        return cls(
            [
                KnownScamFactor(scam_addresses),
                NewRecipientFactor(history),
                AmountFactor(low_threshold=large_amount, high_threshold=large_amount * 10),
            ],
            warning_threshold=warning_threshold,
        )

    def add_factor(self, factor: RiskFactor) -> None:
        self._factors.append(factor)

    async def assess(self, context: RiskContext) -> RiskAssessment:
        total = 0.0
        reasons: list[str] = []
        for factor in self._factors:
            result = await factor.evaluate(context)
            if result.risk <= 0:
                continue
            total += factor.weight * min(result.risk, 1.0)
            if result.reason:
                reasons.append(result.reason)

        score = min(100, round(total))
        if score >= self.HIGH_LEVEL:
            level = "high"
        elif score >= self.MEDIUM_LEVEL:
            level = "medium"
        else:
            level = "low"

        warning = None
        if score >= self.warning_threshold:
            warning = RiskElevatedWarning(score=score, reasons=tuple(reasons))
            self._logger.info(f"Elevated risk {score} for {context.destination}: {reasons}")
        return RiskAssessment(score=score, level=level, reasons=reasons, warning=warning)
