"""
Pending operations.

A ``PendingOperation`` is the provider-level action behind one authorization
step: a USDC transfer, a contract call or a typed-data signature. The same
record feeds both the delegated channel and the interactive challenge, so
either path executes exactly the same thing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from arcle.core.types import ChallengePurpose, IntentKind


class OperationType(str, Enum):
    TRANSFER = "transfer"
    CONTRACT_EXECUTION = "contract-execution"
    TYPED_DATA = "typed-data"


@dataclass(frozen=True)
class PendingOperation:
    type: OperationType
    purpose: ChallengePurpose
    wallet_id: str
    action: IntentKind
    amount: Decimal = Decimal("0")
    destination: str | None = None
    contract_address: str | None = None
    abi_function_signature: str | None = None
    abi_parameters: tuple[Any, ...] = ()
    typed_data: dict[str, Any] | None = None
    memo: str | None = None
    resume_context: dict[str, Any] = field(default_factory=dict)

    @property
    def moves_value(self) -> bool:
        """Whether this step spends from a session key's limit."""
        return self.amount > 0

    @classmethod
    def transfer(
        cls,
        wallet_id: str,
        destination: str,
        amount: Decimal,
        resume_context: dict[str, Any],
        action: IntentKind = IntentKind.TRANSFER,
    ) -> PendingOperation:
        return cls(
            type=OperationType.TRANSFER,
            purpose=ChallengePurpose.TRANSFER,
            wallet_id=wallet_id,
            action=action,
            amount=amount,
            destination=destination,
            resume_context=resume_context,
        )

    @classmethod
    def contract_call(
        cls,
        purpose: ChallengePurpose,
        wallet_id: str,
        action: IntentKind,
        contract_address: str,
        abi_function_signature: str,
        abi_parameters: list[Any],
        resume_context: dict[str, Any],
        amount: Decimal = Decimal("0"),
    ) -> PendingOperation:
        return cls(
            type=OperationType.CONTRACT_EXECUTION,
            purpose=purpose,
            wallet_id=wallet_id,
            action=action,
            amount=amount,
            contract_address=contract_address,
            abi_function_signature=abi_function_signature,
            abi_parameters=tuple(abi_parameters),
            resume_context=resume_context,
        )

    @classmethod
    def sign_typed_data(
        cls,
        purpose: ChallengePurpose,
        wallet_id: str,
        action: IntentKind,
        typed_data: dict[str, Any],
        resume_context: dict[str, Any],
        memo: str | None = None,
        amount: Decimal = Decimal("0"),
    ) -> PendingOperation:
        return cls(
            type=OperationType.TYPED_DATA,
            purpose=purpose,
            wallet_id=wallet_id,
            action=action,
            amount=amount,
            typed_data=typed_data,
            memo=memo,
            resume_context=resume_context,
        )


@dataclass(frozen=True)
class StepCompletion:
    """
    What a finished authorization step produced.

    Filled from a delegated execution result or from a challenge completion
    payload; unknown fields stay None.
    """

    challenge_id: str | None = None
    transaction_id: str | None = None
    tx_hash: str | None = None
    signature: str | None = None
    started_at: datetime | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def operation_id(self) -> str | None:
        return self.transaction_id or self.challenge_id
