"""
Tests for the intent lifecycle: confirmation, challenge completion, resumption
from the challenge record, cancellation and settlement.
"""

import asyncio
from decimal import Decimal

import pytest
from eth_utils import to_checksum_address

from arcle.core.cctp_constants import get_usdc_address
from arcle.core.exceptions import (
    ChallengeExpiredError,
    ChallengeFailedError,
    InsufficientBalanceError,
    InvalidDestinationError,
    InvalidTransitionError,
    ValidationError,
)
from arcle.core.outcomes import Failed, Ignored, NeedsChallenge, Ok
from arcle.core.types import (
    ChallengePurpose,
    IntentKind,
    IntentStatus,
    Network,
    TransactionInfo,
    TransactionState,
)
from arcle.intents.challenges import ChallengeRegistry
from arcle.intents.validation import ZERO_ADDRESS

OWNER = "user-1"
WALLET = "wallet-123"
RECIPIENT = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
RECIPIENT_CHECKSUM = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
TX_HASH = "0x" + "ab" * 32

COMPLETED = {"status": "COMPLETE", "correlationIds": ["tx-1"]}


async def confirm_transfer(arcle, amount: str = "10", destination: str = RECIPIENT):
    intent = arcle.create_intent(IntentKind.TRANSFER, OWNER, WALLET, amount, destination)
    outcome = await arcle.confirm_intent(intent)
    return intent, outcome


class TestCreateIntent:
    def test_draft(self, arcle) -> None:
        intent = arcle.create_intent(IntentKind.TRANSFER, OWNER, WALLET, "10.50", RECIPIENT)

        assert intent.status == IntentStatus.DRAFT
        assert intent.amount == Decimal("10.50")
        assert arcle.intents.get(intent.id) is intent

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_rejects_non_positive_amount(self, arcle, amount) -> None:
        with pytest.raises(ValidationError, match="Amount must be positive"):
            arcle.create_intent(IntentKind.TRANSFER, OWNER, WALLET, amount, RECIPIENT)

    def test_yield_intent_targets_teller(self, arcle) -> None:
        intent = arcle.create_intent(IntentKind.YIELD_SUBSCRIBE, OWNER, WALLET, "10")

        assert intent.destination == arcle.config.usyc_teller_address


class TestConfirmIntent:
    @pytest.mark.asyncio
    async def test_transfer_needs_challenge(self, arcle, circle) -> None:
        intent, outcome = await confirm_transfer(arcle)

        assert isinstance(outcome, NeedsChallenge)
        assert outcome.challenge.id == "ch-1"
        assert outcome.challenge.purpose == ChallengePurpose.TRANSFER
        assert intent.status == IntentStatus.AUTHORIZING
        assert intent.destination == RECIPIENT_CHECKSUM
        assert intent.metadata["balance_before"] == "100"
        args = circle.create_transfer_challenge.await_args.args
        assert args[1:] == (WALLET, RECIPIENT_CHECKSUM, Decimal("10"))

    @pytest.mark.asyncio
    async def test_new_recipient_warning_does_not_block(self, arcle) -> None:
        intent, outcome = await confirm_transfer(arcle)

        assert isinstance(outcome, NeedsChallenge)
        assert intent.risk_score == 50
        assert intent.warnings and intent.warnings[0].startswith("Elevated risk")

    @pytest.mark.asyncio
    async def test_null_address_fails_before_any_call(self, arcle, circle) -> None:
        intent, outcome = await confirm_transfer(arcle, destination=ZERO_ADDRESS)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, InvalidDestinationError)
        assert intent.status == IntentStatus.FAILED
        circle.create_transfer_challenge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, arcle, circle) -> None:
        intent, outcome = await confirm_transfer(arcle, amount="100.01")

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, InsufficientBalanceError)
        assert "No funds were moved" in outcome.user_message
        assert intent.status == IntentStatus.FAILED
        circle.create_transfer_challenge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_twice_is_invalid(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        with pytest.raises(InvalidTransitionError):
            await arcle.confirm_intent(intent)

    @pytest.mark.asyncio
    async def test_second_intent_on_busy_wallet_fails(self, arcle) -> None:
        await confirm_transfer(arcle)

        _, outcome = await confirm_transfer(arcle, amount="5")

        assert isinstance(outcome, Failed)
        assert "pending" in outcome.reason


class TestChallengeCompletion:
    @pytest.mark.asyncio
    async def test_completion_settles_with_chain_hash(self, arcle, circle) -> None:
        intent, _ = await confirm_transfer(arcle)
        circle.get_usdc_balance.return_value = Decimal("90")

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert outcome.tx_hash == TX_HASH
        assert not outcome.processing
        assert intent.status == IntentStatus.SETTLED
        assert intent.transaction_id == "tx-1"
        assert arcle.explorer_url(intent.tx_hash).endswith(f"/tx/{TX_HASH}")

    @pytest.mark.asyncio
    async def test_settled_recipient_is_no_longer_new(self, arcle, circle) -> None:
        await confirm_transfer(arcle)
        await arcle.on_challenge_result("ch-1", COMPLETED)

        intent, _ = await confirm_transfer(arcle, amount="5")

        assert intent.warnings == []

    @pytest.mark.asyncio
    async def test_resumes_from_challenge_after_intent_is_lost(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)
        arcle.intents.forget(intent.id)

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert outcome.intent is not intent
        assert outcome.intent.id == intent.id
        assert outcome.intent.amount == Decimal("10")
        assert outcome.intent.destination == RECIPIENT_CHECKSUM
        assert outcome.intent.status == IntentStatus.SETTLED

    @pytest.mark.asyncio
    async def test_changed_intent_settles_authorized_values(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)
        intent.amount = Decimal("99")
        intent.destination = "0x" + "33" * 20

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert intent.amount == Decimal("10")
        assert intent.destination == RECIPIENT_CHECKSUM

    @pytest.mark.asyncio
    async def test_duplicate_completion_processed_once(self, arcle) -> None:
        await confirm_transfer(arcle)

        outcomes = await asyncio.gather(
            arcle.on_challenge_result("ch-1", COMPLETED),
            arcle.on_challenge_result("ch-1", COMPLETED),
        )
        again = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert sum(isinstance(o, Ok) for o in outcomes) == 1
        assert sum(isinstance(o, Ignored) for o in outcomes) == 1
        assert isinstance(again, Ignored)

    @pytest.mark.asyncio
    async def test_unknown_and_pending_events_are_ignored(self, arcle) -> None:
        assert isinstance(await arcle.on_challenge_result("nope", COMPLETED), Ignored)

        await confirm_transfer(arcle)

        assert isinstance(await arcle.on_challenge_result("ch-1", {"status": "PENDING"}), Ignored)

    @pytest.mark.asyncio
    async def test_declined_challenge_fails_intent(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        outcome = await arcle.on_challenge_result(
            "ch-1", {"status": "FAILED", "errorCode": 155706, "errorMessage": "User declined"}
        )

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, ChallengeFailedError)
        assert outcome.reason == "User declined"
        assert not outcome.funds_moved
        assert intent.status == IntentStatus.FAILED

    @pytest.mark.asyncio
    async def test_expired_challenge_fails_intent(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        outcome = await arcle.on_challenge_result("ch-1", {"status": "EXPIRED"})

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, ChallengeExpiredError)
        assert intent.status == IntentStatus.FAILED

    @pytest.mark.asyncio
    async def test_rejected_transaction_fails_intent(self, arcle, circle) -> None:
        intent, _ = await confirm_transfer(arcle)
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.FAILED, error_reason="INSUFFICIENT_NATIVE_TOKEN"
        )

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Failed)
        assert "INSUFFICIENT_NATIVE_TOKEN" in outcome.reason
        assert intent.status == IntentStatus.FAILED


class TestProcessing:
    @pytest.mark.asyncio
    async def test_unresolved_hash_with_balance_effect_settles(self, arcle, circle) -> None:
        intent, _ = await confirm_transfer(arcle)
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.PENDING
        )
        circle.get_usdc_balance.return_value = Decimal("90")

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert outcome.processing
        assert outcome.tx_hash is None
        assert intent.status == IntentStatus.SETTLED
        assert intent.settled_optimistically

    @pytest.mark.asyncio
    async def test_unresolved_hash_without_balance_effect_stays_settling(
        self, arcle, circle
    ) -> None:
        intent, _ = await confirm_transfer(arcle)
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.PENDING
        )

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert outcome.processing
        assert "still processing" in outcome.message
        assert intent.status == IntentStatus.SETTLING
        assert arcle.explorer_url(intent.tx_hash) is None

    @pytest.mark.asyncio
    async def test_rebuilt_intent_settles_on_balance_effect(self, arcle, circle) -> None:
        intent, _ = await confirm_transfer(arcle)
        arcle.intents.forget(intent.id)
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.PENDING
        )
        circle.get_usdc_balance.return_value = Decimal("90")

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert outcome.intent is not intent
        assert outcome.intent.metadata["balance_before"] == "100"
        assert outcome.intent.status == IntentStatus.SETTLED
        assert outcome.intent.settled_optimistically


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_intent_ignores_later_completion(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        assert await arcle.cancel_intent(intent.id) is True
        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ignored)
        assert intent.status == IntentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_frees_wallet_for_next_intent(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)
        await arcle.cancel_intent(intent.id)

        _, outcome = await confirm_transfer(arcle, amount="5")

        assert isinstance(outcome, NeedsChallenge)

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_settlement(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)
        await arcle.on_challenge_result("ch-1", COMPLETED)

        assert await arcle.cancel_intent(intent.id) is False
        assert intent.status == IntentStatus.SETTLED

    @pytest.mark.asyncio
    async def test_cancel_unknown_intent(self, arcle) -> None:
        assert await arcle.cancel_intent("int_missing") is False

    @pytest.mark.asyncio
    async def test_cancel_while_challenge_is_created(self, arcle, circle, storage) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_challenge(*args, **kwargs):
            entered.set()
            await release.wait()
            return "ch-slow"

        circle.create_transfer_challenge.side_effect = slow_challenge
        intent = arcle.create_intent(IntentKind.TRANSFER, OWNER, WALLET, "10", RECIPIENT)
        confirming = asyncio.create_task(arcle.confirm_intent(intent))
        await entered.wait()

        assert await arcle.cancel_intent(intent.id) is True
        release.set()
        outcome = await confirming

        assert isinstance(outcome, Ignored)
        assert outcome.challenge_id == "ch-slow"
        assert intent.status == IntentStatus.CANCELLED
        record = await storage.get(ChallengeRegistry.COLLECTION, "ch-slow")
        assert record["cancelled"] is True
        assert isinstance(await arcle.on_challenge_result("ch-slow", COMPLETED), Ignored)

        circle.create_transfer_challenge.side_effect = None
        circle.create_transfer_challenge.return_value = "ch-next"
        _, next_outcome = await confirm_transfer(arcle, amount="5")

        assert isinstance(next_outcome, NeedsChallenge)
        assert next_outcome.challenge.id == "ch-next"


class TestRelease:
    @pytest.mark.asyncio
    async def test_settled_intent_and_hash_lookup_are_dropped(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        outcome = await arcle.on_challenge_result("ch-1", COMPLETED)

        assert isinstance(outcome, Ok)
        assert arcle.intents.get(intent.id) is None
        assert arcle.hashes.attempts("tx-1") == 0

    @pytest.mark.asyncio
    async def test_failed_intent_is_dropped(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        await arcle.on_challenge_result("ch-1", {"status": "FAILED"})

        assert intent.status == IntentStatus.FAILED
        assert arcle.intents.get(intent.id) is None

    @pytest.mark.asyncio
    async def test_cancelled_intent_is_dropped(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        await arcle.cancel_intent(intent.id)

        assert arcle.intents.get(intent.id) is None

    @pytest.mark.asyncio
    async def test_in_flight_intent_is_kept(self, arcle) -> None:
        intent, _ = await confirm_transfer(arcle)

        assert arcle.intents.get(intent.id) is intent


class TestAwaitChallenge:
    @pytest.mark.asyncio
    async def test_polls_until_complete(self, arcle, circle) -> None:
        intent, _ = await confirm_transfer(arcle)
        circle.get_challenge.side_effect = [{"status": "PENDING"}, dict(COMPLETED)]

        outcome = await arcle.await_challenge("ch-1")

        assert isinstance(outcome, Ok)
        assert intent.status == IntentStatus.SETTLED

    @pytest.mark.asyncio
    async def test_gives_up_while_pending(self, arcle, circle, config) -> None:
        intent, _ = await confirm_transfer(arcle)

        outcome = await arcle.await_challenge("ch-1")

        assert isinstance(outcome, Ignored)
        assert circle.get_challenge.await_count == config.challenge_poll_attempts
        assert intent.status == IntentStatus.AUTHORIZING


class TestYield:
    @pytest.mark.asyncio
    async def test_subscribe_runs_approve_then_buy(self, arcle, circle) -> None:
        intent = arcle.create_intent(IntentKind.YIELD_SUBSCRIBE, OWNER, WALLET, "10")
        teller = to_checksum_address(arcle.config.usyc_teller_address)

        first = await arcle.confirm_intent(intent)
        assert isinstance(first, NeedsChallenge)
        assert first.challenge.purpose == ChallengePurpose.YIELD_APPROVE
        approve = circle.create_contract_execution_challenge.await_args_list[0].args
        assert approve[2] == get_usdc_address(Network.ARC_TESTNET)
        assert approve[3] == "approve(address,uint256)"
        assert approve[4] == [arcle.config.usyc_teller_address, "10000000"]

        second = await arcle.on_challenge_result("ch-1", {"status": "COMPLETE"})
        assert isinstance(second, NeedsChallenge)
        assert second.challenge.purpose == ChallengePurpose.YIELD_COMPLETE
        buy = circle.create_contract_execution_challenge.await_args_list[1].args
        assert buy[3:] == ("buy(uint256)", ["10000000"])

        done = await arcle.on_challenge_result("ch-2", COMPLETED)
        assert isinstance(done, Ok)
        assert done.tx_hash == TX_HASH
        assert intent.status == IntentStatus.SETTLED
        assert intent.destination == teller
        assert intent.warnings == []

    @pytest.mark.asyncio
    async def test_redeem_sells(self, arcle, circle) -> None:
        intent = arcle.create_intent(IntentKind.YIELD_REDEEM, OWNER, WALLET, "500")

        await arcle.confirm_intent(intent)
        approve = circle.create_contract_execution_challenge.await_args_list[0].args
        assert approve[2] == arcle.config.usyc_token_address

        await arcle.on_challenge_result("ch-1", {"status": "COMPLETE"})
        sell = circle.create_contract_execution_challenge.await_args_list[1].args
        assert sell[3] == "sell(uint256)"
