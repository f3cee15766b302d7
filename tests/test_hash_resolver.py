"""Tests for provider-first hash resolution with the indexer fallback."""

from decimal import Decimal

import pytest

from arcle.confirmation.resolver import HashContext, HashResolver, HashStatus
from arcle.core.exceptions import NetworkError
from arcle.core.types import TransactionInfo, TransactionState, TransactionType

OWNER = "user-1"
WALLET = "wallet-123"
SOURCE = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20
TX_HASH = "0x" + "ab" * 32
INDEXED_HASH = "0x" + "cd" * 32


@pytest.fixture
def resolver(config, circle, credentials, indexer, monitor):
    return HashResolver(config, circle, credentials, indexer, monitor)


def searchable(**overrides) -> HashContext:
    values = dict(
        owner_id=OWNER,
        wallet_id=WALLET,
        transaction_id="tx-1",
        from_address=SOURCE,
        to_address=RECIPIENT,
        amount=Decimal("10"),
    )
    values.update(overrides)
    return HashContext(**values)


def pending_tx() -> TransactionInfo:
    return TransactionInfo(id="tx-1", state=TransactionState.SENT, tx_hash="")


class TestResolveHash:
    @pytest.mark.asyncio
    async def test_found_via_provider(self, resolver: HashResolver) -> None:
        resolution = await resolver.resolve_hash("tx-1", searchable())

        assert resolution.status == HashStatus.FOUND
        assert resolution.tx_hash == TX_HASH
        assert resolution.source == "provider"

    @pytest.mark.asyncio
    async def test_found_hash_is_never_requeried(self, resolver: HashResolver, circle) -> None:
        first = await resolver.resolve_hash("tx-1", searchable())
        second = await resolver.resolve_hash("tx-1", searchable())

        assert first == second
        assert circle.get_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_provider_id_is_not_a_hash(self, resolver: HashResolver, circle) -> None:
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.SENT, tx_hash="c4d1f9a2-7e3b-4f3a-9c1e-2b7d5e8f0a11"
        )

        resolution = await resolver.resolve_hash("tx-1", searchable())

        assert resolution.status == HashStatus.PENDING
        assert resolution.tx_hash is None

    @pytest.mark.asyncio
    async def test_failed_transaction(self, resolver: HashResolver, circle) -> None:
        circle.get_transaction.return_value = TransactionInfo(
            id="tx-1", state=TransactionState.FAILED, error_reason="INSUFFICIENT_NATIVE_TOKEN"
        )

        resolution = await resolver.resolve_hash("tx-1", searchable())

        assert resolution.status == HashStatus.FAILED
        assert resolution.reason == "INSUFFICIENT_NATIVE_TOKEN"

    @pytest.mark.asyncio
    async def test_indexer_consulted_only_after_provider_attempts(
        self, resolver: HashResolver, circle, indexer, config
    ) -> None:
        circle.get_transaction.return_value = pending_tx()
        indexer.find_transfer.return_value = INDEXED_HASH

        for _ in range(config.hash_provider_attempts - 1):
            assert (await resolver.resolve_hash("tx-1", searchable())).status == HashStatus.PENDING
        indexer.find_transfer.assert_not_awaited()

        resolution = await resolver.resolve_hash("tx-1", searchable())

        assert resolution.status == HashStatus.FOUND
        assert resolution.tx_hash == INDEXED_HASH
        assert resolution.source == "indexer"
        assert resolver.attempts("tx-1") == config.hash_provider_attempts
        indexer.find_transfer.assert_awaited_once_with(
            SOURCE, RECIPIENT, 10_000_000, config.indexer_window
        )

    @pytest.mark.asyncio
    async def test_indexer_needs_addresses_and_amount(
        self, resolver: HashResolver, circle, indexer, config
    ) -> None:
        circle.get_transaction.return_value = pending_tx()
        context = searchable(to_address=None)

        for _ in range(config.hash_provider_attempts):
            await resolver.resolve_hash("tx-1", context)

        indexer.find_transfer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_provider_error_is_pending(self, resolver: HashResolver, circle) -> None:
        circle.get_transaction.side_effect = NetworkError("down", status_code=503)

        resolution = await resolver.resolve_hash("tx-1", searchable())

        assert resolution.status == HashStatus.NOT_FOUND
        assert not resolution.is_terminal

    @pytest.mark.asyncio
    async def test_transaction_id_from_challenge(self, resolver: HashResolver, circle) -> None:
        circle.get_challenge.return_value = {"status": "COMPLETE", "correlationIds": ["tx-7"]}

        resolution = await resolver.resolve_hash(
            "ch-1", searchable(transaction_id=None, challenge_id="ch-1")
        )

        assert resolution.tx_hash == TX_HASH
        assert circle.get_transaction.await_args.args[1] == "tx-7"

    @pytest.mark.asyncio
    async def test_matches_recent_outbound_transfer(self, resolver: HashResolver, circle) -> None:
        circle.get_challenge.return_value = {"status": "COMPLETE"}
        circle.list_transactions.return_value = [
            TransactionInfo(
                id="tx-other",
                state=TransactionState.COMPLETE,
                tx_hash="0x" + "ee" * 32,
                destination_address=RECIPIENT,
                amounts=["3"],
            ),
            TransactionInfo(
                id="tx-5",
                state=TransactionState.COMPLETE,
                tx_hash=TX_HASH,
                destination_address=RECIPIENT,
                amounts=["10"],
            ),
        ]

        resolution = await resolver.resolve_hash(
            "ch-1", searchable(transaction_id=None, challenge_id="ch-1")
        )

        assert resolution.transaction_id == "tx-5"
        assert circle.list_transactions.await_args.kwargs["transaction_type"] == TransactionType.OUTBOUND

    @pytest.mark.asyncio
    async def test_forget_clears_cache(self, resolver: HashResolver, circle) -> None:
        await resolver.resolve_hash("tx-1", searchable())
        resolver.forget("tx-1")
        await resolver.resolve_hash("tx-1", searchable())

        assert circle.get_transaction.await_count == 2


class TestWaitForHash:
    @pytest.mark.asyncio
    async def test_waits_until_found(self, resolver: HashResolver, circle) -> None:
        circle.get_transaction.side_effect = [
            pending_tx(),
            pending_tx(),
            TransactionInfo(id="tx-1", state=TransactionState.COMPLETE, tx_hash=TX_HASH),
        ]

        resolution = await resolver.wait_for_hash("tx-1", searchable())

        assert resolution.status == HashStatus.FOUND
        assert resolution.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_ceiling_reports_processing(self, resolver: HashResolver, circle) -> None:
        circle.get_transaction.return_value = pending_tx()

        resolution = await resolver.wait_for_hash("tx-1", searchable(to_address=None))

        assert resolution.status == HashStatus.PROCESSING
        assert resolution.transaction_id == "tx-1"
        assert resolution.is_terminal
