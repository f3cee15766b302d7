"""Tests for the balance and incoming-transfer monitors."""

import asyncio
from decimal import Decimal

import pytest

from arcle.core.types import TransactionInfo, TransactionState, TransactionType
from arcle.monitoring.balance import BalanceMonitor, balance_changed
from arcle.monitoring.incoming import IncomingTransferMonitor

OWNER = "user-1"
WALLET = "wallet-123"
ADDRESS = "0x" + "11" * 20


def inbound(tx_id: str, amount: str = "1", state=TransactionState.COMPLETE) -> TransactionInfo:
    return TransactionInfo(
        id=tx_id,
        state=state,
        transaction_type=TransactionType.INBOUND,
        amounts=[amount],
    )


async def wait_for(condition, timeout: float = 1.0) -> None:
    async def poll():
        while not condition():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


class TestBalanceMonitor:
    @pytest.mark.asyncio
    async def test_reports_change_with_delta(
        self, monitor, credentials, circle, config
    ) -> None:
        balances = iter([Decimal("100")])
        circle.get_usdc_balance.side_effect = lambda *args: next(balances, Decimal("90"))
        changes = []

        BalanceMonitor(monitor, credentials, circle, config).start(
            OWNER, WALLET, ADDRESS, lambda old, new, change: changes.append((old, new, change))
        )
        await wait_for(lambda: changes)

        assert changes[0] == (Decimal("100"), Decimal("90"), Decimal("-10"))
        assert len(changes) == 1

    @pytest.mark.asyncio
    async def test_stop(self, monitor, credentials, circle, config) -> None:
        balance_monitor = BalanceMonitor(monitor, credentials, circle, config)
        balance_monitor.start(OWNER, WALLET, ADDRESS, lambda *args: None)

        assert balance_monitor.stop(WALLET, ADDRESS) is True
        assert monitor.keys() == []

    def test_dust_is_not_a_change(self) -> None:
        assert not balance_changed(Decimal("1"), Decimal("1.0000001"))
        assert balance_changed(Decimal("1"), Decimal("1.000001"))


class TestIncomingTransferMonitor:
    @pytest.mark.asyncio
    async def test_only_new_arrivals_are_reported(
        self, monitor, credentials, circle, config
    ) -> None:
        history = [inbound("tx-old")]
        snapshots = iter([history])
        arrived = history + [inbound("tx-pending", state=TransactionState.PENDING), inbound("tx-new", "7")]
        circle.list_transactions.side_effect = lambda *args, **kwargs: next(snapshots, arrived)
        reported = []

        IncomingTransferMonitor(monitor, credentials, circle, config).start(
            OWNER, WALLET, ADDRESS, reported.append
        )
        await wait_for(lambda: reported)
        await asyncio.sleep(0.05)

        assert [tx.id for tx in reported] == ["tx-new"]
        assert reported[0].amount == Decimal("7")
        assert circle.list_transactions.await_args.kwargs["transaction_type"] == TransactionType.INBOUND
