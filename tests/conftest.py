import itertools
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from arcle.bridge.iris import IrisClient
from arcle.client import Arcle
from arcle.confirmation.indexer import ArcScanClient
from arcle.core.circle_client import CircleClient, UserToken
from arcle.core.config import Config
from arcle.core.gateway_client import GatewayAPIClient
from arcle.core.types import (
    Credential,
    TransactionInfo,
    TransactionState,
    WalletInfo,
    WalletState,
    utcnow,
)
from arcle.credentials.manager import CredentialManager
from arcle.credentials.store import CredentialStore
from arcle.monitoring.adaptive import AdaptiveMonitor
from arcle.storage.memory import InMemoryStorage

OWNER = "user-1"
WALLET = "wallet-123"
SOURCE = "0x" + "11" * 20
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def config():
    """Config with intervals short enough for polling flows to finish in tests."""
    return Config(
        circle_api_key="test_api_key_1234",
        log_level="WARNING",
        hash_poll_interval=0.01,
        hash_resolution_timeout=0.2,
        challenge_poll_interval=0.01,
        challenge_poll_attempts=5,
        reconcile_delays=(0.0,),
        balance_poll_interval=0.01,
        incoming_poll_interval=0.01,
        bridge_poll_interval=0.01,
        bridge_poll_attempts=5,
        gateway_deposit_poll_interval=0.01,
        gateway_deposit_poll_attempts=5,
        token_refresh_interval=0.05,
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def credential():
    return Credential(
        owner_id=OWNER,
        auth_token="token-1",
        encryption_key="key-1",
        expires_at=utcnow() + timedelta(hours=1),
        refresh_token="refresh-1",
        device_id="device-1",
    )


@pytest.fixture
def circle():
    """CircleClient stand-in with a funded wallet and sequential challenge ids."""
    client = AsyncMock(spec=CircleClient)
    counter = itertools.count(1)

    def next_challenge(*args, **kwargs):
        return f"ch-{next(counter)}"

    client.create_user_token.return_value = UserToken("token-new", "key-new", "refresh-new")
    client.refresh_user_token.return_value = UserToken("token-2", "key-2", "refresh-2")
    client.get_wallet.return_value = WalletInfo(
        id=WALLET, address=SOURCE, blockchain="ARC-TESTNET", state=WalletState.LIVE
    )
    client.list_wallets.return_value = [
        WalletInfo(id=WALLET, address=SOURCE, blockchain="ARC-TESTNET", state=WalletState.LIVE)
    ]
    client.get_usdc_balance.return_value = Decimal("100")
    client.create_transfer_challenge.side_effect = next_challenge
    client.create_contract_execution_challenge.side_effect = next_challenge
    client.create_typed_data_challenge.side_effect = next_challenge
    client.initialize_user.side_effect = next_challenge
    client.get_challenge.return_value = {"status": "PENDING"}
    client.get_transaction.return_value = TransactionInfo(
        id="tx-1", state=TransactionState.COMPLETE, tx_hash=TX_HASH
    )
    client.list_transactions.return_value = []
    return client


@pytest.fixture
def gateway():
    client = AsyncMock(spec=GatewayAPIClient)
    client.available_balance.return_value = Decimal("0")
    client.transfer_status.return_value = "pending"
    return client


@pytest.fixture
def iris():
    client = AsyncMock(spec=IrisClient)
    client.messages.return_value = []
    return client


@pytest.fixture
def indexer():
    client = AsyncMock(spec=ArcScanClient)
    client.find_transfer.return_value = None
    return client


@pytest.fixture
async def monitor():
    engine = AdaptiveMonitor()
    yield engine
    engine.stop_all()


@pytest.fixture
async def credentials(config, circle, storage, monitor, credential):
    """CredentialManager with OWNER already signed in."""
    manager = CredentialManager(config, circle, CredentialStore(storage), monitor)
    await manager.set_credential(credential)
    return manager


@pytest.fixture
async def arcle(config, storage, circle, gateway, iris, indexer, credential):
    """Fully wired orchestrator over mocked remote services, OWNER signed in."""
    orchestrator = Arcle(
        config, storage=storage, circle=circle, gateway=gateway, iris=iris, indexer=indexer
    )
    await orchestrator.credentials.set_credential(credential)
    yield orchestrator
    await orchestrator.close()
