"""Tests for bridge route validation."""

import pytest

from arcle.bridge.routes import supported_chains, validate_route
from arcle.core.cctp_constants import CCTP_DOMAIN_IDS, get_iris_v2_attestation_url
from arcle.core.config import Config
from arcle.core.exceptions import UnsupportedRouteError
from arcle.core.gateway_client import GATEWAY_DOMAINS
from arcle.core.types import BridgeMode, Network


def test_valid_route_returns_networks() -> None:
    assert validate_route("eth-sepolia", "BASE_SEPOLIA") == (
        Network.ETH_SEPOLIA,
        Network.BASE_SEPOLIA,
    )


def test_fast_mode_route() -> None:
    source, destination = validate_route(
        Network.ARC_TESTNET, Network.BASE_SEPOLIA, BridgeMode.FAST
    )

    assert source == Network.ARC_TESTNET
    assert destination == Network.BASE_SEPOLIA


def test_same_chain() -> None:
    with pytest.raises(UnsupportedRouteError, match="both ETH-SEPOLIA") as exc_info:
        validate_route("ETH-SEPOLIA", Network.ETH_SEPOLIA)

    assert "BASE-SEPOLIA" in exc_info.value.supported_chains


def test_unknown_chain_lists_supported() -> None:
    with pytest.raises(UnsupportedRouteError, match="Unknown chain") as exc_info:
        validate_route("SOLANA", "BASE-SEPOLIA")

    assert exc_info.value.supported_chains == supported_chains()
    assert "Supported chains:" in exc_info.value.user_message()


def test_testnet_to_mainnet() -> None:
    with pytest.raises(UnsupportedRouteError, match="testnet and a mainnet"):
        validate_route(Network.ETH_SEPOLIA, Network.BASE)


def test_supported_chains_per_mode() -> None:
    assert "ARC-TESTNET" in supported_chains(BridgeMode.FAST)
    assert "ARC-TESTNET" in supported_chains(BridgeMode.STANDARD)


@pytest.mark.parametrize(
    ("mode", "domains"),
    [(BridgeMode.FAST, GATEWAY_DOMAINS), (BridgeMode.STANDARD, CCTP_DOMAIN_IDS)],
)
def test_supported_chains_follow_domain_maps(mode, domains) -> None:
    assert supported_chains(mode) == [network.value for network in domains]


def test_iris_lookup_uses_configured_base_url() -> None:
    url = get_iris_v2_attestation_url(
        Config(circle_api_key="test_api_key_1234").iris_api_url + "/", 0, "0xabc"
    )

    assert url == "https://iris-api-sandbox.circle.com/v2/messages/0?transactionHash=0xabc"
