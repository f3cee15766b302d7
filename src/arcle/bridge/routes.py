"""
Bridge route validation.

Fast mode settles through Circle Gateway, standard mode through CCTP v2; each
serves its own set of chains. Every rejection names the chains the caller can
pick from.
"""

from __future__ import annotations

from arcle.core.cctp_constants import CCTP_DOMAIN_IDS
from arcle.core.exceptions import UnsupportedRouteError
from arcle.core.gateway_client import GATEWAY_DOMAINS
from arcle.core.types import BridgeMode, Network

FAST_CHAINS: tuple[Network, ...] = tuple(GATEWAY_DOMAINS)
STANDARD_CHAINS: tuple[Network, ...] = tuple(CCTP_DOMAIN_IDS)


def supported_chains(mode: BridgeMode = BridgeMode.STANDARD) -> list[str]:
    chains = FAST_CHAINS if mode == BridgeMode.FAST else STANDARD_CHAINS
    return [chain.value for chain in chains]


def _parse(chain: Network | str, supported: list[str], **route: str | None) -> Network:
    if isinstance(chain, Network):
        return chain
    try:
        return Network.from_string(chain)
    except ValueError:
        raise UnsupportedRouteError(
            f"Unknown chain {chain!r}", supported_chains=supported, **route
        ) from None


def validate_route(
    from_chain: Network | str,
    to_chain: Network | str,
    mode: BridgeMode = BridgeMode.STANDARD,
) -> tuple[Network, Network]:
    """
    Check a bridge route and return it as networks.

    Raises:
        UnsupportedRouteError: Same chain on both ends, an unknown chain, or a
            chain the chosen mode does not serve
    """
    supported = supported_chains(mode)
    route = {
        "source_chain": str(getattr(from_chain, "value", from_chain)),
        "destination_chain": str(getattr(to_chain, "value", to_chain)),
    }
    source = _parse(from_chain, supported, **route)
    destination = _parse(to_chain, supported, **route)

    if source == destination:
        raise UnsupportedRouteError(
            f"Source and destination are both {source.value}",
            supported_chains=supported,
            **route,
        )
    for label, chain in (("Source", source), ("Destination", destination)):
        if chain.value not in supported:
            raise UnsupportedRouteError(
                f"{label} chain {chain.value} is not supported in {mode.value} mode",
                supported_chains=supported,
                **route,
            )
    if source.is_testnet() != destination.is_testnet():
        raise UnsupportedRouteError(
            "Cannot bridge between a testnet and a mainnet",
            supported_chains=supported,
            **route,
        )
    return source, destination
