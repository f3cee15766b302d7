"""
CCTP V2 (Cross-Chain Transfer Protocol) constants.

Official contract addresses from Circle:
https://developers.circle.com/cctp/references/contract-addresses
"""

from arcle.core.types import Network

# CCTP V2 Domain IDs
# https://developers.circle.com/cctp/concepts/supported-chains-and-domains
CCTP_DOMAIN_IDS = {
    Network.ETH: 0,
    Network.ETH_SEPOLIA: 0,
    Network.AVAX: 1,
    Network.AVAX_FUJI: 1,
    Network.OP: 2,
    Network.OP_SEPOLIA: 2,
    Network.ARB: 3,
    Network.ARB_SEPOLIA: 3,
    Network.BASE: 6,
    Network.BASE_SEPOLIA: 6,
    Network.MATIC: 7,
    Network.MATIC_AMOY: 7,
    Network.ARC_TESTNET: 26,
}

TOKEN_MESSENGER_V2_MAINNET = "0x28b5a0e9C621a5BadaA536219b3a228C8168cf5d"
TOKEN_MESSENGER_V2_TESTNET = "0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA"

# USDC ERC-20 addresses
USDC_CONTRACTS = {
    Network.ETH: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    Network.ETH_SEPOLIA: "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    Network.AVAX: "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
    Network.AVAX_FUJI: "0x5425890298aed601595a70AB815c96711a31Bc65",
    Network.OP: "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
    Network.OP_SEPOLIA: "0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
    Network.ARB: "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
    Network.ARB_SEPOLIA: "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
    Network.BASE: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    Network.BASE_SEPOLIA: "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    Network.MATIC: "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
    Network.MATIC_AMOY: "0x41e94eb019c0762f9bfcf9fb1e58725bfb0e7582",
    # Arc exposes native USDC through this ERC-20 interface
    Network.ARC_TESTNET: "0x3600000000000000000000000000000000000000",
}

# Iris API
IRIS_V2_MESSAGES_PATH = "/v2/messages"

# minFinalityThreshold for standard transfers
STANDARD_TRANSFER_THRESHOLD = 2000

# Max fee in USDC subunits (0.0005 USDC)
DEFAULT_MAX_FEE = 500

# Empty bytes32 for destinationCaller: any relayer may mint
EMPTY_DESTINATION_CALLER = "0x" + "0" * 64

DEPOSIT_FOR_BURN_SIGNATURE = (
    "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"
)
APPROVE_SIGNATURE = "approve(address,uint256)"

# Iris message status once attested
ATTESTATION_COMPLETE = "complete"


def get_iris_v2_attestation_url(base_url: str, domain: int, tx_hash: str) -> str:
    """CCTP V2 message lookup for a burn transaction."""
    return f"{base_url.rstrip('/')}{IRIS_V2_MESSAGES_PATH}/{domain}?transactionHash={tx_hash}"


def get_cctp_domain(network: Network) -> int | None:
    return CCTP_DOMAIN_IDS.get(network)


def get_token_messenger_v2(network: Network) -> str:
    return TOKEN_MESSENGER_V2_TESTNET if network.is_testnet() else TOKEN_MESSENGER_V2_MAINNET


def get_usdc_address(network: Network) -> str | None:
    return USDC_CONTRACTS.get(network)
