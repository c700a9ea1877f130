"""Ergo network parameters.

Address head byte = network prefix + address type, BIP44 coin type 429.
"""

from dataclasses import dataclass

ERG_TOKEN_ID = "0" * 64
ERG_NAME = "ERG"
ERG_DECIMALS = 9

COIN_TYPE = 429
ACCOUNT_DERIVATION_PATH = f"m/44'/{COIN_TYPE}'/0'/0"

# Consecutive unused addresses tolerated before a scan stops
CHUNK_DERIVE_LENGTH = 20

MAX_RATE_HISTORY = 500
RATE_HISTORY_MIN_POINTS = 10

# Recent block headers bound into a signing context
SIGNING_HEADER_COUNT = 10


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for an Ergo network."""

    name: str
    prefix: int  # 0x00 mainnet, 0x10 testnet


MAINNET = NetworkConfig(name="mainnet", prefix=0x00)
TESTNET = NetworkConfig(name="testnet", prefix=0x10)

NETWORKS: dict[str, NetworkConfig] = {
    "mainnet": MAINNET,
    "testnet": TESTNET,
}


def get_network(name: str) -> NetworkConfig:
    """Get network config by name."""
    network = NETWORKS.get(name.lower())
    if network is None:
        raise ValueError(f"Unsupported network: {name}")
    return network
