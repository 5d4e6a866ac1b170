from typing import Literal

from typing_extensions import (
    TypedDict,
)  # use `typing_extensions.TypedDict` instead of `typing.TypedDict` on Python < 3.12


SupportedNetworks = Literal[
    "base",
    "base-sepolia",
    "avalanche-fuji",
    "avalanche",
    "polygon",
    "polygon-amoy",
]

EVM_NETWORK_TO_CHAIN_ID: dict[str, int] = {
    "base": 8453,
    "base-sepolia": 84532,
    "avalanche-fuji": 43113,
    "avalanche": 43114,
    "polygon": 137,
    "polygon-amoy": 80002,
}

SUPPORTED_EVM_NETWORKS: list[str] = list(EVM_NETWORK_TO_CHAIN_ID)


class KnownToken(TypedDict):
    human_name: str
    address: str
    name: str
    decimals: int
    version: str


KNOWN_TOKENS: dict[int, list[KnownToken]] = {
    84532: [
        {
            "human_name": "usdc",
            "address": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            "name": "USDC",
            "decimals": 6,
            "version": "2",
        }
    ],
    8453: [
        {
            "human_name": "usdc",
            "address": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
            "name": "USD Coin",  # needs to be exactly what is returned by name() on contract
            "decimals": 6,
            "version": "2",
        }
    ],
    43113: [
        {
            "human_name": "usdc",
            "address": "0x5425890298aed601595a70AB815c96711a31Bc65",
            "name": "USD Coin",
            "decimals": 6,
            "version": "2",
        }
    ],
    43114: [
        {
            "human_name": "usdc",
            "address": "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
            "name": "USD Coin",
            "decimals": 6,
            "version": "2",
        }
    ],
    137: [
        {
            "human_name": "usdc",
            "address": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
            "name": "USD Coin",
            "decimals": 6,
            "version": "2",
        }
    ],
    80002: [
        {
            "human_name": "usdc",
            "address": "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
            "name": "USDC",
            "decimals": 6,
            "version": "2",
        }
    ],
}


def get_chain_id(network: str) -> int:
    """Get the chain ID for a given network.

    Accepts either a human readable network name or a numeric chain id string.
    """
    try:
        return int(network)
    except ValueError:
        pass
    if network not in EVM_NETWORK_TO_CHAIN_ID:
        raise ValueError(f"Unsupported network: {network}")
    return EVM_NETWORK_TO_CHAIN_ID[network]


def get_default_token(chain_id: int, token_type: str = "usdc") -> KnownToken:
    """Get the default token for a given chain and token type"""
    for token in KNOWN_TOKENS.get(chain_id, []):
        if token["human_name"] == token_type:
            return token
    raise ValueError(f"Token type '{token_type}' not found for chain {chain_id}")
