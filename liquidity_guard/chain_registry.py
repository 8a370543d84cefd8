#!/usr/bin/env python3
"""
Chain Registry — Uniswap V3 Contract Addresses per Network
===========================================================

Maps each supported network to its numeric chain id, default public RPC
endpoint and the Uniswap V3 NonfungiblePositionManager / Factory
addresses needed to read positions and resolve pools.

The init-code hash is the keccak256 of the UniswapV3Pool creation code;
it is identical on every canonical Uniswap V3 deployment and is the
third ingredient (with factory address and salt) of CREATE2 pool
address derivation.

Contract Address Sources:
  Uniswap V3 : https://docs.uniswap.org/contracts/v3/reference/deployments/
  PoolAddress: https://github.com/Uniswap/v3-periphery/blob/main/contracts/libraries/PoolAddress.sol
"""

from typing import Dict, List

from liquidity_guard.errors import ConfigurationError

POOL_INIT_CODE_HASH = "0xe34f199b19b2b4f47f68442619d555527d244f78a3297ea89325f843f87b8b54"

# ── Chain Registry ──────────────────────────────────────────────────────
#
# Structure:
#   CHAIN_REGISTRY[chain_slug] = {
#       "name": str,                  # Display name
#       "chain_id": int,              # EIP-155 chain id
#       "rpc_url": str,               # Default public endpoint (1RPC)
#       "position_manager": "0x...",
#       "factory": "0x...",
#       "init_code_hash": "0x...",
#       "factory_deploy_block": int,  # Lower bound for PoolCreated scans
#   }

_UNISWAP_CANONICAL_PM = "0xC36442b4a4522E871399CD717aBDD847Ab11FE88"
_UNISWAP_CANONICAL_FACTORY = "0x1F98431c8aD98523631AE4a59f267346ea31F984"

CHAIN_REGISTRY: Dict[str, dict] = {
    "ethereum": {
        "name": "Ethereum",
        "chain_id": 1,
        "rpc_url": "https://1rpc.io/eth",
        "position_manager": _UNISWAP_CANONICAL_PM,
        "factory": _UNISWAP_CANONICAL_FACTORY,
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 12369621,
    },
    "arbitrum": {
        "name": "Arbitrum One",
        "chain_id": 42161,
        "rpc_url": "https://1rpc.io/arb",
        "position_manager": _UNISWAP_CANONICAL_PM,
        "factory": _UNISWAP_CANONICAL_FACTORY,
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 165,
    },
    "polygon": {
        "name": "Polygon",
        "chain_id": 137,
        "rpc_url": "https://1rpc.io/matic",
        "position_manager": _UNISWAP_CANONICAL_PM,
        "factory": _UNISWAP_CANONICAL_FACTORY,
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 22757547,
    },
    "optimism": {
        "name": "Optimism",
        "chain_id": 10,
        "rpc_url": "https://1rpc.io/op",
        "position_manager": _UNISWAP_CANONICAL_PM,
        "factory": _UNISWAP_CANONICAL_FACTORY,
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 0,
    },
    # Base and BNB Chain use their own deployments
    "base": {
        "name": "Base",
        "chain_id": 8453,
        "rpc_url": "https://1rpc.io/base",
        "position_manager": "0x03a520b32C04BF3bEEf7BEb72E919cf822Ed34f1",
        "factory": "0x33128a8fC17869897dcE68Ed026d694621f6FDfD",
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 1371680,
    },
    "bsc": {
        "name": "BNB Chain",
        "chain_id": 56,
        "rpc_url": "https://1rpc.io/bnb",
        "position_manager": "0x7b8A01B39D58278b5DE7e48c8449c9f4F5170613",
        "factory": "0xdB1d10011AD0Ff90774D0C6Bb92e5C5c8b4461F7",
        "init_code_hash": POOL_INIT_CODE_HASH,
        "factory_deploy_block": 26324014,
    },
}


# ── Helper Functions ────────────────────────────────────────────────────


def supported_chains() -> List[str]:
    """Slugs of every configured network."""
    return list(CHAIN_REGISTRY)


def get_chain(chain: str) -> dict:
    """Registry entry for ``chain``; raises ConfigurationError if unknown."""
    entry = CHAIN_REGISTRY.get(chain)
    if entry is None:
        raise ConfigurationError(
            f"Unsupported chain: {chain}. Available: {supported_chains()}"
        )
    return entry


def get_chain_display_name(chain: str) -> str:
    """Get display name for a chain slug."""
    entry = CHAIN_REGISTRY.get(chain)
    return entry["name"] if entry else chain
