"""
Pool Address Resolution — Factory → CREATE2 → PoolCreated Events
=================================================================

Given a position's (token0, token1, fee), find the UniswapV3Pool address.

Strategies, tried in order until one yields a non-zero address:

  1. factory   UniswapV3Factory.getPool() with address-sorted tokens
  2. create2   keccak256(0xff ‖ factory ‖ salt ‖ initCodeHash)[12:]
               salt = keccak256(abi.encode(token0, token1, fee))
               Pure computation; may name a pool that was never deployed.
  3. events    PoolCreated logs filtered by (token0, token1, fee), then the
               reversed token order; most recent match wins.

A provider outage (``RpcNetworkError``) in any strategy aborts with
``PoolResolutionError``. Any other failure falls through. Exhausting all
strategies returns None: an unresolved pool is an expected outcome that
the valuation ladder handles with a tick-only snapshot.

Ref: https://github.com/Uniswap/v3-periphery/blob/main/contracts/libraries/PoolAddress.sol
"""

import logging
from typing import Optional

from web3 import Web3

from liquidity_guard.chain_gateway import sort_tokens
from liquidity_guard.errors import PoolResolutionError, RpcNetworkError
from liquidity_guard.rpc_helpers import ZERO_ADDRESS, encode_address, encode_uint24

logger = logging.getLogger(__name__)


def compute_pool_address(factory: str, token_a: str, token_b: str, fee: int, init_code_hash: str) -> str:
    """
    Deterministic CREATE2 address of a Uniswap V3 pool.

    Tokens may be passed in either order. Returns a checksummed address.

    >>> compute_pool_address(
    ...     "0x1F98431c8aD98523631AE4a59f267346ea31F984",
    ...     "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    ...     "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    ...     500,
    ...     "0xe34f199b19b2b4f47f68442619d555527d244f78a3297ea89325f843f87b8b54",
    ... )
    '0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640'
    """
    token0, token1 = sort_tokens(token_a, token_b)
    salt = Web3.keccak(
        hexstr=encode_address(token0) + encode_address(token1) + encode_uint24(fee)
    )
    preimage = (
        "ff"
        + factory.lower().replace("0x", "")
        + salt.hex().replace("0x", "")
        + init_code_hash.lower().replace("0x", "")
    )
    digest = Web3.keccak(hexstr=preimage)
    return Web3.to_checksum_address("0x" + digest.hex().replace("0x", "")[-40:])


def _usable(address: Optional[str]) -> bool:
    return bool(address) and address.lower() != ZERO_ADDRESS


class PoolResolver:
    """
    Ordered multi-strategy pool address resolver for one chain.

    ``strategies`` is a list of ``(name, coroutine_function)`` pairs and may
    be replaced or reordered by callers (tests, chains without a factory).

    Usage:
        resolver = PoolResolver(gateway, factory="0x...", init_code_hash="0x...")
        pool = await resolver.resolve(token0, token1, 500)   # None if unresolved
    """

    def __init__(self, gateway, factory: Optional[str] = None, init_code_hash: Optional[str] = None):
        self.gateway = gateway
        self.factory = factory
        self.init_code_hash = init_code_hash
        self.strategies = [
            ("factory", self.from_factory),
            ("create2", self.from_create2),
            ("events", self.from_events),
        ]

    async def from_factory(self, token0: str, token1: str, fee: int) -> Optional[str]:
        return await self.gateway.get_pool_from_factory(token0, token1, fee)

    async def from_create2(self, token0: str, token1: str, fee: int) -> Optional[str]:
        if not self.factory or not self.init_code_hash:
            return None
        return compute_pool_address(self.factory, token0, token1, fee, self.init_code_hash)

    async def from_events(self, token0: str, token1: str, fee: int) -> Optional[str]:
        pools = await self.gateway.query_pool_created_events(token0, token1, fee)
        if not pools:
            pools = await self.gateway.query_pool_created_events(token1, token0, fee)
        return pools[-1] if pools else None

    async def resolve(self, token_a: str, token_b: str, fee: int) -> Optional[str]:
        """
        Resolve the pool address for (token_a, token_b, fee).

        Returns:
            Pool address, or None when every strategy came up empty.

        Raises:
            PoolResolutionError: A strategy hit a network/provider failure.
        """
        token0, token1 = sort_tokens(token_a, token_b)
        for name, strategy in self.strategies:
            try:
                address = await strategy(token0, token1, fee)
            except RpcNetworkError as e:
                raise PoolResolutionError(
                    f"Pool lookup ({name}) for {token0[:10]}.../{token1[:10]}... "
                    f"fee={fee} failed: {e}"
                ) from e
            except Exception as e:  # noqa: BLE001
                logger.info("Pool strategy %s failed, trying next: %s", name, e)
                continue
            if _usable(address):
                logger.debug("Pool %s resolved via %s", address, name)
                return address
        logger.warning(
            "Pool unresolved for %s/%s fee=%s", token0[:10], token1[:10], fee
        )
        return None
