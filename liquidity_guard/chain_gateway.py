"""
Chain Gateway — Typed Uniswap V3 Reads over Raw JSON-RPC
=========================================================

One ``ChainGateway`` per network. Each method issues exactly one
JSON-RPC request, decodes the ABI response into a frozen dataclass and
is bounded by ``timeout`` seconds.

Failure modes (all ``RpcError``):
  RpcNetworkError / RpcTimeoutError  provider unreachable, throttled, slow
  RpcNotFoundError                   revert or empty ``0x`` (no contract,
                                     burned/unknown token id)
  RpcMalformedResponseError          short or undecodable payload

Contracts read:
  NonfungiblePositionManager.positions(uint256)
  UniswapV3Pool.slot0(), feeGrowthGlobal{0,1}X128(), ticks(int24)
  UniswapV3Factory.getPool(address,address,uint24), PoolCreated logs
  ERC-20 symbol(), decimals()
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from web3 import Web3

from liquidity_guard.chain_registry import get_chain
from liquidity_guard.errors import RpcTimeoutError
from liquidity_guard.fee_math import FeeGrowthGlobal, TickInfo
from liquidity_guard.rpc_helpers import (
    SELECTORS,
    encode_address,
    encode_int24,
    encode_topic,
    encode_uint24,
    encode_uint256,
    decode_address,
    decode_int,
    decode_string,
    decode_uint,
    eth_block_number,
    eth_call,
    eth_get_logs,
    normalize_symbol,
)

POOL_CREATED_EVENT = "PoolCreated(address,address,uint24,int24,address)"
POOL_CREATED_TOPIC = Web3.to_hex(Web3.keccak(text=POOL_CREATED_EVENT))


# ── Decoded Types ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class PositionNFT:
    """NonfungiblePositionManager.positions(tokenId), decoded."""

    position_id: int
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    fee_growth_inside0_last_x128: int
    fee_growth_inside1_last_x128: int
    tokens_owed0: int
    tokens_owed1: int


@dataclass(frozen=True)
class Slot0:
    sqrt_price_x96: int
    tick: int


def sort_tokens(token_a: str, token_b: str):
    """Canonical (token0, token1) order: lower address first."""
    if token_a.lower() < token_b.lower():
        return token_a, token_b
    return token_b, token_a


# ── Gateway ─────────────────────────────────────────────────────────────


class ChainGateway:
    """
    Typed read interface to one network.

    Usage:
        gw = ChainGateway("base", rpc_url="https://1rpc.io/base")
        pos = await gw.get_position(1234567)
        slot0 = await gw.get_pool_slot0("0x...pool")
    """

    def __init__(self, chain: str, rpc_url: Optional[str] = None, timeout: float = 8.0):
        entry = get_chain(chain)
        self.chain = chain
        self.chain_id = entry["chain_id"]
        self.rpc_url = rpc_url or entry["rpc_url"]
        self.position_manager = entry["position_manager"]
        self.factory = entry["factory"]
        self.factory_deploy_block = entry.get("factory_deploy_block", 0)
        self.timeout = timeout

    async def _bounded(self, coro, label: str):
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as e:
            raise RpcTimeoutError(f"{label} timed out after {self.timeout}s") from e

    async def _call(self, to: str, data: str, label: str) -> str:
        return await self._bounded(
            eth_call(self.rpc_url, to, data, timeout=self.timeout), label
        )

    # ── Position manager ─────────────────────────────────────────────

    async def get_position(self, position_id: int) -> PositionNFT:
        """
        Call NonfungiblePositionManager.positions(uint256 tokenId).

        Returns 12 fields per the contract ABI:
          (nonce, operator, token0, token1, fee, tickLower, tickUpper,
           liquidity, feeGrowthInside0LastX128, feeGrowthInside1LastX128,
           tokensOwed0, tokensOwed1)
        """
        calldata = SELECTORS["positions"] + encode_uint256(position_id)
        result = await self._call(self.position_manager, calldata, "positions()")
        return PositionNFT(
            position_id=position_id,
            token0=Web3.to_checksum_address(decode_address(result, 2)),
            token1=Web3.to_checksum_address(decode_address(result, 3)),
            fee=decode_uint(result, 4),
            tick_lower=decode_int(result, 5),
            tick_upper=decode_int(result, 6),
            liquidity=decode_uint(result, 7),
            fee_growth_inside0_last_x128=decode_uint(result, 8),
            fee_growth_inside1_last_x128=decode_uint(result, 9),
            tokens_owed0=decode_uint(result, 10),
            tokens_owed1=decode_uint(result, 11),
        )

    # ── Pool ─────────────────────────────────────────────────────────

    async def get_pool_slot0(self, pool: str) -> Slot0:
        result = await self._call(pool, SELECTORS["slot0"], "slot0()")
        return Slot0(sqrt_price_x96=decode_uint(result, 0), tick=decode_int(result, 1))

    async def get_pool_fee_growth_global(self, pool: str) -> FeeGrowthGlobal:
        fg0, fg1 = await asyncio.gather(
            self._call(pool, SELECTORS["feeGrowthGlobal0X128"], "feeGrowthGlobal0X128()"),
            self._call(pool, SELECTORS["feeGrowthGlobal1X128"], "feeGrowthGlobal1X128()"),
        )
        return FeeGrowthGlobal(decode_uint(fg0, 0), decode_uint(fg1, 0))

    async def get_tick_info(self, pool: str, tick: int) -> TickInfo:
        # ticks() returns: liquidityGross[0], liquidityNet[1],
        #   feeGrowthOutside0X128[2], feeGrowthOutside1X128[3], ...
        calldata = SELECTORS["ticks"] + encode_int24(tick)
        result = await self._call(pool, calldata, f"ticks({tick})")
        return TickInfo(decode_uint(result, 2), decode_uint(result, 3))

    # ── ERC-20 ───────────────────────────────────────────────────────

    async def get_token_metadata(self, token: str) -> TokenInfo:
        sym_data, dec_data = await asyncio.gather(
            self._call(token, SELECTORS["symbol"], "symbol()"),
            self._call(token, SELECTORS["decimals"], "decimals()"),
        )
        return TokenInfo(
            address=token,
            symbol=normalize_symbol(decode_string(sym_data)),
            decimals=decode_uint(dec_data, 0),
        )

    # ── Factory ──────────────────────────────────────────────────────

    async def get_pool_from_factory(self, token_a: str, token_b: str, fee: int) -> str:
        """
        UniswapV3Factory.getPool(tokenA, tokenB, fee).

        Returns the pool address, or the zero address when no pool exists.
        Ref: https://github.com/Uniswap/v3-core/blob/main/contracts/UniswapV3Factory.sol
        """
        calldata = (
            SELECTORS["getPool"]
            + encode_address(token_a)
            + encode_address(token_b)
            + encode_uint24(fee)
        )
        result = await self._call(self.factory, calldata, "getPool()")
        return decode_address(result, 0)

    async def query_pool_created_events(self, token_a: str, token_b: str, fee: int) -> List[str]:
        """
        Pool addresses from ``PoolCreated`` logs matching (token_a, token_b, fee)
        in exactly that topic order, oldest first.

        Event data layout: tickSpacing (int24) at word 0, pool at word 1.
        """
        topics = [
            POOL_CREATED_TOPIC,
            encode_topic(encode_address(token_a)),
            encode_topic(encode_address(token_b)),
            encode_topic(encode_uint24(fee)),
        ]
        logs = await self._bounded(
            eth_get_logs(
                self.rpc_url, self.factory, topics,
                from_block=self.factory_deploy_block, timeout=self.timeout,
            ),
            "eth_getLogs(PoolCreated)",
        )
        pools = []
        for log in logs:
            data = str(log.get("data", "0x"))[2:]
            pools.append(Web3.to_checksum_address(decode_address(data, 1)))
        return pools

    async def get_block_number(self) -> int:
        return await self._bounded(
            eth_block_number(self.rpc_url, timeout=self.timeout), "eth_blockNumber"
        )
