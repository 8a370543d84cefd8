#!/usr/bin/env python3
"""
Position Valuation for Uniswap V3
==================================

Reads a position NFT and its pool directly from the blockchain via public
JSON-RPC and turns raw tick/liquidity state into a ``ValuationSnapshot``:
range prices, current price, in-range flag, unclaimed fees, token amounts
and USD value.

Degradation ladder (one dispatcher, strategies declared once):
──────────────────────────────────────────────────────────────
  full        slot0 + fee-growth globals + both tick snapshots
              → exact price, in-range, settled + accrued fees, amounts, USD
  pool_state  slot0 only
              → same price/in-range/amounts, settled-only fees
  tick_only   nothing from the pool (unresolved or unreachable)
              → range prices only; price, in-range and fees unknown (None)

Reading the position NFT itself is never degraded: a failure there means a
wrong id or network and raises ``PositionReadError``.

Data Sources (per RPC call):
─────────────────────────────
1. NonfungiblePositionManager.positions(tokenId)
2. Pool address: Factory.getPool() → CREATE2 → PoolCreated logs
3. Pool.slot0(), feeGrowthGlobal{0,1}X128(), ticks(tickLower/tickUpper)
4. ERC-20 symbol(), decimals()

Price Formulas (Uniswap V3 Whitepaper):
───────────────────────────────────────
  Current price: p = sqrtPriceX96² × 10^d0 / (2^192 × 10^d1)    [§6.1]
  Range prices:  p(i) = 1.0001^i × 10^(d0 − d1) when the pool is read,
                 tick_to_price (renormalized) for tick_only        [§6.1]
  Token amounts: From liquidity L and sqrt prices                [§6.2]
  Fees:          feeGrowthInside × L / 2^128                     [Pool.sol]
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from liquidity_guard.central_config import Settings, load_settings
from liquidity_guard.chain_gateway import ChainGateway, PositionNFT, Slot0, TokenInfo
from liquidity_guard.chain_registry import get_chain
from liquidity_guard.errors import (
    PoolResolutionError,
    PositionReadError,
    RpcError,
)
from liquidity_guard.fee_math import FeeAmounts, FeeGrowthGlobal, TickInfo, compute_unclaimed_fees
from liquidity_guard.pool_resolver import PoolResolver
from liquidity_guard.stablecoins import quote_usd
from liquidity_guard.tick_math import (
    get_token_amounts,
    invert_price,
    is_in_range,
    sqrt_price_x96_to_price,
    tick_to_pool_price,
    tick_to_price,
    validate_ticks,
)

logger = logging.getLogger(__name__)

UNKNOWN_SYMBOL = "UNKNOWN"
DEFAULT_DECIMALS = 18


# ── Snapshot Types ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ValuationSnapshot:
    """
    Financial state of one position at one moment.

    Every on-chain-derived field is Optional: None means *unknown*, never
    zero or False. Range prices are always present (ticks come from the
    NFT); ``0.0`` there is the tick-math "uncomputable" sentinel. Priced
    strategies express them in the units of ``current_price``; tick_only
    snapshots carry the renormalized tick prices, which are not
    comparable with a pool price.
    """

    position_id: int
    chain: str
    strategy: str
    token0: TokenInfo
    token1: TokenInfo
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    price_lower: float
    price_upper: float
    fetched_at: datetime

    pool_address: Optional[str] = None
    block_number: Optional[int] = None

    # Pool-derived
    current_tick: Optional[int] = None
    current_price: Optional[float] = None          # token1 per token0
    current_price_inverted: Optional[float] = None  # token0 per token1
    in_range: Optional[bool] = None

    # Holdings (human units)
    amount0: Optional[float] = None
    amount1: Optional[float] = None

    # Unclaimed fees
    fees0_raw: Optional[int] = None
    fees1_raw: Optional[int] = None
    fees0: Optional[float] = None
    fees1: Optional[float] = None
    fees_include_accrued: bool = False

    # USD
    token0_usd_price: Optional[float] = None
    token1_usd_price: Optional[float] = None
    fees_usd: Optional[float] = None
    tvl_usd: Optional[float] = None
    usd_complete: bool = False

    @property
    def fee_tier(self) -> float:
        """Fee as a fraction, e.g. 500 → 0.0005."""
        return self.fee / 1_000_000


@dataclass(frozen=True)
class ValuationInputs:
    """Everything the strategies may use; None marks a read that failed."""

    chain: str
    position: PositionNFT
    token0: TokenInfo
    token1: TokenInfo
    fetched_at: datetime
    pool_address: Optional[str] = None
    slot0: Optional[Slot0] = None
    fee_growth_global: Optional[FeeGrowthGlobal] = None
    tick_lower_info: Optional[TickInfo] = None
    tick_upper_info: Optional[TickInfo] = None
    block_number: Optional[int] = None


# ── Strategies (pure) ───────────────────────────────────────────────────


def _base_fields(inputs: ValuationInputs, strategy: str) -> dict:
    pos = inputs.position
    d0, d1 = inputs.token0.decimals, inputs.token1.decimals
    return dict(
        position_id=pos.position_id,
        chain=inputs.chain,
        strategy=strategy,
        token0=inputs.token0,
        token1=inputs.token1,
        fee=pos.fee,
        tick_lower=pos.tick_lower,
        tick_upper=pos.tick_upper,
        liquidity=pos.liquidity,
        price_lower=tick_to_price(pos.tick_lower, d0, d1),
        price_upper=tick_to_price(pos.tick_upper, d0, d1),
        fetched_at=inputs.fetched_at,
        pool_address=inputs.pool_address,
        block_number=inputs.block_number,
    )


def _has_price(inputs: ValuationInputs) -> bool:
    return inputs.slot0 is not None and inputs.slot0.sqrt_price_x96 > 0


def _priced_snapshot(inputs: ValuationInputs, strategy: str, fees: FeeAmounts) -> ValuationSnapshot:
    pos = inputs.position
    slot0 = inputs.slot0
    d0, d1 = inputs.token0.decimals, inputs.token1.decimals

    current_price = sqrt_price_x96_to_price(slot0.sqrt_price_x96, d0, d1)
    raw0, raw1 = get_token_amounts(
        pos.liquidity, slot0.sqrt_price_x96, slot0.tick, pos.tick_lower, pos.tick_upper
    )
    amount0 = raw0 / (10 ** d0)
    amount1 = raw1 / (10 ** d1)
    fees0 = fees.amount0 / (10 ** d0)
    fees1 = fees.amount1 / (10 ** d1)

    usd = quote_usd(inputs.token0.symbol, inputs.token1.symbol, current_price)

    # Range bounds in the same units as current_price
    fields = _base_fields(inputs, strategy)
    fields.update(
        price_lower=tick_to_pool_price(pos.tick_lower, d0, d1),
        price_upper=tick_to_pool_price(pos.tick_upper, d0, d1),
    )

    return ValuationSnapshot(
        **fields,
        current_tick=slot0.tick,
        current_price=current_price,
        current_price_inverted=invert_price(current_price),
        in_range=is_in_range(slot0.tick, pos.tick_lower, pos.tick_upper),
        amount0=amount0,
        amount1=amount1,
        fees0_raw=fees.amount0,
        fees1_raw=fees.amount1,
        fees0=fees0,
        fees1=fees1,
        fees_include_accrued=fees.includes_accrued,
        token0_usd_price=usd.price0,
        token1_usd_price=usd.price1,
        fees_usd=fees0 * usd.price0 + fees1 * usd.price1,
        tvl_usd=amount0 * usd.price0 + amount1 * usd.price1,
        usd_complete=usd.complete,
    )


def full_valuation(inputs: ValuationInputs) -> Optional[ValuationSnapshot]:
    """Pool state plus every fee-growth input: settled + accrued fees."""
    if not _has_price(inputs):
        return None
    if inputs.fee_growth_global is None or inputs.tick_lower_info is None or inputs.tick_upper_info is None:
        return None
    fees = compute_unclaimed_fees(
        inputs.position,
        inputs.slot0.tick,
        inputs.fee_growth_global,
        inputs.tick_lower_info,
        inputs.tick_upper_info,
    )
    return _priced_snapshot(inputs, "full", fees)


def pool_state_valuation(inputs: ValuationInputs) -> Optional[ValuationSnapshot]:
    """slot0 only: price and range are exact, fees are settled-only."""
    if not _has_price(inputs):
        return None
    fees = compute_unclaimed_fees(inputs.position, inputs.slot0.tick, None, None, None)
    return _priced_snapshot(inputs, "pool_state", fees)


def tick_only_valuation(inputs: ValuationInputs) -> Optional[ValuationSnapshot]:
    """No pool contact: range prices only, everything pool-derived unknown."""
    usd = quote_usd(inputs.token0.symbol, inputs.token1.symbol, None)
    return ValuationSnapshot(
        **_base_fields(inputs, "tick_only"),
        token0_usd_price=usd.price0,
        token1_usd_price=usd.price1,
        usd_complete=False,
    )


Strategy = Callable[[ValuationInputs], Optional[ValuationSnapshot]]

STRATEGIES: List[Tuple[str, Strategy]] = [
    ("full", full_valuation),
    ("pool_state", pool_state_valuation),
    ("tick_only", tick_only_valuation),
]


def evaluate(inputs: ValuationInputs, strategies: List[Tuple[str, Strategy]] = STRATEGIES) -> ValuationSnapshot:
    """Return the snapshot of the first strategy that does not decline."""
    for name, strategy in strategies:
        snapshot = strategy(inputs)
        if snapshot is not None:
            if name != strategies[0][0]:
                logger.warning(
                    "Position #%s valued with degraded strategy '%s'",
                    inputs.position.position_id, name,
                )
            return snapshot
    raise RuntimeError("No valuation strategy accepted the inputs")


# ── Position Reader ─────────────────────────────────────────────────────


class PositionReader:
    """
    Values Uniswap V3 positions on one network.

    Usage:
        reader = PositionReader("base")
        snap = await reader.get_position_snapshot(1234567)
        snap.in_range        # True / False / None (unknown)
    """

    def __init__(
        self,
        chain: str = "base",
        settings: Optional[Settings] = None,
        gateway: Optional[ChainGateway] = None,
        resolver: Optional[PoolResolver] = None,
    ):
        entry = get_chain(chain)
        self.chain = chain
        self.settings = settings or load_settings()
        self.gateway = gateway or ChainGateway(
            chain,
            rpc_url=self.settings.rpc_url(chain),
            timeout=self.settings.rpc_timeout,
        )
        self.resolver = resolver or PoolResolver(
            self.gateway,
            factory=entry.get("factory"),
            init_code_hash=entry.get("init_code_hash"),
        )

    async def get_position_snapshot(self, position_id: int) -> ValuationSnapshot:
        """
        Read and value a position.

        Raises:
            ValueError: Negative position id.
            PositionReadError: The NFT record could not be read.
        """
        if position_id < 0:
            raise ValueError(f"position_id must be non-negative, got {position_id}")

        # ── Step 1: Read position NFT (fatal on failure) ─────────────
        logger.info("Reading position #%s on %s", position_id, self.chain)
        position = await self._read_position(position_id)

        # ── Step 2: Token metadata + pool address + block ────────────
        token0, token1, pool_address, block_number = await asyncio.gather(
            self._token_metadata(position.token0),
            self._token_metadata(position.token1),
            self._resolve_pool(position),
            self._block_number(),
        )

        inputs = ValuationInputs(
            chain=self.chain,
            position=position,
            token0=token0,
            token1=token1,
            fetched_at=datetime.now(timezone.utc),
            pool_address=pool_address,
            block_number=block_number,
        )

        # ── Step 3: Pool reads, each captured independently ──────────
        if pool_address:
            inputs = await self._read_pool_state(inputs)

        # ── Step 4: Strategy ladder ──────────────────────────────────
        snapshot = evaluate(inputs)
        if not snapshot.usd_complete and snapshot.strategy != "tick_only":
            logger.info(
                "No USD reference for %s/%s; USD figures incomplete",
                token0.symbol, token1.symbol,
            )
        return snapshot

    # ── Internal: reads ──────────────────────────────────────────────

    async def _read_position(self, position_id: int) -> PositionNFT:
        try:
            position = await self.gateway.get_position(position_id)
            validate_ticks(position.tick_lower, position.tick_upper)
        except (RpcError, ValueError) as e:
            raise PositionReadError(position_id, str(e)) from e
        if position.liquidity == 0:
            logger.info("Position #%s has zero liquidity (may be closed)", position_id)
        return position

    async def _token_metadata(self, address: str) -> TokenInfo:
        try:
            return await self.gateway.get_token_metadata(address)
        except RpcError as e:
            logger.warning("Token metadata unavailable for %s: %s", address, e)
            return TokenInfo(address=address, symbol=UNKNOWN_SYMBOL, decimals=DEFAULT_DECIMALS)

    async def _resolve_pool(self, position: PositionNFT) -> Optional[str]:
        try:
            return await self.resolver.resolve(position.token0, position.token1, position.fee)
        except PoolResolutionError as e:
            logger.warning("Position #%s: %s", position.position_id, e)
            return None

    async def _block_number(self) -> Optional[int]:
        try:
            return await self.gateway.get_block_number()
        except RpcError as e:
            logger.debug("Block number unavailable: %s", e)
            return None

    async def _read_pool_state(self, inputs: ValuationInputs) -> ValuationInputs:
        pool = inputs.pool_address
        pos = inputs.position
        results = await asyncio.gather(
            self.gateway.get_pool_slot0(pool),
            self.gateway.get_pool_fee_growth_global(pool),
            self.gateway.get_tick_info(pool, pos.tick_lower),
            self.gateway.get_tick_info(pool, pos.tick_upper),
            return_exceptions=True,
        )
        labels = ("slot0", "feeGrowthGlobal", "ticks(lower)", "ticks(upper)")
        values = []
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                logger.warning("Pool %s %s read failed: %s", pool, label, result)
                values.append(None)
            else:
                values.append(result)
        slot0, globals_, lower, upper = values
        return replace(
            inputs,
            slot0=slot0,
            fee_growth_global=globals_,
            tick_lower_info=lower,
            tick_upper_info=upper,
        )


async def get_position_snapshot(
    position_id: int, chain: str, settings: Optional[Settings] = None
) -> ValuationSnapshot:
    """One-shot helper: ``PositionReader(chain).get_position_snapshot(id)``."""
    return await PositionReader(chain, settings=settings).get_position_snapshot(position_id)
