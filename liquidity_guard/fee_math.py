"""
Fee Accrual — Unclaimed Fees from Uniswap V3 Fee-Growth Accounting
===================================================================

Mirrors ``UniswapV3Pool._getFeeGrowthInside`` and
``Position.update`` from v3-core:

  1. feeGrowthBelow from tickLower's feeGrowthOutside
  2. feeGrowthAbove from tickUpper's feeGrowthOutside
  3. feeGrowthInside = global − below − above          (mod 2^256)
  4. accrued = liquidity × (inside − insideLast) / 2^128
  5. total = tokensOwed + accrued

All arithmetic is on Python ints. ``liquidity × delta`` can exceed 256
bits before the shift; Python ints never truncate.

Ref: https://github.com/Uniswap/v3-core/blob/main/contracts/UniswapV3Pool.sol
     https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/Position.sol
"""

from dataclasses import dataclass
from typing import Optional

from liquidity_guard.rpc_helpers import Q128, Q256


@dataclass(frozen=True)
class FeeGrowthGlobal:
    """Pool.feeGrowthGlobal0X128() / feeGrowthGlobal1X128()."""

    global0_x128: int
    global1_x128: int


@dataclass(frozen=True)
class TickInfo:
    """The fee-growth part of Pool.ticks(int24): slots 2 and 3."""

    fee_growth_outside0_x128: int
    fee_growth_outside1_x128: int


@dataclass(frozen=True)
class FeeAmounts:
    """Unclaimed fees in raw token units.

    ``includes_accrued`` is False when only the settled ``tokensOwed``
    could be counted (pool state or tick snapshots unavailable).
    """

    amount0: int
    amount1: int
    includes_accrued: bool


def fee_growth_inside(
    current_tick: int,
    tick_lower: int,
    tick_upper: int,
    global_x128: int,
    outside_lower_x128: int,
    outside_upper_x128: int,
) -> int:
    """Fee growth per unit of liquidity inside [tick_lower, tick_upper) for one token."""
    if current_tick >= tick_lower:
        below = outside_lower_x128
    else:
        below = (global_x128 - outside_lower_x128) % Q256

    if current_tick < tick_upper:
        above = outside_upper_x128
    else:
        above = (global_x128 - outside_upper_x128) % Q256

    return (global_x128 - below - above) % Q256


def accrued_since(inside_x128: int, last_x128: int, liquidity: int) -> int:
    """Newly accrued raw amount; a stale (larger) last snapshot counts as zero."""
    delta = inside_x128 - last_x128 if inside_x128 > last_x128 else 0
    return (delta * liquidity) // Q128


def compute_unclaimed_fees(
    position,
    current_tick: Optional[int],
    fee_growth_global: Optional[FeeGrowthGlobal],
    tick_lower_info: Optional[TickInfo],
    tick_upper_info: Optional[TickInfo],
) -> FeeAmounts:
    """
    Compute a position's unclaimed fees, settled plus accrued.

    Args:
        position: A ``PositionNFT`` (tick bounds, liquidity, last snapshots,
                  tokens owed).
        current_tick: slot0 tick, or None if the pool was unreachable.
        fee_growth_global: Pool globals, or None.
        tick_lower_info / tick_upper_info: ticks() snapshots, or None.

    Returns:
        FeeAmounts. With any input missing, only tokensOwed is reported
        and ``includes_accrued`` is False.
    """
    if (
        current_tick is None
        or fee_growth_global is None
        or tick_lower_info is None
        or tick_upper_info is None
    ):
        return FeeAmounts(position.tokens_owed0, position.tokens_owed1, False)

    inside0 = fee_growth_inside(
        current_tick, position.tick_lower, position.tick_upper,
        fee_growth_global.global0_x128,
        tick_lower_info.fee_growth_outside0_x128,
        tick_upper_info.fee_growth_outside0_x128,
    )
    inside1 = fee_growth_inside(
        current_tick, position.tick_lower, position.tick_upper,
        fee_growth_global.global1_x128,
        tick_lower_info.fee_growth_outside1_x128,
        tick_upper_info.fee_growth_outside1_x128,
    )

    accrued0 = accrued_since(inside0, position.fee_growth_inside0_last_x128, position.liquidity)
    accrued1 = accrued_since(inside1, position.fee_growth_inside1_last_x128, position.liquidity)

    return FeeAmounts(
        amount0=position.tokens_owed0 + accrued0,
        amount1=position.tokens_owed1 + accrued1,
        includes_accrued=True,
    )
