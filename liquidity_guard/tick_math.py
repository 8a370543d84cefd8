"""
Tick Math — Price ↔ Tick Conversions for Uniswap V3
====================================================

Pure numeric functions. No I/O, no exceptions escape: an uncomputable
tick price is reported as the ``0.0`` sentinel, which callers must treat
as *absent*, never as a real price.

Formulas (Uniswap V3 Whitepaper §6.1–6.2):
  Tick → price:        p(i) = 1.0001^i × 10^(d1 − d0)
  sqrtPriceX96 → price: p = sqrtPriceX96² × 10^d0 / (2^192 × 10^d1)
  Tick → pool price:   p(i) = 1.0001^i × 10^(d0 − d1)   (same units as sqrtPriceX96)
  Token amounts:       constant-liquidity curve between √P_lower and √P_upper

Ref: https://uniswap.org/whitepaper-v3.pdf
     https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/TickMath.sol
"""

import math
from typing import Optional, Tuple

from liquidity_guard.rpc_helpers import Q96, Q192

# ── Protocol Bounds ─────────────────────────────────────────────────────
# TickMath.MIN_TICK / MAX_TICK: log base 1.0001 of 2^-128 / 2^128

TICK_MIN = -887272
TICK_MAX = 887272

# ln(1.0001), used to evaluate 1.0001^tick as exp(tick · ln 1.0001)
LOG_TICK_BASE = math.log(1.0001)
LOG_TEN = math.log(10)

# Renormalization bands for decimal-adjusted tick prices
PRICE_FLOOR = 1e-10
PRICE_CEILING = 1e10


def validate_ticks(tick_lower: int, tick_upper: int) -> None:
    """Raise ValueError unless TICK_MIN <= tick_lower < tick_upper <= TICK_MAX."""
    if tick_lower >= tick_upper:
        raise ValueError(f"tickLower ({tick_lower}) must be < tickUpper ({tick_upper})")
    if tick_lower < TICK_MIN or tick_upper > TICK_MAX:
        raise ValueError(
            f"Ticks [{tick_lower}, {tick_upper}] outside protocol bounds "
            f"[{TICK_MIN}, {TICK_MAX}]"
        )


def tick_to_price(tick: int, decimals0: int, decimals1: int) -> float:
    """
    Convert a tick index to a decimal price (token1 per token0).

    Evaluated in log form so |tick| up to 887272 never overflows. The
    decimal-adjusted result is renormalized when it falls outside
    ``[1e-10, 1e10]``:

      below 1e-10 → (1 / raw) × 10^(d0 − d1)
      above 1e10  → raw, if raw itself is inside (0, 1e10)
                    else adjusted / 10^|d1 − d0|

    Returns:
        Price, or ``0.0`` when the result is non-finite or non-positive.

    Examples:
        >>> tick_to_price(0, 18, 18)
        1.0
    """
    try:
        raw = math.exp(tick * LOG_TICK_BASE)
        adjusted = raw * (10.0 ** (decimals1 - decimals0))
    except OverflowError:
        return 0.0

    if not math.isfinite(adjusted) or adjusted <= 0:
        return 0.0

    if adjusted < PRICE_FLOOR:
        adjusted = (1 / raw) * (10.0 ** (decimals0 - decimals1))
    elif adjusted > PRICE_CEILING:
        if 0 < raw < PRICE_CEILING:
            adjusted = raw
        else:
            decimal_diff = abs(decimals1 - decimals0)
            if decimal_diff > 0:
                adjusted = adjusted / (10.0 ** decimal_diff)

    if not math.isfinite(adjusted) or adjusted <= 0:
        return 0.0
    return adjusted


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
    """
    Convert slot0's sqrtPriceX96 to a decimal price (token1 per token0).

    Numerator and denominator stay Python ints, so the squared 160-bit
    value is exact; the only rounding is the final true division.

    Examples:
        >>> sqrt_price_x96_to_price(2 ** 96, 18, 18)
        1.0
    """
    if sqrt_price_x96 <= 0:
        return 0.0
    numerator = sqrt_price_x96 * sqrt_price_x96 * 10 ** decimals0
    denominator = Q192 * 10 ** decimals1
    return numerator / denominator


def tick_to_pool_price(tick: int, decimals0: int, decimals1: int) -> float:
    """
    Price at ``tick`` in the units of ``sqrt_price_x96_to_price``.

    No renormalization: for any decimals the result is monotonic in the
    tick, so ``tick_lower <= tick <= tick_upper`` implies the prices are
    ordered the same way.

    Examples:
        >>> tick_to_pool_price(0, 18, 18)
        1.0
        >>> 2990 < tick_to_pool_price(-196256, 18, 6) < 3010
        True
    """
    exponent = tick * LOG_TICK_BASE + (decimals0 - decimals1) * LOG_TEN
    try:
        price = math.exp(exponent)
    except OverflowError:
        return 0.0
    return price if price > 0 else 0.0


def invert_price(price: Optional[float]) -> Optional[float]:
    """1 / price, keeping unknown (None) and the 0 sentinel as None."""
    if not price:
        return None
    return 1 / price


def tick_to_sqrt_ratio(tick: int) -> float:
    """√(1.0001^tick) as a float (not Q96-scaled)."""
    return math.exp(tick * LOG_TICK_BASE / 2)


def is_in_range(current_tick: int, tick_lower: int, tick_upper: int) -> bool:
    """Range membership by ticks, both bounds inclusive."""
    return tick_lower <= current_tick <= tick_upper


def get_token_amounts(
    liquidity: int,
    sqrt_price_x96: int,
    current_tick: int,
    tick_lower: int,
    tick_upper: int,
) -> Tuple[float, float]:
    """
    Raw token amounts (smallest units) held by a position.

    Formula (Whitepaper §6.2):
      Below range:  amount0 = L × (1/√P_lower − 1/√P_upper), amount1 = 0
      Above range:  amount0 = 0, amount1 = L × (√P_upper − √P_lower)
      In range:     amount0 = L × (1/√P − 1/√P_upper)
                    amount1 = L × (√P − √P_lower)
    """
    if liquidity == 0 or sqrt_price_x96 == 0:
        return 0.0, 0.0

    sqrt_p = sqrt_price_x96 / Q96
    sqrt_pl = tick_to_sqrt_ratio(tick_lower)
    sqrt_pu = tick_to_sqrt_ratio(tick_upper)

    if current_tick < tick_lower:
        return liquidity * (1 / sqrt_pl - 1 / sqrt_pu), 0.0
    if current_tick >= tick_upper:
        return 0.0, liquidity * (sqrt_pu - sqrt_pl)

    # Clamp: slot0's sqrtPrice may sit fractionally outside the tick bounds
    sqrt_p = min(max(sqrt_p, sqrt_pl), sqrt_pu)
    return (
        liquidity * (1 / sqrt_p - 1 / sqrt_pu),
        liquidity * (sqrt_p - sqrt_pl),
    )
