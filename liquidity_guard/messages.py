"""
Alert Messages — Telegram Markdown Text for Each Alert Kind
============================================================

Every builder takes the alert payload (a mapping with the monitored pool's
fields, refreshed with the latest snapshot) and the app base URL used for
the "details" link.
"""

from typing import Any, Mapping, Optional

from liquidity_guard.alerts import AlertKind


def format_price(price: Optional[float]) -> str:
    """
    Price with magnitude-dependent precision, without a unit.

    >>> format_price(3312.456)
    '3,312.46'
    >>> format_price(1.5)
    '1.5000'
    >>> format_price(0.00042)
    '0.000420'
    >>> format_price(None)
    'N/A'
    """
    if not price:
        return "N/A"
    num = float(price)
    if num >= 1000:
        return f"{num:,.2f}"
    elif num >= 1:
        return f"{num:.4f}"
    elif num >= 0.0001:
        return f"{num:.6f}"
    return f"{num:.2e}"


def format_usd(value: Optional[float]) -> str:
    """
    >>> format_usd(1234.5)
    '$1,234.50'
    >>> format_usd(None)
    '$0.00'
    """
    if not value:
        return "$0.00"
    return f"${float(value):,.2f}"


def format_fee_tier(fee: Optional[int]) -> str:
    """Fee in hundredths of a bip as a percentage: 500 → '0.05%'."""
    if fee is None:
        return "?"
    return f"{fee / 10000:.2f}%"


def _pair(pool: Mapping[str, Any]) -> str:
    return f"{pool.get('token0_symbol') or '?'}/{pool.get('token1_symbol') or '?'}"


def _pool_url(pool: Mapping[str, Any], app_url: str) -> str:
    return f"{app_url.rstrip('/')}/pools/{pool.get('id')}"


def format_quote(price: Optional[float], pool: Mapping[str, Any]) -> str:
    """
    Pool price in quote-token units (token1 per token0).

    >>> format_quote(15.0, {"token0_symbol": "WBTC", "token1_symbol": "WETH"})
    '15.0000 WETH per WBTC'
    """
    text = format_price(price)
    if not price:
        return text
    return f"{text} {pool.get('token1_symbol') or '?'} per {pool.get('token0_symbol') or '?'}"


def range_distance_text(pool: Mapping[str, Any]) -> str:
    """How far the current price sits outside the range; '' if unknown, inside or the bounds are unordered."""
    price = pool.get("current_price")
    lower = pool.get("price_lower")
    upper = pool.get("price_upper")
    if lower and upper and lower > upper:
        return ""
    if price and lower and price < lower:
        distance = (lower - price) / lower * 100
        return f"\n📉 *{distance:.2f}% below* the range minimum"
    if price and upper and price > upper:
        distance = (price - upper) / upper * 100
        return f"\n📈 *{distance:.2f}% above* the range maximum"
    return ""


def format_out_of_range_message(pool: Mapping[str, Any], app_url: str) -> str:
    return (
        f"🚨 *ALERT: Pool Out of Range!*\n\n"
        f"*Pool:* {_pair(pool)} ({format_fee_tier(pool.get('fee_tier'))})\n"
        f"*Chain:* {pool.get('chain')}\n"
        f"*Protocol:* {pool.get('protocol')}\n\n"
        f"💰 *Current price:* {format_quote(pool.get('current_price'), pool)}"
        f"{range_distance_text(pool)}\n"
        f"📊 *Your range:* {format_price(pool.get('price_lower'))} - "
        f"{format_quote(pool.get('price_upper'), pool)}\n\n"
        f"⚠️ *You are NOT earning fees!*\n\n"
        f"*Suggested actions:*\n"
        f"• Rebalance your position\n"
        f"• Wait for the price to return\n"
        f"• Review impermanent loss\n\n"
        f"[View Details]({_pool_url(pool, app_url)})"
    )


def format_back_in_range_message(pool: Mapping[str, Any], app_url: str) -> str:
    return (
        f"✅ *Pool Back in Range!*\n\n"
        f"*Pool:* {_pair(pool)}\n"
        f"*Current price:* {format_quote(pool.get('current_price'), pool)}\n\n"
        f"Your position is *IN RANGE* again and earning fees!\n\n"
        f"[View Details]({_pool_url(pool, app_url)})"
    )


def format_fees_message(pool: Mapping[str, Any], app_url: str) -> str:
    return (
        f"💰 *Fees Accumulated!*\n\n"
        f"*Pool:* {_pair(pool)}\n"
        f"*Uncollected fees:* {format_usd(pool.get('fees_uncollected_usd'))}\n\n"
        f"You reached your configured fee threshold.\n"
        f"Consider collecting your earnings!\n\n"
        f"[View Pool]({_pool_url(pool, app_url)})"
    )


def format_il_message(pool: Mapping[str, Any], app_url: str) -> str:
    il = float(pool.get("impermanent_loss") or 0)
    emoji = "⚠️" if abs(il) > 10 else "📊"
    return (
        f"{emoji} *Impermanent Loss Alert*\n\n"
        f"*Pool:* {_pair(pool)}\n"
        f"*Current IL:* {il:.2f}%\n\n"
        f"Your IL crossed the configured threshold.\n"
        f"Consider whether to keep the position.\n\n"
        f"[Analyze Position]({_pool_url(pool, app_url)})"
    )


def format_error_message(pool: Mapping[str, Any], reason: str) -> str:
    return f"Check failed for position #{pool.get('position_id')} ({_pair(pool)}): {reason}"


_BUILDERS = {
    AlertKind.OUT_OF_RANGE: format_out_of_range_message,
    AlertKind.BACK_IN_RANGE: format_back_in_range_message,
    AlertKind.FEES_THRESHOLD: format_fees_message,
    AlertKind.IL_THRESHOLD: format_il_message,
}


def format_alert(kind: AlertKind, pool: Mapping[str, Any], app_url: str) -> str:
    """Message text for ``kind``; raises KeyError for kinds that are never sent."""
    return _BUILDERS[kind](pool, app_url)
