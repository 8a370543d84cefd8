"""
LiquidityGuard — Command Implementations
=========================================

All CLI command handlers live here, keeping run.py as a thin
argparse dispatcher. Each public function corresponds to a
subcommand (check, add, list, sweep, monitor, remove, info).
"""

from __future__ import annotations

from liquidity_guard.central_config import PROJECT_NAME, PROJECT_VERSION, Settings
from liquidity_guard.chain_registry import CHAIN_REGISTRY, get_chain, get_chain_display_name
from liquidity_guard.errors import ConfigurationError, PositionReadError
from liquidity_guard.messages import format_fee_tier, format_price, format_usd
from liquidity_guard.notifier import TelegramNotifier
from liquidity_guard.store import PoolStore


def _tri(flag) -> str:
    if flag is None:
        return "❔ Unknown"
    return "🟢 In Range" if flag else "🔴 Out of Range"


def _monitor(settings: Settings, store: PoolStore):
    from pool_monitor import PoolMonitor

    notifier = TelegramNotifier(settings.telegram_bot_token, app_url=settings.app_url)
    return PoolMonitor(store, notifier, settings=settings)


def print_snapshot(snap) -> None:
    """Human-readable position report."""
    pair = f"{snap.token0.symbol}/{snap.token1.symbol}"
    print("\n" + "=" * 60)
    print(f"  Position #{snap.position_id} — {pair} ({format_fee_tier(snap.fee)})")
    print(f"  Network: {get_chain_display_name(snap.chain)} | "
          f"Pool: {snap.pool_address or 'unresolved'}")
    print("=" * 60)
    print(f"  Status     : {_tri(snap.in_range)}")
    print(f"  Valuation  : {snap.strategy}")
    print(f"  Price Now  : {format_price(snap.current_price)} "
          f"{snap.token1.symbol}/{snap.token0.symbol}")
    print(f"  Range      : {format_price(snap.price_lower)} – {format_price(snap.price_upper)}")
    print(f"  Ticks      : [{snap.tick_lower}, {snap.tick_upper}] "
          f"current={snap.current_tick if snap.current_tick is not None else '?'}")
    if snap.amount0 is not None:
        print()
        print(f"  Holdings   : {snap.amount0:.6f} {snap.token0.symbol} + "
              f"{snap.amount1:.6f} {snap.token1.symbol}")
        print(f"  TVL        : {format_usd(snap.tvl_usd)}"
              f"{'' if snap.usd_complete else ' (incomplete USD pricing)'}")
    if snap.fees0 is not None:
        print()
        accrued = "settled + accrued" if snap.fees_include_accrued else "settled only"
        print(f"  Uncollected Fees ({accrued}): {format_usd(snap.fees_usd)}")
        print(f"    {snap.token0.symbol}: {snap.fees0:.8f}")
        print(f"    {snap.token1.symbol}: {snap.fees1:.8f}")
    print()
    print(f"  Block      : {snap.block_number if snap.block_number is not None else '?'}")
    print(f"  Fetched    : {snap.fetched_at.isoformat(timespec='seconds')}")
    print("=" * 60)


# ── Commands ─────────────────────────────────────────────────────────────


def cmd_info() -> None:
    """Display system information."""
    print(f"\n📊 {PROJECT_NAME} v{PROJECT_VERSION}")
    print("=" * 55)
    print("🔗 Protocol   : Uniswap V3 (concentrated liquidity)")
    print("🌐 Networks   : " + ", ".join(
        f"{slug} ({entry['chain_id']})" for slug, entry in CHAIN_REGISTRY.items()
    ))
    print("📡 Data Source : public JSON-RPC (eth_call, eth_getLogs)")
    print("🔔 Alerts     : Telegram (out of range, back in range, fees, IL)")


async def cmd_check(position_id: int, chain: str, settings: Settings) -> bool:
    """Value one position directly from the chain and print it."""
    from position_reader import PositionReader

    try:
        snap = await PositionReader(chain, settings=settings).get_position_snapshot(position_id)
    except PositionReadError as e:
        print(f"❌ {e}")
        return False
    except ConfigurationError as e:
        print(f"❌ Position #{position_id}: {e}")
        return False
    print_snapshot(snap)
    return True


def cmd_add(
    settings: Settings,
    position_id: int,
    chain: str,
    user: str,
    chat_id: str | None = None,
    alert_out_of_range: bool = True,
    fees_threshold: float = 0.0,
    il_threshold: float = 5.0,
) -> int:
    """
    Register a position for monitoring; returns the monitored pool id.

    Raises ConfigurationError for an unsupported chain before touching the store.
    """
    get_chain(chain)
    store = PoolStore(settings.database_path)
    try:
        user_id = store.find_user(user)
        if user_id is not None:
            if chat_id:
                store.set_telegram_chat_id(user_id, chat_id)
        else:
            user_id = store.add_user(user, telegram_chat_id=chat_id)
        pool_id = store.add_pool(
            user_id, position_id, chain,
            alert_out_of_range=alert_out_of_range,
            alert_fees_threshold=fees_threshold,
            alert_il_threshold=il_threshold,
        )
    finally:
        store.close()
    print(f"✅ Monitoring position #{position_id} on {chain} (pool id {pool_id})")
    return pool_id


def cmd_list(settings: Settings) -> None:
    """List active monitored positions with their last snapshot."""
    store = PoolStore(settings.database_path)
    try:
        pools = store.list_active_pools()
    finally:
        store.close()
    if not pools:
        print("No monitored positions.")
        return
    print(f"\n{'ID':>4}  {'Position':>10}  {'Chain':<9} {'Pair':<14} {'Status':<16} {'Price':>14}  Checked")
    for p in pools:
        pair = f"{p.token0_symbol or '?'}/{p.token1_symbol or '?'}"
        print(f"{p.id:>4}  {p.position_id:>10}  {p.chain:<9} {pair:<14} "
              f"{_tri(p.last_in_range):<16} {format_price(p.current_price):>14}  "
              f"{p.last_checked_at or 'never'}")


def cmd_remove(settings: Settings, pool_id: int, hard: bool = False) -> bool:
    """Stop monitoring (soft) or delete (hard) a monitored position."""
    store = PoolStore(settings.database_path)
    try:
        done = store.delete_pool(pool_id) if hard else store.deactivate_pool(pool_id)
    finally:
        store.close()
    print(f"{'✅' if done else '❌'} Pool {pool_id} {'deleted' if hard else 'deactivated'}"
          f"{'' if done else ' (not found)'}")
    return done


async def cmd_sweep(settings: Settings, pool_id: int | None = None) -> bool:
    """Run one monitoring cycle (or a manual check of one pool)."""
    store = PoolStore(settings.database_path)
    try:
        monitor = _monitor(settings, store)
        if pool_id is not None:
            results = [await monitor.check_pool_now(pool_id)]
        else:
            results = await monitor.check_all_pools()
    finally:
        store.close()

    for r in results:
        if r.success:
            alerts = ", ".join(k.value for k in r.alerts) or "none"
            print(f"  ✅ pool {r.pool_id}: {_tri(r.in_range)} "
                  f"[{r.snapshot.strategy}] alerts: {alerts}")
        else:
            print(f"  ❌ pool {r.pool_id}: {r.reason}")
    return all(r.success for r in results)


async def cmd_monitor(settings: Settings, interval: float | None = None) -> None:
    """Run the scheduler loop until interrupted."""
    store = PoolStore(settings.database_path)
    try:
        await _monitor(settings, store).run_forever(interval)
    finally:
        store.close()
