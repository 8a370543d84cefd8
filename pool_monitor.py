#!/usr/bin/env python3
"""
Pool Monitor — Periodic Range / Fee / IL Checks for Monitored Positions
========================================================================

One cycle (``check_all_pools``):
  1. Load every active monitored position from the store.
  2. Value all of them concurrently (``asyncio.gather``); one position's
     failure never affects the others.
  3. Per position: write the snapshot back, append a metric row, decide
     alerts (range transition, fee and IL thresholds, each with its own
     cooldown), send them and log each one in alerts_history.

``check_pool_now`` runs exactly the same path for one position on demand.
``run_forever`` runs a cycle immediately, then every interval, alongside
the cooldown eviction task.

Persistence and notification failures are logged; the next cycle writes
again.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from liquidity_guard.alerts import AlertDecider, AlertKind
from liquidity_guard.central_config import Settings, load_settings
from liquidity_guard.cooldown import CooldownService
from liquidity_guard.errors import ConfigurationError, PositionReadError
from liquidity_guard.messages import format_error_message
from liquidity_guard.notifier import DeliveryOutcome, DeliveryResult, TelegramNotifier
from liquidity_guard.store import MonitoredPool, PoolStore
from position_reader import UNKNOWN_SYMBOL, PositionReader, ValuationSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of checking one monitored position."""

    pool_id: int
    success: bool
    snapshot: Optional[ValuationSnapshot] = None
    previous_in_range: Optional[bool] = None
    alerts: Tuple[AlertKind, ...] = ()
    reason: Optional[str] = None

    @property
    def in_range(self) -> Optional[bool]:
        return self.snapshot.in_range if self.snapshot else None

    @property
    def status_changed(self) -> bool:
        return (
            self.snapshot is not None
            and self.previous_in_range is not None
            and self.snapshot.in_range is not None
            and self.previous_in_range != self.snapshot.in_range
        )


def _alert_payload(pool: MonitoredPool, snapshot: ValuationSnapshot) -> Dict:
    """The pool record refreshed with the snapshot, for message formatting."""
    payload = pool.to_dict()
    payload.update(fees_uncollected_usd=snapshot.fees_usd, fee_tier=snapshot.fee)
    # Tick-only bounds are not in pool-price units; keep the stored ones
    if snapshot.current_price is not None:
        payload.update(
            current_price=snapshot.current_price,
            price_lower=snapshot.price_lower or pool.price_lower,
            price_upper=snapshot.price_upper or pool.price_upper,
        )
    if snapshot.token0.symbol != UNKNOWN_SYMBOL:
        payload["token0_symbol"] = snapshot.token0.symbol
    if snapshot.token1.symbol != UNKNOWN_SYMBOL:
        payload["token1_symbol"] = snapshot.token1.symbol
    return payload


class PoolMonitor:
    """
    Usage:
        monitor = PoolMonitor(PoolStore(path), TelegramNotifier(token))
        results = await monitor.check_all_pools()
        result = await monitor.check_pool_now(pool_id)
        await monitor.run_forever()
    """

    def __init__(
        self,
        store: PoolStore,
        notifier: TelegramNotifier,
        settings: Optional[Settings] = None,
        cooldowns: Optional[CooldownService] = None,
        reader_factory: Optional[Callable[[str], PositionReader]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings or load_settings()
        self.cooldowns = cooldowns or CooldownService()
        self.decider = AlertDecider(self.cooldowns)
        self._reader_factory = reader_factory or (
            lambda chain: PositionReader(chain, settings=self.settings)
        )
        self._readers: Dict[str, PositionReader] = {}

    def reader(self, chain: str) -> PositionReader:
        if chain not in self._readers:
            self._readers[chain] = self._reader_factory(chain)
        return self._readers[chain]

    # ── Store boundary ───────────────────────────────────────────────

    def _store_call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except sqlite3.Error as e:
            logger.error("Store %s failed: %s", action, e)
            return None

    # ── Single position ──────────────────────────────────────────────

    async def check_pool(self, pool: MonitoredPool) -> CheckResult:
        """Value one monitored position, persist the result, fire alerts."""
        logger.info(
            "Checking pool %s (position #%s on %s)", pool.id, pool.position_id, pool.chain
        )
        try:
            snapshot = await self.reader(pool.chain).get_position_snapshot(pool.position_id)
        except PositionReadError as e:
            return self._fail(pool, e.reason)
        except ConfigurationError as e:
            # Unsupported chain or missing RPC endpoint in the stored record
            return self._fail(pool, str(e))

        self._persist(pool, snapshot)

        kinds = self.decider.decide(
            pool.id,
            pool.last_in_range,
            snapshot.in_range,
            snapshot.fees_usd,
            pool.impermanent_loss,
            pool.thresholds(),
        )
        if kinds:
            payload = _alert_payload(pool, snapshot)
            for kind in kinds:
                await self._deliver(pool, kind, payload)

        return CheckResult(
            pool_id=pool.id,
            success=True,
            snapshot=snapshot,
            previous_in_range=pool.last_in_range,
            alerts=tuple(kinds),
        )

    def _fail(self, pool: MonitoredPool, reason: str) -> CheckResult:
        """Log and record a failed check; nothing is sent for it."""
        logger.error("Pool %s (position #%s): %s", pool.id, pool.position_id, reason)
        self._store_call(
            "record_alert", self.store.record_alert,
            pool.id, AlertKind.ERROR.value, format_error_message(pool.to_dict(), reason),
            was_sent_telegram=False, telegram_error=reason,
        )
        return CheckResult(
            pool.id, False,
            previous_in_range=pool.last_in_range,
            reason=f"Position #{pool.position_id}: {reason}",
        )

    def _persist(self, pool: MonitoredPool, snapshot: ValuationSnapshot) -> None:
        identity = dict(pool_address=snapshot.pool_address, fee_tier=snapshot.fee)
        if snapshot.current_price is not None:
            identity.update(
                price_lower=snapshot.price_lower or None,
                price_upper=snapshot.price_upper or None,
            )
        if snapshot.token0.symbol != UNKNOWN_SYMBOL:
            identity["token0_symbol"] = snapshot.token0.symbol
        if snapshot.token1.symbol != UNKNOWN_SYMBOL:
            identity["token1_symbol"] = snapshot.token1.symbol

        self._store_call(
            "update_snapshot", self.store.update_snapshot,
            pool.id,
            last_in_range=snapshot.in_range,
            current_price=snapshot.current_price,
            fees_uncollected_usd=snapshot.fees_usd,
            checked_at=snapshot.fetched_at.isoformat(),
            **identity,
        )
        self._store_call(
            "record_metric", self.store.record_metric,
            pool.id,
            current_price=snapshot.current_price,
            in_range=snapshot.in_range,
            fees_usd=snapshot.fees_usd,
            tvl=snapshot.tvl_usd,
            impermanent_loss=pool.impermanent_loss,
            recorded_at=snapshot.fetched_at.isoformat(),
        )

    async def _deliver(self, pool: MonitoredPool, kind: AlertKind, payload: Dict) -> DeliveryResult:
        try:
            result = await self.notifier.send_alert(pool.telegram_chat_id, kind, payload)
        except Exception as e:  # noqa: BLE001
            logger.error("Notifier failed for pool %s (%s): %s", pool.id, kind.value, e)
            result = DeliveryResult(DeliveryOutcome.FAILED, kind.value, error=str(e))

        if result.chat_blocked and pool.telegram_chat_id:
            self._store_call("unlink_telegram_chat", self.store.unlink_telegram_chat, pool.telegram_chat_id)

        self._store_call(
            "record_alert", self.store.record_alert,
            pool.id, kind.value, result.message,
            was_sent_telegram=result.outcome is DeliveryOutcome.DELIVERED,
            telegram_message_id=result.message_id,
            telegram_error=result.error,
        )
        logger.info("Pool %s: %s alert %s", pool.id, kind.value, result.outcome.value)
        return result

    # ── Sweeps ───────────────────────────────────────────────────────

    async def check_pool_now(self, pool_id: int) -> CheckResult:
        """Manual on-demand check of one monitored position."""
        pool = self._store_call("get_pool", self.store.get_pool, pool_id)
        if pool is None:
            return CheckResult(pool_id, False, reason=f"Monitored pool {pool_id} not found")
        return await self.check_pool(pool)

    async def check_all_pools(self) -> List[CheckResult]:
        """One monitoring cycle over every active position."""
        pools = self._store_call("list_active_pools", self.store.list_active_pools) or []
        if not pools:
            logger.info("No active pools to check")
            return []

        outcomes = await asyncio.gather(
            *(self.check_pool(pool) for pool in pools), return_exceptions=True
        )
        results = []
        for pool, outcome in zip(pools, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Pool %s check crashed: %s", pool.id, outcome)
                outcome = CheckResult(
                    pool.id, False,
                    previous_in_range=pool.last_in_range,
                    reason=f"{type(outcome).__name__}: {outcome}",
                )
            results.append(outcome)

        ok = sum(1 for r in results if r.success)
        logger.info(
            "Cycle done at %s: %d/%d pools checked",
            datetime.now(timezone.utc).isoformat(timespec="seconds"), ok, len(results),
        )
        return results

    async def run_forever(self, interval_minutes: Optional[float] = None, max_cycles: Optional[int] = None) -> None:
        """Sweep now, then every ``interval_minutes`` (default from settings)."""
        interval = interval_minutes or self.settings.check_interval_minutes
        logger.info("Monitoring every %s minute(s)", interval)
        eviction = asyncio.create_task(self.cooldowns.run_eviction())
        cycles = 0
        try:
            while True:
                await self.check_all_pools()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                await asyncio.sleep(interval * 60)
        finally:
            eviction.cancel()
