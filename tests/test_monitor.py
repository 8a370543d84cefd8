"""
Monitor Tests — Sweeps, Alert Delivery and Persistence
=======================================================

End-to-end tests of pool_monitor.py and the CLI commands built on it,
with a scripted position reader, a recording notifier and a real
in-memory SQLite store:
  - one failing position never blocks the others
  - snapshots (including unknown range state) are written back
  - range transitions alert once, then stay quiet
  - delivery outcomes are logged in alerts_history

All tests are offline — no network calls.
"""

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from liquidity_guard.alerts import AlertKind
from liquidity_guard.central_config import Settings
from liquidity_guard.chain_gateway import TokenInfo
from liquidity_guard.commands import cmd_add, cmd_check, cmd_list, cmd_remove, cmd_sweep
from liquidity_guard.cooldown import CooldownService
from liquidity_guard.errors import ConfigurationError, PositionReadError
from liquidity_guard.notifier import DeliveryOutcome, DeliveryResult, TelegramNotifier
from liquidity_guard.store import PoolStore
from pool_monitor import CheckResult, PoolMonitor
from position_reader import PositionReader, ValuationSnapshot

WETH = "0x4200000000000000000000000000000000000006"
USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
POOL = "0xd0b53D9277642d899DF5C87A3966A349A798F224"


# ── Helpers ──────────────────────────────────────────────────────────────

def make_snapshot(position_id: int, in_range, price: float = 3000.0, fees_usd: float = 1.0) -> ValuationSnapshot:
    """A priced snapshot, or a tick-only one when ``in_range`` is None."""
    priced = in_range is not None
    return ValuationSnapshot(
        position_id=position_id,
        chain="base",
        strategy="full" if priced else "tick_only",
        token0=TokenInfo(WETH, "WETH", 18),
        token1=TokenInfo(USDC, "USDC", 6),
        fee=500,
        tick_lower=-200000,
        tick_upper=-190000,
        liquidity=10 ** 15,
        # tick_only bounds are renormalized tick prices, not pool-price units
        price_lower=2900.0 if priced else 3.68e20,
        price_upper=3500.0 if priced else 3.02e20,
        fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        pool_address=POOL if priced else None,
        current_price=price if priced else None,
        in_range=in_range,
        fees_usd=fees_usd if priced else None,
        tvl_usd=1000.0 if priced else None,
        usd_complete=priced,
    )


class ScriptedReader:
    """Returns one scripted outcome per call: a range flag or an exception."""

    def __init__(self, script):
        self.script = {pid: list(outcomes) for pid, outcomes in script.items()}
        self.calls = []

    async def get_position_snapshot(self, position_id):
        self.calls.append(position_id)
        outcomes = self.script[position_id]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return make_snapshot(position_id, outcome)


class RecordingNotifier:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.sent = []

    async def send_alert(self, chat_id, kind, payload):
        self.sent.append((chat_id, kind, dict(payload)))
        if self.error:
            raise self.error
        return self.result or DeliveryResult(
            DeliveryOutcome.DELIVERED, f"{kind.value} message", message_id=len(self.sent)
        )


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def store():
    s = PoolStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def user_id(store):
    return store.add_user("alice", telegram_chat_id="555")


def make_monitor(store, reader, notifier=None, clock=None):
    return PoolMonitor(
        store,
        notifier or RecordingNotifier(),
        settings=Settings(),
        cooldowns=CooldownService(clock=clock or FakeClock()),
        reader_factory=lambda chain: reader,
    )


# ═══════════════════════════════════════════════════════════════════════════
# 1. Sweeps
# ═══════════════════════════════════════════════════════════════════════════

class TestSweep:
    def test_no_active_pools(self, store):
        monitor = make_monitor(store, ScriptedReader({}))
        assert asyncio.run(monitor.check_all_pools()) == []

    def test_one_failure_does_not_block_others(self, store, user_id):
        ids = [store.add_pool(user_id, pid, "base") for pid in (1, 2, 3)]
        reader = ScriptedReader({
            1: [True],
            2: [PositionReadError(2, "execution reverted")],
            3: [False],
        })
        notifier = RecordingNotifier()
        results = asyncio.run(make_monitor(store, reader, notifier).check_all_pools())

        assert [r.pool_id for r in results] == ids
        assert [r.success for r in results] == [True, False, True]
        assert "execution reverted" in results[1].reason
        assert sorted(reader.calls) == [1, 2, 3]
        assert notifier.sent == []

        errors = store.alert_history(ids[1])
        assert len(errors) == 1
        assert errors[0]["alert_type"] == "error"
        assert errors[0]["was_sent_telegram"] == 0
        assert errors[0]["telegram_error"] == "execution reverted"

        assert store.get_pool(ids[0]).last_in_range is True
        assert store.get_pool(ids[2]).last_in_range is False

    def test_unexpected_exception_becomes_failed_result(self, store, user_id):
        ids = [store.add_pool(user_id, pid, "base") for pid in (1, 2)]
        reader = ScriptedReader({1: [RuntimeError("boom")], 2: [True]})
        results = asyncio.run(make_monitor(store, reader).check_all_pools())
        assert results[0] == CheckResult(ids[0], False, previous_in_range=None, reason="RuntimeError: boom")
        assert results[1].success is True

    def test_inactive_pools_skipped(self, store, user_id):
        active = store.add_pool(user_id, 1, "base")
        inactive = store.add_pool(user_id, 2, "base")
        store.deactivate_pool(inactive)
        reader = ScriptedReader({1: [True], 2: [True]})
        results = asyncio.run(make_monitor(store, reader).check_all_pools())
        assert [r.pool_id for r in results] == [active]
        assert reader.calls == [1]

    def test_reader_cached_per_chain(self, store, user_id):
        store.add_pool(user_id, 1, "base")
        store.add_pool(user_id, 2, "ethereum")
        built = []

        def factory(chain):
            built.append(chain)
            return ScriptedReader({1: [True], 2: [True]})

        monitor = PoolMonitor(store, RecordingNotifier(), settings=Settings(), reader_factory=factory)
        asyncio.run(monitor.check_all_pools())
        asyncio.run(monitor.check_all_pools())
        assert sorted(built) == ["base", "ethereum"]

    def test_unsupported_chain_reported_not_raised(self, store, user_id):
        good = store.add_pool(user_id, 1, "base")
        typo = store.add_pool(user_id, 7, "basee")
        reader = ScriptedReader({1: [True]})
        monitor = PoolMonitor(
            store, RecordingNotifier(), settings=Settings(),
            reader_factory=lambda chain: reader if chain == "base" else PositionReader(chain, settings=Settings()),
        )

        result = asyncio.run(monitor.check_pool_now(typo))
        assert result.success is False
        assert result.reason.startswith("Position #7: Unsupported chain: basee")

        history = store.alert_history(typo)
        assert history[0]["alert_type"] == "error"
        assert history[0]["was_sent_telegram"] == 0
        assert "basee" in history[0]["telegram_error"]

        results = asyncio.run(monitor.check_all_pools())
        assert [(r.pool_id, r.success) for r in results] == [(good, True), (typo, False)]


# ═══════════════════════════════════════════════════════════════════════════
# 2. Persistence
# ═══════════════════════════════════════════════════════════════════════════

class TestPersistence:
    def test_snapshot_written_back(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        asyncio.run(make_monitor(store, ScriptedReader({1: [True]})).check_pool_now(pool_id))

        pool = store.get_pool(pool_id)
        assert pool.last_in_range is True
        assert pool.current_price == 3000.0
        assert pool.fees_uncollected_usd == 1.0
        assert pool.token0_symbol == "WETH"
        assert pool.token1_symbol == "USDC"
        assert pool.fee_tier == 500
        assert pool.pool_address == POOL
        assert pool.price_lower == 2900.0
        assert pool.last_checked_at.startswith("2024-01-01")

        metrics = store.metrics(pool_id)
        assert len(metrics) == 1
        assert metrics[0]["in_range"] is True
        assert metrics[0]["tvl"] == 1000.0

    def test_unknown_range_stored_as_null(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0, pool_address=POOL)
        asyncio.run(make_monitor(store, ScriptedReader({1: [None]})).check_pool_now(pool_id))

        pool = store.get_pool(pool_id)
        assert pool.last_in_range is None
        assert pool.current_price is None
        assert pool.pool_address == POOL
        assert store.metrics(pool_id)[0]["in_range"] is None

    def test_tick_only_bounds_never_overwrite_pool_prices(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        monitor = make_monitor(store, ScriptedReader({1: [True, None]}))
        asyncio.run(monitor.check_pool_now(pool_id))
        asyncio.run(monitor.check_pool_now(pool_id))

        pool = store.get_pool(pool_id)
        assert (pool.price_lower, pool.price_upper) == (2900.0, 3500.0)

    def test_store_failure_logged_not_raised(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        monitor = make_monitor(store, ScriptedReader({1: [True]}))
        with patch.object(store, "update_snapshot", side_effect=sqlite3.OperationalError("database is locked")):
            result = asyncio.run(monitor.check_pool_now(pool_id))
        assert result.success is True
        assert len(store.metrics(pool_id)) == 1

    def test_check_pool_now_not_found(self, store):
        result = asyncio.run(make_monitor(store, ScriptedReader({})).check_pool_now(999))
        assert result.success is False
        assert result.reason == "Monitored pool 999 not found"


# ═══════════════════════════════════════════════════════════════════════════
# 3. Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlerts:
    def test_transition_alert_delivered_and_logged(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0)
        notifier = RecordingNotifier()
        result = asyncio.run(
            make_monitor(store, ScriptedReader({1: [False]}), notifier).check_pool_now(pool_id)
        )

        assert result.alerts == (AlertKind.OUT_OF_RANGE,)
        assert result.status_changed is True
        chat_id, kind, payload = notifier.sent[0]
        assert chat_id == "555"
        assert kind is AlertKind.OUT_OF_RANGE
        assert payload["token0_symbol"] == "WETH"
        assert payload["current_price"] == 3000.0
        assert payload["fee_tier"] == 500

        history = store.alert_history(pool_id)
        assert history[0]["alert_type"] == "out_of_range"
        assert history[0]["was_sent_telegram"] == 1
        assert history[0]["telegram_message_id"] == 1

    def test_repeated_out_of_range_alerts_once(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        clock = FakeClock()
        notifier = RecordingNotifier()
        monitor = make_monitor(
            store, ScriptedReader({1: [True, False, False, False]}), notifier, clock
        )
        for _ in range(4):
            asyncio.run(monitor.check_all_pools())
            clock.advance(minutes=90)

        assert [kind for _, kind, _ in notifier.sent] == [AlertKind.OUT_OF_RANGE]
        assert store.get_pool(pool_id).last_in_range is False

    def test_unknown_state_never_alerts(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0)
        notifier = RecordingNotifier()
        monitor = make_monitor(store, ScriptedReader({1: [None, False]}), notifier)
        asyncio.run(monitor.check_all_pools())
        asyncio.run(monitor.check_all_pools())
        assert notifier.sent == []

    def test_back_in_range(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, False, 2800.0, 1.0)
        notifier = RecordingNotifier()
        asyncio.run(make_monitor(store, ScriptedReader({1: [True]}), notifier).check_pool_now(pool_id))
        assert [kind for _, kind, _ in notifier.sent] == [AlertKind.BACK_IN_RANGE]

    def test_fee_and_il_thresholds(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base", alert_fees_threshold=0.5, alert_il_threshold=5.0)
        store.set_impermanent_loss(pool_id, -7.0)
        notifier = RecordingNotifier()
        result = asyncio.run(
            make_monitor(store, ScriptedReader({1: [True]}), notifier).check_pool_now(pool_id)
        )
        assert result.alerts == (AlertKind.FEES_THRESHOLD, AlertKind.IL_THRESHOLD)
        assert {h["alert_type"] for h in store.alert_history(pool_id)} == {"fees_threshold", "il_threshold"}

    def test_tick_only_alert_uses_stored_bounds(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0, price_lower=2900.0, price_upper=3500.0)
        store.set_impermanent_loss(pool_id, -7.0)
        notifier = RecordingNotifier()
        asyncio.run(make_monitor(store, ScriptedReader({1: [None]}), notifier).check_pool_now(pool_id))

        _, kind, payload = notifier.sent[0]
        assert kind is AlertKind.IL_THRESHOLD
        assert (payload["price_lower"], payload["price_upper"]) == (2900.0, 3500.0)
        assert payload["current_price"] == 3000.0

    def test_blocked_chat_is_unlinked(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0)
        notifier = RecordingNotifier(result=DeliveryResult(
            DeliveryOutcome.SUPPRESSED, "text", error="bot blocked by user", chat_blocked=True
        ))
        asyncio.run(make_monitor(store, ScriptedReader({1: [False]}), notifier).check_pool_now(pool_id))

        assert store.get_pool(pool_id).telegram_chat_id is None
        history = store.alert_history(pool_id)
        assert history[0]["was_sent_telegram"] == 0
        assert history[0]["telegram_error"] == "bot blocked by user"

    def test_notifier_crash_recorded_as_failed(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0)
        notifier = RecordingNotifier(error=RuntimeError("formatter broke"))
        result = asyncio.run(
            make_monitor(store, ScriptedReader({1: [False]}), notifier).check_pool_now(pool_id)
        )
        assert result.success is True
        history = store.alert_history(pool_id)
        assert history[0]["was_sent_telegram"] == 0
        assert history[0]["telegram_error"] == "formatter broke"

    def test_cooldown_consumed_even_when_undelivered(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base", alert_fees_threshold=0.5)
        notifier = RecordingNotifier(error=RuntimeError("down"))
        monitor = make_monitor(store, ScriptedReader({1: [True]}), notifier)
        asyncio.run(monitor.check_pool_now(pool_id))
        asyncio.run(monitor.check_pool_now(pool_id))
        assert len(notifier.sent) == 1

    def test_real_notifier_without_token_records_text(self, store, user_id):
        pool_id = store.add_pool(user_id, 1, "base")
        store.update_snapshot(pool_id, True, 3000.0, 1.0)
        notifier = TelegramNotifier(None, app_url="https://app.example")
        asyncio.run(make_monitor(store, ScriptedReader({1: [False]}), notifier).check_pool_now(pool_id))
        history = store.alert_history(pool_id)
        assert history[0]["was_sent_telegram"] == 0
        assert "Out of Range" in history[0]["message"]
        assert f"https://app.example/pools/{pool_id}" in history[0]["message"]


# ═══════════════════════════════════════════════════════════════════════════
# 4. Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class TestRunForever:
    def test_single_cycle(self, store, user_id):
        store.add_pool(user_id, 1, "base")
        reader = ScriptedReader({1: [True]})
        asyncio.run(make_monitor(store, reader).run_forever(max_cycles=1))
        assert reader.calls == [1]

    def test_cycles_repeat_on_interval(self, store, user_id):
        store.add_pool(user_id, 1, "base")
        reader = ScriptedReader({1: [True]})
        asyncio.run(make_monitor(store, reader).run_forever(interval_minutes=0.0001, max_cycles=3))
        assert reader.calls == [1, 1, 1]


class TestCheckResult:
    def test_status_changed_needs_known_states(self):
        assert CheckResult(1, True, make_snapshot(1, False), previous_in_range=True).status_changed
        assert not CheckResult(1, True, make_snapshot(1, True), previous_in_range=True).status_changed
        assert not CheckResult(1, True, make_snapshot(1, None), previous_in_range=True).status_changed
        assert not CheckResult(1, False, previous_in_range=True).status_changed
        assert CheckResult(1, False).in_range is None


# ═══════════════════════════════════════════════════════════════════════════
# 5. commands.py
# ═══════════════════════════════════════════════════════════════════════════

class FakePositionReader:
    """Stands in for position_reader.PositionReader in command tests."""

    def __init__(self, chain, settings=None):
        self.chain = chain

    async def get_position_snapshot(self, position_id):
        if position_id == 404:
            raise PositionReadError(position_id, "execution reverted")
        return make_snapshot(position_id, True)


class TestCommands:
    @pytest.fixture
    def settings(self, tmp_path):
        return Settings(database_path=str(tmp_path / "lg.db"))

    def test_add_list_remove(self, settings, capsys):
        first = cmd_add(settings, 1234567, "base", "alice", chat_id="555", fees_threshold=10.0)
        second = cmd_add(settings, 42, "ethereum", "alice", alert_out_of_range=False)
        assert (first, second) == (1, 2)

        store = PoolStore(settings.database_path)
        try:
            pools = store.list_active_pools()
            assert [p.position_id for p in pools] == [1234567, 42]
            assert pools[0].user_id == pools[1].user_id
            assert pools[0].alert_fees_threshold == 10.0
            assert pools[1].alert_out_of_range is False
            assert pools[1].telegram_chat_id == "555"
        finally:
            store.close()

        cmd_list(settings)
        out = capsys.readouterr().out
        assert "1234567" in out and "never" in out

        assert cmd_remove(settings, first) is True
        assert cmd_remove(settings, second, hard=True) is True
        assert cmd_remove(settings, 99) is False
        cmd_list(settings)
        assert "No monitored positions." in capsys.readouterr().out

    def test_add_rejects_unknown_chain(self, settings, tmp_path):
        with pytest.raises(ConfigurationError, match="Unsupported chain: basee"):
            cmd_add(settings, 1, "basee", "alice")
        assert not (tmp_path / "lg.db").exists()

    def test_check_unknown_chain_reports_position(self, settings, capsys):
        assert asyncio.run(cmd_check(1234567, "basee", settings)) is False
        assert "Position #1234567: Unsupported chain: basee" in capsys.readouterr().out

    def test_sweep(self, settings, capsys):
        cmd_add(settings, 1, "base", "alice")
        cmd_add(settings, 404, "base", "alice")
        with patch("pool_monitor.PositionReader", FakePositionReader):
            ok = asyncio.run(cmd_sweep(settings))
        assert ok is False
        out = capsys.readouterr().out
        assert "✅ pool 1" in out
        assert "❌ pool 2" in out

    def test_sweep_single_pool(self, settings, capsys):
        cmd_add(settings, 1, "base", "alice")
        with patch("pool_monitor.PositionReader", FakePositionReader):
            assert asyncio.run(cmd_sweep(settings, pool_id=1)) is True

    def test_check(self, settings, capsys):
        with patch("position_reader.PositionReader", FakePositionReader):
            assert asyncio.run(cmd_check(1234567, "base", settings)) is True
            assert asyncio.run(cmd_check(404, "base", settings)) is False
        out = capsys.readouterr().out
        assert "Position #1234567" in out
        assert "WETH/USDC" in out
        assert "Position #404: execution reverted" in out
