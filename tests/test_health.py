from __future__ import annotations

import asyncio

from conftest import FakeClock, FakeStream

from trade_signal_engine.detection.health import HealthMonitor


def test_check_is_quiet_while_activity_is_fresh():
    clock = FakeClock()
    stale = []
    hm = HealthMonitor(on_stale=stale.append, clock=clock, monitoring=True)
    hm.touch()
    clock.now += 119
    assert hm.check() is False
    assert stale == []
    assert hm.last_checked_at == clock.now
    # A fresh tick must not move the activity timestamp
    assert hm.seconds_since_activity() == 119


def test_check_declares_stale_after_max_inactivity():
    clock = FakeClock()
    stale = []
    hm = HealthMonitor(on_stale=stale.append, clock=clock, monitoring=True)
    hm.touch()
    clock.now += 121
    assert hm.check() is True
    assert stale == [121]
    assert hm.monitoring is False


def test_not_monitoring_never_goes_stale():
    clock = FakeClock()
    hm = HealthMonitor(on_stale=lambda _: None, clock=clock)
    clock.now += 10_000
    assert hm.check() is False


def test_timer_ticks_on_interval():
    async def scenario():
        clock = FakeClock()
        stale = []
        hm = HealthMonitor(on_stale=stale.append, interval_sec=0.01, max_inactivity_sec=5, clock=clock)
        hm.start()
        clock.now += 6
        await asyncio.sleep(0.05)
        hm.stop()
        return stale

    assert asyncio.run(scenario()) == [6]


def test_staleness_reconnects_and_preserves_watch_set(make_detector):
    async def scenario():
        clock = FakeClock()
        stream = FakeStream()
        d, rec = make_detector(stream=stream, clock=clock)
        d.start("assetA")
        d.start("assetB")
        clock.now += 121
        assert d.health.check()
        await asyncio.sleep(0.1)
        out = (d.get_watched_assets(), d.is_active(), d.stats()["reconnects"])
        d.stop()
        return out, rec, stream

    (watched, active, reconnects), rec, stream = asyncio.run(scenario())
    assert watched == ["asseta", "assetb"]
    assert active
    assert reconnects == 1
    stale = rec.of("connection_stale")
    assert len(stale) == 1
    assert stale[0].seconds_since_activity == 121
    assert stale[0].monitored_assets == ["asseta", "assetb"]
    names = [n for n, _ in rec.seen if n in ("connected", "disconnected", "connection_stale")]
    assert names[:4] == ["connected", "connection_stale", "disconnected", "connected"]
    assert len(stream.subscribed) == 2


def test_log_batches_refresh_activity(make_detector):
    async def scenario():
        clock = FakeClock()
        stream = FakeStream()
        d, rec = make_detector(stream=stream, clock=clock)
        d.start("assetA")
        clock.now += 100
        stream.deliver("x", logs=["Program log: Instruction: Transfer"])
        clock.now += 100
        stale = d.health.check()
        d.stop()
        return stale

    assert asyncio.run(scenario()) is False


def test_stop_during_reconnect_backoff_is_not_undone(make_detector):
    async def scenario():
        clock = FakeClock()
        stream = FakeStream()
        d, rec = make_detector(stream=stream, clock=clock)
        d.start("assetA")
        clock.now += 121
        assert d.health.check()
        await asyncio.sleep(0)
        d.stop()
        await asyncio.sleep(0.1)
        return d, rec, stream

    d, rec, stream = asyncio.run(scenario())
    assert not d.is_active()
    assert d.get_watched_assets() == []
    assert len(stream.subscribed) == 1
    assert len(rec.of("connected")) == 1
    assert not d.health.monitoring


def test_stop_asset_during_reconnect_backoff_drops_it_from_restore(make_detector):
    async def scenario():
        clock = FakeClock()
        stream = FakeStream()
        d, rec = make_detector(stream=stream, clock=clock)
        d.start("assetA")
        d.start("assetB")
        clock.now += 121
        assert d.health.check()
        await asyncio.sleep(0)
        d.stop_asset("assetA")
        await asyncio.sleep(0.1)
        out = (d.get_watched_assets(), d.is_active(), len(stream.subscribed))
        d.stop()
        return out

    watched, active, subs = asyncio.run(scenario())
    assert watched == ["assetb"]
    assert active
    assert subs == 2
