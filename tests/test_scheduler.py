import asyncio
from datetime import timedelta

from radar.errors import FetchFailure
from radar.models import TrackerConfig
from radar.scheduler import ScanScheduler, ScanState
from radar.tracker import LoserTracker

from fakes import FakeClock, FakeSource, entry, run


def _setup(rankings, interval=5):
    clock = FakeClock()
    source = FakeSource(rankings)
    tracker = LoserTracker(source, config=TrackerConfig(scan_interval_seconds=interval), clock=clock)
    return source, tracker, ScanScheduler(tracker, clock=clock), clock


def test_overlapping_trigger_is_dropped():
    async def scenario():
        source, tracker, scheduler, _ = _setup([[entry("AAAUSDT", 1, 1.0)], [entry("BBBUSDT", 1, 1.0)]])
        source.gate = asyncio.Event()

        first = asyncio.create_task(scheduler.trigger())
        await asyncio.sleep(0)
        assert scheduler.state is ScanState.SCANNING

        second = await scheduler.trigger()
        assert second is None
        assert scheduler.triggers_dropped == 1

        source.gate.set()
        result = await first
        assert result.ok
        assert scheduler.state is ScanState.IDLE
        assert source.fetch_calls == 1
        assert scheduler.cycles_started == 1

    run(scenario())


def test_next_deadline_counts_from_cycle_end():
    async def scenario():
        _, _, scheduler, clock = _setup([[entry("AAAUSDT", 1, 1.0)]], interval=30)
        assert scheduler.next_scan_at is None
        await scheduler.trigger()
        assert scheduler.next_scan_at == clock.now + timedelta(seconds=30)

    run(scenario())


def test_failed_cycle_returns_to_idle():
    async def scenario():
        _, tracker, scheduler, _ = _setup([FetchFailure("down"), [entry("AAAUSDT", 1, 1.0)]])
        result = await scheduler.trigger()
        assert not result.ok
        assert scheduler.state is ScanState.IDLE
        assert scheduler.last_result is result

        result = await scheduler.trigger()
        assert result.ok
        assert "AAAUSDT" in (await tracker.get_snapshot()).cached

    run(scenario())


def test_interval_follows_updated_config():
    async def scenario():
        _, tracker, scheduler, _ = _setup([])
        assert scheduler.interval_seconds == 5
        await tracker.update_config(TrackerConfig(scan_interval_seconds=60))
        assert scheduler.interval_seconds == 60

    run(scenario())


def test_loop_runs_on_request_and_stops():
    async def scenario():
        rankings = [[entry("AAAUSDT", 1, 1.0)], [entry("BBBUSDT", 1, 1.0)]]
        source, tracker, scheduler, _ = _setup(rankings, interval=3600)

        scheduler.start()
        for _ in range(20):
            await asyncio.sleep(0)
        assert source.fetch_calls == 1

        scheduler.request_scan()
        for _ in range(20):
            await asyncio.sleep(0)
        assert source.fetch_calls == 2

        await scheduler.stop()
        assert not scheduler.is_running
        assert scheduler.state is ScanState.IDLE
        assert set((await tracker.get_snapshot()).cached) == {"AAAUSDT", "BBBUSDT"}

    run(scenario())


def test_stop_cancels_inflight_scan():
    async def scenario():
        source, tracker, scheduler, _ = _setup([[entry("AAAUSDT", 1, 1.0)]])
        source.gate = asyncio.Event()

        scheduler.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert scheduler.state is ScanState.SCANNING

        await scheduler.stop()
        assert scheduler.state is ScanState.IDLE
        assert (await tracker.get_snapshot()).cached == {}

        stats = scheduler.get_stats()
        assert stats['state'] == "idle"
        assert stats['running'] is False

    run(scenario())
