from datetime import timedelta

from radar.models import TrackerConfig, TrackingState
from radar.pools import build_views, expire_cached, merge_ranking, prune_recycled, rebound_percent

from fakes import T0, entry


def _state(**cfg):
    return TrackingState(config=TrackerConfig(**cfg))


def test_rebound_percent():
    assert abs(rebound_percent(1.0, 1.15) - 15.0) < 1e-9
    assert abs(rebound_percent(2.0, 2.05) - 2.5) < 1e-9
    assert rebound_percent(2.0, 1.0) == -50.0
    assert rebound_percent(0.0, 5.0) == 0.0


def test_merge_promotes_new_losers_once():
    state = _state()
    promoted = merge_ranking(state, [entry("XYZUSDT", 1, 1.0), entry("ABCUSDT", 2, 2.0)], None, T0)

    assert promoted == ["XYZUSDT", "ABCUSDT"]
    xyz = state.cached["XYZUSDT"]
    assert xyz.entry_time == T0
    assert xyz.entry_price == 1.0
    assert xyz.current_price == 1.0
    assert xyz.current_rebound_percent == 0.0
    assert xyz.entry_rank == 1

    later = T0 + timedelta(minutes=5)
    promoted = merge_ranking(state, [entry("XYZUSDT", 2, 1.15), entry("ABCUSDT", 1, 2.05)], None, later)

    assert promoted == []
    xyz = state.cached["XYZUSDT"]
    assert xyz.entry_time == T0
    assert xyz.entry_price == 1.0
    assert xyz.entry_rank == 1
    assert xyz.rank == 2
    assert abs(xyz.current_rebound_percent - 15.0) < 1e-9
    assert xyz.last_update_time == later
    assert abs(state.cached["ABCUSDT"].current_rebound_percent - 2.5) < 1e-9


def test_realtime_is_replaced_wholesale():
    state = _state()
    merge_ranking(state, [entry("AAAUSDT", 1, 1.0), entry("BBBUSDT", 2, 1.0)], None, T0)
    merge_ranking(state, [entry("CCCUSDT", 1, 3.0)], None, T0)

    assert [e.symbol for e in state.realtime] == ["CCCUSDT"]
    assert set(state.cached) == {"AAAUSDT", "BBBUSDT", "CCCUSDT"}


def test_off_ranking_symbols_refresh_from_prices_or_keep_values():
    state = _state()
    merge_ranking(state, [entry("AAAUSDT", 1, 10.0), entry("BBBUSDT", 2, 4.0)], None, T0)

    later = T0 + timedelta(minutes=1)
    merge_ranking(state, [entry("CCCUSDT", 1, 1.0)], {"AAAUSDT": 12.0}, later)

    aaa = state.cached["AAAUSDT"]
    assert aaa.current_price == 12.0
    assert abs(aaa.current_rebound_percent - 20.0) < 1e-9
    assert aaa.rank is None
    assert aaa.last_update_time == later

    bbb = state.cached["BBBUSDT"]
    assert bbb.current_price == 4.0
    assert bbb.current_rebound_percent == 0.0
    assert bbb.last_update_time == T0


def test_lowest_price_after_entry_tracks_minimum():
    state = _state()
    merge_ranking(state, [entry("AAAUSDT", 1, 10.0)], None, T0)
    merge_ranking(state, [entry("AAAUSDT", 1, 8.0)], None, T0)
    merge_ranking(state, [entry("AAAUSDT", 1, 9.0)], None, T0)

    assert state.cached["AAAUSDT"].lowest_price_after_entry == 8.0
    assert state.cached["AAAUSDT"].entry_price == 10.0


def test_expiry_moves_contract_to_recycled():
    state = _state(cache_expiry_hours=1)
    merge_ranking(state, [entry("XYZUSDT", 1, 1.0)], None, T0)
    merge_ranking(state, [entry("XYZUSDT", 1, 1.15)], None, T0 + timedelta(minutes=5))

    # Exactly at the limit is still tracked
    assert expire_cached(state, T0 + timedelta(hours=1)) == []

    evicted_at = T0 + timedelta(minutes=61)
    assert expire_cached(state, evicted_at) == ["XYZUSDT"]
    assert "XYZUSDT" not in state.cached

    recycled = state.recycled["XYZUSDT"]
    assert recycled.recycle_time == evicted_at
    assert abs(recycled.final_rebound_percent - 15.0) < 1e-9
    assert recycled.entry_time == T0
    assert recycled.entry_price == 1.0
    assert recycled.last_price == 1.15
    assert abs(recycled.cached_duration_hours - 61 / 60) < 1e-9


def test_zero_expiry_recycles_on_next_cycle():
    state = _state(cache_expiry_hours=0)
    merge_ranking(state, [entry("AAAUSDT", 1, 1.0)], None, T0)
    assert expire_cached(state, T0) == []
    assert expire_cached(state, T0 + timedelta(seconds=1)) == ["AAAUSDT"]


def test_recycled_record_is_overwritten_on_second_recycle():
    state = _state(cache_expiry_hours=1)
    merge_ranking(state, [entry("AAAUSDT", 1, 1.0)], None, T0)
    expire_cached(state, T0 + timedelta(hours=2))

    second_entry = T0 + timedelta(hours=3)
    merge_ranking(state, [entry("AAAUSDT", 1, 0.5)], None, second_entry)
    assert state.cached["AAAUSDT"].entry_price == 0.5
    assert state.cached["AAAUSDT"].entry_time == second_entry
    assert state.recycled["AAAUSDT"].entry_price == 1.0

    expire_cached(state, second_entry + timedelta(hours=2))
    assert state.recycled["AAAUSDT"].entry_price == 0.5
    assert len(state.recycled) == 1


def test_prune_recycled_drops_entries_past_retention():
    state = _state(cache_expiry_hours=0, recycle_retention_hours=72)
    merge_ranking(state, [entry("OLDUSDT", 1, 1.0)], None, T0)
    expire_cached(state, T0 + timedelta(hours=1))
    merge_ranking(state, [entry("NEWUSDT", 1, 1.0)], None, T0 + timedelta(hours=50))
    expire_cached(state, T0 + timedelta(hours=51))

    assert prune_recycled(state, T0 + timedelta(hours=73)) == []
    assert prune_recycled(state, T0 + timedelta(hours=74)) == ["OLDUSDT"]
    assert set(state.recycled) == {"NEWUSDT"}


def test_views_order_and_zone_monotonicity():
    state = _state(rebound_zone1_threshold=10, rebound_zone2_threshold=20)
    merge_ranking(state, [entry("AAAUSDT", 1, 1.0)], None, T0)
    merge_ranking(state, [entry("BBBUSDT", 1, 1.0)], None, T0 + timedelta(minutes=1))
    merge_ranking(state, [entry("CCCUSDT", 1, 1.0)], None, T0 + timedelta(minutes=2))
    merge_ranking(
        state,
        [entry("CCCUSDT", 3, 1.05), entry("AAAUSDT", 1, 1.25), entry("BBBUSDT", 2, 1.12)],
        None,
        T0 + timedelta(minutes=3),
    )

    views = build_views(state)
    assert [e.symbol for e in views.realtime] == ["AAAUSDT", "BBBUSDT", "CCCUSDT"]
    assert [c.symbol for c in views.cached] == ["CCCUSDT", "BBBUSDT", "AAAUSDT"]
    assert [c.symbol for c in views.zone1] == ["AAAUSDT", "BBBUSDT"]
    assert [c.symbol for c in views.zone2] == ["AAAUSDT"]
    assert {c.symbol for c in views.zone2} <= {c.symbol for c in views.zone1}
    assert views.counts()["cached"] == 3


def test_zones_follow_current_config():
    state = _state(rebound_zone1_threshold=10, rebound_zone2_threshold=20)
    merge_ranking(state, [entry("AAAUSDT", 1, 1.0)], None, T0)
    merge_ranking(state, [entry("AAAUSDT", 1, 1.15)], None, T0)
    assert [c.symbol for c in build_views(state).zone2] == []

    state.config = TrackerConfig(rebound_zone1_threshold=5, rebound_zone2_threshold=14)
    assert [c.symbol for c in build_views(state).zone2] == ["AAAUSDT"]
