"""
REBOUND RADAR POOL LOGIC
------------------------------------------------------------------------------
Pure, synchronous operations over a TrackingState:
1. merge_ranking   - replace Realtime, promote new losers, refresh prices
2. expire_cached   - move aged Cached contracts into Recycled
3. prune_recycled  - drop Recycled entries past retention
4. build_views     - ordered presentation lists (zones are derived here)

Callers hold the engine lock around these; none of them await.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .models import (
    CachedContract,
    LoserEntry,
    RecycledContract,
    TrackerConfig,
    TrackingState,
    TrackingViews,
)

logger = logging.getLogger("Pools")


def rebound_percent(entry_price: float, current_price: float) -> float:
    if entry_price <= 0:
        return 0.0
    return (current_price - entry_price) / entry_price * 100.0


def _refresh(contract: CachedContract, price: float, now: datetime):
    contract.current_price = price
    contract.current_rebound_percent = rebound_percent(contract.entry_price, price)
    contract.last_update_time = now
    if contract.lowest_price_after_entry <= 0 or price < contract.lowest_price_after_entry:
        contract.lowest_price_after_entry = price


def merge_ranking(
    state: TrackingState,
    ranking: List[LoserEntry],
    prices: Optional[Dict[str, float]],
    now: datetime,
) -> List[str]:
    """
    Applies one fetched ranking to the state in place.
    Returns the symbols newly promoted into Cached.
    """
    # 1. Realtime is a pure snapshot of "right now"
    state.realtime = sorted(ranking, key=lambda e: e.rank)

    # 2. Promote or refresh ranked symbols
    promoted = []
    ranked = set()
    for entry in state.realtime:
        ranked.add(entry.symbol)
        cached = state.cached.get(entry.symbol)
        if cached is None:
            state.cached[entry.symbol] = CachedContract(
                symbol=entry.symbol,
                entry_time=now,
                entry_price=entry.last_price,
                current_price=entry.last_price,
                current_rebound_percent=0.0,
                last_update_time=now,
                entry_rank=entry.rank,
                rank=entry.rank,
                lowest_price_after_entry=entry.last_price,
            )
            promoted.append(entry.symbol)
            logger.info(f"➕ Cached new loser {entry.symbol} (rank {entry.rank} @ {entry.last_price})")
        else:
            cached.rank = entry.rank
            _refresh(cached, entry.last_price, now)

    # 3. Off-ranking symbols stay; refresh them from the price lookup if it has data
    prices = prices or {}
    for symbol, cached in state.cached.items():
        if symbol in ranked:
            continue
        cached.rank = None
        price = prices.get(symbol)
        if price is None or price <= 0:
            continue
        _refresh(cached, float(price), now)

    return promoted


def expire_cached(
    state: TrackingState, now: datetime, config: Optional[TrackerConfig] = None
) -> List[str]:
    """Moves every contract older than cache_expiry_hours into Recycled."""
    limit = (config or state.config).cache_expiry_hours
    expired = [s for s, c in state.cached.items() if c.age_hours(now) > limit]

    for symbol in expired:
        cached = state.cached.pop(symbol)
        state.recycled[symbol] = RecycledContract(
            symbol=symbol,
            entry_time=cached.entry_time,
            entry_price=cached.entry_price,
            recycle_time=now,
            final_rebound_percent=cached.current_rebound_percent,
            last_price=cached.current_price,
            cached_duration_hours=cached.age_hours(now),
        )
        logger.info(
            f"♻️ Recycled {symbol} after {cached.age_hours(now):.1f}h "
            f"(final rebound {cached.current_rebound_percent:.2f}%)"
        )
    return expired


def prune_recycled(
    state: TrackingState, now: datetime, config: Optional[TrackerConfig] = None
) -> List[str]:
    cutoff = now - timedelta(hours=(config or state.config).recycle_retention_hours)
    stale = [s for s, r in state.recycled.items() if r.recycle_time < cutoff]
    for symbol in stale:
        del state.recycled[symbol]
        logger.debug(f"Dropped {symbol} from recycle history")
    return stale


def in_zone1(contract: CachedContract, config: TrackerConfig) -> bool:
    return contract.current_rebound_percent >= config.rebound_zone1_threshold


def in_zone2(contract: CachedContract, config: TrackerConfig) -> bool:
    return contract.current_rebound_percent >= config.rebound_zone2_threshold


def build_views(state: TrackingState) -> TrackingViews:
    """Zones are recomputed from Cached on every call, never stored."""
    config = state.config
    cached = list(state.cached.values())
    by_rebound = sorted(cached, key=lambda c: c.current_rebound_percent, reverse=True)

    return TrackingViews(
        realtime=sorted(state.realtime, key=lambda e: e.rank),
        cached=sorted(cached, key=lambda c: c.entry_time, reverse=True),
        zone1=[c for c in by_rebound if in_zone1(c, config)],
        zone2=[c for c in by_rebound if in_zone2(c, config)],
        recycled=sorted(state.recycled.values(), key=lambda r: r.recycle_time, reverse=True),
    )
