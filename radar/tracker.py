"""
REBOUND RADAR LOSER TRACKER
------------------------------------------------------------------------------
Owns the tracking state for one instance id and runs scan cycles over it:
1. Fetch ranking + off-ranking prices (no lock held)
2. Merge / expire / retain on a copy inside one critical section (all or nothing)
3. Persist a copied snapshot after the section is released
Readers only ever receive deep copies.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import ConfigInvalid, FetchFailure, PersistenceFailure, RadarError
from .models import LoserEntry, TrackerConfig, TrackingState, TrackingViews
from .pools import build_views, expire_cached, merge_ranking, prune_recycled


class LoserSource(ABC):
    """Ranking/market-data collaborator consumed by the tracker."""

    @abstractmethod
    async def fetch_top_losers(self, config: TrackerConfig) -> List[LoserEntry]:
        """Ranked losers, most severe first. Raises on failure."""

    @abstractmethod
    async def fetch_prices(self, symbols: List[str]) -> Dict[str, float]:
        """Last prices for the given symbols. Missing symbols are omitted."""


@dataclass
class CycleResult:
    ok: bool
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    ranked: int = 0
    promoted: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    persisted: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoserTracker:
    def __init__(
        self,
        source: LoserSource,
        store=None,
        instance_id: str = "default",
        config: Optional[TrackerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        alerter=None,
    ):
        self.logger = logging.getLogger("Tracker")
        self.source = source
        self.store = store
        self.instance_id = instance_id
        self.alerter = alerter
        self._clock = clock or _utcnow

        self._state = TrackingState(config=(config or TrackerConfig()).validate())
        self._lock = asyncio.Lock()
        self._cycle_task: Optional[asyncio.Task] = None
        self._closed = False

        # Status surfaced to the presentation layer
        self.last_error: Optional[str] = None
        self.last_error_time: Optional[datetime] = None
        self.last_scan_time: Optional[datetime] = None
        self.cycles_ok = 0
        self.cycles_failed = 0
        self.persist_failures = 0

    @property
    def current_config(self) -> TrackerConfig:
        return TrackerConfig(**self._state.config.to_dict())

    async def restore(self) -> bool:
        """Loads the persisted state for this instance. Returns False on cold start."""
        if not self.store:
            return False
        loaded = await self.store.load(self.instance_id)
        if loaded is None:
            return False
        async with self._lock:
            self._state = loaded
        return True

    async def run_cycle(self) -> CycleResult:
        """One scan cycle. Never raises for fetch or persistence problems."""
        started = self._clock()
        if self._closed:
            return CycleResult(ok=False, started_at=started, finished_at=started,
                               error="tracker is shut down")

        self._cycle_task = asyncio.current_task()
        try:
            return await self._run_cycle(started)
        finally:
            self._cycle_task = None

    async def _run_cycle(self, started: datetime) -> CycleResult:
        config = self.current_config

        # 1. Ranking fetch (aborts the cycle on failure)
        try:
            ranking = self._checked_ranking(await self.source.fetch_top_losers(config), config)
        except asyncio.CancelledError:
            self.logger.info("🛑 Scan cancelled during fetch; state unchanged")
            raise
        except Exception as e:
            error = e if isinstance(e, FetchFailure) else FetchFailure(f"{type(e).__name__}: {e}")
            return self._fail(started, error)

        # 2. Price refresh for cached symbols that left the ranking
        ranked = {entry.symbol for entry in ranking}
        async with self._lock:
            off_ranking = [s for s in self._state.cached if s not in ranked]
        prices = await self._fetch_prices(off_ranking)

        # 3. Critical section: merge, expire, retain on a working copy, then swap
        now = self._clock()
        async with self._lock:
            working = self._state.copy()
            try:
                promoted = merge_ranking(working, ranking, prices, now)
                expired = expire_cached(working, now, config)
                pruned = prune_recycled(working, now, config)
            except Exception as e:
                return self._fail(started, RadarError(f"Merge failed: {type(e).__name__}: {e}"))
            self._state = working
            snapshot = working.copy()

        self.last_scan_time = now
        self.last_error = None
        self.cycles_ok += 1

        result = CycleResult(
            ok=True,
            started_at=started,
            ranked=len(ranking),
            promoted=promoted,
            expired=expired,
            pruned=pruned,
        )

        # 4. Persist outside the lock
        result.persisted = await self._persist(snapshot)
        await self._notify(snapshot)

        result.finished_at = self._clock()
        self.logger.info(
            f"✅ Scan done: ranked={len(ranking)} cached={len(snapshot.cached)} "
            f"recycled={len(snapshot.recycled)} new={len(promoted)} expired={len(expired)}"
        )
        return result

    def _checked_ranking(self, ranking: Any, config: TrackerConfig) -> List[LoserEntry]:
        if not isinstance(ranking, list):
            raise FetchFailure(f"ranking must be a list, got {type(ranking).__name__}")

        valid = []
        seen = set()
        for entry in ranking:
            if not isinstance(entry, LoserEntry):
                raise FetchFailure(f"malformed ranking entry: {entry!r}")
            if entry.last_price is None or entry.last_price <= 0:
                self.logger.debug(f"Skipping {entry.symbol}: no usable price")
                continue
            if entry.symbol in seen:
                continue
            seen.add(entry.symbol)
            valid.append(entry)

        valid.sort(key=lambda e: e.rank)
        return valid[:config.top_count]

    async def _fetch_prices(self, symbols: List[str]) -> Dict[str, float]:
        if not symbols:
            return {}
        try:
            return await self.source.fetch_prices(symbols) or {}
        except asyncio.CancelledError:
            self.logger.info("🛑 Scan cancelled during price refresh; state unchanged")
            raise
        except Exception as e:
            # Degraded: those symbols keep their previous price this cycle
            self.logger.warning(f"⚠️ Price refresh failed for {len(symbols)} cached symbols: {e}")
            return {}

    def _fail(self, started: datetime, error: Exception) -> CycleResult:
        finished = self._clock()
        self.cycles_failed += 1
        self.last_error = str(error)
        self.last_error_time = finished
        self.logger.error(f"❌ Scan aborted, state unchanged: {error}")
        return CycleResult(ok=False, started_at=started, finished_at=finished, error=str(error))

    async def _persist(self, snapshot: TrackingState) -> bool:
        if not self.store:
            return False
        try:
            # Shielded so a shutdown mid-write still leaves a complete record
            await asyncio.shield(self.store.save(self.instance_id, snapshot))
            return True
        except PersistenceFailure as e:
            self.persist_failures += 1
            self.logger.error(f"💾 Snapshot not saved (will retry next cycle): {e}")
            return False

    async def _notify(self, snapshot: TrackingState):
        if not self.alerter:
            return
        try:
            await self.alerter.notify(build_views(snapshot))
        except Exception as e:
            self.logger.warning(f"Zone alert failed: {e}")

    async def get_snapshot(self) -> TrackingState:
        async with self._lock:
            return self._state.copy()

    async def get_views(self) -> TrackingViews:
        return build_views(await self.get_snapshot())

    async def update_config(self, config: TrackerConfig) -> None:
        """Raises ConfigInvalid and keeps the previous config when rejected."""
        try:
            config.validate()
        except ConfigInvalid as e:
            self.logger.warning(f"⚠️ Config rejected, keeping previous: {e}")
            raise

        async with self._lock:
            self._state.config = TrackerConfig(**config.to_dict())
            snapshot = self._state.copy()

        self.logger.info(f"⚙️ Config updated: {config.to_dict()}")
        await self._persist(snapshot)

    async def shutdown(self):
        """Cancels an in-flight cycle and writes a final snapshot."""
        if self._closed:
            return
        self._closed = True

        task = self._cycle_task
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._persist(await self.get_snapshot())
        self.logger.info("👋 Tracker shut down")

    def get_stats(self) -> Dict[str, Any]:
        state = self._state
        return {
            'instance_id': self.instance_id,
            'cached': len(state.cached),
            'recycled': len(state.recycled),
            'realtime': len(state.realtime),
            'cycles_ok': self.cycles_ok,
            'cycles_failed': self.cycles_failed,
            'persist_failures': self.persist_failures,
            'last_scan_time': self.last_scan_time.isoformat() if self.last_scan_time else None,
            'last_error': self.last_error,
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
        }
