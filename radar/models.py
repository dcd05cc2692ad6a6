"""
REBOUND RADAR DATA MODELS
------------------------------------------------------------------------------
Plain dataclasses for the three tracking pools and the tracker config,
plus the record shape used by the snapshot store.
"""

import copy
import math
from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from typing import Dict, List, Optional, Any

from .errors import ConfigInvalid

# Ten years; anything longer cannot be a tracking window
MAX_WINDOW_HOURS = 24.0 * 365 * 10


@dataclass
class TrackerConfig:
    lookback_days: int = 30
    top_count: int = 30
    rebound_zone1_threshold: float = 10.0
    rebound_zone2_threshold: float = 20.0
    scan_interval_seconds: int = 5
    cache_expiry_hours: float = 240.0
    recycle_retention_hours: float = 72.0

    def validate(self) -> "TrackerConfig":
        """Raises ConfigInvalid listing every violated rule."""
        problems = []
        for name in ("rebound_zone1_threshold", "rebound_zone2_threshold",
                     "cache_expiry_hours", "recycle_retention_hours"):
            if not math.isfinite(getattr(self, name)):
                problems.append(f"{name} must be a finite number")
        if problems:
            raise ConfigInvalid(problems)

        if self.lookback_days < 1:
            problems.append("lookback_days must be >= 1")
        if self.top_count < 1:
            problems.append("top_count must be >= 1")
        if self.scan_interval_seconds < 1:
            problems.append("scan_interval_seconds must be >= 1")
        if self.cache_expiry_hours < 0:
            problems.append("cache_expiry_hours must be >= 0")
        elif self.cache_expiry_hours > MAX_WINDOW_HOURS:
            problems.append(f"cache_expiry_hours must be <= {MAX_WINDOW_HOURS:g}")
        if self.recycle_retention_hours < 0:
            problems.append("recycle_retention_hours must be >= 0")
        elif self.recycle_retention_hours > MAX_WINDOW_HOURS:
            problems.append(f"recycle_retention_hours must be <= {MAX_WINDOW_HOURS:g}")
        if self.rebound_zone2_threshold < self.rebound_zone1_threshold:
            problems.append("rebound_zone2_threshold must be >= rebound_zone1_threshold")
        if problems:
            raise ConfigInvalid(problems)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrackerConfig":
        """Builds a config from a mapping. Unknown keys are ignored, missing keys use defaults."""
        data = data or {}
        kwargs = {}
        try:
            for f in fields(cls):
                if f.name not in data or data[f.name] is None:
                    continue
                caster = int if f.type in (int, "int") else float
                kwargs[f.name] = caster(data[f.name])
        except (TypeError, ValueError) as e:
            raise ConfigInvalid([f"bad config value: {e}"]) from e
        return cls(**kwargs)


@dataclass
class LoserEntry:
    """One row of the realtime ranking. No identity across cycles."""
    symbol: str
    rank: int
    last_price: float
    high_price: float = 0.0
    low_price: float = 0.0
    loss_percent: float = 0.0
    change_percent_24h: float = 0.0
    quote_volume_24h: float = 0.0


@dataclass
class CachedContract:
    symbol: str
    entry_time: datetime
    entry_price: float
    current_price: float
    current_rebound_percent: float
    last_update_time: datetime
    entry_rank: int = 0
    rank: Optional[int] = None
    lowest_price_after_entry: float = 0.0

    def age_hours(self, now: datetime) -> float:
        return (now - self.entry_time).total_seconds() / 3600.0


@dataclass
class RecycledContract:
    symbol: str
    entry_time: datetime
    entry_price: float
    recycle_time: datetime
    final_rebound_percent: float
    last_price: float = 0.0
    cached_duration_hours: float = 0.0


@dataclass
class TrackingState:
    config: TrackerConfig = field(default_factory=TrackerConfig)
    realtime: List[LoserEntry] = field(default_factory=list)
    cached: Dict[str, CachedContract] = field(default_factory=dict)
    recycled: Dict[str, RecycledContract] = field(default_factory=dict)

    def copy(self) -> "TrackingState":
        return copy.deepcopy(self)


@dataclass
class TrackingViews:
    """Ordered, read-only presentation lists derived from one snapshot."""
    realtime: List[LoserEntry]
    cached: List[CachedContract]
    zone1: List[CachedContract]
    zone2: List[CachedContract]
    recycled: List[RecycledContract]

    def counts(self) -> Dict[str, int]:
        return {
            'realtime': len(self.realtime),
            'cached': len(self.cached),
            'zone1': len(self.zone1),
            'zone2': len(self.zone2),
            'recycled': len(self.recycled),
        }


# --- RECORD SHAPE (persisted per instance id) ---

_CACHED_TIME_FIELDS = ('entry_time', 'last_update_time')
_RECYCLED_TIME_FIELDS = ('entry_time', 'recycle_time')


def _row_to_record(obj, time_fields) -> Dict[str, Any]:
    row = asdict(obj)
    row.pop('symbol')
    for name in time_fields:
        row[name] = row[name].isoformat()
    return row


def _row_from_record(cls, symbol: str, row: Dict[str, Any], time_fields):
    values = dict(row)
    for name in time_fields:
        stamp = datetime.fromisoformat(values[name])
        if stamp.tzinfo is None:
            raise ValueError(f"{name} has no UTC offset: {values[name]}")
        values[name] = stamp
    known = {f.name for f in fields(cls)}
    return cls(symbol=symbol, **{k: v for k, v in values.items() if k in known})


def state_to_record(state: TrackingState) -> Dict[str, Any]:
    """Realtime is not persisted; it is rebuilt by the next scan."""
    return {
        'config': state.config.to_dict(),
        'cached': {s: _row_to_record(c, _CACHED_TIME_FIELDS) for s, c in state.cached.items()},
        'recycled': {s: _row_to_record(r, _RECYCLED_TIME_FIELDS) for s, r in state.recycled.items()},
    }


def state_from_record(record: Dict[str, Any]) -> TrackingState:
    """Raises KeyError/TypeError/ValueError on a malformed record."""
    if not isinstance(record, dict):
        raise TypeError(f"record must be an object, got {type(record).__name__}")
    config = TrackerConfig.from_dict(record.get('config')).validate()
    cached = {
        symbol: _row_from_record(CachedContract, symbol, row, _CACHED_TIME_FIELDS)
        for symbol, row in (record.get('cached') or {}).items()
    }
    recycled = {
        symbol: _row_from_record(RecycledContract, symbol, row, _RECYCLED_TIME_FIELDS)
        for symbol, row in (record.get('recycled') or {}).items()
    }
    return TrackingState(config=config, cached=cached, recycled=recycled)
