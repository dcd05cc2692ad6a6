"""
REBOUND RADAR EXCHANGE INTERFACE
------------------------------------------------------------------------------
ccxt-backed ranking collaborator:
- Universe: active USDT-margined linear perpetuals
- Filters out stablecoin, forex and leveraged-token bases
- Ranks contracts by drop from their N-day high
"""

import ccxt.async_support as ccxt
import asyncio
import logging
import re
import time
import pandas as pd
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any, Set, Tuple

from .errors import FetchFailure
from .models import LoserEntry, TrackerConfig
from .tracker import LoserSource

# N-day extremes are reused for at most this long (and never across UTC days)
EXTREMES_TTL_SEC = 3600


class ExchangeInterface(LoserSource):
    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger("ExchangeAPI")
        self.exchange = None

        # Concurrency Control
        self.max_concurrency = int(config.get('max_concurrency', 20))

        self.universe: Set[str] = set()
        # symbol -> (high, low, computed_ts, days)
        self._extremes_cache: Dict[str, Tuple[float, float, float, int]] = {}

        self.excluded_bases = {
            'USDT', 'USDC', 'DAI', 'BUSD', 'TUSD', 'USDP', 'FDUSD', 'USD1', 'USDE',
            'EUR', 'GBP', 'JPY', 'AUD', 'PAXG', 'XAUT',
        }
        self.exclude_patterns = [
            r'.*(UP|DOWN|BULL|BEAR)$',   # Leveraged tokens
            r'^\d+$',                    # Index-style bases
        ]

    async def connect(self):
        """Initializes the exchange connection and the perpetual universe."""
        try:
            exchange_class = getattr(ccxt, self.config.get('name', 'binanceusdm'))
            self.exchange = exchange_class({
                'apiKey': self.config.get('api_key', ''),
                'secret': self.config.get('api_secret', ''),
                'enableRateLimit': True,
                'options': {
                    'defaultType': 'swap',
                    'adjustForTimeDifference': True
                }
            })

            if self.config.get('testnet', False):
                self.exchange.set_sandbox_mode(True)

            markets = await self.exchange.load_markets()
            self.universe = self._build_universe(markets)
            self.logger.info(
                f"✅ Connected to {self.exchange.id.upper()} ({len(self.universe)} USDT perpetuals)"
            )

        except Exception as e:
            self.logger.critical(f"❌ Exchange Connection Failed: {e}")
            raise

    def _build_universe(self, markets: Dict[str, Dict[str, Any]]) -> Set[str]:
        universe = set()
        for symbol, market in markets.items():
            if not market.get('swap') or not market.get('linear'):
                continue
            if market.get('quote') != 'USDT' or market.get('active') is False:
                continue
            if not self._is_valid_base(market.get('base', '')):
                continue
            universe.add(symbol)
        return universe

    def _is_valid_base(self, base: str) -> bool:
        """Check if the base asset is a real crypto asset (not stablecoin/forex/leveraged)."""
        base_upper = (base or '').upper()
        if not base_upper or base_upper in self.excluded_bases:
            return False

        for pattern in self.exclude_patterns:
            if re.match(pattern, base_upper):
                return False

        return True

    async def fetch_top_losers(self, config: TrackerConfig) -> List[LoserEntry]:
        """
        Ranks the universe by drop from the N-day high, most severe first.
        Raises FetchFailure if the ticker snapshot cannot be fetched.
        """
        if not self.exchange:
            raise FetchFailure("Exchange not connected")

        try:
            tickers = await self.exchange.fetch_tickers()
        except Exception as e:
            raise FetchFailure(f"Ticker fetch failed: {e}") from e

        if not isinstance(tickers, dict):
            raise FetchFailure(f"Unexpected ticker payload: {type(tickers).__name__}")

        candidates = [
            (symbol, data) for symbol, data in tickers.items()
            if symbol in self.universe and (data or {}).get('last')
        ]
        self.logger.debug(f"Measuring {config.lookback_days}d drop for {len(candidates)} contracts")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._measure_drop(symbol, data, config.lookback_days, semaphore)
              for symbol, data in candidates)
        )

        losers = [r for r in results if r is not None]
        losers.sort(key=lambda x: x.loss_percent)  # most negative first
        top = losers[:config.top_count]
        for i, entry in enumerate(top):
            entry.rank = i + 1

        self.logger.info(f"📉 Ranked top {len(top)} losers over {config.lookback_days}d")
        return top

    async def _measure_drop(
        self,
        symbol: str,
        ticker: Dict[str, Any],
        days: int,
        semaphore: asyncio.Semaphore,
    ) -> Optional[LoserEntry]:
        try:
            last_price = float(ticker['last'])
        except (KeyError, TypeError, ValueError):
            return None
        if last_price <= 0:
            return None

        extremes = self._cached_extremes(symbol, days)
        if extremes is None:
            async with semaphore:
                extremes = await self._fetch_extremes(symbol, days)
            if extremes is None:
                return None
            self._extremes_cache[symbol] = (extremes[0], extremes[1], time.time(), days)

        high, low = extremes
        if high <= 0:
            return None

        return LoserEntry(
            symbol=symbol,
            rank=0,
            last_price=last_price,
            high_price=high,
            low_price=low,
            loss_percent=(last_price - high) / high * 100.0,
            change_percent_24h=float(ticker.get('percentage') or 0.0),
            quote_volume_24h=float(ticker.get('quoteVolume') or 0.0),
        )

    def _cached_extremes(self, symbol: str, days: int) -> Optional[Tuple[float, float]]:
        cached = self._extremes_cache.get(symbol)
        if not cached:
            return None
        high, low, computed_ts, cached_days = cached
        same_day = (
            datetime.fromtimestamp(computed_ts, timezone.utc).date()
            == datetime.now(timezone.utc).date()
        )
        if cached_days != days or not same_day or time.time() - computed_ts >= EXTREMES_TTL_SEC:
            return None
        return high, low

    async def _fetch_extremes(self, symbol: str, days: int) -> Optional[Tuple[float, float]]:
        """High/low over the last N daily candles, current day included."""
        try:
            ohlcv = await self.exchange.fetch_ohlcv(symbol, '1d', limit=days)
            if not ohlcv:
                return None

            df = pd.DataFrame(ohlcv, columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])
            df = df.tail(days)
            return float(df['high'].max()), float(df['low'].min())

        except Exception as e:
            self.logger.debug(f"Failed to fetch {symbol} daily candles: {e}")
            return None

    async def fetch_prices(self, symbols: List[str]) -> Dict[str, float]:
        """Last prices for cached symbols that dropped off the ranking."""
        if not self.exchange:
            raise FetchFailure("Exchange not connected")
        try:
            tickers = await self.exchange.fetch_tickers()
        except Exception as e:
            raise FetchFailure(f"Price fetch failed: {e}") from e

        prices = {}
        for symbol in symbols:
            last = (tickers.get(symbol) or {}).get('last')
            if last:
                prices[symbol] = float(last)
        return prices

    async def close(self):
        if self.exchange:
            await self.exchange.close()
