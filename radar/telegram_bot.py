"""
REBOUND RADAR TELEGRAM ZONE ALERTS
------------------------------------------------------------------------------
Announces contracts that newly entered a rebound zone.
Each (symbol, zone, entry) is announced once per process lifetime.
"""

import logging
from typing import Dict, Any, List, Set, Tuple

from telegram import Bot
from telegram.constants import ParseMode

from .models import CachedContract, TrackingViews


class ZoneAlerter:
    def __init__(self, config: Dict[str, Any]):
        self.token = config.get('bot_token', '')
        self.chat_id = config.get('chat_id', '')
        self.enabled = bool(self.token and self.chat_id)

        self.logger = logging.getLogger("Telegram")
        self.bot = None
        self._announced: Set[Tuple[str, int, str]] = set()
        self.stats = {'alerts_sent': 0, 'alerts_failed': 0}

    async def start(self):
        if not self.enabled:
            self.logger.warning("Telegram disabled - no bot token or chat ID")
            return
        try:
            self.bot = Bot(self.token)
            await self.bot.initialize()
            self.logger.info("✅ Telegram zone alerts active")
        except Exception as e:
            self.logger.error(f"Telegram Boot Error: {e}")
            self.enabled = False
            self.bot = None

    def pending_alerts(self, views: TrackingViews) -> List[Tuple[int, CachedContract]]:
        """Returns (zone, contract) pairs not announced yet and marks them."""
        alerts = []
        live = set()

        for contract in views.zone2:
            key2 = self._key(contract, 2)
            key1 = self._key(contract, 1)
            live.update((key1, key2))
            if key2 not in self._announced:
                alerts.append((2, contract))
                self._announced.update((key1, key2))

        for contract in views.zone1:
            key1 = self._key(contract, 1)
            live.add(key1)
            if key1 not in self._announced:
                alerts.append((1, contract))
                self._announced.add(key1)

        # Forget contracts that left Cached so the set stays bounded
        cached_keys = {(c.symbol, c.entry_time.isoformat()) for c in views.cached}
        self._announced = {k for k in self._announced if (k[0], k[2]) in cached_keys}
        return alerts

    @staticmethod
    def _key(contract: CachedContract, zone: int) -> Tuple[str, int, str]:
        return (contract.symbol, zone, contract.entry_time.isoformat())

    @staticmethod
    def format_alert(zone: int, contract: CachedContract) -> str:
        icon = "🚀" if zone == 2 else "📈"
        symbol = contract.symbol.replace(':USDT', '')
        hours = (contract.last_update_time - contract.entry_time).total_seconds() / 3600.0
        return (
            f"{icon} <b>{symbol}</b> entered Rebound Zone {zone}\n"
            f"Rebound: <b>{contract.current_rebound_percent:+.2f}%</b>\n"
            f"Entry: {contract.entry_price:g} (rank {contract.entry_rank}) → Now: {contract.current_price:g}\n"
            f"Tracked for {hours:.1f}h"
        )

    async def notify(self, views: TrackingViews):
        alerts = self.pending_alerts(views)
        if not self.enabled or not self.bot:
            return

        for zone, contract in alerts:
            try:
                await self.bot.send_message(
                    chat_id=self.chat_id,
                    text=self.format_alert(zone, contract),
                    parse_mode=ParseMode.HTML,
                )
                self.stats['alerts_sent'] += 1
            except Exception as e:
                self.stats['alerts_failed'] += 1
                self.logger.warning(f"Zone alert for {contract.symbol} failed: {e}")

    async def stop(self):
        if self.bot:
            try:
                await self.bot.shutdown()
            except Exception as e:
                self.logger.debug(f"Telegram shutdown: {e}")
            self.bot = None
