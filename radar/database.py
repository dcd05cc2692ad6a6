import aiosqlite
import json
import logging
import os
import asyncio
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from .errors import PersistenceFailure, RadarError
from .models import TrackingState, state_from_record, state_to_record


class SnapshotStore:
    """
    Persistence gateway for tracking state, one JSON record per instance id.
    Realtime is never written; config, cached and recycled round-trip exactly.
    """

    def __init__(self, config: Dict[str, Any]):
        self.db_path = config.get('path', 'data/radar.db')
        self.logger = logging.getLogger("SnapshotStore")
        self.conn = None
        self.lock = asyncio.Lock()
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    async def connect(self):
        try:
            self.conn = await aiosqlite.connect(self.db_path)
            self.conn.row_factory = aiosqlite.Row
            await self.conn.execute("PRAGMA journal_mode=WAL;")
            await self.conn.execute("PRAGMA synchronous=NORMAL;")
            await self.conn.execute("PRAGMA busy_timeout=5000;")
            await self._init_schema()
            self.logger.info(f"✅ Snapshot store connected: {self.db_path}")
        except Exception as e:
            self.logger.critical(f"❌ Snapshot store connection failed: {e}")
            raise

    async def _init_schema(self):
        await self.conn.execute('''
            CREATE TABLE IF NOT EXISTS tracking_snapshots (
                instance_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')
        await self.conn.commit()

    async def save(self, instance_id: str, state: TrackingState) -> None:
        """Upserts the record. Raises PersistenceFailure on any write error."""
        if not self.conn:
            raise PersistenceFailure("SnapshotStore not connected. Call .connect() before use.")

        try:
            payload = json.dumps(state_to_record(state), ensure_ascii=False, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise PersistenceFailure(f"Snapshot for '{instance_id}' not serializable: {e}") from e

        async with self.lock:
            try:
                await self.conn.execute('''
                    INSERT INTO tracking_snapshots (instance_id, payload, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(instance_id) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                ''', (instance_id, payload, datetime.now(timezone.utc).isoformat()))
                await self.conn.commit()
            except Exception as e:
                await self.conn.rollback()
                raise PersistenceFailure(f"Failed to save snapshot for '{instance_id}': {e}") from e

        self.logger.debug(
            f"Saved '{instance_id}': cached={len(state.cached)} recycled={len(state.recycled)}"
        )

    async def load(self, instance_id: str) -> Optional[TrackingState]:
        """
        Returns the stored state, or None when there is no usable record.
        A corrupt record is logged and treated as a cold start.
        """
        if not self.conn:
            self.logger.error("SnapshotStore not connected; starting cold")
            return None

        async with self.lock:
            try:
                async with self.conn.execute(
                    "SELECT payload FROM tracking_snapshots WHERE instance_id = ?",
                    (instance_id,)
                ) as cursor:
                    row = await cursor.fetchone()
            except Exception as e:
                self.logger.error(f"Failed to read snapshot for '{instance_id}': {e}")
                return None

        if not row:
            self.logger.info(f"No saved snapshot for '{instance_id}', cold start")
            return None

        try:
            state = state_from_record(json.loads(row['payload']))
        except (RadarError, KeyError, TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"❌ Corrupt snapshot for '{instance_id}', cold start: {e}")
            return None

        self.logger.info(
            f"📂 Restored '{instance_id}': cached={len(state.cached)} recycled={len(state.recycled)}"
        )
        return state

    async def close(self):
        if self.conn:
            await self.conn.close()
            self.conn = None
