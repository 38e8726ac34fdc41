import os
import time
import shutil
import asyncio
from typing import Dict, Optional

import aiosqlite

from state.gateway import PersistenceGateway
from state.json_store import JsonTrackerStore
from state.records import TrackerRecord, TrackerStatus
from tracker.errors import PersistenceError
from utility.logger import get_logger
log = get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS trackers (
    guild_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    message_id TEXT,
    elapsed_seconds INTEGER NOT NULL DEFAULT 0,
    last_actor_id TEXT,
    last_update INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'Active',
    total_events INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (guild_id, channel_id)
);

CREATE TABLE IF NOT EXISTS migration_status (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    completed BOOLEAN NOT NULL DEFAULT 0,
    completed_at INTEGER
);
"""

UPSERT_SQL = """
INSERT OR REPLACE INTO trackers (
    guild_id, channel_id, message_id, elapsed_seconds,
    last_actor_id, last_update, status, total_events
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""

MARK_MIGRATED_SQL = "INSERT OR REPLACE INTO migration_status (id, completed, completed_at) VALUES (1, 1, ?)"


class SqliteTrackerStore(PersistenceGateway):
    """SQLite tracker store, one row per (guild, channel)."""

    def __init__(self, db_path: str = "_data/trackers.db", max_connection_attempts: int = 3, retry_delay_sec: float = 1.0):
        self.db_path = db_path
        self.max_connection_attempts = max_connection_attempts
        self.retry_delay_sec = retry_delay_sec
        self.migration_completed = False
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self):
        """
        Open the database and create the tables, retrying with a linear
        backoff before giving up with a PersistenceError.
        """
        if self._db is not None:
            return
        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        for attempt in range(1, self.max_connection_attempts + 1):
            db = None
            try:
                db = await aiosqlite.connect(self.db_path)
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA journal_mode = WAL")
                await db.executescript(SCHEMA)
                await db.commit()
                async with db.execute("SELECT completed FROM migration_status WHERE id = 1") as cur:
                    row = await cur.fetchone()
                self.migration_completed = bool(row and row["completed"])
                self._db = db
                log.info(f"Database initialized successfully ({self.db_path})")
                return
            except (aiosqlite.Error, OSError) as e:
                if db is not None:
                    await db.close()
                if attempt >= self.max_connection_attempts:
                    raise PersistenceError(
                        f"Failed to connect to database after {self.max_connection_attempts} attempts: {e}"
                    ) from e
                log.error(f"Database connection attempt {attempt} failed: {e}")
                await asyncio.sleep(self.retry_delay_sec * attempt)

    async def close(self):
        if self._db is None:
            return
        try:
            await self._db.close()
            log.info("Database connection closed")
        except aiosqlite.Error as e:
            log.error(f"Error closing database connection: {e}")
        finally:
            self._db = None

    async def check_health(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cur:
                await cur.fetchone()
            return True
        except aiosqlite.Error as e:
            log.error(f"Database health check failed: {e}")
            return False

    # ──────────────────────────
    # Tracker rows
    # ──────────────────────────
    async def save_tracker(self, group_id: str, surface_id: str, record: TrackerRecord):
        db = await self._connection()
        try:
            await db.execute(UPSERT_SQL, self._row_values(group_id, surface_id, record))
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Error saving tracker {group_id}/{surface_id}: {e}") from e

    async def load_tracker(self, group_id: str, surface_id: str) -> Optional[TrackerRecord]:
        db = await self._connection()
        try:
            async with db.execute(
                "SELECT * FROM trackers WHERE guild_id = ? AND channel_id = ?",
                (str(group_id), str(surface_id)),
            ) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Error loading tracker {group_id}/{surface_id}: {e}") from e
        return self._to_record(row) if row else None

    async def load_all_trackers(self) -> Dict[str, Dict[str, TrackerRecord]]:
        db = await self._connection()
        try:
            async with db.execute("SELECT * FROM trackers") as cur:
                rows = await cur.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Error loading all trackers: {e}") from e

        result = {}
        for row in rows:
            try:
                record = self._to_record(row)
            except PersistenceError as e:
                log.error(f"Skipping tracker row {row['guild_id']}/{row['channel_id']}: {e}")
                continue
            result.setdefault(record.group_id, {})[record.surface_id] = record
        return result

    async def delete_tracker(self, group_id: str, surface_id: str):
        db = await self._connection()
        try:
            await db.execute(
                "DELETE FROM trackers WHERE guild_id = ? AND channel_id = ?",
                (str(group_id), str(surface_id)),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Error deleting tracker {group_id}/{surface_id}: {e}") from e

    # ──────────────────────────
    # Legacy JSON import
    # ──────────────────────────
    async def migrate_from_legacy(self, json_path: str) -> bool:
        """
        Import the legacy flat JSON file once.
        The existing rows are replaced by the file's contents, the file is
        copied to <json_path>.migration_backup and completion is recorded in
        migration_status so later calls do nothing.
        Returns:
            bool: True if the import is (now or already) complete.
        """
        db = await self._connection()
        if self.migration_completed:
            log.info("Migration already completed, skipping...")
            return True

        try:
            if not os.path.exists(json_path):
                log.info("No JSON file found, skipping migration...")
                await self._mark_migrated(db)
                return True

            legacy = await JsonTrackerStore(json_path).load_all_trackers()
            if not legacy:
                log.info("No JSON data to migrate")
                await self._mark_migrated(db)
                return True

            await db.execute("DELETE FROM trackers")
            imported = 0
            for group_id, surfaces in legacy.items():
                for surface_id, record in surfaces.items():
                    await db.execute(UPSERT_SQL, self._row_values(group_id, surface_id, record))
                    imported += 1
            shutil.copyfile(json_path, json_path + ".migration_backup")
            await db.execute(MARK_MIGRATED_SQL, (int(time.time() * 1000),))
            await db.commit()
            self.migration_completed = True
            log.info(f"Migration completed successfully, imported {imported} trackers")
            return True
        except (aiosqlite.Error, OSError, PersistenceError) as e:
            log.error(f"Migration error: {e}")
            try:
                await db.rollback()
            except aiosqlite.Error as rollback_error:
                log.error(f"Migration rollback failed: {rollback_error}")
            return False

    async def _mark_migrated(self, db):
        await db.execute(MARK_MIGRATED_SQL, (int(time.time() * 1000),))
        await db.commit()
        self.migration_completed = True

    # ──────────────────────────
    # Helpers
    # ──────────────────────────
    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    @staticmethod
    def _row_values(group_id, surface_id, record: TrackerRecord) -> tuple:
        return (
            str(group_id),
            str(surface_id),
            record.display_handle,
            record.elapsed_seconds,
            record.last_actor_id,
            record.last_update_ms,
            record.status.value,
            record.total_events,
        )

    @staticmethod
    def _to_record(row) -> TrackerRecord:
        try:
            return TrackerRecord(
                group_id=row["guild_id"],
                surface_id=row["channel_id"],
                display_handle=row["message_id"],
                elapsed_seconds=max(0, row["elapsed_seconds"] or 0),
                last_actor_id=row["last_actor_id"],
                last_update_ms=row["last_update"] or 0,
                status=TrackerStatus.parse(row["status"]),
                total_events=max(0, row["total_events"] or 0),
            )
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt tracker row: {e}") from e
