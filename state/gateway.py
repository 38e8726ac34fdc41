from abc import ABC, abstractmethod
from typing import Dict, Optional

from state.records import TrackerRecord
from utility.logger import get_logger
log = get_logger()


class PersistenceGateway(ABC):
    """
    Durable store for tracker records, keyed by (group_id, surface_id).

    Every operation is short and independent, there are no cross-tracker
    transactions. Backend failures are raised as PersistenceError.
    """

    async def initialize(self):
        """Open the backend. Safe to call more than once."""

    async def close(self):
        """Release the backend."""

    async def check_health(self) -> bool:
        return True

    @abstractmethod
    async def save_tracker(self, group_id: str, surface_id: str, record: TrackerRecord):
        """Insert or overwrite the record for this key."""

    @abstractmethod
    async def load_tracker(self, group_id: str, surface_id: str) -> Optional[TrackerRecord]:
        """Return the stored record, or None."""

    @abstractmethod
    async def load_all_trackers(self) -> Dict[str, Dict[str, TrackerRecord]]:
        """Return {group_id: {surface_id: record}}, empty when nothing is stored."""

    @abstractmethod
    async def delete_tracker(self, group_id: str, surface_id: str):
        """Delete the record for this key. Deleting a missing key is not an error."""


def open_store(database_config) -> PersistenceGateway:
    """
    Build the store selected in the database section of the config.
    Args:
        database_config (DatabaseConfig): The database config section.
    Returns:
        PersistenceGateway: An uninitialized store.
    """
    # Imported here so a json-only deployment never needs the sqlite driver loaded
    if database_config.type == "sqlite":
        from state.sqlite_store import SqliteTrackerStore
        log.info(f"Using SQLite tracker store at {database_config.sqlite_path}")
        return SqliteTrackerStore(database_config.sqlite_path)
    if database_config.type == "json":
        from state.json_store import JsonTrackerStore
        log.info(f"Using JSON tracker store at {database_config.json_path}")
        return JsonTrackerStore(database_config.json_path)
    raise ValueError(f"Unknown database type: {database_config.type}")
