import os
import json
from typing import Dict, Optional

from state.gateway import PersistenceGateway
from state.records import TrackerRecord
from tracker.errors import PersistenceError
from utility.logger import get_logger
log = get_logger()


class JsonTrackerStore(PersistenceGateway):
    """
    Flat keyed file store using the legacy layout:
        { groupId: { surfaceId: { displayHandle, elapsedSeconds, ... } } }
    The whole file is read and rewritten on each change.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path

    async def initialize(self):
        directory = os.path.dirname(self.file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    async def check_health(self) -> bool:
        try:
            self.load_all_data()
            return True
        except PersistenceError as e:
            log.error(f"JSON store health check failed: {e}")
            return False

    async def save_tracker(self, group_id: str, surface_id: str, record: TrackerRecord):
        data = self.load_all_data()
        data.setdefault(str(group_id), {})[str(surface_id)] = record.to_legacy_dict()
        self.save_all_data(data)

    async def load_tracker(self, group_id: str, surface_id: str) -> Optional[TrackerRecord]:
        entry = self.load_all_data().get(str(group_id), {}).get(str(surface_id))
        if entry is None:
            return None
        return self._to_record(group_id, surface_id, entry)

    async def load_all_trackers(self) -> Dict[str, Dict[str, TrackerRecord]]:
        """All readable entries. Corrupt entries are logged and left out."""
        result = {}
        for group_id, surfaces in self.load_all_data().items():
            if not isinstance(surfaces, dict):
                log.error(f"Skipping group {group_id} in {self.file_path}: not a JSON object")
                continue
            for surface_id, entry in surfaces.items():
                try:
                    record = self._to_record(group_id, surface_id, entry)
                except PersistenceError as e:
                    log.error(f"Skipping tracker entry: {e}")
                    continue
                result.setdefault(group_id, {})[surface_id] = record
        return result

    async def delete_tracker(self, group_id: str, surface_id: str):
        data = self.load_all_data()
        surfaces = data.get(str(group_id))
        if surfaces is None or str(surface_id) not in surfaces:
            return
        del surfaces[str(surface_id)]
        if not surfaces:
            del data[str(group_id)]
        self.save_all_data(data)

    # ──────────────────────────
    # File access
    # ──────────────────────────
    def load_all_data(self) -> dict:
        """Read the raw file contents. A missing file is an empty store."""
        if not os.path.exists(self.file_path):
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read {self.file_path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.file_path} does not contain a JSON object")
        return data

    def save_all_data(self, data: dict):
        """Write the whole file through a temp file so a crash never leaves it half written."""
        tmp_path = f"{self.file_path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as file:
                json.dump(data, file, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.file_path}: {e}") from e

    @staticmethod
    def _to_record(group_id, surface_id, entry) -> TrackerRecord:
        try:
            return TrackerRecord.from_legacy_dict(group_id, surface_id, entry)
        except (TypeError, ValueError, AttributeError) as e:
            raise PersistenceError(f"Corrupt entry for {group_id}/{surface_id}: {e}") from e
