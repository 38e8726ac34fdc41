from typing import Dict, Iterator, Optional, Tuple

from tracker.errors import AlreadyExistsError

TrackerKey = Tuple[str, str]  # (group_id, surface_id)


class TrackerRegistry:
    """
    In-memory index of live trackers: group_id -> surface_id -> state.
    Owned by one TrackerLifecycleManager. Enumeration follows insertion order.
    """

    def __init__(self):
        self._groups: Dict[str, Dict[str, object]] = {}

    def insert(self, key: TrackerKey, state):
        group_id, surface_id = key
        surfaces = self._groups.setdefault(group_id, {})
        if surface_id in surfaces:
            raise AlreadyExistsError(key)
        surfaces[surface_id] = state

    def get(self, key: TrackerKey) -> Optional[object]:
        group_id, surface_id = key
        return self._groups.get(group_id, {}).get(surface_id)

    def contains(self, key: TrackerKey) -> bool:
        return self.get(key) is not None

    def remove(self, key: TrackerKey) -> Optional[object]:
        """Remove and return the state for key. The group bucket goes with its last tracker."""
        group_id, surface_id = key
        surfaces = self._groups.get(group_id)
        if surfaces is None:
            return None
        state = surfaces.pop(surface_id, None)
        if not surfaces:
            del self._groups[group_id]
        return state

    def groups(self):
        return list(self._groups)

    def items(self) -> Iterator[Tuple[TrackerKey, object]]:
        # Snapshot so callers may remove entries while iterating
        for group_id, surfaces in list(self._groups.items()):
            for surface_id, state in list(surfaces.items()):
                yield (group_id, surface_id), state

    def __iter__(self):
        return (key for key, _ in self.items())

    def __contains__(self, key) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        return sum(len(surfaces) for surfaces in self._groups.values())
