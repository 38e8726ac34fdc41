import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Window:
    count: int
    reset_time: int


class RateLimiter:
    """
    Fixed-window request gate per (key, action).

    The first request after a window has expired opens a new window of
    window_ms and counts as 1; requests inside the window increment the
    count. A request is accepted while the count is <= limit.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock
        self._windows: Dict[Tuple[Hashable, str], _Window] = {}

    def check_and_consume(self, key: Hashable, action: str, limit: int = 3, window_ms: int = 60000) -> bool:
        now = self.clock()
        self._prune(now)
        window = self._windows.get((key, action))
        if window is None or now > window.reset_time:
            window = _Window(count=1, reset_time=now + window_ms)
            self._windows[(key, action)] = window
        else:
            window.count += 1
        return window.count <= limit

    def _prune(self, now: int):
        # Expired windows would be replaced on their next check anyway
        for window_key in [k for k, w in self._windows.items() if now > w.reset_time]:
            del self._windows[window_key]

    def reset(self, key: Optional[Hashable] = None):
        """Forget every window, or only the windows of one key."""
        if key is None:
            self._windows.clear()
            return
        for window_key in [k for k in self._windows if k[0] == key]:
            del self._windows[window_key]

    def __len__(self) -> int:
        return len(self._windows)
