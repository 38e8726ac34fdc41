class TrackerError(Exception):
    """Base class for every error raised by the tracker core."""


class RateLimitedError(TrackerError):
    """Raised by start() when the per-channel start window is exhausted."""

    def __init__(self, key, action: str, message: str = "Please wait a moment before starting another tracker."):
        super().__init__(message)
        self.key = key
        self.action = action


class AlreadyExistsError(TrackerError):
    """Raised by the registry when a key is inserted twice."""

    def __init__(self, key):
        super().__init__(f"A tracker is already registered for {key}")
        self.key = key


class TransientRenderError(TrackerError):
    """A display update failed; the tracker retries on the next tick."""


class PersistenceError(TrackerError):
    """A durable store operation failed. Logged, never fatal to a tracker."""
