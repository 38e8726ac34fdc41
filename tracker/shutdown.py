from state.gateway import PersistenceGateway
from tracker.errors import TrackerError
from tracker.manager import TrackerLifecycleManager
from utility.logger import get_logger
log = get_logger()


class ShutdownCoordinator:
    """Marks every tracker offline and closes the store. Runs once, never raises."""

    def __init__(self, manager: TrackerLifecycleManager, store: PersistenceGateway):
        self.manager = manager
        self.store = store
        self.done = False

    async def run(self, reason: str = "Bot is offline") -> bool:
        if self.done:
            return False
        self.done = True
        log.info(f"Shutting down: {reason}")
        try:
            updated = await self.manager.shutdown_all(reason)
            log.info(f"Marked {updated} trackers offline")
        except TrackerError as e:
            log.error(f"Error marking trackers offline: {e}")
        try:
            await self.store.close()
        except TrackerError as e:
            log.error(f"Error closing tracker store: {e}")
        return True
