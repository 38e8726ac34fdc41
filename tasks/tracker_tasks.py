import asyncio
from discord.ext import tasks

from utility.logger import get_logger
log = get_logger()


class TickLoop:
    """
    Recurring tick for one tracker, built on discord.ext.tasks.

    The first tick fires one interval after start(). cancel() is
    synchronous: once it returns no further tick will start. When called
    from inside the tick itself (a tracker stopping on its own) the loop is
    asked to stop after the current iteration instead of cancelling the
    running task under its own feet.
    """

    def __init__(self, interval_sec: float, on_tick, name: str = "tracker"):
        self.name = name
        self.on_tick = on_tick
        self.cancelled = False
        self.loop = tasks.loop(seconds=interval_sec)(self._run)
        self.loop.error(self._on_error)

    async def _run(self):
        # tasks.loop runs its first iteration immediately
        if self.loop.current_loop == 0 or self.cancelled:
            return
        await self.on_tick()

    async def _on_error(self, error):
        log.error(f"Task {self.name}: tick failed: {error!r}")

    def start(self):
        self.loop.start()
        log.debug(f"Task {self.name}: started tick loop every {self.loop.seconds}s")
        return self

    def cancel(self):
        self.cancelled = True
        task = self.loop.get_task()
        if task is not None and task is asyncio.current_task():
            self.loop.stop()
        else:
            self.loop.cancel()
        log.debug(f"Task {self.name}: tick loop cancelled")


def start_tick_loop(interval_sec: float, on_tick, name: str = "tracker") -> TickLoop:
    """Create and start the tick loop for one tracker."""
    return TickLoop(interval_sec, on_tick, name).start()
