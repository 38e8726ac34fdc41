from dataclasses import dataclass, field
from typing import List

from state.records import TrackerRecord
from tracker.errors import PersistenceError, RateLimitedError, TrackerError
from tracker.manager import RecoveryContext, TrackerLifecycleManager
from utility.rate_limiter import now_ms
from utility.logger import get_logger
log = get_logger()


@dataclass
class RecoveryReport:
    recovered: List[tuple] = field(default_factory=list)
    skipped: List[tuple] = field(default_factory=list)  # channel gone
    failed: List[tuple] = field(default_factory=list)

    def __str__(self):
        return f"{len(self.recovered)} recovered, {len(self.skipped)} skipped, {len(self.failed)} failed"


def reconcile_elapsed(record: TrackerRecord, now: int) -> int:
    """
    Elapsed time including the downtime since the record was last written.
    Records without a last update time, or stamped in the future, add no downtime.
    """
    if record.last_update_ms <= 0 or record.last_update_ms >= now:
        return record.elapsed_seconds
    downtime_sec = (now - record.last_update_ms) // 1000
    return record.elapsed_seconds + downtime_sec


class RecoveryCoordinator:
    """
    Brings persisted trackers back at boot. Runs once; every record is
    recovered independently so one broken channel never blocks the rest.
    """

    def __init__(self, manager: TrackerLifecycleManager, legacy_json_path: str = None, clock=now_ms):
        self.manager = manager
        self.legacy_json_path = legacy_json_path
        self.clock = clock
        self.done = False

    async def run(self) -> RecoveryReport:
        report = RecoveryReport()
        if self.done:
            log.debug("Recovery already ran, skipping.")
            return report
        self.done = True

        store = self.manager.store
        if self.legacy_json_path and hasattr(store, "migrate_from_legacy"):
            if not await store.migrate_from_legacy(self.legacy_json_path):
                log.warning("Legacy tracker import failed, recovering from the current store only")

        try:
            all_trackers = await store.load_all_trackers()
        except PersistenceError as e:
            log.error(f"Recovery: could not load trackers: {e}")
            return report

        log.info(f"Recovery: found {sum(len(s) for s in all_trackers.values())} persisted trackers")
        for group_id, surfaces in all_trackers.items():
            for surface_id, record in surfaces.items():
                await self._recover_one(record, report)
        log.info(f"Recovery finished: {report}")
        return report

    async def _recover_one(self, record: TrackerRecord, report: RecoveryReport):
        key = record.key
        surface = self.manager.surface
        try:
            channel = await surface.resolve_channel(record.group_id, record.surface_id)
            if channel is None:
                log.warning(f"Recovery: guild {record.group_id} or channel {record.surface_id} no longer exists, dropping its record")
                report.skipped.append(key)
                try:
                    await self.manager.store.delete_tracker(record.group_id, record.surface_id)
                except PersistenceError as e:
                    log.error(f"Recovery: could not delete record of guild {record.group_id}, channel {record.surface_id}: {e}")
                return

            display = None
            if record.display_handle:
                display = await surface.fetch_display(channel, record.display_handle)
                if display is None:
                    log.info(f"Recovery: display {record.display_handle} in channel {record.surface_id} is gone, posting a new one")

            context = RecoveryContext(
                display=display,
                elapsed_seconds=reconcile_elapsed(record, self.clock()),
                last_actor_id=record.last_actor_id,
                total_events=record.total_events,
            )
            if await self.manager.start(channel, recovery=context):
                report.recovered.append(key)
            else:
                report.failed.append(key)
        except RateLimitedError as e:
            log.warning(f"Recovery: channel {record.surface_id} rate limited: {e}")
            report.failed.append(key)
        except TrackerError as e:
            log.error(f"Recovery: failed to recover tracker in guild {record.group_id}, channel {record.surface_id}: {e}")
            report.failed.append(key)
