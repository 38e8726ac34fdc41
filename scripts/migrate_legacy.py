#!/usr/bin/env python3
"""
Import the legacy crashData.json file into the SQLite tracker store.

The bot does this on its own at boot when database.migrate_legacy is set;
this script does the same offline. Running it again is a no-op.
    python scripts/migrate_legacy.py [path/to/crashData.json]
"""
import os
import sys
import asyncio

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config.config as cfg
from state.sqlite_store import SqliteTrackerStore
from tracker.errors import PersistenceError
from utility.logger import get_logger
log = get_logger()


async def main(argv) -> int:
    await cfg.load_config()
    json_path = argv[1] if len(argv) > 1 else cfg.config.database.json_path
    store = SqliteTrackerStore(cfg.config.database.sqlite_path)
    try:
        await store.initialize()
        ok = await store.migrate_from_legacy(json_path)
        trackers = await store.load_all_trackers()
    except PersistenceError as e:
        log.error(f"Migration failed: {e}")
        return 1
    finally:
        await store.close()
    count = sum(len(surfaces) for surfaces in trackers.values())
    log.info(f"Store now holds {count} trackers")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv)))
