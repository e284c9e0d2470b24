#!/usr/bin/env python3
"""
One-shot expiration sweep.

Deletes every cache entry whose expiry has passed, the same way the
scheduled sweep inside the service does. Useful from cron when the
service runs with SWEEP_ENABLED=0.

Usage:
    python scripts/sweep_expired.py [--dry-run]

Environment Variables:
    DATABASE_URL - Database connection string

Exit Codes:
    0 - Success
    1 - Sweep failed
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from kvcache.core.bootstrap import CacheRuntime
from kvcache.core.logging import configure_logging
from kvcache.core.result import DurableStoreError
from kvcache.core.settings import get_settings
from kvcache.core.time_utils import utc_now
from kvcache.core.uow import UnitOfWork

logger = logging.getLogger("kvcache.scripts.sweep_expired")


async def main(dry_run: bool) -> int:
    settings = dataclasses.replace(get_settings(), sweep_enabled=False, redis_url="")
    configure_logging(settings)
    runtime = CacheRuntime(settings)
    try:
        await runtime.start()
        if dry_run:
            async with UnitOfWork(runtime.session_factory) as uow:
                total = (await uow.entries.count()).unwrap()
                pending = (await uow.entries.count_expired_before(utc_now())).unwrap()
            logger.info("%s of %s entries are expired and would be removed", pending, total)
            return 0

        removed = await runtime.service.sweep_expired()
        logger.info("Removed %s expired entries", removed)
        return 0
    except (DurableStoreError, SQLAlchemyError) as e:
        logger.error("Sweep failed: %s", e)
        return 1
    finally:
        await runtime.shutdown()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="only count expired entries",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = _parse_args()
    sys.exit(asyncio.run(main(args.dry_run)))
