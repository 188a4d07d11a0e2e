import argparse
import asyncio
import logging
from typing import Dict, Optional

import asyncpg
import redis.asyncio as redis

from ..config.config import settings
from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.timekeys import date_key, local_now
from ..services.attendance_service import AttendanceService, ClockOutSummary
from ..services.log_store import LogStore
from ..services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


async def force_clock_out_task(redis_client: RedisClient, db_client: Optional[AsyncPostgresClient]) -> Optional[ClockOutSummary]:
    """
    Nightly job: records an exit for everyone still checked in today, so a
    forgotten exit tap does not leave a member 'in' until their next visit.
    """
    logger.info("Running force_clock_out_task...")
    service = AttendanceService(
        log_store=LogStore(redis_client=redis_client, db_client=db_client),
        user_directory=UserDirectory(redis_client=redis_client)
    )
    try:
        return await service.force_clock_out_all()
    except Exception as e:
        logger.error(f"force_clock_out_task failed: {e}", exc_info=True)
        return None


async def migrate_legacy_logs(redis_client: RedisClient, db_client: AsyncPostgresClient) -> Dict[str, int]:
    """
    Copies every row of the legacy table into its date partition under its
    original id. Ids already present are skipped, so the job can be re-run.
    Monthly caches are invalidated when anything was copied.
    """
    logger.info("Migrating legacy attendance logs into date partitions...")
    result = {"success": 0, "failed": 0, "skipped": 0}

    async for log in db_client.iter_all_logs():
        try:
            path = date_key(log.timestamp).path
            if await redis_client.log_exists(path, log.id):
                result["skipped"] += 1
                continue
            await redis_client.add_log(path, log)
            result["success"] += 1
        except Exception as e:
            result["failed"] += 1
            logger.error(f"Failed to migrate legacy log {log.id}: {e}", exc_info=True)

    if result["success"]:
        count = await redis_client.tombstone_all_monthly_caches(local_now())
        logger.info(f"{count} monthly cache records invalidated after migration.")

    logger.info(f"Migration finished. success={result['success']}, skipped={result['skipped']}, failed={result['failed']}")
    return result


async def _run_migration():
    if not settings.DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set; there is no legacy table to migrate.")
    postgres_pool = await asyncpg.create_pool(dsn=settings.DATABASE_URL, min_size=1, max_size=2)
    redis_pool = redis.ConnectionPool.from_url(settings.APPLICATION_REDIS_URL, decode_responses=True)
    try:
        return await migrate_legacy_logs(RedisClient(pool=redis_pool), AsyncPostgresClient(pool=postgres_pool))
    finally:
        await postgres_pool.close()
        await redis_pool.disconnect()


if __name__ == "__main__":
    from ..logging.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Attendance maintenance tasks.")
    parser.add_argument("task", choices=["migrate"])
    args = parser.parse_args()

    setup_logging()
    if args.task == "migrate":
        print(asyncio.run(_run_migration()))
