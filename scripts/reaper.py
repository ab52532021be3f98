#!/usr/bin/env python3
"""Lease reaper: returns claim checks held by crashed workers to the queue.

A message whose lease ran out is abandoned on the worker's behalf, so it is
redelivered or, past the max delivery count, dead-lettered.

Usage:
  python scripts/reaper.py

Environment variables:
- REDIS_URL (optional)
- TESTING=1 to use in-memory redis
- REAPER_POLL_SECONDS (optional, default 5)
"""
import asyncio

from pdfjobs.config import settings
from pdfjobs.logging_config import get_logger, setup_logging
from pdfjobs.queue import ClaimCheckQueue
from pdfjobs.redis_helper import get_redis

logger = get_logger("reaper")


async def run_reaper():
    redis_client = await get_redis()
    queue = ClaimCheckQueue(
        redis_client,
        settings.queue_name,
        max_delivery_count=settings.max_delivery_count,
        lock_duration=settings.lock_duration,
    )
    logger.info("reaper_connected", queue=settings.queue_name)
    try:
        while True:
            reclaimed = await queue.reclaim_expired()
            if reclaimed:
                logger.info("reaper_reclaimed", count=len(reclaimed))
            await asyncio.sleep(settings.reaper_poll_seconds)
    except asyncio.CancelledError:
        pass


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(run_reaper())
    except KeyboardInterrupt:
        logger.info("reaper_exiting")
