#!/usr/bin/env python3
"""Render worker: pulls claim checks from the Redis queue, rasterizes the stored
HTML and uploads the PDF for a single download.

Usage:
  TICKET_SECRET=... REDIS_URL=redis://localhost:6379/0 WORKER_CONCURRENCY=3 python scripts/worker.py

Set TESTING=1 to use the in-memory AsyncInMemoryRedis implementation used by the tests.
"""
import asyncio

from pdfjobs.config import settings
from pdfjobs.consumer import JobConsumer
from pdfjobs.logging_config import get_logger, setup_logging
from pdfjobs.queue import ClaimCheckQueue
from pdfjobs.redis_helper import get_blob_redis, get_redis
from pdfjobs.rendering import get_renderer
from pdfjobs.storage import BlobStore

logger = get_logger("worker")


async def build_consumer(renderer=None) -> JobConsumer:
    redis_client = await get_redis()
    queue = ClaimCheckQueue(
        redis_client,
        settings.queue_name,
        max_delivery_count=settings.max_delivery_count,
        lock_duration=settings.lock_duration,
    )
    return JobConsumer(
        queue,
        BlobStore(redis_client, await get_blob_redis()),
        renderer or get_renderer(),
        settings.pdf_container,
        concurrency=settings.worker_concurrency,
        render_timeout=settings.render_timeout,
        poll_seconds=settings.worker_poll_seconds,
    )


async def run_worker(renderer=None):
    consumer = await build_consumer(renderer)
    logger.info("worker_connected", testing=settings.testing, queue=settings.queue_name)
    await consumer.run()


if __name__ == "__main__":
    setup_logging()
    settings.validate_startup()
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("worker_exiting")
