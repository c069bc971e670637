"""Consumes search sync jobs from Redis and applies them to Meilisearch.

Run with ``python -m match_center.search_worker``; ``--clear`` drops pending
jobs instead of processing them.
"""
import sys
import json
import asyncio
import logging
import argparse

from meilisearch.errors import MeilisearchError
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from . import config
from .database import create_client, get_database
from .search_queue import create_search_queue
from .services.search import SearchService, create_search_client

logger = logging.getLogger(__name__)


async def process_job(search: SearchService, queue, job: dict) -> bool:
    """Returns True when the job was applied; failed jobs are requeued until the attempt limit."""
    try:
        await search.sync_document(job["action"], job["entity"], job["entity_id"])
        logger.info(f"Synced {job['entity']}:{job['entity_id']} ({job['action']})")
        return True
    except (MeilisearchError, PyMongoError) as e:
        attempts = job.get("attempts", 0) + 1
        if attempts >= config.SEARCH_JOB_MAX_ATTEMPTS:
            logger.error(f"Giving up on search job {json.dumps(job)} after {attempts} attempts: {e}")
        else:
            logger.warning(f"Search job {job['entity']}:{job['entity_id']} failed (attempt {attempts}): {e}")
            await queue.enqueue(job["action"], job["entity"], job["entity_id"], attempts=attempts)
        return False


async def run_worker(search: SearchService, queue, max_jobs: int = None):
    processed = 0
    logger.info(f"Search worker listening on '{queue.name}'")
    while max_jobs is None or processed < max_jobs:
        try:
            job = await queue.pop(timeout=5)
        except RedisError as e:
            logger.error(f"Search queue unavailable: {e}")
            await asyncio.sleep(5)
            continue
        if job is None:
            continue
        await process_job(search, queue, job)
        processed += 1
    return processed


async def main(argv=None):
    parser = argparse.ArgumentParser(description="Search index sync worker")
    parser.add_argument("--clear", action="store_true", help="Drop all pending jobs and exit")
    args = parser.parse_args(argv)

    config.configure_logging()
    queue = create_search_queue()
    if queue.client is None:
        logger.error("Search is disabled (MEILISEARCH_HOST is empty); nothing to do")
        return 1

    if args.clear:
        removed = await queue.clear()
        logger.info(f"Cleared {removed} pending search jobs")
        return 0

    client = create_client()
    search = SearchService(get_database(client), create_search_client(), queue)
    try:
        await run_worker(search, queue)
    finally:
        client.close()
        await queue.client.aclose()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Search worker stopped")
