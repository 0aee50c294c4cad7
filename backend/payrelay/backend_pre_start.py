"""
Pre-start check

Waits for Redis to answer a PING before the app starts, so containers brought
up together do not race. Without `REDIS_HOST` there is nothing to wait for.
"""
import asyncio
import logging

from redis.asyncio import Redis
from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from payrelay.core.config import settings
from payrelay.core.redis import redis_enabled

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # five minutes
wait_seconds = 1


async def ping() -> None:
    # A fresh client per attempt; each asyncio.run gets its own loop.
    client = Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
    )
    try:
        await client.ping()
    finally:
        await client.aclose()


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init() -> None:
    """
    Ping Redis once; tenacity retries on failure for up to five minutes.
    """
    try:
        asyncio.run(ping())
    except Exception as e:
        logger.error(e)
        raise e


def main() -> None:
    if not redis_enabled():
        logger.info("Redis not configured, using in-process state")
        return
    logger.info("Initializing service")
    init()
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
