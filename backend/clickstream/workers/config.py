"""ARQ worker configuration.

Run with ``arq clickstream.workers.config.WorkerSettings``.
"""
from typing import Set
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.cron import cron

from clickstream.config import Settings, get_settings
from clickstream.database import build_engine, build_session_factory
from clickstream.utils.logger import logger
from clickstream.workers.tasks import close_idle_sessions, purge_expired_events


def parse_redis_url(url: str) -> RedisSettings:
    """Parse a redis:// or rediss:// URL into RedisSettings."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path[1:]) if parsed.path and len(parsed.path) > 1 else 0,
        ssl=parsed.scheme == "rediss",
    )


def sweep_minutes(interval: int) -> Set[int]:
    """Minutes of the hour at which the idle sweep runs."""
    interval = min(max(interval, 1), 60)
    return set(range(0, 60, interval))


async def startup(ctx):
    """Open the database for the tasks."""
    settings: Settings = get_settings()
    ctx["settings"] = settings
    ctx["engine"] = build_engine(settings)
    ctx["session_factory"] = build_session_factory(ctx["engine"])
    logger.info(f"ARQ worker started ({settings.environment})")


async def shutdown(ctx):
    ctx["engine"].dispose()
    logger.info("ARQ worker stopped")


_settings = get_settings()


class WorkerSettings:
    """ARQ worker settings."""

    functions = [
        close_idle_sessions,
        purge_expired_events,
    ]

    cron_jobs = [
        cron(close_idle_sessions, minute=sweep_minutes(_settings.idle_sweep_interval_minutes)),
        cron(purge_expired_events, hour={_settings.purge_hour_utc}, minute={30}),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = parse_redis_url(_settings.redis_url)

    max_jobs = 5
    job_timeout = 300  # Retention purges on large tables
    keep_result = 3600
    retry_jobs = True
    max_tries = 3
