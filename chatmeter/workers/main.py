"""ARQ worker entrypoint."""

import asyncio

from arq import cron
from arq.connections import RedisSettings

from chatmeter.core.config import get_settings
from chatmeter.services.thread_titles import update_chat_title
from chatmeter.workers.invoices import generate_invoices
from chatmeter.workers.scheduled import run_scheduled_task, sweep_overdue_tasks


def get_redis_settings() -> RedisSettings:
    """Build ARQ RedisSettings from REDIS_URL (password, db and rediss:// included)."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from chatmeter.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [run_scheduled_task, generate_invoices, update_chat_title]
    cron_jobs = [
        # Previous month's invoices, a day after the month closes
        cron(generate_invoices, day=2, hour=0, minute=0),
        cron(sweep_overdue_tasks, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = 10
    job_timeout = 600  # 10 minutes per job


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
