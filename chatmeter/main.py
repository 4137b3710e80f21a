"""FastAPI application entrypoint."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from arq import create_pool
from fastapi import FastAPI

from chatmeter.api.v1 import v1_router
from chatmeter.core.database import init_db
from chatmeter.workers.main import get_redis_settings


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    application.state.redis = await create_pool(get_redis_settings())
    yield
    await application.state.redis.close()


app = FastAPI(
    title="ChatMeter",
    version="0.1.0",
    description="Token usage metering, invoicing and chat title refresh",
    lifespan=lifespan,
)

app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
