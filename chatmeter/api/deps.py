"""FastAPI dependencies for caller identity, DB sessions and the job queue."""

import uuid
from typing import Annotated

from arq.connections import ArqRedis
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from chatmeter.core.database import get_session


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> uuid.UUID:
    """Resolve the caller from the ``X-User-Id`` header set by the auth proxy."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed X-User-Id header",
        ) from exc


async def get_redis(request: Request) -> ArqRedis:
    """The ARQ pool opened in the application lifespan."""
    return request.app.state.redis


# Typed shorthand for use in route signatures
CurrentUser = Annotated[uuid.UUID, Depends(get_current_user_id)]
Session = Annotated[AsyncSession, Depends(get_session)]
Redis = Annotated[ArqRedis, Depends(get_redis)]
