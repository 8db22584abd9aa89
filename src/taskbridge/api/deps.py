"""FastAPI dependencies for dependency injection."""

import hmac
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskbridge.config import settings
from taskbridge.database import async_session_factory, get_session
from taskbridge.services.clickup import ClickUpClient, ClickUpError, get_clickup_client

logger = logging.getLogger(__name__)

# Type alias for database session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]

security = HTTPBearer(auto_error=False)


async def require_internal_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> None:
    """Reject requests that do not carry the internal bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not hmac.compare_digest(
        credentials.credentials.encode("utf-8"), settings.internal_api_token.encode("utf-8")
    ):
        logger.debug("Rejected request with invalid internal token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_clickup():
    """Yield a ClickUp client, closing it after the request."""
    try:
        client = get_clickup_client()
    except ClickUpError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=e.message,
        ) from e
    async with client:
        yield client


InternalAuth = Depends(require_internal_token)
ClickUpDep = Annotated[ClickUpClient, Depends(get_clickup)]


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that needs one session per unit (batch sync, processing)."""
    return async_session_factory


SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
