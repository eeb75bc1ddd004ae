"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from loadmatch.domain.errors import AuthenticationError
from loadmatch.infrastructure.database import async_session_factory
from loadmatch.infrastructure.models import UserModel
from loadmatch.infrastructure.repositories import UserRepository


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> UserModel:
    """Resolve the caller from the identity header set by the auth gateway."""
    if x_user_id is None:
        raise AuthenticationError("Authentication required")
    user = await UserRepository(db).get_by_id(x_user_id)
    if user is None:
        raise AuthenticationError("Unknown user")
    return user
