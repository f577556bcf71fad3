"""Request-scoped dependencies shared by the routers."""

from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.commands import TaskCommands
from taskboard.config import get_settings
from taskboard.db.session import get_db_session
from taskboard.models.user import User
from taskboard.notifications.dispatcher import NotificationDispatcher

settings = get_settings()
security = HTTPBearer(auto_error=False)


# =============================================================================
# Tokens
# =============================================================================


def create_access_token(user_id: UUID, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.jwt_access_token_expire_minutes
        )

    to_encode = {
        "sub": str(user_id),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(
        to_encode,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> UUID | None:
    """Return the user id of a valid access token, None otherwise."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    if user_id is None or payload.get("type") != "access":
        return None
    try:
        return UUID(user_id)
    except ValueError:
        return None


async def get_active_user(db: AsyncSession, user_id: UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from JWT token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


# =============================================================================
# Side effects / Commands
# =============================================================================


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """A fresh dispatcher per request, wired to the application's sinks and feed."""
    state = request.app.state
    return NotificationDispatcher(
        feed=getattr(state, "change_feed", None),
        email_sink=getattr(state, "email_sink", None),
        chat_sink=getattr(state, "chat_sink", None),
        session_factory=getattr(state, "session_factory", None),
        timeout=settings.sink_timeout_seconds,
    )


Dispatcher = Annotated[NotificationDispatcher, Depends(get_dispatcher)]


async def get_commands(
    current_user: CurrentUser,
    dispatcher: Dispatcher,
    db: AsyncSession = Depends(get_db_session),
) -> TaskCommands:
    """Command facade bound to the authenticated user."""
    return TaskCommands(db, current_user.id, dispatcher, settings)


Commands = Annotated[TaskCommands, Depends(get_commands)]
