"""
DealerDesk API Dependencies

Dependency injection for DB sessions, auth and DealerGPT services.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from core.security import decode_session_token
from db.models import User
from db.session import AsyncSessionLocal
from dealergpt.aggregator import DealershipAggregator
from dealergpt.llm import ChatClient, OpenAIChatClient
from dealergpt.memory import MemoryStore
from dealergpt.service import create_conversation_service

security = HTTPBearer(auto_error=False)

DEV_USER = {
    "id": 1,
    "username": "dev",
    "email": "dev@dealerdesk.local",
    "first_name": "Dev",
    "last_name": "User",
    "role": "admin",
}


def get_session_factory() -> async_sessionmaker:
    """Factory handed to services that open one session per operation."""
    return AsyncSessionLocal


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
    }


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Resolve the user from the session cookie or a bearer token. Bypassed in debug mode."""
    if settings.debug:
        return dict(DEV_USER)

    token = request.cookies.get(settings.session_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_session_token(token)
    if payload is None or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    user = (
        await db.execute(select(User).where(User.id == int(payload["sub"]), User.is_active.is_(True)))
    ).scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return _user_payload(user)


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return user


def get_aggregator(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> DealershipAggregator:
    return DealershipAggregator(session_factory, timeout_seconds=settings.aggregation_timeout_seconds)


def get_memory_store(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> MemoryStore:
    return MemoryStore(session_factory)


def get_chat_client(settings: Settings = Depends(get_settings)) -> ChatClient:
    return OpenAIChatClient.from_settings(settings)


def get_conversation_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    llm: ChatClient = Depends(get_chat_client),
):
    """Full or simple service, per ``settings.dealergpt_mode``."""
    return create_conversation_service(settings, session_factory, llm=llm)
