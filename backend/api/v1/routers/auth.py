"""
Auth Router — session cookie login for DealerDesk staff.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from core.config import Settings, get_settings
from core.security import create_session_token, verify_password
from db.models import User

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = structlog.get_logger()


# ─── Schemas ────────────────────────────────────────────────────────────────


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: int
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/login", response_model=UserResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify credentials and set the signed session cookie."""
    user = (await db.execute(select(User).where(User.username == credentials.username))).scalar_one_or_none()
    if user is None or not user.is_active or not verify_password(credentials.password, user.password):
        logger.warning("auth.login.failed", username=credentials.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    user.last_login = datetime.utcnow()
    await db.commit()

    token = create_session_token({"sub": str(user.id), "role": user.role})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    logger.info("auth.login.succeeded", user_id=user.id)
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
    )


@router.post("/logout")
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    response.delete_cookie(settings.session_cookie_name)
    return {"status": "logged_out"}


@router.get("/me", response_model=UserResponse)
async def me(user: dict = Depends(get_current_user)):
    return UserResponse(**user)
