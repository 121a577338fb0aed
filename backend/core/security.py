"""
DealerDesk Security Utilities

Password hashing and signed session tokens.
"""

from datetime import datetime, timedelta

from jose import JWTError, jwt
from passlib.context import CryptContext

from core.config import get_settings

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed session token (JWT) carried in the session cookie."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=runtime_settings.session_ttl_hours))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.session_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_session_token(token: str) -> dict | None:
    """Decode and validate a session token. Returns None when invalid or expired."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.session_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None
