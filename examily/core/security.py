"""Password hashing (bcrypt) and access tokens (JWT)."""

import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from examily.config import settings

_BCRYPT_MAX_BYTES = 72


# ── Passwords ─────────────────────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    """Return the bcrypt hash of *plain*.

    Raises:
        ValueError: the password exceeds bcrypt's 72-byte input limit.
    """
    raw = plain.encode("utf-8")
    if len(raw) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    # malformed hashes (e.g. seeded placeholders) never verify
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ── Access tokens ─────────────────────────────────────────────────────────────


def create_access_token(
    user_id: uuid.UUID,
    role: str,
    email: str,
    expires_in: timedelta | None = None,
) -> str:
    """Signed token identifying a user; ``sub`` is the user id."""
    lifetime = expires_in or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Claims of a valid, unexpired token, else None."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
