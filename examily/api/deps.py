"""FastAPI dependencies shared across routes."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from examily.core.security import decode_access_token
from examily.db.models import RoleEnum, User
from examily.db.session import get_db, get_session_factory
from examily.services.attempt_store import SqlAttemptStore
from examily.services.clock import Clock, SystemClock
from examily.services.records import StudentContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login")


def user_from_token(token: str, db: Session) -> User | None:
    """Resolve a JWT to an active user, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None
    try:
        uid = uuid.UUID(user_id)
    except ValueError:
        return None
    user = db.query(User).filter(User.id == uid).first()
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Decode JWT and return the authenticated user, or 401."""
    user = user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_teacher(current_user: User = Depends(get_current_user)) -> User:
    """Raise 403 unless the caller is a teacher."""
    if current_user.role != RoleEnum.TEACHER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Teacher access required"
        )
    return current_user


def require_student(current_user: User = Depends(get_current_user)) -> User:
    """Raise 403 unless the caller is a student."""
    if current_user.role != RoleEnum.STUDENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Student access required"
        )
    return current_user


def student_context(user: User) -> StudentContext:
    return StudentContext(id=user.id, full_name=user.full_name)


def get_attempt_store(db: Session = Depends(get_db)) -> SqlAttemptStore:
    """Attempt store bound to the request's DB session."""
    return SqlAttemptStore(session=db)


def get_store_session_factory():
    """Session factory for stores that outlive a request (WebSocket sessions)."""
    return get_session_factory()


def get_clock() -> Clock:
    """Wall clock used by attempt controllers."""
    return SystemClock()
