"""User registration, login, and profile routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from examily.api.deps import get_current_user
from examily.core.security import create_access_token, hash_password, verify_password
from examily.db.models import RoleEnum, User
from examily.db.session import get_db
from examily.schemas.user import AuthResponse, UserCreate, UserLogin, UserRead, UserUpdate
from examily.services.rate_limiter import require_auth_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter()


def _token_for(user: User) -> str:
    return create_access_token(user.id, user.role.value, user.email)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_auth_rate_limit)],
)
def register(body: UserCreate, db: Session = Depends(get_db)):
    """Create a teacher or student account and log it in."""
    existing = db.query(User).filter(User.email == body.email).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )
    try:
        hashed = hash_password(body.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    role = RoleEnum(body.role.value)
    user = User(
        email=body.email,
        hashed_password=hashed,
        full_name=body.full_name,
        role=role,
        program=body.program if role == RoleEnum.STUDENT else None,
        subject=body.subject if role == RoleEnum.TEACHER else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s %s", role.value, user.id)

    return AuthResponse(access_token=_token_for(user), user=UserRead.model_validate(user))


@router.post(
    "/login",
    response_model=AuthResponse,
    dependencies=[Depends(require_auth_rate_limit)],
)
def login(body: UserLogin, db: Session = Depends(get_db)):
    """Authenticate and return a JWT access token + user profile."""
    user = db.query(User).filter(User.email == body.email).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account deactivated",
        )

    return AuthResponse(access_token=_token_for(user), user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's profile."""
    return current_user


@router.patch("/me", response_model=UserRead)
def update_profile(
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update the authenticated user's profile (name, program or subject)."""
    if body.full_name is not None:
        current_user.full_name = body.full_name
    if body.program is not None and current_user.role == RoleEnum.STUDENT:
        current_user.program = body.program
    if body.subject is not None and current_user.role == RoleEnum.TEACHER:
        current_user.subject = body.subject
    db.commit()
    db.refresh(current_user)
    return current_user
