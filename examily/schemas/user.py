"""User & authentication schemas."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class UserCreate(BaseModel):
    """POST /api/users/register"""

    email: EmailStr
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1)
    role: Role = Role.STUDENT
    program: str | None = None  # students
    subject: str | None = None  # teachers


class UserLogin(BaseModel):
    """POST /api/users/login"""

    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    """PATCH /api/users/me — update own profile."""

    full_name: str | None = None
    program: str | None = None
    subject: str | None = None


class UserRead(BaseModel):
    """User returned from API — never exposes password."""

    id: uuid.UUID
    email: str
    full_name: str
    role: Role
    program: str | None = None
    subject: str | None = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Combined auth response: token + user profile."""

    access_token: str
    token_type: str = "bearer"
    user: UserRead
