from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel, Column
from pydantic import computed_field
from sqlalchemy import JSON
from jerseynexus.core.config import settings


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str
    email: str = Field(unique=True, index=True)
    phone: Optional[str] = None
    password_hash: str

    # Address stored as JSON dict with keys: street, city, state, zipCode, country
    address: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    # Profile
    avatar: Optional[str] = None

    # Account
    role: UserRole = Field(default=UserRole.USER)
    status: UserStatus = Field(default=UserStatus.ACTIVE)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @computed_field
    @property
    def avatar_url(self) -> Optional[str]:
        if not self.avatar:
            return None
        if self.avatar.startswith(("http://", "https://", "/")):
            return self.avatar
        return f"{settings.S3_BASE_URL}/{self.avatar}"
