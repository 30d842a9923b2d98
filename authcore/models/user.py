"""User directory record."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from authcore.models.base import BaseModel


class AuthMethod(str, Enum):
    """How an account authenticates. Fixed when the account is created."""

    PASSWORD = "password"
    OAUTH = "oauth"


class User(BaseModel):
    """An account that can hold tokens.

    When auth_method is "oauth", oauth_provider and oauth_provider_id are
    set and every later OAuth login must present the same pair.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    auth_method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuthMethod.PASSWORD.value
    )
    oauth_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    oauth_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.email}>"
