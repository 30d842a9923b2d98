"""Revoked tokens and per-user revocation boundaries."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from authcore.core.database import Base


class BlacklistedToken(Base):
    """A revoked JWT identified by its JTI claim.

    Entries are write-once. They can be pruned after expires_at, at which
    point the token would be rejected as expired anyway.
    """

    __tablename__ = "blacklisted_tokens"
    __table_args__ = (
        Index("ix_blacklisted_tokens_reason_revoked_at", "reason", "revoked_at"),
        Index("ix_blacklisted_tokens_user_revoked_at", "user_id", "revoked_at"),
    )

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Null when an admin revokes a JTI this service never issued
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    token_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    revoked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<BlacklistedToken {self.jti} reason={self.reason!r}>"


class UserTokenBoundary(Base):
    """Tokens for user_id issued before tokens_valid_since are invalid.

    The boundary only ever moves forward.
    """

    __tablename__ = "user_token_boundaries"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tokens_valid_since: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    revoked_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
