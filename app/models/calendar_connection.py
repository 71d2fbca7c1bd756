# ===== app/models/calendar_connection.py =====
from sqlalchemy import Column, String, Boolean, DateTime, LargeBinary, Index, UniqueConstraint, Uuid
from datetime import datetime, timezone
from typing import Optional
import enum
import uuid

from app.models.base import Base
from app.utils.encryption import encrypt_token, decrypt_token


class CalendarProvider(str, enum.Enum):
    """Calendar vendors a user can connect."""
    GOOGLE = "google"
    MICROSOFT = "microsoft"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarConnection(Base):
    """
    One user's link to one external calendar account through one provider.

    The natural key is (user_id, provider, account_email): reconnecting the same
    account updates this row instead of inserting a new one.
    """
    __tablename__ = "calendar_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", "account_email", name="uq_calendar_connection_account"),
        Index("ix_calendar_connections_natural_key", "user_id", "provider", "account_email"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)

    provider = Column(String(32), nullable=False)  # 'google', 'microsoft'
    account_email = Column(String(320), nullable=False)
    account_name = Column(String(255), nullable=True)

    # OAuth tokens, Fernet-encrypted at rest
    access_token_encrypted = Column(LargeBinary, nullable=False)
    refresh_token_encrypted = Column(LargeBinary, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    @property
    def access_token(self) -> Optional[str]:
        return decrypt_token(self.access_token_encrypted)

    @access_token.setter
    def access_token(self, value: str):
        self.access_token_encrypted = encrypt_token(value)

    @property
    def refresh_token(self) -> Optional[str]:
        return decrypt_token(self.refresh_token_encrypted)

    @refresh_token.setter
    def refresh_token(self, value: Optional[str]):
        self.refresh_token_encrypted = encrypt_token(value)

    @property
    def is_token_expired(self) -> bool:
        """True when an expiry is recorded and lies in the past."""
        if self.token_expires_at is None:
            return False
        expires_at = self.token_expires_at
        # SQLite hands back naive datetimes; they were stored as UTC
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at < datetime.now(timezone.utc)

    @property
    def needs_refresh(self) -> bool:
        """Refresh only when the token has expired and a refresh token exists."""
        return self.is_token_expired and self.refresh_token_encrypted is not None

    def __repr__(self):
        return f"<CalendarConnection {self.id} {self.provider}:{self.account_email} active={self.is_active}>"
