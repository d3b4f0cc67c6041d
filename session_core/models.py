"""
SQLAlchemy models for the Session Core service.

This module defines the identity rows read by the credential validator and the
persisted refresh-session rows owned by the token store.
"""
import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from session_core.database import Base

SESSION_TYPE_REFRESH = "refresh"


def utcnow() -> datetime.datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class User(Base):
    """
    Identity row.

    Stores the login identifier and the password hash. The session core only
    ever hands out the ``{id, email}`` projection of this row.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(100), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    session_token = relationship(
        "SessionToken", back_populates="user", cascade="all, delete-orphan", uselist=False
    )

    def __repr__(self) -> str:
        """String representation of the User object."""
        return f"<User(id={self.id}, email={self.email})>"


class SessionToken(Base):
    """
    Refresh-session row.

    At most one row exists per user: a new login overwrites the previous row
    through an atomic upsert keyed by ``user_id``.
    """
    __tablename__ = "session_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    token = Column(String(1024), nullable=False, index=True)
    type = Column(String(16), default=SESSION_TYPE_REFRESH, nullable=False)
    valid = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="session_token")

    @property
    def is_active(self) -> bool:
        """Check if the session row can still back a refresh."""
        return self.valid and self.expires_at > utcnow()

    def __repr__(self) -> str:
        """String representation of the SessionToken object."""
        return f"<SessionToken(id={self.id}, user_id={self.user_id}, valid={self.valid})>"
