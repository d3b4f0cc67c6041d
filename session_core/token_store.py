"""
Refresh-session persistence for the Session Core service.

The token store is the single source of truth for refresh sessions. It keeps
at most one row per user; logins overwrite that row with one atomic
``INSERT ... ON CONFLICT (user_id) DO UPDATE`` statement (``ON DUPLICATE KEY
UPDATE`` on MySQL), so concurrent logins for the same user can neither create
a second row nor lose an update.
"""
import datetime
import logging
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from session_core.database import Database
from session_core.errors import InternalError
from session_core.models import SESSION_TYPE_REFRESH, SessionToken, utcnow

logger = logging.getLogger(__name__)

# Dialects with a single-statement insert-or-update keyed on user_id
UPSERT_DIALECTS = ("postgresql", "sqlite", "mysql")


def _as_naive_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return value


class TokenStore:
    """Persisted refresh-session rows keyed by user."""

    def __init__(self, database: Database):
        """
        Args:
            database: Database holding the session table.

        Raises:
            ValueError: If the database dialect has no atomic upsert.
        """
        if database.dialect_name not in UPSERT_DIALECTS:
            raise ValueError(f"Atomic session upsert is not supported on {database.dialect_name}")
        self.database = database

    def _upsert_statement(self, user_id: int, token: str, expires_at: datetime.datetime,
                          now: datetime.datetime):
        dialect = self.database.dialect_name
        values = {
            "user_id": user_id,
            "token": token,
            "type": SESSION_TYPE_REFRESH,
            "valid": True,
            "expires_at": _as_naive_utc(expires_at),
            "created_at": now,
        }
        if dialect == "mysql":
            stmt = mysql.insert(SessionToken).values(**values)
            return stmt.on_duplicate_key_update(
                token=stmt.inserted.token,
                type=stmt.inserted.type,
                valid=True,
                expires_at=stmt.inserted.expires_at,
                created_at=stmt.inserted.created_at,
            )
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(SessionToken).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "token": stmt.excluded.token,
                "type": stmt.excluded.type,
                "valid": True,
                "expires_at": stmt.excluded.expires_at,
                "created_at": stmt.excluded.created_at,
            },
        )

    # PUBLIC_INTERFACE
    def upsert_session(self, user_id: int, token: str, expires_at: datetime.datetime) -> None:
        """
        Create or overwrite the session row of a user.

        The row is marked valid and its creation time reset to now, since it
        now describes a new session.

        Args:
            user_id: Owner of the session.
            token: Refresh token value.
            expires_at: Absolute expiry of the refresh token.

        Raises:
            InternalError: If the database write fails.
        """
        stmt = self._upsert_statement(user_id, token, expires_at, utcnow())
        try:
            with self.database.session_scope() as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Database error storing session for user {user_id}: {str(e)}")
            raise InternalError("Failed to store session") from e
        logger.debug(f"Stored session for user {user_id}")

    # PUBLIC_INTERFACE
    def find_active_session(self, token: str, user_id: int) -> Optional[SessionToken]:
        """
        Find the session row matching a presented refresh token.

        Returns:
            The row if the token and user match, the row is valid and not yet
            expired; None in every other case.

        Raises:
            InternalError: If the database read fails.
        """
        try:
            with self.database.session_scope() as session:
                return session.query(SessionToken).filter(
                    SessionToken.token == token,
                    SessionToken.user_id == user_id,
                    SessionToken.valid.is_(True),
                    SessionToken.expires_at > utcnow(),
                ).first()
        except SQLAlchemyError as e:
            logger.error(f"Database error looking up session for user {user_id}: {str(e)}")
            raise InternalError("Failed to read session") from e

    # PUBLIC_INTERFACE
    def get_session(self, user_id: int) -> Optional[SessionToken]:
        """Return the session row of a user regardless of its state."""
        try:
            with self.database.session_scope() as session:
                return session.query(SessionToken).filter(SessionToken.user_id == user_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Database error reading session for user {user_id}: {str(e)}")
            raise InternalError("Failed to read session") from e

    # PUBLIC_INTERFACE
    def invalidate_all(self, user_id: int) -> int:
        """
        Mark every session row of a user invalid without deleting it.

        Returns:
            Number of rows updated.
        """
        try:
            with self.database.session_scope() as session:
                count = session.query(SessionToken).filter(
                    SessionToken.user_id == user_id
                ).update({SessionToken.valid: False}, synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"Database error invalidating sessions for user {user_id}: {str(e)}")
            raise InternalError("Failed to invalidate sessions") from e
        logger.info(f"Invalidated {count} session(s) for user {user_id}")
        return count

    # PUBLIC_INTERFACE
    def delete_all(self, user_id: int) -> int:
        """
        Hard delete every session row of a user.

        Returns:
            Number of rows deleted.
        """
        try:
            with self.database.session_scope() as session:
                count = session.query(SessionToken).filter(
                    SessionToken.user_id == user_id
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting sessions for user {user_id}: {str(e)}")
            raise InternalError("Failed to delete sessions") from e
        logger.debug(f"Deleted {count} session(s) for user {user_id}")
        return count

    # PUBLIC_INTERFACE
    def delete_expired_or_invalid(self) -> int:
        """
        Delete rows whose expiry is in the past or that were invalidated.

        Returns:
            Number of rows deleted.
        """
        try:
            with self.database.session_scope() as session:
                return session.query(SessionToken).filter(
                    or_(SessionToken.expires_at < utcnow(), SessionToken.valid.is_(False))
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting expired sessions: {str(e)}")
            raise InternalError("Failed to delete expired sessions") from e

    # PUBLIC_INTERFACE
    def delete_older_than(self, retention_ceiling: datetime.datetime) -> int:
        """
        Delete every row created before ``retention_ceiling``, valid or not.

        Returns:
            Number of rows deleted.
        """
        try:
            with self.database.session_scope() as session:
                return session.query(SessionToken).filter(
                    SessionToken.created_at < _as_naive_utc(retention_ceiling)
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting old sessions: {str(e)}")
            raise InternalError("Failed to delete old sessions") from e

    # PUBLIC_INTERFACE
    def count_active(self) -> int:
        """Number of valid session rows."""
        try:
            with self.database.session_scope() as session:
                return session.query(SessionToken).filter(SessionToken.valid.is_(True)).count()
        except SQLAlchemyError as e:
            raise InternalError("Failed to count sessions") from e

    # PUBLIC_INTERFACE
    def oldest_active_created_at(self) -> Optional[datetime.datetime]:
        """Creation time of the oldest valid session row, if any."""
        try:
            with self.database.session_scope() as session:
                row = session.query(SessionToken.created_at).filter(
                    SessionToken.valid.is_(True)
                ).order_by(SessionToken.created_at.asc()).first()
                return row[0] if row else None
        except SQLAlchemyError as e:
            raise InternalError("Failed to read sessions") from e
