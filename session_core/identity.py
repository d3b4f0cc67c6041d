"""
Identity source for the Session Core service.

The identity source owns user rows. The session core reads two shapes from it:
a credential record (including the stored password hash) for login, and the
public ``{id, email}`` projection for everything else.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from session_core.database import Database
from session_core.errors import InternalError, UserExistsError
from session_core.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityProjection:
    """Public view of a user."""
    id: int
    email: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CredentialRecord:
    """Identity projection plus the stored password hash."""
    id: int
    email: str
    password_hash: str

    @property
    def projection(self) -> IdentityProjection:
        return IdentityProjection(id=self.id, email=self.email)


def normalize_email(email: str) -> str:
    """Canonical form of a login identifier."""
    return email.strip().lower()


class SqlIdentitySource:
    """Identity source backed by the ``users`` table."""

    def __init__(self, database: Database):
        self.database = database

    # PUBLIC_INTERFACE
    def find_by_email(self, email: str) -> Optional[CredentialRecord]:
        """
        Look up the credential record for a login identifier.

        Args:
            email: Login identifier.

        Returns:
            The credential record, or None if no user has this email.
        """
        try:
            with self.database.session_scope() as session:
                user = session.query(User).filter(User.email == normalize_email(email)).first()
                if user is None:
                    return None
                return CredentialRecord(id=user.id, email=user.email, password_hash=user.hashed_password)
        except SQLAlchemyError as e:
            logger.error(f"Database error looking up user by email: {str(e)}")
            raise InternalError("Identity source unavailable") from e

    # PUBLIC_INTERFACE
    def find_by_id(self, user_id: int) -> Optional[IdentityProjection]:
        """
        Look up the public projection of a user.

        Args:
            user_id: User ID.

        Returns:
            The identity projection, or None if the user does not exist.
        """
        try:
            with self.database.session_scope() as session:
                user = session.query(User).filter(User.id == user_id).first()
                if user is None:
                    return None
                return IdentityProjection(id=user.id, email=user.email)
        except SQLAlchemyError as e:
            logger.error(f"Database error looking up user {user_id}: {str(e)}")
            raise InternalError("Identity source unavailable") from e

    # PUBLIC_INTERFACE
    def create(self, email: str, password_hash: str) -> IdentityProjection:
        """
        Create a user row.

        Args:
            email: Login identifier.
            password_hash: Already hashed password.

        Returns:
            The projection of the new user.

        Raises:
            UserExistsError: If a user with the same email already exists.
        """
        try:
            with self.database.session_scope() as session:
                user = User(email=normalize_email(email), hashed_password=password_hash)
                session.add(user)
                session.flush()
                logger.info(f"Created user {user.id}")
                return IdentityProjection(id=user.id, email=user.email)
        except IntegrityError:
            raise UserExistsError("A user with this email already exists")
        except SQLAlchemyError as e:
            logger.error(f"Database error creating user: {str(e)}")
            raise InternalError("Identity source unavailable") from e
