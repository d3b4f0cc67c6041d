"""
Security utilities for the Session Core service.

This module provides password hashing, password strength validation, and the
credential validator used by the login path.
"""
import logging
import re
from typing import List, Optional, Pattern, Tuple

from passlib.context import CryptContext

from session_core.config import Settings
from session_core.errors import InvalidCredentialsError, ValidationError
from session_core.identity import IdentityProjection, normalize_email

# Configure logging
logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("session_core.audit")


class WeakPasswordError(ValidationError):
    """Exception raised when a password does not meet strength requirements."""

    code = "WEAK_PASSWORD"


class PasswordValidator:
    """
    Password strength validator.

    Validates passwords against configurable strength requirements.
    """

    def __init__(
        self,
        min_length: int = 8,
        max_length: int = 72,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special: bool = False,
        disallow_common: bool = True
    ):
        """
        Initialize the password validator with configurable requirements.

        Args:
            min_length: Minimum password length.
            max_length: Maximum password length. bcrypt only looks at the first 72 bytes.
            require_uppercase: Whether to require uppercase letters.
            require_lowercase: Whether to require lowercase letters.
            require_digit: Whether to require at least one digit.
            require_special: Whether to require at least one special character.
            disallow_common: Whether to disallow common passwords.
        """
        self.min_length = min_length
        self.max_length = max_length
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special = require_special
        self.disallow_common = disallow_common

        self.common_passwords = {
            "password", "123456", "qwerty", "admin", "welcome",
            "123456789", "12345678", "abc123", "password1", "admin123"
        }

        self.uppercase_pattern: Pattern = re.compile(r"[A-Z]")
        self.lowercase_pattern: Pattern = re.compile(r"[a-z]")
        self.digit_pattern: Pattern = re.compile(r"\d")
        self.special_pattern: Pattern = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>\/?]")

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "PasswordValidator":
        return cls(
            min_length=app_settings.PASSWORD_MIN_LENGTH,
            max_length=app_settings.PASSWORD_MAX_LENGTH,
            require_uppercase=app_settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=app_settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=app_settings.PASSWORD_REQUIRE_DIGIT,
            require_special=app_settings.PASSWORD_REQUIRE_SPECIAL,
        )

    # PUBLIC_INTERFACE
    def validate(self, password: str) -> Tuple[bool, List[str]]:
        """
        Validate a password against the configured requirements.

        Args:
            password: Password to validate.

        Returns:
            Tuple containing:
                - Boolean indicating if the password is valid.
                - List of validation error messages (empty if valid).
        """
        errors = []

        if len(password) < self.min_length:
            errors.append(f"Password must be at least {self.min_length} characters long.")

        if len(password.encode("utf-8")) > self.max_length:
            errors.append(f"Password must be at most {self.max_length} bytes long.")

        if self.require_uppercase and not self.uppercase_pattern.search(password):
            errors.append("Password must contain at least one uppercase letter.")

        if self.require_lowercase and not self.lowercase_pattern.search(password):
            errors.append("Password must contain at least one lowercase letter.")

        if self.require_digit and not self.digit_pattern.search(password):
            errors.append("Password must contain at least one digit.")

        if self.require_special and not self.special_pattern.search(password):
            errors.append("Password must contain at least one special character.")

        if self.disallow_common and password.lower() in self.common_passwords:
            errors.append("Password is too common and easily guessable.")

        return len(errors) == 0, errors

    # PUBLIC_INTERFACE
    def validate_or_raise(self, password: str) -> None:
        """
        Validate a password and raise an exception if it's invalid.

        Raises:
            WeakPasswordError: If the password does not meet the requirements.
        """
        is_valid, errors = self.validate(password)
        if not is_valid:
            raise WeakPasswordError("Password does not meet requirements", details={"errors": errors})


class PasswordManager:
    """
    Password management utilities.

    Provides functionality for hashing and verifying passwords.
    """

    def __init__(self, rounds: int = 12, validator: Optional[PasswordValidator] = None):
        """
        Initialize the password manager.

        Args:
            rounds: bcrypt cost factor.
            validator: Optional password validator for strength validation.
        """
        self.validator = validator or PasswordValidator()
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    # PUBLIC_INTERFACE
    def hash_password(self, password: str, validate: bool = True) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password to hash.
            validate: Whether to validate password strength before hashing.

        Returns:
            Hashed password string.

        Raises:
            WeakPasswordError: If validate is True and the password is weak.
        """
        if validate:
            self.validator.validate_or_raise(password)

        return self.context.hash(password)

    # PUBLIC_INTERFACE
    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against a hash.

        Malformed hashes count as a mismatch.
        """
        try:
            return self.context.verify(plain_password, hashed_password)
        except (ValueError, TypeError) as e:
            logger.error(f"Password verification error: {str(e)}")
            return False

    # PUBLIC_INTERFACE
    def dummy_verify(self) -> None:
        """Spend the time of one verification against a hash that never matches."""
        self.context.dummy_verify()


class CredentialValidator:
    """
    Checks a submitted secret against the stored hash.

    Unknown identifiers and wrong secrets produce the same
    :class:`InvalidCredentialsError`; only the audit log records which one it was.
    """

    def __init__(self, identity_source, password_manager: PasswordManager, lockout_tracker=None):
        """
        Args:
            identity_source: Object exposing ``find_by_email(email)``.
            password_manager: Hash verification primitive.
            lockout_tracker: Optional :class:`LockoutTracker` fed with every failure.
        """
        self.identity_source = identity_source
        self.password_manager = password_manager
        self.lockout_tracker = lockout_tracker

    # PUBLIC_INTERFACE
    def validate(self, email: str, password: str) -> IdentityProjection:
        """
        Validate credentials and return the canonical identity.

        Args:
            email: Login identifier.
            password: Submitted secret.

        Returns:
            The ``{id, email}`` projection of the authenticated user.

        Raises:
            ValidationError: If either field is empty.
            InvalidCredentialsError: If the identifier is unknown or the secret is wrong.
        """
        if not email or not email.strip() or not password:
            raise ValidationError("Email and password are required")

        identifier = normalize_email(email)
        record = self.identity_source.find_by_email(identifier)
        if record is None:
            # Keep the unknown-identifier path as slow as a real hash check
            self.password_manager.dummy_verify()
            return self._fail(identifier, "unknown identifier")

        if not self.password_manager.verify_password(password, record.password_hash):
            return self._fail(identifier, "wrong password")

        if self.lockout_tracker is not None:
            self.lockout_tracker.reset(identifier)
        return record.projection

    def _fail(self, identifier: str, reason: str):
        locked = False
        attempts = None
        if self.lockout_tracker is not None:
            status = self.lockout_tracker.record_failure(identifier)
            locked = status.locked
            attempts = status.count
        audit_logger.warning(
            f"Failed login for {identifier}: {reason} (attempts={attempts}, locked={locked})"
        )
        raise InvalidCredentialsError(locked=locked)

