"""
Password handling utilities.

Uses bcrypt for secure password hashing.
Also holds the phone and email normalizers shared by the stores.
"""

import logging
from typing import Optional

import bcrypt
from email_validator import validate_email, EmailNotValidError

logger = logging.getLogger(__name__)

# bcrypt work factor (higher = more secure but slower)
BCRYPT_ROUNDS = 10

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

MIN_PASSWORD_LENGTH = 6

PHONE_MIN_DIGITS = 8
PHONE_MAX_DIGITS = 15  # E.164 limit


class PasswordHandler:
    """
    Handles password hashing and verification using bcrypt.

    Usage:
        handler = PasswordHandler()
        hashed = handler.hash("my_password")
        is_valid = handler.verify("my_password", hashed)
    """

    def __init__(self, rounds: int = BCRYPT_ROUNDS):
        """
        Initialize password handler.

        Args:
            rounds: bcrypt work factor (default: 10)
        """
        self.rounds = rounds

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        Args:
            password: Plain text password

        Returns:
            Hashed password string (includes salt)
        """
        if not password:
            raise ValueError("Password cannot be empty")

        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)

        return hashed.decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        """
        Verify a password against a hash.

        Args:
            password: Plain text password to verify
            hashed: Previously hashed password

        Returns:
            True if password matches, False otherwise (including malformed hashes)
        """
        if not password or not hashed:
            return False

        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                hashed.encode("utf-8")
            )
        except ValueError as e:
            logger.warning(f"Password verification error: {e}")
            return False

    def needs_rehash(self, hashed: str) -> bool:
        """
        Check if a hash needs to be rehashed (e.g., rounds changed).

        Args:
            hashed: Previously hashed password

        Returns:
            True if hash should be regenerated
        """
        # bcrypt hash format: $2b$rounds$salt+hash
        parts = hashed.split("$") if hashed else []
        if len(parts) >= 3 and parts[2].isdigit():
            return int(parts[2]) != self.rounds
        return True


def password_problem(password: Optional[str]) -> Optional[str]:
    """
    Describe why a plaintext password is unacceptable.

    Returns:
        Error message, or None if the password can be hashed
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        return f"Password cannot be longer than {BCRYPT_MAX_BYTES} bytes"
    return None


def normalize_phone(phone: str, default_country_code: str = "") -> Optional[str]:
    """
    Normalize a phone number to E.164 style.

    Removes spaces, dashes, dots and parentheses and ensures it starts with +.

    Args:
        phone: Phone number in any format
        default_country_code: Digits prepended to every number without "+"

    Returns:
        Normalized phone number or None if invalid

    Examples:
        normalize_phone("+1 (555) 000-1234") -> "+15550001234"
        normalize_phone("11999999999", "55") -> "+5511999999999"
    """
    if not phone:
        return None

    cleaned = phone.strip()
    for separator in " -().":
        cleaned = cleaned.replace(separator, "")

    has_plus = cleaned.startswith("+")
    digits = cleaned[1:] if has_plus else cleaned

    if not digits.isdigit():
        return None

    # Without "+" the number is national; international numbers must carry "+"
    if not has_plus and default_country_code:
        digits = default_country_code + digits

    if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        return None

    return "+" + digits


def normalize_email(email: str) -> Optional[str]:
    """
    Trim, lowercase and validate an email address.

    Returns:
        Normalized address or None if invalid
    """
    if not email:
        return None

    candidate = email.strip().lower()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return None
    return candidate
