"""
User storage and management.

Stores identities in a JSON file, keyed by user_id.
Every read-modify-write runs under one lock, so uniqueness checks and
the write that follows them are atomic within the process.
"""

import json
import logging
import threading
import uuid
from enum import Enum
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, List, Callable
from dataclasses import dataclass, asdict, field

from .password import PasswordHandler, normalize_phone, normalize_email, password_problem

logger = logging.getLogger(__name__)

# Default storage path
DEFAULT_USERS_FILE = Path(__file__).parent.parent.parent / "data" / "users.json"

PROFILE_FIELDS = (
    "pincode",
    "city",
    "state",
    "address",
    "town_village",
    "landmark",
    "alternate_phone",
)

# Never part of a public view of an identity
SECRET_FIELDS = ("password_hash", "otp_challenge", "reset_challenge")


class Role(str, Enum):
    """Authorization tiers."""
    USER = "User"
    ADMIN = "Admin"


ROLES = tuple(r.value for r in Role)


class IdentityValidationError(ValueError):
    """Raised when a field fails validation."""


class DuplicateKeyError(ValueError):
    """Raised when an email or phone is already taken."""

    def __init__(self, field_name: str, value: str):
        super().__init__(f"User with {field_name} {value} already exists")
        self.field_name = field_name


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class User:
    """User data model."""
    user_id: str
    name: str
    phone: str  # Normalized phone number
    role: str = Role.USER.value
    email: Optional[str] = None  # None for OTP-only accounts
    password_hash: Optional[str] = None  # Only present on include_password reads
    is_otp_login: bool = False
    otp_challenge: Optional[dict] = None  # {"code", "expires_at"}
    reset_challenge: Optional[dict] = None  # {"token", "expires_at"}
    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    town_village: Optional[str] = None
    landmark: Optional[str] = None
    alternate_phone: Optional[str] = None
    card_data: dict = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_public_dict(self) -> dict:
        """Serialize without credential material."""
        data = self.to_dict()
        for name in SECRET_FIELDS:
            data.pop(name, None)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        return cls(
            user_id=data["user_id"],
            name=data["name"],
            phone=data["phone"],
            role=data.get("role", Role.USER.value),
            email=data.get("email"),
            password_hash=data.get("password_hash"),
            is_otp_login=data.get("is_otp_login", False),
            otp_challenge=data.get("otp_challenge"),
            reset_challenge=data.get("reset_challenge"),
            card_data=data.get("card_data") or {},
            created_at=data.get("created_at", _now()),
            updated_at=data.get("updated_at", _now()),
            **{name: data.get(name) for name in PROFILE_FIELDS}
        )

    def is_otp_valid(self, now: Optional[float] = None) -> bool:
        """An OTP challenge past its expiry counts as absent."""
        if not self.otp_challenge:
            return False
        now = now if now is not None else datetime.now(timezone.utc).timestamp()
        return self.otp_challenge.get("expires_at", 0) > now


class UserStore:
    """
    JSON-based user storage.

    Email (when present) and phone are unique. Reads omit password_hash
    unless include_password=True is passed.
    """

    def __init__(
        self,
        file_path: Optional[Path] = None,
        password_handler: Optional[PasswordHandler] = None,
        default_country_code: str = ""
    ):
        """
        Initialize user store.

        Args:
            file_path: Path to users JSON file (default: data/users.json)
            password_handler: Hasher used on every password write
            default_country_code: Prefix for phone numbers without "+"
        """
        self.file_path = file_path or DEFAULT_USERS_FILE
        self.password_handler = password_handler or PasswordHandler()
        self.default_country_code = default_country_code
        self._lock = threading.Lock()
        self._ensure_file()

    def _ensure_file(self):
        """Ensure the storage file and directory exist."""
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            self._save_all({})

    def _load_all(self) -> dict[str, dict]:
        """Load all users from file."""
        try:
            with open(self.file_path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}

    def _save_all(self, users: dict[str, dict]):
        """Save all users to file."""
        with open(self.file_path, "w") as f:
            json.dump(users, f, indent=2, ensure_ascii=False)

    # Validation helpers

    def _clean_phone(self, phone: str) -> str:
        normalized = normalize_phone(phone, self.default_country_code)
        if not normalized:
            raise IdentityValidationError(f"Invalid phone number: {phone}")
        return normalized

    @staticmethod
    def _clean_email(email: Optional[str]) -> Optional[str]:
        if email is None or not email.strip():
            return None
        normalized = normalize_email(email)
        if not normalized:
            raise IdentityValidationError(f"Invalid email address: {email}")
        return normalized

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise IdentityValidationError("Name is required")
        return cleaned

    @staticmethod
    def _clean_role(role: Optional[str]) -> str:
        role = role or Role.USER.value
        if isinstance(role, Role):
            role = role.value
        if role not in ROLES:
            raise IdentityValidationError(f"Invalid role: {role}")
        return role

    @staticmethod
    def _clean_profile(profile: dict) -> dict:
        unknown = set(profile) - set(PROFILE_FIELDS)
        if unknown:
            raise IdentityValidationError(f"Unknown profile fields: {sorted(unknown)}")
        return {
            name: value.strip() if isinstance(value, str) else value
            for name, value in profile.items()
        }

    @staticmethod
    def _check_unique(
        users: dict[str, dict],
        email: Optional[str],
        phone: str,
        exclude_id: Optional[str] = None
    ):
        for user_id, data in users.items():
            if user_id == exclude_id:
                continue
            if email and data.get("email") == email:
                raise DuplicateKeyError("email", email)
            if data.get("phone") == phone:
                raise DuplicateKeyError("phone", phone)

    @staticmethod
    def _to_user(data: dict, include_password: bool = False) -> User:
        user = User.from_dict(data)
        if not include_password:
            user.password_hash = None
        return user

    # CRUD

    def create_user(
        self,
        name: str,
        phone: str,
        password: Optional[str] = None,
        email: Optional[str] = None,
        role: str = Role.USER.value,
        is_otp_login: bool = False,
        card_data: Optional[dict] = None,
        **profile
    ) -> User:
        """
        Create a new user.

        Args:
            name: Display name (required, trimmed)
            phone: Phone number (will be normalized)
            password: Plain text password; may be omitted only for OTP-only accounts
            email: Optional email address (lowercased, validated)
            role: "User" or "Admin"
            is_otp_login: Account logs in with one-time codes
            card_data: Opaque card information blob
            **profile: Address fields (pincode, city, state, ...)

        Returns:
            Created User object (without password_hash)

        Raises:
            IdentityValidationError: If a field is invalid
            DuplicateKeyError: If the email or phone is already registered
        """
        name = self._clean_name(name)
        normalized_phone = self._clean_phone(phone)
        normalized_email = self._clean_email(email)
        role = self._clean_role(role)
        profile = self._clean_profile(profile)

        if password is None and not is_otp_login:
            raise IdentityValidationError("Password is required unless the account uses OTP login")

        password_hash = None
        if password is not None:
            problem = password_problem(password)
            if problem:
                raise IdentityValidationError(problem)
            password_hash = self.password_handler.hash(password)

        user = User(
            user_id=str(uuid.uuid4()),
            name=name,
            phone=normalized_phone,
            role=role,
            email=normalized_email,
            password_hash=password_hash,
            is_otp_login=is_otp_login,
            card_data=dict(card_data or {}),
            **profile
        )

        with self._lock:
            users = self._load_all()
            self._check_unique(users, normalized_email, normalized_phone)
            users[user.user_id] = user.to_dict()
            self._save_all(users)

        logger.info(f"Created user {user.user_id} ({role})")
        user.password_hash = None
        return user

    def get_by_id(self, user_id: str, include_password: bool = False) -> Optional[User]:
        """
        Get user by user ID.

        Args:
            user_id: User's unique ID
            include_password: Also return password_hash

        Returns:
            User if found, None otherwise
        """
        with self._lock:
            data = self._load_all().get(user_id)
        if data:
            return self._to_user(data, include_password)
        return None

    def _find(self, key: str, value: str, include_password: bool) -> Optional[User]:
        with self._lock:
            users = self._load_all()
        for data in users.values():
            if data.get(key) == value:
                return self._to_user(data, include_password)
        return None

    def get_by_email(self, email: str, include_password: bool = False) -> Optional[User]:
        """
        Get user by email address.

        Args:
            email: Email (will be normalized)
            include_password: Also return password_hash

        Returns:
            User if found, None otherwise
        """
        normalized = normalize_email(email)
        if not normalized:
            return None
        return self._find("email", normalized, include_password)

    def get_by_phone(self, phone: str, include_password: bool = False) -> Optional[User]:
        """
        Get user by phone number.

        Args:
            phone: Phone number (will be normalized)
            include_password: Also return password_hash

        Returns:
            User if found, None otherwise
        """
        normalized = normalize_phone(phone, self.default_country_code)
        if not normalized:
            return None
        return self._find("phone", normalized, include_password)

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def phone_exists(self, phone: str) -> bool:
        return self.get_by_phone(phone) is not None

    def list_users(self) -> List[User]:
        """
        List all users, without password hashes.

        Authorization is the caller's job.
        """
        with self._lock:
            users = self._load_all()
        return [self._to_user(data) for data in users.values()]

    def _mutate(self, user_id: str, change: Callable[[dict], None]) -> User:
        """Apply change to one stored record under the lock and persist it."""
        with self._lock:
            users = self._load_all()
            data = users.get(user_id)
            if data is None:
                raise KeyError(f"User {user_id} not found")
            change(data)
            data["updated_at"] = _now()
            self._save_all(users)
        return self._to_user(data)

    def update_user(self, user: User) -> User:
        """
        Update an existing user's profile fields.

        The stored password hash is never taken from the User object;
        use set_password for that.

        Raises:
            KeyError: If user doesn't exist
            IdentityValidationError: If a field is invalid
            DuplicateKeyError: If the new email or phone belongs to someone else
        """
        name = self._clean_name(user.name)
        phone = self._clean_phone(user.phone)
        email = self._clean_email(user.email)
        role = self._clean_role(user.role)
        profile = self._clean_profile({f: getattr(user, f) for f in PROFILE_FIELDS})

        with self._lock:
            users = self._load_all()
            data = users.get(user.user_id)
            if data is None:
                raise KeyError(f"User {user.user_id} not found")
            self._check_unique(users, email, phone, exclude_id=user.user_id)
            data.update(
                name=name,
                phone=phone,
                email=email,
                role=role,
                is_otp_login=user.is_otp_login,
                card_data=dict(user.card_data or {}),
                **profile
            )
            data["updated_at"] = _now()
            self._save_all(users)

        logger.debug(f"Updated user: {user.user_id}")
        return self._to_user(data)

    def set_password(self, user_id: str, password: str) -> User:
        """
        Set or update a user's password (always re-hashed).

        Raises:
            KeyError: If user doesn't exist
            IdentityValidationError: If the password is unacceptable
        """
        problem = password_problem(password)
        if problem:
            raise IdentityValidationError(problem)
        password_hash = self.password_handler.hash(password)

        def change(data: dict):
            data["password_hash"] = password_hash

        user = self._mutate(user_id, change)
        logger.info(f"Password set for user {user_id}")
        return user

    def set_otp_challenge(self, user_id: str, code: str, expires_at: float) -> User:
        """Record the pending OTP challenge on the identity."""
        def change(data: dict):
            data["otp_challenge"] = {"code": code, "expires_at": expires_at}

        return self._mutate(user_id, change)

    def clear_otp_challenge(self, user_id: str) -> User:
        def change(data: dict):
            data["otp_challenge"] = None

        return self._mutate(user_id, change)

    def set_reset_challenge(self, user_id: str, token: str, expires_at: float) -> User:
        """Record the pending password-reset challenge on the identity."""
        def change(data: dict):
            data["reset_challenge"] = {"token": token, "expires_at": expires_at}

        return self._mutate(user_id, change)

    def redeem_reset_challenge(
        self,
        user_id: str,
        token: str,
        password: str,
        now: Optional[float] = None
    ) -> Optional[User]:
        """
        Set a new password if the reset challenge holds token and has not expired.

        The challenge is cleared in the same write as the new hash, so a
        token is spent only when the password actually changes.

        Returns:
            Updated user, or None if the challenge did not match (at most once per token)

        Raises:
            IdentityValidationError: If the password is unacceptable
        """
        problem = password_problem(password)
        if problem:
            raise IdentityValidationError(problem)
        password_hash = self.password_handler.hash(password)
        now = now if now is not None else datetime.now(timezone.utc).timestamp()

        with self._lock:
            users = self._load_all()
            data = users.get(user_id)
            challenge = data.get("reset_challenge") if data else None
            if not challenge:
                return None
            if challenge.get("token") != token or challenge.get("expires_at", 0) <= now:
                return None
            data["password_hash"] = password_hash
            data["reset_challenge"] = None
            data["updated_at"] = _now()
            self._save_all(users)

        logger.info(f"Password reset for user {user_id}")
        return self._to_user(data)

    def delete_user(self, user_id: str) -> bool:
        """
        Permanently delete a user (administrative action).

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            users = self._load_all()
            if user_id not in users:
                return False
            del users[user_id]
            self._save_all(users)

        logger.info(f"Deleted user: {user_id}")
        return True
