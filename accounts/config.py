"""Configuration module for the account service."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

DATA_DIR = Path(__file__).parent.parent / "data"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AuthConfig:
    """Credential and token settings."""
    jwt_secret_key: str = field(default_factory=lambda: os.getenv("JWT_SECRET_KEY", ""))
    # Session tokens must always expire; the length is a deployment decision
    session_token_expire_seconds: int = field(default_factory=lambda: int(os.getenv("SESSION_TOKEN_EXPIRE_SECONDS", str(86400 * 30))))
    bcrypt_rounds: int = field(default_factory=lambda: int(os.getenv("BCRYPT_ROUNDS", "10")))
    allow_self_assigned_role: bool = field(default_factory=lambda: _env_bool("ALLOW_SELF_ASSIGNED_ROLE", "true"))
    # Prepended to phone numbers given without a leading "+", e.g. "55"
    default_country_code: str = field(default_factory=lambda: os.getenv("DEFAULT_COUNTRY_CODE", ""))


@dataclass
class OTPConfig:
    """One-time code settings."""
    ttl_seconds: int = field(default_factory=lambda: int(os.getenv("OTP_TTL_SECONDS", "300")))
    code_length: int = field(default_factory=lambda: int(os.getenv("OTP_CODE_LENGTH", "6")))
    purge_interval_seconds: int = field(default_factory=lambda: int(os.getenv("OTP_PURGE_INTERVAL_SECONDS", "60")))


@dataclass
class StorageConfig:
    """Where the JSON stores live."""
    users_file: Path = field(default_factory=lambda: Path(os.getenv("USERS_FILE", str(DATA_DIR / "users.json"))))
    otps_file: Path = field(default_factory=lambda: Path(os.getenv("OTPS_FILE", str(DATA_DIR / "otps.json"))))


@dataclass
class Config:
    """Main configuration container."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    otp: OTPConfig = field(default_factory=OTPConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config()
