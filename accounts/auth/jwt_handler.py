"""
JWT token handler.

Generates and validates the signed tokens of the account service:
session tokens (token_type "access") and password-reset tokens
(token_type "reset").
"""

import os
import time
import logging
from enum import Enum
from typing import Optional, Literal
from dataclasses import dataclass, asdict

from jose import jwt, JWTError, ExpiredSignatureError

logger = logging.getLogger(__name__)

# Token configuration
DEFAULT_SECRET_KEY = "account-service-secret-key-change-in-production"
ALGORITHM = "HS256"
SESSION_TOKEN_EXPIRE_SECONDS = 86400 * 30  # 30 days
RESET_TOKEN_EXPIRE_SECONDS = 3600  # 1 hour, fixed

AuthType = Literal["password", "sms_otp", "reset"]


class TokenError(str, Enum):
    """Why a token was rejected."""
    EXPIRED = "expired"
    BAD_SIGNATURE = "bad_signature"
    MALFORMED = "malformed"


@dataclass
class TokenPayload:
    """JWT token payload."""
    user_id: str
    role: str
    auth_type: AuthType
    exp: int  # Expiration timestamp
    iat: int  # Issued at timestamp
    token_type: str = "access"  # "access" or "reset"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TokenPayload":
        return cls(**data)


@dataclass
class TokenCheck:
    """Outcome of checking a token: a payload or the reason it failed."""
    payload: Optional[TokenPayload] = None
    error: Optional[TokenError] = None

    @property
    def valid(self) -> bool:
        return self.payload is not None


class JWTHandler:
    """
    Handles JWT token generation and validation.

    Supports:
    - Session tokens (deployment-configured lifetime, always finite)
    - Reset tokens (1 hour, authorize a single password change)
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        session_expires_in: int = SESSION_TOKEN_EXPIRE_SECONDS
    ):
        """
        Initialize JWT handler.

        Args:
            secret_key: Secret key for signing tokens.
                       Falls back to JWT_SECRET_KEY env var or default.
            session_expires_in: Session token lifetime in seconds
        """
        self.secret_key = (
            secret_key
            or os.getenv("JWT_SECRET_KEY")
            or DEFAULT_SECRET_KEY
        )

        if session_expires_in <= 0:
            raise ValueError("Session tokens must expire")
        self.session_expires_in = session_expires_in

        if self.secret_key == DEFAULT_SECRET_KEY:
            logger.warning(
                "Using default JWT secret key. "
                "Set JWT_SECRET_KEY environment variable in production!"
            )

    def _encode(self, payload: TokenPayload) -> str:
        return jwt.encode(payload.to_dict(), self.secret_key, algorithm=ALGORITHM)

    def create_access_token(
        self,
        user_id: str,
        role: str,
        auth_type: AuthType = "password",
        expires_in: Optional[int] = None
    ) -> str:
        """
        Create a session token.

        Args:
            user_id: Unique user identifier
            role: User's role at issue time
            auth_type: How the user authenticated
            expires_in: Custom expiration in seconds (default: configured session lifetime)

        Returns:
            Encoded JWT token string
        """
        now = int(time.time())
        exp = now + (expires_in or self.session_expires_in)

        token = self._encode(TokenPayload(
            user_id=user_id,
            role=role,
            auth_type=auth_type,
            exp=exp,
            iat=now,
            token_type="access"
        ))
        logger.debug(f"Created access token for user {user_id}, expires in {exp - now}s")
        return token

    def create_reset_token(self, user_id: str, role: str = "User") -> str:
        """
        Create a password-reset token with a fixed 1 hour lifetime.

        Args:
            user_id: Unique user identifier
            role: User's role at issue time

        Returns:
            Encoded JWT reset token string
        """
        now = int(time.time())

        token = self._encode(TokenPayload(
            user_id=user_id,
            role=role,
            auth_type="reset",
            exp=now + RESET_TOKEN_EXPIRE_SECONDS,
            iat=now,
            token_type="reset"
        ))
        logger.debug(f"Created reset token for user {user_id}")
        return token

    def check_token(self, token: str) -> TokenCheck:
        """
        Verify a token and report why it failed, if it did.

        Signature is checked before expiry, so a tampered expired token
        reports BAD_SIGNATURE.

        Args:
            token: JWT token string

        Returns:
            TokenCheck with the payload, or with a TokenError
        """
        if not token or not isinstance(token, str):
            return TokenCheck(error=TokenError.MALFORMED)

        try:
            jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.debug(f"Malformed token: {e}")
            return TokenCheck(error=TokenError.MALFORMED)

        try:
            data = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            logger.debug("Token expired")
            return TokenCheck(error=TokenError.EXPIRED)
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
            return TokenCheck(error=TokenError.BAD_SIGNATURE)

        try:
            payload = TokenPayload.from_dict(data)
        except TypeError as e:
            logger.debug(f"Token claims do not match payload: {e}")
            return TokenCheck(error=TokenError.MALFORMED)

        if payload.exp < int(time.time()):
            return TokenCheck(error=TokenError.EXPIRED)

        return TokenCheck(payload=payload)

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        """
        Verify and decode a token.

        Args:
            token: JWT token string

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        return self.check_token(token).payload

    def get_token_expiry(self, token: str) -> Optional[int]:
        """
        Get the expiration timestamp of a token.

        Args:
            token: JWT token string

        Returns:
            Expiration timestamp or None if invalid
        """
        payload = self.verify_token(token)
        return payload.exp if payload else None
