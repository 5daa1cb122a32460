"""
Authentication module for the account service.

Provides password hashing, JWT session/reset tokens, the identity store
and one-time login codes.
"""

from .jwt_handler import JWTHandler, TokenPayload, TokenCheck, TokenError
from .password import PasswordHandler, normalize_phone, normalize_email
from .users import UserStore, User, Role, DuplicateKeyError, IdentityValidationError
from .otp import OTPManager, OTPStore, OTPRecord

__all__ = [
    "JWTHandler",
    "TokenPayload",
    "TokenCheck",
    "TokenError",
    "PasswordHandler",
    "normalize_phone",
    "normalize_email",
    "UserStore",
    "User",
    "Role",
    "DuplicateKeyError",
    "IdentityValidationError",
    "OTPManager",
    "OTPStore",
    "OTPRecord",
]
