"""
Services layer for the account service.

Business logic that can be consumed by the API, scripts or tests.
"""

from .user_auth_service import UserAuthService, AuthResult, AuthErrorCode

__all__ = [
    "UserAuthService",
    "AuthResult",
    "AuthErrorCode",
]
