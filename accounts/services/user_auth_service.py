"""
User authentication service.

Orchestrates registration, password and OTP login, session resolution,
role-gated listing and password resets. Every operation returns an
AuthResult; nothing raises past this layer.
"""

import logging
from enum import Enum
from typing import Optional, List
from dataclasses import dataclass

from ..auth import (
    JWTHandler,
    UserStore,
    User,
    Role,
    OTPManager,
    DuplicateKeyError,
    IdentityValidationError,
)
from ..auth.password import password_problem

logger = logging.getLogger(__name__)

SERVER_ERROR = "Server error"
USER_EXISTS = "User already exists"
# Same message for unknown email and wrong password
INVALID_LOGIN = "Invalid email or password"
INVALID_OTP = "Invalid phone or code"
INVALID_RESET = "Invalid or expired reset token"


class AuthErrorCode(str, Enum):
    """Failure kinds; the HTTP layer maps each one to a status code."""
    VALIDATION = "validation_error"
    DUPLICATE_IDENTITY = "duplicate_identity"
    INVALID_CREDENTIALS = "invalid_credentials"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNEXPECTED = "unexpected"


@dataclass
class AuthResult:
    """Authentication result."""
    success: bool
    token: Optional[str] = None
    user: Optional[User] = None
    users: Optional[List[User]] = None
    otp_code: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[AuthErrorCode] = None

    def to_dict(self) -> dict:
        result = {"success": self.success}
        if self.token:
            result["token"] = self.token
        if self.user:
            result["user"] = self.user.to_public_dict()
        if self.users is not None:
            result["users"] = [u.to_public_dict() for u in self.users]
        if self.error:
            result["error"] = self.error
            result["error_code"] = self.error_code.value if self.error_code else None
        return result


def _fail(code: AuthErrorCode, message: str) -> AuthResult:
    return AuthResult(success=False, error=message, error_code=code)


def _unexpected(operation: str) -> AuthResult:
    logger.exception(f"{operation} failed")
    return _fail(AuthErrorCode.UNEXPECTED, SERVER_ERROR)


class UserAuthService:
    """
    Service for user authentication.

    Handles:
    - User registration (name, email, phone, password, optional role)
    - Login with email and password
    - Login with a one-time code sent to the phone
    - Current-session resolution and Admin-only listing
    - Password change and reset
    """

    def __init__(
        self,
        jwt_handler: Optional[JWTHandler] = None,
        user_store: Optional[UserStore] = None,
        otp_manager: Optional[OTPManager] = None,
        allow_self_assigned_role: bool = True
    ):
        """
        Initialize auth service.

        Args:
            jwt_handler: Optional JWT handler (creates default if not provided)
            user_store: Optional user store (creates default if not provided)
            otp_manager: Optional OTP manager (creates default if not provided)
            allow_self_assigned_role: Let registrants pick their own role
        """
        self.jwt = jwt_handler or JWTHandler()
        self.users = user_store or UserStore()
        self.otp = otp_manager or OTPManager()
        self.allow_self_assigned_role = allow_self_assigned_role
        self._dummy_digest: Optional[str] = None

    def _dummy_hash(self) -> str:
        """Digest at the current work factor, checked when no real hash exists."""
        handler = self.users.password_handler
        if self._dummy_digest is None or handler.needs_rehash(self._dummy_digest):
            self._dummy_digest = handler.hash("no-such-account")
        return self._dummy_digest

    def _session(self, user: User, auth_type: str) -> AuthResult:
        token = self.jwt.create_access_token(
            user_id=user.user_id,
            role=user.role,
            auth_type=auth_type
        )
        user.password_hash = None
        return AuthResult(success=True, token=token, user=user)

    def register(
        self,
        name: str,
        email: Optional[str],
        phone: str,
        password: str,
        role: Optional[str] = None
    ) -> AuthResult:
        """
        Register a new user.

        Args:
            name: Display name
            email: Email address
            phone: Phone number
            password: Password (min 6 chars)
            role: "User" (default) or "Admin"

        Returns:
            AuthResult with the new user and a session token if successful
        """
        try:
            requested_role = role or Role.USER.value
            if requested_role not in [r.value for r in Role]:
                return _fail(AuthErrorCode.VALIDATION, f"Invalid role: {requested_role}")

            if requested_role != Role.USER.value and not self.allow_self_assigned_role:
                logger.warning(f"Rejected self-assigned role {requested_role} at registration")
                return _fail(AuthErrorCode.FORBIDDEN, "Not authorized to assign this role")

            if email and self.users.email_exists(email):
                return _fail(AuthErrorCode.DUPLICATE_IDENTITY, USER_EXISTS)

            if self.users.phone_exists(phone):
                return _fail(AuthErrorCode.DUPLICATE_IDENTITY, USER_EXISTS)

            user = self.users.create_user(
                name=name,
                phone=phone,
                password=password,
                email=email,
                role=requested_role
            )

            logger.info(f"User registered: {user.user_id}")
            return self._session(user, "password")

        except DuplicateKeyError as e:
            # Lost a race with a concurrent registration
            logger.info(f"Registration rejected, duplicate {e.field_name}")
            return _fail(AuthErrorCode.DUPLICATE_IDENTITY, USER_EXISTS)
        except IdentityValidationError as e:
            return _fail(AuthErrorCode.VALIDATION, str(e))
        except Exception:
            return _unexpected("Registration")

    def login_password(self, email: str, password: str) -> AuthResult:
        """
        Login with email and password.

        Args:
            email: Email address
            password: Password

        Returns:
            AuthResult with a session token if successful
        """
        try:
            user = self.users.get_by_email(email, include_password=True) if email else None

            if not user or not user.password_hash:
                # Pay the bcrypt cost anyway so timing does not reveal the email
                self.users.password_handler.verify(password or "x", self._dummy_hash())
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_LOGIN)

            if not self.users.password_handler.verify(password, user.password_hash):
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_LOGIN)

            if (
                self.users.password_handler.needs_rehash(user.password_hash)
                and password_problem(password) is None
            ):
                self.users.set_password(user.user_id, password)
                logger.info(f"Rehashed password for {user.user_id}")

            logger.info(f"User logged in: {user.user_id}")
            return self._session(user, "password")

        except Exception:
            return _unexpected("Login")

    def get_current_user(self, user_id: str) -> AuthResult:
        """
        Resolve the caller's own identity.

        Args:
            user_id: Id taken from an already verified session token

        Returns:
            AuthResult with the user, or NOT_FOUND
        """
        try:
            user = self.users.get_by_id(user_id)
            if not user:
                return _fail(AuthErrorCode.NOT_FOUND, "User not found")
            return AuthResult(success=True, user=user)

        except Exception:
            return _unexpected("Current user lookup")

    def list_users(self, caller_role: str) -> AuthResult:
        """
        List every user. Admin only.

        Args:
            caller_role: Role of the authenticated caller

        Returns:
            AuthResult with users, or FORBIDDEN
        """
        if caller_role != Role.ADMIN.value:
            return _fail(AuthErrorCode.FORBIDDEN, "Not authorized")

        try:
            return AuthResult(success=True, users=self.users.list_users())
        except Exception:
            return _unexpected("User listing")

    def request_otp(self, phone: str) -> AuthResult:
        """
        Issue a one-time login code for a phone.

        The code is returned in otp_code for the delivery channel and
        mirrored onto the matching identity, if one exists.
        """
        try:
            record = self.otp.issue_record(phone)

            user = self.users.get_by_phone(phone)
            if user:
                user = self.users.set_otp_challenge(
                    user.user_id,
                    record.code,
                    record.expires_at(self.otp.ttl_seconds)
                )

            return AuthResult(success=True, user=user, otp_code=record.code)

        except IdentityValidationError as e:
            return _fail(AuthErrorCode.VALIDATION, str(e))
        except Exception:
            return _unexpected("OTP request")

    def login_otp(self, phone: str, code: str) -> AuthResult:
        """
        Login with a one-time code. Each code works once.

        Returns:
            AuthResult with a session token if successful
        """
        try:
            if not self.otp.verify(phone, code):
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_OTP)

            user = self.users.get_by_phone(phone)
            if not user:
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_OTP)

            if user.otp_challenge:
                user = self.users.clear_otp_challenge(user.user_id)

            logger.info(f"OTP login: {user.user_id}")
            return self._session(user, "sms_otp")

        except Exception:
            return _unexpected("OTP login")

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str
    ) -> AuthResult:
        """
        Change a user's password.

        Args:
            user_id: User's id
            current_password: Current password for verification
            new_password: New password to set

        Returns:
            AuthResult indicating success or failure
        """
        try:
            user = self.users.get_by_id(user_id, include_password=True)
            if not user or not self.users.password_handler.verify(current_password, user.password_hash):
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, "Current password is incorrect")

            problem = password_problem(new_password)
            if problem:
                return _fail(AuthErrorCode.VALIDATION, problem)

            user = self.users.set_password(user_id, new_password)

            logger.info(f"Password changed for: {user_id}")
            return AuthResult(success=True, user=user)

        except Exception:
            return _unexpected("Password change")

    def request_password_reset(self, email: str) -> AuthResult:
        """
        Issue a 1 hour reset token and record it on the identity.

        The token is returned for the delivery channel.
        """
        try:
            user = self.users.get_by_email(email) if email else None
            if not user:
                return _fail(AuthErrorCode.NOT_FOUND, "User not found")

            token = self.jwt.create_reset_token(user.user_id, user.role)
            # Stored expiry mirrors the token's own exp claim
            expires_at = self.jwt.get_token_expiry(token)
            user = self.users.set_reset_challenge(user.user_id, token, expires_at)

            logger.info(f"Password reset requested for {user.user_id}")
            return AuthResult(success=True, user=user, token=token)

        except Exception:
            return _unexpected("Password reset request")

    def reset_password(self, token: str, new_password: str) -> AuthResult:
        """
        Set a new password using a reset token. Each token works once.

        Returns:
            AuthResult with the user if successful
        """
        try:
            check = self.jwt.check_token(token)
            if not check.valid or check.payload.token_type != "reset":
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_RESET)

            problem = password_problem(new_password)
            if problem:
                return _fail(AuthErrorCode.VALIDATION, problem)

            user = self.users.redeem_reset_challenge(check.payload.user_id, token, new_password)
            if not user:
                return _fail(AuthErrorCode.INVALID_CREDENTIALS, INVALID_RESET)

            return AuthResult(success=True, user=user)

        except IdentityValidationError as e:
            return _fail(AuthErrorCode.VALIDATION, str(e))
        except Exception:
            return _unexpected("Password reset")
