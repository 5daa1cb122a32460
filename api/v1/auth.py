"""
Authentication endpoints.

Handles registration, login, the caller's own profile and the
Admin-only user listing.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from accounts.auth import User
from accounts.services import AuthResult, AuthErrorCode
from ..deps import ServicesDep, CurrentSessionDep

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    AuthErrorCode.VALIDATION: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.DUPLICATE_IDENTITY: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.UNEXPECTED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# Request/Response models

class RegisterRequest(BaseModel):
    """User registration request."""
    name: str = Field(..., description="Display name")
    email: Optional[str] = Field(None, description="Email address")
    phone: str = Field(..., description="Phone number (e.g., +15550001234)")
    password: str = Field(..., description="Password (min 6 chars)")
    role: Optional[str] = Field(None, description='"User" (default) or "Admin"')


class LoginRequest(BaseModel):
    """Login request."""
    email: str = Field(..., description="Email address")
    password: str = Field(..., description="Password")


class IdentityResponse(BaseModel):
    """Public identity fields."""
    id: str
    name: str
    email: Optional[str]
    phone: str
    role: str


class AuthResponse(IdentityResponse):
    """Identity plus a session token."""
    token: str


class UserDetailResponse(IdentityResponse):
    """Full identity for the Admin listing, credentials omitted."""
    is_otp_login: bool
    pincode: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    town_village: Optional[str] = None
    landmark: Optional[str] = None
    alternate_phone: Optional[str] = None
    card_data: dict = Field(default_factory=dict)
    created_at: str
    updated_at: str


def _identity_fields(user: User) -> dict:
    return {
        "id": user.user_id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
    }


def _raise_for(result: AuthResult):
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=result.error
    )


# Endpoints

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, services: ServicesDep):
    """
    Register a new user.

    Returns the identity and a session token on success.
    """
    result = services.user_auth.register(
        name=request.name,
        email=request.email,
        phone=request.phone,
        password=request.password,
        role=request.role
    )

    if not result.success:
        _raise_for(result)

    return AuthResponse(**_identity_fields(result.user), token=result.token)


@router.post("/login", response_model=AuthResponse)
def login(request: LoginRequest, services: ServicesDep):
    """
    Login with email and password.

    Returns the identity and a session token on success.
    """
    result = services.user_auth.login_password(
        email=request.email,
        password=request.password
    )

    if not result.success:
        _raise_for(result)

    return AuthResponse(**_identity_fields(result.user), token=result.token)


@router.get("/admin", response_model=IdentityResponse)
def get_current_user_info(session: CurrentSessionDep, services: ServicesDep):
    """
    Get the logged-in user's info.

    Requires valid session token.
    """
    result = services.user_auth.get_current_user(session.user_id)

    if not result.success:
        _raise_for(result)

    return IdentityResponse(**_identity_fields(result.user))


@router.get("/users", response_model=List[UserDetailResponse])
def list_users(session: CurrentSessionDep, services: ServicesDep):
    """
    List every user.

    Requires a session token with the Admin role.
    """
    result = services.user_auth.list_users(session.role)

    if not result.success:
        _raise_for(result)

    return [
        UserDetailResponse(
            **_identity_fields(user),
            is_otp_login=user.is_otp_login,
            pincode=user.pincode,
            city=user.city,
            state=user.state,
            address=user.address,
            town_village=user.town_village,
            landmark=user.landmark,
            alternate_phone=user.alternate_phone,
            card_data=user.card_data,
            created_at=user.created_at,
            updated_at=user.updated_at
        )
        for user in result.users
    ]
