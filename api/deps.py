"""
API dependencies.

Provides dependency injection for services and the session guard.
"""

import logging
from typing import Optional, Annotated
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from accounts.config import load_config, Config
from accounts.services import UserAuthService
from accounts.auth import JWTHandler, UserStore, PasswordHandler, OTPManager, OTPStore

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Deliberately one message for every token failure
NOT_AUTHORIZED = "Not authorized, token failed"


@dataclass
class Services:
    """Container for all services."""
    config: Config
    jwt: JWTHandler
    users: UserStore
    otp: OTPManager
    user_auth: UserAuthService


@dataclass
class CurrentSession:
    """What the session guard hands to the routes."""
    user_id: str
    role: str


# Global services instance (singleton)
_services: Optional[Services] = None


def build_services(config: Config) -> Services:
    """Construct every service handle from a config."""
    jwt = JWTHandler(
        secret_key=config.auth.jwt_secret_key or None,
        session_expires_in=config.auth.session_token_expire_seconds
    )
    users = UserStore(
        file_path=config.storage.users_file,
        password_handler=PasswordHandler(rounds=config.auth.bcrypt_rounds),
        default_country_code=config.auth.default_country_code
    )
    otp = OTPManager(
        OTPStore(file_path=config.storage.otps_file, ttl_seconds=config.otp.ttl_seconds),
        code_length=config.otp.code_length,
        default_country_code=config.auth.default_country_code
    )
    user_auth = UserAuthService(
        jwt,
        users,
        otp,
        allow_self_assigned_role=config.auth.allow_self_assigned_role
    )

    return Services(config=config, jwt=jwt, users=users, otp=otp, user_auth=user_auth)


def get_services() -> Services:
    """
    Get or create the services singleton.

    This initializes all services on first call.
    """
    global _services

    if _services is None:
        logger.info("Initializing services...")
        _services = build_services(load_config())
        logger.info("Services initialized successfully")

    return _services


def close_services():
    """Drop the services singleton."""
    global _services
    if _services:
        _services = None
        logger.info("Services closed")


# Dependency for getting services
def services_dep() -> Services:
    """FastAPI dependency for services."""
    return get_services()


ServicesDep = Annotated[Services, Depends(services_dep)]


# Authentication dependencies

async def get_current_session(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    services: ServicesDep,
    token: Annotated[Optional[str], Cookie()] = None
) -> CurrentSession:
    """
    Session guard: accept a bearer token or a "token" cookie.

    Raises 401 without saying which check failed.
    """
    raw = credentials.credentials if credentials else token
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    check = services.jwt.check_token(raw)
    if not check.valid or check.payload.token_type != "access":
        reason = check.error.value if check.error else "wrong token type"
        logger.info(f"Rejected session token: {reason}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=NOT_AUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"}
        )

    return CurrentSession(user_id=check.payload.user_id, role=check.payload.role)


# Type aliases for dependencies
CurrentSessionDep = Annotated[CurrentSession, Depends(get_current_session)]
