"""
Pytest configuration and shared fixtures.

This module provides common fixtures for testing:
- JWT handling
- User and OTP stores on temporary files
- The auth service
- API clients wired to real services
"""

import os
import sys
import json
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Set test environment before imports
os.environ["JWT_SECRET_KEY"] = "test_jwt_secret_key_for_testing_only_32bytes!"

from accounts.config import Config, AuthConfig, OTPConfig, StorageConfig
from accounts.auth import JWTHandler, UserStore, User, PasswordHandler, OTPManager, OTPStore
from accounts.services import UserAuthService

# Low work factor keeps the suite fast
TEST_BCRYPT_ROUNDS = 4


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture(scope="session")
def test_config():
    """Test configuration values."""
    return {
        "jwt_secret": "test_jwt_secret_key_for_testing_only_32bytes!",
        "test_phone": "+15550001",
        "test_email": "a@x.com",
        "test_password": "secret1",
        "test_user_name": "A",
    }


# =============================================================================
# JWT Fixtures
# =============================================================================

@pytest.fixture
def jwt_handler(test_config) -> JWTHandler:
    """Create a JWTHandler with test secret."""
    return JWTHandler(secret_key=test_config["jwt_secret"])


@pytest.fixture
def valid_access_token(jwt_handler) -> str:
    """Create a valid session token for a plain user."""
    return jwt_handler.create_access_token(user_id="test-user-id-123", role="User")


@pytest.fixture
def expired_token(jwt_handler) -> str:
    """Create an expired session token."""
    return jwt_handler.create_access_token(
        user_id="test-user-id-123",
        role="User",
        expires_in=-1  # Already expired
    )


# =============================================================================
# Store Fixtures
# =============================================================================

def _temp_json_file() -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        json.dump({}, f)
        return Path(f.name)


@pytest.fixture
def temp_user_file() -> Generator[Path, None, None]:
    """Create a temporary file for user storage."""
    temp_path = _temp_json_file()
    yield temp_path
    if temp_path.exists():
        temp_path.unlink()


@pytest.fixture
def temp_otp_file() -> Generator[Path, None, None]:
    """Create a temporary file for OTP storage."""
    temp_path = _temp_json_file()
    yield temp_path
    if temp_path.exists():
        temp_path.unlink()


@pytest.fixture
def password_handler() -> PasswordHandler:
    """Create a PasswordHandler with the default work factor."""
    return PasswordHandler()


@pytest.fixture
def user_store(temp_user_file) -> UserStore:
    """Create a UserStore with temporary file."""
    return UserStore(
        file_path=temp_user_file,
        password_handler=PasswordHandler(rounds=TEST_BCRYPT_ROUNDS)
    )


@pytest.fixture
def otp_store(temp_otp_file) -> OTPStore:
    """Create an OTPStore with temporary file."""
    return OTPStore(file_path=temp_otp_file)


@pytest.fixture
def otp_manager(otp_store) -> OTPManager:
    return OTPManager(otp_store)


@pytest.fixture
def sample_user(user_store, test_config) -> User:
    """Create a sample user in the store."""
    return user_store.create_user(
        name=test_config["test_user_name"],
        phone=test_config["test_phone"],
        password=test_config["test_password"],
        email=test_config["test_email"]
    )


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def auth_service(jwt_handler, user_store, otp_manager) -> UserAuthService:
    return UserAuthService(jwt_handler, user_store, otp_manager)


@pytest.fixture
def app_config(temp_user_file, temp_otp_file, test_config) -> Config:
    """Config pointing at temporary files."""
    return Config(
        auth=AuthConfig(
            jwt_secret_key=test_config["jwt_secret"],
            bcrypt_rounds=TEST_BCRYPT_ROUNDS,
            allow_self_assigned_role=True
        ),
        otp=OTPConfig(),
        storage=StorageConfig(users_file=temp_user_file, otps_file=temp_otp_file)
    )


@pytest.fixture
def services(app_config):
    """Real service container built on temporary files."""
    from api.deps import build_services
    return build_services(app_config)


# =============================================================================
# API Client Fixtures
# =============================================================================

@pytest.fixture
def api_app():
    """Create FastAPI app for testing."""
    from api.main import app
    return app


@pytest.fixture
def api_client(api_app, services) -> Generator[TestClient, None, None]:
    """Test client whose requests use the temporary-file services."""
    with patch("api.deps.get_services", return_value=services):
        yield TestClient(api_app)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
    config.addinivalue_line(
        "markers", "api: mark test as API endpoint test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
