"""Fixtures for integration tests using respx mocking."""

import pytest

from chunkload.config import HTTPConfig

# API base URL
MPU_API_BASE = "https://uploads.example.com/api"


@pytest.fixture
def http_config(mock_token: str) -> HTTPConfig:
    return HTTPConfig(base_url=MPU_API_BASE, timeout=5.0, token=mock_token)


# =============================================================================
# Error Response Fixtures
# =============================================================================


@pytest.fixture
def mock_error_not_found() -> dict:
    """Mock 404 response for an unknown or expired upload."""
    return {
        "error": {
            "code": "no_such_upload",
            "message": "The specified multipart upload does not exist.",
        }
    }


@pytest.fixture
def mock_error_unauthorized() -> dict:
    """Mock 401 Unauthorized error response."""
    return {
        "error": {
            "code": "unauthorized",
            "message": "Authentication required.",
        }
    }


@pytest.fixture
def mock_error_server_error() -> dict:
    """Mock 500 Internal Server Error response."""
    return {
        "error": {
            "code": "internal_server_error",
            "message": "An unexpected error occurred.",
        }
    }
