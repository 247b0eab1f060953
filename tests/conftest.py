"""Shared fixtures for all tests."""

from collections.abc import Callable, Generator

import pytest


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear all chunkload environment variables for testing.

    This ensures tests don't pick up tuning or credentials from the environment.
    """
    env_vars_to_clear = [
        # Upload tuning
        "CHUNKLOAD_PART_SIZE",
        "CHUNKLOAD_CONCURRENCY",
        "CHUNKLOAD_ADMISSION",
        "CHUNKLOAD_ABORT_ON_FAILURE",
        "CHUNKLOAD_CANCEL_ON_FAILURE",
        # HTTP backend
        "CHUNKLOAD_API_URL",
        "CHUNKLOAD_TIMEOUT",
        "CHUNKLOAD_TOKEN",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def make_payload() -> Callable[[int], bytes]:
    """Deterministic, non-repeating-per-part payload bytes of a given length."""

    def factory(length: int) -> bytes:
        pattern = bytes(range(251))
        repeats = length // len(pattern) + 1
        return (pattern * repeats)[:length]

    return factory


@pytest.fixture
def mock_token() -> str:
    return "chunkload_test_token_123456789"
