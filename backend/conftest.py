"""Root conftest: test environment, structlog over stdlib, and shared sync fixtures."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import configure_structlog
from sync.broadcast import BroadcastBus
from sync.cache import LocalCacheStore

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# caplog sees sync and hub events through stdlib logging.
configure_structlog()


@pytest.fixture(autouse=True)
def _clear_log_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def cache():
    """An open in-memory cache store shared by every context in the test."""
    store = LocalCacheStore(":memory:")
    store.open()
    yield store
    store.close()


@pytest.fixture
def bus():
    return BroadcastBus()
