"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - api/        : HTTP contract tests (ASGI transport, in-memory services)
    - component/  : Service tests with in-memory repositories and bus
    - unit/       : Pure functions, models and the messaging core (no I/O)
"""
import os
import sys

# Set testing environment BEFORE any project imports read settings
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["EVENT_BUS_BACKEND"] = "memory"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("PAYMENT_SERVICE_STRIPE_SECRET_KEY", None)

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from core.config import CommerceConfig, reload_settings
from tests.fixtures import FakeClock


# =============================================================================
# Test Configuration
# =============================================================================

@pytest.fixture(scope="session")
def settings() -> CommerceConfig:
    """Settings as loaded for the testing environment"""
    loaded = reload_settings()
    # No outbox polling during tests; dispatch happens after each commit
    loaded.messaging.outbox_interval_seconds = 3600
    return loaded


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock injected into services"""
    return FakeClock()


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "component: marks tests as component tests")
    config.addinivalue_line("markers", "api: marks tests as HTTP contract tests")
