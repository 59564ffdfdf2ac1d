"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers (Top-Down TDD):
    - integration/: Repository tests against a real PostgreSQL
    - component/  : Component tests (mocked dependencies, FastAPI TestClient)
    - unit/       : Unit tests (pure functions, no I/O)
    - contracts/  : Test data factories shared by every layer
"""
import os
import sys
from typing import Dict, List

import pytest

# Set testing environment BEFORE any service imports
os.environ.setdefault("ENV", "testing")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICES = {
        "account_service": 8202,
        "notification_service": 8206,
        "withdrawal_service": 8240,
    }

    # Infrastructure
    POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
    NATS_URL = os.getenv("NATS_URL", "nats://localhost:4222")

    # Timeouts
    HTTP_TIMEOUT = 30
    DB_TIMEOUT = 10

    @classmethod
    def get_service_url(cls, service_name: str) -> str:
        port = cls.SERVICES.get(service_name)
        if not port:
            raise ValueError(f"Unknown service: {service_name}")
        return f"http://localhost:{port}"


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        """Assert HTTP response is successful"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        """Assert dict has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")


def pytest_collection_modifyitems(config, items):
    """Skip database tests when asked to"""
    skip_db = pytest.mark.skip(reason="PostgreSQL tests disabled (SKIP_DB_TESTS)")
    for item in items:
        if "integration" in item.keywords and os.getenv("SKIP_DB_TESTS"):
            item.add_marker(skip_db)
