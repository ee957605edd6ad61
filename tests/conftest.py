"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (in-memory repository, mocked event bus)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys
from datetime import datetime, timezone

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from microservices.nba_service.models import Actor, ActorRole


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def fixed_now() -> datetime:
    """Reference clock for pure rule and scoring tests"""
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def marketing_actor() -> Actor:
    return Actor(actor_id="usr_marketing_1", role=ActorRole.MARKETING)


@pytest.fixture
def legal_actor() -> Actor:
    return Actor(actor_id="usr_legal_1", role=ActorRole.LEGAL)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
