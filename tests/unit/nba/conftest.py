"""
Unit Test Fixtures for NBA Service

Provides pure fixtures for rule, scoring, transition and diff tests.
Uses NbaTestDataFactory from the data contract.
"""

import pytest

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.nba.data_contract import (
    AudienceConfig,
    NbaTestDataFactory,
)


@pytest.fixture
def factory() -> NbaTestDataFactory:
    return NbaTestDataFactory()


@pytest.fixture
def expiring_card_audience(factory) -> AudienceConfig:
    """Card expiring within 45 days AND SMS consent, minus HIGH_COMPLAINT_RISK"""
    request = factory.make_expiring_card_audience(within_days=45)
    return AudienceConfig(rules=request.rules, exclusions=request.exclusions)
