"""
NBA Service Component Test Configuration

Provides the in-memory repository, mocked event bus, service and
campaign-building fixtures for component testing.
"""
from typing import List, Optional

import pytest
import pytest_asyncio

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.contracts.nba.data_contract import (
    Actor,
    AudienceRequest,
    Channel,
    LegalStatus,
    Nba,
    NbaStatus,
    NbaTestDataFactory,
)
from tests.component.mocks import MockEventBus
from microservices.nba_service.nba_repository import InMemoryNbaRepository
from microservices.nba_service.nba_service import NbaService


# Transition path from Draft to live
PUBLISH_PATH = [
    NbaStatus.SUBMITTED,
    NbaStatus.IN_LEGAL_REVIEW,
    NbaStatus.APPROVED,
    NbaStatus.SCHEDULED,
    NbaStatus.PUBLISHING,
    NbaStatus.PUBLISHED,
]

# Transition path from a post-bump legal review back to live
REPUBLISH_PATH = PUBLISH_PATH[2:]


@pytest.fixture
def factory() -> NbaTestDataFactory:
    return NbaTestDataFactory()


@pytest.fixture
def actor(marketing_actor) -> Actor:
    return marketing_actor


@pytest.fixture
def legal(legal_actor) -> Actor:
    return legal_actor


@pytest.fixture
def repository() -> InMemoryNbaRepository:
    return InMemoryNbaRepository()


@pytest_asyncio.fixture
async def nba_service(repository, mock_event_bus: MockEventBus) -> NbaService:
    """NbaService over the in-memory repository"""
    await repository.initialize()
    service = NbaService(repository=repository, event_bus=mock_event_bus)
    yield service
    await repository.close()


@pytest.fixture
def build_nba(nba_service, factory, actor):
    """Create a Draft campaign with audience, action, benefit and templates"""

    async def _build(
        audience: Optional[AudienceRequest] = None,
        channels: Optional[List[Channel]] = None,
        **general,
    ) -> Nba:
        nba = await nba_service.create_nba(factory.make_general_request(**general), actor)
        await nba_service.save_audience(
            nba.nba_id, audience or factory.make_expiring_card_audience(), actor
        )
        await nba_service.save_action(nba.nba_id, factory.make_action(), actor)
        await nba_service.save_benefit(nba.nba_id, factory.make_benefit(), actor)
        if channels != []:
            await nba_service.save_comms(
                nba.nba_id, factory.make_comms_request(channels or [Channel.SMS]), actor
            )
        return await nba_service.get_nba(nba.nba_id)

    return _build


@pytest.fixture
def approve_templates(nba_service, repository, legal):
    """Approve every pending template on the campaign's current version"""

    async def _approve(nba_id: str) -> None:
        nba = await repository.get_nba(nba_id)
        for template in await repository.list_templates(nba_id, nba.current_version):
            if template.legal_status != LegalStatus.APPROVED:
                await nba_service.legal_decision(
                    template.template_id, LegalStatus.APPROVED, "Looks good", legal
                )

    return _approve


@pytest.fixture
def publish_nba(nba_service, approve_templates, actor):
    """Approve templates and walk a campaign to Published"""

    async def _publish(nba_id: str) -> Nba:
        await approve_templates(nba_id)
        nba = await nba_service.get_nba(nba_id)
        path = PUBLISH_PATH if nba.status == NbaStatus.DRAFT else REPUBLISH_PATH
        for status in path:
            nba = await nba_service.transition(nba_id, status, actor)
        return nba

    return _publish


@pytest.fixture
def add_customer(repository):
    async def _add(customer):
        return await repository.save_customer(customer)

    return _add
