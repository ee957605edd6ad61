"""
NBA Service Factory

Factory for creating NBA service instances with proper dependency injection.
"""

import logging
from typing import Iterable, Optional

from core.config import Settings, configure_logging, get_settings

from .models import Customer
from .nba_repository import InMemoryNbaRepository
from .nba_service import NbaService
from .protocols import EventBusProtocol, NbaRepositoryProtocol

logger = logging.getLogger(__name__)


class NbaServiceFactory:
    """Factory for creating NBA service components"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        repository: Optional[NbaRepositoryProtocol] = None,
        event_bus: Optional[EventBusProtocol] = None,
        customers: Optional[Iterable[Customer]] = None,
    ):
        self.settings = settings or get_settings()
        self._repository = repository
        self._event_bus = event_bus
        self._customers = customers
        self._service: Optional[NbaService] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        configure_logging(self.settings.logging)
        logger.info("Initializing NBA Service components...")

        # Default to the in-process store when no repository was injected
        if self._repository is None:
            self._repository = InMemoryNbaRepository(customers=self._customers)
        await self._repository.initialize()

        if self._event_bus is None:
            logger.info("No event bus configured, domain events will be skipped")

        self._service = NbaService(
            repository=self._repository,
            event_bus=self._event_bus,
            config=self.settings.nba,
        )

        logger.info("NBA Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing NBA Service components...")

        if self._repository:
            await self._repository.close()

        self._service = None
        logger.info("NBA Service components closed")

    @property
    def repository(self) -> NbaRepositoryProtocol:
        """Get NBA repository"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._repository

    @property
    def service(self) -> NbaService:
        """Get NBA service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def event_bus(self) -> Optional[EventBusProtocol]:
        """Get event bus"""
        return self._event_bus


# Global factory instance
_factory: Optional[NbaServiceFactory] = None


async def get_factory() -> NbaServiceFactory:
    """Get or create factory instance"""
    global _factory
    if _factory is None:
        _factory = NbaServiceFactory()
        await _factory.initialize()
    return _factory


async def close_factory() -> None:
    """Close factory instance"""
    global _factory
    if _factory:
        await _factory.close()
        _factory = None


__all__ = [
    "NbaServiceFactory",
    "get_factory",
    "close_factory",
]
