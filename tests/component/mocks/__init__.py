"""
Component Test Mocks

Shared mock implementations for component testing.
The repository itself runs in-process, so only the event bus is mocked.
"""

from .event_bus_mock import MockEventBus

__all__ = [
    'MockEventBus',
]
