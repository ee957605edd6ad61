"""
Event Bus Mock for Component Testing

Captures the domain events NbaService publishes (nba.created,
nba.version_bumped, nba.status_changed, nba.deleted, arbitration.decided)
and checks each one carries the service's event envelope.
"""
from typing import Any, Dict, List, Optional

ENVELOPE_KEYS = ("event_type", "source", "timestamp", "data")


class MockEventBus:
    """In-memory event bus for NBA domain events"""

    def __init__(self):
        self.published_events: List[Dict[str, Any]] = []
        self._publish_error: Optional[Exception] = None

    async def publish_event(self, event: Dict[str, Any]) -> None:
        if self._publish_error:
            raise self._publish_error
        missing = [k for k in ENVELOPE_KEYS if k not in event]
        assert not missing, f"Event envelope missing {missing}: {event}"
        self.published_events.append(event)

    async def close(self) -> None:
        self.published_events = []

    # Failure injection

    def set_error(self, error: Exception) -> None:
        self._publish_error = error

    def clear_error(self) -> None:
        self._publish_error = None

    # Lookups

    def event_types(self) -> List[str]:
        """Published event types in publish order"""
        return [e["event_type"] for e in self.published_events]

    def get_events_by_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.published_events if e["event_type"] == event_type]

    def events_for_nba(self, nba_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.published_events if e["data"].get("nba_id") == nba_id]

    def get_last_event(self) -> Optional[Dict[str, Any]]:
        return self.published_events[-1] if self.published_events else None

    def clear_events(self) -> None:
        self.published_events.clear()

    # Assertions

    def assert_event_published(
        self, event_type: str, data_match: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Return the first `event_type` event whose data contains `data_match`"""
        candidates = self.get_events_by_type(event_type)
        assert candidates, f"'{event_type}' not published; saw {self.event_types()}"

        wanted = data_match or {}
        for event in candidates:
            if all(event["data"].get(k) == v for k, v in wanted.items()):
                return event
        raise AssertionError(f"No '{event_type}' event with data {wanted}; got {candidates}")

    def assert_no_events_published(self, event_type: Optional[str] = None) -> None:
        seen = self.get_events_by_type(event_type) if event_type else self.published_events
        assert not seen, f"Unexpected events: {seen}"
