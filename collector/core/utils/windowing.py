"""
Bounded buffering utilities for interaction tracking.

Keeps the most recent interaction events for feature computation while
counting every event ever seen, so long sessions stay memory-bounded.
"""

from typing import Any, List, Tuple
from collections import deque


class BoundedEventBuffer:
    """Fixed-capacity buffer of timestamped events."""

    def __init__(self, max_events: int):
        """
        Initialize bounded buffer.

        Args:
            max_events: Maximum number of events retained; oldest are evicted first
        """
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.max_events = max_events
        self.events = deque(maxlen=max_events)
        self.total_seen = 0

    def add_event(self, timestamp: int, event: Any):
        """Add event to buffer."""
        self.events.append((timestamp, event))
        self.total_seen += 1

    def get_events(self) -> List[Tuple[int, Any]]:
        """Get all retained events, oldest first."""
        return list(self.events)

    def size(self) -> int:
        """Get number of retained events."""
        return len(self.events)

    def clear(self):
        """Clear retained events and the running total."""
        self.events.clear()
        self.total_seen = 0
