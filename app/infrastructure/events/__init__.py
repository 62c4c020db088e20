"""Infrastructure event system.

Provides the Event record and an injectable EventBus used for
delivery-status fan-out and for routing domain events to the planner.
"""

from infrastructure.events.bus import EventBus, EventHandler, WILDCARD
from infrastructure.events.models import Event

__all__ = ["Event", "EventBus", "EventHandler", "WILDCARD"]
