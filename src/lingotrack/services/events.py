"""Event emitter for progress events consumed by analytics."""
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

MILESTONE_REACHED = "milestone_reached"
SESSION_STARTED = "session_started"
SESSION_ENDED = "session_ended"

EventHandler = Callable[[str, Dict[str, Any]], None]


class EventEmitter:
    """Dispatches named events to subscribed handlers."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event; "*" receives every event."""
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        if handler in self._handlers.get(event_name, []):
            self._handlers[event_name].remove(handler)

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Emit an event. Handler failures are logged and never reach the caller."""
        logger.debug("Emitting %s: %s", event_name, payload)
        for handler in list(self._handlers.get(event_name, [])) + list(self._handlers.get("*", [])):
            try:
                handler(event_name, payload)
            except Exception as e:
                logger.error("Error in %s handler %r: %s", event_name, handler, str(e))
