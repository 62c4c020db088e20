"""In-process publish/subscribe event bus.

An EventBus instance is created by the composition root and passed by
reference to the components that publish or subscribe. Handlers run
synchronously on ``publish``; ``publish_background`` hands the event to a
thread pool owned by the bus. A failing handler is logged and never
affects the publisher or the other handlers.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from infrastructure.events.models import Event
from infrastructure.logging import get_module_logger

logger = get_module_logger()

WILDCARD = "*"

EventHandler = Callable[[Event], Any]


class EventBus:
    """Publish/subscribe channel for in-process events.

    Args:
        max_workers: Threads used by publish_background
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._shutdown = False

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe handler to event_type ("*" receives every event).

        Returns:
            A callable that removes the subscription.
        """
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            total = len(self._handlers[event_type])

        logger.debug(
            "event_handler_subscribed",
            handler=getattr(handler, "__name__", repr(handler)),
            event_type=event_type,
            total_handlers=total,
        )

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def handlers_for(self, event_type: str) -> List[EventHandler]:
        """Handlers that would receive an event of event_type, in call order."""
        with self._lock:
            return list(self._handlers.get(event_type, [])) + list(
                self._handlers.get(WILDCARD, [])
            )

    def publish(self, event: Event) -> List[Any]:
        """Dispatch event synchronously to all subscribed handlers.

        Returns:
            Return values of the handlers that succeeded.
        """
        results = []
        handlers = self.handlers_for(event.event_type)

        logger.debug(
            "publishing_event",
            event_type=event.event_type,
            handler_count=len(handlers),
            correlation_id=str(event.correlation_id),
        )

        for handler in handlers:
            try:
                results.append(handler(event))
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    event_type=event.event_type,
                    error=str(e),
                    correlation_id=str(event.correlation_id),
                    exc_info=True,
                )

        return results

    def publish_background(self, event: Event) -> Optional[Future]:
        """Submit the event for dispatch on the bus thread pool.

        Returns:
            The Future of the dispatch, or None once the bus is shut down.
        """
        with self._lock:
            if self._shutdown:
                logger.error(
                    "event_bus_unavailable",
                    event_type=event.event_type,
                    correlation_id=str(event.correlation_id),
                )
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="event-bus"
                )
            executor = self._executor
        return executor.submit(self.publish, event)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background pool. Idempotent."""
        with self._lock:
            executor = self._executor
            self._executor = None
            self._shutdown = True
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.debug("event_bus_shut_down", wait=wait)

    def clear(self) -> None:
        """Remove every subscription (for tests)."""
        with self._lock:
            self._handlers.clear()
