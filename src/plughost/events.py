"""
Named-event pub/sub.

Used both as the core lifecycle bus (``plugin:loaded`` and friends) and as
the in-process stand-in for the external live-event source.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List
import inspect
import logging
import threading

logger = logging.getLogger(__name__)

PLUGIN_LOADED = "plugin:loaded"
PLUGIN_UNLOADED = "plugin:unloaded"
PLUGIN_ENABLED = "plugin:enabled"
PLUGIN_DISABLED = "plugin:disabled"
PLUGIN_RELOADED = "plugin:reloaded"
PLUGIN_DELETED = "plugin:deleted"

LIFECYCLE_EVENTS = (
    PLUGIN_LOADED,
    PLUGIN_UNLOADED,
    PLUGIN_ENABLED,
    PLUGIN_DISABLED,
    PLUGIN_RELOADED,
    PLUGIN_DELETED,
)


class EventPriority(int, Enum):
    """Subscriber execution priority."""
    HIGHEST = 0
    HIGH = 25
    NORMAL = 50
    LOW = 75
    LOWEST = 100


@dataclass
class Subscription:
    """A subscribed event handler."""
    event: str
    handler: Callable
    priority: EventPriority = EventPriority.NORMAL


class EventBus:
    """Deliver named events to subscribers in priority order.

    A failing subscriber is logged and never stops delivery to the others.
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self.subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def on(
        self,
        event: str,
        handler: Callable,
        priority: EventPriority = EventPriority.NORMAL
    ) -> Subscription:
        """Subscribe a handler. Returns the subscription."""
        subscription = Subscription(event=event, handler=handler, priority=priority)
        with self._lock:
            handlers = self.subscriptions.setdefault(event, [])
            handlers.append(subscription)
            # Stable sort keeps registration order within a priority
            handlers.sort(key=lambda s: s.priority.value)
        return subscription

    def off(self, event: str, handler: Callable) -> bool:
        """Remove the first subscription of ``handler`` to ``event``."""
        with self._lock:
            handlers = self.subscriptions.get(event, [])
            for i, subscription in enumerate(handlers):
                if subscription.handler is handler:
                    del handlers[i]
                    if not handlers:
                        del self.subscriptions[event]
                    return True
        return False

    async def emit(self, event: str, *args, **kwargs) -> List[Any]:
        """Call every handler for an event and collect the results."""
        with self._lock:
            handlers = list(self.subscriptions.get(event, []))
        results = []

        for subscription in handlers:
            try:
                result = subscription.handler(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                results.append(result)
            except Exception as e:
                logger.error(f"{self.name}: handler for {event} failed: {e}")
                results.append(None)

        return results

    def listener_count(self, event: str) -> int:
        return len(self.subscriptions.get(event, []))

    def list_events(self) -> Dict[str, int]:
        """List all events with subscriber counts."""
        return {event: len(handlers) for event, handlers in self.subscriptions.items()}
