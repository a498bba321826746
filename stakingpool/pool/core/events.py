"""
Pool events.

Contract invocations record events on their Context while they run. The
events of an invocation reach subscribers only after it commits, in the
order they were recorded; a rolled back invocation publishes nothing.
"""
from typing import Dict, List, Callable, Any, Iterable, Tuple
import logging

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({
    "log",
    "initialized",
    "deposit",
    "withdraw",
    "stake",
    "unstake",
    "rewards",
    "stake_action_failed",
    "staking_key_updated",
    "reward_fee_updated",
    "paused",
    "resumed",
})

# Subscribes to every event type; listeners get `event_type` as a keyword
ALL_EVENTS = "*"

Listener = Callable[..., Any]


class EventBus:
    """Synchronous pub/sub for committed pool events."""

    def __init__(self):
        self.listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, event_type: str, callback: Listener) -> None:
        if event_type != ALL_EVENTS and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown pool event: {event_type}")
        self.listeners.setdefault(event_type, []).append(callback)
        logger.debug(f"Subscribed to pool event: {event_type}")

    def unsubscribe(self, event_type: str, callback: Listener) -> None:
        try:
            self.listeners.get(event_type, []).remove(callback)
        except ValueError:
            logger.warning(f"Callback not found for pool event: {event_type}")

    def emit(self, event_type: str, **data: Any) -> None:
        """
        Delivers one event to its listeners, then to the catch-all listeners.

        A failing listener is logged and does not affect the other listeners
        or the invocation that produced the event.
        """
        targets = [(cb, data) for cb in self.listeners.get(event_type, [])]
        targets += [(cb, dict(data, event_type=event_type)) for cb in self.listeners.get(ALL_EVENTS, [])]

        for callback, payload in targets:
            try:
                callback(**payload)
            except Exception as e:
                logger.error(f"Error in listener for pool event {event_type}: {e}", exc_info=True)

    def publish(self, events: Iterable[Tuple[str, Dict[str, Any]]]) -> int:
        """Emits the events of one committed invocation. Returns how many were sent."""
        count = 0
        for event_type, data in events:
            self.emit(event_type, **data)
            count += 1
        return count

    def clear(self, event_type: str = None) -> None:
        if event_type:
            self.listeners.pop(event_type, None)
        else:
            self.listeners.clear()


event_bus = EventBus()
