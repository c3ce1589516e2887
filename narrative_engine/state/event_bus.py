"""
Event bus for narrative state changes.

Provides decoupled communication between the story graph, the capability
registry, the save system and whatever presentation layer is listening.
Components subscribe to topics and react without tight coupling.

Usage:
    from .event_bus import EventBus, EventType

    # One bus per engine, injected into every component
    bus = EventBus()
    bus.subscribe(EventType.CHECKPOINT_REACHED, my_handler)

    # Publish (in the story graph when state changes)
    bus.publish(EventType.CHECKPOINT_REACHED, checkpoint_id="forest_gate")

    # Handler receives event
    def my_handler(event: GameEvent):
        print(f"Reached {event.data['checkpoint_id']}!")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

MAX_PUBLISH_DEPTH = 8


class EventType(str, Enum):
    """Topics published by the engine."""

    # Story events
    EVENT_TRIGGERED = "story.eventTriggered"
    DIALOGUE_TRIGGERED = "story.dialogueTriggered"
    CUTSCENE_TRIGGERED = "story.cutsceneTriggered"
    SYSTEMIC_TRIGGERED = "story.systemicTriggered"
    FLAG_CHANGED = "story.flagChanged"
    CHECKPOINT_REACHED = "story.checkpointReached"
    STORY_POWER_UNLOCKED = "story.powerUnlocked"

    # Capability events
    POWER_UNLOCKED = "power.unlocked"
    POWER_ACTIVATED = "power.activated"
    POWER_DEACTIVATED = "power.deactivated"

    # Inventory events
    ITEM_ADDED = "inventory.itemAdded"
    ITEM_REMOVED = "inventory.itemRemoved"

    # State events
    STATE_SYNCHRONIZED = "state.synchronized"

    # Save events
    SAVE_NOTIFICATION = "save.notification"
    SAVE_ERROR = "save.error"


def topic_name(topic: "EventType | str") -> str:
    """Normalize a topic to its string form."""
    if isinstance(topic, EventType):
        return topic.value
    return str(topic)


@dataclass
class GameEvent:
    """
    Event payload for the event bus.

    Attributes:
        topic: Topic the event was published on (string form)
        data: Event-specific payload as dict
        timestamp: When the event was published
    """

    topic: str
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def type(self) -> EventType | None:
        """The matching EventType, or None for ad hoc topics."""
        try:
            return EventType(self.topic)
        except ValueError:
            return None

    def __str__(self) -> str:
        return f"[{self.topic}] {self.data}"


# Type alias for event handlers
EventHandler = Callable[[GameEvent], None]


class EventBus:
    """
    Synchronous event bus.

    Handlers are called immediately on publish(), in the order they
    subscribed, before publish() returns.

    Design decisions:
    - Synchronous: cross-component effects settle within one tick
    - Fault isolated: a failing handler is logged, the rest still run
    - Bounded: nested publishes deeper than max_depth are dropped
    """

    def __init__(self, max_depth: int = MAX_PUBLISH_DEPTH, history_limit: int = 100):
        self._listeners: dict[str, list[EventHandler]] = {}
        self._history: list[GameEvent] = []
        self._history_limit = history_limit
        self._max_depth = max_depth
        self._depth = 0

    @property
    def max_depth(self) -> int:
        """Deepest nested publish that still reaches handlers."""
        return self._max_depth

    def subscribe(self, topic: EventType | str, handler: EventHandler) -> None:
        """
        Subscribe to a topic.

        Subscribing the same handler twice is a no-op.

        Args:
            topic: The topic to listen for
            handler: Callback function that receives GameEvent
        """
        handlers = self._listeners.setdefault(topic_name(topic), [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, topic: EventType | str, handler: EventHandler) -> None:
        """
        Unsubscribe from a topic.

        Args:
            topic: The topic to unsubscribe from
            handler: The handler to remove
        """
        handlers = self._listeners.get(topic_name(topic))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: EventType | str, **data) -> GameEvent:
        """
        Publish an event to all subscribers.

        Args:
            topic: The topic to publish on
            **data: Event-specific data

        Returns:
            The published GameEvent (for chaining/testing)
        """
        event = GameEvent(topic=topic_name(topic), data=data)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        if self._depth >= self._max_depth:
            logger.error(
                f"Dropped {event.topic}: publish depth {self._depth} exceeds {self._max_depth}"
            )
            return event

        # Copy so handlers may unsubscribe while being notified
        handlers = list(self._listeners.get(event.topic, []))
        self._depth += 1
        try:
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    logger.exception(f"Error in handler for {event.topic}")
        finally:
            self._depth -= 1

        return event

    def clear(self) -> None:
        """Clear all listeners. Useful for testing."""
        self._listeners.clear()

    def get_history(self, topic: EventType | str | None = None) -> list[GameEvent]:
        """
        Get recent event history.

        Args:
            topic: Filter by topic, or None for all events

        Returns:
            List of recent events
        """
        if topic is None:
            return list(self._history)
        name = topic_name(topic)
        return [e for e in self._history if e.topic == name]

    def listener_count(self, topic: EventType | str) -> int:
        """Get number of listeners for a topic."""
        return len(self._listeners.get(topic_name(topic), []))
