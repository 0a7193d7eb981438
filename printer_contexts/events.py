# printer_contexts/events.py

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Iterator, List, Optional, Tuple, Type

from .models import ContextInfo
from .printer_status import PrinterStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "event"
    context_id: str


@dataclass(frozen=True)
class ContextCreated(Event):
    name: ClassVar[str] = "context-created"
    info: ContextInfo


@dataclass(frozen=True)
class ContextSwitched(Event):
    name: ClassVar[str] = "context-switched"
    previous_id: Optional[str]
    info: ContextInfo


@dataclass(frozen=True)
class ContextRemoved(Event):
    name: ClassVar[str] = "context-removed"
    was_active: bool


@dataclass(frozen=True)
class ContextUpdated(Event):
    name: ClassVar[str] = "context-updated"
    patch: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PollingData(Event):
    name: ClassVar[str] = "polling-data"
    status: PrinterStatus


@dataclass(frozen=True)
class PollingError(Event):
    name: ClassVar[str] = "polling-error"
    error: str
    attempts: int = 1


@dataclass(frozen=True)
class PollingStarted(Event):
    name: ClassVar[str] = "polling-started"


@dataclass(frozen=True)
class PollingStopped(Event):
    name: ClassVar[str] = "polling-stopped"


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.name: cls
    for cls in (ContextCreated, ContextSwitched, ContextRemoved, ContextUpdated,
                PollingData, PollingError, PollingStarted, PollingStopped)
}


class EventBus:
    """
    Typed publish/subscribe channel shared by all coordination components.

    Delivery is synchronous: publish() returns only after every subscriber of
    the event has been called, in subscription order. This also holds for an
    event published from inside a handler. Before such a nested event is
    delivered, the events still being delivered are first handed to their
    remaining subscribers, so every subscriber observes the same order.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Event], None]]] = {}
        # (event, iterator over the subscribers not yet called), outermost first
        self._in_delivery: List[Tuple[Event, Iterator[Callable[[Event], None]]]] = []

    def subscribe(self, event_type, callback: Callable[[Event], None]) -> Callable[[], None]:
        """
        Register callback for an event class (or its name, e.g. "context-switched").
        Returns a function that removes the subscription.
        """
        event_type = self._resolve(event_type)
        self._subscribers.setdefault(event_type, []).append(callback)
        return lambda: self.unsubscribe(event_type, callback)

    def unsubscribe(self, event_type, callback: Callable[[Event], None]) -> None:
        """Remove a previously registered callback. Unknown callbacks are ignored."""
        callbacks = self._subscribers.get(self._resolve(event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def subscriber_count(self, event_type) -> int:
        return len(self._subscribers.get(self._resolve(event_type), []))

    def clear(self) -> None:
        self._subscribers.clear()

    def publish(self, event: Event) -> None:
        for earlier, remaining in list(self._in_delivery):
            for callback in remaining:
                self._call(callback, earlier)

        logger.debug("[%s] Delivering %s", event.context_id, event.name)
        # Copy so handlers may unsubscribe while being called
        remaining = iter(list(self._subscribers.get(type(event), [])))
        self._in_delivery.append((event, remaining))
        try:
            for callback in remaining:
                self._call(callback, event)
        finally:
            self._in_delivery.pop()

    def _call(self, callback: Callable[[Event], None], event: Event) -> None:
        try:
            callback(event)
        except Exception as e:
            logger.exception("[%s] Error in %s handler: %s", event.context_id, event.name, e)

    @staticmethod
    def _resolve(event_type) -> Type[Event]:
        if isinstance(event_type, str):
            try:
                return EVENT_TYPES[event_type]
            except KeyError:
                raise ValueError(f"Unknown event name: {event_type}") from None
        return event_type
