"""
Listeners and fan-out dispatch.

A listener receives every normalized event through ``on_created``,
``on_modified`` and ``on_deleted``. The dispatcher calls listeners in
registration order on the watch loop thread.
"""

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List

from loguru import logger

from file_listener.models.schemas import EventKind, FileEvent


class AbstractListener(ABC):
    """Receives normalized file events."""

    @abstractmethod
    def on_created(self, event: FileEvent) -> None:
        """Handle a creation."""

    @abstractmethod
    def on_modified(self, event: FileEvent) -> None:
        """Handle a modification."""

    @abstractmethod
    def on_deleted(self, event: FileEvent) -> None:
        """Handle a deletion."""


class LoggingListener(AbstractListener):
    """Listener that logs every event it receives."""

    def on_created(self, event: FileEvent) -> None:
        logger.info(f"Created: {event.resource_type.value} {event.resource_path}")

    def on_modified(self, event: FileEvent) -> None:
        logger.info(f"Modified: {event.resource_type.value} {event.resource_path}")

    def on_deleted(self, event: FileEvent) -> None:
        logger.info(f"Deleted: {event.resource_type.value} {event.resource_path}")


_METHODS = {
    EventKind.CREATED: "on_created",
    EventKind.MODIFIED: "on_modified",
    EventKind.DELETED: "on_deleted",
}


class ListenerDispatcher:
    """
    Ordered listener collection with synchronous fan-out.

    Listeners may be added or removed from any thread; each dispatch works on
    a snapshot taken under the lock, so a change made mid-dispatch applies
    from the next event on.
    """

    def __init__(self, isolate_errors: bool = True):
        """
        Initialize dispatcher.

        Args:
            isolate_errors: Log a failing listener and carry on with the next
                one. When False the error propagates to the caller.
        """
        self.isolate_errors = isolate_errors
        self._listeners: List[AbstractListener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: AbstractListener) -> "ListenerDispatcher":
        with self._lock:
            self._listeners.append(listener)
        return self

    def remove_listener(self, listener: AbstractListener) -> "ListenerDispatcher":
        """Remove ``listener`` if present."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return self

    def set_listeners(self, listeners: Iterable[AbstractListener]) -> "ListenerDispatcher":
        with self._lock:
            self._listeners = list(listeners)
        return self

    def list_listeners(self) -> List[AbstractListener]:
        with self._lock:
            return list(self._listeners)

    def dispatch(self, kind: EventKind, event: FileEvent) -> int:
        """
        Deliver ``event`` to every listener.

        Args:
            kind: Which listener method to call
            event: Normalized event

        Returns:
            Number of listeners that handled the event without raising
        """
        method_name = _METHODS[kind]
        delivered = 0

        for listener in self.list_listeners():
            try:
                getattr(listener, method_name)(event)
                delivered += 1
            except Exception:
                if not self.isolate_errors:
                    raise
                logger.exception(
                    f"Listener {type(listener).__name__}.{method_name} failed for {event.resource_path}"
                )

        return delivered
