"""
Notification facility for the watch engine.

Wraps the watchdog library behind a small WatchService-style contract:
one logical subscription (``WatchHandle``) per directory, handles that become
*signalled* when notifications are pending, a blocking ``take()`` that hands
signalled handles to the single watch loop, and ``reset()`` to re-arm a handle
after its notifications were drained.

Handles are not backed by one OS watch each. The first subscription of a tree
schedules a single recursive watchdog watch, and every event it reports is
routed to the handle registered for the directory the event happened in.
watchdog delivers events on its own observer thread, which only appends to a
handle's pending list; everything else happens on the loop thread.
"""

import contextlib
import os
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch
from watchdog.observers.polling import PollingObserverVFS

from domains.file_events.exceptions import WatchFacilityError, WatchServiceClosed
from file_listener.utils.helpers import is_within, normalise_path


class NotificationKind(str, Enum):
    """Raw change kinds reported for a watched directory."""
    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"
    OVERFLOW = "OVERFLOW"


@dataclass(frozen=True)
class RawNotification:
    """One raw change, ``context`` being relative to the handle's directory."""
    kind: NotificationKind
    context: str = ""


class WatchHandle:
    """
    Opaque subscription to a single directory.

    Lifecycle mirrors a WatchService key: ready → signalled (notifications
    pending, queued once on the facility) → drained with ``poll_events()`` →
    re-armed with ``reset()``. A handle that was cancelled, or whose directory
    went away, is invalid and ``reset()`` returns False.
    """

    def __init__(self, facility: "BaseNotificationFacility", directory: str):
        self._facility = facility
        self.directory = directory
        self.watch = None
        self._pending: List[RawNotification] = []
        self._signalled = False
        self._valid = True
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        state = "valid" if self._valid else "invalid"
        return f"<WatchHandle {self.directory!r} {state}>"

    @property
    def is_valid(self) -> bool:
        return self._valid

    def post(self, notification: RawNotification) -> None:
        """Queue a notification and signal the handle if it is not already."""
        with self._lock:
            if not self._valid:
                return
            self._pending.append(notification)
            self._signal_locked()

    def signal_invalid(self) -> None:
        """Mark the handle invalid because its directory is gone, and signal it."""
        with self._lock:
            if not self._valid:
                return
            self._valid = False
            self._signal_locked()

    def poll_events(self) -> List[RawNotification]:
        """Drain and return pending notifications."""
        with self._lock:
            events, self._pending = self._pending, []
        return events

    def reset(self) -> bool:
        """
        Re-arm the handle after draining it.

        Returns:
            False if the handle is no longer valid, True otherwise
        """
        with self._lock:
            if not self._valid:
                return False
            self._signalled = False
            if self._pending:
                self._signal_locked()
            return True

    def cancel(self) -> None:
        """Cancel the subscription. Pending notifications are discarded."""
        with self._lock:
            self._valid = False
            self._pending = []
        self._facility.cancel(self)

    def _signal_locked(self) -> None:
        if not self._signalled:
            self._signalled = True
            self._facility.enqueue_signalled(self)


_CLOSED = object()


class BaseNotificationFacility(ABC):
    """Queue of signalled handles shared by every facility implementation."""

    def __init__(self):
        self._ready: "queue.Queue[object]" = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def open(self) -> None:
        """Start the underlying notification service."""

    @abstractmethod
    def subscribe(self, directory: str) -> WatchHandle:
        """Subscribe ``directory`` for create/modify/delete notifications."""

    def cancel(self, handle: WatchHandle) -> None:
        """Release the OS subscription behind ``handle``."""

    def enqueue_signalled(self, handle: WatchHandle) -> None:
        self._ready.put(handle)

    def take(self, timeout: Optional[float] = None) -> Optional[WatchHandle]:
        """
        Block until a handle is signalled.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            Signalled handle, or None if ``timeout`` elapsed

        Raises:
            WatchServiceClosed: If the facility is closed
        """
        if self._closed:
            raise WatchServiceClosed("Notification facility is closed")
        try:
            item = self._ready.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # Leave the marker for any other waiter.
            self._ready.put(_CLOSED)
            raise WatchServiceClosed("Notification facility is closed")
        return item

    def close(self) -> None:
        """Close the facility and wake up any blocked ``take()``."""
        if self._closed:
            return
        self._closed = True
        self._ready.put(_CLOSED)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class DirectoryEventHandler(FileSystemEventHandler):
    """
    Route watchdog events for one watched tree to per-directory handles.

    An event about ``<dir>/<name>`` is posted to the handle registered for
    ``<dir>`` with ``<name>`` as its context. When the tree was scheduled
    through a symbolic link, ``real_directory`` is the path watchdog reports
    events under and they are mapped back below ``directory``.
    """

    def __init__(
        self,
        facility: "WatchdogNotificationFacility",
        directory: str,
        real_directory: Optional[str] = None,
    ):
        super().__init__()
        self.facility = facility
        self.directory = directory
        self.real_directory = real_directory or directory

    def on_created(self, event: FileSystemEvent) -> None:
        self._post(NotificationKind.CREATE, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Watched directories are modified whenever a child changes; the child
        # event is what gets reported.
        path = self._logical_path(event.src_path)
        if path is None or self.facility.handle_for(path) is not None:
            return
        self._post(NotificationKind.MODIFY, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._release(event.src_path)
        self._post(NotificationKind.DELETE, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A rename is reported as a delete of the source and a create of the destination."""
        self._release(event.src_path)
        self._post(NotificationKind.DELETE, event.src_path)
        self._post(NotificationKind.CREATE, event.dest_path)

    def _logical_path(self, raw_path) -> Optional[str]:
        if not raw_path:
            return None
        path = normalise_path(raw_path)
        if not is_within(path, self.real_directory):
            return None
        if self.real_directory == self.directory:
            return path
        return normalise_path(
            os.path.join(self.directory, os.path.relpath(path, self.real_directory))
        )

    def _release(self, raw_path) -> None:
        """Invalidate the handle of a watched directory that was deleted or moved away."""
        path = self._logical_path(raw_path)
        if path is None:
            return
        handle = self.facility.handle_for(path)
        if handle is not None:
            handle.signal_invalid()

    def _post(self, kind: NotificationKind, raw_path) -> None:
        path = self._logical_path(raw_path)
        if path is None:
            return
        handle = self.facility.handle_for(os.path.dirname(path))
        if handle is None:
            return
        handle.post(RawNotification(kind, os.path.basename(path)))


class WatchdogNotificationFacility(BaseNotificationFacility):
    """
    Notification facility backed by a watchdog ``Observer``.

    A subscription outside every watched tree schedules one recursive watch;
    subscriptions below it only add a routing entry. On Linux this keeps a
    whole tree on a single inotify instance.
    """

    def __init__(self, observer_factory=Observer):
        super().__init__()
        self._observer_factory = observer_factory
        self._observer = None
        self._handles: Dict[str, WatchHandle] = {}
        self._watches: Dict[str, ObservedWatch] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "WatchdogNotificationFacility":
        """Pick the native observer, or the polling one when configured."""
        if settings.use_polling:
            # lstat keeps the recursive snapshot from walking through symlinks.
            return cls(
                lambda: PollingObserverVFS(
                    os.lstat, os.scandir, polling_interval=settings.polling_interval
                )
            )
        return cls()

    def open(self) -> None:
        if self._observer is not None:
            return
        try:
            observer = self._observer_factory()
            observer.daemon = True
            observer.start()
        except Exception as e:
            raise WatchFacilityError(f"Failed to start file system observer: {e}") from e
        self._observer = observer
        logger.debug("File system observer started")

    def handle_for(self, directory: str) -> Optional[WatchHandle]:
        """Handle routing events for ``directory``, if one is subscribed."""
        with self._lock:
            return self._handles.get(directory)

    def subscribe(self, directory: str) -> WatchHandle:
        if self._closed:
            raise WatchServiceClosed("Notification facility is closed")
        observer = self._observer
        if observer is None:
            raise WatchFacilityError("Notification facility is not open")

        path = normalise_path(directory)
        if not os.path.isdir(path):
            raise WatchFacilityError(f"Failed to watch {directory}: not a directory")

        watch = self._covering_watch(path)
        if watch is None:
            watch = self._schedule(observer, path)

        handle = WatchHandle(self, path)
        handle.watch = watch

        with self._lock:
            self._handles[path] = handle
        return handle

    def cancel(self, handle: WatchHandle) -> None:
        with self._lock:
            if self._handles.get(handle.directory) is handle:
                del self._handles[handle.directory]
            watch, handle.watch = handle.watch, None
            if watch is None or self._watches.get(handle.directory) is not watch:
                return
            del self._watches[handle.directory]

        observer = self._observer
        if observer is None:
            return
        try:
            observer.unschedule(watch)
        except KeyError:
            logger.debug(f"Watch already released: {handle.directory}")

    def close(self) -> None:
        if self._closed:
            return
        super().close()
        observer, self._observer = self._observer, None
        with self._lock:
            self._handles.clear()
            self._watches.clear()
        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join()
            logger.debug("File system observer stopped")

    def _covering_watch(self, path: str) -> Optional[ObservedWatch]:
        with self._lock:
            for directory, watch in self._watches.items():
                if is_within(path, directory):
                    return watch
        return None

    def _schedule(self, observer, path: str) -> ObservedWatch:
        real_path = os.path.realpath(path)
        event_handler = DirectoryEventHandler(self, path, real_path)
        try:
            watch = observer.schedule(event_handler, real_path, recursive=True)
        except OSError as e:
            # schedule() keeps the handler even when the emitter fails to start.
            with contextlib.suppress(KeyError):
                observer.remove_handler_for_watch(
                    event_handler, ObservedWatch(real_path, recursive=True)
                )
            raise WatchFacilityError(f"Failed to watch {path}: {e}") from e

        with self._lock:
            self._watches[path] = watch
        logger.debug(f"Scheduled recursive watch on {real_path}")
        return watch
