"""
Recursive file watcher.

Watches a root directory and every directory below it, keeps subscriptions in
step as directories come and go, and fans normalized file events out to the
registered listeners. Registry updates, normalization and dispatch all run on
the single watch loop thread.
"""

import os
import threading
from enum import Enum
from typing import List, Optional

from loguru import logger

from domains.file_events.exceptions import WatchFacilityError, WatchHandleNotFound, WatchServiceClosed
from domains.file_events.facility import (
    BaseNotificationFacility,
    NotificationKind,
    RawNotification,
    WatchdogNotificationFacility,
    WatchHandle,
)
from domains.file_events.listeners import AbstractListener, ListenerDispatcher
from domains.file_events.normalizer import EventNormalizer
from domains.file_events.registrar import DirectoryRegistrar, is_real_directory
from domains.file_events.registry import WatchKeyRegistry
from file_listener.models.schemas import EventKind
from file_listener.utils.config import Settings, get_settings


class WatchState(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


_EVENT_KINDS = {
    NotificationKind.CREATE: EventKind.CREATED,
    NotificationKind.MODIFY: EventKind.MODIFIED,
    NotificationKind.DELETE: EventKind.DELETED,
}


class FileWatcher:
    """Watch loop for one listening root."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        facility: Optional[BaseNotificationFacility] = None,
    ):
        """
        Initialize file watcher.

        Args:
            settings: Session settings, defaults to ``get_settings()``
            facility: Notification facility, defaults to a watchdog-backed one
        """
        self.settings = settings or get_settings()
        self.root = self.settings.listening_root
        self.facility = facility or WatchdogNotificationFacility.from_settings(self.settings)

        self.registry = WatchKeyRegistry(self.facility)
        self.registrar = DirectoryRegistrar(self.registry)
        self.normalizer = EventNormalizer(self.settings, self.registry)
        self.dispatcher = ListenerDispatcher(
            isolate_errors=self.settings.isolate_listener_errors
        )

        self.state = WatchState.INIT
        self.failure: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None
        self._running = threading.Event()

    # Listener registration -----------------------------------------------------

    def add_listener(self, listener: AbstractListener) -> "FileWatcher":
        self.dispatcher.add_listener(listener)
        return self

    def remove_listener(self, listener: AbstractListener) -> "FileWatcher":
        self.dispatcher.remove_listener(listener)
        return self

    def set_listeners(self, listeners: List[AbstractListener]) -> "FileWatcher":
        self.dispatcher.set_listeners(listeners)
        return self

    def list_listeners(self) -> List[AbstractListener]:
        return self.dispatcher.list_listeners()

    # Lifecycle -----------------------------------------------------------------

    def open(self) -> None:
        """
        Open the facility and register the whole tree under the root.

        Raises:
            WatchFacilityError: If the facility cannot be opened or the root
                is not a directory
        """
        if not os.path.isdir(self.root):
            raise WatchFacilityError(f"Listening path is not a directory: {self.root}")

        self.facility.open()
        count = self.registrar.register_tree(self.root, follow_link=True)
        logger.info(f"Registered {count} directories under {self.root}")

    def run(self) -> None:
        """Run the watch loop on the calling thread until stopped or a fatal error."""
        logger.info(f"Watcher service starting at {self.root}")

        try:
            self.open()
            self.state = WatchState.RUNNING
            self._running.set()
            while True:
                self.poll_events()

        except WatchServiceClosed:
            logger.info(f"Watcher service stopped at {self.root}")

        except Exception as e:
            self.failure = e
            logger.exception(f"Error occurred while watching folder {self.root}: {e}")

        finally:
            self.state = WatchState.STOPPED
            self._running.set()
            self.facility.close()
            self.registry.clear()

    def start(self) -> threading.Thread:
        """Run the watch loop on a dedicated daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread

        self._thread = threading.Thread(
            target=self.run, name=f"FileWatcher[{self.root}]", daemon=True
        )
        self._thread.start()
        return self._thread

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        """Block until the initial registration pass is done (or the loop stopped)."""
        return self._running.wait(timeout) and self.state is WatchState.RUNNING

    def stop(self, timeout: Optional[float] = None) -> None:
        """Interrupt the blocking wait and let the loop exit."""
        self.facility.close()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # Event handling ------------------------------------------------------------

    def poll_events(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for one signalled handle and process its batch.

        Args:
            timeout: Seconds to wait, None to block indefinitely

        Returns:
            True if a batch was processed, False if ``timeout`` elapsed

        Raises:
            WatchServiceClosed: If the facility was closed
        """
        handle = self.facility.take(timeout)
        if handle is None:
            return False

        notifications = handle.poll_events()
        try:
            directory = self.registry.resolve(handle)
        except WatchHandleNotFound:
            logger.debug(f"Dropping {len(notifications)} notifications for released {handle!r}")
            directory = None

        if directory is not None:
            for notification in notifications:
                self.notify_listeners(handle, notification)

        if not handle.reset():
            self.registry.invalidate(handle)

        return True

    def notify_listeners(self, handle: WatchHandle, notification: RawNotification) -> None:
        """Normalize one notification, update subscriptions and dispatch."""
        if notification.kind is NotificationKind.OVERFLOW:
            directory = self.registry.resolve(handle)
            logger.warning(f"Notification overflow for {directory}, re-registering subtree")
            self.registrar.register_tree(directory, follow_link=directory == self.root)
            return

        path = self.normalizer.absolute_path(handle, notification.context)
        event = self.normalizer.normalize(handle, notification.context)

        if notification.kind is NotificationKind.DELETE:
            self.registry.invalidate_tree(path)

        if event is not None:
            self.dispatcher.dispatch(_EVENT_KINDS[notification.kind], event)

        if notification.kind is NotificationKind.CREATE and is_real_directory(path):
            self.registrar.register_tree(path)

