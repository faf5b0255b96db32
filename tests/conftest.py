import os
import threading
from pathlib import Path

import pytest

from domains.file_events.exceptions import WatchFacilityError, WatchServiceClosed
from domains.file_events.facility import (
    BaseNotificationFacility,
    NotificationKind,
    RawNotification,
    WatchHandle,
)
from domains.file_events.listeners import AbstractListener
from file_listener.utils.config import Settings


class FakeFacility(BaseNotificationFacility):
    """In-memory facility: tests post notifications by hand."""

    def __init__(self, fail_open: bool = False):
        super().__init__()
        self.fail_open = fail_open
        self.opened = False
        self.subscribed: list[str] = []
        self.cancelled: list[str] = []
        self.fail_on: set[str] = set()
        self.handles: dict[str, WatchHandle] = {}

    def open(self) -> None:
        if self.fail_open:
            raise WatchFacilityError("observer unavailable")
        self.opened = True

    def subscribe(self, directory: str) -> WatchHandle:
        if self.closed:
            raise WatchServiceClosed("closed")
        if directory in self.fail_on or not os.path.isdir(directory):
            raise WatchFacilityError(f"cannot watch {directory}")
        handle = WatchHandle(self, directory)
        self.subscribed.append(directory)
        self.handles[directory] = handle
        return handle

    def cancel(self, handle: WatchHandle) -> None:
        self.cancelled.append(handle.directory)

    def emit(self, directory, kind: NotificationKind, context: str = "") -> WatchHandle:
        handle = self.handles[str(directory)]
        handle.post(RawNotification(kind, context))
        return handle


class RecordingListener(AbstractListener):
    """Keeps every event it receives, in order."""

    def __init__(self):
        self.events = []
        self.received = threading.Event()

    def _record(self, kind, event):
        self.events.append((kind, event))
        self.received.set()

    def on_created(self, event):
        self._record("created", event)

    def on_modified(self, event):
        self._record("modified", event)

    def on_deleted(self, event):
        self._record("deleted", event)

    def paths(self, kind=None):
        return [event.resource_path for k, event in self.events if kind is None or k == kind]


@pytest.fixture
def facility():
    return FakeFacility()


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def root(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(root):
    def _make(**overrides) -> Settings:
        values = {
            "listening_path": root,
            "depth": 0,
            "host_name": "host-1",
            "tenant_id": "tenant-1",
            "service_account_id": "id",
            "service_account_secret": "secret",
        }
        values.update(overrides)
        return Settings(**values)

    return _make
