import os
import threading

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)
from watchdog.observers.api import ObservedWatch
from watchdog.observers.polling import PollingObserverVFS

from domains.file_events.exceptions import WatchFacilityError, WatchServiceClosed
from domains.file_events.facility import (
    NotificationKind,
    RawNotification,
    WatchdogNotificationFacility,
    WatchHandle,
)


def test_handle_is_queued_once_while_signalled(root, facility):
    handle = WatchHandle(facility, str(root))

    handle.post(RawNotification(NotificationKind.CREATE, "a"))
    handle.post(RawNotification(NotificationKind.MODIFY, "a"))

    assert facility.take(timeout=1) is handle
    assert facility.take(timeout=0.05) is None
    assert [n.kind for n in handle.poll_events()] == [
        NotificationKind.CREATE,
        NotificationKind.MODIFY,
    ]
    assert handle.poll_events() == []


def test_reset_requeues_handle_with_pending_notifications(root, facility):
    handle = WatchHandle(facility, str(root))
    handle.post(RawNotification(NotificationKind.CREATE, "a"))
    assert facility.take(timeout=1) is handle
    handle.poll_events()

    handle.post(RawNotification(NotificationKind.DELETE, "a"))

    assert handle.reset() is True
    assert facility.take(timeout=1) is handle
    assert handle.poll_events() == [RawNotification(NotificationKind.DELETE, "a")]
    assert handle.reset() is True
    assert facility.take(timeout=0.05) is None


def test_invalid_handle_is_signalled_and_cannot_reset(root, facility):
    handle = WatchHandle(facility, str(root))

    handle.signal_invalid()
    handle.post(RawNotification(NotificationKind.CREATE, "ignored"))

    assert facility.take(timeout=1) is handle
    assert handle.poll_events() == []
    assert handle.reset() is False


def test_take_after_close_raises(facility):
    facility.close()

    with pytest.raises(WatchServiceClosed):
        facility.take(timeout=0.05)


def test_close_wakes_blocked_take(facility):
    outcome = []

    def wait():
        try:
            facility.take()
        except WatchServiceClosed:
            outcome.append("closed")

    waiter = threading.Thread(target=wait)
    waiter.start()
    facility.close()
    waiter.join(timeout=5)

    assert outcome == ["closed"]


class StubObserver:
    """Records scheduled watches instead of starting emitter threads."""

    def __init__(self):
        self.daemon = False
        self.scheduled = []
        self.unscheduled = []

    def start(self):
        pass

    def stop(self):
        pass

    def join(self, timeout=None):
        pass

    def schedule(self, event_handler, path, recursive=False):
        watch = ObservedWatch(path, recursive=recursive)
        self.scheduled.append((event_handler, watch))
        return watch

    def unschedule(self, watch):
        self.unscheduled.append(watch)


def real(root, *parts):
    return os.path.join(os.path.realpath(root), *parts)


@pytest.fixture
def stub_observer():
    return StubObserver()


@pytest.fixture
def routed(root, stub_observer):
    """Facility with the root and two nested directories subscribed."""
    (root / "a" / "b").mkdir(parents=True)
    facility = WatchdogNotificationFacility(observer_factory=lambda: stub_observer)
    facility.open()
    handles = {
        name: facility.subscribe(str(root / name) if name else str(root))
        for name in ("", "a", "a/b")
    }
    yield facility, handles
    facility.close()


def dispatch(stub_observer, event):
    event_handler, _watch = stub_observer.scheduled[0]
    event_handler.dispatch(event)


def test_tree_is_backed_by_one_recursive_watch(root, routed, stub_observer):
    _facility, handles = routed

    [(_handler, watch)] = stub_observer.scheduled
    assert watch.is_recursive
    assert watch.path == os.path.realpath(root)
    assert all(handle.watch is watch for handle in handles.values())


def test_events_are_routed_to_parent_directory_handle(root, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, FileCreatedEvent(real(root, "a", "b", "new.txt")))
    dispatch(stub_observer, FileModifiedEvent(real(root, "top.txt")))
    dispatch(stub_observer, FileDeletedEvent(real(root, "a", "old.txt")))

    assert handles["a/b"].poll_events() == [RawNotification(NotificationKind.CREATE, "new.txt")]
    assert handles[""].poll_events() == [RawNotification(NotificationKind.MODIFY, "top.txt")]
    assert handles["a"].poll_events() == [RawNotification(NotificationKind.DELETE, "old.txt")]


def test_modification_of_watched_directory_is_dropped(root, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, DirModifiedEvent(real(root, "a")))
    dispatch(stub_observer, DirModifiedEvent(real(root)))

    assert all(handle.poll_events() == [] for handle in handles.values())


def test_deleted_directory_invalidates_its_handle(root, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, DirDeletedEvent(real(root, "a", "b")))

    assert not handles["a/b"].is_valid
    assert handles["a"].poll_events() == [RawNotification(NotificationKind.DELETE, "b")]


def test_root_self_deletion_invalidates_root_handle(root, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, DirDeletedEvent(real(root)))

    assert not handles[""].is_valid
    assert handles[""].poll_events() == []


def test_rename_is_split_into_delete_and_create(root, tmp_path, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, DirMovedEvent(real(root, "a"), real(root, "c")))
    dispatch(stub_observer, FileMovedEvent(real(root, "leaving"), str(tmp_path / "outside")))

    assert not handles["a"].is_valid
    assert handles[""].poll_events() == [
        RawNotification(NotificationKind.DELETE, "a"),
        RawNotification(NotificationKind.CREATE, "c"),
        RawNotification(NotificationKind.DELETE, "leaving"),
    ]


def test_events_outside_the_tree_are_ignored(root, tmp_path, routed, stub_observer):
    _facility, handles = routed

    dispatch(stub_observer, FileCreatedEvent(str(tmp_path / "elsewhere.txt")))
    dispatch(stub_observer, FileCreatedEvent(real(root, "unwatched", "x.txt")))

    assert all(handle.poll_events() == [] for handle in handles.values())


def test_cancel_drops_routing_and_releases_watch_with_owner(root, routed, stub_observer):
    facility, handles = routed

    handles["a"].cancel()
    dispatch(stub_observer, FileCreatedEvent(real(root, "a", "x.txt")))

    assert facility.handle_for(str(root / "a")) is None
    assert stub_observer.unscheduled == []

    handles[""].cancel()

    assert stub_observer.unscheduled == [stub_observer.scheduled[0][1]]


def test_symlinked_tree_reports_paths_below_the_link(root, tmp_path, stub_observer):
    link = tmp_path / "link"
    os.symlink(root, link)
    with WatchdogNotificationFacility(observer_factory=lambda: stub_observer) as facility:
        handle = facility.subscribe(str(link))

        dispatch(stub_observer, FileCreatedEvent(real(root, "x.txt")))

        assert stub_observer.scheduled[0][1].path == os.path.realpath(root)
        assert facility.handle_for(str(link)) is handle
        assert handle.poll_events() == [RawNotification(NotificationKind.CREATE, "x.txt")]


def test_watchdog_facility_subscribes_and_cancels(root):
    facility = WatchdogNotificationFacility()
    with facility:
        handle = facility.subscribe(str(root))
        assert handle.watch is not None
        assert handle.directory == str(root)

        handle.cancel()

        assert handle.watch is None
        assert not handle.is_valid
    assert facility.closed


def test_watchdog_facility_rejects_missing_directory(root):
    with WatchdogNotificationFacility() as facility:
        with pytest.raises(WatchFacilityError):
            facility.subscribe(str(root / "missing"))


def test_watchdog_facility_must_be_open(root):
    facility = WatchdogNotificationFacility()

    with pytest.raises(WatchFacilityError):
        facility.subscribe(str(root))


def test_watchdog_facility_open_failure_is_wrapped():
    def broken_observer():
        raise OSError("inotify instance limit reached")

    facility = WatchdogNotificationFacility(observer_factory=broken_observer)

    with pytest.raises(WatchFacilityError):
        facility.open()


def test_polling_observer_is_selected_from_settings(make_settings):
    facility = WatchdogNotificationFacility.from_settings(
        make_settings(use_polling=True, polling_interval=0.1)
    )

    with facility:
        assert isinstance(facility._observer, PollingObserverVFS)
