"""
Watch handle registry.

Bidirectional mapping between watch handles and the directories they stand
for. Owned by one watcher session and mutated only from its loop thread.
"""

from typing import Dict, List, Optional

from loguru import logger

from domains.file_events.exceptions import WatchHandleNotFound
from domains.file_events.facility import BaseNotificationFacility, WatchHandle
from file_listener.utils.helpers import is_within, normalise_path


class WatchKeyRegistry:
    """Handle ↔ directory mapping for one watch session."""

    def __init__(self, facility: BaseNotificationFacility):
        self.facility = facility
        self._paths: Dict[WatchHandle, str] = {}
        self._handles: Dict[str, WatchHandle] = {}

    def __len__(self) -> int:
        return len(self._paths)

    def __contains__(self, path) -> bool:
        return normalise_path(path) in self._handles

    def register(self, path) -> WatchHandle:
        """
        Subscribe a directory and record its handle.

        Re-registering a watched path returns the existing handle. A stale
        entry (its handle no longer valid) is dropped and resubscribed.

        Args:
            path: Directory path

        Returns:
            Handle for the directory

        Raises:
            WatchFacilityError: If the facility cannot subscribe the path
        """
        directory = normalise_path(path)

        existing = self._handles.get(directory)
        if existing is not None:
            if existing.is_valid:
                return existing
            self.invalidate(existing)

        handle = self.facility.subscribe(directory)
        self._paths[handle] = directory
        self._handles[directory] = handle
        return handle

    def resolve(self, handle: WatchHandle) -> str:
        """
        Get the directory a handle represents.

        Raises:
            WatchHandleNotFound: If the handle is unknown or was invalidated
        """
        try:
            return self._paths[handle]
        except KeyError:
            raise WatchHandleNotFound(f"Unknown watch handle: {handle!r}") from None

    def handle_for(self, path) -> Optional[WatchHandle]:
        return self._handles.get(normalise_path(path))

    def invalidate(self, handle: WatchHandle) -> bool:
        """
        Remove a handle's entry and release its subscription.

        Returns:
            True if an entry was removed, False if it was already gone
        """
        directory = self._paths.pop(handle, None)
        if directory is None:
            return False

        if self._handles.get(directory) is handle:
            del self._handles[directory]
        handle.cancel()
        logger.debug(f"Invalidated watch: {directory}")
        return True

    def invalidate_tree(self, path) -> int:
        """
        Invalidate the entry for ``path`` and every entry below it.

        Returns:
            Number of entries removed
        """
        root = normalise_path(path)
        doomed = [
            handle
            for directory, handle in list(self._handles.items())
            if is_within(directory, root)
        ]
        return sum(1 for handle in doomed if self.invalidate(handle))

    def watched_paths(self) -> List[str]:
        """Snapshot of the currently watched directories."""
        return sorted(self._handles.copy())

    def clear(self) -> None:
        """Invalidate every entry."""
        for handle in list(self._paths):
            self.invalidate(handle)
