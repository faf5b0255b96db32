"""Errors raised by the watch engine."""


class FileListenerError(Exception):
    """Base class for watch engine errors."""


class WatchFacilityError(FileListenerError):
    """The notification facility could not be opened or could not subscribe a path."""


class WatchServiceClosed(FileListenerError):
    """The notification facility was closed while (or before) waiting on it."""


class WatchHandleNotFound(FileListenerError, KeyError):
    """A watch handle was never registered or has already been invalidated."""

    def __str__(self) -> str:
        return Exception.__str__(self)
