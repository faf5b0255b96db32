"""
File Events Domain

Recursive directory watching and event fan-out:
- facility.py - watchdog-backed notification facility (one handle per directory)
- registry.py - handle to directory mapping for one watch session
- registrar.py - recursive, symlink-safe directory registration
- normalizer.py - depth collapsing and FileEvent construction
- listeners.py - listener interface and ordered dispatch
- watcher.py - the watch loop
"""

from domains.file_events.listeners import AbstractListener, ListenerDispatcher, LoggingListener
from domains.file_events.watcher import FileWatcher, WatchState

__all__ = [
    "AbstractListener",
    "FileWatcher",
    "ListenerDispatcher",
    "LoggingListener",
    "WatchState",
]
