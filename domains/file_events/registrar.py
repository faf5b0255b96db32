"""
Recursive directory registration.

Walks a directory tree and subscribes every directory in it, without
following symbolic links. Trees change while they are walked, so a subtree
that vanishes or cannot be listed is skipped rather than aborting the pass.
"""

import os
import stat

from loguru import logger

from domains.file_events.exceptions import WatchFacilityError
from domains.file_events.registry import WatchKeyRegistry
from file_listener.utils.helpers import normalise_path


def is_real_directory(path: str) -> bool:
    """Check for a directory that is not a symbolic link."""
    try:
        return stat.S_ISDIR(os.lstat(path).st_mode)
    except OSError:
        return False


class DirectoryRegistrar:
    """Keeps the registry in step with the directories below a root."""

    def __init__(self, registry: WatchKeyRegistry):
        self.registry = registry

    def register_tree(self, path, follow_link: bool = False) -> int:
        """
        Register ``path`` and every directory below it.

        Symbolic links found during the walk are never traversed, which also
        rules out cycles. Hardlinked directories and bind mounts are not
        detected.

        Args:
            path: Directory to register
            follow_link: Accept ``path`` itself when it is a link to a directory

        Returns:
            Number of directories newly subscribed
        """
        directory = normalise_path(path)
        is_directory = os.path.isdir if follow_link else is_real_directory
        if not is_directory(directory):
            return 0

        known = len(self.registry)
        pending = [directory]
        while pending:
            current = pending.pop()
            if not self._register_one(current):
                continue
            pending.extend(reversed(self._child_directories(current)))

        return len(self.registry) - known

    def _register_one(self, directory: str) -> bool:
        already_watched = directory in self.registry
        try:
            self.registry.register(directory)
        except WatchFacilityError as e:
            logger.warning(f"Skipping subtree {directory}: {e}")
            return False
        if not already_watched:
            logger.info(f"Registering path: {directory}")
        return True

    def _child_directories(self, directory: str) -> list:
        try:
            with os.scandir(directory) as entries:
                children = sorted(
                    entry.path
                    for entry in entries
                    if self._is_directory_entry(entry)
                )
        except OSError as e:
            logger.warning(f"Could not list {directory}, skipping subtree: {e}")
            return []
        return children

    @staticmethod
    def _is_directory_entry(entry: os.DirEntry) -> bool:
        try:
            return entry.is_dir(follow_symlinks=False)
        except OSError:
            return False
