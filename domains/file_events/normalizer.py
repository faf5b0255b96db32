"""
Event normalization.

Turns a raw ``(handle, relative path)`` notification into a ``FileEvent``,
collapsing deep paths to a fixed depth below the listening root when a depth
is configured.
"""

import os
import stat
from typing import Optional

from loguru import logger

from domains.file_events.facility import WatchHandle
from domains.file_events.registry import WatchKeyRegistry
from file_listener.models.schemas import FileEvent, ResourceType
from file_listener.utils.config import Settings
from file_listener.utils.helpers import encode_auth_token, normalise_path, now_utc, relative_segments


class EventNormalizer:
    """Builds ``FileEvent`` records for one watch session."""

    def __init__(self, settings: Settings, registry: WatchKeyRegistry):
        self.settings = settings
        self.registry = registry
        self.root = settings.listening_root
        self.depth = settings.depth
        # Computed once per session, not per event.
        self.auth_token = encode_auth_token(
            settings.service_account_id, settings.service_account_secret
        )

    def absolute_path(self, handle: WatchHandle, context: str) -> str:
        """Resolve a notification's context against its handle's directory."""
        return normalise_path(os.path.join(self.registry.resolve(handle), context))

    def collapse(self, path: str) -> Optional[str]:
        """
        Apply depth collapsing to an absolute path.

        Args:
            path: Absolute path below the listening root

        Returns:
            The path itself when depth is 0, the ancestor exactly ``depth``
            segments below the root otherwise, or None when the path is too
            shallow (or outside the root) to be reported
        """
        if self.depth == 0:
            return path

        segments = relative_segments(path, self.root)
        if segments is None:
            logger.warning(f"Path {path} is outside listening path {self.root}")
            return None
        if len(segments) < self.depth:
            logger.debug(
                f"Depth of path {path} is not greater or equal to required depth {self.depth}"
            )
            return None

        return os.path.join(self.root, *segments[: self.depth])

    def resource_type(self, path: str) -> ResourceType:
        """Classify ``path`` by a point-in-time stat, falling back when it is gone."""
        try:
            st = os.stat(path)
        except OSError:
            return self.settings.missing_resource_type
        if stat.S_ISDIR(st.st_mode):
            return ResourceType.FOLDER
        return ResourceType.FILE

    def build(self, path: str) -> Optional[FileEvent]:
        """Build the event for an absolute path, or None if it is suppressed."""
        resource_path = self.collapse(path)
        if resource_path is None:
            return None

        return FileEvent(
            resource_type=self.resource_type(resource_path),
            resource_path=resource_path,
            occurred_at=now_utc(),
            auth_token=self.auth_token,
            base_path=self.root,
            tenant_id=self.settings.tenant_id,
            host_name=self.settings.host_name,
        )

    def normalize(self, handle: WatchHandle, context: str) -> Optional[FileEvent]:
        """
        Normalize one raw notification.

        Raises:
            WatchHandleNotFound: If the handle is not registered
        """
        return self.build(self.absolute_path(handle, context))
