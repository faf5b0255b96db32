"""
Helper utilities for the file listener.

Common functions used by the watch engine.
"""

import base64
import os
from datetime import datetime, timezone
from typing import List, Optional


def encode_auth_token(service_account_id: str, service_account_secret: str) -> str:
    """Build the opaque token attached to every event: base64 of ``id:secret``."""
    raw = f"{service_account_id}:{service_account_secret}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def now_utc() -> datetime:
    """Get current timestamp as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalise_path(path) -> str:
    """
    Return an absolute, normalized string path without resolving symlinks.

    Args:
        path: str, bytes or PathLike

    Returns:
        Absolute path string
    """
    return os.path.abspath(os.fsdecode(path))


def is_within(path: str, root: str) -> bool:
    """Check whether ``path`` equals ``root`` or lies below it."""
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def relative_segments(path: str, root: str) -> Optional[List[str]]:
    """
    Split ``path`` into the segments below ``root``.

    Empty segments are dropped, so ``root`` itself yields an empty list.

    Args:
        path: Absolute path
        root: Absolute root path

    Returns:
        Ordered list of segments, or None if ``path`` is not under ``root``
    """
    if not is_within(path, root):
        return None
    relative = path[len(root):]
    return [part for part in relative.split(os.sep) if part]
