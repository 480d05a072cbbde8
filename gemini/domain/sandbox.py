"""Filesystem sandbox utilities for safe path resolution."""

from pathlib import Path
from urllib.parse import unquote


class ForbiddenPath(Exception):
    """Raised when a requested path escapes the configured sandbox."""


def resolve_sandbox_path(directory: str, url_path: str) -> Path:
    """Resolve a percent-encoded URL path inside the capsule directory.

    An empty path resolves to the directory itself.
    """
    user_path = unquote(url_path)
    if "\x00" in user_path:
        raise ForbiddenPath

    directory_root = Path(directory).resolve()
    relative_part = user_path.lstrip("/")
    if not relative_part:
        return directory_root

    if ".." in Path(relative_part).parts:
        raise ForbiddenPath

    target = (directory_root / relative_part).resolve()
    if not (target == directory_root or directory_root in target.parents):
        raise ForbiddenPath

    return target
