"""Project key resolution.

A project key is whatever string the server groups entries under: a human
name or a git remote URL. It is never normalized.
"""

from pathlib import Path
from typing import Optional, Protocol

__all__ = ["PROJECT_NOT_RESOLVED", "OriginSource", "resolve_project"]

PROJECT_NOT_RESOLVED = "Could not detect project. Please specify a project name."


class OriginSource(Protocol):
    def origin_url(self) -> Optional[str]: ...


def resolve_project(
    explicit: Optional[str], git: OriginSource, cwd: Path
) -> Optional[str]:
    """Derive the project key.

    Precedence:
    1. ``explicit`` if non-empty, verbatim
    2. the ``origin`` remote URL of the enclosing repository
    3. the name of ``cwd``, unless ``cwd`` is the filesystem root

    Args:
        explicit: Project given by the caller, if any
        git: Source of the origin remote URL
        cwd: Working directory

    Returns:
        Project key, or None if nothing could be derived
    """
    if explicit:
        return explicit

    remote = git.origin_url()
    if remote:
        return remote

    cwd = Path(cwd)
    if cwd.parent == cwd or not cwd.name:
        return None
    return cwd.name
