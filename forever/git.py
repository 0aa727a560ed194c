"""Read-only git metadata for the working directory."""

import logging
from pathlib import Path
from typing import Optional

import git

logger = logging.getLogger(__name__)

__all__ = ["GitContext"]


class GitContext:
    """Query branch, commit and origin of the repository containing ``cwd``.

    Every query returns None outside a repository or when git fails
    (no commits yet, no ``origin`` remote, git not installed, ...).
    """

    def __init__(self, cwd: Path):
        self.cwd = Path(cwd)

    def _repo(self) -> Optional[git.Repo]:
        try:
            return git.Repo(self.cwd, search_parent_directories=True)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError):
            return None

    def _run(self, *args: str) -> Optional[str]:
        repo = self._repo()
        if repo is None:
            return None

        try:
            with repo:
                output = repo.git.execute(["git", *args])
        except (git.GitCommandError, git.exc.GitCommandNotFound, OSError) as e:
            logger.debug(f"git {' '.join(args)} failed: {e}")
            return None

        output = output.strip()
        return output or None

    def current_branch(self) -> Optional[str]:
        return self._run("rev-parse", "--abbrev-ref", "HEAD")

    def current_commit(self) -> Optional[str]:
        return self._run("rev-parse", "--short", "HEAD")

    def origin_url(self) -> Optional[str]:
        return self._run("remote", "get-url", "origin")

    def as_log_fields(self) -> dict:
        """Git context attached to every logged memory entry."""
        return {
            "gitBranch": self.current_branch(),
            "gitCommit": self.current_commit(),
            "directory": str(self.cwd),
        }
