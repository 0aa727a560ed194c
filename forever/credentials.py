"""Credential storage for the remote memory server.

Credentials live in a single JSON file (``{"serverUrl", "token"}``) readable
only by the owner. A missing or unreadable file means "not authenticated",
which callers treat as a normal state rather than an error.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

__all__ = ["Credentials", "CredentialStore"]


@dataclass
class Credentials:
    """Server URL and bearer token.

    Attributes:
        server_url: Base URL of the memory server (without ``/api``)
        token: Bearer token attached to every request
    """

    server_url: str
    token: str

    def to_dict(self) -> dict:
        """Convert to the on-disk JSON shape."""
        return {"serverUrl": self.server_url, "token": self.token}

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        """Create from the on-disk JSON shape."""
        return cls(server_url=data["serverUrl"], token=data["token"])


class CredentialStore:
    """Read and write ``credentials.json``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Credentials]:
        """Load stored credentials.

        Returns:
            Credentials, or None if the file is absent or malformed
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return Credentials.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable credentials at {self.path}: {e}")
            return None

    def save(self, credentials: Credentials) -> None:
        """Persist credentials with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(credentials.to_dict(), f, indent=2)
        # O_CREAT mode is ignored for an existing file
        os.chmod(self.path, 0o600)
        logger.debug(f"Saved credentials to {self.path}")

    def clear(self) -> bool:
        """Delete stored credentials.

        Returns:
            True if a credentials file was removed
        """
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.debug(f"Removed credentials at {self.path}")
        return True
