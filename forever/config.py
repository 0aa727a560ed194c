"""Configuration for the forever client.

Settings come from environment variables (a ``.env`` file is loaded by the
CLI before this module reads them):

- ``FOREVER_HOME``: directory holding credentials and machine identity
  (default: ``~/.forever``)
- ``FOREVER_SERVER_URL``: server offered by ``forever login``
- ``FOREVER_LOG_LEVEL``: logging level name (default: ``WARNING``)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

__all__ = [
    "DEFAULT_HOME",
    "DEFAULT_SERVER_URL",
    "ForeverConfig",
]

DEFAULT_HOME = Path.home() / ".forever"
DEFAULT_SERVER_URL = "https://forever.squidcode.com"


@dataclass
class ForeverConfig:
    """Local settings and file locations."""

    home: Path = field(default_factory=lambda: DEFAULT_HOME)
    default_server_url: str = DEFAULT_SERVER_URL
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "ForeverConfig":
        """Build configuration from ``FOREVER_*`` environment variables."""
        home = os.environ.get("FOREVER_HOME")
        return cls(
            home=Path(home).expanduser() if home else DEFAULT_HOME,
            default_server_url=os.environ.get(
                "FOREVER_SERVER_URL", DEFAULT_SERVER_URL
            ),
            log_level=os.environ.get("FOREVER_LOG_LEVEL", "WARNING").upper(),
        )

    @property
    def credentials_file(self) -> Path:
        return self.home / "credentials.json"

    @property
    def machine_file(self) -> Path:
        return self.home / "machine.json"

    @property
    def sync_log_file(self) -> Path:
        return self.home / "sync-log.jsonl"

    def ensure_home(self) -> Path:
        """Create the config directory (owner-only) if needed."""
        self.home.mkdir(parents=True, exist_ok=True, mode=0o700)
        return self.home
