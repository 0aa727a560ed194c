"""Machine identity.

Every memory entry and stored file carries the id of the machine that
produced it, so sessions from other machines can be told apart. The id is
generated once (``<hostname>-<8 hex chars>``) and persisted in
``machine.json``; it is never rotated.
"""

import json
import logging
import os
import secrets
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

__all__ = ["MachineIdentity", "MachineIdentityStore", "generate_machine_id"]


@dataclass
class MachineIdentity:
    machine_id: str
    alias: str

    def to_dict(self) -> dict:
        return {"machineId": self.machine_id, "alias": self.alias}


def generate_machine_id(hostname: Optional[str] = None) -> str:
    """Return ``<hostname>-<4 random bytes as hex>``."""
    hostname = hostname or socket.gethostname()
    return f"{hostname}-{secrets.token_hex(4)}"


class MachineIdentityStore:
    """Lazily create, persist and cache the local machine identity.

    Two processes racing on first run may both write the file; the last
    writer wins.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._identity: MachineIdentity | None = None

    def load(self) -> MachineIdentity | None:
        """Read the identity file.

        Returns:
            MachineIdentity, or None if absent, malformed or missing an id
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable machine file {self.path}: {e}")
            return None

        if not isinstance(data, dict) or not data.get("machineId"):
            return None

        machine_id = data["machineId"]
        return MachineIdentity(
            machine_id=machine_id, alias=data.get("alias") or machine_id
        )

    def save(self, identity: MachineIdentity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(identity.to_dict(), f, indent=2)
        os.chmod(self.path, 0o600)

    def get_or_create(self) -> MachineIdentity:
        """Return the cached identity, creating and persisting it if needed."""
        if self._identity is not None:
            return self._identity

        identity = self.load()
        if identity is None:
            hostname = socket.gethostname()
            identity = MachineIdentity(
                machine_id=generate_machine_id(hostname), alias=hostname
            )
            self.save(identity)
            logger.info(f"Created machine identity {identity.machine_id}")

        self._identity = identity
        return identity

    def get_or_create_machine_id(self) -> str:
        return self.get_or_create().machine_id
