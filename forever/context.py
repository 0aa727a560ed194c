"""Per-process context shared by every tool invocation.

The context is built once at startup and passed explicitly to the tools,
so tests can inject deterministic identities, directories and clients.
"""

import logging
import os
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from forever.client import (
    DEFAULT_TIMEOUT,
    MemoryClient,
    Unauthenticated,
    create_client,
)
from forever.config import ForeverConfig
from forever.credentials import CredentialStore
from forever.git import GitContext
from forever.machine import MachineIdentityStore
from forever.project import resolve_project
from forever.sync import FileSyncReconciler, SyncOperationLog

logger = logging.getLogger(__name__)

ClientFactory = Callable[[float], MemoryClient | Unauthenticated]


def generate_session_id() -> str:
    """``<epoch millis>-<8 hex chars>``, one per process."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class ForeverContext:
    config: ForeverConfig
    cwd: Path
    machine_id: str
    session_id: str
    credentials: CredentialStore
    git: GitContext
    client_factory: Optional[ClientFactory] = None
    operation_log: Optional[SyncOperationLog] = field(default=None)

    @classmethod
    def create(
        cls, config: Optional[ForeverConfig] = None, cwd: Optional[Path] = None
    ) -> "ForeverContext":
        """Build the context for this process.

        Creates the machine identity on first run.
        """
        config = config or ForeverConfig.from_env()
        cwd = Path(cwd) if cwd else Path(os.getcwd())
        config.ensure_home()
        machine_id = MachineIdentityStore(config.machine_file).get_or_create_machine_id()
        session_id = generate_session_id()
        logger.debug(f"Context: machine={machine_id} session={session_id} cwd={cwd}")

        return cls(
            config=config,
            cwd=cwd,
            machine_id=machine_id,
            session_id=session_id,
            credentials=CredentialStore(config.credentials_file),
            git=GitContext(cwd),
            operation_log=SyncOperationLog(config.sync_log_file),
        )

    def connect(self, timeout: float = DEFAULT_TIMEOUT) -> MemoryClient | Unauthenticated:
        if self.client_factory is not None:
            return self.client_factory(timeout)
        return create_client(self.credentials, timeout=timeout)

    def resolve_project(self, explicit: Optional[str] = None) -> Optional[str]:
        return resolve_project(explicit, self.git, self.cwd)

    def resolve_path(self, file_path: str) -> Path:
        """Absolute local path for a (possibly relative) file path."""
        return self.cwd / file_path

    def reconciler(self, client: MemoryClient, project: str) -> FileSyncReconciler:
        return FileSyncReconciler(
            client=client,
            project=project,
            root=self.cwd,
            machine_id=self.machine_id,
            session_id=self.session_id,
            operation_log=self.operation_log,
        )
