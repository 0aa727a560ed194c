"""Shared-file synchronization.

For one project, brings the local copy of every shared file into agreement
with the server:

1. Fetch the list of shared paths.
2. Hash each path locally (an absent file gets an empty hash).
3. Send all hashes in one request; the server answers per file with
   ``up_to_date``, ``download_needed`` or ``upload_needed``.
4. Download or upload each divergent file, one at a time.

There is no lock and no version history: whoever was last observed by hash
wins. The only decision made locally is the missing-file override: an
``upload_needed`` verdict for a file that does not exist here means the file
was never pulled to this machine, so it is downloaded instead.

Components:
- LocalSnapshot / decide_action: local state and the per-file decision
- SyncPlan / SyncReport: analysis result and execution result
- SyncOperationLog: JSONL record of per-file operations
- FileSyncReconciler: orchestrates the above against a MemoryClient
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from forever.client import MemoryClient, MemoryGatewayError
from forever.codec import CodecError, decode_file, encode_file, hash_file

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 1000


class FileSyncStatus(str, Enum):
    """Server verdict for one file."""

    UP_TO_DATE = "up_to_date"
    DOWNLOAD_NEEDED = "download_needed"
    UPLOAD_NEEDED = "upload_needed"


class SyncAction(str, Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"
    SKIP = "skip"
    UNKNOWN = "unknown"


@dataclass
class LocalSnapshot:
    """Local state of a shared file.

    ``content_hash`` is empty when the file does not exist on this machine.
    """

    file_path: str
    content_hash: str
    exists: bool

    def to_request(self) -> dict[str, str]:
        return {"filePath": self.file_path, "contentHash": self.content_hash}


def decide_action(status: str, snapshot: Optional[LocalSnapshot]) -> SyncAction:
    """Turn a server verdict into a local action.

    A file the server wants uploaded but that is missing locally is
    downloaded instead; uploading it would replace the remote copy with
    nothing.

    Args:
        status: Raw verdict string from the server
        snapshot: Local snapshot for the file (None is treated as absent)
    """
    exists = snapshot is not None and snapshot.exists

    if status == FileSyncStatus.DOWNLOAD_NEEDED.value:
        return SyncAction.DOWNLOAD
    if status == FileSyncStatus.UPLOAD_NEEDED.value:
        return SyncAction.UPLOAD if exists else SyncAction.DOWNLOAD
    if status == FileSyncStatus.UP_TO_DATE.value:
        return SyncAction.SKIP
    return SyncAction.UNKNOWN


@dataclass
class SyncOperationDetail:
    """A planned or completed operation on one file."""

    action: SyncAction
    path: str
    reason: str
    local_md5: str | None = None
    error: str | None = None


@dataclass
class SyncPlan:
    """Outcome of comparing local snapshots with server verdicts."""

    shared_count: int = 0
    download: list[SyncOperationDetail] = field(default_factory=list)
    upload: list[SyncOperationDetail] = field(default_factory=list)
    up_to_date: list[SyncOperationDetail] = field(default_factory=list)
    # Files that cannot be synced at all (unreadable, unknown verdict)
    failed: list[SyncOperationDetail] = field(default_factory=list)

    @property
    def total_transfers(self) -> int:
        return len(self.download) + len(self.upload)


@dataclass
class SyncReport:
    """Result of a sync run."""

    project: str
    shared_count: int = 0
    downloaded: list[SyncOperationDetail] = field(default_factory=list)
    uploaded: list[SyncOperationDetail] = field(default_factory=list)
    up_to_date: list[SyncOperationDetail] = field(default_factory=list)
    failed: list[SyncOperationDetail] = field(default_factory=list)

    @property
    def no_shared_files(self) -> bool:
        return self.shared_count == 0

    @property
    def succeeded(self) -> bool:
        return not self.failed

    @property
    def actions(self) -> list[str]:
        """Per-file action lines, transfers first, then failures."""
        lines = []
        for op in self.downloaded:
            lines.append(f"↓ {op.path}")
        for op in self.uploaded:
            lines.append(f"↑ {op.path}")
        for op in self.failed:
            lines.append(f"✗ {op.path}: {op.error or op.reason}")
        return lines

    def render(self) -> str:
        if self.no_shared_files:
            return f'No shared files for "{self.project}"'

        lines = [f"Synced {self.shared_count} shared file(s):"]
        if self.downloaded:
            lines.append(f"  {len(self.downloaded)} downloaded")
        if self.uploaded:
            lines.append(f"  {len(self.uploaded)} uploaded")
        if self.up_to_date:
            lines.append(f"  {len(self.up_to_date)} up to date")
        if self.failed:
            lines.append(f"  {len(self.failed)} failed")

        actions = self.actions
        if actions:
            lines.append("")
            lines.extend(actions)
        return "\n".join(lines)


@dataclass
class SyncOperation:
    """Record of a sync operation."""

    op_id: str
    op_type: str  # "download", "upload"
    path: str
    status: str  # "success", "failed"
    project: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "op_id": self.op_id,
            "op_type": self.op_type,
            "path": self.path,
            "status": self.status,
            "project": self.project,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SyncOperationLog:
    """JSONL log of sync operations.

    Keeps per-file failure detail around after the tool result is gone.
    Trimmed after every sync run (see ``truncate``).

    Stored as: ``<forever home>/sync-log.jsonl``
    """

    def __init__(self, log_file: Path):
        self.log_file = Path(log_file)

    def log_operation(
        self,
        op_type: str,
        path: str,
        status: str,
        project: str | None = None,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append an operation.

        Returns:
            Operation ID
        """
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now(timezone.utc)
        op_id = f"{int(timestamp.timestamp() * 1000)}_{hashlib.md5(path.encode()).hexdigest()[:8]}"

        operation = SyncOperation(
            op_id=op_id,
            op_type=op_type,
            path=path,
            status=status,
            project=project,
            error=error,
            timestamp=timestamp,
            metadata=metadata or {},
        )

        with open(self.log_file, "a") as f:
            f.write(json.dumps(operation.to_dict()) + "\n")

        logger.debug(f"Logged {op_type} operation: {path} ({status})")
        return op_id

    def _read_all_operations(self) -> list[SyncOperation]:
        if not self.log_file.exists():
            return []

        operations = []
        with open(self.log_file, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                    operations.append(
                        SyncOperation(
                            op_id=entry["op_id"],
                            op_type=entry["op_type"],
                            path=entry["path"],
                            status=entry["status"],
                            project=entry.get("project"),
                            error=entry.get("error"),
                            timestamp=datetime.fromisoformat(entry["timestamp"]),
                            metadata=entry.get("metadata", {}),
                        )
                    )
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping invalid log entry: {e}")
        return operations

    def get_recent_operations(self, limit: int = 50) -> list[SyncOperation]:
        """Most recent operations, newest first."""
        operations = self._read_all_operations()
        return operations[-limit:][::-1]

    def get_failed_operations(self) -> list[SyncOperation]:
        return [op for op in self._read_all_operations() if op.status == "failed"]

    def truncate(self, keep_days: int = 7, max_entries: int = MAX_LOG_ENTRIES) -> int:
        """Drop old entries.

        Strategy:
        - Keep failed operations and successful ones from the last N days
        - Then keep at most ``max_entries`` of those, newest last

        Returns:
            Number of operations removed
        """
        if not self.log_file.exists():
            return 0

        operations = self._read_all_operations()
        cutoff = datetime.now(timezone.utc) - timedelta(days=keep_days)
        kept = [
            op for op in operations if op.status != "success" or op.timestamp > cutoff
        ]
        kept = kept[-max_entries:] if max_entries > 0 else []

        removed_count = len(operations) - len(kept)
        if removed_count > 0:
            with open(self.log_file, "w") as f:
                for op in kept:
                    f.write(json.dumps(op.to_dict()) + "\n")
            logger.info(f"Truncated sync log: removed {removed_count} operations")

        return removed_count


class FileSyncReconciler:
    """Synchronize the shared files of one project.

    Paths from the server are resolved against ``root`` (absolute paths
    are used as-is). Transfers run sequentially; a failed transfer is
    recorded and the remaining files are still attempted.
    """

    def __init__(
        self,
        client: MemoryClient,
        project: str,
        root: Path,
        machine_id: str,
        session_id: str,
        operation_log: SyncOperationLog | None = None,
    ):
        """Initialize reconciler.

        Args:
            client: Authenticated memory client
            project: Project key
            root: Directory that relative shared paths are resolved against
            machine_id: Id recorded with uploads
            session_id: Session recorded with uploads
            operation_log: Where per-file operations are recorded (optional)
        """
        self.client = client
        self.project = project
        self.root = Path(root)
        self.machine_id = machine_id
        self.session_id = session_id
        self.operation_log = operation_log

    def resolve_path(self, file_path: str) -> Path:
        return self.root / file_path

    def is_within_root(self, file_path: str) -> bool:
        local_path = self.resolve_path(file_path).resolve()
        return local_path.is_relative_to(self.root.resolve())

    def snapshot(self, file_path: str) -> LocalSnapshot:
        """Hash the current local bytes of a shared file.

        Raises:
            OSError: Path exists but cannot be read
        """
        local_path = self.resolve_path(file_path)
        if not local_path.exists():
            return LocalSnapshot(file_path=file_path, content_hash="", exists=False)
        return LocalSnapshot(
            file_path=file_path, content_hash=hash_file(local_path), exists=True
        )

    def analyze(self) -> SyncPlan:
        """Compare local state with the server and plan per-file actions.

        Uses two requests: the shared-file list and one batched status
        check.

        Raises:
            MemoryGatewayError: Either request failed
        """
        shared = self.client.shared_files(self.project)
        plan = SyncPlan(shared_count=len(shared))
        if not shared:
            return plan

        snapshots: dict[str, LocalSnapshot] = {}
        for shared_file in shared:
            path = shared_file.file_path
            try:
                if not self.is_within_root(path):
                    logger.warning(f"Shared file {path} resolves outside {self.root}")
                snapshots[path] = self.snapshot(path)
            except OSError as e:
                logger.warning(f"Cannot read shared file {path}: {e}")
                plan.failed.append(
                    SyncOperationDetail(
                        action=SyncAction.UNKNOWN,
                        path=path,
                        reason="Local file unreadable",
                        error=str(e),
                    )
                )

        if not snapshots:
            return plan

        verdicts = self.client.sync_status(
            self.project, [s.to_request() for s in snapshots.values()]
        )

        for verdict in verdicts:
            local = snapshots.get(verdict.file_path)
            action = decide_action(verdict.status, local)
            local_md5 = local.content_hash if local and local.exists else None

            if action == SyncAction.DOWNLOAD:
                if verdict.status == FileSyncStatus.UPLOAD_NEEDED.value:
                    reason = "Missing locally"
                else:
                    reason = "Remote file newer"
                plan.download.append(
                    SyncOperationDetail(action, verdict.file_path, reason, local_md5)
                )
            elif action == SyncAction.UPLOAD:
                plan.upload.append(
                    SyncOperationDetail(
                        action, verdict.file_path, "Local file modified", local_md5
                    )
                )
            elif action == SyncAction.SKIP:
                plan.up_to_date.append(
                    SyncOperationDetail(action, verdict.file_path, "Up to date", local_md5)
                )
            else:
                logger.warning(
                    f"Unknown sync status {verdict.status!r} for {verdict.file_path}"
                )
                plan.failed.append(
                    SyncOperationDetail(
                        action,
                        verdict.file_path,
                        "Unknown sync status",
                        local_md5,
                        error=f"unknown sync status {verdict.status!r}",
                    )
                )

        reported = {verdict.file_path for verdict in verdicts}
        for path, local in snapshots.items():
            if path in reported:
                continue
            logger.warning(f"No sync status returned for {path}")
            plan.failed.append(
                SyncOperationDetail(
                    SyncAction.UNKNOWN,
                    path,
                    "No sync status",
                    local.content_hash if local.exists else None,
                    error="no sync status returned by server",
                )
            )

        return plan

    def download_file(self, file_path: str) -> int:
        """Write the latest server version of a file to disk.

        Returns:
            Number of bytes written

        Raises:
            MemoryGatewayError: No stored version, or request failed
        """
        stored = self.client.latest_file(self.project, file_path)
        if stored is None:
            raise MemoryGatewayError("No stored version found on server")
        return decode_file(self.resolve_path(file_path), stored.content)

    def upload_file(self, file_path: str) -> bool:
        """Encode a local file and store it on the server.

        Returns:
            True if the server already had identical content
        """
        encoded = encode_file(self.resolve_path(file_path))
        result = self.client.store_file(
            project=self.project,
            file_path=file_path,
            content=encoded.content,
            content_hash=encoded.content_hash,
            machine_id=self.machine_id,
            session_id=self.session_id,
        )
        return result.deduplicated

    def execute(self, plan: SyncPlan) -> SyncReport:
        """Carry out a plan. Each transfer is attempted independently."""
        report = SyncReport(
            project=self.project,
            shared_count=plan.shared_count,
            up_to_date=list(plan.up_to_date),
            failed=list(plan.failed),
        )

        for op in plan.download:
            try:
                size = self.download_file(op.path)
            except (MemoryGatewayError, CodecError, OSError) as e:
                self._record_failure(report, op, e)
                continue
            logger.info(f"Downloaded {op.path} ({size} bytes)")
            report.downloaded.append(op)
            self._log(op, "success", metadata={"size": size, "reason": op.reason})

        for op in plan.upload:
            try:
                deduplicated = self.upload_file(op.path)
            except (MemoryGatewayError, CodecError, OSError) as e:
                self._record_failure(report, op, e)
                continue
            logger.info(f"Uploaded {op.path}")
            report.uploaded.append(op)
            self._log(op, "success", metadata={"deduplicated": deduplicated})

        self._truncate_log()
        return report

    def reconcile(self) -> SyncReport:
        """Analyze and execute in one go."""
        return self.execute(self.analyze())

    def _record_failure(
        self, report: SyncReport, op: SyncOperationDetail, error: Exception
    ) -> None:
        op.error = str(error)
        logger.warning(f"Failed to {op.action.value} {op.path}: {error}")
        report.failed.append(op)
        self._log(op, "failed", error=op.error)

    def _truncate_log(self) -> None:
        if self.operation_log is None:
            return
        try:
            self.operation_log.truncate()
        except OSError as e:
            logger.warning(f"Failed to truncate sync operation log: {e}")

    def _log(
        self,
        op: SyncOperationDetail,
        status: str,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self.operation_log is None:
            return
        try:
            self.operation_log.log_operation(
                op.action.value,
                op.path,
                status,
                project=self.project,
                error=error,
                metadata=metadata,
            )
        except OSError as e:
            logger.warning(f"Failed to write sync operation log: {e}")
