"""Memory and file tools exposed to the coding assistant.

Every tool takes the process ForeverContext first and returns plain text:
the caller is a language model, so both results and expected failures
(not authenticated, project not detected, file not found, server errors)
come back as readable messages instead of protocol errors.

Preconditions are checked before any other work, in this order:
credentials, then project resolution.
"""

import functools
import logging
from typing import Callable, Optional

from forever.client import (
    DEFAULT_TIMEOUT,
    FILE_TIMEOUT,
    LOG_ENTRY_TYPES,
    SEARCH_ENTRY_TYPES,
    MemoryClient,
    MemoryEntry,
    MemoryGatewayError,
    SessionInfo,
    Unauthenticated,
)
from forever.codec import CodecError, decode_file, encode_file
from forever.context import ForeverContext
from forever.project import PROJECT_NOT_RESOLVED

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated. Run: forever login"


class ToolPreconditionError(Exception):
    """A tool cannot run; the message is returned to the caller as-is."""


def tool(func: Callable[..., str]) -> Callable[..., str]:
    """Return precondition failures as the tool's text result."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> str:
        try:
            return func(*args, **kwargs)
        except ToolPreconditionError as e:
            return str(e)

    return wrapper


def _connect(context: ForeverContext, timeout: float = DEFAULT_TIMEOUT) -> MemoryClient:
    client = context.connect(timeout)
    if isinstance(client, Unauthenticated):
        raise ToolPreconditionError(NOT_AUTHENTICATED)
    return client


def _project(context: ForeverContext, project: Optional[str]) -> str:
    resolved = context.resolve_project(project)
    if resolved is None:
        raise ToolPreconditionError(PROJECT_NOT_RESOLVED)
    return resolved


def _prepare(
    context: ForeverContext,
    project: Optional[str],
    timeout: float = DEFAULT_TIMEOUT,
) -> tuple[MemoryClient, str]:
    client = _connect(context, timeout)
    try:
        return client, _project(context, project)
    except ToolPreconditionError:
        client.close()
        raise


def format_entry(entry: MemoryEntry) -> str:
    text = f"[{entry.type}] {entry.created_at}\n{entry.content}"
    if entry.tags:
        text += f"\ntags: {', '.join(entry.tags)}"
    return text


def format_search_result(entry: MemoryEntry) -> str:
    return f"[{entry.type}] {entry.project} - {entry.created_at}\n{entry.content}"


def format_session(session: SessionInfo) -> list[str]:
    machine = session.machine_name or "unknown"
    location = " [REMOTE]" if session.is_remote else " [LOCAL]"
    branch = f" on {session.git_branch}" if session.git_branch else ""
    commit = f" @ {session.git_commit}" if session.git_commit else ""

    lines = [
        f"## Session {session.session_id}{location}",
        f"Machine: {machine}{branch}{commit}",
        f"Time: {session.started_at} → {session.ended_at} ({session.log_count} logs)",
    ]
    if session.directory:
        lines.append(f"Directory: {session.directory}")
    if session.summary:
        lines.append(f"Summary: {session.summary}")
    lines.append("")
    return lines


@tool
def memory_log(
    context: ForeverContext,
    type: str,
    content: str,
    project: Optional[str] = None,
    tags: Optional[list[str]] = None,
    session_id: Optional[str] = None,
) -> str:
    """Log a summary, decision or error for a project.

    Args:
        type: One of "summary", "decision", "error"
        content: Text to log
        project: Project key (detected from git or the directory if omitted)
        tags: Optional tags
        session_id: Session to group under (defaults to this process's session)
    """
    client, resolved = _prepare(context, project)

    if type not in LOG_ENTRY_TYPES:
        client.close()
        return f"Invalid entry type {type!r}. Use one of: {', '.join(LOG_ENTRY_TYPES)}"

    entry = {
        "project": resolved,
        "type": type,
        "content": content,
        "machineId": context.machine_id,
        "sessionId": session_id or context.session_id,
        **context.git.as_log_fields(),
    }
    if tags is not None:
        entry["tags"] = tags

    with client:
        try:
            client.append_log(entry)
        except MemoryGatewayError as e:
            return f"Failed to log: {e}"

    return f'Logged {type} entry for "{resolved}".'


@tool
def memory_get_recent(
    context: ForeverContext, project: Optional[str] = None, limit: int = 20
) -> str:
    """Recent memory entries for a project."""
    client, resolved = _prepare(context, project)

    with client:
        try:
            entries = client.recent_logs(resolved, limit)
        except MemoryGatewayError as e:
            return f"Failed to fetch: {e}"

    if not entries:
        return f'No memory entries found for project "{resolved}".'
    return "\n---\n".join(format_entry(entry) for entry in entries)


@tool
def memory_get_sessions(
    context: ForeverContext, project: Optional[str] = None, limit: int = 10
) -> str:
    """Recent sessions for a project, flagging those from other machines."""
    client, resolved = _prepare(context, project)

    with client:
        try:
            response = client.sessions(resolved, context.machine_id, limit)
        except MemoryGatewayError as e:
            return f"Failed to fetch sessions: {e}"

    if not response.sessions:
        return f'No previous sessions found for "{resolved}".'

    lines = []
    if response.has_remote_activity:
        lines.append(
            "⚡ REMOTE ACTIVITY DETECTED: Sessions from other machines found "
            "for this project.\n"
        )
    for session in response.sessions:
        lines.extend(format_session(session))
    return "\n".join(lines)


@tool
def memory_search(
    context: ForeverContext,
    query: str,
    project: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 20,
) -> str:
    """Search entries across projects.

    ``project`` is only a filter here and is never auto-detected. Empty
    ``project`` or ``type`` means no filter.
    """
    client = _connect(context)

    if type and type not in SEARCH_ENTRY_TYPES:
        client.close()
        return f"Invalid entry type {type!r}. Use one of: {', '.join(SEARCH_ENTRY_TYPES)}"

    with client:
        try:
            entries = client.search_logs(
                query, project=project or None, type=type or None, limit=limit
            )
        except MemoryGatewayError as e:
            return f"Search failed: {e}"

    if not entries:
        return f'No results for "{query}".'
    return "\n---\n".join(format_search_result(entry) for entry in entries)


def _store(client: MemoryClient, context: ForeverContext, project: str, file_path: str):
    encoded = encode_file(context.resolve_path(file_path))
    result = client.store_file(
        project=project,
        file_path=file_path,
        content=encoded.content,
        content_hash=encoded.content_hash,
        machine_id=context.machine_id,
        session_id=context.session_id,
    )
    return encoded, result


@tool
def memory_store_file(
    context: ForeverContext, file_path: str, project: Optional[str] = None
) -> str:
    """Store a file (up to 1 MiB) for access from other machines."""
    client, resolved = _prepare(context, project, timeout=FILE_TIMEOUT)

    local_path = context.resolve_path(file_path)
    with client:
        if not local_path.exists():
            return f"File not found: {local_path}"

        try:
            encoded, result = _store(client, context, resolved, file_path)
        except (CodecError, OSError, MemoryGatewayError) as e:
            return f"Failed to store file: {e}"

    dedup = " (unchanged, skipped)" if result.deduplicated else ""
    return f'Stored "{file_path}" ({encoded.size} bytes){dedup}'


@tool
def memory_restore_file(
    context: ForeverContext, file_path: str, project: Optional[str] = None
) -> str:
    """Write the latest stored version of a file to the local disk."""
    client, resolved = _prepare(context, project, timeout=FILE_TIMEOUT)

    with client:
        try:
            stored = client.latest_file(resolved, file_path)
            if stored is None:
                return f'No stored version found for "{file_path}"'
            decode_file(context.resolve_path(file_path), stored.content)
        except (CodecError, OSError, MemoryGatewayError) as e:
            return f"Failed to restore file: {e}"

    return f'Restored "{file_path}" (hash: {stored.content_hash})'


@tool
def memory_share_file(
    context: ForeverContext, file_path: str, project: Optional[str] = None
) -> str:
    """Store a file now and mark it for sync across machines."""
    client, resolved = _prepare(context, project, timeout=FILE_TIMEOUT)

    local_path = context.resolve_path(file_path)
    with client:
        if not local_path.exists():
            return f"File not found: {local_path}"

        try:
            encoded, _ = _store(client, context, resolved, file_path)
            client.share_file(resolved, file_path)
        except (CodecError, OSError, MemoryGatewayError) as e:
            return f"Failed to share file: {e}"

    return f'Shared "{file_path}" ({encoded.size} bytes) - will auto-sync across machines'


@tool
def memory_unshare_file(
    context: ForeverContext, file_path: str, project: Optional[str] = None
) -> str:
    """Stop syncing a file. Stored versions are kept."""
    client, resolved = _prepare(context, project)

    with client:
        try:
            client.unshare_file(resolved, file_path)
        except MemoryGatewayError as e:
            return f"Failed to unshare file: {e}"

    return f'Stopped sharing "{file_path}"'


@tool
def memory_list_shared_files(
    context: ForeverContext, project: Optional[str] = None
) -> str:
    client, resolved = _prepare(context, project)

    with client:
        try:
            shared = client.shared_files(resolved)
        except MemoryGatewayError as e:
            return f"Failed to list shared files: {e}"

    if not shared:
        return f'No shared files for "{resolved}"'
    lines = [f'Shared files for "{resolved}":']
    lines.extend(f"- {f.file_path}" for f in shared)
    return "\n".join(lines)


@tool
def memory_sync_files(context: ForeverContext, project: Optional[str] = None) -> str:
    """Sync every shared file of a project: download newer, upload changed."""
    client, resolved = _prepare(context, project, timeout=FILE_TIMEOUT)

    with client:
        try:
            report = context.reconciler(client, resolved).reconcile()
        except MemoryGatewayError as e:
            return f"Sync failed: {e}"

    return report.render()
