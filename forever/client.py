"""HTTP client for the remote memory server API.

The server is reached at ``<serverUrl>/api``. Every request carries the
stored bearer token. Transport failures and non-2xx responses are raised as
MemoryGatewayError with a human-readable message; nothing is retried.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

import httpx

from forever.credentials import Credentials, CredentialStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "DEFAULT_TIMEOUT",
    "FILE_TIMEOUT",
    "LOG_ENTRY_TYPES",
    "SEARCH_ENTRY_TYPES",
    "AuthenticationError",
    "FileVerdict",
    "GatewayConnectionError",
    "MemoryClient",
    "MemoryEntry",
    "MemoryGatewayError",
    "NotFoundError",
    "SessionInfo",
    "SessionsResponse",
    "SharedFile",
    "StoreResult",
    "StoredFile",
    "Unauthenticated",
    "create_client",
    "login",
]

DEFAULT_TIMEOUT = 10.0
FILE_TIMEOUT = 30.0

LOG_ENTRY_TYPES = ("summary", "decision", "error")
SEARCH_ENTRY_TYPES = ("user_input", "claude_reply", "summary", "decision", "error")


class MemoryGatewayError(Exception):
    """Base exception for remote memory server errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayConnectionError(MemoryGatewayError):
    """Network error or timeout talking to the server."""


class AuthenticationError(MemoryGatewayError):
    """Server rejected the bearer token."""


class NotFoundError(MemoryGatewayError):
    """Requested resource does not exist."""


def _error_from_response(response: httpx.Response) -> MemoryGatewayError:
    """Build an exception from a non-2xx response.

    Prefers the ``message`` field of a JSON error body (a string, or a list
    of validation messages) over a generic status line.
    """
    status_code = response.status_code
    message = None

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail") or body.get("error")
        if isinstance(detail, list):
            message = "; ".join(str(item) for item in detail)
        elif detail:
            message = str(detail)

    if not message:
        message = f"Request failed with status code {status_code}"

    if status_code in (401, 403):
        return AuthenticationError(message, status_code)
    if status_code == 404:
        return NotFoundError(message, status_code)
    return MemoryGatewayError(message, status_code)


@dataclass
class MemoryEntry:
    """A logged memory entry as returned by the server."""

    project: str
    type: str
    content: str
    created_at: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    session_id: Optional[str] = None
    machine_id: Optional[str] = None
    git_branch: Optional[str] = None
    git_commit: Optional[str] = None
    directory: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MemoryEntry":
        return cls(
            project=data.get("project", ""),
            type=data.get("type", ""),
            content=data.get("content", ""),
            created_at=data.get("createdAt"),
            tags=list(data.get("tags") or []),
            session_id=data.get("sessionId"),
            machine_id=data.get("machineId"),
            git_branch=data.get("gitBranch"),
            git_commit=data.get("gitCommit"),
            directory=data.get("directory"),
        )


@dataclass
class SessionInfo:
    """A group of entries from one working session on one machine."""

    session_id: str
    machine_name: Optional[str] = None
    is_remote: bool = False
    git_branch: Optional[str] = None
    git_commit: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    log_count: int = 0
    directory: Optional[str] = None
    summary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "SessionInfo":
        return cls(
            session_id=str(data.get("sessionId", "")),
            machine_name=data.get("machineName"),
            is_remote=bool(data.get("isRemote", False)),
            git_branch=data.get("gitBranch"),
            git_commit=data.get("gitCommit"),
            started_at=data.get("startedAt"),
            ended_at=data.get("endedAt"),
            log_count=int(data.get("logCount") or 0),
            directory=data.get("directory"),
            summary=data.get("summary"),
        )


@dataclass
class SessionsResponse:
    sessions: list[SessionInfo]
    has_remote_activity: bool

    @classmethod
    def from_dict(cls, data: dict) -> "SessionsResponse":
        sessions = [SessionInfo.from_dict(s) for s in data.get("sessions") or []]
        has_remote = data.get("hasRemoteActivity")
        if has_remote is None:
            has_remote = any(s.is_remote for s in sessions)
        return cls(sessions=sessions, has_remote_activity=bool(has_remote))


@dataclass
class StoreResult:
    deduplicated: bool = False


@dataclass
class StoredFile:
    """Latest server-side version of a file."""

    content: str
    content_hash: str


@dataclass
class SharedFile:
    file_path: str


@dataclass
class FileVerdict:
    """Server's sync status for one file.

    ``status`` is kept as the raw string so unexpected values can be
    reported rather than silently coerced.
    """

    file_path: str
    status: str


@dataclass(frozen=True)
class Unauthenticated:
    """No usable credentials are stored on this machine."""

    reason: str = "no stored credentials"


def _file_path(item: dict) -> str:
    file_path = item["filePath"]
    if not isinstance(file_path, str) or not file_path:
        raise ValueError(f"invalid filePath {file_path!r}")
    return file_path


def _entries(data: Any) -> list[MemoryEntry]:
    return [MemoryEntry.from_dict(item) for item in data or []]


def _store_result(data: Any) -> StoreResult:
    return StoreResult(deduplicated=bool((data or {}).get("deduplicated")))


def _stored_file(data: dict) -> StoredFile:
    content = data.get("content")
    if not isinstance(content, str):
        raise MemoryGatewayError("Invalid file payload from server")
    return StoredFile(content=content, content_hash=data.get("contentHash") or "")


def _shared_files(data: Any) -> list[SharedFile]:
    return [SharedFile(file_path=_file_path(item)) for item in data or []]


def _verdicts(data: Any) -> list[FileVerdict]:
    return [
        FileVerdict(file_path=_file_path(item), status=str(item.get("status", "")))
        for item in (data or {}).get("files") or []
    ]


class MemoryClient:
    """Client for the memory server HTTP API."""

    def __init__(
        self,
        server_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize client.

        Args:
            server_url: Server base URL (``/api`` is appended)
            token: Bearer token
            timeout: Request timeout in seconds
            http_client: Preconfigured httpx client (mainly for tests)
        """
        self.server_url = server_url.rstrip("/")
        self.base_url = f"{self.server_url}/api"
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self._owns_client = http_client is None
        self.client = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_credentials(
        cls, credentials: Credentials, timeout: float = DEFAULT_TIMEOUT
    ) -> "MemoryClient":
        return cls(credentials.server_url, credentials.token, timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "MemoryClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Returns:
            Parsed JSON, or None for an empty body

        Raises:
            GatewayConnectionError: Network failure or timeout
            AuthenticationError: 401/403 response
            NotFoundError: 404 response
            MemoryGatewayError: Any other non-2xx response or invalid JSON
        """
        url = f"{self.base_url}{path}"
        if params is not None:
            params = {k: v for k, v in params.items() if v is not None}

        logger.debug(f"{method} {url}")
        try:
            response = self.client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self.headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise GatewayConnectionError(
                f"Request timed out after {self.timeout:g}s"
            ) from e
        except httpx.RequestError as e:
            raise GatewayConnectionError(str(e) or e.__class__.__name__) from e

        if response.is_error:
            error = _error_from_response(response)
            logger.debug(f"{method} {url} failed: {error.status_code} {error}")
            raise error

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise MemoryGatewayError(
                f"Invalid JSON response from server: {e}", response.status_code
            ) from e

    def _parse(self, parse: Callable[[Any], T], data: Any) -> T:
        """Apply ``parse`` to a decoded body, mapping shape errors.

        Raises:
            MemoryGatewayError: Body does not have the expected structure
        """
        try:
            return parse(data)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise MemoryGatewayError(
                f"Unexpected response from server: {e.__class__.__name__}: {e}"
            ) from e

    # Logs

    def append_log(self, entry: dict[str, Any]) -> Any:
        """Append a memory entry (``POST /logs``)."""
        return self._request("POST", "/logs", json=entry)

    def recent_logs(self, project: str, limit: int = 20) -> list[MemoryEntry]:
        data = self._request(
            "GET", "/logs/recent", params={"project": project, "limit": limit}
        )
        return self._parse(_entries, data)

    def sessions(
        self, project: str, machine_id: str, limit: int = 10
    ) -> SessionsResponse:
        data = self._request(
            "GET",
            "/logs/sessions",
            params={"project": project, "machineId": machine_id, "limit": limit},
        )
        return self._parse(SessionsResponse.from_dict, data or {})

    def search_logs(
        self,
        query: str,
        project: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 20,
    ) -> list[MemoryEntry]:
        data = self._request(
            "GET",
            "/logs/search",
            params={"query": query, "project": project, "type": type, "limit": limit},
        )
        return self._parse(_entries, data)

    # Files

    def store_file(
        self,
        project: str,
        file_path: str,
        content: str,
        content_hash: str,
        machine_id: str,
        session_id: str,
    ) -> StoreResult:
        """Store a new version of a file (``POST /files/store``).

        The server skips the write when ``content_hash`` matches its latest
        version and reports ``deduplicated``.
        """
        data = self._request(
            "POST",
            "/files/store",
            json={
                "project": project,
                "filePath": file_path,
                "content": content,
                "contentHash": content_hash,
                "machineId": machine_id,
                "sessionId": session_id,
            },
        )
        return self._parse(_store_result, data)

    def latest_file(self, project: str, file_path: str) -> Optional[StoredFile]:
        """Fetch the latest stored version of a file.

        Returns:
            StoredFile, or None if the server has no version of it
        """
        try:
            data = self._request(
                "GET",
                "/files/latest",
                params={"project": project, "filePath": file_path},
            )
        except NotFoundError:
            return None

        if not data:
            return None
        return self._parse(_stored_file, data)

    def share_file(self, project: str, file_path: str) -> None:
        self._request(
            "POST", "/files/share", json={"project": project, "filePath": file_path}
        )

    def unshare_file(self, project: str, file_path: str) -> None:
        self._request(
            "POST",
            "/files/unshare",
            json={"project": project, "filePath": file_path},
        )

    def shared_files(self, project: str) -> list[SharedFile]:
        data = self._request("GET", "/files/shared", params={"project": project})
        return self._parse(_shared_files, data)

    def sync_status(
        self, project: str, files: list[dict[str, str]]
    ) -> list[FileVerdict]:
        """Ask the server which files are up to date, stale, or newer locally.

        Args:
            project: Project key
            files: ``[{"filePath", "contentHash"}]``; empty hash means the
                file is absent locally

        Returns:
            One FileVerdict per file the server reported on
        """
        data = self._request(
            "POST", "/files/sync", json={"project": project, "files": files}
        )
        return self._parse(_verdicts, data)


def create_client(
    store: CredentialStore, timeout: float = DEFAULT_TIMEOUT
) -> MemoryClient | Unauthenticated:
    """Create a client from stored credentials.

    Never raises for missing credentials; returns Unauthenticated instead.
    """
    credentials = store.load()
    if credentials is None:
        return Unauthenticated()
    return MemoryClient.from_credentials(credentials, timeout=timeout)


def login(
    server_url: str, email: str, password: str, timeout: float = DEFAULT_TIMEOUT
) -> Credentials:
    """Exchange email and password for a bearer token.

    Raises:
        MemoryGatewayError: Login rejected or server unreachable
    """
    server_url = server_url.rstrip("/")
    try:
        response = httpx.post(
            f"{server_url}/api/auth/login",
            json={"email": email, "password": password},
            timeout=timeout,
        )
    except httpx.RequestError as e:
        raise GatewayConnectionError(str(e) or e.__class__.__name__) from e

    if response.is_error:
        raise _error_from_response(response)

    try:
        body = response.json()
    except ValueError:
        body = None
    token = body.get("access_token") if isinstance(body, dict) else None
    if not token:
        raise MemoryGatewayError("Login response did not include an access token")
    return Credentials(server_url=server_url, token=token)
