"""Shared fixtures.

The remote memory server is replaced by a small in-memory FastAPI app that
implements the same ``/api`` surface. MemoryClient talks to it through
Starlette's TestClient, which is an ``httpx.Client``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel, ConfigDict

from forever.client import MemoryClient
from forever.config import ForeverConfig
from forever.context import ForeverContext
from forever.credentials import CredentialStore
from forever.sync import SyncOperationLog

TEST_TOKEN = "test-token"
TEST_SERVER_URL = "http://testserver"
TEST_MACHINE_ID = "test-host-0a1b2c3d"
TEST_SESSION_ID = "1700000000000-deadbeef"


@dataclass
class FakeServerState:
    """Everything the fake server has been told."""

    logs: list[dict[str, Any]] = field(default_factory=list)
    # (project, filePath) -> versions, oldest first
    files: dict[tuple[str, str], list[dict[str, str]]] = field(default_factory=dict)
    shared: dict[str, list[str]] = field(default_factory=dict)
    # filePath -> forced sync verdict (simulates stale server state)
    verdict_overrides: dict[str, str] = field(default_factory=dict)
    # filePaths the sync endpoint leaves out of its reply
    dropped_verdicts: set[str] = field(default_factory=set)
    requests: list[tuple[str, str]] = field(default_factory=list)

    def latest(self, project: str, file_path: str) -> Optional[dict[str, str]]:
        versions = self.files.get((project, file_path))
        return versions[-1] if versions else None

    def put_file(
        self, project: str, file_path: str, content: str, content_hash: str
    ) -> None:
        self.files.setdefault((project, file_path), []).append(
            {"content": content, "contentHash": content_hash}
        )

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r == (method, path))


class LogIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    project: str
    type: str
    content: str
    sessionId: str
    machineId: str
    tags: Optional[list[str]] = None


class StoreIn(BaseModel):
    project: str
    filePath: str
    content: str
    contentHash: str
    machineId: str
    sessionId: str


class FileRef(BaseModel):
    project: str
    filePath: str


class SyncFile(BaseModel):
    filePath: str
    contentHash: str


class SyncIn(BaseModel):
    project: str
    files: list[SyncFile]


def create_fake_server(state: FakeServerState) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def record(request, call_next):
        state.requests.append((request.method, request.url.path))
        return await call_next(request)

    def verify_token(authorization: str = Header(default="")):
        if authorization != f"Bearer {TEST_TOKEN}":
            raise HTTPException(status_code=401, detail="Unauthorized")

    auth = [Depends(verify_token)]

    @app.post("/api/logs", dependencies=auth)
    def append_log(entry: LogIn):
        data = entry.model_dump()
        data["createdAt"] = datetime.now(timezone.utc).isoformat()
        state.logs.append(data)
        return {"id": len(state.logs)}

    @app.get("/api/logs/recent", dependencies=auth)
    def recent(project: str, limit: int = 20):
        entries = [log for log in state.logs if log["project"] == project]
        return list(reversed(entries))[:limit]

    @app.get("/api/logs/sessions", dependencies=auth)
    def sessions(project: str, machineId: str, limit: int = 10):
        grouped: dict[str, list[dict]] = {}
        for log in state.logs:
            if log["project"] == project:
                grouped.setdefault(log["sessionId"], []).append(log)

        result = []
        for session_id, logs in grouped.items():
            result.append(
                {
                    "sessionId": session_id,
                    "machineName": logs[0]["machineId"],
                    "isRemote": logs[0]["machineId"] != machineId,
                    "gitBranch": logs[-1].get("gitBranch"),
                    "gitCommit": logs[-1].get("gitCommit"),
                    "startedAt": logs[0]["createdAt"],
                    "endedAt": logs[-1]["createdAt"],
                    "logCount": len(logs),
                    "directory": logs[-1].get("directory"),
                }
            )
        result = result[:limit]
        return {
            "sessions": result,
            "hasRemoteActivity": any(s["isRemote"] for s in result),
        }

    @app.get("/api/logs/search", dependencies=auth)
    def search(
        query: str,
        project: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 20,
    ):
        matches = [
            log
            for log in state.logs
            if query.lower() in log["content"].lower()
            and (project is None or log["project"] == project)
            and (type is None or log["type"] == type)
        ]
        return matches[:limit]

    @app.post("/api/files/store", dependencies=auth)
    def store(body: StoreIn):
        latest = state.latest(body.project, body.filePath)
        if latest and latest["contentHash"] == body.contentHash:
            return {"deduplicated": True}
        state.put_file(body.project, body.filePath, body.content, body.contentHash)
        return {"deduplicated": False}

    @app.get("/api/files/latest", dependencies=auth)
    def latest(project: str, filePath: str):
        return state.latest(project, filePath)

    @app.post("/api/files/share", dependencies=auth)
    def share(body: FileRef):
        paths = state.shared.setdefault(body.project, [])
        if body.filePath not in paths:
            paths.append(body.filePath)
        return {"ok": True}

    @app.post("/api/files/unshare", dependencies=auth)
    def unshare(body: FileRef):
        paths = state.shared.get(body.project, [])
        if body.filePath in paths:
            paths.remove(body.filePath)
        return {"ok": True}

    @app.get("/api/files/shared", dependencies=auth)
    def shared(project: str):
        return [{"filePath": p} for p in state.shared.get(project, [])]

    @app.post("/api/files/sync", dependencies=auth)
    def sync(body: SyncIn):
        verdicts = []
        for f in body.files:
            if f.filePath in state.dropped_verdicts:
                continue
            if f.filePath in state.verdict_overrides:
                status = state.verdict_overrides[f.filePath]
            else:
                versions = state.files.get((body.project, f.filePath), [])
                known = [v["contentHash"] for v in versions]
                if not known:
                    status = "upload_needed"
                elif f.contentHash == known[-1]:
                    status = "up_to_date"
                elif f.contentHash in known:
                    status = "download_needed"
                else:
                    status = "upload_needed"
            verdicts.append({"filePath": f.filePath, "status": status})
        return {"files": verdicts}

    return app


class FakeGit:
    """Stand-in for GitContext with fixed answers."""

    def __init__(
        self,
        origin: Optional[str] = None,
        branch: Optional[str] = "main",
        commit: Optional[str] = "abc1234",
        cwd: Path = Path("."),
    ):
        self.origin = origin
        self.branch = branch
        self.commit = commit
        self.cwd = cwd

    def origin_url(self) -> Optional[str]:
        return self.origin

    def current_branch(self) -> Optional[str]:
        return self.branch

    def current_commit(self) -> Optional[str]:
        return self.commit

    def as_log_fields(self) -> dict:
        return {
            "gitBranch": self.branch,
            "gitCommit": self.commit,
            "directory": str(self.cwd),
        }


@pytest.fixture
def server_state():
    return FakeServerState()


@pytest.fixture
def http_client(server_state):
    with TestClient(create_fake_server(server_state)) as client:
        yield client


@pytest.fixture
def memory_client(http_client):
    return MemoryClient(TEST_SERVER_URL, TEST_TOKEN, http_client=http_client)


@pytest.fixture
def workdir(tmp_path):
    """Project working directory named ``my-project``."""
    path = tmp_path / "my-project"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path):
    return ForeverConfig(home=tmp_path / "home")


@pytest.fixture
def context(config, workdir, memory_client):
    """Authenticated context whose project resolves to ``my-project``."""
    return ForeverContext(
        config=config,
        cwd=workdir,
        machine_id=TEST_MACHINE_ID,
        session_id=TEST_SESSION_ID,
        credentials=CredentialStore(config.credentials_file),
        git=FakeGit(cwd=workdir),
        client_factory=lambda timeout: memory_client,
        operation_log=SyncOperationLog(config.sync_log_file),
    )
