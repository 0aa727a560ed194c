"""Tests for the forever CLI commands."""

import pytest

from forever import cli
from forever.client import MemoryGatewayError
from forever.config import ForeverConfig
from forever.context import ForeverContext
from forever.credentials import Credentials, CredentialStore
from forever.sync import SyncOperationLog


@pytest.fixture
def forever_home(tmp_path, monkeypatch):
    home = tmp_path / "forever-home"
    monkeypatch.setenv("FOREVER_HOME", str(home))
    return home


@pytest.fixture
def use_context(monkeypatch, context):
    """Make the CLI use the test context instead of building its own."""
    monkeypatch.setattr(ForeverContext, "create", lambda config=None, cwd=None: context)
    return context


def test_setup_saves_credentials(forever_home, capsys):
    cli.setup("https://forever.example.com", "tok_123")

    credentials = CredentialStore(forever_home / "credentials.json").load()
    assert credentials == Credentials(
        server_url="https://forever.example.com", token="tok_123"
    )
    assert "Credentials saved" in capsys.readouterr().out


def test_logout(forever_home, capsys):
    cli.setup("https://forever.example.com", "tok_123")
    capsys.readouterr()

    cli.logout()
    assert "credentials removed" in capsys.readouterr().out
    assert not (forever_home / "credentials.json").exists()

    cli.logout()
    assert "No stored credentials" in capsys.readouterr().out


def test_login_with_arguments(forever_home, monkeypatch, capsys):
    calls = []

    def fake_login(server_url, email, password):
        calls.append((server_url, email, password))
        return Credentials(server_url=server_url, token="issued")

    monkeypatch.setattr(cli, "api_login", fake_login)
    cli.login(server_url="https://s.example.com", email="me@example.com", password="pw")

    assert calls == [("https://s.example.com", "me@example.com", "pw")]
    assert CredentialStore(forever_home / "credentials.json").load().token == "issued"
    assert "Authenticated" in capsys.readouterr().out


def test_login_failure_exits(forever_home, monkeypatch, capsys):
    def fake_login(server_url, email, password):
        raise MemoryGatewayError("Invalid credentials", 401)

    monkeypatch.setattr(cli, "api_login", fake_login)
    with pytest.raises(SystemExit) as exc_info:
        cli.login(server_url="https://s", email="me@example.com", password="bad")

    assert exc_info.value.code == 1
    assert "Login failed: Invalid credentials" in capsys.readouterr().out
    assert not (forever_home / "credentials.json").exists()


def test_sync_not_authenticated(forever_home, capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.sync()

    assert exc_info.value.code == 1
    assert "Not authenticated" in capsys.readouterr().out


def test_sync_dry_run_changes_nothing(use_context, server_state, capsys):
    server_state.put_file("my-project", "a.txt", "remote", "h")
    server_state.shared["my-project"] = ["a.txt"]

    cli.sync(dry_run=True)

    out = capsys.readouterr().out
    assert "a.txt" in out
    assert "download" in out
    assert not (use_context.cwd / "a.txt").exists()
    assert server_state.count("GET", "/api/files/latest") == 0


def test_sync_prints_report(use_context, server_state, capsys):
    server_state.put_file("my-project", "a.txt", "remote", "h")
    server_state.shared["my-project"] = ["a.txt"]

    cli.sync()

    assert "↓ a.txt" in capsys.readouterr().out
    assert (use_context.cwd / "a.txt").read_text() == "remote"


def test_sync_exits_on_failed_files(use_context, server_state, capsys):
    server_state.shared["my-project"] = ["never-stored.txt"]

    with pytest.raises(SystemExit) as exc_info:
        cli.sync()

    assert exc_info.value.code == 1
    assert "1 failed" in capsys.readouterr().out


def test_sync_log(forever_home, capsys):
    cli.sync_log()
    assert "No sync operations recorded" in capsys.readouterr().out

    log = SyncOperationLog(ForeverConfig.from_env().sync_log_file)
    log.log_operation("upload", "a.txt", "success", project="p")
    log.log_operation("download", "b.txt", "failed", project="p", error="boom")

    cli.sync_log(failed=True)
    out = capsys.readouterr().out
    assert "b.txt" in out
    assert "a.txt" not in out


def test_status(forever_home, use_context, capsys):
    cli.status()

    out = capsys.readouterr().out
    assert "Authenticated" in out
    assert "my-project" in out
    assert "main" in out
