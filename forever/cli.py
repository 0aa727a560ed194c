"""Command line interface for forever.

Running ``forever`` with no subcommand starts the MCP server on stdio.
"""

import logging
import sys
from typing import Annotated, Optional

import cyclopts
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from forever import __version__
from forever.client import FILE_TIMEOUT, MemoryGatewayError, Unauthenticated, login as api_login
from forever.config import ForeverConfig
from forever.context import ForeverContext
from forever.credentials import Credentials, CredentialStore
from forever.machine import MachineIdentityStore
from forever.project import PROJECT_NOT_RESOLVED
from forever.sync import SyncOperationLog, SyncPlan
from forever.tools import NOT_AUTHENTICATED

app = cyclopts.App(
    name="forever",
    help="Cross-machine memory and file sync for AI coding assistants",
    version=__version__,
)


def _get_console() -> Console:
    """Get a Rich console for output."""
    return Console()


def configure_logging(config: ForeverConfig, verbose: bool = False) -> None:
    """Log to stderr; stdout carries the MCP protocol."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@app.default
@app.command
def serve(
    *,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Run the MCP server on stdio."""
    from forever.mcp_server import serve as run_server

    config = ForeverConfig.from_env()
    configure_logging(config, verbose)
    run_server(ForeverContext.create(config))


@app.command
def login(
    *,
    server_url: Annotated[
        Optional[str], cyclopts.Parameter(help="Forever server URL")
    ] = None,
    email: Annotated[Optional[str], cyclopts.Parameter(help="Account email")] = None,
    password: Annotated[
        Optional[str], cyclopts.Parameter(help="Account password (prompted if omitted)")
    ] = None,
):
    """Log in with email and password and store the access token.

    Example:
        forever login
        forever login --server-url https://forever.example.com --email me@example.com
    """
    console = _get_console()
    config = ForeverConfig.from_env()

    console.print("[bold]Forever Login[/bold]\n")
    server_url = server_url or Prompt.ask(
        "Server URL", default=config.default_server_url, console=console
    )
    email = email or Prompt.ask("Email", console=console)
    password = password or Prompt.ask("Password", password=True, console=console)

    try:
        credentials = api_login(server_url, email, password)
    except MemoryGatewayError as e:
        console.print(f"[red]Login failed: {e}[/red]")
        sys.exit(1)

    CredentialStore(config.credentials_file).save(credentials)
    console.print(
        f"[green]✓ Authenticated! Credentials saved to {config.credentials_file}[/green]"
    )


@app.command
def setup(
    url: Annotated[str, cyclopts.Parameter(help="Forever server URL")],
    token: Annotated[str, cyclopts.Parameter(help="Access token")],
):
    """Store a server URL and an existing access token.

    Example:
        forever setup https://forever.example.com tok_xxx
    """
    console = _get_console()
    config = ForeverConfig.from_env()

    CredentialStore(config.credentials_file).save(
        Credentials(server_url=url, token=token)
    )
    console.print(
        Panel(
            Text.assemble(
                ("✓ ", "green bold"),
                ("Credentials saved\n\n", "green"),
                ("URL: ", "cyan"),
                (url, "white"),
            ),
            title="Setup Complete",
            border_style="green",
        )
    )


@app.command
def logout():
    """Delete stored credentials."""
    console = _get_console()
    config = ForeverConfig.from_env()

    if CredentialStore(config.credentials_file).clear():
        console.print("[yellow]Logged out, credentials removed[/yellow]")
    else:
        console.print("[yellow]No stored credentials[/yellow]")


@app.command
def status(
    *,
    project: Annotated[
        Optional[str], cyclopts.Parameter(help="Project to resolve")
    ] = None,
):
    """Show authentication, machine identity and detected project."""
    console = _get_console()
    config = ForeverConfig.from_env()
    context = ForeverContext.create(config)

    credentials = context.credentials.load()
    identity = MachineIdentityStore(config.machine_file).get_or_create()

    table = Table(title="Forever Status", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Authenticated", "✓ Yes" if credentials else "✗ No")
    if credentials:
        table.add_row("Server URL", credentials.server_url)
    table.add_row("Machine ID", identity.machine_id)
    table.add_row("Alias", identity.alias)
    table.add_row("Project", context.resolve_project(project) or "[red]not detected[/red]")
    table.add_row("Git branch", context.git.current_branch() or "-")
    table.add_row("Git commit", context.git.current_commit() or "-")
    table.add_row("Config dir", str(config.home))

    console.print(table)


def _print_plan(console: Console, plan: SyncPlan) -> None:
    table = Table(title=f"Sync plan ({plan.shared_count} shared files)")
    table.add_column("File", style="white")
    table.add_column("Action", style="cyan")
    table.add_column("Reason")

    for op in plan.download:
        table.add_row(op.path, "[green]download[/green]", op.reason)
    for op in plan.upload:
        table.add_row(op.path, "[blue]upload[/blue]", op.reason)
    for op in plan.up_to_date:
        table.add_row(op.path, "[dim]skip[/dim]", op.reason)
    for op in plan.failed:
        table.add_row(op.path, "[red]failed[/red]", op.error or op.reason)

    console.print(table)


@app.command
def sync(
    *,
    project: Annotated[
        Optional[str], cyclopts.Parameter(help="Project (auto-detected if omitted)")
    ] = None,
    dry_run: Annotated[
        bool, cyclopts.Parameter(help="Show what would be transferred")
    ] = False,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Sync shared files of the project in the current directory.

    Exits with status 1 if any file failed to sync.

    Example:
        forever sync
        forever sync --project my-app --dry-run
    """
    console = _get_console()
    config = ForeverConfig.from_env()
    configure_logging(config, verbose)
    context = ForeverContext.create(config)

    client = context.connect(FILE_TIMEOUT)
    if isinstance(client, Unauthenticated):
        console.print(f"[red]{NOT_AUTHENTICATED}[/red]")
        sys.exit(1)

    resolved = context.resolve_project(project)
    if resolved is None:
        client.close()
        console.print(f"[red]{PROJECT_NOT_RESOLVED}[/red]")
        sys.exit(1)

    with client:
        reconciler = context.reconciler(client, resolved)
        try:
            plan = reconciler.analyze()
            if dry_run:
                if plan.shared_count == 0:
                    console.print(f'No shared files for "{resolved}"')
                else:
                    _print_plan(console, plan)
                return
            report = reconciler.execute(plan)
        except MemoryGatewayError as e:
            console.print(f"[red]Sync failed: {e}[/red]")
            sys.exit(1)

    console.print(report.render(), markup=False, highlight=False)
    if report.failed:
        sys.exit(1)


@app.command
def sync_log(
    *,
    limit: Annotated[int, cyclopts.Parameter(help="Number of operations to show")] = 20,
    failed: Annotated[bool, cyclopts.Parameter(help="Only show failures")] = False,
):
    """Show recent sync operations."""
    console = _get_console()
    config = ForeverConfig.from_env()
    log = SyncOperationLog(config.sync_log_file)

    if failed:
        operations = log.get_failed_operations()[-limit:][::-1]
    else:
        operations = log.get_recent_operations(limit)

    if not operations:
        console.print("No sync operations recorded")
        return

    table = Table(title="Sync operations")
    table.add_column("Time", style="dim")
    table.add_column("Project")
    table.add_column("Operation", style="cyan")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for op in operations:
        status_text = "[green]success[/green]" if op.status == "success" else "[red]failed[/red]"
        table.add_row(
            op.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            op.project or "",
            op.op_type,
            op.path,
            status_text,
            op.error or "",
        )

    console.print(table)


def main():
    load_dotenv()
    app()
