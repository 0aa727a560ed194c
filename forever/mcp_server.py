"""MCP server exposing the forever tools over stdio.

Claude Code setup (.mcp.json in project root):
    {
      "mcpServers": {
        "forever": {"type": "stdio", "command": "forever", "args": ["serve"]}
      }
    }

Tool parameter names (``filePath``, ``sessionId``) follow the published tool
schema, so they are camelCase here and nowhere else.
"""

from typing import Annotated, Literal, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from forever import tools
from forever.context import ForeverContext

ProjectArg = Annotated[
    Optional[str],
    Field(description="Project name or git remote URL (auto-detected from git if omitted)"),
]
FilePathArg = Annotated[str, Field(description="Path to the file (relative or absolute)")]

LogType = Literal["summary", "decision", "error"]
SearchType = Literal["user_input", "claude_reply", "summary", "decision", "error"]


def build_server(context: ForeverContext) -> FastMCP:
    """Create the MCP server with every tool bound to ``context``."""
    mcp = FastMCP("forever")

    @mcp.tool(
        name="memory_log",
        description="Log an entry to Forever memory (summary, decision, or error)",
    )
    def memory_log(
        type: Annotated[LogType, Field(description="Type of memory entry")],
        content: Annotated[str, Field(description="The content to log")],
        project: ProjectArg = None,
        tags: Annotated[
            Optional[list[str]], Field(description="Optional tags for categorization")
        ] = None,
        sessionId: Annotated[  # noqa: N803
            Optional[str],
            Field(description="Session ID for grouping (auto-generated if omitted)"),
        ] = None,
    ) -> str:
        return tools.memory_log(
            context,
            type=type,
            content=content,
            project=project,
            tags=tags,
            session_id=sessionId,
        )

    @mcp.tool(
        name="memory_get_recent",
        description="Get recent memory entries for a project",
    )
    def memory_get_recent(
        project: ProjectArg = None,
        limit: Annotated[int, Field(description="Number of entries to fetch")] = 20,
    ) -> str:
        return tools.memory_get_recent(context, project=project, limit=limit)

    @mcp.tool(
        name="memory_get_sessions",
        description=(
            "Get recent sessions for a project, grouped by session with machine "
            "info. Use at startup to detect cross-machine handoffs."
        ),
    )
    def memory_get_sessions(
        project: ProjectArg = None,
        limit: Annotated[
            int, Field(description="Number of recent sessions to fetch")
        ] = 10,
    ) -> str:
        return tools.memory_get_sessions(context, project=project, limit=limit)

    @mcp.tool(
        name="memory_search",
        description="Search memory entries across projects",
    )
    def memory_search(
        query: Annotated[str, Field(description="Search query")],
        project: Annotated[
            Optional[str], Field(description="Filter by project")
        ] = None,
        type: Annotated[
            Optional[SearchType], Field(description="Filter by entry type")
        ] = None,
        limit: Annotated[int, Field(description="Max results")] = 20,
    ) -> str:
        return tools.memory_search(
            context, query=query, project=project, type=type, limit=limit
        )

    @mcp.tool(
        name="memory_store_file",
        description="Store a file in Forever for cross-machine access",
    )
    def memory_store_file(filePath: FilePathArg, project: ProjectArg = None) -> str:  # noqa: N803
        return tools.memory_store_file(context, file_path=filePath, project=project)

    @mcp.tool(
        name="memory_restore_file",
        description="Restore a file from Forever to the local disk",
    )
    def memory_restore_file(filePath: FilePathArg, project: ProjectArg = None) -> str:  # noqa: N803
        return tools.memory_restore_file(context, file_path=filePath, project=project)

    @mcp.tool(
        name="memory_share_file",
        description="Mark a file for auto-sync across machines (also stores it immediately)",
    )
    def memory_share_file(filePath: FilePathArg, project: ProjectArg = None) -> str:  # noqa: N803
        return tools.memory_share_file(context, file_path=filePath, project=project)

    @mcp.tool(
        name="memory_unshare_file",
        description="Stop auto-syncing a file across machines",
    )
    def memory_unshare_file(filePath: FilePathArg, project: ProjectArg = None) -> str:  # noqa: N803
        return tools.memory_unshare_file(context, file_path=filePath, project=project)

    @mcp.tool(
        name="memory_list_shared_files",
        description="List the files marked for auto-sync in a project",
    )
    def memory_list_shared_files(project: ProjectArg = None) -> str:
        return tools.memory_list_shared_files(context, project=project)

    @mcp.tool(
        name="memory_sync_files",
        description=(
            "Sync all shared files for a project: downloads newer versions, "
            "uploads local changes"
        ),
    )
    def memory_sync_files(project: ProjectArg = None) -> str:
        return tools.memory_sync_files(context, project=project)

    return mcp


def serve(context: Optional[ForeverContext] = None) -> None:
    """Run the MCP server on stdio until the client disconnects."""
    build_server(context or ForeverContext.create()).run()
