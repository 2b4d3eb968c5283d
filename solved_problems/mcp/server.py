"""MCP server for solved-problems.

Exposes the agent tools (list, get, draft) over stdio or streamable HTTP.
Every tool call resolves its Principal from an API key: the request's
Authorization header over HTTP, or SOLVED_PROBLEMS_API_KEY over stdio.
Launched by `solved-problems mcp`, or mounted at /mcp by the REST app.
"""

from __future__ import annotations

import json
import os
import sqlite3
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from db.migrations import init_db
from solved_problems.identity import BEARER_PREFIX, Principal, authenticate_api_key
from solved_problems.mcp import tools

DEFAULT_DB_PATH = "solved-problems.db"


@dataclass
class AppState:
    """Lifespan state accessible by tools via Context."""

    conn: sqlite3.Connection
    api_key: str | None


def _make_lifespan(
    db_path: str | None,
) -> Callable[[FastMCP], Any]:  # type: ignore[type-arg]
    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[AppState]:  # type: ignore[type-arg]
        """Open DB connection at startup, close on shutdown."""
        path = db_path or os.environ.get("SOLVED_PROBLEMS_DB", DEFAULT_DB_PATH)
        conn = init_db(str(Path(path).expanduser()))
        try:
            yield AppState(conn=conn, api_key=os.environ.get("SOLVED_PROBLEMS_API_KEY"))
        finally:
            conn.close()

    return app_lifespan


def _get_conn(ctx: Context) -> sqlite3.Connection:
    """Extract DB connection from Context lifespan state."""
    state: AppState = ctx.request_context.lifespan_context
    return state.conn


def _get_principal(ctx: Context) -> Principal | None:
    """Resolve the calling API key on every call, so revocation is immediate."""
    state: AppState = ctx.request_context.lifespan_context
    request = ctx.request_context.request
    if request is not None:
        authorization = request.headers.get("authorization")
    elif state.api_key:
        authorization = f"{BEARER_PREFIX}{state.api_key}"
    else:
        authorization = None
    return authenticate_api_key(state.conn, authorization)


def create_server(db_path: str | None = None) -> FastMCP:
    """Create and configure the MCP server with all tools registered."""
    server = FastMCP(
        name="solved-problems",
        instructions=(
            "Read solved problems your API key has been granted and propose "
            "new ones or updates as drafts for the owner to review."
        ),
        lifespan=_make_lifespan(db_path),
        streamable_http_path="/",
        # The REST app gates /mcp on an API key before requests reach here.
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=False
        ),
    )

    @server.tool(
        description=(
            "List solved problems accessible to this API key. Optionally filter by "
            "server dependencies, client dependencies, tags (case-insensitive matching), "
            "or date range (updated_before/updated_after, ISO 8601 such as "
            "'2025-01-15' or '2025-01-15T08:30:00Z')."
        )
    )
    def list_solved_problems(
        server_dependencies: list[str] | None = None,
        client_dependencies: list[str] | None = None,
        tags: list[str] | None = None,
        updated_after: str | None = None,
        updated_before: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.list_solved_problems(
            conn,
            _get_principal(ctx),
            server_dependencies=server_dependencies,
            client_dependencies=client_dependencies,
            tags=tags,
            updated_after=updated_after,
            updated_before=updated_before,
        )
        return json.dumps(result, indent=2)

    @server.tool(
        description=(
            "Get full details of solved problems by their IDs, including latest version "
            "details, tags, and dependencies. Only returns solved problems the API key "
            "has access to."
        )
    )
    def get_solved_problems(
        ids: list[str],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.get_solved_problems(conn, _get_principal(ctx), ids)
        return json.dumps(result, indent=2)

    @server.tool(
        description=(
            "Propose a new solved problem or an update to an existing one. Creates a "
            "PENDING draft for the owner to review. Pass 'id' to propose an update; "
            "dependencies are objects with name, version and packageManager."
        )
    )
    # camelCase parameters: agents already send these names to this tool.
    def draft_solved_problem(
        name: str,
        description: str,
        appType: str,  # noqa: N803
        details: str,
        id: str | None = None,
        tags: list[str] | None = None,
        serverDependencies: list[dict[str, str]] | None = None,  # noqa: N803
        clientDependencies: list[dict[str, str]] | None = None,  # noqa: N803
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        conn = _get_conn(ctx)
        result = tools.draft_solved_problem(
            conn,
            _get_principal(ctx),
            name=name,
            description=description,
            app_type=appType,
            details=details,
            id=id,
            tags=tags,
            server_dependencies=serverDependencies,
            client_dependencies=clientDependencies,
        )
        return json.dumps(result, indent=2)

    return server


def run_server(db_path: str | None = None, api_key: str | None = None) -> None:
    """Entry point: create server and run on stdio."""
    if api_key:
        os.environ["SOLVED_PROBLEMS_API_KEY"] = api_key

    server = create_server(db_path)
    server.run(transport="stdio")
