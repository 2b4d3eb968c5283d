"""Mounting the MCP server inside the REST app.

ApiKeyGate rejects any /mcp request whose bearer key does not resolve
before the MCP transport sees it. McpGateway owns the streamable HTTP
session manager, which must run for the app's whole lifetime; start()
may be called any number of times and starts it once.
"""

import asyncio
import json
import logging
from contextlib import AsyncExitStack

from starlette.concurrency import run_in_threadpool
from starlette.types import ASGIApp, Receive, Scope, Send

from db.client import get_connection
from solved_problems.identity import authenticate_api_key
from solved_problems.mcp.server import create_server

logger = logging.getLogger(__name__)

UNAUTHORIZED_BODY = json.dumps({"error": "Invalid or revoked API key"}).encode()


class ApiKeyGate:
    """ASGI wrapper that answers 401 unless Authorization carries a live API key."""

    def __init__(self, app: ASGIApp, db_path: str) -> None:
        self.app = app
        self.db_path = db_path

    def _authorized(self, scope: Scope) -> bool:
        authorization = None
        for name, value in scope.get("headers", []):
            if name == b"authorization":
                authorization = value.decode("latin-1")
                break
        conn = get_connection(self.db_path)
        try:
            return authenticate_api_key(conn, authorization) is not None
        finally:
            conn.close()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or await run_in_threadpool(self._authorized, scope):
            await self.app(scope, receive, send)
            return

        await send(
            {
                "type": "http.response.start",
                "status": 401,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(UNAUTHORIZED_BODY)).encode()),
                ],
            }
        )
        await send({"type": "http.response.body", "body": UNAUTHORIZED_BODY})


class McpGateway:
    """Holds the MCP server and its session manager for one REST app."""

    def __init__(self, db_path: str) -> None:
        self.server = create_server(db_path)
        self.asgi_app = ApiKeyGate(self.server.streamable_http_app(), db_path)
        self._lock = asyncio.Lock()
        self._stack: AsyncExitStack | None = None

    @property
    def started(self) -> bool:
        return self._stack is not None

    async def start(self) -> None:
        """Start the session manager. Concurrent and repeated calls start it once."""
        async with self._lock:
            if self._stack is not None:
                return
            stack = AsyncExitStack()
            await stack.enter_async_context(self.server.session_manager.run())
            self._stack = stack
            logger.info("MCP session manager started")

    async def stop(self) -> None:
        async with self._lock:
            if self._stack is None:
                return
            stack, self._stack = self._stack, None
            await stack.aclose()
            logger.info("MCP session manager stopped")
