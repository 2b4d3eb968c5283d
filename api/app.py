"""FastAPI application for solved-problems."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import set_db_path
from api.mcp_mount import McpGateway
from api.routes import router


def create_app(db_path: str, config: dict[str, Any] | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db_path: Path to the SQLite database.
        config: Loaded solved-problems config. Only ``cors_origins`` is read
                here; when omitted every origin is allowed.
    """
    gateway = McpGateway(db_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await gateway.start()
        try:
            yield
        finally:
            await gateway.stop()

    set_db_path(db_path)

    app = FastAPI(title="solved-problems", lifespan=lifespan)
    app.state.mcp_gateway = gateway

    cors_origins = (config or {}).get("cors_origins", ["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.mount("/mcp", gateway.asgi_app)

    return app
