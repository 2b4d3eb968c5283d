"""FastAPI dependency injection and DB helpers for solved-problems."""

import sqlite3
from collections.abc import Generator

from fastapi import Cookie, Depends, Header, HTTPException

from db.client import get_connection
from solved_problems.identity import Principal, get_current_session

SESSION_COOKIE = "session_token"

# Module-level DB path: set by app startup
_db_path: str = ""


def set_db_path(path: str) -> None:
    """Set the database path used by the DB dependency."""
    global _db_path  # noqa: PLW0603
    _db_path = path


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency that yields a DB connection per request."""
    conn = get_connection(_db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_principal(
    conn: sqlite3.Connection = Depends(get_db),
    session_token: str | None = Cookie(default=None),
    x_session_token: str | None = Header(default=None),
) -> Principal:
    """Resolve the X-Session-Token header (or the session cookie) to a user."""
    principal = get_current_session(conn, x_session_token or session_token)
    if principal is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
