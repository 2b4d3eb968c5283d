"""Versioning policy for solved problem details.

Version numbers per problem run 1, 2, 3, ... with no gaps. A new version is
written only when details are supplied and differ byte-for-byte from the
latest version; a problem with no versions compares as empty details.
Version rows are never updated or deleted (except by cascade).
"""

import sqlite3
from datetime import datetime, timezone
from typing import Any

from solved_problems.access import can_read_solved_problem
from solved_problems.errors import NOT_FOUND, error_result
from solved_problems.identity import Principal


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def latest_version(conn: sqlite3.Connection, solved_problem_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        """SELECT solved_problem_id, version, details, created_at
           FROM solved_problem_versions
           WHERE solved_problem_id = ?
           ORDER BY version DESC LIMIT 1""",
        (solved_problem_id,),
    ).fetchone()
    return dict(row) if row else None


def maybe_create_version(
    conn: sqlite3.Connection,
    solved_problem_id: str,
    latest: dict[str, Any] | None,
    new_details: str | None,
) -> int | None:
    """Insert the next version if ``new_details`` changes anything.

    Returns the new version number, or None when nothing was written.
    Does not commit.
    """
    if new_details is None:
        return None

    current = latest["details"] if latest else ""
    if new_details == current:
        return None

    next_version = (latest["version"] if latest else 0) + 1
    conn.execute(
        """INSERT INTO solved_problem_versions (solved_problem_id, version, details, created_at)
           VALUES (?, ?, ?, ?)""",
        (solved_problem_id, next_version, new_details, _now()),
    )
    return next_version


# ── Read operations ───────────────────────────────────────


def list_versions(
    conn: sqlite3.Connection, principal: Principal, solved_problem_id: str
) -> dict[str, Any]:
    """Return version numbers (newest first) without their details."""
    if not can_read_solved_problem(conn, principal, solved_problem_id):
        return error_result(NOT_FOUND, "Solved problem not found")

    rows = conn.execute(
        """SELECT version, created_at FROM solved_problem_versions
           WHERE solved_problem_id = ?
           ORDER BY version DESC""",
        (solved_problem_id,),
    ).fetchall()
    return {"versions": [dict(r) for r in rows]}


def get_version(
    conn: sqlite3.Connection,
    principal: Principal,
    solved_problem_id: str,
    version: int,
) -> dict[str, Any]:
    """Return a single version with its details."""
    if not can_read_solved_problem(conn, principal, solved_problem_id):
        return error_result(NOT_FOUND, "Solved problem not found")

    row = conn.execute(
        """SELECT solved_problem_id, version, details, created_at
           FROM solved_problem_versions
           WHERE solved_problem_id = ? AND version = ?""",
        (solved_problem_id, version),
    ).fetchone()
    if row is None:
        return error_result(NOT_FOUND, "Version not found")
    return dict(row)
