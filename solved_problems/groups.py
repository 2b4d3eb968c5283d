"""Group operations for solved-problems.

Groups bundle solved problems so they can be shared (or granted to an API
key) in one step. Only the group owner renames, deletes, or changes
membership; anyone the group is shared with can read it.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from db.client import transaction
from solved_problems.access import (
    ResourceRef,
    ResourceType,
    accessible_group_ids,
    accessible_solved_problem_ids,
    delete_resource_references,
)
from solved_problems.errors import (
    CONFLICT,
    FORBIDDEN,
    INVALID_INPUT,
    NOT_FOUND,
    error_result,
)
from solved_problems.identity import Principal

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _owned_group(
    conn: sqlite3.Connection, principal: Principal, group_id: str, action: str
) -> tuple[sqlite3.Row | None, dict[str, Any] | None]:
    """Fetch a group the principal must own. Returns (row, error)."""
    if group_id not in accessible_group_ids(conn, principal):
        return None, error_result(NOT_FOUND, "Group not found")
    group = conn.execute(
        "SELECT * FROM solved_problem_groups WHERE id = ?", (group_id,)
    ).fetchone()
    if group is None:
        return None, error_result(NOT_FOUND, "Group not found")
    if principal.is_api_key or group["owner_id"] != principal.user_id:
        return None, error_result(FORBIDDEN, f"Only the owner can {action}")
    return group, None


def list_groups(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    ids = sorted(accessible_group_ids(conn, principal))
    if not ids:
        return {"groups": []}

    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"""SELECT g.id, g.name, g.owner_id, g.created_at,
                   u.name AS owner_name, u.email AS owner_email,
                   (SELECT COUNT(*) FROM group_memberships m WHERE m.group_id = g.id)
                       AS solved_problem_count
            FROM solved_problem_groups g
            JOIN users u ON u.id = g.owner_id
            WHERE g.id IN ({placeholders})
            ORDER BY g.name""",  # noqa: S608
        ids,
    ).fetchall()
    return {
        "groups": [
            {
                "id": r["id"],
                "name": r["name"],
                "owner_id": r["owner_id"],
                "owner": {"id": r["owner_id"], "name": r["owner_name"], "email": r["owner_email"]},
                "solved_problem_count": r["solved_problem_count"],
                "created_at": r["created_at"],
            }
            for r in rows
        ]
    }


def get_group(
    conn: sqlite3.Connection, principal: Principal, group_id: str
) -> dict[str, Any]:
    """Return a group with its member problem summaries."""
    if group_id not in accessible_group_ids(conn, principal):
        return error_result(NOT_FOUND, "Group not found")

    group = conn.execute(
        """SELECT g.*, u.name AS owner_name, u.email AS owner_email
           FROM solved_problem_groups g
           JOIN users u ON u.id = g.owner_id
           WHERE g.id = ?""",
        (group_id,),
    ).fetchone()
    if group is None:
        return error_result(NOT_FOUND, "Group not found")

    members = conn.execute(
        """SELECT sp.id, sp.name, sp.description, sp.app_type
           FROM group_memberships m
           JOIN solved_problems sp ON sp.id = m.solved_problem_id
           WHERE m.group_id = ?
           ORDER BY sp.name""",
        (group_id,),
    ).fetchall()

    return {
        "id": group["id"],
        "name": group["name"],
        "owner_id": group["owner_id"],
        "owner": {
            "id": group["owner_id"],
            "name": group["owner_name"],
            "email": group["owner_email"],
        },
        "created_at": group["created_at"],
        "solved_problems": [dict(m) for m in members],
    }


def create_group(
    conn: sqlite3.Connection, principal: Principal, name: str
) -> dict[str, Any]:
    if principal.is_api_key:
        return error_result(FORBIDDEN, "API keys cannot create groups")
    if not name:
        return error_result(INVALID_INPUT, "name: must not be empty")

    group_id = str(uuid.uuid4())
    now = _now()
    conn.execute(
        "INSERT INTO solved_problem_groups (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
        (group_id, name, principal.user_id, now),
    )
    conn.commit()
    return {"id": group_id, "name": name, "owner_id": principal.user_id, "created_at": now}


def update_group(
    conn: sqlite3.Connection, principal: Principal, group_id: str, name: str
) -> dict[str, Any]:
    if not name:
        return error_result(INVALID_INPUT, "name: must not be empty")

    with transaction(conn):
        group, failure = _owned_group(conn, principal, group_id, "rename a group")
        if failure:
            return failure
        conn.execute(
            "UPDATE solved_problem_groups SET name = ? WHERE id = ?", (name, group_id)
        )

    return {
        "id": group_id,
        "name": name,
        "owner_id": group["owner_id"],
        "created_at": group["created_at"],
    }


def delete_group(
    conn: sqlite3.Connection, principal: Principal, group_id: str
) -> dict[str, Any]:
    with transaction(conn):
        _, failure = _owned_group(conn, principal, group_id, "delete a group")
        if failure:
            return failure
        delete_resource_references(conn, ResourceRef(ResourceType.GROUP, group_id))
        conn.execute("DELETE FROM solved_problem_groups WHERE id = ?", (group_id,))

    logger.info("User %s deleted group %s", principal.user_id, group_id)
    return {"success": True}


def add_solved_problem(
    conn: sqlite3.Connection,
    principal: Principal,
    group_id: str,
    solved_problem_id: str,
) -> dict[str, Any]:
    """Add a problem the group owner can read to the group."""
    with transaction(conn):
        _, failure = _owned_group(
            conn, principal, group_id, "add solved problems to a group"
        )
        if failure:
            return failure
        if solved_problem_id not in accessible_solved_problem_ids(conn, principal):
            return error_result(NOT_FOUND, "Solved problem not found")

        existing = conn.execute(
            "SELECT 1 FROM group_memberships WHERE group_id = ? AND solved_problem_id = ?",
            (group_id, solved_problem_id),
        ).fetchone()
        if existing is not None:
            return error_result(CONFLICT, "Solved problem is already in this group")

        conn.execute(
            "INSERT INTO group_memberships (group_id, solved_problem_id) VALUES (?, ?)",
            (group_id, solved_problem_id),
        )

    return {"success": True}


def remove_solved_problem(
    conn: sqlite3.Connection,
    principal: Principal,
    group_id: str,
    solved_problem_id: str,
) -> dict[str, Any]:
    with transaction(conn):
        _, failure = _owned_group(
            conn, principal, group_id, "remove solved problems from a group"
        )
        if failure:
            return failure
        cursor = conn.execute(
            "DELETE FROM group_memberships WHERE group_id = ? AND solved_problem_id = ?",
            (group_id, solved_problem_id),
        )
        if cursor.rowcount == 0:
            return error_result(NOT_FOUND, "Solved problem is not in this group")

    return {"success": True}
