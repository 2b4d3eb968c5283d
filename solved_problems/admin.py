"""Site administration for solved-problems. Every operation requires ADMIN."""

import logging
import sqlite3
from typing import Any

from db.client import transaction
from db.migrations import DEFAULT_SETTINGS_ID
from solved_problems.access import ResourceRef, ResourceType, delete_resource_references
from solved_problems.errors import BAD_REQUEST, FORBIDDEN, NOT_FOUND, error_result
from solved_problems.identity import Principal

logger = logging.getLogger(__name__)


def _require_admin(principal: Principal) -> dict[str, Any] | None:
    if principal.is_api_key or not principal.is_admin:
        return error_result(FORBIDDEN, "Admin access required")
    return None


def _settings(conn: sqlite3.Connection) -> dict[str, Any]:
    row = conn.execute(
        "SELECT id, signup_enabled, export_enabled FROM site_settings WHERE id = ?",
        (DEFAULT_SETTINGS_ID,),
    ).fetchone()
    if row is None:
        return {"id": DEFAULT_SETTINGS_ID, "signup_enabled": True, "export_enabled": True}
    return {
        "id": row["id"],
        "signup_enabled": bool(row["signup_enabled"]),
        "export_enabled": bool(row["export_enabled"]),
    }


def is_export_enabled(conn: sqlite3.Connection) -> bool:
    return _settings(conn)["export_enabled"]


def get_settings(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    failure = _require_admin(principal)
    if failure:
        return failure
    return _settings(conn)


def update_settings(
    conn: sqlite3.Connection,
    principal: Principal,
    signup_enabled: bool | None = None,
    export_enabled: bool | None = None,
) -> dict[str, Any]:
    """Toggle site flags. A flag left as None keeps its current value."""
    failure = _require_admin(principal)
    if failure:
        return failure

    with transaction(conn):
        if signup_enabled is not None:
            conn.execute(
                "UPDATE site_settings SET signup_enabled = ? WHERE id = ?",
                (int(signup_enabled), DEFAULT_SETTINGS_ID),
            )
        if export_enabled is not None:
            conn.execute(
                "UPDATE site_settings SET export_enabled = ? WHERE id = ?",
                (int(export_enabled), DEFAULT_SETTINGS_ID),
            )
        settings = _settings(conn)

    logger.info("Admin %s updated site settings: %s", principal.user_id, settings)
    return settings


def list_users(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    failure = _require_admin(principal)
    if failure:
        return failure

    rows = conn.execute(
        """SELECT id, name, email, role, two_factor_enabled, created_at
           FROM users ORDER BY created_at DESC"""
    ).fetchall()
    return {
        "users": [
            {**dict(r), "two_factor_enabled": bool(r["two_factor_enabled"])}
            for r in rows
        ]
    }


def delete_user(
    conn: sqlite3.Connection, principal: Principal, user_id: str
) -> dict[str, Any]:
    """Delete a user and everything they own. Admins cannot delete themselves."""
    failure = _require_admin(principal)
    if failure:
        return failure
    if user_id == principal.user_id:
        return error_result(BAD_REQUEST, "You cannot delete yourself.")

    with transaction(conn):
        row = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return error_result(NOT_FOUND, "User not found")

        for problem in conn.execute(
            "SELECT id FROM solved_problems WHERE owner_id = ?", (user_id,)
        ).fetchall():
            delete_resource_references(
                conn, ResourceRef(ResourceType.SOLVED_PROBLEM, problem["id"])
            )
        for group in conn.execute(
            "SELECT id FROM solved_problem_groups WHERE owner_id = ?", (user_id,)
        ).fetchall():
            delete_resource_references(conn, ResourceRef(ResourceType.GROUP, group["id"]))
        conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

    logger.info("Admin %s deleted user %s", principal.user_id, user_id)
    return {"success": True}


def disable_two_factor(
    conn: sqlite3.Connection, principal: Principal, user_id: str
) -> dict[str, Any]:
    failure = _require_admin(principal)
    if failure:
        return failure
    if user_id == principal.user_id:
        return error_result(BAD_REQUEST, "You cannot disable 2FA for yourself.")

    cursor = conn.execute(
        "UPDATE users SET two_factor_enabled = 0 WHERE id = ?", (user_id,)
    )
    conn.commit()
    if cursor.rowcount == 0:
        return error_result(NOT_FOUND, "User not found")

    logger.info("Admin %s disabled 2FA for user %s", principal.user_id, user_id)
    return {"success": True}
