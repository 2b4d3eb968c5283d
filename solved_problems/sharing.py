"""Sharing operations for solved-problems.

A share grants one user READ or WRITE on one solved problem or group.
Only the resource owner creates, changes, or revokes shares.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from db.client import transaction
from solved_problems.access import (
    Permission,
    ResourceRef,
    ResourceType,
    resource_name,
    resource_owner_id,
)
from solved_problems.errors import (
    BAD_REQUEST,
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


def _verify_resource_owner(
    conn: sqlite3.Connection, principal: Principal, ref: ResourceRef
) -> dict[str, Any] | None:
    owner_id = resource_owner_id(conn, ref)
    if owner_id is None:
        if ref.kind is ResourceType.SOLVED_PROBLEM:
            label = "Solved problem"
        elif ref.kind is ResourceType.GROUP:
            label = "Group"
        else:
            raise AssertionError(f"Unhandled resource type {ref.kind!r}")
        return error_result(NOT_FOUND, f"{label} not found")
    if principal.is_api_key or owner_id != principal.user_id:
        return error_result(
            FORBIDDEN, "Only the owner can manage shares for this resource"
        )
    return None


def _user_summary(conn: sqlite3.Connection, user_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, name, email FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    return dict(row) if row else None


def _parse_ref(resource_type: str, resource_id: str) -> ResourceRef | None:
    try:
        return ResourceRef.parse(resource_type, resource_id)
    except ValueError:
        return None


def _parse_permission(permission: str) -> Permission | None:
    try:
        return Permission(permission)
    except ValueError:
        return None


def share(
    conn: sqlite3.Connection,
    principal: Principal,
    resource_type: str,
    resource_id: str,
    shared_with_user_id: str,
    permission: str,
) -> dict[str, Any]:
    ref = _parse_ref(resource_type, resource_id)
    if ref is None:
        return error_result(INVALID_INPUT, f"Unknown resource type '{resource_type}'")
    perm = _parse_permission(permission)
    if perm is None:
        return error_result(INVALID_INPUT, f"Unknown permission '{permission}'")

    failure = _verify_resource_owner(conn, principal, ref)
    if failure:
        return failure

    if shared_with_user_id == principal.user_id:
        return error_result(BAD_REQUEST, "Cannot share a resource with yourself")

    target = _user_summary(conn, shared_with_user_id)
    if target is None:
        return error_result(NOT_FOUND, "User not found")

    share_id = str(uuid.uuid4())
    now = _now()
    try:
        with transaction(conn):
            existing = conn.execute(
                """SELECT id FROM shares
                   WHERE resource_type = ? AND resource_id = ? AND shared_with_user_id = ?""",
                (ref.kind.value, ref.id, shared_with_user_id),
            ).fetchone()
            if existing is not None:
                return error_result(CONFLICT, "Resource is already shared with this user")
            conn.execute(
                """INSERT INTO shares
                   (id, resource_type, resource_id, shared_by_user_id, shared_with_user_id, permission, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (share_id, ref.kind.value, ref.id, principal.user_id, shared_with_user_id, perm.value, now),
            )
    except sqlite3.IntegrityError:
        return error_result(CONFLICT, "Resource is already shared with this user")

    logger.info(
        "User %s shared %s %s with %s (%s)",
        principal.user_id,
        ref.kind.value,
        ref.id,
        shared_with_user_id,
        perm.value,
    )
    return {
        "id": share_id,
        "resource_type": ref.kind.value,
        "resource_id": ref.id,
        "permission": perm.value,
        "shared_with_user": target,
        "created_at": now,
    }


def _fetch_managed_share(
    conn: sqlite3.Connection, principal: Principal, share_id: str
) -> tuple[sqlite3.Row | None, dict[str, Any] | None]:
    row = conn.execute("SELECT * FROM shares WHERE id = ?", (share_id,)).fetchone()
    if row is None:
        return None, error_result(NOT_FOUND, "Share not found")
    ref = ResourceRef.parse(row["resource_type"], row["resource_id"])
    failure = _verify_resource_owner(conn, principal, ref)
    if failure:
        return None, failure
    return row, None


def update_permission(
    conn: sqlite3.Connection, principal: Principal, share_id: str, permission: str
) -> dict[str, Any]:
    perm = _parse_permission(permission)
    if perm is None:
        return error_result(INVALID_INPUT, f"Unknown permission '{permission}'")

    row, failure = _fetch_managed_share(conn, principal, share_id)
    if failure:
        return failure

    conn.execute("UPDATE shares SET permission = ? WHERE id = ?", (perm.value, share_id))
    conn.commit()
    return {
        "id": share_id,
        "resource_type": row["resource_type"],
        "resource_id": row["resource_id"],
        "permission": perm.value,
        "shared_with_user": _user_summary(conn, row["shared_with_user_id"]),
        "created_at": row["created_at"],
    }


def revoke(
    conn: sqlite3.Connection, principal: Principal, share_id: str
) -> dict[str, Any]:
    _, failure = _fetch_managed_share(conn, principal, share_id)
    if failure:
        return failure

    conn.execute("DELETE FROM shares WHERE id = ?", (share_id,))
    conn.commit()
    logger.info("User %s revoked share %s", principal.user_id, share_id)
    return {"success": True}


def _list_shares(
    conn: sqlite3.Connection, column: str, user_id: str, counterpart_column: str, key: str
) -> list[dict[str, Any]]:
    rows = conn.execute(
        f"SELECT * FROM shares WHERE {column} = ? ORDER BY created_at DESC",  # noqa: S608
        (user_id,),
    ).fetchall()
    return [
        {
            "id": r["id"],
            "resource_type": r["resource_type"],
            "resource_id": r["resource_id"],
            "resource_name": resource_name(
                conn, ResourceRef.parse(r["resource_type"], r["resource_id"])
            ),
            "permission": r["permission"],
            key: _user_summary(conn, r[counterpart_column]),
            "created_at": r["created_at"],
        }
        for r in rows
    ]


def list_shared_by_me(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    return {
        "shares": _list_shares(
            conn, "shared_by_user_id", principal.user_id, "shared_with_user_id", "shared_with_user"
        )
    }


def list_shared_with_me(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    return {
        "shares": _list_shares(
            conn, "shared_with_user_id", principal.user_id, "shared_by_user_id", "shared_by_user"
        )
    }


def lookup_user_by_email(conn: sqlite3.Connection, email: str) -> dict[str, Any]:
    """Find a user to share with. ``user`` is None when nobody matches."""
    row = conn.execute(
        "SELECT id, name, email FROM users WHERE email = ?", (email,)
    ).fetchone()
    return {"user": dict(row) if row else None}
