"""API key operations for solved-problems.

A key is ``sp_`` followed by 64 hex characters. Only its SHA-256 hash is
stored; the plaintext is returned once from create_api_key() and never
again. Each key carries an explicit allow-list of problems and groups.
Grants are not checked against the owner's own access.
"""

import logging
import secrets
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from db.client import transaction
from solved_problems.access import ResourceRef
from solved_problems.errors import (
    BAD_REQUEST,
    CONFLICT,
    FORBIDDEN,
    INVALID_INPUT,
    NOT_FOUND,
    error_result,
)
from solved_problems.identity import Principal, hash_secret

logger = logging.getLogger(__name__)

KEY_PREFIX = "sp_"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def generate_key() -> str:
    return KEY_PREFIX + secrets.token_hex(32)


def _parse_accesses(
    accesses: list[dict[str, Any]],
) -> tuple[list[ResourceRef], dict[str, Any] | None]:
    refs: list[ResourceRef] = []
    for access in accesses:
        resource_type = access.get("resource_type")
        resource_id = access.get("resource_id")
        if not resource_id:
            return [], error_result(INVALID_INPUT, "resource_id: must not be empty")
        try:
            refs.append(ResourceRef.parse(resource_type, resource_id))
        except ValueError:
            return [], error_result(
                INVALID_INPUT, f"Unknown resource type '{resource_type}'"
            )
    return refs, None


def _insert_accesses(
    conn: sqlite3.Connection, api_key_id: str, refs: list[ResourceRef]
) -> None:
    for ref in refs:
        conn.execute(
            """INSERT OR IGNORE INTO api_key_accesses (id, api_key_id, resource_type, resource_id)
               VALUES (?, ?, ?, ?)""",
            (str(uuid.uuid4()), api_key_id, ref.kind.value, ref.id),
        )


def _accesses(conn: sqlite3.Connection, api_key_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """SELECT id, resource_type, resource_id FROM api_key_accesses
           WHERE api_key_id = ?
           ORDER BY resource_type, resource_id""",
        (api_key_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def _owned_key(
    conn: sqlite3.Connection, principal: Principal, api_key_id: str, action: str
) -> tuple[sqlite3.Row | None, dict[str, Any] | None]:
    row = conn.execute("SELECT * FROM api_keys WHERE id = ?", (api_key_id,)).fetchone()
    if row is None:
        return None, error_result(NOT_FOUND, "API key not found")
    if principal.is_api_key or row["user_id"] != principal.user_id:
        return None, error_result(FORBIDDEN, f"You can only {action} your own API keys")
    return row, None


def create_api_key(
    conn: sqlite3.Connection,
    principal: Principal,
    name: str,
    accesses: list[dict[str, Any]],
) -> dict[str, Any]:
    """Issue a key scoped to ``accesses``. The response holds the only copy of it."""
    if principal.is_api_key:
        return error_result(FORBIDDEN, "API keys cannot issue API keys")
    if not name:
        return error_result(INVALID_INPUT, "name: must not be empty")
    refs, failure = _parse_accesses(accesses)
    if failure:
        return failure

    plain_key = generate_key()
    api_key_id = str(uuid.uuid4())
    now = _now()
    with transaction(conn):
        conn.execute(
            """INSERT INTO api_keys (id, name, hashed_key, user_id, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (api_key_id, name, hash_secret(plain_key), principal.user_id, now),
        )
        _insert_accesses(conn, api_key_id, refs)

    logger.info(
        "User %s created API key %s with %d grant(s)",
        principal.user_id,
        api_key_id,
        len(refs),
    )
    return {
        "id": api_key_id,
        "name": name,
        "key": plain_key,
        "created_at": now,
        "accesses": _accesses(conn, api_key_id),
    }


def list_api_keys(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    rows = conn.execute(
        "SELECT id, name, created_at, revoked_at FROM api_keys WHERE user_id = ? ORDER BY created_at DESC",
        (principal.user_id,),
    ).fetchall()
    return {
        "api_keys": [
            {**dict(r), "accesses": _accesses(conn, r["id"])} for r in rows
        ]
    }


def revoke_api_key(
    conn: sqlite3.Connection, principal: Principal, api_key_id: str
) -> dict[str, Any]:
    """Mark a key revoked. Revoked keys stop authenticating immediately."""
    with transaction(conn):
        _, failure = _owned_key(conn, principal, api_key_id, "revoke")
        if failure:
            return failure
        cursor = conn.execute(
            "UPDATE api_keys SET revoked_at = ? WHERE id = ? AND revoked_at IS NULL",
            (_now(), api_key_id),
        )
        if cursor.rowcount == 0:
            return error_result(CONFLICT, "API key is already revoked")

    logger.info("User %s revoked API key %s", principal.user_id, api_key_id)
    return {"success": True}


def update_api_key_access(
    conn: sqlite3.Connection,
    principal: Principal,
    api_key_id: str,
    accesses: list[dict[str, Any]],
) -> dict[str, Any]:
    """Replace every grant on a key in one transaction."""
    refs, failure = _parse_accesses(accesses)
    if failure:
        return failure

    with transaction(conn):
        row, failure = _owned_key(conn, principal, api_key_id, "update")
        if failure:
            return failure
        if row["revoked_at"] is not None:
            return error_result(
                BAD_REQUEST, "Cannot update access for a revoked API key"
            )
        conn.execute("DELETE FROM api_key_accesses WHERE api_key_id = ?", (api_key_id,))
        _insert_accesses(conn, api_key_id, refs)

    return {
        "id": row["id"],
        "name": row["name"],
        "created_at": row["created_at"],
        "accesses": _accesses(conn, api_key_id),
    }
