"""Solved problem operations for solved-problems.

Each function takes a sqlite3.Connection, the caller's Principal and
explicit params, and returns a dict (an error dict on failure). The
helpers that mutate tags, dependencies and rows never commit; the public
operations wrap them in db.client.transaction().
"""

import logging
import re
import sqlite3
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from db.client import transaction
from solved_problems.access import (
    InvalidFilterError,
    ResourceRef,
    ResourceType,
    SolvedProblemFilters,
    accessible_solved_problem_ids,
    can_write,
    delete_resource_references,
    query_solved_problems,
)
from solved_problems.errors import (
    BAD_REQUEST,
    FORBIDDEN,
    INVALID_INPUT,
    NOT_FOUND,
    error_result,
)
from solved_problems.identity import Principal
from solved_problems.payloads import DependencyInput, ProposedData
from solved_problems.versioning import latest_version, maybe_create_version

logger = logging.getLogger(__name__)

DEFAULT_SLUG = "solved-problem"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _uuid() -> str:
    return str(uuid.uuid4())


def validation_message(e: ValidationError) -> str:
    """Flatten a pydantic error into one readable line."""
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "input"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


# ── Slugs ─────────────────────────────────────────────────


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumerics to '-', trim dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or DEFAULT_SLUG


def unique_slug(conn: sqlite3.Connection, base: str) -> str:
    """Return ``base`` or, if taken, ``base`` suffixed with a millisecond timestamp."""

    def taken(candidate: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM solved_problems WHERE id = ?", (candidate,)
        ).fetchone()
        return row is not None

    if not taken(base):
        return base

    stamp = int(time.time() * 1000)
    candidate = f"{base}-{stamp}"
    counter = 1
    while taken(candidate):
        candidate = f"{base}-{stamp}-{counter}"
        counter += 1
    return candidate


# ── Tags and dependencies ─────────────────────────────────


def find_or_create_tags(conn: sqlite3.Connection, names: list[str]) -> list[str]:
    """Return tag ids for ``names``, creating missing tags. Duplicates collapse."""
    tag_ids: list[str] = []
    for name in dict.fromkeys(names):
        conn.execute(
            "INSERT OR IGNORE INTO tags (id, name) VALUES (?, ?)", (_uuid(), name)
        )
        row = conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
        tag_ids.append(row["id"])
    return tag_ids


def replace_tags(conn: sqlite3.Connection, solved_problem_id: str, names: list[str]) -> None:
    conn.execute(
        "DELETE FROM solved_problem_tags WHERE solved_problem_id = ?",
        (solved_problem_id,),
    )
    for tag_id in find_or_create_tags(conn, names):
        conn.execute(
            "INSERT INTO solved_problem_tags (solved_problem_id, tag_id) VALUES (?, ?)",
            (solved_problem_id, tag_id),
        )


def replace_dependencies(
    conn: sqlite3.Connection,
    solved_problem_id: str,
    dependencies: list[DependencyInput],
) -> None:
    conn.execute(
        "DELETE FROM dependencies WHERE solved_problem_id = ?", (solved_problem_id,)
    )
    for dep in dependencies:
        conn.execute(
            """INSERT INTO dependencies
               (id, solved_problem_id, name, version, package_manager, type)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                _uuid(),
                solved_problem_id,
                dep.name,
                dep.version,
                dep.package_manager,
                dep.type,
            ),
        )


def insert_solved_problem(
    conn: sqlite3.Connection,
    owner_id: str,
    data: ProposedData,
    copied_from_id: str | None = None,
    base_slug: str | None = None,
) -> str:
    """Create a problem row with its tags, dependencies and version 1.

    The id is derived from ``base_slug`` (or the name) and suffixed on
    collision. Does not commit. Returns the new id.
    """
    solved_problem_id = unique_slug(conn, slugify(base_slug or data.name))
    now = _now()
    conn.execute(
        """INSERT INTO solved_problems
           (id, name, description, app_type, owner_id, copied_from_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            solved_problem_id,
            data.name,
            data.description,
            data.app_type,
            owner_id,
            copied_from_id,
            now,
            now,
        ),
    )
    if data.tags:
        replace_tags(conn, solved_problem_id, data.tags)
    if data.dependencies:
        replace_dependencies(conn, solved_problem_id, data.dependencies)
    maybe_create_version(conn, solved_problem_id, None, data.details)
    return solved_problem_id


def apply_changes(
    conn: sqlite3.Connection,
    solved_problem_id: str,
    name: str | None = None,
    description: str | None = None,
    app_type: str | None = None,
    tags: list[str] | None = None,
    dependencies: list[DependencyInput] | None = None,
    details: str | None = None,
) -> int | None:
    """Merge changes into an existing problem. None means "leave untouched".

    Returns the new version number if one was created. Does not commit.
    """
    new_version = maybe_create_version(
        conn, solved_problem_id, latest_version(conn, solved_problem_id), details
    )
    if tags is not None:
        replace_tags(conn, solved_problem_id, tags)
    if dependencies is not None:
        replace_dependencies(conn, solved_problem_id, dependencies)

    updates: list[str] = []
    params: list[Any] = []
    if name is not None:
        updates.append("name = ?")
        params.append(name)
    if description is not None:
        updates.append("description = ?")
        params.append(description)
    if app_type is not None:
        updates.append("app_type = ?")
        params.append(app_type)
    updates.append("updated_at = ?")
    params.append(_now())
    params.append(solved_problem_id)

    conn.execute(
        f"UPDATE solved_problems SET {', '.join(updates)} WHERE id = ?",  # noqa: S608
        params,
    )
    return new_version


# ── Read helpers ──────────────────────────────────────────


def _tag_names(conn: sqlite3.Connection, solved_problem_id: str) -> list[str]:
    rows = conn.execute(
        """SELECT t.name FROM solved_problem_tags st
           JOIN tags t ON t.id = st.tag_id
           WHERE st.solved_problem_id = ?
           ORDER BY t.name""",
        (solved_problem_id,),
    ).fetchall()
    return [r["name"] for r in rows]


def _dependencies(conn: sqlite3.Connection, solved_problem_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """SELECT name, version, package_manager, type FROM dependencies
           WHERE solved_problem_id = ?
           ORDER BY type DESC, name""",
        (solved_problem_id,),
    ).fetchall()
    return [dict(r) for r in rows]


def summarize(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "app_type": row["app_type"],
        "updated_at": row["updated_at"],
        "tags": _tag_names(conn, row["id"]),
    }


def load_solved_problem(
    conn: sqlite3.Connection, solved_problem_id: str
) -> dict[str, Any] | None:
    """Full problem: fields, tags, dependencies, latest version and owner."""
    row = conn.execute(
        """SELECT sp.*, u.name AS owner_name, u.email AS owner_email
           FROM solved_problems sp
           JOIN users u ON u.id = sp.owner_id
           WHERE sp.id = ?""",
        (solved_problem_id,),
    ).fetchone()
    if row is None:
        return None

    latest = latest_version(conn, solved_problem_id)
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "app_type": row["app_type"],
        "owner_id": row["owner_id"],
        "copied_from_id": row["copied_from_id"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "tags": _tag_names(conn, solved_problem_id),
        "dependencies": _dependencies(conn, solved_problem_id),
        "latest_version": (
            {
                "version": latest["version"],
                "details": latest["details"],
                "created_at": latest["created_at"],
            }
            if latest
            else None
        ),
        "owner": {
            "id": row["owner_id"],
            "name": row["owner_name"],
            "email": row["owner_email"],
        },
    }


def coerce_dependencies(
    dependencies: list[Any] | None,
) -> list[DependencyInput] | None:
    """Validate dependency dicts (snake or camel keys). Raises ValidationError."""
    if dependencies is None:
        return None
    return [
        d if isinstance(d, DependencyInput) else DependencyInput.model_validate(d)
        for d in dependencies
    ]


# ── Operations ────────────────────────────────────────────


def list_solved_problems(
    conn: sqlite3.Connection,
    principal: Principal,
    filters: SolvedProblemFilters | None = None,
) -> dict[str, Any]:
    """List problem summaries the principal can read, newest update first."""
    ids = accessible_solved_problem_ids(conn, principal)
    try:
        rows = query_solved_problems(conn, ids, filters)
    except InvalidFilterError as e:
        return error_result(BAD_REQUEST, str(e))
    return {"solved_problems": [summarize(conn, r) for r in rows]}


def get_solved_problem(
    conn: sqlite3.Connection, principal: Principal, solved_problem_id: str
) -> dict[str, Any]:
    """Return one problem. Absent and inaccessible are both not_found."""
    if solved_problem_id not in accessible_solved_problem_ids(conn, principal):
        return error_result(NOT_FOUND, "Solved problem not found")

    result = load_solved_problem(conn, solved_problem_id)
    if result is None:
        return error_result(NOT_FOUND, "Solved problem not found")
    result["can_write"] = can_write(
        conn, principal, ResourceRef(ResourceType.SOLVED_PROBLEM, solved_problem_id)
    )
    return result


def create_solved_problem(
    conn: sqlite3.Connection,
    principal: Principal,
    name: str,
    description: str,
    app_type: str,
    tags: list[str] | None = None,
    dependencies: list[Any] | None = None,
    details: str | None = None,
    copied_from_id: str | None = None,
) -> dict[str, Any]:
    """Create a problem owned by the caller."""
    if principal.is_api_key:
        return error_result(FORBIDDEN, "API keys can only propose drafts")

    try:
        data = ProposedData(
            name=name,
            description=description,
            app_type=app_type,
            tags=tags,
            dependencies=coerce_dependencies(dependencies),
            details=details,
        )
    except ValidationError as e:
        return error_result(INVALID_INPUT, validation_message(e))

    with transaction(conn):
        if copied_from_id is not None:
            source = conn.execute(
                "SELECT id FROM solved_problems WHERE id = ?", (copied_from_id,)
            ).fetchone()
            if source is None:
                return error_result(NOT_FOUND, "Source solved problem not found")
        solved_problem_id = insert_solved_problem(
            conn, principal.user_id, data, copied_from_id=copied_from_id
        )

    logger.info("User %s created solved problem %s", principal.user_id, solved_problem_id)
    return load_solved_problem(conn, solved_problem_id)  # type: ignore[return-value]


def update_solved_problem(
    conn: sqlite3.Connection,
    principal: Principal,
    solved_problem_id: str,
    name: str | None = None,
    description: str | None = None,
    app_type: str | None = None,
    tags: list[str] | None = None,
    dependencies: list[Any] | None = None,
    details: str | None = None,
) -> dict[str, Any]:
    """Update fields; tags / dependencies are replaced wholesale when given.

    A new version is written only if ``details`` differs from the latest.
    Requires ownership or a WRITE share on the problem.
    """
    if name is not None and not name:
        return error_result(INVALID_INPUT, "name: must not be empty")
    if app_type is not None and not app_type:
        return error_result(INVALID_INPUT, "app_type: must not be empty")
    try:
        deps = coerce_dependencies(dependencies)
    except ValidationError as e:
        return error_result(INVALID_INPUT, validation_message(e))

    with transaction(conn):
        if solved_problem_id not in accessible_solved_problem_ids(conn, principal):
            return error_result(NOT_FOUND, "Solved problem not found")
        ref = ResourceRef(ResourceType.SOLVED_PROBLEM, solved_problem_id)
        if not can_write(conn, principal, ref):
            return error_result(
                FORBIDDEN, "You don't have permission to update this solved problem"
            )
        apply_changes(
            conn,
            solved_problem_id,
            name=name,
            description=description,
            app_type=app_type,
            tags=tags,
            dependencies=deps,
            details=details,
        )

    return get_solved_problem(conn, principal, solved_problem_id)


def delete_solved_problem(
    conn: sqlite3.Connection, principal: Principal, solved_problem_id: str
) -> dict[str, Any]:
    """Delete a problem and everything hanging off it. Owner only."""
    with transaction(conn):
        if solved_problem_id not in accessible_solved_problem_ids(conn, principal):
            return error_result(NOT_FOUND, "Solved problem not found")
        row = conn.execute(
            "SELECT owner_id FROM solved_problems WHERE id = ?", (solved_problem_id,)
        ).fetchone()
        if principal.is_api_key or row["owner_id"] != principal.user_id:
            return error_result(FORBIDDEN, "Only the owner can delete a solved problem")

        delete_resource_references(
            conn, ResourceRef(ResourceType.SOLVED_PROBLEM, solved_problem_id)
        )
        conn.execute("DELETE FROM solved_problems WHERE id = ?", (solved_problem_id,))

    logger.info("User %s deleted solved problem %s", principal.user_id, solved_problem_id)
    return {"success": True}
