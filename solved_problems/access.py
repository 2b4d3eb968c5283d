"""Access resolution for solved-problems.

Answers, for a Principal, which solved problems and groups it may read and
whether it may write a given resource.

User principals see the union of:
    - problems they own
    - problems shared with them directly (READ or WRITE)
    - problems that are members of a group shared with them

API-key principals see only what the key's grants reach (direct problem
grants plus members of granted groups). There is no ownership fallback:
a key with no grants sees nothing.

Write access is ownership or a WRITE share on that exact resource. A WRITE
share on a group does not grant write on its member problems.
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from solved_problems.identity import Principal


class ResourceType(str, Enum):
    SOLVED_PROBLEM = "SOLVED_PROBLEM"
    GROUP = "GROUP"


class Permission(str, Enum):
    READ = "READ"
    WRITE = "WRITE"


@dataclass(frozen=True)
class ResourceRef:
    """A polymorphic pointer to a solved problem or a group."""

    kind: ResourceType
    id: str

    @classmethod
    def parse(cls, resource_type: str, resource_id: str) -> "ResourceRef":
        return cls(kind=ResourceType(resource_type), id=resource_id)


class InvalidFilterError(ValueError):
    """Raised when a list filter cannot be interpreted."""


# ── Resolution ────────────────────────────────────────────


def _placeholders(values: Any) -> str:
    return ", ".join("?" for _ in values)


def _group_member_ids(conn: sqlite3.Connection, group_ids: set[str]) -> set[str]:
    if not group_ids:
        return set()
    ordered = sorted(group_ids)
    rows = conn.execute(
        f"SELECT solved_problem_id FROM group_memberships WHERE group_id IN ({_placeholders(ordered)})",  # noqa: S608
        ordered,
    ).fetchall()
    return {r["solved_problem_id"] for r in rows}


def _shared_resource_ids(
    conn: sqlite3.Connection, user_id: str, kind: ResourceType
) -> set[str]:
    rows = conn.execute(
        "SELECT resource_id FROM shares WHERE shared_with_user_id = ? AND resource_type = ?",
        (user_id, kind.value),
    ).fetchall()
    return {r["resource_id"] for r in rows}


def _granted_resource_ids(
    conn: sqlite3.Connection, api_key_id: str, kind: ResourceType
) -> set[str]:
    """Resource ids an API key is granted, restricted to resources that exist."""
    if kind is ResourceType.SOLVED_PROBLEM:
        query = """SELECT a.resource_id FROM api_key_accesses a
                   JOIN solved_problems sp ON sp.id = a.resource_id
                   WHERE a.api_key_id = ? AND a.resource_type = ?"""
    elif kind is ResourceType.GROUP:
        query = """SELECT a.resource_id FROM api_key_accesses a
                   JOIN solved_problem_groups g ON g.id = a.resource_id
                   WHERE a.api_key_id = ? AND a.resource_type = ?"""
    else:
        raise AssertionError(f"Unhandled resource type {kind!r}")
    rows = conn.execute(query, (api_key_id, kind.value)).fetchall()
    return {r["resource_id"] for r in rows}


def accessible_solved_problem_ids(
    conn: sqlite3.Connection, principal: Principal
) -> set[str]:
    """Return the ids of every solved problem the principal may read."""
    if principal.api_key_id is not None:
        direct = _granted_resource_ids(
            conn, principal.api_key_id, ResourceType.SOLVED_PROBLEM
        )
        groups = _granted_resource_ids(conn, principal.api_key_id, ResourceType.GROUP)
        return direct | _group_member_ids(conn, groups)

    owned = {
        r["id"]
        for r in conn.execute(
            "SELECT id FROM solved_problems WHERE owner_id = ?", (principal.user_id,)
        ).fetchall()
    }
    direct = _shared_resource_ids(conn, principal.user_id, ResourceType.SOLVED_PROBLEM)
    groups = _shared_resource_ids(conn, principal.user_id, ResourceType.GROUP)
    return owned | direct | _group_member_ids(conn, groups)


def accessible_group_ids(conn: sqlite3.Connection, principal: Principal) -> set[str]:
    """Return the ids of every group the principal may read."""
    if principal.api_key_id is not None:
        return _granted_resource_ids(conn, principal.api_key_id, ResourceType.GROUP)

    owned = {
        r["id"]
        for r in conn.execute(
            "SELECT id FROM solved_problem_groups WHERE owner_id = ?",
            (principal.user_id,),
        ).fetchall()
    }
    return owned | _shared_resource_ids(conn, principal.user_id, ResourceType.GROUP)


def can_read_solved_problem(
    conn: sqlite3.Connection, principal: Principal, solved_problem_id: str
) -> bool:
    return solved_problem_id in accessible_solved_problem_ids(conn, principal)


def resource_owner_id(conn: sqlite3.Connection, ref: ResourceRef) -> str | None:
    """Return the owner of the referenced resource, or None if it doesn't exist."""
    if ref.kind is ResourceType.SOLVED_PROBLEM:
        row = conn.execute(
            "SELECT owner_id FROM solved_problems WHERE id = ?", (ref.id,)
        ).fetchone()
    elif ref.kind is ResourceType.GROUP:
        row = conn.execute(
            "SELECT owner_id FROM solved_problem_groups WHERE id = ?", (ref.id,)
        ).fetchone()
    else:
        raise AssertionError(f"Unhandled resource type {ref.kind!r}")
    return row["owner_id"] if row else None


def resource_name(conn: sqlite3.Connection, ref: ResourceRef) -> str:
    """Display name for a resource, falling back to its id."""
    if ref.kind is ResourceType.SOLVED_PROBLEM:
        row = conn.execute(
            "SELECT name FROM solved_problems WHERE id = ?", (ref.id,)
        ).fetchone()
    elif ref.kind is ResourceType.GROUP:
        row = conn.execute(
            "SELECT name FROM solved_problem_groups WHERE id = ?", (ref.id,)
        ).fetchone()
    else:
        raise AssertionError(f"Unhandled resource type {ref.kind!r}")
    return row["name"] if row else ref.id


def can_write(conn: sqlite3.Connection, principal: Principal, ref: ResourceRef) -> bool:
    """True if the principal owns the resource or holds a WRITE share on it.

    API-key principals never write directly; they propose drafts instead.
    """
    if principal.is_api_key:
        return False

    owner_id = resource_owner_id(conn, ref)
    if owner_id is None:
        return False
    if owner_id == principal.user_id:
        return True

    share = conn.execute(
        """SELECT 1 FROM shares
           WHERE resource_type = ? AND resource_id = ?
             AND shared_with_user_id = ? AND permission = ?""",
        (ref.kind.value, ref.id, principal.user_id, Permission.WRITE.value),
    ).fetchone()
    return share is not None


def delete_resource_references(conn: sqlite3.Connection, ref: ResourceRef) -> None:
    """Remove shares and API-key grants that point at a resource. Does not commit."""
    conn.execute(
        "DELETE FROM shares WHERE resource_type = ? AND resource_id = ?",
        (ref.kind.value, ref.id),
    )
    conn.execute(
        "DELETE FROM api_key_accesses WHERE resource_type = ? AND resource_id = ?",
        (ref.kind.value, ref.id),
    )


# ── Filtered listing ──────────────────────────────────────


INVALID_DATE_MESSAGE = (
    "Invalid date format. Use ISO 8601 (e.g. '2025-01-15' or '2025-01-15T08:30:00Z')."
)


def parse_date_filter(value: str | None) -> str | None:
    """Normalize an ISO 8601 date or datetime to the stored timestamp format.

    Dates without a timezone are read as UTC. Raises InvalidFilterError on
    anything unparseable rather than dropping the filter.
    """
    if value is None or value == "":
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidFilterError(INVALID_DATE_MESSAGE) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class SolvedProblemFilters:
    """Optional narrowing applied on top of an accessible id set.

    Tag and dependency names match case-insensitively; any listed name
    matching is enough. Date bounds are inclusive.
    """

    tags: list[str] = field(default_factory=list)
    server_dependencies: list[str] = field(default_factory=list)
    client_dependencies: list[str] = field(default_factory=list)
    app_type: str | None = None
    search: str | None = None
    updated_after: str | None = None
    updated_before: str | None = None


def query_solved_problems(
    conn: sqlite3.Connection,
    ids: set[str],
    filters: SolvedProblemFilters | None = None,
) -> list[sqlite3.Row]:
    """Return solved problem rows among ``ids`` matching ``filters``.

    Newest update first. An empty id set returns [] without querying.
    Raises InvalidFilterError for unparseable date bounds.
    """
    if not ids:
        return []
    filters = filters or SolvedProblemFilters()

    updated_after = parse_date_filter(filters.updated_after)
    updated_before = parse_date_filter(filters.updated_before)

    ordered_ids = sorted(ids)
    clauses = [f"sp.id IN ({_placeholders(ordered_ids)})"]
    params: list[Any] = list(ordered_ids)

    if updated_after:
        clauses.append("sp.updated_at >= ?")
        params.append(updated_after)
    if updated_before:
        clauses.append("sp.updated_at <= ?")
        params.append(updated_before)
    if filters.app_type:
        clauses.append("sp.app_type = ?")
        params.append(filters.app_type)
    if filters.search:
        clauses.append(
            "(instr(lower(sp.name), lower(?)) > 0 OR instr(lower(sp.description), lower(?)) > 0)"
        )
        params.extend([filters.search, filters.search])
    if filters.tags:
        names = [t.lower() for t in filters.tags]
        clauses.append(
            f"""EXISTS (SELECT 1 FROM solved_problem_tags st
                        JOIN tags t ON t.id = st.tag_id
                        WHERE st.solved_problem_id = sp.id
                          AND lower(t.name) IN ({_placeholders(names)}))"""
        )
        params.extend(names)
    for dep_type, dep_names in (
        ("SERVER", filters.server_dependencies),
        ("CLIENT", filters.client_dependencies),
    ):
        if not dep_names:
            continue
        names = [d.lower() for d in dep_names]
        clauses.append(
            f"""EXISTS (SELECT 1 FROM dependencies d
                        WHERE d.solved_problem_id = sp.id AND d.type = ?
                          AND lower(d.name) IN ({_placeholders(names)}))"""
        )
        params.append(dep_type)
        params.extend(names)

    query = (
        "SELECT sp.* FROM solved_problems sp WHERE "
        + " AND ".join(clauses)
        + " ORDER BY sp.updated_at DESC, sp.id"
    )
    return conn.execute(query, params).fetchall()
