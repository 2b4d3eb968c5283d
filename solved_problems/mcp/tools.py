"""MCP tool implementations for solved-problems.

Each function takes a sqlite3.Connection, the calling Principal (resolved
from an API key) and explicit params, and returns a dict. The server module
registers these as MCP tools. Agents can read what their key is granted and
propose drafts; they never write directly.
"""

import sqlite3
from typing import Any

from pydantic import ValidationError

from solved_problems.access import (
    InvalidFilterError,
    SolvedProblemFilters,
    accessible_solved_problem_ids,
    query_solved_problems,
)
from solved_problems.drafts import create_draft
from solved_problems.errors import (
    BAD_REQUEST,
    INVALID_INPUT,
    UNAUTHENTICATED,
    error_result,
    is_error,
)
from solved_problems.identity import Principal
from solved_problems.payloads import DependencyInput, ProposedData
from solved_problems.problems import load_solved_problem, validation_message


def _require_principal(principal: Principal | None) -> dict[str, Any] | None:
    if principal is None:
        return error_result(UNAUTHENTICATED, "Invalid or revoked API key")
    return None


# ── Read tools ────────────────────────────────────────────


def list_solved_problems(
    conn: sqlite3.Connection,
    principal: Principal | None,
    server_dependencies: list[str] | None = None,
    client_dependencies: list[str] | None = None,
    tags: list[str] | None = None,
    updated_after: str | None = None,
    updated_before: str | None = None,
) -> dict[str, Any]:
    """Summaries of every problem the key can reach, newest update first."""
    failure = _require_principal(principal)
    if failure:
        return failure

    filters = SolvedProblemFilters(
        tags=tags or [],
        server_dependencies=server_dependencies or [],
        client_dependencies=client_dependencies or [],
        updated_after=updated_after,
        updated_before=updated_before,
    )
    ids = accessible_solved_problem_ids(conn, principal)
    try:
        rows = query_solved_problems(conn, ids, filters)
    except InvalidFilterError as e:
        return error_result(BAD_REQUEST, str(e))

    return {
        "solved_problems": [
            {
                "id": r["id"],
                "name": r["name"],
                "description": r["description"],
                "app_type": r["app_type"],
                "updated_at": r["updated_at"],
            }
            for r in rows
        ]
    }


def get_solved_problems(
    conn: sqlite3.Connection, principal: Principal | None, ids: list[str]
) -> dict[str, Any]:
    """Full records for the requested ids the key can reach.

    Ids outside the key's grants are dropped without comment, so callers
    cannot probe for existence.
    """
    failure = _require_principal(principal)
    if failure:
        return failure

    accessible = accessible_solved_problem_ids(conn, principal)
    results = []
    for solved_problem_id in dict.fromkeys(ids):
        if solved_problem_id not in accessible:
            continue
        problem = load_solved_problem(conn, solved_problem_id)
        if problem is None:
            continue
        problem.pop("owner", None)
        problem.pop("owner_id", None)
        results.append(problem)
    return {"solved_problems": results}


# ── Propose tool ──────────────────────────────────────────


def _typed_dependencies(
    server_dependencies: list[dict[str, Any]] | None,
    client_dependencies: list[dict[str, Any]] | None,
) -> list[DependencyInput] | None:
    """Fold the agent's split dependency lists into one typed list.

    None when the agent gave neither, so approval leaves dependencies alone.
    """
    if server_dependencies is None and client_dependencies is None:
        return None
    typed = []
    for dep_type, deps in (("SERVER", server_dependencies), ("CLIENT", client_dependencies)):
        for dep in deps or []:
            typed.append(DependencyInput.model_validate({**dep, "type": dep_type}))
    return typed


def draft_solved_problem(
    conn: sqlite3.Connection,
    principal: Principal | None,
    name: str,
    description: str,
    app_type: str,
    details: str,
    id: str | None = None,
    tags: list[str] | None = None,
    server_dependencies: list[dict[str, Any]] | None = None,
    client_dependencies: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Propose a new problem or an update to one the key can reach.

    An ``id`` outside the key's grants turns the proposal into a new
    problem rather than failing.
    """
    failure = _require_principal(principal)
    if failure:
        return failure

    try:
        proposed = ProposedData(
            name=name,
            description=description,
            app_type=app_type,
            details=details,
            tags=tags,
            dependencies=_typed_dependencies(server_dependencies, client_dependencies),
        )
    except ValidationError as e:
        return error_result(INVALID_INPUT, validation_message(e))

    draft = create_draft(conn, principal, proposed, solved_problem_id=id)
    if is_error(draft):
        return draft

    target = draft["solved_problem_id"]
    return {
        "draft_id": draft["id"],
        "status": draft["status"],
        "message": (
            f'Draft update proposal created for solved problem "{target}"'
            if target
            else "Draft new solved problem proposal created"
        ),
    }
