"""Draft workflow for solved-problems.

A draft is a proposed change: either an update to an existing problem
(solved_problem_id set) or a brand-new problem (solved_problem_id NULL).
Agents holding API keys can only create drafts; humans resolve them.

Who may see / approve / reject a draft:
    - the owner of the targeted problem, or
    - for new-problem proposals, the user who created the draft

WRITE shares do not extend to drafts. Status changes go through
db.state_machine.transition_draft() inside the same transaction as the
merge, so a draft can never be applied twice.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from db.client import transaction
from db.state_machine import DraftStatus, InvalidTransitionError, transition_draft
from solved_problems.access import accessible_solved_problem_ids
from solved_problems.errors import (
    BAD_REQUEST,
    FORBIDDEN,
    INVALID_INPUT,
    NOT_FOUND,
    error_result,
    is_error,
)
from solved_problems.identity import Principal
from solved_problems.payloads import ProposedData
from solved_problems.problems import (
    apply_changes,
    insert_solved_problem,
    load_solved_problem,
    validation_message,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _uuid() -> str:
    return str(uuid.uuid4())


def _draft_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    result = dict(row)
    result["proposed_data"] = json.loads(result["proposed_data"])
    return result


def _fetch_draft(conn: sqlite3.Connection, draft_id: str) -> sqlite3.Row | None:
    return conn.execute(
        """SELECT d.*, sp.owner_id AS target_owner_id
           FROM drafts d
           LEFT JOIN solved_problems sp ON sp.id = d.solved_problem_id
           WHERE d.id = ?""",
        (draft_id,),
    ).fetchone()


def _can_review(draft: sqlite3.Row, user_id: str) -> bool:
    if draft["solved_problem_id"] is not None:
        return draft["target_owner_id"] == user_id
    return draft["created_by_user_id"] == user_id


def _parse_proposed(draft: sqlite3.Row) -> ProposedData:
    return ProposedData.model_validate(json.loads(draft["proposed_data"]))


# ── Create ────────────────────────────────────────────────


def create_draft(
    conn: sqlite3.Connection,
    principal: Principal,
    proposed: ProposedData | dict[str, Any],
    solved_problem_id: str | None = None,
) -> dict[str, Any]:
    """Record a PENDING proposal.

    A target the principal cannot read is dropped silently and the draft
    becomes a new-problem proposal instead.
    """
    try:
        data = (
            proposed
            if isinstance(proposed, ProposedData)
            else ProposedData.model_validate(proposed)
        )
    except ValidationError as e:
        return error_result(INVALID_INPUT, validation_message(e))

    target_id: str | None = None
    if solved_problem_id and solved_problem_id in accessible_solved_problem_ids(
        conn, principal
    ):
        target_id = solved_problem_id

    draft_id = _uuid()
    now = _now()
    conn.execute(
        """INSERT INTO drafts
           (id, solved_problem_id, proposed_data, status, created_by_user_id, api_key_id, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            draft_id,
            target_id,
            json.dumps(data.to_json_dict()),
            DraftStatus.PENDING.value,
            principal.user_id,
            principal.api_key_id,
            now,
        ),
    )
    conn.commit()

    logger.info(
        "Draft %s created by user %s (target=%s, api_key=%s)",
        draft_id,
        principal.user_id,
        target_id,
        principal.api_key_id,
    )
    return {
        "id": draft_id,
        "solved_problem_id": target_id,
        "proposed_data": data.to_json_dict(),
        "status": DraftStatus.PENDING.value,
        "created_by_user_id": principal.user_id,
        "api_key_id": principal.api_key_id,
        "created_at": now,
        "reviewed_at": None,
    }


# ── Read ──────────────────────────────────────────────────


def list_drafts(conn: sqlite3.Connection, principal: Principal) -> dict[str, Any]:
    """PENDING drafts the user may review, newest first."""
    rows = conn.execute(
        """SELECT d.*, sp.name AS solved_problem_name, k.name AS api_key_name
           FROM drafts d
           LEFT JOIN solved_problems sp ON sp.id = d.solved_problem_id
           LEFT JOIN api_keys k ON k.id = d.api_key_id
           WHERE d.status = ?
             AND (sp.owner_id = ?
                  OR (d.solved_problem_id IS NULL AND d.created_by_user_id = ?))
           ORDER BY d.created_at DESC""",
        (DraftStatus.PENDING.value, principal.user_id, principal.user_id),
    ).fetchall()
    return {"drafts": [_draft_to_dict(r) for r in rows]}


def get_draft(
    conn: sqlite3.Connection, principal: Principal, draft_id: str
) -> dict[str, Any]:
    """One draft with its target problem, if the user may review it."""
    draft = _fetch_draft(conn, draft_id)
    if draft is None or not _can_review(draft, principal.user_id):
        return error_result(NOT_FOUND, "Draft not found")

    result = _draft_to_dict(draft)
    result.pop("target_owner_id", None)
    result["solved_problem"] = (
        load_solved_problem(conn, draft["solved_problem_id"])
        if draft["solved_problem_id"]
        else None
    )
    creator = conn.execute(
        "SELECT id, name, email FROM users WHERE id = ?", (draft["created_by_user_id"],)
    ).fetchone()
    result["created_by_user"] = dict(creator) if creator else None
    return result


# ── Resolve ───────────────────────────────────────────────


def _check_reviewable(
    draft: sqlite3.Row | None, principal: Principal, action: str
) -> dict[str, Any] | None:
    if draft is None:
        return error_result(NOT_FOUND, "Draft not found")
    if draft["status"] != DraftStatus.PENDING.value:
        return error_result(BAD_REQUEST, "Draft is not pending")
    if principal.is_api_key or not _can_review(draft, principal.user_id):
        return error_result(FORBIDDEN, f"Only the resource owner can {action} drafts")
    return None


def approve_draft(
    conn: sqlite3.Connection, principal: Principal, draft_id: str
) -> dict[str, Any]:
    """Apply a pending draft and mark it APPROVED.

    Update drafts merge into the target (name / description / app type
    always; tags, dependencies and details only when present). New-problem
    drafts create a problem owned by the approver.
    """
    try:
        with transaction(conn):
            draft = _fetch_draft(conn, draft_id)
            failure = _check_reviewable(draft, principal, "approve")
            if failure:
                return failure

            try:
                data = _parse_proposed(draft)
            except ValidationError as e:
                return error_result(
                    BAD_REQUEST, f"Draft data is invalid: {validation_message(e)}"
                )

            reviewed_at = transition_draft(conn, draft_id, DraftStatus.APPROVED)

            if draft["solved_problem_id"] is not None:
                solved_problem_id = draft["solved_problem_id"]
                apply_changes(
                    conn,
                    solved_problem_id,
                    name=data.name,
                    description=data.description,
                    app_type=data.app_type,
                    tags=data.tags,
                    dependencies=data.dependencies,
                    details=data.details,
                )
            else:
                solved_problem_id = insert_solved_problem(conn, principal.user_id, data)
    except InvalidTransitionError as e:
        return error_result(BAD_REQUEST, str(e))

    logger.info(
        "Draft %s approved by user %s into solved problem %s",
        draft_id,
        principal.user_id,
        solved_problem_id,
    )
    result = _draft_to_dict(draft)
    result.pop("target_owner_id", None)
    result.update(
        status=DraftStatus.APPROVED.value,
        reviewed_at=reviewed_at,
        applied_solved_problem_id=solved_problem_id,
    )
    return result


def reject_draft(
    conn: sqlite3.Connection, principal: Principal, draft_id: str
) -> dict[str, Any]:
    """Mark a pending draft REJECTED without touching its target."""
    try:
        with transaction(conn):
            draft = _fetch_draft(conn, draft_id)
            failure = _check_reviewable(draft, principal, "reject")
            if failure:
                return failure
            reviewed_at = transition_draft(conn, draft_id, DraftStatus.REJECTED)
    except InvalidTransitionError as e:
        return error_result(BAD_REQUEST, str(e))

    logger.info("Draft %s rejected by user %s", draft_id, principal.user_id)
    result = _draft_to_dict(draft)
    result.pop("target_owner_id", None)
    result.update(status=DraftStatus.REJECTED.value, reviewed_at=reviewed_at)
    return result


def copy_draft_to_own(
    conn: sqlite3.Connection, principal: Principal, draft_id: str
) -> dict[str, Any]:
    """Materialize a draft's proposal as a new problem owned by the caller.

    Open to any authenticated user and any draft status. The draft itself
    is left unchanged; the copy records the draft's target as its origin.
    """
    if principal.is_api_key:
        return error_result(FORBIDDEN, "API keys can only propose drafts")

    draft = _fetch_draft(conn, draft_id)
    if draft is None:
        return error_result(NOT_FOUND, "Draft not found")
    try:
        data = _parse_proposed(draft)
    except ValidationError as e:
        return error_result(BAD_REQUEST, f"Draft data is invalid: {validation_message(e)}")

    with transaction(conn):
        solved_problem_id = insert_solved_problem(
            conn,
            principal.user_id,
            data,
            copied_from_id=draft["solved_problem_id"],
        )

    logger.info(
        "Draft %s copied by user %s into solved problem %s",
        draft_id,
        principal.user_id,
        solved_problem_id,
    )
    return load_solved_problem(conn, solved_problem_id)  # type: ignore[return-value]


def approve_many(
    conn: sqlite3.Connection, principal: Principal, draft_ids: list[str]
) -> dict[str, Any]:
    """Approve each draft independently; one failure never stops the rest."""
    approved = 0
    errors: list[dict[str, Any]] = []
    for draft_id in draft_ids:
        try:
            result = approve_draft(conn, principal, draft_id)
        except sqlite3.Error:
            logger.exception("Unexpected error approving draft %s", draft_id)
            errors.append({"id": draft_id, "error": "internal", "message": "Approval failed"})
            continue
        if is_error(result):
            errors.append({"id": draft_id, **result})
        else:
            approved += 1
    return {"approved": approved, "errors": errors}
