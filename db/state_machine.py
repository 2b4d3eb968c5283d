"""Draft review state machine for solved-problems.

Status rules:
    - PENDING -> APPROVED
    - PENDING -> REJECTED
    - APPROVED and REJECTED are terminal; nothing re-opens a draft

The status flip is a compare-and-swap: the UPDATE only matches while the
row is still PENDING, and a zero row count means another reviewer got there
first. Import transition_draft() from here. Do not duplicate this logic.
"""

import sqlite3
from datetime import datetime, timezone
from enum import Enum


class DraftStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


ALLOWED_TRANSITIONS: dict[DraftStatus, frozenset[DraftStatus]] = {
    DraftStatus.PENDING: frozenset({DraftStatus.APPROVED, DraftStatus.REJECTED}),
    DraftStatus.APPROVED: frozenset(),
    DraftStatus.REJECTED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when a draft status change is not allowed by the state machine."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


def validate_draft_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed."""
    current_status = DraftStatus(current)
    target_status = DraftStatus(target)
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        if current_status is not DraftStatus.PENDING:
            raise InvalidTransitionError("Draft is not pending")
        raise InvalidTransitionError(
            f"Cannot move draft from {current_status.value} to {target_status.value}"
        )


def transition_draft(
    conn: sqlite3.Connection, draft_id: str, target: DraftStatus
) -> str:
    """Move a PENDING draft to a terminal status and return reviewed_at.

    Does not commit; the caller owns the surrounding transaction so the
    status flip and any merge it guards land together.

    Raises InvalidTransitionError if the draft is missing, not pending, or
    the target is not a terminal status.
    """
    validate_draft_transition(DraftStatus.PENDING, target)

    reviewed_at = datetime.now(timezone.utc).isoformat(timespec="microseconds")
    cursor = conn.execute(
        "UPDATE drafts SET status = ?, reviewed_at = ? WHERE id = ? AND status = ?",
        (target.value, reviewed_at, draft_id, DraftStatus.PENDING.value),
    )
    if cursor.rowcount == 1:
        return reviewed_at

    row = conn.execute("SELECT status FROM drafts WHERE id = ?", (draft_id,)).fetchone()
    if row is None:
        raise InvalidTransitionError(f"Draft '{draft_id}' not found")
    validate_draft_transition(row["status"], target)
    # Unreachable unless the row changed between the two statements
    raise InvalidTransitionError("Draft is not pending")
