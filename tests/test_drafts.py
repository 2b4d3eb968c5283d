"""Tests for solved_problems/drafts.py: proposing, reviewing, applying drafts."""

import sqlite3
from pathlib import Path

import pytest

from db.migrations import init_db
from solved_problems import sharing
from solved_problems.api_keys import create_api_key
from solved_problems.drafts import (
    approve_draft,
    approve_many,
    copy_draft_to_own,
    create_draft,
    get_draft,
    list_drafts,
    reject_draft,
)
from solved_problems.identity import Principal, authenticate_api_key, create_user
from solved_problems.problems import create_solved_problem, get_solved_problem
from solved_problems.versioning import list_versions


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _user(conn: sqlite3.Connection, email: str) -> Principal:
    user = create_user(conn, email, email.split("@")[0])
    return Principal(user_id=user["id"], role=user["role"])


def _problem(conn: sqlite3.Connection, owner: Principal) -> str:
    result = create_solved_problem(
        conn,
        owner,
        name="Webhook retries",
        description="Exponential backoff",
        app_type="worker",
        tags=["queues"],
        details="v1",
    )
    return result["id"]


def _agent(conn: sqlite3.Connection, owner: Principal, problem_ids: list[str]) -> Principal:
    key = create_api_key(
        conn,
        owner,
        "agent",
        [{"resource_type": "SOLVED_PROBLEM", "resource_id": pid} for pid in problem_ids],
    )
    principal = authenticate_api_key(conn, f"Bearer {key['key']}")
    assert principal is not None
    return principal


def _proposal(**overrides) -> dict:
    data = {"name": "Webhook retries", "description": "Jittered backoff", "appType": "worker"}
    data.update(overrides)
    return data


class TestCreateDraft:
    def test_update_proposal_targets_problem(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        agent = _agent(conn, owner, [pid])

        draft = create_draft(conn, agent, _proposal(details="v2"), solved_problem_id=pid)
        assert draft["solved_problem_id"] == pid
        assert draft["status"] == "PENDING"
        assert draft["api_key_id"] == agent.api_key_id

    def test_unreachable_target_becomes_new_proposal(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        agent = _agent(conn, owner, [])

        draft = create_draft(conn, agent, _proposal(), solved_problem_id=pid)
        assert draft["solved_problem_id"] is None

    def test_invalid_payload(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        result = create_draft(conn, owner, {"name": "", "description": "", "appType": "x"})
        assert result["error"] == "invalid_input"

    def test_absent_fields_not_stored(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        draft = create_draft(conn, owner, _proposal())
        assert "tags" not in draft["proposed_data"]
        assert "details" not in draft["proposed_data"]


class TestReviewVisibility:
    def test_owner_sees_update_drafts(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        agent = _agent(conn, owner, [pid])
        draft = create_draft(conn, agent, _proposal(), solved_problem_id=pid)

        listed = list_drafts(conn, owner)["drafts"]
        assert [d["id"] for d in listed] == [draft["id"]]
        assert listed[0]["solved_problem_name"] == "Webhook retries"
        assert listed[0]["api_key_name"] == "agent"

    def test_write_share_does_not_see_drafts(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        editor = _user(conn, "editor@example.com")
        pid = _problem(conn, owner)
        sharing.share(conn, owner, "SOLVED_PROBLEM", pid, editor.user_id, "WRITE")
        draft = create_draft(conn, owner, _proposal(), solved_problem_id=pid)

        assert list_drafts(conn, editor)["drafts"] == []
        assert get_draft(conn, editor, draft["id"])["error"] == "not_found"
        assert approve_draft(conn, editor, draft["id"])["error"] == "forbidden"

    def test_get_draft_includes_target(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        draft = create_draft(conn, owner, _proposal(), solved_problem_id=pid)

        result = get_draft(conn, owner, draft["id"])
        assert result["solved_problem"]["id"] == pid
        assert result["created_by_user"]["email"] == "owner@example.com"
        assert "target_owner_id" not in result

    def test_resolved_drafts_leave_list(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        draft = create_draft(conn, owner, _proposal())
        reject_draft(conn, owner, draft["id"])
        assert list_drafts(conn, owner)["drafts"] == []


class TestApprove:
    def test_merges_update(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        agent = _agent(conn, owner, [pid])
        draft = create_draft(
            conn, agent, _proposal(details="v2", tags=["queues", "http"]), solved_problem_id=pid
        )

        result = approve_draft(conn, owner, draft["id"])
        assert result["status"] == "APPROVED"
        assert result["reviewed_at"] is not None
        assert result["applied_solved_problem_id"] == pid

        problem = get_solved_problem(conn, owner, pid)
        assert problem["description"] == "Jittered backoff"
        assert problem["tags"] == ["http", "queues"]
        assert problem["latest_version"]["version"] == 2

    def test_absent_tags_untouched(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        draft = create_draft(conn, owner, _proposal(), solved_problem_id=pid)

        approve_draft(conn, owner, draft["id"])
        problem = get_solved_problem(conn, owner, pid)
        assert problem["tags"] == ["queues"]
        assert problem["latest_version"]["version"] == 1

    def test_approve_twice_applies_once(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        draft = create_draft(conn, owner, _proposal(details="v2"), solved_problem_id=pid)

        approve_draft(conn, owner, draft["id"])
        second = approve_draft(conn, owner, draft["id"])
        assert second["error"] == "bad_request"
        assert second["message"] == "Draft is not pending"
        assert [v["version"] for v in list_versions(conn, owner, pid)["versions"]] == [2, 1]

    def test_reject_after_approve(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        draft = create_draft(conn, owner, _proposal())
        approve_draft(conn, owner, draft["id"])
        assert reject_draft(conn, owner, draft["id"])["error"] == "bad_request"

    def test_new_problem_owned_by_approver(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        agent = _agent(conn, owner, [])
        draft = create_draft(conn, agent, _proposal(details="fresh"))

        result = approve_draft(conn, owner, draft["id"])
        problem = get_solved_problem(conn, owner, result["applied_solved_problem_id"])
        assert problem["owner_id"] == owner.user_id
        assert problem["latest_version"]["details"] == "fresh"

    def test_api_key_cannot_approve(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        agent = _agent(conn, owner, [])
        draft = create_draft(conn, agent, _proposal())
        assert approve_draft(conn, agent, draft["id"])["error"] == "forbidden"

    def test_missing_draft(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        assert approve_draft(conn, owner, "ghost")["error"] == "not_found"


class TestReject:
    def test_target_unchanged(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        pid = _problem(conn, owner)
        draft = create_draft(conn, owner, _proposal(name="Other", details="v2"), solved_problem_id=pid)

        result = reject_draft(conn, owner, draft["id"])
        assert result["status"] == "REJECTED"
        problem = get_solved_problem(conn, owner, pid)
        assert problem["name"] == "Webhook retries"
        assert problem["latest_version"]["version"] == 1


class TestCopyToOwn:
    def test_copy_records_origin(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        other = _user(conn, "other@example.com")
        pid = _problem(conn, owner)
        draft = create_draft(conn, owner, _proposal(details="mine now"), solved_problem_id=pid)

        copy = copy_draft_to_own(conn, other, draft["id"])
        assert copy["owner_id"] == other.user_id
        assert copy["copied_from_id"] == pid
        assert copy["id"] != pid
        assert get_draft(conn, owner, draft["id"])["status"] == "PENDING"

    def test_works_on_resolved_draft(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        draft = create_draft(conn, owner, _proposal())
        reject_draft(conn, owner, draft["id"])
        copy = copy_draft_to_own(conn, owner, draft["id"])
        assert copy["copied_from_id"] is None

    def test_missing_draft(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        assert copy_draft_to_own(conn, owner, "ghost")["error"] == "not_found"


class TestApproveMany:
    def test_partial_success(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        first = create_draft(conn, owner, _proposal(name="One"))
        second = create_draft(conn, owner, _proposal(name="Two"))
        reject_draft(conn, owner, second["id"])

        result = approve_many(conn, owner, [first["id"], second["id"], "ghost"])
        assert result["approved"] == 1
        assert [e["id"] for e in result["errors"]] == [second["id"], "ghost"]
        assert [e["error"] for e in result["errors"]] == ["bad_request", "not_found"]

    def test_empty(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "owner@example.com")
        assert approve_many(conn, owner, []) == {"approved": 0, "errors": []}
