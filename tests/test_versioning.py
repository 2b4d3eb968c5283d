"""Tests for solved_problems/versioning.py: gapless, change-only versions."""

import sqlite3
from pathlib import Path

import pytest

from db.migrations import init_db
from solved_problems.identity import Principal, create_user
from solved_problems.problems import create_solved_problem, update_solved_problem
from solved_problems.versioning import (
    get_version,
    latest_version,
    list_versions,
    maybe_create_version,
)


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _user(conn: sqlite3.Connection, email: str) -> Principal:
    user = create_user(conn, email, email.split("@")[0])
    return Principal(user_id=user["id"], role=user["role"])


def _problem(conn: sqlite3.Connection, owner: Principal, details: str | None = None) -> str:
    result = create_solved_problem(
        conn, owner, name="Retry queue", description="", app_type="worker", details=details
    )
    return result["id"]


class TestMaybeCreateVersion:
    def test_no_details_no_version(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner)
        assert maybe_create_version(conn, pid, None, None) is None
        assert latest_version(conn, pid) is None

    def test_empty_details_match_missing_version(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner)
        assert maybe_create_version(conn, pid, None, "") is None

    def test_first_version_is_one(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner)
        assert maybe_create_version(conn, pid, None, "v1") == 1

    def test_identical_details_skipped(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner, details="same")
        latest = latest_version(conn, pid)
        assert maybe_create_version(conn, pid, latest, "same") is None

    def test_whitespace_is_a_change(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner, details="same")
        latest = latest_version(conn, pid)
        assert maybe_create_version(conn, pid, latest, "same ") == 2


class TestVersionSequence:
    def test_updates_produce_gapless_sequence(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner, details="one")
        update_solved_problem(conn, owner, pid, details="two")
        update_solved_problem(conn, owner, pid, details="two")
        update_solved_problem(conn, owner, pid, name="Renamed")
        update_solved_problem(conn, owner, pid, details="three")

        result = list_versions(conn, owner, pid)
        assert [v["version"] for v in result["versions"]] == [3, 2, 1]
        assert "details" not in result["versions"][0]

    def test_get_version_details(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner, details="one")
        update_solved_problem(conn, owner, pid, details="two")

        assert get_version(conn, owner, pid, 1)["details"] == "one"
        assert get_version(conn, owner, pid, 2)["details"] == "two"

    def test_missing_version(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem(conn, owner, details="one")
        result = get_version(conn, owner, pid, 9)
        assert result["error"] == "not_found"
        assert result["message"] == "Version not found"


class TestVersionAccess:
    def test_inaccessible_problem_is_not_found(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        stranger = _user(conn, "b@example.com")
        pid = _problem(conn, owner, details="secret")

        assert list_versions(conn, stranger, pid)["error"] == "not_found"
        assert get_version(conn, stranger, pid, 1)["error"] == "not_found"
