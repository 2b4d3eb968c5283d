"""Tests for solved_problems/admin.py."""

import sqlite3
from pathlib import Path

import pytest

from db.migrations import init_db
from solved_problems import sharing
from solved_problems.admin import (
    delete_user,
    disable_two_factor,
    get_settings,
    is_export_enabled,
    list_users,
    update_settings,
)
from solved_problems.groups import create_group
from solved_problems.identity import Principal, create_user
from solved_problems.problems import create_solved_problem


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _user(conn: sqlite3.Connection, email: str) -> Principal:
    user = create_user(conn, email, email.split("@")[0])
    return Principal(user_id=user["id"], role=user["role"])


@pytest.fixture()
def admin(conn: sqlite3.Connection) -> Principal:
    principal = _user(conn, "admin@example.com")
    assert principal.is_admin
    return principal


class TestSettings:
    def test_defaults(self, conn: sqlite3.Connection, admin: Principal) -> None:
        result = get_settings(conn, admin)
        assert result["signup_enabled"] is True
        assert result["export_enabled"] is True

    def test_partial_update(self, conn: sqlite3.Connection, admin: Principal) -> None:
        result = update_settings(conn, admin, export_enabled=False)
        assert result["export_enabled"] is False
        assert result["signup_enabled"] is True
        assert is_export_enabled(conn) is False

    def test_non_admin_forbidden(self, conn: sqlite3.Connection, admin: Principal) -> None:
        user = _user(conn, "u@example.com")
        assert get_settings(conn, user)["error"] == "forbidden"
        assert update_settings(conn, user, signup_enabled=False)["error"] == "forbidden"
        assert get_settings(conn, admin)["signup_enabled"] is True


class TestUsers:
    def test_list(self, conn: sqlite3.Connection, admin: Principal) -> None:
        _user(conn, "u@example.com")
        emails = {u["email"] for u in list_users(conn, admin)["users"]}
        assert emails == {"admin@example.com", "u@example.com"}

    def test_cannot_delete_self(self, conn: sqlite3.Connection, admin: Principal) -> None:
        result = delete_user(conn, admin, admin.user_id)
        assert result == {"error": "bad_request", "message": "You cannot delete yourself."}

    def test_delete_removes_owned_and_references(
        self, conn: sqlite3.Connection, admin: Principal
    ) -> None:
        user = _user(conn, "u@example.com")
        pid = create_solved_problem(conn, user, name="P", description="", app_type="web")["id"]
        group = create_group(conn, user, "G")
        sharing.share(conn, user, "SOLVED_PROBLEM", pid, admin.user_id, "READ")
        sharing.share(conn, user, "GROUP", group["id"], admin.user_id, "READ")

        assert delete_user(conn, admin, user.user_id) == {"success": True}
        for table in ("solved_problems", "solved_problem_groups", "shares"):
            assert conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 0

    def test_delete_missing(self, conn: sqlite3.Connection, admin: Principal) -> None:
        assert delete_user(conn, admin, "ghost")["error"] == "not_found"

    def test_disable_two_factor(self, conn: sqlite3.Connection, admin: Principal) -> None:
        user = _user(conn, "u@example.com")
        conn.execute("UPDATE users SET two_factor_enabled = 1 WHERE id = ?", (user.user_id,))
        conn.commit()

        assert disable_two_factor(conn, admin, user.user_id) == {"success": True}
        row = conn.execute(
            "SELECT two_factor_enabled FROM users WHERE id = ?", (user.user_id,)
        ).fetchone()
        assert row[0] == 0

    def test_disable_two_factor_self(self, conn: sqlite3.Connection, admin: Principal) -> None:
        assert disable_two_factor(conn, admin, admin.user_id)["error"] == "bad_request"
