"""Tests for solved_problems/access.py: who can read and write what.

Covers:
- user access is the union of owned, directly shared and group-shared
- API keys see only their grants, independent of the owner
- WRITE on a group does not grant WRITE on its members
- list filters (tags, dependencies, dates, search)
"""

import sqlite3
from pathlib import Path

import pytest

from db.migrations import init_db
from solved_problems import groups, sharing
from solved_problems.access import (
    INVALID_DATE_MESSAGE,
    InvalidFilterError,
    ResourceRef,
    ResourceType,
    SolvedProblemFilters,
    accessible_group_ids,
    accessible_solved_problem_ids,
    can_write,
    parse_date_filter,
    query_solved_problems,
)
from solved_problems.api_keys import create_api_key
from solved_problems.identity import Principal, authenticate_api_key, create_user
from solved_problems.problems import create_solved_problem


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _user(conn: sqlite3.Connection, email: str) -> Principal:
    user = create_user(conn, email, email.split("@")[0])
    return Principal(user_id=user["id"], role=user["role"])


def _problem(conn: sqlite3.Connection, owner: Principal, name: str, **kwargs) -> str:
    result = create_solved_problem(
        conn, owner, name=name, description=kwargs.pop("description", ""), app_type="web", **kwargs
    )
    return result["id"]


def _key_principal(
    conn: sqlite3.Connection, owner: Principal, accesses: list[dict]
) -> Principal:
    key = create_api_key(conn, owner, "agent", accesses)
    principal = authenticate_api_key(conn, f"Bearer {key['key']}")
    assert principal is not None
    return principal


def _problem_ref(problem_id: str) -> ResourceRef:
    return ResourceRef(ResourceType.SOLVED_PROBLEM, problem_id)


class TestUserAccess:
    def test_owned_only(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        mine = _problem(conn, alice, "Mine")
        _problem(conn, bob, "Theirs")

        assert accessible_solved_problem_ids(conn, alice) == {mine}

    def test_direct_share(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        pid = _problem(conn, alice, "Shared")
        sharing.share(conn, alice, "SOLVED_PROBLEM", pid, bob.user_id, "READ")

        assert pid in accessible_solved_problem_ids(conn, bob)

    def test_group_share_reaches_members(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        pid = _problem(conn, alice, "Member")
        outside = _problem(conn, alice, "Outside")
        group = groups.create_group(conn, alice, "Bundle")
        groups.add_solved_problem(conn, alice, group["id"], pid)
        sharing.share(conn, alice, "GROUP", group["id"], bob.user_id, "READ")

        ids = accessible_solved_problem_ids(conn, bob)
        assert pid in ids
        assert outside not in ids
        assert accessible_group_ids(conn, bob) == {group["id"]}

    def test_group_write_does_not_grant_member_write(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        pid = _problem(conn, alice, "Member")
        group = groups.create_group(conn, alice, "Bundle")
        groups.add_solved_problem(conn, alice, group["id"], pid)
        sharing.share(conn, alice, "GROUP", group["id"], bob.user_id, "WRITE")

        assert can_write(conn, bob, ResourceRef(ResourceType.GROUP, group["id"])) is True
        assert can_write(conn, bob, _problem_ref(pid)) is False

    def test_write_share(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        pid = _problem(conn, alice, "Shared")
        share = sharing.share(conn, alice, "SOLVED_PROBLEM", pid, bob.user_id, "READ")
        assert can_write(conn, bob, _problem_ref(pid)) is False

        sharing.update_permission(conn, alice, share["id"], "WRITE")
        assert can_write(conn, bob, _problem_ref(pid)) is True

    def test_missing_resource_not_writable(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        assert can_write(conn, alice, _problem_ref("nope")) is False


class TestApiKeyAccess:
    def test_no_grants_sees_nothing(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        _problem(conn, alice, "Owned")
        key = _key_principal(conn, alice, [])

        assert accessible_solved_problem_ids(conn, key) == set()

    def test_direct_and_group_grants(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        direct = _problem(conn, alice, "Direct")
        member = _problem(conn, alice, "Member")
        _problem(conn, alice, "Hidden")
        group = groups.create_group(conn, alice, "Bundle")
        groups.add_solved_problem(conn, alice, group["id"], member)

        key = _key_principal(
            conn,
            alice,
            [
                {"resource_type": "SOLVED_PROBLEM", "resource_id": direct},
                {"resource_type": "GROUP", "resource_id": group["id"]},
            ],
        )
        assert accessible_solved_problem_ids(conn, key) == {direct, member}
        assert accessible_group_ids(conn, key) == {group["id"]}

    def test_grants_not_limited_by_owner_access(self, conn: sqlite3.Connection) -> None:
        """A key reaches what it is granted even if the owner could not."""
        alice = _user(conn, "alice@example.com")
        bob = _user(conn, "bob@example.com")
        theirs = _problem(conn, bob, "Theirs")
        key = _key_principal(
            conn, alice, [{"resource_type": "SOLVED_PROBLEM", "resource_id": theirs}]
        )

        assert theirs not in accessible_solved_problem_ids(conn, alice)
        assert accessible_solved_problem_ids(conn, key) == {theirs}

    def test_grants_to_missing_resources_ignored(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        key = _key_principal(
            conn, alice, [{"resource_type": "SOLVED_PROBLEM", "resource_id": "ghost"}]
        )
        assert accessible_solved_problem_ids(conn, key) == set()

    def test_key_never_writes(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        pid = _problem(conn, alice, "Owned")
        key = _key_principal(
            conn, alice, [{"resource_type": "SOLVED_PROBLEM", "resource_id": pid}]
        )
        assert can_write(conn, key, _problem_ref(pid)) is False


class TestParseDateFilter:
    def test_date_only_is_utc_midnight(self) -> None:
        assert parse_date_filter("2025-01-15") == "2025-01-15T00:00:00.000000+00:00"

    def test_zulu_suffix(self) -> None:
        assert parse_date_filter("2025-01-15T08:30:00Z") == "2025-01-15T08:30:00.000000+00:00"

    def test_offset_converted_to_utc(self) -> None:
        assert parse_date_filter("2025-01-15T10:30:00+02:00") == "2025-01-15T08:30:00.000000+00:00"

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent(self, value: str | None) -> None:
        assert parse_date_filter(value) is None

    def test_garbage_raises(self) -> None:
        with pytest.raises(InvalidFilterError) as exc:
            parse_date_filter("last tuesday")
        assert str(exc.value) == INVALID_DATE_MESSAGE


class TestQuerySolvedProblems:
    def test_empty_ids(self, conn: sqlite3.Connection) -> None:
        assert query_solved_problems(conn, set()) == []

    def test_tag_filter_case_insensitive(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        tagged = _problem(conn, alice, "Tagged", tags=["Auth"])
        _problem(conn, alice, "Plain")

        rows = query_solved_problems(
            conn, accessible_solved_problem_ids(conn, alice), SolvedProblemFilters(tags=["auth"])
        )
        assert [r["id"] for r in rows] == [tagged]

    def test_dependency_filter_by_type(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        server = _problem(
            conn,
            alice,
            "Server",
            dependencies=[
                {"name": "FastAPI", "version": "0.110", "package_manager": "pip", "type": "SERVER"}
            ],
        )
        _problem(
            conn,
            alice,
            "Client",
            dependencies=[
                {"name": "fastapi", "version": "1", "package_manager": "npm", "type": "CLIENT"}
            ],
        )
        ids = accessible_solved_problem_ids(conn, alice)

        rows = query_solved_problems(
            conn, ids, SolvedProblemFilters(server_dependencies=["fastapi"])
        )
        assert [r["id"] for r in rows] == [server]

    def test_search_matches_description(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        hit = _problem(conn, alice, "One", description="Handles OAuth callbacks")
        _problem(conn, alice, "Two", description="Nothing relevant")

        rows = query_solved_problems(
            conn, accessible_solved_problem_ids(conn, alice), SolvedProblemFilters(search="oauth")
        )
        assert [r["id"] for r in rows] == [hit]

    def test_date_bounds_inclusive(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        old = _problem(conn, alice, "Old")
        new = _problem(conn, alice, "New")
        conn.execute(
            "UPDATE solved_problems SET updated_at = ? WHERE id = ?",
            ("2024-06-01T00:00:00.000000+00:00", old),
        )
        conn.execute(
            "UPDATE solved_problems SET updated_at = ? WHERE id = ?",
            ("2025-02-01T00:00:00.000000+00:00", new),
        )
        conn.commit()
        ids = accessible_solved_problem_ids(conn, alice)

        after = query_solved_problems(conn, ids, SolvedProblemFilters(updated_after="2025-01-01"))
        assert [r["id"] for r in after] == [new]
        before = query_solved_problems(
            conn, ids, SolvedProblemFilters(updated_before="2024-06-01")
        )
        assert [r["id"] for r in before] == [old]

    def test_newest_first(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        first = _problem(conn, alice, "First")
        second = _problem(conn, alice, "Second")
        for pid, stamp in (
            (first, "2025-01-01T00:00:00.000000+00:00"),
            (second, "2025-03-01T00:00:00.000000+00:00"),
        ):
            conn.execute(
                "UPDATE solved_problems SET updated_at = ? WHERE id = ?", (stamp, pid)
            )
        conn.commit()
        rows = query_solved_problems(conn, accessible_solved_problem_ids(conn, alice))
        assert [r["id"] for r in rows] == [second, first]

    def test_bad_date_raises(self, conn: sqlite3.Connection) -> None:
        alice = _user(conn, "alice@example.com")
        ids = {_problem(conn, alice, "One")}
        with pytest.raises(InvalidFilterError):
            query_solved_problems(conn, ids, SolvedProblemFilters(updated_after="soon"))
