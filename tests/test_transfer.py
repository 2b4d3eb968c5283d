"""Tests for solved_problems/transfer.py: zip export and import."""

import io
import json
import sqlite3
import zipfile
from pathlib import Path

import pytest

from db.migrations import init_db
from solved_problems.admin import update_settings
from solved_problems.api_keys import create_api_key
from solved_problems.drafts import get_draft
from solved_problems.identity import Principal, authenticate_api_key, create_user
from solved_problems.problems import (
    create_solved_problem,
    get_solved_problem,
    update_solved_problem,
)
from solved_problems.transfer import (
    export_solved_problem,
    export_solved_problems,
    import_solved_problems,
)
from solved_problems.versioning import list_versions

DEPENDENCY = {"name": "celery", "version": "5.3", "package_manager": "pip", "type": "SERVER"}


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _user(conn: sqlite3.Connection, email: str) -> Principal:
    user = create_user(conn, email, email.split("@")[0])
    return Principal(user_id=user["id"], role=user["role"])


def _problem_with_history(conn: sqlite3.Connection, owner: Principal) -> str:
    pid = create_solved_problem(
        conn,
        owner,
        name="Task queue",
        description="Background jobs",
        app_type="worker",
        tags=["jobs"],
        dependencies=[DEPENDENCY],
        details="v1",
    )["id"]
    update_solved_problem(conn, owner, pid, details="v2")
    return pid


def _zip(documents: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in documents.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def _document(**overrides) -> dict:
    document = {
        "name": "Imported",
        "description": "",
        "appType": "cli",
        "tags": [],
        "dependencies": [],
        "versions": [{"version": 1, "details": "only"}],
    }
    document.update(overrides)
    return document


class TestExport:
    def test_zip_holds_one_document_per_problem(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem_with_history(conn, owner)

        result = export_solved_problems(conn, owner)
        assert result["count"] == 1
        with zipfile.ZipFile(io.BytesIO(result["archive"])) as archive:
            assert archive.namelist() == [f"{pid}.json"]
            document = json.loads(archive.read(f"{pid}.json"))

        assert document["id"] == pid
        assert document["appType"] == "worker"
        assert document["dependencies"][0]["packageManager"] == "pip"
        assert [v["version"] for v in document["versions"]] == [1, 2]

    def test_invalid_row_skipped_not_fatal(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        good = _problem_with_history(conn, owner)
        bad = create_solved_problem(
            conn, owner, name="Legacy", description="", app_type="web"
        )["id"]
        conn.execute("UPDATE solved_problems SET app_type = '' WHERE id = ?", (bad,))
        conn.commit()

        result = export_solved_problems(conn, owner)
        assert result["count"] == 1
        assert result["skipped"] == [bad]
        with zipfile.ZipFile(io.BytesIO(result["archive"])) as archive:
            assert archive.namelist() == [f"{good}.json"]

        assert export_solved_problem(conn, owner, bad)["error"] == "bad_request"

    def test_single_document(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem_with_history(conn, owner)
        document = export_solved_problem(conn, owner, pid)
        assert document["name"] == "Task queue"
        assert document["tags"] == ["jobs"]

    def test_inaccessible_single_not_found(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        stranger = _user(conn, "b@example.com")
        pid = _problem_with_history(conn, owner)
        assert export_solved_problem(conn, stranger, pid)["error"] == "not_found"

    def test_disabled_forbidden(self, conn: sqlite3.Connection) -> None:
        admin = _user(conn, "a@example.com")
        pid = _problem_with_history(conn, admin)
        update_settings(conn, admin, export_enabled=False)

        assert export_solved_problems(conn, admin)["error"] == "forbidden"
        assert export_solved_problem(conn, admin, pid)["error"] == "forbidden"


class TestImport:
    def test_round_trip_to_another_user(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        other = _user(conn, "b@example.com")
        pid = _problem_with_history(conn, owner)
        archive = export_solved_problems(conn, owner)["archive"]

        result = import_solved_problems(conn, other, archive)
        assert result["drafted"] == []
        assert result["errors"] == []
        assert len(result["created"]) == 1

        new_id = result["created"][0]
        assert new_id != pid
        assert new_id.startswith(f"{pid}-")
        imported = get_solved_problem(conn, other, new_id)
        assert imported["owner_id"] == other.user_id
        assert imported["tags"] == ["jobs"]
        assert imported["dependencies"][0]["name"] == "celery"
        assert imported["latest_version"]["details"] == "v2"
        assert [v["version"] for v in list_versions(conn, other, new_id)["versions"]] == [2, 1]

    def test_owned_id_becomes_draft(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        pid = _problem_with_history(conn, owner)
        document = export_solved_problem(conn, owner, pid)
        document["description"] = "Edited offline"
        document["versions"].append({"version": 3, "details": "v3"})

        result = import_solved_problems(conn, owner, json.dumps(document).encode(), "edit.json")
        assert result["created"] == []
        assert len(result["drafted"]) == 1

        draft = get_draft(conn, owner, result["drafted"][0])
        assert draft["solved_problem_id"] == pid
        assert draft["proposed_data"]["details"] == "v3"
        assert get_solved_problem(conn, owner, pid)["description"] == "Background jobs"

    def test_versions_renumbered(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        document = _document(
            versions=[{"version": 7, "details": "later"}, {"version": 3, "details": "earlier"}]
        )
        result = import_solved_problems(conn, owner, json.dumps(document).encode())

        new_id = result["created"][0]
        versions = list_versions(conn, owner, new_id)["versions"]
        assert [v["version"] for v in versions] == [2, 1]
        assert get_solved_problem(conn, owner, new_id)["latest_version"]["details"] == "later"

    def test_bad_items_reported_not_fatal(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        payload = _zip(
            {
                "good.json": json.dumps(_document(name="Good")),
                "broken.json": "{not json",
                "invalid.json": json.dumps({"name": "Nameless app type"}),
                "notes.txt": "ignored",
                "__MACOSX/._good.json": "junk",
            }
        )

        result = import_solved_problems(conn, owner, payload)
        assert len(result["created"]) == 1
        assert len(result["errors"]) == 2
        assert result["errors"][0].startswith("broken.json: invalid JSON")
        assert result["errors"][1].startswith("Nameless app type: ")

    def test_json_list_payload(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        payload = json.dumps([_document(name="One"), _document(name="Two")]).encode()
        result = import_solved_problems(conn, owner, payload)
        assert len(result["created"]) == 2

    def test_unreadable_payload(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        assert import_solved_problems(conn, owner, b"garbage")["error"] == "bad_request"
        assert import_solved_problems(conn, owner, b"PK\x03\x04broken")["error"] == "bad_request"

    def test_api_key_forbidden(self, conn: sqlite3.Connection) -> None:
        owner = _user(conn, "a@example.com")
        key = create_api_key(conn, owner, "agent", [])
        principal = authenticate_api_key(conn, f"Bearer {key['key']}")
        payload = json.dumps(_document()).encode()
        assert import_solved_problems(conn, principal, payload)["error"] == "forbidden"
