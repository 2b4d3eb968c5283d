"""Export / import of solved problems as portable JSON documents.

Export writes one ``<id>.json`` document per accessible problem into a zip
archive. Import takes such an archive (or one loose JSON document) and
materializes each item independently:

    - the id names a problem the importer owns -> an update draft, so the
      change goes through review
    - anything else -> a new problem created directly, id suffixed on
      collision, versions renumbered 1..N

A bad item is reported in ``errors`` and never stops the rest.
"""

import io
import json
import logging
import sqlite3
import zipfile
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from db.client import transaction
from solved_problems.access import accessible_solved_problem_ids
from solved_problems.admin import is_export_enabled
from solved_problems.drafts import create_draft
from solved_problems.errors import BAD_REQUEST, FORBIDDEN, NOT_FOUND, error_result
from solved_problems.identity import Principal
from solved_problems.payloads import ProblemDocument, ProposedData
from solved_problems.problems import insert_solved_problem, load_solved_problem, validation_message

logger = logging.getLogger(__name__)

ZIP_MAGIC = b"PK\x03\x04"
EXPORT_DISABLED_MESSAGE = "Export is disabled on this site"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ── Export ────────────────────────────────────────────────


def build_document(conn: sqlite3.Connection, solved_problem_id: str) -> dict[str, Any] | None:
    problem = load_solved_problem(conn, solved_problem_id)
    if problem is None:
        return None
    versions = conn.execute(
        """SELECT version, details FROM solved_problem_versions
           WHERE solved_problem_id = ?
           ORDER BY version ASC""",
        (solved_problem_id,),
    ).fetchall()
    document = ProblemDocument(
        id=problem["id"],
        name=problem["name"],
        description=problem["description"],
        app_type=problem["app_type"],
        tags=problem["tags"],
        dependencies=problem["dependencies"],
        versions=[dict(v) for v in versions],
    )
    return document.model_dump(by_alias=True)


def export_solved_problem(
    conn: sqlite3.Connection, principal: Principal, solved_problem_id: str
) -> dict[str, Any]:
    if not is_export_enabled(conn):
        return error_result(FORBIDDEN, EXPORT_DISABLED_MESSAGE)
    if solved_problem_id not in accessible_solved_problem_ids(conn, principal):
        return error_result(NOT_FOUND, "Solved problem not found")
    try:
        document = build_document(conn, solved_problem_id)
    except ValidationError as e:
        return error_result(BAD_REQUEST, f"Cannot export: {validation_message(e)}")
    if document is None:
        return error_result(NOT_FOUND, "Solved problem not found")
    return document


def export_solved_problems(
    conn: sqlite3.Connection, principal: Principal
) -> dict[str, Any]:
    """Zip every accessible problem.

    Returns {"archive": bytes, "count": n, "skipped": [...]}. A row that no
    longer forms a valid document is skipped and listed, never fatal.
    """
    if not is_export_enabled(conn):
        return error_result(FORBIDDEN, EXPORT_DISABLED_MESSAGE)

    buffer = io.BytesIO()
    count = 0
    skipped: list[str] = []
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for solved_problem_id in sorted(accessible_solved_problem_ids(conn, principal)):
            try:
                document = build_document(conn, solved_problem_id)
            except ValidationError as e:
                logger.warning(
                    "Skipping solved problem %s on export: %s",
                    solved_problem_id,
                    validation_message(e),
                )
                skipped.append(solved_problem_id)
                continue
            if document is None:
                continue
            archive.writestr(
                f"{solved_problem_id}.json", json.dumps(document, indent=2)
            )
            count += 1

    logger.info("Exported %d solved problem(s) for user %s", count, principal.user_id)
    return {"archive": buffer.getvalue(), "count": count, "skipped": skipped}


# ── Import ────────────────────────────────────────────────


def _read_items(
    payload: bytes, filename: str | None
) -> list[tuple[str, Any]]:
    """Split a payload into (label, raw item) pairs.

    Raw items are parsed JSON, or the exception that parsing raised.
    Raises zipfile.BadZipFile / ValueError for an unreadable payload.
    """
    if payload.startswith(ZIP_MAGIC):
        items: list[tuple[str, Any]] = []
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            for info in archive.infolist():
                if info.is_dir() or not info.filename.endswith(".json"):
                    continue
                if info.filename.startswith("__MACOSX/"):
                    continue
                try:
                    items.append((info.filename, json.loads(archive.read(info))))
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    items.append((info.filename, e))
        return items

    parsed = json.loads(payload)
    label = filename or "import.json"
    if isinstance(parsed, list):
        return [(f"{label}[{i}]", item) for i, item in enumerate(parsed)]
    return [(label, parsed)]


def _item_label(label: str, raw: Any) -> str:
    if isinstance(raw, dict) and isinstance(raw.get("name"), str) and raw["name"]:
        return raw["name"]
    return label


def _create_from_document(
    conn: sqlite3.Connection, principal: Principal, document: ProblemDocument
) -> str:
    versions = sorted(document.versions, key=lambda v: v.version)
    data = ProposedData(
        name=document.name,
        description=document.description,
        app_type=document.app_type,
        tags=document.tags,
        dependencies=document.dependencies,
    )
    with transaction(conn):
        solved_problem_id = insert_solved_problem(
            conn, principal.user_id, data, base_slug=document.id
        )
        now = _now()
        for number, version in enumerate(versions, start=1):
            conn.execute(
                """INSERT INTO solved_problem_versions
                   (solved_problem_id, version, details, created_at)
                   VALUES (?, ?, ?, ?)""",
                (solved_problem_id, number, version.details, now),
            )
    return solved_problem_id


def _draft_from_document(
    conn: sqlite3.Connection, principal: Principal, document: ProblemDocument
) -> dict[str, Any]:
    latest = max(document.versions, key=lambda v: v.version, default=None)
    proposed = ProposedData(
        name=document.name,
        description=document.description,
        app_type=document.app_type,
        tags=document.tags,
        dependencies=document.dependencies,
        details=latest.details if latest else None,
    )
    return create_draft(conn, principal, proposed, solved_problem_id=document.id)


def import_solved_problems(
    conn: sqlite3.Connection,
    principal: Principal,
    payload: bytes,
    filename: str | None = None,
) -> dict[str, Any]:
    """Import a zip of documents or one JSON document.

    Returns {"created": [ids], "drafted": [draft ids], "errors": ["<name>: <reason>"]}.
    """
    if principal.is_api_key:
        return error_result(FORBIDDEN, "API keys can only propose drafts")

    try:
        items = _read_items(payload, filename)
    except zipfile.BadZipFile:
        return error_result(BAD_REQUEST, "Invalid zip archive")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return error_result(BAD_REQUEST, "Import must be a zip archive or a JSON document")

    created: list[str] = []
    drafted: list[str] = []
    errors: list[str] = []

    for label, raw in items:
        name = _item_label(label, raw)
        if isinstance(raw, Exception):
            errors.append(f"{name}: invalid JSON ({raw})")
            continue
        try:
            document = ProblemDocument.model_validate(raw)
        except ValidationError as e:
            errors.append(f"{name}: {validation_message(e)}")
            continue

        owned = None
        if document.id:
            owned = conn.execute(
                "SELECT 1 FROM solved_problems WHERE id = ? AND owner_id = ?",
                (document.id, principal.user_id),
            ).fetchone()

        try:
            if owned is not None:
                draft = _draft_from_document(conn, principal, document)
                if "error" in draft:
                    errors.append(f"{name}: {draft['message']}")
                    continue
                drafted.append(draft["id"])
            else:
                created.append(_create_from_document(conn, principal, document))
        except sqlite3.IntegrityError as e:
            logger.warning("Import of %s failed: %s", name, e)
            errors.append(f"{name}: {e}")

    logger.info(
        "Import by user %s: %d created, %d drafted, %d error(s)",
        principal.user_id,
        len(created),
        len(drafted),
        len(errors),
    )
    return {"created": created, "drafted": drafted, "errors": errors}
