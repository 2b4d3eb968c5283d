"""REST route handlers for the solved-problems API.

Routes wrap the solved_problems operation functions with HTTP semantics;
each route is named after the stable operation it exposes (e.g.
"drafts.approve"). Business rules live in the operations, not here.
"""

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from api.deps import SESSION_COOKIE, get_db, get_principal, require_admin
from api.models import (
    ApproveManyRequest,
    CreateApiKeyRequest,
    CreateSolvedProblemRequest,
    GroupMemberRequest,
    GroupRequest,
    ShareRequest,
    SignUpRequest,
    UpdateApiKeyAccessRequest,
    UpdatePermissionRequest,
    UpdateSettingsRequest,
    UpdateSolvedProblemRequest,
)
from solved_problems import (
    admin,
    api_keys,
    drafts,
    groups,
    problems,
    sharing,
    transfer,
    versioning,
)
from solved_problems.access import SolvedProblemFilters
from solved_problems.errors import (
    BAD_REQUEST,
    CONFLICT,
    FORBIDDEN,
    INVALID_INPUT,
    NOT_FOUND,
    UNAUTHENTICATED,
)
from solved_problems.identity import Principal, create_session, create_user

router = APIRouter()

ERROR_STATUS = {
    UNAUTHENTICATED: 401,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    CONFLICT: 409,
    BAD_REQUEST: 400,
    INVALID_INPUT: 422,
}


def _check_error(result: dict[str, Any]) -> None:
    """Convert operation error dicts to HTTPException."""
    if "error" not in result:
        return
    status_code = ERROR_STATUS.get(result["error"], 400)
    raise HTTPException(
        status_code=status_code, detail=result.get("message", "Unknown error")
    )


def _accesses(body: CreateApiKeyRequest | UpdateApiKeyAccessRequest) -> list[dict[str, Any]]:
    return [a.model_dump() for a in body.accesses]


# ── Identity endpoints ────────────────────────────────────


@router.post("/auth/sign-up", status_code=201, name="auth.signUp")
def sign_up(
    body: SignUpRequest,
    response: Response,
    conn: sqlite3.Connection = Depends(get_db),
) -> dict[str, Any]:
    """Create an account and start a session for it."""
    user = create_user(conn, body.email, body.name)
    _check_error(user)
    token = create_session(conn, user["id"])
    response.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return {"user": user, "session_token": token}


@router.get("/auth/me", name="auth.me")
def me(principal: Principal = Depends(get_principal)) -> dict[str, Any]:
    return {
        "user_id": principal.user_id,
        "role": principal.role,
        "two_factor_enabled": principal.two_factor_enabled,
    }


# ── Solved problem endpoints ──────────────────────────────


@router.get("/solved-problems", name="solvedProblems.list")
def list_solved_problems(
    tags: list[str] = Query(default=[]),
    server_dependencies: list[str] = Query(default=[]),
    client_dependencies: list[str] = Query(default=[]),
    app_type: str | None = None,
    search: str | None = None,
    updated_after: str | None = None,
    updated_before: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    filters = SolvedProblemFilters(
        tags=tags,
        server_dependencies=server_dependencies,
        client_dependencies=client_dependencies,
        app_type=app_type,
        search=search,
        updated_after=updated_after,
        updated_before=updated_before,
    )
    result = problems.list_solved_problems(conn, principal, filters)
    _check_error(result)
    return result


@router.get("/solved-problems/{solved_problem_id}", name="solvedProblems.get")
def get_solved_problem(
    solved_problem_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = problems.get_solved_problem(conn, principal, solved_problem_id)
    _check_error(result)
    return result


@router.post("/solved-problems", status_code=201, name="solvedProblems.create")
def create_solved_problem(
    body: CreateSolvedProblemRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = problems.create_solved_problem(
        conn,
        principal,
        name=body.name,
        description=body.description,
        app_type=body.app_type,
        tags=body.tags,
        dependencies=body.dependencies,
        details=body.details,
        copied_from_id=body.copied_from_id,
    )
    _check_error(result)
    return result


@router.patch("/solved-problems/{solved_problem_id}", name="solvedProblems.update")
def update_solved_problem(
    solved_problem_id: str,
    body: UpdateSolvedProblemRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Update fields; a changed ``details`` writes a new version."""
    result = problems.update_solved_problem(
        conn,
        principal,
        solved_problem_id,
        name=body.name,
        description=body.description,
        app_type=body.app_type,
        tags=body.tags,
        dependencies=body.dependencies,
        details=body.details,
    )
    _check_error(result)
    return result


@router.delete("/solved-problems/{solved_problem_id}", name="solvedProblems.delete")
def delete_solved_problem(
    solved_problem_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = problems.delete_solved_problem(conn, principal, solved_problem_id)
    _check_error(result)
    return result


# ── Version endpoints ─────────────────────────────────────


@router.get("/solved-problems/{solved_problem_id}/versions", name="versions.list")
def list_versions(
    solved_problem_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = versioning.list_versions(conn, principal, solved_problem_id)
    _check_error(result)
    return result


@router.get(
    "/solved-problems/{solved_problem_id}/versions/{version}", name="versions.get"
)
def get_version(
    solved_problem_id: str,
    version: int,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = versioning.get_version(conn, principal, solved_problem_id, version)
    _check_error(result)
    return result


# ── Group endpoints ───────────────────────────────────────


@router.get("/groups", name="groups.list")
def list_groups(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return groups.list_groups(conn, principal)


@router.get("/groups/{group_id}", name="groups.get")
def get_group(
    group_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.get_group(conn, principal, group_id)
    _check_error(result)
    return result


@router.post("/groups", status_code=201, name="groups.create")
def create_group(
    body: GroupRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.create_group(conn, principal, body.name)
    _check_error(result)
    return result


@router.patch("/groups/{group_id}", name="groups.update")
def update_group(
    group_id: str,
    body: GroupRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.update_group(conn, principal, group_id, body.name)
    _check_error(result)
    return result


@router.delete("/groups/{group_id}", name="groups.delete")
def delete_group(
    group_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.delete_group(conn, principal, group_id)
    _check_error(result)
    return result


@router.post("/groups/{group_id}/solved-problems", name="groups.addSolvedProblem")
def add_group_member(
    group_id: str,
    body: GroupMemberRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.add_solved_problem(conn, principal, group_id, body.solved_problem_id)
    _check_error(result)
    return result


@router.delete(
    "/groups/{group_id}/solved-problems/{solved_problem_id}",
    name="groups.removeSolvedProblem",
)
def remove_group_member(
    group_id: str,
    solved_problem_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = groups.remove_solved_problem(conn, principal, group_id, solved_problem_id)
    _check_error(result)
    return result


# ── Draft endpoints ───────────────────────────────────────


@router.get("/drafts", name="drafts.list")
def list_drafts(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return drafts.list_drafts(conn, principal)


@router.post("/drafts/approve-many", name="drafts.approveMany")
def approve_many(
    body: ApproveManyRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return drafts.approve_many(conn, principal, body.draft_ids)


@router.get("/drafts/{draft_id}", name="drafts.get")
def get_draft(
    draft_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = drafts.get_draft(conn, principal, draft_id)
    _check_error(result)
    return result


@router.post("/drafts/{draft_id}/approve", name="drafts.approve")
def approve_draft(
    draft_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = drafts.approve_draft(conn, principal, draft_id)
    _check_error(result)
    return result


@router.post("/drafts/{draft_id}/reject", name="drafts.reject")
def reject_draft(
    draft_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = drafts.reject_draft(conn, principal, draft_id)
    _check_error(result)
    return result


@router.post("/drafts/{draft_id}/copy", status_code=201, name="drafts.copyToOwn")
def copy_draft(
    draft_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = drafts.copy_draft_to_own(conn, principal, draft_id)
    _check_error(result)
    return result


# ── Sharing endpoints ─────────────────────────────────────


@router.post("/shares", status_code=201, name="sharing.share")
def share(
    body: ShareRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = sharing.share(
        conn,
        principal,
        body.resource_type,
        body.resource_id,
        body.shared_with_user_id,
        body.permission,
    )
    _check_error(result)
    return result


@router.get("/shares/by-me", name="sharing.listSharedByMe")
def list_shared_by_me(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return sharing.list_shared_by_me(conn, principal)


@router.get("/shares/with-me", name="sharing.listSharedWithMe")
def list_shared_with_me(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return sharing.list_shared_with_me(conn, principal)


@router.patch("/shares/{share_id}", name="sharing.updatePermission")
def update_share_permission(
    share_id: str,
    body: UpdatePermissionRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = sharing.update_permission(conn, principal, share_id, body.permission)
    _check_error(result)
    return result


@router.delete("/shares/{share_id}", name="sharing.revoke")
def revoke_share(
    share_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = sharing.revoke(conn, principal, share_id)
    _check_error(result)
    return result


@router.get("/users/lookup", name="sharing.lookupUserByEmail")
def lookup_user(
    email: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return sharing.lookup_user_by_email(conn, email)


# ── API key endpoints ─────────────────────────────────────


@router.post("/api-keys", status_code=201, name="apiKeys.create")
def create_api_key(
    body: CreateApiKeyRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Issue a key. The plaintext ``key`` in the response is not shown again."""
    result = api_keys.create_api_key(conn, principal, body.name, _accesses(body))
    _check_error(result)
    return result


@router.get("/api-keys", name="apiKeys.list")
def list_api_keys(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    return api_keys.list_api_keys(conn, principal)


@router.post("/api-keys/{api_key_id}/revoke", name="apiKeys.revoke")
def revoke_api_key(
    api_key_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = api_keys.revoke_api_key(conn, principal, api_key_id)
    _check_error(result)
    return result


@router.put("/api-keys/{api_key_id}/accesses", name="apiKeys.updateAccess")
def update_api_key_access(
    api_key_id: str,
    body: UpdateApiKeyAccessRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = api_keys.update_api_key_access(conn, principal, api_key_id, _accesses(body))
    _check_error(result)
    return result


# ── Admin endpoints ───────────────────────────────────────


@router.get("/admin/settings", name="admin.getSettings")
def get_settings(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    result = admin.get_settings(conn, principal)
    _check_error(result)
    return result


@router.patch("/admin/settings", name="admin.updateSettings")
def update_settings(
    body: UpdateSettingsRequest,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    result = admin.update_settings(
        conn,
        principal,
        signup_enabled=body.signup_enabled,
        export_enabled=body.export_enabled,
    )
    _check_error(result)
    return result


@router.get("/admin/users", name="admin.listUsers")
def list_users(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    result = admin.list_users(conn, principal)
    _check_error(result)
    return result


@router.delete("/admin/users/{user_id}", name="admin.deleteUser")
def delete_user(
    user_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    result = admin.delete_user(conn, principal, user_id)
    _check_error(result)
    return result


@router.post("/admin/users/{user_id}/disable-2fa", name="admin.disableTwoFactor")
def disable_two_factor(
    user_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(require_admin),
) -> dict[str, Any]:
    result = admin.disable_two_factor(conn, principal, user_id)
    _check_error(result)
    return result


# ── Export / import endpoints ─────────────────────────────


@router.get("/export", name="solvedProblems.export")
def export_all(
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Response:
    """Zip of one JSON document per accessible solved problem."""
    result = transfer.export_solved_problems(conn, principal)
    _check_error(result)
    return Response(
        content=result["archive"],
        media_type="application/zip",
        headers={
            "Content-Disposition": 'attachment; filename="solved-problems-export.zip"'
        },
    )


@router.get("/solved-problems/{solved_problem_id}/export", name="solvedProblems.exportOne")
def export_one(
    solved_problem_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = transfer.export_solved_problem(conn, principal, solved_problem_id)
    _check_error(result)
    return result


@router.post("/import", name="solvedProblems.import")
async def import_bundle(
    request: Request,
    filename: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    """Import a zip archive or a JSON document sent as the raw request body."""
    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Request body is empty")
    result = await run_in_threadpool(
        transfer.import_solved_problems, conn, principal, payload, filename
    )
    _check_error(result)
    return result
