"""Pydantic request models for the solved-problems API."""

from typing import Literal

from pydantic import BaseModel, Field

from solved_problems.payloads import DependencyInput

ResourceTypeName = Literal["SOLVED_PROBLEM", "GROUP"]
PermissionName = Literal["READ", "WRITE"]


# ── Identity ────────────────────────────────────────────


class SignUpRequest(BaseModel):
    email: str = Field(min_length=3)
    name: str = Field(min_length=1)


# ── Solved problems ─────────────────────────────────────


class CreateSolvedProblemRequest(BaseModel):
    name: str
    description: str = ""
    app_type: str
    tags: list[str] | None = None
    dependencies: list[DependencyInput] | None = None
    details: str | None = None
    copied_from_id: str | None = None


class UpdateSolvedProblemRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    app_type: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    dependencies: list[DependencyInput] | None = None
    details: str | None = None


# ── Groups ──────────────────────────────────────────────


class GroupRequest(BaseModel):
    name: str


class GroupMemberRequest(BaseModel):
    solved_problem_id: str


# ── Drafts ──────────────────────────────────────────────


class ApproveManyRequest(BaseModel):
    draft_ids: list[str]


# ── Sharing ─────────────────────────────────────────────


class ShareRequest(BaseModel):
    resource_type: ResourceTypeName
    resource_id: str
    shared_with_user_id: str
    permission: PermissionName = "READ"


class UpdatePermissionRequest(BaseModel):
    permission: PermissionName


# ── API keys ────────────────────────────────────────────


class AccessScope(BaseModel):
    resource_type: ResourceTypeName
    resource_id: str = Field(min_length=1)


class CreateApiKeyRequest(BaseModel):
    name: str = Field(min_length=1)
    accesses: list[AccessScope] = Field(default_factory=list)


class UpdateApiKeyAccessRequest(BaseModel):
    accesses: list[AccessScope]


# ── Admin ───────────────────────────────────────────────


class UpdateSettingsRequest(BaseModel):
    signup_enabled: bool | None = None
    export_enabled: bool | None = None
