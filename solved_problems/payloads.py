"""Portable payload models for solved-problems.

These shapes leave the database: draft proposals (stored as JSON on the
draft row) and export/import documents. Both use camelCase on the wire.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase, outputs camelCase."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class DependencyInput(CamelModel):
    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    package_manager: str = Field(min_length=1)
    type: Literal["SERVER", "CLIENT"]


class ProposedData(CamelModel):
    """The change a draft carries.

    ``tags`` / ``dependencies`` / ``details`` left as None mean "leave
    untouched" on approval; an empty list means "clear".
    """

    name: str = Field(min_length=1)
    description: str
    app_type: str = Field(min_length=1)
    tags: list[str] | None = None
    dependencies: list[DependencyInput] | None = None
    details: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class VersionDocument(CamelModel):
    version: int = Field(gt=0)
    details: str


class ProblemDocument(CamelModel):
    """One solved problem in an export bundle."""

    id: str | None = Field(default=None, min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    app_type: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    dependencies: list[DependencyInput] = Field(default_factory=list)
    versions: list[VersionDocument] = Field(default_factory=list)
