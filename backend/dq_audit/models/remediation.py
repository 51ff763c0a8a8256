"""Typed remediation payloads.

Fix proposals are a discriminated union on ``kind`` so the remediation
engine, the manual queue and the report renderer can match on known
shapes. They are persisted as JSON and re-validated on the way out.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

EntityType = Literal["candidate", "company"]

DataSourceKind = Literal["database", "llm_knowledge", "external_api", "heuristic"]


class DataSource(BaseModel):
    """A source the reasoning step consulted."""

    name: str
    kind: DataSourceKind = "database"
    detail: str = ""


# === Fix payloads ===


class LinkCompanyFix(BaseModel):
    """Link a candidate to an existing company, or create one by name."""

    kind: Literal["link_company"] = "link_company"
    company_id: int | None = None
    company_name: str = ""
    create_if_missing: bool = False


class UpdateFieldsFix(BaseModel):
    """Set one or more editable fields on a record."""

    kind: Literal["update_fields"] = "update_fields"
    updates: dict[str, str] = Field(default_factory=dict)


class MergeDuplicateFix(BaseModel):
    """Fold a duplicate company under the company it duplicates."""

    kind: Literal["merge_duplicate"] = "merge_duplicate"
    duplicate_of_id: int


FixPayload = Annotated[
    Union[LinkCompanyFix, UpdateFieldsFix, MergeDuplicateFix],
    Field(discriminator="kind"),
]

_fix_adapter: TypeAdapter = TypeAdapter(FixPayload)


def parse_fix(data: dict | None) -> LinkCompanyFix | UpdateFieldsFix | MergeDuplicateFix | None:
    """Validate a stored fix payload. Returns None for an empty payload."""
    if not data:
        return None
    return _fix_adapter.validate_python(data)


def dump_fix(fix: BaseModel | None) -> dict | None:
    return fix.model_dump(mode="json") if fix is not None else None


class AppliedChange(BaseModel):
    """Record of a mutation actually applied to a business record."""

    entity_type: EntityType
    entity_id: int
    kind: str
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    created_entities: list[dict[str, Any]] = Field(default_factory=list)


# === Reasoning collaborator contract ===


class IssueContext(BaseModel):
    """Everything the reasoning collaborator sees about one issue."""

    issue_id: int
    rule_name: str
    issue_type: str
    severity: str
    priority: str
    entity_type: str
    entity_id: int
    description: str
    suggested_fix: str | None = None
    entity_snapshot: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RemediationProposal(BaseModel):
    """Structured output of the reasoning collaborator."""

    reasoning: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=100.0)
    data_sources: list[DataSource] = Field(default_factory=list)
    fixes_applied: FixPayload | None = None
    requires_verification: bool = False  # applied fixes a reviewer should double-check
