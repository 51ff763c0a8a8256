"""Fix validation and application against business records.

Both functions work inside the caller's session so the record mutation
commits (or rolls back) together with the issue transition and the
attempt row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlmodel import Session, func, select

from dq_audit.engines.audit.errors import FixValidationError
from dq_audit.models.records import EDITABLE_FIELDS, RECORD_MODELS, Company
from dq_audit.models.remediation import (
    AppliedChange,
    LinkCompanyFix,
    MergeDuplicateFix,
    UpdateFieldsFix,
)

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 500

# Which entity types each fix kind may target
_FIX_TARGETS = {
    "link_company": {"candidate"},
    "update_fields": {"candidate", "company"},
    "merge_duplicate": {"company"},
}

_SNAPSHOT_EXCLUDE = {"created_at", "updated_at"}


def snapshot_entity(session: Session, entity_type: str, entity_id: int) -> dict[str, Any]:
    """JSON-safe view of a record, or {} if it doesn't exist."""
    model = RECORD_MODELS.get(entity_type)
    if model is None:
        return {}
    record = session.get(model, entity_id)
    if record is None:
        return {}
    return record.model_dump(mode="json", exclude=_SNAPSHOT_EXCLUDE)


def validate_fix(session: Session, entity_type: str, entity_id: int, fix) -> str | None:
    """Check a fix against basic schema constraints.

    Returns:
        None if the fix can be applied, otherwise a human-readable reason.
    """
    targets = _FIX_TARGETS.get(fix.kind)
    if targets is None or entity_type not in targets:
        return f"Fix kind {fix.kind!r} cannot target {entity_type!r}"

    model = RECORD_MODELS[entity_type]
    if session.get(model, entity_id) is None:
        return f"{entity_type} {entity_id} does not exist"

    if isinstance(fix, UpdateFieldsFix):
        if not fix.updates:
            return "No fields to update"
        allowed = EDITABLE_FIELDS[entity_type]
        for field, value in fix.updates.items():
            if field not in allowed:
                return f"Field {field!r} is not editable on {entity_type}"
            if not value or not value.strip():
                return f"Field {field!r} would be set to a blank value"
            if len(value) > MAX_FIELD_LENGTH:
                return f"Field {field!r} exceeds {MAX_FIELD_LENGTH} characters"
        return None

    if isinstance(fix, LinkCompanyFix):
        if fix.company_id is not None:
            if session.get(Company, fix.company_id) is None:
                return f"company {fix.company_id} does not exist"
            return None
        if not fix.create_if_missing:
            return "No company_id given and create_if_missing is false"
        if not fix.company_name.strip():
            return "Cannot create a company with a blank name"
        return None

    if isinstance(fix, MergeDuplicateFix):
        if fix.duplicate_of_id == entity_id:
            return "A company cannot be merged into itself"
        if session.get(Company, fix.duplicate_of_id) is None:
            return f"company {fix.duplicate_of_id} does not exist"
        return None

    return f"Unsupported fix kind {fix.kind!r}"


def apply_fix(session: Session, entity_type: str, entity_id: int, fix) -> AppliedChange:
    """Validate and apply ``fix`` to the record; does not commit.

    Raises:
        FixValidationError: If the fix fails validation.
    """
    reason = validate_fix(session, entity_type, entity_id, fix)
    if reason:
        raise FixValidationError(reason)

    record = session.get(RECORD_MODELS[entity_type], entity_id)
    before = snapshot_entity(session, entity_type, entity_id)
    created: list[dict[str, Any]] = []

    if isinstance(fix, UpdateFieldsFix):
        for field, value in fix.updates.items():
            setattr(record, field, value.strip())

    elif isinstance(fix, LinkCompanyFix):
        company_id = fix.company_id
        if company_id is None:
            company = _find_company(session, fix.company_name)
            if company is None:
                company = Company(name=fix.company_name.strip())
                session.add(company)
                session.flush()
                created.append({"entity_type": "company", "id": company.id, "name": company.name})
            company_id = company.id
        record.current_company_id = company_id

    elif isinstance(fix, MergeDuplicateFix):
        record.parent_company_id = fix.duplicate_of_id

    record.updated_at = datetime.now(timezone.utc)
    session.add(record)
    session.flush()

    after = snapshot_entity(session, entity_type, entity_id)
    logger.debug("Applied %s fix to %s %d", fix.kind, entity_type, entity_id)
    return AppliedChange(
        entity_type=entity_type,
        entity_id=entity_id,
        kind=fix.kind,
        before=before,
        after=after,
        created_entities=created,
    )


def _find_company(session: Session, name: str) -> Company | None:
    normalized = name.lower().strip()
    return session.exec(
        select(Company)
        .where(func.lower(func.trim(Company.name)) == normalized)
        .where(Company.parent_company_id.is_(None))
    ).first()
