"""Detectors — pluggable dataset scanners producing anomalies.

A detector is anything with a ``name`` and an async ``detect(session)``
returning a list of Anomaly. The reference detectors below cover the
candidate/company rules the platform ships with; deployments can pass
their own list to the orchestrator.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from sqlmodel import Session, select

from dq_audit.models.records import Candidate, Company

logger = logging.getLogger(__name__)


class Anomaly(BaseModel):
    """A raw problem reported by a detector, before classification."""

    rule: str
    severity: Literal["error", "warning", "info"]
    entity_type: str
    entity_id: int
    message: str
    suggested_fix: str | None = None
    entity_description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class Detector(Protocol):
    name: str

    async def detect(self, session: Session) -> list[Anomaly]: ...


class CandidateCompanyLinkDetector:
    """Candidates with company text but no company link."""

    name = "candidate_company_link"

    async def detect(self, session: Session) -> list[Anomaly]:
        rows = session.exec(
            select(Candidate)
            .where(Candidate.current_company.isnot(None))
            .where(Candidate.current_company_id.is_(None))
            .order_by(Candidate.id)
        ).all()
        return [
            Anomaly(
                rule="CANDIDATE_COMPANY_LINK",
                severity="error",
                entity_type="candidate",
                entity_id=c.id,
                entity_description=f"Candidate: {c.full_name}",
                message=(
                    f'Candidate "{c.full_name}" has current_company="{c.current_company}" '
                    "but no company link"
                ),
                suggested_fix="Link to an existing company or create the company",
                metadata={"field_name": "current_company_id", "current_value": None,
                          "related_entity": c.current_company},
            )
            for c in rows
            if c.current_company and c.current_company.strip()
        ]


class DuplicateCompanyDetector:
    """Top-level companies whose normalized names contain one another."""

    name = "duplicate_companies"

    async def detect(self, session: Session) -> list[Anomaly]:
        companies = session.exec(
            select(Company).where(Company.parent_company_id.is_(None)).order_by(Company.id)
        ).all()
        anomalies: list[Anomaly] = []
        seen: dict[str, Company] = {}
        for company in companies:
            normalized = company.name.lower().strip()
            if not normalized:
                continue
            for seen_name, seen_company in seen.items():
                if normalized != seen_name and (normalized in seen_name or seen_name in normalized):
                    anomalies.append(Anomaly(
                        rule="DUPLICATE_COMPANIES",
                        severity="warning",
                        entity_type="company",
                        entity_id=company.id,
                        entity_description=f"Company: {company.name}",
                        message=(
                            f'Possible duplicate: "{company.name}" (id: {company.id}) similar to '
                            f'"{seen_company.name}" (id: {seen_company.id})'
                        ),
                        suggested_fix="Review and merge duplicates if they're the same company",
                        metadata={"duplicate_of_id": seen_company.id},
                    ))
                    break
            seen.setdefault(normalized, company)
        return anomalies


class CandidateRequiredFieldsDetector:
    """Candidates missing contact fields."""

    name = "candidate_required_fields"

    _FIELDS = (
        ("email", "email", "Prevents email outreach and candidate engagement"),
        ("phone_number", "phone number", "Prevents direct contact and phone screening"),
        ("linkedin_url", "LinkedIn URL", "Cannot verify candidate background"),
    )

    async def detect(self, session: Session) -> list[Anomaly]:
        anomalies: list[Anomaly] = []
        for c in session.exec(select(Candidate).order_by(Candidate.id)).all():
            missing = [(field, label, impact) for field, label, impact in self._FIELDS
                       if not getattr(c, field)]
            if not missing:
                continue
            anomalies.append(Anomaly(
                rule="REQUIRED_FIELDS",
                severity="info",
                entity_type="candidate",
                entity_id=c.id,
                entity_description=f"Candidate: {c.full_name}",
                message=f'Candidate "{c.full_name}" missing: {", ".join(m[1] for m in missing)}',
                suggested_fix="Enrich candidate data through research",
                metadata={
                    "field_name": missing[0][0],
                    "business_impact": missing[0][2],
                    "editable_fields": [m[0] for m in missing],
                },
            ))
        return anomalies


class CompanyDataQualityDetector:
    """Companies with an empty name or too little profile data."""

    name = "company_data_quality"

    async def detect(self, session: Session) -> list[Anomaly]:
        anomalies: list[Anomaly] = []
        companies = session.exec(
            select(Company).where(Company.parent_company_id.is_(None)).order_by(Company.id)
        ).all()
        for company in companies:
            if not company.name or not company.name.strip():
                anomalies.append(Anomaly(
                    rule="COMPANY_DATA_QUALITY",
                    severity="error",
                    entity_type="company",
                    entity_id=company.id,
                    entity_description=f"Company #{company.id}",
                    message=f"Company (id: {company.id}) has empty name",
                    suggested_fix="Add proper company name or delete record",
                    metadata={"field_name": "name", "editable_fields": ["name"]},
                ))
                continue
            missing = [f for f in ("industry", "headquarters", "website") if not getattr(company, f)]
            if len(missing) >= 2:
                anomalies.append(Anomaly(
                    rule="COMPANY_DATA_QUALITY",
                    severity="info",
                    entity_type="company",
                    entity_id=company.id,
                    entity_description=f"Company: {company.name}",
                    message=f'Company "{company.name}" missing {len(missing)} fields: {", ".join(missing)}',
                    suggested_fix="Enrich company data through web research or AI extraction",
                    metadata={"editable_fields": missing},
                ))
        return anomalies


def default_detectors() -> list[Detector]:
    return [
        CandidateCompanyLinkDetector(),
        DuplicateCompanyDetector(),
        CandidateRequiredFieldsDetector(),
        CompanyDataQualityDetector(),
    ]
