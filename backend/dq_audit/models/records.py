"""Business records inspected and remediated by data quality audits.

Includes: Company (SQL table), Candidate (SQL table).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlmodel import SQLModel
from sqlmodel import Field as SQLField


class Company(SQLModel, table=True):
    """A company known to the platform."""

    __tablename__ = "company"

    id: int | None = SQLField(default=None, primary_key=True)
    name: str = ""
    industry: str | None = None
    headquarters: str | None = None
    website: str | None = None
    parent_company_id: int | None = SQLField(default=None, foreign_key="company.id")

    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class Candidate(SQLModel, table=True):
    """A sourced candidate."""

    __tablename__ = "candidate"

    id: int | None = SQLField(default=None, primary_key=True)
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone_number: str | None = None
    linkedin_url: str | None = None
    current_company: str | None = None  # free text as ingested
    current_company_id: int | None = SQLField(default=None, foreign_key="company.id")

    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


# Fields a fix may write, per entity type
EDITABLE_FIELDS: dict[str, frozenset[str]] = {
    "company": frozenset({"name", "industry", "headquarters", "website"}),
    "candidate": frozenset({"first_name", "last_name", "email", "phone_number", "linkedin_url"}),
}

RECORD_MODELS: dict[str, type[SQLModel]] = {
    "company": Company,
    "candidate": Candidate,
}
