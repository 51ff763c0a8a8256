"""Shared test fixtures for the data quality audit backend tests."""

import asyncio
import os
import sys

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")
os.environ.setdefault("AUDIT_SCHEDULE_ENABLED", "false")

from sqlmodel import Session

from dq_audit.db.database import create_db_and_tables, make_engine
from dq_audit.engines.audit.feedback import FeedbackRecorder
from dq_audit.engines.audit.orchestrator import AuditOrchestrator
from dq_audit.engines.audit.queue_manager import ManualQueueManager
from dq_audit.engines.audit.remediation import RemediationEngine
from dq_audit.models.audit import AuditIssue, AuditRun
from dq_audit.models.records import Candidate, Company
from dq_audit.models.remediation import DataSource, RemediationProposal, UpdateFieldsFix


class StubReasoner:
    """Reasoning collaborator returning canned proposals per (entity_type, entity_id).

    A value may be an exception instance, which is raised. Unknown
    entities get a proposal with no fix.
    """

    model_name = "stub-reasoner"

    def __init__(self, proposals: dict | None = None, delay: float = 0.0) -> None:
        self.proposals = proposals or {}
        self.delay = delay
        self.calls: list = []

    async def propose(self, context):
        self.calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.proposals.get((context.entity_type, context.entity_id))
        if isinstance(result, Exception):
            raise result
        if result is None:
            return RemediationProposal(reasoning="Nothing to suggest", confidence_score=10)
        return result


def email_fix_proposal(candidate_id: int, confidence: float, requires_verification: bool = False):
    """A valid update_fields proposal for a seeded candidate."""
    return RemediationProposal(
        reasoning=f"Found a work email for candidate {candidate_id}",
        confidence_score=confidence,
        data_sources=[DataSource(name="company directory", kind="external_api")],
        fixes_applied=UpdateFieldsFix(updates={"email": f"candidate{candidate_id}@example.com"}),
        requires_verification=requires_verification,
    )


@pytest.fixture
def db_engine(tmp_path):
    """Isolated SQLite database with all tables created."""
    engine = make_engine(f"sqlite:///{tmp_path / 'data_quality.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded_db(db_engine):
    """Two companies and ten candidates (ids 1-10) without emails."""
    with Session(db_engine) as session:
        session.add(Company(name="Acme Corp", industry="Manufacturing", headquarters="Boston"))
        session.add(Company(name="Globex", industry="Energy", website="https://globex.example.com"))
        # Candidates reference company 1
        session.flush()
        for i in range(1, 11):
            session.add(Candidate(
                first_name=f"First{i}",
                last_name=f"Last{i}",
                phone_number=f"555-01{i:02d}",
                linkedin_url=f"https://linkedin.com/in/candidate{i}",
                current_company="Acme Corp",
                current_company_id=1,
            ))
        session.commit()
    return db_engine


@pytest.fixture
def stub_reasoner():
    return StubReasoner()


@pytest.fixture
def pipeline(seeded_db, stub_reasoner):
    """Feedback recorder, queue, remediation engine and orchestrator on one database."""
    feedback = FeedbackRecorder(db_engine=seeded_db)
    queue = ManualQueueManager(feedback=feedback, db_engine=seeded_db)
    remediation = RemediationEngine(
        stub_reasoner, queue, db_engine=seeded_db, auto_fix_threshold=85, timeout_seconds=2.0,
    )
    orchestrator = AuditOrchestrator(
        remediation_engine=remediation, detectors=[], db_engine=seeded_db, concurrency_limit=3,
    )
    return {
        "engine": seeded_db,
        "feedback": feedback,
        "queue": queue,
        "remediation": remediation,
        "orchestrator": orchestrator,
        "reasoner": stub_reasoner,
    }


@pytest.fixture
def make_proposal():
    return email_fix_proposal


@pytest.fixture
def make_issue(seeded_db):
    """Insert a detected issue for a seeded candidate; returns its id."""
    with Session(seeded_db) as session:
        run = AuditRun(status="running")
        session.add(run)
        session.commit()
        session.refresh(run)
        run_id = run.id

    def _make(entity_id: int = 1, severity: str = "error", priority: str = "P0",
              entity_type: str = "candidate") -> int:
        with Session(seeded_db) as session:
            issue = AuditIssue(
                audit_run_id=run_id,
                rule_name="REQUIRED_FIELDS",
                issue_type="missing_data",
                severity=severity,
                priority=priority,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_description=f"Candidate: First{entity_id} Last{entity_id}",
                description=f"Candidate {entity_id} missing: email",
                suggested_fix="Enrich candidate data through research",
            )
            session.add(issue)
            session.commit()
            session.refresh(issue)
            return issue.id

    return _make
