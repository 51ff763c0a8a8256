"""Tests for ManualQueueManager — SLA, ordering, claim and resolve semantics."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from dq_audit.engines.audit.errors import FixValidationError, InvalidStateError, NotFoundError
from dq_audit.engines.audit.queue_manager import ManualQueueManager
from dq_audit.models.audit import AuditIssue, ManualQueueItem, RemediationAttempt, as_utc
from dq_audit.models.records import Candidate


def _escalate(pipeline, make_issue, entity_id, priority="P0", proposal=None):
    """Create an issue, escalate it through the engine, return its queue item id."""
    severity = {"P0": "error", "P1": "warning", "P2": "info"}[priority]
    issue_id = make_issue(entity_id=entity_id, severity=severity, priority=priority)
    if proposal is not None:
        pipeline["reasoner"].proposals[("candidate", entity_id)] = proposal
        asyncio.run(pipeline["remediation"].attempt_fix(issue_id))
    else:
        asyncio.run(pipeline["remediation"].escalate_failure(issue_id, "forced"))
    with Session(pipeline["engine"]) as session:
        return session.exec(select(ManualQueueItem.id).where(ManualQueueItem.issue_id == issue_id)).one()


def _counts(engine):
    with Session(engine) as session:
        return (
            session.exec(select(func.count(AuditIssue.id)).where(AuditIssue.status == "resolved")).one(),
            session.exec(select(func.count(RemediationAttempt.id)).where(RemediationAttempt.learned == True)).one(),  # noqa: E712
            session.exec(select(func.count(ManualQueueItem.id)).where(ManualQueueItem.status == "resolved")).one(),
        )


class TestSLA:

    def test_default_windows(self, db_engine):
        queue = ManualQueueManager(db_engine=db_engine)
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert queue.sla_deadline_for("P0", t0) == t0 + timedelta(hours=4)
        assert queue.sla_deadline_for("P1", t0) == t0 + timedelta(hours=24)
        assert queue.sla_deadline_for("P2", t0) == t0 + timedelta(hours=168)

    def test_custom_windows(self, db_engine):
        queue = ManualQueueManager(db_engine=db_engine, sla_windows={"P0": timedelta(minutes=30)})
        t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert queue.sla_deadline_for("P0", t0) == t0 + timedelta(minutes=30)
        with pytest.raises(ValueError):
            queue.sla_deadline_for("P1", t0)

    def test_deadline_stored_on_item(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 1, priority="P1")
        item = pipeline["queue"].get_item(queue_id)
        assert as_utc(item.sla_deadline) - as_utc(item.queued_at) == timedelta(hours=24)


class TestEnqueue:

    def test_second_active_item_rejected(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 1)
        item = pipeline["queue"].get_item(queue_id)
        with Session(pipeline["engine"]) as session:
            issue = session.get(AuditIssue, item.issue_id)
            with pytest.raises(InvalidStateError):
                pipeline["queue"].enqueue(session, issue, None, None)

    def test_database_enforces_one_active_item(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 1)
        item = pipeline["queue"].get_item(queue_id)
        with Session(pipeline["engine"]) as session:
            session.add(ManualQueueItem(
                issue_id=item.issue_id, priority="P0", sla_deadline=datetime.now(timezone.utc),
            ))
            with pytest.raises(IntegrityError):
                session.commit()


class TestResolve:

    def test_approve_and_apply(self, pipeline, make_issue, make_proposal):
        queue_id = _escalate(pipeline, make_issue, 2, proposal=make_proposal(2, 60))

        result = pipeline["queue"].resolve(queue_id, "approve", "Verified on LinkedIn", apply_ai_suggestion=True)

        assert result.success is True
        assert result.sla_missed is False
        assert result.applied_fix["after"]["email"] == "candidate2@example.com"
        with Session(pipeline["engine"]) as session:
            item = session.get(ManualQueueItem, queue_id)
            issue = session.get(AuditIssue, item.issue_id)
            attempt = session.exec(
                select(RemediationAttempt).where(RemediationAttempt.issue_id == issue.id)
            ).one()
            candidate = session.get(Candidate, 2)
            assert item.status == "resolved"
            assert item.notes == "Verified on LinkedIn"
            assert item.resolution_action == {"action": "approve", "apply_ai_suggestion": True}
            assert issue.status == "resolved"
            assert issue.resolved_by == "human"
            assert issue.resolution_notes == "Verified on LinkedIn"
            assert attempt.human_feedback == "approved"
            assert attempt.learned is True
            assert candidate.email == "candidate2@example.com"

    def test_time_to_resolve_and_sla_missed(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 3, priority="P0")
        item = pipeline["queue"].get_item(queue_id)
        later = as_utc(item.queued_at) + timedelta(hours=5, seconds=29)

        result = pipeline["queue"].resolve(queue_id, "reject", "Not a real issue", now=later)

        assert result.time_to_resolve_minutes == 300
        assert result.sla_missed is True
        with Session(pipeline["engine"]) as session:
            stored = session.get(ManualQueueItem, queue_id)
            assert stored.time_to_resolve_minutes == 300
            assert stored.sla_missed is True

    def test_resolved_at_never_precedes_queued_at(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 4)
        item = pipeline["queue"].get_item(queue_id)
        earlier = as_utc(item.queued_at) - timedelta(hours=1)
        result = pipeline["queue"].resolve(queue_id, "approve", None, now=earlier)
        assert result.time_to_resolve_minutes == 0
        assert result.sla_missed is False

    def test_reject_does_not_touch_record(self, pipeline, make_issue, make_proposal):
        queue_id = _escalate(pipeline, make_issue, 5, proposal=make_proposal(5, 40))
        pipeline["queue"].resolve(queue_id, "reject", "Wrong person")
        with Session(pipeline["engine"]) as session:
            assert session.get(Candidate, 5).email is None
            attempt = session.exec(select(RemediationAttempt).order_by(RemediationAttempt.id.desc())).first()
            assert attempt.human_feedback == "rejected"
            assert attempt.feedback_notes == "Wrong person"

    def test_custom_records_modified(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 6)
        pipeline["queue"].resolve(queue_id, "custom", "Fixed by hand")
        signals = pipeline["feedback"].list_learning_signals()
        assert [s.human_feedback for s in signals] == ["modified"]

    def test_unknown_queue_id_changes_nothing(self, pipeline, make_issue):
        _escalate(pipeline, make_issue, 7)
        before = _counts(pipeline["engine"])
        with pytest.raises(NotFoundError):
            pipeline["queue"].resolve(9999, "approve", "n/a")
        assert _counts(pipeline["engine"]) == before

    def test_second_resolve_rejected_and_first_kept(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 8)
        first = pipeline["queue"].resolve(queue_id, "approve", "first")
        snapshot = pipeline["queue"].get_item(queue_id)

        with pytest.raises(InvalidStateError):
            pipeline["queue"].resolve(queue_id, "reject", "second")

        again = pipeline["queue"].get_item(queue_id)
        assert again.notes == "first"
        assert again.resolved_at == snapshot.resolved_at
        assert again.resolution_action == {"action": "approve", "apply_ai_suggestion": False}
        assert first.success is True
        with Session(pipeline["engine"]) as session:
            attempt = session.exec(select(RemediationAttempt).where(
                RemediationAttempt.issue_id == again.issue_id)).one()
            assert attempt.human_feedback == "approved"

    def test_apply_without_suggestion_fails_cleanly(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 9)
        with pytest.raises(FixValidationError):
            pipeline["queue"].resolve(queue_id, "approve", None, apply_ai_suggestion=True)
        item = pipeline["queue"].get_item(queue_id)
        assert item.status == "pending"
        with Session(pipeline["engine"]) as session:
            assert session.get(AuditIssue, item.issue_id).status == "escalated"

    def test_unknown_action(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 10)
        with pytest.raises(ValueError):
            pipeline["queue"].resolve(queue_id, "ignore", None)

    def test_listener_runs_after_commit_and_errors_are_contained(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 1)
        received = []

        def _boom(signal):
            raise RuntimeError("consumer crashed")

        pipeline["feedback"].subscribe(_boom)
        pipeline["feedback"].subscribe(received.append)
        result = pipeline["queue"].resolve(queue_id, "approve", "ok")

        assert result.success is True
        assert len(received) == 1
        assert received[0].human_feedback == "approved"
        assert received[0].issue_id == pipeline["queue"].get_item(queue_id).issue_id


class TestClaim:

    def test_claim_then_resolve(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 1)
        item = pipeline["queue"].claim(queue_id, "reviewer@example.com")
        assert item.status == "in_progress"
        assert item.assigned_to == "reviewer@example.com"

        result = pipeline["queue"].resolve(queue_id, "approve", "done")
        assert result.success is True

    def test_claim_twice_rejected(self, pipeline, make_issue):
        queue_id = _escalate(pipeline, make_issue, 2)
        pipeline["queue"].claim(queue_id, "a")
        with pytest.raises(InvalidStateError):
            pipeline["queue"].claim(queue_id, "b")
        assert pipeline["queue"].get_item(queue_id).assigned_to == "a"

    def test_claim_unknown(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline["queue"].claim(9999, "a")


class TestListing:

    def test_priority_then_age_ordering(self, pipeline, make_issue):
        p2 = _escalate(pipeline, make_issue, 1, priority="P2")
        p0_old = _escalate(pipeline, make_issue, 2, priority="P0")
        p1 = _escalate(pipeline, make_issue, 3, priority="P1")
        p0_new = _escalate(pipeline, make_issue, 4, priority="P0")

        rows = pipeline["queue"].list_queue()
        assert [item.id for item, _ in rows] == [p0_old, p0_new, p1, p2]
        assert all(item.issue_id == issue.id for item, issue in rows)

    def test_filters(self, pipeline, make_issue):
        a = _escalate(pipeline, make_issue, 1, priority="P0")
        _escalate(pipeline, make_issue, 2, priority="P1")
        pipeline["queue"].resolve(a, "approve", None)

        assert [i.priority for i, _ in pipeline["queue"].list_queue(priority="P1")] == ["P1"]
        assert [i.id for i, _ in pipeline["queue"].list_queue(status="resolved")] == [a]
        assert len(pipeline["queue"].list_queue(priority="P0", status="pending")) == 0

    def test_stats(self, pipeline, make_issue):
        a = _escalate(pipeline, make_issue, 1, priority="P0")
        b = _escalate(pipeline, make_issue, 2, priority="P2")
        _escalate(pipeline, make_issue, 3, priority="P1")
        pipeline["queue"].claim(b, "r")
        late = as_utc(pipeline["queue"].get_item(a).queued_at) + timedelta(hours=6)
        pipeline["queue"].resolve(a, "approve", None, now=late)

        stats = pipeline["queue"].get_stats(now=datetime.now(timezone.utc) + timedelta(days=2))
        assert stats == {
            "pending": 1,
            "in_progress": 1,
            "resolved": 1,
            "total": 3,
            "sla_missed": 1,
            "overdue": 1,  # P1 (24h) is past deadline, P2 (168h) is not
        }
