"""Tests for Data Quality API endpoints.

Tests covering:
- Dashboard with and without completed runs (camelCase payloads)
- Audit history and run polling
- Background run trigger with single-flight 409
- Manual queue listing, claim, resolve (404 / 409 / 422 mapping)
- Learning signals, CSV report, email preview
"""

import asyncio
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from dq_audit.api.v1.data_quality import router as data_quality_router
from dq_audit.api.v1.data_quality import set_dependencies
from dq_audit.engines.audit.detectors import Anomaly
from dq_audit.engines.audit.supervisor import AuditSupervisor

LOW_CONFIDENCE = {3, 8, 10}


class StaticDetector:
    name = "static"

    def __init__(self, anomalies, delay=0.0):
        self.anomalies = anomalies
        self.delay = delay

    async def detect(self, session):
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.anomalies)


def _anomalies():
    severities = ["error"] * 6 + ["warning"] * 3 + ["info"]
    return [
        Anomaly(
            rule="REQUIRED_FIELDS",
            severity=severity,
            entity_type="candidate",
            entity_id=i,
            entity_description=f"Candidate: First{i} Last{i}",
            message=f"Candidate {i} missing: email",
        )
        for i, severity in enumerate(severities, start=1)
    ]


@pytest.fixture
def api(pipeline, make_proposal):
    """Router wired to the test pipeline; returns (client, pipeline)."""
    for i in range(1, 11):
        pipeline["reasoner"].proposals[("candidate", i)] = make_proposal(i, 50 if i in LOW_CONFIDENCE else 90)
    pipeline["orchestrator"].detectors = [StaticDetector(_anomalies())]
    supervisor = AuditSupervisor(pipeline["orchestrator"])
    pipeline["supervisor"] = supervisor
    set_dependencies(pipeline["orchestrator"], supervisor, pipeline["queue"], pipeline["feedback"])

    test_app = FastAPI()
    test_app.include_router(data_quality_router)
    return TestClient(test_app), pipeline


@pytest.fixture
def audited(api):
    """One completed run; returns (client, pipeline, run_id)."""
    client, pipeline = api
    summary = asyncio.run(pipeline["orchestrator"].run_audit())
    return client, pipeline, summary.run_id


def _queue_ids(client, **params):
    resp = client.get("/api/v1/data-quality/manual-queue", params=params)
    assert resp.status_code == 200
    return [entry["queueItem"]["id"] for entry in resp.json()["items"]]


# === Dashboard / history ===


def test_dashboard_without_runs(api):
    client, _ = api
    resp = client.get("/api/v1/data-quality/dashboard")
    assert resp.status_code == 200
    data = resp.json()
    assert data["hasData"] is False
    assert data["message"] == "No audit runs yet. Run your first audit!"
    print("  PASS: dashboard_without_runs")


def test_dashboard_with_run(audited):
    client, _, run_id = audited
    data = client.get("/api/v1/data-quality/dashboard").json()

    assert data["hasData"] is True
    assert data["currentScore"] == 45.0
    assert data["improvement"] == 0
    assert data["trend"] == "stable"
    latest = data["latestAudit"]
    assert latest["id"] == run_id
    assert latest["totalIssues"] == 10
    assert latest["autoFixed"] == 7
    assert latest["manualQueue"] == 3
    assert latest["improvementFromLast"] is None
    assert data["manualQueue"]["pending"] == 3
    assert data["manualQueue"]["inProgress"] == 0
    assert data["aiPerformance"]["totalAttempts"] == 10
    assert data["aiPerformance"]["successRate"] == 70


def test_dashboard_trend_after_second_run(audited):
    client, pipeline, _ = audited
    pipeline["orchestrator"].detectors = [StaticDetector(_anomalies()[:5])]
    asyncio.run(pipeline["orchestrator"].run_audit())

    data = client.get("/api/v1/data-quality/dashboard").json()
    assert data["currentScore"] == 58.0
    assert data["improvement"] == 13.0
    assert data["trend"] == "improving"


def test_audit_history(audited):
    client, pipeline, run_id = audited
    asyncio.run(pipeline["orchestrator"].run_audit())

    resp = client.get("/api/v1/data-quality/audit-history", params={"limit": 1})
    assert resp.status_code == 200
    runs = resp.json()["runs"]
    assert len(runs) == 1
    assert runs[0]["id"] != run_id  # newest first

    assert len(client.get("/api/v1/data-quality/audit-history").json()["runs"]) == 2
    assert client.get("/api/v1/data-quality/audit-history", params={"limit": 0}).status_code == 422


def test_get_run(audited):
    client, _, run_id = audited
    resp = client.get(f"/api/v1/data-quality/runs/{run_id}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["dataQualityScore"] == 45.0
    assert client.get("/api/v1/data-quality/runs/9999").status_code == 404


# === Run trigger ===


def test_run_audit_in_background(api):
    client, pipeline = api
    pipeline["orchestrator"].detectors = [StaticDetector(_anomalies(), delay=0.3)]

    with client:
        resp = client.post("/api/v1/data-quality/run-audit", json={"scope": "global"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "running"
        run_id = data["auditRunId"]

        conflict = client.post("/api/v1/data-quality/run-audit")
        assert conflict.status_code == 409

        status = None
        for _ in range(200):
            status = client.get(f"/api/v1/data-quality/runs/{run_id}").json()["status"]
            if status != "running":
                break
            time.sleep(0.05)

    assert status == "completed"
    run = pipeline["orchestrator"].get_run(run_id)
    assert run.trigger == "api"
    assert run.total_issues == 10


def test_run_audit_without_dependencies():
    set_dependencies(None, None, None, None)
    test_app = FastAPI()
    test_app.include_router(data_quality_router)
    client = TestClient(test_app)
    assert client.post("/api/v1/data-quality/run-audit").status_code == 503
    assert client.get("/api/v1/data-quality/dashboard").status_code == 503


# === Manual queue ===


def test_manual_queue_listing(audited):
    client, _, _ = audited
    resp = client.get("/api/v1/data-quality/manual-queue")
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [e["queueItem"]["priority"] for e in items] == ["P0", "P1", "P2"]
    first = items[0]
    assert first["issue"]["entityId"] == 3
    assert first["issue"]["status"] == "escalated"
    assert first["queueItem"]["aiSuggestions"]["kind"] == "update_fields"
    assert "slaDeadline" in first["queueItem"]

    assert len(_queue_ids(client, priority="P1")) == 1
    assert _queue_ids(client, status="resolved") == []
    assert client.get("/api/v1/data-quality/manual-queue", params={"priority": "P5"}).status_code == 422


def test_claim(audited):
    client, _, _ = audited
    queue_id = _queue_ids(client)[0]

    resp = client.post(f"/api/v1/data-quality/manual-queue/{queue_id}/claim", json={"assignee": "ops@example.com"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_progress"
    assert resp.json()["assignedTo"] == "ops@example.com"

    again = client.post(f"/api/v1/data-quality/manual-queue/{queue_id}/claim", json={"assignee": "x"})
    assert again.status_code == 409
    missing = client.post("/api/v1/data-quality/manual-queue/9999/claim", json={"assignee": "x"})
    assert missing.status_code == 404


def test_resolve_and_apply(audited):
    client, pipeline, _ = audited
    queue_id = _queue_ids(client)[0]

    resp = client.post("/api/v1/data-quality/resolve-issue", json={
        "queueId": queue_id,
        "action": "approve",
        "notes": "Confirmed with the candidate",
        "applyAiSuggestion": True,
    })
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Issue resolved successfully", "slaMissed": False}

    item = pipeline["queue"].get_item(queue_id)
    assert item.status == "resolved"
    assert _queue_ids(client, status="resolved") == [queue_id]

    again = client.post("/api/v1/data-quality/resolve-issue", json={"queueId": queue_id, "action": "reject"})
    assert again.status_code == 409


def test_resolve_unknown_queue_item(audited):
    client, pipeline, _ = audited
    before = pipeline["queue"].get_stats()
    resp = client.post("/api/v1/data-quality/resolve-issue", json={"queueId": 9999, "action": "approve"})
    assert resp.status_code == 404
    assert pipeline["queue"].get_stats() == before


def test_resolve_validation(audited):
    client, pipeline, _ = audited
    queue_id = _queue_ids(client)[0]
    pipeline["queue"].claim(queue_id, "ops")

    bad_action = client.post("/api/v1/data-quality/resolve-issue", json={"queueId": queue_id, "action": "ignore"})
    assert bad_action.status_code == 422


def test_resolve_apply_without_suggestion(api, make_issue):
    client, pipeline = api
    issue_id = make_issue(entity_id=5)
    asyncio.run(pipeline["remediation"].escalate_failure(issue_id, "forced"))
    queue_id = _queue_ids(client)[0]

    resp = client.post("/api/v1/data-quality/resolve-issue", json={
        "queueId": queue_id, "action": "approve", "applyAiSuggestion": True,
    })
    assert resp.status_code == 422
    assert pipeline["queue"].get_item(queue_id).status == "pending"


def test_learning_signals(audited):
    client, _, _ = audited
    queue_ids = _queue_ids(client)
    for queue_id, action in zip(queue_ids, ["approve", "reject"]):
        client.post("/api/v1/data-quality/resolve-issue", json={"queueId": queue_id, "action": action})

    signals = client.get("/api/v1/data-quality/learning-signals").json()["signals"]
    assert sorted(s["humanFeedback"] for s in signals) == ["approved", "rejected"]
    assert signals[0]["ruleName"] == "REQUIRED_FIELDS"
    assert signals[0]["attemptId"] < signals[1]["attemptId"]

    after = client.get("/api/v1/data-quality/learning-signals", params={"afterId": signals[0]["attemptId"]})
    assert after.json()["signals"] == signals[1:]


# === Reports ===


def test_csv_report(audited):
    client, _, run_id = audited
    resp = client.get(f"/api/v1/data-quality/report/{run_id}")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["content-disposition"] == f"attachment; filename=audit-report-{run_id}.csv"

    lines = resp.text.strip().split("\n")
    assert lines[0].startswith('"Issue ID","Priority","Entity"')
    assert len(lines) == 11
    assert '"Candidate: First1 Last1"' in lines[1]

    assert client.get("/api/v1/data-quality/report/9999").status_code == 404


def test_email_preview(audited):
    client, _, run_id = audited
    resp = client.get(f"/api/v1/data-quality/email-preview/{run_id}")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    assert f"Audit Run ID: {run_id}" in resp.text
    assert "45/100" in resp.text
    assert client.get("/api/v1/data-quality/email-preview/9999").status_code == 404
