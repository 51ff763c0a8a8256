"""Audit report builder — CSV export of a run's issues."""

from __future__ import annotations

import csv
import io

from dq_audit.models.audit import AuditIssue

CSV_COLUMNS = [
    "Issue ID",
    "Priority",
    "Entity",
    "Type",
    "Description",
    "Status",
    "Resolved By",
    "Suggested Fix",
]


def render_csv_report(issues: list[AuditIssue]) -> str:
    """One row per issue; every field quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for issue in issues:
        writer.writerow([
            issue.id,
            issue.priority,
            issue.entity_description or f"{issue.entity_type} {issue.entity_id}",
            issue.issue_type,
            issue.description,
            issue.status,
            issue.resolved_by or "Pending",
            issue.suggested_fix or "",
        ])
    return buf.getvalue()


def report_filename(run_id: int) -> str:
    return f"audit-report-{run_id}.csv"
