"""Issue classifier — severity to priority tier, rule to issue type."""

from __future__ import annotations

from pydantic import BaseModel

from dq_audit.config import settings
from dq_audit.engines.audit.detectors import Anomaly

_DEFAULT_FIXES = {
    "missing_link": "Link the record to the matching company or create the company",
    "duplicate": "Review and merge duplicates if they are the same company",
    "missing_data": "Enrich the record through research or AI extraction",
    "orphaned_record": "Delete the orphaned link or restore the missing record",
}


class Classification(BaseModel):
    severity: str
    priority: str
    issue_type: str
    suggested_fix: str | None = None


class IssueClassifier:
    """Pure mapping from a detected anomaly to severity, priority and type.

    Defaults to error→P0, warning→P1, info→P2; both maps are overridable
    per instance or through settings.
    """

    def __init__(
        self,
        priority_map: dict[str, str] | None = None,
        issue_types: dict[str, str] | None = None,
    ) -> None:
        self.priority_map = dict(priority_map or settings.severity_priority_map)
        self.issue_types = dict(issue_types or settings.rule_issue_types)

    def classify(self, anomaly: Anomaly) -> Classification:
        try:
            priority = self.priority_map[anomaly.severity]
        except KeyError:
            raise ValueError(f"No priority tier configured for severity {anomaly.severity!r}") from None
        issue_type = self.issue_types.get(anomaly.rule, "other")
        return Classification(
            severity=anomaly.severity,
            priority=priority,
            issue_type=issue_type,
            suggested_fix=anomaly.suggested_fix or _DEFAULT_FIXES.get(issue_type),
        )
