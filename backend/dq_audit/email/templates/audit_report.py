"""HTML email template for audit run reports."""

from __future__ import annotations

import html
from dataclasses import dataclass

from dq_audit.config import settings
from dq_audit.models.audit import AuditRun

_ARROWS = {"improving": "&#x2B06;", "declining": "&#x2B07;", "stable": "&#x27A1;"}
_SUBJECT_ARROWS = {"improving": "↑", "declining": "↓", "stable": "→"}


@dataclass
class AuditEmail:
    subject: str
    html_body: str


def _stat_card(value: int, label: str, color: str) -> str:
    return (
        f'<td style="padding:12px;text-align:center;background:#0a1628;border:1px solid #1e3050;'
        f'border-radius:6px;">'
        f'<div style="color:{color};font-size:22px;font-weight:700;">{value}</div>'
        f'<div style="color:#a0aec0;font-size:12px;margin-top:4px;">{html.escape(label)}</div>'
        f'</td>'
    )


def render_audit_email(run: AuditRun, previous_score: float | None = None) -> AuditEmail:
    """Render subject and HTML body for one audit run.

    Uses inline CSS for email client compatibility.
    All text is HTML-escaped.
    """
    score = run.data_quality_score or 0
    improvement = score - previous_score if previous_score is not None else 0
    trend = "improving" if improvement > 0 else "declining" if improvement < 0 else "stable"

    subject = f"Data Quality Audit - {score:.0f}/100 {_SUBJECT_ARROWS[trend]}"

    improvement_html = ""
    if improvement:
        sign = "+" if improvement > 0 else ""
        improvement_html = (
            f'<div style="color:#a0aec0;font-size:13px;margin-top:4px;">'
            f'{_ARROWS[trend]} {sign}{improvement:.0f} from last run</div>'
        )

    total = run.total_issues or 0
    auto_pct = round(run.auto_fixed / total * 100) if total else 0

    next_steps = [
        f"<strong>Immediate:</strong> Review {run.manual_queue} items in the manual intervention queue",
    ]
    if run.errors:
        next_steps.append(
            f"<strong>Urgent:</strong> Address {run.errors} P0 critical issues "
            f"(SLA: {settings.sla_window_p0_hours:g} hours)"
        )
    if run.warnings:
        next_steps.append(
            f"<strong>Today:</strong> Review {run.warnings} P1 issues "
            f"(SLA: {settings.sla_window_p1_hours:g} hours)"
        )
    next_steps.append("Download the CSV report for detailed analysis")
    next_steps.append("Batch P2 issues for the weekly review session")
    steps_html = "".join(
        f'<li style="color:#e2e8f0;font-size:13px;margin:4px 0;">{step}</li>' for step in next_steps
    )

    detector_html = ""
    if run.detector_errors:
        rows = "".join(
            f'<li style="color:#fca5a5;font-size:12px;">{html.escape(str(e.get("detector", "")))}: '
            f'{html.escape(str(e.get("error", "")))}</li>'
            for e in run.detector_errors
        )
        detector_html = (
            '<h2 style="color:#f97316;font-size:16px;margin:24px 0 12px;">Detector Errors</h2>'
            f'<ul style="padding-left:20px;margin:0;">{rows}</ul>'
        )

    started = run.started_at.strftime("%Y-%m-%d %H:%M UTC") if run.started_at else ""
    exec_seconds = (run.execution_time_ms or 0) / 1000

    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="margin:0;padding:0;background:#060a14;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;">
<div style="max-width:640px;margin:0 auto;padding:24px;">

  <!-- Header -->
  <div style="background:#0a0f1e;border:1px solid #1a2332;border-radius:8px;padding:24px;margin-bottom:16px;text-align:center;">
    <h1 style="color:#00d4aa;font-size:20px;margin:0 0 8px;">Data Quality Audit Report</h1>
    <div style="color:#e2e8f0;font-size:36px;font-weight:700;">{score:.0f}/100</div>
    {improvement_html}
    <div style="color:#7a8ba7;font-size:12px;margin-top:8px;">{html.escape(run.scope)} · {started}</div>
  </div>

  <div style="background:#0a0f1e;border:1px solid #1a2332;border-radius:8px;padding:24px;margin-bottom:16px;">
    <h2 style="color:#00d4aa;font-size:16px;margin:0 0 12px;">Issues Detected</h2>
    <table style="width:100%;border-collapse:separate;border-spacing:8px;">
      <tr>
        {_stat_card(run.errors, "Critical (P0)", "#ef4444")}
        {_stat_card(run.warnings, "Important (P1)", "#eab308")}
        {_stat_card(run.info, "Enhancement (P2)", "#3b82f6")}
        {_stat_card(total, "Total Issues", "#e2e8f0")}
      </tr>
    </table>

    <h2 style="color:#00d4aa;font-size:16px;margin:24px 0 12px;">AI Remediation</h2>
    <p style="color:#e2e8f0;font-size:14px;margin:0 0 8px;">
      <strong>{run.auto_fixed} issues</strong> fixed automatically ({auto_pct}%)
    </p>
    <div style="background:#1a2332;border-radius:4px;height:14px;">
      <div style="background:#00d4aa;border-radius:4px;height:14px;width:{auto_pct}%;"></div>
    </div>
    <ul style="padding-left:20px;margin:12px 0 0;">
      <li style="color:#e2e8f0;font-size:13px;">{run.auto_fixed} automatically resolved</li>
      <li style="color:#e2e8f0;font-size:13px;">{run.flagged_for_review} flagged for review</li>
      <li style="color:#e2e8f0;font-size:13px;">{run.manual_queue} queued for manual intervention</li>
    </ul>

    {detector_html}

    <h2 style="color:#00d4aa;font-size:16px;margin:24px 0 12px;">Next Steps</h2>
    <ul style="padding-left:20px;margin:0;">{steps_html}</ul>
  </div>

  <!-- Footer -->
  <div style="text-align:center;padding:16px;color:#4a5568;font-size:11px;">
    Automated Data Quality System · Execution Time: {exec_seconds:.2f}s<br>
    Audit Run ID: {run.id}
  </div>

</div>
</body>
</html>"""

    return AuditEmail(subject=subject, html_body=body)
