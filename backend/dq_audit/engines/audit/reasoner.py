"""Reasoning collaborator — proposes a fix for one audit issue.

The remediation engine only depends on the RemediationReasoner protocol.
LLMRemediationReasoner is the production implementation backed by the
LLM layer; tests substitute stubs or MockLLMLayer.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

from dq_audit.config import ModelTier, settings
from dq_audit.models.remediation import IssueContext, RemediationProposal

if TYPE_CHECKING:
    from dq_audit.llm.layer import LLMLayer

logger = logging.getLogger(__name__)


class RemediationReasoner(Protocol):
    model_name: str

    async def propose(self, context: IssueContext) -> RemediationProposal: ...


SYSTEM_PROMPT = """\
You are a data quality engineer for a recruiting platform that stores
candidates and companies. You receive one detected data integrity issue
and a snapshot of the affected record. Propose a single concrete fix.

Rules:
- Use only these fix kinds:
  * link_company: link a candidate to a company (company_id of an existing
    company, or company_name with create_if_missing=true).
  * update_fields: set editable fields. Candidate fields: first_name,
    last_name, email, phone_number, linkedin_url. Company fields: name,
    industry, headquarters, website.
  * merge_duplicate: fold a duplicate company under duplicate_of_id.
- Leave fixes_applied empty if no safe fix exists.
- confidence_score is 0-100: how certain you are the fix is correct.
  Never guess contact details; unknown data means low confidence.
- Set requires_verification when the fix is probably right but a human
  should double-check it (e.g. it creates a new company).
- List every data source you relied on in data_sources.
"""


class LLMRemediationReasoner:
    """Asks the LLM for a structured RemediationProposal."""

    def __init__(self, llm: LLMLayer, model_tier: ModelTier | None = None) -> None:
        self.llm = llm
        self.model_tier: ModelTier = model_tier or settings.remediation_model_tier
        self.model_name = f"llm:{self.model_tier}"

    async def propose(self, context: IssueContext) -> RemediationProposal:
        prompt = (
            "Issue:\n"
            f"{json.dumps(context.model_dump(mode='json'), indent=2, default=str)}\n\n"
            "Return a RemediationProposal."
        )
        result, meta = await self.llm.complete_structured(
            messages=[{"role": "user", "content": prompt}],
            model_tier=self.model_tier,
            response_model=RemediationProposal,
            system=SYSTEM_PROMPT,
        )
        if meta.model_version:
            self.model_name = meta.model_version
        logger.debug(
            "Proposal for issue %d: confidence=%.0f cost=$%.4f",
            context.issue_id, result.confidence_score, meta.cost,
        )
        return result
