"""Mock LLM Layer for testing remediation without API calls."""

from __future__ import annotations

from pydantic import BaseModel

from dq_audit.config import ModelTier
from dq_audit.llm.layer import LLMResponse


class MockLLMLayer:
    """Returns predefined structured responses.

    Responses are keyed by "<tier>:<ResponseModelName>". A value may also
    be an exception instance, which is raised to simulate provider errors.

    Usage:
        mock = MockLLMLayer({
            "sonnet:RemediationProposal": RemediationProposal(
                reasoning="exact name match",
                confidence_score=92,
            ),
        })
    """

    def __init__(self, responses: dict[str, BaseModel | Exception] | None = None) -> None:
        self.responses = responses or {}
        self.call_log: list[dict] = []

    def _mock_meta(self, model_tier: ModelTier) -> LLMResponse:
        return LLMResponse(
            model_version=f"mock-{model_tier}",
            input_tokens=100,
            output_tokens=50,
            stop_reason="end_turn",
            cost=0.0,
        )

    async def complete_structured(
        self,
        messages: list[dict],
        model_tier: ModelTier,
        response_model: type[BaseModel],
        system: str | list[dict] | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        temperature: float | None = None,
    ) -> tuple[BaseModel, LLMResponse]:
        """Return the predefined response or a default instance."""
        key = f"{model_tier}:{response_model.__name__}"
        self.call_log.append({
            "method": "complete_structured",
            "model_tier": model_tier,
            "response_model": response_model.__name__,
            "messages": messages,
            "system": system,
            "temperature": temperature,
        })
        result = self.responses.get(key)
        if isinstance(result, Exception):
            raise result
        if result is None:
            result = response_model()
        return result, self._mock_meta(model_tier)

    def estimate_cost(self, model_tier: ModelTier, input_tokens: int,
                      output_tokens: int, cached_input_tokens: int = 0) -> float:
        return 0.0
