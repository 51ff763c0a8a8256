"""Data quality audit configuration — settings, model tiers, thresholds."""

from typing import Literal

from pydantic_settings import BaseSettings

ModelTier = Literal["opus", "sonnet", "haiku"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    anthropic_api_key: str = ""

    # Database
    database_url: str = "sqlite:///data/data_quality.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    # LLM defaults
    default_max_tokens: int = 4096
    default_max_retries: int = 2
    default_temperature: float = 0.0
    model_opus: str = "claude-opus-4-6"
    model_sonnet: str = "claude-sonnet-4-6"
    model_haiku: str = "claude-haiku-4-5-20251001"

    # Remediation
    auto_fix_threshold: float = 85.0  # confidence (0-100) required to apply a fix unreviewed
    remediation_timeout_seconds: float = 60.0
    remediation_model_tier: ModelTier = "sonnet"

    # Classification (JSON-encoded when set through the environment)
    severity_priority_map: dict[str, str] = {"error": "P0", "warning": "P1", "info": "P2"}
    rule_issue_types: dict[str, str] = {
        "CANDIDATE_COMPANY_LINK": "missing_link",
        "CAREER_HISTORY_LINKS": "missing_link",
        "DUPLICATE_COMPANIES": "duplicate",
        "REQUIRED_FIELDS": "missing_data",
        "COMPANY_DATA_QUALITY": "missing_data",
        "JOB_CANDIDATE_INTEGRITY": "orphaned_record",
    }

    # Manual queue SLA windows per priority tier
    sla_window_p0_hours: float = 4.0
    sla_window_p1_hours: float = 24.0
    sla_window_p2_hours: float = 168.0

    # Data quality score weights
    score_weight_error: float = 10.0
    score_weight_warning: float = 3.0
    score_weight_info: float = 0.5
    score_autofix_credit: float = 2.0

    # Audit execution
    audit_concurrency_limit: int = 4
    audit_schedule_enabled: bool = True
    audit_interval_hours: float = 24.0
    audit_history_default_limit: int = 10

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()


def get_model_map() -> dict[str, str]:
    """Resolve model map from settings (env-overridable)."""
    return {
        "opus": settings.model_opus,
        "sonnet": settings.model_sonnet,
        "haiku": settings.model_haiku,
    }


MODEL_MAP: dict[str, str] = get_model_map()
