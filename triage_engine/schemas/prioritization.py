"""Prioritization result and engine configuration schemas."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import Field, field_validator

from triage_engine.core.config import Settings
from triage_engine.schemas.classification import IssueClassification
from triage_engine.schemas.common import BaseSchema, FrozenSchema, clamp
from triage_engine.schemas.issue import IssueContext


class TriageAction(str, Enum):
    """Recommended next action for an issue."""
    FIX_NOW = "fix-now"
    SCHEDULE = "schedule"
    DELEGATE = "delegate"
    MONITOR = "monitor"
    IGNORE = "ignore"


class TriageSuggestion(FrozenSchema):
    """Automated triage recommendation."""

    action: TriageAction
    priority: int  # 1-10
    estimated_effort: float  # hours, > 0
    assignee: str | None = None
    deadline: datetime | None = None
    reasoning: str = ""
    confidence: float = 0.5

    @field_validator("priority", mode="before")
    @classmethod
    def clamp_priority(cls, v):
        return int(clamp(int(v), 1, 10))

    @field_validator("estimated_effort", mode="before")
    @classmethod
    def positive_effort(cls, v):
        return max(0.1, float(v))

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        return clamp(float(v), 0.0, 1.0)

    @field_validator("deadline")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is None or v.tzinfo is not None:
            return v
        return v.replace(tzinfo=UTC)


class ScoringFactors(FrozenSchema):
    """Weights and multipliers actually applied. Recorded for auditing."""

    severity_weight: float
    impact_weight: float
    effort_weight: float
    business_value_weight: float
    context_multiplier: float = 1.0
    classification_bonus: float = 1.0
    workflow_adjustment: float = 0.0


class PrioritizationMetadata(FrozenSchema):
    processed_at: datetime
    algorithm: str
    model_version: str | None = None
    processing_time: float  # milliseconds
    cache_hit: bool = False


class IssuePrioritization(FrozenSchema):
    """Aggregate prioritization result for one issue.

    Immutable once returned; re-prioritization produces a new record.
    """

    id: str
    issue_id: str
    severity: float  # 1-10
    impact: float  # 1-10
    effort: float  # 1-10, estimated fix effort (higher = more work)
    business_value: float  # 1-10
    final_score: float  # 1-10, one decimal
    context: IssueContext
    classification: IssueClassification
    triage_suggestion: TriageSuggestion
    scoring_factors: ScoringFactors
    metadata: PrioritizationMetadata


# =============================================================================
# Engine Configuration
# =============================================================================


class ScoringWeights(BaseSchema):
    """Sub-score weights. Callers keep them normalized to sum to 1."""

    severity: float = 0.3
    impact: float = 0.25
    effort: float = 0.2
    business_value: float = 0.25


class MLSettings(BaseSchema):
    enabled: bool = True
    model_path: str | None = None
    retraining_threshold: int = 100
    confidence_threshold: float = 0.7


class RuleSettings(BaseSchema):
    enabled: bool = True
    auto_optimize: bool = False
    conflict_resolution: str = Field(
        default="highest-weight",
        pattern="^(first-match|highest-weight|combine)$",
    )


class CacheSettings(BaseSchema):
    enabled: bool = True
    ttl: int = 3600  # seconds
    max_size: int = 10_000  # entries


class ConcurrencySettings(BaseSchema):
    max_workers: int = Field(default=8, ge=1)
    parallel_threshold: int = Field(default=64, ge=1)


class PrioritizationConfiguration(BaseSchema):
    """Per-engine configuration, passed explicitly through every stage."""

    algorithm: str = Field(default="hybrid", pattern="^(weighted|ml-enhanced|hybrid)$")
    weights: ScoringWeights = ScoringWeights()
    ml_settings: MLSettings = MLSettings()
    rules: RuleSettings = RuleSettings()
    caching: CacheSettings = CacheSettings()
    concurrency: ConcurrencySettings = ConcurrencySettings()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PrioritizationConfiguration":
        """Build engine defaults from environment-backed settings."""
        return cls(
            algorithm=settings.algorithm,
            weights=ScoringWeights(
                severity=settings.severity_weight,
                impact=settings.impact_weight,
                effort=settings.effort_weight,
                business_value=settings.business_value_weight,
            ),
            ml_settings=MLSettings(
                enabled=settings.ml_enabled,
                retraining_threshold=settings.ml_retraining_threshold,
                confidence_threshold=settings.ml_confidence_threshold,
            ),
            rules=RuleSettings(
                enabled=settings.rules_enabled,
                auto_optimize=settings.rules_auto_optimize,
                conflict_resolution=settings.conflict_resolution,
            ),
            caching=CacheSettings(
                enabled=settings.cache_enabled,
                ttl=settings.cache_ttl_seconds,
                max_size=settings.cache_max_size,
            ),
            concurrency=ConcurrencySettings(
                max_workers=settings.max_workers,
                parallel_threshold=settings.parallel_threshold,
            ),
        )
