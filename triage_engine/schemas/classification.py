"""Classification, training and model-evaluation schemas."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import Field, field_validator

from triage_engine.schemas.common import BaseSchema, FrozenSchema, clamp
from triage_engine.schemas.issue import IssueContext


class IssueCategory(str, Enum):
    """Classification category."""
    BUG = "bug"
    PERFORMANCE = "performance"
    SECURITY = "security"
    MAINTAINABILITY = "maintainability"
    DOCUMENTATION = "documentation"
    FEATURE = "feature"


class IssueSeverity(str, Enum):
    """Classification severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Fixed category order used for confusion matrices
CATEGORY_ORDER: tuple[IssueCategory, ...] = tuple(IssueCategory)


class ClassificationFeatures(FrozenSchema):
    """Normalized features in [0, 1] derived from an IssueContext."""

    code_complexity: float = 0.0
    change_frequency: float = 0.0
    team_impact: float = 0.0
    user_facing_impact: float = 0.0
    business_criticality: float = 0.0
    technical_debt_impact: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def clamp_unit(cls, v):
        return clamp(float(v), 0.0, 1.0)


class IssueClassification(FrozenSchema):
    """Predicted category/severity with a confidence in [0.1, 1.0]."""

    category: IssueCategory
    severity: IssueSeverity
    confidence: float
    features: ClassificationFeatures

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        return clamp(float(v), 0.1, 1.0)


class IssueResolutionOutcome(BaseSchema):
    """Observed outcome of resolving a historical issue."""

    resolution_time: float  # hours
    effort: float  # 1-10 scale
    success: bool
    user_feedback: float | None = None  # 1-5 satisfaction rating
    notes: str | None = None


class IssueTrainingData(BaseSchema):
    """One labelled sample fed back by the feedback collaborator.

    Fields are optional so incomplete samples can be reported as training
    errors instead of failing at construction time.
    """

    issue_id: str = ""
    features: ClassificationFeatures | None = None
    actual_outcome: IssueResolutionOutcome | None = None
    context: IssueContext | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ModelMetrics(BaseSchema):
    """Evaluation artifact of a classification model."""

    accuracy: float
    precision: float
    recall: float
    f1_score: float
    confusion_matrix: list[list[int]]
    training_data_size: int
    validation_data_size: int
    model_version: str
    trained_at: datetime
