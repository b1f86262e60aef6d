"""Issue and issue-context schemas."""

from enum import Enum

from pydantic import field_validator

from triage_engine.schemas.common import FrozenSchema, clamp


class IssueType(str, Enum):
    """Finding type reported by the analysis tool."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Criticality(str, Enum):
    """Criticality of the component an issue lives in."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Issue(FrozenSchema):
    """A single finding produced by an external lint/type/test tool."""

    id: str
    type: IssueType
    tool_name: str
    file_path: str
    line_number: int = 0
    message: str = ""
    rule_id: str | None = None
    suggestion: str | None = None
    fixable: bool = False
    score: float = 5.0

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        """Raw tool score is kept on the 1-10 scale."""
        return clamp(float(v), 1.0, 10.0)


class ComplexityMetrics(FrozenSchema):
    """Code complexity measurements for the file containing an issue."""

    cyclomatic_complexity: float = 0.0
    cognitive_complexity: float = 0.0
    lines_of_code: float = 0.0
    dependencies: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def non_negative(cls, v):
        return max(0.0, float(v))


class IssueContext(FrozenSchema):
    """Derived per-issue context. Built once before classification."""

    project_type: str = "unknown"
    file_path: str
    component_type: str = "unknown"
    criticality: Criticality = Criticality.MEDIUM
    team_workflow: str = "custom"
    recent_changes: bool = False
    business_domain: str | None = None
    complexity_metrics: ComplexityMetrics = ComplexityMetrics()
