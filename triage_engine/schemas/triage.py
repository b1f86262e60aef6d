"""Triage feedback and workflow reporting schemas."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import Field

from triage_engine.schemas.common import BaseSchema


class TriageOutcome(BaseSchema):
    """What the team did with a suggestion."""

    action: Literal["accepted", "rejected", "modified"]
    accuracy: float | None = None
    feedback: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TriageEffectivenessReport(BaseSchema):
    total_suggestions: int
    accepted_count: int = 0
    rejected_count: int = 0
    modified_count: int = 0
    average_accuracy: float = 0.0
    confidence_distribution: dict[str, int] = {}
    action_distribution: dict[str, int] = {}
    recommendations: list[str] = []


class WorkflowMetrics(BaseSchema):
    average_resolution_time: float
    team_velocity: float
    bug_rate: float
    efficiency: float
    throughput: float
    quality_score: float


class WorkflowAnalysis(BaseSchema):
    """Efficiency, bottlenecks and recommendations for a team workflow."""

    workflow: str
    efficiency: float
    bottlenecks: list[str] = []
    recommendations: list[str] = []
    metrics: WorkflowMetrics
