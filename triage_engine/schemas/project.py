"""Project context schemas supplied per invocation."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import field_validator

from triage_engine.schemas.common import BaseSchema


class Workflow(str, Enum):
    """Team process model."""
    SCRUM = "scrum"
    KANBAN = "kanban"
    WATERFALL = "waterfall"
    CUSTOM = "custom"


class TeamPriorities(BaseSchema):
    """Per-category priority weights on a 1-10 scale."""

    performance: float = 5.0
    security: float = 5.0
    maintainability: float = 5.0
    features: float = 5.0


class WorkingHours(BaseSchema):
    start: str = "09:00"  # HH:mm
    end: str = "17:00"  # HH:mm
    timezone: str = "UTC"


class SprintContext(BaseSchema):
    """Current sprint for iterative (scrum) teams."""

    number: int
    start_date: datetime
    end_date: datetime
    capacity: float  # hours
    current_load: float  # hours
    goals: list[str] = []

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC."""
        return v if v.tzinfo is not None else v.replace(tzinfo=UTC)

    @property
    def utilization(self) -> float:
        """Load over capacity. A sprint with no capacity counts as full."""
        if self.capacity <= 0:
            return 1.0
        return self.current_load / self.capacity


class TeamPreferences(BaseSchema):
    workflow: Workflow = Workflow.CUSTOM
    priorities: TeamPriorities = TeamPriorities()
    working_hours: WorkingHours = WorkingHours()
    sprint_duration: int | None = None  # days
    current_sprint: SprintContext | None = None


class PerformanceBreakdown(BaseSchema):
    bug_fix_time: float = 0.0
    feature_implementation_time: float = 0.0
    review_time: float = 0.0


class HistoricalData(BaseSchema):
    average_resolution_time: float = 0.0
    common_issue_types: list[str] = []
    team_velocity: float = 0.0  # issues per sprint
    bug_rate: float = 0.0  # fraction of bugs vs features
    performance: PerformanceBreakdown = PerformanceBreakdown()


class ProjectContext(BaseSchema):
    """Team preferences, sprint and history for one invocation. Read-only."""

    project_configuration: dict[str, Any] = {}
    team_preferences: TeamPreferences = TeamPreferences()
    historical_data: HistoricalData = HistoricalData()
    current_sprint: SprintContext | None = None

    @property
    def sprint(self) -> SprintContext | None:
        """Active sprint: project-level first, then the team preferences one."""
        return self.current_sprint or self.team_preferences.current_sprint

    @property
    def workflow(self) -> Workflow:
        return self.team_preferences.workflow
