"""Shared fixtures for the triage engine test suite."""

from datetime import UTC, datetime, timedelta

import pytest

from triage_engine.schemas import (
    ClassificationFeatures,
    ComplexityMetrics,
    Criticality,
    IssueCategory,
    IssueClassification,
    IssueSeverity,
    ProjectContext,
)
from triage_engine.schemas.issue import Issue, IssueContext, IssueType
from triage_engine.schemas.project import SprintContext, TeamPreferences, TeamPriorities, Workflow

FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_issue(
    issue_id: str = "issue-1",
    *,
    type: IssueType = IssueType.WARNING,
    file_path: str = "/src/app/module.ts",
    fixable: bool = False,
    score: float = 5.0,
    message: str = "Something looks wrong",
) -> Issue:
    return Issue(
        id=issue_id,
        type=type,
        tool_name="eslint",
        file_path=file_path,
        line_number=10,
        message=message,
        fixable=fixable,
        score=score,
    )


def make_project_context(
    workflow: Workflow = Workflow.SCRUM,
    *,
    sprint: SprintContext | None = None,
    **priorities: float,
) -> ProjectContext:
    team_priorities = {"performance": 7, "security": 9, "maintainability": 6, "features": 8}
    team_priorities.update(priorities)
    return ProjectContext(
        project_configuration={"type": "fullstack"},
        team_preferences=TeamPreferences(
            workflow=workflow,
            priorities=TeamPriorities(**team_priorities),
        ),
        current_sprint=sprint,
    )


def make_sprint(
    *,
    days_left: int = 10,
    capacity: float = 100.0,
    current_load: float = 60.0,
    goals: list[str] | None = None,
) -> SprintContext:
    return SprintContext(
        number=7,
        start_date=FIXED_NOW - timedelta(days=4),
        end_date=FIXED_NOW + timedelta(days=days_left),
        capacity=capacity,
        current_load=current_load,
        goals=goals if goals is not None else [],
    )


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def project_context() -> ProjectContext:
    """Scrum team without an active sprint."""
    return make_project_context()


@pytest.fixture
def security_issue() -> Issue:
    return make_issue(
        "sec-1",
        type=IssueType.ERROR,
        file_path="/src/security/auth.ts",
        score=8,
        message="Possible SQL injection",
    )


@pytest.fixture
def security_context() -> IssueContext:
    return IssueContext(
        project_type="fullstack",
        file_path="/src/security/auth.ts",
        component_type="source-code",
        criticality=Criticality.CRITICAL,
        team_workflow="scrum",
        business_domain="security",
        complexity_metrics=ComplexityMetrics(
            cyclomatic_complexity=5, cognitive_complexity=3, lines_of_code=100, dependencies=10
        ),
    )


@pytest.fixture
def security_classification() -> IssueClassification:
    return IssueClassification(
        category=IssueCategory.SECURITY,
        severity=IssueSeverity.CRITICAL,
        confidence=0.9,
        features=ClassificationFeatures(
            code_complexity=0.3,
            change_frequency=0.1,
            team_impact=1.0,
            user_facing_impact=1.0,
            business_criticality=1.0,
        ),
    )


@pytest.fixture
def docs_issue() -> Issue:
    return make_issue(
        "doc-1",
        type=IssueType.INFO,
        file_path="/docs/readme.md",
        fixable=True,
        score=2,
        message="Missing section heading",
    )


@pytest.fixture
def docs_context() -> IssueContext:
    return IssueContext(
        project_type="fullstack",
        file_path="/docs/readme.md",
        component_type="documentation",
        criticality=Criticality.LOW,
        team_workflow="scrum",
        complexity_metrics=ComplexityMetrics(
            cyclomatic_complexity=1, cognitive_complexity=1, lines_of_code=50, dependencies=0
        ),
    )


@pytest.fixture
def docs_classification() -> IssueClassification:
    return IssueClassification(
        category=IssueCategory.DOCUMENTATION,
        severity=IssueSeverity.LOW,
        confidence=0.8,
        features=ClassificationFeatures(code_complexity=0.1, team_impact=0.2),
    )
