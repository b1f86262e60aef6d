"""Issue context construction.

Derives the per-issue IssueContext (component type, criticality, business
domain, complexity) from the issue's file path and the project context.
Recent-change detection and complexity measurement are delegated to
pluggable providers so callers can back them with VCS history or a real
analyzer; the defaults are deterministic path heuristics.
"""

import logging
from collections.abc import Callable

from triage_engine.schemas.issue import ComplexityMetrics, Criticality, Issue, IssueContext, IssueType
from triage_engine.schemas.project import ProjectContext

logger = logging.getLogger(__name__)

RecentChangesProvider = Callable[[str], bool]
ComplexityProvider = Callable[[str], ComplexityMetrics]


def no_recent_changes(file_path: str) -> bool:
    """Default recent-change provider: nothing is considered recently changed."""
    return False


def estimate_complexity(file_path: str) -> ComplexityMetrics:
    """Estimate complexity metrics from path conventions alone.

    Component and service files are assumed larger than average, test
    files smaller.
    """
    path = file_path.lower()

    if "test" in path:
        return ComplexityMetrics(
            cyclomatic_complexity=3, cognitive_complexity=2, lines_of_code=50, dependencies=5
        )
    if "component" in path or "service" in path:
        return ComplexityMetrics(
            cyclomatic_complexity=8, cognitive_complexity=6, lines_of_code=200, dependencies=15
        )
    return ComplexityMetrics(
        cyclomatic_complexity=5, cognitive_complexity=3, lines_of_code=100, dependencies=10
    )


class IssueContextBuilder:
    """Build IssueContext records from issues and project context."""

    def __init__(
        self,
        recent_changes: RecentChangesProvider | None = None,
        complexity: ComplexityProvider | None = None,
    ):
        self._recent_changes = recent_changes or no_recent_changes
        self._complexity = complexity or estimate_complexity

    def build(self, issue: Issue, project_context: ProjectContext) -> IssueContext:
        """Derive the context for one issue."""
        project_type = project_context.project_configuration.get("type") or "fullstack"

        return IssueContext(
            project_type=str(project_type),
            file_path=issue.file_path,
            component_type=self.infer_component_type(issue.file_path),
            criticality=self.infer_criticality(issue.file_path, issue.type),
            team_workflow=project_context.workflow.value,
            recent_changes=self._recent_changes(issue.file_path),
            business_domain=self.infer_business_domain(issue.file_path),
            complexity_metrics=self._complexity(issue.file_path),
        )

    @staticmethod
    def infer_component_type(file_path: str) -> str:
        path = file_path.lower()

        if "/test/" in path or ".test." in path or ".spec." in path:
            return "test"
        if "/config/" in path or "config." in path:
            return "configuration"
        if "/src/" in path or "/lib/" in path:
            if "component" in path or "ui" in path or "view" in path:
                return "ui-component"
            if "service" in path or "api" in path:
                return "service"
            if "util" in path or "helper" in path:
                return "utility"
            return "source-code"
        return "unknown"

    @staticmethod
    def infer_criticality(file_path: str, issue_type: IssueType) -> Criticality:
        """Criticality tiers.

        - critical: security, auth and payment paths
        - high: errors in src/ or lib/
        - medium: warnings
        - low: info findings and test files
        """
        path = file_path.lower()

        if "/security/" in path or "/auth/" in path or "/payment/" in path:
            return Criticality.CRITICAL
        if issue_type == IssueType.ERROR and ("/src/" in path or "/lib/" in path):
            return Criticality.HIGH
        if issue_type == IssueType.WARNING:
            return Criticality.MEDIUM
        if issue_type == IssueType.INFO or "/test/" in path:
            return Criticality.LOW
        return Criticality.MEDIUM

    @staticmethod
    def infer_business_domain(file_path: str) -> str | None:
        path = file_path.lower()

        if "security" in path or "auth" in path:
            return "security"
        if "payment" in path or "billing" in path:
            return "payment"
        if "user" in path or "profile" in path:
            return "user-management"
        if "api" in path or "service" in path:
            return "api"
        if "ui" in path or "component" in path:
            return "frontend"
        if "test" in path:
            return "testing"
        return None
