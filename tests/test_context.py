"""Tests for IssueContextBuilder path heuristics."""

import pytest

from conftest import make_issue, make_project_context
from triage_engine.schemas.issue import ComplexityMetrics, Criticality, IssueType
from triage_engine.schemas.project import Workflow
from triage_engine.services.context import IssueContextBuilder, estimate_complexity


class TestComponentType:

    @pytest.mark.parametrize("file_path, expected", [
        ("/src/test/login.ts", "test"),
        ("/app/login.spec.ts", "test"),
        ("/src/config/db.ts", "configuration"),
        ("/src/components/Button.tsx", "ui-component"),
        ("/src/services/billing.ts", "service"),
        ("/lib/utils/strings.ts", "utility"),
        ("/src/core/engine.ts", "source-code"),
        ("/scripts/release.sh", "unknown"),
    ])
    def test_infers_component_type_from_path(self, file_path, expected):
        assert IssueContextBuilder.infer_component_type(file_path) == expected


class TestCriticality:

    def test_security_paths_are_critical(self):
        result = IssueContextBuilder.infer_criticality("/src/auth/session.ts", IssueType.INFO)
        assert result == Criticality.CRITICAL

    def test_errors_in_source_are_high(self):
        result = IssueContextBuilder.infer_criticality("/src/core/engine.ts", IssueType.ERROR)
        assert result == Criticality.HIGH

    def test_warnings_are_medium(self):
        result = IssueContextBuilder.infer_criticality("/src/core/engine.ts", IssueType.WARNING)
        assert result == Criticality.MEDIUM

    def test_info_is_low(self):
        result = IssueContextBuilder.infer_criticality("/docs/readme.md", IssueType.INFO)
        assert result == Criticality.LOW


class TestBusinessDomain:

    @pytest.mark.parametrize("file_path, expected", [
        ("/src/security/auth.ts", "security"),
        ("/src/billing/invoice.ts", "payment"),
        ("/src/profile/page.ts", "user-management"),
        ("/src/api/routes.ts", "api"),
        ("/src/components/Nav.tsx", "frontend"),
        ("/tests/helpers.ts", "testing"),
        ("/docs/readme.md", None),
    ])
    def test_infers_domain(self, file_path, expected):
        assert IssueContextBuilder.infer_business_domain(file_path) == expected


class TestBuild:

    def test_build_uses_project_and_path(self):
        builder = IssueContextBuilder()
        issue = make_issue(type=IssueType.ERROR, file_path="/src/security/auth.ts")

        context = builder.build(issue, make_project_context(Workflow.KANBAN))

        assert context.file_path == "/src/security/auth.ts"
        assert context.project_type == "fullstack"
        assert context.team_workflow == "kanban"
        assert context.criticality == Criticality.CRITICAL
        assert context.business_domain == "security"
        assert context.recent_changes is False
        assert context.complexity_metrics == estimate_complexity("/src/security/auth.ts")

    def test_providers_are_pluggable(self):
        metrics = ComplexityMetrics(cyclomatic_complexity=42)
        builder = IssueContextBuilder(
            recent_changes=lambda path: path.endswith(".ts"),
            complexity=lambda path: metrics,
        )

        context = builder.build(make_issue(), make_project_context())

        assert context.recent_changes is True
        assert context.complexity_metrics.cyclomatic_complexity == 42

    def test_estimated_complexity_by_path(self):
        assert estimate_complexity("/src/test/a.ts").lines_of_code == 50
        assert estimate_complexity("/src/services/a.ts").lines_of_code == 200
        assert estimate_complexity("/src/core/a.ts").lines_of_code == 100
