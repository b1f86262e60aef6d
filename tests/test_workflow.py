"""Tests for WorkflowIntegration."""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, fixed_clock, make_project_context, make_sprint
from triage_engine.schemas.classification import ClassificationFeatures, IssueCategory, IssueClassification
from triage_engine.schemas.issue import IssueContext
from triage_engine.schemas.prioritization import (
    IssuePrioritization,
    PrioritizationMetadata,
    ScoringFactors,
    TriageAction,
    TriageSuggestion,
)
from triage_engine.schemas.project import HistoricalData, PerformanceBreakdown, Workflow
from triage_engine.services.workflow import WorkflowIntegration


def record(
    final_score: float = 5.0,
    *,
    effort: float = 5.0,
    file_path: str = "/src/core/engine.ts",
    category: IssueCategory = IssueCategory.BUG,
    action: TriageAction = TriageAction.DELEGATE,
    deadline=None,
) -> IssuePrioritization:
    return IssuePrioritization(
        id="pri-1",
        issue_id="issue-1",
        severity=5,
        impact=5,
        effort=effort,
        business_value=5,
        final_score=final_score,
        context=IssueContext(file_path=file_path, component_type="source-code"),
        classification=IssueClassification(
            category=category, severity="medium", confidence=0.7, features=ClassificationFeatures()
        ),
        triage_suggestion=TriageSuggestion(
            action=action, priority=round(final_score), estimated_effort=2, deadline=deadline,
            reasoning="Base.",
        ),
        scoring_factors=ScoringFactors(
            severity_weight=0.3, impact_weight=0.25, effort_weight=0.2, business_value_weight=0.25,
            workflow_adjustment=0.1,
        ),
        metadata=PrioritizationMetadata(processed_at=FIXED_NOW, algorithm="hybrid", processing_time=1),
    )


def suggestion(action: TriageAction, priority: int, deadline=None) -> TriageSuggestion:
    return TriageSuggestion(
        action=action, priority=priority, estimated_effort=3, deadline=deadline, reasoning="Base."
    )


@pytest.fixture
def workflow():
    return WorkflowIntegration(clock=fixed_clock)


class TestAdapt:

    def test_scrum_without_sprint_is_unchanged(self, workflow):
        original = record()
        [adapted] = workflow.adapt([original], make_project_context(Workflow.SCRUM))
        assert adapted is original

    def test_scrum_goal_alignment_bonus(self, workflow):
        sprint = make_sprint(goals=["core engine"])
        original = record(5.0)

        adapted = workflow.adapt_one(original, make_project_context(sprint=sprint))

        assert adapted.final_score == 7.0
        assert adapted.triage_suggestion.priority == 7
        assert adapted.scoring_factors.workflow_adjustment == pytest.approx(2.1)
        assert original.final_score == 5.0

    def test_scrum_overload_discount(self, workflow):
        sprint = make_sprint(current_load=95, capacity=100)
        adapted = workflow.adapt_one(record(5.0), make_project_context(sprint=sprint))
        assert adapted.final_score == 4.0

    def test_kanban_rewards_low_effort(self, workflow):
        adapted = workflow.adapt_one(record(5.0, effort=2.0), make_project_context(Workflow.KANBAN))
        # (8 - 2) * 0.3
        assert adapted.final_score == pytest.approx(6.8)

    @pytest.mark.parametrize("file_path, expected", [
        ("/design/spec.md", 7.0),
        ("/src/implementation/a.ts", 6.0),
        ("/qa/test_plan.md", 6.5),
        ("/release/notes.md", 7.0),
        ("/misc/a.txt", 5.0),
    ])
    def test_waterfall_phase_bonus(self, workflow, file_path, expected):
        adapted = workflow.adapt_one(
            record(5.0, file_path=file_path), make_project_context(Workflow.WATERFALL)
        )
        assert adapted.final_score == pytest.approx(expected)

    def test_custom_uses_team_category_priority(self, workflow):
        context = make_project_context(Workflow.CUSTOM, security=9)
        adapted = workflow.adapt_one(record(5.0, category=IssueCategory.SECURITY), context)
        # (9 - 5) * 0.2
        assert adapted.final_score == pytest.approx(5.8)

    def test_scores_stay_capped(self, workflow):
        sprint = make_sprint(goals=["core"])
        adapted = workflow.adapt_one(record(9.5), make_project_context(sprint=sprint))
        assert adapted.final_score == 10.0


class TestAdjustSuggestions:

    def test_scrum_clamps_deadlines_to_sprint_end(self, workflow):
        sprint = make_sprint(days_left=3)
        late = suggestion(TriageAction.SCHEDULE, 6, deadline=FIXED_NOW + timedelta(days=10))

        [adjusted] = workflow.adjust_suggestions([late], make_project_context(sprint=sprint))

        assert adjusted.deadline == sprint.end_date
        assert adjusted.reasoning.endswith("Consideration for current sprint goals.")

    def test_scrum_sets_deadline_for_urgent_work(self, workflow):
        sprint = make_sprint(days_left=12)
        adjusted = workflow.adjust_suggestion(
            suggestion(TriageAction.FIX_NOW, 9), make_project_context(sprint=sprint)
        )
        assert adjusted.deadline == FIXED_NOW + timedelta(days=7)

    def test_kanban_downgrades_and_strips_deadlines(self, workflow):
        context = make_project_context(Workflow.KANBAN)
        urgent = suggestion(TriageAction.FIX_NOW, 7, deadline=FIXED_NOW)
        critical = suggestion(TriageAction.FIX_NOW, 8, deadline=FIXED_NOW)

        downgraded, kept = workflow.adjust_suggestions([urgent, critical], context)

        assert downgraded.action == TriageAction.SCHEDULE
        assert kept.action == TriageAction.FIX_NOW
        assert downgraded.deadline is None and kept.deadline is None

    def test_waterfall_is_conservative(self, workflow):
        context = make_project_context(Workflow.WATERFALL)
        adjusted = workflow.adjust_suggestion(
            suggestion(TriageAction.FIX_NOW, 8, deadline=FIXED_NOW), context
        )
        assert adjusted.action == TriageAction.SCHEDULE
        assert adjusted.deadline == FIXED_NOW + timedelta(days=7)

    def test_custom_is_unchanged(self, workflow):
        original = suggestion(TriageAction.FIX_NOW, 9)
        assert workflow.adjust_suggestion(original, make_project_context(Workflow.CUSTOM)) is original


class TestAnalysis:

    def test_bottlenecks_and_recommendations(self, workflow):
        context = make_project_context(Workflow.SCRUM)
        context.historical_data = HistoricalData(
            average_resolution_time=30,
            team_velocity=10,
            bug_rate=0.4,
            performance=PerformanceBreakdown(bug_fix_time=32, review_time=12),
        )

        analysis = workflow.analyze_workflow_patterns(context)

        # mean(10/20, 1 - 32/40)
        assert analysis.efficiency == pytest.approx(0.35)
        assert "Bug resolution time is high" in analysis.bottlenecks
        assert "Code review process is slow" in analysis.bottlenecks
        assert "High bug rate affecting productivity" in analysis.bottlenecks
        assert "Set up sprint planning to improve prioritization" in analysis.recommendations
        assert analysis.metrics.throughput == pytest.approx(6.0)
        assert analysis.metrics.quality_score == pytest.approx(0.6)
