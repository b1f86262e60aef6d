"""Team workflow integration.

Adapts scores and triage suggestions to the team's process model:
- scrum: sprint-goal alignment bonus, capacity discount, sprint deadlines
- kanban: quick-win bonus, pull-based scheduling, no fixed deadlines
- waterfall: phase bonus, conservative fix-now, longer deadlines
- custom: linear adjustment from team category priorities

Every method returns new records; inputs are never mutated.
"""

import logging
import math
from collections.abc import Sequence
from datetime import timedelta

from triage_engine.schemas.classification import IssueCategory
from triage_engine.schemas.common import clamp, round_half_up, score_to_priority
from triage_engine.schemas.prioritization import IssuePrioritization, TriageAction, TriageSuggestion
from triage_engine.schemas.project import ProjectContext, SprintContext, Workflow
from triage_engine.schemas.triage import WorkflowAnalysis, WorkflowMetrics
from triage_engine.services.scoring import Clock, goal_relevance, utc_now

logger = logging.getLogger(__name__)

SPRINT_GOAL_BONUS = 2.0
OVERLOAD_UTILIZATION = 0.9
OVERLOAD_DISCOUNT = 0.8

# Waterfall phase keywords, checked in order
PHASE_BONUS: tuple[tuple[tuple[str, ...], float], ...] = (
    (("design", "spec"), 2.0),
    (("implementation", "src"), 1.0),
    (("test", "qa"), 1.5),
    (("deploy", "release"), 2.0),
)


class WorkflowIntegration:
    """Workflow-aware adjustment of prioritizations and suggestions."""

    def __init__(self, *, clock: Clock | None = None):
        self._clock = clock or utc_now

    # =========================================================================
    # Score adaptation
    # =========================================================================

    def adapt(
        self,
        prioritizations: Sequence[IssuePrioritization],
        project_context: ProjectContext,
    ) -> list[IssuePrioritization]:
        """Adjust final scores for the workflow, then the triage suggestions."""
        return [self.adapt_one(p, project_context) for p in prioritizations]

    def adapt_one(self, prioritization: IssuePrioritization, project_context: ProjectContext) -> IssuePrioritization:
        workflow = project_context.workflow
        sprint = project_context.sprint

        if workflow == Workflow.SCRUM and sprint is None:
            return prioritization

        score = prioritization.final_score
        if workflow == Workflow.SCRUM:
            bonus = self.goal_alignment(prioritization, sprint) * SPRINT_GOAL_BONUS
            score = min(10.0, score + bonus)
            if sprint.utilization > OVERLOAD_UTILIZATION and score < 6:
                score *= OVERLOAD_DISCOUNT
        elif workflow == Workflow.KANBAN:
            bonus = max(0.0, (8 - prioritization.effort) * 0.3)
            score = min(10.0, score + bonus)
        elif workflow == Workflow.WATERFALL:
            bonus = self.phase_adjustment(prioritization.context.file_path)
            score = min(10.0, score + bonus)
        else:
            bonus = self.custom_adjustment(prioritization, project_context)
            score = min(10.0, score + bonus)

        final_score = round_half_up(clamp(score, 1.0, 10.0), 1)
        factors = prioritization.scoring_factors.model_copy(update={
            "workflow_adjustment": prioritization.scoring_factors.workflow_adjustment + bonus,
        })
        suggestion = prioritization.triage_suggestion.model_copy(update={
            "priority": score_to_priority(final_score),
        })
        suggestion = self.adjust_suggestion(suggestion, project_context)

        return prioritization.model_copy(update={
            "final_score": final_score,
            "scoring_factors": factors,
            "triage_suggestion": suggestion,
        })

    @staticmethod
    def goal_alignment(prioritization: IssuePrioritization, sprint: SprintContext) -> float:
        """Keyword overlap between the issue and sprint goals, 0-1."""
        context = prioritization.context
        text = (
            f"{context.file_path} {context.component_type} {context.business_domain or ''} "
            f"{prioritization.classification.category.value}"
        ).lower()
        return goal_relevance(text, sprint.goals, empty=0.0)

    @staticmethod
    def phase_adjustment(file_path: str) -> float:
        path = file_path.lower()
        for keywords, bonus in PHASE_BONUS:
            if any(keyword in path for keyword in keywords):
                return bonus
        return 0.0

    @staticmethod
    def custom_adjustment(prioritization: IssuePrioritization, project_context: ProjectContext) -> float:
        """Formula: (team_priority - 5) × 0.2 for the issue's category."""
        priorities = project_context.team_preferences.priorities
        category = prioritization.classification.category
        if category == IssueCategory.PERFORMANCE:
            return (priorities.performance - 5) * 0.2
        if category == IssueCategory.SECURITY:
            return (priorities.security - 5) * 0.2
        if category == IssueCategory.MAINTAINABILITY:
            return (priorities.maintainability - 5) * 0.2
        if category in (IssueCategory.FEATURE, IssueCategory.DOCUMENTATION):
            return (priorities.features - 5) * 0.2
        return 0.0

    # =========================================================================
    # Suggestion adjustment
    # =========================================================================

    def adjust_suggestions(
        self,
        suggestions: Sequence[TriageSuggestion],
        project_context: ProjectContext,
    ) -> list[TriageSuggestion]:
        return [self.adjust_suggestion(s, project_context) for s in suggestions]

    def adjust_suggestion(self, suggestion: TriageSuggestion, project_context: ProjectContext) -> TriageSuggestion:
        workflow = project_context.workflow
        update: dict = {}

        if workflow == Workflow.SCRUM:
            sprint = project_context.sprint
            if sprint is None:
                return suggestion
            now = self._clock()
            if suggestion.deadline is not None:
                update["deadline"] = min(suggestion.deadline, sprint.end_date)
            elif suggestion.action in (TriageAction.FIX_NOW, TriageAction.SCHEDULE):
                days_left = math.ceil((sprint.end_date - now) / timedelta(days=1))
                if days_left > 0:
                    update["deadline"] = now + timedelta(days=min(days_left, 7))
            update["reasoning"] = f"{suggestion.reasoning} Consideration for current sprint goals."

        elif workflow == Workflow.KANBAN:
            if suggestion.action == TriageAction.FIX_NOW and suggestion.priority < 8:
                update["action"] = TriageAction.SCHEDULE
            update["deadline"] = None
            update["reasoning"] = f"{suggestion.reasoning} Optimized for continuous flow."

        elif workflow == Workflow.WATERFALL:
            if suggestion.action == TriageAction.FIX_NOW and suggestion.priority < 9:
                update["action"] = TriageAction.SCHEDULE
            if suggestion.deadline is not None:
                update["deadline"] = suggestion.deadline + timedelta(days=7)
            update["reasoning"] = f"{suggestion.reasoning} Aligned with phase-based development approach."

        if not update:
            return suggestion
        return suggestion.model_copy(update=update)

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_workflow_patterns(self, project_context: ProjectContext) -> WorkflowAnalysis:
        """Summarize workflow efficiency, bottlenecks and recommendations."""
        history = project_context.historical_data
        performance = history.performance
        efficiency = self.workflow_efficiency(project_context)

        bottlenecks = []
        if performance.bug_fix_time > 30:
            bottlenecks.append("Bug resolution time is high")
        if performance.review_time > 10:
            bottlenecks.append("Code review process is slow")
        if performance.feature_implementation_time > 50:
            bottlenecks.append("Feature implementation is taking longer than expected")
        if history.bug_rate > 0.3:
            bottlenecks.append("High bug rate affecting productivity")

        recommendations = []
        if efficiency < 0.6:
            recommendations.append("Consider workflow optimization - current efficiency is below 60%")
        if performance.review_time > 10:
            recommendations.append("Implement code review automation or assign dedicated reviewers")
        if project_context.workflow == Workflow.SCRUM and project_context.sprint is None:
            recommendations.append("Set up sprint planning to improve prioritization")
        if project_context.workflow == Workflow.KANBAN and history.team_velocity < 5:
            recommendations.append("Consider breaking down larger tasks to improve flow")

        return WorkflowAnalysis(
            workflow=project_context.workflow.value,
            efficiency=efficiency,
            bottlenecks=bottlenecks,
            recommendations=recommendations,
            metrics=WorkflowMetrics(
                average_resolution_time=history.average_resolution_time,
                team_velocity=history.team_velocity,
                bug_rate=history.bug_rate,
                efficiency=efficiency,
                throughput=history.team_velocity * (1 - history.bug_rate),
                quality_score=1 - history.bug_rate,
            ),
        )

    @staticmethod
    def workflow_efficiency(project_context: ProjectContext) -> float:
        """Formula: mean(min(1, velocity/20), max(0, 1 - bug_fix_time/40))."""
        history = project_context.historical_data
        velocity_score = min(1.0, history.team_velocity / 20)
        speed_score = max(0.0, 1.0 - history.performance.bug_fix_time / 40)
        return (velocity_score + speed_score) / 2
