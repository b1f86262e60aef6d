"""Batch-level triage optimization.

After per-issue scoring, suggestions for a whole batch are tuned in four
passes, in this order:
1. Team capacity: soften mid-priority urgency when the sprint is
   overloaded, raise it when there is slack
2. Workload balancing across team buckets
3. Deadline alignment with the sprint end
4. Risk escalation for high-priority security items and review notes for
   low-confidence suggestions

Also reports on suggestion effectiveness and proposes triage rules from
recurring patterns in prioritization history.
"""

import logging
import math
from collections import Counter
from collections.abc import Sequence
from datetime import timedelta

from triage_engine.schemas.classification import IssueCategory, IssueSeverity
from triage_engine.schemas.prioritization import IssuePrioritization, TriageAction, TriageSuggestion
from triage_engine.schemas.project import ProjectContext
from triage_engine.schemas.rule import (
    CustomAction,
    CustomActionParameters,
    RuleCondition,
    RuleOperator,
    TriageRuleRecommendation,
)
from triage_engine.schemas.triage import TriageEffectivenessReport, TriageOutcome
from triage_engine.services.scoring import Clock, utc_now
from triage_engine.services.workflow import WorkflowIntegration

logger = logging.getLogger(__name__)

TEAM_BUCKETS = ("frontend-team", "backend-team", "qa-team", "security-team")
WORKLOAD_THRESHOLD_HOURS = 10.0

HIGH_UTILIZATION = 0.9
LOW_UTILIZATION = 0.5
URGENT_DAYS_LEFT = 3
LOW_CONFIDENCE = 0.5
MIN_PATTERN_CONFIDENCE = 0.7

CONFIDENCE_HIGH = "high (>0.8)"
CONFIDENCE_MEDIUM = "medium (0.5-0.8)"
CONFIDENCE_LOW = "low (<0.5)"


class TriageEngine:
    """Optimize and evaluate triage suggestions for a batch."""

    def __init__(
        self,
        workflow: WorkflowIntegration | None = None,
        *,
        clock: Clock | None = None,
    ):
        self._clock = clock or utc_now
        self.workflow = workflow or WorkflowIntegration(clock=self._clock)

    def generate_triage_suggestions(
        self,
        prioritizations: Sequence[IssuePrioritization],
        project_context: ProjectContext,
        *,
        workflow_adapted: bool = False,
    ) -> list[TriageSuggestion]:
        """Workflow-adjust and batch-optimize the suggestions of scored issues.

        Expects base records from scoring and rules. Records that already
        went through ``WorkflowIntegration.adapt`` (everything
        ``PrioritizationEngine`` returns) must pass ``workflow_adapted=True``,
        otherwise deadlines and workflow reasoning are applied twice.
        """
        suggestions = [p.triage_suggestion for p in prioritizations]
        if not workflow_adapted:
            suggestions = self.workflow.adjust_suggestions(suggestions, project_context)
        categories = [p.classification.category for p in prioritizations]
        return self.optimize_suggestions(suggestions, project_context, categories=categories)

    def optimize_suggestions(
        self,
        suggestions: Sequence[TriageSuggestion],
        project_context: ProjectContext,
        *,
        categories: Sequence[IssueCategory] | None = None,
    ) -> list[TriageSuggestion]:
        """Apply the capacity, workload, deadline and risk passes.

        Args:
            suggestions: Suggestions for one batch, in batch order
            project_context: Team preferences and sprint
            categories: Classification category per suggestion. Without it,
                security items are recognized from their reasoning text.

        Returns:
            New suggestions in the same order
        """
        if categories is not None and len(categories) != len(suggestions):
            raise ValueError("categories must align with suggestions")

        optimized = self._adjust_for_capacity(list(suggestions), project_context)
        optimized = self._balance_workload(optimized)
        optimized = self._align_deadlines(optimized, project_context)
        optimized = self._apply_risk_adjustments(optimized, categories)
        return optimized

    def _adjust_for_capacity(
        self, suggestions: list[TriageSuggestion], project_context: ProjectContext
    ) -> list[TriageSuggestion]:
        sprint = project_context.sprint
        if sprint is None:
            return suggestions

        utilization = sprint.utilization
        result = []
        for suggestion in suggestions:
            action = suggestion.action
            if utilization > HIGH_UTILIZATION and 5 <= suggestion.priority <= 7:
                if action == TriageAction.FIX_NOW:
                    action = TriageAction.SCHEDULE
                elif action == TriageAction.SCHEDULE:
                    action = TriageAction.DELEGATE
            elif utilization < LOW_UTILIZATION and suggestion.priority >= 6:
                if action == TriageAction.DELEGATE:
                    action = TriageAction.SCHEDULE

            if action != suggestion.action:
                suggestion = suggestion.model_copy(update={"action": action})
            result.append(suggestion)
        return result

    @staticmethod
    def _balance_workload(suggestions: list[TriageSuggestion]) -> list[TriageSuggestion]:
        """Reassign work away from buckets already above the hour threshold."""
        workload = dict.fromkeys(TEAM_BUCKETS, 0.0)
        result = []
        for suggestion in suggestions:
            assignee = suggestion.assignee
            if assignee in workload:
                if workload[assignee] > WORKLOAD_THRESHOLD_HOURS:
                    alternatives = [team for team in TEAM_BUCKETS if team != assignee]
                    new_assignee = min(alternatives, key=lambda team: workload[team])
                    logger.debug(
                        f"Reassigning from {assignee} ({workload[assignee]:.1f}h) to {new_assignee}"
                    )
                    suggestion = suggestion.model_copy(update={"assignee": new_assignee})
                    assignee = new_assignee
                workload[assignee] += suggestion.estimated_effort
            result.append(suggestion)
        return result

    def _align_deadlines(
        self, suggestions: list[TriageSuggestion], project_context: ProjectContext
    ) -> list[TriageSuggestion]:
        sprint = project_context.sprint
        if sprint is None:
            return suggestions

        days_left = math.ceil((sprint.end_date - self._clock()) / timedelta(days=1))
        result = []
        for suggestion in suggestions:
            update: dict = {}
            if suggestion.deadline is not None and suggestion.deadline > sprint.end_date:
                update["deadline"] = sprint.end_date
            if days_left <= URGENT_DAYS_LEFT and suggestion.priority >= 7:
                update["reasoning"] = f"{suggestion.reasoning} Urgent due to approaching sprint deadline."
            result.append(suggestion.model_copy(update=update) if update else suggestion)
        return result

    @staticmethod
    def _apply_risk_adjustments(
        suggestions: list[TriageSuggestion],
        categories: Sequence[IssueCategory] | None,
    ) -> list[TriageSuggestion]:
        result = []
        for index, suggestion in enumerate(suggestions):
            if categories is not None:
                is_security = categories[index] == IssueCategory.SECURITY
            else:
                is_security = "security" in suggestion.reasoning.lower()

            update: dict = {}
            confidence = suggestion.confidence
            if suggestion.priority >= 8 and is_security:
                update["action"] = TriageAction.FIX_NOW
                confidence = min(0.95, confidence + 0.2)
                update["confidence"] = confidence
            if confidence < LOW_CONFIDENCE:
                update["reasoning"] = f"{suggestion.reasoning} Low confidence - manual review recommended."

            result.append(suggestion.model_copy(update=update) if update else suggestion)
        return result

    # =========================================================================
    # Effectiveness
    # =========================================================================

    def track_triage_effectiveness(
        self,
        suggestions: Sequence[TriageSuggestion],
        outcomes: Sequence[TriageOutcome],
    ) -> TriageEffectivenessReport:
        """Tally outcomes against suggestions, paired by position."""
        actions: Counter[str] = Counter()
        accuracies = []
        for _suggestion, outcome in zip(suggestions, outcomes):
            actions[outcome.action] += 1
            if outcome.accuracy is not None:
                accuracies.append(outcome.accuracy)

        report = TriageEffectivenessReport(
            total_suggestions=len(suggestions),
            accepted_count=actions["accepted"],
            rejected_count=actions["rejected"],
            modified_count=actions["modified"],
            average_accuracy=sum(accuracies) / len(accuracies) if accuracies else 0.0,
            confidence_distribution=self._confidence_distribution(suggestions),
            action_distribution=dict(Counter(s.action.value for s in suggestions)),
        )
        report.recommendations = self._effectiveness_recommendations(report)
        return report

    @staticmethod
    def _confidence_distribution(suggestions: Sequence[TriageSuggestion]) -> dict[str, int]:
        distribution = {CONFIDENCE_HIGH: 0, CONFIDENCE_MEDIUM: 0, CONFIDENCE_LOW: 0}
        for suggestion in suggestions:
            if suggestion.confidence > 0.8:
                distribution[CONFIDENCE_HIGH] += 1
            elif suggestion.confidence >= 0.5:
                distribution[CONFIDENCE_MEDIUM] += 1
            else:
                distribution[CONFIDENCE_LOW] += 1
        return distribution

    @staticmethod
    def _effectiveness_recommendations(report: TriageEffectivenessReport) -> list[str]:
        recommendations = []
        if report.average_accuracy < 0.7:
            recommendations.append(
                "Consider improving ML model accuracy - current accuracy is below 70%"
            )
        if report.total_suggestions == 0:
            return recommendations

        if report.rejected_count / report.total_suggestions > 0.3:
            recommendations.append(
                "High rejection rate - review triage criteria and team preferences"
            )
        low = report.confidence_distribution.get(CONFIDENCE_LOW, 0)
        if low / report.total_suggestions > 0.2:
            recommendations.append(
                "Many low-confidence suggestions - gather more training data "
                "or adjust confidence thresholds"
            )
        return recommendations

    # =========================================================================
    # Rule recommendations
    # =========================================================================

    def generate_triage_rules(
        self,
        history: Sequence[IssuePrioritization],
        project_context: ProjectContext,
    ) -> list[TriageRuleRecommendation]:
        """Propose triage rules from recurring category and severity patterns."""
        if not history:
            return []

        patterns = (
            # (name, condition field, value, matching records, action, confidence)
            ("security", "classification.category", IssueCategory.SECURITY.value,
             [p for p in history if p.classification.category == IssueCategory.SECURITY],
             TriageAction.FIX_NOW, 0.8),
            ("performance", "classification.category", IssueCategory.PERFORMANCE.value,
             [p for p in history if p.classification.category == IssueCategory.PERFORMANCE],
             TriageAction.SCHEDULE, 0.7),
            ("critical", "classification.severity", IssueSeverity.CRITICAL.value,
             [p for p in history if p.classification.severity == IssueSeverity.CRITICAL],
             TriageAction.FIX_NOW, 0.9),
        )

        recommendations = []
        for name, field, value, matched, action, confidence in patterns:
            if not matched or confidence < MIN_PATTERN_CONFIDENCE:
                continue
            frequency = len(matched) / len(history)
            average_score = sum(p.final_score for p in matched) / len(matched)
            recommendations.append(TriageRuleRecommendation(
                name=f"Auto-generated {name} rule",
                description=f"Rule for {name} issues based on historical patterns",
                conditions=[RuleCondition(
                    field=field,
                    operator=RuleOperator.EQUALS,
                    value=value,
                    case_sensitive=False,
                )],
                actions=[CustomAction(parameters=CustomActionParameters(
                    triage_action=action,
                    reasoning=(
                        f"Auto-suggested based on {frequency * 100:.1f}% frequency "
                        f"and average score of {average_score:.1f}"
                    ),
                ))],
                confidence=confidence,
            ))

        logger.info(
            f"Generated {len(recommendations)} triage rule recommendations "
            f"from {len(history)} records ({project_context.workflow.value} workflow)"
        )
        return recommendations
