"""Multi-factor scoring for issue prioritization.

Combines four sub-scores into one bounded priority score:
- Severity: issue type blended with classification severity
- Impact: file location, component criticality, recent changes, team priorities
- Effort: estimated fix effort (inverted, so cheaper fixes score higher)
- Business value: criticality and team priorities

    final = clamp(weighted × context_multiplier × classification_bonus
                  + workflow_adjustment, 1, 10)

All sub-scores are on the 1-10 scale and every formula is pure, so scoring
the same inputs twice yields identical results. The base triage suggestion
is derived from the final score.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from triage_engine.schemas.classification import IssueCategory, IssueClassification, IssueSeverity
from triage_engine.schemas.common import clamp, round_half_up, score_to_priority
from triage_engine.schemas.issue import Criticality, Issue, IssueContext, IssueType
from triage_engine.schemas.prioritization import (
    PrioritizationConfiguration,
    ScoringFactors,
    TriageAction,
    TriageSuggestion,
)
from triage_engine.schemas.project import ProjectContext, SprintContext, Workflow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def goal_relevance(text: str, goals: list[str], *, empty: float) -> float:
    """Keyword overlap between ``text`` and sprint goals.

    Formula: min(1, keyword hits / number of goals)

    Args:
        text: Lower-cased context text to search
        goals: Sprint goals
        empty: Value returned when there are no goals

    Returns:
        Relevance 0-1
    """
    if not goals:
        return empty
    hits = 0
    for goal in goals:
        for keyword in goal.lower().split():
            if keyword in text:
                hits += 1
    return min(1.0, hits / len(goals))


@dataclass(frozen=True)
class ScoreResult:
    """Output of ScoringAlgorithm.score."""
    final_score: float
    factors: ScoringFactors
    suggestion: TriageSuggestion
    severity: float
    impact: float
    effort: float  # effort magnitude, higher = more work
    business_value: float


class ScoringAlgorithm:
    """Transparent scoring formulas for issue prioritization.

    Sub-scores and the final score are in the range [1, 10].
    """

    TYPE_SEVERITY: dict[IssueType, float] = {
        IssueType.ERROR: 8,
        IssueType.WARNING: 5,
        IssueType.INFO: 2,
    }
    CLASSIFICATION_SEVERITY: dict[IssueSeverity, float] = {
        IssueSeverity.CRITICAL: 10,
        IssueSeverity.HIGH: 8,
        IssueSeverity.MEDIUM: 5,
        IssueSeverity.LOW: 2,
    }
    CRITICALITY_IMPACT: dict[Criticality, float] = {
        Criticality.CRITICAL: 3,
        Criticality.HIGH: 2,
        Criticality.MEDIUM: 1,
        Criticality.LOW: 0,
    }
    CRITICALITY_VALUE: dict[Criticality, float] = {
        Criticality.CRITICAL: 9,
        Criticality.HIGH: 7,
        Criticality.MEDIUM: 5,
        Criticality.LOW: 3,
    }
    CATEGORY_EFFORT: dict[IssueCategory, float] = {
        IssueCategory.BUG: 4,
        IssueCategory.PERFORMANCE: 6,
        IssueCategory.SECURITY: 7,
        IssueCategory.MAINTAINABILITY: 5,
        IssueCategory.DOCUMENTATION: 2,
        IssueCategory.FEATURE: 8,
    }
    CATEGORY_BONUS: dict[IssueCategory, float] = {
        IssueCategory.SECURITY: 1.3,
        IssueCategory.PERFORMANCE: 1.2,
        IssueCategory.BUG: 1.1,
        IssueCategory.MAINTAINABILITY: 1.0,
        IssueCategory.DOCUMENTATION: 0.9,
        IssueCategory.FEATURE: 1.0,
    }
    # Hours multiplier for the triage effort estimate
    CATEGORY_HOURS: dict[IssueCategory, float] = {
        IssueCategory.BUG: 1.0,
        IssueCategory.PERFORMANCE: 1.5,
        IssueCategory.SECURITY: 2.0,
        IssueCategory.MAINTAINABILITY: 1.2,
        IssueCategory.DOCUMENTATION: 0.5,
        IssueCategory.FEATURE: 2.5,
    }
    WORKFLOW_ADJUSTMENT: dict[Workflow, float] = {
        Workflow.SCRUM: 0.0,
        Workflow.KANBAN: 0.1,
        Workflow.WATERFALL: -0.1,
        Workflow.CUSTOM: 0.0,
    }

    # Triage action thresholds, checked in order
    ACTION_THRESHOLDS: tuple[tuple[float, TriageAction], ...] = (
        (8.0, TriageAction.FIX_NOW),
        (6.0, TriageAction.SCHEDULE),
        (4.0, TriageAction.DELEGATE),
        (2.0, TriageAction.MONITOR),
    )

    def __init__(
        self,
        config: PrioritizationConfiguration | None = None,
        *,
        clock: Clock | None = None,
    ):
        self.config = config or PrioritizationConfiguration()
        self._clock = clock or utc_now

    def update_configuration(self, config: PrioritizationConfiguration) -> None:
        self.config = config

    # =========================================================================
    # Sub-scores
    # =========================================================================

    def severity_score(self, issue: Issue, classification: IssueClassification) -> float:
        """Blend tool severity with classified severity.

        Formula: type_severity × (1 - confidence) + class_severity × confidence
        """
        confidence = classification.confidence
        type_severity = self.TYPE_SEVERITY.get(issue.type, 5)
        class_severity = self.CLASSIFICATION_SEVERITY.get(classification.severity, 5)
        return clamp(type_severity * (1 - confidence) + class_severity * confidence, 1.0, 10.0)

    def impact_score(self, context: IssueContext, project_context: ProjectContext) -> float:
        """Estimate how far an issue's effects reach.

        Formula: 5 + path (src +1, test -1, config +2) + criticality (3/2/1/0)
                 + recent change 1 + domain share of team priorities (/2)
        """
        impact = 5.0
        if "/src/" in context.file_path:
            impact += 1
        if "/test/" in context.file_path:
            impact -= 1
        if "/config/" in context.file_path:
            impact += 2

        impact += self.CRITICALITY_IMPACT.get(context.criticality, 0)

        if context.recent_changes:
            impact += 1

        if context.business_domain:
            priorities = project_context.team_preferences.priorities
            domain = context.business_domain
            if "security" in domain:
                impact += priorities.security / 2
            if "performance" in domain:
                impact += priorities.performance / 2
            if "user" in domain:
                impact += priorities.features / 2

        return clamp(impact, 1.0, 10.0)

    def effort_magnitude(
        self,
        issue: Issue,
        context: IssueContext,
        classification: IssueClassification,
    ) -> float:
        """Estimated fix effort, higher means more work.

        Formula: ((5 + cc/5 + cog/10 + log10(loc)/2 - 2·fixable) + category_effort) / 2
        """
        metrics = context.complexity_metrics
        effort = 5.0
        effort += metrics.cyclomatic_complexity / 5
        effort += metrics.cognitive_complexity / 10
        effort += math.log10(max(metrics.lines_of_code, 1.0)) / 2
        if issue.fixable:
            effort -= 2
        effort = (effort + self.CATEGORY_EFFORT.get(classification.category, 5)) / 2
        return clamp(effort, 1.0, 10.0)

    @staticmethod
    def effort_score(effort_magnitude: float) -> float:
        """Inverse effort. Less effort means a higher score.

        Formula: clamp(10 / effort_magnitude, 1, 10)
        """
        return clamp(10.0 / max(effort_magnitude, 1.0), 1.0, 10.0)

    def business_value_score(self, context: IssueContext, project_context: ProjectContext) -> float:
        """Formula: mean(5, criticality_value), then averaged with the matching team priority."""
        value = (5 + self.CRITICALITY_VALUE.get(context.criticality, 5)) / 2

        priorities = project_context.team_preferences.priorities
        component = context.component_type
        if "security" in component:
            value = (value + priorities.security) / 2
        if "performance" in component:
            value = (value + priorities.performance) / 2
        if "ui" in component or "user" in component:
            value = (value + priorities.features) / 2

        return clamp(value, 1.0, 10.0)

    # =========================================================================
    # Multipliers
    # =========================================================================

    def context_multiplier(self, context: IssueContext, project_context: ProjectContext) -> float:
        """Formula: (1 + 0.3·goal_relevance) × load factor × 1.1 if recently changed.

        Load factor is 0.8 above 90% sprint utilization and 1.2 below 50%.
        Clamped to [0.5, 2.0].
        """
        multiplier = 1.0
        sprint = project_context.sprint
        if sprint is not None:
            text = (
                f"{context.file_path} {context.component_type} {context.business_domain or ''}"
            ).lower()
            multiplier += goal_relevance(text, sprint.goals, empty=0.5) * 0.3

            utilization = sprint.utilization
            if utilization > 0.9:
                multiplier *= 0.8
            elif utilization < 0.5:
                multiplier *= 1.2

        if context.recent_changes:
            multiplier *= 1.1

        return clamp(multiplier, 0.5, 2.0)

    def classification_bonus(self, classification: IssueClassification) -> float:
        """Formula: (1 + 0.2·confidence) × category_bonus, clamped to [0.8, 1.5]."""
        bonus = 1.0 + classification.confidence * 0.2
        bonus *= self.CATEGORY_BONUS.get(classification.category, 1.0)
        return clamp(bonus, 0.8, 1.5)

    def workflow_adjustment(self, project_context: ProjectContext) -> float:
        return self.WORKFLOW_ADJUSTMENT.get(project_context.workflow, 0.0)

    # =========================================================================
    # Score
    # =========================================================================

    def score(
        self,
        issue: Issue,
        context: IssueContext,
        classification: IssueClassification,
        project_context: ProjectContext,
    ) -> ScoreResult:
        """Score one issue and derive its base triage suggestion."""
        weights = self.config.weights

        severity = self.severity_score(issue, classification)
        impact = self.impact_score(context, project_context)
        effort = self.effort_magnitude(issue, context, classification)
        business_value = self.business_value_score(context, project_context)

        weighted = (
            severity * weights.severity
            + impact * weights.impact
            + self.effort_score(effort) * weights.effort
            + business_value * weights.business_value
        )

        multiplier = self.context_multiplier(context, project_context)
        bonus = self.classification_bonus(classification)
        adjustment = self.workflow_adjustment(project_context)

        final_score = round_half_up(clamp(weighted * multiplier * bonus + adjustment, 1.0, 10.0), 1)

        factors = ScoringFactors(
            severity_weight=weights.severity,
            impact_weight=weights.impact,
            effort_weight=weights.effort,
            business_value_weight=weights.business_value,
            context_multiplier=multiplier,
            classification_bonus=bonus,
            workflow_adjustment=adjustment,
        )
        suggestion = self.triage_suggestion(issue, context, classification, final_score, project_context)

        return ScoreResult(
            final_score=final_score,
            factors=factors,
            suggestion=suggestion,
            severity=severity,
            impact=impact,
            effort=effort,
            business_value=business_value,
        )

    # =========================================================================
    # Triage suggestion
    # =========================================================================

    @classmethod
    def action_for_score(cls, score: float) -> TriageAction:
        for threshold, action in cls.ACTION_THRESHOLDS:
            if score >= threshold:
                return action
        return TriageAction.IGNORE

    def triage_suggestion(
        self,
        issue: Issue,
        context: IssueContext,
        classification: IssueClassification,
        final_score: float,
        project_context: ProjectContext,
    ) -> TriageSuggestion:
        action = self.action_for_score(final_score)

        assignee = None
        if action in (TriageAction.DELEGATE, TriageAction.SCHEDULE):
            assignee = self.suggest_assignee(context)

        deadline = None
        if action == TriageAction.FIX_NOW or (action == TriageAction.SCHEDULE and final_score >= 7):
            deadline = self.deadline_for(final_score, project_context.sprint)

        return TriageSuggestion(
            action=action,
            priority=score_to_priority(final_score),
            estimated_effort=self.estimate_hours(issue, context, classification),
            assignee=assignee,
            deadline=deadline,
            reasoning=self.reasoning(issue, context, classification, final_score),
            confidence=self.suggestion_confidence(classification, context, final_score),
        )

    def estimate_hours(
        self,
        issue: Issue,
        context: IssueContext,
        classification: IssueClassification,
    ) -> float:
        """Formula: (1 + cc·0.5 + loc·0.01) × 0.7 if fixable × category multiplier.

        Minimum 0.5 hours, rounded to 0.1.
        """
        metrics = context.complexity_metrics
        hours = 1.0 + metrics.cyclomatic_complexity * 0.5 + metrics.lines_of_code * 0.01
        if issue.fixable:
            hours *= 0.7
        hours *= self.CATEGORY_HOURS.get(classification.category, 1.0)
        return max(0.5, round_half_up(hours, 1))

    @staticmethod
    def suggest_assignee(context: IssueContext) -> str:
        """Keyword-match component type and business domain to a team."""
        text = f"{context.component_type} {context.business_domain or ''}".lower()
        if "security" in text:
            return "security-team"
        if "performance" in text:
            return "performance-team"
        if "ui" in text:
            return "frontend-team"
        return "development-team"

    def deadline_for(self, final_score: float, sprint: SprintContext | None) -> datetime:
        """1, 3, 7 or 14 days out by score, never past the sprint end."""
        if final_score >= 9:
            days = 1
        elif final_score >= 7:
            days = 3
        elif final_score >= 5:
            days = 7
        else:
            days = 14

        deadline = self._clock() + timedelta(days=days)
        if sprint is not None and deadline > sprint.end_date:
            return sprint.end_date
        return deadline

    @staticmethod
    def reasoning(
        issue: Issue,
        context: IssueContext,
        classification: IssueClassification,
        final_score: float,
    ) -> str:
        reasons = []
        if final_score >= 8:
            reasons.append(f"High priority score ({final_score}/10)")
        if classification.severity == IssueSeverity.CRITICAL:
            reasons.append("Critical severity classification")
        if classification.category == IssueCategory.SECURITY:
            reasons.append("Security-related issue")
        if context.criticality == Criticality.CRITICAL:
            reasons.append("Located in critical component")
        if issue.fixable:
            reasons.append("Issue is automatically fixable")
        if context.recent_changes:
            reasons.append("Located in recently modified code")

        if not reasons:
            return f"Routine priority score ({final_score}/10)."
        return ". ".join(reasons) + "."

    @staticmethod
    def suggestion_confidence(
        classification: IssueClassification,
        context: IssueContext,
        final_score: float,
    ) -> float:
        """Formula: 0.6·confidence + 0.2 clear-cut score + 0.1 critical + 0.1 recent.

        Clamped to [0.3, 0.95].
        """
        confidence = classification.confidence * 0.6
        if final_score >= 8 or final_score <= 2:
            confidence += 0.2
        if context.criticality == Criticality.CRITICAL:
            confidence += 0.1
        if context.recent_changes:
            confidence += 0.1
        return clamp(confidence, 0.3, 0.95)
