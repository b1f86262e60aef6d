"""Feature extraction for issue classification.

Turns an issue and its IssueContext into six normalized features in
[0, 1]. Every formula is a clamped weighted combination of context
fields so the output is deterministic and side-effect free.
"""

import math

from triage_engine.schemas.classification import ClassificationFeatures
from triage_engine.schemas.common import clamp
from triage_engine.schemas.issue import Criticality, Issue, IssueContext, IssueType


class FeatureExtractor:
    """Derive ClassificationFeatures from issue context."""

    # codeComplexity normalization caps
    CYCLOMATIC_CAP = 20.0
    COGNITIVE_CAP = 15.0
    LOC_LOG_CAP = math.log10(1000)
    DEPENDENCIES_CAP = 50.0

    TEAM_IMPACT: dict[Criticality, float] = {
        Criticality.CRITICAL: 1.0,
        Criticality.HIGH: 0.8,
        Criticality.MEDIUM: 0.5,
        Criticality.LOW: 0.2,
    }
    CRITICALITY_ADDEND: dict[Criticality, float] = {
        Criticality.CRITICAL: 0.5,
        Criticality.HIGH: 0.3,
        Criticality.MEDIUM: 0.1,
        Criticality.LOW: 0.0,
    }

    USER_FACING_PATHS = ("/src/", "/components/", "/views/", "/pages/", "/ui/")
    USER_FACING_TYPES = ("ui", "component", "view", "page", "frontend", "client")
    CRITICAL_DOMAINS = ("security", "payment", "auth", "api", "core")
    DEBT_PATHS = ("/legacy/", "/deprecated/", "/temp/", "/old/")

    def extract(self, issue: Issue, context: IssueContext) -> ClassificationFeatures:
        return ClassificationFeatures(
            code_complexity=self._code_complexity(context),
            change_frequency=1.0 if context.recent_changes else 0.1,
            team_impact=self.TEAM_IMPACT.get(context.criticality, 0.5),
            user_facing_impact=self._user_facing_impact(issue, context),
            business_criticality=self._business_criticality(context),
            technical_debt_impact=self._technical_debt_impact(context),
        )

    def _code_complexity(self, context: IssueContext) -> float:
        """Weighted complexity.

        Formula: 0.3·min(1, cc/20) + 0.3·min(1, cog/15)
                 + 0.2·min(1, log10(loc+1)/3) + 0.2·min(1, deps/50)
        """
        metrics = context.complexity_metrics
        cyclomatic = min(1.0, metrics.cyclomatic_complexity / self.CYCLOMATIC_CAP)
        cognitive = min(1.0, metrics.cognitive_complexity / self.COGNITIVE_CAP)
        loc = min(1.0, math.log10(metrics.lines_of_code + 1) / self.LOC_LOG_CAP)
        dependencies = min(1.0, metrics.dependencies / self.DEPENDENCIES_CAP)

        return clamp(cyclomatic * 0.3 + cognitive * 0.3 + loc * 0.2 + dependencies * 0.2, 0.0, 1.0)

    def _user_facing_impact(self, issue: Issue, context: IssueContext) -> float:
        impact = 0.5
        if any(path in context.file_path for path in self.USER_FACING_PATHS):
            impact += 0.3
        component_type = context.component_type.lower()
        if any(kind in component_type for kind in self.USER_FACING_TYPES):
            impact += 0.2
        if issue.type == IssueType.ERROR:
            impact += 0.2
        return min(1.0, impact)

    def _business_criticality(self, context: IssueContext) -> float:
        criticality = 0.5
        if context.business_domain:
            domain = context.business_domain.lower()
            if any(critical in domain for critical in self.CRITICAL_DOMAINS):
                criticality += 0.3
        criticality += self.CRITICALITY_ADDEND.get(context.criticality, 0.1)
        return min(1.0, criticality)

    def _technical_debt_impact(self, context: IssueContext) -> float:
        metrics = context.complexity_metrics
        debt = 0.0
        if metrics.cyclomatic_complexity > 10:
            debt += 0.3
        if metrics.cognitive_complexity > 15:
            debt += 0.3
        if metrics.lines_of_code > 500:
            debt += 0.2
        if any(path in context.file_path for path in self.DEBT_PATHS):
            debt += 0.2
        return min(1.0, debt)
