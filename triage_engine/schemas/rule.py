"""Prioritization rule schemas.

Rule actions are a closed union tagged by ``type``; each variant carries
its own typed ``parameters`` block so the JSON form stays
``{"type": ..., "parameters": {...}}``.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, field_validator

from triage_engine.schemas.common import BaseSchema, FrozenSchema
from triage_engine.schemas.issue import Issue
from triage_engine.schemas.prioritization import IssuePrioritization, TriageAction


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConflictResolution(str, Enum):
    """Policy for combining several matching rules."""
    FIRST_MATCH = "first-match"
    HIGHEST_WEIGHT = "highest-weight"
    COMBINE = "combine"


class RuleOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"


class RuleCondition(BaseSchema):
    """Single predicate on a dotted field path. All conditions of a rule must hold."""

    field: str
    operator: RuleOperator
    value: bool | int | float | str
    case_sensitive: bool = True


# =============================================================================
# Actions
# =============================================================================


class AdjustScoreParameters(BaseSchema):
    adjustment: float = 0.0


class SetPriorityParameters(BaseSchema):
    priority: float = 5.0


class SkipTriageParameters(BaseSchema):
    pass


class CustomActionParameters(BaseSchema):
    triage_action: TriageAction | None = None
    reasoning: str | None = None
    assignee: str | None = None


class AdjustScoreAction(BaseSchema):
    """Add ``adjustment * rule.weight`` to the final score."""

    type: Literal["adjustScore"] = "adjustScore"
    parameters: AdjustScoreParameters = AdjustScoreParameters()


class SetPriorityAction(BaseSchema):
    """Overwrite the final score, ignoring the rule weight."""

    type: Literal["setPriority"] = "setPriority"
    parameters: SetPriorityParameters = SetPriorityParameters()


class SkipTriageAction(BaseSchema):
    """Force the triage action to ``ignore``."""

    type: Literal["skipTriage"] = "skipTriage"
    parameters: SkipTriageParameters = SkipTriageParameters()


class CustomAction(BaseSchema):
    """Overwrite selected triage suggestion fields."""

    type: Literal["customAction"] = "customAction"
    parameters: CustomActionParameters = CustomActionParameters()


RuleAction = Annotated[
    Union[AdjustScoreAction, SetPriorityAction, SkipTriageAction, CustomAction],
    Field(discriminator="type"),
]


# =============================================================================
# Rules
# =============================================================================


class RuleMetadata(BaseSchema):
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "system"
    version: str = "1.0.0"
    last_applied: datetime | None = None
    application_count: int = 0

    @field_validator("created_at", "updated_at", "last_applied")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        if v is None or v.tzinfo is not None:
            return v
        return v.replace(tzinfo=UTC)


class PrioritizationRule(BaseSchema):
    """User-authored rule that adjusts scores and suggestions.

    Construction is permissive (empty ids, out-of-range weights) so that
    ``RuleEngine.validate_rule`` can report problems instead of failing
    at parse time. Only ``metadata.application_count`` and
    ``metadata.last_applied`` change during application.
    """

    id: str
    name: str
    description: str = ""
    conditions: list[RuleCondition] = []
    actions: list[RuleAction] = []
    weight: float = 1.0
    priority: int = 0
    enabled: bool = True
    metadata: RuleMetadata = Field(default_factory=RuleMetadata)


class RuleConflict(FrozenSchema):
    """Pair of rules whose effects contradict each other."""

    rule1_id: str
    rule2_id: str
    conflict_type: str
    description: str
    severity: Literal["low", "medium", "high"]
    suggestion: str


class IssueResolutionData(BaseSchema):
    """Historical record of how an issue was actually resolved.

    ``issue`` and ``prioritization`` are optional snapshots taken when the
    issue was prioritized; rule optimization replays rules against them.
    """

    issue_id: str
    original_priority: float
    final_priority: float
    resolution_time: float  # hours
    effort: float
    success: bool
    business_impact: float = 0.0
    resolved_at: datetime = Field(default_factory=_utcnow)
    issue: Issue | None = None
    prioritization: IssuePrioritization | None = None


class TriageRuleRecommendation(FrozenSchema):
    """Rule suggested from recurring triage patterns in history."""

    name: str
    description: str
    conditions: list[RuleCondition]
    actions: list[RuleAction]
    confidence: float

    def to_rule(self, rule_id: str, *, weight: float = 1.0) -> PrioritizationRule:
        """Materialize the recommendation as an enabled rule."""
        return PrioritizationRule(
            id=rule_id,
            name=self.name,
            description=self.description,
            conditions=list(self.conditions),
            actions=list(self.actions),
            weight=weight,
        )
