"""Customizable prioritization rules.

Rules are evaluated statelessly: ``evaluate`` is a pure per-issue step
that returns the adjusted record plus the ids of the rules it applied, so
it can run on worker threads. Rule metadata (application count and last
applied time) is the only shared mutable state; counts are aggregated per
batch and merged once under a lock by ``record_applications``.
"""

import json
import logging
import re
import threading
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError
from pydantic.alias_generators import to_snake

from triage_engine.core.cancellation import CancellationToken
from triage_engine.schemas.common import (
    ValidationErrorDetail,
    ValidationResult,
    ValidationWarning,
    clamp,
    round_half_up,
    score_to_priority,
)
from triage_engine.schemas.issue import Issue
from triage_engine.schemas.prioritization import IssuePrioritization, TriageAction
from triage_engine.schemas.rule import (
    AdjustScoreAction,
    ConflictResolution,
    CustomAction,
    IssueResolutionData,
    PrioritizationRule,
    RuleCondition,
    RuleConflict,
    RuleOperator,
    SetPriorityAction,
    SkipTriageAction,
)

logger = logging.getLogger(__name__)

VALID_OPERATORS = frozenset(op.value for op in RuleOperator)
VALID_ACTION_TYPES = frozenset({"adjustScore", "setPriority", "skipTriage", "customAction"})

LOW_WEIGHT_THRESHOLD = 0.1
MAX_SIMPLE_CONDITIONS = 5
MIN_EFFECTIVENESS = 0.3
# A historical resolution counts as a success below this many hours
FAST_RESOLUTION_HOURS = 10

# Base prioritization fields addressable from rule conditions
PRIORITIZATION_FIELDS = frozenset({
    "classification",
    "context",
    "triage_suggestion",
    "final_score",
    "severity",
    "impact",
    "effort",
    "business_value",
})

_rules_adapter = TypeAdapter(list[PrioritizationRule])

# Guards rule metadata merges across concurrent batches
_metadata_lock = threading.Lock()


# =============================================================================
# Exceptions
# =============================================================================


class InvalidRuleImportError(ValueError):
    """Raised when a rules payload is not parseable JSON or not an array."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to import rules: {reason}")

    def __reduce__(self):
        return (self.__class__, (self.reason,))


class InvalidRuleError(ValueError):
    """Raised when rules submitted to the engine fail validation."""

    def __init__(self, failures: dict[str, ValidationResult]):
        self.failures = failures
        details = "; ".join(
            f"{name}: {', '.join(error.message for error in result.errors)}"
            for name, result in failures.items()
        )
        super().__init__(f"Invalid rules: {details}")

    def __reduce__(self):
        return (self.__class__, (self.failures,))


# =============================================================================
# Field resolution & comparison
# =============================================================================

_MISSING = object()


def _segment_value(value: Any, segment: str) -> Any:
    if isinstance(value, BaseModel):
        return getattr(value, to_snake(segment), _MISSING)
    if isinstance(value, Mapping):
        if segment in value:
            return value[segment]
        return value.get(to_snake(segment), _MISSING)
    return _MISSING


def resolve_field(issue: Issue, prioritization: IssuePrioritization | None, path: str) -> Any:
    """Resolve a dotted field path against an issue and its prioritization.

    The first segment names an issue field or one of the prioritization
    fields (classification, context, triageSuggestion, finalScore, ...).
    Segments may be camelCase or snake_case. Unknown paths resolve to None.
    """
    head, *rest = path.split(".")
    name = to_snake(head)

    if name in Issue.model_fields:
        value: Any = getattr(issue, name)
    elif prioritization is not None and name in PRIORITIZATION_FIELDS:
        value = getattr(prioritization, name)
    else:
        return None

    for segment in rest:
        value = _segment_value(value, segment)
        if value is _MISSING:
            return None

    if isinstance(value, Enum):
        return value.value
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _compare_text(field: str, expected: str, operator: RuleOperator) -> bool:
    if operator == RuleOperator.EQUALS:
        return field == expected
    if operator == RuleOperator.CONTAINS:
        return expected in field
    if operator == RuleOperator.STARTS_WITH:
        return field.startswith(expected)
    if operator == RuleOperator.ENDS_WITH:
        return field.endswith(expected)
    if operator == RuleOperator.GT:
        return field > expected
    if operator == RuleOperator.LT:
        return field < expected
    if operator == RuleOperator.GTE:
        return field >= expected
    if operator == RuleOperator.LTE:
        return field <= expected
    return False


def _compare_numbers(field: float, expected: float, operator: RuleOperator) -> bool:
    if operator == RuleOperator.EQUALS:
        return field == expected
    if operator == RuleOperator.GT:
        return field > expected
    if operator == RuleOperator.LT:
        return field < expected
    if operator == RuleOperator.GTE:
        return field >= expected
    if operator == RuleOperator.LTE:
        return field <= expected
    return False


def condition_matches(condition: RuleCondition, field_value: Any) -> bool:
    """Evaluate one condition against a resolved field value.

    Missing fields never match. String operators apply when either side
    is a string; numeric operators when both sides are numbers; booleans
    only support equality. An invalid regex is a non-match.
    """
    if field_value is None:
        return False

    expected = condition.value
    operator = condition.operator

    if operator == RuleOperator.REGEX:
        flags = 0 if condition.case_sensitive else re.IGNORECASE
        try:
            return re.search(_as_text(expected), _as_text(field_value), flags) is not None
        except re.error:
            logger.debug(f"Invalid regex in rule condition on {condition.field!r}: {expected!r}")
            return False

    if isinstance(field_value, str) or isinstance(expected, str):
        field_text, expected_text = _as_text(field_value), _as_text(expected)
        if not condition.case_sensitive:
            field_text, expected_text = field_text.casefold(), expected_text.casefold()
        return _compare_text(field_text, expected_text, operator)

    if _is_number(field_value) and _is_number(expected):
        return _compare_numbers(field_value, expected, operator)

    if isinstance(field_value, bool) and isinstance(expected, bool):
        return operator == RuleOperator.EQUALS and field_value == expected

    return False


def rule_matches(rule: PrioritizationRule, issue: Issue, prioritization: IssuePrioritization | None) -> bool:
    """All conditions must hold. A rule without conditions never matches."""
    if not rule.conditions:
        return False
    return all(
        condition_matches(condition, resolve_field(issue, prioritization, condition.field))
        for condition in rule.conditions
    )


def _increment_version(version: str) -> str:
    parts = version.split(".")
    if len(parts) < 3:
        return version
    match = re.match(r"\d+", parts[2])
    patch = int(match.group()) + 1 if match else 1
    return ".".join([parts[0], parts[1], str(patch)])


# =============================================================================
# RuleEngine
# =============================================================================


class RuleEngine:
    """Apply, validate, analyze and optimize prioritization rules."""

    def __init__(
        self,
        conflict_resolution: ConflictResolution | str = ConflictResolution.HIGHEST_WEIGHT,
        rules: Iterable[PrioritizationRule] | None = None,
    ):
        self.conflict_resolution = ConflictResolution(conflict_resolution)
        self.rules: list[PrioritizationRule] = list(rules or [])

    # =========================================================================
    # Application
    # =========================================================================

    def _order(self, matching: list[PrioritizationRule]) -> list[PrioritizationRule]:
        """Order matching rules for application. Every matching rule applies.

        first-match: ascending ``priority``; highest-weight and combine:
        descending ``weight``. Sorts are stable, so ties keep input order.
        """
        if self.conflict_resolution == ConflictResolution.FIRST_MATCH:
            return sorted(matching, key=lambda rule: rule.priority)
        return sorted(matching, key=lambda rule: rule.weight, reverse=True)

    def evaluate(
        self,
        issue: Issue,
        base: IssuePrioritization,
        rules: Sequence[PrioritizationRule],
    ) -> tuple[IssuePrioritization, list[str]]:
        """Apply matching rules to one issue.

        Pure: rule metadata is not touched. Returns the adjusted record
        (``base`` itself when no rule applied) and the applied rule ids.
        """
        matching = [rule for rule in rules if rule.enabled and rule_matches(rule, issue, base)]
        applied = self._order(matching)
        if not applied:
            return base, []

        score = base.final_score
        suggestion_update: dict[str, Any] = {}

        for rule in applied:
            for action in rule.actions:
                if isinstance(action, AdjustScoreAction):
                    score += action.parameters.adjustment * rule.weight
                elif isinstance(action, SetPriorityAction):
                    score = action.parameters.priority
                elif isinstance(action, SkipTriageAction):
                    suggestion_update["action"] = TriageAction.IGNORE
                    suggestion_update["reasoning"] = "Skipped by rule"
                elif isinstance(action, CustomAction):
                    params = action.parameters
                    if params.triage_action is not None:
                        suggestion_update["action"] = params.triage_action
                    if params.reasoning:
                        suggestion_update["reasoning"] = params.reasoning
                    if params.assignee:
                        suggestion_update["assignee"] = params.assignee

        final_score = round_half_up(clamp(score, 1.0, 10.0), 1)
        if final_score != base.final_score:
            suggestion_update["priority"] = score_to_priority(final_score)

        record = base.model_copy(update={
            "final_score": final_score,
            "triage_suggestion": base.triage_suggestion.model_copy(update=suggestion_update),
        })
        logger.debug(
            f"Rules {[rule.id for rule in applied]} moved issue {issue.id} "
            f"from {base.final_score} to {final_score}"
        )
        return record, [rule.id for rule in applied]

    def apply_rules(
        self,
        issues: Sequence[Issue],
        rules: Sequence[PrioritizationRule],
        base_prioritizations: Sequence[IssuePrioritization],
        *,
        cancellation: CancellationToken | None = None,
    ) -> list[IssuePrioritization]:
        """Apply enabled rules to a batch and record the applications.

        Raises:
            ValueError: If issues and base prioritizations differ in length
            PrioritizationCancelledError: If cancelled; no metadata is merged
        """
        if len(issues) != len(base_prioritizations):
            raise ValueError(
                f"Got {len(issues)} issues but {len(base_prioritizations)} base prioritizations"
            )

        active = [rule for rule in rules if rule.enabled]
        if not active:
            return list(base_prioritizations)

        counts: Counter[str] = Counter()
        results = []
        for issue, base in zip(issues, base_prioritizations):
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            record, applied = self.evaluate(issue, base, active)
            counts.update(applied)
            results.append(record)

        if cancellation is not None:
            cancellation.raise_if_cancelled()
        self.record_applications(active, counts)
        return results

    @staticmethod
    def record_applications(
        rules: Iterable[PrioritizationRule],
        counts: Mapping[str, int],
        applied_at: datetime | None = None,
    ) -> None:
        """Merge aggregated application counts into rule metadata once."""
        if not counts:
            return
        applied_at = applied_at or datetime.now(UTC)
        with _metadata_lock:
            for rule in rules:
                count = counts.get(rule.id, 0)
                if count:
                    rule.metadata.application_count += count
                    rule.metadata.last_applied = applied_at

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_rule(self, rule: PrioritizationRule | Mapping[str, Any]) -> ValidationResult:
        """Check rule structure. Problems are returned, never raised."""
        result, _ = self._check(rule)
        return result

    def is_valid_rule_structure(self, rule: PrioritizationRule | Mapping[str, Any]) -> bool:
        return self.validate_rule(rule).valid

    def _check(
        self, rule: PrioritizationRule | Mapping[str, Any]
    ) -> tuple[ValidationResult, PrioritizationRule | None]:
        if isinstance(rule, PrioritizationRule):
            raw: Any = rule.model_dump(by_alias=True)
        else:
            raw = rule

        if not isinstance(raw, Mapping):
            error = ValidationErrorDetail(code="INVALID_RULE", message="Rule must be an object")
            return ValidationResult(valid=False, errors=[error]), None

        errors = self._structural_errors(raw)
        warnings = self._structural_warnings(raw)

        parsed = rule if isinstance(rule, PrioritizationRule) else None
        if not errors and parsed is None:
            try:
                parsed = PrioritizationRule.model_validate(raw)
            except ValidationError as e:
                errors.append(ValidationErrorDetail(
                    code="INVALID_RULE",
                    message=f"Rule does not match the rule schema: {e.error_count()} error(s)",
                ))

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings), parsed

    @staticmethod
    def _structural_errors(raw: Mapping[str, Any]) -> list[ValidationErrorDetail]:
        errors: list[ValidationErrorDetail] = []

        def blank(value: Any) -> bool:
            return not isinstance(value, str) or not value.strip()

        if blank(raw.get("id")):
            errors.append(ValidationErrorDetail(
                code="MISSING_ID", message="Rule must have a valid ID", field="id",
            ))
        if blank(raw.get("name")):
            errors.append(ValidationErrorDetail(
                code="MISSING_NAME", message="Rule must have a valid name", field="name",
            ))

        conditions = raw.get("conditions")
        if not isinstance(conditions, list) or not conditions:
            errors.append(ValidationErrorDetail(
                code="MISSING_CONDITIONS",
                message="Rule must have at least one condition",
                field="conditions",
            ))
            conditions = []

        actions = raw.get("actions")
        if not isinstance(actions, list) or not actions:
            errors.append(ValidationErrorDetail(
                code="MISSING_ACTIONS",
                message="Rule must have at least one action",
                field="actions",
            ))
            actions = []

        for i, condition in enumerate(conditions):
            condition = condition if isinstance(condition, Mapping) else {}
            path = f"conditions[{i}]"
            if blank(condition.get("field")):
                errors.append(ValidationErrorDetail(
                    code="MISSING_FIELD",
                    message="Condition must specify a field",
                    field=f"{path}.field",
                ))
            operator = condition.get("operator")
            if isinstance(operator, Enum):
                operator = operator.value
            if operator not in VALID_OPERATORS:
                errors.append(ValidationErrorDetail(
                    code="INVALID_OPERATOR",
                    message=f"Invalid operator: {operator}",
                    field=f"{path}.operator",
                ))
            if condition.get("value") is None:
                errors.append(ValidationErrorDetail(
                    code="MISSING_VALUE",
                    message="Condition must specify a value",
                    field=f"{path}.value",
                ))

        for i, action in enumerate(actions):
            action = action if isinstance(action, Mapping) else {}
            path = f"actions[{i}]"
            if action.get("type") not in VALID_ACTION_TYPES:
                errors.append(ValidationErrorDetail(
                    code="INVALID_ACTION_TYPE",
                    message=f"Invalid action type: {action.get('type')}",
                    field=f"{path}.type",
                ))
            if not isinstance(action.get("parameters"), Mapping):
                errors.append(ValidationErrorDetail(
                    code="MISSING_PARAMETERS",
                    message="Action must specify parameters",
                    field=f"{path}.parameters",
                ))

        weight = raw.get("weight")
        if not _is_number(weight) or not 0 <= weight <= 1:
            errors.append(ValidationErrorDetail(
                code="INVALID_WEIGHT",
                message="Rule weight must be a number between 0 and 1",
                field="weight",
            ))

        return errors

    @staticmethod
    def _structural_warnings(raw: Mapping[str, Any]) -> list[ValidationWarning]:
        warnings: list[ValidationWarning] = []
        weight = raw.get("weight")
        if _is_number(weight) and weight < LOW_WEIGHT_THRESHOLD:
            warnings.append(ValidationWarning(
                code="LOW_WEIGHT",
                message="Rule has very low weight and may have minimal impact",
                field="weight",
                suggestion="Consider increasing weight or removing the rule",
            ))
        conditions = raw.get("conditions")
        if isinstance(conditions, list) and len(conditions) > MAX_SIMPLE_CONDITIONS:
            warnings.append(ValidationWarning(
                code="COMPLEX_RULE",
                message="Rule has many conditions and may be difficult to maintain",
                field="conditions",
                suggestion="Consider breaking this into multiple simpler rules",
            ))
        return warnings

    # =========================================================================
    # Conflicts
    # =========================================================================

    def detect_rule_conflicts(self, rules: Sequence[PrioritizationRule]) -> list[RuleConflict]:
        """Pairwise check for opposite-sign score adjustments on shared fields.

        Only adjustScore against adjustScore is considered; setPriority
        overrides are not reported as conflicts.
        """
        conflicts = []
        for i, first in enumerate(rules):
            for second in rules[i + 1:]:
                if _share_condition_field(first, second) and _opposite_adjustments(first, second):
                    conflicts.append(RuleConflict(
                        rule1_id=first.id,
                        rule2_id=second.id,
                        conflict_type="conflicting-actions",
                        description=(
                            f"Rules {first.name} and {second.name} have conflicting "
                            "actions with similar conditions"
                        ),
                        severity="high",
                        suggestion="Review and resolve conflicts between these rules",
                    ))
        return conflicts

    # =========================================================================
    # Optimization
    # =========================================================================

    def rule_effectiveness(self, rule: PrioritizationRule, history: Sequence[IssueResolutionData]) -> float:
        """Fraction of replayed applications that resolved fast and successfully.

        Only history entries carrying an issue snapshot can be replayed.
        With no replayable application the rule scores a neutral 0.5.
        """
        applications = 0
        successes = 0
        for record in history:
            if record.issue is None:
                continue
            if not rule_matches(rule, record.issue, record.prioritization):
                continue
            applications += 1
            if record.resolution_time < FAST_RESOLUTION_HOURS and record.success:
                successes += 1
        return successes / applications if applications else 0.5

    def optimize_rules(
        self,
        historical_data: Sequence[IssueResolutionData],
        rules: Sequence[PrioritizationRule] | None = None,
    ) -> list[PrioritizationRule]:
        """Re-weight rules by replayed effectiveness and drop ineffective ones.

        Returns new rule objects; the inputs are left untouched.
        """
        rules = self.rules if rules is None else rules
        optimized = []
        now = datetime.now(UTC)

        for rule in rules:
            effectiveness = self.rule_effectiveness(rule, historical_data)
            if effectiveness < MIN_EFFECTIVENESS:
                logger.warning(
                    f"Dropping rule {rule.id} ({rule.name}): effectiveness {effectiveness:.2f}"
                )
                continue

            updated = rule.model_copy(deep=True)
            updated.weight = clamp(effectiveness, 0.1, 1.0)
            updated.metadata.updated_at = now
            updated.metadata.version = _increment_version(rule.metadata.version)
            optimized.append(updated)

        logger.info(f"Optimized {len(rules)} rules, kept {len(optimized)}")
        return optimized

    # =========================================================================
    # Import / export
    # =========================================================================

    @staticmethod
    def export_rules(rules: Sequence[PrioritizationRule]) -> str:
        """Serialize rules to a camelCase JSON array."""
        return _rules_adapter.dump_json(list(rules), by_alias=True, indent=2).decode()

    def import_rules(self, rules_json: str | bytes) -> list[PrioritizationRule]:
        """Parse a JSON array of rules, dropping structurally invalid entries.

        Raises:
            InvalidRuleImportError: If the payload is not valid JSON or not an array
        """
        try:
            payload = json.loads(rules_json)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidRuleImportError(str(e)) from e

        if not isinstance(payload, list):
            raise InvalidRuleImportError(f"expected a JSON array, got {type(payload).__name__}")

        rules = []
        for index, entry in enumerate(payload):
            result, parsed = self._check(entry)
            if result.valid and parsed is not None:
                rules.append(parsed)
            else:
                codes = ", ".join(error.code for error in result.errors)
                logger.warning(f"Dropping invalid rule at index {index}: {codes}")
        return rules


def _share_condition_field(first: PrioritizationRule, second: PrioritizationRule) -> bool:
    fields = {condition.field for condition in first.conditions}
    return any(condition.field in fields for condition in second.conditions)


def _opposite_adjustments(first: PrioritizationRule, second: PrioritizationRule) -> bool:
    left = [a.parameters.adjustment for a in first.actions if isinstance(a, AdjustScoreAction)]
    right = [a.parameters.adjustment for a in second.actions if isinstance(a, AdjustScoreAction)]
    return any(a * b < 0 for a in left for b in right)
