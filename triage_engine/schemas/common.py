"""Common schemas and utilities."""

import math

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp a number into [lower, upper]."""
    return max(lower, min(upper, value))


def round_half_up(value: float, digits: int = 0) -> float:
    """Round with halves away from zero for positive scores (2.5 -> 3)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def score_to_priority(score: float) -> int:
    """Integer 1-10 priority for a final score."""
    return int(clamp(round_half_up(score), 1, 10))


class BaseSchema(BaseModel):
    """Base schema with common configuration.

    Attributes are snake_case in Python and camelCase on the wire; both
    spellings are accepted on input.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        protected_namespaces=(),
    )


class FrozenSchema(BaseSchema):
    """Immutable record. Updates go through ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True)


class ValidationErrorDetail(BaseSchema):
    """Hard validation error; the checked structure is unusable."""

    code: str
    message: str
    field: str | None = None
    severity: str = "error"


class ValidationWarning(BaseSchema):
    """Soft validation finding; the checked structure stays usable."""

    code: str
    message: str
    field: str | None = None
    suggestion: str | None = None


class ValidationResult(BaseSchema):
    """Outcome of a structural check. Returned, never raised."""

    valid: bool
    errors: list[ValidationErrorDetail] = []
    warnings: list[ValidationWarning] = []
