"""Issue classification.

The classifier wraps a pluggable Predictor. The default HeuristicPredictor
is a hand-written decision list over the six classification features;
any statistical model exposing ``predict``/``fit`` can replace it without
touching scoring, rules or workflow code.

Training is exclusive: a concurrent ``train`` call fails fast instead of
queueing, and a failed attempt leaves the current predictor in place.
"""

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from triage_engine.core.config import get_settings
from triage_engine.schemas.classification import (
    CATEGORY_ORDER,
    ClassificationFeatures,
    IssueCategory,
    IssueClassification,
    IssueResolutionOutcome,
    IssueSeverity,
    IssueTrainingData,
    ModelMetrics,
)
from triage_engine.schemas.common import ValidationErrorDetail
from triage_engine.schemas.issue import Issue, IssueContext, IssueType
from triage_engine.services.features import FeatureExtractor

logger = logging.getLogger(__name__)

MIN_TRAINING_SAMPLES = 10
INITIAL_MODEL_VERSION = "1.0.0"


# =============================================================================
# Exceptions
# =============================================================================


class ModelNotLoadedError(Exception):
    """Raised when classifying without a loaded model."""

    def __init__(self, message: str = "Classification model not loaded"):
        super().__init__(message)


class TrainingInProgressError(Exception):
    """Raised when training is requested while another training run is active."""

    def __init__(self, message: str = "Model training already in progress"):
        super().__init__(message)


class InsufficientTrainingDataError(ValueError):
    """Raised when fewer than the minimum number of samples are supplied."""

    def __init__(self, sample_count: int, minimum: int = MIN_TRAINING_SAMPLES):
        self.sample_count = sample_count
        self.minimum = minimum
        super().__init__(
            f"Training data must contain at least {minimum} samples, got {sample_count}"
        )

    def __reduce__(self):
        return (self.__class__, (self.sample_count, self.minimum))


class InvalidTrainingDataError(ValueError):
    """Raised when training samples lack an id, features or outcome."""

    def __init__(self, errors: list[ValidationErrorDetail]):
        self.errors = errors
        super().__init__(
            "Invalid training data: " + ", ".join(error.message for error in errors)
        )

    def __reduce__(self):
        return (self.__class__, (self.errors,))


# =============================================================================
# Predictors
# =============================================================================


@dataclass(frozen=True)
class RawPrediction:
    """Unvalidated predictor output; coerced before it leaves the classifier."""
    category: str
    severity: str
    confidence: float


class Predictor(Protocol):
    """Minimal model interface used by IssueClassifier."""

    def predict(self, features: ClassificationFeatures) -> RawPrediction: ...

    def fit(self, samples: Sequence[IssueTrainingData]) -> None: ...


class HeuristicPredictor:
    """Rule-ordered decision list. The first matching bucket wins.

    1. businessCriticality > 0.8 and (userFacing > 0.7 or teamImpact > 0.7)
       -> security / critical / 0.9
    2. complexity < 0.3 and debt < 0.3 and teamImpact < 0.4
       -> documentation / low / 0.8
    3. userFacing > 0.4 or complexity > 0.5 -> performance / high / 0.8
    4. complexity > 0.6 or debt > 0.5 -> maintainability / medium / 0.75
    5. otherwise -> bug / medium / 0.7
    """

    def __init__(self) -> None:
        self.samples: list[IssueTrainingData] = []

    def predict(self, features: ClassificationFeatures) -> RawPrediction:
        if features.business_criticality > 0.8 and (
            features.user_facing_impact > 0.7 or features.team_impact > 0.7
        ):
            return RawPrediction("security", "critical", 0.9)
        if (
            features.code_complexity < 0.3
            and features.technical_debt_impact < 0.3
            and features.team_impact < 0.4
        ):
            return RawPrediction("documentation", "low", 0.8)
        if features.user_facing_impact > 0.4 or features.code_complexity > 0.5:
            return RawPrediction("performance", "high", 0.8)
        if features.code_complexity > 0.6 or features.technical_debt_impact > 0.5:
            return RawPrediction("maintainability", "medium", 0.75)
        return RawPrediction("bug", "medium", 0.7)

    def fit(self, samples: Sequence[IssueTrainingData]) -> None:
        # The decision list is fixed; samples are kept for inspection only.
        self.samples = list(samples)


def outcome_to_category(outcome: IssueResolutionOutcome | None) -> IssueCategory:
    """Map a resolution outcome onto the category it most likely belonged to."""
    if outcome is None or not outcome.success:
        return IssueCategory.BUG
    if outcome.effort > 7:
        return IssueCategory.FEATURE
    if outcome.effort > 5:
        return IssueCategory.PERFORMANCE
    if outcome.effort > 3:
        return IssueCategory.MAINTAINABILITY
    return IssueCategory.DOCUMENTATION


# =============================================================================
# Classifier
# =============================================================================


class IssueClassifier:
    """Classify issues and manage the lifecycle of the underlying predictor."""

    DEFAULT_FEATURES = ClassificationFeatures(
        code_complexity=0.5,
        change_frequency=0.3,
        team_impact=0.5,
        user_facing_impact=0.4,
        business_criticality=0.5,
        technical_debt_impact=0.4,
    )

    def __init__(
        self,
        predictor: Predictor | None = None,
        *,
        load_default: bool = True,
        feature_extractor: FeatureExtractor | None = None,
    ):
        if predictor is None and load_default:
            predictor = HeuristicPredictor()
        self._predictor: Predictor | None = predictor
        self._version = INITIAL_MODEL_VERSION
        self._metrics: ModelMetrics | None = None
        self._features = feature_extractor or FeatureExtractor()
        self._training_lock = threading.Lock()

    @property
    def version(self) -> str:
        return self._version

    def is_ready(self) -> bool:
        return self._predictor is not None and not self._training_lock.locked()

    def load(self, predictor: Predictor, version: str = INITIAL_MODEL_VERSION) -> None:
        """Install an externally trained predictor."""
        self._predictor = predictor
        self._version = version
        self._metrics = None
        logger.info(f"Loaded classification model version {version}")

    def classify(self, issue: Issue, context: IssueContext) -> IssueClassification:
        """Predict category, severity and confidence for one issue.

        Raises:
            ModelNotLoadedError: If no predictor is loaded
        """
        predictor = self._predictor
        if predictor is None:
            raise ModelNotLoadedError()

        features = self._features.extract(issue, context)
        return self._coerce(predictor.predict(features), features)

    def _coerce(self, raw: RawPrediction, features: ClassificationFeatures) -> IssueClassification:
        """Force predictor output into the enumerated categories and severities."""
        try:
            category = IssueCategory(raw.category)
        except ValueError:
            logger.debug(f"Unknown predicted category {raw.category!r}, using bug")
            category = IssueCategory.BUG
        try:
            severity = IssueSeverity(raw.severity)
        except ValueError:
            logger.debug(f"Unknown predicted severity {raw.severity!r}, using medium")
            severity = IssueSeverity.MEDIUM

        return IssueClassification(
            category=category,
            severity=severity,
            confidence=raw.confidence,
            features=features,
        )

    def default_classification(self, issue: Issue, context: IssueContext) -> IssueClassification:
        """Low-confidence classification used when the model is disabled or fails."""
        if issue.type == IssueType.ERROR:
            category, severity = IssueCategory.BUG, IssueSeverity.HIGH
        elif issue.type == IssueType.WARNING:
            category, severity = IssueCategory.MAINTAINABILITY, IssueSeverity.MEDIUM
        else:
            category, severity = IssueCategory.DOCUMENTATION, IssueSeverity.LOW

        if context.business_domain == "security":
            category, severity = IssueCategory.SECURITY, IssueSeverity.CRITICAL
        if "performance" in context.component_type:
            category = IssueCategory.PERFORMANCE

        return IssueClassification(
            category=category,
            severity=severity,
            confidence=0.6,
            features=self.DEFAULT_FEATURES,
        )

    # =========================================================================
    # Training & evaluation
    # =========================================================================

    def train(self, samples: Sequence[IssueTrainingData]) -> ModelMetrics:
        """Train a fresh predictor and swap it in on success.

        Raises:
            TrainingInProgressError: If another training run holds the lock
            InsufficientTrainingDataError: If fewer than 10 samples are given
            InvalidTrainingDataError: If any sample lacks id, features or outcome
        """
        if not self._training_lock.acquire(blocking=False):
            raise TrainingInProgressError()

        try:
            samples = list(samples)
            if len(samples) < MIN_TRAINING_SAMPLES:
                raise InsufficientTrainingDataError(len(samples))

            errors = self._validate_samples(samples)
            if errors:
                raise InvalidTrainingDataError(errors)

            predictor = self._new_predictor()
            predictor.fit(samples)

            version = self._next_version()
            metrics = self.evaluate(predictor, samples, model_version=version)

            min_accuracy = get_settings().min_model_accuracy
            if metrics.accuracy < min_accuracy:
                logger.warning(
                    f"Model accuracy {metrics.accuracy:.2f} is below {min_accuracy:.2f}, "
                    "proceeding with the trained model"
                )

            self._predictor = predictor
            self._version = version
            self._metrics = metrics
            logger.info(
                f"Trained classification model {version} on {len(samples)} samples "
                f"(accuracy={metrics.accuracy:.2f}, f1={metrics.f1_score:.2f})"
            )
            return metrics
        finally:
            self._training_lock.release()

    def _new_predictor(self) -> Predictor:
        current = self._predictor
        if current is None:
            return HeuristicPredictor()
        return type(current)()

    def _next_version(self) -> str:
        candidate = f"2.2.{int(time.time() * 1000):x}"
        if candidate == self._version:
            candidate = f"{candidate}.1"
        return candidate

    @staticmethod
    def _validate_samples(samples: list[IssueTrainingData]) -> list[ValidationErrorDetail]:
        errors: list[ValidationErrorDetail] = []
        for index, sample in enumerate(samples):
            if not sample.issue_id:
                errors.append(ValidationErrorDetail(
                    code="MISSING_ISSUE_ID",
                    message=f"Training data item {index} missing issueId",
                ))
            if sample.features is None:
                errors.append(ValidationErrorDetail(
                    code="MISSING_FEATURES",
                    message=f"Training data item {index} missing features",
                ))
            if sample.actual_outcome is None:
                errors.append(ValidationErrorDetail(
                    code="MISSING_OUTCOME",
                    message=f"Training data item {index} missing actualOutcome",
                ))
        return errors

    def evaluate(
        self,
        predictor: Predictor,
        samples: Sequence[IssueTrainingData],
        *,
        model_version: str | None = None,
    ) -> ModelMetrics:
        """Evaluate a predictor on the last 20% of the samples.

        Small sets whose hold-out split is empty fall back to the first
        (at most) three samples. Accuracy, precision, recall and F1 are
        floored at 0.1.
        """
        samples = list(samples)
        split = int(len(samples) * 0.8)
        holdout = samples[split:] or samples[:3]

        expected = [outcome_to_category(sample.actual_outcome) for sample in holdout]
        predicted = [
            self._coerce(predictor.predict(sample.features or self.DEFAULT_FEATURES),
                         sample.features or self.DEFAULT_FEATURES).category
            for sample in holdout
        ]

        accuracy = _accuracy(expected, predicted)
        precision = _macro_average(predicted, expected, group_by_predicted=True)
        recall = _macro_average(predicted, expected, group_by_predicted=False)
        f1 = (2 * precision * recall) / (precision + recall) if precision + recall > 0 else 0.0

        return ModelMetrics(
            accuracy=max(0.1, accuracy),
            precision=max(0.1, precision),
            recall=max(0.1, recall),
            f1_score=max(0.1, f1),
            confusion_matrix=_confusion_matrix(expected, predicted),
            training_data_size=len(samples),
            validation_data_size=len(holdout),
            model_version=model_version or self._version,
            trained_at=datetime.now(UTC),
        )

    def get_model_metrics(self) -> ModelMetrics:
        """Metrics from the last successful training run.

        Before any training the built-in model reports an empty baseline.

        Raises:
            ModelNotLoadedError: If no predictor is loaded
        """
        if self._predictor is None:
            raise ModelNotLoadedError("No model loaded")
        if self._metrics is not None:
            return self._metrics
        size = len(CATEGORY_ORDER)
        return ModelMetrics(
            accuracy=0.0,
            precision=0.0,
            recall=0.0,
            f1_score=0.0,
            confusion_matrix=[[0] * size for _ in range(size)],
            training_data_size=0,
            validation_data_size=0,
            model_version=self._version,
            trained_at=datetime.now(UTC),
        )


# =============================================================================
# Metric helpers
# =============================================================================


def _accuracy(expected: list[IssueCategory], predicted: list[IssueCategory]) -> float:
    if not expected:
        return 0.0
    correct = sum(1 for e, p in zip(expected, predicted) if e == p)
    return correct / len(expected)


def _macro_average(
    predicted: list[IssueCategory],
    expected: list[IssueCategory],
    *,
    group_by_predicted: bool,
) -> float:
    """Macro precision (grouped by predicted) or recall (grouped by expected)."""
    counts: dict[IssueCategory, list[int]] = {}
    for p, e in zip(predicted, expected):
        key = p if group_by_predicted else e
        bucket = counts.setdefault(key, [0, 0])
        bucket[1] += 1
        if p == e:
            bucket[0] += 1

    if not counts:
        return 0.0
    return sum(correct / total for correct, total in counts.values()) / len(counts)


def _confusion_matrix(expected: list[IssueCategory], predicted: list[IssueCategory]) -> list[list[int]]:
    """Rows are expected categories, columns predicted, in CATEGORY_ORDER."""
    index = {category: i for i, category in enumerate(CATEGORY_ORDER)}
    size = len(CATEGORY_ORDER)
    matrix = [[0] * size for _ in range(size)]
    for e, p in zip(expected, predicted):
        matrix[index[e]][index[p]] += 1
    return matrix
