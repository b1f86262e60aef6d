"""Tests for IssueClassifier, the heuristic predictor and model training."""

import pickle
import threading

import pytest

from conftest import make_issue
from triage_engine.schemas.classification import (
    CATEGORY_ORDER,
    ClassificationFeatures,
    IssueCategory,
    IssueResolutionOutcome,
    IssueSeverity,
    IssueTrainingData,
)
from triage_engine.schemas.issue import Criticality, IssueContext, IssueType
from triage_engine.services.classifier import (
    HeuristicPredictor,
    InsufficientTrainingDataError,
    InvalidTrainingDataError,
    IssueClassifier,
    ModelNotLoadedError,
    RawPrediction,
    TrainingInProgressError,
    outcome_to_category,
)


def sample(index: int, *, effort: float = 2.0, success: bool = True, **features) -> IssueTrainingData:
    return IssueTrainingData(
        issue_id=f"hist-{index}",
        features=ClassificationFeatures(**features),
        actual_outcome=IssueResolutionOutcome(resolution_time=4, effort=effort, success=success),
    )


def training_set(size: int = 20) -> list[IssueTrainingData]:
    # all-zero features predict documentation; effort 2 maps to documentation
    return [sample(i) for i in range(size)]


class ConstantPredictor:
    """Predictor returning a fixed, possibly out-of-vocabulary, prediction."""

    def __init__(self, category: str = "bug", severity: str = "medium", confidence: float = 0.7):
        self.prediction = RawPrediction(category, severity, confidence)

    def predict(self, features):
        return self.prediction

    def fit(self, samples):
        pass


class FailingPredictor(ConstantPredictor):

    def fit(self, samples):
        raise RuntimeError("fit exploded")


class TestHeuristicPredictor:

    @pytest.mark.parametrize("features, expected", [
        ({"business_criticality": 0.9, "user_facing_impact": 0.8}, ("security", "critical", 0.9)),
        ({"business_criticality": 0.9, "team_impact": 0.8}, ("security", "critical", 0.9)),
        ({"code_complexity": 0.1, "team_impact": 0.2}, ("documentation", "low", 0.8)),
        ({"user_facing_impact": 0.5, "team_impact": 0.5}, ("performance", "high", 0.8)),
        ({"code_complexity": 0.55, "team_impact": 0.5}, ("performance", "high", 0.8)),
        ({"technical_debt_impact": 0.6, "team_impact": 0.5}, ("maintainability", "medium", 0.75)),
        ({"code_complexity": 0.4, "team_impact": 0.5}, ("bug", "medium", 0.7)),
    ])
    def test_first_matching_bucket_wins(self, features, expected):
        prediction = HeuristicPredictor().predict(ClassificationFeatures(**features))
        assert (prediction.category, prediction.severity, prediction.confidence) == expected


class TestClassify:

    def test_security_context_classified_critical(self):
        classifier = IssueClassifier()
        issue = make_issue(type=IssueType.ERROR, file_path="/src/security/auth.ts")
        context = IssueContext(
            file_path=issue.file_path,
            criticality=Criticality.CRITICAL,
            business_domain="security",
        )

        classification = classifier.classify(issue, context)

        assert classification.category == IssueCategory.SECURITY
        assert classification.severity == IssueSeverity.CRITICAL
        assert classification.confidence == pytest.approx(0.9)

    def test_without_model_raises(self):
        classifier = IssueClassifier(load_default=False)
        with pytest.raises(ModelNotLoadedError):
            classifier.classify(make_issue(), IssueContext(file_path="/src/a.ts"))

    def test_unknown_predictions_are_coerced(self):
        classifier = IssueClassifier(ConstantPredictor("typo", "catastrophic", 5.0))

        classification = classifier.classify(make_issue(), IssueContext(file_path="/src/a.ts"))

        assert classification.category == IssueCategory.BUG
        assert classification.severity == IssueSeverity.MEDIUM
        assert classification.confidence == 1.0

    def test_confidence_floor(self):
        classifier = IssueClassifier(ConstantPredictor(confidence=0.0))
        classification = classifier.classify(make_issue(), IssueContext(file_path="/src/a.ts"))
        assert classification.confidence == pytest.approx(0.1)

    def test_default_classification(self):
        classifier = IssueClassifier()
        issue = make_issue(type=IssueType.ERROR)

        plain = classifier.default_classification(issue, IssueContext(file_path="/src/a.ts"))
        secure = classifier.default_classification(
            issue, IssueContext(file_path="/src/a.ts", business_domain="security")
        )

        assert (plain.category, plain.severity) == (IssueCategory.BUG, IssueSeverity.HIGH)
        assert (secure.category, secure.severity) == (IssueCategory.SECURITY, IssueSeverity.CRITICAL)
        assert plain.confidence == pytest.approx(0.6)


class TestTraining:

    def test_outcome_mapping(self):
        def outcome(effort, success=True):
            return IssueResolutionOutcome(resolution_time=1, effort=effort, success=success)

        assert outcome_to_category(None) == IssueCategory.BUG
        assert outcome_to_category(outcome(9, success=False)) == IssueCategory.BUG
        assert outcome_to_category(outcome(8)) == IssueCategory.FEATURE
        assert outcome_to_category(outcome(6)) == IssueCategory.PERFORMANCE
        assert outcome_to_category(outcome(4)) == IssueCategory.MAINTAINABILITY
        assert outcome_to_category(outcome(2)) == IssueCategory.DOCUMENTATION

    def test_train_swaps_model_and_reports_metrics(self):
        classifier = IssueClassifier()
        old_version = classifier.version

        metrics = classifier.train(training_set(20))

        assert classifier.version != old_version
        assert classifier.version.startswith("2.2.")
        assert metrics.model_version == classifier.version
        assert metrics.training_data_size == 20
        assert metrics.validation_data_size == 4
        assert metrics.accuracy == pytest.approx(1.0)
        assert len(metrics.confusion_matrix) == len(CATEGORY_ORDER)
        assert all(len(row) == len(CATEGORY_ORDER) for row in metrics.confusion_matrix)
        assert classifier.get_model_metrics() == metrics

    def test_too_few_samples(self):
        classifier = IssueClassifier()
        with pytest.raises(InsufficientTrainingDataError) as exc_info:
            classifier.train(training_set(9))
        assert exc_info.value.sample_count == 9

    def test_incomplete_samples(self):
        samples = training_set(10)
        samples[3] = IssueTrainingData(issue_id="", features=None, actual_outcome=None)

        with pytest.raises(InvalidTrainingDataError) as exc_info:
            IssueClassifier().train(samples)

        codes = {error.code for error in exc_info.value.errors}
        assert codes == {"MISSING_ISSUE_ID", "MISSING_FEATURES", "MISSING_OUTCOME"}

    def test_failed_training_keeps_previous_model(self):
        classifier = IssueClassifier(FailingPredictor())
        version = classifier.version

        with pytest.raises(RuntimeError):
            classifier.train(training_set())

        assert classifier.version == version
        assert classifier.is_ready()
        classifier.classify(make_issue(), IssueContext(file_path="/src/a.ts"))

    def test_concurrent_training_is_rejected(self):
        started = threading.Event()
        release = threading.Event()

        class SlowPredictor(ConstantPredictor):
            def fit(self, samples):
                started.set()
                release.wait(timeout=5)

        classifier = IssueClassifier(SlowPredictor())
        worker = threading.Thread(target=classifier.train, args=(training_set(),))
        worker.start()
        try:
            assert started.wait(timeout=5)
            assert not classifier.is_ready()
            with pytest.raises(TrainingInProgressError):
                classifier.train(training_set())
        finally:
            release.set()
            worker.join(timeout=5)

        assert classifier.is_ready()

    def test_evaluate_small_set_falls_back_to_first_samples(self):
        classifier = IssueClassifier()
        metrics = classifier.evaluate(HeuristicPredictor(), training_set(1))
        assert metrics.validation_data_size == 1

    def test_metrics_before_training(self):
        metrics = IssueClassifier().get_model_metrics()
        assert metrics.training_data_size == 0
        assert metrics.model_version == "1.0.0"

    def test_exceptions_pickle(self):
        error = pickle.loads(pickle.dumps(InsufficientTrainingDataError(3)))
        assert error.sample_count == 3
