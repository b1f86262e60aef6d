"""Prioritization engine.

Orchestrates the per-issue pipeline:
1. Build the issue context
2. Classify (or fall back to the default classification)
3. Score and derive the base triage suggestion
4. Apply custom rules
5. Adapt to the team workflow

and then, per batch, merges rule application counts, runs batch triage
optimization and sorts by final score. Large batches fan out over a
bounded thread pool; results are cached per issue fingerprint.
"""

import asyncio
import logging
import math
import time
import uuid
from collections import Counter
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any

from triage_engine.core.cancellation import CancellationToken, PrioritizationCancelledError
from triage_engine.core.config import get_settings
from triage_engine.schemas.classification import (
    ClassificationFeatures,
    IssueCategory,
    IssueClassification,
    IssueSeverity,
    IssueTrainingData,
    ModelMetrics,
)
from triage_engine.schemas.common import score_to_priority
from triage_engine.schemas.issue import ComplexityMetrics, Issue, IssueContext, IssueType
from triage_engine.schemas.prioritization import (
    CacheSettings,
    IssuePrioritization,
    MLSettings,
    PrioritizationConfiguration,
    PrioritizationMetadata,
    RuleSettings,
    ScoringFactors,
    ScoringWeights,
    TriageSuggestion,
)
from triage_engine.schemas.project import ProjectContext
from triage_engine.schemas.rule import IssueResolutionData, PrioritizationRule, TriageRuleRecommendation
from triage_engine.schemas.triage import WorkflowAnalysis
from triage_engine.services.cache import (
    PrioritizationCache,
    context_signature,
    issue_fingerprint,
    ruleset_signature,
)
from triage_engine.services.classifier import IssueClassifier, ModelNotLoadedError
from triage_engine.services.context import IssueContextBuilder
from triage_engine.services.rule_engine import InvalidRuleError, RuleEngine
from triage_engine.services.scoring import Clock, ScoringAlgorithm, utc_now
from triage_engine.services.triage import TriageEngine
from triage_engine.services.workflow import WorkflowIntegration

logger = logging.getLogger(__name__)

# Shared pool for the async entry point; batch fan-out uses its own pool
_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="triage_")

FALLBACK_ALGORITHM = "fallback"
FALLBACK_REASONING = "Fallback triage suggestion due to processing error"

# Chunks per worker when fanning a batch out
_CHUNKS_PER_WORKER = 4


class PrioritizationEngine:
    """Prioritize batches of issues and manage rules, model and cache.

    One engine instance may serve concurrent batches. Configuration and
    rules are read once per batch, so updates apply to the next batch.
    """

    def __init__(
        self,
        config: PrioritizationConfiguration | None = None,
        *,
        classifier: IssueClassifier | None = None,
        context_builder: IssueContextBuilder | None = None,
        rules: Sequence[PrioritizationRule] | None = None,
        clock: Clock | None = None,
    ):
        self.config = config or PrioritizationConfiguration.from_settings(get_settings())
        self._clock = clock or utc_now

        self.context_builder = context_builder or IssueContextBuilder()
        self.classifier = classifier or IssueClassifier()
        self.scoring = ScoringAlgorithm(self.config, clock=self._clock)
        self.workflow = WorkflowIntegration(clock=self._clock)
        self.triage = TriageEngine(self.workflow, clock=self._clock)

        self._rules: list[PrioritizationRule] = [rule for rule in rules or [] if rule.enabled]
        self.rule_engine = RuleEngine(self.config.rules.conflict_resolution, rules=self._rules)
        self.cache = self._new_cache()

    def _new_cache(self) -> PrioritizationCache:
        caching = self.config.caching
        return PrioritizationCache(ttl_seconds=caching.ttl, max_size=caching.max_size)

    @property
    def rules(self) -> list[PrioritizationRule]:
        return list(self._rules)

    # =========================================================================
    # Prioritization
    # =========================================================================

    def prioritize_issues(
        self,
        issues: Sequence[Issue],
        project_context: ProjectContext,
        *,
        preserve_order: bool = False,
        cancellation: CancellationToken | None = None,
    ) -> list[IssuePrioritization]:
        """Prioritize a batch of issues.

        Args:
            issues: Findings to prioritize
            project_context: Team preferences, sprint and history
            preserve_order: Return records in input order instead of by score
            cancellation: Token checked between stages

        Returns:
            One record per issue, highest final score first

        Raises:
            PrioritizationCancelledError: If cancelled; rule metadata is untouched
        """
        started = time.perf_counter()
        if not issues:
            return []

        config = self.config
        rules = list(self._rules) if config.rules.enabled else []
        rule_engine = self.rule_engine
        cache = self.cache if config.caching.enabled else None

        ruleset_sig = ruleset_signature(rules)
        context_sig = context_signature(project_context, config)

        def process_chunk(chunk: Sequence[Issue]) -> list[tuple[IssuePrioritization, list[str]]]:
            return [
                self._process_issue(
                    issue, project_context, config, rules, rule_engine, cache,
                    ruleset_sig, context_sig, cancellation,
                )
                for issue in chunk
            ]

        workers = config.concurrency.max_workers
        if len(issues) < config.concurrency.parallel_threshold or workers == 1:
            results = process_chunk(issues)
        else:
            results = self._fan_out(issues, process_chunk, workers, cancellation)

        if cancellation is not None:
            cancellation.raise_if_cancelled()

        counts: Counter[str] = Counter()
        records = []
        cache_hits = 0
        for record, applied in results:
            counts.update(applied)
            records.append(record)
            if record.metadata.cache_hit:
                cache_hits += 1
        RuleEngine.record_applications(rules, counts)

        suggestions = self.triage.optimize_suggestions(
            [record.triage_suggestion for record in records],
            project_context,
            categories=[record.classification.category for record in records],
        )
        records = [
            record if record.triage_suggestion is suggestion
            else record.model_copy(update={"triage_suggestion": suggestion})
            for record, suggestion in zip(records, suggestions)
        ]

        if not preserve_order:
            records.sort(key=lambda record: record.final_score, reverse=True)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Prioritized {len(records)} issues in {elapsed_ms:.1f}ms "
            f"({cache_hits} cache hits, {sum(counts.values())} rule applications)"
        )
        return records

    async def aprioritize_issues(
        self,
        issues: Sequence[Issue],
        project_context: ProjectContext,
        *,
        preserve_order: bool = False,
        cancellation: CancellationToken | None = None,
    ) -> list[IssuePrioritization]:
        """Run prioritize_issues in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            _executor,
            partial(
                self.prioritize_issues,
                issues,
                project_context,
                preserve_order=preserve_order,
                cancellation=cancellation,
            ),
        )

    @staticmethod
    def _fan_out(
        issues: Sequence[Issue],
        process_chunk,
        workers: int,
        cancellation: CancellationToken | None,
    ) -> list[tuple[IssuePrioritization, list[str]]]:
        """Split the batch into chunks and process them on a bounded pool.

        Results keep input order.
        """
        size = max(1, math.ceil(len(issues) / (workers * _CHUNKS_PER_WORKER)))
        chunks = [issues[i:i + size] for i in range(0, len(issues), size)]

        results: list[tuple[IssuePrioritization, list[str]]] = []
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="triage_batch_")
        try:
            futures = [executor.submit(process_chunk, chunk) for chunk in chunks]
            for future in futures:
                results.extend(future.result())
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
        finally:
            # pending chunks are dropped on cancellation or failure
            executor.shutdown(wait=True, cancel_futures=True)
        return results

    def _process_issue(
        self,
        issue: Issue,
        project_context: ProjectContext,
        config: PrioritizationConfiguration,
        rules: list[PrioritizationRule],
        rule_engine: RuleEngine,
        cache: PrioritizationCache | None,
        ruleset_sig: str,
        context_sig: str,
        cancellation: CancellationToken | None,
    ) -> tuple[IssuePrioritization, list[str]]:
        """Run the per-issue pipeline. Failures yield a fallback record."""
        started = time.perf_counter()
        if cancellation is not None:
            cancellation.raise_if_cancelled()

        key = None
        if cache is not None:
            key = issue_fingerprint(issue, ruleset_sig, context_sig)
            cached = cache.get_entry(key)
            if cached is not None:
                record, applied = cached
                return self._with_timing(record, started), list(applied)

        try:
            record, applied = self._prioritize_one(
                issue, project_context, config, rules, rule_engine, cancellation
            )
        except PrioritizationCancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to prioritize issue {issue.id}: {e}")
            return self._with_timing(self._fallback(issue, config), started), []

        record = self._with_timing(record, started)
        if key is not None:
            cache.set(key, record, applied)
        return record, applied

    def _prioritize_one(
        self,
        issue: Issue,
        project_context: ProjectContext,
        config: PrioritizationConfiguration,
        rules: list[PrioritizationRule],
        rule_engine: RuleEngine,
        cancellation: CancellationToken | None,
    ) -> tuple[IssuePrioritization, list[str]]:
        context = self.context_builder.build(issue, project_context)
        classification = self._classify(issue, context, config)

        if cancellation is not None:
            cancellation.raise_if_cancelled()

        result = self.scoring.score(issue, context, classification, project_context)
        algorithm = config.algorithm
        if not config.ml_settings.enabled and not config.rules.enabled:
            algorithm = FALLBACK_ALGORITHM

        record = IssuePrioritization(
            id=_prioritization_id(issue.id),
            issue_id=issue.id,
            severity=result.severity,
            impact=result.impact,
            effort=result.effort,
            business_value=result.business_value,
            final_score=result.final_score,
            context=context,
            classification=classification,
            triage_suggestion=result.suggestion,
            scoring_factors=result.factors,
            metadata=PrioritizationMetadata(
                processed_at=self._clock(),
                algorithm=algorithm,
                model_version=self.classifier.version,
                processing_time=0.001,
            ),
        )

        applied: list[str] = []
        if rules:
            record, applied = rule_engine.evaluate(issue, record, rules)

        return self.workflow.adapt_one(record, project_context), applied

    def _classify(
        self,
        issue: Issue,
        context: IssueContext,
        config: PrioritizationConfiguration,
    ) -> IssueClassification:
        if not config.ml_settings.enabled:
            return self.classifier.default_classification(issue, context)
        try:
            return self.classifier.classify(issue, context)
        except ModelNotLoadedError:
            logger.debug(f"No model loaded, default classification for {issue.id}")
        except Exception as e:
            logger.warning(f"Classification failed for issue {issue.id}: {e}")
        return self.classifier.default_classification(issue, context)

    @staticmethod
    def _with_timing(record: IssuePrioritization, started: float) -> IssuePrioritization:
        elapsed_ms = max(0.001, (time.perf_counter() - started) * 1000)
        return record.model_copy(update={
            "metadata": record.metadata.model_copy(update={"processing_time": elapsed_ms}),
        })

    def _fallback(self, issue: Issue, config: PrioritizationConfiguration) -> IssuePrioritization:
        """Basic prioritization used when the pipeline fails for an issue.

        Formula: type severity (8/5/2) + 2 if fixable, capped at 10
        """
        severity = {IssueType.ERROR: 8.0, IssueType.WARNING: 5.0}.get(issue.type, 2.0)
        final_score = min(10.0, severity + (2 if issue.fixable else 0))
        weights = config.weights

        return IssuePrioritization(
            id=_prioritization_id(issue.id),
            issue_id=issue.id,
            severity=severity,
            impact=5.0,
            effort=5.0,
            business_value=5.0,
            final_score=final_score,
            context=IssueContext(
                file_path=issue.file_path,
                complexity_metrics=ComplexityMetrics(
                    cyclomatic_complexity=5,
                    cognitive_complexity=3,
                    lines_of_code=100,
                    dependencies=10,
                ),
            ),
            classification=IssueClassification(
                category=IssueCategory.BUG,
                severity=IssueSeverity.MEDIUM,
                confidence=0.5,
                features=ClassificationFeatures(
                    code_complexity=0.5,
                    change_frequency=0.5,
                    team_impact=0.5,
                    user_facing_impact=0.5,
                    business_criticality=0.5,
                    technical_debt_impact=0.5,
                ),
            ),
            triage_suggestion=TriageSuggestion(
                action=ScoringAlgorithm.action_for_score(final_score),
                priority=score_to_priority(final_score),
                estimated_effort=2.0,
                reasoning=FALLBACK_REASONING,
                confidence=0.3,
            ),
            scoring_factors=ScoringFactors(
                severity_weight=weights.severity,
                impact_weight=weights.impact,
                effort_weight=weights.effort,
                business_value_weight=weights.business_value,
            ),
            metadata=PrioritizationMetadata(
                processed_at=self._clock(),
                algorithm=FALLBACK_ALGORITHM,
                processing_time=0.001,
            ),
        )

    # =========================================================================
    # Rules
    # =========================================================================

    def update_prioritization_rules(self, rules: Sequence[PrioritizationRule]) -> None:
        """Validate and install custom rules.

        Raises:
            InvalidRuleError: If any rule fails validation; nothing is installed
        """
        failures = {}
        for rule in rules:
            result = self.rule_engine.validate_rule(rule)
            if not result.valid:
                failures[rule.name or rule.id] = result
        if failures:
            raise InvalidRuleError(failures)

        for conflict in self.rule_engine.detect_rule_conflicts(rules):
            logger.warning(
                f"Rule conflict ({conflict.conflict_type}, {conflict.severity}) between "
                f"{conflict.rule1_id} and {conflict.rule2_id}: {conflict.description}"
            )

        self._rules = [rule for rule in rules if rule.enabled]
        self.rule_engine.rules = self._rules
        self.clear_cache()
        logger.info(f"Installed {len(self._rules)} prioritization rules")

    def optimize_prioritization_rules(
        self, historical_data: Sequence[IssueResolutionData]
    ) -> list[PrioritizationRule]:
        """Optimize the installed rules against resolution history.

        The optimized set replaces the installed rules only when
        auto-optimization is enabled.
        """
        optimized = self.rule_engine.optimize_rules(historical_data, self._rules)
        if self.config.rules.auto_optimize:
            self._rules = [rule for rule in optimized if rule.enabled]
            self.rule_engine.rules = self._rules
            self.clear_cache()
            logger.info(f"Auto-optimized rules, {len(self._rules)} remain installed")
        return optimized

    def export_rules(self) -> str:
        return RuleEngine.export_rules(self._rules)

    def import_rules(self, rules_json: str | bytes) -> list[PrioritizationRule]:
        """Parse, validate and install rules from JSON."""
        rules = self.rule_engine.import_rules(rules_json)
        self.update_prioritization_rules(rules)
        return rules

    # =========================================================================
    # Model
    # =========================================================================

    def train_classification_model(self, training_data: Sequence[IssueTrainingData]) -> ModelMetrics:
        """Train the classifier; the previous model stays active on failure."""
        try:
            metrics = self.classifier.train(training_data)
        except Exception as e:
            logger.error(f"Error training classification model: {e}")
            raise

        ml_settings = self.config.ml_settings.model_copy(
            update={"model_path": f"model-{metrics.model_version}"}
        )
        self.config = self.config.model_copy(update={"ml_settings": ml_settings})
        self.clear_cache()
        return metrics

    def get_model_metrics(self) -> ModelMetrics:
        if not self.classifier.is_ready():
            raise ModelNotLoadedError("Classification model not ready")
        return self.classifier.get_model_metrics()

    # =========================================================================
    # Triage & workflow
    # =========================================================================

    @staticmethod
    def generate_triage_suggestions(
        prioritized_issues: Sequence[IssuePrioritization],
    ) -> list[TriageSuggestion]:
        return [p.triage_suggestion for p in prioritized_issues]

    def generate_triage_rules(
        self,
        history: Sequence[IssuePrioritization],
        project_context: ProjectContext,
    ) -> list[TriageRuleRecommendation]:
        return self.triage.generate_triage_rules(history, project_context)

    def analyze_workflow(self, project_context: ProjectContext) -> WorkflowAnalysis:
        return self.workflow.analyze_workflow_patterns(project_context)

    # =========================================================================
    # Configuration & cache
    # =========================================================================

    def get_configuration(self) -> PrioritizationConfiguration:
        return self.config.model_copy(deep=True)

    def update_configuration(
        self, config: PrioritizationConfiguration | Mapping[str, Any]
    ) -> PrioritizationConfiguration:
        """Replace the configuration, or merge top-level overrides into it.

        Rebuilds the rule engine and empties the cache.
        """
        if isinstance(config, PrioritizationConfiguration):
            new_config = config
        else:
            merged = self.config.model_dump()
            merged.update(
                {key: value.model_dump() if hasattr(value, "model_dump") else value
                 for key, value in config.items()}
            )
            new_config = PrioritizationConfiguration.model_validate(merged)

        self.config = new_config
        self.scoring.update_configuration(new_config)
        self.rule_engine = RuleEngine(new_config.rules.conflict_resolution, rules=self._rules)
        self.cache = self._new_cache()
        logger.info(
            f"Configuration updated (algorithm={new_config.algorithm}, "
            f"conflict_resolution={new_config.rules.conflict_resolution})"
        )
        return new_config

    def clear_cache(self) -> None:
        self.cache.clear()


def _prioritization_id(issue_id: str) -> str:
    return f"pri-{issue_id}-{uuid.uuid4().hex[:12]}"


# =============================================================================
# Presets
# =============================================================================


def create_engine(config: PrioritizationConfiguration | None = None, **kwargs) -> PrioritizationEngine:
    """Engine with the given configuration, or settings defaults."""
    return PrioritizationEngine(config, **kwargs)


def create_performance_optimized_engine(**kwargs) -> PrioritizationEngine:
    """Weighted scoring only: no model, no rules, long-lived cache."""
    config = PrioritizationConfiguration(
        algorithm="weighted",
        ml_settings=MLSettings(enabled=False, confidence_threshold=0.8, retraining_threshold=200),
        rules=RuleSettings(enabled=False, auto_optimize=False, conflict_resolution="first-match"),
        caching=CacheSettings(enabled=True, ttl=7200, max_size=200),
    )
    return PrioritizationEngine(config, **kwargs)


def create_accuracy_optimized_engine(**kwargs) -> PrioritizationEngine:
    """Model-enhanced scoring with combined rules and a short cache TTL."""
    config = PrioritizationConfiguration(
        algorithm="ml-enhanced",
        weights=ScoringWeights(severity=0.35, impact=0.30, effort=0.15, business_value=0.20),
        ml_settings=MLSettings(enabled=True, confidence_threshold=0.6, retraining_threshold=50),
        rules=RuleSettings(enabled=True, auto_optimize=True, conflict_resolution="combine"),
        caching=CacheSettings(enabled=True, ttl=1800, max_size=50),
    )
    return PrioritizationEngine(config, **kwargs)


def create_small_project_engine(**kwargs) -> PrioritizationEngine:
    config = PrioritizationConfiguration(
        algorithm="weighted",
        weights=ScoringWeights(severity=0.4, impact=0.3, effort=0.2, business_value=0.1),
        ml_settings=MLSettings(enabled=False, confidence_threshold=0.8, retraining_threshold=500),
        rules=RuleSettings(enabled=True, auto_optimize=False, conflict_resolution="first-match"),
        caching=CacheSettings(enabled=False, ttl=0, max_size=0),
    )
    return PrioritizationEngine(config, **kwargs)


def create_enterprise_engine(**kwargs) -> PrioritizationEngine:
    config = PrioritizationConfiguration(
        algorithm="hybrid",
        weights=ScoringWeights(severity=0.25, impact=0.25, effort=0.25, business_value=0.25),
        ml_settings=MLSettings(enabled=True, confidence_threshold=0.7, retraining_threshold=100),
        rules=RuleSettings(enabled=True, auto_optimize=True, conflict_resolution="highest-weight"),
        caching=CacheSettings(enabled=True, ttl=3600, max_size=500),
    )
    return PrioritizationEngine(config, **kwargs)
