"""Tests for the prioritization result cache and fingerprints."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from conftest import FIXED_NOW, make_issue, make_project_context
from triage_engine.schemas.classification import ClassificationFeatures, IssueClassification
from triage_engine.schemas.issue import IssueContext
from triage_engine.schemas.prioritization import (
    IssuePrioritization,
    PrioritizationConfiguration,
    PrioritizationMetadata,
    ScoringFactors,
    ScoringWeights,
    TriageAction,
    TriageSuggestion,
)
from triage_engine.schemas.project import Workflow
from triage_engine.schemas.rule import PrioritizationRule, RuleCondition, RuleOperator
from triage_engine.services import cache as cache_module
from triage_engine.services.cache import (
    PrioritizationCache,
    context_signature,
    issue_fingerprint,
    ruleset_signature,
)


def cached_record(issue_id: str = "issue-1") -> IssuePrioritization:
    return IssuePrioritization(
        id=f"pri-{issue_id}",
        issue_id=issue_id,
        severity=5,
        impact=5,
        effort=5,
        business_value=5,
        final_score=5.0,
        context=IssueContext(file_path="/src/a.ts"),
        classification=IssueClassification(
            category="bug", severity="medium", confidence=0.7, features=ClassificationFeatures()
        ),
        triage_suggestion=TriageSuggestion(action=TriageAction.DELEGATE, priority=5, estimated_effort=1),
        scoring_factors=ScoringFactors(
            severity_weight=0.3, impact_weight=0.25, effort_weight=0.2, business_value_weight=0.25
        ),
        metadata=PrioritizationMetadata(processed_at=FIXED_NOW, algorithm="hybrid", processing_time=1),
    )


def security_rule(**kwargs) -> PrioritizationRule:
    return PrioritizationRule(
        id="r1",
        name="security",
        conditions=[RuleCondition(field="type", operator=RuleOperator.EQUALS, value="error")],
        **kwargs,
    )


class TestFingerprints:

    def test_fingerprint_is_stable(self):
        ctx_sig = context_signature(make_project_context(), PrioritizationConfiguration())
        rules_sig = ruleset_signature([security_rule()])

        first = issue_fingerprint(make_issue(), rules_sig, ctx_sig)
        second = issue_fingerprint(make_issue(), rules_sig, ctx_sig)

        assert first == second
        assert len(first) == 32

    def test_fingerprint_changes_with_inputs(self):
        config = PrioritizationConfiguration()
        base_ctx = context_signature(make_project_context(), config)
        rules_sig = ruleset_signature([])
        base = issue_fingerprint(make_issue(), rules_sig, base_ctx)

        other_issue = issue_fingerprint(make_issue(message="different"), rules_sig, base_ctx)
        other_workflow = issue_fingerprint(
            make_issue(), rules_sig, context_signature(make_project_context(Workflow.KANBAN), config)
        )
        other_config = issue_fingerprint(
            make_issue(),
            rules_sig,
            context_signature(
                make_project_context(),
                PrioritizationConfiguration(weights=ScoringWeights(severity=0.5, impact=0.1)),
            ),
        )

        assert len({base, other_issue, other_workflow, other_config}) == 4

    def test_ruleset_signature_ignores_application_metadata(self):
        rule = security_rule()
        before = ruleset_signature([rule])

        rule.metadata.application_count = 12
        rule.metadata.last_applied = FIXED_NOW

        assert ruleset_signature([rule]) == before
        assert ruleset_signature([security_rule(weight=0.5)]) != before

    def test_disabled_rules_do_not_affect_signature(self):
        assert ruleset_signature([security_rule(enabled=False)]) == ruleset_signature([])


class TestPrioritizationCache:

    def test_hit_is_flagged(self):
        cache = PrioritizationCache()
        cache.set("a" * 32, cached_record())

        hit = cache.get("a" * 32)

        assert hit is not None
        assert hit.metadata.cache_hit is True
        assert hit.final_score == 5.0
        assert cache.get("b" * 32) is None

    def test_entries_expire(self, monkeypatch):
        cache = PrioritizationCache(ttl_seconds=1)
        cache.set("a" * 32, cached_record())

        later = datetime.now(UTC) + timedelta(seconds=5)

        class FrozenDatetime(datetime):
            @classmethod
            def now(cls, tz=None):
                return later

        monkeypatch.setattr(cache_module, "datetime", FrozenDatetime)

        assert cache.get("a" * 32) is None
        assert len(cache) == 0

    def test_size_is_bounded(self):
        cache = PrioritizationCache(max_size=32)
        for i in range(500):
            cache.set(f"{i:032x}", cached_record(str(i)))
        assert len(cache) <= 32

    def test_clear(self):
        cache = PrioritizationCache()
        cache.set("a" * 32, cached_record())
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize("max_size", [0, 1])
    def test_tiny_caches_still_work(self, max_size):
        cache = PrioritizationCache(max_size=max_size)
        cache.set("a" * 32, cached_record())
        assert cache.get("a" * 32) is not None

    def test_entry_keeps_applied_rules(self):
        cache = PrioritizationCache()
        cache.set("a" * 32, cached_record(), ["r1", "r2"])

        record, applied = cache.get_entry("a" * 32)

        assert record.metadata.cache_hit is True
        assert applied == ("r1", "r2")

    def test_concurrent_readers_and_writers(self):
        cache = PrioritizationCache(max_size=10_000)
        start = threading.Barrier(8)

        def worker(worker_id: int) -> int:
            start.wait()
            hits = 0
            for i in range(200):
                key = f"{worker_id:08x}{i:024x}"
                cache.set(key, cached_record(f"{worker_id}-{i}"))
                hit = cache.get(key)
                if hit is not None and hit.issue_id == f"{worker_id}-{i}":
                    hits += 1
            return hits

        with ThreadPoolExecutor(max_workers=8) as pool:
            hits = list(pool.map(worker, range(8)))

        assert hits == [200] * 8
        assert len(cache) == 8 * 200
