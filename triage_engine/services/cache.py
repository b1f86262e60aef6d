"""In-memory result cache for prioritizations.

Entries are keyed by a fingerprint of the issue, the ruleset and the
workflow/engine configuration, expire after a TTL and are bounded in
size. The key space is split over lock stripes so concurrent readers and
writers only contend on the same shard.
"""

import hashlib
import json
import logging
import threading
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

from triage_engine.schemas.issue import Issue
from triage_engine.schemas.prioritization import IssuePrioritization, PrioritizationConfiguration
from triage_engine.schemas.project import ProjectContext
from triage_engine.schemas.rule import PrioritizationRule

logger = logging.getLogger(__name__)

SHARD_COUNT = 16

# Metadata that changes on every application and must not bust the cache
_VOLATILE_RULE_METADATA = {"metadata": {"application_count", "last_applied"}}


def _digest(*parts: str) -> str:
    """Stable hex digest. Python's hash() is salted per process."""
    h = hashlib.blake2b(digest_size=16)
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\x1f")
    return h.hexdigest()


def ruleset_signature(rules: Iterable[PrioritizationRule]) -> str:
    payload = [
        rule.model_dump(mode="json", by_alias=True, exclude=_VOLATILE_RULE_METADATA)
        for rule in rules
        if rule.enabled
    ]
    return _digest(json.dumps(payload, sort_keys=True))


def context_signature(project_context: ProjectContext, config: PrioritizationConfiguration) -> str:
    return _digest(
        json.dumps(project_context.model_dump(mode="json"), sort_keys=True, default=str),
        json.dumps(config.model_dump(mode="json"), sort_keys=True),
    )


def issue_fingerprint(issue: Issue, ruleset_sig: str, context_sig: str) -> str:
    """Cache key for one issue under a given ruleset and configuration."""
    return _digest(issue.model_dump_json(), ruleset_sig, context_sig)


class PrioritizationCache:
    """Striped TTL cache of IssuePrioritization records.

    Records are immutable, so the cached instance is shared; hits are
    returned as copies flagged with ``cache_hit=True``. Each entry also
    keeps the ids of the rules that produced it, so hits can be counted
    as rule applications.
    """

    def __init__(self, ttl_seconds: int = 3600, max_size: int = 10_000):
        self._ttl = timedelta(seconds=max(1, ttl_seconds))
        self._shard_max = max(1, -(-max_size // SHARD_COUNT))
        self._shards: list[dict[str, tuple[IssuePrioritization, tuple[str, ...], datetime]]] = [
            {} for _ in range(SHARD_COUNT)
        ]
        self._locks = [threading.Lock() for _ in range(SHARD_COUNT)]

    def _index(self, key: str) -> int:
        return int(key[:8], 16) % SHARD_COUNT

    def get(self, key: str) -> IssuePrioritization | None:
        entry = self.get_entry(key)
        return entry[0] if entry is not None else None

    def get_entry(self, key: str) -> tuple[IssuePrioritization, tuple[str, ...]] | None:
        """Cached record and the ids of the rules applied to it."""
        index = self._index(key)
        with self._locks[index]:
            shard = self._shards[index]
            hit = shard.get(key)
            if not hit:
                return None
            value, applied_rules, expires_at = hit
            if datetime.now(UTC) >= expires_at:
                shard.pop(key, None)
                return None

        record = value.model_copy(update={
            "metadata": value.metadata.model_copy(update={"cache_hit": True}),
        })
        return record, applied_rules

    def set(self, key: str, value: IssuePrioritization, applied_rules: Sequence[str] = ()) -> None:
        index = self._index(key)
        with self._locks[index]:
            shard = self._shards[index]
            if key not in shard and len(shard) >= self._shard_max:
                # drop the oldest tenth of the shard by insertion order
                for stale in list(shard.keys())[: max(1, self._shard_max // 10)]:
                    shard.pop(stale, None)
            shard[key] = (value, tuple(applied_rules), datetime.now(UTC) + self._ttl)

    def clear(self) -> None:
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                shard.clear()
        logger.debug("Prioritization cache cleared")

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)
