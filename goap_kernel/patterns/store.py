"""
Pattern Store — durable, concurrently-readable storage of learned patterns.

Behavioral Contract:
- store() deduplicates: a pattern whose context is near-identical to an
  existing one (similarity >= dedup threshold) is merged, never duplicated.
- find_candidates() ranks by similarity * ranking confidence; it does not
  check whether a pattern's preconditions hold (that is the planner's job).
- update() is an atomic per-pattern read-modify-write using optimistic
  versioning. Conflicts are retried with bounded backoff; no write is lost.
- consolidate() merges near-duplicates and prunes low-value patterns in
  bounded batches, one pattern at a time.
- Corrupted rows are skipped and logged. Backend failures raise
  StoreUnavailable.

Prototype: SQLite. The connection is shared across threads; every statement
runs inside a short critical section, never a store-wide transaction.
"""

import json
import logging
import sqlite3
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, List, Mapping, Optional, Tuple
from uuid import uuid4

from pydantic import ValidationError

from goap_kernel.errors import ConfidenceUpdateConflict, StoreUnavailable
from goap_kernel.learning.confidence import ConfidenceUpdater
from goap_kernel.models.config import ConsolidationConfig, PlannerConfig
from goap_kernel.models.pattern import GeneralizationLevel, Pattern, PatternMatch
from goap_kernel.models.plan import ExecutionOutcome
from goap_kernel.models.state import StateValue
from goap_kernel.models.stats import ConsolidationReport, PatternLibraryStats
from goap_kernel.patterns.similarity import (
    ContextSimilarity,
    build_signature,
    default_similarity,
)

logger = logging.getLogger(__name__)

PatternMutator = Callable[[Pattern], Pattern]

_LEVEL_ORDER = [
    GeneralizationLevel.SPECIFIC,
    GeneralizationLevel.MODERATE,
    GeneralizationLevel.GENERAL,
]


def new_pattern_id() -> str:
    return f"pat_{uuid4().hex[:12]}"


def _pooled_cost(primary: Pattern, secondary: Pattern) -> Tuple[float, float]:
    """Usage-weighted mean and pooled variance of two cost distributions."""
    w1 = max(primary.usage_count, 1)
    w2 = max(secondary.usage_count, 1)
    total = w1 + w2
    mean = (w1 * primary.average_cost + w2 * secondary.average_cost) / total
    variance = (
        w1 * (primary.cost_variance + (primary.average_cost - mean) ** 2)
        + w2 * (secondary.cost_variance + (secondary.average_cost - mean) ** 2)
    ) / total
    return mean, variance


def _evidence_window(pattern: Pattern) -> List[bool]:
    """Outcomes counted in the pattern's totals, oldest first."""
    in_window = len(pattern.recent_outcomes)
    window_successes = sum(1 for ok in pattern.recent_outcomes if ok)
    seed_successes = max(0, pattern.success_count - window_successes)
    seed_failures = max(0, pattern.usage_count - in_window - seed_successes)
    return [False] * seed_failures + [True] * seed_successes + list(pattern.recent_outcomes)


def merge_patterns(
    primary: Pattern,
    secondary: Pattern,
    updater: ConfidenceUpdater,
) -> Pattern:
    """
    Fold secondary into primary. Primary keeps its id, context and version.
    Cost statistics are pooled by usage, the higher confidence wins, usage
    and success counts are summed.
    """
    mean, variance = _pooled_cost(primary, secondary)
    usage = primary.usage_count + secondary.usage_count
    successes = primary.success_count + secondary.success_count

    if secondary.confidence > primary.confidence or (
        secondary.confidence == primary.confidence
        and secondary.action_sequence.total_cost < primary.action_sequence.total_cost
    ):
        sequence = secondary.action_sequence
    else:
        sequence = primary.action_sequence

    level = max(
        _LEVEL_ORDER.index(primary.generalization_level),
        _LEVEL_ORDER.index(secondary.generalization_level),
    )
    generalization = _LEVEL_ORDER[level]
    if primary.context.digest != secondary.context.digest:
        generalization = generalization.broaden()

    window = (list(primary.recent_outcomes) + _evidence_window(secondary))[
        -updater.config.degradation_window:
    ]
    last_used = max(
        (t for t in (primary.last_used, secondary.last_used) if t is not None),
        default=None,
    )

    return primary.model_copy(update={
        "action_sequence": sequence,
        "confidence": max(primary.confidence, secondary.confidence),
        "usage_count": usage,
        "success_count": successes,
        "average_cost": mean,
        "cost_variance": variance,
        "created_at": min(primary.created_at, secondary.created_at),
        "last_used": last_used,
        "generalization_level": generalization,
        "recent_outcomes": window,
        "degraded": updater.is_degraded(window, usage, successes),
    })


class PatternStore:
    """
    SQLite-backed pattern library.
    Rows hold the full pattern as JSON plus indexed scalar columns.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        config: Optional[PlannerConfig] = None,
        similarity: Optional[ContextSimilarity] = None,
    ):
        self.db_path = db_path
        self.config = config or PlannerConfig()
        self.similarity = similarity or default_similarity
        self.updater = ConfidenceUpdater(self.config)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the pattern and outcome tables if they don't exist."""
        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS patterns (
                    id TEXT PRIMARY KEY,
                    context_digest TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    degraded INTEGER NOT NULL DEFAULT 0,
                    generalization_level TEXT NOT NULL DEFAULT 'specific',
                    created_at TEXT NOT NULL,
                    last_used TEXT,
                    version INTEGER NOT NULL DEFAULT 0,
                    record_json TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_digest ON patterns(context_digest)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_confidence ON patterns(confidence DESC)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_created ON patterns(created_at)
            """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS execution_outcomes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    plan_id TEXT NOT NULL,
                    pattern_id TEXT,
                    success INTEGER NOT NULL,
                    achieved_goal INTEGER NOT NULL,
                    actual_cost REAL NOT NULL,
                    estimated_cost REAL NOT NULL,
                    cost_variance REAL NOT NULL,
                    execution_duration REAL NOT NULL,
                    outcome_json TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_outcomes_plan ON execution_outcomes(plan_id)
            """)
            self._conn.commit()

    # --- Low-level access ---

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Pattern store query failed: {exc}") from exc

    def _write(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement atomically. Returns the affected row count."""
        try:
            with self._lock:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Pattern store write failed: {exc}") from exc

    def _deserialize(self, row: sqlite3.Row) -> Optional[Pattern]:
        """Rebuild a pattern from its row. Corrupted rows are skipped."""
        try:
            pattern = Pattern.model_validate_json(row["record_json"])
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning("Skipping corrupted pattern row %s: %s", row["id"], exc)
            return None
        return pattern.model_copy(update={"version": row["version"]})

    @staticmethod
    def _columns(pattern: Pattern) -> tuple:
        record_json = pattern.model_dump_json(exclude={"version"})
        return (
            pattern.context.digest,
            pattern.confidence,
            pattern.usage_count,
            pattern.success_count,
            int(pattern.degraded),
            pattern.generalization_level.value,
            pattern.created_at.isoformat(),
            pattern.last_used.isoformat() if pattern.last_used else None,
            record_json,
        )

    def _insert(self, pattern: Pattern) -> Pattern:
        inserted = pattern.model_copy(update={"version": 0})
        self._write(
            """
            INSERT INTO patterns (
                id, context_digest, confidence, usage_count, success_count,
                degraded, generalization_level, created_at, last_used,
                record_json, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
            """,
            (inserted.id,) + self._columns(inserted),
        )
        return inserted

    def _write_if_version(self, pattern: Pattern, expected_version: int) -> bool:
        """Compare-and-swap on the version column."""
        changed = self._write(
            """
            UPDATE patterns
            SET context_digest = ?, confidence = ?, usage_count = ?,
                success_count = ?, degraded = ?, generalization_level = ?,
                created_at = ?, last_used = ?, record_json = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            self._columns(pattern) + (pattern.id, expected_version),
        )
        return changed == 1

    # --- Reads ---

    def get(self, pattern_id: str) -> Optional[Pattern]:
        """Point lookup by id."""
        rows = self._query(
            "SELECT id, version, record_json FROM patterns WHERE id = ?",
            (pattern_id,),
        )
        return self._deserialize(rows[0]) if rows else None

    def list_patterns(self, limit: Optional[int] = None) -> List[Pattern]:
        """Patterns ordered by confidence, then usage. Corrupted rows are skipped."""
        sql = (
            "SELECT id, version, record_json FROM patterns "
            "ORDER BY confidence DESC, usage_count DESC, rowid"
        )
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        patterns = []
        for row in self._query(sql, params):
            pattern = self._deserialize(row)
            if pattern is not None:
                patterns.append(pattern)
        return patterns

    def count(self) -> int:
        rows = self._query("SELECT COUNT(*) AS cnt FROM patterns")
        return rows[0]["cnt"]

    def find_candidates(
        self,
        goal: Mapping[str, StateValue],
        current_state: Mapping[str, StateValue],
        k: Optional[int] = None,
        match_threshold: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> List[PatternMatch]:
        """
        Up to k patterns ranked by similarity * ranking confidence,
        filtered to similarity >= match threshold.
        """
        k = k if k is not None else self.config.candidate_limit
        threshold = (
            match_threshold if match_threshold is not None
            else self.config.pattern_match_threshold
        )
        now = now or datetime.utcnow()
        query = build_signature(goal, current_state, self.config.context_ignore_keys)

        matches = []
        for pattern in self.list_patterns(limit=self.config.candidate_scan_limit):
            similarity = self.similarity(query, pattern.context)
            if similarity < threshold:
                continue
            matches.append(PatternMatch(
                pattern=pattern,
                similarity=similarity,
                ranking_confidence=self.updater.ranking_confidence(pattern, now),
            ))

        matches.sort(key=lambda m: (m.score, m.similarity), reverse=True)
        return matches[:k]

    # --- Writes ---

    def store(self, pattern: Pattern) -> str:
        """
        Persist a pattern, merging it into an existing near-duplicate if one
        exists. Returns the id of the pattern that now holds the evidence.
        Storing an already-stored pattern again folds its evidence in a
        second time.
        """
        if self.get(pattern.id) is not None:
            return self._merge_into(pattern.id, pattern, 1.0)

        best: Optional[Tuple[float, Pattern]] = None
        for existing in self.list_patterns(limit=self.config.candidate_scan_limit):
            if existing.id == pattern.id:
                continue
            similarity = self.similarity(pattern.context, existing.context)
            if similarity >= self.config.dedup_similarity_threshold:
                if best is None or similarity > best[0]:
                    best = (similarity, existing)

        if best is not None:
            merged_id = self._merge_into(best[1].id, pattern, best[0])
            if merged_id is not None:
                return merged_id

        with self._lock:
            # Exact duplicates racing past the scan above are merged here
            rows = self._query(
                "SELECT id FROM patterns WHERE context_digest = ? OR id = ? LIMIT 1",
                (pattern.context.digest, pattern.id),
            )
            if rows:
                target = self._merge_into(rows[0]["id"], pattern, 1.0)
                if target is not None:
                    return target
            self._insert(pattern)

        logger.info(
            "Stored new pattern %s (%d actions, confidence %.2f)",
            pattern.id, len(pattern.action_sequence.actions), pattern.confidence,
        )
        return pattern.id

    def _merge_into(self, target_id: str, pattern: Pattern, similarity: float) -> Optional[str]:
        merged = self.update(
            target_id, lambda current: merge_patterns(current, pattern, self.updater)
        )
        if merged is None:
            return None
        logger.info(
            "Merged pattern into %s (similarity %.2f, usage now %d)",
            merged.id, similarity, merged.usage_count,
        )
        return merged.id

    def update(self, pattern_id: str, mutator: PatternMutator) -> Optional[Pattern]:
        """
        Atomically apply a mutation to one pattern. The mutator must be a
        pure function of the pattern it receives: it is re-run on fresh data
        after a version conflict. Returns None if the pattern does not exist.
        """
        attempts = self.config.max_update_attempts
        for attempt in range(1, attempts + 1):
            current = self.get(pattern_id)
            if current is None:
                return None
            updated = mutator(current)
            if self._write_if_version(updated, current.version):
                return updated.model_copy(update={"version": current.version + 1})
            if attempt < attempts:
                time.sleep(self.config.update_backoff_ms * attempt / 1000.0)

        logger.warning("%s; applying under store lock", ConfidenceUpdateConflict(pattern_id, attempts))
        with self._lock:
            current = self.get(pattern_id)
            if current is None:
                return None
            updated = mutator(current)
            if not self._write_if_version(updated, current.version):
                raise ConfidenceUpdateConflict(pattern_id, attempts + 1)
            return updated.model_copy(update={"version": current.version + 1})

    def delete(self, pattern_id: str, expected_version: Optional[int] = None) -> bool:
        """Delete a pattern; with expected_version, only if nobody wrote it since."""
        if expected_version is None:
            return self._write("DELETE FROM patterns WHERE id = ?", (pattern_id,)) == 1
        return self._write(
            "DELETE FROM patterns WHERE id = ? AND version = ?",
            (pattern_id, expected_version),
        ) == 1

    def _absorb(self, target_id: str, pattern: Pattern) -> bool:
        """
        Move one pattern's evidence into target. The source row is claimed
        with a versioned delete first, so a concurrent outcome update either
        lands before the claim (and is re-read) or finds the pattern gone.
        """
        source = pattern
        for _ in range(self.config.max_update_attempts):
            if self.delete(source.id, expected_version=source.version):
                break
            source = self.get(pattern.id)
            if source is None:
                return False
        else:
            logger.info("Pattern %s kept changing; deferring its consolidation", pattern.id)
            return False

        if self.update(target_id, lambda current: merge_patterns(current, source, self.updater)) is None:
            # Target vanished meanwhile, put the source back untouched
            self._insert(source)
            return False
        return True

    # --- Outcome history ---

    def record_outcome(
        self,
        outcome: ExecutionOutcome,
        pattern_id: Optional[str] = None,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        """Append an execution outcome to the history table."""
        recorded_at = recorded_at or datetime.utcnow()
        self._write(
            """
            INSERT INTO execution_outcomes (
                plan_id, pattern_id, success, achieved_goal, actual_cost,
                estimated_cost, cost_variance, execution_duration,
                outcome_json, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                outcome.plan_id,
                pattern_id,
                int(outcome.success),
                int(outcome.achieved_goal),
                outcome.actual_cost,
                outcome.estimated_cost,
                outcome.cost_variance,
                outcome.execution_duration,
                outcome.model_dump_json(),
                recorded_at.isoformat(),
            ),
        )

    def get_outcomes(
        self,
        plan_id: Optional[str] = None,
        pattern_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ExecutionOutcome]:
        """Most recent outcomes, oldest first."""
        sql = "SELECT outcome_json FROM execution_outcomes WHERE 1=1"
        params: list = []
        if plan_id:
            sql += " AND plan_id = ?"
            params.append(plan_id)
        if pattern_id:
            sql += " AND pattern_id = ?"
            params.append(pattern_id)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = self._query(sql, tuple(params))
        return [
            ExecutionOutcome.model_validate_json(r["outcome_json"])
            for r in reversed(rows)
        ]

    # --- Statistics ---

    def get_stats(self) -> PatternLibraryStats:
        patterns = self.list_patterns()
        if not patterns:
            return PatternLibraryStats()
        by_level: dict = {}
        for p in patterns:
            by_level[p.generalization_level.value] = by_level.get(p.generalization_level.value, 0) + 1
        return PatternLibraryStats(
            total_patterns=len(patterns),
            patterns_by_level=by_level,
            average_confidence=sum(p.confidence for p in patterns) / len(patterns),
            average_usage=sum(p.usage_count for p in patterns) / len(patterns),
            high_confidence_patterns=sum(1 for p in patterns if p.confidence > 0.8),
            low_usage_patterns=sum(1 for p in patterns if p.usage_count < 3),
            degraded_patterns=sum(1 for p in patterns if p.degraded),
        )

    # --- Maintenance ---

    def consolidate(
        self,
        config: Optional[ConsolidationConfig] = None,
        now: Optional[datetime] = None,
    ) -> ConsolidationReport:
        """
        Merge near-duplicate patterns and prune low-value ones.
        Works on bounded batches; each merge or delete touches one pattern.
        """
        config = config or ConsolidationConfig()
        now = now or datetime.utcnow()
        started = time.monotonic()
        scanned = merged = pruned = 0

        ids = [
            r["id"] for r in self._query(
                "SELECT id FROM patterns ORDER BY confidence DESC, usage_count DESC, rowid"
            )
        ]
        anchors: List[Pattern] = []
        for offset in range(0, len(ids), config.batch_size):
            for pattern_id in ids[offset:offset + config.batch_size]:
                pattern = self.get(pattern_id)
                if pattern is None:
                    continue
                scanned += 1
                target = next(
                    (a for a in anchors
                     if self.similarity(a.context, pattern.context) >= config.merge_similarity),
                    None,
                )
                if target is None:
                    anchors.append(pattern)
                    continue
                if self._absorb(target.id, pattern):
                    merged += 1
                    logger.debug("Consolidated %s into %s", pattern.id, target.id)

        cutoff = now - timedelta(days=config.retention_days)
        stale = self._query(
            """
            SELECT id FROM patterns
            WHERE confidence < ? AND usage_count < ? AND created_at < ?
            """,
            (config.prune_confidence_floor, config.prune_usage_floor, cutoff.isoformat()),
        )
        for row in stale:
            # Criteria re-checked in the delete so a concurrent update rescues the row
            deleted = self._write(
                """
                DELETE FROM patterns
                WHERE id = ? AND confidence < ? AND usage_count < ? AND created_at < ?
                """,
                (row["id"], config.prune_confidence_floor, config.prune_usage_floor,
                 cutoff.isoformat()),
            )
            if deleted == 1:
                pruned += 1

        report = ConsolidationReport(
            scanned=scanned,
            merged=merged,
            pruned=pruned,
            duration_ms=round((time.monotonic() - started) * 1000, 3),
            ran_at=now,
        )
        logger.info(
            "Consolidation complete: scanned=%d merged=%d pruned=%d",
            report.scanned, report.merged, report.pruned,
        )
        return report

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
