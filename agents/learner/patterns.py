"""Structural change patterns mined from consecutive snapshots."""

from __future__ import annotations

from typing import Iterator

from config.settings import IssueType, LearningConfig
from framework.models import MetricsSnapshot, SchemaPattern

# family -> (snapshot field, pattern on increase, pattern on decrease)
STRUCTURAL_FAMILIES = {
    "table": ("table_count", "new_table_addition", "table_removal"),
    "column": ("column_count", "new_column_addition", "column_removal"),
    "index": ("index_count", "new_index_addition", "index_removal"),
}

SCHEMA_DRIFT_RECURRENCE = "schema_drift_recurrence"


def recurrence_pattern_name(signature: str) -> str:
    """Pattern tracking how often issues with this signature come back."""
    return f"recurring:{signature}"


def pattern_id(name: str) -> str:
    return f"pattern_{name}"


def family_of(pattern_name: str) -> str | None:
    for family, (_, up, down) in STRUCTURAL_FAMILIES.items():
        if pattern_name in (up, down):
            return family
    return None


def observations(history: list[MetricsSnapshot]) -> Iterator[tuple[str, str]]:
    """
    Yield ``(pattern name, observed at)`` in history order.

    Structural deltas compare each count with its last observed value; a
    snapshot whose count is unknown (None) contributes no delta.
    """
    last_seen: dict[str, int] = {}
    for snapshot in history:
        for field, up, down in STRUCTURAL_FAMILIES.values():
            value = getattr(snapshot, field)
            if value is None:
                continue
            if field in last_seen:
                delta = value - last_seen[field]
                if delta > 0:
                    yield up, snapshot.timestamp
                elif delta < 0:
                    yield down, snapshot.timestamp
            last_seen[field] = value

        if any(i.type == IssueType.SCHEMA_DRIFT.value for i in snapshot.issues):
            yield SCHEMA_DRIFT_RECURRENCE, snapshot.timestamp

        seen = set()
        for issue in snapshot.issues:
            if issue.signature not in seen:
                seen.add(issue.signature)
                yield recurrence_pattern_name(issue.signature), snapshot.timestamp


def learn_patterns(history: list[MetricsSnapshot], config: LearningConfig) -> list[SchemaPattern]:
    """Replay ``history`` into patterns. Same history gives the same patterns."""
    patterns: dict[str, SchemaPattern] = {}
    for name, observed_at in observations(history):
        pattern = patterns.get(name)
        if pattern is None:
            patterns[name] = SchemaPattern(
                id=pattern_id(name),
                name=name,
                frequency=1,
                last_used=observed_at,
                confidence=config.pattern_initial_confidence,
            )
        else:
            pattern.reinforce(observed_at, config.pattern_confidence_step,
                              config.pattern_confidence_cap)
    return list(patterns.values())
