"""Heuristic future requirements: growth, performance, maintenance, structure."""

from __future__ import annotations

from statistics import mean
from typing import Optional

from config.settings import LearningConfig, RequirementType
from framework.models import FutureRequirement, MetricsSnapshot, SchemaPattern

from .patterns import family_of

STRUCTURAL_ACTIONS = {
    "new_table_addition": "Reserve capacity and naming conventions for upcoming tables",
    "table_removal": "Confirm dependent queries before further table removals",
    "new_column_addition": "Review upcoming migrations for column defaults and nullability",
    "column_removal": "Audit application code for references to removed columns",
    "new_index_addition": "Review index strategy for new access paths",
    "index_removal": "Check query plans that relied on removed indexes",
}


def growth_requirement(history: list[MetricsSnapshot],
                       config: LearningConfig) -> Optional[FutureRequirement]:
    if len(history) < 2:
        return None
    window = history[-config.growth_window:]
    oldest, newest = window[0].total_rows, window[-1].total_rows
    if oldest <= 0:
        return None
    rate = (newest - oldest) / oldest
    if rate <= config.growth_threshold:
        return None
    return FutureRequirement(
        type=RequirementType.GROWTH.value,
        target="database",
        prediction=f"Row count grew {rate:.0%} over the last {len(window)} snapshots; growth expected to continue",
        confidence=config.growth_confidence,
        timeframe="next month",
        reasoning=f"total rows {oldest} -> {newest} exceeds the {config.growth_threshold:.0%} growth threshold",
        recommended_action="Optimize indexes and scale storage capacity",
    )


def performance_requirement(history: list[MetricsSnapshot],
                            config: LearningConfig) -> Optional[FutureRequirement]:
    if len(history) < config.performance_window:
        return None
    average = mean(s.performance_score for s in history[-config.performance_window:])
    if average >= config.performance_floor:
        return None
    return FutureRequirement(
        type=RequirementType.PERFORMANCE.value,
        target="database",
        prediction=f"Average performance score {average:.1f} is trending below {config.performance_floor:.0f}",
        confidence=config.performance_confidence,
        timeframe="next week",
        reasoning=f"mean score of the last {config.performance_window} snapshots is {average:.1f}",
        recommended_action="Optimize slow queries and add missing indexes",
    )


def _needs_vacuum(snapshot: MetricsSnapshot) -> bool:
    return any(i.fix_action == "vacuum_analyze" for i in snapshot.issues)


def maintenance_requirement(history: list[MetricsSnapshot],
                            config: LearningConfig) -> Optional[FutureRequirement]:
    if len(history) < 2 or not (_needs_vacuum(history[-1]) and _needs_vacuum(history[-2])):
        return None
    tables = sorted({
        table
        for issue in history[-1].issues if issue.fix_action == "vacuum_analyze"
        for table in issue.target.get("tables", [])
    })
    return FutureRequirement(
        type=RequirementType.MAINTENANCE.value,
        target=", ".join(tables) or "database",
        prediction="Dead tuples keep accumulating between vacuums",
        confidence=config.maintenance_confidence,
        timeframe="next week",
        reasoning="vacuum was needed in the two most recent snapshots",
        recommended_action="Tune autovacuum thresholds for the affected tables",
    )


def structural_requirements(patterns: list[SchemaPattern],
                            config: LearningConfig) -> list[FutureRequirement]:
    requirements = []
    for pattern in patterns:
        family = family_of(pattern.name)
        if family is None or pattern.confidence <= config.pattern_prediction_confidence:
            continue
        label = pattern.name.replace("_", " ")
        requirements.append(FutureRequirement(
            type=family,
            target=pattern.name,
            prediction=f"Recurring {label} is likely to happen again",
            confidence=pattern.confidence,
            timeframe="next month",
            reasoning=f"observed {pattern.frequency} times, last at {pattern.last_used}",
            recommended_action=STRUCTURAL_ACTIONS[pattern.name],
        ))
    return requirements
