"""Tests for the Pattern Learner."""

import pytest

from agents.learner import PatternLearner
from config.settings import LearningConfig
from framework.agent_framework import AgentFramework, EventType
from tests.conftest import make_issue, make_snapshot


def history_of(**series):
    """Snapshots from parallel per-field series, e.g. ``total_rows=[...]``."""
    length = len(next(iter(series.values())))
    return [
        make_snapshot(timestamp=f"2026-03-{i + 1:02d}T00:00:00+00:00",
                      **{name: values[i] for name, values in series.items()})
        for i in range(length)
    ]


def requirements_of(history, rtype, config=None):
    _, requirements = PatternLearner(config).learn(history)
    return [r for r in requirements if r.type == rtype]


class TestGrowth:

    def test_sustained_growth_predicted(self):
        (growth,) = requirements_of(history_of(total_rows=[100, 120, 140, 180, 230]), "growth")
        assert growth.confidence == 0.8
        assert growth.target == "database"
        assert growth.to_prediction().type == "growth"

    def test_flat_rows_predict_nothing(self):
        assert requirements_of(history_of(total_rows=[100, 101, 103, 104, 108]), "growth") == []

    def test_only_the_window_counts(self):
        rows = [10, 100, 100, 100, 100, 105]
        assert requirements_of(history_of(total_rows=rows), "growth") == []

    def test_empty_origin_is_skipped(self):
        assert requirements_of(history_of(total_rows=[0, 50, 90]), "growth") == []

    def test_single_snapshot(self):
        assert requirements_of(history_of(total_rows=[100]), "growth") == []


class TestPerformance:

    def test_low_average_predicted(self):
        (perf,) = requirements_of(history_of(performance_score=[80, 60, 65]), "performance")
        assert perf.confidence == 0.9

    def test_needs_full_window(self):
        assert requirements_of(history_of(performance_score=[60, 65]), "performance") == []

    def test_recent_recovery(self):
        history = history_of(performance_score=[40, 40, 90, 95, 100])
        assert requirements_of(history, "performance") == []


class TestMaintenance:

    def test_repeated_vacuum_need(self):
        vacuum = dict(fix_action="vacuum_analyze", target={"tables": ["worker_attendance"]})
        history = [
            make_snapshot(issues=[make_issue(**vacuum)]),
            make_snapshot(issues=[make_issue(**vacuum)]),
        ]
        (req,) = requirements_of(history, "maintenance")
        assert req.target == "worker_attendance"
        assert req.confidence == 0.7

    def test_single_vacuum_need(self):
        history = [
            make_snapshot(),
            make_snapshot(issues=[make_issue(fix_action="vacuum_analyze", target={"tables": ["workers"]})]),
        ]
        assert requirements_of(history, "maintenance") == []


class TestPatterns:

    def test_table_additions_reinforce(self):
        patterns, _ = PatternLearner().learn(history_of(table_count=[2, 3, 4]))

        (pattern,) = patterns
        assert pattern.name == "new_table_addition"
        assert pattern.frequency == 2
        assert pattern.confidence == 0.65
        assert pattern.adaptations == 1
        assert pattern.last_used == "2026-03-03T00:00:00+00:00"

    def test_removals_and_other_families(self):
        patterns, _ = PatternLearner().learn(
            history_of(table_count=[3, 2, 2], column_count=[4, 4, 6], index_count=[2, 3, 1])
        )
        names = sorted(p.name for p in patterns)
        assert names == ["index_removal", "new_column_addition", "new_index_addition", "table_removal"]

    def test_unknown_counts_are_not_structural_changes(self):
        patterns, _ = PatternLearner().learn(
            history_of(column_count=[4, None, 4, None, 4], index_count=[2, None, 2, None, 2])
        )
        assert patterns == []

    def test_change_across_unknown_count_is_observed_once(self):
        patterns, _ = PatternLearner().learn(history_of(column_count=[4, None, 6]))
        (pattern,) = patterns
        assert pattern.name == "new_column_addition"
        assert pattern.frequency == 1
        assert pattern.last_used == "2026-03-03T00:00:00+00:00"

    def test_structural_prediction_from_confident_pattern(self):
        history = history_of(table_count=[1, 2, 3, 4, 5])
        patterns, requirements = PatternLearner().learn(history)

        assert patterns[0].confidence == 0.75
        (table,) = [r for r in requirements if r.type == "table"]
        assert table.target == "new_table_addition"
        assert table.to_prediction() is None

    def test_pattern_at_threshold_predicts_nothing(self):
        _, requirements = PatternLearner().learn(history_of(table_count=[1, 2, 3, 4]))
        assert [r for r in requirements if r.type == "table"] == []

    def test_recurring_issues_and_drift(self):
        drift = make_issue(type="schema_drift", severity="high", auto_fixable=False, fix_action=None)
        slow = make_issue(fix_action="analyze_tables")
        history = [
            make_snapshot(issues=[drift, slow, make_issue(fix_action="analyze_tables")]),
            make_snapshot(issues=[drift]),
        ]
        patterns = {p.name: p for p in PatternLearner().learn(history)[0]}

        assert patterns["schema_drift_recurrence"].frequency == 2
        assert patterns["recurring:schema_drift:manual"].frequency == 2
        assert patterns["recurring:performance:analyze_tables"].frequency == 1

    def test_replay_is_deterministic(self):
        history = history_of(
            table_count=[2, 3, 3, 4, 5], total_rows=[100, 130, 170, 220, 300],
            performance_score=[70, 60, 55, 50, 65],
        )
        learner = PatternLearner()
        assert learner.learn(history) == learner.learn(list(history))


class TestProgress:

    def test_progress_scales_with_history(self):
        learner = PatternLearner(LearningConfig(learning_target_snapshots=10))
        history = history_of(total_rows=[1, 2, 3, 4, 5])
        assert learner.learning_progress(history) == 50
        assert learner.learning_progress(history * 4) == 100

    def test_progress_never_decreases(self):
        learner = PatternLearner()
        assert learner.learning_progress([], previous=40) == 40


@pytest.mark.asyncio
async def test_learn_tool_emits_events():
    framework = AgentFramework()
    learner = PatternLearner()
    framework.register_agent(learner)

    patterns, requirements = await learner.execute_tool(
        "learn_from_history", history_of(total_rows=[100, 200], table_count=[2, 3]),
    )

    assert len(framework.events(EventType.PATTERN_LEARNED)) == len(patterns) == 1
    assert len(framework.events(EventType.PREDICTION_GENERATED)) == len(requirements) == 1
