"""Tests for SystemStateManager."""

import asyncio
import threading

import pytest

from config.settings import DecisionOutcome, SystemStatus
from framework.errors import ControllerStateError, PolicyViolation
from framework.models import AIDecision, BackupMarker, Recommendation, utc_now
from framework.state import SystemStateManager
from tests.conftest import make_snapshot, replace_safety


def recommendation(description: str, rec_type: str = "performance") -> Recommendation:
    return Recommendation(
        id=f"rec_{description}", type=rec_type, priority="medium", description=description,
        ai_reasoning="r", estimated_impact="i", timeframe="this week",
        auto_executable=False, requires_approval=False, confidence=0.7,
    )


class TestTransitions:

    @pytest.mark.asyncio
    async def test_startup_path(self, state_manager):
        assert state_manager.status == SystemStatus.INITIALIZING
        await state_manager.set_status(SystemStatus.RUNNING, "system_started")
        await state_manager.set_status(SystemStatus.HEALING)
        await state_manager.set_status(SystemStatus.RUNNING)
        assert state_manager.snapshot().last_action == "system_started"

    @pytest.mark.parametrize("path", [
        [SystemStatus.LEARNING],
        [SystemStatus.RUNNING, SystemStatus.STOPPED, SystemStatus.RUNNING],
        [SystemStatus.ERROR, SystemStatus.RUNNING],
        [SystemStatus.RUNNING, SystemStatus.LEARNING, SystemStatus.OPTIMIZING],
    ])
    @pytest.mark.asyncio
    async def test_invalid_transitions(self, state_manager, path):
        with pytest.raises(ControllerStateError):
            for status in path:
                await state_manager.set_status(status)

    @pytest.mark.asyncio
    async def test_error_and_stopped_reachable_anywhere(self, state_manager):
        await state_manager.set_status(SystemStatus.RUNNING)
        await state_manager.set_status(SystemStatus.LEARNING)
        await state_manager.set_status(SystemStatus.ERROR)
        await state_manager.set_status(SystemStatus.STOPPED)
        await state_manager.begin_start()
        assert state_manager.status == SystemStatus.INITIALIZING

    @pytest.mark.asyncio
    async def test_phases_only_from_running(self, state_manager):
        assert await state_manager.enter_phase(SystemStatus.LEARNING) is False
        await state_manager.set_status(SystemStatus.RUNNING)
        assert await state_manager.enter_phase(SystemStatus.LEARNING) is True
        assert await state_manager.enter_phase(SystemStatus.OPTIMIZING) is False
        await state_manager.exit_phase(SystemStatus.LEARNING)
        assert state_manager.status == SystemStatus.RUNNING

    @pytest.mark.asyncio
    async def test_exit_phase_leaves_healing_alone(self, state_manager):
        await state_manager.set_status(SystemStatus.RUNNING)
        await state_manager.enter_phase(SystemStatus.OPTIMIZING)
        await state_manager.set_status(SystemStatus.HEALING)
        await state_manager.exit_phase(SystemStatus.OPTIMIZING)
        assert state_manager.status == SystemStatus.HEALING

    @pytest.mark.asyncio
    async def test_emergency(self, state_manager):
        await state_manager.set_status(SystemStatus.RUNNING)
        await state_manager.enter_emergency("monitoring failed twice")
        state = state_manager.snapshot()
        assert state.status == "error"
        assert state.emergency_mode is True
        assert state.last_action == "emergency_mode: monitoring failed twice"
        await state_manager.set_status(SystemStatus.STOPPED)
        await state_manager.begin_start()
        assert state_manager.emergency_mode is False


class TestFixBudget:

    @pytest.mark.asyncio
    async def test_reserve_commit_release(self, state_manager, settings):
        replace_safety(settings, max_automatic_changes=2)
        assert await state_manager.reserve_fix_slot()
        assert await state_manager.reserve_fix_slot()
        assert not await state_manager.reserve_fix_slot()

        assert await state_manager.commit_fix_slot() == 1
        await state_manager.release_fix_slot()
        assert state_manager.in_flight_fixes() == 0
        assert await state_manager.reserve_fix_slot()
        assert not await state_manager.reserve_fix_slot()

    @pytest.mark.asyncio
    async def test_commit_without_reservation(self, state_manager):
        with pytest.raises(PolicyViolation):
            await state_manager.commit_fix_slot()


class TestRecords:

    @pytest.mark.asyncio
    async def test_recommendations_deduplicate(self, state_manager):
        await state_manager.add_recommendations([recommendation("a"), recommendation("b")])
        newer = recommendation("a")
        await state_manager.add_recommendations([newer])
        assert [r.description for r in state_manager.snapshot().recommendations] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_recommendations_capped(self, state_manager, settings):
        settings.monitoring.recommendation_limit = 3
        await state_manager.add_recommendations([recommendation(str(i)) for i in range(5)])
        assert [r.description for r in state_manager.snapshot().recommendations] == ["2", "3", "4"]

    @pytest.mark.asyncio
    async def test_resolve_unknown_decision(self, state_manager):
        with pytest.raises(KeyError):
            await state_manager.resolve_decision("ai_missing", DecisionOutcome.SUCCESS, "", 0.5)

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, state_manager):
        decision = AIDecision.create("ctx", "apply analyze_tables", "r", 0.7)
        await state_manager.append_decision(decision)
        state_manager.decisions()[0].outcome = "success"
        state_manager.snapshot().recommendations.append(recommendation("x"))
        assert state_manager.decisions()[0].is_pending
        assert state_manager.snapshot().recommendations == []

    @pytest.mark.asyncio
    async def test_learning_progress_is_monotonic(self, state_manager):
        await state_manager.set_learning([], [], 30)
        await state_manager.set_learning([], [], 10)
        assert state_manager.snapshot().learning_progress == 30


class TestPersistence:

    @pytest.mark.asyncio
    async def test_flush_and_reload(self, state_manager, settings, store):
        await state_manager.set_status(SystemStatus.RUNNING)
        for i in range(3):
            decision = AIDecision.create("ctx", f"apply fix {i}", "r", 0.7)
            await state_manager.append_decision(decision)
            await state_manager.resolve_decision(decision.id, DecisionOutcome.SUCCESS, "ok", 0.5)
        await state_manager.append_snapshot(make_snapshot())
        await state_manager.add_recommendations([recommendation("a")])
        await state_manager.flush()

        reloaded = SystemStateManager(settings, store)
        await reloaded.load()

        assert [d.id for d in reloaded.decisions()] == [d.id for d in state_manager.decisions()]
        assert reloaded.metrics_history() == state_manager.metrics_history()
        state = reloaded.snapshot()
        assert state.ai_decisions == 3
        assert [r.description for r in state.recommendations] == ["a"]
        assert state.status == "initializing"

    @pytest.mark.asyncio
    async def test_marker_written_during_flush_survives(self, state_manager, store, monkeypatch):
        entered = threading.Event()
        release = threading.Event()
        save_decisions = store.save_decisions

        def slow_save_decisions(decisions):
            entered.set()
            release.wait(5)
            return save_decisions(decisions)

        monkeypatch.setattr(store, "save_decisions", slow_save_decisions)
        flush = asyncio.create_task(state_manager.flush())
        assert await asyncio.to_thread(entered.wait, 5)

        marker = BackupMarker(
            id="backup_1", decision_id="d1", issue_id="i1",
            fix_action="create_missing_indexes", created_at=utc_now(),
        )
        record = asyncio.create_task(state_manager.record_backup_marker(marker))
        await asyncio.sleep(0.05)
        assert not record.done()

        release.set()
        await asyncio.gather(flush, record)
        assert [m.id for m in store.load_backup_markers()] == ["backup_1"]

    @pytest.mark.asyncio
    async def test_decision_count_derived_from_history(self, state_manager, settings, store):
        await state_manager.append_decision(AIDecision.create("ctx", "d", "r", 0.7))
        await state_manager.flush()
        stale = state_manager.snapshot()
        stale.ai_decisions = 7
        store.save_state(stale)

        reloaded = SystemStateManager(settings, store)
        await reloaded.load()
        assert reloaded.snapshot().ai_decisions == 1

    @pytest.mark.asyncio
    async def test_persisted_emergency(self, state_manager, settings, store):
        await state_manager.enter_emergency("maintenance failed twice")
        await state_manager.flush()

        report_view = SystemStateManager(settings, store)
        await report_view.load(resume=False)
        assert report_view.emergency_mode is True
        assert report_view.status == SystemStatus.ERROR

        resumed = SystemStateManager(settings, store)
        await resumed.load()
        assert resumed.emergency_mode is False
        assert resumed.status == SystemStatus.INITIALIZING

    @pytest.mark.asyncio
    async def test_first_start_has_defaults(self, state_manager):
        await state_manager.load()
        state = state_manager.snapshot()
        assert state.ai_decisions == 0
        assert state.system_health == 100.0
