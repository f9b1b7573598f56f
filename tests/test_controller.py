"""Tests for the AutonomousController lifecycle, healing and cycles."""

import asyncio
import json
import threading

import pytest

from config.settings import SystemStatus
from framework.agent_framework import EventType
from framework.controller import AutonomousController
from framework.errors import ControllerStartError, ControllerStateError
from sql import queries
from tests.conftest import fail_first, wait_until
from utils.alerting import AlertManager, AlertSeverity
from utils.persistence import PersistenceStore

TABLES = [{"table_name": "projects"}, {"table_name": "workers"}]


@pytest.fixture
def make_controller(settings, fake_client):
    def factory(client=None):
        return AutonomousController(
            settings,
            db_client=client or fake_client,
            store=PersistenceStore(settings.persistence),
            alert_manager=AlertManager(mock_mode=True),
        )
    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


def record_statuses(controller):
    """Wrap set_status so every requested transition is captured."""
    seen = []
    original = controller.state.set_status

    async def recording(target, action=None):
        seen.append(target)
        return await original(target, action)

    controller.state.set_status = recording
    return seen


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_runs_first_monitoring_cycle(self, controller):
        await controller.start()
        try:
            assert controller.is_running
            await wait_until(lambda: len(controller.metrics_history()) == 1)
            assert controller.status().status == "running"
        finally:
            await controller.stop()

        state = controller.status()
        assert state.status == "stopped"
        assert not controller.is_running
        assert state.system_health == 100

    @pytest.mark.asyncio
    async def test_start_while_running_raises(self, controller):
        await controller.start()
        try:
            with pytest.raises(ControllerStateError, match="already started"):
                await controller.start()
        finally:
            await controller.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, controller, settings):
        await controller.start()
        await controller.stop()
        writes = controller.store.write_count
        await controller.stop()
        assert controller.store.write_count == writes
        assert controller.status().status == "stopped"

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, controller):
        await controller.start(schedules=False)
        await controller.stop()
        await controller.start(schedules=False)
        assert controller.status().status == "running"
        await controller.stop()

    @pytest.mark.asyncio
    async def test_init_failure_without_recovery(self, controller, fake_client):
        fake_client.ping_results = [False, False]

        with pytest.raises(ControllerStartError):
            await controller.start()

        state = controller.status()
        assert state.status == "error"
        assert state.emergency_mode is True
        assert fake_client.closed == 1
        assert not controller.is_running

    @pytest.mark.asyncio
    async def test_init_failure_healed(self, controller, fake_client):
        fake_client.ping_results = [False]
        statuses = record_statuses(controller)

        await controller.start(schedules=False)

        assert statuses[:3] == [SystemStatus.ERROR, SystemStatus.HEALING, SystemStatus.RUNNING]
        state = controller.status()
        assert state.status == "running"
        assert state.error_count == 1
        assert state.emergency_mode is False
        await controller.stop()

    @pytest.mark.asyncio
    async def test_expected_schema_loaded_on_start(self, controller, settings, tmp_path):
        path = tmp_path / "expected.json"
        path.write_text(json.dumps({"tables": {"projects": {"columns": {}}}}))
        settings.expected_schema_path = str(path)

        await controller.start(schedules=False)
        await controller.run_cycle("monitoring")
        await controller.stop()

        assert controller.collector.last_schema_comparison["extra_tables"] == ["workers"]
        (rec,) = controller.status().recommendations
        assert rec.requires_approval is True


    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_fix(self, controller, fake_client):
        fake_client.responses[queries.MISSING_FK_INDEXES] = [
            {"table_name": "workers", "column_name": "project_id",
             "constraint_name": "workers_project_id_fkey"},
        ]
        entered = threading.Event()
        release = threading.Event()
        execute_statement = fake_client.execute_statement

        def blocking_statement(statement, params=None):
            if "CREATE INDEX" in statement:
                entered.set()
                release.wait(5)
            return execute_statement(statement, params)

        fake_client.execute_statement = blocking_statement
        await controller.start()
        try:
            assert await asyncio.to_thread(entered.wait, 5)
            assert [d.outcome for d in controller.decision_history()] == ["pending"]

            stopping = asyncio.create_task(controller.stop())
            await asyncio.sleep(0.05)
            assert not stopping.done()
        finally:
            release.set()
        await stopping

        assert controller.status().status == "stopped"
        outcomes = [d.outcome for d in controller.decision_history()]
        assert outcomes and "pending" not in outcomes
        assert "pending" not in [d.outcome for d in controller.store.load_decisions()]

class TestHealing:

    @pytest.mark.asyncio
    async def test_single_failure_is_healed(self, controller, fake_client):
        fake_client.responses[queries.USER_TABLES] = fail_first(1, TABLES)

        await controller.start(schedules=False)
        assert await controller.run_cycle("monitoring") is True

        state = controller.status()
        assert state.status == "running"
        assert state.error_count == 1
        assert fake_client.closed == 1
        assert len(controller.metrics_history()) == 1
        assert len(controller.framework.events(EventType.SELF_HEAL_EXECUTED)) == 1
        await controller.stop()

    @pytest.mark.asyncio
    async def test_two_failures_enter_emergency(self, controller, fake_client):
        fake_client.responses[queries.USER_TABLES] = ConnectionError("server closed the connection")
        statuses = record_statuses(controller)

        await controller.start()
        await wait_until(lambda: controller.status().emergency_mode)
        await wait_until(lambda: not controller.is_running)

        assert statuses == [SystemStatus.RUNNING, SystemStatus.HEALING]
        state = controller.status()
        assert state.status == "error"
        assert state.error_count == 2
        assert len(controller.alerts.get_alert_history(AlertSeverity.CRITICAL)) == 1
        assert len(controller.framework.events(EventType.EMERGENCY_MODE_ACTIVATED)) == 1

        queried = len(fake_client.queries)
        assert await controller.run_cycle("monitoring") is False
        assert len(fake_client.queries) == queried

        with pytest.raises(ControllerStateError, match="emergency mode"):
            await controller.start()

        await controller.stop()
        fake_client.responses[queries.USER_TABLES] = TABLES
        await controller.start(schedules=False)
        assert controller.status().emergency_mode is False
        assert await controller.run_cycle("monitoring") is True
        await controller.stop()

    @pytest.mark.asyncio
    async def test_emergency_mode_is_persisted(self, controller, settings, make_controller, fake_client):
        fake_client.responses[queries.USER_TABLES] = ConnectionError("gone")
        await controller.start(schedules=False)
        await controller.run_cycle("monitoring")

        observer = make_controller()
        await observer.restore(resume=False)
        assert observer.status().emergency_mode is True

    @pytest.mark.asyncio
    async def test_operator_emergency_stop(self, controller):
        await controller.start()
        await controller.emergency_stop("maintenance window")
        await wait_until(lambda: not controller.is_running)
        assert controller.status().emergency_mode is True
        await controller.stop()

    @pytest.mark.asyncio
    async def test_emergency_stop_disabled_by_policy(self, make_settings, fake_client):
        controller = AutonomousController(make_settings(emergency_stop=False), db_client=fake_client)
        with pytest.raises(ControllerStateError):
            await controller.emergency_stop()


class TestCycles:

    @pytest.mark.asyncio
    async def test_run_cycle_requires_start(self, controller):
        with pytest.raises(ControllerStateError):
            await controller.run_cycle("monitoring")

    @pytest.mark.asyncio
    async def test_unknown_cycle(self, controller):
        await controller.start(schedules=False)
        with pytest.raises(KeyError):
            await controller.run_cycle("defragment")
        await controller.stop()

    @pytest.mark.asyncio
    async def test_monitoring_cycle_handles_issues(self, controller, fake_client):
        fake_client.responses[queries.SLOW_ACTIVE_QUERIES] = [
            {"pid": 1, "query": "SELECT 1", "running_seconds": 50.0},
        ]
        fake_client.responses[queries.TABLES_WITHOUT_PRIMARY_KEY] = [{"table_name": "workers"}]

        await controller.start(schedules=False)
        snapshot = await controller.run_monitoring_cycle()

        assert snapshot.performance_score == 90
        (decision,) = controller.decision_history()
        assert decision.outcome == "success"
        state = controller.status()
        assert state.automatic_fixes == 1
        assert state.status == "running"
        assert state.last_action == "ai_monitoring"
        assert [r.source_id for r in state.recommendations] == [snapshot.issues[1].id]
        # 0.7 * 90 + 0.3 * 100
        assert state.system_health == 93
        await controller.stop()

    @pytest.mark.asyncio
    async def test_issue_burst_alert(self, controller, fake_client):
        fake_client.responses[queries.SLOW_ACTIVE_QUERIES] = [
            {"pid": pid, "query": "SELECT 1", "running_seconds": 50.0} for pid in range(6)
        ]
        fake_client.responses[queries.PUBLIC_TABLE_GRANTS] = [
            {"table_name": "workers", "privileges": "SELECT"},
        ]
        await controller.start(schedules=False)
        await controller.run_monitoring_cycle()
        warnings = controller.alerts.get_alert_history(AlertSeverity.WARNING)
        assert any("2 high-severity" in a.title for a in warnings)
        await controller.stop()

    @pytest.mark.asyncio
    async def test_learning_and_maintenance(self, controller, fake_client):
        await controller.start(schedules=False)
        for rows in (100, 150, 200):
            fake_client.set_row_counts({"projects": rows, "workers": 0})
            await controller.run_cycle("monitoring")

        requirements = await controller.run_learning_cycle()
        assert [r.type for r in requirements] == ["growth"]
        state = controller.status()
        assert state.learning_progress == 6
        assert state.status == "running"

        upcoming = await controller.run_maintenance_cycle()
        assert [r.type for r in upcoming] == ["growth"]
        state = controller.status()
        assert state.next_scheduled_action == "preventive growth work (next month)"
        assert [r.type for r in state.recommendations] == ["optimization"]

        snapshot = await controller.run_monitoring_cycle()
        assert [p.type for p in snapshot.predictions] == ["growth"]
        await controller.stop()

    @pytest.mark.asyncio
    async def test_restart_replays_history(self, controller, make_controller, fake_client):
        fake_client.responses[queries.SLOW_ACTIVE_QUERIES] = [
            {"pid": 7, "query": "SELECT 1", "running_seconds": 50.0},
        ]
        await controller.start(schedules=False)
        await controller.run_cycle("monitoring")
        await controller.run_cycle("monitoring")
        await controller.stop()

        restarted = make_controller()
        await restarted.start(schedules=False)
        assert len(restarted.metrics_history()) == 2
        assert restarted.status().ai_decisions == len(restarted.decision_history()) == 2
        assert restarted.status().automatic_fixes == 2
        names = [p.name for p in restarted.patterns()]
        assert names == ["recurring:performance:analyze_tables"]
        await restarted.stop()


class TestMonitoringInterval:

    @pytest.mark.parametrize("health,decisions,expected", [
        (100, 0, 300),
        (50, 0, 120),
        (10, 0, 60),
        (100, 101, 360),
        (100, 100, 300),
    ])
    @pytest.mark.asyncio
    async def test_adaptive_interval(self, controller, health, decisions, expected):
        await controller.state.set_system_health(health)
        controller.state._state.ai_decisions = decisions
        assert controller.monitoring_interval_seconds() == expected
