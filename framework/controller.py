"""
AutonomousController: state machine and schedules of the control system.

Runs three periodic activities as asyncio tasks:
- monitoring: collect a snapshot, classify its issues, refresh health
- learning: replay history into patterns and requirements
- maintenance: turn predictions into recommendations, plan the next action

An unhandled cycle failure triggers self-healing (reset database
connections, re-run the cycle once). A second consecutive failure puts the
controller in emergency mode until an operator calls stop() then start().
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional

from agents.collector import MetricsCollector, load_expected_schema
from agents.gate import DecisionGate
from agents.learner import PatternLearner
from config.settings import AutopilotSettings, DecisionOutcome, Severity, SystemStatus
from framework.agent_framework import AgentFramework, Event, EventType
from framework.errors import ControllerStartError, ControllerStateError
from framework.models import (
    AIDecision,
    FutureRequirement,
    MetricsSnapshot,
    SchemaPattern,
    SystemState,
    utc_now,
)
from framework.state import SystemStateManager
from utils.alerting import AlertManager, AlertSeverity
from utils.db_client import DatabaseClient
from utils.persistence import PersistenceStore

logger = logging.getLogger("dbautopilot.controller")

# Success rate window for system health
HEALTH_DECISION_WINDOW = 20

# Maintenance lookahead, most urgent first
TIMEFRAME_ORDER = ("immediate", "next week", "this week", "next month")


class AutonomousController:
    """
    Autonomous database controller.

    All state mutations go through SystemStateManager on the event loop
    thread; blocking database work runs in worker threads.
    """

    def __init__(self, settings: Optional[AutopilotSettings] = None,
                 db_client=None, store: Optional[PersistenceStore] = None,
                 alert_manager: Optional[AlertManager] = None):
        self.settings = settings or AutopilotSettings()
        self.client = db_client or DatabaseClient(self.settings.database)
        self.store = store or PersistenceStore(self.settings.persistence)
        self.alerts = alert_manager or AlertManager(mock_mode=self.settings.database.mock_mode)
        self.state = SystemStateManager(self.settings, self.store)

        self.framework = AgentFramework()
        self.collector = MetricsCollector(self.client, self.settings.monitoring)
        self.learner = PatternLearner(self.settings.learning)
        self.gate = DecisionGate(
            self.client, self.state, self.settings.safety, self.alerts,
            pattern_threshold=self.settings.learning.pattern_prediction_confidence,
        )
        for agent in (self.collector, self.learner, self.gate):
            self.framework.register_agent(agent)
        self.framework.subscribe(EventType.AUTO_FIX_FAILED, self._on_fix_failed)
        self.framework.subscribe(EventType.ROLLBACK_EXECUTED, self._on_rollback)

        self._tasks: list[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._heal_lock = asyncio.Lock()

    # -- event handlers ----------------------------------------------------------

    def _on_fix_failed(self, event: Event) -> None:
        logger.warning(
            f"[EVENT] fix failed for issue {event.data.get('issue_id')} "
            f"(decision {event.data.get('decision_id')})"
        )

    def _on_rollback(self, event: Event) -> None:
        level = logging.INFO if event.data.get("success") else logging.ERROR
        logger.log(level, f"[EVENT] rollback {event.data.get('rollback_id')} "
                          f"for decision {event.data.get('decision_id')}: "
                          f"{'ok' if event.data.get('success') else 'failed'}")

    # -- lifecycle ---------------------------------------------------------------

    async def start(self, schedules: bool = True) -> None:
        """
        Initialize and launch the schedules (``schedules=False`` initializes
        only, for single passes driven through ``run_cycle``).

        Raises ControllerStateError while already running or while in
        emergency mode without an intervening stop(); ControllerStartError
        when initialization fails and self-healing cannot recover.
        """
        status = self.state.status
        if status not in (SystemStatus.INITIALIZING, SystemStatus.STOPPED) or self._tasks:
            if self.state.emergency_mode:
                raise ControllerStateError("controller is in emergency mode; call stop() first")
            raise ControllerStateError(f"controller already started (status {status.value})")

        await self.state.begin_start()
        logger.info("Starting autonomous controller")

        try:
            await self._initialize()
        except Exception as e:
            logger.error(f"[initialization] {utc_now()} failed: {e}", exc_info=True)
            await self.state.set_status(SystemStatus.ERROR, "initialization_failed")
            await self.state.record_error()
            if not await self._heal("initialization", self._initialize):
                raise ControllerStartError(f"initialization failed: {e}") from e

        await self.state.set_status(SystemStatus.RUNNING, "system_started")
        self.state.mark_started()
        self._stop_event = asyncio.Event()
        if not schedules:
            logger.info("Autonomous controller initialized (no schedules)")
            return
        self._tasks = [
            asyncio.create_task(
                self._schedule("monitoring", self.run_monitoring_cycle,
                               self.monitoring_interval_seconds, immediate=True),
                name="dbautopilot-monitoring",
            ),
            asyncio.create_task(
                self._schedule("learning", self.run_learning_cycle,
                               lambda: self.settings.schedule.learning_interval_seconds),
                name="dbautopilot-learning",
            ),
            asyncio.create_task(
                self._schedule("maintenance", self.run_maintenance_cycle,
                               lambda: self.settings.schedule.maintenance_interval_seconds),
                name="dbautopilot-maintenance",
            ),
        ]
        logger.info("Autonomous controller running")

    async def restore(self, resume: bool = True) -> None:
        """Load persisted documents and replay history through the learner."""
        await self.state.load(resume=resume)
        history = self.state.metrics_history()
        patterns, requirements = await asyncio.to_thread(self.learner.learn, history)
        previous = self.state.snapshot().learning_progress
        await self.state.set_learning(
            patterns, requirements, self.learner.learning_progress(history, previous),
        )

    async def _initialize(self) -> None:
        await self.restore()
        if not await asyncio.to_thread(self.client.ping):
            raise ConnectionError("database ping failed")
        path = self.settings.expected_schema_path
        if path:
            self.collector.expected_schema = await asyncio.to_thread(load_expected_schema, path)
        else:
            logger.warning("No expected schema configured; drift detection disabled")

    async def stop(self) -> None:
        """Stop schedules, let in-flight cycles finish, flush. Idempotent."""
        if self._stop_event is not None:
            self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, result in zip(tasks, results):
                if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                    logger.error(f"Schedule {task.get_name()} ended with {result!r}")

        if self.state.status == SystemStatus.STOPPED:
            return
        self.state.mark_stopped()
        await self.state.set_status(SystemStatus.STOPPED, "system_stopped")
        await self.state.flush()
        logger.info("Autonomous controller stopped")

    async def emergency_stop(self, reason: str = "operator request") -> None:
        """Operator-triggered emergency mode, if the safety policy allows it."""
        if not self.settings.safety.emergency_stop:
            raise ControllerStateError("emergency stop is disabled by the safety policy")
        await self._enter_emergency(reason)

    async def _enter_emergency(self, reason: str) -> None:
        await self.state.enter_emergency(reason)
        logger.critical(f"EMERGENCY MODE: {reason}")
        self.framework.dispatch_event(Event(
            event_type=EventType.EMERGENCY_MODE_ACTIVATED,
            source_agent="AutonomousController",
            data={"reason": reason},
        ))
        self.alerts.raise_alert(
            AlertSeverity.CRITICAL,
            title="Autonomous controller entered emergency mode",
            message=reason,
            source="AutonomousController",
        )
        if self._stop_event is not None:
            self._stop_event.set()
        await self.state.flush()

    # -- scheduling ---------------------------------------------------------------

    def monitoring_interval_seconds(self) -> float:
        """Adaptive interval: shorter when health drops, longer for busy systems."""
        sched = self.settings.schedule
        current = self.state.snapshot()
        health, decisions = current.system_health, current.ai_decisions
        complexity = sched.complexity_factor if decisions > sched.complexity_decision_threshold else 1.0
        minutes = max(sched.min_monitoring_minutes,
                      math.floor(sched.base_monitoring_minutes * health / 100 * complexity))
        return minutes * 60

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _schedule(self, name: str, cycle: Callable[[], Awaitable[None]],
                        interval: Callable[[], float], immediate: bool = False) -> None:
        if not immediate and await self._wait(interval()):
            return
        while not self._stop_event.is_set():
            if not await self._guarded(name, cycle):
                return
            if await self._wait(interval()):
                return

    async def run_cycle(self, name: str) -> bool:
        """
        Run one named cycle through the same guard the schedules use.
        False when the cycle could not be healed (emergency mode).
        """
        cycles = {
            "monitoring": self.run_monitoring_cycle,
            "learning": self.run_learning_cycle,
            "maintenance": self.run_maintenance_cycle,
        }
        if name not in cycles:
            raise KeyError(f"unknown cycle: {name}")
        if self.state.status in (SystemStatus.INITIALIZING, SystemStatus.STOPPED):
            raise ControllerStateError("controller is not started")
        return await self._guarded(name, cycles[name])

    async def _guarded(self, name: str, cycle: Callable[[], Awaitable[None]]) -> bool:
        """Run one cycle; heal on failure. False means the schedule must exit."""
        if self.state.emergency_mode:
            return False
        try:
            await cycle()
            return True
        except Exception as e:
            logger.error(f"[{name}] {utc_now()} cycle failed: {e}", exc_info=True)
            await self.state.record_error()
            return await self._heal(name, cycle)

    async def _heal(self, name: str, cycle: Callable[[], Awaitable[None]]) -> bool:
        """Reset connections and retry once. Failure enters emergency mode."""
        async with self._heal_lock:
            if self.state.emergency_mode:
                return False
            await self.state.set_status(SystemStatus.HEALING, f"self_healing:{name}")
            logger.info(f"[{name}] self-healing: resetting database connections and retrying")
            try:
                await asyncio.to_thread(self.client.close_all)
                await cycle()
            except Exception as e:
                logger.error(f"[{name}] {utc_now()} retry after healing failed: {e}", exc_info=True)
                await self.state.record_error()
                await self._enter_emergency(f"{name} failed twice in a row: {e}")
                return False
            await self.state.set_status(SystemStatus.RUNNING, f"self_healed:{name}")
            self.framework.dispatch_event(Event(
                event_type=EventType.SELF_HEAL_EXECUTED,
                source_agent="AutonomousController",
                data={"cycle": name},
            ))
            return True

    # -- cycles --------------------------------------------------------------------

    async def run_monitoring_cycle(self) -> MetricsSnapshot:
        logger.info("[monitoring] cycle started")
        snapshot = await self.collector.execute_tool("collect_snapshot")
        predictions = [r.to_prediction() for r in self.state.requirements()]
        snapshot = snapshot.with_predictions([p for p in predictions if p is not None])
        await self.state.append_snapshot(snapshot)

        self._alert_on_issue_burst(snapshot)
        if snapshot.issues:
            entered = await self.state.enter_phase(SystemStatus.OPTIMIZING)
            try:
                for issue in snapshot.issues:
                    await self.gate.evaluate(issue)
            finally:
                if entered:
                    await self.state.exit_phase(SystemStatus.OPTIMIZING)

        await self._refresh_health()
        interval = self.monitoring_interval_seconds()
        await self.state.record_action(
            "ai_monitoring", next_action=f"monitoring in {interval / 60:.0f} min",
        )
        await self.state.flush()
        logger.info(f"[monitoring] cycle finished: {len(snapshot.issues)} issues handled")
        return snapshot

    async def run_learning_cycle(self) -> list[FutureRequirement]:
        logger.info("[learning] cycle started")
        entered = await self.state.enter_phase(SystemStatus.LEARNING)
        try:
            history = self.state.metrics_history()
            patterns, requirements = await self.learner.execute_tool("learn_from_history", history)
            previous = self.state.snapshot().learning_progress
            progress = self.learner.learning_progress(history, previous)
            await self.state.set_learning(patterns, requirements, progress)
            await self.state.add_recommendations(
                [self.gate.evaluate_requirement(r) for r in requirements]
            )
            await self.state.record_action("ai_learning")
        finally:
            if entered:
                await self.state.exit_phase(SystemStatus.LEARNING)
        await self.state.flush()
        return requirements

    async def run_maintenance_cycle(self) -> list[FutureRequirement]:
        """Predictive maintenance: plan ahead from the current requirements."""
        logger.info("[maintenance] cycle started")
        upcoming = [
            r for r in self.state.requirements()
            if r.type in ("growth", "performance", "maintenance")
        ]
        if upcoming:
            await self.state.add_recommendations(
                [self.gate.evaluate_requirement(r) for r in upcoming]
            )
            nearest = min(upcoming, key=lambda r: (
                TIMEFRAME_ORDER.index(r.timeframe) if r.timeframe in TIMEFRAME_ORDER
                else len(TIMEFRAME_ORDER),
                -r.confidence,
            ))
            next_action = f"preventive {nearest.type} work ({nearest.timeframe})"
        else:
            next_action = "routine monitoring"
        await self.state.record_action("predictive_maintenance", next_action=next_action)
        await self.state.flush()
        logger.info(f"[maintenance] {len(upcoming)} predicted issues; next: {next_action}")
        return upcoming

    def _alert_on_issue_burst(self, snapshot: MetricsSnapshot) -> None:
        serious = [i for i in snapshot.issues
                   if i.severity in (Severity.HIGH.value, Severity.CRITICAL.value)]
        if len(serious) >= self.settings.monitoring.alert_threshold:
            self.alerts.raise_alert(
                AlertSeverity.WARNING,
                title=f"{len(serious)} high-severity database issues detected",
                message="; ".join(i.description for i in serious),
                source=self.collector.name,
                cycle="monitoring",
            )

    async def _refresh_health(self) -> None:
        """0.7 x latest performance score + 0.3 x recent fix success rate."""
        history = self.state.metrics_history()
        performance = history[-1].performance_score if history else 100.0
        executed = [d for d in self.state.decisions() if not d.is_pending][-HEALTH_DECISION_WINDOW:]
        if executed:
            successes = sum(1 for d in executed if d.outcome == DecisionOutcome.SUCCESS.value)
            success_rate = successes / len(executed)
        else:
            success_rate = 1.0
        await self.state.set_system_health(round(0.7 * performance + 0.3 * success_rate * 100))

    # -- reads ----------------------------------------------------------------------

    def status(self) -> SystemState:
        """Deep copy of the current state with live uptime."""
        return self.state.snapshot()

    def decision_history(self) -> list[AIDecision]:
        return self.state.decisions()

    def metrics_history(self) -> list[MetricsSnapshot]:
        return self.state.metrics_history()

    def patterns(self) -> list[SchemaPattern]:
        return self.state.patterns()

    def requirements(self) -> list[FutureRequirement]:
        return self.state.requirements()

    @property
    def is_running(self) -> bool:
        return bool(self._tasks) and not all(t.done() for t in self._tasks)
