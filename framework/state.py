"""
SystemStateManager: single writer for the controller's shared state.

Every mutation of SystemState and of the append-only logs goes through an
``async`` method that holds one asyncio.Lock for the in-memory update only.
Reads return copies. Writes to disk hold a second lock across copy and
write, so documents land on disk in the order they were copied.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import Optional

from config.settings import AutopilotSettings, DecisionOutcome, SystemStatus
from framework.errors import ControllerStateError, PolicyViolation
from framework.models import (
    AIDecision,
    BackupMarker,
    FutureRequirement,
    MetricsSnapshot,
    Recommendation,
    RollbackRecord,
    SchemaPattern,
    SystemState,
    utc_now,
)
from utils.persistence import PersistenceStore

logger = logging.getLogger("dbautopilot.state")

S = SystemStatus

# Allowed status transitions. ERROR and STOPPED are reachable from anywhere.
_TRANSITIONS = {
    S.INITIALIZING: {S.RUNNING, S.HEALING},
    S.RUNNING: {S.LEARNING, S.OPTIMIZING, S.HEALING},
    S.LEARNING: {S.RUNNING, S.HEALING},
    S.OPTIMIZING: {S.RUNNING, S.HEALING},
    S.HEALING: {S.RUNNING},
    S.ERROR: {S.HEALING},
    S.STOPPED: {S.INITIALIZING},
}


class SystemStateManager:
    """Owns SystemState, decision/metrics history, patterns and the fix budget."""

    def __init__(self, settings: AutopilotSettings, store: PersistenceStore):
        self.settings = settings
        self.store = store
        self._lock = asyncio.Lock()
        # Held across copy + write; never acquired while holding _lock
        self._persist_lock = asyncio.Lock()
        self._state = SystemState()
        self._decisions: list[AIDecision] = []
        self._metrics: list[MetricsSnapshot] = []
        self._patterns: list[SchemaPattern] = []
        self._requirements: list[FutureRequirement] = []
        self._markers: list[BackupMarker] = []
        self._rollbacks: list[RollbackRecord] = []
        self._in_flight = 0
        self._uptime_base = 0.0
        self._started_monotonic: Optional[float] = None

    # -- loading -------------------------------------------------------------

    async def load(self, resume: bool = True) -> None:
        """
        Reload persisted documents. ``ai_decisions`` is re-derived from history.

        With ``resume`` (starting the controller) status stays this run's own
        and a persisted emergency mode is cleared; without it the persisted
        state is reported as-is.
        """
        store = self.store
        state, decisions, metrics, patterns, markers, rollbacks = await asyncio.gather(
            asyncio.to_thread(store.load_state),
            asyncio.to_thread(store.load_decisions),
            asyncio.to_thread(store.load_metrics),
            asyncio.to_thread(store.load_patterns),
            asyncio.to_thread(store.load_backup_markers),
            asyncio.to_thread(store.load_rollbacks),
        )
        async with self._lock:
            current = self._state.status
            if state is not None:
                if resume and state.emergency_mode:
                    logger.warning(
                        f"Persisted state was in emergency mode since {state.last_action_time} "
                        f"({state.last_action}); starting clears it"
                    )
                self._state = state
            if resume:
                self._state.status = current
                self._state.emergency_mode = False
            self._state.ai_decisions = len(decisions)
            self._decisions = decisions
            self._metrics = metrics
            self._patterns = patterns
            self._markers = markers
            self._rollbacks = rollbacks
            self._uptime_base = self._state.uptime
        logger.info(
            f"Loaded state: {len(decisions)} decisions, {len(metrics)} snapshots, "
            f"{len(patterns)} patterns"
        )

    # -- status --------------------------------------------------------------

    @property
    def status(self) -> SystemStatus:
        return SystemStatus(self._state.status)

    @property
    def emergency_mode(self) -> bool:
        return self._state.emergency_mode

    def _transition(self, target: SystemStatus, action: Optional[str]) -> SystemStatus:
        previous = self.status
        if target != previous and target not in (S.ERROR, S.STOPPED):
            if target not in _TRANSITIONS[previous]:
                raise ControllerStateError(
                    f"invalid status transition {previous.value} -> {target.value}"
                )
        self._state.status = target.value
        if action:
            self._state.last_action = action
            self._state.last_action_time = utc_now()
        if target != previous:
            logger.info(f"Status: {previous.value} -> {target.value}")
        return previous

    async def set_status(self, target: SystemStatus, action: Optional[str] = None) -> SystemStatus:
        async with self._lock:
            return self._transition(target, action)

    async def enter_phase(self, phase: SystemStatus) -> bool:
        """Switch running -> phase. Any other current status is left alone."""
        async with self._lock:
            if self.status != S.RUNNING:
                return False
            self._transition(phase, None)
            return True

    async def exit_phase(self, phase: SystemStatus) -> None:
        """Return to running only if the phase is still the current status."""
        async with self._lock:
            if self.status == phase:
                self._transition(S.RUNNING, None)

    async def begin_start(self) -> None:
        async with self._lock:
            if self.status == S.STOPPED:
                self._transition(S.INITIALIZING, "system_initialization")
            self._state.emergency_mode = False
            self._state.next_scheduled_action = "initial_analysis"

    async def enter_emergency(self, reason: str) -> None:
        async with self._lock:
            self._transition(S.ERROR, f"emergency_mode: {reason}")
            self._state.emergency_mode = True
            self._state.next_scheduled_action = "awaiting_operator"

    async def record_action(self, action: str, next_action: Optional[str] = None) -> None:
        async with self._lock:
            self._state.last_action = action
            self._state.last_action_time = utc_now()
            if next_action:
                self._state.next_scheduled_action = next_action

    async def record_error(self) -> int:
        async with self._lock:
            self._state.error_count += 1
            return self._state.error_count

    def mark_started(self) -> None:
        self._started_monotonic = time.monotonic()

    def mark_stopped(self) -> None:
        if self._started_monotonic is not None:
            self._uptime_base += time.monotonic() - self._started_monotonic
            self._started_monotonic = None
        self._state.uptime = round(self._uptime_base, 3)

    def _live_uptime(self) -> float:
        uptime = self._uptime_base
        if self._started_monotonic is not None:
            uptime += time.monotonic() - self._started_monotonic
        return round(uptime, 3)

    # -- decisions & metrics ------------------------------------------------------

    async def append_decision(self, decision: AIDecision) -> None:
        async with self._lock:
            self._decisions.append(decision)
            self._state.ai_decisions = len(self._decisions)

    async def resolve_decision(self, decision_id: str, outcome: DecisionOutcome,
                               impact: str, learning_value: float) -> AIDecision:
        async with self._lock:
            for decision in reversed(self._decisions):
                if decision.id == decision_id:
                    decision.resolve(outcome, impact, learning_value)
                    return copy.deepcopy(decision)
        raise KeyError(f"unknown decision: {decision_id}")

    async def append_snapshot(self, snapshot: MetricsSnapshot) -> None:
        async with self._lock:
            self._metrics.append(snapshot)

    async def set_learning(self, patterns: list[SchemaPattern],
                           requirements: list[FutureRequirement], progress: float) -> None:
        async with self._lock:
            self._patterns = list(patterns)
            self._requirements = list(requirements)
            # Non-decreasing while running
            self._state.learning_progress = max(self._state.learning_progress, progress)

    async def set_system_health(self, health: float) -> None:
        async with self._lock:
            self._state.system_health = max(0.0, min(100.0, health))

    # -- fix budget ------------------------------------------------------------

    async def reserve_fix_slot(self) -> bool:
        """Reserve room for one automatic fix. False when the budget is exhausted."""
        async with self._lock:
            limit = self.settings.safety.max_automatic_changes
            if self._state.automatic_fixes + self._in_flight >= limit:
                return False
            self._in_flight += 1
            return True

    async def commit_fix_slot(self) -> int:
        async with self._lock:
            limit = self.settings.safety.max_automatic_changes
            if self._in_flight <= 0:
                raise PolicyViolation("commit without a reserved fix slot")
            self._in_flight -= 1
            if self._state.automatic_fixes + 1 > limit:
                raise PolicyViolation(
                    f"automatic fix would exceed max_automatic_changes={limit}"
                )
            self._state.automatic_fixes += 1
            return self._state.automatic_fixes

    async def release_fix_slot(self) -> None:
        async with self._lock:
            if self._in_flight > 0:
                self._in_flight -= 1

    # -- recommendations, backups, rollbacks -------------------------------

    async def add_recommendations(self, recommendations: list[Recommendation]) -> None:
        """Newest wins per (type, description); the list is capped to the newest entries."""
        if not recommendations:
            return
        async with self._lock:
            merged = list(self._state.recommendations)
            for rec in recommendations:
                merged = [r for r in merged if (r.type, r.description) != (rec.type, rec.description)]
                merged.append(rec)
            limit = self.settings.monitoring.recommendation_limit
            self._state.recommendations = merged[-limit:]

    async def record_backup_marker(self, marker: BackupMarker) -> None:
        """Append a marker and write it before the fix runs."""
        async with self._persist_lock:
            async with self._lock:
                self._markers.append(marker)
                markers = list(self._markers)
            await asyncio.to_thread(self.store.save_backup_markers, markers)

    async def record_rollback(self, record: RollbackRecord) -> None:
        async with self._persist_lock:
            async with self._lock:
                self._rollbacks.append(record)
                rollbacks = list(self._rollbacks)
            await asyncio.to_thread(self.store.save_rollbacks, rollbacks)

    # -- reads (copies) ---------------------------------------------------------

    def snapshot(self) -> SystemState:
        state = copy.deepcopy(self._state)
        state.uptime = self._live_uptime()
        return state

    def decisions(self) -> list[AIDecision]:
        return copy.deepcopy(self._decisions)

    def metrics_history(self) -> list[MetricsSnapshot]:
        # Snapshots are frozen
        return list(self._metrics)

    def patterns(self) -> list[SchemaPattern]:
        return copy.deepcopy(self._patterns)

    def requirements(self) -> list[FutureRequirement]:
        return list(self._requirements)

    def backup_markers(self) -> list[BackupMarker]:
        return list(self._markers)

    def rollbacks(self) -> list[RollbackRecord]:
        return list(self._rollbacks)

    def in_flight_fixes(self) -> int:
        return self._in_flight

    # -- persistence -------------------------------------------------------------

    async def flush(self) -> None:
        """Write every document from a consistent copy taken under the lock."""
        async with self._persist_lock:
            async with self._lock:
                state = copy.deepcopy(self._state)
                state.uptime = self._live_uptime()
                decisions = copy.deepcopy(self._decisions)
                metrics = list(self._metrics)
                patterns = copy.deepcopy(self._patterns)
                markers = list(self._markers)
                rollbacks = list(self._rollbacks)

            store = self.store

            def write_all():
                store.save_decisions(decisions)
                store.save_metrics(metrics)
                store.save_patterns(patterns)
                store.save_backup_markers(markers)
                store.save_rollbacks(rollbacks)
                store.save_state(state)

            await asyncio.to_thread(write_all)
        logger.debug(f"Flushed state ({len(decisions)} decisions, {len(metrics)} snapshots)")
