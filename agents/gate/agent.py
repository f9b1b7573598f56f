"""
Decision & Safety Gate

Classifies every detected issue into exactly one outcome:
- approval_required: schema drift, or an operation kind the safety policy
  reserves for humans
- executed: auto-fixable with room in the fix budget; backup marker first,
  then the fix, then rollback on failure
- deferred: everything else, surfaced as a Recommendation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from agents.learner.patterns import recurrence_pattern_name
from config.settings import (
    FIX_OPERATION_KINDS,
    ISSUE_OPERATION_KINDS,
    SEVERITY_CONFIDENCE,
    DecisionOutcome,
    IssueType,
    RecommendationType,
    SafetyPolicy,
    Severity,
)
from framework.agent_framework import BaseAgent, EventType
from framework.errors import RollbackError
from framework.models import (
    AIDecision,
    BackupMarker,
    FutureRequirement,
    Issue,
    Recommendation,
    RollbackRecord,
    new_id,
    utc_now,
)
from utils.alerting import AlertSeverity

from .backup import create_backup_marker, restore_from_marker
from .fixes import FixAction, get_fix_action

logger = logging.getLogger("dbautopilot.gate")

CONFIDENCE_CAP = 0.95
PATTERN_CONFIDENCE_BONUS = 0.05
SUCCESS_LEARNING_VALUE = 0.5
FAILURE_LEARNING_VALUE = 1.0

ISSUE_RECOMMENDATION_TYPES = {
    IssueType.PERFORMANCE.value: RecommendationType.PERFORMANCE,
    IssueType.SECURITY.value: RecommendationType.SECURITY,
    IssueType.INTEGRITY.value: RecommendationType.MAINTENANCE,
    IssueType.SCHEMA_DRIFT.value: RecommendationType.EVOLUTION,
}

REQUIREMENT_RECOMMENDATION_TYPES = {
    "growth": RecommendationType.OPTIMIZATION,
    "index": RecommendationType.OPTIMIZATION,
    "performance": RecommendationType.PERFORMANCE,
    "maintenance": RecommendationType.MAINTENANCE,
    "table": RecommendationType.EVOLUTION,
    "column": RecommendationType.EVOLUTION,
}

SEVERITY_TIMEFRAMES = {
    "critical": "immediate",
    "high": "immediate",
    "medium": "this week",
    "low": "next maintenance window",
}


class GateAction(Enum):
    EXECUTED = "executed"
    APPROVAL_REQUIRED = "approval_required"
    DEFERRED = "deferred"


@dataclass
class GateDecision:
    """What the gate did with one issue."""
    action: GateAction
    issue_id: str
    decision: Optional[AIDecision] = None
    recommendation: Optional[Recommendation] = None
    rollback: Optional[RollbackRecord] = None

    @property
    def succeeded(self) -> bool:
        return self.decision is not None and self.decision.outcome == DecisionOutcome.SUCCESS.value


class DecisionGate(BaseAgent):
    """Decision & Safety Gate: the only component that changes the database."""

    def __init__(self, db_client, state_manager, safety: Optional[SafetyPolicy] = None,
                 alert_manager=None, pattern_threshold: float = 0.7):
        super().__init__(
            name="DecisionGate",
            description="Applies safety policy to detected issues; executes bounded automatic fixes with backup and rollback",
        )
        self.client = db_client
        self.state = state_manager
        self.safety = safety or SafetyPolicy()
        self.alerts = alert_manager
        self.pattern_threshold = pattern_threshold

    def register_tools(self) -> None:
        self.register_tool("evaluate_issue", self.evaluate,
                           "Classify an issue and act on it")
        self.register_tool("plan_backup", create_backup_marker,
                           "Record how to undo a fix before it runs")
        self.register_tool("execute_fix", self._apply_fix,
                           "Apply a bound fix action", risk_level="medium")
        self.register_tool("rollback_fix", restore_from_marker,
                           "Replay a backup marker's restore statements", risk_level="high")

    # -- policy ------------------------------------------------------------------

    @staticmethod
    def operation_kinds(issue: Issue) -> list[str]:
        kinds = [ISSUE_OPERATION_KINDS.get(issue.type)]
        if issue.fix_action:
            kinds.append(FIX_OPERATION_KINDS.get(issue.fix_action))
        return [k for k in kinds if k]

    def requires_approval(self, issue: Issue) -> bool:
        if issue.type == IssueType.SCHEMA_DRIFT.value:
            return True
        return self.safety.requires_approval(issue.type, *self.operation_kinds(issue))

    def confidence(self, issue: Issue) -> float:
        """Severity base, nudged up when the issue keeps recurring."""
        value = SEVERITY_CONFIDENCE[issue.severity]
        name = recurrence_pattern_name(issue.signature)
        if any(p.name == name and p.confidence > self.pattern_threshold
               for p in self.state.patterns()):
            value += PATTERN_CONFIDENCE_BONUS
        return round(min(CONFIDENCE_CAP, value), 4)

    # -- evaluation --------------------------------------------------------------

    async def evaluate(self, issue: Issue) -> GateDecision:
        """Classify ``issue`` into exactly one of executed / approval_required / deferred."""
        if self.requires_approval(issue):
            rec = await self._recommend(
                issue, requires_approval=True,
                reason=f"{issue.type} changes require human approval under the safety policy",
            )
            return GateDecision(GateAction.APPROVAL_REQUIRED, issue.id, recommendation=rec)

        if issue.auto_fixable and issue.fix_action:
            if await self.state.reserve_fix_slot():
                return await self._execute(issue)
            limit = self.safety.max_automatic_changes
            rec = await self._recommend(
                issue, requires_approval=True,
                reason=f"automatic fix budget of {limit} changes is exhausted",
            )
            return GateDecision(GateAction.DEFERRED, issue.id, recommendation=rec)

        rec = await self._recommend(
            issue, requires_approval=False,
            reason="issue is not safely auto-fixable; manual review suggested",
        )
        return GateDecision(GateAction.DEFERRED, issue.id, recommendation=rec)

    def evaluate_requirement(self, requirement: FutureRequirement) -> Recommendation:
        """Predictions are never executed; they become recommendations."""
        if requirement.confidence >= 0.85:
            priority = Severity.HIGH
        elif requirement.confidence >= 0.7:
            priority = Severity.MEDIUM
        else:
            priority = Severity.LOW
        rec_type = REQUIREMENT_RECOMMENDATION_TYPES[requirement.type]
        return Recommendation(
            id=new_id("rec"),
            type=rec_type.value,
            priority=priority.value,
            description=requirement.recommended_action,
            ai_reasoning=requirement.reasoning,
            estimated_impact=requirement.prediction,
            timeframe=requirement.timeframe,
            auto_executable=False,
            requires_approval=rec_type == RecommendationType.EVOLUTION,
            confidence=requirement.confidence,
            source_id=f"requirement:{requirement.type}:{requirement.target}",
        )

    async def _recommend(self, issue: Issue, requires_approval: bool, reason: str) -> Recommendation:
        rec = Recommendation(
            id=new_id("rec"),
            type=ISSUE_RECOMMENDATION_TYPES[issue.type].value,
            priority=issue.severity,
            description=f"{issue.suggested_action}: {issue.description}",
            ai_reasoning=reason,
            estimated_impact=f"resolves a {issue.severity}-severity {issue.type} issue",
            timeframe=SEVERITY_TIMEFRAMES[issue.severity],
            auto_executable=False,
            requires_approval=requires_approval,
            confidence=self.confidence(issue),
            source_id=issue.id,
        )
        await self.state.add_recommendations([rec])
        self.emit_event(EventType.RECOMMENDATION_CREATED, {
            "recommendation_id": rec.id,
            "issue_id": issue.id,
            "requires_approval": requires_approval,
        })
        logger.info(f"[gate] issue {issue.id} -> recommendation {rec.id} ({reason})")
        return rec

    # -- execution ----------------------------------------------------------------

    @staticmethod
    def _apply_fix(client, fix: FixAction, issue: Issue) -> str:
        return fix.apply(client, issue)

    async def _execute(self, issue: Issue) -> GateDecision:
        """Run the bound fix for ``issue``. A fix slot is already reserved."""
        decision = AIDecision.create(
            context=f"{issue.type}: {issue.description}",
            decision=f"apply {issue.fix_action}",
            reasoning=f"auto-fixable {issue.severity} issue; {issue.suggested_action}",
            confidence=self.confidence(issue),
            issue_id=issue.id,
        )

        marker: Optional[BackupMarker] = None
        try:
            fix = get_fix_action(issue.fix_action)
            if self.safety.backup_before_actions:
                marker = await self.execute_tool(
                    "plan_backup", self.client, fix, issue, decision.id,
                )
                await self.state.record_backup_marker(marker)
        except Exception as e:
            await self._log_decision(decision)
            resolved = await self._fail(decision, issue, f"fix not attempted: {e}")
            return GateDecision(GateAction.EXECUTED, issue.id, decision=resolved)

        await self._log_decision(decision)

        try:
            detail = await self.execute_tool("execute_fix", self.client, fix, issue)
        except Exception as e:
            impact = f"fix failed: {e}"
            rollback = None
            if self.safety.rollback_on_failure and marker is not None:
                rollback = await self._rollback(marker)
                outcome = "succeeded" if rollback.success else "failed"
                impact += f"; rollback {outcome} ({rollback.detail})"
            resolved = await self._fail(decision, issue, impact)
            return GateDecision(GateAction.EXECUTED, issue.id, decision=resolved, rollback=rollback)

        await self.state.commit_fix_slot()
        resolved = await self.state.resolve_decision(
            decision.id, DecisionOutcome.SUCCESS, detail, SUCCESS_LEARNING_VALUE,
        )
        self.emit_event(EventType.AUTO_FIX_APPLIED, {
            "decision_id": decision.id,
            "issue_id": issue.id,
            "fix_action": issue.fix_action,
            "impact": detail,
        })
        logger.info(f"[gate] decision {decision.id}: {issue.fix_action} succeeded ({detail})")
        return GateDecision(GateAction.EXECUTED, issue.id, decision=resolved)

    async def _log_decision(self, decision: AIDecision) -> None:
        await self.state.append_decision(decision)
        self.emit_event(EventType.DECISION_LOGGED, {
            "decision_id": decision.id,
            "issue_id": decision.issue_id,
            "confidence": decision.confidence,
        })
        logger.info(
            f"[gate] decision {decision.id}: {decision.decision} "
            f"(confidence {decision.confidence:.0%})"
        )

    async def _fail(self, decision: AIDecision, issue: Issue, impact: str) -> AIDecision:
        await self.state.release_fix_slot()
        resolved = await self.state.resolve_decision(
            decision.id, DecisionOutcome.FAILURE, impact, FAILURE_LEARNING_VALUE,
        )
        await self.state.record_error()
        logger.error(f"[gate] {utc_now()} decision {decision.id} for issue {issue.id} failed: {impact}")
        self.emit_event(EventType.AUTO_FIX_FAILED, {
            "decision_id": decision.id,
            "issue_id": issue.id,
            "impact": impact,
        })
        if self.alerts is not None:
            self.alerts.raise_alert(
                AlertSeverity.WARNING,
                title=f"Automatic fix {issue.fix_action} failed",
                message=impact,
                source=self.name,
                cycle="monitoring",
                issue_id=issue.id,
                decision_id=decision.id,
            )
        return resolved

    async def _rollback(self, marker: BackupMarker) -> RollbackRecord:
        try:
            detail = await self.execute_tool("rollback_fix", self.client, marker)
            success = True
        except RollbackError as e:
            detail = str(e)
            success = False
        record = RollbackRecord(
            id=new_id("rollback"),
            marker_id=marker.id,
            decision_id=marker.decision_id,
            executed_at=utc_now(),
            success=success,
            detail=detail,
        )
        await self.state.record_rollback(record)
        self.emit_event(EventType.ROLLBACK_EXECUTED, {
            "rollback_id": record.id,
            "marker_id": marker.id,
            "decision_id": marker.decision_id,
            "success": success,
        })
        return record
