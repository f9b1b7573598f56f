"""
Named reports for the dashboard and CLI.

Reports are plain JSON-ready dicts built from controller copies; generating
one never mutates state.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable

from config.settings import DecisionOutcome, Severity
from framework.errors import UnknownReportError
from framework.models import utc_now

PRIORITY_ORDER = {s.value: i for i, s in enumerate(
    (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)
)}

RECENT_LIMIT = 50
TREND_LIMIT = 10


class ReportGenerator:
    """Builds the named reports from an AutonomousController."""

    def __init__(self, controller):
        self.controller = controller
        self._reports: dict[str, Callable[[], dict]] = {
            "status": self.status_report,
            "health_check": self.health_check_report,
            "decisions": self.decisions_report,
            "predictions": self.predictions_report,
            "metrics": self.metrics_report,
            "schema_comparison": self.schema_comparison_report,
            "recommendations": self.recommendations_report,
        }

    @property
    def names(self) -> list[str]:
        return list(self._reports)

    def generate(self, name: str) -> dict:
        try:
            builder = self._reports[name]
        except KeyError:
            raise UnknownReportError(
                f"unknown report '{name}'; available: {', '.join(self._reports)}"
            ) from None
        return {"report": name, "generated_at": utc_now(), "data": builder()}

    def status_report(self) -> dict:
        state = self.controller.status()
        data = state.to_dict()
        data["is_running"] = self.controller.is_running
        return data

    def health_check_report(self) -> dict:
        state = self.controller.status()
        history = self.controller.metrics_history()
        latest = history[-1] if history else None
        return {
            "status": state.status,
            "emergency_mode": state.emergency_mode,
            "system_health": state.system_health,
            "error_count": state.error_count,
            "database_health": latest.health_status if latest else "unknown",
            "performance_score": latest.performance_score if latest else None,
            "last_snapshot_at": latest.timestamp if latest else None,
            "agents": self.controller.framework.get_agent_summaries(),
            "alerts": self.controller.alerts.get_alert_summary(),
            "persisted_writes": self.controller.store.write_count,
        }

    def decisions_report(self) -> dict:
        decisions = self.controller.decision_history()
        outcomes = Counter(d.outcome for d in decisions)
        executed = outcomes[DecisionOutcome.SUCCESS.value] + outcomes[DecisionOutcome.FAILURE.value]
        state = self.controller.status()
        return {
            "total": len(decisions),
            "by_outcome": {o.value: outcomes[o.value] for o in DecisionOutcome},
            "success_rate": (
                round(outcomes[DecisionOutcome.SUCCESS.value] / executed, 4) if executed else None
            ),
            "automatic_fixes": state.automatic_fixes,
            "max_automatic_changes": self.controller.settings.safety.max_automatic_changes,
            "recent": [d.to_dict() for d in decisions[-RECENT_LIMIT:]],
        }

    def predictions_report(self) -> dict:
        requirements = self.controller.requirements()
        patterns = sorted(self.controller.patterns(), key=lambda p: (-p.confidence, p.name))
        return {
            "learning_progress": self.controller.status().learning_progress,
            "requirements": [r.to_dict() for r in requirements],
            "patterns": [p.to_dict() for p in patterns],
        }

    def metrics_report(self) -> dict:
        history = self.controller.metrics_history()
        if not history:
            return {"snapshots": 0, "latest": None, "trend": []}
        return {
            "snapshots": len(history),
            "latest": history[-1].to_dict(),
            "trend": [
                {"timestamp": s.timestamp, "performance_score": s.performance_score,
                 "total_rows": s.total_rows, "issues": len(s.issues)}
                for s in history[-TREND_LIMIT:]
            ],
        }

    def schema_comparison_report(self) -> dict:
        comparison = self.controller.collector.last_schema_comparison
        if comparison is None:
            reason = ("no expected schema loaded" if self.controller.collector.expected_schema is None
                      else "no monitoring cycle has compared the schema yet")
            return {"status": "unavailable", "reason": reason}
        return comparison

    def recommendations_report(self) -> dict:
        recs = sorted(
            self.controller.status().recommendations,
            key=lambda r: (PRIORITY_ORDER.get(r.priority, len(PRIORITY_ORDER)), -r.confidence),
        )
        return {
            "total": len(recs),
            "requires_approval": sum(1 for r in recs if r.requires_approval),
            "items": [r.to_dict() for r in recs],
        }
