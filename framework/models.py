"""
Entities shared by the collector, gate, learner and controller.

Every entity serializes with ``to_dict()`` and is rebuilt with a strict
``from_dict()``: unknown keys, missing keys and out-of-range enum values
raise ``ValidationError`` instead of defaulting.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from config.settings import (
    HEALTH_STATUS_THRESHOLDS,
    DecisionOutcome,
    HealthStatus,
    IssueType,
    PredictionType,
    RecommendationType,
    RequirementType,
    Severity,
    SystemStatus,
)
from framework.errors import DecisionAlreadyResolved, ValidationError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def health_status_for(performance_score: float) -> HealthStatus:
    """Map a performance score to its health status (pure, history independent)."""
    for floor, status in HEALTH_STATUS_THRESHOLDS:
        if performance_score >= floor:
            return status
    return HealthStatus.CRITICAL


def _enum_value(cls: type[Enum], value: Any, where: str) -> str:
    try:
        return cls(value).value
    except ValueError as e:
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(f"{where}: {value!r} is not one of [{allowed}]") from e


def _check_keys(cls: type, data: Any) -> None:
    if not isinstance(data, dict):
        raise ValidationError(f"{cls.__name__}: expected an object, got {type(data).__name__}")
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - names
    missing = names - set(data)
    if unknown:
        raise ValidationError(f"{cls.__name__}: unknown fields {sorted(unknown)}")
    if missing:
        raise ValidationError(f"{cls.__name__}: missing fields {sorted(missing)}")


def _check_unit(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{where}: expected a number")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{where}: {value} outside [0, 1]")
    return float(value)


def _check_percent(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{where}: expected a number")
    if not 0 <= value <= 100:
        raise ValidationError(f"{where}: {value} outside [0, 100]")
    return value


@dataclass(frozen=True)
class Issue:
    """A detected problem. Consumed once by the decision gate."""
    id: str
    type: str
    severity: str
    description: str
    auto_fixable: bool
    suggested_action: str
    detected_at: str
    fix_action: Optional[str] = None
    target: dict = field(default_factory=dict)

    def __post_init__(self):
        _enum_value(IssueType, self.type, "Issue.type")
        _enum_value(Severity, self.severity, "Issue.severity")

    @property
    def signature(self) -> str:
        """Stable key grouping repeated detections of the same kind of issue."""
        return f"{self.type}:{self.fix_action or 'manual'}"

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Issue":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class Prediction:
    type: str
    confidence: float
    timeframe: str
    prediction: str
    recommended_action: str

    def __post_init__(self):
        _enum_value(PredictionType, self.type, "Prediction.type")
        _check_unit(self.confidence, "Prediction.confidence")

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Prediction":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class FutureRequirement:
    """A predicted schema or maintenance need produced by the learner."""
    type: str
    target: str
    prediction: str
    confidence: float
    timeframe: str
    reasoning: str
    recommended_action: str
    auto_generable: bool = False

    def __post_init__(self):
        _enum_value(RequirementType, self.type, "FutureRequirement.type")
        _check_unit(self.confidence, "FutureRequirement.confidence")

    def to_prediction(self) -> Optional[Prediction]:
        if self.type not in (p.value for p in PredictionType):
            return None
        return Prediction(
            type=self.type,
            confidence=self.confidence,
            timeframe=self.timeframe,
            prediction=self.prediction,
            recommended_action=self.recommended_action,
        )

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "FutureRequirement":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class Recommendation:
    """Deferred or approval-gated action surfaced to an operator."""
    id: str
    type: str
    priority: str
    description: str
    ai_reasoning: str
    estimated_impact: str
    timeframe: str
    auto_executable: bool
    requires_approval: bool
    confidence: float
    source_id: Optional[str] = None

    def __post_init__(self):
        _enum_value(RecommendationType, self.type, "Recommendation.type")
        _enum_value(Severity, self.priority, "Recommendation.priority")
        _check_unit(self.confidence, "Recommendation.confidence")

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Recommendation":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class MetricsSnapshot:
    """One monitoring cycle's measurements. Immutable once created."""
    timestamp: str
    table_count: int
    total_rows: int
    database_size: str
    performance_score: float
    health_status: str
    issues: tuple = ()
    predictions: tuple = ()
    database_size_bytes: int = 0
    # None when the catalog or index query failed that cycle
    column_count: Optional[int] = None
    index_count: Optional[int] = None
    slow_query_count: int = 0
    missing_index_count: int = 0

    def __post_init__(self):
        _check_percent(self.performance_score, "MetricsSnapshot.performance_score")
        expected = health_status_for(self.performance_score).value
        if self.health_status != expected:
            raise ValidationError(
                f"MetricsSnapshot.health_status {self.health_status!r} does not match "
                f"score {self.performance_score} (expected {expected!r})"
            )
        object.__setattr__(self, "issues", tuple(self.issues))
        object.__setattr__(self, "predictions", tuple(self.predictions))

    @classmethod
    def build(cls, performance_score: float, **fields) -> "MetricsSnapshot":
        """Create a snapshot with health_status derived from the score."""
        return cls(
            performance_score=performance_score,
            health_status=health_status_for(performance_score).value,
            **fields,
        )

    def with_predictions(self, predictions: list[Prediction]) -> "MetricsSnapshot":
        return dataclasses.replace(self, predictions=tuple(predictions))

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        data["issues"] = [i.to_dict() for i in self.issues]
        data["predictions"] = [p.to_dict() for p in self.predictions]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MetricsSnapshot":
        _check_keys(cls, data)
        values = dict(data)
        values["issues"] = tuple(Issue.from_dict(i) for i in data["issues"])
        values["predictions"] = tuple(Prediction.from_dict(p) for p in data["predictions"])
        return cls(**values)


@dataclass
class AIDecision:
    """
    Append-only audit record of one autonomous decision.
    ``outcome`` is the only mutable field and changes once, from pending.
    """
    id: str
    timestamp: str
    context: str
    decision: str
    reasoning: str
    confidence: float
    outcome: str = DecisionOutcome.PENDING.value
    impact: str = "pending"
    learning_value: float = 0.0
    issue_id: Optional[str] = None

    def __post_init__(self):
        _check_unit(self.confidence, "AIDecision.confidence")
        _enum_value(DecisionOutcome, self.outcome, "AIDecision.outcome")

    @classmethod
    def create(cls, context: str, decision: str, reasoning: str, confidence: float,
               issue_id: Optional[str] = None) -> "AIDecision":
        return cls(
            id=new_id("ai"),
            timestamp=utc_now(),
            context=context,
            decision=decision,
            reasoning=reasoning,
            confidence=round(confidence, 4),
            issue_id=issue_id,
        )

    @property
    def is_pending(self) -> bool:
        return self.outcome == DecisionOutcome.PENDING.value

    def resolve(self, outcome: DecisionOutcome, impact: str, learning_value: float = 0.0) -> None:
        if not self.is_pending:
            raise DecisionAlreadyResolved(
                f"decision {self.id} already resolved as {self.outcome}"
            )
        if outcome == DecisionOutcome.PENDING:
            raise ValidationError("a decision cannot be resolved back to pending")
        self.outcome = outcome.value
        self.impact = impact
        self.learning_value = learning_value

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AIDecision":
        _check_keys(cls, data)
        return cls(**data)


@dataclass
class SchemaPattern:
    """A recurring structural change, reinforced on every observation."""
    id: str
    name: str
    frequency: int
    last_used: str
    confidence: float
    adaptations: int = 0

    def __post_init__(self):
        _check_unit(self.confidence, "SchemaPattern.confidence")

    def reinforce(self, observed_at: str, step: float, cap: float) -> None:
        self.frequency += 1
        self.last_used = observed_at
        self.confidence = round(min(cap, self.confidence + step), 4)
        self.adaptations += 1

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SchemaPattern":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class BackupMarker:
    """Durable pre-action record: what a fix is about to change and how to undo it."""
    id: str
    decision_id: str
    issue_id: str
    fix_action: str
    created_at: str
    restore_statements: tuple = ()
    state: dict = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "restore_statements", tuple(self.restore_statements))

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["restore_statements"] = list(self.restore_statements)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BackupMarker":
        _check_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class RollbackRecord:
    id: str
    marker_id: str
    decision_id: str
    executed_at: str
    success: bool
    detail: str

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RollbackRecord":
        _check_keys(cls, data)
        return cls(**data)


@dataclass
class SystemState:
    """Controller-owned state. Mutated only through SystemStateManager."""
    status: str = SystemStatus.INITIALIZING.value
    uptime: float = 0.0
    last_action: str = "system_initialization"
    last_action_time: str = field(default_factory=utc_now)
    ai_decisions: int = 0
    automatic_fixes: int = 0
    learning_progress: float = 0.0
    system_health: float = 100.0
    recommendations: list = field(default_factory=list)
    next_scheduled_action: str = "initial_analysis"
    emergency_mode: bool = False
    error_count: int = 0

    def __post_init__(self):
        _enum_value(SystemStatus, self.status, "SystemState.status")
        _check_percent(self.learning_progress, "SystemState.learning_progress")
        _check_percent(self.system_health, "SystemState.system_health")

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        data["recommendations"] = [r.to_dict() for r in self.recommendations]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "SystemState":
        _check_keys(cls, data)
        values = dict(data)
        values["recommendations"] = [Recommendation.from_dict(r) for r in data["recommendations"]]
        return cls(**values)

    @classmethod
    def merge_with_defaults(cls, data: dict) -> "SystemState":
        """
        Reload a persisted state document. Keys missing from older documents
        take defaults; unknown keys are still rejected.
        """
        if not isinstance(data, dict):
            raise ValidationError("SystemState: expected an object")
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ValidationError(f"SystemState: unknown fields {sorted(unknown)}")
        defaults = cls().to_dict()
        defaults.update(data)
        return cls.from_dict(defaults)
