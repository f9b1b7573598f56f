"""
dbautopilot Configuration
Centralized settings for the controller, agents, and utilities.

Settings are plain dataclasses loaded once at startup. A JSON file may
override any default; unknown keys and wrongly typed values are rejected
so a typo never silently falls back to a default.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from framework.errors import ConfigError


class SystemStatus(Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    LEARNING = "learning"
    OPTIMIZING = "optimizing"
    HEALING = "healing"
    STOPPED = "stopped"
    ERROR = "error"


class HealthStatus(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class IssueType(Enum):
    SCHEMA_DRIFT = "schema_drift"
    PERFORMANCE = "performance"
    INTEGRITY = "integrity"
    SECURITY = "security"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DecisionOutcome(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class PredictionType(Enum):
    GROWTH = "growth"
    PERFORMANCE = "performance"
    OPTIMIZATION = "optimization"
    MAINTENANCE = "maintenance"


class RequirementType(Enum):
    GROWTH = "growth"
    PERFORMANCE = "performance"
    MAINTENANCE = "maintenance"
    TABLE = "table"
    COLUMN = "column"
    INDEX = "index"


class RecommendationType(Enum):
    OPTIMIZATION = "optimization"
    SECURITY = "security"
    PERFORMANCE = "performance"
    MAINTENANCE = "maintenance"
    EVOLUTION = "evolution"


# healthStatus thresholds, checked top-down against performance_score
HEALTH_STATUS_THRESHOLDS = (
    (90, HealthStatus.EXCELLENT),
    (75, HealthStatus.GOOD),
    (50, HealthStatus.WARNING),
)

# Operation kind implied by each bound fix (used against human_approval_required)
FIX_OPERATION_KINDS = {
    "create_missing_indexes": "create_index",
    "analyze_tables": "analyze",
    "vacuum_analyze": "vacuum",
}

# Operation kind implied by an issue type when it carries no fix
ISSUE_OPERATION_KINDS = {
    "schema_drift": "major_schema_change",
    "integrity": "add_constraint",
    "security": "revoke_privileges",
    "performance": "tune_performance",
}

# Base decision confidence by issue severity
SEVERITY_CONFIDENCE = {
    "low": 0.6,
    "medium": 0.7,
    "high": 0.8,
    "critical": 0.9,
}

# Persisted documents (one JSON file each)
DOCUMENTS = {
    "decision_history": "ai_decisions_history.json",
    "metrics_history": "db_metrics_history.json",
    "learned_patterns": "schema_patterns.json",
    "system_state": "system_state.json",
    "backup_markers": "backup_markers.json",
    "rollback_history": "rollback_history.json",
}


@dataclass(frozen=True)
class SafetyPolicy:
    """Safety policy, immutable after startup."""
    human_approval_required: tuple = ("drop_table", "major_schema_change")
    max_automatic_changes: int = 10
    backup_before_actions: bool = True
    rollback_on_failure: bool = True
    emergency_stop: bool = True

    def requires_approval(self, *operation_kinds: str) -> bool:
        return any(kind in self.human_approval_required for kind in operation_kinds if kind)


@dataclass
class ScheduleConfig:
    """Cadence of the three periodic activities."""
    base_monitoring_minutes: float = 5.0
    min_monitoring_minutes: float = 1.0
    learning_interval_seconds: float = 1800.0     # 30 min
    maintenance_interval_seconds: float = 3600.0  # 60 min
    complexity_decision_threshold: int = 100
    complexity_factor: float = 1.2


@dataclass
class MonitoringThresholds:
    """Collector scoring and issue thresholds."""
    slow_query_seconds: int = 30
    slow_query_penalty: int = 10
    missing_index_penalty: int = 5
    slow_query_high_severity_count: int = 5
    dead_tuple_ratio: float = 0.2
    min_dead_tuples: int = 1000
    alert_threshold: int = 2
    recommendation_limit: int = 50


@dataclass
class LearningConfig:
    """Pattern learner heuristics."""
    growth_window: int = 5
    growth_threshold: float = 0.1
    growth_confidence: float = 0.8
    performance_window: int = 3
    performance_floor: float = 70.0
    performance_confidence: float = 0.9
    maintenance_confidence: float = 0.7
    pattern_initial_confidence: float = 0.6
    pattern_confidence_step: float = 0.05
    pattern_confidence_cap: float = 0.95
    pattern_prediction_confidence: float = 0.7
    learning_target_snapshots: int = 50


@dataclass
class DatabaseSettings:
    """Target database connection."""
    dsn: str = ""
    mock_mode: bool = True
    statement_timeout_ms: int = 300000
    workspace_host: str = ""
    endpoint_name: str = ""


@dataclass
class PersistenceSettings:
    directory: str = "state"


@dataclass
class AutopilotSettings:
    """Top-level settings for one controller instance."""
    safety: SafetyPolicy = field(default_factory=SafetyPolicy)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    monitoring: MonitoringThresholds = field(default_factory=MonitoringThresholds)
    learning: LearningConfig = field(default_factory=LearningConfig)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    expected_schema_path: Optional[str] = None


_SECTIONS = {
    "safety": SafetyPolicy,
    "schedule": ScheduleConfig,
    "monitoring": MonitoringThresholds,
    "learning": LearningConfig,
    "database": DatabaseSettings,
    "persistence": PersistenceSettings,
}


def _check_type(section: str, name: str, value: Any, default: Any) -> Any:
    """Coerce a config value to the type of its default, or raise."""
    where = f"{section}.{name}"
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{where}: expected bool, got {type(value).__name__}")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{where}: expected int, got {type(value).__name__}")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{where}: expected number, got {type(value).__name__}")
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise ConfigError(f"{where}: expected str, got {type(value).__name__}")
        return value
    if isinstance(default, tuple):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{where}: expected list of strings")
        return tuple(value)
    return value


def _build_section(name: str, cls: type, data: Any):
    if not isinstance(data, dict):
        raise ConfigError(f"{name}: expected an object")
    defaults = cls()
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"{name}: unknown keys {sorted(unknown)}")
    values = {
        key: _check_type(name, key, value, getattr(defaults, key))
        for key, value in data.items()
    }
    return dataclasses.replace(defaults, **values)


def settings_from_dict(data: dict) -> AutopilotSettings:
    """Build settings from a parsed config document, rejecting unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError("config root must be an object")
    allowed = set(_SECTIONS) | {"expected_schema_path"}
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(f"unknown config sections {sorted(unknown)}")

    sections = {
        name: _build_section(name, cls, data[name])
        for name, cls in _SECTIONS.items() if name in data
    }
    settings = AutopilotSettings(**sections)

    schema_path = data.get("expected_schema_path")
    if schema_path is not None and not isinstance(schema_path, str):
        raise ConfigError("expected_schema_path: expected str")
    settings.expected_schema_path = schema_path

    _validate(settings)
    return settings


def _validate(settings: AutopilotSettings) -> None:
    if settings.safety.max_automatic_changes < 0:
        raise ConfigError("safety.max_automatic_changes must be >= 0")
    if settings.schedule.min_monitoring_minutes < 1:
        raise ConfigError("schedule.min_monitoring_minutes must be at least 1 minute")
    if settings.learning.growth_window < 2:
        raise ConfigError("learning.growth_window must be >= 2")
    if settings.learning.performance_window < 1:
        raise ConfigError("learning.performance_window must be >= 1")


def load_settings(path: Optional[str] = None) -> AutopilotSettings:
    """
    Load settings from a JSON file (or AUTOPILOT_CONFIG), then apply
    environment overrides. Missing file path means defaults.
    """
    config_path = path or os.getenv("AUTOPILOT_CONFIG")
    data: dict = {}
    if config_path:
        try:
            data = json.loads(Path(config_path).read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"config file not found: {config_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"config file {config_path} is not valid JSON: {e}") from e

    settings = settings_from_dict(data)

    dsn = os.getenv("AUTOPILOT_DSN")
    if dsn:
        settings.database = dataclasses.replace(settings.database, dsn=dsn, mock_mode=False)
    mock = os.getenv("AUTOPILOT_MOCK_MODE")
    if mock is not None:
        settings.database = dataclasses.replace(
            settings.database, mock_mode=mock.strip().lower() in ("1", "true", "yes"),
        )
    state_dir = os.getenv("AUTOPILOT_STATE_DIR")
    if state_dir:
        settings.persistence = PersistenceSettings(directory=state_dir)
    schema_path = os.getenv("AUTOPILOT_EXPECTED_SCHEMA")
    if schema_path:
        settings.expected_schema_path = schema_path

    return settings
