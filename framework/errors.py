"""Exception hierarchy for the autonomous control system."""

from __future__ import annotations


class AutopilotError(Exception):
    """Base class for all dbautopilot errors."""


class ConfigError(AutopilotError):
    """Configuration file or value is invalid."""


class ValidationError(AutopilotError):
    """A persisted or incoming document does not match its entity shape."""


class PersistenceError(AutopilotError):
    """A persisted document could not be read or written."""


class PolicyViolation(AutopilotError):
    """An automatic change would break the safety policy."""


class FixExecutionError(AutopilotError):
    """A dispatched fix action failed."""


class RollbackError(AutopilotError):
    """Restoring from a backup marker failed."""


class DecisionAlreadyResolved(AutopilotError):
    """An AIDecision outcome may be set only once."""


class ControllerStateError(AutopilotError):
    """Operation not allowed in the controller's current state."""


class ControllerStartError(AutopilotError):
    """Controller initialization failed and self-healing did not recover."""


class UnknownReportError(AutopilotError):
    """Requested report name is not registered."""
