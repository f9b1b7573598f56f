"""Controller service: the AutonomousController behind the HTTP surface."""

import logging
from typing import Optional

from config.settings import load_settings
from framework.controller import AutonomousController
from framework.reports import ReportGenerator

logger = logging.getLogger("dbautopilot.app.controller")

_controller: Optional[AutonomousController] = None
_reports: Optional[ReportGenerator] = None


def set_controller(controller: Optional[AutonomousController]) -> None:
    """Install the controller served by the app (None resets)."""
    global _controller, _reports
    _controller = controller
    _reports = ReportGenerator(controller) if controller is not None else None


def get_controller() -> AutonomousController:
    """Return the app's controller, building one from settings on first use."""
    if _controller is None:
        settings = load_settings()
        logger.info(
            f"Creating controller (mock_mode={settings.database.mock_mode}, "
            f"state={settings.persistence.directory})"
        )
        set_controller(AutonomousController(settings))
    return _controller


def get_reports() -> ReportGenerator:
    get_controller()
    return _reports
