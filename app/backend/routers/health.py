"""Health check router."""

from fastapi import APIRouter

from config.settings import SystemStatus
from ..services.controller_service import get_controller

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health_check():
    """Liveness of the control loop (not of the monitored database)."""
    state = get_controller().status()
    healthy = state.status != SystemStatus.ERROR.value and not state.emergency_mode
    return {
        "status": "healthy" if healthy else "degraded",
        "controller": state.status,
        "emergency_mode": state.emergency_mode,
        "system_health": state.system_health,
    }
