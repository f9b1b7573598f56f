"""System router — start, stop, status and emergency stop."""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from ..services.controller_service import get_controller

router = APIRouter(prefix="/api/system", tags=["system"])


class EmergencyStopRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/status")
def system_status():
    """Current SystemState with live uptime."""
    return get_controller().status().to_dict()


@router.post("/start")
async def start_system():
    controller = get_controller()
    await controller.start()
    return controller.status().to_dict()


@router.post("/stop")
async def stop_system():
    controller = get_controller()
    await controller.stop()
    return controller.status().to_dict()


@router.post("/emergency-stop")
async def emergency_stop(request: EmergencyStopRequest):
    controller = get_controller()
    await controller.emergency_stop(request.reason or "operator request via API")
    return controller.status().to_dict()
