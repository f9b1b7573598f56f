"""Reports router — named reports."""

from fastapi import APIRouter

from ..services.controller_service import get_reports

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("")
def available_reports():
    return {"reports": get_reports().names}


@router.get("/{name}")
def generate_report(name: str):
    """Unknown names map to 404 through the app's error handlers."""
    return get_reports().generate(name)
