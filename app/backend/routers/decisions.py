"""Decisions router — decision audit log and recommendations."""

from typing import Optional

from fastapi import APIRouter, Query

from ..services.controller_service import get_controller

router = APIRouter(prefix="/api/decisions", tags=["decisions"])


@router.get("")
def list_decisions(
    limit: int = Query(50, ge=1, le=1000),
    outcome: Optional[str] = Query(None, description="pending, success, failure or partial"),
):
    """Most recent decisions, newest last."""
    decisions = get_controller().decision_history()
    if outcome:
        decisions = [d for d in decisions if d.outcome == outcome]
    return [d.to_dict() for d in decisions[-limit:]]


@router.get("/recommendations")
def list_recommendations(requires_approval: Optional[bool] = Query(None)):
    recs = get_controller().status().recommendations
    if requires_approval is not None:
        recs = [r for r in recs if r.requires_approval == requires_approval]
    return [r.to_dict() for r in recs]
