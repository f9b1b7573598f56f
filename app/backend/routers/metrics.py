"""Metrics router — snapshot history, learned patterns and predictions."""

from fastapi import APIRouter, HTTPException, Query

from ..services.controller_service import get_controller

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


@router.get("/latest")
def latest_snapshot():
    history = get_controller().metrics_history()
    if not history:
        raise HTTPException(status_code=404, detail="no snapshot collected yet")
    return history[-1].to_dict()


@router.get("/history")
def metrics_history(limit: int = Query(20, ge=1, le=500)):
    """Most recent snapshots, newest last."""
    return [s.to_dict() for s in get_controller().metrics_history()[-limit:]]


@router.get("/patterns")
def learned_patterns():
    return [p.to_dict() for p in get_controller().patterns()]


@router.get("/predictions")
def predictions():
    return [r.to_dict() for r in get_controller().requirements()]
