"""dbautopilot control app — FastAPI entry point."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from framework.errors import (
    ControllerStartError,
    ControllerStateError,
    PolicyViolation,
    UnknownReportError,
)
from .routers import decisions, health, metrics, reports, system
from .services.controller_service import get_controller

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("dbautopilot.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    controller = get_controller()
    if os.getenv("AUTOPILOT_AUTOSTART", "").strip().lower() in ("1", "true", "yes"):
        logger.info("Autostarting controller")
        await controller.start()
    logger.info("dbautopilot app starting up")
    yield
    logger.info("dbautopilot app shutting down")
    await controller.stop()


app = FastAPI(
    title="dbautopilot",
    description="Autonomous database control system — status, decisions and reports",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})
    return handler


app.add_exception_handler(UnknownReportError, _error(404))
app.add_exception_handler(ControllerStateError, _error(409))
app.add_exception_handler(PolicyViolation, _error(409))
app.add_exception_handler(ControllerStartError, _error(503))

app.include_router(health.router)
app.include_router(system.router)
app.include_router(decisions.router)
app.include_router(metrics.router)
app.include_router(reports.router)


@app.get("/")
async def root():
    """Root endpoint listing the API."""
    return {
        "status": "ok",
        "app": "dbautopilot",
        "endpoints": [
            "/api/health",
            "/api/system/status",
            "/api/system/start",
            "/api/system/stop",
            "/api/system/emergency-stop",
            "/api/decisions",
            "/api/decisions/recommendations",
            "/api/metrics/latest",
            "/api/metrics/history",
            "/api/metrics/patterns",
            "/api/metrics/predictions",
            "/api/reports",
            "/api/reports/{name}",
        ],
    }
