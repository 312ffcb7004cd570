"""Health check and metrics endpoints (no version prefix)."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from stagewise import event_log
from stagewise.models import now_iso
from stagewise.observability import generate_metrics

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": now_iso()}


@router.get("/health/ready")
def health_ready():
    """Readiness check: verifies the store answers a query."""
    try:
        event_log.count()
        return {"status": "ok", "timestamp": now_iso()}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "error": str(e), "timestamp": now_iso()},
        )


@router.get("/health/live")
def health_live():
    """Liveness check: process is alive."""
    return {"status": "ok"}


@router.get("/metrics")
def metrics(request: Request):
    """Prometheus-compatible metrics endpoint."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    return Response(content=generate_metrics(limiter), media_type="text/plain; charset=utf-8")
