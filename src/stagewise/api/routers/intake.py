"""Client event intake endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from stagewise import intake
from stagewise.api.schemas import IntakeBody
from stagewise.errors import PayloadTooLarge, ValidationError

router = APIRouter(tags=["intake"])


@router.post("/metrics")
def ingest_metrics(body: IntakeBody):
    try:
        stored = intake.ingest(body.events)
    except (ValidationError, PayloadTooLarge) as e:
        return JSONResponse(status_code=e.status_code, content={"ok": False, "error": str(e)})
    return {"ok": True, "stored": stored}
