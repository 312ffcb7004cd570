"""Per-workspace pipeline and SLA configuration endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from stagewise import event_log
from stagewise.api.schemas import SettingsUpdateBody
from stagewise.models import Event, EventType
from stagewise.pipeline import STAGE_TEMPLATES, PipelineConfig, PipelineStage, SLAConfig

router = APIRouter(tags=["settings"])


@router.get("/workspaces/{workspace_id}/settings")
def get_settings(workspace_id: str):
    return event_log.get_workspace_settings(workspace_id).to_dict()


@router.put("/workspaces/{workspace_id}/settings")
def update_settings(workspace_id: str, body: SettingsUpdateBody):
    """Replace the stage list (or apply a template) and/or the SLA rules.

    Every stage-list change produces the next pipeline version.
    """
    settings = event_log.get_workspace_settings(workspace_id)
    if body.template:
        template = PipelineConfig.from_template(body.template)
        settings.pipeline = settings.pipeline.revised(template.stages)
    elif body.stages is not None:
        stages = [PipelineStage(id=s.id, name=s.name, order=s.order) for s in body.stages]
        settings.pipeline = settings.pipeline.revised(sorted(stages, key=lambda s: s.order))
    if body.sla is not None:
        settings.sla = SLAConfig.from_dict(body.sla.model_dump(exclude_none=True))
    event_log.save_workspace_settings(workspace_id, settings)
    event_log.append(Event(
        event_type=EventType.SETTINGS_UPDATED,
        workspace_id=workspace_id,
        payload={"pipeline_version": settings.pipeline.version, "stages": len(settings.pipeline.stages)},
    ))
    return settings.to_dict()


@router.get("/pipeline-templates")
def list_templates():
    return {
        key: {"name": t["name"], "stages": [s.to_dict() for s in t["stages"]]}
        for key, t in STAGE_TEMPLATES.items()
    }
