"""Pipeline stage configuration and SLA rules.

Stage identity is the integer index into an ordered, user-editable list of
stage descriptors.  Both the aggregator (names, ordering) and the rule engine
(thresholds, terminal stage) read from the same versioned ``PipelineConfig``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from stagewise.defaults import (
    DEFAULT_AWAITING_RESPONSE_STAGES,
    DEFAULT_STAGE_HOURS,
    FALLBACK_STAGE_HOURS,
    MAX_PIPELINE_STAGES,
    MIN_PIPELINE_STAGES,
)
from stagewise.errors import ValidationError
from stagewise.models import now_ms


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

@dataclass
class PipelineStage:
    id: str
    name: str
    order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "order": self.order}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PipelineStage:
        return cls(id=str(d.get("id", "")), name=str(d.get("name", "")), order=int(d.get("order", 0)))


def _stages(*pairs: tuple[str, str]) -> list[PipelineStage]:
    return [PipelineStage(id=sid, name=name, order=i) for i, (sid, name) in enumerate(pairs)]


DEFAULT_STAGES = _stages(
    ("new-leads", "New Leads"),
    ("contacted", "Contacted"),
    ("interview", "Interview"),
    ("placed", "Placed"),
)

STAGE_TEMPLATES: dict[str, dict[str, Any]] = {
    "general": {"name": "General Recruitment", "stages": DEFAULT_STAGES},
    "it": {
        "name": "IT Recruitment",
        "stages": _stages(
            ("sourced", "Sourced"),
            ("first-contact", "First Contact"),
            ("tech-screen", "Technical Screen"),
            ("client-interview", "Client Interview"),
            ("offer", "Offer"),
            ("placed", "Placed"),
        ),
    },
    "finance": {
        "name": "Finance Recruitment",
        "stages": _stages(
            ("pipeline", "Pipeline"),
            ("initial-call", "Initial Call"),
            ("first-interview", "First Interview"),
            ("final-interview", "Final Interview"),
            ("references", "Reference Check"),
            ("offer", "Offer"),
            ("placed", "Placed"),
        ),
    },
    "healthcare": {
        "name": "Healthcare Recruitment",
        "stages": _stages(
            ("lead", "Lead"),
            ("screening", "Screening"),
            ("compliance", "Compliance Check"),
            ("interview", "Interview"),
            ("offer", "Offer"),
            ("onboarding", "Onboarding"),
        ),
    },
    "sales": {
        "name": "Sales Recruitment",
        "stages": _stages(
            ("prospecting", "Prospecting"),
            ("qualified", "Qualified"),
            ("assessment", "Assessment"),
            ("client-meeting", "Client Meeting"),
            ("offer", "Offer"),
            ("placed", "Placed"),
        ),
    },
    "executive": {
        "name": "Executive Search",
        "stages": _stages(
            ("research", "Research"),
            ("approach", "Approach"),
            ("initial-meeting", "Initial Meeting"),
            ("client-presentation", "Client Presentation"),
            ("finalist", "Finalist"),
            ("offer-negotiation", "Offer Negotiation"),
            ("placed", "Placed"),
        ),
    },
}


def validate_stages(stages: list[PipelineStage]) -> list[str]:
    """Return every problem with a stage list (empty list means valid)."""
    errors: list[str] = []
    if len(stages) < MIN_PIPELINE_STAGES:
        errors.append(f"Must have at least {MIN_PIPELINE_STAGES} stages")
    if len(stages) > MAX_PIPELINE_STAGES:
        errors.append(f"Cannot have more than {MAX_PIPELINE_STAGES} stages")

    seen: set[str] = set()
    for index, stage in enumerate(stages):
        if not stage.id:
            errors.append(f"Stage {index + 1} missing ID")
        elif stage.id in seen:
            errors.append(f"Duplicate stage ID: {stage.id}")
        else:
            seen.add(stage.id)
        if not stage.name or not stage.name.strip():
            errors.append(f"Stage {index + 1} missing name")
    return errors


@dataclass
class PipelineConfig:
    """Versioned ordered list of stage descriptors for one workspace."""

    stages: list[PipelineStage] = field(default_factory=lambda: list(DEFAULT_STAGES))
    version: int = 1
    updated_at: int = 0

    @property
    def terminal_index(self) -> int:
        return len(self.stages) - 1

    def stage_name(self, stage: str | int) -> str:
        try:
            index = int(stage)
        except (TypeError, ValueError):
            return f"Stage {stage}"
        if 0 <= index < len(self.stages):
            return self.stages[index].name
        return f"Stage {stage}"

    def is_terminal(self, index: int) -> bool:
        return index >= self.terminal_index

    def revised(self, stages: list[PipelineStage]) -> PipelineConfig:
        """Validate *stages* and return the next version of this config."""
        errors = validate_stages(stages)
        if errors:
            raise ValidationError("; ".join(errors))
        renumbered = [PipelineStage(id=s.id, name=s.name.strip(), order=i)
                      for i, s in enumerate(stages)]
        return PipelineConfig(stages=renumbered, version=self.version + 1, updated_at=now_ms())

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "version": self.version,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> PipelineConfig:
        """Load a stored config, falling back to defaults when unusable."""
        if not d:
            return cls()
        raw = d.get("stages")
        if not isinstance(raw, list) or len(raw) < MIN_PIPELINE_STAGES:
            return cls()
        stages = sorted((PipelineStage.from_dict(s) for s in raw), key=lambda s: s.order)
        return cls(stages=stages, version=int(d.get("version", 1)), updated_at=int(d.get("updated_at", 0)))

    @classmethod
    def from_template(cls, key: str) -> PipelineConfig:
        template = STAGE_TEMPLATES.get(key)
        if template is None:
            raise ValidationError(f"Unknown pipeline template: {key}")
        return cls(stages=list(template["stages"]))


# ---------------------------------------------------------------------------
# SLA rules
# ---------------------------------------------------------------------------

@dataclass
class SLAConfig:
    """Per-stage hour thresholds (index-aligned) plus a global total-age cap.

    ``None`` entries and a ``None`` ``max_total_hours`` mean "no limit".
    """

    per_stage_hours: list[float | None] = field(default_factory=lambda: list(DEFAULT_STAGE_HOURS))
    max_total_hours: float | None = None
    escalations_enabled: bool = True
    chase_enabled: bool = True
    awaiting_response_stages: list[str] = field(
        default_factory=lambda: list(DEFAULT_AWAITING_RESPONSE_STAGES)
    )

    def stage_limit_hours(self, index: int, pipeline: PipelineConfig) -> float:
        if pipeline.is_terminal(index):
            return math.inf
        if 0 <= index < len(self.per_stage_hours):
            hours = self.per_stage_hours[index]
            return math.inf if hours is None else float(hours)
        return FALLBACK_STAGE_HOURS

    @property
    def total_limit_hours(self) -> float:
        return math.inf if self.max_total_hours is None else float(self.max_total_hours)

    def is_awaiting_response(self, stage_name: str | None) -> bool:
        if not stage_name:
            return False
        wanted = {s.strip().lower() for s in self.awaiting_response_stages}
        return stage_name.strip().lower() in wanted

    def to_dict(self) -> dict[str, Any]:
        return {
            "per_stage_hours": self.per_stage_hours,
            "max_total_hours": self.max_total_hours,
            "escalations_enabled": self.escalations_enabled,
            "chase_enabled": self.chase_enabled,
            "awaiting_response_stages": self.awaiting_response_stages,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> SLAConfig:
        """Load SLA rules; accepts the legacy single ``max_stage_hours`` form."""
        if not d:
            return cls()
        sla = cls()
        if isinstance(d.get("per_stage_hours"), list):
            sla.per_stage_hours = [
                None if h is None else float(h) for h in d["per_stage_hours"]
            ]
        elif isinstance(d.get("max_stage_hours"), (int, float)):
            hours = float(d["max_stage_hours"])
            sla.per_stage_hours = [hours] * MAX_PIPELINE_STAGES
        if d.get("max_total_hours") is not None:
            sla.max_total_hours = float(d["max_total_hours"])
        sla.escalations_enabled = bool(d.get("escalations_enabled", True))
        sla.chase_enabled = bool(d.get("chase_enabled", True))
        if isinstance(d.get("awaiting_response_stages"), list):
            sla.awaiting_response_stages = [str(s) for s in d["awaiting_response_stages"]]
        return sla


@dataclass
class WorkspaceSettings:
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    sla: SLAConfig = field(default_factory=SLAConfig)

    def to_dict(self) -> dict[str, Any]:
        return {"pipeline": self.pipeline.to_dict(), "sla": self.sla.to_dict()}

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> WorkspaceSettings:
        d = d or {}
        return cls(
            pipeline=PipelineConfig.from_dict(d.get("pipeline")),
            sla=SLAConfig.from_dict(d.get("sla")),
        )
