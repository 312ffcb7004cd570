"""Stage Duration Aggregator: per-stage statistics over residency intervals."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from stagewise.models import StageInterval, StageSummary
from stagewise.pipeline import PipelineConfig
from stagewise.projections._time import ms_to_days, round1

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def stage_sort_key(stage: str) -> int:
    """Numeric stage index for ordering; unparseable keys sort as 0."""
    m = _LEADING_INT.match(stage)
    return int(m.group(1)) if m else 0


@dataclass
class _StageAccumulator:
    stage: str
    stage_name: str
    durations: list[int] = field(default_factory=list)

    @property
    def total_ms(self) -> int:
        return sum(self.durations)


@dataclass
class StageDurationResult:
    stages: list[StageSummary]
    total_roles: int
    overall_avg_days: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": [s.to_dict() for s in self.stages],
            "totalRoles": self.total_roles,
            "overallAvgDays": self.overall_avg_days,
        }


def aggregate_intervals(
    intervals: Iterable[StageInterval],
    pipeline: PipelineConfig | None = None,
) -> StageDurationResult:
    """Group intervals by stage and compute count, mean, median, max and total.

    ``rolesCount`` counts intervals, so a role that re-entered a stage is
    counted once per visit.  The median is the element at ``n // 2`` of the
    sorted durations (the upper-middle one for even counts).  When a
    *pipeline* is given its names replace the names recorded on the events.
    """
    buckets: dict[str, _StageAccumulator] = {}
    role_ids: set[str] = set()
    total_ms = 0
    count = 0

    for interval in intervals:
        if interval.duration_ms is None or interval.duration_ms <= 0:
            continue
        acc = buckets.get(interval.stage)
        if acc is None:
            acc = buckets[interval.stage] = _StageAccumulator(interval.stage, interval.stage_name)
        acc.durations.append(interval.duration_ms)
        role_ids.add(interval.role_id)
        total_ms += interval.duration_ms
        count += 1

    stages: list[StageSummary] = []
    for acc in buckets.values():
        n = len(acc.durations)
        total_days = ms_to_days(acc.total_ms)
        ordered = sorted(acc.durations)
        name = acc.stage_name
        if pipeline is not None:
            try:
                index = int(acc.stage)
            except ValueError:
                index = -1
            if 0 <= index < len(pipeline.stages):
                name = pipeline.stages[index].name
        stages.append(StageSummary(
            stage=acc.stage,
            stage_name=name,
            roles_count=n,
            avg_days=round1(total_days / n) if n else 0.0,
            median_days=round1(ms_to_days(ordered[n // 2])) if n else 0.0,
            max_days=round1(ms_to_days(ordered[-1])) if n else 0.0,
            total_days=round1(total_days),
        ))

    stages.sort(key=lambda s: stage_sort_key(s.stage))
    overall = round1(ms_to_days(total_ms) / count) if count else 0.0
    return StageDurationResult(stages=stages, total_roles=len(role_ids), overall_avg_days=overall)
