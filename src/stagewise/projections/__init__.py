"""Projections: derived views over the event log.

Nothing here is persisted.  Every projection is recomputed from events, so
it can always be rebuilt from the event log (source of truth).

Modules:
  - intervals: stage residency intervals + current role state
  - stage_duration: per-stage statistics over a set of intervals
  - comparison: period-over-period deltas and the stage-duration report
  - summary: KPI bundle (placements, commission, deltas, stage distribution)
  - activity: filtered recent-event feed
  - timeseries: per-day metric points (current or previous window)
  - heatmap: daily cell counts of stage moves or completed tasks
  - leaderboard: placements per teammate, conversion per company
"""

# Consumers can use `from stagewise import projections; projections.stage_duration_report(...)`
# or import directly: `from stagewise.projections.comparison import stage_duration_report`

from stagewise.projections.intervals import (
    normalize_transitions,
    project_role_states,
    reconstruct_intervals,
)
from stagewise.projections.stage_duration import (
    StageDurationResult,
    aggregate_intervals,
    stage_sort_key,
)
from stagewise.projections.comparison import (
    compare,
    delta_pct,
    stage_duration_report,
    window_stats,
)
from stagewise.projections.summary import (
    count_delta_pct,
    stage_distribution,
    summary_report,
)
from stagewise.projections.activity import activity_events
from stagewise.projections.timeseries import daily_counts, series_window, timeseries_report
from stagewise.projections.heatmap import heatmap_report
from stagewise.projections.leaderboard import company_rows, leaderboard_report, teammate_rows

__all__ = [
    # Intervals
    "normalize_transitions",
    "reconstruct_intervals",
    "project_role_states",
    # Aggregation
    "StageDurationResult",
    "aggregate_intervals",
    "stage_sort_key",
    # Comparison
    "delta_pct",
    "compare",
    "window_stats",
    "stage_duration_report",
    # Summary
    "count_delta_pct",
    "stage_distribution",
    "summary_report",
    # Activity
    "activity_events",
    # Charts
    "daily_counts",
    "series_window",
    "timeseries_report",
    "heatmap_report",
    # Leaderboard
    "teammate_rows",
    "company_rows",
    "leaderboard_report",
]
