"""Tests for the KPI summary bundle and the activity feed."""

from unittest.mock import patch

import pytest
from conftest import T0, WS, make_role, record_activity, record_transition

from stagewise import event_log
from stagewise.defaults import DAY_MS
from stagewise.errors import ValidationError
from stagewise.models import EventType
from stagewise.projections import activity_events, count_delta_pct, summary_report


def _seed():
    make_role("A", at=T0 - 5 * DAY_MS, company="Acme")
    make_role("B", at=T0 - 3 * DAY_MS, company="Globex")
    record_transition("B", 0, 2, T0 - DAY_MS)
    make_role("C", at=T0 - 3 * DAY_MS, status="closed")

    record_activity(EventType.PLACEMENT_CREATED, T0 - 2 * DAY_MS, company="Acme", user_id="u-1", commission=1000)
    record_activity(EventType.PLACEMENT_CREATED, T0 - 2 * DAY_MS + 1, company="Globex", value=500)
    record_activity(EventType.PLACEMENT_CREATED, T0 - 40 * DAY_MS, commission=99)
    record_activity(EventType.CV_SENT, T0 - DAY_MS, company="Acme")


class TestCountDeltaPct:
    def test_zero_baseline(self):
        assert count_delta_pct(0, 0) == 0
        assert count_delta_pct(3, 0) == 100

    def test_rounds_half_up(self):
        assert count_delta_pct(3, 2) == 50
        assert count_delta_pct(1, 3) == -67
        assert count_delta_pct(2, 8) == -75


class TestSummaryReport:
    def test_missing_workspace(self, db_path):
        with pytest.raises(ValidationError):
            summary_report(None, "month", now_ms=T0)

    def test_kpis_for_month(self, db_path):
        _seed()
        summary = summary_report(WS, "month", now_ms=T0)
        kpis = summary["kpis"]
        assert summary["range"] == "month"
        assert kpis["placementsRange"] == 2
        assert kpis["placementsQTD"] == 3
        assert kpis["cvSentRange"] == 1
        assert kpis["interviewsRange"] == 0
        assert kpis["commissionRange"] == 1500.0
        assert kpis["rolesInProgress"] == 2
        assert kpis["urgentCount"] == 0
        assert kpis["quarterProgressPct"] == 49
        assert kpis["daysLeftInQuarter"] == 48

    def test_deltas_for_month(self, db_path):
        _seed()
        deltas = summary_report(WS, "month", now_ms=T0)["deltas"]
        assert deltas["placementsRangeDelta"] == 1
        assert deltas["placementsRangePct"] == 100
        assert deltas["interviewsRangeDelta"] == 0
        assert deltas["interviewsRangePct"] == 0
        assert deltas["cvSentRangePct"] == 100

    def test_all_range_has_no_deltas(self, db_path):
        _seed()
        summary = summary_report(WS, "all", now_ms=T0)
        assert summary["deltas"] is None
        assert summary["kpis"]["placementsRange"] == 3

    def test_stage_distribution_in_pipeline_order(self, db_path):
        _seed()
        dist = summary_report(WS, "month", now_ms=T0)["stageDistribution"]
        assert [(d["stage"], d["stageName"], d["count"]) for d in dist] == [
            ("0", "New Leads", 1),
            ("1", "Contacted", 0),
            ("2", "Interview", 1),
            ("3", "Placed", 0),
        ]

    def test_store_failure_degrades_to_zeroes(self, db_path):
        _seed()
        with patch.object(event_log, "count", side_effect=RuntimeError("db down")):
            summary = summary_report(WS, "week", now_ms=T0)
        assert summary["kpis"]["placementsRange"] == 0
        assert summary["kpis"]["commissionRange"] == 0.0
        assert summary["stageDistribution"] == []
        assert summary["deltas"]["placementsRangePct"] == 0


class TestActivityEvents:
    def test_metric_filter_newest_first(self, db_path):
        _seed()
        events = activity_events(WS, range_key="month", metric="placements", now_ms=T0)["events"]
        assert [e["company"] for e in events] == ["Globex", "Acme"]
        assert all(e["name"] == EventType.PLACEMENT_CREATED for e in events)
        assert events[1]["userId"] == "u-1"

    def test_single_day(self, db_path):
        _seed()
        events = activity_events(WS, metric="placements", date="2023-11-12", now_ms=T0)["events"]
        assert len(events) == 2

    def test_user_and_company_filters(self, db_path):
        _seed()
        assert len(activity_events(WS, range_key="all", company="Acme", now_ms=T0)["events"]) == 2
        assert len(activity_events(WS, range_key="all", user_id="u-1", now_ms=T0)["events"]) == 1

    def test_bad_date(self, db_path):
        with pytest.raises(ValidationError):
            activity_events(WS, date="12/11/2023", now_ms=T0)

    def test_missing_workspace(self, db_path):
        with pytest.raises(ValidationError):
            activity_events(None, now_ms=T0)

    def test_store_failure_returns_empty(self, db_path):
        with patch.object(event_log, "query", side_effect=RuntimeError("db down")):
            assert activity_events(WS, now_ms=T0) == {"events": []}
