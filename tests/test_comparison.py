"""Tests for the period comparator and the stage-duration report."""

from unittest.mock import patch

import pytest
from conftest import T0, WS, hours, make_role, record_transition

from stagewise import event_log
from stagewise.defaults import DAY_MS
from stagewise.errors import ValidationError
from stagewise.models import StageSummary, to_iso
from stagewise.projections import compare, delta_pct, stage_duration_report
from stagewise.projections._time import range_window
from stagewise.projections.stage_duration import StageDurationResult


def _result(*avgs):
    return StageDurationResult(
        stages=[StageSummary(stage=str(i), stage_name=f"S{i}", roles_count=1, avg_days=a,
                             median_days=a, max_days=a, total_days=a)
                for i, a in avgs],
        total_roles=len(avgs),
        overall_avg_days=0.0,
    )


class TestDeltaPct:
    def test_both_zero(self):
        assert delta_pct(0, 0) == 0

    def test_prior_zero_current_positive(self):
        assert delta_pct(5, 0) == 100

    def test_decrease(self):
        assert delta_pct(5, 10) == -50

    def test_no_prior(self):
        assert delta_pct(5, None) is None

    def test_rounded_to_one_decimal(self):
        assert delta_pct(1.0, 3.0) == -66.7
        assert delta_pct(4.0, 3.0) == 33.3


class TestCompare:
    def test_attaches_prior_average_by_stage(self):
        stages = compare(_result((0, 2.0), (1, 3.0)), _result((0, 4.0)))
        assert [s.to_dict()["prevAvgDays"] for s in stages] == [4.0, None]
        assert [s.to_dict()["deltaPct"] for s in stages] == [-50.0, None]

    def test_uncompared_summary_omits_fields(self):
        d = _result((0, 2.0)).stages[0].to_dict()
        assert "prevAvgDays" not in d
        assert "deltaPct" not in d


class TestRangeWindow:
    def test_previous_window_is_adjacent_and_equal_length(self):
        w = range_window("week", T0)
        assert w.start == T0 - 7 * DAY_MS
        assert w.prev_end == w.start - 1
        assert w.prev_end - w.prev_start + 1 == 7 * DAY_MS

    def test_all_has_no_comparison(self):
        w = range_window("all", T0)
        assert not w.has_comparison
        assert to_iso(w.start).startswith("2020-01-01")

    def test_unknown_range_falls_back_to_quarter(self):
        assert range_window("fortnight", T0).key == "quarter"
        assert range_window(None, T0).key == "quarter"


class TestStageDurationReport:
    def test_missing_workspace_is_validation_error(self, db_path):
        with pytest.raises(ValidationError):
            stage_duration_report(None, "month", now_ms=T0)
        with pytest.raises(ValidationError):
            stage_duration_report("", "month", now_ms=T0)

    def test_current_and_previous_windows(self, db_path):
        # Previous month: role P spends 2 days in stage 0.
        make_role("P", at=T0 - 40 * DAY_MS)
        record_transition("P", 0, 1, T0 - 38 * DAY_MS)
        # Current month: role C spends 1 day in stage 0.
        make_role("C", at=T0 - 10 * DAY_MS)
        record_transition("C", 0, 1, T0 - 9 * DAY_MS)

        report = stage_duration_report(WS, "month", now_ms=T0)
        assert report["range"] == "month"
        assert report["comparison"] is not None
        window = range_window("month", T0)
        assert report["comparison"] == {"from": to_iso(window.prev_start), "to": to_iso(window.prev_end)}
        stages = {s["stage"]: s for s in report["stages"]}
        assert stages["0"]["avgDays"] == 1.0
        assert stages["0"]["prevAvgDays"] == 2.0
        assert stages["0"]["deltaPct"] == -50.0
        assert stages["0"]["stageName"] == "New Leads"
        assert report["totalRoles"] == 1

    def test_all_range_has_null_comparison(self, db_path):
        make_role("A", at=T0 - hours(48))
        report = stage_duration_report(WS, "all", now_ms=T0)
        assert report["comparison"] is None
        assert report["range"] == "all"
        [stage] = report["stages"]
        assert stage["avgDays"] == 2.0
        assert "deltaPct" not in stage

    def test_report_reads_past_one_page(self, db_path):
        for i in range(5):
            make_role(f"filler-{i}", at=T0 - hours(10))
        make_role("r-a", at=T0 - hours(10))
        record_transition("r-a", 0, 2, T0 - hours(5))
        with patch.object(event_log, "QUERY_PAGE_SIZE", 3):
            report = stage_duration_report(WS, "week", now_ms=T0)
        counts = {s["stage"]: s["rolesCount"] for s in report["stages"]}
        assert counts == {"0": 6, "2": 1}

    def test_current_window_failure_degrades_to_zeroes(self, db_path):
        make_role("A", at=T0 - hours(48))
        with patch.object(event_log, "query", side_effect=RuntimeError("db down")):
            report = stage_duration_report(WS, "month", now_ms=T0)
        assert report == {
            "stages": [],
            "totalRoles": 0,
            "overallAvgDays": 0,
            "range": "month",
            "comparison": None,
        }

    def test_previous_window_failure_drops_comparison_only(self, db_path):
        make_role("A", at=T0 - hours(48))
        real_query = event_log.query
        calls = []

        def flaky(**kw):
            calls.append(kw)
            if len(calls) > 1:
                raise RuntimeError("timeout")
            return real_query(**kw)

        with patch.object(event_log, "query", side_effect=flaky):
            report = stage_duration_report(WS, "month", now_ms=T0)
        assert report["comparison"] is None
        [stage] = report["stages"]
        assert stage["avgDays"] == 2.0
        assert "prevAvgDays" not in stage
        assert "deltaPct" not in stage

    def test_report_is_repeatable(self, db_path):
        make_role("A", at=T0 - hours(100))
        record_transition("A", 0, 2, T0 - hours(20))
        assert stage_duration_report(WS, "week", now_ms=T0) == stage_duration_report(WS, "week", now_ms=T0)
