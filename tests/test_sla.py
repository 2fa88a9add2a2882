"""SLA 计算引擎测试。"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from pulsewatch.schemas.sla import SLATarget
from pulsewatch.services.sla import (
    STANDARD_SLA_TARGETS,
    calculate,
    detect_breaches,
    format_downtime,
    format_percentage,
    generate_report,
    get_period_window,
    has_sufficient_data,
    period_minutes,
    status_color,
)

START = datetime(2026, 3, 1, tzinfo=timezone.utc)
END = datetime(2026, 3, 20, tzinfo=timezone.utc)
THREE_NINES = SLATarget(percentage=99.9, name="99.9%")


def _checks(up: int, down: int, start: datetime = START, step: timedelta = timedelta(minutes=1)):
    statuses = ["up"] * up + ["down"] * down
    return [SimpleNamespace(status=s, checked_at=start + step * i) for i, s in enumerate(statuses)]


class TestCalculate:
    def test_no_checks_is_undetermined(self):
        (calc,) = calculate([], [THREE_NINES], "monthly", START, END)
        assert calc.actual_uptime is None
        assert calc.met is None
        assert calc.total_checks == 0
        assert detect_breaches([calc]) == []

    def test_exactly_on_target_is_met(self):
        (calc,) = calculate(_checks(999, 1), [THREE_NINES], "monthly", START, END)
        assert calc.actual_uptime == 99.9
        assert calc.met is True

    def test_below_target_is_breach(self):
        (calc,) = calculate(_checks(998, 2), [THREE_NINES], "monthly", START, END)
        assert calc.met is False
        assert detect_breaches([calc]) == [calc]
        assert calc.remaining_budget_minutes < 0

    def test_budget_uses_full_calendar_month(self):
        (calc,) = calculate(_checks(10, 0), [THREE_NINES], "monthly", START, END)
        assert calc.period_minutes == 31 * 24 * 60
        assert calc.allowed_downtime_minutes == pytest.approx(44.64)
        assert calc.actual_downtime_minutes == 0
        assert calc.remaining_budget_minutes == pytest.approx(44.64)

    def test_checks_outside_window_ignored(self):
        checks = _checks(5, 0) + _checks(0, 5, start=START - timedelta(days=1))
        (calc,) = calculate(checks, [THREE_NINES], "monthly", START, END)
        assert calc.total_checks == 5
        assert calc.met is True

    def test_window_end_is_exclusive(self):
        checks = [SimpleNamespace(status="down", checked_at=END)]
        (calc,) = calculate(checks, [THREE_NINES], "monthly", START, END)
        assert calc.total_checks == 0

    def test_naive_timestamps_treated_as_utc(self):
        checks = [SimpleNamespace(status="up", checked_at=datetime(2026, 3, 2))]
        (calc,) = calculate(checks, [THREE_NINES], "monthly", START, END)
        assert calc.total_checks == 1

    def test_one_result_per_target(self):
        calcs = calculate(_checks(100, 0), STANDARD_SLA_TARGETS, "monthly", START, END)
        assert [c.target_uptime for c in calcs] == [t.percentage for t in STANDARD_SLA_TARGETS]


class TestPeriods:
    NOW = datetime(2026, 5, 14, 15, 30, tzinfo=timezone.utc)  # 周四

    @pytest.mark.parametrize("period,start", [
        ("daily", datetime(2026, 5, 14, tzinfo=timezone.utc)),
        ("weekly", datetime(2026, 5, 11, tzinfo=timezone.utc)),
        ("monthly", datetime(2026, 5, 1, tzinfo=timezone.utc)),
        ("quarterly", datetime(2026, 4, 1, tzinfo=timezone.utc)),
        ("yearly", datetime(2026, 1, 1, tzinfo=timezone.utc)),
    ])
    def test_window_start(self, period, start):
        assert get_period_window(period, self.NOW) == (start, self.NOW)

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            get_period_window("hourly", self.NOW)

    def test_period_lengths(self):
        assert period_minutes("daily", START) == 1440
        assert period_minutes("weekly", START) == 7 * 1440
        assert period_minutes("monthly", datetime(2026, 2, 1)) == 28 * 1440
        assert period_minutes("quarterly", datetime(2026, 1, 1)) == 90 * 1440
        assert period_minutes("quarterly", datetime(2026, 10, 1)) == 92 * 1440
        assert period_minutes("yearly", datetime(2028, 1, 1)) == 366 * 1440


class TestSufficiencyAndReport:
    def test_too_few_checks(self):
        assert has_sufficient_data(_checks(2, 0, step=timedelta(hours=12)), "daily") is False

    def test_coverage_hours(self):
        assert has_sufficient_data(_checks(3, 0, step=timedelta(hours=6)), "daily") is True
        assert has_sufficient_data(_checks(3, 0, step=timedelta(hours=5)), "daily") is False

    def test_report_summary(self):
        checks = _checks(9990, 10, step=timedelta(minutes=2))
        calcs = calculate(checks, STANDARD_SLA_TARGETS, "monthly", START, END)
        report = generate_report(1, "API", "monthly", checks, calcs)
        assert report.summary.total_targets == 5
        assert report.summary.met_targets == 2  # 99.9 / 99.5
        assert report.summary.breached_targets == 3
        assert report.summary.worst_uptime == 99.9
        assert len(report.breaches) == 3
        assert report.sufficient_data is True

    def test_report_without_data(self):
        calcs = calculate([], STANDARD_SLA_TARGETS, "monthly", START, END)
        report = generate_report(1, "API", "monthly", [], calcs)
        assert report.summary.undetermined_targets == 5
        assert report.summary.best_uptime is None
        assert report.sufficient_data is False


class TestFormatting:
    def test_format_percentage(self):
        assert format_percentage(99.9991) == "99.999%"
        assert format_percentage(99.95) == "99.95%"
        assert format_percentage(98.76) == "98.8%"
        assert format_percentage(None) == "N/A"

    def test_format_downtime(self):
        assert format_downtime(0.5) == "< 1 minute"
        assert format_downtime(43) == "43 minutes"
        assert format_downtime(60) == "1h"
        assert format_downtime(90) == "1h 30m"
        assert format_downtime(1440) == "1d"
        assert format_downtime(1440 + 180) == "1d 3h"

    def test_status_color(self):
        met, near, far = calculate(_checks(1000, 0), [THREE_NINES], "monthly", START, END) + \
            calculate(_checks(9985, 15), [THREE_NINES], "monthly", START, END) + \
            calculate(_checks(90, 10), [THREE_NINES], "monthly", START, END)
        assert status_color(met) == "green"
        assert status_color(near) == "yellow"
        assert status_color(far) == "red"
        (empty,) = calculate([], [THREE_NINES], "monthly", START, END)
        assert status_color(empty) == "gray"
