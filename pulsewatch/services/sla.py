"""
SLA 计算引擎。

纯函数：给定探测记录与 SLA 档位，按自然周期窗口计算实际可用率、允许/已用/剩余停机预算与达标情况。
可用率按记录条数计算，不按探测间隔加权；窗口内没有记录时返回"数据不足"（None），而不是 0% 或 100%。
样本是否足够由调用方通过 has_sufficient_data 决定。
"""
import calendar
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from pulsewatch.core.clock import as_utc, utcnow
from pulsewatch.schemas.sla import SLACalculation, SLAReport, SLASummary, SLATarget

PERIODS = ("daily", "weekly", "monthly", "quarterly", "yearly")

# 标准 SLA 档位
STANDARD_SLA_TARGETS = [
    SLATarget(percentage=99.9, name="99.9% (Three Nines)", description="Allows ~43.8 minutes downtime per month"),
    SLATarget(percentage=99.99, name="99.99% (Four Nines)", description="Allows ~4.38 minutes downtime per month"),
    SLATarget(percentage=99.999, name="99.999% (Five Nines)", description="Allows ~26.3 seconds downtime per month"),
    SLATarget(percentage=99.95, name="99.95% (High Availability)", description="Allows ~21.9 minutes downtime per month"),
    SLATarget(percentage=99.5, name="99.5% (Standard)", description="Allows ~3.6 hours downtime per month"),
]

# 判定可信所需的最少记录数与最少覆盖小时数
MIN_CHECKS = 3
MIN_COVERAGE_HOURS = {
    "daily": 12,
    "weekly": 72,
    "monthly": 168,
    "quarterly": 504,
    "yearly": 2160,
}


def _midnight(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def get_period_window(period: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """返回周期窗口 [start, end)：start 为自然周期起点，end 为当前时间。"""
    now = as_utc(now) or utcnow()
    if period == "daily":
        start = _midnight(now)
    elif period == "weekly":
        start = _midnight(now - timedelta(days=now.weekday()))
    elif period == "monthly":
        start = _midnight(now.replace(day=1))
    elif period == "quarterly":
        start = _midnight(now.replace(month=(now.month - 1) // 3 * 3 + 1, day=1))
    elif period == "yearly":
        start = _midnight(now.replace(month=1, day=1))
    else:
        raise ValueError(f"Unknown SLA period: {period}")
    return start, now


def period_minutes(period: str, start: datetime) -> float:
    """从 start 起算的完整自然周期长度（分钟）。"""
    if period == "daily":
        days = 1
    elif period == "weekly":
        days = 7
    elif period == "monthly":
        days = calendar.monthrange(start.year, start.month)[1]
    elif period == "quarterly":
        days = 0
        for i in range(3):
            month = (start.month - 1 + i) % 12 + 1
            year = start.year + (start.month - 1 + i) // 12
            days += calendar.monthrange(year, month)[1]
    elif period == "yearly":
        days = 366 if calendar.isleap(start.year) else 365
    else:
        raise ValueError(f"Unknown SLA period: {period}")
    return days * 24 * 60


def _in_window(checks: Iterable, start: datetime, end: datetime) -> list:
    return [c for c in checks if start <= as_utc(c.checked_at) < end]


def calculate_one(checks: Sequence, target: SLATarget, period: str,
                  start: datetime, end: datetime) -> SLACalculation:
    window = _in_window(checks, start, end)
    total = len(window)
    up = sum(1 for c in window if c.status == "up")
    minutes = period_minutes(period, start)
    allowed = minutes * (100 - target.percentage) / 100

    calc = SLACalculation(
        target=target,
        period=period,
        window_start=start,
        window_end=end,
        period_minutes=minutes,
        target_uptime=target.percentage,
        allowed_downtime_minutes=allowed,
        total_checks=total,
        up_checks=up,
        down_checks=total - up,
    )
    if total == 0:
        return calc

    # 先乘后除：999/1000 须精确得到 99.9
    actual = up * 100 / total
    calc.actual_uptime = actual
    calc.met = actual >= target.percentage
    calc.actual_downtime_minutes = minutes * (100 - actual) / 100
    calc.remaining_budget_minutes = allowed - calc.actual_downtime_minutes
    return calc


def calculate(
    checks: Sequence,
    targets: Sequence[SLATarget],
    period: str,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> list[SLACalculation]:
    """对每个 SLA 档位计算一份结果；未给出窗口时使用 get_period_window。"""
    if start is None or end is None:
        start, end = get_period_window(period, now)
    start, end = as_utc(start), as_utc(end)
    return [calculate_one(checks, t, period, start, end) for t in targets]


def detect_breaches(calculations: Iterable[SLACalculation]) -> list[SLACalculation]:
    """只返回明确未达标的结果，数据不足的不算违约。"""
    return [c for c in calculations if c.met is False]


def has_sufficient_data(checks: Sequence, period: str, min_checks: int = MIN_CHECKS,
                        min_hours: float | None = None) -> bool:
    """记录数不少于 min_checks，且最早与最晚记录间隔覆盖足够小时数。"""
    if len(checks) < min_checks:
        return False
    min_hours = MIN_COVERAGE_HOURS[period] if min_hours is None else min_hours
    times = [as_utc(c.checked_at) for c in checks]
    covered = (max(times) - min(times)).total_seconds() / 3600
    return covered >= min_hours


def summarize(calculations: Sequence[SLACalculation]) -> SLASummary:
    breaches = detect_breaches(calculations)
    uptimes = [c.actual_uptime for c in calculations if c.actual_uptime is not None]
    undetermined = sum(1 for c in calculations if c.met is None)
    return SLASummary(
        total_targets=len(calculations),
        met_targets=sum(1 for c in calculations if c.met is True),
        breached_targets=len(breaches),
        undetermined_targets=undetermined,
        best_uptime=max(uptimes) if uptimes else None,
        worst_uptime=min(uptimes) if uptimes else None,
    )


def generate_report(target_id: int, target_name: str, period: str, checks: Sequence,
                    calculations: Sequence[SLACalculation]) -> SLAReport:
    return SLAReport(
        target_id=target_id,
        target_name=target_name,
        period=period,
        calculations=list(calculations),
        breaches=detect_breaches(calculations),
        summary=summarize(calculations),
        sufficient_data=has_sufficient_data(checks, period),
    )


# ── 展示格式 ─────────────────────────────────────────────────────────

def format_percentage(value: float | None) -> str:
    if value is None:
        return "N/A"
    if value >= 99.999:
        return f"{value:.3f}%"
    if value >= 99.9:
        return f"{value:.2f}%"
    return f"{value:.1f}%"


def format_downtime(minutes: float | None) -> str:
    if minutes is None:
        return "N/A"
    if minutes < 1:
        return "< 1 minute"
    if minutes < 60:
        return f"{round(minutes)} minutes"
    if minutes < 24 * 60:
        hours = int(minutes // 60)
        rest = round(minutes % 60)
        return f"{hours}h {rest}m" if rest > 0 else f"{hours}h"
    days = int(minutes // (24 * 60))
    hours = int((minutes % (24 * 60)) // 60)
    return f"{days}d {hours}h" if hours > 0 else f"{days}d"


def status_color(calc: SLACalculation) -> str:
    """达标 green，差距 0.1 个百分点以内 yellow，其余 red；数据不足 gray。"""
    if calc.met is None:
        return "gray"
    if calc.met:
        return "green"
    if calc.actual_uptime >= calc.target_uptime - 0.1:
        return "yellow"
    return "red"
