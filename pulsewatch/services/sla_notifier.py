"""
SLA 违约告警服务。

按当月窗口计算目标对各标准 SLA 档位的达标情况，出现违约时通过目标的告警渠道发送 sla_breach 事件。
同一目标 24 小时内只告警一次，以 sla_notifications 表中的记录为准。
"""
import logging
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.clock import utcnow
from pulsewatch.core.config import settings
from pulsewatch.models.notification import SLANotification
from pulsewatch.schemas.notification import NotificationEvent
from pulsewatch.schemas.sla import SLACalculation
from pulsewatch.schemas.sweep import TargetSweepResult
from pulsewatch.services.notifier import dispatch
from pulsewatch.services.sla import (
    STANDARD_SLA_TARGETS,
    calculate,
    detect_breaches,
    format_downtime,
    format_percentage,
    get_period_window,
)
from pulsewatch.services.store import TargetStore

logger = logging.getLogger(__name__)

BREACH_PERIOD = "monthly"


def breach_message(breaches: Sequence[SLACalculation]) -> str:
    """生成违约告警正文：单个违约给出超出预算的停机时长，多个违约给出最差档位。"""
    if len(breaches) == 1:
        b = breaches[0]
        return (
            f"SLA breach detected: {format_percentage(b.actual_uptime)} uptime "
            f"(target: {format_percentage(b.target_uptime)}). "
            f"Budget exceeded by {format_downtime(abs(b.remaining_budget_minutes or 0))}."
        )
    worst = min(breaches, key=lambda c: c.actual_uptime)
    return (
        f"Multiple SLA breaches detected. Worst: {format_percentage(worst.actual_uptime)} uptime "
        f"(target: {format_percentage(worst.target_uptime)}). {len(breaches)} targets affected."
    )


def breach_details(breaches: Sequence[SLACalculation]) -> list[dict]:
    return [
        {
            "target": b.target_uptime,
            "actual": b.actual_uptime,
            "shortfall": round(b.target_uptime - b.actual_uptime, 6),
        }
        for b in breaches
    ]


async def check_sla_breaches(db: AsyncSession, target_id: int, now: datetime | None = None) -> TargetSweepResult:
    """检查单个目标的当月 SLA，必要时发送违约告警并记录。"""
    now = now or utcnow()
    store = TargetStore(db)
    target = await store.get_target(target_id)
    if target is None:
        return TargetSweepResult(target_id=target_id, name="", status="error", detail="Target not found")
    name = target.name

    start, end = get_period_window(BREACH_PERIOD, now)
    checks = await store.checks_between(target_id, start, end)
    if not checks:
        logger.debug("No checks for target %s in the current SLA window", target_id)
        return TargetSweepResult(target_id=target_id, name=name, status="no_data")

    breaches = detect_breaches(calculate(checks, STANDARD_SLA_TARGETS, BREACH_PERIOD, start, end))
    if not breaches:
        return TargetSweepResult(target_id=target_id, name=name, status="no_breach")

    since = now - timedelta(hours=settings.sla_alert_suppression_hours)
    if await store.last_sla_notification(target_id, since) is not None:
        logger.info("SLA breach alert for target %s suppressed, already sent since %s", target_id, since)
        return TargetSweepResult(target_id=target_id, name=name, status="suppressed",
                                 detail=f"{len(breaches)} breaches")

    event = NotificationEvent(
        kind="sla_breach",
        target_name=name,
        url=target.url,
        message=breach_message(breaches),
    )
    result = await dispatch(target, event)
    if not result.overall_success:
        logger.warning("SLA breach alert for target %s was not delivered", target_id)

    db.add(SLANotification(
        target_id=target_id,
        breach_count=len(breaches),
        worst_uptime=min(b.actual_uptime for b in breaches),
        breach_details=breach_details(breaches),
        sent_at=now,
    ))
    if result.per_channel:
        await store.log_dispatch(target_id, event.kind, result)
    await db.commit()

    return TargetSweepResult(target_id=target_id, name=name, status="breached",
                             detail=event.message)
