"""
目标查询路由

提供目标的 SLA 报告、故障历史和测试通知接口。
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.database import get_db
from pulsewatch.core.exceptions import NotFoundError, ValidationError
from pulsewatch.schemas.incident import IncidentResponse
from pulsewatch.schemas.notification import TestNotificationRequest, TestNotificationResponse
from pulsewatch.schemas.sla import Period, SLAReport, SLATarget
from pulsewatch.services.notifier import dispatch_test
from pulsewatch.services.sla import STANDARD_SLA_TARGETS, calculate, generate_report, get_period_window
from pulsewatch.services.store import TargetStore

router = APIRouter(prefix="/api/v1/targets", tags=["targets"])


def parse_sla_targets(raw: Optional[str]) -> list[SLATarget]:
    """解析逗号分隔的目标可用率，如 "99.9,99.95"；为空时使用标准档位。"""
    if not raw:
        return list(STANDARD_SLA_TARGETS)
    standard = {t.percentage: t for t in STANDARD_SLA_TARGETS}
    targets = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = float(part)
        except ValueError:
            raise ValidationError(f"Invalid SLA target: {part}")
        if not 0 < value <= 100:
            raise ValidationError(f"SLA target must be in (0, 100]: {part}")
        targets.append(standard.get(value) or SLATarget(percentage=value, name=f"{value:g}%"))
    if not targets:
        raise ValidationError("No SLA targets given")
    return targets


async def _get_target(db: AsyncSession, target_id: int):
    target = await TargetStore(db).get_target(target_id)
    if target is None:
        raise NotFoundError(f"Target {target_id} not found")
    return target


@router.get("/{target_id}/sla", response_model=SLAReport)
async def get_target_sla(
    target_id: int,
    period: Period = Query("monthly"),
    targets: Optional[str] = Query(None, description="逗号分隔的目标可用率"),
    db: AsyncSession = Depends(get_db),
):
    """计算目标在当前自然周期内的 SLA 报告。"""
    target = await _get_target(db, target_id)
    sla_targets = parse_sla_targets(targets)
    start, end = get_period_window(period)
    checks = await TargetStore(db).checks_between(target_id, start, end)
    calculations = calculate(checks, sla_targets, period, start, end)
    return generate_report(target.id, target.name, period, checks, calculations)


@router.get("/{target_id}/incidents", response_model=List[IncidentResponse])
async def list_target_incidents(
    target_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """故障历史，按开始时间倒序。"""
    await _get_target(db, target_id)
    return await TargetStore(db).list_incidents(target_id, limit=limit)


@router.post("/{target_id}/test-notifications", response_model=TestNotificationResponse)
async def send_test_notifications(
    target_id: int,
    body: TestNotificationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """向显式选择的渠道发送测试通知；同一来源 IP 对同一目标冷却期内只能发送一次。"""
    target = await _get_target(db, target_id)
    caller = request.client.host if request.client else "unknown"
    result = await dispatch_test(target, body.enabled(), caller)
    sent = [c for c, r in result.per_channel.items() if r.success]
    if result.overall_success:
        message = f"Test notification sent via {', '.join(sent)}"
    elif result.per_channel:
        message = "All selected channels failed"
    else:
        message = "None of the selected channels is configured for this target"
    return TestNotificationResponse(success=result.overall_success, message=message,
                                    results=result.per_channel)
