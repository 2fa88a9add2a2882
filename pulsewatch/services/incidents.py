"""
故障生命周期服务。

目标状态与故障记录的唯一写入方，也是告警分发和诊断采集的唯一触发方：
- up → down：写入状态，开启故障，发送 down 告警，后台采集失败地域的诊断
- down → up：写入状态，关闭最近的未解决故障，发送 up 告警（附带故障时长）
- 状态不变：只刷新最近判定时间，不产生副作用
unknown 视为 up 参与转换判断。早于目标最近判定时间的判定视为过期，直接丢弃。
"""
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.clock import as_utc, utcnow
from pulsewatch.core.config import settings
from pulsewatch.core.exceptions import NotFoundError, PersistenceError
from pulsewatch.models.incident import Incident
from pulsewatch.models.target import Target
from pulsewatch.schemas.incident import TransitionResult
from pulsewatch.schemas.notification import DispatchResult, NotificationEvent
from pulsewatch.schemas.probe import ConsensusVerdict
from pulsewatch.services.diagnostics import diagnostics_scheduler
from pulsewatch.services.notifier import dispatch, down_event, up_event
from pulsewatch.services.store import TargetStore

logger = logging.getLogger(__name__)

# 故障写入最大重试次数
MAX_RETRIES = 3

T = TypeVar("T")


async def _persist(db: AsyncSession, action: str, target_id: int, mutate: Callable[[], Awaitable[T]]) -> T:
    """执行 mutate 并提交，失败回滚后重试；mutate 每次都需重新读取对象。"""
    last_error: Exception | None = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            result = await mutate()
            await db.commit()
            return result
        except SQLAlchemyError as e:
            last_error = e
            await db.rollback()
            logger.warning("Failed to %s for target %s (attempt %d/%d): %s",
                           action, target_id, attempt, MAX_RETRIES, e)
    raise PersistenceError(f"Failed to {action} for target {target_id}", detail=str(last_error)) from last_error


def _record_verdict(target: Target, verdict: ConsensusVerdict) -> None:
    target.status = verdict.status
    target.last_checked = verdict.observed_at
    if verdict.response_time_ms is not None:
        target.last_response_time_ms = verdict.response_time_ms
    if verdict.status_code is not None:
        target.last_status_code = verdict.status_code


async def _load(store: TargetStore, target_id: int) -> Target:
    # 会话可能在探测前就加载了目标，判定前必须重读
    target = await store.get_target(target_id, fresh=True)
    if target is None:
        raise NotFoundError(f"Target {target_id} not found")
    return target


async def _notify(store: TargetStore, target: Target, event: NotificationEvent,
                  incident_id: int | None) -> DispatchResult | None:
    """发送告警并尽力写入发送日志；告警失败不影响已提交的状态。"""
    target_id = target.id
    try:
        result = await dispatch(target, event)
    except Exception:
        logger.exception("Notification dispatch failed for target %s", target_id)
        return None
    if result.per_channel:
        try:
            await store.log_dispatch(target_id, event.kind, result, incident_id=incident_id)
            await store.db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to write notification logs for target %s", target_id)
            await store.db.rollback()
    return result


async def apply_verdict(db: AsyncSession, verdict: ConsensusVerdict) -> TransitionResult:
    """根据判定推进目标状态机，返回转换结果。调用方需持有该目标的锁。"""
    store = TargetStore(db)
    target = await _load(store, verdict.target_id)
    previous = target.status or "unknown"

    last_checked = as_utc(target.last_checked)
    if last_checked is not None and as_utc(verdict.observed_at) < last_checked:
        logger.info("Discarding stale %s verdict for target %s (observed %s, last checked %s)",
                    verdict.status, target.id, verdict.observed_at, last_checked)
        return TransitionResult(target_id=target.id, previous_status=previous, status=previous, discarded=True)

    was_down = previous == "down"
    if verdict.status == "down" and not was_down:
        return await _open_incident(store, target.id, previous, verdict)
    if verdict.status == "up" and was_down:
        return await _close_incident(store, target.id, previous, verdict)

    async def refresh() -> None:
        _record_verdict(await _load(store, verdict.target_id), verdict)

    await _persist(db, "refresh status", target.id, refresh)
    return TransitionResult(target_id=target.id, previous_status=previous, status=verdict.status)


async def _open_incident(store: TargetStore, target_id: int, previous: str,
                         verdict: ConsensusVerdict) -> TransitionResult:
    async def mutate() -> tuple[Target, Incident]:
        target = await _load(store, target_id)
        _record_verdict(target, verdict)
        incident = await store.latest_open_incident(target_id)
        if incident is None:
            incident = Incident(
                target_id=target_id,
                started_at=utcnow(),
                cause=verdict.error or "Unknown",
                incident_type=verdict.incident_type,
                resolved=False,
            )
            store.db.add(incident)
            await store.db.flush()
        else:
            logger.warning("Target %s already has open incident %s, reusing it", target_id, incident.id)
        return target, incident

    target, incident = await _persist(store.db, "open incident", target_id, mutate)
    incident_id = incident.id
    logger.warning("Target %s (%s) is DOWN: %s", target.id, target.name, incident.cause)
    event = down_event(target, verdict, cause=incident.cause)

    # 诊断任务使用目标快照
    scheduled = 0
    if settings.diagnostics_enabled and verdict.failing_locations:
        try:
            scheduled = diagnostics_scheduler.schedule(incident_id, target, verdict.failing_locations)
        except Exception:
            logger.exception("Failed to schedule diagnostics for incident %s", incident_id)

    notification = await _notify(store, target, event, incident_id)

    return TransitionResult(
        target_id=target_id,
        previous_status=previous,
        status="down",
        transition="opened",
        incident_id=incident_id,
        notification=notification,
        diagnostics_scheduled=scheduled,
    )


async def _close_incident(store: TargetStore, target_id: int, previous: str,
                          verdict: ConsensusVerdict) -> TransitionResult:
    async def mutate() -> tuple[Target, Incident | None]:
        target = await _load(store, target_id)
        _record_verdict(target, verdict)
        incident = await store.latest_open_incident(target_id)
        if incident is not None:
            now = utcnow()
            incident.ended_at = now
            incident.duration_minutes = round((now - as_utc(incident.started_at)).total_seconds() / 60)
            incident.resolved = True
            incident.resolution_method = verdict.resolution_method
        return target, incident

    target, incident = await _persist(store.db, "close incident", target_id, mutate)
    if incident is None:
        logger.warning("Target %s recovered but no open incident was found", target_id)
    else:
        logger.info("Target %s (%s) is UP after %s minutes (resolved by %s)",
                    target.id, target.name, incident.duration_minutes, verdict.resolution_method)

    duration = incident.duration_minutes if incident is not None else None
    incident_id = incident.id if incident is not None else None
    notification = await _notify(store, target, up_event(target, verdict, duration), incident_id)

    return TransitionResult(
        target_id=target_id,
        previous_status=previous,
        status="up",
        transition="closed",
        incident_id=incident_id,
        notification=notification,
    )
