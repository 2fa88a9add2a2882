"""
心跳服务（死人开关）。

被监控任务定期上报心跳；超过 期望间隔 + 宽限期 仍未收到心跳即判定为 down，交由故障生命周期处理。
宽限期 = max(30 秒, 期望间隔 × 0.5)。从未收到心跳的目标以 Unix 纪元为参考时间，必然超时。
看门狗只负责判定 down，恢复只能由新的心跳上报触发。
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.core.clock import EPOCH, as_utc, utcnow
from pulsewatch.core.config import settings
from pulsewatch.core.exceptions import BusinessError, NotFoundError, PersistenceError
from pulsewatch.core.locks import target_locks
from pulsewatch.models.heartbeat import HeartbeatSignal
from pulsewatch.schemas.heartbeat import HeartbeatInstructions, HeartbeatRequest, HeartbeatResponse
from pulsewatch.schemas.probe import ConsensusVerdict
from pulsewatch.schemas.sweep import TargetSweepResult
from pulsewatch.services.incidents import apply_verdict
from pulsewatch.services.store import TargetStore

logger = logging.getLogger(__name__)

MIN_GRACE_SECONDS = 30
DEFAULT_INTERVAL = 60


def grace_seconds(interval: int) -> float:
    return max(MIN_GRACE_SECONDS, interval * 0.5)


def overdue_at(last_heartbeat: datetime | None, interval: int) -> datetime:
    """超过该时间仍无心跳即判定为错过。"""
    reference = as_utc(last_heartbeat) or EPOCH
    return reference + timedelta(seconds=interval + grace_seconds(interval))


def missed_cause(last_heartbeat: datetime | None, interval: int, now: datetime) -> str:
    last = as_utc(last_heartbeat)
    seen = "never" if last is None else f"{int((now - last).total_seconds())}s ago"
    return f"Missed heartbeat (expected every {interval}s, last seen {seen})"


def missed_heartbeat_verdict(target, now: datetime) -> ConsensusVerdict:
    interval = target.heartbeat_interval or DEFAULT_INTERVAL
    return ConsensusVerdict(
        target_id=target.id,
        status="down",
        observed_at=now,
        error=missed_cause(target.last_heartbeat, interval, now),
        resolution_method="heartbeat",
        incident_type="missed_heartbeat",
    )


async def check_heartbeat(db: AsyncSession, target_id: int, now: datetime | None = None) -> TargetSweepResult:
    """检查单个心跳目标，超时则提交 down 判定。调用方需持有该目标的锁。"""
    now = now or utcnow()
    target = await TargetStore(db).get_target(target_id)
    if target is None:
        raise NotFoundError(f"Target {target_id} not found")
    if target.status == "down":
        return TargetSweepResult(target_id=target.id, name=target.name, status="skipped_down")

    interval = target.heartbeat_interval or DEFAULT_INTERVAL
    if now <= overdue_at(target.last_heartbeat, interval):
        return TargetSweepResult(target_id=target.id, name=target.name, status="on_time")

    verdict = missed_heartbeat_verdict(target, now)
    name = target.name
    logger.warning("Heartbeat target %s (%s): %s", target_id, name, verdict.error)
    result = await apply_verdict(db, verdict)
    return TargetSweepResult(target_id=target_id, name=name, status="missed",
                             detail=f"incident {result.incident_id}" if result.incident_id else verdict.error)


async def record_heartbeat(
    db: AsyncSession, target_id: int, payload: HeartbeatRequest, source_ip: str | None = None
) -> HeartbeatResponse:
    """
    接收一次心跳：追加心跳记录，刷新 last_heartbeat / last_checked，
    上报 up 时经故障生命周期恢复处于 down 的目标（恢复方式 heartbeat）。
    """
    async with target_locks.get(target_id):
        store = TargetStore(db)
        target = await store.get_target(target_id)
        if target is None:
            raise NotFoundError(f"Target {target_id} not found")
        if target.kind != "heartbeat":
            raise BusinessError(f"Target {target_id} is not a heartbeat target")

        now = utcnow()
        interval = target.heartbeat_interval or DEFAULT_INTERVAL
        try:
            await store.append_heartbeat(HeartbeatSignal(
                target_id=target_id,
                status=payload.status,
                message=payload.message,
                response_time_ms=payload.response_time,
                extra=payload.metadata,
                source_ip=source_ip,
                received_at=now,
            ))
            target.last_heartbeat = now
            target.last_checked = now
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError(f"Failed to record heartbeat for target {target_id}", detail=str(e)) from e

        status = target.status or "unknown"
        recovered = False
        if payload.status == "up":
            verdict = ConsensusVerdict(
                target_id=target_id,
                status="up",
                observed_at=now,
                response_time_ms=round(payload.response_time) if payload.response_time is not None else None,
                resolution_method="heartbeat",
            )
            result = await apply_verdict(db, verdict)
            status = result.status
            recovered = result.transition == "closed"
            if recovered:
                logger.info("Heartbeat target %s recovered", target_id)

        return HeartbeatResponse(
            target_id=target_id,
            received_at=now,
            next_expected=now + timedelta(seconds=interval),
            status=status,
            recovered=recovered,
        )


def heartbeat_instructions(target) -> HeartbeatInstructions:
    """心跳接入说明：上报地址与 curl / python 示例。"""
    url = f"{settings.public_base_url.rstrip('/')}/api/v1/heartbeats/{target.id}"
    body = '{"status": "up", "response_time": 150, "message": "All systems operational"}'
    return HeartbeatInstructions(
        target_id=target.id,
        target_name=target.name,
        heartbeat_url=url,
        expected_interval=target.heartbeat_interval or DEFAULT_INTERVAL,
        last_heartbeat=target.last_heartbeat,
        examples={
            "curl": f"curl -X POST {url} \\\n  -H \"Content-Type: application/json\" \\\n  -d '{body}'",
            "python": (
                "import httpx\n"
                f"httpx.post('{url}', json={{'status': 'up', 'response_time': 150, "
                "'message': 'All systems operational'})"
            ),
        },
    )
