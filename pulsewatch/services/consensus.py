"""
多地域共识判定服务。

所有地域并发探测、共享一个截止时间；截止时未完成的探测被取消并记为 timeout。
失败（down/timeout/error）地域数达到法定阈值才判定为 down，避免单点网络抖动误报。

Probes every vantage point concurrently under one shared deadline; probes still running
at the deadline are cancelled and recorded as timeouts. The target is down only when the
failing count reaches the quorum threshold.
"""
import asyncio
import logging
import math
from datetime import datetime
from typing import Sequence

from pulsewatch.core.clock import utcnow
from pulsewatch.core.config import settings
from pulsewatch.schemas.probe import ConsensusVerdict, ProbeOutcome
from pulsewatch.services.prober import probe
from pulsewatch.services.store import TargetStore

logger = logging.getLogger(__name__)


def quorum_threshold(n: int) -> int:
    """n 个地域时判定 down 所需的失败数：5 个地域需 3 个，3 个地域需 2 个。"""
    return math.ceil(n / 2)


def build_verdict(target_id: int, outcomes: Sequence[ProbeOutcome], observed_at: datetime) -> ConsensusVerdict:
    """由一组探测结果计算共识判定，outcomes 按地域顺序排列。"""
    failing = [o for o in outcomes if o.is_down]
    threshold = quorum_threshold(len(outcomes))
    is_down = len(outcomes) > 0 and len(failing) >= threshold

    up_latencies = [o.response_time_ms for o in outcomes if o.status == "up"]
    mean_latency = round(sum(up_latencies) / len(up_latencies)) if up_latencies else None

    return ConsensusVerdict(
        target_id=target_id,
        status="down" if is_down else "up",
        observed_at=observed_at,
        outcomes=list(outcomes),
        response_time_ms=mean_latency,
        status_code=next((o.status_code for o in outcomes if o.status_code is not None), None),
        error=next((o.error for o in outcomes if o.error), None),
        failing_locations=[o.location for o in failing],
        down_count=len(failing),
        threshold=threshold,
    )


async def probe_all(target, vantage_points: Sequence[str], timeout: float) -> list[ProbeOutcome]:
    """并发探测所有地域，返回按地域顺序排列的结果。"""
    tasks = {loc: asyncio.create_task(probe(target, loc, timeout)) for loc in vantage_points}
    _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    outcomes = []
    for loc, task in tasks.items():
        if task in pending or task.cancelled():
            outcomes.append(ProbeOutcome(
                target_id=target.id,
                location=loc,
                status="timeout",
                response_time_ms=round(timeout * 1000, 1),
                error=f"Probe did not finish within {int(timeout * 1000)}ms",
                checked_at=utcnow(),
            ))
        elif task.exception() is not None:
            outcomes.append(ProbeOutcome(
                target_id=target.id,
                location=loc,
                status="error",
                error=str(task.exception())[:500],
                checked_at=utcnow(),
            ))
        else:
            outcomes.append(task.result())
    return outcomes


async def evaluate(
    target,
    store: TargetStore | None = None,
    vantage_points: Sequence[str] | None = None,
    timeout: float | None = None,
) -> ConsensusVerdict:
    """对目标做一轮多地域探测并给出共识判定；传入 store 时追加探测记录（失败只记日志）。"""
    points = list(vantage_points or settings.vantage_points)
    timeout = timeout if timeout is not None else settings.probe_timeout
    observed_at = utcnow()

    outcomes = await probe_all(target, points, timeout)
    verdict = build_verdict(target.id, outcomes, observed_at)
    logger.debug(
        "Target %s consensus %s (%d/%d failing, threshold %d)",
        target.id, verdict.status, verdict.down_count, len(outcomes), verdict.threshold,
    )

    if store is not None:
        try:
            await store.append_outcomes(outcomes)
        except Exception:
            logger.exception("Failed to store probe outcomes for target %s", target.id)
            await store.db.rollback()
    return verdict
