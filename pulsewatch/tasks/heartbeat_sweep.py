"""
心跳超时扫描任务模块。

定期检查所有启用的心跳目标，超过 期望间隔 + 宽限期 仍未上报的目标判定为 down。
目标按批处理，每个目标在自己的会话和目标锁内检查。
"""
import asyncio
import logging

from pulsewatch.core.config import settings
from pulsewatch.core.database import async_session
from pulsewatch.core.locks import target_locks
from pulsewatch.schemas.sweep import SweepSummary, TargetSweepResult
from pulsewatch.services.heartbeat import check_heartbeat
from pulsewatch.services.store import TargetStore
from pulsewatch.tasks.batching import guarded, run_in_batches, summarize

logger = logging.getLogger(__name__)

SWEEP = "heartbeat"


async def sweep_heartbeat(target_id: int) -> TargetSweepResult:
    async with target_locks.get(target_id):
        async with async_session() as db:
            return await check_heartbeat(db, target_id)


async def run_heartbeat_sweep() -> SweepSummary:
    """执行一轮心跳超时扫描。"""
    async with async_session() as db:
        targets = await TargetStore(db).list_active(kind="heartbeat")
        pending = [(t.id, t.name) for t in targets]

    async def worker(item: tuple[int, str]) -> TargetSweepResult:
        target_id, name = item
        return await guarded(SWEEP, target_id, name, lambda: sweep_heartbeat(target_id))

    results = await run_in_batches(pending, worker)
    return summarize(SWEEP, results)


async def heartbeat_sweep_loop():
    """心跳超时扫描后台循环。"""
    logger.info("Heartbeat sweep loop started")
    while True:
        try:
            await run_heartbeat_sweep()
        except Exception:
            logger.exception("Error in heartbeat sweep")
        await asyncio.sleep(settings.heartbeat_sweep_interval)
