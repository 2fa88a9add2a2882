"""
SLA 违约扫描任务模块。

检查当前处于 up 状态的启用目标（最多 sla_sweep_limit 个）的当月 SLA，违约则告警。
"""
import asyncio
import logging

from pulsewatch.core.config import settings
from pulsewatch.core.database import async_session
from pulsewatch.schemas.sweep import SweepSummary, TargetSweepResult
from pulsewatch.services.sla_notifier import check_sla_breaches
from pulsewatch.services.store import TargetStore
from pulsewatch.tasks.batching import guarded, run_in_batches, summarize

logger = logging.getLogger(__name__)

SWEEP = "sla"


async def sweep_sla(target_id: int) -> TargetSweepResult:
    async with async_session() as db:
        return await check_sla_breaches(db, target_id)


async def run_sla_sweep() -> SweepSummary:
    """执行一轮 SLA 违约扫描。"""
    async with async_session() as db:
        targets = await TargetStore(db).list_active(status="up", limit=settings.sla_sweep_limit)
        pending = [(t.id, t.name) for t in targets]
    logger.info("Checking SLA for %d targets", len(pending))

    async def worker(item: tuple[int, str]) -> TargetSweepResult:
        target_id, name = item
        return await guarded(SWEEP, target_id, name, lambda: sweep_sla(target_id))

    results = await run_in_batches(pending, worker)
    return summarize(SWEEP, results)


async def sla_sweep_loop():
    """SLA 违约扫描后台循环。"""
    logger.info("SLA sweep loop started")
    while True:
        try:
            await run_sla_sweep()
        except Exception:
            logger.exception("Error in SLA sweep")
        await asyncio.sleep(settings.sla_sweep_interval)
