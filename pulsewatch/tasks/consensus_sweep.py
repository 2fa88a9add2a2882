"""
共识扫描任务模块。

对所有启用的非心跳目标做一轮多地域探测，把共识判定交给故障生命周期。
目标之间由信号量限制并发；同一目标的判定提交在目标锁内串行执行，探测本身不持锁。
"""
import asyncio
import logging

from pulsewatch.core.config import settings
from pulsewatch.core.database import async_session
from pulsewatch.core.locks import target_locks
from pulsewatch.schemas.sweep import SweepSummary, TargetSweepResult
from pulsewatch.services.consensus import evaluate
from pulsewatch.services.incidents import apply_verdict
from pulsewatch.services.store import TargetStore
from pulsewatch.tasks.batching import guarded, summarize

logger = logging.getLogger(__name__)

SWEEP = "consensus"


async def sweep_target(target_id: int) -> TargetSweepResult:
    """探测单个目标并提交判定。"""
    async with async_session() as db:
        store = TargetStore(db)
        target = await store.get_target(target_id)
        if target is None:
            target_locks.discard(target_id)
        if target is None or not target.is_active:
            return TargetSweepResult(target_id=target_id, name=target.name if target else "",
                                     status="skipped", detail="Target inactive or removed")
        name = target.name
        verdict = await evaluate(target, store=store)

        async with target_locks.get(target_id):
            result = await apply_verdict(db, verdict)
            # 判定被丢弃时探测记录仍需落库
            await db.commit()

    if result.discarded:
        return TargetSweepResult(target_id=target_id, name=name, status="discarded",
                                 detail="Newer verdict already applied")
    return TargetSweepResult(target_id=target_id, name=name, status=result.status,
                             detail=result.transition)


async def run_consensus_sweep(concurrency: int | None = None) -> SweepSummary:
    """执行一轮共识扫描。"""
    async with async_session() as db:
        targets = await TargetStore(db).list_active(exclude_kind="heartbeat")
        pending = [(t.id, t.name) for t in targets]

    semaphore = asyncio.Semaphore(concurrency or settings.consensus_concurrency)

    async def run(target_id: int, name: str) -> TargetSweepResult:
        async with semaphore:
            return await guarded(SWEEP, target_id, name, lambda: sweep_target(target_id))

    results = await asyncio.gather(*(run(tid, name) for tid, name in pending))
    return summarize(SWEEP, results)


async def consensus_sweep_loop():
    """共识扫描后台循环。"""
    logger.info("Consensus sweep loop started")
    while True:
        try:
            await run_consensus_sweep()
        except Exception:
            logger.exception("Error in consensus sweep")
        await asyncio.sleep(settings.consensus_sweep_interval)
