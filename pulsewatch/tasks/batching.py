"""
扫描任务的公共工具：分批执行与单目标异常隔离。
"""
import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from pulsewatch.core.config import settings
from pulsewatch.schemas.sweep import SweepSummary, TargetSweepResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[TargetSweepResult]],
    batch_size: int | None = None,
    pause: float | None = None,
) -> list[TargetSweepResult]:
    """每批并发执行 batch_size 个，批与批之间暂停 pause 秒（最后一批后不暂停）。"""
    batch_size = batch_size or settings.sweep_batch_size
    pause = settings.sweep_batch_pause if pause is None else pause
    results: list[TargetSweepResult] = []
    for i in range(0, len(items), batch_size):
        batch = items[i:i + batch_size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
        if i + batch_size < len(items) and pause > 0:
            await asyncio.sleep(pause)
    return results


async def guarded(sweep: str, target_id: int, name: str,
                  work: Callable[[], Awaitable[TargetSweepResult]]) -> TargetSweepResult:
    """单个目标出错只记日志并记为 error，不影响同一轮扫描的其他目标。"""
    try:
        return await work()
    except Exception as e:
        logger.exception("%s sweep failed for target %s (%s)", sweep, target_id, name)
        return TargetSweepResult(target_id=target_id, name=name, status="error",
                                 detail=(str(e) or type(e).__name__)[:500])


def summarize(sweep: str, results: Sequence[TargetSweepResult]) -> SweepSummary:
    summary = SweepSummary(sweep=sweep, total=len(results))
    for result in results:
        summary.record(result)
    logger.info("%s sweep finished: %d targets, %s", sweep, summary.total,
                ", ".join(f"{k}={v}" for k, v in sorted(summary.counts.items())) or "nothing to do")
    return summary
