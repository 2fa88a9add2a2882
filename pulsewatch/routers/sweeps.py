"""
扫描触发路由

供外部调度器（cron、Kubernetes CronJob 等）触发一轮扫描，返回本轮汇总。
"""
from fastapi import APIRouter

from pulsewatch.schemas.sweep import SweepSummary
from pulsewatch.tasks.consensus_sweep import run_consensus_sweep
from pulsewatch.tasks.heartbeat_sweep import run_heartbeat_sweep
from pulsewatch.tasks.sla_sweep import run_sla_sweep

router = APIRouter(prefix="/api/v1/sweeps", tags=["sweeps"])


@router.post("/consensus", response_model=SweepSummary)
async def trigger_consensus_sweep():
    """对所有启用的非心跳目标执行一轮多地域探测。"""
    return await run_consensus_sweep()


@router.post("/heartbeats", response_model=SweepSummary)
async def trigger_heartbeat_sweep():
    """检查所有心跳目标是否超时。"""
    return await run_heartbeat_sweep()


@router.post("/sla", response_model=SweepSummary)
async def trigger_sla_sweep():
    """检查 up 目标的当月 SLA 并发送违约告警。"""
    return await run_sla_sweep()
