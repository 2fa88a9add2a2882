"""
PulseWatch 应用入口模块 (PulseWatch Application Entry Module)

负责 FastAPI 应用的生命周期管理：建表、按配置启动扫描后台循环、注册路由与异常处理器，
关闭时取消后台任务、诊断任务并释放连接。

Application entry point: creates tables, optionally starts the sweep loops, registers
routers and exception handlers, and on shutdown cancels background work and releases
connections.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from sqlalchemy import text

from pulsewatch import __version__
from pulsewatch.core.config import settings
from pulsewatch.core.database import Base, engine
from pulsewatch.core.exceptions import register_exception_handlers
from pulsewatch.core.redis import close_redis, get_redis
# 导入所有模型以确保 SQLAlchemy 表注册 (Import all models to register tables)
from pulsewatch.models import (  # noqa: F401
    HeartbeatSignal, Incident, IncidentDiagnostic, NotificationLog, SLANotification, Target, UptimeCheck,
)
from pulsewatch.routers import heartbeats, incidents, sweeps, targets
from pulsewatch.services.diagnostics import diagnostics_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理器 (Application Lifecycle Manager)"""
    from pulsewatch.tasks.consensus_sweep import consensus_sweep_loop
    from pulsewatch.tasks.heartbeat_sweep import heartbeat_sweep_loop
    from pulsewatch.tasks.sla_sweep import sla_sweep_loop

    # 自动创建数据库表结构 (Create tables)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # 外部调度器未接管时，由进程内循环驱动扫描 (In-process sweep loops)
    loop_tasks = []
    if settings.sweep_loops_enabled:
        loop_tasks = [
            asyncio.create_task(consensus_sweep_loop()),
            asyncio.create_task(heartbeat_sweep_loop()),
            asyncio.create_task(sla_sweep_loop()),
        ]
        logger.info("Started %d sweep loops", len(loop_tasks))

    yield

    # 关闭阶段 (Shutdown)
    for task in loop_tasks:
        task.cancel()
    await asyncio.gather(*loop_tasks, return_exceptions=True)
    await diagnostics_scheduler.shutdown()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="PulseWatch",
    description="Multi-location uptime monitoring core | 多地域可用性监控核心",
    version=__version__,
    lifespan=lifespan,
)

# 注册全局异常处理器 (Register global exception handlers)
register_exception_handlers(app)

app.include_router(sweeps.router)  # 扫描触发 (Sweep triggers)
app.include_router(heartbeats.router)  # 心跳上报 (Heartbeat ingress)
app.include_router(targets.router)  # SLA / 故障 / 测试通知 (SLA, incidents, test notifications)
app.include_router(incidents.router)  # 故障诊断 (Incident diagnostics)


@app.get("/health")
async def health_check():
    """
    健康检查端点 (Health Check Endpoint)

    检查数据库连接；过期键存储使用 redis 后端时同时检查 Redis。
    Checks the database, and Redis when it backs the expiring store.
    """
    checks = {"api": "ok"}

    # 数据库连通性检查 (Database connectivity check)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "error"

    if settings.expiring_store_backend == "redis":
        try:
            r = await get_redis()
            await r.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "checks": checks,
        "pending_diagnostics": diagnostics_scheduler.pending,
    }
