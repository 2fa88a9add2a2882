"""
故障诊断采集服务 (Incident Diagnostics)

故障开启时为失败地域采集网络诊断快照：DNS、路由追踪、HTTP 分段耗时、TLS 证书、地理/ASN/CDN。
各子探测独立成败；采集以后台任务运行，由全局信号量限制并发，不阻塞故障状态提交。

When an incident opens, a diagnostic snapshot is collected for the failing vantage points.
Sub-probes succeed or fail independently. Collection runs as background tasks bounded by
a global semaphore and never blocks the incident commit.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence
from urllib.parse import urlparse

from pulsewatch.core.clock import utcnow
from pulsewatch.core.config import settings
from pulsewatch.core.database import async_session
from pulsewatch.core.expiring_store import ExpiringStore, get_expiring_store
from pulsewatch.schemas.diagnostics import (
    DiagnosticBundle,
    DnsResult,
    GeoResult,
    HttpTimingResult,
    PathTraceResult,
    TlsResult,
)
from pulsewatch.services import lookups
from pulsewatch.services.prober import target_host
from pulsewatch.services.store import TargetStore

logger = logging.getLogger(__name__)

DIAGNOSTIC_VERSION = "1.0"


@dataclass(frozen=True)
class TargetSnapshot:
    """诊断任务使用的目标快照，脱离数据库会话。"""
    id: int
    name: str
    kind: str
    url: str | None = None
    host: str | None = None
    port: int | None = None

    @classmethod
    def of(cls, target) -> "TargetSnapshot":
        return cls(id=target.id, name=target.name, kind=target.kind,
                   url=target.url, host=target.host, port=target.port)


class DiagnosticsCollector:
    """为单个故障、单个地域采集一份诊断快照。"""

    def __init__(self, tls_cache: ExpiringStore | None = None):
        self.tls_cache = tls_cache

    async def collect(self, incident_id: int, target, location: str) -> DiagnosticBundle:
        host = target_host(target)
        if not host:
            missing = "No host to diagnose"
            return DiagnosticBundle(
                incident_id=incident_id, target_id=target.id, location=location,
                dns=DnsResult(error=missing), path_trace=PathTraceResult(error=missing),
                geo=GeoResult(error=missing), captured_at=utcnow(),
                diagnostic_version=DIAGNOSTIC_VERSION,
            )

        dns = await self._guard(lookups.dns_lookup(host), DnsResult)

        is_http = target.kind == "http" and bool(target.url)
        is_https = is_http and urlparse(target.url).scheme == "https"
        first_ip = dns.resolved_ips[0] if dns.resolved_ips else None

        jobs = [self._guard(lookups.trace_path(host), PathTraceResult)]
        jobs.append(self._guard(lookups.geo_lookup(first_ip), GeoResult) if first_ip else _failed(
            GeoResult, "No resolved address"))
        if is_http:
            jobs.append(self._guard(lookups.http_timing(target.url), HttpTimingResult))
        if is_https:
            port = urlparse(target.url).port or 443
            cache = self.tls_cache if self.tls_cache is not None else await get_expiring_store()
            jobs.append(self._guard(lookups.tls_inspect(host, port, cache=cache), TlsResult))

        results = await asyncio.gather(*jobs)
        path_trace, geo = results[0], results[1]
        http = results[2] if is_http else None
        tls = results[3] if is_https else None

        return DiagnosticBundle(
            incident_id=incident_id,
            target_id=target.id,
            location=location,
            dns=dns,
            path_trace=path_trace,
            http_timing=http,
            tls=tls,
            geo=geo,
            captured_at=utcnow(),
            diagnostic_version=DIAGNOSTIC_VERSION,
        )

    @staticmethod
    async def _guard(coro, result_type):
        """子探测意外抛错时转换为失败结果。"""
        try:
            return await coro
        except Exception as e:
            logger.warning("Diagnostic sub-probe %s failed: %s", result_type.__name__, e)
            return result_type(error=(str(e) or type(e).__name__)[:500])


async def _failed(result_type, error: str):
    return result_type(error=error)


class DiagnosticsScheduler:
    """
    后台诊断任务池：每个故障最多诊断 diagnostics_per_incident 个地域，全局并发由信号量限制。
    采集或保存失败只记日志。
    """

    def __init__(
        self,
        collector: DiagnosticsCollector | None = None,
        concurrency: int | None = None,
        timeout: float | None = None,
        per_incident: int | None = None,
    ):
        self.collector = collector or DiagnosticsCollector()
        self.timeout = timeout if timeout is not None else settings.diagnostics_timeout
        self.per_incident = per_incident if per_incident is not None else settings.diagnostics_per_incident
        self._semaphore = asyncio.Semaphore(concurrency or settings.diagnostics_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, incident_id: int, target, locations: Sequence[str]) -> int:
        """提交诊断任务后立即返回，返回实际提交的地域数。"""
        snapshot = TargetSnapshot.of(target)
        selected = list(locations)[: self.per_incident]
        for location in selected:
            task = asyncio.create_task(self._run(incident_id, snapshot, location))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if selected:
            logger.info("Scheduled diagnostics for incident %s at %s", incident_id, ", ".join(selected))
        return len(selected)

    async def _run(self, incident_id: int, target: TargetSnapshot, location: str) -> None:
        async with self._semaphore:
            try:
                bundle = await asyncio.wait_for(
                    self.collector.collect(incident_id, target, location), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Diagnostics for incident %s at %s timed out", incident_id, location)
                return
            except Exception:
                logger.exception("Diagnostics for incident %s at %s failed", incident_id, location)
                return

            try:
                async with async_session() as db:
                    await TargetStore(db).save_diagnostic(bundle)
                    await db.commit()
            except Exception:
                logger.exception("Failed to save diagnostics for incident %s at %s", incident_id, location)

    async def drain(self) -> None:
        """等待所有已提交的诊断任务结束。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """取消所有未完成的诊断任务。"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


# 全局诊断任务池
diagnostics_scheduler = DiagnosticsScheduler()
