"""
目标存储服务 (Target Store)

对 AsyncSession 的薄封装，集中所有读写查询：目标、探测记录、故障、心跳、通知日志与诊断快照。
提交由调用方控制，这里只 add / flush / 查询。

Thin repository over an AsyncSession holding every query the core needs. Commits are
left to the caller; this layer only adds, flushes and queries.
"""
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulsewatch.models.heartbeat import HeartbeatSignal
from pulsewatch.models.incident import Incident, IncidentDiagnostic
from pulsewatch.models.notification import NotificationLog, SLANotification
from pulsewatch.models.target import Target, UptimeCheck
from pulsewatch.schemas.diagnostics import DiagnosticBundle
from pulsewatch.schemas.notification import DispatchResult
from pulsewatch.schemas.probe import ProbeOutcome


class TargetStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── 目标 ────────────────────────────────────────────────────────
    async def get_target(self, target_id: int, fresh: bool = False) -> Target | None:
        """fresh=True 时用数据库中的最新行覆盖会话里已加载的对象。"""
        stmt = select(Target).where(Target.id == target_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def list_active(
        self,
        kind: str | None = None,
        exclude_kind: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> Sequence[Target]:
        """列出启用的目标，可按类型、排除类型和状态过滤。"""
        stmt = select(Target).where(Target.is_active == True)  # noqa: E712
        if kind is not None:
            stmt = stmt.where(Target.kind == kind)
        if exclude_kind is not None:
            stmt = stmt.where(Target.kind != exclude_kind)
        if status is not None:
            stmt = stmt.where(Target.status == status)
        stmt = stmt.order_by(Target.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return (await self.db.execute(stmt)).scalars().all()

    # ── 探测记录 ────────────────────────────────────────────────────
    async def append_outcomes(self, outcomes: Iterable[ProbeOutcome]) -> None:
        for o in outcomes:
            self.db.add(UptimeCheck(
                target_id=o.target_id,
                location=o.location,
                status=o.status,
                response_time_ms=o.response_time_ms,
                status_code=o.status_code,
                error_message=o.error,
                checked_at=o.checked_at,
            ))
        await self.db.flush()

    async def checks_between(self, target_id: int, start: datetime, end: datetime) -> Sequence[UptimeCheck]:
        result = await self.db.execute(
            select(UptimeCheck).where(
                UptimeCheck.target_id == target_id,
                UptimeCheck.checked_at >= start,
                UptimeCheck.checked_at < end,
            ).order_by(UptimeCheck.checked_at)
        )
        return result.scalars().all()

    # ── 故障 ────────────────────────────────────────────────────────
    async def latest_open_incident(self, target_id: int) -> Incident | None:
        result = await self.db.execute(
            select(Incident).where(
                Incident.target_id == target_id,
                Incident.resolved == False,  # noqa: E712
            ).order_by(Incident.started_at.desc(), Incident.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def list_incidents(self, target_id: int, limit: int = 50) -> Sequence[Incident]:
        result = await self.db.execute(
            select(Incident).where(Incident.target_id == target_id)
            .order_by(Incident.started_at.desc(), Incident.id.desc()).limit(limit)
        )
        return result.scalars().all()

    async def get_incident(self, incident_id: int) -> Incident | None:
        return (await self.db.execute(select(Incident).where(Incident.id == incident_id))).scalar_one_or_none()

    # ── 心跳 ────────────────────────────────────────────────────────
    async def append_heartbeat(self, signal: HeartbeatSignal) -> HeartbeatSignal:
        self.db.add(signal)
        await self.db.flush()
        return signal

    # ── 通知日志 ────────────────────────────────────────────────────
    async def log_dispatch(
        self, target_id: int, event_kind: str, result: DispatchResult, incident_id: int | None = None
    ) -> None:
        for channel, ch_result in result.per_channel.items():
            self.db.add(NotificationLog(
                target_id=target_id,
                incident_id=incident_id,
                channel=channel,
                event_kind=event_kind,
                status="sent" if ch_result.success else "failed",
                error=ch_result.error,
            ))
        await self.db.flush()

    async def last_sla_notification(self, target_id: int, since: datetime) -> SLANotification | None:
        result = await self.db.execute(
            select(SLANotification).where(
                SLANotification.target_id == target_id,
                SLANotification.sent_at >= since,
            ).order_by(SLANotification.sent_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    # ── 诊断 ────────────────────────────────────────────────────────
    async def save_diagnostic(self, bundle: DiagnosticBundle) -> IncidentDiagnostic:
        row = IncidentDiagnostic(
            incident_id=bundle.incident_id,
            target_id=bundle.target_id,
            location=bundle.location,
            dns=bundle.dns.model_dump(mode="json"),
            path_trace=bundle.path_trace.model_dump(mode="json"),
            http_timing=bundle.http_timing.model_dump(mode="json") if bundle.http_timing else None,
            tls=bundle.tls.model_dump(mode="json") if bundle.tls else None,
            geo=bundle.geo.model_dump(mode="json"),
            diagnostic_version=bundle.diagnostic_version,
            captured_at=bundle.captured_at,
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def list_diagnostics(self, incident_id: int) -> Sequence[IncidentDiagnostic]:
        result = await self.db.execute(
            select(IncidentDiagnostic).where(IncidentDiagnostic.incident_id == incident_id)
            .order_by(IncidentDiagnostic.id)
        )
        return result.scalars().all()
