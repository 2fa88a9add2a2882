"""
故障模型 (Incident Model)

定义故障记录与故障诊断快照的表结构。每个目标同一时刻至多一个未解决故障。

Defines incident records and incident diagnostic snapshots. A target has at most one
unresolved incident at any time.
"""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Boolean, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from pulsewatch.core.database import Base


class Incident(Base):
    """故障表 (Incident Table)"""
    __tablename__ = "incidents"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # 开始时间 (Start Time)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # 结束时间 (End Time)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)  # 是否已恢复 (Is Resolved)
    cause: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown")  # 故障原因 (Cause)
    incident_type: Mapped[str] = mapped_column(String(30), default="outage")  # 类型：outage/missed_heartbeat (Incident Type)
    resolution_method: Mapped[str | None] = mapped_column(String(20), nullable=True)  # 恢复方式：probe/heartbeat (Resolution Method)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 持续分钟数 (Duration in Minutes)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)


class IncidentDiagnostic(Base):
    """
    故障诊断快照表 (Incident Diagnostic Table)

    每个故障每个地域一行，各子探测结果以 JSON 保存，失败的子探测带 status=failed。
    One row per incident per vantage point; each sub-probe section is stored as JSON.
    """
    __tablename__ = "incident_diagnostics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    incident_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 故障 ID (Incident ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    location: Mapped[str] = mapped_column(String(50), nullable=False)  # 诊断地域 (Vantage Point)
    dns: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # DNS 解析 (DNS Resolution)
    path_trace: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # 路由追踪 (Path Trace)
    http_timing: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # HTTP 分段耗时 (HTTP Timing)
    tls: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # TLS 证书 (TLS Certificate)
    geo: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # 地理/ASN/CDN (Geo, ASN, CDN)
    diagnostic_version: Mapped[str] = mapped_column(String(10), default="1.0")  # 诊断格式版本 (Format Version)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 采集时间 (Capture Time)
