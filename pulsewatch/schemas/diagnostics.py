"""
网络诊断结果模型

每个子探测各自独立成败：失败时 status="failed" 并带 error，其余字段保持默认值。
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

SectionStatus = Literal["success", "failed"]


class DnsResult(BaseModel):
    status: SectionStatus = "failed"
    resolved_ips: list[str] = Field(default_factory=list)
    cname: list[str] = Field(default_factory=list)
    mx: list[str] = Field(default_factory=list)
    txt: list[str] = Field(default_factory=list)
    resolution_time_ms: float = 0.0
    error: Optional[str] = None


class TraceHop(BaseModel):
    hop: int
    ip: Optional[str] = None
    hostname: Optional[str] = None
    rtt_ms: list[float] = Field(default_factory=list)
    timeout: bool = False


class PathTraceResult(BaseModel):
    status: SectionStatus = "failed"
    hops: list[TraceHop] = Field(default_factory=list)
    total_hops: int = 0
    packet_loss: float = 0.0  # 超时探测包占比（百分比）
    error: Optional[str] = None


class HttpTimingResult(BaseModel):
    status: SectionStatus = "failed"
    status_code: Optional[int] = None
    connect_ms: Optional[float] = None
    tls_ms: Optional[float] = None
    first_byte_ms: Optional[float] = None
    total_ms: Optional[float] = None
    error: Optional[str] = None


class TlsResult(BaseModel):
    status: SectionStatus = "failed"
    valid: bool = False
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_remaining: Optional[int] = None
    san: list[str] = Field(default_factory=list)
    protocol: Optional[str] = None
    cipher: Optional[str] = None
    warning_level: Literal["ok", "warning", "critical", "expired", "unknown"] = "unknown"
    error: Optional[str] = None


class GeoResult(BaseModel):
    status: SectionStatus = "failed"
    ip: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[str] = None
    org: Optional[str] = None
    cdn: Optional[str] = None
    error: Optional[str] = None


class DiagnosticBundle(BaseModel):
    """一个故障在一个地域采集到的诊断快照。"""
    incident_id: int
    target_id: int
    location: str
    dns: DnsResult
    path_trace: PathTraceResult
    http_timing: Optional[HttpTimingResult] = None  # 仅 HTTP 目标
    tls: Optional[TlsResult] = None  # 仅 https 目标
    geo: GeoResult
    captured_at: datetime
    diagnostic_version: str = "1.0"
