"""
故障相关响应模型
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from pulsewatch.schemas.notification import DispatchResult


class TransitionResult(BaseModel):
    """一次判定经故障生命周期处理后的结果。"""
    target_id: int
    previous_status: str
    status: str
    transition: Optional[str] = None  # "opened" / "closed"，无状态变化时为 None
    discarded: bool = False  # 过期判定被丢弃
    incident_id: Optional[int] = None
    notification: Optional[DispatchResult] = None
    diagnostics_scheduled: int = 0


class IncidentResponse(BaseModel):
    """故障响应体。"""
    id: int
    target_id: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    resolved: bool
    cause: str
    incident_type: str
    resolution_method: Optional[str] = None
    duration_minutes: Optional[int] = None

    model_config = {"from_attributes": True}


class IncidentDiagnosticResponse(BaseModel):
    """故障诊断快照响应体。"""
    id: int
    incident_id: int
    target_id: int
    location: str
    dns: Optional[dict] = None
    path_trace: Optional[dict] = None
    http_timing: Optional[dict] = None
    tls: Optional[dict] = None
    geo: Optional[dict] = None
    diagnostic_version: str
    captured_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
