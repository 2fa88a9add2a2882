"""
心跳上报接口请求/响应模型
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class HeartbeatRequest(BaseModel):
    """心跳上报请求体，所有字段可选。"""
    status: Literal["up", "down"] = "up"
    message: Optional[str] = None
    response_time: Optional[float] = None
    metadata: Optional[dict] = None


class HeartbeatResponse(BaseModel):
    """心跳上报响应体，返回下一次心跳的期望时间。"""
    success: bool = True
    target_id: int
    received_at: datetime
    next_expected: datetime
    status: str
    recovered: bool = False


class HeartbeatInstructions(BaseModel):
    """心跳接入说明。"""
    target_id: int
    target_name: str
    heartbeat_url: str
    expected_interval: int
    last_heartbeat: Optional[datetime] = None
    examples: dict[str, str]
