"""
探测与共识相关模型

单地域探测结果（不可变）与多地域共识判定结果。
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

OutcomeStatus = Literal["up", "down", "timeout", "error"]

# 计入"失败"的探测结果类别
DOWN_STATUSES = ("down", "timeout", "error")


class ProbeOutcome(BaseModel):
    """单个地域的一次探测结果，创建后不可修改。"""
    target_id: int
    location: str
    status: OutcomeStatus
    response_time_ms: float = 0.0  # 测到成功或失败点的耗时
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime

    model_config = {"frozen": True}

    @property
    def is_down(self) -> bool:
        return self.status in DOWN_STATUSES


class ConsensusVerdict(BaseModel):
    """一轮多地域探测的共识判定，交给故障生命周期服务处理。"""
    target_id: int
    status: Literal["up", "down"]
    observed_at: datetime
    outcomes: list[ProbeOutcome] = Field(default_factory=list)
    response_time_ms: Optional[int] = None  # 仅对 up 结果取平均
    status_code: Optional[int] = None
    error: Optional[str] = None
    failing_locations: list[str] = Field(default_factory=list)
    down_count: int = 0
    threshold: int = 0
    resolution_method: Literal["probe", "heartbeat"] = "probe"
    incident_type: Literal["outage", "missed_heartbeat"] = "outage"
