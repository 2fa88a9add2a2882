"""
SLA 相关模型

定义 SLA 档位、单档位计算结果、多档位报告汇总和接口响应体。
actual_uptime / met 为 None 表示数据不足，无法判定。
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

Period = Literal["daily", "weekly", "monthly", "quarterly", "yearly"]


class SLATarget(BaseModel):
    """SLA 档位。"""
    percentage: float
    name: str
    description: str = ""

    model_config = {"frozen": True}


class SLACalculation(BaseModel):
    """单个 SLA 档位在一个周期内的计算结果。"""
    target: SLATarget
    period: Period
    window_start: datetime
    window_end: datetime
    period_minutes: float
    actual_uptime: Optional[float] = None  # 百分比，None 表示数据不足
    target_uptime: float
    met: Optional[bool] = None
    allowed_downtime_minutes: float
    actual_downtime_minutes: Optional[float] = None
    remaining_budget_minutes: Optional[float] = None
    total_checks: int = 0
    up_checks: int = 0
    down_checks: int = 0


class SLASummary(BaseModel):
    """多档位报告汇总。"""
    total_targets: int = 0
    met_targets: int = 0
    breached_targets: int = 0
    undetermined_targets: int = 0
    best_uptime: Optional[float] = None
    worst_uptime: Optional[float] = None


class SLAReport(BaseModel):
    """某个监控目标在一个周期内的 SLA 报告。"""
    target_id: int
    target_name: str
    period: Period
    calculations: list[SLACalculation] = Field(default_factory=list)
    breaches: list[SLACalculation] = Field(default_factory=list)
    summary: SLASummary
    sufficient_data: bool
