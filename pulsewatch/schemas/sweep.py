"""
扫描入口的汇总结果模型
"""
from typing import Optional

from pydantic import BaseModel, Field


class TargetSweepResult(BaseModel):
    """单个目标在一次扫描中的处理结果。"""
    target_id: int
    name: str
    status: str  # 如 up/down、on_time/missed、breached/no_breach/suppressed、error
    detail: Optional[str] = None


class SweepSummary(BaseModel):
    """一次扫描的汇总。"""
    sweep: str  # consensus / heartbeat / sla
    total: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    errors: int = 0
    results: list[TargetSweepResult] = Field(default_factory=list)

    def record(self, result: TargetSweepResult) -> None:
        self.results.append(result)
        self.counts[result.status] = self.counts.get(result.status, 0) + 1
        if result.status == "error":
            self.errors += 1
