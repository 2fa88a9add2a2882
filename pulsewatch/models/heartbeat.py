"""
心跳信号模型 (Heartbeat Signal Model)

被监控任务主动上报的心跳，只追加。
"""
from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from pulsewatch.core.database import Base


class HeartbeatSignal(Base):
    """心跳信号表 (Heartbeat Signal Table)"""
    __tablename__ = "heartbeat_signals"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    status: Mapped[str] = mapped_column(String(20), default="up")  # 上报状态 (Reported Status)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)  # 附带消息 (Message)
    response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)  # 上报的耗时 (Reported Duration)
    extra: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)  # 附加元数据 (Metadata)
    source_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)  # 来源 IP (Source IP)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 接收时间 (Receive Time)
