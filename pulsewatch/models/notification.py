"""
通知模型 (Notification Model)

定义告警发送日志与 SLA 违约告警记录的表结构。
SLA 违约记录用于 24 小时内的重复告警抑制。

Defines notification send logs and SLA breach alert records. SLA breach records drive
the 24 hour duplicate alert suppression.
"""
from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from pulsewatch.core.database import Base


class NotificationLog(Base):
    """
    通知发送日志表 (Notification Log Table)

    每个渠道每次发送一行，记录成功或失败原因。
    One row per channel per send, with the failure reason when it failed.
    """
    __tablename__ = "notification_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    incident_id: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 关联故障 ID (Incident ID)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # 渠道：email/slack/discord/sms/webhook (Channel)
    event_kind: Mapped[str] = mapped_column(String(20), nullable=False)  # 事件：down/up/test/sla_breach (Event Kind)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # 结果：sent/failed (Send Status)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)  # 失败原因 (Error)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 发送时间 (Send Time)


class SLANotification(Base):
    """SLA 违约告警记录表 (SLA Breach Alert Table)"""
    __tablename__ = "sla_notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    breach_count: Mapped[int] = mapped_column(Integer, nullable=False)  # 违约的 SLA 档位数 (Breached Targets Count)
    worst_uptime: Mapped[float | None] = mapped_column(Float, nullable=True)  # 最差可用率 (Worst Uptime)
    breach_details: Mapped[list | None] = mapped_column(JSON, nullable=True)  # 违约明细 (Breach Details)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 发送时间 (Send Time)
