"""
监控目标模型 (Monitored Target Model)

定义被监控目标及其探测记录的表结构。目标类型包括 HTTP、TCP 端口、可达性与心跳；
目标状态只由故障生命周期服务写入。

Defines the monitored target and its probe outcome rows. Target kinds are http, tcp-port,
reachability and heartbeat; target status is written only by the incident lifecycle.
"""
from datetime import datetime

from sqlalchemy import String, Integer, Float, DateTime, Boolean, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from pulsewatch.core.database import Base

TARGET_KINDS = ("http", "tcp-port", "reachability", "heartbeat")
AUTH_MODES = ("none", "basic", "bearer", "header")


class Target(Base):
    """
    监控目标表 (Monitored Target Table)

    存储探测配置、当前状态与各告警渠道的目的地址。
    Stores the probe configuration, current status and per-channel alert destinations.
    """
    __tablename__ = "targets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    name: Mapped[str] = mapped_column(String(255), nullable=False)  # 目标名称 (Target Name)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="http")  # 目标类型：http/tcp-port/reachability/heartbeat (Target Kind)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)  # 探测 URL (Probe URL)
    host: Mapped[str | None] = mapped_column(String(255), nullable=True)  # 主机名，TCP/可达性使用 (Hostname for tcp/reachability)
    port: Mapped[int | None] = mapped_column(Integer, nullable=True)  # TCP 端口 (TCP Port)

    # HTTP 请求配置 (HTTP Request Configuration)
    request_method: Mapped[str] = mapped_column(String(10), default="GET")  # 请求方法 (Request Method)
    request_headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)  # 自定义请求头 (Custom Headers)
    request_body: Mapped[str | None] = mapped_column(Text, nullable=True)  # 请求体 (Request Body)
    auth_mode: Mapped[str] = mapped_column(String(20), default="none")  # 认证方式：none/basic/bearer/header (Auth Mode)
    auth_username: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Basic 用户名 (Basic Username)
    auth_password: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Basic 密码 (Basic Password)
    auth_token: Mapped[str | None] = mapped_column(String(500), nullable=True)  # Bearer 或 API Key (Bearer Token or API Key)

    # 调度配置 (Schedule Configuration)
    check_interval: Mapped[int] = mapped_column(Integer, default=300)  # 探测间隔秒数 (Polling Interval in Seconds)
    heartbeat_interval: Mapped[int] = mapped_column(Integer, default=60)  # 心跳期望间隔秒数 (Expected Heartbeat Interval)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)  # 是否启用监控 (Is Monitoring Enabled)

    # 当前状态 (Current Status)
    status: Mapped[str] = mapped_column(String(20), default="unknown")  # 状态：up/down/unknown (Status)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近判定时间 (Last Verdict Time)
    last_response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)  # 最近平均延迟 (Last Mean Latency)
    last_status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 最近 HTTP 状态码 (Last Status Code)
    last_heartbeat: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # 最近心跳时间 (Last Heartbeat Time)

    # 告警渠道目的地址，空表示未配置 (Channel Destinations, empty means not configured)
    alert_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    slack_webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    discord_webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    alert_sms: Mapped[str | None] = mapped_column(String(50), nullable=True)
    webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )  # 创建时间 (Creation Time)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )  # 更新时间 (Update Time)


class UptimeCheck(Base):
    """
    探测记录表 (Probe Outcome Table)

    每个地域每次探测一行，是 SLA 计算的数据来源，只追加不修改。
    One row per vantage point per probe, the input to SLA calculation. Append-only.
    """
    __tablename__ = "uptime_checks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)  # 主键 ID (Primary Key ID)
    target_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)  # 目标 ID (Target ID)
    location: Mapped[str] = mapped_column(String(50), nullable=False)  # 探测地域 (Vantage Point)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # 结果：up/down/timeout/error (Outcome Status)
    response_time_ms: Mapped[float | None] = mapped_column(Float, nullable=True)  # 响应时间毫秒数 (Latency in ms)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)  # HTTP 状态码 (HTTP Status Code)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)  # 错误信息 (Error Message)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )  # 探测时间 (Check Time)
