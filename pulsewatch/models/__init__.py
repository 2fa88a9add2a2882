"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型：监控目标、探测记录、故障与诊断、心跳信号、通知日志。

Centrally exports all SQLAlchemy ORM models: targets, probe outcomes, incidents and
diagnostics, heartbeat signals and notification logs.
"""
from pulsewatch.models.target import Target, UptimeCheck
from pulsewatch.models.incident import Incident, IncidentDiagnostic
from pulsewatch.models.heartbeat import HeartbeatSignal
from pulsewatch.models.notification import NotificationLog, SLANotification

__all__ = [
    "Target",
    "UptimeCheck",
    "Incident",
    "IncidentDiagnostic",
    "HeartbeatSignal",
    "NotificationLog",
    "SLANotification",
]
