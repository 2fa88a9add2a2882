"""
PulseWatch 监控核心 (PulseWatch Monitoring Core)

多地域探测、共识判定、故障生命周期、心跳看门狗、SLA 计算与多渠道告警分发。

Multi-location probing, quorum verdicts, incident lifecycle, heartbeat watchdog,
SLA calculation and multi-channel alert fan-out.
"""
__version__ = "0.1.0"
