"""
告警分发相关请求/响应模型

定义告警事件、单渠道发送结果、整体分发结果以及测试通知接口的数据结构。
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field

EventKind = Literal["down", "up", "test", "sla_breach"]

CHANNELS = ("email", "slack", "discord", "sms", "webhook")


class NotificationEvent(BaseModel):
    """一次告警事件，由各渠道适配器渲染成各自的消息格式。"""
    kind: EventKind
    target_name: str
    url: Optional[str] = None
    response_time_ms: Optional[float] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    downtime: Optional[str] = None  # 如 "12 minutes"
    message: Optional[str] = None  # SLA 违约等场景的正文
    is_test: bool = False


class ChannelResult(BaseModel):
    """单个渠道的发送结果。"""
    success: bool
    error: Optional[str] = None


class DispatchResult(BaseModel):
    """一次分发的整体结果：任一渠道成功即视为成功。"""
    overall_success: bool
    per_channel: dict[str, ChannelResult] = Field(default_factory=dict)


class TestNotificationRequest(BaseModel):
    """测试通知请求体，显式指定要测试的渠道。"""
    email: bool = False
    slack: bool = False
    discord: bool = False
    sms: bool = False
    webhook: bool = False

    def enabled(self) -> dict[str, bool]:
        return {channel: getattr(self, channel) for channel in CHANNELS}


class TestNotificationResponse(BaseModel):
    """测试通知响应体。"""
    success: bool
    message: str
    results: dict[str, ChannelResult]
