"""
告警渠道适配器模块。

每个渠道一个发送函数 send(destination, event) -> ChannelResult，只负责把告警事件渲染成
该渠道的消息格式并发出；超时、重试和并发由分发服务统一控制。
支持邮件（SMTP）、Slack、Discord、短信（Twilio）和通用 Webhook。
"""
import logging
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib
import httpx

from pulsewatch.core.config import settings
from pulsewatch.schemas.notification import ChannelResult, NotificationEvent

logger = logging.getLogger(__name__)

# 短信正文最大长度
SMS_MAX_LENGTH = 160

# 事件类型 → 展示样式
EVENT_STYLES = {
    "down": {"emoji": "🔴", "title": "Website Down Alert", "label": "DOWN", "color": "#ff0000"},
    "up": {"emoji": "✅", "title": "Website Recovered", "label": "UP", "color": "#00ff00"},
    "test": {"emoji": "🧪", "title": "Test Notification", "label": "TEST", "color": "#0066cc"},
    "sla_breach": {"emoji": "⚠️", "title": "SLA Breach Alert", "label": "SLA BREACH", "color": "#ff8c00"},
}

# 渠道 → Target 上的目的地址字段
CHANNEL_DESTINATIONS = {
    "email": "alert_email",
    "slack": "slack_webhook_url",
    "discord": "discord_webhook_url",
    "sms": "alert_sms",
    "webhook": "webhook_url",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _http_result(resp: httpx.Response) -> ChannelResult:
    if 200 <= resp.status_code < 300:
        return ChannelResult(success=True)
    return ChannelResult(success=False, error=f"HTTP {resp.status_code}: {resp.text[:200]}")


def event_fields(event: NotificationEvent) -> list[tuple[str, str]]:
    """事件中有值的字段，按展示顺序排列。"""
    style = EVENT_STYLES[event.kind]
    fields = [("Website", event.target_name), ("Status", style["label"])]
    if event.url:
        fields.append(("URL", event.url))
    if event.response_time_ms is not None:
        fields.append(("Response Time", f"{event.response_time_ms:g}ms"))
    if event.status_code is not None:
        fields.append(("Status Code", str(event.status_code)))
    if event.error:
        fields.append(("Error", event.error))
    if event.downtime:
        fields.append(("Downtime", event.downtime))
    if event.message:
        fields.append(("Details", event.message))
    return fields


def event_headline(event: NotificationEvent) -> str:
    style = EVENT_STYLES[event.kind]
    return f"{style['emoji']} {style['title']}: {event.target_name}"


# ---------------------------------------------------------------------------
# 各渠道发送函数
# ---------------------------------------------------------------------------

async def send_slack(destination: str, event: NotificationEvent) -> ChannelResult:
    """Slack Incoming Webhook，附件颜色按事件类型区分。"""
    style = EVENT_STYLES[event.kind]
    payload = {
        "text": event_headline(event),
        "attachments": [{
            "color": style["color"],
            "fields": [{"title": k, "value": v, "short": len(v) < 40} for k, v in event_fields(event)],
            "footer": "PulseWatch",
            "ts": int(datetime.now(timezone.utc).timestamp()),
        }],
    }
    async with httpx.AsyncClient(timeout=settings.channel_timeout) as client:
        resp = await client.post(destination, json=payload)
    return _http_result(resp)


async def send_discord(destination: str, event: NotificationEvent) -> ChannelResult:
    """Discord Webhook，embed 颜色为整数。"""
    style = EVENT_STYLES[event.kind]
    payload = {
        "embeds": [{
            "title": f"{style['emoji']} {style['title']}",
            "description": event.message or f"{event.target_name} is {style['label']}",
            "color": int(style["color"].lstrip("#"), 16),
            "fields": [{"name": k, "value": v, "inline": len(v) < 40} for k, v in event_fields(event)],
            "timestamp": _now_iso(),
            "footer": {"text": "PulseWatch"},
        }],
    }
    async with httpx.AsyncClient(timeout=settings.channel_timeout) as client:
        resp = await client.post(destination, json=payload)
    return _http_result(resp)


def sms_body(event: NotificationEvent) -> str:
    style = EVENT_STYLES[event.kind]
    parts = [f"{style['emoji']} PulseWatch: {event.target_name} is {style['label']}"]
    if event.kind == "down" and event.error:
        parts.append(event.error)
    if event.kind == "up" and event.downtime:
        parts.append(f"Downtime: {event.downtime}")
    if event.kind == "sla_breach" and event.message:
        parts.append(event.message)
    if event.url:
        parts.append(event.url)
    return " - ".join(parts)[:SMS_MAX_LENGTH]


async def send_sms(destination: str, event: NotificationEvent) -> ChannelResult:
    """通过 Twilio Messages API 发送短信，正文截断到 160 字符。"""
    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number):
        return ChannelResult(success=False, error="SMS provider not configured")
    url = f"{settings.twilio_api_base}/Accounts/{settings.twilio_account_sid}/Messages.json"
    data = {"To": destination, "From": settings.twilio_from_number, "Body": sms_body(event)}
    async with httpx.AsyncClient(timeout=settings.channel_timeout) as client:
        resp = await client.post(url, data=data, auth=(settings.twilio_account_sid, settings.twilio_auth_token))
    return _http_result(resp)


def webhook_payload(event: NotificationEvent) -> dict:
    style = EVENT_STYLES[event.kind]
    return {
        "event": f"monitor.{event.kind}",
        "timestamp": _now_iso(),
        "test": event.is_test,
        "monitor": {
            "name": event.target_name,
            "url": event.url,
            "status": style["label"].lower(),
            "response_time": event.response_time_ms,
            "status_code": event.status_code,
            "error": event.error,
            "downtime": event.downtime,
        },
        "message": event.message,
    }


async def send_webhook(destination: str, event: NotificationEvent) -> ChannelResult:
    """通用 Webhook，POST JSON。"""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"{settings.user_agent_product} Webhook",
    }
    async with httpx.AsyncClient(timeout=settings.channel_timeout) as client:
        resp = await client.post(destination, json=webhook_payload(event), headers=headers)
    return _http_result(resp)


def email_html(event: NotificationEvent) -> str:
    """生成告警邮件 HTML 正文。"""
    style = EVENT_STYLES[event.kind]
    rows = "".join(
        f'<tr><td style="padding:8px 0;font-weight:bold;">{k}</td><td>{v}</td></tr>'
        for k, v in event_fields(event)
    )
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;border:1px solid #e0e0e0;border-radius:8px;overflow:hidden;">
      <div style="background:{style['color']};color:#fff;padding:16px 24px;">
        <h2 style="margin:0;">{style['emoji']} {style['title']}</h2>
      </div>
      <div style="padding:24px;">
        <table style="width:100%;border-collapse:collapse;">{rows}</table>
      </div>
    </div>
    """


async def send_email(destination: str, event: NotificationEvent) -> ChannelResult:
    """通过 SMTP 发送邮件通知。"""
    if not settings.smtp_host:
        return ChannelResult(success=False, error="SMTP not configured")

    style = EVENT_STYLES[event.kind]
    msg = MIMEMultipart("alternative")
    msg["From"] = settings.smtp_from
    msg["To"] = destination
    msg["Subject"] = f"[PulseWatch {style['label']}] {event.target_name}"
    msg.attach(MIMEText(email_html(event), "html", "utf-8"))

    kwargs = {
        "hostname": settings.smtp_host,
        "port": settings.smtp_port,
        "timeout": settings.channel_timeout,
    }
    if settings.smtp_username:
        kwargs["username"] = settings.smtp_username
        kwargs["password"] = settings.smtp_password
    if settings.smtp_use_ssl:
        kwargs["use_tls"] = True
    else:
        kwargs["start_tls"] = True

    await aiosmtplib.send(msg, **kwargs)
    return ChannelResult(success=True)


# 渠道 → 发送函数
CHANNEL_SENDERS = {
    "email": send_email,
    "slack": send_slack,
    "discord": send_discord,
    "sms": send_sms,
    "webhook": send_webhook,
}
