"""
告警分发服务模块。

把一个告警事件并发发送到目标上所有已配置的渠道，每个渠道独立超时、独立成败：
单个渠道失败或超时不会影响其他渠道，任一渠道成功即视为整体成功。分发内部不做重试。
测试通知按（调用方，目标）限流，冷却期内重复请求直接拒绝。
"""
import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, Iterable

from pulsewatch.core.config import settings
from pulsewatch.core.exceptions import RateLimitedError, ValidationError
from pulsewatch.core.expiring_store import ExpiringStore, get_expiring_store
from pulsewatch.schemas.notification import ChannelResult, DispatchResult, NotificationEvent
from pulsewatch.schemas.probe import ConsensusVerdict
from pulsewatch.services.channels import CHANNEL_DESTINATIONS, CHANNEL_SENDERS

logger = logging.getLogger(__name__)

Sender = Callable[[str, NotificationEvent], Awaitable[ChannelResult]]

# 测试通知中展示的模拟延迟
TEST_RESPONSE_TIME_MS = 250


def configured_channels(target) -> dict[str, str]:
    """目标上已配置目的地址的渠道 → 目的地址。"""
    result = {}
    for channel, attr in CHANNEL_DESTINATIONS.items():
        destination = getattr(target, attr, None)
        if destination:
            result[channel] = destination
    return result


async def _send_one(channel: str, sender: Sender, destination: str, event: NotificationEvent,
                    timeout: float) -> ChannelResult:
    """单渠道发送，异常与超时都转换为失败结果。"""
    try:
        return await asyncio.wait_for(sender(destination, event), timeout=timeout)
    except asyncio.TimeoutError:
        return ChannelResult(success=False, error=f"Timed out after {timeout:g}s")
    except Exception as e:
        logger.warning("Channel %s failed for %s: %s", channel, event.target_name, e)
        return ChannelResult(success=False, error=(str(e) or type(e).__name__)[:500])


async def dispatch(
    target,
    event: NotificationEvent,
    channels: Iterable[str] | None = None,
    senders: dict[str, Sender] | None = None,
    timeout: float | None = None,
) -> DispatchResult:
    """向目标所有已配置渠道并发发送事件；channels 给定时只发送其中的渠道。"""
    if senders is None:
        senders = CHANNEL_SENDERS
    timeout = timeout if timeout is not None else settings.channel_timeout
    destinations = configured_channels(target)
    if channels is not None:
        wanted = set(channels)
        destinations = {c: d for c, d in destinations.items() if c in wanted}
    destinations = {c: d for c, d in destinations.items() if c in senders}

    if not destinations:
        logger.info("No channels configured for %s, %s event not sent", event.target_name, event.kind)
        return DispatchResult(overall_success=False, per_channel={})

    names = list(destinations)
    results = await asyncio.gather(*(
        _send_one(name, senders[name], destinations[name], event, timeout) for name in names
    ))
    per_channel = dict(zip(names, results))
    overall = any(r.success for r in results)

    if overall:
        logger.info("Sent %s notification for %s via %s", event.kind, event.target_name,
                    ", ".join(n for n, r in per_channel.items() if r.success))
    else:
        logger.warning("All channels failed for %s %s notification", event.target_name, event.kind)
    return DispatchResult(overall_success=overall, per_channel=per_channel)


# ---------------------------------------------------------------------------
# 事件构造
# ---------------------------------------------------------------------------

def down_event(target, verdict: ConsensusVerdict, cause: str | None = None) -> NotificationEvent:
    return NotificationEvent(
        kind="down",
        target_name=target.name,
        url=target.url,
        status_code=verdict.status_code,
        error=cause or verdict.error,
    )


def up_event(target, verdict: ConsensusVerdict, downtime_minutes: int | None) -> NotificationEvent:
    return NotificationEvent(
        kind="up",
        target_name=target.name,
        url=target.url,
        response_time_ms=verdict.response_time_ms,
        downtime=f"{downtime_minutes} minutes" if downtime_minutes is not None else None,
    )


def make_test_event(target) -> NotificationEvent:
    return NotificationEvent(
        kind="test",
        target_name=target.name,
        url=target.url,
        response_time_ms=TEST_RESPONSE_TIME_MS,
        status_code=200,
        message="This is a test notification from PulseWatch.",
        is_test=True,
    )


# ---------------------------------------------------------------------------
# 测试通知
# ---------------------------------------------------------------------------

def _rate_limit_key(caller: str, target_id: int) -> str:
    return f"test-notification:{caller}:{target_id}"


async def dispatch_test(
    target,
    enabled: dict[str, bool],
    caller: str,
    store: ExpiringStore | None = None,
    senders: dict[str, Sender] | None = None,
) -> DispatchResult:
    """发送测试通知到显式启用的渠道；同一调用方对同一目标在冷却期内只能发送一次。"""
    channels = [c for c, on in enabled.items() if on]
    if not channels:
        raise ValidationError("No notification channels selected")

    if store is None:
        store = await get_expiring_store()
    cooldown = settings.test_notification_cooldown_minutes * 60
    key = _rate_limit_key(caller, target.id)
    # 占位与检查必须是同一个原子操作，并发请求只有一个能通过
    if not await store.set_if_absent(key, str(time.time()), cooldown):
        last_sent = await store.get(key)
        remaining = cooldown - (time.time() - float(last_sent)) if last_sent is not None else 0
        retry_after = max(1, math.ceil(remaining / 60))
        raise RateLimitedError(
            f"Test notifications are limited to one per {settings.test_notification_cooldown_minutes} minutes",
            retry_after_minutes=retry_after,
        )

    return await dispatch(target, make_test_event(target), channels=channels, senders=senders)
