"""告警分发测试：渠道隔离、超时、测试通知限流。"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from pulsewatch.core.exceptions import RateLimitedError, ValidationError
from pulsewatch.core.expiring_store import MemoryExpiringStore, RedisExpiringStore
from pulsewatch.schemas.notification import ChannelResult, NotificationEvent
from pulsewatch.schemas.probe import ConsensusVerdict
from pulsewatch.services.notifier import (
    configured_channels,
    dispatch,
    dispatch_test,
    down_event,
    make_test_event,
    up_event,
)


def _make_target(**kwargs):
    fields = dict(id=7, name="Shop", url="https://shop.example.com", alert_email=None, slack_webhook_url=None,
                  discord_webhook_url=None, alert_sms=None, webhook_url=None)
    fields.update(kwargs)
    return SimpleNamespace(**fields)


def _ok():
    return AsyncMock(return_value=ChannelResult(success=True))


EVENT = NotificationEvent(kind="down", target_name="Shop", url="https://shop.example.com", error="HTTP 500")


class TestDispatch:
    @pytest.mark.asyncio
    async def test_failing_channel_isolated(self):
        target = _make_target(alert_email="ops@example.com", slack_webhook_url="https://hooks.slack.com/a",
                              webhook_url="https://hooks.example.com/pw")
        senders = {
            "email": _ok(),
            "slack": AsyncMock(side_effect=RuntimeError("slack exploded")),
            "webhook": _ok(),
        }
        result = await dispatch(target, EVENT, senders=senders)

        assert result.overall_success is True
        assert set(result.per_channel) == {"email", "slack", "webhook"}
        assert result.per_channel["email"].success is True
        assert result.per_channel["webhook"].success is True
        assert result.per_channel["slack"].success is False
        assert "slack exploded" in result.per_channel["slack"].error
        senders["email"].assert_awaited_once_with("ops@example.com", EVENT)

    @pytest.mark.asyncio
    async def test_no_channels_configured(self):
        result = await dispatch(_make_target(), EVENT, senders={"email": _ok()})
        assert result.overall_success is False
        assert result.per_channel == {}

    @pytest.mark.asyncio
    async def test_all_channels_fail(self):
        target = _make_target(slack_webhook_url="https://hooks.slack.com/a")
        senders = {"slack": AsyncMock(return_value=ChannelResult(success=False, error="HTTP 404: no_team"))}
        result = await dispatch(target, EVENT, senders=senders)
        assert result.overall_success is False
        assert result.per_channel["slack"].error == "HTTP 404: no_team"

    @pytest.mark.asyncio
    async def test_slow_channel_times_out(self):
        async def hang(destination, event):
            await asyncio.sleep(30)
            return ChannelResult(success=True)

        target = _make_target(discord_webhook_url="https://discord.com/api/webhooks/1",
                              alert_sms="+15550100")
        result = await dispatch(target, EVENT, senders={"discord": hang, "sms": _ok()}, timeout=0.1)
        assert result.overall_success is True
        assert result.per_channel["discord"].success is False
        assert "Timed out" in result.per_channel["discord"].error

    @pytest.mark.asyncio
    async def test_channel_filter(self):
        target = _make_target(alert_email="ops@example.com", webhook_url="https://hooks.example.com/pw")
        senders = {"email": _ok(), "webhook": _ok()}
        result = await dispatch(target, EVENT, channels=["webhook"], senders=senders)
        assert list(result.per_channel) == ["webhook"]
        senders["email"].assert_not_awaited()

    def test_configured_channels(self):
        target = _make_target(alert_email="ops@example.com", alert_sms="")
        assert configured_channels(target) == {"email": "ops@example.com"}


class TestEvents:
    def test_down_event(self):
        verdict = ConsensusVerdict(target_id=7, status="down", observed_at="2026-03-01T00:00:00Z",
                                   status_code=502, error="HTTP 502: Bad Gateway")
        event = down_event(_make_target(), verdict)
        assert event.kind == "down"
        assert event.error == "HTTP 502: Bad Gateway"

    def test_up_event_downtime(self):
        verdict = ConsensusVerdict(target_id=7, status="up", observed_at="2026-03-01T00:00:00Z",
                                   response_time_ms=210)
        assert up_event(_make_target(), verdict, 7).downtime == "7 minutes"
        assert up_event(_make_target(), verdict, None).downtime is None

    def test_test_event(self):
        event = make_test_event(_make_target())
        assert event.is_test is True
        assert event.response_time_ms == 250


class TestDispatchTest:
    @pytest.mark.asyncio
    async def test_sends_only_enabled_channels(self):
        target = _make_target(alert_email="ops@example.com", slack_webhook_url="https://hooks.slack.com/a")
        senders = {"email": _ok(), "slack": _ok()}
        result = await dispatch_test(target, {"email": False, "slack": True}, "10.0.0.1",
                                     store=MemoryExpiringStore(), senders=senders)
        assert list(result.per_channel) == ["slack"]
        event = senders["slack"].await_args.args[1]
        assert event.kind == "test"

    @pytest.mark.asyncio
    async def test_nothing_enabled(self):
        with pytest.raises(ValidationError):
            await dispatch_test(_make_target(), {"email": False}, "10.0.0.1", store=MemoryExpiringStore())

    @pytest.mark.asyncio
    async def test_rate_limited_per_caller_and_target(self):
        store = MemoryExpiringStore()
        target = _make_target(alert_email="ops@example.com")
        senders = {"email": _ok()}
        await dispatch_test(target, {"email": True}, "10.0.0.1", store=store, senders=senders)

        with pytest.raises(RateLimitedError) as exc:
            await dispatch_test(target, {"email": True}, "10.0.0.1", store=store, senders=senders)
        assert exc.value.status_code == 429
        assert 59 <= exc.value.retry_after_minutes <= 60

        # 其他调用方和其他目标不受影响
        await dispatch_test(target, {"email": True}, "10.0.0.2", store=store, senders=senders)
        await dispatch_test(_make_target(id=8, alert_email="ops@example.com"), {"email": True}, "10.0.0.1",
                            store=store, senders=senders)
        assert senders["email"].await_count == 3

    @pytest.mark.asyncio
    async def test_cooldown_expires(self):
        now = [1000.0]
        store = MemoryExpiringStore(clock=lambda: now[0])
        target = _make_target(alert_email="ops@example.com")
        senders = {"email": _ok()}
        await dispatch_test(target, {"email": True}, "10.0.0.1", store=store, senders=senders)
        now[0] += 3601
        await dispatch_test(target, {"email": True}, "10.0.0.1", store=store, senders=senders)
        assert senders["email"].await_count == 2


class SlowRedis:
    """每次调用都先让出事件循环，模拟网络往返。"""

    def __init__(self, inner):
        self._inner = inner

    async def get(self, key):
        await asyncio.sleep(0)
        return await self._inner.get(key)

    async def set(self, key, value, **kwargs):
        await asyncio.sleep(0)
        return await self._inner.set(key, value, **kwargs)

    async def delete(self, key):
        await asyncio.sleep(0)
        return await self._inner.delete(key)


class TestConcurrentTestNotifications:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("backend", ["memory", "redis"])
    async def test_only_one_concurrent_request_is_sent(self, backend, fake_redis):
        store = MemoryExpiringStore() if backend == "memory" else RedisExpiringStore(SlowRedis(fake_redis))
        target = _make_target(alert_email="ops@example.com")
        senders = {"email": _ok()}

        results = await asyncio.gather(*(
            dispatch_test(target, {"email": True}, "10.0.0.1", store=store, senders=senders)
            for _ in range(5)
        ), return_exceptions=True)

        assert senders["email"].await_count == 1
        assert sum(1 for r in results if isinstance(r, RateLimitedError)) == 4
        assert all(r.retry_after_minutes == 60 for r in results if isinstance(r, RateLimitedError))

    @pytest.mark.asyncio
    async def test_redis_gate_uses_nx_with_ttl(self, fake_redis):
        store = RedisExpiringStore(fake_redis)
        assert await store.set_if_absent("k", "1", 3600) is True
        assert await store.set_if_absent("k", "2", 3600) is False
        assert await store.get("k") == "1"
        assert fake_redis.ttls["pulsewatch:k"] == 3600
