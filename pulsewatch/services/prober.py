"""
探测执行服务。

针对单个目标、单个地域执行一次探测，返回不可变的 ProbeOutcome；探测失败是数据而不是异常。
按目标类型选择探测策略（HTTP / TCP 端口 / 可达性），心跳目标不做主动探测。
"""
import asyncio
import base64
import logging
import time
from urllib.parse import urlparse

import httpx

from pulsewatch.core.clock import utcnow
from pulsewatch.core.config import settings
from pulsewatch.schemas.probe import ProbeOutcome

logger = logging.getLogger(__name__)

# 错误信息最大长度
MAX_ERROR_LENGTH = 500

LOCATION_LABELS = {
    "us-east": "US-East",
    "us-west": "US-West",
    "europe": "Europe",
    "asia-pacific": "Asia-Pacific",
    "south-america": "South-America",
}


def location_label(location: str) -> str:
    return LOCATION_LABELS.get(location) or "-".join(p.capitalize() for p in location.split("-"))


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


def _outcome(target, location: str, status: str, start: float, status_code: int | None = None,
             error: str | None = None) -> ProbeOutcome:
    return ProbeOutcome(
        target_id=target.id,
        location=location,
        status=status,
        response_time_ms=_elapsed_ms(start),
        status_code=status_code,
        error=error[:MAX_ERROR_LENGTH] if error else None,
        checked_at=utcnow(),
    )


def target_host(target) -> str | None:
    """目标主机名：优先 host 字段，否则取 URL 中的主机名。"""
    if target.host:
        return target.host
    if target.url:
        url = target.url if "://" in target.url else f"http://{target.url}"
        return urlparse(url).hostname
    return None


class ProbeStrategy:
    """探测策略基类，子类实现 run()。"""
    kind = ""

    async def run(self, target, location: str, timeout: float) -> ProbeOutcome:
        raise NotImplementedError


class HttpProbe(ProbeStrategy):
    """HTTP 探测：2xx/3xx 为 up（跟随重定向），其余状态码为 down。"""
    kind = "http"

    def build_headers(self, target, location: str) -> dict[str, str]:
        headers = {
            "User-Agent": f"{settings.user_agent_product} ({location_label(location)})",
            "X-PulseWatch-Location": location,
        }
        # 目标自定义头可以覆盖默认 User-Agent
        headers.update(target.request_headers or {})
        mode = target.auth_mode or "none"
        if mode == "basic" and target.auth_username:
            raw = f"{target.auth_username}:{target.auth_password or ''}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"
        elif mode == "bearer" and target.auth_token:
            headers["Authorization"] = f"Bearer {target.auth_token}"
        elif mode == "header" and target.auth_token:
            headers["X-API-Key"] = target.auth_token
        if target.request_body and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"
        return headers

    async def run(self, target, location: str, timeout: float) -> ProbeOutcome:
        if not target.url:
            return _outcome(target, location, "error", time.monotonic(), error="No URL configured")
        headers = self.build_headers(target, location)
        method = (target.request_method or "GET").upper()
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                resp = await client.request(method, target.url, headers=headers, content=target.request_body)
        except httpx.TimeoutException:
            return _outcome(target, location, "timeout", start,
                            error=f"Request timeout after {int(timeout * 1000)}ms")
        except httpx.TransportError as e:
            # 连接拒绝、DNS 解析失败、TLS 握手失败等
            return _outcome(target, location, "down", start, error=str(e) or type(e).__name__)
        except Exception as e:
            return _outcome(target, location, "error", start, error=str(e) or type(e).__name__)

        if 200 <= resp.status_code < 400:
            return _outcome(target, location, "up", start, status_code=resp.status_code)
        return _outcome(target, location, "down", start, status_code=resp.status_code,
                        error=f"HTTP {resp.status_code}: {resp.reason_phrase}")


class TcpPortProbe(ProbeStrategy):
    """TCP 端口探测：能建立连接即为 up。"""
    kind = "tcp-port"

    async def run(self, target, location: str, timeout: float) -> ProbeOutcome:
        host = target_host(target)
        port = target.port or 80
        start = time.monotonic()
        if not host:
            return _outcome(target, location, "error", start, error="No host configured")
        writer = None
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
            return _outcome(target, location, "up", start)
        except asyncio.TimeoutError:
            return _outcome(target, location, "timeout", start, error=f"Connection timeout after {int(timeout * 1000)}ms")
        except OSError as e:
            # 连接被拒绝、主机不可达等
            return _outcome(target, location, "down", start, error=f"Port {port} unreachable: {e}")
        except Exception as e:
            return _outcome(target, location, "error", start, error=str(e) or type(e).__name__)
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass


class ReachabilityProbe(ProbeStrategy):
    """可达性探测：不使用特权 ICMP，依次对 https / http 发 HEAD，任意响应即为 up。"""
    kind = "reachability"

    async def run(self, target, location: str, timeout: float) -> ProbeOutcome:
        host = target_host(target)
        start = time.monotonic()
        if not host:
            return _outcome(target, location, "error", start, error="No host configured")
        headers = {"User-Agent": f"{settings.user_agent_product} ({location_label(location)})"}
        last_error = "Host unreachable"
        timed_out = False
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
            for scheme in ("https", "http"):
                remaining = timeout - (time.monotonic() - start)
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    resp = await client.head(f"{scheme}://{host}", headers=headers, timeout=remaining)
                    return _outcome(target, location, "up", start, status_code=resp.status_code)
                except httpx.TimeoutException:
                    timed_out = True
                    last_error = f"Host unreachable within {int(timeout * 1000)}ms"
                except httpx.HTTPError as e:
                    last_error = f"Host unreachable: {e}"
        if timed_out:
            return _outcome(target, location, "timeout", start, error=last_error)
        return _outcome(target, location, "down", start, error=last_error)


class HeartbeatProbe(ProbeStrategy):
    """心跳目标由上报驱动，不做主动探测。"""
    kind = "heartbeat"

    async def run(self, target, location: str, timeout: float) -> ProbeOutcome:
        return _outcome(target, location, "error", time.monotonic(),
                        error="Heartbeat targets are not actively probed")


# 目标类型 → 探测策略
PROBE_STRATEGIES: dict[str, ProbeStrategy] = {
    s.kind: s for s in (HttpProbe(), TcpPortProbe(), ReachabilityProbe(), HeartbeatProbe())
}


async def probe(target, location: str, timeout: float | None = None) -> ProbeOutcome:
    """对目标执行一次探测，不会抛出异常。"""
    timeout = timeout if timeout is not None else settings.probe_timeout
    strategy = PROBE_STRATEGIES.get(target.kind)
    if strategy is None:
        return _outcome(target, location, "error", time.monotonic(), error=f"Unknown target kind: {target.kind}")
    try:
        return await strategy.run(target, location, timeout)
    except Exception as e:
        logger.exception("Probe strategy %s failed for target %s", strategy.kind, target.id)
        return _outcome(target, location, "error", time.monotonic(), error=str(e) or type(e).__name__)
