"""
网络诊断查询模块。

DNS 解析、路由追踪、HTTP 分段耗时、TLS 证书与 IP 地理信息五类查询。
每个查询都自带超时，失败时返回 status="failed" 的结果而不是抛出异常。
"""
import asyncio
import logging
import re
import ssl
import time
from datetime import datetime, timezone

import dns.resolver
import httpx

from pulsewatch.core.config import settings
from pulsewatch.core.expiring_store import ExpiringStore
from pulsewatch.schemas.diagnostics import (
    DnsResult,
    GeoResult,
    HttpTimingResult,
    PathTraceResult,
    TlsResult,
    TraceHop,
)

logger = logging.getLogger(__name__)

LOOKUP_TIMEOUT = 10.0
MAX_HOPS = 30

# DoH 应答中的记录类型编号
DNS_TYPE_A = 1
DNS_TYPE_CNAME = 5

# ASN 组织名关键字 → CDN 名称
CDN_SIGNATURES = {
    "cloudflare": "Cloudflare",
    "amazon": "Amazon CloudFront",
    "fastly": "Fastly",
    "akamai": "Akamai",
    "google": "Google Cloud CDN",
}


def _error_text(exc: BaseException) -> str:
    return (str(exc) or type(exc).__name__)[:500]


# ── DNS ─────────────────────────────────────────────────────────────

def _resolve_records_sync(host: str, record_type: str, timeout: float) -> list[str]:
    r = dns.resolver.Resolver(configure=True)
    r.lifetime = timeout
    try:
        answer = r.resolve(host, record_type)
    except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
        return []
    return [str(rr).strip().strip('"') for rr in answer]


async def dns_lookup(host: str, timeout: float = LOOKUP_TIMEOUT) -> DnsResult:
    """通过 DNS-over-HTTPS 解析 A/CNAME，再用本地解析器补充 MX/TXT。"""
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(settings.dns_over_https_url, params={"name": host, "type": "A"},
                                    headers={"Accept": "application/dns-json"})
        resp.raise_for_status()
        data = resp.json()
    except Exception as e:
        return DnsResult(resolution_time_ms=round((time.monotonic() - start) * 1000, 1), error=_error_text(e))
    elapsed = round((time.monotonic() - start) * 1000, 1)

    if data.get("Status", 0) != 0:
        return DnsResult(resolution_time_ms=elapsed, error=f"DNS query failed with status {data.get('Status')}")

    answers = data.get("Answer") or []
    ips = [a["data"] for a in answers if a.get("type") == DNS_TYPE_A]
    cnames = [a["data"].rstrip(".") for a in answers if a.get("type") == DNS_TYPE_CNAME]
    result = DnsResult(status="success", resolved_ips=ips, cname=cnames, resolution_time_ms=elapsed)
    if not ips:
        result.status = "failed"
        result.error = "No A records found"

    for record_type, field in (("MX", "mx"), ("TXT", "txt")):
        try:
            records = await asyncio.to_thread(_resolve_records_sync, host, record_type, timeout)
        except Exception as e:
            logger.debug("%s lookup for %s failed: %s", record_type, host, e)
            continue
        setattr(result, field, records)
    return result


# ── 路由追踪 ─────────────────────────────────────────────────────────

_HOP_LINE = re.compile(r"^\s*(\d+)\s+(.*)$")
_RTT = re.compile(r"([\d.]+)\s*ms")
_IP = re.compile(r"\b(\d{1,3}(?:\.\d{1,3}){3})\b")


def parse_traceroute(output: str) -> tuple[list[TraceHop], float]:
    """解析 traceroute -n 输出，返回逐跳结果和超时探测包占比（百分比）。"""
    hops = []
    probes = 0
    lost = 0
    for line in output.splitlines():
        m = _HOP_LINE.match(line)
        if not m:
            continue
        rest = m.group(2)
        stars = rest.count("*")
        rtts = [float(x) for x in _RTT.findall(rest)]
        ip = _IP.search(rest)
        probes += stars + len(rtts)
        lost += stars
        hops.append(TraceHop(
            hop=int(m.group(1)),
            ip=ip.group(1) if ip else None,
            rtt_ms=rtts,
            timeout=not rtts,
        ))
    loss = round(lost * 100 / probes, 1) if probes else 0.0
    return hops, loss


async def trace_path(host: str, timeout: float | None = None) -> PathTraceResult:
    """调用系统 traceroute，超时后终止子进程。"""
    timeout = timeout if timeout is not None else settings.traceroute_timeout
    try:
        proc = await asyncio.create_subprocess_exec(
            "traceroute", "-n", "-m", str(MAX_HOPS), "-w", "2", host,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return PathTraceResult(error=f"traceroute unavailable: {_error_text(e)}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        return PathTraceResult(error=f"traceroute timed out after {timeout:g}s")
    finally:
        # 超时或任务被取消时子进程仍在运行
        if proc.returncode is None:
            proc.kill()
            await proc.wait()

    hops, loss = parse_traceroute(stdout.decode(errors="replace"))
    if not hops:
        return PathTraceResult(error=stderr.decode(errors="replace").strip()[:500] or "No hops recorded")
    return PathTraceResult(status="success", hops=hops, total_hops=len(hops), packet_loss=loss)


# ── HTTP 分段耗时 ────────────────────────────────────────────────────

async def http_timing(url: str, timeout: float = LOOKUP_TIMEOUT) -> HttpTimingResult:
    """借助 httpx 的 trace 扩展记录 TCP 连接、TLS 握手与首字节耗时。"""
    marks: dict[str, float] = {}

    async def trace(event_name: str, info: dict) -> None:
        marks[event_name] = time.monotonic()

    def span(started: str, complete: str) -> float | None:
        if started in marks and complete in marks:
            return round((marks[complete] - marks[started]) * 1000, 1)
        return None

    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
            resp = await client.get(url, extensions={"trace": trace},
                                    headers={"User-Agent": f"{settings.user_agent_product} Diagnostics"})
    except Exception as e:
        return HttpTimingResult(total_ms=round((time.monotonic() - start) * 1000, 1), error=_error_text(e))

    headers_done = marks.get("http11.receive_response_headers.complete") or marks.get(
        "http2.receive_response_headers.complete")
    return HttpTimingResult(
        status="success",
        status_code=resp.status_code,
        connect_ms=span("connection.connect_tcp.started", "connection.connect_tcp.complete"),
        tls_ms=span("connection.start_tls.started", "connection.start_tls.complete"),
        first_byte_ms=round((headers_done - start) * 1000, 1) if headers_done else None,
        total_ms=round((time.monotonic() - start) * 1000, 1),
    )


# ── TLS 证书 ────────────────────────────────────────────────────────

def _cert_time(value: str | None) -> datetime | None:
    # ssl.getpeercert() 的格式如 "Feb  6 12:00:00 2026 GMT"
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _name_field(name: tuple, key: str) -> str | None:
    for rdn in name or ():
        for k, v in rdn:
            if k == key:
                return v
    return None


def warning_level(days_remaining: int | None) -> str:
    if days_remaining is None:
        return "unknown"
    if days_remaining < 0:
        return "expired"
    if days_remaining <= 7:
        return "critical"
    if days_remaining <= 30:
        return "warning"
    return "ok"


def tls_from_peercert(cert: dict, protocol: str | None = None, cipher: str | None = None,
                      now: datetime | None = None) -> TlsResult:
    now = now or datetime.now(timezone.utc)
    valid_from = _cert_time(cert.get("notBefore"))
    valid_to = _cert_time(cert.get("notAfter"))
    days = (valid_to - now).days if valid_to else None
    issuer = _name_field(cert.get("issuer"), "organizationName") or _name_field(cert.get("issuer"), "commonName")
    return TlsResult(
        status="success",
        valid=bool(valid_from and valid_to and valid_from <= now <= valid_to),
        issuer=issuer,
        subject=_name_field(cert.get("subject"), "commonName"),
        valid_from=valid_from,
        valid_to=valid_to,
        days_remaining=days,
        san=[v for k, v in cert.get("subjectAltName", ()) if k == "DNS"],
        protocol=protocol,
        cipher=cipher,
        warning_level=warning_level(days),
    )


async def tls_inspect(host: str, port: int = 443, timeout: float = LOOKUP_TIMEOUT,
                      cache: ExpiringStore | None = None) -> TlsResult:
    """建立 TLS 连接读取证书信息；传入 cache 时结果按主机缓存。"""
    key = f"tls:{host}:{port}"
    if cache is not None:
        cached = await cache.get(key)
        if cached is not None:
            return TlsResult.model_validate_json(cached)

    ctx = ssl.create_default_context()
    writer = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=ctx, server_hostname=host),
            timeout=timeout,
        )
        sslobj = writer.get_extra_info("ssl_object")
        cert = sslobj.getpeercert() if sslobj else {}
        cipher = sslobj.cipher() if sslobj else None
        result = tls_from_peercert(cert or {}, protocol=sslobj.version() if sslobj else None,
                                   cipher=cipher[0] if cipher else None)
    except Exception as e:
        return TlsResult(error=_error_text(e))
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

    if cache is not None:
        await cache.set(key, result.model_dump_json(), settings.tls_cache_ttl)
    return result


# ── 地理信息 ────────────────────────────────────────────────────────

def detect_cdn(org: str | None) -> str | None:
    lowered = (org or "").lower()
    for keyword, name in CDN_SIGNATURES.items():
        if keyword in lowered:
            return name
    return None


async def geo_lookup(ip: str, timeout: float = LOOKUP_TIMEOUT) -> GeoResult:
    """查询 IP 的国家、城市、ASN 与组织名，并据组织名识别 CDN。"""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(settings.geo_lookup_url.format(ip=ip),
                                    headers={"User-Agent": settings.user_agent_product})
        resp.raise_for_status()
        data = resp.json()
    except Exception as e:
        return GeoResult(ip=ip, error=_error_text(e))

    if data.get("error"):
        return GeoResult(ip=ip, error=str(data.get("reason") or "Geo lookup failed"))
    org = data.get("org")
    return GeoResult(
        status="success",
        ip=ip,
        country=data.get("country_name"),
        region=data.get("region"),
        city=data.get("city"),
        asn=data.get("asn"),
        org=org,
        cdn=detect_cdn(org),
    )
