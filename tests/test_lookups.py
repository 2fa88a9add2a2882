"""网络诊断查询测试（mock httpx、DNS 解析与 TLS）。"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from pulsewatch.core.expiring_store import MemoryExpiringStore
from pulsewatch.schemas.diagnostics import TlsResult
from pulsewatch.services.lookups import (
    detect_cdn,
    dns_lookup,
    geo_lookup,
    parse_traceroute,
    trace_path,
    tls_from_peercert,
    tls_inspect,
    warning_level,
)

TRACEROUTE_OUTPUT = """traceroute to example.com (93.184.216.34), 30 hops max, 60 byte packets
 1  192.168.1.1  0.512 ms  0.430 ms  0.401 ms
 2  * * *
 3  10.20.0.1  5.101 ms *  5.300 ms
 4  93.184.216.34  12.000 ms  11.800 ms  11.900 ms
"""

PEER_CERT = {
    "subject": ((("commonName", "example.com"),),),
    "issuer": ((("countryName", "US"),), (("organizationName", "Let's Encrypt"),), (("commonName", "R3"),)),
    "notBefore": "Jan  1 00:00:00 2026 GMT",
    "notAfter": "Apr  1 00:00:00 2026 GMT",
    "subjectAltName": (("DNS", "example.com"), ("DNS", "www.example.com")),
}


def _mock_get(mock_cls, json_data=None, side_effect=None):
    client = AsyncMock()
    if side_effect is not None:
        client.get.side_effect = side_effect
    else:
        resp = MagicMock(status_code=200)
        resp.json.return_value = json_data
        client.get.return_value = resp
    mock_cls.return_value.__aenter__ = AsyncMock(return_value=client)
    mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return client


class TestTraceroute:
    def test_parse_hops_and_loss(self):
        hops, loss = parse_traceroute(TRACEROUTE_OUTPUT)
        assert [h.hop for h in hops] == [1, 2, 3, 4]
        assert hops[0].ip == "192.168.1.1"
        assert hops[0].rtt_ms == [0.512, 0.43, 0.401]
        assert hops[1].timeout is True
        assert hops[1].ip is None
        assert hops[2].rtt_ms == [5.101, 5.3]
        # 12 个探测包中 4 个超时
        assert loss == pytest.approx(33.3)

    def test_empty_output(self):
        assert parse_traceroute("") == ([], 0.0)


class TestTls:
    def test_from_peercert(self):
        now = datetime(2026, 3, 20, tzinfo=timezone.utc)
        result = tls_from_peercert(PEER_CERT, protocol="TLSv1.3", cipher="TLS_AES_256_GCM_SHA384", now=now)
        assert result.status == "success"
        assert result.valid is True
        assert result.issuer == "Let's Encrypt"
        assert result.subject == "example.com"
        assert result.san == ["example.com", "www.example.com"]
        assert result.days_remaining == 12
        assert result.warning_level == "warning"

    def test_expired_certificate(self):
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        result = tls_from_peercert(PEER_CERT, now=now)
        assert result.valid is False
        assert result.warning_level == "expired"

    @pytest.mark.parametrize("days,level", [(None, "unknown"), (-1, "expired"), (0, "critical"), (7, "critical"),
                                            (8, "warning"), (30, "warning"), (31, "ok")])
    def test_warning_level(self, days, level):
        assert warning_level(days) == level

    @pytest.mark.asyncio
    async def test_inspect_served_from_cache(self):
        cache = MemoryExpiringStore()
        cached = TlsResult(status="success", valid=True, subject="example.com", warning_level="ok")
        await cache.set("tls:example.com:443", cached.model_dump_json(), 3600)
        with patch("pulsewatch.services.lookups.asyncio.open_connection", new_callable=AsyncMock) as mock_open:
            result = await tls_inspect("example.com", 443, cache=cache)
        mock_open.assert_not_awaited()
        assert result.subject == "example.com"

    @pytest.mark.asyncio
    async def test_inspect_failure_not_cached(self):
        cache = MemoryExpiringStore()
        with patch("pulsewatch.services.lookups.asyncio.open_connection", new_callable=AsyncMock,
                   side_effect=ConnectionRefusedError("refused")):
            result = await tls_inspect("example.com", 443, timeout=1, cache=cache)
        assert result.status == "failed"
        assert "refused" in result.error
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_inspect_reads_certificate_and_caches(self):
        cache = MemoryExpiringStore()
        sslobj = MagicMock()
        sslobj.getpeercert.return_value = PEER_CERT
        sslobj.cipher.return_value = ("TLS_AES_128_GCM_SHA256", "TLSv1.3", 128)
        sslobj.version.return_value = "TLSv1.3"
        writer = MagicMock()
        writer.get_extra_info.return_value = sslobj
        writer.wait_closed = AsyncMock()
        with patch("pulsewatch.services.lookups.asyncio.open_connection", new_callable=AsyncMock,
                   return_value=(MagicMock(), writer)):
            result = await tls_inspect("example.com", 443, timeout=1, cache=cache)
        assert result.status == "success"
        assert result.protocol == "TLSv1.3"
        assert result.cipher == "TLS_AES_128_GCM_SHA256"
        assert await cache.get("tls:example.com:443") is not None


class TestGeo:
    def test_detect_cdn(self):
        assert detect_cdn("CLOUDFLARENET") == "Cloudflare"
        assert detect_cdn("AMAZON-02") == "Amazon CloudFront"
        assert detect_cdn("Hetzner Online GmbH") is None
        assert detect_cdn(None) is None

    @pytest.mark.asyncio
    async def test_geo_lookup(self):
        data = {"country_name": "United States", "region": "California", "city": "San Francisco",
                "asn": "AS13335", "org": "CLOUDFLARENET"}
        with patch("pulsewatch.services.lookups.httpx.AsyncClient") as mock_cls:
            _mock_get(mock_cls, json_data=data)
            result = await geo_lookup("104.16.1.1")
        assert result.status == "success"
        assert result.country == "United States"
        assert result.cdn == "Cloudflare"

    @pytest.mark.asyncio
    async def test_geo_lookup_error_payload(self):
        with patch("pulsewatch.services.lookups.httpx.AsyncClient") as mock_cls:
            _mock_get(mock_cls, json_data={"error": True, "reason": "RateLimited"})
            result = await geo_lookup("104.16.1.1")
        assert result.status == "failed"
        assert result.error == "RateLimited"


class TestDns:
    @pytest.mark.asyncio
    async def test_doh_answer(self):
        data = {"Status": 0, "Answer": [
            {"name": "www.example.com.", "type": 5, "data": "example.com."},
            {"name": "example.com.", "type": 1, "data": "93.184.216.34"},
        ]}
        with patch("pulsewatch.services.lookups.httpx.AsyncClient") as mock_cls, \
                patch("pulsewatch.services.lookups._resolve_records_sync", return_value=["10 mail.example.com."]):
            _mock_get(mock_cls, json_data=data)
            result = await dns_lookup("www.example.com")
        assert result.status == "success"
        assert result.resolved_ips == ["93.184.216.34"]
        assert result.cname == ["example.com"]
        assert result.mx == ["10 mail.example.com."]

    @pytest.mark.asyncio
    async def test_nxdomain_status(self):
        with patch("pulsewatch.services.lookups.httpx.AsyncClient") as mock_cls:
            _mock_get(mock_cls, json_data={"Status": 3})
            result = await dns_lookup("nope.invalid")
        assert result.status == "failed"
        assert "status 3" in result.error

    @pytest.mark.asyncio
    async def test_doh_unreachable(self):
        with patch("pulsewatch.services.lookups.httpx.AsyncClient") as mock_cls:
            _mock_get(mock_cls, side_effect=httpx.ConnectError("no route"))
            result = await dns_lookup("example.com")
        assert result.status == "failed"
        assert "no route" in result.error


def _hanging_process():
    """communicate() 永不返回、kill() 后才退出的子进程替身。"""
    proc = MagicMock()
    proc.returncode = None

    async def communicate():
        await asyncio.sleep(30)

    def kill():
        proc.returncode = -9

    proc.communicate = communicate
    proc.kill = MagicMock(side_effect=kill)
    proc.wait = AsyncMock(return_value=-9)
    return proc


class TestTracePath:
    @pytest.mark.asyncio
    async def test_success(self):
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(TRACEROUTE_OUTPUT.encode(), b""))
        with patch("pulsewatch.services.lookups.asyncio.create_subprocess_exec",
                   new_callable=AsyncMock, return_value=proc):
            result = await trace_path("example.com", timeout=5)
        assert result.status == "success"
        assert result.total_hops == 4
        proc.kill.assert_not_called()

    @pytest.mark.asyncio
    async def test_deadline_kills_process(self):
        proc = _hanging_process()
        with patch("pulsewatch.services.lookups.asyncio.create_subprocess_exec",
                   new_callable=AsyncMock, return_value=proc):
            result = await trace_path("example.com", timeout=0.05)
        assert result.status == "failed"
        assert "timed out" in result.error
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self):
        proc = _hanging_process()
        with patch("pulsewatch.services.lookups.asyncio.create_subprocess_exec",
                   new_callable=AsyncMock, return_value=proc):
            task = asyncio.create_task(trace_path("example.com", timeout=30))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        with patch("pulsewatch.services.lookups.asyncio.create_subprocess_exec",
                   new_callable=AsyncMock, side_effect=FileNotFoundError("traceroute")):
            result = await trace_path("example.com", timeout=5)
        assert result.status == "failed"
        assert result.error.startswith("traceroute unavailable")
