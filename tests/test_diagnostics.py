"""故障诊断采集测试：子探测独立成败、每个故障的地域上限、后台保存。"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from pulsewatch.core.expiring_store import MemoryExpiringStore
from pulsewatch.models.incident import IncidentDiagnostic
from pulsewatch.schemas.diagnostics import (
    DiagnosticBundle,
    DnsResult,
    GeoResult,
    HttpTimingResult,
    PathTraceResult,
    TlsResult,
)
from pulsewatch.services.diagnostics import DiagnosticsCollector, DiagnosticsScheduler

HTTPS_TARGET = SimpleNamespace(id=3, name="Site", kind="http", url="https://example.com/", host=None, port=None)


def _patch_lookups(**overrides):
    defaults = dict(
        dns_lookup=AsyncMock(return_value=DnsResult(status="success", resolved_ips=["93.184.216.34"])),
        trace_path=AsyncMock(return_value=PathTraceResult(status="success", total_hops=4)),
        geo_lookup=AsyncMock(return_value=GeoResult(status="success", ip="93.184.216.34")),
        http_timing=AsyncMock(return_value=HttpTimingResult(status="success", status_code=200)),
        tls_inspect=AsyncMock(return_value=TlsResult(status="success", valid=True)),
    )
    defaults.update(overrides)
    return patch.multiple("pulsewatch.services.diagnostics.lookups", **defaults), defaults


class TestCollector:
    @pytest.mark.asyncio
    async def test_collects_all_sections(self):
        patcher, mocks = _patch_lookups()
        with patcher:
            bundle = await DiagnosticsCollector(tls_cache=MemoryExpiringStore()).collect(10, HTTPS_TARGET, "europe")
        assert bundle.incident_id == 10
        assert bundle.location == "europe"
        assert bundle.dns.status == "success"
        assert bundle.path_trace.status == "success"
        assert bundle.http_timing.status == "success"
        assert bundle.tls.status == "success"
        mocks["geo_lookup"].assert_awaited_once_with("93.184.216.34")
        assert mocks["tls_inspect"].await_args.args[:2] == ("example.com", 443)

    @pytest.mark.asyncio
    async def test_failing_section_does_not_abort_others(self):
        patcher, _ = _patch_lookups(trace_path=AsyncMock(side_effect=RuntimeError("no traceroute")))
        with patcher:
            bundle = await DiagnosticsCollector(tls_cache=MemoryExpiringStore()).collect(10, HTTPS_TARGET, "europe")
        assert bundle.path_trace.status == "failed"
        assert bundle.path_trace.error == "no traceroute"
        assert bundle.dns.status == "success"
        assert bundle.tls.status == "success"

    @pytest.mark.asyncio
    async def test_unresolved_host_skips_geo(self):
        patcher, mocks = _patch_lookups(dns_lookup=AsyncMock(return_value=DnsResult(error="No A records found")))
        with patcher:
            bundle = await DiagnosticsCollector(tls_cache=MemoryExpiringStore()).collect(10, HTTPS_TARGET, "europe")
        assert bundle.geo.status == "failed"
        mocks["geo_lookup"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tcp_target_has_no_http_sections(self):
        target = SimpleNamespace(id=4, name="DB", kind="tcp-port", url=None, host="db.example.com", port=5432)
        patcher, mocks = _patch_lookups()
        with patcher:
            bundle = await DiagnosticsCollector().collect(11, target, "us-east")
        assert bundle.http_timing is None
        assert bundle.tls is None
        mocks["http_timing"].assert_not_awaited()


def _bundle(incident_id: int, location: str) -> DiagnosticBundle:
    return DiagnosticBundle(
        incident_id=incident_id, target_id=3, location=location,
        dns=DnsResult(status="success"), path_trace=PathTraceResult(error="blocked"),
        geo=GeoResult(), captured_at="2026-03-01T00:00:00Z",
    )


class TestScheduler:
    @pytest.mark.asyncio
    async def test_at_most_two_locations_per_incident(self, db_session):
        collector = AsyncMock()
        collector.collect.side_effect = lambda incident_id, target, location: _bundle(incident_id, location)
        scheduler = DiagnosticsScheduler(collector=collector, concurrency=1, timeout=5, per_incident=2)

        with patch("pulsewatch.services.diagnostics.async_session") as mock_session:
            mock_session.return_value.__aenter__ = AsyncMock(return_value=db_session)
            mock_session.return_value.__aexit__ = AsyncMock(return_value=False)
            scheduled = scheduler.schedule(10, HTTPS_TARGET, ["us-east", "europe", "asia-pacific", "us-west"])
            await scheduler.drain()

        assert scheduled == 2
        rows = (await db_session.execute(select(IncidentDiagnostic))).scalars().all()
        assert sorted(r.location for r in rows) == ["europe", "us-east"]
        assert rows[0].path_trace["status"] == "failed"

    @pytest.mark.asyncio
    async def test_collector_failure_is_logged_not_raised(self, db_session):
        collector = AsyncMock()
        collector.collect.side_effect = RuntimeError("collector crashed")
        scheduler = DiagnosticsScheduler(collector=collector, concurrency=1, timeout=5, per_incident=2)
        scheduler.schedule(10, HTTPS_TARGET, ["us-east"])
        await scheduler.drain()
        assert scheduler.pending == 0
        rows = (await db_session.execute(select(IncidentDiagnostic))).scalars().all()
        assert rows == []

    @pytest.mark.asyncio
    async def test_slow_collection_times_out(self):
        async def slow(incident_id, target, location):
            await asyncio.sleep(30)

        collector = AsyncMock()
        collector.collect.side_effect = slow
        scheduler = DiagnosticsScheduler(collector=collector, concurrency=1, timeout=0.1, per_incident=2)
        scheduler.schedule(10, HTTPS_TARGET, ["us-east"])
        await scheduler.drain()
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_schedule_returns_immediately(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(incident_id, target, location):
            started.set()
            await release.wait()
            return _bundle(incident_id, location)

        collector = AsyncMock()
        collector.collect.side_effect = blocking
        scheduler = DiagnosticsScheduler(collector=collector, concurrency=1, timeout=5, per_incident=2)
        scheduler.schedule(10, HTTPS_TARGET, ["us-east"])
        assert scheduler.pending == 1
        await started.wait()
        await scheduler.shutdown()
        assert scheduler.pending == 0
