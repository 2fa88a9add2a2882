"""
PulseWatch 测试基础配置

提供 SQLite in-memory 异步数据库、mock Redis、FastAPI 异步测试客户端等通用 fixture。
所有测试使用隔离的 SQLite 数据库，不依赖外部 PostgreSQL/Redis。
"""
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# 必须在导入应用之前设置环境变量，避免真实连接
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_HOST"] = "localhost"
os.environ["EXPIRING_STORE_BACKEND"] = "memory"
os.environ["SWEEP_BATCH_PAUSE"] = "0"
os.environ["SMTP_HOST"] = ""

import pulsewatch.core.expiring_store as expiring_store_module
import pulsewatch.core.redis as redis_module
from pulsewatch.core.database import Base, get_db
from pulsewatch.core.redis import get_redis
from pulsewatch.models.target import Target, UptimeCheck


# ── SQLite 异步引擎 ──────────────────────────────────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Mock Redis ────────────────────────────────────────────────────────
class FakeRedis:
    """内存级 Redis 模拟，支持基本 get/set/delete 操作。"""
    def __init__(self):
        self._store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False, **kwargs) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for k in keys:
            self._store.pop(k, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """每个测试前创建所有表，测试后清空。"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def reset_memory_store():
    """每个测试使用全新的进程内过期键存储（限流表、TLS 缓存）。"""
    expiring_store_module._memory_store = None
    yield
    expiring_store_module._memory_store = None


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """提供一个干净的数据库会话。"""
    async with TestingSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def other_session() -> AsyncGenerator[AsyncSession, None]:
    """第二个独立会话，模拟并发的另一轮扫描。"""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, fake_redis: FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    """提供配置好依赖覆盖的异步 HTTP 测试客户端。"""
    from pulsewatch.main import app

    async def override_get_db():
        yield db_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    original_redis_client = redis_module.redis_client
    redis_module.redis_client = fake_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    redis_module.redis_client = original_redis_client


# ── 数据构造 ──────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def make_target(db_session: AsyncSession):
    """创建目标的工厂 fixture。"""
    async def _make(**kwargs) -> Target:
        fields = {"name": "Example", "kind": "http", "url": "https://example.com", "status": "unknown"}
        fields.update(kwargs)
        target = Target(**fields)
        db_session.add(target)
        await db_session.commit()
        await db_session.refresh(target)
        return target
    return _make


@pytest_asyncio.fixture
async def add_checks(db_session: AsyncSession):
    """为目标批量写入探测记录：statuses 依次间隔 step 分钟，从 start 开始。"""
    async def _add(target_id: int, statuses: list[str], start: datetime, step: timedelta = timedelta(minutes=1)):
        for i, status in enumerate(statuses):
            db_session.add(UptimeCheck(
                target_id=target_id,
                location="us-east",
                status=status,
                response_time_ms=100.0 if status == "up" else None,
                checked_at=start + step * i,
            ))
        await db_session.commit()
    return _add
