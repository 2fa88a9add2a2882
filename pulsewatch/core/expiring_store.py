"""
过期键存储 (Expiring Key Store)

测试通知限流表、TLS 证书结果缓存等"带 TTL 的键值"统一通过 ExpiringStore 注入，
默认使用进程内存实现（带惰性清理），多实例部署时可切换到 Redis 实现。

Rate-limit entries for test notifications and cached TLS lookups go through an injected
ExpiringStore. The default is an in-process implementation with lazy sweeping; a Redis
implementation is available for shared deployments.
"""
import logging
import time
from typing import Callable, Protocol

import redis.asyncio as redis

from pulsewatch.core.config import settings
from pulsewatch.core.redis import get_redis

logger = logging.getLogger(__name__)

# 内存实现每写入多少次执行一次过期清理
SWEEP_EVERY = 100


class ExpiringStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def delete(self, key: str) -> None: ...


class MemoryExpiringStore:
    """进程内存实现，过期键在读取时或周期性写入时清理。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}
        self._writes = 0

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)
        self._writes += 1
        if self._writes % SWEEP_EVERY == 0:
            self.sweep()

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """键不存在或已过期时写入并返回 True。检查与写入之间不让出事件循环。"""
        entry = self._data.get(key)
        if entry is not None and self._clock() < entry[1]:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def sweep(self) -> int:
        """删除所有已过期的键，返回删除数量。"""
        now = self._clock()
        expired = [k for k, (_, exp) in self._data.items() if now >= exp]
        for k in expired:
            del self._data[k]
        if expired:
            logger.debug("Expiring store swept %d keys", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisExpiringStore:
    """Redis 实现，TTL 由 Redis 负责。"""

    def __init__(self, client: redis.Redis, prefix: str = "pulsewatch:"):
        self._client = client
        self._prefix = prefix

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._prefix + key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(self._prefix + key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._client.set(self._prefix + key, value, nx=True, ex=ttl_seconds))

    async def delete(self, key: str) -> None:
        await self._client.delete(self._prefix + key)


_memory_store: MemoryExpiringStore | None = None


async def get_expiring_store() -> ExpiringStore:
    """按配置返回过期键存储实例；内存实现为进程内单例。"""
    global _memory_store
    if settings.expiring_store_backend == "redis":
        return RedisExpiringStore(await get_redis())
    if _memory_store is None:
        _memory_store = MemoryExpiringStore()
    return _memory_store
