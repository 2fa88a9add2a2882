"""
目标级互斥锁 (Per-target Locks)

同一目标的共识判定、心跳超时判定与心跳上报在锁内串行执行，
保证状态转换按顺序落库。仅适用于单进程部署。
"""
import asyncio


class TargetLocks:
    """按目标 ID 懒创建 asyncio.Lock。"""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}

    def get(self, target_id: int) -> asyncio.Lock:
        lock = self._locks.get(target_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[target_id] = lock
        return lock

    def discard(self, target_id: int) -> None:
        """目标已删除时移除其锁；锁仍被持有时保留。"""
        lock = self._locks.get(target_id)
        if lock is not None and not lock.locked():
            del self._locks[target_id]

    def __len__(self) -> int:
        return len(self._locks)


# 全局锁表
target_locks = TargetLocks()
