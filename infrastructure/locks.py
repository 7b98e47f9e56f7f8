"""
按订单ID互斥的锁实现

- InMemoryOrderLock: 单进程（asyncio.Lock，按 key 引用计数，空闲即回收）
- RedisOrderLock: 多进程/多实例部署（redis-py asyncio Lock）
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis import asyncio as aioredis
from redis.exceptions import LockError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryOrderLock:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = self._locks[order_id] = asyncio.Lock()
        self._waiters[order_id] = self._waiters.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[order_id] -= 1
            if self._waiters[order_id] == 0:
                del self._waiters[order_id]
                del self._locks[order_id]

    def active_keys(self) -> int:
        return len(self._locks)


class RedisOrderLock:
    """
    分布式订单锁

    Args:
        client: redis.asyncio 客户端
        timeout: 锁自动过期时间（秒），防止持有者崩溃后死锁
        blocking_timeout: 获取锁的等待时间（秒）
    """

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        namespace: str = "bookshop",
        timeout: float = 30.0,
        blocking_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    def _key(self, order_id: str) -> str:
        return f"{self._namespace}:lock:order:{order_id}"

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock_key = self._key(order_id)
        lock = self._client.lock(
            lock_key,
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise TimeoutError(f"获取订单锁失败: {lock_key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # 锁已过期被他人获取；本次写入仍受版本号保护
                logger.error("order_lock_release_failed", lock_key=lock_key, error=str(e))


def build_order_lock(redis_url: Optional[str] = None):
    """根据配置选择锁实现：配置了 Redis 时使用分布式锁"""
    url = redis_url or settings.redis.url
    if not url:
        return InMemoryOrderLock()
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    return RedisOrderLock(
        client,
        namespace=settings.redis.namespace,
        timeout=settings.redis.lock_timeout,
        blocking_timeout=settings.redis.lock_blocking_timeout,
    )
