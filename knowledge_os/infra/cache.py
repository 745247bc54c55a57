from __future__ import annotations

"""
缓存抽象（最小版本）。

当前提供：
- `Cache` Protocol：定义 get/set 接口（带 TTL）
- `InMemoryTTLCache`：进程内缓存，读取时惰性淘汰过期项

用途：
- semantic search 结果缓存（同一用户同一查询 60s 内不再打 embedding API）
"""

from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from knowledge_os.infra.guardrails import Clock
from knowledge_os.infra.guardrails import system_clock_ms

V = TypeVar("V")


class Cache(Protocol[V]):
    """缓存接口协议（用于依赖倒置，方便替换 Redis/Memory）。"""

    def get(self, key: str) -> V | None: ...

    def set(self, key: str, value: V, ttl_ms: int) -> None: ...


@dataclass
class InMemoryTTLCache(Generic[V]):
    """内存缓存：过期项在下一次 get 时删除，没有后台清理。"""

    clock: Clock = system_clock_ms
    store: MutableMapping[str, tuple[int, V]] = field(default_factory=dict)

    def get(self, key: str) -> V | None:
        entry = self.store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    def set(self, key: str, value: V, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be > 0")
        self.store[key] = (self.clock() + ttl_ms, value)
