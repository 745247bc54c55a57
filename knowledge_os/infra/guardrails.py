"""
AI 调用护栏（预算窗口 + 重复请求抑制）。

为什么需要这个模块：
- enrich / semantic search 每次都会打外部 LLM API，按字符计费
- 双击、重复提交很容易在几秒内触发多次相同调用
- 宁可拒绝，也不要失控（所有失败路径都不修改状态）

约束：
- 固定窗口计数（不是滑动日志），每个 key O(1) 内存；窗口边界处允许突发
- 状态只在当前进程内存中；多实例部署时限额只是近似值（已知限制）
- 清理是"顺手做"的：每次检查前扫一遍，没有后台线程
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

STALE_WINDOW_MS = 24 * 60 * 60 * 1000

Clock = Callable[[], int]


def system_clock_ms() -> int:
    return int(time.time() * 1000)


class GuardrailConfig(BaseModel):
    """单个 action 的阈值（由调用方提供，不落库）。"""

    window_ms: int = Field(gt=0)
    max_requests: int = Field(gt=0)
    max_chars_per_request: int = Field(ge=0)
    max_chars_per_window: int = Field(ge=0)

    model_config = {"frozen": True}


@dataclass
class BudgetWindow:
    window_start_ms: int
    request_count: int = 0
    char_count: int = 0


class GuardrailError(RuntimeError):
    """护栏拒绝的基类。`retry_after_ms` 为 None 表示重试也没用。"""

    kind = "guardrail"

    def __init__(self, action: str, message: str, retry_after_ms: int | None = None) -> None:
        super().__init__(message)
        self.action = action
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after_seconds(self) -> int | None:
        if self.retry_after_ms is None:
            return None
        return max(1, math.ceil(self.retry_after_ms / 1000))


class RequestTooLargeError(GuardrailError):
    kind = "request_too_large"


class RateLimitedError(GuardrailError):
    kind = "rate_limited"


class BudgetExceededError(GuardrailError):
    kind = "budget_exceeded"


class DuplicateInFlightError(GuardrailError):
    kind = "duplicate_in_flight"


class GuardrailStore:
    """
    进程内护栏状态（显式构造、可注入，便于测试）。

    - windows: (user_id, action) -> BudgetWindow
    - dedupe: (user_id, action, fingerprint) -> expires_at_ms
    - clock: 返回毫秒时间戳（测试里替换成假时钟）

    handler 可能跑在线程池里，所以"读-判断-写"整体放在一把锁里。
    """

    def __init__(self, clock: Clock = system_clock_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[tuple[str, str], BudgetWindow] = {}
        self._dedupe: dict[tuple[str, str, str], int] = {}

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._dedupe.clear()

    def get_window(self, user_id: str, action: str) -> BudgetWindow | None:
        """返回窗口快照（拷贝），只用于观测/测试。"""
        with self._lock:
            current = self._windows.get((user_id, action))
            if current is None:
                return None
            return BudgetWindow(
                window_start_ms=current.window_start_ms,
                request_count=current.request_count,
                char_count=current.char_count,
            )

    def get_lock_expiry(self, user_id: str, action: str, fingerprint: str) -> int | None:
        with self._lock:
            return self._dedupe.get((user_id, action, fingerprint))

    def check_and_consume(self, user_id: str, action: str, char_cost: int, config: GuardrailConfig) -> None:
        """
        预算检查：全部通过才扣减（all-or-nothing）。

        - 单次超限 -> RequestTooLargeError（最先判断，和窗口无关）
        - 窗口请求数已满 -> RateLimitedError
        - 窗口字符数会超 -> BudgetExceededError
        """
        if char_cost < 0:
            raise ValueError("char_cost must be >= 0")

        with self._lock:
            now = self._clock()
            self._cleanup_stale(now=now)

            if char_cost > config.max_chars_per_request:
                logger.warning(f"Guardrail rejected oversized {action} for {user_id}: {char_cost} chars")
                raise RequestTooLargeError(
                    action=action,
                    message=f"Input too large for {action}. Max {config.max_chars_per_request} characters.",
                )

            key = (user_id, action)
            current = self._windows.get(key)
            if current is None or now - current.window_start_ms >= config.window_ms:
                # 过期窗口直接丢弃，不做按比例折算
                current = BudgetWindow(window_start_ms=now)

            retry_after_ms = current.window_start_ms + config.window_ms - now
            if current.request_count + 1 > config.max_requests:
                logger.warning(f"Guardrail rate limit hit for {action} by {user_id}")
                raise RateLimitedError(
                    action=action,
                    message=f"Rate limit reached for {action}. Please wait and retry.",
                    retry_after_ms=retry_after_ms,
                )
            if current.char_count + char_cost > config.max_chars_per_window:
                logger.warning(f"Guardrail usage budget hit for {action} by {user_id}")
                raise BudgetExceededError(
                    action=action,
                    message=f"Usage budget reached for {action}. Please wait and retry.",
                    retry_after_ms=retry_after_ms,
                )

            current.request_count += 1
            current.char_count += char_cost
            self._windows[key] = current

    def check_and_lock(self, user_id: str, action: str, fingerprint: str, dedupe_ms: int) -> None:
        """
        冷却期检查：同一 fingerprint 在 dedupe_ms 内只放行一次。

        注意这是 debounce，不是互斥锁：不跟踪"进行中/已完成"，
        慢操作超过 dedupe_ms 后可以被再次触发。
        """
        if dedupe_ms < 0:
            raise ValueError("dedupe_ms must be >= 0")

        with self._lock:
            now = self._clock()
            self._cleanup_stale(now=now)

            key = (user_id, action, fingerprint)
            expires_at = self._dedupe.get(key, 0)
            if expires_at > now:
                # 不延长已有的锁
                logger.warning(f"Guardrail suppressed duplicate {action} for {user_id}")
                raise DuplicateInFlightError(
                    action=action,
                    message=f"Please wait before retrying {action}.",
                    retry_after_ms=expires_at - now,
                )
            self._dedupe[key] = now + dedupe_ms

    def _cleanup_stale(self, now: int) -> None:
        stale_windows = [k for k, w in self._windows.items() if now - w.window_start_ms > STALE_WINDOW_MS]
        for key in stale_windows:
            del self._windows[key]
        expired_locks = [k for k, expires_at in self._dedupe.items() if expires_at <= now]
        for key in expired_locks:
            del self._dedupe[key]
