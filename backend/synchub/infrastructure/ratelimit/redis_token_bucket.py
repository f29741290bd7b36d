# synchub/infrastructure/ratelimit/redis_token_bucket.py
from __future__ import annotations
import logging
import threading
import time
from typing import Optional, Tuple

import redis

logger = logging.getLogger(__name__)


"""
全局令牌桶限流（多进程/多机共享），单位：rpm。
    key: {prefix}:{env}:{vendor}:{account}:v1

    acquire_once() 原子步骤（Lua）：
      1) 用 Redis 服务器时间（TIME）计算补桶
      2) 若 tokens >= 1 则消耗 1 个并 allowed=1；否则返回需要等待的毫秒 wait_ms
      3) 持久化 tokens/ts，并设置 TTL（空闲自动清理）
"""
class RedisTokenBucketLimiter:

    LUA_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_per_ms = tonumber(ARGV[2])
    local ttl_ms = tonumber(ARGV[3])

    local t = redis.call('TIME')
    local now = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)

    local data = redis.call('HMGET', key, 'tokens', 'ts')
    local tokens = tonumber(data[1])
    local ts = tonumber(data[2])

    if tokens == nil or ts == nil then
        tokens = capacity
        ts = now
    else
        local delta = now - ts
        if delta < 0 then delta = 0 end
        tokens = math.min(capacity, tokens + delta * refill_per_ms)
        ts = now
    end

    local allowed = 0
    local wait_ms = 0
    if tokens >= 1 then
        tokens = tokens - 1
        allowed = 1
    else
        wait_ms = math.ceil((1 - tokens) / refill_per_ms)
        if wait_ms < 0 then wait_ms = 0 end
    end

    redis.call('HSET', key, 'tokens', tokens, 'ts', ts)
    if ttl_ms > 0 then
      redis.call('PEXPIRE', key, ttl_ms)
    end
    return {allowed, tostring(tokens), wait_ms}
    """

    def __init__(self, client, key: str, max_rpm: int, burst: int = 5,
                 ttl_ms: int = 120000, max_wait_ms: Optional[int] = 5000):
        self.r = client
        self.key = key
        self.capacity = max(1, int(burst))
        self.refill_per_ms = float(max_rpm) / 60_000.0
        self.ttl_ms = int(ttl_ms)
        self.max_wait_ms = max_wait_ms
        self._sha: Optional[str] = None   # 第一次 acquire 时再加载脚本，构造时不连 Redis

    """
       从 settings 读取限流开关/Redis URL/速率/桶容量/前缀/环境，构造 limiter；关闭时返回 None。
    """
    @classmethod
    def from_settings(cls, *, vendor: str, account: str | None, max_rpm: int) -> RedisTokenBucketLimiter | None:
        from synchub.core.config import settings

        if not settings.RATE_LIMIT_ENABLED:
            return None
        url = settings.RATE_LIMIT_REDIS_URL
        if not url:
            logger.warning("Global RL disabled (no redis url).")
            return None

        client = redis.from_url(url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2)
        acct = (account or "account").replace("@", "_at_")
        key = f"{settings.RATE_LIMIT_KEY_PREFIX}:{settings.ENVIRONMENT}:{vendor}:{acct}:v1"
        return cls(
            client=client,
            key=key,
            max_rpm=max_rpm,
            burst=settings.RATE_LIMIT_BURST,
        )

    def _eval(self) -> Tuple[bool, int]:
        if self._sha is None:
            self._sha = self.r.script_load(self.LUA_SCRIPT)
        try:
            res = self.r.evalsha(self._sha, 1, self.key, self.capacity, self.refill_per_ms, self.ttl_ms)
        except redis.exceptions.NoScriptError:
            # Redis 重启后脚本缓存丢失：重载再试一次
            self._sha = self.r.script_load(self.LUA_SCRIPT)
            res = self.r.evalsha(self._sha, 1, self.key, self.capacity, self.refill_per_ms, self.ttl_ms)
        allowed = int(res[0]) == 1
        wait_ms = 0 if allowed else max(0, int(float(res[2])))
        if (self.max_wait_ms is not None) and (wait_ms > self.max_wait_ms):
            wait_ms = self.max_wait_ms
        return allowed, wait_ms

    """
        尝试消费 1 个令牌；返回 (allowed, wait_ms)。
    """
    def acquire_once(self) -> tuple[bool, int]:
        return self._eval()


class ProcessLocalPacer:
    """Redis 不可用时的进程内兜底：X 次/分钟 → 每次请求间隔 ≈ 60/X 秒。"""

    def __init__(self, max_rpm: int) -> None:
        self.interval = 60.0 / float(max_rpm) if max_rpm and max_rpm > 0 else 0.0
        self._last_ts = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        if self.interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            delta = now - self._last_ts
            if delta < self.interval:
                time.sleep(self.interval - delta)
            self._last_ts = time.monotonic()
