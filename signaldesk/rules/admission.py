from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..schemas import MappingConfig


logger = logging.getLogger(__name__)


class Admission(str, Enum):
    ALLOWED = "allowed"
    THROTTLED = "throttled"
    DISABLED = "disabled"


class TokenBucket:
    """Continuous-refill bucket: ``capacity`` tokens, ``capacity / 60`` per second."""

    def __init__(self, per_minute: int, now: float):
        self.capacity = float(max(1, per_minute))
        self.rate = self.capacity / 60.0
        self.tokens = self.capacity
        self.updated = now

    def resize(self, per_minute: int) -> None:
        self.capacity = float(max(1, per_minute))
        self.rate = self.capacity / 60.0
        self.tokens = min(self.tokens, self.capacity)

    def take(self, now: float) -> bool:
        elapsed = max(0.0, now - self.updated)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.updated = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


class AdmissionController:
    """Per-process token buckets keyed by credential id.

    The configured rate is trusted as already clamped to the plan ceiling.
    Counters reset on restart; see RedisAdmissionController for a shared store.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def admit_now(self, credential_id: str, cfg: MappingConfig) -> Admission:
        if not cfg.active:
            return Admission.DISABLED
        with self._lock:
            now = self.clock()
            bucket = self._buckets.get(credential_id)
            if bucket is None:
                bucket = self._buckets[credential_id] = TokenBucket(cfg.rate_limit_per_minute, now)
            elif bucket.capacity != float(max(1, cfg.rate_limit_per_minute)):
                bucket.resize(cfg.rate_limit_per_minute)
            return Admission.ALLOWED if bucket.take(now) else Admission.THROTTLED

    async def admit(self, credential_id: str, cfg: MappingConfig) -> Admission:
        return self.admit_now(credential_id, cfg)

    def forget(self, credential_id: str) -> None:
        with self._lock:
            self._buckets.pop(credential_id, None)


# KEYS[1]=bucket key; ARGV = capacity, refill per second, now (seconds)
_BUCKET_LUA = """
local cap = tonumber(ARGV[1])
local rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1]) or cap
local ts = tonumber(state[2]) or now
local elapsed = now - ts
if elapsed < 0 then elapsed = 0 end
tokens = math.min(cap, tokens + elapsed * rate)
local allowed = 0
if tokens >= 1 then
  tokens = tokens - 1
  allowed = 1
end
redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(now))
redis.call('EXPIRE', KEYS[1], 120)
return allowed
"""


class RedisAdmissionController:
    """Token buckets held in Redis so every instance shares one budget per credential.

    Falls back to the local buckets when Redis errors.
    """

    def __init__(
        self,
        redis_client: Optional[Redis],
        namespace: str = "ratelimit",
        fallback: AdmissionController | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.r = redis_client
        self.ns = namespace
        self.local = fallback or AdmissionController()
        self.clock = clock

    async def admit(self, credential_id: str, cfg: MappingConfig) -> Admission:
        if not cfg.active:
            return Admission.DISABLED
        if self.r is not None:
            cap = max(1, cfg.rate_limit_per_minute)
            try:
                allowed = await self.r.eval(
                    _BUCKET_LUA, 1, f"{self.ns}:{credential_id}", cap, cap / 60.0, self.clock()
                )
                return Admission.ALLOWED if int(allowed) == 1 else Admission.THROTTLED
            except RedisError as exc:
                logger.warning(
                    "Shared rate limiter unavailable, using local bucket",
                    extra={"credential_id": credential_id, "error": str(exc)},
                )
        return self.local.admit_now(credential_id, cfg)

    def forget(self, credential_id: str) -> None:
        # the shared bucket expires on its own
        self.local.forget(credential_id)
