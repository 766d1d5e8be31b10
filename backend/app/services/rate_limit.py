"""Rate limit por telefono con ventana deslizante.

Se aplica solo en los handlers HTTP de initiate/resend/login, antes de tocar
la maquina de estados. Un hit rechazado no se registra ni tiene efectos.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import threading
import time
from typing import Callable, Protocol
from uuid import uuid4

import redis

from app.core.config import settings
from app.core.errors import RateExceeded


class WindowBackend(Protocol):
    def try_hit(self, key: str, limit: int, window_seconds: int) -> bool:
        ...


class MemorySlidingWindow:
    def __init__(self, clock: Callable[[], float] = time.monotonic, *, sweep_every: int = 256):
        self.clock = clock
        self.sweep_every = sweep_every
        self._hits: dict[str, deque[float]] = {}
        self._windows: dict[str, int] = {}
        self._calls = 0
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> deque[float] | None:
        hits = self._hits.get(key)
        if hits is None:
            return None
        window_seconds = self._windows[key]
        while hits and now - hits[0] >= window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
            del self._windows[key]
            return None
        return hits

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._prune(key, now)

    def try_hit(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self.clock()
        with self._lock:
            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(now)
            hits = self._prune(key, now)
            if hits is not None and len(hits) >= limit:
                return False
            if hits is None:
                hits = self._hits[key] = deque()
            self._windows[key] = window_seconds
            hits.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._windows.clear()


class RedisSlidingWindow:
    """Un sorted set por clave; score = timestamp del hit.

    Limpieza, alta y conteo van en un solo MULTI; si el conteo supera el
    limite, el hit recien agregado se retira.
    """

    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock

    def try_hit(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self.clock()
        redis_key = f"ratelimit:{key}"
        member = f"{now}:{uuid4().hex}"
        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
        pipe.zadd(redis_key, {member: now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, window_seconds)
        _, _, count, _ = pipe.execute()
        if int(count) > limit:
            self.client.zrem(redis_key, member)
            return False
        return True


@dataclass(frozen=True)
class RatePolicy:
    name: str
    key_prefix: str
    limit: int
    window_seconds: int
    message: str


class SlidingWindowLimiter:
    def __init__(self, backend: WindowBackend, policy: RatePolicy):
        self.backend = backend
        self.policy = policy

    def hit(self, phone_key: str) -> None:
        key = f"{self.policy.key_prefix}{phone_key}".replace(" ", "")
        if not self.backend.try_hit(key, self.policy.limit, self.policy.window_seconds):
            raise RateExceeded(self.policy.message, context={"policy": self.policy.name})


def initiate_policy() -> RatePolicy:
    return RatePolicy(
        name="verification-initiate",
        key_prefix="",
        limit=settings.RATE_LIMIT_INITIATE_MAX,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        message="Demasiadas solicitudes de verificacion, intenta mas tarde.",
    )


def resend_policy() -> RatePolicy:
    return RatePolicy(
        name="verification-resend",
        key_prefix="resend-",
        limit=settings.RATE_LIMIT_RESEND_MAX,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        message="Demasiados reenvios, espera antes de intentar de nuevo.",
    )


def login_policy() -> RatePolicy:
    return RatePolicy(
        name="login-initiate",
        key_prefix="login-",
        limit=settings.RATE_LIMIT_LOGIN_MAX,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        message="Demasiados intentos de inicio de sesion, intenta mas tarde.",
    )


@dataclass
class RateLimiters:
    initiate: SlidingWindowLimiter
    resend: SlidingWindowLimiter
    login: SlidingWindowLimiter


def build_rate_limiters(backend_code: str | None = None) -> RateLimiters:
    code = (backend_code or settings.RATE_LIMIT_BACKEND or "redis").strip().lower()
    if code == "memory":
        backend: WindowBackend = MemorySlidingWindow()
    else:
        backend = RedisSlidingWindow(redis.Redis.from_url(settings.REDIS_URL, decode_responses=True))
    return RateLimiters(
        initiate=SlidingWindowLimiter(backend, initiate_policy()),
        resend=SlidingWindowLimiter(backend, resend_policy()),
        login=SlidingWindowLimiter(backend, login_policy()),
    )
