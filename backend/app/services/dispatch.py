from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
import logging
import queue
from typing import Callable, Protocol
from uuid import uuid4

import redis

from app.core.config import settings
from app.core.errors import ProviderUnavailable
from app.core.security import mask_phone, now_utc

logger = logging.getLogger(__name__)

SEND_OTP_JOB = "send-otp"


@dataclass(frozen=True)
class Job:
    id: str
    name: str
    payload: dict
    enqueued_at: datetime

    def to_json(self) -> str:
        return json.dumps({
            "id": self.id,
            "name": self.name,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            payload=dict(data.get("payload") or {}),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
        )


class JobBackend(Protocol):
    def push(self, raw: str) -> None:
        ...

    def pop(self, timeout: int) -> str | None:
        ...

    def size(self) -> int:
        ...

    def ping(self) -> None:
        ...

    def close(self) -> None:
        ...


class RedisJobQueue:
    """Lista de Redis: LPUSH al encolar, BRPOP en el worker (FIFO, durable)."""

    def __init__(self, client: redis.Redis, queue_name: str):
        self.client = client
        self.key = f"queue:{queue_name}"

    def push(self, raw: str) -> None:
        self.client.lpush(self.key, raw)

    def pop(self, timeout: int) -> str | None:
        if timeout <= 0:
            return self.client.rpop(self.key)
        item = self.client.brpop([self.key], timeout=timeout)
        if item is None:
            return None
        return item[1]

    def size(self) -> int:
        return int(self.client.llen(self.key))

    def ping(self) -> None:
        self.client.ping()

    def close(self) -> None:
        self.client.close()


class InMemoryJobQueue:
    """Cola local al proceso (ENV=dev y tests); no sobrevive reinicios."""

    def __init__(self):
        self._items: queue.Queue[str] = queue.Queue()

    def push(self, raw: str) -> None:
        self._items.put(raw)

    def pop(self, timeout: int) -> str | None:
        try:
            if timeout <= 0:
                return self._items.get_nowait()
            return self._items.get(timeout=timeout)
        except queue.Empty:
            return None

    def size(self) -> int:
        return self._items.qsize()

    def ping(self) -> None:
        return None

    def close(self) -> None:
        return None


class OtpDispatchQueue:
    """Productor/consumidor de trabajos de envio de OTP.

    ``enqueue`` retorna cuando el trabajo quedo persistido en el backend, no
    cuando el proveedor lo entrego. El worker nunca escribe de vuelta en el
    registro de verificacion.
    """

    def __init__(self, backend: JobBackend):
        self.backend = backend
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        try:
            self.backend.ping()
        except redis.RedisError as exc:
            logger.error("Cola de OTP no disponible al iniciar: %s", exc)
            raise ProviderUnavailable("Cola de envio no disponible") from exc
        self._running = True
        logger.info("Cola de OTP iniciada (%s)", type(self.backend).__name__)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.backend.close()
        logger.info("Cola de OTP detenida")

    def enqueue(self, job_name: str, payload: dict) -> str:
        if not self._running:
            raise ProviderUnavailable("Cola de envio no disponible")
        job = Job(id=uuid4().hex, name=job_name, payload=payload, enqueued_at=now_utc())
        try:
            self.backend.push(job.to_json())
        except redis.RedisError as exc:
            logger.error("No se pudo encolar %s: %s", job_name, exc)
            raise ProviderUnavailable("Cola de envio no disponible") from exc
        logger.info("Trabajo encolado %s id=%s", job_name, job.id)
        return job.id

    def enqueue_send_otp(self, phone_number: str, channel: str) -> str:
        job_id = self.enqueue(SEND_OTP_JOB, {"phone_number": phone_number, "channel": channel})
        logger.debug("send-otp %s via %s -> %s", mask_phone(phone_number), channel, job_id)
        return job_id

    def next_job(self, timeout: int = 0) -> Job | None:
        raw = self.backend.pop(timeout)
        if raw is None:
            return None
        return Job.from_json(raw)

    def pending(self) -> int:
        return self.backend.size()

    def drain(self, handler: Callable[[Job], object]) -> int:
        """Procesa lo que hay en cola en este momento, sin bloquear. Retorna cuantos salieron."""
        processed = 0
        while True:
            raw = self.backend.pop(0)
            if raw is None:
                return processed
            processed += 1
            try:
                job = Job.from_json(raw)
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as exc:
                logger.error("Trabajo ilegible en la cola, descartado: %s", exc)
                continue
            handler(job)


def build_dispatch_queue(backend_code: str | None = None) -> OtpDispatchQueue:
    code = (backend_code or settings.QUEUE_BACKEND or "redis").strip().lower()
    if code == "memory":
        return OtpDispatchQueue(InMemoryJobQueue())
    client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return OtpDispatchQueue(RedisJobQueue(client, settings.OTP_QUEUE_NAME))
