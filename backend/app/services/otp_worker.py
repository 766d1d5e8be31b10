from __future__ import annotations

import json
import logging
import threading

import redis

from app.core.errors import ProviderUnavailable
from app.core.security import mask_phone
from app.services.dispatch import SEND_OTP_JOB, Job, OtpDispatchQueue
from app.services.otp_provider import CHANNELS, OtpProviderAdapter

logger = logging.getLogger(__name__)


class OtpWorker:
    """Consumidor unico de la cola de OTP.

    Cada trabajo termina en un log de exito o de fallo. No hay reintentos ni
    escritura sobre ``phone_verifications``: si el envio falla, el usuario
    tiene que pedir un reenvio o iniciar de nuevo.
    """

    def __init__(self, dispatch_queue: OtpDispatchQueue, provider: OtpProviderAdapter, *, poll_timeout: int = 5):
        self.queue = dispatch_queue
        self.provider = provider
        self.poll_timeout = poll_timeout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def process(self, job: Job) -> bool:
        logger.info("Procesando trabajo %s id=%s", job.name, job.id)
        if job.name != SEND_OTP_JOB:
            logger.warning("Trabajo desconocido %s id=%s, descartado", job.name, job.id)
            return False

        phone = job.payload.get("phone_number")
        channel = job.payload.get("channel")
        if not isinstance(phone, str) or not phone.startswith("+") or channel not in CHANNELS:
            logger.error("Trabajo %s id=%s con payload invalido, descartado", job.name, job.id)
            return False

        try:
            result = self.provider.send(phone, channel)
        except ProviderUnavailable as exc:
            logger.error("Trabajo %s id=%s fallo: proveedor no disponible (%s)", job.name, job.id, exc.context)
            return False

        if not result.accepted:
            logger.error(
                "Trabajo %s id=%s fallo: envio via %s a %s rechazado (%s)",
                job.name, job.id, channel, mask_phone(phone), result.error,
            )
            return False

        logger.info(
            "Trabajo %s id=%s completado: OTP via %s a %s, ref=%s",
            job.name, job.id, channel, mask_phone(phone), result.reference,
        )
        return True

    def run_once(self, timeout: int | None = None) -> bool:
        try:
            job = self.queue.next_job(self.poll_timeout if timeout is None else timeout)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as exc:
            logger.error("Trabajo ilegible en la cola, descartado: %s", exc)
            return True
        if job is None:
            return False
        self._safe_process(job)
        return True

    def _safe_process(self, job: Job) -> None:
        try:
            self.process(job)
        except Exception:
            logger.exception("Error inesperado procesando trabajo %s id=%s", job.name, job.id)

    def drain(self) -> int:
        return self.queue.drain(self._safe_process)

    def run_forever(self) -> None:
        logger.info("Worker de OTP escuchando")
        while not self._stop.is_set():
            try:
                self.run_once()
            except redis.RedisError as exc:
                logger.error("Cola no disponible, reintentando: %s", exc)
                self._stop.wait(self.poll_timeout)
        logger.info("Worker de OTP detenido")

    def start_in_thread(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="otp-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
