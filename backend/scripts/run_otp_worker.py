import logging
import signal

from app.core.config import settings
from app.core.logging import setup_logging
from app.services.dispatch import InMemoryJobQueue, build_dispatch_queue
from app.services.otp_provider import get_otp_provider
from app.services.otp_worker import OtpWorker

logger = logging.getLogger("scripts.run_otp_worker")


def main():
    setup_logging()
    dispatch_queue = build_dispatch_queue()
    if isinstance(dispatch_queue.backend, InMemoryJobQueue):
        raise SystemExit("QUEUE_BACKEND=memory: el worker corre dentro de la API, no como proceso aparte")
    dispatch_queue.start()
    worker = OtpWorker(dispatch_queue, get_otp_provider(), poll_timeout=settings.QUEUE_POLL_TIMEOUT_SECONDS)

    def _handle_signal(signum, _frame):
        logger.info("Senal %s recibida, deteniendo worker", signum)
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        worker.run_forever()
    finally:
        dispatch_queue.stop()


if __name__ == "__main__":
    main()
