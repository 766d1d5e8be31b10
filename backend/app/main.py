from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.core.config import settings
from app.core.errors import AuthFlowError
from app.core.logging import setup_logging
from app.api.router import router
from app.services.dispatch import InMemoryJobQueue, build_dispatch_queue
from app.services.otp_provider import get_otp_provider
from app.services.otp_worker import OtpWorker
from app.services.rate_limit import build_rate_limiters

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    app.state.otp_provider = get_otp_provider()
    app.state.dispatch_queue = build_dispatch_queue()
    app.state.dispatch_queue.start()
    app.state.rate_limiters = build_rate_limiters()

    worker = None
    if isinstance(app.state.dispatch_queue.backend, InMemoryJobQueue):
        # Con la cola en memoria el worker tiene que vivir en este mismo proceso.
        worker = OtpWorker(app.state.dispatch_queue, app.state.otp_provider, poll_timeout=1)
        worker.start_in_thread()
    app.state.otp_worker = worker
    try:
        yield
    finally:
        if worker is not None:
            worker.stop(timeout=5)
        app.state.dispatch_queue.stop()


app = FastAPI(
    title="Phone OTP Auth",
    version="0.1.0",
    lifespan=lifespan,
)

allowed_hosts = [h.strip() for h in settings.ALLOWED_HOSTS.split(",") if h.strip()]
if not allowed_hosts:
    allowed_hosts = ["*"]
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response: Response = await call_next(request)
    if settings.SECURITY_HEADERS_ENABLED:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.ENV != "dev":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.exception_handler(AuthFlowError)
async def auth_flow_error_handler(request: Request, exc: AuthFlowError):
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.kind, exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Error no controlado en %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "internal_error", "message": "Error interno del servidor"},
    )


app.include_router(router)


@app.get("/health")
def health():
    return {"ok": True}
