from __future__ import annotations

import os
from uuid import uuid4

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-change-me")
os.environ.setdefault("ALLOWED_HOSTS", "testserver,localhost")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import deps
from app.db.base import Base
from app.db.session import get_db, get_session_factory
from app.main import app
from app.models.user import User
from app.services.dispatch import InMemoryJobQueue, OtpDispatchQueue
from app.services.otp_worker import OtpWorker
from app.services.phone_verification import PhoneVerificationService
from app.services.rate_limit import (
    MemorySlidingWindow,
    RateLimiters,
    SlidingWindowLimiter,
    initiate_policy,
    login_policy,
    resend_policy,
)
from app.services.tokens import TokenService
from tests.testkit import ApiClient, FakeOtpProvider, FrozenClock, IdentityFactory


@pytest.fixture(scope="session")
def api() -> ApiClient:
    if os.getenv("RUN_API_INTEGRATION", "0") != "1":
        pytest.skip("Tests de integracion deshabilitados. Usa RUN_API_INTEGRATION=1.")

    base_url = os.getenv("TEST_API_BASE_URL", "http://localhost:8000")
    client = ApiClient(base_url)
    try:
        health = client.call("GET", "/health")
    except Exception as exc:  # pragma: no cover - guard rail
        pytest.fail(f"API no disponible en {base_url}: {exc}")
    if not isinstance(health, dict) or not health.get("ok"):
        pytest.fail(f"Health check invalido en {base_url}: {health}")
    return client


@pytest.fixture(scope="session")
def identity_factory() -> IdentityFactory:
    return IdentityFactory(seed=uuid4().hex[:8])


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def provider() -> FakeOtpProvider:
    return FakeOtpProvider()


@pytest.fixture
def dispatch_queue() -> OtpDispatchQueue:
    q = OtpDispatchQueue(InMemoryJobQueue())
    q.start()
    yield q
    q.stop()


@pytest.fixture
def worker(dispatch_queue, provider) -> OtpWorker:
    return OtpWorker(dispatch_queue, provider, poll_timeout=0)


@pytest.fixture
def verifications(db, dispatch_queue, provider, clock) -> PhoneVerificationService:
    return PhoneVerificationService(db, dispatch_queue, provider, clock=clock)


@pytest.fixture
def tokens(db, clock) -> TokenService:
    return TokenService(db, clock=clock)


@pytest.fixture
def rate_limiters(clock) -> RateLimiters:
    backend = MemorySlidingWindow(clock=clock.monotonic)
    return RateLimiters(
        initiate=SlidingWindowLimiter(backend, initiate_policy()),
        resend=SlidingWindowLimiter(backend, resend_policy()),
        login=SlidingWindowLimiter(backend, login_policy()),
    )


@pytest.fixture
def make_user(db, clock):
    counter = {"n": 0}

    def _make(country_code: str = "+1", phone_number: str = "5551234", status: str = "active") -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            country_code=country_code,
            phone_number=phone_number,
            first_name="Ana",
            last_name="Prueba",
            display_name="Ana Prueba",
            username=f"ana_{n}",
            email=f"ana{n}@example.com",
            phone_verified=True,
            phone_verified_at=clock(),
            status=status,
            created_at=clock(),
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def client(session_factory, dispatch_queue, provider, rate_limiters, clock):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_dispatch_queue] = lambda: dispatch_queue
    app.dependency_overrides[deps.get_otp_provider] = lambda: provider
    app.dependency_overrides[deps.get_rate_limiters] = lambda: rate_limiters
    app.dependency_overrides[deps.get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
