from __future__ import annotations

import sqlalchemy as sa

from app.core.security import as_utc
from app.models.auth_token import AuthToken
from app.models.phone_verification import PhoneVerification
from app.models.user import User

CC = "+57"
PHONE = "3001234567"


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _contact(**extra) -> dict:
    return {"country_code": CC, "contact_number": PHONE, **extra}


def _register_body(**extra) -> dict:
    body = {
        "first_name": "Ana",
        "last_name": "Prueba",
        "username": "ana_prueba",
        "email": "Ana@Example.com",
        "country_code": CC,
        "phone_number": PHONE,
    }
    body.update(extra)
    return body


def _verified_phone(client, worker, provider) -> None:
    r = client.post("/verification/initiate", json=_contact(verification_method="whatsapp"))
    assert r.status_code == 200, r.text
    worker.drain()
    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 200, r.text


def _login(client, worker, provider, cc: str = "+1", phone: str = "5551234") -> str:
    r = client.post("/auth/phone-login/request-otp", json={"country_code": cc, "phone_number": phone, "channel": "sms"})
    assert r.status_code == 200, r.text
    worker.drain()
    r = client.post(
        "/auth/phone-login/verify-otp",
        json={"country_code": cc, "phone_number": phone, "otp": provider.valid_code},
    )
    assert r.status_code == 200, r.text
    return r.json()["auth_token"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_registration_flow(client, worker, provider, session_factory):
    r = client.post("/verification/initiate", json=_contact(verification_method="whatsapp"))
    assert r.status_code == 200
    assert r.json() == {"normalized_phone": "+573001234567", "channel": "whatsapp", "expires_in_minutes": 10}

    assert worker.drain() == 1
    assert provider.sent == [("+573001234567", "whatsapp")]

    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 200
    assert r.json()["verified_at"]

    r = client.post("/auth/register", json=_register_body())
    assert r.status_code == 201, r.text
    out = r.json()
    assert out["auth_token"]
    assert out["user"]["username"] == "ana_prueba"
    assert out["user"]["email"] == "ana@example.com"
    assert out["user"]["display_name"] == "Ana Prueba"
    assert out["user"]["phone_verified"] is True
    assert out["user"]["status"] == "active"

    with session_factory() as s:
        assert s.execute(sa.select(sa.func.count()).select_from(PhoneVerification)).scalar_one() == 0
        assert s.execute(sa.select(sa.func.count()).select_from(AuthToken)).scalar_one() == 1

    r = client.get("/auth/me", headers=_auth(out["auth_token"]))
    assert r.status_code == 200
    assert r.json()["user"]["id"] == out["user"]["id"]


def test_register_requires_verified_phone(client):
    r = client.post("/verification/initiate", json=_contact())
    assert r.status_code == 200

    r = client.post("/auth/register", json=_register_body())
    assert r.status_code == 400
    body = r.json()
    assert body["ok"] is False
    assert body["error"] == "not_found"
    assert body["data"] == {"phone_verified": False}


def test_register_rejects_taken_username(client, worker, provider, make_user):
    make_user(country_code="+1", phone_number="5559876")
    _verified_phone(client, worker, provider)

    r = client.post("/auth/register", json=_register_body(username="ana_1"))
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    r = client.post("/auth/register", json=_register_body())
    assert r.status_code == 201


def test_register_validates_email(client):
    r = client.post("/auth/register", json=_register_body(email="sin-arroba"))
    assert r.status_code == 422


def test_initiate_for_existing_account_is_conflict(client, make_user):
    make_user(country_code=CC, phone_number=PHONE)
    r = client.post("/verification/initiate", json=_contact())
    assert r.status_code == 409
    assert r.json()["data"] == {"user_exists": True}


def test_initiate_rejects_unknown_channel(client):
    r = client.post("/verification/initiate", json=_contact(verification_method="email"))
    assert r.status_code == 422


def test_verify_wrong_code_then_right_code(client, worker, provider):
    client.post("/verification/initiate", json=_contact())
    worker.drain()

    r = client.post("/verification/verify", json=_contact(otp="000001"))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_code"

    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 200


def test_verify_after_expiry(client, worker, provider, clock, session_factory):
    client.post("/verification/initiate", json=_contact())
    worker.drain()
    clock.advance(minutes=11)

    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 400
    assert r.json()["error"] == "expired"
    with session_factory() as s:
        assert s.execute(sa.select(PhoneVerification)).first() is None

    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 404


def test_resend_with_channel_fallback(client, worker, provider):
    client.post("/verification/initiate", json=_contact(verification_method="whatsapp"))
    r = client.post("/verification/resend", json=_contact(verification_method="sms"))
    assert r.status_code == 200
    assert r.json() == {"channel": "sms", "contact_number": PHONE, "country_code": CC}

    assert worker.drain() == 2
    assert [channel for _, channel in provider.sent] == ["whatsapp", "sms"]


def test_resend_without_initiate_is_not_found(client):
    r = client.post("/verification/resend", json=_contact(verification_method="sms"))
    assert r.status_code == 404


def test_initiate_is_rate_limited_per_phone(client, dispatch_queue):
    for _ in range(5):
        assert client.post("/verification/initiate", json=_contact()).status_code == 200

    r = client.post("/verification/initiate", json=_contact())
    assert r.status_code == 429
    assert r.json()["error"] == "rate_exceeded"
    assert dispatch_queue.pending() == 5

    other = {"country_code": CC, "contact_number": "3009999999"}
    assert client.post("/verification/initiate", json=other).status_code == 200


def test_resend_is_rate_limited(client, clock):
    client.post("/verification/initiate", json=_contact())
    for _ in range(3):
        assert client.post("/verification/resend", json=_contact(verification_method="sms")).status_code == 200

    r = client.post("/verification/resend", json=_contact(verification_method="sms"))
    assert r.status_code == 429

    clock.advance(minutes=10)
    assert client.post("/verification/resend", json=_contact(verification_method="sms")).status_code == 200


def test_login_flow_and_last_used(client, worker, provider, make_user, session_factory, clock):
    user = make_user()
    token = _login(client, worker, provider)

    with session_factory() as s:
        assert as_utc(s.get(User, user.id).last_login_at) == clock.now
        assert s.execute(sa.select(PhoneVerification)).first() is None

    clock.advance(minutes=1)
    r = client.get("/auth/me", headers=_auth(token))
    assert r.status_code == 200
    assert r.json()["user"]["username"] == user.username

    with session_factory() as s:
        record = s.execute(sa.select(AuthToken).where(AuthToken.user_id == user.id)).scalar_one()
        assert as_utc(record.last_used_at) == clock.now


def test_login_without_account(client):
    r = client.post("/auth/phone-login/request-otp", json={"country_code": "+1", "phone_number": "5550000"})
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_login_is_rate_limited(client, make_user):
    make_user()
    body = {"country_code": "+1", "phone_number": "5551234", "channel": "sms"}
    for _ in range(5):
        assert client.post("/auth/phone-login/request-otp", json=body).status_code == 200
    assert client.post("/auth/phone-login/request-otp", json=body).status_code == 429


def test_blocked_user_cannot_log_in(client, worker, provider, make_user):
    make_user(status="blocked")
    r = client.post("/auth/phone-login/request-otp", json={"country_code": "+1", "phone_number": "5551234"})
    assert r.status_code == 200
    worker.drain()

    r = client.post(
        "/auth/phone-login/verify-otp",
        json={"country_code": "+1", "phone_number": "5551234", "otp": provider.valid_code},
    )
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"


def test_logout_revokes_only_current_token(client, worker, provider, make_user):
    make_user()
    first = _login(client, worker, provider)
    second = _login(client, worker, provider)

    r = client.post("/auth/logout", headers=_auth(first))
    assert r.status_code == 200
    assert r.json() == {}

    r = client.get("/auth/me", headers=_auth(first))
    assert r.status_code == 401
    assert r.json()["error"] == "revoked"
    assert client.get("/auth/me", headers=_auth(second)).status_code == 200


def test_logout_all(client, worker, provider, make_user):
    make_user()
    tokens = [_login(client, worker, provider) for _ in range(2)]

    r = client.post("/auth/logout-all", headers=_auth(tokens[0]))
    assert r.status_code == 200
    assert r.json() == {"revoked": 2}

    for token in tokens:
        assert client.get("/auth/me", headers=_auth(token)).status_code == 401


def test_me_requires_token(client):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_token"

    r = client.get("/auth/me", headers=_auth("basura"))
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_token"


def test_expired_session_token(client, worker, provider, make_user, clock):
    make_user()
    token = _login(client, worker, provider)
    clock.advance(days=8)

    r = client.get("/auth/me", headers=_auth(token))
    assert r.status_code == 401
    assert r.json()["error"] == "expired"

    r = client.get("/auth/me", headers=_auth(token))
    assert r.status_code == 401
    assert r.json()["error"] == "revoked"


def test_provider_outage_on_verify_is_503(client, worker, provider):
    client.post("/verification/initiate", json=_contact())
    worker.drain()
    provider.unavailable = True

    r = client.post("/verification/verify", json=_contact(otp=provider.valid_code))
    assert r.status_code == 503
    assert r.json()["error"] == "provider_unavailable"
