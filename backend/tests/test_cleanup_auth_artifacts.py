from __future__ import annotations

import sqlalchemy as sa

from app.models.auth_token import AuthToken
from app.models.phone_verification import PhoneVerification
from scripts.cleanup_auth_artifacts import cleanup


def test_cleanup_removes_only_stale_artifacts(db, verifications, tokens, make_user, clock):
    verifications.initiate("+57", "3001111111", "sms")
    user = make_user()
    stale = tokens.issue(user.id)
    forever = tokens.issue(user.id, name="service", ttl=None)
    db.commit()

    clock.advance(days=8)
    verifications.initiate("+57", "3002222222", "sms")
    fresh = tokens.issue(user.id)
    db.commit()

    deleted = cleanup(db, now=clock.now)
    db.commit()

    assert deleted == {"phone_verifications": 1, "auth_tokens": 1}
    phones = db.execute(sa.select(PhoneVerification.phone_number)).scalars().all()
    assert phones == ["3002222222"]
    remaining = set(db.execute(sa.select(AuthToken.id)).scalars())
    assert remaining == {forever.record.id, fresh.record.id}
    assert stale.record.id not in remaining


def test_cleanup_keeps_recently_expired_verifications(db, verifications, clock):
    verifications.initiate("+57", "3001111111", "sms")
    db.commit()
    clock.advance(days=1)

    assert cleanup(db, now=clock.now)["phone_verifications"] == 0
