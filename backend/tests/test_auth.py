"""Login, bearer sessions and the health endpoint."""

from datetime import timedelta

import pytest

from shopdesk.models import SessionToken
from shopdesk.services import session_service
from shopdesk.services.auth_service import (
    PasswordValidationError,
    create_user,
    validate_password_strength,
)
from shopdesk.time_utils import utcnow


PASSWORD = "Password123!"


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def test_login_me_logout(client, user_a):
    resp = client.post("/api/auth/login", json={"username": "user_a", "password": PASSWORD})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["user"]["username"] == "user_a"
    assert "MANAGE_INVOICE_SETTINGS" in body["permissions"]
    token = body["token"]

    me = client.get("/api/auth/me", headers=auth_headers(token))
    assert me.status_code == 200
    assert me.get_json()["org_id"] == user_a.org_id

    assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
    assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


def test_login_with_email(client, user_a):
    resp = client.post("/api/auth/login", json={"email": "user_a@example.com", "password": PASSWORD})
    assert resp.status_code == 200


def test_login_rejects_wrong_password(client, user_a):
    resp = client.post("/api/auth/login", json={"username": "user_a", "password": "Wrong123!"})
    assert resp.status_code == 401


def test_login_requires_fields(client):
    assert client.post("/api/auth/login", json={"username": "user_a"}).status_code == 400


def test_inactive_user_cannot_log_in(client, db_session, user_a):
    user_a.is_active = False
    db_session.commit()

    resp = client.post("/api/auth/login", json={"username": "user_a", "password": PASSWORD})
    assert resp.status_code == 401


def test_cashier_permissions(client, cashier_a):
    resp = client.post("/api/auth/login", json={"username": "cashier_a", "password": PASSWORD})
    permissions = resp.get_json()["permissions"]
    assert "CREATE_INVOICE" in permissions
    assert "GENERATE_INVOICE_PDF" not in permissions
    assert "MANAGE_INVOICE_SETTINGS" not in permissions


def test_missing_or_garbage_token_is_401(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=auth_headers("not-a-token")).status_code == 401


def test_idle_session_is_revoked(db_session, user_a, token_a):
    record = db_session.query(SessionToken).filter_by(user_id=user_a.id).one()
    record.last_used_at = utcnow() - timedelta(hours=3)
    db_session.commit()

    assert session_service.validate_session(token_a) is None
    db_session.refresh(record)
    assert record.is_revoked is True


def test_expired_session_is_rejected(db_session, user_a, token_a):
    record = db_session.query(SessionToken).filter_by(user_id=user_a.id).one()
    record.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    assert session_service.validate_session(token_a) is None


def test_tokens_are_stored_hashed(db_session, user_a, token_a):
    record = db_session.query(SessionToken).filter_by(user_id=user_a.id).one()
    assert record.token_hash != token_a
    assert record.token_hash == session_service.hash_token(token_a)


@pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial123"])
def test_weak_passwords_rejected(password):
    with pytest.raises(PasswordValidationError):
        validate_password_strength(password)


def test_create_user_rejects_unknown_role(db_session, org_a):
    with pytest.raises(ValueError):
        create_user("someone", "someone@example.com", PASSWORD, org_a.id, role="owner")


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["storage"]["backend"] == "local"
