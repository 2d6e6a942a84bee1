# Overview: Bearer-token sessions for staff users; tokens are hashed at rest and carry tenant context.

"""
Session tokens

Tokens are 32 random bytes (hex encoded) handed to the client once; only the
SHA-256 hash is stored. A session pins the user's org_id and store_id at
login so every authenticated request has a fixed tenant context.

Timeouts: 24h absolute, 2h idle. Idle or deactivated sessions are revoked
the first time they are presented.
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import Organization, SessionToken, User
from shopdesk.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """Authenticated identity plus the tenant context pinned at login."""
    user: User
    session: SessionToken
    org_id: int
    store_id: int | None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Open a session for user_id and return (record, plaintext_token).

    Raises ValueError for unknown users or inactive organizations.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    org = db.session.get(Organization, user.org_id)
    if not org or not org.is_active:
        raise ValueError("Organization is not active")

    token = secrets.token_hex(32)
    now = utcnow()
    record = SessionToken(
        user_id=user.id,
        org_id=user.org_id,
        store_id=user.store_id,
        token_hash=hash_token(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(record)
    db.session.commit()
    return record, token


def _revoke(record: SessionToken, reason: str) -> None:
    record.is_revoked = True
    record.revoked_at = utcnow()
    record.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a plaintext token to a SessionContext, or None when the token is
    unknown, expired, idle, revoked, or belongs to a deactivated user/org.
    """
    record = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not record:
        return None

    now = utcnow()
    if record.expires_at < now:
        return None
    if now - record.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(record, "Idle timeout")
        return None

    user = record.user
    if not user or not user.is_active:
        _revoke(record, "User account deactivated")
        return None
    if not record.organization or not record.organization.is_active:
        _revoke(record, "Organization deactivated")
        return None

    record.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=record, org_id=record.org_id, store_id=record.store_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke a live session. Returns False if the token is unknown or already revoked."""
    record = (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )
    if not record:
        return False
    _revoke(record, reason)
    return True
