from __future__ import annotations

from ..extensions import db
from shopdesk.time_utils import to_utc_z

class User(db.Model):
    """
    Staff account.

    MULTI-TENANT: Users belong to exactly one organization (org_id).
    Username uniqueness is tenant-scoped.

    ROLES: admin, manager, cashier. The role -> permission mapping lives in
    shopdesk.permissions.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # MULTI-TENANT: Every user belongs to one organization
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)

    # bcrypt hash (never the plaintext)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, default="cashier")

    # Primary outlet (nullable for org-level users)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True))
    store = db.relationship("Store", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "store_id": self.store_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Opaque bearer token for an authenticated user.

    SECURITY:
    - Only the SHA-256 hash of the token is stored
    - Absolute and idle timeouts enforced by session_service
    - Revocable (logout, deactivation)

    MULTI-TENANT: org_id/store_id are captured at login and never change for
    the lifetime of the session.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)

    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))
    organization = db.relationship("Organization", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
