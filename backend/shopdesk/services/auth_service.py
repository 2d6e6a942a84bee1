# Overview: Staff accounts; bcrypt password hashing and credential checks scoped to an organization.

import re

import bcrypt

from ..extensions import db
from ..models import Organization, Store, User
from ..permissions import ROLES
from shopdesk.time_utils import utcnow


BCRYPT_ROUNDS = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """Require 8+ characters with upper, lower, digit and a special character."""
    checks = (
        (len(password) >= 8, "Password must be at least 8 characters long"),
        (re.search(r"[A-Z]", password), "Password must contain at least one uppercase letter"),
        (re.search(r"[a-z]", password), "Password must contain at least one lowercase letter"),
        (re.search(r"\d", password), "Password must contain at least one digit"),
        (re.search(r"[^A-Za-z0-9]", password), "Password must contain at least one special character"),
    )
    for ok, message in checks:
        if not ok:
            raise PasswordValidationError(message)


def hash_password(password: str) -> str:
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    org_id: int,
    role: str = "cashier",
    store_id: int | None = None,
) -> User:
    """
    Create a user inside org_id.

    Raises:
        ValueError: unknown/inactive org, duplicate username or email, unknown
            role, or a store from another organization
        PasswordValidationError: weak password
    """
    org = db.session.get(Organization, org_id)
    if not org or not org.is_active:
        raise ValueError("Organization not found or inactive")

    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")

    duplicate = (
        db.session.query(User)
        .filter(User.org_id == org_id, db.or_(User.username == username, User.email == email))
        .first()
    )
    if duplicate:
        raise ValueError("Username or email already exists in this organization")

    if store_id is not None:
        store = db.session.get(Store, store_id)
        if not store or store.org_id != org_id:
            raise ValueError("Store not found")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        store_id=store_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, org_id: int | None = None) -> User | None:
    """
    Return the active user matching username (or email) and password, else None.

    Updates last_login_at on success.
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if org_id is not None:
        query = query.filter(User.org_id == org_id)

    user = query.first()
    if not user or not user.organization or not user.organization.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
