"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Every request is scoped to a tenant (organization), and cross-tenant
access must be explicitly denied. Organization ids appear in URLs, so they
are checked against the authenticated session before any query runs.

SECURITY INVARIANTS:
1. Every authenticated request has g.org_id set
2. org_id and store_id values from client input are validated against g.org_id
3. Failures never reveal whether the resource exists in another organization

USAGE:
    from shopdesk.services.tenant_service import require_org_access, require_store_in_org

    require_org_access(org_id)
    store = require_store_in_org(store_id, org_id)
"""

from flask import current_app, g

from ..extensions import db
from ..models import Store


class TenantAccessError(Exception):
    """Raised when cross-tenant access is attempted."""
    pass


def get_current_org_id() -> int:
    """
    Get current tenant's org_id from Flask g context.

    SECURITY: Raises TenantAccessError if org_id not set.
    """
    if not hasattr(g, "org_id") or g.org_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.org_id


def require_org_access(org_id: int) -> int:
    """
    Validate that the organization in the URL is the session's organization.

    Raises TenantAccessError ("Organization not found") otherwise.
    """
    current = get_current_org_id()
    if int(org_id) != int(current):
        current_app.logger.warning(
            "Cross-tenant access attempt: session org %s requested org %s",
            current,
            org_id,
        )
        raise TenantAccessError("Organization not found")
    return current


def require_store_in_org(store_id: int, org_id: int) -> Store:
    """
    Validate that a store belongs to the specified organization.

    Raises:
        TenantAccessError if store doesn't exist or belongs to different org
    """
    store = db.session.get(Store, store_id)

    if not store:
        raise TenantAccessError("Store not found")

    if store.org_id != org_id:
        current_app.logger.warning(
            "Cross-tenant store access: store %s belongs to org %s, not %s",
            store_id,
            store.org_id,
            org_id,
        )
        raise TenantAccessError("Store not found")  # Don't reveal it exists in another org

    return store
