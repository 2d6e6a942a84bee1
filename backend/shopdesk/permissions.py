"""
Permission codes and the default role -> permission mapping.

Roles are a fixed column on User (admin, manager, cashier). Checks go through
has_permission(); routes use the @require_permission decorator.
"""

class PermissionCategory:
    """Permission categories for grouping in admin screens."""
    SALES = "SALES"
    INVOICES = "INVOICES"
    SETTINGS = "SETTINGS"


# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    (
        "CREATE_SALE",
        "Create Sale",
        "Record sales at checkout and update their payment status",
        PermissionCategory.SALES
    ),
    (
        "VIEW_SALES",
        "View Sales",
        "View sales history",
        PermissionCategory.SALES
    ),
    (
        "CREATE_INVOICE",
        "Create Invoice",
        "Issue an invoice for a sale",
        PermissionCategory.INVOICES
    ),
    (
        "VIEW_INVOICES",
        "View Invoices",
        "View, preview and download invoices",
        PermissionCategory.INVOICES
    ),
    (
        "GENERATE_INVOICE_PDF",
        "Generate Invoice PDF",
        "Trigger or force (re)generation of invoice PDFs",
        PermissionCategory.INVOICES
    ),
    (
        "MANAGE_INVOICE_SETTINGS",
        "Manage Invoice Settings",
        "Change numbering, GST and branding settings",
        PermissionCategory.SETTINGS
    ),
]

PERMISSION_CODES = frozenset(code for code, _, _, _ in PERMISSION_DEFINITIONS)

# Default role permissions (least privilege; admin gets everything)
DEFAULT_ROLE_PERMISSIONS = {
    "admin": sorted(PERMISSION_CODES),
    "manager": [
        "CREATE_SALE",
        "VIEW_SALES",
        "CREATE_INVOICE",
        "VIEW_INVOICES",
        "GENERATE_INVOICE_PDF",
    ],
    "cashier": [
        "CREATE_SALE",
        "VIEW_SALES",
        "CREATE_INVOICE",
        "VIEW_INVOICES",
    ],
}

ROLES = tuple(DEFAULT_ROLE_PERMISSIONS)


def get_role_permissions(role: str) -> set[str]:
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, ()))


def has_permission(user, permission_code: str) -> bool:
    return permission_code in get_role_permissions(user.role)
