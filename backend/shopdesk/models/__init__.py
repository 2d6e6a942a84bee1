from .tenancy import Organization, Store
from .auth import User, SessionToken
from .catalog import Product
from .sales import Sale, SaleLine
from .invoices import (
    OrganizationInvoiceSettings,
    BusinessSettings,
    InvoiceCounter,
    Invoice,
    ImmutableSnapshotError,
)

__all__ = [
    'Organization', 'Store',
    'User', 'SessionToken',
    'Product',
    'Sale', 'SaleLine',
    'OrganizationInvoiceSettings', 'BusinessSettings', 'InvoiceCounter', 'Invoice',
    'ImmutableSnapshotError',
]
