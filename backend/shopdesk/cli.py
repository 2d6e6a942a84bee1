# Overview: Flask CLI command groups for bootstrap, demo data, and invoice maintenance.

# backend/shopdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Demo organization, outlet, users, products and a few sales.
#
# Organization management:
# - python -m flask orgs create --name "Acme Retail" --code "ACME"
# - python -m flask orgs add-store --org-id 1 --name "Indiranagar" --code "BLR"
#
# Users:
# - python -m flask users create --org-id 1 --username admin --email admin@shopdesk.local --password "Password123!" --role admin
#
# Invoices:
# - python -m flask invoices render --org-id 1 --invoice-id 5 [--force]
#   Render (or re-render) one invoice PDF.
# - python -m flask invoices retry-queued --org-id 1
#   Render every invoice still queued (e.g. after a failed render).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Product, Store
from .permissions import ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import invoice_service, sales_service
from .services.invoice_service import InvoiceError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including invoice counters.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@system_group.command('seed-demo')
@click.option('--password', default='Password123!', show_default=True, help='Password for the seeded users')
@with_appcontext
def seed_demo(password):
    """Seed a demo organization with one outlet, three users, products and sales."""
    db.create_all()

    org = db.session.query(Organization).filter_by(code="DEMO").first()
    if org:
        click.echo(f"PASS Demo organization already exists (ID: {org.id})")
        return

    org = Organization(name="Demo Retail", code="DEMO", is_active=True)
    db.session.add(org)
    db.session.flush()
    store = Store(org_id=org.id, name="Main Outlet", code="MAIN")
    db.session.add(store)
    db.session.flush()

    products = [
        Product(org_id=org.id, sku="TEA-001", name="Masala Chai", price_cents=4000),
        Product(org_id=org.id, sku="COF-001", name="Filter Coffee", price_cents=5000),
        Product(org_id=org.id, sku="SNK-001", name="Samosa (2 pc)", price_cents=6000),
    ]
    db.session.add_all(products)
    db.session.commit()
    click.echo(f"PASS Created organization {org.name} (ID: {org.id}) with store {store.name} (ID: {store.id})")

    for role in ROLES:
        user = create_user(
            username=role,
            email=f"{role}@shopdesk.local",
            password=password,
            org_id=org.id,
            role=role,
            store_id=store.id,
        )
        click.echo(f"PASS Created user {user.username} ({role})")

    sale = sales_service.record_sale(
        org_id=org.id,
        store_id=store.id,
        user_id=None,
        lines=[
            {"product_id": products[0].id, "quantity": 2},
            {"product_id": products[2].id, "quantity": 1},
        ],
        payment_type="UPI",
        is_paid=True,
    )
    click.echo(f"PASS Recorded demo sale #{sale.id} ({sale.total_amount_cents} cents)")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management."""


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    if db.session.query(Organization).filter_by(code=code).first():
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@orgs_group.command('add-store')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Outlet name')
@click.option('--code', help='Outlet code, used as the branch code in invoice numbers')
@click.option('--address', help='Outlet address printed on invoices')
@click.option('--phone', help='Outlet phone printed on invoices')
@click.option('--gstin', help='Outlet GSTIN, if registered separately')
@with_appcontext
def add_store_to_org_cli(org_id, name, code, address, phone, gstin):
    """Add an outlet to an organization."""
    org = db.session.get(Organization, org_id)
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    if db.session.query(Store).filter_by(org_id=org_id, name=name).first():
        click.echo(f"FAIL Store '{name}' already exists in this organization")
        return

    store = Store(
        org_id=org_id,
        name=name,
        code=code,
        address=address,
        phone=phone,
        gstin=gstin.upper() if gstin else None,
    )
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}) in org '{org.name}'")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--store-id', type=int, help='Primary outlet')
@with_appcontext
def create_user_cli(org_id, username, email, password, role, store_id):
    """Create a user in an organization."""
    try:
        user = create_user(username, email, password, org_id, role=role, store_id=store_id)
    except (ValueError, PasswordValidationError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@click.group('invoices')
def invoices_group():
    """Invoice PDF maintenance."""


@invoices_group.command('render')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--invoice-id', type=int, required=True, help='Invoice ID')
@click.option('--force', is_flag=True, help='Re-render even if the PDF is ready')
@with_appcontext
def render_invoice_cli(org_id, invoice_id, force):
    """Render one invoice PDF."""
    try:
        invoice = invoice_service.generate_invoice_pdf(invoice_id, org_id, force=force)
    except InvoiceError as e:
        click.echo(f"FAIL {e} {e.details}")
        raise click.exceptions.Exit(1)
    click.echo(f"PASS {invoice.invoice_number}: {invoice.pdf_status} {invoice.pdf_url or ''}".rstrip())


@invoices_group.command('retry-queued')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@with_appcontext
def retry_queued_cli(org_id):
    """Render every invoice of an organization that is still queued."""
    rendered, failures = invoice_service.retry_queued_invoices(org_id)
    for invoice in rendered:
        click.echo(f"PASS {invoice.invoice_number}: {invoice.pdf_status}")
    for failure in failures:
        click.echo(f"FAIL invoice {failure['invoice_id']}: {failure['error']}")
    click.echo(f"DONE {len(rendered)} rendered, {len(failures)} failed")
    if failures:
        raise click.exceptions.Exit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
