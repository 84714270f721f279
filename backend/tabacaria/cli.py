# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tabacaria/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--sample-data]
#   Idempotent bootstrap: creates tables plus the default admin and seller accounts.
#   --sample-data also loads a demo supplier, catalog and clients.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users.
# - python -m flask users create --name "Caixa" --email caixa@tabacaria.com --password 123456 [--admin]
#   Create a user (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .config import get_settings
from .errors import ApiError
from .extensions import db
from .models import Client, Product, Supplier, User
from .services import auth_service, client_service, products_service, supplier_service


DEFAULT_PASSWORD = "123456"

DEFAULT_USERS = [
    {"name": "Admin User", "email": "admin@tabacaria.com", "is_admin": True},
    {"name": "Vendedor 1", "email": "vendedor1@tabacaria.com", "is_admin": False},
]

SAMPLE_SUPPLIER = {
    "name": "Chefe Tabacaria",
    "company_name": "Shopping Pagé",
    "document": "12345678000190",
    "email": "contato@essenciaspremium.com",
    "phone": "(11) 98765-4321",
    "categories": ["Essências"],
    "address": {
        "street": "Rua das Essências",
        "number": "123",
        "neighborhood": "Centro",
        "city": "São Paulo",
        "state": "SP",
        "zip_code": "01234-567",
    },
}

SAMPLE_PRODUCTS = [
    ("Essência Zomo Strong Mint", "Essências", 1590, 850, 20, 5),
    ("Essência Adalya Love 66", "Essências", 2590, 1450, 15, 3),
    ("Narguilé Pequeno Zeus", "Narguilés", 12000, 6500, 8, 2),
    ("Carvão Coco Premium", "Carvão", 1890, 950, 30, 10),
    ("Mangueira Silicone", "Acessórios", 4500, 2200, 12, 3),
]

SAMPLE_CLIENTS = [
    ("João Silva", "joao@email.com", "(11) 99876-5432", "123.456.789-00"),
    ("Maria Oliveira", "maria@email.com", "(11) 98765-4321", "987.654.321-00"),
    ("Pedro Santos", "pedro@email.com", "(11) 91234-5678", "111.222.333-44"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


def _seed_sample_data(admin: User) -> None:
    settings = get_settings()

    supplier = db.session.query(Supplier).filter_by(document=SAMPLE_SUPPLIER["document"]).first()
    if supplier is None:
        supplier = supplier_service.create_supplier(dict(SAMPLE_SUPPLIER))
        click.echo(f"PASS Created supplier: {supplier.name}")

    for name, category, price, cost, stock, min_stock in SAMPLE_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            click.echo(f"WARN  Product '{name}' already exists, skipping...")
            continue
        products_service.create_product(
            {
                "name": name,
                "category": category,
                "price_cents": price,
                "cost_price_cents": cost,
                "stock": stock,
                "min_stock": min_stock,
                "supplier_id": supplier.id,
            },
            user_id=admin.id,
            settings=settings,
        )
        click.echo(f"PASS Created product: {name} (stock {stock})")

    for name, email, phone, document in SAMPLE_CLIENTS:
        if db.session.query(Client).filter_by(document=document).first():
            click.echo(f"WARN  Client '{name}' already exists, skipping...")
            continue
        client_service.create_client({"name": name, "email": email, "phone": phone, "document": document})
        click.echo(f"PASS Created client: {name}")


@system_group.command('init')
@click.option('--password', default=DEFAULT_PASSWORD, help='Password for the default accounts')
@click.option('--sample-data', is_flag=True, help='Also load a demo supplier, catalog and clients')
@with_appcontext
def init_system(password, sample_data):
    """
    Initialize the shop: schema, default admin and seller accounts.

    SECURITY: Change the default passwords immediately in production!
    """
    click.echo("START Initializing Tabacaria backend...")
    db.create_all()

    settings = get_settings()
    admin = None
    for spec in DEFAULT_USERS:
        existing = db.session.query(User).filter_by(email=spec["email"]).first()
        if existing:
            click.echo(f"WARN  User '{spec['email']}' already exists, skipping...")
            admin = admin or (existing if existing.is_admin else None)
            continue
        try:
            user = auth_service.create_user(dict(spec, password=password), settings=settings)
        except ApiError as e:
            click.echo(f"FAIL Failed to create user '{spec['email']}': {e.message}")
            continue
        click.echo(f"PASS Created user: {user.email} (admin={user.is_admin})")
        if user.is_admin:
            admin = user

    if sample_data:
        if admin is None:
            click.echo("FAIL No administrator available to attribute sample stock to.")
        else:
            click.echo("\nSEED Loading sample data...")
            _seed_sample_data(admin)

    click.echo("\n" + "=" * 60)
    click.echo("DONE Tabacaria backend initialized.")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for spec in DEFAULT_USERS:
        click.echo(f"   {spec['email']:<28} / {password}")
    click.echo("")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--admin', 'is_admin', is_flag=True, help='Grant administrator rights')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cli(name, email, password, is_admin, phone):
    """Create a new staff account."""
    payload = {"name": name, "email": email, "password": password, "is_admin": is_admin}
    if phone:
        payload["phone"] = phone
    try:
        user = auth_service.create_user(payload, settings=get_settings())
    except ApiError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}, admin={user.is_admin})")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Admin':<6} {'Last login'}")
    click.echo("=" * 90)
    for user in users:
        last_login = user.last_login_at.strftime("%Y-%m-%d %H:%M") if user.last_login_at else "never"
        admin_str = "Yes" if user.is_admin else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {admin_str:<6} {last_login}")
    click.echo("=" * 90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
