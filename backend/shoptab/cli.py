# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shoptab/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo admin, shop owner, customer, shop and products (requires SHOPTAB_DEMO_SEED_ENABLED).
#
# Sessions:
# - python -m flask sessions issue --user-id 2 [--hours 24]
#   Issue a bearer token for an already verified user (prints the token once).
# - python -m flask sessions revoke --token <token>
#   Revoke a bearer token.
#
# Credit ledger:
# - python -m flask credit verify-ledger [--shop-id 1] [--account-id 7]
#   Replay credit transactions and compare against stored balances.

import click
from datetime import timedelta
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Shop, User
from .models.tenancy import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_SHOP_OWNER
from .services import credit_service, session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Create demo data: one admin, one shop owner with a shop and three
    products, and one customer. Idempotent on email.
    """
    if not current_app.config.get("DEMO_SEED_ENABLED"):
        click.echo("FAIL Demo seeding is disabled (set SHOPTAB_DEMO_SEED_ENABLED=1)")
        raise SystemExit(1)

    def _user(name, email, phone, role):
        user = db.session.query(User).filter_by(email=email).first()
        if user:
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            return user
        user = User(name=name, email=email, phone=phone, role=role)
        db.session.add(user)
        db.session.flush()
        click.echo(f"PASS Created user: {email} ({role}) id={user.id}")
        return user

    _user("Admin", "admin@shoptab.local", "+15550000001", ROLE_ADMIN)
    owner = _user("Corner Store Owner", "owner@shoptab.local", "+15550000002", ROLE_SHOP_OWNER)
    _user("Demo Customer", "customer@shoptab.local", "+15550000003", ROLE_CUSTOMER)

    shop = db.session.query(Shop).filter_by(owner_id=owner.id).first()
    if not shop:
        shop = Shop(owner_id=owner.id, name="Corner Store", contact_phone=owner.phone, delivery_fee_cents=300)
        db.session.add(shop)
        db.session.flush()
        for name, sku, price, discount in (
            ("Basmati Rice 1kg", "RICE-1KG", 1000, None),
            ("Toor Dal 500g", "DAL-500", 500, None),
            ("Sunflower Oil 1L", "OIL-1L", 1800, 1600),
        ):
            db.session.add(Product(
                shop_id=shop.id,
                name=name,
                sku=sku,
                sale_price_cents=price,
                discount_price_cents=discount,
            ))
        click.echo(f"PASS Created shop: {shop.name} (ID: {shop.id}) with 3 products")
    else:
        click.echo(f"PASS Using existing shop: {shop.name} (ID: {shop.id})")

    db.session.commit()
    click.echo("DONE Demo data ready; issue a token with `flask sessions issue --user-id <id>`")


@click.group('sessions')
def sessions_group():
    """Bearer session management."""


@sessions_group.command('issue')
@click.option('--user-id', type=int, required=True)
@click.option('--hours', type=int, default=None, help='Lifetime in hours (default 24)')
@with_appcontext
def issue_session(user_id, hours):
    user = db.session.get(User, user_id)
    if not user:
        click.echo(f"FAIL User {user_id} not found")
        raise SystemExit(1)
    ttl = timedelta(hours=hours) if hours else None
    session, token = session_service.create_session(user.id, ttl=ttl)
    click.echo(f"PASS Session {session.id} for user {user.id} ({user.role}) expires {session.expires_at}")
    click.echo(token)


@sessions_group.command('revoke')
@click.option('--token', required=True)
@with_appcontext
def revoke_session(token):
    if session_service.revoke_session(token):
        click.echo("PASS Session revoked")
    else:
        click.echo("WARN  Session not found or already revoked")


@click.group('credit')
def credit_group():
    """Credit ledger inspection."""


@credit_group.command('verify-ledger')
@click.option('--shop-id', type=int, default=None)
@click.option('--account-id', type=int, default=None)
@with_appcontext
def verify_ledger(shop_id, account_id):
    """Exit code 1 when any account disagrees with its transactions."""
    account_ids = [account_id] if account_id else credit_service.list_account_ids(shop_id)
    failures = 0
    for acc_id in account_ids:
        report = credit_service.verify_ledger(acc_id)
        if report["ok"]:
            click.echo(f"PASS Account {acc_id}: {report['transactions']} transaction(s)")
            continue
        failures += 1
        click.echo(f"FAIL Account {acc_id}:")
        for problem in report["problems"]:
            click.echo(f"   {problem}")

    click.echo(f"\nChecked {len(account_ids)} account(s), {failures} with problems")
    if failures:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(credit_group)
