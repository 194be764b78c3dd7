# Overview: Flask CLI command groups for catalog, user directory, and raw storage maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Create the table once: python -m flask db upgrade
# - Use: python -m flask <group> <command> [options]
#
# Catalog:
# - python -m flask catalog seed [--demo]
#   Initialize the catalog key if it was never written (idempotent).
# - python -m flask catalog reconcile
#   Merge built-in records into the stored catalog.
# - python -m flask catalog export [--out catalog.json]
# - python -m flask catalog import catalog.json
#   Replace the catalog with a previously exported file.
# - python -m flask catalog purge --yes
#   Delete the catalog and its meta; the next seed starts over.
#
# User directory:
# - python -m flask users list
# - python -m flask users grant-admin ada@example.com
# - python -m flask users dedupe
#   Collapse directory entries that share an email.
#
# Raw storage:
# - python -m flask storage keys [--prefix nlk:ada@example.com:]
# - python -m flask storage clear-user ada@example.com --yes
#   Delete every per-user collection of one user.

import asyncio

import click
from flask.cli import with_appcontext

from .extensions import current_storefront
from .validation import ValidationError


@click.group('catalog')
def catalog_group():
    """Shared catalog maintenance."""


@catalog_group.command('seed')
@click.option('--demo', is_flag=True, help='Seed the demo set instead of an empty catalog')
@with_appcontext
def seed_catalog(demo):
    created = asyncio.run(current_storefront().catalog.ensure_seeded(demo=demo or None))
    if created:
        click.echo("PASS Catalog initialized")
    else:
        click.echo("SKIP Catalog already exists, left unchanged")


@catalog_group.command('reconcile')
@with_appcontext
def reconcile_catalog():
    records = asyncio.run(current_storefront().catalog.reconcile())
    built_in = sum(1 for r in records if r["builtIn"])
    click.echo(f"PASS Catalog has {len(records)} records ({built_in} built-in)")


@catalog_group.command('export')
@click.option('--out', 'out_path', type=click.Path(dir_okay=False, writable=True), help='Write to file instead of stdout')
@with_appcontext
def export_catalog(out_path):
    text = asyncio.run(current_storefront().catalog.export_all())
    if out_path:
        with open(out_path, "w", encoding="utf-8") as fh:
            fh.write(text)
        click.echo(f"PASS Exported catalog to {out_path}")
    else:
        click.echo(text)


@catalog_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_catalog(path):
    with open(path, encoding="utf-8") as fh:
        text = fh.read()
    try:
        records = asyncio.run(current_storefront().catalog.import_json(text))
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Imported {len(records)} records")


@catalog_group.command('purge')
@click.option('--yes', is_flag=True, help='Confirm deletion')
@with_appcontext
def purge_catalog(yes):
    if not yes:
        raise click.ClickException("Refusing to purge without --yes")
    asyncio.run(current_storefront().catalog.purge_all())
    click.echo("PASS Catalog purged")


@click.group('users')
def users_group():
    """User directory inspection."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = asyncio.run(current_storefront().profile.list_directory())
    if not users:
        click.echo("No users registered")
        return
    for u in users:
        perms = ", ".join(u.get("permissions") or []) or "-"
        click.echo(f"{u['email']:<32} {u.get('name') or '-':<28} role={u.get('role') or '-'} perms={perms}")


@users_group.command('grant-admin')
@click.argument('email')
@with_appcontext
def grant_admin(email):
    record = asyncio.run(current_storefront().profile.grant_admin(email))
    if record is None:
        raise click.ClickException(f"No user with email {email}")
    click.echo(f"PASS {record['email']} is now {record['role']} ({', '.join(record['permissions'])})")


@users_group.command('dedupe')
@with_appcontext
def dedupe_users():
    removed = asyncio.run(current_storefront().profile.dedupe())
    click.echo(f"PASS Removed {removed} duplicate entries")


@click.group('storage')
def storage_group():
    """Raw key-value medium."""


@storage_group.command('keys')
@click.option('--prefix', default='', help='Only keys starting with this prefix')
@with_appcontext
def list_keys(prefix):
    keys = asyncio.run(current_storefront().kv.list_keys_with_prefix(prefix))
    for key in keys:
        click.echo(key)
    click.echo(f"{len(keys)} keys")


@storage_group.command('clear-user')
@click.argument('user_id')
@click.option('--yes', is_flag=True, help='Confirm deletion')
@with_appcontext
def clear_user(user_id, yes):
    if not yes:
        raise click.ClickException("Refusing to clear without --yes")
    removed = asyncio.run(current_storefront().users.clear_all(user_id))
    click.echo(f"PASS Removed {removed} collections for {user_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(catalog_group)
    app.cli.add_command(users_group)
    app.cli.add_command(storage_group)
