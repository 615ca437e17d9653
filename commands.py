from datetime import datetime

import click
import pytz
from flask import current_app
from flask.cli import with_appcontext

from extensions import db
from init_data import create_initial_data, ensure_admin
from strike_service import reset_weekly_strikes


def local_now():
    return datetime.now(pytz.timezone(current_app.config['TIMEZONE']))


@click.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', 'full_name', default='Admin User', show_default=True)
@with_appcontext
def create_admin_command(email, password, full_name):
    """Create an admin account or promote an existing user."""
    user, created = ensure_admin(email, password, full_name, reset_password=True)
    db.session.commit()
    if created:
        click.echo(f"Created admin {user.email} (ID: {user.id})")
    else:
        click.echo(f"Updated admin {user.email} (ID: {user.id}); password reset")


@click.command('reset-strikes')
@click.option('--force', is_flag=True, help='Reset even when it is not Monday.')
@with_appcontext
def reset_strikes_command(force):
    """Weekly no-show strike reset. Schedule it daily or on Mondays."""
    now = local_now()
    if now.weekday() != 0 and not force:
        click.echo(f"Strikes are reset on Mondays ({now:%A} in {current_app.config['TIMEZONE']}); use --force to reset now.")
        return
    updated = reset_weekly_strikes()
    click.echo(f"Reset no-show strikes for {updated} users")


@click.command('seed')
@with_appcontext
def seed_command():
    """Create the admin account and default payment methods."""
    create_initial_data()
    click.echo("Initial data created")


def register_commands(app):
    app.cli.add_command(create_admin_command)
    app.cli.add_command(reset_strikes_command)
    app.cli.add_command(seed_command)
