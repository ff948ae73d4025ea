"""CLI commands for user management."""

from __future__ import annotations

import click
from flask import Flask
from flask.cli import with_appcontext

from pantry.auth.models import User
from pantry.extensions import db


@click.group("user")
def user_cli() -> None:
    """User management commands."""


def register_commands(app: Flask) -> None:
    """Register CLI commands with the application."""
    app.cli.add_command(user_cli)


@user_cli.command("create")
@click.option("--username", required=True, help="Username for the new user")
@click.option("--email", required=True, help="Email address for the new user")
@click.password_option(help="Password for the new user")
@with_appcontext
def create_user(username: str, email: str, password: str) -> None:
    """Create a new user."""
    if User.query.filter((User.username == username) | (User.email == email)).first():
        click.echo(f"❌ Error: A user with username '{username}' or email '{email}' already exists")
        raise SystemExit(1)

    user = User(username=username, email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"✅ Created user {user.username} (ID: {user.id})")


@user_cli.command("list")
@with_appcontext
def list_users() -> None:
    """List all users."""
    users = db.session.scalars(db.select(User).order_by(User.id)).all()
    if not users:
        click.echo("No users found")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id}\t{user.username}\t{user.email}\t{status}")
