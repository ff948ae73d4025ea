"""CLI commands for inspecting learned receipt lines."""

from __future__ import annotations

import click
from flask import Flask
from flask.cli import with_appcontext

from pantry.extensions import db
from pantry.receipts.learned import get_learned_line_store


@click.group("receipts")
def receipts_cli() -> None:
    """Receipt reconciliation commands."""


def register_commands(app: Flask) -> None:
    """Register CLI commands with the application."""
    app.cli.add_command(receipts_cli)


@receipts_cli.command("learned-list")
@click.option("--item-id", type=int, default=None, help="Only lines bound to this item")
@click.option("--ignored", is_flag=True, help="Only lines marked as ignored")
@with_appcontext
def learned_list(item_id: int | None, ignored: bool) -> None:
    """List learned receipt lines, most recently changed first."""
    lines = get_learned_line_store().all()
    if item_id is not None:
        lines = [line for line in lines if line.item_id == item_id]
    if ignored:
        lines = [line for line in lines if line.ignored]

    if not lines:
        click.echo("No learned receipt lines found")
        return

    for line in lines:
        if line.ignored:
            disposition = "ignored"
        elif line.item_id is not None:
            disposition = f"item {line.item_id}"
        else:
            disposition = "unresolved"
        click.echo(f"{line.fingerprint}\t{line.title}\t{disposition}\tx{line.quantity_multiplier:g}")


@receipts_cli.command("learned-forget")
@click.argument("fingerprint")
@with_appcontext
def learned_forget(fingerprint: str) -> None:
    """Forget a learned receipt line so it has to be confirmed by hand again."""
    if not get_learned_line_store().forget(fingerprint):
        db.session.rollback()
        click.echo(f"❌ Error: No learned receipt line with fingerprint {fingerprint}")
        raise SystemExit(1)

    db.session.commit()
    click.echo(f"✅ Forgot learned receipt line {fingerprint}")
