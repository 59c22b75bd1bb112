"""
Flask CLI commands for checking the backend connection and rank ladder.
"""

import time

import click
from flask.cli import with_appcontext

from app import queries
from app.extensions import backend
from app.utils.backend_client import BackendError
from app.utils.helpers import format_points


@click.command('backend-ping')
@with_appcontext
def backend_ping_command():
    """
    Check that the backend answers a trivial read.

    Exits with status 1 when the backend is unreachable, so the command can
    be used from deployment health scripts.
    """
    click.echo("=" * 70)
    click.echo("BACKEND PING")
    click.echo("=" * 70)

    started = time.monotonic()
    try:
        backend.client.select('ranks', columns='id', limit=1)
    except BackendError as exc:
        click.echo(f"✗ Backend unreachable: {exc}", err=True)
        raise SystemExit(1)

    elapsed_ms = (time.monotonic() - started) * 1000
    click.echo(f"✓ Backend answered in {elapsed_ms:.0f}ms")


@click.command('show-ranks')
@with_appcontext
def show_ranks_command():
    """Print the rank ladder (stored ranks, or the built-in ladder)."""
    try:
        ranks = queries.list_ranks(backend.client)
    except BackendError as exc:
        click.echo(f"✗ Could not load ranks: {exc}", err=True)
        raise SystemExit(1)

    click.echo(f"{'#':>3}  {'Rank':<14} {'From':>8}  Multiplier")
    for rank in ranks:
        click.echo(
            f"{rank.sort_order:>3}  {rank.icon} {rank.rank_name:<12} "
            f"{format_points(rank.min_points):>8}  x{rank.multiplier:g}"
        )


def init_app(app):
    """Register CLI commands with Flask app."""
    app.cli.add_command(backend_ping_command)
    app.cli.add_command(show_ranks_command)
