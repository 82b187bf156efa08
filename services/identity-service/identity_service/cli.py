"""Operator commands for the identity service."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator

import click

from .config import get_settings
from .domain.errors import IdentityError
from .domain.service import AccountService
from .repository import AccountRepository, build_pool


@contextmanager
def _open_service() -> Iterator[AccountService]:
    """Yield a service over a single-connection pool closed on exit."""
    settings = get_settings()
    pool = build_pool(
        settings.database_url,
        timeout=settings.store_timeout_seconds,
        statement_timeout_ms=settings.statement_timeout_ms,
        min_size=1,
        max_size=1,
    )
    pool.open()
    try:
        yield AccountService(AccountRepository(pool), settings=settings)
    finally:
        pool.close()


service_factory: Callable[[], ContextManager[AccountService]] = _open_service


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Override LOG_LEVEL for this invocation",
)
def cli(log_level: str | None) -> None:
    """Identity service administration."""
    logging.basicConfig(level=log_level or get_settings().log_level)


@cli.command("create-super-admin")
@click.option("--name", default="Super Admin", show_default=True, help="Display name")
@click.option("--email", prompt=True, help="Login email of the super admin")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password (prompted when omitted)",
)
def create_super_admin(name: str, email: str, password: str) -> None:
    """Provision the single super admin account.

    Refuses to run when a super admin already exists.
    """
    try:
        with service_factory() as service:
            account = service.provision_super_admin(name=name, email=email, password=password)
    except IdentityError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo("Super admin created successfully:")
    click.echo(f"  Email: {account.email}")
    click.echo(f"  Role:  {account.role.value}")


def main() -> None:
    cli()
