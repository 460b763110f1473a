"""authcore CLI — run the server and administer principals.

Usage:
    authcore serve                                   # Run the API with uvicorn
    authcore init-db                                 # Create tables (dev only)
    authcore create-user a@b.io "Ada" --role admin   # Register with explicit roles
    authcore grant-role a@b.io super-user            # Add a role to a principal

Registration through the API always assigns the default "user" role.
Elevated roles are handed out here, by someone with database access.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from contextlib import asynccontextmanager

import click

from authcore.auth.password import hash_password
from authcore.auth.roles import DEFAULT_ROLES, ValidRoles
from authcore.config import settings
from authcore.db.models import Principal
from authcore.errors import ConflictError

_ROLE_CHOICE = click.Choice([r.value for r in ValidRoles])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


@asynccontextmanager
async def _open_store():
    """Credential store for one CLI command, per the configured backend."""
    if settings.store_backend == "memory":
        from authcore.api.deps import memory_store

        yield memory_store
        return

    from authcore.db.engine import get_engine, get_session_factory
    from authcore.store.sql import SqlCredentialStore

    try:
        async with get_session_factory()() as session:
            yield SqlCredentialStore(session)
    finally:
        await get_engine().dispose()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _principal_dict(p: Principal) -> dict:
    return {"id": str(p.id), "email": p.email, "full_name": p.full_name, "roles": p.roles}


def _fail(message: str):
    click.secho(f"Error: {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
def cli():
    """authcore — credential issuance and session management."""


@cli.command()
@click.option("--host", default=None, help="Bind address (default from settings).")
@click.option("--port", default=None, type=int, help="Port (default from settings).")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
def serve(host, port, reload):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "authcore.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@cli.command("init-db")
def init_db():
    """Create all tables directly (use Alembic migrations in production)."""
    if settings.store_backend != "sql":
        click.echo("Store backend is 'memory'; nothing to create.")
        return

    from authcore.db.engine import create_tables, get_engine

    async def _go():
        engine = get_engine()
        try:
            await create_tables(engine)
        finally:
            await engine.dispose()

    _run(_go())
    click.secho("Tables created.", fg="green")


@cli.command("create-user")
@click.argument("email")
@click.argument("full_name")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", "roles", multiple=True, type=_ROLE_CHOICE,
              help="Role to assign (repeatable). Defaults to 'user'.")
def create_user(email, full_name, password, roles):
    """Register a principal with explicit roles."""
    if len(password) < 8:
        _fail("password must be at least 8 characters")

    async def _go():
        async with _open_store() as store:
            principal = Principal(
                email=email,
                full_name=full_name,
                password_hash=hash_password(password),
                roles=list(roles) or list(DEFAULT_ROLES),
            )
            return await store.create(principal)

    try:
        principal = _run(_go())
    except ConflictError as e:
        _fail(e.message)
    click.echo(_pretty_json(_principal_dict(principal)))


@cli.command("grant-role")
@click.argument("email")
@click.argument("role", type=_ROLE_CHOICE)
def grant_role(email, role):
    """Add ROLE to the principal registered as EMAIL."""

    async def _go():
        async with _open_store() as store:
            principal = await store.find_by_email(email)
            if principal is None:
                return None
            if role not in principal.roles:
                principal.roles = [*principal.roles, role]
                principal = await store.update(principal)
            return principal

    principal = _run(_go())
    if principal is None:
        _fail(f"no principal registered as {email}")
    click.echo(_pretty_json(_principal_dict(principal)))


def main():
    cli()


if __name__ == "__main__":
    main()
