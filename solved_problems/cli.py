"""CLI entry point for solved-problems.

Commands:
    solved-problems init             write a starter config and create the database
    solved-problems migrate          run schema migrations
    solved-problems serve            start the REST API (with MCP mounted at /mcp)
    solved-problems mcp              start the MCP server (stdio transport)
    solved-problems add-user         create a user account
    solved-problems issue-session    print a session token for a user
    solved-problems export           write a user's accessible problems to a zip
    solved-problems import           import a zip or JSON document for a user
"""

import json
import logging
import sqlite3
import sys
from pathlib import Path

import click

from solved_problems.config import (
    CONFIG_FILENAME,
    DEFAULT_DB_PATH,
    DEFAULTS,
    ConfigError,
    load_config,
    resolve_db_path,
)
from solved_problems.identity import Principal

DEFAULT_CONFIG = {"db_path": DEFAULT_DB_PATH, **DEFAULTS}


def _user_principal(conn: sqlite3.Connection, email: str) -> Principal:
    """Look up a user by email and return a session-equivalent Principal."""
    row = conn.execute(
        "SELECT id, role, two_factor_enabled FROM users WHERE email = ?", (email,)
    ).fetchone()
    if row is None:
        click.echo(f"No user with email '{email}'", err=True)
        sys.exit(1)
    return Principal(
        user_id=row["id"],
        role=row["role"],
        two_factor_enabled=bool(row["two_factor_enabled"]),
    )


@click.group()
def main() -> None:
    """solved-problems: a shared catalog of solved problems for people and agents."""


@main.command()
def init() -> None:
    """Create a starter solved-problems.config.json and initialize the database."""
    from db.migrations import init_db

    config_path = Path.cwd() / CONFIG_FILENAME
    if config_path.exists():
        click.echo(f"Config already exists: {config_path}")
    else:
        config_path.write_text(json.dumps(DEFAULT_CONFIG, indent=2) + "\n")
        click.echo(f"Created {config_path}")

    db_path = resolve_db_path(config_path)
    init_db(db_path).close()
    click.echo(f"Database ready at {db_path}")


@main.command()
def migrate() -> None:
    """Run schema migrations against the configured database."""
    from db.migrations import init_db

    db_path = resolve_db_path()
    init_db(db_path).close()
    click.echo(f"Migrated {db_path}")


@main.command()
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", default=None, type=int, help="Port (overrides config)")
def serve(host: str | None, port: int | None) -> None:
    """Start the solved-problems API server."""
    import uvicorn

    from api.app import create_app
    from db.migrations import init_db

    try:
        config = load_config()
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)

    logging.basicConfig(
        level=config["log_level"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db_path = resolve_db_path()
    init_db(db_path).close()

    app = create_app(db_path=db_path, config=config)
    uvicorn.run(app, host=host or config["host"], port=port or config["port"])


@main.command()
@click.option(
    "--api-key",
    default=None,
    envvar="SOLVED_PROBLEMS_API_KEY",
    help="API key the agent acts as",
)
def mcp(api_key: str | None) -> None:
    """Start the solved-problems MCP server (stdio transport)."""
    from solved_problems.mcp.server import run_server

    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    run_server(db_path=resolve_db_path(), api_key=api_key)


@main.command("add-user")
@click.option("--email", required=True)
@click.option("--name", required=True)
def add_user(email: str, name: str) -> None:
    """Create a user. The first user created becomes an admin."""
    from db.migrations import init_db
    from solved_problems.identity import create_user

    conn = init_db(resolve_db_path())
    try:
        result = create_user(conn, email, name)
    finally:
        conn.close()

    if "error" in result:
        click.echo(f"Error: {result['message']}", err=True)
        sys.exit(1)
    click.echo(f"Created {result['role']} user {result['email']} ({result['id']})")


@main.command("issue-session")
@click.option("--email", required=True)
def issue_session(email: str) -> None:
    """Print a session token for a user (send it as the session_token cookie)."""
    from db.migrations import init_db
    from solved_problems.identity import create_session

    conn = init_db(resolve_db_path())
    try:
        principal = _user_principal(conn, email)
        click.echo(create_session(conn, principal.user_id))
    finally:
        conn.close()


@main.command("export")
@click.option("--email", required=True, help="User whose accessible problems to export")
@click.option("--output", "-o", default="solved-problems-export.zip", type=click.Path())
def export_cmd(email: str, output: str) -> None:
    """Export every problem a user can read to a zip archive."""
    from db.migrations import init_db
    from solved_problems.transfer import export_solved_problems

    conn = init_db(resolve_db_path())
    try:
        result = export_solved_problems(conn, _user_principal(conn, email))
    finally:
        conn.close()

    if "error" in result:
        click.echo(f"Error: {result['message']}", err=True)
        sys.exit(1)
    Path(output).write_bytes(result["archive"])
    click.echo(f"Exported {result['count']} solved problem(s) to {output}")
    for solved_problem_id in result["skipped"]:
        click.echo(f"Skipped {solved_problem_id}: stored data is not exportable", err=True)


@main.command("import")
@click.option("--email", required=True, help="User who will own imported problems")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def import_cmd(email: str, path: str) -> None:
    """Import a zip archive or JSON document."""
    from db.migrations import init_db
    from solved_problems.transfer import import_solved_problems

    conn = init_db(resolve_db_path())
    try:
        result = import_solved_problems(
            conn, _user_principal(conn, email), Path(path).read_bytes(), Path(path).name
        )
    finally:
        conn.close()

    if "error" in result:
        click.echo(f"Error: {result['message']}", err=True)
        sys.exit(1)
    click.echo(
        f"Created {len(result['created'])}, drafted {len(result['drafted'])}, "
        f"{len(result['errors'])} error(s)"
    )
    for error in result["errors"]:
        click.echo(f"  {error}", err=True)
