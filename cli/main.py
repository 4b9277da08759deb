"""libmirror CLI: entry-point for all cache operations.

Usage:
    python cli/main.py --help

Sub-command groups:
    db        → cache database maintenance
    library   → browse, expand and sync the content library
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from libmirror.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import logging
from typing import Optional

import typer

from cli.commands.library import library_app
from libmirror.config import settings
from libmirror.db import get_connection, init_db
from libmirror.db.migrations import current_version
from libmirror.db.nodes import vacuum

app = typer.Typer(
    name="libmirror",
    help="Local mirror of a remote content library.",
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: LIBMIRROR_LOG_LEVEL or WARNING)."
    ),
) -> None:
    logging.basicConfig(
        level=(log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite cache (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    version = current_version(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path} (schema v{version})")


@db_app.command("vacuum")
def db_vacuum() -> None:
    """Reclaim unused space in the cache database."""
    conn = get_connection()
    init_db(conn)
    try:
        vacuum(conn)
    finally:
        conn.close()
    typer.echo("[db vacuum] Done.")


app.add_typer(library_app, name="library")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
