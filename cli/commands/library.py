"""Library commands: browse the cached tree and sync it with the remote side."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, contextmanager, nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Optional, TypeVar

import typer

from libmirror.blobs import BlobStore
from libmirror.config import settings
from libmirror.db import get_connection, init_db, nodes, paths
from libmirror.db.models import ContentNode
from libmirror.errors import LibMirrorError
from libmirror.ids import decimal_to_hex, format_content_id, hex_to_decimal
from libmirror.remote import ContentClient, RemoteTreeSource, TreeSource
from libmirror.sync import SyncEngine

library_app = typer.Typer(help="Browse and sync the content library cache.", no_args_is_help=True)

T = TypeVar("T")

_WORKSPACE_OPTION = typer.Option(
    None, "--workspace", "-w", help="Cache workspace (default: LIBMIRROR_WORKSPACE)."
)


# ---------------------------------------------------------------------------
# Plumbing
# ---------------------------------------------------------------------------

@contextmanager
def _open_db() -> Iterator[Any]:
    conn = get_connection()
    init_db(conn)
    try:
        yield conn
    finally:
        conn.close()


@asynccontextmanager
async def _open_source() -> AsyncIterator[TreeSource]:
    async with ContentClient.from_settings() as client:
        yield RemoteTreeSource(client, admin_mode=settings.remote_admin_mode)


def _run(
    workspace: Optional[str],
    action: Callable[[SyncEngine], Awaitable[T]],
    max_concurrency: Optional[int] = None,
    remote: bool = True,
) -> T:
    """Build an engine for *workspace*, run *action* on it, map errors to exit 1.

    With *remote* unset no client is built; the engine then works on the
    cache alone.
    """

    async def runner() -> T:
        with _open_db() as conn:
            async with (_open_source() if remote else nullcontext()) as source:
                engine = SyncEngine(
                    conn,
                    workspace or settings.default_workspace,
                    source,
                    BlobStore(settings.content_dir),
                    max_concurrency=max_concurrency,
                )
                return await action(engine)

    try:
        return asyncio.run(runner())
    except (LibMirrorError, ValueError) as exc:
        typer.echo(f"❌ Error: {exc}")
        raise typer.Exit(code=1)


def _node_line(node: ContentNode) -> str:
    icon = "📁" if node.is_folder else "📄"
    marker = "" if node.children_fetched or not node.is_folder else " …"
    return f"  {icon} {node.name}  [{node.item_type}]  {node.id}{marker}"


def _timestamp(value: Optional[float]) -> str:
    if not value:
        return "never"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Browsing
# ---------------------------------------------------------------------------

@library_app.command("roots")
def library_roots(
    workspace: Optional[str] = _WORKSPACE_OPTION,
    admin: bool = typer.Option(False, "--admin", help="Include the admin-mode Global folder."),
) -> None:
    """List the special top-level folders."""

    async def action(engine: SyncEngine) -> list[ContentNode]:
        return engine.roots(include_admin=admin or settings.remote_admin_mode)

    for node in _run(workspace, action, remote=False):
        typer.echo(_node_line(node))


@library_app.command("ls")
def library_ls(
    node_id: str = typer.Argument(..., help="Folder id or special root alias."),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """List cached children without contacting the remote side."""
    ws = workspace or settings.default_workspace
    with _open_db() as conn:
        children = nodes.get_children(conn, ws, node_id)
        fetched = nodes.are_children_fetched(conn, ws, node_id)
    if not children:
        typer.echo("No cached children." if fetched else "Not expanded yet. Run `library expand`.")
        return
    for node in children:
        typer.echo(_node_line(node))


@library_app.command("expand")
def library_expand(
    node_id: str = typer.Argument(..., help="Folder id or special root alias."),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """List a folder's children, fetching them on first use."""

    async def action(engine: SyncEngine) -> list[ContentNode]:
        return await engine.expand(node_id)

    children = _run(workspace, action)
    if not children:
        typer.echo("Folder is empty.")
        return
    for node in children:
        typer.echo(_node_line(node))


@library_app.command("path")
def library_path(
    node_id: str = typer.Argument(...),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """Print the breadcrumb of a cached node."""
    ws = workspace or settings.default_workspace
    with _open_db() as conn:
        if nodes.get_node(conn, ws, node_id) is None:
            typer.echo(f"❌ Node not cached: {node_id}")
            raise typer.Exit(code=1)
        typer.echo(paths.get_path_string(conn, ws, node_id))


@library_app.command("search")
def library_search(
    term: str = typer.Argument(..., help="Name substring (case-insensitive)."),
    limit: int = typer.Option(50, "--limit", "-n"),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """Search cached nodes by name."""
    ws = workspace or settings.default_workspace
    with _open_db() as conn:
        results = nodes.search_by_name(conn, ws, term, limit=limit)
    if not results:
        typer.echo(f"No cached items match {term!r}.")
        return
    for node in results:
        typer.echo(_node_line(node))


@library_app.command("show")
def library_show(
    node_id: str = typer.Argument(...),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """Show the cached record of one node."""
    ws = workspace or settings.default_workspace
    with _open_db() as conn:
        node = nodes.get_node(conn, ws, node_id)
        if node is None:
            typer.echo(f"❌ Node not cached: {node_id}")
            raise typer.Exit(code=1)
        stale = nodes.is_stale(conn, ws, node_id, settings.stale_after_seconds)

    typer.echo(f"Name        : {node.name}")
    typer.echo(f"ID          : {format_content_id(node.id)}")
    typer.echo(f"Type        : {node.item_type}")
    typer.echo(f"Parent      : {node.parent_id}")
    if node.description:
        typer.echo(f"Description : {node.description}")
    typer.echo(f"Created     : {node.created_at or '-'} by {node.created_by or '-'}")
    typer.echo(f"Modified    : {node.modified_at or '-'} by {node.modified_by or '-'}")
    if node.permissions:
        typer.echo(f"Permissions : {', '.join(node.permissions)}")
    typer.echo(f"Fetched     : {_timestamp(node.last_fetched)}{' (stale)' if stale else ''}")
    if node.is_folder:
        typer.echo(f"Expanded    : {'yes' if node.children_fetched else 'no'}")


@library_app.command("stats")
def library_stats(workspace: Optional[str] = _WORKSPACE_OPTION) -> None:
    """Print item counts and fetch times for a workspace."""
    ws = workspace or settings.default_workspace
    with _open_db() as conn:
        stats = nodes.cache_stats(conn, ws)
    typer.echo(f"Workspace : {ws}")
    typer.echo(f"Items     : {stats.total_items}")
    for item_type, count in stats.counts_by_type.items():
        typer.echo(f"  {item_type:<20} {count}")
    typer.echo(f"Oldest    : {_timestamp(stats.oldest_last_fetched)}")
    typer.echo(f"Newest    : {_timestamp(stats.newest_last_fetched)}")


# ---------------------------------------------------------------------------
# Sync and maintenance
# ---------------------------------------------------------------------------

@library_app.command("sync")
def library_sync(
    node_id: str = typer.Argument(..., help="Folder id or special root alias."),
    workspace: Optional[str] = _WORKSPACE_OPTION,
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Parallel fetches (default: SYNC_MAX_CONCURRENCY)."
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print each folder."),
) -> None:
    """Re-fetch a folder and everything below it."""

    def progress(folder_id: str) -> None:
        if not quiet:
            typer.echo(f"  ↻ {folder_id}")

    async def action(engine: SyncEngine):
        return await engine.sync_recursive(node_id, on_progress=progress)

    result = _run(workspace, action, max_concurrency=concurrency)
    typer.echo(
        f"Synced {result.folders_fetched} folder(s), {result.items_fetched} item(s), "
        f"{result.errors} error(s)."
    )
    for failed_id, message in result.failed:
        typer.echo(f"  ✗ {failed_id}: {message}")
    if result.errors:
        raise typer.Exit(code=1)


@library_app.command("invalidate")
def library_invalidate(
    node_id: str = typer.Argument(...),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """Make the next expand of a folder fetch it again."""
    with _open_db() as conn:
        found = nodes.mark_children_fetched(
            conn, workspace or settings.default_workspace, node_id, fetched=False
        )
    if not found:
        typer.echo(f"❌ Node not cached: {node_id}")
        raise typer.Exit(code=1)
    typer.echo(f"✅ Invalidated {node_id}")


@library_app.command("evict")
def library_evict(
    node_id: str = typer.Argument(...),
    workspace: Optional[str] = _WORKSPACE_OPTION,
) -> None:
    """Remove a node and its cached subtree."""

    async def action(engine: SyncEngine) -> int:
        return engine.evict(node_id)

    deleted = _run(workspace, action, remote=False)
    if not deleted:
        typer.echo(f"❌ Node not cached: {node_id}")
        raise typer.Exit(code=1)
    typer.echo(f"✅ Evicted {deleted} item(s)")


@library_app.command("clear")
def library_clear(
    workspace: Optional[str] = _WORKSPACE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Drop every cached item and payload of a workspace."""
    ws = workspace or settings.default_workspace
    if not yes:
        typer.confirm(f"Clear the whole cache of workspace {ws!r}?", abort=True)

    async def action(engine: SyncEngine) -> int:
        return engine.clear()

    count = _run(ws, action, remote=False)
    typer.echo(f"✅ Cleared {count} item(s) from {ws!r}")


@library_app.command("export")
def library_export(
    node_id: str = typer.Argument(...),
    destination: Path = typer.Argument(..., help="Output JSON file."),
    workspace: Optional[str] = _WORKSPACE_OPTION,
    fetch: bool = typer.Option(True, "--fetch/--no-fetch", help="Fetch the payload if not cached."),
) -> None:
    """Write the raw JSON payload of a node to a file."""

    async def action(engine: SyncEngine) -> bool:
        if await engine.load_content(node_id, fetch=fetch) is None:
            return False
        return engine.blobs.export_to(engine.workspace, node_id, destination)

    if not _run(workspace, action):
        typer.echo(f"❌ No cached content for {node_id}")
        raise typer.Exit(code=1)
    typer.echo(f"✅ Exported {node_id} to {destination}")


@library_app.command("id")
def library_id(value: str = typer.Argument(..., help="Hex or decimal content id.")) -> None:
    """Convert a content id between its hex and decimal forms."""
    try:
        if len(value) == 16 or any(c in "abcdefABCDEF" for c in value):
            typer.echo(f"{value.upper()} = {hex_to_decimal(value)}")
        else:
            typer.echo(f"{value} = {decimal_to_hex(value)}")
    except ValueError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=1)
