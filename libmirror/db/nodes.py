"""Workspace-scoped CRUD over the ``content_items`` table.

Every function takes an open connection first.  Writes run inside a single
``with conn:`` transaction and surface any :class:`sqlite3.Error` as
:class:`~libmirror.errors.StorageError`; reads of a missing row return
``None`` rather than raising.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from time import time
from typing import Iterable, Iterator, Optional

from libmirror.db.models import CacheStats, ContentNode
from libmirror.errors import StorageError
from libmirror.ids import FOLDER, ROOT_ID


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

_UPSERT_SQL = """
    INSERT INTO content_items (
        workspace, id, name, item_type, parent_id, description,
        created_at, created_by, modified_at, modified_by,
        permissions, has_children, children_fetched, last_fetched
    ) VALUES (
        :workspace, :id, :name, :item_type, :parent_id, :description,
        :created_at, :created_by, :modified_at, :modified_by,
        :permissions, :has_children, :children_fetched, :last_fetched
    )
    ON CONFLICT(workspace, id) DO UPDATE SET
        name             = excluded.name,
        item_type        = excluded.item_type,
        parent_id        = excluded.parent_id,
        description      = excluded.description,
        created_at       = excluded.created_at,
        created_by       = excluded.created_by,
        modified_at      = excluded.modified_at,
        modified_by      = excluded.modified_by,
        permissions      = excluded.permissions,
        has_children     = excluded.has_children,
        children_fetched = excluded.children_fetched,
        last_fetched     = excluded.last_fetched
"""

# Folders first, then everything else; each group by name in BINARY
# (case-sensitive, code point) order, id as the final tie-break.
_CHILD_ORDER = """
    ORDER BY CASE item_type WHEN 'Folder' THEN 0 ELSE 1 END,
             name COLLATE BINARY,
             id
"""


def _row_to_node(row: sqlite3.Row) -> ContentNode:
    return ContentNode(
        id=row["id"],
        workspace=row["workspace"],
        name=row["name"],
        item_type=row["item_type"],
        parent_id=row["parent_id"],
        description=row["description"],
        created_at=row["created_at"],
        created_by=row["created_by"],
        modified_at=row["modified_at"],
        modified_by=row["modified_by"],
        permissions=json.loads(row["permissions"] or "[]"),
        has_children=bool(row["has_children"]),
        children_fetched=bool(row["children_fetched"]),
        last_fetched=row["last_fetched"],
    )


def _node_params(node: ContentNode, now: float) -> dict:
    return {
        "workspace": node.workspace,
        "id": node.id,
        "name": node.name,
        "item_type": node.item_type,
        "parent_id": node.parent_id or ROOT_ID,
        "description": node.description,
        "created_at": node.created_at,
        "created_by": node.created_by,
        "modified_at": node.modified_at,
        "modified_by": node.modified_by,
        "permissions": node.permissions_json(),
        # Only folders can have children, whatever the payload claimed.
        "has_children": int(bool(node.has_children) and node.item_type == FOLDER),
        "children_fetched": int(bool(node.children_fetched)),
        "last_fetched": now,
    }


@contextmanager
def _transaction(conn: sqlite3.Connection, action: str) -> Iterator[None]:
    """Commit on success, roll back and raise ``StorageError`` on failure."""
    try:
        with conn:
            yield
    except sqlite3.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


def _write_nodes(conn: sqlite3.Connection, nodes: Iterable[ContentNode]) -> None:
    """Execute the upserts without opening or closing a transaction."""
    now = time()
    for node in nodes:
        conn.execute(_UPSERT_SQL, _node_params(node, now))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def upsert_node(conn: sqlite3.Connection, node: ContentNode) -> None:
    """Insert *node*, or replace every column of the existing row."""
    with _transaction(conn, f"upsert {node.id}"):
        _write_nodes(conn, [node])


def upsert_nodes(conn: sqlite3.Connection, nodes: Iterable[ContentNode]) -> None:
    """Upsert many nodes in one all-or-nothing transaction."""
    with _transaction(conn, "batch upsert"):
        _write_nodes(conn, nodes)


def apply_listing(
    conn: sqlite3.Connection,
    node: ContentNode,
    children: Iterable[ContentNode],
    descendants: Iterable[ContentNode] = (),
) -> None:
    """Write a fetched folder and its listing as one atomic unit.

    The folder itself is stored with ``children_fetched = True``; every child
    and every deeper descendant (flat exports carry those) is stored with
    ``children_fetched = False``.  Readers either see the previous state or
    the complete new one, never a mix.
    """
    rows = [replace(node, children_fetched=True)]
    rows.extend(
        replace(child, children_fetched=False)
        for child in (*children, *descendants)
    )
    with _transaction(conn, f"write listing of {node.id}"):
        _write_nodes(conn, rows)


def mark_children_fetched(
    conn: sqlite3.Connection,
    workspace: str,
    node_id: str,
    fetched: bool = True,
) -> bool:
    """Set the ``children_fetched`` flag and refresh ``last_fetched``.

    Returns:
        ``True`` if a row was updated, ``False`` if the node is not cached.
    """
    with _transaction(conn, f"mark {node_id}"):
        cursor = conn.execute(
            """
            UPDATE content_items
            SET children_fetched = ?, last_fetched = ?
            WHERE workspace = ? AND id = ?
            """,
            (int(fetched), time(), workspace, node_id),
        )
    return cursor.rowcount > 0


def touch_node(conn: sqlite3.Connection, workspace: str, node_id: str) -> bool:
    """Refresh ``last_fetched`` only.  Returns ``False`` if not cached."""
    with _transaction(conn, f"touch {node_id}"):
        cursor = conn.execute(
            "UPDATE content_items SET last_fetched = ? WHERE workspace = ? AND id = ?",
            (time(), workspace, node_id),
        )
    return cursor.rowcount > 0


def delete_cascade(conn: sqlite3.Connection, workspace: str, node_id: str) -> list[str]:
    """Delete *node_id* and every transitive descendant.

    Descendants are found by a pre-order walk of :func:`get_children`.  A
    visited set keeps corrupted (cyclic) parent links from looping forever.

    Children cached under a node whose own record is missing are still
    removed.

    Returns:
        The ids that were deleted, in pre-order.  Empty if nothing matched.
    """
    ordered: list[str] = []
    seen: set[str] = set()
    stack = [node_id]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        ordered.append(current)
        # Reverse so the first child is popped (and listed) first.
        stack.extend(reversed([c.id for c in get_children(conn, workspace, current)]))

    if get_node(conn, workspace, node_id) is None:
        ordered.remove(node_id)
    if not ordered:
        return []

    with _transaction(conn, f"delete {node_id}"):
        conn.executemany(
            "DELETE FROM content_items WHERE workspace = ? AND id = ?",
            [(workspace, i) for i in ordered],
        )
    return ordered


def clear_workspace(conn: sqlite3.Connection, workspace: str) -> int:
    """Delete every cached node of *workspace*.  Returns the row count."""
    with _transaction(conn, f"clear {workspace}"):
        cursor = conn.execute(
            "DELETE FROM content_items WHERE workspace = ?", (workspace,)
        )
    return cursor.rowcount


def vacuum(conn: sqlite3.Connection) -> None:
    """Reclaim free pages.  Must run outside any open transaction."""
    try:
        conn.execute("VACUUM")
    except sqlite3.Error as exc:
        raise StorageError(f"vacuum failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_node(conn: sqlite3.Connection, workspace: str, node_id: str) -> Optional[ContentNode]:
    """Fetch a single node.  Returns ``None`` if it is not cached."""
    row = conn.execute(
        "SELECT * FROM content_items WHERE workspace = ? AND id = ?",
        (workspace, node_id),
    ).fetchone()
    return _row_to_node(row) if row else None


def get_children(conn: sqlite3.Connection, workspace: str, parent_id: str) -> list[ContentNode]:
    """Return the cached children of *parent_id*, Folders first, then by name."""
    rows = conn.execute(
        "SELECT * FROM content_items WHERE workspace = ? AND parent_id = ?" + _CHILD_ORDER,
        (workspace, parent_id),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def get_top_level(conn: sqlite3.Connection, workspace: str) -> list[ContentNode]:
    """Children of the root sentinel."""
    return get_children(conn, workspace, ROOT_ID)


def are_children_fetched(conn: sqlite3.Connection, workspace: str, node_id: str) -> bool:
    row = conn.execute(
        "SELECT children_fetched FROM content_items WHERE workspace = ? AND id = ?",
        (workspace, node_id),
    ).fetchone()
    return bool(row["children_fetched"]) if row else False


def is_stale(
    conn: sqlite3.Connection,
    workspace: str,
    node_id: str,
    max_age: float,
) -> bool:
    """Return ``True`` if the node is not cached or is at least *max_age* seconds old.

    ``max_age=0`` therefore always reports stale.
    """
    row = conn.execute(
        "SELECT last_fetched FROM content_items WHERE workspace = ? AND id = ?",
        (workspace, node_id),
    ).fetchone()
    if row is None or row["last_fetched"] is None:
        return True
    return time() - row["last_fetched"] >= max_age


def search_by_name(
    conn: sqlite3.Connection,
    workspace: str,
    term: str,
    limit: int = 50,
) -> list[ContentNode]:
    """Case-insensitive substring search on ``name``."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    rows = conn.execute(
        """
        SELECT * FROM content_items
        WHERE workspace = ? AND name LIKE ? ESCAPE '\\'
        ORDER BY name COLLATE BINARY, id
        LIMIT ?
        """,
        (workspace, f"%{escaped}%", limit),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def list_by_type(conn: sqlite3.Connection, workspace: str, item_type: str) -> list[ContentNode]:
    rows = conn.execute(
        """
        SELECT * FROM content_items
        WHERE workspace = ? AND item_type = ?
        ORDER BY name COLLATE BINARY, id
        """,
        (workspace, item_type),
    ).fetchall()
    return [_row_to_node(r) for r in rows]


def cache_stats(conn: sqlite3.Connection, workspace: str) -> CacheStats:
    """Item counts and the ``last_fetched`` range for *workspace*."""
    totals = conn.execute(
        """
        SELECT COUNT(*) AS total, MIN(last_fetched) AS oldest, MAX(last_fetched) AS newest
        FROM content_items WHERE workspace = ?
        """,
        (workspace,),
    ).fetchone()
    by_type = conn.execute(
        """
        SELECT item_type, COUNT(*) AS count
        FROM content_items WHERE workspace = ?
        GROUP BY item_type
        ORDER BY item_type
        """,
        (workspace,),
    ).fetchall()
    return CacheStats(
        total_items=totals["total"],
        counts_by_type={r["item_type"]: r["count"] for r in by_type},
        oldest_last_fetched=totals["oldest"],
        newest_last_fetched=totals["newest"],
    )
