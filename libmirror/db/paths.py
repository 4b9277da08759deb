"""Breadcrumb reconstruction from cached parent links.

The cache is filled lazily, so a node's ancestors may simply not be cached
yet.  A missing ancestor ends the walk with the partial path; it is never an
error.  The remote tree is assumed, not proven, to be acyclic, so the walk
is also bounded in depth and refuses to revisit a node.
"""

from __future__ import annotations

import logging
import sqlite3

from libmirror.db.nodes import get_node
from libmirror.ids import ROOT_ID

logger = logging.getLogger(__name__)

MAX_PATH_DEPTH = 64


def get_path(conn: sqlite3.Connection, workspace: str, node_id: str) -> list[str]:
    """Return the names from the top-level ancestor down to *node_id*.

    The root sentinel itself is not included.  If *node_id* is not cached
    the result is empty.
    """
    names: list[str] = []
    seen: set[str] = set()
    current = node_id

    while current and current != ROOT_ID:
        if current in seen or len(names) >= MAX_PATH_DEPTH:
            logger.warning(
                "Path walk for %s in %r aborted at %s: cycle or depth > %d",
                node_id, workspace, current, MAX_PATH_DEPTH,
            )
            break
        seen.add(current)

        node = get_node(conn, workspace, current)
        if node is None:
            # Ancestor not cached yet: path unknown beyond this point.
            break
        names.insert(0, node.name)
        current = node.parent_id

    return names


def get_path_string(conn: sqlite3.Connection, workspace: str, node_id: str) -> str:
    """Return the path as ``/Top/Sub/Item``."""
    return "/" + "/".join(get_path(conn, workspace, node_id))
