"""Breadcrumb reconstruction over partially cached trees."""

from __future__ import annotations

import logging
import sqlite3
from typing import Generator

import pytest

from libmirror.db.connection import get_connection
from libmirror.db.migrations import init_db
from libmirror.db.models import ContentNode
from libmirror.db.nodes import delete_cascade, upsert_node, upsert_nodes
from libmirror.db.paths import MAX_PATH_DEPTH, get_path, get_path_string
from libmirror.ids import ROOT_ID

WS = "work"


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


def _node(node_id: str, name: str, parent_id: str, item_type: str = "Folder") -> ContentNode:
    return ContentNode(
        id=node_id, workspace=WS, name=name, item_type=item_type, parent_id=parent_id
    )


class TestGetPath:
    def test_full_chain(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [
            _node("A", "Personal", ROOT_ID),
            _node("B", "Reports", "A"),
            _node("C", "Sales", "B", "Dashboard"),
        ])
        assert get_path(conn, WS, "C") == ["Personal", "Reports", "Sales"]
        assert get_path_string(conn, WS, "C") == "/Personal/Reports/Sales"

    def test_top_level_node(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Personal", ROOT_ID))
        assert get_path(conn, WS, "A") == ["Personal"]

    def test_missing_node_is_empty(self, conn: sqlite3.Connection) -> None:
        assert get_path(conn, WS, "ghost") == []
        assert get_path_string(conn, WS, "ghost") == "/"

    def test_deleted_middle_ancestor_gives_partial_path(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [
            _node("A", "A", ROOT_ID),
            _node("B", "B", "A"),
            _node("C", "C", "B", "Dashboard"),
        ])
        conn.execute("DELETE FROM content_items WHERE id = 'B'")
        conn.commit()
        assert get_path(conn, WS, "C") == ["C"]

    def test_ancestor_never_fetched(self, conn: sqlite3.Connection) -> None:
        # Child cached from a listing whose folder record is not cached.
        upsert_node(conn, _node("C", "Orphan", "UNSEEN", "Search"))
        assert get_path(conn, WS, "C") == ["Orphan"]

    def test_cycle_returns_partial_path(self, conn: sqlite3.Connection, caplog) -> None:
        upsert_nodes(conn, [_node("X", "X", "Y"), _node("Y", "Y", "X")])
        with caplog.at_level(logging.WARNING, logger="libmirror.db.paths"):
            names = get_path(conn, WS, "X")
        assert names == ["Y", "X"]
        assert "cycle" in caplog.text

    def test_depth_guard(self, conn: sqlite3.Connection) -> None:
        chain = [_node("n0", "n0", ROOT_ID)]
        chain += [_node(f"n{i}", f"n{i}", f"n{i - 1}") for i in range(1, MAX_PATH_DEPTH + 10)]
        upsert_nodes(conn, chain)
        names = get_path(conn, WS, f"n{MAX_PATH_DEPTH + 9}")
        assert len(names) == MAX_PATH_DEPTH
        assert names[-1] == f"n{MAX_PATH_DEPTH + 9}"

    def test_scoped_to_workspace(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [_node("A", "A", ROOT_ID), _node("B", "B", "A")])
        assert get_path(conn, "other", "B") == []

    def test_after_cascade_delete(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [_node("A", "A", ROOT_ID), _node("B", "B", "A")])
        delete_cascade(conn, WS, "A")
        assert get_path(conn, WS, "B") == []
