"""Database layer tests: connection, schema and the workspace-scoped node store.

All tests use an in-memory SQLite database so they are:
- Fast (no disk I/O)
- Isolated (each fixture gets a fresh DB)
- Side-effect free (nothing written to ~/.libmirror)
"""

from __future__ import annotations

import itertools
import sqlite3
from typing import Generator

import pytest

from libmirror.db.connection import get_connection
from libmirror.db.migrations import current_version, init_db
from libmirror.db.models import ContentNode
from libmirror.db.nodes import (
    apply_listing,
    are_children_fetched,
    cache_stats,
    clear_workspace,
    delete_cascade,
    get_children,
    get_node,
    get_top_level,
    is_stale,
    list_by_type,
    mark_children_fetched,
    search_by_name,
    touch_node,
    upsert_node,
    upsert_nodes,
    vacuum,
)
from libmirror.errors import StorageError
from libmirror.ids import ROOT_ID

WS = "work"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory connection with the schema initialised."""
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


def _node(
    node_id: str,
    name: str,
    item_type: str = "Folder",
    parent_id: str = ROOT_ID,
    workspace: str = WS,
    **kwargs,
) -> ContentNode:
    return ContentNode(
        id=node_id,
        workspace=workspace,
        name=name,
        item_type=item_type,
        parent_id=parent_id,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# connection / init
# ---------------------------------------------------------------------------

class TestConnection:
    def test_row_factory(self, conn: sqlite3.Connection) -> None:
        row = conn.execute("SELECT 1 AS one").fetchone()
        assert row["one"] == 1

    def test_wal_mode(self, conn: sqlite3.Connection) -> None:
        row = conn.execute("PRAGMA journal_mode").fetchone()
        # In-memory DBs always return 'memory', on-disk returns 'wal'
        assert row[0] in ("wal", "memory")

    def test_on_disk_creates_parent_dir(self, tmp_path) -> None:
        path = tmp_path / "nested" / "cache.db"
        connection = get_connection(db_path=path)
        init_db(connection)
        connection.close()
        assert path.exists()


class TestInitDb:
    def test_tables_exist(self, conn: sqlite3.Connection) -> None:
        tables = {
            r["name"]
            for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"content_items", "schema_version"} <= tables

    def test_indexes_exist(self, conn: sqlite3.Connection) -> None:
        indexes = {
            r["name"]
            for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
        }
        assert {"idx_items_parent", "idx_items_type"} <= indexes

    def test_idempotent(self, conn: sqlite3.Connection) -> None:
        init_db(conn)
        init_db(conn)
        assert current_version(conn) == 0


# ---------------------------------------------------------------------------
# upsert / get
# ---------------------------------------------------------------------------

class TestUpsert:
    def test_insert_and_get(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Alpha", permissions=["View", "Edit"]))
        node = get_node(conn, WS, "A")
        assert node is not None
        assert node.name == "Alpha"
        assert node.permissions == ["View", "Edit"]
        assert node.last_fetched > 0

    def test_missing_returns_none(self, conn: sqlite3.Connection) -> None:
        assert get_node(conn, WS, "nope") is None

    def test_replace_existing(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Alpha"))
        upsert_node(conn, _node("A", "Renamed", description="moved"))
        node = get_node(conn, WS, "A")
        assert node.name == "Renamed"
        assert node.description == "moved"
        assert conn.execute("SELECT COUNT(*) FROM content_items").fetchone()[0] == 1

    def test_workspaces_are_isolated(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "In work"))
        upsert_node(conn, _node("A", "In other", workspace="other"))
        assert get_node(conn, WS, "A").name == "In work"
        assert get_node(conn, "other", "A").name == "In other"

    def test_non_folder_never_has_children(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("D", "Dash", item_type="Dashboard", has_children=True))
        assert get_node(conn, WS, "D").has_children is False

    def test_folder_keeps_has_children(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("F", "Folder", has_children=True))
        assert get_node(conn, WS, "F").has_children is True

    def test_batch_is_all_or_nothing(self, conn: sqlite3.Connection) -> None:
        good = _node("A", "Alpha")
        bad = _node("B", None)  # type: ignore[arg-type]  # violates NOT NULL
        with pytest.raises(StorageError):
            upsert_nodes(conn, [good, bad])
        assert get_node(conn, WS, "A") is None


# ---------------------------------------------------------------------------
# children ordering
# ---------------------------------------------------------------------------

class TestChildrenOrdering:
    CHILDREN = [
        ("d1", "beta", "Dashboard"),
        ("f1", "Zeta", "Folder"),
        ("s1", "Alpha", "Search"),
        ("f2", "alpha", "Folder"),
        ("f3", "Beta", "Folder"),
        ("d2", "Beta", "Dashboard"),
    ]
    # Folders first, then BINARY name order (upper case before lower case).
    EXPECTED = ["f3", "f1", "f2", "s1", "d2", "d1"]

    @pytest.mark.parametrize("order", list(itertools.permutations(range(6)))[::37])
    def test_folders_first_then_binary_name(
        self, conn: sqlite3.Connection, order: tuple[int, ...]
    ) -> None:
        for i in order:
            node_id, name, item_type = self.CHILDREN[i]
            upsert_node(conn, _node(node_id, name, item_type, parent_id="P"))
        assert [c.id for c in get_children(conn, WS, "P")] == self.EXPECTED

    def test_same_name_tie_broken_by_id(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("b", "Same", "Dashboard", parent_id="P"))
        upsert_node(conn, _node("a", "Same", "Dashboard", parent_id="P"))
        assert [c.id for c in get_children(conn, WS, "P")] == ["a", "b"]

    def test_top_level(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("personal", "Personal"))
        upsert_node(conn, _node("X", "Nested", parent_id="personal"))
        assert [n.id for n in get_top_level(conn, WS)] == ["personal"]


# ---------------------------------------------------------------------------
# children_fetched / apply_listing
# ---------------------------------------------------------------------------

class TestChildrenFetched:
    def test_default_false(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("F", "Folder"))
        assert are_children_fetched(conn, WS, "F") is False

    def test_missing_node_is_false(self, conn: sqlite3.Connection) -> None:
        assert are_children_fetched(conn, WS, "ghost") is False

    def test_mark_and_clear(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("F", "Folder"))
        assert mark_children_fetched(conn, WS, "F") is True
        assert are_children_fetched(conn, WS, "F") is True
        assert mark_children_fetched(conn, WS, "F", fetched=False) is True
        assert are_children_fetched(conn, WS, "F") is False

    def test_mark_missing_returns_false(self, conn: sqlite3.Connection) -> None:
        assert mark_children_fetched(conn, WS, "ghost") is False

    def test_clearing_keeps_children(self, conn: sqlite3.Connection) -> None:
        apply_listing(conn, _node("F", "Folder"), [_node("c", "Child", "Dashboard", "F")])
        mark_children_fetched(conn, WS, "F", fetched=False)
        assert [c.id for c in get_children(conn, WS, "F")] == ["c"]


class TestApplyListing:
    def test_flags(self, conn: sqlite3.Connection) -> None:
        apply_listing(
            conn,
            _node("P", "Parent"),
            [_node("F", "Sub", parent_id="P", children_fetched=True)],
            [_node("G", "Deep", parent_id="F")],
        )
        assert are_children_fetched(conn, WS, "P") is True
        assert are_children_fetched(conn, WS, "F") is False
        assert get_node(conn, WS, "G").parent_id == "F"

    def test_failure_leaves_previous_state(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("P", "Parent"))
        with pytest.raises(StorageError):
            apply_listing(
                conn,
                _node("P", "Parent v2"),
                [_node("ok", "Fine", "Dashboard", "P"), _node("bad", None, "Dashboard", "P")],  # type: ignore[arg-type]
            )
        node = get_node(conn, WS, "P")
        assert node.name == "Parent"
        assert node.children_fetched is False
        assert get_children(conn, WS, "P") == []


# ---------------------------------------------------------------------------
# staleness
# ---------------------------------------------------------------------------

class TestStaleness:
    def test_zero_max_age_is_always_stale(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Alpha"))
        assert is_stale(conn, WS, "A", 0) is True

    def test_large_max_age_is_fresh(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Alpha"))
        assert is_stale(conn, WS, "A", 3600) is False

    def test_missing_is_stale(self, conn: sqlite3.Connection) -> None:
        assert is_stale(conn, WS, "ghost", 3600) is True

    def test_touch_refreshes(self, conn: sqlite3.Connection) -> None:
        upsert_node(conn, _node("A", "Alpha"))
        conn.execute("UPDATE content_items SET last_fetched = 0")
        conn.commit()
        assert is_stale(conn, WS, "A", 3600) is True
        assert touch_node(conn, WS, "A") is True
        assert is_stale(conn, WS, "A", 3600) is False

    def test_touch_missing(self, conn: sqlite3.Connection) -> None:
        assert touch_node(conn, WS, "ghost") is False


# ---------------------------------------------------------------------------
# delete / clear
# ---------------------------------------------------------------------------

def _three_level_tree(conn: sqlite3.Connection) -> None:
    """R → (A → (A1, A2), B → (B1)), plus an unrelated sibling S → (S1)."""
    upsert_nodes(conn, [
        _node("R", "Root"),
        _node("A", "A", parent_id="R"),
        _node("A1", "A1", "Dashboard", parent_id="A"),
        _node("A2", "A2", "Search", parent_id="A"),
        _node("B", "B", parent_id="R"),
        _node("B1", "B1", "Dashboard", parent_id="B"),
        _node("S", "Sibling"),
        _node("S1", "S1", "Dashboard", parent_id="S"),
    ])


class TestDeleteCascade:
    def test_removes_whole_subtree(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        deleted = delete_cascade(conn, WS, "R")
        assert deleted == ["R", "A", "A1", "A2", "B", "B1"]
        for node_id in deleted:
            assert get_node(conn, WS, node_id) is None

    def test_sibling_subtree_untouched(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        delete_cascade(conn, WS, "R")
        assert get_node(conn, WS, "S") is not None
        assert get_node(conn, WS, "S1") is not None

    def test_other_workspace_untouched(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        upsert_node(conn, _node("R", "Root", workspace="other"))
        delete_cascade(conn, WS, "R")
        assert get_node(conn, "other", "R") is not None

    def test_missing_returns_empty(self, conn: sqlite3.Connection) -> None:
        assert delete_cascade(conn, WS, "ghost") == []

    def test_cycle_terminates(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [_node("X", "X", parent_id="Y"), _node("Y", "Y", parent_id="X")])
        assert sorted(delete_cascade(conn, WS, "X")) == ["X", "Y"]

    def test_clear_workspace(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        upsert_node(conn, _node("keep", "Keep", workspace="other"))
        assert clear_workspace(conn, WS) == 8
        assert cache_stats(conn, WS).total_items == 0
        assert get_node(conn, "other", "keep") is not None

    def test_vacuum(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        clear_workspace(conn, WS)
        vacuum(conn)


# ---------------------------------------------------------------------------
# search / stats
# ---------------------------------------------------------------------------

class TestQueries:
    def test_search_case_insensitive(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        upsert_node(conn, _node("q", "Quarterly Sales", "Dashboard", parent_id="R"))
        assert [n.id for n in search_by_name(conn, WS, "sales")] == ["q"]

    def test_search_escapes_wildcards(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [
            _node("p", "100% done", "Dashboard"),
            _node("n", "1000 done", "Dashboard"),
        ])
        assert [n.id for n in search_by_name(conn, WS, "0%")] == ["p"]

    def test_search_limit(self, conn: sqlite3.Connection) -> None:
        upsert_nodes(conn, [_node(f"n{i}", f"Item {i}", "Search") for i in range(10)])
        assert len(search_by_name(conn, WS, "Item", limit=3)) == 3

    def test_list_by_type(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        assert [n.id for n in list_by_type(conn, WS, "Dashboard")] == ["A1", "B1", "S1"]

    def test_stats(self, conn: sqlite3.Connection) -> None:
        _three_level_tree(conn)
        stats = cache_stats(conn, WS)
        assert stats.total_items == 8
        assert stats.counts_by_type == {"Dashboard": 3, "Folder": 4, "Search": 1}
        assert stats.oldest_last_fetched <= stats.newest_last_fetched

    def test_stats_empty(self, conn: sqlite3.Connection) -> None:
        stats = cache_stats(conn, WS)
        assert stats.total_items == 0
        assert stats.counts_by_type == {}
        assert stats.oldest_last_fetched is None
