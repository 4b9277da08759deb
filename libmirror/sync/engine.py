"""Keep the local cache consistent with the remote tree.

Two access patterns are supported:

* **Lazy expansion** (:meth:`SyncEngine.expand`): fetch a folder's listing
  the first time it is opened and serve it from the cache afterwards.
* **Recursive sync** (:meth:`SyncEngine.sync_recursive`): re-fetch a whole
  subtree depth-first.  A folder that fails to fetch is counted and skipped;
  the walk carries on with its siblings.  Only a :class:`StorageError`
  aborts the walk.

The engine owns no global state.  Each instance is bound to one connection
and one workspace; several workspaces simply means several engines.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

from libmirror.blobs import BlobStore
from libmirror.config import settings
from libmirror.db import nodes, paths
from libmirror.db.models import ContentNode
from libmirror.errors import RemoteError, StorageError
from libmirror.ids import FOLDER, ROOT_ID, SPECIAL_ROOTS, is_special_root
from libmirror.remote.models import FolderListing, RemoteItem
from libmirror.remote.source import TreeSource
from libmirror.sync.models import SyncResult

logger = logging.getLogger(__name__)

MAX_TREE_DEPTH = 64

ProgressCallback = Callable[[str], Any]


def _to_node(workspace: str, item: RemoteItem, *, has_children: bool) -> ContentNode:
    return ContentNode(
        id=item.id,
        workspace=workspace,
        name=item.name,
        item_type=item.item_type,
        parent_id=item.parent_id,
        description=item.description,
        created_at=item.created_at,
        created_by=item.created_by,
        modified_at=item.modified_at,
        modified_by=item.modified_by,
        permissions=list(item.permissions),
        has_children=has_children,
    )


def _child_node(workspace: str, item: RemoteItem) -> ContentNode:
    # A hint only: the folder may turn out to be empty once expanded.
    return _to_node(
        workspace,
        item,
        has_children=item.item_type == FOLDER or item.has_nested_children,
    )


@dataclass
class _Walk:
    """Mutable state shared by every branch of one recursive sync."""

    result: SyncResult
    semaphore: asyncio.Semaphore
    cancel: Optional[asyncio.Event]
    on_progress: Optional[ProgressCallback]
    visited: set[str] = field(default_factory=set)
    aborted: bool = False

    def should_stop(self) -> bool:
        if self.cancel is not None and self.cancel.is_set():
            self.result.cancelled = True
            return True
        return self.aborted


class SyncEngine:
    def __init__(
        self,
        conn: sqlite3.Connection,
        workspace: str,
        source: Optional[TreeSource],
        blobs: BlobStore,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self.conn = conn
        self.workspace = workspace
        self.source = source
        self.blobs = blobs
        self.max_concurrency = max(
            1, settings.sync_max_concurrency if max_concurrency is None else max_concurrency
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Fetch + write
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _node_lock(self, node_id: str) -> AsyncIterator[None]:
        """Hold the per-node lock; the entry is dropped when nobody needs it."""
        lock = self._locks.get(node_id)
        if lock is None:
            lock = self._locks[node_id] = asyncio.Lock()
        self._lock_users[node_id] = self._lock_users.get(node_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[node_id] -= 1
            if not self._lock_users[node_id]:
                del self._lock_users[node_id]
                del self._locks[node_id]

    def _source_for(self, node_id: str) -> TreeSource:
        if self.source is None:
            raise RemoteError(node_id, "no remote source configured")
        return self.source

    async def _fetch_listing(self, node_id: str) -> FolderListing:
        source = self._source_for(node_id)
        if is_special_root(node_id):
            return await source.fetch_special_root(node_id)
        return await source.fetch_folder(node_id)

    def _placed_parent(self, node: ContentNode) -> str:
        """Parent id to store for a freshly fetched folder.

        Folders directly below a special root report the root's real id as
        their parent, while the root itself is cached under its alias.  When
        the reported parent is not cached, a folder already placed in the
        tree keeps its cached parent.
        """
        cached = nodes.get_node(self.conn, self.workspace, node.id)
        if cached is None or cached.parent_id == node.parent_id:
            return node.parent_id
        if nodes.get_node(self.conn, self.workspace, node.parent_id) is not None:
            return node.parent_id
        return cached.parent_id

    def _store_listing(self, node_id: str, listing: FolderListing) -> None:
        """Persist a fetched listing: blob first, then one DB transaction.

        If the DB write fails the previous blob is put back, so a failed
        store leaves both the cache rows and the payload as they were.
        """
        ws = self.workspace
        children = [_child_node(ws, c) for c in listing.children]
        descendants = [_child_node(ws, d) for d in listing.descendants]
        node = _to_node(ws, listing.node, has_children=bool(children))
        node.parent_id = self._placed_parent(node)

        previous = self.blobs.load(ws, node_id)
        self.blobs.save(ws, node_id, listing.raw)
        try:
            nodes.apply_listing(self.conn, node, children, descendants)
        except StorageError:
            if previous is None:
                self.blobs.delete(ws, node_id)
            else:
                self.blobs.save(ws, node_id, previous)
            raise

        if listing.remote_id:
            self.blobs.save(ws, listing.remote_id, listing.raw)
        logger.debug(
            "Stored %s in %r: %d children, %d descendants",
            node_id, ws, len(children), len(descendants),
        )

    async def _fetch_and_store(self, node_id: str) -> FolderListing:
        listing = await self._fetch_listing(node_id)
        self._store_listing(node_id, listing)
        return listing

    # ------------------------------------------------------------------
    # Lazy expansion
    # ------------------------------------------------------------------
    async def expand(self, node_id: str) -> list[ContentNode]:
        """Return the children of *node_id*, fetching them on first use.

        Concurrent calls for the same id share one fetch: later callers wait
        for the first one and then read what it committed.

        Raises:
            RemoteError: The fetch failed; nothing was written.
            StorageError: The fetch succeeded but could not be stored.
        """
        if nodes.are_children_fetched(self.conn, self.workspace, node_id):
            return nodes.get_children(self.conn, self.workspace, node_id)

        async with self._node_lock(node_id):
            if not nodes.are_children_fetched(self.conn, self.workspace, node_id):
                await self._fetch_and_store(node_id)
        return nodes.get_children(self.conn, self.workspace, node_id)

    def invalidate(self, node_id: str) -> bool:
        """Clear ``children_fetched`` for this node only.

        Cached children stay in place and keep their own flags.
        Returns ``False`` if the node is not cached.
        """
        return nodes.mark_children_fetched(
            self.conn, self.workspace, node_id, fetched=False
        )

    # ------------------------------------------------------------------
    # Recursive sync
    # ------------------------------------------------------------------
    async def sync_recursive(
        self,
        root_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Re-fetch *root_id* and every folder below it.

        *on_progress* is called with each folder id before its fetch.
        Setting *cancel* stops the walk before the next unvisited folder;
        fetches already in flight still complete and are stored.

        Raises:
            StorageError: A write failed.  Branches already running finish
                first, then the error propagates.
        """
        walk = _Walk(
            result=SyncResult(),
            semaphore=asyncio.Semaphore(self.max_concurrency),
            cancel=cancel,
            on_progress=on_progress,
        )
        await self._walk(root_id, 0, walk)
        logger.info(
            "Sync of %s in %r: %d folders, %d items, %d errors%s",
            root_id, self.workspace,
            walk.result.folders_fetched, walk.result.items_fetched, walk.result.errors,
            " (cancelled)" if walk.result.cancelled else "",
        )
        return walk.result

    def _notify(self, walk: _Walk, node_id: str) -> None:
        if walk.on_progress is None:
            return
        try:
            walk.on_progress(node_id)
        except Exception:
            logger.exception("Progress callback failed for %s", node_id)

    async def _walk(self, node_id: str, depth: int, walk: _Walk) -> None:
        if walk.should_stop():
            return
        if node_id in walk.visited:
            logger.warning("Folder %s reached twice in %r; skipping", node_id, self.workspace)
            return
        if depth > MAX_TREE_DEPTH:
            logger.warning(
                "Folder %s in %r is deeper than %d levels; skipping",
                node_id, self.workspace, MAX_TREE_DEPTH,
            )
            return
        walk.visited.add(node_id)
        self._notify(walk, node_id)

        async with walk.semaphore:
            try:
                async with self._node_lock(node_id):
                    listing = await self._fetch_and_store(node_id)
            except RemoteError as exc:
                walk.result.errors += 1
                walk.result.failed.append((node_id, exc.message))
                logger.warning("Skipping subtree %s: %s", node_id, exc)
                return
            except StorageError:
                walk.aborted = True
                raise

        walk.result.folders_fetched += 1
        walk.result.items_fetched += sum(
            1 for c in listing.children if c.item_type != FOLDER
        )

        subfolders = [
            c.id for c in nodes.get_children(self.conn, self.workspace, node_id)
            if c.is_folder
        ]
        if self.max_concurrency == 1:
            for child_id in subfolders:
                await self._walk(child_id, depth + 1, walk)
            return

        outcomes = await asyncio.gather(
            *(self._walk(child_id, depth + 1, walk) for child_id in subfolders),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    # ------------------------------------------------------------------
    # Single-node operations
    # ------------------------------------------------------------------
    async def refresh(self, node_id: str) -> Optional[ContentNode]:
        """Force a re-fetch of one node, ignoring any cached state.

        Folders (and ids not cached yet) are re-listed; other items are
        exported and only their ``last_fetched`` is updated.
        """
        node = nodes.get_node(self.conn, self.workspace, node_id)
        if node is None or node.is_folder or is_special_root(node_id):
            async with self._node_lock(node_id):
                await self._fetch_and_store(node_id)
        else:
            payload = await self._source_for(node_id).fetch_item(node_id)
            self.blobs.save(self.workspace, node_id, payload)
            nodes.touch_node(self.conn, self.workspace, node_id)
        return nodes.get_node(self.conn, self.workspace, node_id)

    async def load_content(self, node_id: str, fetch: bool = True) -> Optional[Any]:
        """Return the cached raw payload, fetching it if *fetch* is set."""
        payload = self.blobs.load(self.workspace, node_id)
        if payload is not None or not fetch:
            return payload
        await self.refresh(node_id)
        return self.blobs.load(self.workspace, node_id)

    def roots(self, include_admin: bool = False) -> list[ContentNode]:
        """The special top-level folders, in display order.

        Each is the cached record if there is one, otherwise an unsaved
        placeholder that has not been expanded yet.
        """
        result = []
        for alias, display_name in SPECIAL_ROOTS.items():
            if alias == "global_admin" and not include_admin:
                continue
            cached = nodes.get_node(self.conn, self.workspace, alias)
            result.append(cached or ContentNode(
                id=alias,
                workspace=self.workspace,
                name=display_name,
                item_type=FOLDER,
                parent_id=ROOT_ID,
                has_children=True,
            ))
        return result

    def path(self, node_id: str) -> list[str]:
        return paths.get_path(self.conn, self.workspace, node_id)

    def path_string(self, node_id: str) -> str:
        return paths.get_path_string(self.conn, self.workspace, node_id)

    def needs_refresh(self, node_id: str, max_age: Optional[float] = None) -> bool:
        if max_age is None:
            max_age = settings.stale_after_seconds
        return nodes.is_stale(self.conn, self.workspace, node_id, max_age)

    def evict(self, node_id: str) -> int:
        """Drop a node, its whole cached subtree and their payloads."""
        deleted = nodes.delete_cascade(self.conn, self.workspace, node_id)
        for item_id in deleted:
            self.blobs.delete(self.workspace, item_id)
        return len(deleted)

    def clear(self) -> int:
        """Drop everything cached for this workspace."""
        count = nodes.clear_workspace(self.conn, self.workspace)
        self.blobs.clear(self.workspace)
        return count
