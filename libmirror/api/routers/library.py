"""Endpoints over the cached content tree of one workspace.

Routes
------
GET    /library/{ws}/roots                     Special top-level folders
GET    /library/{ws}/nodes/{id}                One cached node
GET    /library/{ws}/nodes/{id}/children       Children, fetched on first use
GET    /library/{ws}/nodes/{id}/path           Breadcrumb of cached ancestors
POST   /library/{ws}/nodes/{id}/invalidate     Force the next expand to re-fetch
POST   /library/{ws}/nodes/{id}/sync           Re-fetch the whole subtree
DELETE /library/{ws}/nodes/{id}                Evict the node and its subtree
GET    /library/{ws}/search?q=                 Name substring search
GET    /library/{ws}/stats                     Item counts and fetch times

Remote failures map to 404 / 403 / 502, a broken local cache to 500.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response
from pydantic import BaseModel

from libmirror.db import nodes
from libmirror.db.models import ContentNode
from libmirror.errors import (
    LibMirrorError,
    NotFoundError,
    PermissionDeniedError,
    RemoteError,
    StorageError,
)
from libmirror.sync import SyncEngine

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class NodeResponse(BaseModel):
    id: str
    name: str
    item_type: str
    parent_id: str
    description: Optional[str]
    created_at: Optional[str]
    created_by: Optional[str]
    modified_at: Optional[str]
    modified_by: Optional[str]
    permissions: list[str]
    has_children: bool
    children_fetched: bool
    last_fetched: float


class PathResponse(BaseModel):
    id: str
    names: list[str]
    path: str


class SyncResponse(BaseModel):
    folders_fetched: int
    items_fetched: int
    errors: int
    cancelled: bool
    failed: list[dict[str, str]]


class EvictResponse(BaseModel):
    deleted: int


class StatsResponse(BaseModel):
    total_items: int
    counts_by_type: dict[str, int]
    oldest_last_fetched: Optional[float]
    newest_last_fetched: Optional[float]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _node_response(node: ContentNode) -> dict[str, Any]:
    return {
        "id": node.id,
        "name": node.name,
        "item_type": node.item_type,
        "parent_id": node.parent_id,
        "description": node.description,
        "created_at": node.created_at,
        "created_by": node.created_by,
        "modified_at": node.modified_at,
        "modified_by": node.modified_by,
        "permissions": node.permissions,
        "has_children": node.has_children,
        "children_fetched": node.children_fetched,
        "last_fetched": node.last_fetched,
    }


def _engine(request: Request, workspace: str) -> SyncEngine:
    engines: dict[str, SyncEngine] = request.app.state.engines
    engine = engines.get(workspace)
    if engine is None:
        engine = engines[workspace] = SyncEngine(
            request.app.state.db,
            workspace,
            request.app.state.source,
            request.app.state.blobs,
        )
    return engine


def _http_error(exc: LibMirrorError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, RemoteError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=f"Local cache failure: {exc}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/{workspace}/roots", response_model=list[NodeResponse])
def roots(workspace: str, request: Request, admin: bool = False) -> list[dict[str, Any]]:
    """Return the special top-level folders, cached or placeholder."""
    return [_node_response(n) for n in _engine(request, workspace).roots(include_admin=admin)]


@router.get("/{workspace}/nodes/{node_id}", response_model=NodeResponse)
def get_one(workspace: str, node_id: str, request: Request) -> dict[str, Any]:
    """Fetch a single cached node.  Never goes to the remote side."""
    node = nodes.get_node(request.app.state.db, workspace, node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node not cached: {node_id!r}")
    return _node_response(node)


@router.get("/{workspace}/nodes/{node_id}/children", response_model=list[NodeResponse])
async def children(workspace: str, node_id: str, request: Request) -> list[dict[str, Any]]:
    """Return the children of a folder, fetching them if not cached yet."""
    try:
        items = await _engine(request, workspace).expand(node_id)
    except LibMirrorError as exc:
        raise _http_error(exc) from exc
    return [_node_response(n) for n in items]


@router.get("/{workspace}/nodes/{node_id}/path", response_model=PathResponse)
def path(workspace: str, node_id: str, request: Request) -> dict[str, Any]:
    engine = _engine(request, workspace)
    names = engine.path(node_id)
    return {"id": node_id, "names": names, "path": "/" + "/".join(names)}


@router.post("/{workspace}/nodes/{node_id}/invalidate", status_code=204)
def invalidate(workspace: str, node_id: str, request: Request) -> Response:
    """Mark a folder's children as not fetched.  Cached rows stay."""
    try:
        found = _engine(request, workspace).invalidate(node_id)
    except StorageError as exc:
        raise _http_error(exc) from exc
    if not found:
        raise HTTPException(status_code=404, detail=f"Node not cached: {node_id!r}")
    return Response(status_code=204)


@router.post("/{workspace}/nodes/{node_id}/sync", response_model=SyncResponse)
async def sync(workspace: str, node_id: str, request: Request) -> dict[str, Any]:
    """Re-fetch a folder and every folder below it.

    Per-folder remote failures are reported in the body, not as an HTTP error.
    """
    try:
        result = await _engine(request, workspace).sync_recursive(node_id)
    except StorageError as exc:
        raise _http_error(exc) from exc
    return {
        "folders_fetched": result.folders_fetched,
        "items_fetched": result.items_fetched,
        "errors": result.errors,
        "cancelled": result.cancelled,
        "failed": [{"id": i, "message": m} for i, m in result.failed],
    }


@router.delete("/{workspace}/nodes/{node_id}", response_model=EvictResponse)
def evict(workspace: str, node_id: str, request: Request) -> dict[str, int]:
    """Drop a node and its cached subtree."""
    try:
        deleted = _engine(request, workspace).evict(node_id)
    except StorageError as exc:
        raise _http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Node not cached: {node_id!r}")
    return {"deleted": deleted}


@router.get("/{workspace}/search", response_model=list[NodeResponse])
def search(
    workspace: str,
    request: Request,
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=500),
) -> list[dict[str, Any]]:
    """Case-insensitive name search over cached nodes."""
    results = nodes.search_by_name(request.app.state.db, workspace, q, limit=limit)
    return [_node_response(n) for n in results]


@router.get("/{workspace}/stats", response_model=StatsResponse)
def stats(workspace: str, request: Request) -> dict[str, Any]:
    s = nodes.cache_stats(request.app.state.db, workspace)
    return {
        "total_items": s.total_items,
        "counts_by_type": s.counts_by_type,
        "oldest_last_fetched": s.oldest_last_fetched,
        "newest_last_fetched": s.newest_last_fetched,
    }
