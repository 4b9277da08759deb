"""Turn raw content API payloads into :class:`FolderListing` objects.

Three payload shapes exist:

``folder``
    ``GET /content/folders/{id}`` and the personal folder: the folder's own
    fields plus a ``children`` array.
``flat``
    Global folder exports: a ``data`` array holding *every* item below the
    folder, each with its real ``parentId``.  Items whose parent is not part
    of the export are the top of the tree and become direct children.
``children``
    Admin Recommended / Installed Apps exports: the folder's fields plus a
    ``children`` array, but ``itemType`` may be absent.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from libmirror.errors import InvalidPayloadError
from libmirror.ids import FOLDER, ROOT_ID, SPECIAL_ROOTS
from libmirror.remote.models import FolderListing, RemoteItem

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "Unknown"

SPECIAL_ROOT_SHAPES: dict[str, str] = {
    "personal": "folder",
    "global": "flat",
    "global_admin": "flat",
    "adminRecommended": "children",
    "installedApps": "children",
}


def _require_object(node_id: str, payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise InvalidPayloadError(
            node_id, f"expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def _list_field(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key)
    return value if isinstance(value, list) else []


def _item(
    raw: dict[str, Any],
    *,
    item_id: str,
    parent_id: str,
    default_type: str = UNKNOWN_TYPE,
    default_name: Optional[str] = None,
) -> RemoteItem:
    permissions = raw.get("permissions")
    return RemoteItem(
        id=item_id,
        name=raw.get("name") or default_name or raw.get("id") or "Unnamed",
        item_type=raw.get("itemType") or default_type,
        parent_id=parent_id,
        description=raw.get("description"),
        created_at=raw.get("createdAt"),
        created_by=raw.get("createdBy"),
        modified_at=raw.get("modifiedAt"),
        modified_by=raw.get("modifiedBy"),
        permissions=[str(p) for p in permissions] if isinstance(permissions, list) else [],
        has_nested_children=bool(_list_field(raw, "children")),
    )


def _children(node_id: str, raw_children: list[Any]) -> list[RemoteItem]:
    """Normalise a ``children`` array, re-parenting every entry to *node_id*."""
    items: list[RemoteItem] = []
    for raw in raw_children:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning("Skipping child without an id under %s: %r", node_id, raw)
            continue
        items.append(_item(raw, item_id=str(raw["id"]), parent_id=node_id))
    return items


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_folder(node_id: str, payload: Any) -> FolderListing:
    """Normalise a regular folder response fetched for *node_id*."""
    data = _require_object(node_id, payload)
    node = _item(
        data,
        item_id=node_id,
        parent_id=str(data.get("parentId") or ROOT_ID),
        default_type=FOLDER,
    )
    return FolderListing(
        node=node,
        children=_children(node_id, _list_field(data, "children")),
        raw=payload,
    )


def normalize_special_root(category: str, payload: Any) -> FolderListing:
    """Normalise the response for one of the well-known top-level folders.

    The folder is always stored under its *category* alias, directly below
    the root sentinel.

    Raises:
        InvalidPayloadError: For an unknown category or a non-object payload.
    """
    shape = SPECIAL_ROOT_SHAPES.get(category)
    if shape is None:
        raise InvalidPayloadError(category, "not a special root category")
    data = _require_object(category, payload)
    display_name = SPECIAL_ROOTS[category]
    remote_id = str(data["id"]) if data.get("id") else None

    if shape == "flat":
        return _normalize_flat(category, display_name, data, payload)

    node = _item(
        data,
        item_id=category,
        parent_id=ROOT_ID,
        default_type=FOLDER,
        default_name=display_name if shape == "children" else None,
    )
    return FolderListing(
        node=node,
        children=_children(category, _list_field(data, "children")),
        raw=payload,
        remote_id=remote_id if remote_id != category else None,
    )


def _normalize_flat(
    category: str,
    display_name: str,
    data: dict[str, Any],
    payload: Any,
) -> FolderListing:
    entries = [e for e in _list_field(data, "data") if isinstance(e, dict) and e.get("id")]
    known_ids = {str(e["id"]) for e in entries}

    children: list[RemoteItem] = []
    descendants: list[RemoteItem] = []
    for entry in entries:
        parent = str(entry.get("parentId") or "")
        if parent in known_ids:
            descendants.append(_item(entry, item_id=str(entry["id"]), parent_id=parent))
        else:
            # Parent lies outside the export: top of the tree under the alias.
            children.append(_item(entry, item_id=str(entry["id"]), parent_id=category))

    node = RemoteItem(
        id=category,
        name=display_name,
        item_type=FOLDER,
        parent_id=ROOT_ID,
        description=f"{display_name} folder",
    )
    return FolderListing(node=node, children=children, descendants=descendants, raw=payload)
