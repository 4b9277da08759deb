"""Canonical shapes produced by the remote boundary.

Whatever the content API returns (a folder listing, the personal folder, a
flat or nested special-root export) is normalised into a
:class:`FolderListing` before anything touches the cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class RemoteItem:
    """One library entry as reported by the remote side."""

    id: str
    name: str
    item_type: str
    parent_id: str
    description: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    modified_at: Optional[str] = None
    modified_by: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    # The payload already nested this item's own children.
    has_nested_children: bool = False


@dataclass
class FolderListing:
    """A fetched folder: its own record, its immediate children, and for
    flat exports every deeper item with its original parent id."""

    node: RemoteItem
    children: list[RemoteItem] = field(default_factory=list)
    descendants: list[RemoteItem] = field(default_factory=list)
    raw: Any = None
    # Real remote id when the folder was fetched through an alias.
    remote_id: Optional[str] = None
