"""Dataclass models representing cache rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from libmirror.ids import FOLDER


@dataclass
class ContentNode:
    id: str
    workspace: str
    name: str
    item_type: str
    parent_id: str
    description: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    modified_at: Optional[str] = None
    modified_by: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    has_children: bool = False
    children_fetched: bool = False
    last_fetched: float = 0.0

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    @property
    def is_folder(self) -> bool:
        return self.item_type == FOLDER

    def permissions_json(self) -> str:
        """Serialise the permission list to a JSON string for storage."""
        return json.dumps(self.permissions or [])


@dataclass
class CacheStats:
    total_items: int = 0
    counts_by_type: dict[str, int] = field(default_factory=dict)
    oldest_last_fetched: Optional[float] = None
    newest_last_fetched: Optional[float] = None
