"""Result types returned by the synchronisation engine."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SyncResult:
    """Aggregate outcome of one recursive sync.

    ``errors`` counts folders whose fetch failed; their subtrees were not
    visited.  ``failed`` keeps ``(node_id, message)`` for each of them.
    """

    folders_fetched: int = 0
    items_fetched: int = 0
    errors: int = 0
    cancelled: bool = False
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.errors == 0 and not self.cancelled
