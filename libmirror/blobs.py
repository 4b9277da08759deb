"""On-disk store for the raw JSON payload last fetched for each node.

Layout::

    <root>/<workspace>/<node id>.json

Writes go to a temporary file in the target directory which is then moved
over the old file with :func:`os.replace`, so a reader sees either the old
payload or the new one, never a truncated file.  Nothing in the tree cache
depends on these files; they can always be rebuilt by fetching again.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from libmirror.errors import StorageError

logger = logging.getLogger(__name__)


def _safe_name(value: str) -> str:
    """Map an arbitrary workspace or id to a single safe path component.

    Percent-encoding keeps the mapping one-to-one, so two different names
    never share a file.  A leading dot is encoded too, which rules out
    ``.`` and ``..``; ``%`` alone cannot come out of :func:`quote`.
    """
    encoded = quote(value, safe="")
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded or "%"


def _write_atomic(target: Path, data: str) -> None:
    """Write *data* next to *target*, then move it into place."""
    tmp_name: Optional[str] = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.stem}.", suffix=".tmp", dir=target.parent
        )
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, target)
        tmp_name = None
    finally:
        if tmp_name is not None:
            Path(tmp_name).unlink(missing_ok=True)


class BlobStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _dir(self, workspace: str) -> Path:
        return self.root / _safe_name(workspace)

    def path_for(self, workspace: str, node_id: str) -> Path:
        return self._dir(workspace) / f"{_safe_name(node_id)}.json"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def save(self, workspace: str, node_id: str, payload: Any) -> Path:
        """Atomically replace the payload stored for *node_id*.

        Raises:
            StorageError: If the payload is not JSON-serialisable or the file
                cannot be written.  Any previous payload is left intact.
        """
        target = self.path_for(workspace, node_id)
        try:
            data = json.dumps(payload, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"payload for {node_id} is not JSON: {exc}") from exc

        try:
            _write_atomic(target, data)
        except OSError as exc:
            raise StorageError(f"cannot write payload for {node_id}: {exc}") from exc

        logger.debug("Saved payload for %s/%s (%d bytes)", workspace, node_id, len(data))
        return target

    def delete(self, workspace: str, node_id: str) -> bool:
        """Remove the payload file.  Returns ``False`` if there was none."""
        target = self.path_for(workspace, node_id)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"cannot delete payload for {node_id}: {exc}") from exc
        return True

    def clear(self, workspace: str) -> None:
        """Remove every payload stored for *workspace*."""
        try:
            shutil.rmtree(self._dir(workspace))
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise StorageError(f"cannot clear payloads of {workspace!r}: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def exists(self, workspace: str, node_id: str) -> bool:
        return self.path_for(workspace, node_id).is_file()

    def load(self, workspace: str, node_id: str) -> Optional[Any]:
        """Return the stored payload, or ``None`` if nothing was saved yet."""
        target = self.path_for(workspace, node_id)
        try:
            text = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable payload file %s", target)
            return None

    def export_to(self, workspace: str, node_id: str, destination: Path) -> bool:
        """Copy the stored payload to *destination* as pretty-printed JSON.

        Returns:
            ``False`` if no payload is stored for *node_id*.

        Raises:
            StorageError: If *destination* cannot be written.
        """
        payload = self.load(workspace, node_id)
        if payload is None:
            return False
        destination = Path(destination)
        try:
            _write_atomic(destination, json.dumps(payload, indent=2, ensure_ascii=False))
        except OSError as exc:
            raise StorageError(f"cannot export {node_id} to {destination}: {exc}") from exc
        return True
