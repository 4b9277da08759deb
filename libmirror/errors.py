"""Exception taxonomy shared by the store, the remote source and the engine.

Remote failures (:class:`RemoteError` and subclasses) are recoverable: they
are reported to the caller and never retried by the cache itself.
:class:`StorageError` means the local cache can no longer be trusted and
always propagates.
"""

from __future__ import annotations

from typing import Optional


class LibMirrorError(Exception):
    """Base class for every error raised by libmirror."""


class RemoteError(LibMirrorError):
    """A fetch from the remote content API failed."""

    kind = "remote"

    def __init__(
        self,
        node_id: str,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(f"{node_id}: {message}")
        self.node_id = node_id
        self.message = message
        self.status_code = status_code


class NotFoundError(RemoteError):
    kind = "not_found"


class PermissionDeniedError(RemoteError):
    kind = "permission_denied"


class TransportError(RemoteError):
    """Network failure, timeout, unexpected HTTP status or failed export job."""

    kind = "transport"


class InvalidPayloadError(RemoteError):
    """The remote answered, but not with a JSON document we can normalise."""

    kind = "invalid_payload"


class StorageError(LibMirrorError):
    """A local write (SQLite or blob file) failed."""
