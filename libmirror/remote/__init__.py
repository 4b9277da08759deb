"""Remote content API package: HTTP client, payload normalisation, tree source."""

from libmirror.remote.client import ContentClient
from libmirror.remote.models import FolderListing, RemoteItem
from libmirror.remote.source import RemoteTreeSource, TreeSource

__all__ = ["ContentClient", "FolderListing", "RemoteItem", "RemoteTreeSource", "TreeSource"]
