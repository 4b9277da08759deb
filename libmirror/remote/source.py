"""The tree source consumed by the synchronisation engine.

:class:`TreeSource` is the contract; :class:`RemoteTreeSource` implements it
on top of :class:`~libmirror.remote.client.ContentClient`.  Tests substitute
an in-memory implementation.
"""

from __future__ import annotations

from typing import Any, Protocol

from libmirror.errors import InvalidPayloadError, NotFoundError
from libmirror.remote.client import ContentClient
from libmirror.remote.models import FolderListing
from libmirror.remote.normalize import normalize_folder, normalize_special_root


class TreeSource(Protocol):
    async def fetch_folder(self, node_id: str) -> FolderListing: ...

    async def fetch_special_root(self, category: str) -> FolderListing: ...

    async def fetch_item(self, node_id: str) -> dict[str, Any]: ...


class RemoteTreeSource:
    """Fetch from the content API and normalise at the boundary."""

    def __init__(self, client: ContentClient, *, admin_mode: bool = False) -> None:
        self.client = client
        self.admin_mode = admin_mode

    async def fetch_folder(self, node_id: str) -> FolderListing:
        payload = await self.client.get_folder(node_id, admin_mode=self.admin_mode)
        return normalize_folder(node_id, payload)

    async def fetch_special_root(self, category: str) -> FolderListing:
        if category == "personal":
            payload = await self.client.get_personal_folder()
        elif category == "global":
            payload = await self.client.export_global_folder(admin_mode=False)
        elif category == "global_admin":
            payload = await self.client.export_global_folder(admin_mode=True)
        elif category == "adminRecommended":
            payload = await self.client.export_admin_recommended(admin_mode=self.admin_mode)
        elif category == "installedApps":
            payload = await self.client.export_installed_apps(admin_mode=self.admin_mode)
        else:
            raise NotFoundError(category, "unknown special root category")
        return normalize_special_root(category, payload)

    async def fetch_item(self, node_id: str) -> dict[str, Any]:
        payload = await self.client.export_content(node_id, admin_mode=self.admin_mode)
        if not isinstance(payload, dict):
            raise InvalidPayloadError(node_id, "export result is not a JSON object")
        return payload
