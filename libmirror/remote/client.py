"""Async HTTP client for the remote content API.

Only the read side of the API is used: folder listings and content exports.
Exports are asynchronous jobs on the server: start the job, poll its status
until it succeeds or fails, then download the result.

Every failure is mapped onto the :mod:`libmirror.errors` taxonomy:

* 404 → :class:`NotFoundError`
* 401 / 403 → :class:`PermissionDeniedError`
* any other non-2xx, network error, timeout or failed export job →
  :class:`TransportError`
* a body that is not JSON → :class:`InvalidPayloadError`
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from libmirror.config import settings
from libmirror.errors import (
    InvalidPayloadError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
)

logger = logging.getLogger(__name__)

REGIONS: dict[str, str] = {
    "us1": "https://api.sumologic.com",
    "us2": "https://api.us2.sumologic.com",
    "eu": "https://api.eu.sumologic.com",
    "au": "https://api.au.sumologic.com",
    "de": "https://api.de.sumologic.com",
    "jp": "https://api.jp.sumologic.com",
    "ca": "https://api.ca.sumologic.com",
    "in": "https://api.in.sumologic.com",
}

_CONTENT = "/api/v2/content"

_DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
    "User-Agent": "libmirror/0.1",
}


def resolve_endpoint(endpoint: str) -> str:
    """Return the API base URL for a region code or an explicit URL.

    Raises:
        ValueError: If *endpoint* is neither a known region nor a URL.
    """
    key = endpoint.strip().lower()
    if key in REGIONS:
        return REGIONS[key]
    if endpoint.startswith("http"):
        return endpoint.rstrip("/")
    raise ValueError(
        f"Invalid endpoint {endpoint!r}. Use a region code "
        f"({', '.join(REGIONS)}) or a full URL."
    )


class ContentClient:
    """Thin wrapper around :class:`httpx.AsyncClient` with Basic auth."""

    def __init__(
        self,
        endpoint: str,
        access_id: str,
        access_key: str,
        *,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        export_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = resolve_endpoint(endpoint)
        self.poll_interval = (
            settings.export_poll_interval if poll_interval is None else poll_interval
        )
        self.export_timeout = (
            settings.export_timeout if export_timeout is None else export_timeout
        )
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(access_id, access_key),
            headers=_DEFAULT_HEADERS,
            timeout=settings.request_timeout if timeout is None else timeout,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> ContentClient:
        return cls(
            settings.remote_endpoint,
            settings.remote_access_id,
            settings.remote_access_key,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ContentClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        node_id: str,
        *,
        admin_mode: bool = False,
    ) -> Any:
        headers = {"isAdminMode": "true"} if admin_mode else None
        try:
            response = await self._http.request(method, path, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(node_id, f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise NotFoundError(node_id, "not found", status)
        if status in (401, 403):
            raise PermissionDeniedError(node_id, f"HTTP {status}: access denied", status)
        if not response.is_success:
            raise TransportError(
                node_id, f"HTTP {status}: {response.text[:200] or response.reason_phrase}", status
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise InvalidPayloadError(node_id, f"response is not JSON: {exc}", status) from exc

    async def _run_export_job(
        self,
        node_id: str,
        start_method: str,
        start_path: str,
        job_base: str,
        *,
        admin_mode: bool = False,
    ) -> Any:
        """Start an export job, wait for it, and return its result."""
        started = await self._request(start_method, start_path, node_id, admin_mode=admin_mode)
        job_id = started.get("id") if isinstance(started, dict) else None
        if not job_id:
            raise InvalidPayloadError(node_id, "export job response carries no job id")

        deadline = time.monotonic() + self.export_timeout
        while True:
            status = await self._request(
                "GET", f"{job_base}/{job_id}/status", node_id, admin_mode=admin_mode
            )
            state = status.get("status") if isinstance(status, dict) else None
            if state == "Success":
                break
            if state == "Failed":
                error = status.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else str(error)
                raise TransportError(node_id, f"export job {job_id} failed: {message}")
            if time.monotonic() >= deadline:
                raise TransportError(
                    node_id, f"export job {job_id} still {state!r} after {self.export_timeout}s"
                )
            logger.debug("Export job %s for %s is %s", job_id, node_id, state)
            await asyncio.sleep(self.poll_interval)

        return await self._request(
            "GET", f"{job_base}/{job_id}/result", node_id, admin_mode=admin_mode
        )

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    async def get_personal_folder(self) -> Any:
        return await self._request("GET", f"{_CONTENT}/folders/personal", "personal")

    async def get_folder(self, folder_id: str, *, admin_mode: bool = False) -> Any:
        return await self._request(
            "GET", f"{_CONTENT}/folders/{folder_id}", folder_id, admin_mode=admin_mode
        )

    async def export_content(self, content_id: str, *, admin_mode: bool = False) -> Any:
        return await self._run_export_job(
            content_id,
            "POST",
            f"{_CONTENT}/{content_id}/export",
            f"{_CONTENT}/{content_id}/export",
            admin_mode=admin_mode,
        )

    async def export_global_folder(self, *, admin_mode: bool = False) -> Any:
        alias = "global_admin" if admin_mode else "global"
        base = f"{_CONTENT}/folders/global"
        return await self._run_export_job(alias, "GET", base, base, admin_mode=admin_mode)

    async def export_admin_recommended(self, *, admin_mode: bool = False) -> Any:
        base = f"{_CONTENT}/folders/adminRecommended"
        return await self._run_export_job(
            "adminRecommended", "GET", base, base, admin_mode=admin_mode
        )

    async def export_installed_apps(self, *, admin_mode: bool = False) -> Any:
        base = f"{_CONTENT}/folders/installedApps"
        return await self._run_export_job(
            "installedApps", "GET", base, base, admin_mode=admin_mode
        )
