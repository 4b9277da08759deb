"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection (shared across all
requests via ``request.app.state.db``), initialises the schema, opens the
payload store and a client for the remote content API.  On shutdown it
closes the client and the connection.

Routers
-------
    /library   browse, expand, sync and evict the cached content tree
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from libmirror.api.routers import library as library_router
from libmirror.blobs import BlobStore
from libmirror.config import settings
from libmirror.db import get_connection, init_db
from libmirror.remote import ContentClient, RemoteTreeSource


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the DB and the remote client on startup, close both on shutdown."""
    conn = get_connection()
    init_db(conn)
    client = ContentClient.from_settings()
    app.state.db = conn
    app.state.blobs = BlobStore(settings.content_dir)
    app.state.source = RemoteTreeSource(client, admin_mode=settings.remote_admin_mode)
    # One engine per workspace, created on first use.
    app.state.engines = {}
    try:
        yield
    finally:
        await client.aclose()
        conn.close()


def create_app() -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    app = FastAPI(
        title="libmirror API",
        description=(
            "REST interface over the local content library cache: lazy "
            "folder expansion, recursive sync, breadcrumbs, search and eviction."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(library_router.router, prefix="/library", tags=["library"])

    return app


# Module-level instance used by an ASGI server:
#   uvicorn libmirror.api.app:app --reload
app = create_app()
