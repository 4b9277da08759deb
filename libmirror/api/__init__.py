"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from libmirror.api import app

    uvicorn libmirror.api:app --reload
"""

from libmirror.api.app import app

__all__ = ["app"]
