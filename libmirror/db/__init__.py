"""Database layer package.

Public re-exports so callers can write::

    from libmirror.db import get_connection, init_db
    from libmirror.db import nodes
"""

from libmirror.db.connection import get_connection
from libmirror.db.migrations import init_db
from libmirror.db import nodes, paths

__all__ = ["get_connection", "init_db", "nodes", "paths"]
