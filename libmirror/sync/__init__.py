from libmirror.sync.engine import MAX_TREE_DEPTH, SyncEngine
from libmirror.sync.models import SyncResult

__all__ = ["MAX_TREE_DEPTH", "SyncEngine", "SyncResult"]
