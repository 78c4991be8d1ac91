from vanplane.services.sync.handlers import SyncController
from vanplane.services.sync.objects import content_hash, stale_objects
from vanplane.services.sync.protocol import Op, dispatch

__all__ = ["Op", "SyncController", "content_hash", "dispatch", "stale_objects"]
