"""Local subprocess worker backend."""

from tyrant.workers.local.config import LocalWorkerConfig
from tyrant.workers.local.manifest import local_manifest
from tyrant.workers.local.worker import LocalWorker

__all__ = ["LocalWorker", "LocalWorkerConfig", "local_manifest"]
