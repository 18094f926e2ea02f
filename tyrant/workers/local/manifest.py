"""Local worker backend manifest."""

from tyrant.workers.local.config import LocalWorkerConfig
from tyrant.workers.local.worker import LocalWorker
from tyrant.workers.manifest import WorkerManifest

local_manifest = WorkerManifest(
    config_cls=LocalWorkerConfig,
    worker_factory=LocalWorker.from_config,
)
