"""Loading of worker backends from entry points."""

from importlib.metadata import entry_points
from typing import Any

from tyrant.errors import WorkerNotFoundError
from tyrant.workers.manifest import WorkerManifest

ENTRY_POINT_GROUP = "tyrant.workers"


def load_worker_manifest(key: str) -> WorkerManifest[Any]:
    """Load a worker backend manifest by key.

    Args:
        key: The backend key as registered in pyproject.toml (e.g., "local")

    Returns:
        The worker manifest instance

    Raises:
        WorkerNotFoundError: If no backend with the given key is found, or the
            entry point does not refer to a worker manifest

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest = entry.load()
            if not isinstance(manifest, WorkerManifest):
                raise WorkerNotFoundError(
                    f"Entry point '{key}' ({entry.value}) is not a worker manifest"
                )
            return manifest

    available = [e.name for e in entries]
    raise WorkerNotFoundError(
        f"Worker backend '{key}' not found. Available backends: {available}"
    )
