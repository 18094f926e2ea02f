"""Configuration for the local worker backend."""

import os
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_TIMEOUT_MS = 60_000


class LocalWorkerConfig(BaseModel):
    """Configuration for the local worker backend."""

    host_command: Sequence[str] = ("node", "js-interpreter/bin/run.js")
    host_args: Sequence[str] = ()
    suite_path: Path = Path("tyrant/test262")
    concurrency: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    # Keep compiled test sources here for debugging instead of temp files
    compiled_out: Path | None = None
