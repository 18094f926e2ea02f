"""Error taxonomy for test runs."""

from collections.abc import Sequence
from pathlib import Path


class TyrantError(Exception):
    """Base class for all errors raised by tyrant."""


class ExecutionTimeout(TyrantError):
    """A single test execution exceeded its time limit."""

    def __init__(self, file: str, timeout_ms: int) -> None:
        super().__init__(f"Test timed out after {timeout_ms}ms: {file}")
        self.file = file
        self.timeout_ms = timeout_ms


class WorkerFailure(TyrantError):
    """A worker terminated without delivering results for all of its files."""

    def __init__(
        self,
        shard_index: int,
        undelivered_files: Sequence[str],
        message: str | None = None,
    ) -> None:
        detail = f": {message}" if message else ""
        super().__init__(
            f"Shard {shard_index} failed with {len(undelivered_files)} "
            f"undelivered file(s){detail}"
        )
        self.shard_index = shard_index
        self.undelivered_files = tuple(undelivered_files)
        self.message = message


class MalformedResultsError(TyrantError):
    """A result file is missing or cannot be parsed."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read results from {path}: {reason}")
        self.path = path
        self.reason = reason


class MalformedBaselineError(MalformedResultsError):
    """The baseline needed for diffing is missing or cannot be parsed."""


class WorkerNotFoundError(TyrantError):
    """Raised when a worker backend is not found."""


class InvalidWorkerConfigError(TyrantError):
    """The settings given for a worker backend are invalid."""

    def __init__(self, config_name: str, error: Exception) -> None:
        super().__init__(f"Invalid worker configuration for {config_name}: {error}")
        self.config_name = config_name
