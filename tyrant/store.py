"""Streaming result files, baseline persistence and loading."""

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, TracebackType
from typing import IO, Any, Self

from pydantic import TypeAdapter, ValidationError

from tyrant.errors import MalformedBaselineError, MalformedResultsError
from tyrant.models.result import (
    DEFAULT_SUITE_DIR,
    ResultKey,
    TestResult,
    result_key,
    sort_by_file,
)

log = logging.getLogger(__name__)

RESULTS_ADAPTER = TypeAdapter(list[TestResult])


class ResultWriter:
    """Streams results into a JSON array, one record at a time.

    The array is opened on enter and always closed on exit, so a run that is
    interrupted part way still leaves a parseable (partial) file behind. With
    ``verbose_path`` set, full records including diagnostics are streamed to
    a second file alongside.
    """

    def __init__(self, path: Path, verbose_path: Path | None = None) -> None:
        self.path = path
        self.verbose_path = verbose_path
        self.count = 0
        self.complete = False
        self._sinks: list[IO[str]] = []

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close(complete=exc_type is None)

    def open(self) -> None:
        """Create the output file(s) and write the opening bracket."""
        for path in (self.path, self.verbose_path):
            if path is None:
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            sink = path.open("w", encoding="utf-8")
            sink.write("[\n")
            self._sinks.append(sink)

    def write(self, result: TestResult) -> None:
        """Append one result to the output."""
        if not self._sinks:
            raise RuntimeError(f"Result writer for {self.path} is not open")

        records = [result.to_record(), result.to_verbose_record()]
        for sink, record in zip(self._sinks, records, strict=False):
            if self.count:
                sink.write(",\n")
            sink.write(json.dumps(record, indent=2))
            sink.flush()
        self.count += 1

    def close(self, *, complete: bool = True) -> None:
        """Write the closing bracket. Idempotent."""
        if not self._sinks:
            return
        for sink in self._sinks:
            sink.write("\n]\n")
            sink.close()
        self._sinks = []
        self.complete = complete
        if not complete:
            log.warning(
                "Stopped before all tests were run, results in %s are not complete",
                self.path,
            )


def write_results(results: Iterable[TestResult], path: Path) -> None:
    """Write a complete result file."""
    with ResultWriter(path) as writer:
        for result in results:
            writer.write(result)


def load_results(path: Path) -> list[TestResult]:
    """Load and validate a result file.

    Raises:
        MalformedResultsError: If the file is missing, not JSON, or contains a
            record without the required fields

    """
    log.info("Opening %s", path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise MalformedResultsError(path, f"cannot read file ({e})") from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise MalformedResultsError(path, f"invalid JSON ({e})") from e

    try:
        return RESULTS_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MalformedResultsError(path, f"invalid result records ({e})") from e


@dataclass(frozen=True, kw_only=True)
class Baseline:
    """Saved result set used as the comparison point. Read only."""

    path: Path | None = None
    results: Sequence[TestResult] = ()
    suite_dir: str = DEFAULT_SUITE_DIR
    by_key: Mapping[ResultKey, TestResult] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        index = {result_key(r, self.suite_dir): r for r in self.results}
        object.__setattr__(self, "results", tuple(self.results))
        object.__setattr__(self, "by_key", MappingProxyType(index))

    def get(self, key: ResultKey) -> TestResult | None:
        return self.by_key.get(key)

    def __len__(self) -> int:
        return len(self.results)


def load_baseline(path: Path, suite_dir: str = DEFAULT_SUITE_DIR) -> Baseline:
    """Load the baseline to diff against.

    Raises:
        MalformedBaselineError: If the baseline is missing or unparsable

    """
    try:
        results = load_results(path)
    except MalformedResultsError as e:
        raise MalformedBaselineError(path, e.reason) from e
    log.info("Loaded baseline with %d result(s) from %s", len(results), path)
    return Baseline(path=path, results=results, suite_dir=suite_dir)


def save_baseline(results: Iterable[TestResult], path: Path) -> None:
    """Save results for future comparison.

    Results are canonicalized (transient fields dropped) and sorted by file.
    The new baseline replaces the old one in a single rename.
    """
    log.info("Saving results for future comparison to %s", path)
    canonical = sort_by_file([r.canonical() for r in results])
    records: list[dict[str, Any]] = [r.to_record() for r in canonical]

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(records, handle, indent=2)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def archive_results(path: Path) -> Path:
    """Copy a result file aside before it is overwritten by a rerun."""
    archive = path.with_name(f"{path.name}.old.json")
    shutil.copyfile(path, archive)
    log.info("Archived %s to %s", path, archive)
    return archive


def merge_result_files(paths: Sequence[Path]) -> list[TestResult]:
    """Combine the result files of separately run shards, sorted by file."""
    merged: list[TestResult] = []
    for path in paths:
        merged.extend(load_results(path))
    return sort_by_file(merged)
