"""Test run orchestration: enumerate, dispatch, retry, diff and persist."""

import json
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from pydantic import BaseModel, Field, model_validator

from tyrant.diff import DiffReport, classify, diff_results
from tyrant.dispatcher import RoundOutcome, ShardDispatcher
from tyrant.enumerator import enumerate_tests
from tyrant.errors import WorkerFailure
from tyrant.models.dispatch import DispatchMode
from tyrant.models.result import (
    DEFAULT_SUITE_DIR,
    TestResult,
    result_key,
    sort_by_file,
    suite_relative_path,
)
from tyrant.retry import RetryController, RetryRound
from tyrant.sharding import select_shard
from tyrant.store import (
    Baseline,
    ResultWriter,
    archive_results,
    load_baseline,
    load_results,
    save_baseline,
    write_results,
)
from tyrant.workers.base import Worker

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REGRESSIONS = 1
EXIT_INCOMPLETE = 2


class RunOptions(BaseModel):
    """Options of one test run."""

    root: Path = Path("tyrant")
    patterns: Sequence[str] = ()
    workers: int = Field(default=1, ge=1)
    concurrency: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    timeout_ms: int = Field(default=60_000, gt=0)
    retries: int = Field(default=0, ge=0)
    shard_index: int | None = Field(default=None, ge=0)
    shard_count: int | None = Field(default=None, ge=1)
    baseline_path: Path | None = None
    output_path: Path | None = None
    diff_path: Path | None = None
    verbose_output_path: Path | None = None
    diff: bool = False
    rerun_only: bool = False
    save: bool = False
    verbose: bool = False
    suite_dir: str = DEFAULT_SUITE_DIR
    progress_interval: int = Field(default=500, ge=1)

    @model_validator(mode="after")
    def _check_consistency(self) -> Self:
        if (self.shard_index is None) != (self.shard_count is None):
            raise ValueError("shard_index and shard_count must be given together")
        if self.shard_index is not None and self.shard_count is not None:
            if self.shard_index >= self.shard_count:
                raise ValueError(
                    f"shard_index {self.shard_index} out of range "
                    f"for {self.shard_count} shard(s)"
                )
        return self

    @property
    def diffing(self) -> bool:
        """Reruns and retries need a baseline, so they imply diffing."""
        return self.diff or self.rerun_only or self.retries > 0

    @property
    def resolved_baseline_path(self) -> Path:
        return self.baseline_path or self.root / "test-results.json"

    @property
    def resolved_output_path(self) -> Path:
        return self.output_path or self.root / "test-results-new.json"

    @property
    def resolved_diff_path(self) -> Path:
        return self.diff_path or self.root / "test-results-diff.json"

    @property
    def resolved_verbose_output_path(self) -> Path | None:
        if not self.verbose:
            return None
        return self.verbose_output_path or self.root / "test-results-new.verbose.json"


@dataclass(kw_only=True)
class RunContext:
    """Mutable state of a single run, discarded when the run completes."""

    options: RunOptions
    baseline: Baseline | None = None
    expected: int = 0
    completed: int = 0
    regressed: int = 0
    fixed: int = 0
    new: int = 0

    @property
    def suite_root(self) -> Path:
        return self.options.root.absolute()

    def normalize(self, result: TestResult) -> TestResult:
        """Store files relative to the directory holding the run root."""
        path = Path(result.file)
        parent = self.suite_root.parent
        if path.is_absolute() and path.is_relative_to(parent):
            relative = path.relative_to(parent).as_posix()
            return result.model_copy(update={"file": relative})
        return result

    def rerun_path(self, result: TestResult) -> str:
        """Absolute path to dispatch when rerunning ``result``."""
        relative = suite_relative_path(result.file, self.options.suite_dir)
        return str(self.suite_root / relative)

    def start_round(self, files: Sequence[str]) -> None:
        self.expected = len(files)
        self.completed = self.regressed = self.fixed = self.new = 0

    def record(self, result: TestResult) -> None:
        """Update the live counters with one completed test."""
        self.completed += 1
        if self.baseline is not None:
            old = self.baseline.get(result_key(result, self.options.suite_dir))
            match classify(result, old):
                case "regression":
                    self.regressed += 1
                case "fix":
                    self.fixed += 1
                case "new":
                    self.new += 1
        if self.completed % self.options.progress_interval == 0:
            log.info(
                "Progress: %d test(s) done for %d file(s) | R:%d F:%d N:%d",
                self.completed,
                self.expected,
                self.regressed,
                self.fixed,
                self.new,
            )


@dataclass(frozen=True, kw_only=True)
class RunOutcome:
    """Final result of a run, its diff and how it ended."""

    results: Sequence[TestResult]
    report: DiffReport | None = None
    rounds: Sequence[RetryRound] = ()
    failures: Sequence[WorkerFailure] = ()
    complete: bool = True

    @property
    def has_regressions(self) -> bool:
        return self.report is not None and self.report.has_regressions

    @property
    def exit_code(self) -> int:
        if self.has_regressions:
            return EXIT_REGRESSIONS
        if not self.complete:
            return EXIT_INCOMPLETE
        return EXIT_OK


@dataclass(frozen=True, kw_only=True)
class Orchestrator:
    """Runs the corpus on a worker pool and evaluates it against the baseline."""

    workers: Sequence[Worker]
    options: RunOptions
    dispatcher: ShardDispatcher = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "dispatcher", ShardDispatcher(workers=self.workers))

    async def interrupt(self) -> None:
        """Stop the run; the current round finishes as incomplete."""
        log.warning("Interrupt received, stopping workers")
        await self.dispatcher.kill()

    async def run(self) -> RunOutcome:
        """Run the selected corpus, retrying regressions within the budget."""
        context = self._new_context(diffing=self.options.diffing)
        files = enumerate_tests(self.options.patterns, self.options.root)
        if self.options.shard_index is not None and self.options.shard_count:
            files = select_shard(
                files, self.options.shard_index, self.options.shard_count
            ).files
            log.info(
                "Running shard %d/%d with %d file(s)",
                self.options.shard_index,
                self.options.shard_count,
                len(files),
            )
        log.info(
            "Running around %d tests with %d worker(s) of %d thread(s)...",
            len(files) * 2,
            len(self.workers),
            self.options.concurrency,
        )
        return await self._run_rounds(context, files, mode="full")

    async def rerun(self) -> RunOutcome:
        """Rerun the regressions of the previous result file."""
        baseline = self._load_baseline()
        context = RunContext(options=self.options, baseline=baseline)
        output_path = self.options.resolved_output_path
        previous = load_results(output_path)
        report = diff_results(previous, baseline)

        files = sorted({context.rerun_path(d.new) for d in report.regressions})
        if self.options.patterns:
            requested = set(enumerate_tests(self.options.patterns, self.options.root))
            files = [f for f in files if f in requested]
        log.info("Found %d regression(s) to rerun", len(files))

        if not files:
            log.info("Nothing to rerun, there were no regressions")
            return self._finish(
                context,
                previous,
                rounds=(),
                failures=(),
                complete=True,
                persist=False,
            )

        archive_results(output_path)
        return await self._run_rounds(context, files, mode="targeted", prior=previous)

    async def evaluate(self) -> RunOutcome:
        """Evaluate an existing result file without running anything."""
        context = self._new_context(diffing=self.options.diffing)
        results = load_results(self.options.resolved_output_path)
        return self._finish(
            context,
            results,
            rounds=(),
            failures=(),
            complete=True,
            persist=False,
        )

    def _new_context(self, *, diffing: bool) -> RunContext:
        baseline = self._load_baseline() if diffing else None
        return RunContext(options=self.options, baseline=baseline)

    def _load_baseline(self) -> Baseline:
        options = self.options
        return load_baseline(options.resolved_baseline_path, options.suite_dir)

    async def _run_rounds(
        self,
        context: RunContext,
        files: Sequence[str],
        *,
        mode: DispatchMode,
        prior: Sequence[TestResult] | None = None,
    ) -> RunOutcome:
        output_path = self.options.resolved_output_path

        async def run_round(
            round_files: Sequence[str], round_mode: DispatchMode
        ) -> RoundOutcome:
            context.start_round(round_files)
            with ResultWriter(
                output_path, self.options.resolved_verbose_output_path
            ) as writer:

                def on_result(result: TestResult) -> None:
                    result = context.normalize(result)
                    writer.write(result)
                    context.record(result)

                outcome = await self.dispatcher.dispatch(
                    round_files, round_mode, on_result
                )
                if not outcome.complete:
                    writer.close(complete=False)

            log.info("Finished running %d test(s)", context.completed)
            return RoundOutcome(
                results=[context.normalize(r) for r in outcome.results],
                failures=outcome.failures,
                interrupted=outcome.interrupted,
            )

        if context.baseline is None:
            outcome = await run_round(files, mode)
            return self._finish(
                context,
                sort_by_file(outcome.results),
                rounds=(),
                failures=outcome.failures,
                complete=outcome.complete,
            )

        archive_path = output_path.with_name(f"{output_path.name}.old.json")
        controller = RetryController(
            run_round=run_round,
            baseline=context.baseline,
            retry_budget=self.options.retries,
            rerun_path=context.rerun_path,
            archive=lambda merged: write_results(merged, archive_path),
        )
        retried = await controller.run(files, mode=mode, prior=prior)
        return self._finish(
            context,
            retried.results,
            rounds=retried.rounds,
            failures=retried.failures,
            complete=retried.complete,
        )

    def _finish(
        self,
        context: RunContext,
        results: Sequence[TestResult],
        *,
        rounds: Sequence[RetryRound],
        failures: Sequence[WorkerFailure],
        complete: bool,
        persist: bool = True,
    ) -> RunOutcome:
        if persist:
            # The streamed file holds the last round in arrival order only.
            write_results(results, self.options.resolved_output_path)

        report = None
        if context.baseline is not None:
            report = diff_results(results, context.baseline)
            diff_path = self.options.resolved_diff_path
            diff_path.parent.mkdir(parents=True, exist_ok=True)
            diff_path.write_text(json.dumps(report.to_json()), encoding="utf-8")

        if self.options.save:
            if complete:
                save_baseline(results, self.options.resolved_baseline_path)
            else:
                log.error("Not saving results as baseline, the run is incomplete")

        if not complete:
            log.warning("Results are not complete!")
        return RunOutcome(
            results=results,
            report=report,
            rounds=rounds,
            failures=failures,
            complete=complete,
        )
