"""Retry controller rerunning regressed tests until the result is stable."""

import enum
import logging
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from tyrant.diff import DiffReport, diff_results
from tyrant.dispatcher import RoundOutcome
from tyrant.errors import WorkerFailure
from tyrant.models.dispatch import DispatchMode
from tyrant.models.result import ResultKey, TestResult, result_key, sort_by_file
from tyrant.store import Baseline

log = logging.getLogger(__name__)

type RunRound = Callable[[Sequence[str], DispatchMode], Awaitable[RoundOutcome]]


class RetryState(enum.StrEnum):
    """States of the retry controller."""

    INITIAL = "initial"
    RUNNING = "running"
    EVALUATING = "evaluating"
    RETRYING = "retrying"
    DONE = "done"


@dataclass(frozen=True, kw_only=True)
class RetryRound:
    """One dispatch-execute-evaluate cycle."""

    number: int
    files: Sequence[str]
    results: Sequence[TestResult]
    regressions: int


@dataclass(frozen=True, kw_only=True)
class RetryOutcome:
    """Final merged results of all rounds and their diff."""

    results: Sequence[TestResult]
    report: DiffReport
    rounds: Sequence[RetryRound]
    failures: Sequence[WorkerFailure]
    interrupted: bool

    @property
    def complete(self) -> bool:
        return not self.failures and not self.interrupted


def merge_results(
    merged: Sequence[TestResult],
    update: Sequence[TestResult],
    suite_dir: str,
) -> list[TestResult]:
    """Replace entries of ``merged`` with the matching ones from ``update``.

    Entries are matched by result key and updated in place, so the order and
    size of ``merged`` never change. Within one key (a file's strict and
    non-strict runs) entries pair up by execution mode first, then in order.
    Updates whose key is not part of ``merged`` are dropped.
    """
    positions: dict[ResultKey, list[int]] = defaultdict(list)
    for index, result in enumerate(merged):
        positions[result_key(result, suite_dir)].append(index)

    incoming: dict[ResultKey, list[TestResult]] = defaultdict(list)
    for result in update:
        key = result_key(result, suite_dir)
        if key not in positions:
            log.warning("Dropping result for %s, it is not part of the run", key.path)
            continue
        incoming[key].append(result)

    out = list(merged)
    for key, replacements in incoming.items():
        free = deque(positions[key])
        leftovers: list[TestResult] = []
        for replacement in replacements:
            same_mode = next(
                (
                    i
                    for i in free
                    if replacement.mode is not None and out[i].mode == replacement.mode
                ),
                None,
            )
            if same_mode is None:
                leftovers.append(replacement)
                continue
            free.remove(same_mode)
            out[same_mode] = replacement
        for replacement in leftovers:
            if not free:
                log.warning("Dropping extra result for %s", key.path)
                continue
            out[free.popleft()] = replacement
    return out


@dataclass(kw_only=True)
class RetryController:
    """Drives repeated narrow reruns of regressed tests.

    Every evaluation diffs against the original baseline. The controller stops
    when no regressions remain, after ``retry_budget + 1`` rounds, or when a
    round was interrupted.
    """

    run_round: RunRound
    baseline: Baseline
    retry_budget: int = 0
    rerun_path: Callable[[TestResult], str] = lambda result: result.file
    archive: Callable[[Sequence[TestResult]], None] | None = None
    on_merged: Callable[[Sequence[TestResult]], None] | None = None
    state: RetryState = RetryState.INITIAL
    rounds: list[RetryRound] = field(default_factory=list)

    async def run(
        self,
        files: Sequence[str],
        *,
        mode: DispatchMode = "full",
        prior: Sequence[TestResult] | None = None,
    ) -> RetryOutcome:
        """Run ``files`` and retry regressions within the budget.

        Args:
            files: Files of the first round
            mode: Dispatch mode of the first round
            prior: Result set the first round merges into (rerun-only mode);
                without it the first round's results form the set

        """
        if self.state is not RetryState.INITIAL:
            raise RuntimeError(f"Retry controller already used (state={self.state})")

        failures: list[WorkerFailure] = []
        round_files = list(files)
        round_mode = mode
        merged: list[TestResult] = list(prior or [])

        while True:
            self.state = RetryState.RUNNING
            outcome = await self.run_round(round_files, round_mode)
            failures.extend(outcome.failures)
            if not self.rounds and prior is None:
                merged = sort_by_file(outcome.results)
            else:
                merged = merge_results(merged, outcome.results, self.baseline.suite_dir)
            if self.on_merged is not None:
                self.on_merged(merged)

            self.state = RetryState.EVALUATING
            report = diff_results(merged, self.baseline)
            self.rounds.append(
                RetryRound(
                    number=len(self.rounds) + 1,
                    files=tuple(round_files),
                    results=outcome.results,
                    regressions=len(report.regressions),
                )
            )
            log.info(
                "Round %d: %d result(s), %d regression(s)",
                len(self.rounds),
                len(outcome.results),
                len(report.regressions),
            )

            if outcome.interrupted:
                log.warning("Round %d was interrupted, not retrying", len(self.rounds))
                break
            if not report.regressions:
                break
            if len(self.rounds) >= self.retry_budget + 1:
                log.info("Retry budget of %d exhausted", self.retry_budget)
                break

            self.state = RetryState.RETRYING
            round_files = sorted({self.rerun_path(d.new) for d in report.regressions})
            round_mode = "targeted"
            tries_left = self.retry_budget + 1 - len(self.rounds)
            log.info(
                "Got %d regression(s) in %d file(s). "
                "Retrying them up to %d more time(s)",
                len(report.regressions),
                len(round_files),
                tries_left,
            )
            if self.archive is not None:
                self.archive(merged)

        self.state = RetryState.DONE
        return RetryOutcome(
            results=merged,
            report=diff_results(merged, self.baseline),
            rounds=list(self.rounds),
            failures=failures,
            interrupted=outcome.interrupted,
        )
