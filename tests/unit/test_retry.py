"""Tests for the retry controller."""

from collections.abc import Sequence

import pytest

from tyrant.dispatcher import RoundOutcome
from tyrant.models.dispatch import DispatchMode
from tyrant.models.result import TestResult
from tyrant.retry import RetryController, RetryState, merge_results
from tyrant.store import Baseline
from tyrant.testing.factories import make_failure, make_result

FILES = [f"test262/test/f{i}.js" for i in range(8)]


class ScriptedRounds:
    """Round runner failing the files listed for each round."""

    def __init__(
        self, failing: Sequence[set[str]], interrupt_at: int | None = None
    ) -> None:
        self.failing = failing
        self.interrupt_at = interrupt_at
        self.calls: list[tuple[list[str], DispatchMode]] = []

    async def __call__(
        self, files: Sequence[str], mode: DispatchMode
    ) -> RoundOutcome:
        number = len(self.calls)
        self.calls.append((list(files), mode))
        failing = self.failing[min(number, len(self.failing) - 1)]
        return RoundOutcome(
            results=[
                make_result(f, passed=f not in failing, description=f)
                for f in reversed(files)
            ],
            interrupted=number == self.interrupt_at,
        )


@pytest.fixture
def baseline() -> Baseline:
    """Baseline where every file passed."""
    return Baseline(results=[make_result(f, passed=True, description=f) for f in FILES])


async def test_no_regressions_runs_once(baseline: Baseline) -> None:
    """A clean first round is final."""
    rounds = ScriptedRounds([set()])
    controller = RetryController(run_round=rounds, baseline=baseline, retry_budget=3)

    outcome = await controller.run(FILES)

    assert len(rounds.calls) == 1
    assert rounds.calls[0] == (FILES, "full")
    assert not outcome.report.regressions
    assert outcome.complete
    assert controller.state is RetryState.DONE


async def test_retries_until_regressions_clear(baseline: Baseline) -> None:
    """Five regressions, then two, then none take three rounds."""
    rounds = ScriptedRounds([set(FILES[:5]), set(FILES[:2]), set()])
    controller = RetryController(run_round=rounds, baseline=baseline, retry_budget=2)

    outcome = await controller.run(FILES)

    assert [files for files, _ in rounds.calls] == [FILES, FILES[:5], FILES[:2]]
    assert [mode for _, mode in rounds.calls] == ["full", "targeted", "targeted"]
    assert [r.regressions for r in outcome.rounds] == [5, 2, 0]
    assert not outcome.report.regressions
    assert all(r.passed for r in outcome.results)


async def test_stops_when_budget_is_exhausted(baseline: Baseline) -> None:
    """Never runs more than budget plus one rounds."""
    rounds = ScriptedRounds([set(FILES[:3])])
    controller = RetryController(run_round=rounds, baseline=baseline, retry_budget=2)

    outcome = await controller.run(FILES)

    assert len(rounds.calls) == 3
    assert len(outcome.report.regressions) == 3
    assert outcome.report.has_regressions


async def test_zero_budget_never_retries(baseline: Baseline) -> None:
    """Without a budget regressions are reported as they are."""
    rounds = ScriptedRounds([set(FILES[:3])])
    controller = RetryController(run_round=rounds, baseline=baseline)

    outcome = await controller.run(FILES)

    assert len(rounds.calls) == 1
    assert len(outcome.report.regressions) == 3


async def test_merged_set_keeps_size_and_order(baseline: Baseline) -> None:
    """Retries replace entries in place without changing the set."""
    rounds = ScriptedRounds([set(FILES[:4]), set(FILES[:1])])
    merged_sizes: list[int] = []
    controller = RetryController(
        run_round=rounds,
        baseline=baseline,
        retry_budget=1,
        on_merged=lambda merged: merged_sizes.append(len(merged)),
    )

    outcome = await controller.run(FILES)

    assert merged_sizes == [len(FILES), len(FILES)]
    assert [r.file for r in outcome.results] == sorted(FILES)
    assert [r.passed for r in outcome.results] == [False] + [True] * 7


async def test_interrupted_round_is_not_retried(baseline: Baseline) -> None:
    """An interrupt ends the loop regardless of regressions and budget."""
    rounds = ScriptedRounds([set(FILES[:3])], interrupt_at=0)
    controller = RetryController(run_round=rounds, baseline=baseline, retry_budget=5)

    outcome = await controller.run(FILES)

    assert len(rounds.calls) == 1
    assert outcome.interrupted
    assert not outcome.complete


async def test_archives_before_each_retry(baseline: Baseline) -> None:
    """The merged set is archived before it is updated by a retry."""
    rounds = ScriptedRounds([set(FILES[:2]), set()])
    archived: list[list[bool]] = []
    controller = RetryController(
        run_round=rounds,
        baseline=baseline,
        retry_budget=3,
        archive=lambda merged: archived.append([r.passed for r in merged]),
    )

    await controller.run(FILES)

    assert archived == [[False, False] + [True] * 6]


async def test_rerun_paths_are_mapped(baseline: Baseline) -> None:
    """Retried files are dispatched through the rerun path mapping."""
    rounds = ScriptedRounds([set(FILES[:1]), set()])
    controller = RetryController(
        run_round=rounds,
        baseline=baseline,
        retry_budget=1,
        rerun_path=lambda result: f"/abs/{result.file}",
    )

    await controller.run(FILES)

    assert rounds.calls[1] == ([f"/abs/{FILES[0]}"], "targeted")


async def test_first_round_merges_into_prior_results(baseline: Baseline) -> None:
    """With prior results the first round is a targeted update."""
    prior = [make_result(f, passed=f != FILES[3], description=f) for f in FILES]
    rounds = ScriptedRounds([set()])
    controller = RetryController(run_round=rounds, baseline=baseline)

    outcome = await controller.run([FILES[3]], mode="targeted", prior=prior)

    assert rounds.calls == [([FILES[3]], "targeted")]
    assert len(outcome.results) == len(FILES)
    assert all(r.passed for r in outcome.results)


async def test_collects_worker_failures(baseline: Baseline) -> None:
    """Failures of every round end up in the outcome."""

    async def run_round(files: Sequence[str], mode: DispatchMode) -> RoundOutcome:
        return RoundOutcome(
            results=[make_result(f, passed=True, description=f) for f in files[1:]],
            failures=[make_failure(0, files[0])],
        )

    controller = RetryController(run_round=run_round, baseline=baseline)

    outcome = await controller.run(FILES)

    assert len(outcome.failures) == 1
    assert outcome.failures[0].undelivered_files == (FILES[0],)
    assert not outcome.complete


async def test_controller_is_single_use(baseline: Baseline) -> None:
    """A finished controller cannot be run again."""
    controller = RetryController(run_round=ScriptedRounds([set()]), baseline=baseline)
    await controller.run(FILES)

    with pytest.raises(RuntimeError, match="already used"):
        await controller.run(FILES)


def test_merge_results_replaces_by_key() -> None:
    """Updates replace the entry with the same key in place."""
    merged = [
        make_result("tyrant/test262/a.js", passed=True, description="a"),
        make_result("tyrant/test262/b.js", passed=False, description="b"),
    ]
    update = [make_result("/ci/tyrant/test262/b.js", passed=True, description="b")]

    out = merge_results(merged, update, "test262")

    assert out[0] is merged[0]
    assert out[1] is update[0]


def test_merge_results_pairs_modes() -> None:
    """Strict and non-strict runs of a file replace their own entries."""
    merged = [
        make_result("test262/a.js", passed=True, mode="non-strict"),
        make_result("test262/a.js", passed=True, mode="strict"),
    ]
    update = [
        make_result("test262/a.js", passed=False, mode="strict"),
        make_result("test262/a.js", passed=True, mode="non-strict"),
    ]

    out = merge_results(merged, update, "test262")

    assert [(r.mode, r.passed) for r in out] == [
        ("non-strict", True),
        ("strict", False),
    ]


def test_merge_results_pairs_in_order_without_modes() -> None:
    """Results without a mode fill the entries of their key in order."""
    merged = [
        make_result("test262/a.js", passed=True, message="first"),
        make_result("test262/a.js", passed=True, message="second"),
    ]
    update = [make_result("test262/a.js", passed=False, message="rerun")]

    out = merge_results(merged, update, "test262")

    assert [r.result.message for r in out] == ["rerun", "second"]


def test_merge_results_drops_unknown_keys(caplog: pytest.LogCaptureFixture) -> None:
    """Updates for tests not in the set are dropped."""
    merged = [make_result("test262/a.js", passed=True)]
    update: list[TestResult] = [
        make_result("test262/a.js", passed=False),
        make_result("test262/z.js", passed=False),
    ]

    out = merge_results(merged, update, "test262")

    assert len(out) == 1
    assert not out[0].passed
    assert "test262/z.js" in caplog.text
