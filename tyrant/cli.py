"""CLI entry point for the conformance test runner."""

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from collections.abc import Mapping, Sequence
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

from tyrant.artifacts import CircleArtifacts, CircleArtifactsConfig
from tyrant.diff import DiffReport, TestDiff
from tyrant.models.result import TEST_TYPES, TestResult, describe, get_test_type
from tyrant.orchestrator import EXIT_OK, Orchestrator, RunOptions, RunOutcome
from tyrant.store import write_results
from tyrant.workers.base import Worker
from tyrant.workers.loading import load_worker_manifest


def log_results_summary(log: logging.Logger, results: Sequence[TestResult]) -> None:
    """Log the pass rate per test type."""
    total: dict[str, int] = {}
    passed: dict[str, int] = {}
    for result in results:
        test_type = get_test_type(result.attrs)
        total[test_type] = total.get(test_type, 0) + 1
        passed[test_type] = passed.get(test_type, 0) + int(result.passed)

    log.info("Results:")
    for test_type in TEST_TYPES:
        if total.get(test_type):
            log.info(
                "  %s: %d/%d (%d%%) passed",
                test_type,
                passed[test_type],
                total[test_type],
                passed[test_type] * 100 // total[test_type],
            )


def log_diff_summary(
    log: logging.Logger, report: DiffReport, *, verbose: bool = False
) -> None:
    """Log new, fixed and regressed counts per test type."""
    if verbose:
        sections = (
            ("New:", report.new),
            ("Fixes:", report.fixes),
            ("Regressions:", report.regressions),
        )
        for title, diffs in sections:
            log.info(title)
            for index, diff in enumerate(diffs):
                log_test_diff(log, index, diff)

    counters: Sequence[tuple[str, Mapping[str, int]]] = (
        ("New:", report.num_new),
        ("Fixes:", report.num_fixes),
        ("Regressions:", report.num_regressions),
    )
    for title, counts in counters:
        log.info(title)
        for test_type in TEST_TYPES:
            if report.total.get(test_type):
                log.info(
                    "  %s: %d/%d",
                    test_type,
                    counts.get(test_type, 0),
                    report.total[test_type],
                )


def log_test_diff(log: logging.Logger, index: int, diff: TestDiff) -> None:
    """Log one differing test with its old and new messages."""
    log.info("  %d. %s", index, describe(diff.new))
    log.info("     %s", diff.new.file)
    if diff.old is not None:
        log.info("     - %s", diff.old.result.message)
    log.info("     + %s", diff.new.result.message)


def format_output(outcome: RunOutcome) -> dict[str, Any]:
    """Format the run outcome for JSON output."""
    report = outcome.report
    return {
        "total": len(outcome.results),
        "passed": sum(1 for r in outcome.results if r.passed),
        "failed": sum(1 for r in outcome.results if not r.passed),
        "complete": outcome.complete,
        "rounds": len(outcome.rounds),
        "regressions": len(report.regressions) if report else None,
        "fixes": len(report.fixes) if report else None,
        "new": len(report.new) if report else None,
        "incomplete": [
            {"shard": f.shard_index, "files": list(f.undelivered_files)}
            for f in outcome.failures
        ],
    }


def build_options(args: argparse.Namespace) -> RunOptions:
    """Translate parsed arguments into run options."""
    return RunOptions(
        root=args.root,
        patterns=args.patterns,
        workers=args.workers,
        concurrency=args.threads,
        timeout_ms=args.timeout,
        retries=args.retries,
        shard_index=args.split_index,
        shard_count=args.split_into,
        baseline_path=args.saved_results,
        output_path=args.input,
        diff=args.diff,
        rerun_only=args.rerun,
        save=args.save,
        verbose=args.verbose,
    )


async def download(options: RunOptions, build: int) -> None:
    """Fetch a CI build's shard results into the output file."""
    async with CircleArtifacts.from_config(CircleArtifactsConfig()) as client:
        results = await client.download_results(build)
    write_results(results, options.resolved_output_path)


async def run(
    options: RunOptions,
    *,
    execute: bool,
    worker_key: str = "local",
    worker_config_json: str = "{}",
    circle_build: int | None = None,
) -> int:
    """Run or evaluate tests and return the exit code."""
    log = logging.getLogger("tyrant")

    if circle_build is not None:
        await download(options, circle_build)

    needs_workers = execute or options.rerun_only
    async with AsyncExitStack() as stack:
        workers: list[Worker] = []
        if needs_workers:
            log.info("Loading worker backend: %s", worker_key)
            manifest = load_worker_manifest(worker_key)
            config_dict = {
                "suite_path": options.root / options.suite_dir,
                "concurrency": options.concurrency,
                "timeout_ms": options.timeout_ms,
                **json.loads(worker_config_json),
            }
            config = manifest.load_config(config_dict)
            for _ in range(options.workers):
                workers.append(
                    await stack.enter_async_context(manifest.worker_factory(config))
                )

        orchestrator = Orchestrator(workers=workers, options=options)
        loop = asyncio.get_running_loop()
        interrupts: set[asyncio.Task[None]] = set()

        def on_sigint() -> None:
            task = loop.create_task(orchestrator.interrupt())
            interrupts.add(task)
            task.add_done_callback(interrupts.discard)

        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, on_sigint)
        try:
            if options.rerun_only:
                outcome = await orchestrator.rerun()
            elif execute:
                outcome = await orchestrator.run()
            else:
                outcome = await orchestrator.evaluate()
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    log_results_summary(log, outcome.results)
    if outcome.report is not None:
        log_diff_summary(log, outcome.report, verbose=options.verbose)
    for failure in outcome.failures:
        log.error("%s", failure)
    if not outcome.complete:
        log.error("Stopped before all tests were run. Results are not complete!")

    print(json.dumps(format_output(outcome), indent=2))
    if outcome.exit_code != EXIT_OK:
        log.info("Exiting with code %d", outcome.exit_code)
    return outcome.exit_code


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run the conformance suite in parallel and diff the results"
    )
    parser.add_argument(
        "patterns",
        nargs="*",
        help="Test file glob patterns (default: the built-in catalog)",
    )
    parser.add_argument(
        "-r", "--run", action="store_true", help="Generate new test results"
    )
    parser.add_argument(
        "-d",
        "--diff",
        action="store_true",
        help="Diff against saved results, exit code 1 on regressions",
    )
    parser.add_argument(
        "-s", "--save", action="store_true", help="Save the results as baseline"
    )
    parser.add_argument(
        "--rerun", action="store_true", help="Rerun tests that have regressed"
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Number of times to retry regressed tests",
    )
    parser.add_argument("--split-into", type=int, help="Only run 1/N of the tests")
    parser.add_argument("--split-index", type=int, help="Which 1/N of the tests to run")
    parser.add_argument(
        "-t",
        "--threads",
        type=int,
        default=os.cpu_count() or 1,
        help="Concurrent tests per worker",
    )
    parser.add_argument(
        "--workers", type=int, default=1, help="Number of parallel workers"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=60_000,
        help="Per-test timeout in milliseconds",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path("tyrant"),
        help="Directory holding the test262 suite and the result files",
    )
    parser.add_argument(
        "--saved-results",
        type=Path,
        help="Results file to compare against and/or save to",
    )
    parser.add_argument("-i", "--input", type=Path, help="Results file to write")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument(
        "--circle-build",
        type=int,
        help="CircleCI build to download results from",
    )
    parser.add_argument(
        "--worker", default="local", help="Worker backend key (default: local)"
    )
    parser.add_argument(
        "--worker-config",
        default="{}",
        help="JSON configuration for the worker backend",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            build_options(args),
            execute=args.run,
            worker_key=args.worker,
            worker_config_json=args.worker_config,
            circle_build=args.circle_build,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
