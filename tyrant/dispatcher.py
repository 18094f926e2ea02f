"""Fan a file list out over a pool of workers and collect their events."""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from tyrant.errors import WorkerFailure
from tyrant.models.dispatch import (
    DispatchMessage,
    DispatchMode,
    ShardFinished,
    TestCompleted,
    TestScheduled,
    WorkerEvent,
)
from tyrant.models.result import TestResult
from tyrant.sharding import split_into_shards
from tyrant.workers.base import Worker

log = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


@dataclass(frozen=True, kw_only=True)
class RoundOutcome:
    """Everything a pool delivered for one dispatch."""

    results: Sequence[TestResult]
    failures: Sequence[WorkerFailure] = ()
    interrupted: bool = False

    @property
    def complete(self) -> bool:
        return not self.failures and not self.interrupted


@dataclass
class PendingExecutions:
    """Executions a shard still owes, per file.

    A file maps to ``None`` until its worker announced the modes it runs in.
    """

    owed: dict[str, set[str] | None]

    @classmethod
    def for_files(cls, files: Sequence[str]) -> "PendingExecutions":
        return cls(owed=dict.fromkeys(files))

    def scheduled(self, file: str, modes: Sequence[str]) -> None:
        if file in self.owed:
            self.owed[file] = set(modes)

    def completed(self, result: TestResult) -> None:
        if result.file not in self.owed:
            return
        remaining = self.owed[result.file]
        if remaining is None:
            # Not announced: the first result delivers the file.
            del self.owed[result.file]
            return
        if result.mode is not None and result.mode in remaining:
            remaining.discard(result.mode)
        elif remaining:
            remaining.pop()
        if not remaining:
            del self.owed[result.file]

    @property
    def files(self) -> Sequence[str]:
        """Files with at least one missing execution, sorted."""
        return sorted(self.owed)

    def describe(self, file: str) -> str:
        modes = self.owed.get(file)
        if modes is None:
            return f"{file} (not started)"
        return f"{file} ({', '.join(sorted(modes))})"


@dataclass(frozen=True, kw_only=True)
class ShardDispatcher:
    """Shards a file list over a worker pool and drains the pool's events."""

    workers: Sequence[Worker]
    queue_size: int = DEFAULT_QUEUE_SIZE
    _interrupted: asyncio.Event = field(
        default_factory=asyncio.Event, repr=False, compare=False
    )

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()

    async def dispatch(
        self,
        files: Sequence[str],
        mode: DispatchMode,
        on_result: Callable[[TestResult], None] | None = None,
    ) -> RoundOutcome:
        """Run ``files`` on the pool and wait until every shard terminated.

        Args:
            files: Test files to run, sharded by sorted index modulo pool size
            mode: "full" for a corpus run, "targeted" for a rerun subset
            on_result: Called for every completed test as its event arrives

        Returns:
            Results in arrival order, shard failures, and whether the round
            was killed before finishing

        """
        if not self.workers:
            raise ValueError("Cannot dispatch without workers")
        if self.interrupted:
            log.info("Run was interrupted, not dispatching %d file(s)", len(files))
            return RoundOutcome(results=[], interrupted=True)

        assignments = split_into_shards(files, len(self.workers))
        events: asyncio.Queue[WorkerEvent] = asyncio.Queue(maxsize=self.queue_size)
        pending = {
            a.shard_index: PendingExecutions.for_files(a.files) for a in assignments
        }

        log.info(
            "Dispatching %d file(s) over %d worker(s) (mode=%s)",
            len(files),
            len(self.workers),
            mode,
        )
        tasks: list[asyncio.Task[None]] = []
        for worker, assignment in zip(self.workers, assignments, strict=True):
            worker.reset()
            message = DispatchMessage(
                shard_index=assignment.shard_index,
                shard_count=assignment.shard_count,
                files=assignment.files,
                mode=mode,
            )
            tasks.append(asyncio.create_task(worker.execute(message, events)))

        results: list[TestResult] = []
        finished: dict[int, ShardFinished] = {}
        try:
            while len(finished) < len(tasks):
                event = await events.get()
                match event:
                    case TestScheduled(shard_index=index, file=file, modes=modes):
                        pending[index].scheduled(file, modes)
                    case TestCompleted(shard_index=index, result=result):
                        pending[index].completed(result)
                        results.append(result)
                        if on_result is not None:
                            on_result(result)
                    case ShardFinished(shard_index=index):
                        finished[index] = event
        finally:
            if len(finished) < len(tasks):
                await self.kill()
                for task in tasks:
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        failures = self._collect_failures(finished, pending)
        interrupted = self.interrupted or any(
            f.status == "cancelled" for f in finished.values()
        )
        return RoundOutcome(
            results=results, failures=failures, interrupted=interrupted
        )

    def _collect_failures(
        self,
        finished: dict[int, ShardFinished],
        pending: dict[int, PendingExecutions],
    ) -> Sequence[WorkerFailure]:
        failures: list[WorkerFailure] = []
        for index, event in sorted(finished.items()):
            undelivered = pending[index].files
            if event.status == "crash" or (event.status == "success" and undelivered):
                failure = WorkerFailure(index, undelivered, event.message)
                log.error("%s", failure)
                for file in undelivered:
                    log.error("  incomplete: %s", pending[index].describe(file))
                failures.append(failure)
            elif event.status == "cancelled" and undelivered:
                log.warning(
                    "Shard %d cancelled with %d file(s) not run",
                    index,
                    len(undelivered),
                )
        return failures

    async def kill(self) -> None:
        """Broadcast a kill to every worker of the pool."""
        self._interrupted.set()
        await asyncio.gather(*(worker.kill() for worker in self.workers))
