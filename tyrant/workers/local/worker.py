"""Worker running its shard's tests as local host subprocesses."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from tyrant.errors import ExecutionTimeout
from tyrant.frontmatter import read_attributes
from tyrant.models.dispatch import DispatchMessage, WorkerEvent
from tyrant.models.result import (
    ExecutionMode,
    TestAttributes,
    TestOutcome,
    TestResult,
)
from tyrant.workers.base import Worker
from tyrant.workers.local.config import DEFAULT_TIMEOUT_MS, LocalWorkerConfig
from tyrant.workers.local.host import Executor, HostExecutor

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class Job:
    """One execution of a test file in one mode."""

    file: str
    attrs: TestAttributes
    mode: ExecutionMode
    error: str | None = None


@dataclass(frozen=True, kw_only=True)
class LocalWorker(Worker):
    """Runs tests with a bounded pool of concurrent executions."""

    executor: Executor
    concurrency: int = 1
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: LocalWorkerConfig
    ) -> AsyncGenerator["LocalWorker", None]:
        """Create a worker executing tests with the configured host."""
        executor = HostExecutor(
            host_command=[*config.host_command, *config.host_args],
            harness_path=config.suite_path / "harness",
            compiled_out=config.compiled_out,
        )
        worker = cls(
            executor=executor,
            concurrency=config.concurrency,
            timeout_ms=config.timeout_ms,
        )
        try:
            yield worker
        finally:
            await worker.kill()

    async def run_shard(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
    ) -> None:
        """Run the shard's jobs on ``concurrency`` parallel slots."""
        slots = max(1, min(self.concurrency, len(dispatch.files)))
        jobs: asyncio.Queue[Job | None] = asyncio.Queue(maxsize=slots)

        async with asyncio.TaskGroup() as group:
            for _ in range(slots):
                group.create_task(self._drain(jobs, dispatch, events))
            await self._schedule(dispatch, events, jobs)
            for _ in range(slots):
                await jobs.put(None)

    async def _schedule(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
        jobs: asyncio.Queue[Job | None],
    ) -> None:
        for file in dispatch.files:
            if self.killed:
                return
            planned = await asyncio.to_thread(plan_jobs, file)
            if not await self.announce(
                dispatch, events, file, [job.mode for job in planned]
            ):
                return
            for job in planned:
                await jobs.put(job)

    async def _drain(
        self,
        jobs: asyncio.Queue[Job | None],
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
    ) -> None:
        while (job := await jobs.get()) is not None:
            # Keep taking jobs after a kill so the scheduler never blocks.
            if self.killed:
                continue
            result = await self.run_job(job)
            await self.report(dispatch, events, result)

    async def run_job(self, job: Job) -> TestResult:
        """Run one job; every failure becomes a failing result."""
        loop = asyncio.get_running_loop()
        started = loop.time()

        if job.error is not None:
            outcome = TestOutcome(passed=False, message=job.error)
        else:
            try:
                outcome = await self._run_with_timeout(job)
            except ExecutionTimeout as e:
                log.warning("%s", e)
                outcome = TestOutcome(passed=False, message=str(e))
            except Exception as e:
                log.warning("Execution of %s (%s) failed: %s", job.file, job.mode, e)
                outcome = TestOutcome(passed=False, message=f"Execution failed: {e}")

        return TestResult(
            file=job.file,
            attrs=job.attrs,
            result=outcome,
            mode=job.mode,
            duration=loop.time() - started,
        )

    async def _run_with_timeout(self, job: Job) -> TestOutcome:
        try:
            return await asyncio.wait_for(
                self.executor(job.file, job.attrs, job.mode),
                timeout=self.timeout_ms / 1000,
            )
        except TimeoutError as e:
            raise ExecutionTimeout(job.file, self.timeout_ms) from e


def plan_jobs(file: str) -> Sequence[Job]:
    """Return the jobs for ``file``, one per execution mode.

    A file whose frontmatter cannot be read gets a single job carrying the
    error so that it is reported as failing rather than dropped.
    """
    try:
        attrs = read_attributes(Path(file))
    except (OSError, ValueError) as e:
        return [
            Job(
                file=file,
                attrs=TestAttributes(),
                mode="non-strict",
                error=f"Cannot read test attributes: {e}",
            )
        ]
    return [Job(file=file, attrs=attrs, mode=mode) for mode in attrs.modes()]
