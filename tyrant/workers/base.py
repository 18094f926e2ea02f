"""Abstract base class for test workers."""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field

from tyrant.models.dispatch import (
    DispatchMessage,
    ShardFinished,
    TestCompleted,
    TestScheduled,
    WorkerEvent,
)
from tyrant.models.result import ExecutionMode, TestResult

log = logging.getLogger(__name__)

EMIT_RETRY_INTERVAL = 0.05


@dataclass(frozen=True, kw_only=True)
class Worker(ABC):
    """Abstract base for workers executing one shard at a time.

    A worker reports through an event queue: one ``TestCompleted`` per
    finished test, in completion order, followed by exactly one
    ``ShardFinished`` once the shard terminates.
    """

    _kill_requested: asyncio.Event = field(
        default_factory=asyncio.Event, repr=False, compare=False
    )

    @property
    def killed(self) -> bool:
        return self._kill_requested.is_set()

    @abstractmethod
    async def run_shard(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
    ) -> None:
        """Run every test of the shard, reporting each one through ``events``.

        Implementations must stop scheduling tests once ``killed`` is set.
        Before running a file they call ``announce`` with its execution
        modes, and they report results through ``report``, so that nothing
        is emitted after a kill.

        Args:
            dispatch: Files and shard parameters for this run
            events: Queue receiving one ``TestCompleted`` per test

        """

    def reset(self) -> None:
        """Clear a previous kill so the worker accepts a new shard."""
        self._kill_requested.clear()

    async def kill(self) -> None:
        """Stop scheduling new tests. Safe to call on an idle worker.

        The kill stays in effect until ``reset`` is called.
        """
        if not self.killed:
            log.info("Kill requested for %s", type(self).__name__)
        self._kill_requested.set()

    async def report(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
        result: TestResult,
    ) -> bool:
        """Emit a completed test unless the worker was killed.

        Returns:
            Whether the event was emitted

        """
        event = TestCompleted(shard_index=dispatch.shard_index, result=result)
        return await self._emit(events, event)

    async def announce(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
        file: str,
        modes: Sequence[ExecutionMode],
    ) -> bool:
        """Tell the dispatcher which executions of ``file`` will be reported."""
        event = TestScheduled(
            shard_index=dispatch.shard_index, file=file, modes=tuple(modes)
        )
        return await self._emit(events, event)

    async def _emit(
        self, events: asyncio.Queue[WorkerEvent], event: WorkerEvent
    ) -> bool:
        # Kill check and enqueue must happen without an await in between.
        while not self.killed:
            try:
                events.put_nowait(event)
            except asyncio.QueueFull:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._kill_requested.wait(), EMIT_RETRY_INTERVAL
                    )
            else:
                return True
        return False

    async def execute(
        self,
        dispatch: DispatchMessage,
        events: asyncio.Queue[WorkerEvent],
    ) -> None:
        """Run the shard and always terminate it with a ``ShardFinished`` event."""
        log.info(
            "Shard %d/%d starting with %d file(s) (mode=%s)",
            dispatch.shard_index,
            dispatch.shard_count,
            len(dispatch.files),
            dispatch.mode,
        )
        try:
            await self.run_shard(dispatch, events)
        except asyncio.CancelledError:
            await self.kill()
            with contextlib.suppress(asyncio.QueueFull):
                events.put_nowait(
                    ShardFinished(shard_index=dispatch.shard_index, status="cancelled")
                )
            raise
        except Exception as e:
            log.error("Shard %d crashed: %s", dispatch.shard_index, e, exc_info=e)
            await events.put(
                ShardFinished(
                    shard_index=dispatch.shard_index, status="crash", message=str(e)
                )
            )
            return

        status = "cancelled" if self.killed else "success"
        log.info("Shard %d finished: %s", dispatch.shard_index, status)
        await events.put(ShardFinished(shard_index=dispatch.shard_index, status=status))
