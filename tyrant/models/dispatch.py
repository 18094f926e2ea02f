"""Messages exchanged between the dispatcher and its workers."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from pydantic import Field

from tyrant.models.base import Model
from tyrant.models.result import ExecutionMode, TestResult

type DispatchMode = Literal["full", "targeted"]
type ShardStatus = Literal["success", "crash", "cancelled"]


class DispatchMessage(Model):
    """Work order sent to one worker."""

    shard_index: int = Field(..., alias="shardIndex", ge=0)
    shard_count: int = Field(..., alias="shardCount", ge=1)
    files: Sequence[str] = Field(default_factory=tuple)
    mode: DispatchMode = "full"


@dataclass(frozen=True, kw_only=True)
class TestScheduled:
    """Emitted by a worker before running a file, naming its execution modes.

    A file counts as delivered once a ``TestCompleted`` arrived for every
    announced mode.
    """

    __test__ = False

    shard_index: int
    file: str
    modes: Sequence[ExecutionMode]


@dataclass(frozen=True, kw_only=True)
class TestCompleted:
    """Emitted by a worker once per finished test execution."""

    __test__ = False

    shard_index: int
    result: TestResult


@dataclass(frozen=True, kw_only=True)
class ShardFinished:
    """Emitted exactly once by a worker when its shard terminates."""

    shard_index: int
    status: ShardStatus
    message: str | None = None


type WorkerEvent = TestScheduled | TestCompleted | ShardFinished
