"""Run a single compiled test file on a JS host subprocess."""

import asyncio
import logging
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from tyrant.models.result import (
    ExecutionMode,
    TestAttributes,
    TestOutcome,
    suite_relative_path,
)

log = logging.getLogger(__name__)

DEFAULT_HARNESS = ("assert.js", "sta.js")
ASYNC_HARNESS = "doneprintHandle.js"
ASYNC_COMPLETE = "Test262:AsyncTestComplete"
ASYNC_FAILURE = "Test262:AsyncTestFailure"
STRICT_PRELUDE = '"use strict";\n'


class Executor(Protocol):
    """Black box running one test file in one mode."""

    async def __call__(
        self, file: str, attrs: TestAttributes, mode: ExecutionMode
    ) -> TestOutcome:
        """Run the test and return its verdict."""


@dataclass(frozen=True, kw_only=True)
class HostExecutor:
    """Executes tests by handing the compiled source to a host command.

    The compiled source is the harness prelude, the test's includes and the
    test body, prefixed with a strict-mode directive when running strict.
    ``raw`` tests run unmodified.
    """

    host_command: Sequence[str]
    harness_path: Path
    compiled_out: Path | None = None

    def compile(self, file: str, attrs: TestAttributes, mode: ExecutionMode) -> str:
        """Build the source handed to the host."""
        source = Path(file).read_text(encoding="utf-8")
        if attrs.raw:
            return source

        includes = list(DEFAULT_HARNESS)
        if attrs.is_async:
            includes.append(ASYNC_HARNESS)
        includes.extend(attrs.includes)

        prelude = "\n".join(
            (self.harness_path / name).read_text(encoding="utf-8")
            for name in dict.fromkeys(includes)
        )
        directive = STRICT_PRELUDE if mode == "strict" else ""
        return f"{directive}{prelude}\n{source}"

    async def __call__(
        self, file: str, attrs: TestAttributes, mode: ExecutionMode
    ) -> TestOutcome:
        log.debug("Running %s (%s)", file, mode)
        target = await asyncio.to_thread(self._prepare, file, attrs, mode)
        try:
            returncode, stdout, stderr = await self._run_host(target)
        finally:
            if self.compiled_out is None:
                target.unlink(missing_ok=True)
        return interpret(attrs, returncode, stdout, stderr)

    def _prepare(self, file: str, attrs: TestAttributes, mode: ExecutionMode) -> Path:
        compiled = self.compile(file, attrs, mode)
        if self.compiled_out is not None:
            relative = Path(suite_relative_path(file))
            target = self.compiled_out / relative.with_suffix(f".{mode}.js")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(compiled, encoding="utf-8")
            return target

        with tempfile.NamedTemporaryFile(
            "w", suffix=".js", delete=False, encoding="utf-8"
        ) as handle:
            handle.write(compiled)
        return Path(handle.name)

    async def _run_host(self, target: Path) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            *self.host_command,
            str(target),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timed out or killed, don't leave the host process behind.
            process.kill()
            await process.wait()
            raise

        returncode = await process.wait()
        return (
            returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )


def interpret(
    attrs: TestAttributes, returncode: int, stdout: str, stderr: str
) -> TestOutcome:
    """Turn the host's exit status and output into a verdict."""
    output = stderr.strip() or stdout.strip()

    if attrs.negative is not None:
        expected = str(attrs.negative.get("type", ""))
        if returncode != 0 and expected in output:
            return TestOutcome(passed=True)
        return TestOutcome(
            passed=False,
            message=f"Expected test to throw error of type {expected}, "
            f"but {'got: ' + output if returncode != 0 else 'it did not throw'}",
        )

    if attrs.is_async:
        if ASYNC_COMPLETE in stdout and returncode == 0:
            return TestOutcome(passed=True)
        failures = [line for line in stdout.splitlines() if ASYNC_FAILURE in line]
        message = failures[0] if failures else output
        return TestOutcome(
            passed=False, message=message or "Async test did not complete"
        )

    if returncode == 0:
        return TestOutcome(passed=True)
    return TestOutcome(
        passed=False, message=output or f"Host exited with code {returncode}"
    )
