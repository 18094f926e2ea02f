"""Fixtures for integration tests."""

import sys
from collections.abc import Generator
from pathlib import Path
from typing import Protocol

import pytest
from aioresponses import aioresponses as aioresponses_cls

# Stands in for the JS host: fails on a thrown error, hangs on a busy loop,
# rejects sloppy-only code in strict mode and completes async tests on $DONE.
HOST_SCRIPT = """\
import sys
import time
from pathlib import Path

source = Path(sys.argv[1]).read_text(encoding="utf-8")
if "while (true)" in source:
    time.sleep(60)
if source.startswith('"use strict"') and "// sloppy only" in source:
    print("SyntaxError: strict mode", file=sys.stderr)
    sys.exit(1)
for error in ("TypeError", "Test262Error"):
    if f"throw new {error}" in source:
        print(f"{error}: thrown", file=sys.stderr)
        sys.exit(1)
if "$DONE()" in source:
    print("Test262:AsyncTestComplete")
"""


class WriteTestFn(Protocol):
    """Protocol for suite test creation function."""

    def __call__(self, name: str, frontmatter: str, body: str) -> str:
        """Create a test file and return its path."""


@pytest.fixture
def aioresponses() -> Generator[aioresponses_cls, None, None]:
    """Intercept aiohttp requests."""
    with aioresponses_cls() as mocked:
        yield mocked


@pytest.fixture
def suite_path(tmp_path: Path) -> Path:
    """Create a suite checkout with a harness."""
    suite = tmp_path / "tyrant" / "test262"
    harness = suite / "harness"
    harness.mkdir(parents=True)
    for name in ("assert.js", "sta.js", "doneprintHandle.js", "compareArray.js"):
        (harness / name).write_text(f"// {name}\n", encoding="utf-8")
    return suite


@pytest.fixture
def host_command(tmp_path: Path) -> list[str]:
    """Command running the stand-in host."""
    script = tmp_path / "host.py"
    script.write_text(HOST_SCRIPT, encoding="utf-8")
    return [sys.executable, str(script)]


@pytest.fixture
def write_test(suite_path: Path) -> WriteTestFn:
    """Return a function to create test files in the suite."""

    def _write(name: str, frontmatter: str, body: str) -> str:
        path = suite_path / "test" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"/*---\n{frontmatter}\n---*/\n{body}\n", encoding="utf-8")
        return str(path)

    return _write
