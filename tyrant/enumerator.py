"""Resolve glob patterns into the list of test files to run."""

import glob
import logging
from collections.abc import Sequence
from pathlib import Path

log = logging.getLogger(__name__)

BUILT_INS = (
    "Array",
    "ArrayBuffer",
    "ArrayIteratorPrototype",
    "AsyncFunction",
    "Atomics",
    "Boolean",
    "DataView",
    "Date",
    "decodeURI",
    "decodeURIComponent",
    "encodeURI",
    "encodeURIComponent",
    "Error",
    "eval",
    "Function",
    "GeneratorFunction",
    "GeneratorPrototype",
    "global",
    "Infinity",
    "isFinite",
    "isNaN",
    "IteratorPrototype",
    "JSON",
    "Map",
    "MapIteratorPrototype",
    "Math",
    "NaN",
    "NativeErrors",
    "Number",
    "Object",
    "parseFloat",
    "parseInt",
    "Promise",
    "Proxy",
    "Reflect",
    "RegExp",
    "Set",
    "SetIteratorPrototype",
    "SharedArrayBuffer",
    "Simd",
    "String",
    "StringIteratorPrototype",
    "Symbol",
    "ThrowTypeError",
    "TypedArray",
    # built-ins/TypedArrays is left out, it crashes the interpreter.
    "undefined",
    "WeakMap",
    "WeakSet",
)

DEFAULT_TEST_GLOBS: Sequence[str] = (
    "test262/test/annexB/**/*.js",
    "test262/test/harness/**/*.js",
    "test262/test/intl402/**/*.js",
    "test262/test/language/**/*.js",
    *(f"test262/test/built-ins/{name}/**/*.js" for name in BUILT_INS),
)


def enumerate_tests(patterns: Sequence[str], root: Path) -> Sequence[str]:
    """Expand glob patterns into a sorted list of unique test files.

    Args:
        patterns: Glob patterns or plain file paths; relative ones are
            resolved against ``root``. Empty means the default catalog.
        root: Directory holding the test suite checkout

    Returns:
        Absolute file paths, deduplicated and lexicographically sorted, so
        that independent invocations over the same corpus shard identically.

    """
    if not patterns:
        patterns = DEFAULT_TEST_GLOBS

    files: set[str] = set()
    for pattern in dict.fromkeys(patterns):
        resolved = str(root.joinpath(pattern).absolute())
        matches = glob.glob(resolved, recursive=True)
        if not matches:
            log.debug("Pattern matched no files: %s", pattern)
        files.update(
            str(Path(match).absolute()) for match in matches if Path(match).is_file()
        )

    log.info("Found %d test file(s) for %d pattern(s)", len(files), len(patterns))
    return tuple(sorted(files))
