"""Models for test cases and their execution results."""

from collections.abc import Mapping, Sequence
from pathlib import PurePath
from typing import Any, Literal, NamedTuple

from pydantic import ConfigDict, Field, field_validator

from tyrant.models.base import Model

type TestType = Literal["es5", "es6", "es", "other"]
type ExecutionMode = Literal["strict", "non-strict"]

TEST_TYPES: Sequence[TestType] = ("es5", "es6", "es", "other")
DEFAULT_SUITE_DIR = "test262"


class TestAttributes(Model):
    """Frontmatter attributes of a conformance test file.

    Unknown frontmatter keys (info, features, ...) are preserved as extras.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    description: str | None = None
    es5id: str | None = None
    es6id: str | None = None
    esid: str | None = None
    includes: tuple[str, ...] = ()
    negative: Mapping[str, Any] | None = None
    flags: Mapping[str, bool] = Field(default_factory=dict)

    @field_validator("description", "es5id", "es6id", "esid", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        # YAML reads ids such as ``es6id: 12.2`` as numbers.
        if isinstance(value, int | float):
            return str(value)
        return value

    @field_validator("flags", mode="before")
    @classmethod
    def _flag_list_to_mapping(cls, value: Any) -> Any:
        # Frontmatter lists flags, persisted results map them to booleans.
        if isinstance(value, list | tuple):
            return {str(flag): True for flag in value}
        return value

    @property
    def only_strict(self) -> bool:
        return self.flags.get("onlyStrict", False)

    @property
    def no_strict(self) -> bool:
        return self.flags.get("noStrict", False)

    @property
    def raw(self) -> bool:
        return self.flags.get("raw", False)

    @property
    def is_async(self) -> bool:
        return self.flags.get("async", False)

    def modes(self) -> Sequence[ExecutionMode]:
        """Execution modes this test must run under."""
        if self.only_strict:
            return ("strict",)
        if self.no_strict or self.raw:
            return ("non-strict",)
        return ("non-strict", "strict")


class TestOutcome(Model):
    """Pass/fail verdict of one test execution."""

    __test__ = False

    passed: bool = Field(..., alias="pass")
    message: str = ""


class TestResult(Model):
    """A test case together with the outcome of running it once.

    ``mode`` and ``duration`` are transient: they are written to the verbose
    output only and stripped when a result set is canonicalized.
    """

    __test__ = False

    file: str = Field(..., description="Path of the test file")
    attrs: TestAttributes = Field(default_factory=TestAttributes)
    result: TestOutcome
    mode: ExecutionMode | None = None
    duration: float | None = None

    @property
    def passed(self) -> bool:
        return self.result.passed

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted ``{file, attrs, result}`` shape."""
        return self.model_dump(
            by_alias=True, exclude_none=True, include={"file", "attrs", "result"}
        )

    def to_verbose_record(self) -> dict[str, Any]:
        """Serialize with every diagnostic field."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def canonical(self) -> "TestResult":
        """Copy without transient fields."""
        return TestResult(file=self.file, attrs=self.attrs, result=self.result)


class ResultKey(NamedTuple):
    """Identity of a test for diffing, independent of the suite's location."""

    path: str
    description: str


def suite_relative_path(file: str, suite_dir: str = DEFAULT_SUITE_DIR) -> str:
    """Return ``file`` starting at its suite directory component.

    ``/ci/tyrant/test262/test/a.js`` becomes ``test262/test/a.js``. Paths that
    do not contain the suite directory are returned unchanged.
    """
    parts = PurePath(file).parts
    if suite_dir in parts:
        return PurePath(*parts[parts.index(suite_dir) :]).as_posix()
    return PurePath(file).as_posix()


def result_key(result: TestResult, suite_dir: str = DEFAULT_SUITE_DIR) -> ResultKey:
    """Compute the diffing key of a result."""
    return ResultKey(
        path=suite_relative_path(result.file, suite_dir),
        description=result.attrs.description or "",
    )


def get_test_type(attrs: TestAttributes) -> TestType:
    """Classify a test by the first id attribute present: es5id, es6id, esid."""
    if attrs.es5id:
        return "es5"
    if attrs.es6id:
        return "es6"
    if attrs.esid:
        return "es"
    return "other"


def describe(result: TestResult) -> str:
    """One-line human readable label, e.g. ``[es6] Array.from handles holes``."""
    label = (result.attrs.description or result.file).strip().replace("\n", " ")
    return f"[{get_test_type(result.attrs)}] {label}"


def sort_by_file(results: Sequence[TestResult]) -> list[TestResult]:
    """Stable sort by file path, strict runs after non-strict ones."""
    return sorted(results, key=lambda r: (r.file, r.mode or ""))
