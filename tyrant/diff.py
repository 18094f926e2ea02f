"""Classification of a result set against a baseline."""

from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from tyrant.models.result import (
    TEST_TYPES,
    TestResult,
    TestType,
    get_test_type,
    result_key,
)
from tyrant.store import Baseline

type Classification = Literal["regression", "fix", "new", "unchanged"]


@dataclass(frozen=True, kw_only=True)
class TestDiff:
    """A current result paired with its baseline counterpart, if any."""

    __test__ = False

    old: TestResult | None
    new: TestResult

    def to_json(self) -> dict[str, Any]:
        return {
            "oldTest": self.old.to_record() if self.old is not None else None,
            "newTest": self.new.to_record(),
        }


@dataclass(frozen=True, kw_only=True)
class DiffReport:
    """Classified differences and per test type counters."""

    regressions: Sequence[TestDiff]
    fixes: Sequence[TestDiff]
    new: Sequence[TestDiff]
    other: Sequence[TestDiff]
    total: Mapping[TestType, int]
    num_new: Mapping[TestType, int]
    num_fixes: Mapping[TestType, int]
    num_regressions: Mapping[TestType, int]

    @property
    def has_regressions(self) -> bool:
        return bool(self.regressions)

    def to_json(self) -> dict[str, Any]:
        """Serialize to the diff report file format."""
        return {
            "testsThatDiffer": {
                "regressions": [d.to_json() for d in self.regressions],
                "fixes": [d.to_json() for d in self.fixes],
                "other": [d.to_json() for d in self.other],
                "new": [d.to_json() for d in self.new],
            },
            "total": dict(self.total),
            "numNew": dict(self.num_new),
            "numFixes": dict(self.num_fixes),
            "numRegressions": dict(self.num_regressions),
        }


def classify(new: TestResult, old: TestResult | None) -> Classification:
    """Classify one current result against its baseline entry."""
    if old is None:
        return "new"
    if old.passed and not new.passed:
        return "regression"
    if not old.passed and new.passed:
        return "fix"
    return "unchanged"


def diff_results(current: Sequence[TestResult], baseline: Baseline) -> DiffReport:
    """Compare a result set with the baseline.

    Pure: the report depends only on the two inputs and neither is modified.
    Counters are keyed by the test types present in ``current``.
    """
    buckets: dict[Classification, list[TestDiff]] = {
        "regression": [],
        "fix": [],
        "new": [],
        "unchanged": [],
    }
    counters: dict[Classification, Counter[TestType]] = {
        kind: Counter() for kind in buckets
    }
    total: Counter[TestType] = Counter()

    for test in current:
        old = baseline.get(result_key(test, baseline.suite_dir))
        kind = classify(test, old)
        test_type = get_test_type(test.attrs)
        total[test_type] += 1
        counters[kind][test_type] += 1
        buckets[kind].append(TestDiff(old=old, new=test))

    def per_type(counter: Counter[TestType]) -> dict[TestType, int]:
        return {t: counter[t] for t in TEST_TYPES if total[t]}

    return DiffReport(
        regressions=buckets["regression"],
        fixes=buckets["fix"],
        new=buckets["new"],
        other=buckets["unchanged"],
        total=per_type(total),
        num_new=per_type(counters["new"]),
        num_fixes=per_type(counters["fix"]),
        num_regressions=per_type(counters["regression"]),
    )
