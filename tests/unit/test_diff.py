"""Tests for baseline diffing."""

import pytest

from tyrant.diff import classify, diff_results
from tyrant.store import Baseline
from tyrant.testing.factories import make_result


def test_identical_results_have_no_differences() -> None:
    """Diffing a baseline against itself yields only unchanged tests."""
    results = [
        make_result("test262/test/a.js", passed=True, description="a", es5id="1"),
        make_result("test262/test/b.js", passed=False, description="b", esid="x"),
    ]

    report = diff_results(results, Baseline(results=results))

    assert report.regressions == []
    assert report.fixes == []
    assert report.new == []
    assert len(report.other) == 2
    assert not report.has_regressions


def test_detects_regression() -> None:
    """A test that passed in the baseline and fails now is a regression."""
    old = make_result("test262/a.js", passed=True, description="x", es6id="1")
    new = make_result("test262/a.js", passed=False, description="x", es6id="1")

    report = diff_results([new], Baseline(results=[old]))

    assert len(report.regressions) == 1
    assert report.regressions[0].old == old
    assert report.regressions[0].new == new
    assert report.num_regressions == {"es6": 1}
    assert report.total == {"es6": 1}
    assert report.has_regressions


def test_detects_fix_and_new() -> None:
    """Classifies fixes and tests missing from the baseline."""
    baseline = Baseline(
        results=[make_result("test262/a.js", passed=False, description="a")]
    )
    current = [
        make_result("test262/a.js", passed=True, description="a"),
        make_result("test262/b.js", passed=False, description="b"),
    ]

    report = diff_results(current, baseline)

    assert [d.new.file for d in report.fixes] == ["test262/a.js"]
    assert [d.new.file for d in report.new] == ["test262/b.js"]
    assert report.new[0].old is None
    assert report.num_fixes == {"other": 1}
    assert report.num_new == {"other": 1}


def test_matches_across_checkout_locations() -> None:
    """Results match the baseline by suite relative path."""
    old = make_result("tyrant/test262/test/a.js", passed=True, description="a")
    new = make_result(
        "/ci/work/tyrant/test262/test/a.js", passed=False, description="a"
    )

    report = diff_results([new], Baseline(results=[old]))

    assert len(report.regressions) == 1


def test_description_is_part_of_the_key() -> None:
    """A changed description makes a test new."""
    old = make_result("test262/a.js", passed=True, description="before")
    new = make_result("test262/a.js", passed=False, description="after")

    report = diff_results([new], Baseline(results=[old]))

    assert report.regressions == []
    assert len(report.new) == 1


def test_counters_cover_present_types_only() -> None:
    """Counters are keyed by the test types present in the current results."""
    current = [
        make_result("test262/a.js", passed=True, description="a", es5id="1"),
        make_result("test262/b.js", passed=True, description="b", es5id="2"),
        make_result("test262/c.js", passed=True, description="c", esid="x"),
    ]

    report = diff_results(current, Baseline())

    assert report.total == {"es5": 2, "es": 1}
    assert report.num_new == {"es5": 2, "es": 1}
    assert report.num_regressions == {"es5": 0, "es": 0}


def test_diff_does_not_modify_inputs() -> None:
    """Diffing is pure."""
    current = [make_result("test262/a.js", passed=False, description="a")]
    baseline = Baseline(
        results=[make_result("test262/a.js", passed=True, description="a")]
    )
    snapshot = list(current)

    first = diff_results(current, baseline)
    second = diff_results(current, baseline)

    assert current == snapshot
    assert first == second


def test_report_to_json() -> None:
    """Serializes to the diff file layout."""
    old = make_result("test262/a.js", passed=True, description="a", es6id="1")
    new = make_result(
        "test262/a.js", passed=False, description="a", message="boom", es6id="1"
    )

    data = diff_results([new], Baseline(results=[old])).to_json()

    assert data["numRegressions"] == {"es6": 1}
    assert data["numFixes"] == {"es6": 0}
    assert data["numNew"] == {"es6": 0}
    assert data["total"] == {"es6": 1}
    regression = data["testsThatDiffer"]["regressions"][0]
    assert regression["oldTest"]["result"] == {"pass": True, "message": ""}
    assert regression["newTest"]["result"] == {"pass": False, "message": "boom"}
    assert data["testsThatDiffer"]["new"] == []


@pytest.mark.parametrize(
    ("old_passed", "new_passed", "expected"),
    [
        (True, False, "regression"),
        (False, True, "fix"),
        (True, True, "unchanged"),
        (False, False, "unchanged"),
        (None, True, "new"),
        (None, False, "new"),
    ],
)
def test_classify(old_passed: bool | None, new_passed: bool, expected: str) -> None:
    """Classifies one result against its baseline entry."""
    old = None
    if old_passed is not None:
        old = make_result("a.js", passed=old_passed)

    assert classify(make_result("a.js", passed=new_passed), old) == expected
