from __future__ import annotations

import unittest
from typing import Any, Dict, List

from taskgen.errors import WarningCode
from taskgen.estimator import RuntimeEstimator
from taskgen.models import TestFile
from taskgen.settings import EstimatorSettings


def _record(test_id: str, duration: Any, day: int, status: str = "pass") -> Dict[str, Any]:
    return {"test_id": test_id, "duration": duration, "timestamp": f"2024-05-{day:02d}T00:00:00Z", "status": status}


def _tests(*paths: str) -> List[TestFile]:
    return [TestFile(path, position=idx) for idx, path in enumerate(paths)]


class RuntimeEstimatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.estimator = RuntimeEstimator(EstimatorSettings(sample_count=2))

    def test_averages_most_recent_successful_samples(self) -> None:
        tests = _tests("jstests/core/a.js")
        records = [
            _record("jstests/core/a.js", 100.0, 1),
            _record("jstests/core/a.js", 20.0, 2),
            _record("jstests/core/a.js", 10.0, 3),
            _record("jstests/core/a.js", 500.0, 4, status="fail"),
        ]
        result = self.estimator.estimate(tests, records)
        estimate = result["jstests/core/a.js"]
        self.assertAlmostEqual(estimate.runtime_secs, 15.0)
        self.assertEqual(estimate.source, "history")
        self.assertEqual(estimate.sample_count, 2)

    def test_failed_runs_count_when_enabled(self) -> None:
        estimator = RuntimeEstimator(EstimatorSettings(sample_count=1, include_failed=True))
        records = [_record("a.js", 10.0, 1), _record("a.js", 50.0, 2, status="fail")]
        result = estimator.estimate(_tests("a.js"), records)
        self.assertAlmostEqual(result["a.js"].runtime_secs, 50.0)

    def test_cold_start_uses_suite_median(self) -> None:
        tests = _tests("a.js", "b.js", "c.js", "new.js")
        records = [_record("a.js", 10.0, 1), _record("b.js", 30.0, 1), _record("c.js", 20.0, 1)]
        result = self.estimator.estimate(tests, records, suite="core")
        self.assertAlmostEqual(result["new.js"].runtime_secs, 20.0)
        self.assertTrue(result["new.js"].is_cold_start)
        self.assertEqual(result.cold_start_tests, ["new.js"])
        codes = [warning.code for warning in result.warnings]
        self.assertIn(WarningCode.COLD_START, codes)
        self.assertEqual(result.warnings[codes.index(WarningCode.COLD_START)].suite, "core")

    def test_cold_start_without_any_history_uses_default(self) -> None:
        result = self.estimator.estimate(_tests("a.js", "b.js"), [])
        self.assertEqual([est.runtime_secs for est in result.estimates.values()], [60.0, 60.0])

    def test_cold_start_is_positive_when_history_is_zero(self) -> None:
        result = self.estimator.estimate(_tests("a.js", "b.js"), [_record("a.js", 0.0, 1)])
        self.assertEqual(result["a.js"].runtime_secs, 0.0)
        self.assertEqual(result["b.js"].runtime_secs, 1.0)

    def test_malformed_records_are_skipped(self) -> None:
        records = [
            _record("a.js", -5.0, 1),
            {"test_id": "a.js", "duration": 3.0, "timestamp": "yesterday-ish"},
            {"duration": 3.0, "timestamp": "2024-05-01"},
            "not a record",
            _record("a.js", 8.0, 2),
        ]
        result = self.estimator.estimate(_tests("a.js"), records)
        self.assertAlmostEqual(result["a.js"].runtime_secs, 8.0)
        skipped = [w for w in result.warnings if w.code == WarningCode.HISTORY_RECORD_SKIPPED]
        self.assertEqual(len(skipped), 1)
        self.assertEqual(skipped[0].details["count"], 4)

    def test_duplicate_records_are_counted_once(self) -> None:
        records = [_record("a.js", 10.0, 2), _record("a.js", 10.0, 2), _record("a.js", 40.0, 1)]
        result = self.estimator.estimate(_tests("a.js"), records)
        self.assertAlmostEqual(result["a.js"].runtime_secs, 25.0)

    def test_hook_runtime_is_added_to_test(self) -> None:
        records = [_record("a.js", 10.0, 1), _record("a.js:CheckReplDBHash", 5.0, 1)]
        result = self.estimator.estimate(_tests("jstests/core/a.js"), records)
        estimate = result["jstests/core/a.js"]
        self.assertAlmostEqual(estimate.runtime_secs, 15.0)
        self.assertAlmostEqual(estimate.hook_secs, 5.0)

    def test_history_matches_by_basename(self) -> None:
        records = [_record("jstests\\core\\a.js", 7.0, 1), _record("b", 9.0, 1)]
        result = self.estimator.estimate(_tests("jstests/core/a.js", "jstests/core/b.js"), records)
        self.assertAlmostEqual(result["jstests/core/a.js"].runtime_secs, 7.0)
        self.assertAlmostEqual(result["jstests/core/b.js"].runtime_secs, 9.0)

    def test_unknown_history_tests_are_reported(self) -> None:
        result = self.estimator.estimate(_tests("a.js"), [_record("a.js", 1.0, 1), _record("gone.js", 2.0, 1)])
        unknown = [w for w in result.warnings if w.code == WarningCode.UNKNOWN_HISTORY_TEST]
        self.assertEqual(unknown[0].details["tests"], ["gone"])

    def test_every_test_gets_exactly_one_estimate(self) -> None:
        tests = _tests("a.js", "b.js", "c.js")
        result = self.estimator.estimate(tests, [_record("b.js", 4.0, 1)])
        self.assertEqual(list(result.estimates), ["a.js", "b.js", "c.js"])
        result.attach(tests)
        self.assertTrue(all(test.estimate is not None for test in tests))
        self.assertEqual(len(tests[1].samples), 1)
        with self.assertRaises(ValueError):
            tests[0].assign_estimate(result["a.js"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
