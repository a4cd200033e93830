from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import yaml

from taskgen.cli import main
from taskgen.logger import StructuredLogger

_QUIET = "logger.sinks=[{type: memory, name: cli}]"


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        for name in ("a", "b", "c"):
            path = self.root / "jstests" / "core" / f"{name}.js"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("// test\n")
        self.suite = self.root / "core.yml"
        self.suite.write_text("selector:\n  roots: [jstests/core/*.js]\ntags: [core]\n")
        self.history = self.root / "history.json"
        self.history.write_text(
            json.dumps(
                {
                    "core": [
                        {"test_id": "a.js", "duration": 10, "timestamp": "2024-05-01"},
                        {"test_id": "b.js", "duration": 20, "timestamp": "2024-05-01"},
                        {"test_id": "c.js", "duration": 30, "timestamp": "2024-05-01"},
                    ]
                }
            )
        )

    def tearDown(self) -> None:
        StructuredLogger.configure()

    def _args(self, *extra: str) -> list:
        return [
            "generate",
            "--suite",
            str(self.suite),
            "--variant",
            "linux",
            "--history-file",
            str(self.history),
            "--test-root",
            str(self.root),
            "--no-progress",
            "--set",
            _QUIET,
            *extra,
        ]

    def test_generate_json(self) -> None:
        output = self.root / "out" / "tasks.json"
        code = main(self._args("--output", str(output), "--max-sub-suites", "2"))
        self.assertEqual(code, 0)
        document = json.loads(output.read_text())
        self.assertEqual(document["generator"]["tasks"], ["core_0_linux", "core_1_linux"])
        self.assertEqual(sorted(path for task in document["tasks"] for path in task["tests"]),
                         ["jstests/core/a.js", "jstests/core/b.js", "jstests/core/c.js"])
        sink = StructuredLogger.get_memory_sink("cli")
        self.assertIn("cli.complete", [event["event"] for event in sink.events()])

    def test_generate_yaml_with_suite_files(self) -> None:
        output = self.root / "tasks.yml"
        suites_dir = self.root / "generated"
        code = main(
            self._args("--output", str(output), "--format", "yaml", "--suite-config-dir", str(suites_dir))
        )
        self.assertEqual(code, 0)
        document = yaml.safe_load(output.read_text())
        self.assertTrue(document["tasks"])
        self.assertTrue(sorted(suites_dir.glob("core_*_linux.yml")))

    def test_invalid_limits_exit_with_usage_error(self) -> None:
        self.assertEqual(main(self._args("--output", str(self.root / "x.json"), "--max-sub-suites", "0")), 2)
        self.assertFalse((self.root / "x.json").exists())

    def test_infinite_limit_exits_with_usage_error(self) -> None:
        self.assertEqual(main(self._args("--set", "split.max_sub_suites=.inf")), 2)

    def test_missing_config_file(self) -> None:
        self.assertEqual(main(self._args("--config", str(self.root / "absent.yml"))), 2)

    def test_all_suites_failing_exits_non_zero(self) -> None:
        broken = self.root / "broken.yml"
        broken.write_text("selector: {}\n")
        args = self._args("--output", str(self.root / "tasks.json"))
        args[2] = str(broken)
        self.assertEqual(main(args), 1)
        self.assertFalse((self.root / "tasks.json").exists())

    def test_suite_argument_is_required(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            main(["generate", "--variant", "linux"])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
