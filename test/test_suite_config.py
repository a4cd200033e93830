from __future__ import annotations

import unittest

import yaml

from taskgen.models import GeneratedSuite, SubSuite, Suite, TestFile
from taskgen.suite_config import render_suite_files


class SuiteConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.definition = {
            "name": "core",
            "selector": {"roots": ["jstests/core/*.js"], "exclude_files": ["jstests/core/skip.js"]},
            "tags": ["core"],
            "generate": {"max_sub_suites": 2},
            "executor": {"config": {"shell_options": {"nodb": ""}}},
        }
        tests = [TestFile(path, position=idx) for idx, path in enumerate(["jstests/core/a.js", "jstests/core/b.js"])]
        self.suite = Suite(name="core", tests=tests, definition=self.definition)
        self.generated = GeneratedSuite(
            suite=self.suite,
            sub_suites=(
                SubSuite(name="core_0_linux", index=0, tests=(tests[1],), runtime_secs=2.0),
                SubSuite(name="core_1_linux", index=1, tests=(tests[0],), runtime_secs=1.0),
            ),
            misc_name="core_misc_linux",
        )

    def test_sub_suite_files_replace_roots(self) -> None:
        files = render_suite_files(self.generated)
        self.assertEqual(list(files), ["core_0_linux.yml", "core_1_linux.yml", "core_misc_linux.yml"])
        first = yaml.safe_load(files["core_0_linux.yml"])
        self.assertEqual(first["selector"], {"roots": ["jstests/core/b.js"]})
        self.assertEqual(first["executor"], self.definition["executor"])
        for key in ("name", "tags", "generate"):
            self.assertNotIn(key, first)

    def test_misc_file_excludes_generated_tests(self) -> None:
        misc = yaml.safe_load(render_suite_files(self.generated)["core_misc_linux.yml"])
        self.assertEqual(misc["selector"]["roots"], ["jstests/core/*.js"])
        self.assertEqual(
            misc["selector"]["exclude_files"],
            ["jstests/core/skip.js", "jstests/core/b.js", "jstests/core/a.js"],
        )

    def test_source_definition_is_not_mutated(self) -> None:
        render_suite_files(self.generated)
        self.assertEqual(self.definition["selector"]["exclude_files"], ["jstests/core/skip.js"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
