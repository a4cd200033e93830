from __future__ import annotations

import json
import unittest
from pathlib import Path
from typing import Dict, Optional, Sequence

from taskgen.models import Suite, TaskDependency, TestFile
from taskgen.partitioner import PartitionConstraints, SuitePartitioner
from taskgen.settings import FuzzerSettings, GenerateSettings
from taskgen.task_graph import GENERATOR_DISPLAY_TASK, TaskGraphBuilder, build_config


def _suite(name: str, weights: Dict[str, float], **kwargs) -> Suite:
    tests = [TestFile(path, position=idx, tags=kwargs.get("tags", ())) for idx, path in enumerate(weights)]
    return Suite(name=name, tests=tests, **kwargs)


def _plan(suite: Suite, weights: Dict[str, float], max_sub_suites: int = 2):
    items = [(test, weights[test.path]) for test in suite.tests]
    return SuitePartitioner().partition(items, PartitionConstraints(max_sub_suites=max_sub_suites))


class TaskGraphBuilderTests(unittest.TestCase):
    def _build(self, settings: GenerateSettings, suite: Suite, weights: Dict[str, float], fuzzers: Sequence[FuzzerSettings] = ()):
        return build_config(settings, "linux", [(suite, _plan(suite, weights))], fuzzers)

    def test_empty_suite_generates_no_tasks(self) -> None:
        suite = _suite("core", {})
        config = self._build(GenerateSettings(), suite, {})
        self.assertEqual(config.tasks, ())
        self.assertEqual(
            config.to_dict(),
            {
                "generator": {"name": "taskgen", "variant": "linux", "tasks": []},
                "tasks": [],
                "buildvariants": [{"name": "linux", "tasks": []}],
            },
        )

    def test_sub_suites_become_named_tasks(self) -> None:
        weights = {"a.js": 30.0, "b.js": 20.0, "c.js": 20.0, "d.js": 10.0}
        suite = _suite("core_gen", weights, tags=("core", "required"))
        settings = GenerateSettings(
            resmoke_args="--storageEngine=wiredTiger",
            resmoke_jobs_max=4,
            config_location="s3://bucket/generated.tgz",
            distro="rhel80-small",
        )
        config = self._build(settings, suite, weights)
        document = config.to_dict()

        self.assertEqual(config.task_names(), ["core_0_linux", "core_1_linux"])
        first = document["tasks"][0]
        self.assertEqual(first["tests"], ["a.js", "d.js"])
        self.assertEqual(first["estimated_runtime_secs"], 40.0)
        self.assertEqual(first["tags"], ["core", "required"])
        self.assertEqual(first["depends_on"], [{"name": "archive_dist_test_debug"}])
        self.assertEqual(first["distro"], "rhel80-small")
        self.assertEqual(first["variant"], "linux")
        self.assertEqual(
            first["commands"],
            [
                {"func": "do setup"},
                {"func": "configure evergreen api credentials"},
                {
                    "func": "run generated tests",
                    "vars": {
                        "gen_task_config_location": "s3://bucket/generated.tgz",
                        "require_multiversion_setup": False,
                        "resmoke_args": "--originSuite=core_gen --storageEngine=wiredTiger",
                        "resmoke_jobs_max": 4,
                        "suite": "core_0_linux",
                    },
                },
            ],
        )
        self.assertEqual(document["generator"]["tasks"], ["core_0_linux", "core_1_linux"])
        variant = document["buildvariants"][0]
        self.assertEqual(variant["tasks"][0], {"name": "core_0_linux", "distros": ["rhel80-small"]})
        self.assertEqual(variant["display_tasks"], [{"name": "core", "execution_tasks": ["core_0_linux", "core_1_linux"]}])

    def test_declared_dependencies_are_inherited_verbatim(self) -> None:
        weights = {"a.js": 1.0}
        suite = _suite("core", weights, depends_on=(TaskDependency("compile", "linux-compile"),))
        task = self._build(GenerateSettings(), suite, weights).to_dict()["tasks"][0]
        self.assertEqual(task["depends_on"], [{"name": "compile", "variant": "linux-compile"}])

    def test_multiversion_setup_and_suite_config_dir(self) -> None:
        weights = {"a.js": 1.0}
        settings = GenerateSettings(require_multiversion_setup=True, suite_config_dir=Path("generated_resmoke_config"))
        task = self._build(settings, _suite("mv", weights), weights).to_dict()["tasks"][0]
        funcs = [command["func"] for command in task["commands"]]
        self.assertEqual(
            funcs,
            [
                "do setup",
                "configure evergreen api credentials",
                "git get project no modules",
                "add git tag",
                "do multiversion setup",
                "run generated tests",
            ],
        )
        self.assertEqual(task["commands"][-1]["vars"]["suite"], "generated_resmoke_config/mv_0_linux.yml")
        self.assertTrue(task["commands"][-1]["vars"]["require_multiversion_setup"])

    def test_large_distro_selection(self) -> None:
        weights = {"a.js": 1.0}
        settings = GenerateSettings(distro="small", large_distro_name="large")
        big = self._build(settings, _suite("big", weights, use_large_distro=True), weights)
        self.assertEqual(big.tasks[0].distro, "large")
        fallback = self._build(GenerateSettings(distro="small", use_large_distro=True), _suite("s", weights), weights)
        self.assertEqual(fallback.tasks[0].distro, "small")

    def test_misc_task_and_generator_display_task(self) -> None:
        weights = {"a.js": 1.0, "b.js": 2.0}
        settings = GenerateSettings(create_misc_suite=True, generator_tasks=("core_gen",))
        config = self._build(settings, _suite("core", weights), weights)
        self.assertEqual(config.task_names(), ["core_0_linux", "core_1_linux", "core_misc_linux"])
        misc = config.tasks[-1]
        self.assertEqual(misc.tests, ())
        self.assertEqual(misc.estimated_runtime_secs, 0.0)
        displays = config.to_dict()["buildvariants"][0]["display_tasks"]
        self.assertEqual(displays[0]["execution_tasks"], ["core_0_linux", "core_1_linux", "core_misc_linux"])
        self.assertEqual(displays[-1], {"name": GENERATOR_DISPLAY_TASK, "execution_tasks": ["core_gen"]})
        self.assertEqual(config.suites[0].misc_name, "core_misc_linux")

    def test_empty_suite_has_no_misc_task(self) -> None:
        settings = GenerateSettings(create_misc_suite=True)
        config = self._build(settings, _suite("core", {}), {})
        self.assertEqual(config.tasks, ())
        self.assertIsNone(config.suites[0].misc_name)
        self.assertEqual(config.to_dict()["generator"]["tasks"], [])

    def test_fuzzer_tasks(self) -> None:
        fuzzer = FuzzerSettings(
            task_name="jstestfuzz_gen",
            suite="jstestfuzz",
            num_files=5,
            num_tasks=2,
            jstestfuzz_vars="--jsTestsDir ../jstests",
        )
        config = self._build(GenerateSettings(), _suite("core", {}), {}, fuzzers=[fuzzer])
        self.assertEqual(config.task_names(), ["jstestfuzz_0_linux", "jstestfuzz_1_linux"])
        task = config.to_dict()["tasks"][0]
        self.assertEqual(
            [command["func"] for command in task["commands"]],
            ["do setup", "configure evergreen api credentials", "setup jstestfuzz", "run jstestfuzz", "run generated tests"],
        )
        self.assertEqual(task["commands"][3]["vars"]["jstestfuzz_vars"], "--numGeneratedFiles 5 --jsTestsDir ../jstests")
        self.assertEqual(task["commands"][4]["vars"]["suite"], "jstestfuzz")
        self.assertEqual(task["depends_on"], [{"name": "archive_dist_test_debug"}])
        displays = config.to_dict()["buildvariants"][0]["display_tasks"]
        self.assertEqual(displays, [{"name": "jstestfuzz", "execution_tasks": ["jstestfuzz_0_linux", "jstestfuzz_1_linux"]}])

    def test_identical_inputs_produce_identical_documents(self) -> None:
        weights = {f"t{i}.js": float(i % 5 + 1) for i in range(25)}

        def render(template: Optional[str] = None) -> str:
            suite = _suite("core", weights, tags=("core",))
            config = build_config(
                GenerateSettings(task_name_template=template), "linux", [(suite, _plan(suite, weights, 4))]
            )
            return json.dumps(config.to_dict())

        self.assertEqual(render(), render())
        self.assertIn("core-0", render("{suite}-{index}"))

    def test_variant_is_required(self) -> None:
        with self.assertRaises(ValueError):
            TaskGraphBuilder(GenerateSettings(), "")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
