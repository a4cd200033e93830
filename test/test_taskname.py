from __future__ import annotations

import unittest

from taskgen.taskname import name_generated_task, remove_gen_suffix, render_task_name


class TaskNameTests(unittest.TestCase):
    def test_index_is_padded_to_total_width(self) -> None:
        self.assertEqual(name_generated_task("task", 0, 10), "task_0")
        self.assertEqual(name_generated_task("task", 42, 1001), "task_0042")
        self.assertEqual(name_generated_task("task", 3, 50, "linux"), "task_03_linux")

    def test_single_task_has_no_padding(self) -> None:
        self.assertEqual(name_generated_task("task", 0, 1), "task_0")

    def test_missing_index_names_misc_task(self) -> None:
        self.assertEqual(name_generated_task("task", None, None, "variant"), "task_misc_variant")
        self.assertEqual(name_generated_task("task"), "task_misc")

    def test_index_requires_total(self) -> None:
        with self.assertRaises(ValueError):
            name_generated_task("task", 1)

    def test_template_rendering(self) -> None:
        self.assertEqual(render_task_name("{suite}-{index}-of-{total}", "core", 7, 12), "core-07-of-12")
        self.assertEqual(render_task_name(None, "core", 1, 2, "v"), "core_1_v")

    def test_remove_gen_suffix(self) -> None:
        self.assertEqual(remove_gen_suffix("core_gen"), "core")
        self.assertEqual(remove_gen_suffix("core"), "core")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
