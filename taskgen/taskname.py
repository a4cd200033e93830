"""Naming helpers for generated tasks."""
from __future__ import annotations

import math
from typing import Optional

__all__ = ["GEN_SUFFIX", "name_generated_task", "remove_gen_suffix", "render_task_name"]


GEN_SUFFIX = "_gen"


def _index_width(total_tasks: int) -> int:
    if total_tasks <= 1:
        return 0
    return int(math.ceil(math.log10(total_tasks)))


def name_generated_task(
    parent_name: str,
    task_index: Optional[int] = None,
    total_tasks: Optional[int] = None,
    variant: Optional[str] = None,
) -> str:
    """Name a generated sub-task.

    The index is zero padded to ``ceil(log10(total_tasks))`` digits so that
    names sort in index order; a missing index names the misc task::

        >>> name_generated_task("task", 42, 1001)
        'task_0042'
        >>> name_generated_task("task", None, None, "variant")
        'task_misc_variant'
    """

    suffix = f"_{variant}" if variant else ""
    if task_index is None:
        return f"{parent_name}_misc{suffix}"
    if total_tasks is None:
        raise ValueError("total_tasks is required when task_index is given")
    width = _index_width(total_tasks)
    return f"{parent_name}_{task_index:0{width}d}{suffix}" if width else f"{parent_name}_{task_index}{suffix}"


def render_task_name(
    template: Optional[str],
    suite: str,
    index: int,
    total: int,
    variant: Optional[str] = None,
) -> str:
    """Apply a user ``task_name_template`` or fall back to :func:`name_generated_task`."""

    if not template:
        return name_generated_task(suite, index, total, variant)
    width = _index_width(total)
    return template.format(
        suite=suite,
        index=f"{index:0{width}d}" if width else str(index),
        total=total,
        variant=variant or "",
    )


def remove_gen_suffix(task_name: str) -> str:
    if task_name.endswith(GEN_SUFFIX):
        return task_name[: -len(GEN_SUFFIX)]
    return task_name
