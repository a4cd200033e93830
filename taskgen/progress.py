#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Thread-safe progress reporting built on top of tqdm."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from tqdm import tqdm

__all__ = ["ProgressController"]


class ProgressController:
    """Aggregate progress from worker threads into a single tqdm bar.

    - Only the controller touches the bar; workers call :meth:`advance`.
    - When disabled (or stderr is not a terminal) every call is a no-op, which
      keeps CI logs free of carriage-return noise.
    """

    def __init__(self, total_units: int, description: str = "", *, enabled: Optional[bool] = None) -> None:
        self.total_units = max(int(total_units), 0)
        self.description = description or "Progress"
        if enabled is None:
            enabled = sys.stderr.isatty()
        self.enabled = bool(enabled) and self.total_units > 0
        self._lock = threading.Lock()
        self._bar: Optional[tqdm] = None
        self.completed_units = 0

    def __enter__(self) -> "ProgressController":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def start(self) -> None:
        if not self.enabled or self._bar is not None:
            return
        self._bar = tqdm(
            total=self.total_units,
            desc=self.description,
            unit="suite",
            dynamic_ncols=True,
            mininterval=0.2,
            leave=False,
            file=sys.stderr,
        )

    def advance(self, units: int = 1) -> None:
        if units <= 0:
            return
        with self._lock:
            self.completed_units += units
            if self._bar is not None:
                self._bar.update(units)

    def close(self) -> None:
        with self._lock:
            if self._bar is not None:
                self._bar.close()
                self._bar = None
