from __future__ import annotations

import logging
from typing import Protocol

from rich.progress import Progress as _RichProgressBar
from rich.progress import TaskID

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def add_ticks(self, count: int, label: str) -> None: ...

    def tick(self, label: str) -> None: ...


class NullProgress:
    """Counts ticks without displaying anything."""

    def __init__(self) -> None:
        self.total = 0
        self.done = 0

    def add_ticks(self, count: int, label: str) -> None:
        self.total += count
        logger.debug("%s", label)

    def tick(self, label: str) -> None:
        self.done += 1
        logger.debug("%s", label)


class RichProgress:
    """Drives a single rich progress bar from sync ticks."""

    def __init__(self, bar: _RichProgressBar, description: str = "Syncing") -> None:
        self._bar = bar
        self._task: TaskID = bar.add_task(description, total=0)
        self.total = 0
        self.done = 0

    def add_ticks(self, count: int, label: str) -> None:
        self.total += count
        self._bar.update(self._task, total=self.total, description=label)

    def tick(self, label: str) -> None:
        self.done += 1
        self._bar.update(self._task, advance=1, description=label)
