"""
Progress reporting for long cube builds.

Indicators are observers only: they receive (done, total) and must never feed
back into the computation.
"""

from abc import ABC, abstractmethod
import logging

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

logger = logging.getLogger(__name__)


class ProgressIndicator(ABC):

    @abstractmethod
    def update_progress(self, progress, total):
        """Receive ``progress`` out of ``total`` units of work."""


class ProgressReporter:
    """Mixin fanning progress updates out to registered indicators."""

    def __init__(self):
        self._indicators = []

    def register_progress_indicator(self, indicator):
        if indicator not in self._indicators:
            self._indicators.append(indicator)

    def unregister_all_progress_indicators(self):
        self._indicators = []

    @property
    def progress_indicators(self):
        return list(self._indicators)

    def update_progress(self, progress, total):
        for indicator in self._indicators:
            indicator.update_progress(progress, total)


class CallbackProgress(ProgressIndicator):
    """Forward every update to ``fn(progress, total)``."""

    def __init__(self, fn):
        self._fn = fn

    def update_progress(self, progress, total):
        self._fn(progress, total)


class ProgressLog(ProgressIndicator):
    """Log progress at most once per ``step_percent`` percent."""

    def __init__(self, message="Cube build", step_percent=10):
        self.message = message
        self.step_percent = step_percent
        self._next = 0.0

    def update_progress(self, progress, total):
        pct = 100.0 if total == 0 else 100.0 * progress / total
        if progress == 0:
            self._next = 0.0
        if pct >= self._next or progress >= total:
            logger.info(f"{self.message}: {progress} of {total} ({pct:.0f}%)")
            while self._next <= pct:
                self._next += self.step_percent


class RichProgressBar(ProgressIndicator):
    """Terminal progress bar, closed when the work is complete."""

    def __init__(self, description="Building cube", console=None):
        self.description = description
        self.console = console or Console()
        self._progress = None
        self._task = None

    def update_progress(self, progress, total):
        if self._progress is None:
            self._progress = Progress(
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=False,
            )
            self._progress.start()
            self._task = self._progress.add_task(self.description, total=total)
        self._progress.update(self._task, completed=progress, total=total)
        if progress >= total:
            self._progress.stop()
            self._progress = None
            self._task = None
