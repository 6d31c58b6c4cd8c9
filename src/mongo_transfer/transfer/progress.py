"""
Progress reporting for export and import runs.

Pipelines call a ProgressSink as units move along; sinks decide how (or
whether) to render it. Calls may arrive from several export workers at once.
"""

import logging
import threading
from typing import Dict, Optional

from tqdm import tqdm

from ..core.models import JobStatus

logger = logging.getLogger(__name__)


class ProgressSink:
    """
    Receives progress events for units (collections or files).

    The base class ignores every event; subclasses override what they need.
    """

    def on_start(self, unit: str, total: Optional[int]) -> None:
        """A unit started; total is None when the size is not known up front."""

    def on_advance(self, unit: str, n: int) -> None:
        """n more documents of the unit were processed."""

    def on_done(self, unit: str, status: JobStatus) -> None:
        """The unit reached a terminal status."""

    def close(self) -> None:
        """Release any display resources."""


class NullProgressSink(ProgressSink):
    """Discards all events."""


class LoggingProgressSink(ProgressSink):
    """
    Reports progress as log lines.

    Logs when a unit starts and finishes, and every `log_every` documents in
    between.
    """

    def __init__(self, log_every: int = 10000):
        self.log_every = log_every
        self._counts: Dict[str, int] = {}
        self._totals: Dict[str, Optional[int]] = {}
        self._lock = threading.Lock()

    def on_start(self, unit: str, total: Optional[int]) -> None:
        with self._lock:
            self._counts[unit] = 0
            self._totals[unit] = total
        if total is None:
            logger.info(f"Started {unit}")
        else:
            logger.info(f"Started {unit} ({total} documents)")

    def on_advance(self, unit: str, n: int) -> None:
        with self._lock:
            before = self._counts.get(unit, 0)
            after = before + n
            self._counts[unit] = after
            total = self._totals.get(unit)

        if self.log_every and after // self.log_every > before // self.log_every:
            if total:
                logger.info(f"{unit}: {after}/{total} documents ({after / total:.0%})")
            else:
                logger.info(f"{unit}: {after} documents")

    def on_done(self, unit: str, status: JobStatus) -> None:
        with self._lock:
            count = self._counts.pop(unit, 0)
            self._totals.pop(unit, None)
        logger.info(f"Finished {unit}: {JobStatus(status).value} ({count} documents)")


class TqdmProgressSink(ProgressSink):
    """
    One tqdm bar per unit.

    Bars of concurrently exported collections get distinct screen positions
    and are kept on screen when finished.
    """

    def __init__(self, unit_label: str = "docs", leave: bool = True, file=None):
        self.unit_label = unit_label
        self.leave = leave
        self.file = file
        self._bars: Dict[str, tqdm] = {}
        self._next_position = 0
        self._lock = threading.Lock()

    def on_start(self, unit: str, total: Optional[int]) -> None:
        with self._lock:
            position = self._next_position
            self._next_position += 1
            self._bars[unit] = tqdm(
                total=total,
                desc=_short_name(unit),
                unit=self.unit_label,
                position=position,
                leave=self.leave,
                dynamic_ncols=True,
                file=self.file,
                bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]"
                if total is not None
                else None,
            )

    def on_advance(self, unit: str, n: int) -> None:
        with self._lock:
            bar = self._bars.get(unit)
            if bar is not None:
                bar.update(n)

    def on_done(self, unit: str, status: JobStatus) -> None:
        with self._lock:
            bar = self._bars.pop(unit, None)
        if bar is None:
            return
        status = JobStatus(status)
        if status != JobStatus.SUCCEEDED:
            bar.set_postfix_str(status.value)
        bar.close()

    def close(self) -> None:
        with self._lock:
            bars = list(self._bars.values())
            self._bars.clear()
        for bar in bars:
            bar.close()


def _short_name(unit: str, width: int = 30) -> str:
    if len(unit) > width:
        return unit[: width - 3] + "..."
    return unit
