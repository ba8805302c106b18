"""Per-series load progress and the global in-flight fetch counter."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class SeriesProgress:
    series_uid: str
    total_expected: int
    loaded_count: int = 0
    failed_count: int = 0

    @property
    def is_complete(self) -> bool:
        return self.loaded_count >= self.total_expected

    @property
    def fraction(self) -> float:
        if self.total_expected <= 0:
            return 1.0
        return self.loaded_count / self.total_expected


ProgressListener = Callable[[SeriesProgress], None]


class ProgressTracker:
    """
    Expected/received counters per series.

    ``loaded_count`` counts settled units (success or failure) and never
    exceeds ``total_expected``; ``failed_count`` is the subset that failed.
    Updates never suspend, so concurrent completions on the event loop
    cannot lose increments.
    """

    def __init__(self):
        self._series: dict[str, SeriesProgress] = {}
        self._listeners: list[ProgressListener] = []

    def add_listener(self, listener: ProgressListener) -> None:
        """Call ``listener`` with the updated entry after every change."""
        self._listeners.append(listener)

    def _notify(self, progress: SeriesProgress) -> None:
        for listener in self._listeners:
            listener(progress)

    def set_total(self, series_uid: str, total: int) -> SeriesProgress:
        """
        Establish the expected unit count for a series.

        Repeated calls keep the counts already recorded; a differing total
        is logged and applied, but never dropped below what has settled.
        """
        if total < 0:
            raise ValueError(f"total must be >= 0, got {total}")

        progress = self._series.get(series_uid)
        if progress is None:
            progress = SeriesProgress(series_uid=series_uid, total_expected=total)
            self._series[series_uid] = progress
        elif progress.total_expected != total:
            logger.warning(
                f"Total for series {series_uid} changed from "
                f"{progress.total_expected} to {total}"
            )
            progress.total_expected = max(total, progress.loaded_count)
        else:
            return progress

        self._notify(progress)
        return progress

    def increment(self, series_uid: str, failed: bool = False) -> Optional[SeriesProgress]:
        """Record one settled unit for a series."""
        progress = self._series.get(series_uid)
        if progress is None:
            logger.warning(f"Progress update for unknown series {series_uid}")
            return None

        if progress.loaded_count >= progress.total_expected:
            logger.warning(
                f"Series {series_uid} already settled "
                f"{progress.loaded_count}/{progress.total_expected}, ignoring update"
            )
            return progress

        progress.loaded_count += 1
        if failed:
            progress.failed_count += 1

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Series {series_uid}: {progress.loaded_count}/{progress.total_expected}"
                + (f" ({progress.failed_count} failed)" if progress.failed_count else "")
            )
        self._notify(progress)
        return progress

    def get(self, series_uid: str) -> Optional[SeriesProgress]:
        return self._series.get(series_uid)

    def snapshot(self) -> list[SeriesProgress]:
        """Copies of all entries, in the order totals were set."""
        return [
            SeriesProgress(p.series_uid, p.total_expected, p.loaded_count, p.failed_count)
            for p in self._series.values()
        ]

    def discard(self, series_uid: str) -> None:
        self._series.pop(series_uid, None)

    def clear(self) -> None:
        self._series.clear()

    def __contains__(self, series_uid: str) -> bool:
        return series_uid in self._series

    def __len__(self) -> int:
        return len(self._series)


class InFlightCounter:
    """Count of outstanding fetches; signals when it drops back to zero."""

    def __init__(self, on_idle: Optional[Callable[[], None]] = None):
        self._count = 0
        self._on_idle = on_idle
        self._idle: Optional[asyncio.Event] = None

    def _event(self) -> asyncio.Event:
        # Created lazily so the counter can be built outside a running loop
        if self._idle is None:
            self._idle = asyncio.Event()
            if self._count == 0:
                self._idle.set()
        return self._idle

    @property
    def count(self) -> int:
        return self._count

    def start(self) -> None:
        self._count += 1
        self._event().clear()

    def finish(self) -> None:
        if self._count == 0:
            logger.warning("In-flight counter finished more fetches than it started")
            return
        self._count -= 1
        if self._count == 0:
            self._event().set()
            if self._on_idle is not None:
                self._on_idle()

    async def wait_idle(self) -> None:
        """Suspend until no fetch is outstanding."""
        await self._event().wait()
