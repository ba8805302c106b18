"""Head-then-tail scheduling of instance fetches across a share."""

import asyncio
import logging
from typing import AsyncIterable, Coroutine, Iterable, Optional, Union

from .constants import DEFAULT_MAX_TAIL_FETCHES, STATUS_LOADING_SHARE
from .decode import DispatchMode, InstanceLoader
from .enumerator import TargetEnumerator
from .errors import ShareResolutionError
from .models import LoadUnit, SeriesWorklist, ShareDescriptor
from .viewer import StatusBanner

logger = logging.getLogger(__name__)


class LoadSequencer:
    """
    Drive loading of a share, one series at a time.

    For each series the head unit (lowest InstanceNumber) is fetched and
    awaited, then rendered; the remaining units are launched as background
    tasks and registered as they arrive. The next series starts once the
    previous head has completed. Tail tasks are never joined here; their
    completion is observable through the progress tracker and the
    in-flight counter.
    """

    def __init__(
        self,
        loader: InstanceLoader,
        status: Optional[StatusBanner] = None,
        max_tail_fetches: Optional[int] = DEFAULT_MAX_TAIL_FETCHES,
    ):
        """
        Args:
            loader: Fetch/decode/dispatch stage
            status: Status banner for session-level messages
            max_tail_fetches: Optional cap on concurrent tail fetches
                              (None for unbounded fan-out)
        """
        if max_tail_fetches is not None and max_tail_fetches < 1:
            raise ValueError(f"max_tail_fetches must be >= 1, got {max_tail_fetches}")

        self.loader = loader
        self.status = status
        self.max_tail_fetches = max_tail_fetches
        self._tail_slots: Optional[asyncio.Semaphore] = None
        self._tasks: set[asyncio.Task] = set()
        self.worklists: list[SeriesWorklist] = []

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def run(self, resolve, enumerator: TargetEnumerator) -> Optional[ShareDescriptor]:
        """
        Resolve the share and load everything it exposes.

        Args:
            resolve: Coroutine function returning the ShareDescriptor
            enumerator: Enumerator producing worklists for the descriptor

        Returns:
            The resolved descriptor, or None if resolution failed
        """
        self._set_message(STATUS_LOADING_SHARE)
        try:
            descriptor = await resolve()
        except ShareResolutionError as e:
            logger.error(f"Failed to resolve share: {e}")
            if self.status is not None:
                self.status.set_error(f"Error: {e}")
            return None

        await self.load_worklists(enumerator.iter_worklists(descriptor))
        return descriptor

    async def load_worklists(
        self, worklists: Union[Iterable[SeriesWorklist], AsyncIterable[SeriesWorklist]]
    ) -> int:
        """
        Load worklists in order; returns the number of series started.

        Accepts a plain iterable or an async iterable, so series can be
        loaded while later ones are still being listed.
        """
        started = 0
        if hasattr(worklists, "__aiter__"):
            async for worklist in worklists:
                started += await self.load_series(worklist)
        else:
            for worklist in worklists:
                started += await self.load_series(worklist)
        return started

    async def load_series(self, worklist: SeriesWorklist) -> int:
        """
        Fetch the head of one series and launch its tail.

        Returns:
            1 if any unit of the series was scheduled, else 0
        """
        if not worklist.units:
            return 0
        self.worklists.append(worklist)

        head, tail = worklist.head, worklist.tail
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Series {worklist.series_uid}: head {head.sop_uid} "
                f"(InstanceNumber {head.instance_number}), {len(tail)} tail instances"
            )

        await self.loader.load(head, DispatchMode.RENDER)

        for unit in tail:
            self._launch(unit)
        return 1

    def _launch(self, unit: LoadUnit) -> asyncio.Task:
        pending = self.loader.load(unit, DispatchMode.REGISTER)
        task = asyncio.create_task(
            self._load_tail(pending), name=f"load-{unit.sop_uid}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(lambda done: self._settle_cancelled(done, unit, pending))
        return task

    def _settle_cancelled(self, task: asyncio.Task, unit: LoadUnit, pending) -> None:
        # A task cancelled before its first step never starts ``pending``
        if task.cancelled():
            self.loader.abandon(unit, pending)

    def cancel(self) -> int:
        """Cancel outstanding tail fetches; returns how many were cancelled."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} pending tail fetches")
        return len(tasks)

    async def _load_tail(self, pending: Coroutine) -> None:
        if self.max_tail_fetches is None:
            await pending
            return

        if self._tail_slots is None:
            self._tail_slots = asyncio.Semaphore(self.max_tail_fetches)
        async with self._tail_slots:
            await pending

    def _set_message(self, text: str) -> None:
        if self.status is not None:
            self.status.set_message(text)
