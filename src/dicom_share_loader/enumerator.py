"""Resolution of a share descriptor into per-series worklists."""

import logging
from typing import AsyncIterator, Iterable, Optional

from . import tags
from .client import ShareClient
from .models import LoadUnit, SeriesWorklist, ShareDescriptor, TargetGranularity
from .progress import ProgressTracker

logger = logging.getLogger(__name__)


class TargetEnumerator:
    """
    Turn a ShareDescriptor (plus optional series/SOP filters) into worklists.

    Worklists are produced lazily, one series at a time, so loading of an
    earlier series can start before later series have been listed. Failed
    listings only drop their own scope. Series that end up with no units are
    skipped without a progress entry.
    """

    def __init__(
        self,
        client: ShareClient,
        tracker: Optional[ProgressTracker] = None,
        filter_series_uids: Optional[Iterable[str]] = None,
        filter_sop_uids: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            client: Share API client used for the listing calls
            tracker: Progress tracker informed of each worklist's total before
                     it is handed out (None to resolve without bookkeeping)
            filter_series_uids: Keep only these series (study shares)
            filter_sop_uids: Keep only these instances (study/series shares)
        """
        self.client = client
        self.tracker = tracker
        self.filter_series_uids = frozenset(filter_series_uids or ())
        self.filter_sop_uids = frozenset(filter_sop_uids or ())

    async def resolve(self, descriptor: ShareDescriptor) -> list[SeriesWorklist]:
        """Collect every worklist of the share."""
        return [worklist async for worklist in self.iter_worklists(descriptor)]

    async def iter_worklists(self, descriptor: ShareDescriptor) -> AsyncIterator[SeriesWorklist]:
        """Yield non-empty worklists in share declaration order."""
        seen: set[LoadUnit] = set()

        if descriptor.granularity is TargetGranularity.STUDY:
            source = self._study_worklists(descriptor, seen)
        elif descriptor.granularity is TargetGranularity.SERIES:
            source = self._series_worklists(seen)
        else:
            source = self._instance_worklists(seen)

        async for worklist in source:
            if self.tracker is not None:
                self.tracker.set_total(worklist.series_uid, len(worklist.units))
            logger.info(
                f"Series {worklist.series_uid}: {len(worklist.units)} instances to load"
            )
            yield worklist

    def _keep_series(self, series_uid: str) -> bool:
        return not self.filter_series_uids or series_uid in self.filter_series_uids

    def _keep_sop(self, sop_uid: str) -> bool:
        return not self.filter_sop_uids or sop_uid in self.filter_sop_uids

    async def _study_worklists(self, descriptor: ShareDescriptor, seen: set[LoadUnit]):
        for target in descriptor.targets:
            study_uid = target.target_id
            series_records = await self.client.list_study_series(study_uid)
            if not series_records:
                logger.warning(f"No series listed for study {study_uid}")
                continue

            for record in series_records:
                series_uid = tags.series_uid(record)
                if series_uid is None:
                    logger.warning(f"Skipping series record without SeriesInstanceUID in study {study_uid}")
                    continue
                if not self._keep_series(series_uid):
                    continue

                worklist = await self._listed_series_worklist(study_uid, series_uid, seen)
                if worklist is not None:
                    yield worklist

    async def _series_worklists(self, seen: set[LoadUnit]):
        if self.filter_series_uids:
            logger.info("Series filter does not apply to series shares, ignoring")

        series_records = await self.client.list_share_series()
        if not series_records:
            logger.warning("No series listed for share")
            return

        for record in series_records:
            study_uid = tags.study_uid(record)
            series_uid = tags.series_uid(record)
            if study_uid is None or series_uid is None:
                logger.warning("Skipping series record without Study/SeriesInstanceUID")
                continue

            worklist = await self._listed_series_worklist(study_uid, series_uid, seen)
            if worklist is not None:
                yield worklist

    async def _listed_series_worklist(
        self, study_uid: str, series_uid: str, seen: set[LoadUnit]
    ) -> Optional[SeriesWorklist]:
        """List one series' instances and build its (filtered) worklist."""
        records = await self.client.list_series_instances(study_uid, series_uid)

        units = []
        for record in records:
            sop_uid = tags.sop_uid(record)
            if sop_uid is None or not self._keep_sop(sop_uid):
                continue
            unit = LoadUnit(study_uid, series_uid, sop_uid, tags.instance_number(record))
            if unit in seen:
                continue
            seen.add(unit)
            units.append(unit)

        if not units:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Series {series_uid} has no instances to load, skipping")
            return None
        return SeriesWorklist.build(study_uid, series_uid, units)

    async def _instance_worklists(self, seen: set[LoadUnit]):
        if self.filter_series_uids or self.filter_sop_uids:
            logger.info("Series/instance filters do not apply to instance shares, ignoring")

        records = await self.client.list_share_instances()
        if not records:
            logger.warning("No instances listed for share")
            return

        # series_uid -> (study_uid, records); dict keeps first-seen series order
        groups: dict[str, tuple[Optional[str], list[dict]]] = {}
        for record in records:
            series_uid = tags.series_uid(record)
            if series_uid is None:
                logger.warning("Skipping instance record without SeriesInstanceUID")
                continue
            study_uid, members = groups.get(series_uid, (None, []))
            members.append(record)
            groups[series_uid] = (study_uid or tags.study_uid(record), members)

        for series_uid, (group_study_uid, members) in groups.items():
            if group_study_uid is None:
                logger.warning(f"Skipping series {series_uid}: no StudyInstanceUID on any instance")
                continue

            units = []
            for record in members:
                sop_uid = tags.sop_uid(record)
                if sop_uid is None:
                    continue
                study_uid = tags.study_uid(record) or group_study_uid
                unit = LoadUnit(study_uid, series_uid, sop_uid, tags.instance_number(record))
                if unit in seen:
                    continue
                seen.add(unit)
                units.append(unit)

            if units:
                yield SeriesWorklist.build(group_study_uid, series_uid, units)
