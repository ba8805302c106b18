"""Fetch, decode and dispatch of a single load unit."""

import inspect
import logging
from enum import Enum
from io import BytesIO
from typing import Awaitable, Coroutine, Optional

import aiohttp
import pydicom
from pydicom.errors import InvalidDicomError

from .blobs import BlobStore
from .client import ShareClient
from .constants import STATUS_LOADING_IMAGES
from .errors import InstanceFetchError
from .models import DecodedInstance, LoadUnit
from .multipart import decode_multipart
from .progress import InFlightCounter, ProgressTracker
from .viewer import FrameRegistry, Navigation, StatusBanner, Viewport

logger = logging.getLogger(__name__)


class DispatchMode(str, Enum):
    RENDER = "render"      # activate in the viewport
    REGISTER = "register"  # make available without touching the viewport


class InstanceLoader:
    """
    Perform one fetch for a LoadUnit and hand the decoded parts onwards.

    Every call settles exactly once: one progress increment for the owning
    series and one in-flight decrement, whatever the outcome.
    """

    def __init__(
        self,
        client: ShareClient,
        blobs: BlobStore,
        tracker: ProgressTracker,
        in_flight: InFlightCounter,
        viewport: Viewport,
        navigation: Navigation,
        registry: FrameRegistry,
        status: Optional[StatusBanner] = None,
    ):
        self.client = client
        self.blobs = blobs
        self.tracker = tracker
        self.in_flight = in_flight
        self.viewport = viewport
        self.navigation = navigation
        self.registry = registry
        self.status = status

    def load(self, unit: LoadUnit, mode: DispatchMode) -> Awaitable[list[DecodedInstance]]:
        """
        Fetch, decode and dispatch ``unit``.

        The fetch counts as in flight from the moment this is called, even if
        the returned coroutine is awaited later (e.g. behind a concurrency cap).
        Failures are logged and reported through the progress tracker rather
        than raised, so one bad instance never stops its siblings.

        Returns:
            Awaitable resolving to the decoded instances (empty on failure)
        """
        self.in_flight.start()
        return self._settle(unit, mode)

    def abandon(self, unit: LoadUnit, pending: Coroutine) -> None:
        """
        Settle a load whose coroutine was cancelled before it started.

        Once started, ``_settle`` settles itself in ``finally``; an unstarted
        one never reaches that block, so it is counted as failed here.
        """
        if inspect.getcoroutinestate(pending) != inspect.CORO_CREATED:
            return
        pending.close()
        logger.warning(f"Load of instance {unit.sop_uid} cancelled before it started")
        self.tracker.increment(unit.series_uid, failed=True)
        self.in_flight.finish()

    async def _settle(self, unit: LoadUnit, mode: DispatchMode) -> list[DecodedInstance]:
        failed = True
        try:
            if self.status is not None:
                self.status.set_message(STATUS_LOADING_IMAGES)

            body, content_type = await self.client.fetch_instance(unit)
            instances = await self.decode(unit, body, content_type)
            self.dispatch(instances, mode)
            failed = False
            return instances

        except InstanceFetchError as e:
            logger.error(f"HTTP error: {e.status} {e.reason} for instance {unit.sop_uid}")
            if self.status is not None:
                self.status.set_error(f"Error: {e.status} {e.reason}".rstrip())
            return []
        except aiohttp.ClientError as e:
            logger.error(f"Fetch error for instance {unit.sop_uid}: {e}")
            return []
        except (InvalidDicomError, ValueError) as e:
            logger.error(f"Failed to decode instance {unit.sop_uid}: {e}")
            return []
        except Exception as e:
            logger.exception(f"Unexpected error loading instance {unit.sop_uid}: {e}")
            return []
        finally:
            self.tracker.increment(unit.series_uid, failed=failed)
            self.in_flight.finish()

    async def decode(
        self, unit: LoadUnit, body: bytes, content_type: Optional[str] = None
    ) -> list[DecodedInstance]:
        """
        Split a response body and decode each part into a DecodedInstance.

        Raises:
            ValueError: If the body holds no parts or is badly framed
            InvalidDicomError: If a part is not a DICOM dataset
        """
        parts = decode_multipart(body, content_type)
        if not parts:
            raise ValueError("Response contained no DICOM parts")

        instances = []
        for part in parts:
            dataset = pydicom.dcmread(BytesIO(part), force=True)
            if "SOPInstanceUID" not in dataset:
                raise InvalidDicomError("Part is not a DICOM instance (no SOPInstanceUID)")

            sop_uid = str(dataset.SOPInstanceUID)
            path = self.blobs.blob_path(unit.study_uid, unit.series_uid, sop_uid)
            reference = await self.blobs.put(path, part)

            instances.append(
                DecodedInstance(
                    sop_uid=sop_uid,
                    study_uid=unit.study_uid,
                    series_uid=unit.series_uid,
                    dataset=dataset,
                    pixel_data=dataset.get("PixelData"),
                    pixel_reference=reference,
                    size=len(part),
                )
            )

        if len(instances) > 1 and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Instance request {unit.sop_uid} returned {len(instances)} parts")
        return instances

    def dispatch(self, instances: list[DecodedInstance], mode: DispatchMode) -> None:
        """Route decoded instances to the viewport or the frame registry."""
        if not instances:
            return

        if mode is DispatchMode.RENDER:
            first, rest = instances[0], instances[1:]
            self.viewport.reset()
            self.viewport.load_instance(first)
            self.navigation.highlight_series(first.series_uid)
        else:
            rest = instances

        for instance in rest:
            self.registry.register_instance(instance)
