"""One share-viewing session: client, loader state and collaborators."""

import logging
import os
from typing import Iterable, Optional

import aiohttp

from .blobs import BlobStore
from .client import ShareClient
from .constants import BASE_URL_ENV_VAR, DEFAULT_BASE_URL, DEFAULT_MAX_TAIL_FETCHES, STATUS_ALL_LOADED
from .decode import InstanceLoader
from .enumerator import TargetEnumerator
from .models import SeriesWorklist, ShareDescriptor, ShareReference
from .navigation import NavigationContext
from .progress import InFlightCounter, ProgressTracker, SeriesProgress
from .sequencer import LoadSequencer
from .viewer import FrameRegistry, Navigation, RecordingViewer, StatusBanner, Viewport

logger = logging.getLogger(__name__)


def resolve_base_url(cli_arg: Optional[str] = None, link_origin: Optional[str] = None) -> str:
    """
    Resolve the share server base URL.

    Resolution order:
    1. Explicit argument (--base-url)
    2. Origin of the share link
    3. Environment variable (DICOM_SHARE_LOADER_BASE_URL)
    4. DEFAULT_BASE_URL
    """
    if cli_arg:
        return cli_arg
    if link_origin:
        return link_origin
    env_var = os.environ.get(BASE_URL_ENV_VAR)
    if env_var:
        return env_var
    return DEFAULT_BASE_URL


class ShareSession:
    """
    Everything needed to progressively load one share.

    A session owns its progress tracker, in-flight counter and blob store;
    none of these are process-wide. It loads once and is torn down with
    ``close()`` (or by leaving ``async with``), which waits for background
    fetches to settle.

    Collaborators default to a single :class:`RecordingViewer`; pass
    ``viewer`` to use one object for all four roles, or the individual
    keyword arguments to override specific roles.

    Examples
    --------
    >>> async with ShareSession("https://pacs.example.org", ShareReference("tok")) as session:
    ...     await session.load()
    ...     await session.drain()
    ...     print(session.progress())
    """

    def __init__(
        self,
        base_url: str,
        reference: ShareReference,
        *,
        viewer: Optional[object] = None,
        viewport: Optional[Viewport] = None,
        navigation: Optional[Navigation] = None,
        registry: Optional[FrameRegistry] = None,
        status: Optional[StatusBanner] = None,
        filter_series_uids: Iterable[str] = (),
        filter_sop_uids: Iterable[str] = (),
        blob_root: Optional[str] = None,
        max_tail_fetches: Optional[int] = DEFAULT_MAX_TAIL_FETCHES,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.viewer = viewer if viewer is not None else RecordingViewer()
        self.viewport = viewport or self.viewer
        self.navigation = navigation or self.viewer
        self.registry = registry or self.viewer
        self.status = status or self.viewer

        self.client = ShareClient(base_url, reference, session=http_session)
        self.blobs = BlobStore(blob_root)
        self.tracker = ProgressTracker()
        self.in_flight = InFlightCounter(on_idle=self._on_idle)

        self.loader = InstanceLoader(
            self.client,
            self.blobs,
            self.tracker,
            self.in_flight,
            viewport=self.viewport,
            navigation=self.navigation,
            registry=self.registry,
            status=self.status,
        )
        self.enumerator = TargetEnumerator(
            self.client,
            self.tracker,
            filter_series_uids=filter_series_uids,
            filter_sop_uids=filter_sop_uids,
        )
        self.sequencer = LoadSequencer(
            self.loader, status=self.status, max_tail_fetches=max_tail_fetches
        )

        self.descriptor: Optional[ShareDescriptor] = None
        self._started = False
        self._scheduled = False

    @classmethod
    def from_navigation(
        cls, context: NavigationContext, base_url: Optional[str] = None, **kwargs
    ) -> "ShareSession":
        """Build a session from a parsed share link."""
        return cls(
            resolve_base_url(base_url, context.base_url),
            context.reference,
            filter_series_uids=context.series_uids,
            filter_sop_uids=context.sop_uids,
            **kwargs,
        )

    async def __aenter__(self) -> "ShareSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def worklists(self) -> list[SeriesWorklist]:
        return self.sequencer.worklists

    async def load(self) -> Optional[ShareDescriptor]:
        """
        Resolve the share and start loading it.

        Returns once every series head has been rendered; tail fetches keep
        running in the background (see ``drain()``).

        Returns:
            The resolved descriptor, or None if the share could not be resolved
        """
        if self._started:
            raise RuntimeError("A share session can only be loaded once")
        self._started = True

        self.descriptor = await self.sequencer.run(self.client.resolve_share, self.enumerator)
        self._scheduled = True
        if self.descriptor is not None and self.in_flight.count == 0:
            self._on_idle()
        return self.descriptor

    async def drain(self) -> None:
        """Wait until no fetch is outstanding."""
        await self.in_flight.wait_idle()

    def progress(self) -> list[SeriesProgress]:
        return self.tracker.snapshot()

    def _on_idle(self) -> None:
        # Heads of later series may still be pending until scheduling ends
        if not self._scheduled:
            return
        total = sum(p.total_expected for p in self.tracker.snapshot())
        logger.info(f"All fetches settled ({total} instances across {len(self.tracker)} series)")
        self.status.set_message(STATUS_ALL_LOADED)

    async def close(self) -> None:
        """Wait for background fetches, then release network, blob and progress state."""
        await self.drain()
        await self.client.close()
        self.blobs.clear()
        self.tracker.clear()
