"""HTTP client for the share metadata and retrieval endpoints."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from .constants import JSON_MEDIA_TYPE, MULTIPART_DICOM, SHARE_API_PREFIX
from .errors import InstanceFetchError, ShareResolutionError
from .models import LoadUnit, ShareDescriptor, ShareReference, TargetGranularity, TargetRef

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class ShareClient:
    """
    Talk to ``/api/share/{token}`` and its listing/retrieval sub-resources.

    Every request carries the share password as a ``password`` query
    parameter when one is set. No request timeout is applied.

    Use as an async context manager, or pass an existing ``aiohttp``
    session (which the client will then not close).
    """

    def __init__(
        self,
        base_url: str,
        reference: ShareReference,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.reference = reference
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ShareClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None)
            )
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def share_url(self, *segments: str) -> str:
        """Build ``{base}/api/share/{token}/seg/seg...`` with escaped segments."""
        parts = [self.base_url + SHARE_API_PREFIX, _segment(self.reference.token)]
        parts.extend(_segment(segment) for segment in segments)
        return "/".join(parts)

    def instance_url(self, unit: LoadUnit) -> str:
        return self.share_url(
            "studies", unit.study_uid, "series", unit.series_uid, "instances", unit.sop_uid
        )

    @staticmethod
    async def _read_json(response: aiohttp.ClientResponse) -> Optional[Any]:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return None

    async def resolve_share(self) -> ShareDescriptor:
        """
        Resolve the share token into its descriptor.

        Raises:
            ShareResolutionError: If the share is missing, expired, password
                protected with a wrong password, malformed, or of unknown type
        """
        url = self.share_url()
        try:
            async with self.session.get(
                url,
                params=self.reference.query_params(),
                headers={"Accept": JSON_MEDIA_TYPE},
            ) as response:
                payload = await self._read_json(response)
                if not response.ok:
                    message = None
                    if isinstance(payload, dict):
                        message = payload.get("error")
                    raise ShareResolutionError(message or "Failed to fetch share link")
        except aiohttp.ClientError as e:
            raise ShareResolutionError(f"Failed to fetch share link: {e}") from e

        if not isinstance(payload, dict):
            raise ShareResolutionError("Share link response is not a JSON object")
        if not payload.get("ok"):
            raise ShareResolutionError(payload.get("error") or "Share link not accessible")

        data = payload.get("data")
        if not isinstance(data, dict):
            raise ShareResolutionError("Share link response has no data")

        try:
            granularity = TargetGranularity.parse(data.get("targetType"))
        except ValueError as e:
            logger.error(str(e))
            raise ShareResolutionError("Unknown share type") from e

        items = data.get("targets")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ShareResolutionError("Share link response has no targets")

        targets = []
        for item in items:
            target_id = item.get("targetId") if isinstance(item, dict) else None
            if target_id in (None, ""):
                logger.warning(f"Skipping share target without targetId: {item!r}")
                continue
            targets.append(TargetRef(str(target_id)))

        descriptor = ShareDescriptor(granularity=granularity, targets=tuple(targets))
        logger.info(f"Resolved {granularity.value} share with {len(targets)} targets")
        return descriptor

    async def _list(self, url: str, scope: str) -> list[dict]:
        """GET a listing endpoint; any failure yields an empty list."""
        try:
            async with self.session.get(
                url,
                params=self.reference.query_params(),
                headers={"Accept": JSON_MEDIA_TYPE},
            ) as response:
                if not response.ok:
                    logger.error(f"Listing {scope} failed: HTTP {response.status} {response.reason}")
                    return []
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            logger.error(f"Failed to list {scope}: {e}")
            return []

        if not isinstance(payload, list):
            logger.error(f"Listing {scope} returned {type(payload).__name__}, expected a list")
            return []

        records = [record for record in payload if isinstance(record, dict)]
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Listed {len(records)} records for {scope}")
        return records

    async def list_study_series(self, study_uid: str) -> list[dict]:
        return await self._list(
            self.share_url("studies", study_uid, "series"), f"series of study {study_uid}"
        )

    async def list_share_series(self) -> list[dict]:
        return await self._list(self.share_url("series"), "shared series")

    async def list_series_instances(self, study_uid: str, series_uid: str) -> list[dict]:
        return await self._list(
            self.share_url("studies", study_uid, "series", series_uid, "instances"),
            f"instances of series {series_uid}",
        )

    async def list_share_instances(self) -> list[dict]:
        return await self._list(self.share_url("instances"), "shared instances")

    async def fetch_instance(self, unit: LoadUnit) -> tuple[bytes, Optional[str]]:
        """
        Retrieve one instance as a multipart DICOM body.

        Returns:
            Tuple of (body bytes, Content-Type header value)

        Raises:
            InstanceFetchError: On a non-success HTTP status
            aiohttp.ClientError: On transport failures
        """
        url = self.instance_url(unit)
        headers = {"Accept": MULTIPART_DICOM, "Content-Type": MULTIPART_DICOM}
        async with self.session.get(
            url, params=self.reference.query_params(), headers=headers
        ) as response:
            if not response.ok:
                raise InstanceFetchError(response.status, response.reason, url)
            body = await response.read()
            return body, response.headers.get("Content-Type")
