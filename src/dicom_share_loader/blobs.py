"""Locally addressable handles for decoded instance bytes."""

import logging
from pathlib import Path
from typing import Optional

from obstore.store import MemoryStore, from_url

logger = logging.getLogger(__name__)


class BlobStore:
    """
    Keep raw instance bytes addressable by a reference string.

    The render path receives the reference instead of re-fetching the
    instance over the network. Backed by an in-memory object store by
    default, or by a local directory when ``root`` is given.
    """

    def __init__(self, root: Optional[str] = None):
        """
        Initialize the blob store.

        Args:
            root: Optional local directory (or file:// URL) to persist blobs in.
                  When omitted, blobs live in memory for the session lifetime.
        """
        self.root = root
        self.store = self._init_store(root)
        self._scheme_root = self._reference_root(root)

    @staticmethod
    def _init_store(root: Optional[str]):
        """Initialize the appropriate object store for the root."""
        if root is None:
            return MemoryStore()

        if root.startswith("file://"):
            local_path = Path(root[len("file://"):])
        else:
            local_path = Path(root)
        local_path = local_path.expanduser().resolve()
        local_path.mkdir(parents=True, exist_ok=True)
        return from_url(local_path.as_uri())

    @staticmethod
    def _reference_root(root: Optional[str]) -> str:
        if root is None:
            return "memory:///"
        if root.startswith("file://"):
            return root.rstrip("/") + "/"
        return Path(root).expanduser().resolve().as_uri() + "/"

    @staticmethod
    def blob_path(study_uid: str, series_uid: str, sop_uid: str) -> str:
        """Store-relative path of an instance blob."""
        return f"{study_uid}/{series_uid}/{sop_uid}.dcm"

    def reference_for(self, path: str) -> str:
        return f"{self._scheme_root}{path}"

    def path_from_reference(self, reference: str) -> str:
        if not reference.startswith(self._scheme_root):
            raise ValueError(f"Reference {reference!r} does not belong to this store")
        return reference[len(self._scheme_root):]

    def clear(self) -> None:
        """Drop in-memory blobs; blobs on disk are kept."""
        if self.root is None:
            self.store = MemoryStore()

    async def put(self, path: str, data: bytes) -> str:
        """Store ``data`` under ``path`` and return its reference."""
        await self.store.put_async(path, data)
        reference = self.reference_for(path)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Stored {len(data)} bytes at {reference}")
        return reference

    def get(self, reference: str) -> bytes:
        """Read back the bytes behind a reference."""
        result = self.store.get(self.path_from_reference(reference))
        return bytes(result.bytes())
