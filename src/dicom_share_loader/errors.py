"""Exceptions raised while resolving and loading a share."""

from typing import Optional


class ShareLoaderError(Exception):
    """Base class for loader errors."""


class ShareResolutionError(ShareLoaderError):
    """The share reference could not be resolved (bad token, wrong password, ...)."""


class InstanceFetchError(ShareLoaderError):
    """An instance request returned a non-success HTTP status."""

    def __init__(self, status: int, reason: Optional[str] = None, url: Optional[str] = None):
        self.status = status
        self.reason = reason or ""
        self.url = url
        super().__init__(f"{status} {self.reason}".strip())
