"""DICOM Share Loader - progressively load DICOM images exposed through share links."""

from .blobs import BlobStore
from .client import ShareClient
from .decode import DispatchMode, InstanceLoader
from .enumerator import TargetEnumerator
from .errors import InstanceFetchError, ShareLoaderError, ShareResolutionError
from .models import (
    DecodedInstance,
    LoadUnit,
    SeriesWorklist,
    ShareDescriptor,
    ShareReference,
    TargetGranularity,
    TargetRef,
)
from .navigation import NavigationContext, parse_share_link
from .progress import InFlightCounter, ProgressTracker, SeriesProgress
from .sequencer import LoadSequencer
from .session import ShareSession
from .viewer import RecordingViewer

__version__ = "0.1.0"
__all__ = [
    "BlobStore",
    "ShareClient",
    "DispatchMode",
    "InstanceLoader",
    "TargetEnumerator",
    "InstanceFetchError",
    "ShareLoaderError",
    "ShareResolutionError",
    "DecodedInstance",
    "LoadUnit",
    "SeriesWorklist",
    "ShareDescriptor",
    "ShareReference",
    "TargetGranularity",
    "TargetRef",
    "NavigationContext",
    "parse_share_link",
    "InFlightCounter",
    "ProgressTracker",
    "SeriesProgress",
    "LoadSequencer",
    "ShareSession",
    "RecordingViewer",
]
