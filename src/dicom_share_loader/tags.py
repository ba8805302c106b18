"""
Typed access to DICOM JSON attribute records.

Share listings return records in the DICOM JSON model: a mapping from an
8-hex-digit tag string to ``{"vr": ..., "Value": [...]}``. This module is the
only place that knows about that layout; everything else asks for logical
fields (study, series, SOP instance, instance number).
"""

import logging
import math
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

AttributeRecord = Mapping[str, Any]


class Field(str, Enum):
    """Logical attributes the loader reads from a record."""

    STUDY_UID = "0020000D"
    SERIES_UID = "0020000E"
    SOP_UID = "00080018"
    INSTANCE_NUMBER = "00200013"

    @property
    def tag(self) -> str:
        return self.value


def get_value(record: Optional[AttributeRecord], field: Field) -> Optional[Any]:
    """
    Return the first value of ``field`` in ``record``, or ``None`` when absent.

    Never raises: a missing record, a missing tag, an element without a
    ``Value`` array or an empty array are all reported as ``None``.

    Args:
        record: DICOM JSON attribute record (may be None)
        field: Logical field to read

    Returns:
        First value of the element, or None
    """
    if not isinstance(record, Mapping):
        return None

    element = record.get(field.tag)
    if not isinstance(element, Mapping):
        return None

    values = element.get("Value")
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return None
    if len(values) == 0:
        return None

    return values[0]


def get_uid(record: Optional[AttributeRecord], field: Field) -> Optional[str]:
    """Return a UID-valued field as a non-empty string, or None."""
    value = get_value(record, field)
    if value is None:
        return None
    uid = str(value).strip()
    return uid or None


def study_uid(record: Optional[AttributeRecord]) -> Optional[str]:
    return get_uid(record, Field.STUDY_UID)


def series_uid(record: Optional[AttributeRecord]) -> Optional[str]:
    return get_uid(record, Field.SERIES_UID)


def sop_uid(record: Optional[AttributeRecord]) -> Optional[str]:
    return get_uid(record, Field.SOP_UID)


def instance_number(record: Optional[AttributeRecord]) -> Optional[float]:
    """
    Return InstanceNumber as a number, or None if absent or unparseable.

    DICOM JSON encodes IS values as numbers, but some servers send strings,
    so both are accepted.
    """
    value = get_value(record, Field.INSTANCE_NUMBER)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Ignoring non-numeric InstanceNumber {value!r}")
        return None
    if math.isnan(number):
        return None
    return number


def instance_number_key(number: Optional[float]) -> float:
    """Ordering key for an instance number; absent values sort last."""
    return math.inf if number is None else number
