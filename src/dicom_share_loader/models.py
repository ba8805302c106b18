"""Data model for share resolution and progressive loading."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from .tags import instance_number_key


class TargetGranularity(str, Enum):
    """Top-level unit a share exposes."""

    STUDY = "study"
    SERIES = "series"
    INSTANCE = "instance"

    @classmethod
    def parse(cls, value: Any) -> "TargetGranularity":
        """Parse a ``targetType`` value (case-insensitive); raises ValueError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown share type: {value!r}") from None


@dataclass(frozen=True)
class ShareReference:
    """Credential pair identifying a share session."""

    token: str
    passphrase: str = ""

    def query_params(self) -> dict[str, str]:
        """Query credential sent with every request (omitted when empty)."""
        if self.passphrase:
            return {"password": self.passphrase}
        return {}


@dataclass(frozen=True)
class TargetRef:
    target_id: str


@dataclass(frozen=True)
class ShareDescriptor:
    """Resolved share: declared granularity plus its targets, in order."""

    granularity: TargetGranularity
    targets: tuple[TargetRef, ...] = ()


@dataclass(frozen=True)
class LoadUnit:
    """
    One fetchable instance.

    Identity is the (study, series, SOP) triple; ``instance_number`` only
    drives ordering and does not take part in equality or hashing.
    """

    study_uid: str
    series_uid: str
    sop_uid: str
    instance_number: Optional[float] = field(default=None, compare=False)

    @property
    def sort_key(self) -> float:
        return instance_number_key(self.instance_number)


@dataclass
class SeriesWorklist:
    """Units of one series, ordered so the head (lowest InstanceNumber) is first."""

    study_uid: str
    series_uid: str
    units: list[LoadUnit] = field(default_factory=list)

    @classmethod
    def build(cls, study_uid: str, series_uid: str, units: Iterable[LoadUnit]) -> "SeriesWorklist":
        """
        Order units by InstanceNumber ascending.

        The sort is stable, so ties and units without an InstanceNumber keep
        their discovery order; absent numbers sort after present ones.
        """
        ordered = sorted(units, key=lambda unit: unit.sort_key)
        return cls(study_uid=study_uid, series_uid=series_uid, units=ordered)

    @property
    def head(self) -> Optional[LoadUnit]:
        return self.units[0] if self.units else None

    @property
    def tail(self) -> list[LoadUnit]:
        return self.units[1:]

    def __len__(self) -> int:
        return len(self.units)


@dataclass
class DecodedInstance:
    """One decoded DICOM part, handed off to the render or registration path."""

    sop_uid: str
    study_uid: str
    series_uid: str
    dataset: Any
    pixel_data: Optional[bytes]
    pixel_reference: str
    size: int = 0
