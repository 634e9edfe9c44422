from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np


IsoTime = str
IsoDate = str

DEVICE_TYPES = ("iem", "headphone")
RIGS = ("711", "5128")
PINNAS = ("kb5", "kb0065", "5128")


def _as_float_array(x: Any) -> np.ndarray:
    a = np.asarray(x, dtype=float)
    if a.ndim != 1:
        raise ValueError("curve arrays must be 1-D")
    return a


@dataclass(slots=True)
class FrequencyCurve:
    """
    Paired frequency (Hz) and level (dB) arrays.

    Parsed curves keep the row order of the source file; curves produced by
    alignment sit on a fixed grid. Both arrays always have the same length.
    """
    frequencies: np.ndarray
    db: np.ndarray

    def __post_init__(self) -> None:
        self.frequencies = _as_float_array(self.frequencies)
        self.db = _as_float_array(self.db)
        if self.frequencies.shape != self.db.shape:
            raise ValueError("frequencies and db must have equal length")

    @classmethod
    def empty(cls) -> "FrequencyCurve":
        return cls(np.zeros(0), np.zeros(0))

    def __len__(self) -> int:
        return int(self.frequencies.shape[0])

    @property
    def is_empty(self) -> bool:
        return len(self) == 0


@dataclass(slots=True)
class DeviceRecord:
    """
    One measured device as listed by a domain's catalog.

    `key` is "domain::file_name" and is unique across the cache index.
    `hash` points at the measurement blob; it is None until a measurement
    has been fetched and stored.
    """
    domain: str
    file_name: str
    name: str
    price: Optional[float] = None
    quality: str = "low"
    type: str = "iem"
    rig: str = "711"
    pinna: Optional[str] = None
    hash: Optional[str] = None
    first_seen: Optional[IsoDate] = None
    last_seen: Optional[IsoDate] = None

    def __post_init__(self) -> None:
        if self.type not in DEVICE_TYPES:
            raise ValueError(f"unknown device type: {self.type!r}")
        if self.rig not in RIGS:
            raise ValueError(f"unknown rig: {self.rig!r}")
        if self.pinna is not None and self.pinna not in PINNAS:
            raise ValueError(f"unknown pinna: {self.pinna!r}")
        if self.quality not in ("high", "low"):
            raise ValueError(f"unknown quality: {self.quality!r}")

    @property
    def key(self) -> str:
        return f"{self.domain}::{self.file_name}"

    def to_entry(self) -> Dict[str, Any]:
        """Index entry as persisted in cache/index.json."""
        return {
            "hash": self.hash,
            "name": self.name,
            "price": self.price,
            "quality": self.quality,
            "type": self.type,
            "rig": self.rig,
            "pinna": self.pinna,
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
        }

    @classmethod
    def from_entry(cls, key: str, entry: Dict[str, Any]) -> "DeviceRecord":
        domain, _, file_name = key.partition("::")
        if not file_name:
            raise ValueError(f"malformed index key: {key!r}")
        dtype = entry.get("type") or "iem"
        return cls(
            domain=domain,
            file_name=file_name,
            name=entry.get("name") or file_name,
            price=entry.get("price"),
            quality=entry.get("quality") or "low",
            type=dtype,
            rig=entry.get("rig") or "711",
            pinna=entry.get("pinna") if dtype == "headphone" else None,
            hash=entry.get("hash"),
            first_seen=entry.get("firstSeen") or entry.get("lastSeen"),
            last_seen=entry.get("lastSeen"),
        )


@dataclass(slots=True)
class MeasuredDevice:
    """A cached device together with its parsed measurement."""
    record: DeviceRecord
    curve: FrequencyCurve


@dataclass(slots=True)
class TargetVariant:
    """One rig/pinna flavour of a target; `generated` marks compensation-derived curves."""
    file_name: str
    curve: FrequencyCurve
    generated: bool = False


@dataclass(slots=True)
class TargetGroup:
    """
    A target family: the same tuning philosophy measured on up to four rigs.
    Variants are keyed by "711", "5128", "kb5", "kb0065" or "default".
    """
    name: str
    type: str
    variants: Dict[str, TargetVariant] = field(default_factory=dict)

    @property
    def files(self) -> list[str]:
        return [v.file_name for v in self.variants.values()]


@dataclass(slots=True)
class ScoredDevice:
    """A device scored against one target variant."""
    record: DeviceRecord
    similarity: float
    stdev: float
    slope: float
    avg_error: float
    target_variant: str

    def to_dict(self, source_domain: str) -> Dict[str, Any]:
        r = self.record
        return {
            "id": r.key,
            "name": r.name,
            "similarity": self.similarity,
            "stdev": self.stdev,
            "slope": self.slope,
            "avgError": self.avg_error,
            "price": r.price,
            "quality": r.quality,
            "sourceDomain": source_domain,
            "type": r.type,
            "rig": r.rig,
            "targetVariant": self.target_variant,
            "pinna": r.pinna,
        }
