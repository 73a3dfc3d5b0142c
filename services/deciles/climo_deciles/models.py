"""Record types shared by the store, aggregator and orchestrator."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from .distributions import Deciles

# Indices that get a decile distribution, in column order
TRACKED_INDICES: Tuple[str, ...] = ("hdw", "blow_up_dt", "blow_up_meters", "dcape")

# Indices stored with each record but not aggregated
EXTRA_INDICES: Tuple[str, ...] = (
    "conv_t_def_c",
    "dry_cape",
    "wet_cape",
    "cape_ratio",
    "e0",
    "de",
)


def decile_column(index: str) -> str:
    """Name of the deciles table column holding an index's blob."""
    if index not in TRACKED_INDICES:
        raise ValueError(f"Unknown climate index: {index}")
    return f"{index}_deciles"


@dataclass(frozen=True)
class Location:
    """A station registered for one model."""
    site: str
    model: str
    start_date: str
    latitude: float
    longitude: float
    elevation_m: float


@dataclass
class ClimateRecord:
    """
    One hourly climate-index sample for a station and model.

    The local date parts are what buckets are derived from; valid_time is
    kept only as part of the record's identity.
    """
    site: str
    model: str
    valid_time: datetime
    year_lcl: int
    month_lcl: int
    day_lcl: int
    hour_lcl: int

    hdw: Optional[float] = None
    blow_up_dt: Optional[float] = None
    blow_up_meters: Optional[float] = None
    dcape: Optional[float] = None

    conv_t_def_c: Optional[float] = None
    dry_cape: Optional[float] = None
    wet_cape: Optional[float] = None
    cape_ratio: Optional[float] = None
    e0: Optional[float] = None
    de: Optional[float] = None


@dataclass
class DecileRow:
    """Decile distributions of every tracked index for one bucket."""
    site: str
    model: str
    day_of_year: int
    hour_of_day: int
    deciles: Dict[str, Deciles] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str, int, int]:
        return (self.site, self.model, self.day_of_year, self.hour_of_day)


@dataclass(frozen=True)
class EmptyBucket:
    """A bucket with no usable samples for one index (informational)."""
    day_of_year: int
    hour_of_day: int
    index: str
