"""
Empirical decile distributions and their stored binary form.

Deciles are computed by linear interpolation between order statistics at
rank k*(n-1)/10 for k = 1..9. Ranks are evaluated with integer
arithmetic so a given sample set always produces the same floats.
Between an infinite and any other order statistic the infinite endpoint
is taken (the lower one when both are infinite).

Blob layout (little-endian):

    byte 0      format tag (FORMAT_TAG)
    byte 1      value count, 0 or 9
    bytes 2..   count IEEE-754 float64 values, 10th to 90th percentile
"""
import math
import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .errors import EncodingMismatch

INTERPOLATION = "linear"
PERCENTILES: Tuple[int, ...] = (10, 20, 30, 40, 50, 60, 70, 80, 90)
NUM_DECILES = len(PERCENTILES)

FORMAT_TAG = 1
_HEADER = struct.Struct("<BB")
_VALUES = struct.Struct(f"<{NUM_DECILES}d")


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def clean_samples(values: Iterable[Optional[float]]) -> List[float]:
    """Drop missing (None or NaN) samples and sort the rest ascending."""
    return sorted(float(v) for v in values if not _is_missing(v))


def compute_deciles(values: Iterable[Optional[float]]) -> "Deciles":
    """
    Compute the 10th through 90th percentiles of a sample set.

    Args:
        values: Samples; None and NaN are ignored

    Returns:
        Deciles with 9 values, or empty Deciles if no samples remain
    """
    samples = clean_samples(values)
    n = len(samples)
    if n == 0:
        return Deciles(())

    result = []
    for k in range(1, NUM_DECILES + 1):
        scaled_rank = k * (n - 1)
        lo = scaled_rank // 10
        remainder = scaled_rank % 10
        if remainder == 0:
            result.append(samples[lo])
            continue
        low, high = samples[lo], samples[lo + 1]
        if low == high or math.isinf(low):
            result.append(low)
        elif math.isinf(high):
            result.append(high)
        else:
            value = low + (high - low) * (remainder / 10)
            result.append(min(value, high))

    return Deciles(tuple(result))


@dataclass(frozen=True)
class Deciles:
    """Pre-calculated deciles of one index in one bucket."""
    values: Tuple[float, ...]

    def __post_init__(self):
        if len(self.values) not in (0, NUM_DECILES):
            raise ValueError(
                f"Deciles need 0 or {NUM_DECILES} values, got {len(self.values)}"
            )

    @property
    def is_empty(self) -> bool:
        """True when the bucket had no samples for this index."""
        return not self.values

    def value_at_percentile(self, percentile: int) -> float:
        """
        Value at a decile percentile.

        Args:
            percentile: One of 10, 20, ..., 90

        Raises:
            ValueError: If percentile is not a stored decile or there is no data
        """
        if percentile not in PERCENTILES:
            raise ValueError(f"Percentile must be one of {PERCENTILES}, got {percentile}")
        if self.is_empty:
            raise ValueError("No data in this distribution")
        return self.values[percentile // 10 - 1]

    def percentile_of(self, value: float) -> int:
        """
        Decile band a value falls in.

        Returns 0 below the 10th percentile, 10 between the 10th and 20th,
        and so on up to 90 at or above the 90th percentile.
        """
        if self.is_empty:
            raise ValueError("No data in this distribution")
        return 10 * sum(1 for d in self.values if d <= value)

    def as_bytes(self) -> bytes:
        """Encode to the stored blob layout."""
        header = _HEADER.pack(FORMAT_TAG, len(self.values))
        if self.is_empty:
            return header
        return header + _VALUES.pack(*self.values)

    @classmethod
    def from_bytes(cls, blob: bytes) -> "Deciles":
        """
        Decode a stored blob.

        Raises:
            EncodingMismatch: If the tag, count or length is not recognised
        """
        blob = bytes(blob)
        if len(blob) < _HEADER.size:
            raise EncodingMismatch(f"Decile blob too short: {len(blob)} bytes")

        tag, count = _HEADER.unpack_from(blob)
        if tag != FORMAT_TAG:
            raise EncodingMismatch(f"Unknown decile blob format tag: {tag}")

        if count == 0:
            expected = _HEADER.size
        elif count == NUM_DECILES:
            expected = _HEADER.size + _VALUES.size
        else:
            raise EncodingMismatch(f"Unexpected decile count in blob: {count}")

        if len(blob) != expected:
            raise EncodingMismatch(
                f"Decile blob length {len(blob)} does not match expected {expected}"
            )

        if count == 0:
            return cls(())
        return cls(_VALUES.unpack_from(blob, _HEADER.size))
