"""
Decile aggregation for one station/model pair.
"""
import logging
import math
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple

from .bucketing import bucket_for
from .distributions import compute_deciles
from .models import TRACKED_INDICES, ClimateRecord, DecileRow, EmptyBucket


logger = logging.getLogger(__name__)

# Blow-ups shallower than this are not counted as blow-ups
MIN_BLOW_UP_METERS = 1000.0


def blow_up_samples(record: ClimateRecord) -> Tuple:
    """
    Blow-up (time, height) samples of a record.

    A blow-up below MIN_BLOW_UP_METERS is recorded as "no blow-up": an
    infinitely distant time and an infinitely low height, so it ranks
    below every real blow-up in both distributions.
    """
    dt, meters = record.blow_up_dt, record.blow_up_meters
    if meters is not None and meters < MIN_BLOW_UP_METERS:
        return math.inf, -math.inf
    return dt, meters


class DecileAggregator:
    """Groups a station's climate records into buckets and computes deciles."""

    def __init__(self, site: str, model: str):
        """
        Initialize aggregator.

        Args:
            site: Station identifier the records must belong to
            model: Model name the records must belong to
        """
        self.site = site
        self.model = model
        self.empty_buckets: List[EmptyBucket] = []

    def group_samples(
        self, records: Iterable[ClimateRecord]
    ) -> Dict[Tuple[int, int], Dict[str, List]]:
        """
        Partition index samples by bucket.

        Args:
            records: Climate records for this aggregator's pair

        Returns:
            Mapping of (day_of_year, hour_of_day) to per-index sample lists
        """
        buckets: Dict[Tuple[int, int], Dict[str, List]] = defaultdict(
            lambda: {index: [] for index in TRACKED_INDICES}
        )

        for record in records:
            if record.site != self.site or record.model != self.model:
                raise ValueError(
                    f"Record for {record.site}/{record.model} passed to "
                    f"aggregator for {self.site}/{self.model}"
                )
            samples = buckets[bucket_for(record)]
            values = {index: getattr(record, index) for index in TRACKED_INDICES}
            values["blow_up_dt"], values["blow_up_meters"] = blow_up_samples(record)
            for index in TRACKED_INDICES:
                samples[index].append(values[index])

        return buckets

    def aggregate(self, records: Iterable[ClimateRecord]) -> List[DecileRow]:
        """
        Compute one DecileRow per bucket present in the records.

        Args:
            records: All climate records for the pair, in any order

        Returns:
            DecileRows sorted by (day_of_year, hour_of_day)
        """
        self.empty_buckets = []
        buckets = self.group_samples(records)

        rows = []
        for doy, hour in sorted(buckets):
            samples = buckets[(doy, hour)]
            row = DecileRow(
                site=self.site,
                model=self.model,
                day_of_year=doy,
                hour_of_day=hour,
            )
            for index in TRACKED_INDICES:
                deciles = compute_deciles(samples[index])
                if deciles.is_empty:
                    self.empty_buckets.append(EmptyBucket(doy, hour, index))
                row.deciles[index] = deciles
            rows.append(row)

        logger.info(
            f"Computed {len(rows)} decile buckets for {self.site}/{self.model} "
            f"({len(self.empty_buckets)} empty index distributions)"
        )

        return rows
