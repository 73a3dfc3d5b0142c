"""
Import of archives written with the legacy station-number schema.

Legacy archives identify stations by an integer station_num and name the
blow-up fields el_blow_up_dt / el_blow_up_meters. Records are rewritten
to the canonical site-keyed schema through the store's populate interface.
"""
import logging
from datetime import datetime
from typing import Dict, Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection

from .models import ClimateRecord, Location
from .store import ClimoStore


logger = logging.getLogger(__name__)

LEGACY_LOCATIONS_QUERY = text(
    """
    SELECT station_num, site_name, model, start_date, latitude, longitude, elevation_m
    FROM locations
    """
)

LEGACY_CLI_QUERY = text(
    """
    SELECT station_num, model, valid_time, year_lcl, month_lcl, day_lcl, hour_lcl,
           hdw, el_blow_up_dt, el_blow_up_meters, dcape
    FROM cli
    ORDER BY station_num, model, valid_time
    """
)


def _parse_valid_time(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _legacy_records(conn: Connection, site_names: Dict[int, str]) -> Iterator[ClimateRecord]:
    for row in conn.execute(LEGACY_CLI_QUERY):
        yield ClimateRecord(
            site=site_names.get(row.station_num, str(row.station_num)),
            model=row.model,
            valid_time=_parse_valid_time(row.valid_time),
            year_lcl=row.year_lcl,
            month_lcl=row.month_lcl,
            day_lcl=row.day_lcl,
            hour_lcl=row.hour_lcl,
            hdw=row.hdw,
            blow_up_dt=row.el_blow_up_dt,
            blow_up_meters=row.el_blow_up_meters,
            dcape=row.dcape,
        )


def import_legacy_archive(legacy_url: str, store: ClimoStore) -> int:
    """
    Copy a legacy station-number archive into the canonical store.

    Args:
        legacy_url: SQLAlchemy URL of the legacy archive
        store: Destination store, tables already created

    Returns:
        Number of climate records migrated
    """
    legacy_engine = create_engine(legacy_url)
    try:
        with legacy_engine.connect() as conn:
            site_names: Dict[int, str] = {}
            location_count = 0
            for row in conn.execute(LEGACY_LOCATIONS_QUERY):
                site_names.setdefault(row.station_num, row.site_name)
                store.add_location(
                    Location(
                        site=row.site_name,
                        model=row.model,
                        start_date=str(row.start_date),
                        latitude=row.latitude,
                        longitude=row.longitude,
                        elevation_m=row.elevation_m,
                    )
                )
                location_count += 1

            logger.info(f"Migrated {location_count} legacy locations")

            record_count = store.add_records(_legacy_records(conn, site_names))
    finally:
        legacy_engine.dispose()

    logger.info(f"Migrated {record_count} legacy climate records from {legacy_url}")
    return record_count
