"""
Pytest configuration and fixtures for decile service tests.
"""
from datetime import datetime, timedelta

import pytest

from climo_deciles.config import DecileConfig
from climo_deciles.models import ClimateRecord
from climo_deciles.store import ClimoStore


@pytest.fixture
def config(tmp_path):
    """Configuration pointing at a fresh SQLite store."""
    return DecileConfig(
        database_url=f"sqlite:///{tmp_path / 'climo.db'}",
        spark_master="",
        write_batch_size=100,
    )


@pytest.fixture
def store(config):
    """Climate store with all tables created."""
    store = ClimoStore(config)
    store.create_tables()

    yield store

    store.close()


def make_record(site="ABC", model="GFS", when=datetime(2020, 2, 14, 12), **indices):
    """Build a climate record whose local time equals its valid time."""
    return ClimateRecord(
        site=site,
        model=model,
        valid_time=when,
        year_lcl=when.year,
        month_lcl=when.month,
        day_lcl=when.day,
        hour_lcl=when.hour,
        **indices,
    )


@pytest.fixture
def record_factory():
    """Factory for climate records."""
    return make_record


@pytest.fixture
def decade_records():
    """
    Ten 12 LT records on 14 February across ten years.

    All fall in bucket (45, 12) with HDW values 10, 20, ..., 100.
    """
    return [
        make_record(
            when=datetime(2001 + i, 2, 14, 12),
            hdw=10.0 * (i + 1),
            blow_up_dt=float(i),
            blow_up_meters=1000.0 + 100 * i,
            dcape=500.0 + i,
        )
        for i in range(10)
    ]


@pytest.fixture
def hourly_records():
    """Three days of hourly records for one station in 2019."""
    start = datetime(2019, 7, 1)
    records = []
    for h in range(72):
        when = start + timedelta(hours=h)
        records.append(
            make_record(
                site="KMSO",
                model="NAM",
                when=when,
                hdw=float(h % 24) * 10,
                blow_up_dt=None if h % 2 else 2.5,
                blow_up_meters=float(1500 + h),
                dcape=float(800 + h % 5),
            )
        )
    return records
