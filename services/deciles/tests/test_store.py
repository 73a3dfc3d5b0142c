"""
Tests for climate store access.
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from climo_deciles.aggregator import DecileAggregator
from climo_deciles.config import DecileConfig
from climo_deciles.distributions import Deciles, compute_deciles
from climo_deciles.errors import EncodingMismatch, StoreUnavailable
from climo_deciles.models import TRACKED_INDICES, DecileRow, Location
from climo_deciles.store import SCHEMA_VERSION, ClimoStore


def _row(site, model, doy, hour, values=(1.0, 2.0, 3.0)):
    deciles = compute_deciles(values)
    return DecileRow(site, model, doy, hour, {index: deciles for index in TRACKED_INDICES})


def test_create_tables_stamps_schema_version(store):
    """Test that table creation records the schema version once."""
    assert store.schema_version() == SCHEMA_VERSION

    store.create_tables()

    with store.engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM schema_info")).scalar()
    assert count == 1


def test_cache_size_pragma_applied(config):
    """Test that SQLite connections get the configured cache size."""
    config = config.model_copy(update={"cache_size": 4321})
    store = ClimoStore(config)
    try:
        with store.engine.connect() as conn:
            assert conn.execute(text("PRAGMA cache_size")).scalar() == 4321
    finally:
        store.close()


def test_add_location_insert_or_ignore(store):
    """Test that a location is registered once."""
    location = Location("ABC", "GFS", "2001-01-01", 46.9, -114.1, 972.0)

    assert store.add_location(location) is True
    assert store.add_location(location) is False

    assert store.locations() == [location]
    assert store.locations(site="XYZ") == []


def test_add_records_and_load(store, hourly_records):
    """Test batched upsert and ordered read-back of climate records."""
    written = store.add_records(reversed(hourly_records))

    assert written == 72
    loaded = store.load_records("KMSO", "NAM")
    assert [r.valid_time for r in loaded] == [r.valid_time for r in hourly_records]
    assert loaded[1].blow_up_dt is None
    assert loaded[0].blow_up_dt == 2.5
    assert loaded[5].hdw == 50.0


def test_reingest_overwrites_record(store, record_factory):
    """Test that re-ingesting the same hour replaces the row."""
    when = datetime(2015, 8, 1, 18)
    store.add_records([record_factory(when=when, hdw=10.0, dcape=100.0)])
    store.add_records([record_factory(when=when, hdw=55.0, dcape=None)])

    records = store.load_records("ABC", "GFS")

    assert len(records) == 1
    assert records[0].hdw == 55.0
    assert records[0].dcape is None


def test_valid_times_and_pairs(store, record_factory):
    """Test listing stored valid times and station/model pairs."""
    store.add_records([
        record_factory(site="B", model="NAM", when=datetime(2010, 1, 1, 1), hdw=1.0),
        record_factory(site="A", model="GFS", when=datetime(2010, 1, 1, 2), hdw=1.0),
        record_factory(site="A", model="GFS", when=datetime(2010, 1, 1, 1), hdw=1.0),
    ])

    assert store.pairs() == [("A", "GFS"), ("B", "NAM")]
    assert store.valid_times_for("A", "GFS") == [
        datetime(2010, 1, 1, 1),
        datetime(2010, 1, 1, 2),
    ]


def test_replace_and_load_deciles(store, decade_records):
    """Test that stored deciles decode to what was computed."""
    store.add_records(decade_records)
    rows = DecileAggregator("ABC", "GFS").aggregate(store.load_records("ABC", "GFS"))

    assert store.replace_deciles("ABC", "GFS", rows) == 1

    loaded = store.load_deciles("ABC", "GFS")
    assert len(loaded) == 1
    assert loaded[0].key == ("ABC", "GFS", 45, 12)
    for index in TRACKED_INDICES:
        assert loaded[0].deciles[index] == rows[0].deciles[index]


def test_empty_deciles_stored_as_empty_blob(store):
    """Test that a null-only index is a non-null zero-length sequence."""
    row = _row("ABC", "GFS", 10, 3)
    row.deciles["dcape"] = Deciles(())
    store.replace_deciles("ABC", "GFS", [row])

    with store.engine.connect() as conn:
        blob = conn.execute(text("SELECT dcape_deciles FROM deciles")).scalar()
    assert blob is not None
    assert Deciles.from_bytes(blob).is_empty

    loaded = store.load_deciles("ABC", "GFS")[0]
    assert loaded.deciles["dcape"].values == ()


def test_replace_removes_stale_buckets(store):
    """Test that a rerun replaces rather than merges a pair's buckets."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0), _row("ABC", "GFS", 2, 0)])
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 2, 0, values=(9.0,))])

    loaded = store.load_deciles("ABC", "GFS")
    assert [r.key for r in loaded] == [("ABC", "GFS", 2, 0)]
    assert loaded[0].deciles["hdw"].values == (9.0,) * 9


def test_replace_leaves_other_pairs_alone(store):
    """Test that replacing one pair does not touch another."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0)])
    store.replace_deciles("XYZ", "GFS", [_row("XYZ", "GFS", 1, 0)])
    store.replace_deciles("ABC", "GFS", [])

    assert store.load_deciles("ABC", "GFS") == []
    assert len(store.load_deciles("XYZ", "GFS")) == 1


def test_failed_replace_rolls_back(store):
    """Test that a failing write keeps the previous distribution."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0)])

    duplicate = [_row("ABC", "GFS", 5, 5), _row("ABC", "GFS", 5, 5)]
    with pytest.raises(IntegrityError):
        store.replace_deciles("ABC", "GFS", duplicate)

    loaded = store.load_deciles("ABC", "GFS")
    assert [r.key for r in loaded] == [("ABC", "GFS", 1, 0)]


def test_replace_rejects_foreign_rows(store):
    """Test that rows for another pair cannot be written under this pair."""
    with pytest.raises(ValueError, match="passed to replace"):
        store.replace_deciles("ABC", "GFS", [_row("XYZ", "GFS", 1, 0)])


def test_corrupt_blob_raises_encoding_mismatch(store):
    """Test that a blob with an unknown layout is surfaced, not repaired."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0)])
    with store.engine.begin() as conn:
        conn.execute(text("UPDATE deciles SET hdw_deciles = :blob"), {"blob": b"\x07\x09"})

    with pytest.raises(EncodingMismatch):
        store.load_deciles("ABC", "GFS")


def test_hourly_deciles_across_year_end(store):
    """Test mapping stored buckets onto a range spanning two years."""
    rows = [
        _row("ABC", "GFS", 365, 12, values=(1.0,)),
        _row("ABC", "GFS", 1, 0, values=(2.0,)),
        _row("ABC", "GFS", 1, 12, values=(3.0,)),
        _row("ABC", "GFS", 200, 0, values=(4.0,)),
    ]
    store.replace_deciles("ABC", "GFS", rows)

    data = store.hourly_deciles(
        "ABC", "GFS", "hdw", datetime(2018, 12, 31, 0), datetime(2019, 1, 1, 6)
    )

    assert [(t, d.values[0]) for t, d in data] == [
        (datetime(2018, 12, 31, 12), 1.0),
        (datetime(2019, 1, 1, 0), 2.0),
    ]


def test_hourly_deciles_validates_range(store):
    """Test that empty or over-long ranges are rejected."""
    with pytest.raises(ValueError, match="after start_time"):
        store.hourly_deciles("ABC", "GFS", "hdw", datetime(2019, 1, 2), datetime(2019, 1, 1))

    with pytest.raises(ValueError, match="shorter than 366 days"):
        store.hourly_deciles("ABC", "GFS", "hdw", datetime(2019, 1, 1), datetime(2020, 1, 2))

    with pytest.raises(ValueError, match="Unknown climate index"):
        store.hourly_deciles("ABC", "GFS", "nope", datetime(2019, 1, 1), datetime(2019, 1, 2))


def test_reset_deciles(store):
    """Test that reset drops every stored distribution."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0)])

    store.reset_deciles()

    assert store.load_deciles("ABC", "GFS") == []


def test_unreachable_store_raises_store_unavailable(tmp_path):
    """Test that connection failures surface as StoreUnavailable."""
    config = DecileConfig(database_url=f"sqlite:///{tmp_path / 'missing' / 'climo.db'}")
    store = ClimoStore(config)

    with pytest.raises(StoreUnavailable):
        store.create_tables()


def test_unsupported_dialect_rejected(store, record_factory):
    """Test that upserts refuse dialects without ON CONFLICT support."""
    with patch.object(store.engine.dialect, "name", "mysql"):
        with pytest.raises(ValueError, match="Unsupported store dialect"):
            store.add_records([record_factory(hdw=1.0)])


def test_hourly_deciles_rejects_aware_times(store):
    """Test that timezone-aware range bounds are refused."""
    store.replace_deciles("ABC", "GFS", [_row("ABC", "GFS", 1, 0)])
    utc = timezone.utc

    with pytest.raises(ValueError, match="naive local times"):
        store.hourly_deciles(
            "ABC", "GFS", "hdw", datetime(2019, 1, 1, tzinfo=utc), datetime(2019, 1, 2, tzinfo=utc)
        )

    with pytest.raises(ValueError, match="naive local times"):
        store.hourly_deciles(
            "ABC", "GFS", "hdw", datetime(2019, 1, 1), datetime(2019, 1, 2, tzinfo=utc)
        )
