"""
Climate store access: locations, hourly climate records and deciles.

SQLite is the default backend; PostgreSQL (psycopg2) is supported through
the same SQLAlchemy Core tables.
"""
import logging
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from .bucketing import bucket_datetime
from .config import DecileConfig
from .distributions import Deciles
from .errors import StoreUnavailable
from .models import (
    EXTRA_INDICES,
    TRACKED_INDICES,
    ClimateRecord,
    DecileRow,
    Location,
    decile_column,
)


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

metadata = MetaData()

locations_table = Table(
    "locations",
    metadata,
    Column("site", Text, nullable=False),
    Column("model", Text, nullable=False),
    Column("start_date", Text, nullable=False),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("elevation_m", Float, nullable=False),
    UniqueConstraint("site", "model", "latitude", "longitude", "elevation_m"),
    Index("locations_idx", "site", "model"),
)

CLI_KEY = ("site", "valid_time", "model", "year_lcl", "month_lcl", "day_lcl", "hour_lcl")

cli_table = Table(
    "cli",
    metadata,
    Column("site", Text, nullable=False),
    Column("model", Text, nullable=False),
    Column("valid_time", DateTime, nullable=False),
    Column("year_lcl", Integer, nullable=False),
    Column("month_lcl", Integer, nullable=False),
    Column("day_lcl", Integer, nullable=False),
    Column("hour_lcl", Integer, nullable=False),
    *[Column(index, Float) for index in TRACKED_INDICES + EXTRA_INDICES],
    PrimaryKeyConstraint(*CLI_KEY),
)

deciles_table = Table(
    "deciles",
    metadata,
    Column("site", Text, nullable=False),
    Column("model", Text, nullable=False),
    Column("day_of_year", Integer, nullable=False),
    Column("hour_of_day", Integer, nullable=False),
    *[Column(decile_column(index), LargeBinary, nullable=False) for index in TRACKED_INDICES],
    PrimaryKeyConstraint("site", "model", "day_of_year", "hour_of_day"),
)

schema_info_table = Table(
    "schema_info",
    metadata,
    Column("version", Integer, nullable=False),
)


def create_store_engine(config: DecileConfig) -> Engine:
    """
    Create an engine for the configured store.

    SQLite connections get the configured page cache size and busy timeout.
    """
    if not config.is_sqlite:
        return create_engine(config.database_url, pool_pre_ping=True)

    engine = create_engine(
        config.database_url,
        connect_args={"timeout": config.busy_timeout_s},
    )

    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA cache_size={int(config.cache_size)}")
        cursor.close()

    event.listen(engine, "connect", _set_sqlite_pragma)
    return engine


class ClimoStore:
    """Reads climate records and writes decile distributions."""

    def __init__(self, config: DecileConfig, engine: Optional[Engine] = None):
        """
        Initialize store.

        Args:
            config: Configuration object
            engine: Existing engine to use instead of creating one
        """
        self.config = config
        self.engine = engine if engine is not None else create_store_engine(config)

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """Connection inside one transaction; rolled back on any error."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except OperationalError as e:
            logger.error(f"Climate store operation failed: {e}")
            raise StoreUnavailable(f"Climate store unavailable: {e}") from e

    def _insert(self, table: Table):
        """Dialect-specific INSERT supporting ON CONFLICT clauses."""
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise ValueError(f"Unsupported store dialect: {dialect}")
        return insert(table)

    # Schema

    def create_tables(self):
        """Create all tables if they don't exist and stamp the schema version."""
        with self._transaction() as conn:
            metadata.create_all(conn)
            version = conn.execute(select(schema_info_table.c.version)).scalar()
            if version is None:
                conn.execute(schema_info_table.insert().values(version=SCHEMA_VERSION))
        logger.info(f"Climate store tables initialized (schema v{SCHEMA_VERSION})")

    def schema_version(self) -> Optional[int]:
        """Stored schema version, or None if the store was never initialized."""
        with self._transaction() as conn:
            return conn.execute(select(schema_info_table.c.version)).scalar()

    def reset_deciles(self):
        """Drop every stored decile distribution."""
        with self._transaction() as conn:
            deciles_table.drop(conn, checkfirst=True)
            deciles_table.create(conn)
        logger.info("Deciles table reset")

    # Populate

    def add_location(self, location: Location) -> bool:
        """
        Register a station location; existing registrations are left alone.

        Returns:
            True if a new row was inserted
        """
        stmt = self._insert(locations_table).values(**asdict(location))
        stmt = stmt.on_conflict_do_nothing()
        with self._transaction() as conn:
            result = conn.execute(stmt)
        return result.rowcount == 1

    def locations(self, site: Optional[str] = None) -> List[Location]:
        """Registered locations, optionally for one site."""
        query = select(locations_table).order_by(
            locations_table.c.site, locations_table.c.model
        )
        if site is not None:
            query = query.where(locations_table.c.site == site)
        with self._transaction() as conn:
            return [Location(**row._mapping) for row in conn.execute(query)]

    def add_records(self, records: Iterable[ClimateRecord]) -> int:
        """
        Insert or replace climate records, one transaction per batch.

        Args:
            records: Records to upsert by primary key

        Returns:
            Number of records written
        """
        stmt = self._insert(cli_table)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(CLI_KEY),
            set_={
                name: stmt.excluded[name]
                for name in TRACKED_INDICES + EXTRA_INDICES
            },
        )

        written = 0
        batch: List[dict] = []
        for record in records:
            batch.append(asdict(record))
            if len(batch) >= self.config.write_batch_size:
                written += self._flush(stmt, batch)
                batch = []
        if batch:
            written += self._flush(stmt, batch)

        return written

    def _flush(self, stmt, batch: List[dict]) -> int:
        with self._transaction() as conn:
            conn.execute(stmt, batch)
        logger.debug(f"Flushed {len(batch)} climate records")
        return len(batch)

    def valid_times_for(self, site: str, model: str) -> List[datetime]:
        """Valid times already stored for a station/model pair."""
        query = (
            select(cli_table.c.valid_time)
            .where(cli_table.c.site == site, cli_table.c.model == model)
            .order_by(cli_table.c.valid_time)
        )
        with self._transaction() as conn:
            return list(conn.execute(query).scalars())

    # Aggregation input

    def pairs(self) -> List[Tuple[str, str]]:
        """All distinct (site, model) pairs with climate records."""
        query = (
            select(cli_table.c.site, cli_table.c.model)
            .distinct()
            .order_by(cli_table.c.site, cli_table.c.model)
        )
        with self._transaction() as conn:
            return [(row.site, row.model) for row in conn.execute(query)]

    def load_records(self, site: str, model: str) -> List[ClimateRecord]:
        """All climate records of a station/model pair, ordered by valid time."""
        query = (
            select(cli_table)
            .where(cli_table.c.site == site, cli_table.c.model == model)
            .order_by(cli_table.c.valid_time)
        )
        with self._transaction() as conn:
            records = [ClimateRecord(**row._mapping) for row in conn.execute(query)]
        logger.info(f"Loaded {len(records)} climate records for {site}/{model}")
        return records

    # Deciles

    def replace_deciles(self, site: str, model: str, rows: List[DecileRow]) -> int:
        """
        Replace every stored decile row of a pair with a new set.

        The delete and all inserts share one transaction, so on any failure
        the previous distributions stay in place.

        Returns:
            Number of rows written
        """
        values = []
        for row in rows:
            if (row.site, row.model) != (site, model):
                raise ValueError(
                    f"Decile row for {row.site}/{row.model} passed to replace "
                    f"for {site}/{model}"
                )
            value = {
                "site": site,
                "model": model,
                "day_of_year": row.day_of_year,
                "hour_of_day": row.hour_of_day,
            }
            for index in TRACKED_INDICES:
                value[decile_column(index)] = row.deciles[index].as_bytes()
            values.append(value)

        with self._transaction() as conn:
            result = conn.execute(
                deciles_table.delete().where(
                    deciles_table.c.site == site, deciles_table.c.model == model
                )
            )
            logger.info(f"Deleted {result.rowcount} existing decile rows for {site}/{model}")
            if values:
                conn.execute(deciles_table.insert(), values)

        logger.info(f"Wrote {len(values)} decile rows for {site}/{model}")
        return len(values)

    def load_deciles(self, site: str, model: str) -> List[DecileRow]:
        """Decoded decile rows of a pair, ordered by bucket."""
        query = (
            select(deciles_table)
            .where(deciles_table.c.site == site, deciles_table.c.model == model)
            .order_by(deciles_table.c.day_of_year, deciles_table.c.hour_of_day)
        )
        rows = []
        with self._transaction() as conn:
            for row in conn.execute(query):
                mapping = row._mapping
                rows.append(
                    DecileRow(
                        site=mapping["site"],
                        model=mapping["model"],
                        day_of_year=mapping["day_of_year"],
                        hour_of_day=mapping["hour_of_day"],
                        deciles={
                            index: Deciles.from_bytes(mapping[decile_column(index)])
                            for index in TRACKED_INDICES
                        },
                    )
                )
        return rows

    def hourly_deciles(
        self,
        site: str,
        model: str,
        index: str,
        start_time: datetime,
        end_time: datetime,
    ) -> List[Tuple[datetime, Deciles]]:
        """
        Deciles of one index for every stored hour in a time range.

        Args:
            site: Station identifier
            model: Model name
            index: Tracked index name
            start_time: Inclusive range start, naive local time
            end_time: Inclusive range end, naive local time, less than 366
                days after start

        Returns:
            (valid time, deciles) pairs ordered by valid time
        """
        if start_time.tzinfo is not None or end_time.tzinfo is not None:
            raise ValueError("start_time and end_time must be naive local times")
        if end_time <= start_time:
            raise ValueError("end_time must be after start_time")
        if end_time - start_time >= timedelta(days=366):
            raise ValueError("Time range must be shorter than 366 days")

        column = deciles_table.c[decile_column(index)]
        query = select(
            deciles_table.c.day_of_year, deciles_table.c.hour_of_day, column
        ).where(deciles_table.c.site == site, deciles_table.c.model == model)

        data = []
        with self._transaction() as conn:
            for doy, hour, blob in conn.execute(query):
                for year in range(start_time.year, end_time.year + 1):
                    valid_time = bucket_datetime(year, doy, hour)
                    if valid_time is None or not start_time <= valid_time <= end_time:
                        continue
                    data.append((valid_time, Deciles.from_bytes(blob)))

        data.sort(key=lambda item: item[0])
        return data

    def close(self):
        """Close database connections."""
        self.engine.dispose()
