"""
Database connection and repository implementation.
Provides the narrow repository contract used by the query path and ingestion,
and its TimescaleDB-backed implementation.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Sequence

from sqlalchemy import create_engine, insert, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from tsgateway.config import Settings
from tsgateway.context import RequestContext
from tsgateway.errors import StoreError
from tsgateway.models import AggregatedPoint, Base, TimeSeriesPoint, TimeSeriesRecord

logger = logging.getLogger(__name__)

BUCKET_INTERVALS = {
    "1m": "1 minute",
    "5m": "5 minutes",
    "1h": "1 hour",
    "1d": "1 day",
}
AGGREGATE_EXPRESSIONS = {
    "MIN": "MIN(value)",
    "MAX": "MAX(value)",
    "AVG": "AVG(value)",
    "SUM": "SUM(value)",
}


class TimeSeriesRepository(ABC):
    """Storage collaborator. Bucketing and aggregation are the store's job."""

    @abstractmethod
    def query(
        self,
        ctx: RequestContext,
        start: datetime,
        end: datetime,
        window: str,
        aggregation: str,
    ) -> list[AggregatedPoint]:
        """Return one point per non-empty bucket in ``[start, end)``, ascending."""
        raise NotImplementedError

    @abstractmethod
    def batch_insert(self, ctx: RequestContext, points: Sequence[TimeSeriesPoint]) -> None:
        """Insert all points in one transaction; nothing is written on failure."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


def build_bucket_query(window: str, aggregation: str):
    """Build the time_bucket statement for a whitelisted window and aggregation."""
    if window not in BUCKET_INTERVALS:
        raise ValueError(f"invalid window: {window}")
    if aggregation not in AGGREGATE_EXPRESSIONS:
        raise ValueError(f"invalid aggregation type: {aggregation}")

    return text(
        f"""
        SELECT
            time_bucket(CAST(:bucket AS INTERVAL), time) AS bucket_time,
            {AGGREGATE_EXPRESSIONS[aggregation]} AS agg_value
        FROM {TimeSeriesRecord.__tablename__}
        WHERE time >= :start AND time < :end
        GROUP BY bucket_time
        ORDER BY bucket_time
        """
    ).bindparams(bucket=BUCKET_INTERVALS[window])


def create_db_engine(settings: Settings) -> Engine:
    """Create the shared engine with connection pooling."""
    return create_engine(
        settings.sqlalchemy_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_pre_ping=True,  # Verify connections before using
        echo=False,
    )


def init_db(engine: Engine, create_hypertable: bool = True):
    """Initialize database schema. Safe to call multiple times."""
    logger.info("Initializing database schema...")
    Base.metadata.create_all(bind=engine)

    if create_hypertable and engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS timescaledb"))
            conn.execute(
                text(
                    "SELECT create_hypertable('time_series_data', 'time', "
                    "chunk_time_interval => INTERVAL '1 day', "
                    "if_not_exists => TRUE, migrate_data => TRUE)"
                )
            )
    logger.info("Database schema initialized successfully")


class PostgresRepository(TimeSeriesRepository):
    """TimescaleDB repository over a pooled SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @classmethod
    def connect(cls, settings: Settings) -> "PostgresRepository":
        """Open the engine, verify connectivity and make sure the schema exists."""
        engine = create_db_engine(settings)
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            init_db(engine, create_hypertable=settings.db_create_hypertable)
        except SQLAlchemyError as exc:
            engine.dispose()
            raise StoreError(f"failed to open repository: {exc}") from exc
        return cls(engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager for database sessions.
        Commits on success, rolls back on any error.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def _apply_deadline(self, session: Session, ctx: RequestContext):
        remaining = ctx.remaining()
        if remaining is None or self.engine.dialect.name != "postgresql":
            return
        timeout_ms = max(int(remaining * 1000), 1)
        session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    def query(self, ctx, start, end, window, aggregation):
        ctx.check()
        try:
            statement = build_bucket_query(window, aggregation)
            with self.session() as session:
                self._apply_deadline(session, ctx)
                rows = session.execute(statement, {"start": start, "end": end}).all()
        except (SQLAlchemyError, ValueError) as exc:
            raise StoreError(f"query: {exc}") from exc

        return [AggregatedPoint(bucket_start=row.bucket_time, value=float(row.agg_value)) for row in rows]

    def batch_insert(self, ctx, points):
        if not points:
            return
        ctx.check()
        rows = [{"time": p.timestamp, "value": p.value} for p in points]
        try:
            with self.session() as session:
                self._apply_deadline(session, ctx)
                session.execute(insert(TimeSeriesRecord.__table__), rows)
        except SQLAlchemyError as exc:
            raise StoreError(f"batch insert: {exc}") from exc

        logger.debug("Inserted data points", extra={"count": len(rows)})

    def close(self):
        logger.info("Closing database connections")
        self.engine.dispose()
