"""
Data models for the time-series query gateway.
Defines the stored table plus the immutable points exchanged between components.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Float, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()

SUPPORTED_WINDOWS = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "1h": timedelta(hours=1),
    "1d": timedelta(days=1),
}
SUPPORTED_AGGREGATIONS = ("MIN", "MAX", "AVG", "SUM")
MAX_TIME_RANGE = timedelta(days=2 * 365)


class TimeSeriesRecord(Base):
    """A single raw measurement row. The table is append-only."""
    __tablename__ = "time_series_data"

    time = Column(DateTime(timezone=True), nullable=False)
    value = Column(Float, nullable=False)

    # The table has no key of its own; duplicates at one timestamp are allowed.
    __mapper_args__ = {"primary_key": [time, value]}
    __table_args__ = (
        Index("idx_time_series_data_time", time.desc()),
    )

    def __repr__(self):
        return f"<TimeSeriesRecord(time={self.time}, value={self.value})>"


@dataclass(frozen=True)
class TimeSeriesPoint:
    """Raw measurement produced by ingestion."""

    timestamp: datetime
    value: float


@dataclass(frozen=True)
class AggregatedPoint:
    """One aggregated value for the bucket starting at ``bucket_start``."""

    bucket_start: datetime
    value: float
