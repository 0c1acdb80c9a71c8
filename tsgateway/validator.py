from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from tsgateway.errors import ValidationError
from tsgateway.models import MAX_TIME_RANGE, SUPPORTED_AGGREGATIONS, SUPPORTED_WINDOWS

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class RequestValidator:
    """Checks query parameters against policy. Holds no mutable state."""

    def __init__(
        self,
        windows=SUPPORTED_WINDOWS,
        aggregations=SUPPORTED_AGGREGATIONS,
        max_time_range=MAX_TIME_RANGE,
    ):
        self.valid_windows = frozenset(windows)
        self.valid_aggregations = frozenset(aggregations)
        self.max_time_range = max_time_range

    def validate(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        window: Optional[str],
        aggregation: Optional[str],
    ):
        """Raise ValidationError on the first rule that fails."""
        if start is None or end is None:
            raise ValidationError("missing timestamp")
        try:
            start, end = ensure_utc(start), ensure_utc(end)
        except OverflowError as exc:
            # Offsets that push the instant outside the representable years.
            raise ValidationError("time range exceeds maximum allowed") from exc
        if start in (EPOCH, ZERO_TIME) or end in (EPOCH, ZERO_TIME):
            raise ValidationError("missing timestamp")

        if start >= end:
            raise ValidationError("start time must be before end time")

        if end - start > self.max_time_range:
            raise ValidationError("time range exceeds maximum allowed")

        if not window:
            raise ValidationError("invalid window: ")
        if window not in self.valid_windows:
            raise ValidationError(f"invalid window: {window}")

        if not aggregation:
            raise ValidationError("invalid aggregation")
        if aggregation not in self.valid_aggregations:
            raise ValidationError(f"invalid aggregation: {aggregation}")
