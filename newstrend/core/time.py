"""Time and bucket utilities for keyword timeseries."""

from datetime import datetime, timezone
from typing import Optional


def get_current_utc_time() -> datetime:
    """Get current time in UTC."""
    return datetime.now(timezone.utc)


def normalize_timezone(dt: datetime, target_tz: timezone = timezone.utc) -> datetime:
    """
    Normalize datetime to target timezone.

    Args:
        dt: Input datetime
        target_tz: Target timezone (default UTC)

    Returns:
        Datetime in target timezone
    """
    if dt.tzinfo is None:
        # Assume UTC if no timezone
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(target_tz)


def calculate_bucket_time(dt: Optional[datetime] = None, bucket_minutes: int = 5) -> datetime:
    """
    Floor a datetime to its N-minute bucket boundary, in UTC.

    Args:
        dt: Reference time (defaults to now)
        bucket_minutes: Bucket width in minutes

    Returns:
        Start of the bucket containing ``dt``
    """
    if bucket_minutes <= 0:
        raise ValueError("bucket_minutes must be positive")

    dt = normalize_timezone(dt or get_current_utc_time())
    bucket_seconds = bucket_minutes * 60
    epoch_seconds = int(dt.timestamp())
    floored = epoch_seconds - (epoch_seconds % bucket_seconds)
    return datetime.fromtimestamp(floored, tz=timezone.utc)

