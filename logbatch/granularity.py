#!/usr/bin/env python3
"""
Time bucketing for Log Batch Upload System
Maps wall-clock time to complete time buckets and renders bucket templates

A bucket is identified by its start time. Templates use strftime directives,
so a filename template such as '%Y%m%d%H.*\\.unbid\\.log' renders to the
regular expression matching every file written during that hour.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List

logger = logging.getLogger(__name__)

# Metadata directory names are the bucket start at second precision
BUCKET_KEY_FORMAT = "%Y%m%d%H%M%S"


class Granularity(Enum):
    """
    Bucketing unit, valued by its length in minutes.

    Example:
        >>> g = Granularity.parse('hour')
        >>> g.prev(datetime(2015, 1, 22, 10, 17))
        datetime.datetime(2015, 1, 22, 9, 0)
    """

    MINUTE = 1
    FIVE_MINUTE = 5
    FIFTEEN_MINUTE = 15
    THIRTY_MINUTE = 30
    HOUR = 60
    SIX_HOUR = 360
    DAY = 1440
    WEEK = 10080

    @classmethod
    def parse(cls, name: str) -> "Granularity":
        """
        Parse granularity name case-insensitively.

        Raises:
            ValueError: If name is not a known granularity
        """
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            valid = ", ".join(g.name.lower() for g in cls)
            raise ValueError(f"Unknown granularity '{name}' (expected one of: {valid})")

    def units(self, count: int = 1) -> timedelta:
        """Length of `count` buckets."""
        return timedelta(minutes=self.value * count)

    def truncate(self, dt: datetime) -> datetime:
        """Start of the bucket containing dt."""
        dt = dt.replace(second=0, microsecond=0)

        if self.value < 60:
            return dt.replace(minute=dt.minute - dt.minute % self.value)

        dt = dt.replace(minute=0)
        if self.value < 1440:
            step = self.value // 60
            return dt.replace(hour=dt.hour - dt.hour % step)

        dt = dt.replace(hour=0)
        if self is Granularity.WEEK:
            # Weeks start on Monday
            return dt - timedelta(days=dt.weekday())
        return dt

    def prev(self, dt: datetime) -> datetime:
        """Start of the most recent complete bucket before dt."""
        return self.truncate(dt) - self.units(1)

    def trailing(self, now: datetime, count: int) -> List["TimeBucket"]:
        """
        Most recent `count` complete buckets, newest first.

        Example:
            >>> [b.key for b in Granularity.HOUR.trailing(datetime(2015, 1, 22, 10, 5), 2)]
            ['20150122090000', '20150122080000']
        """
        latest = self.prev(now)
        return [TimeBucket(latest - self.units(i), self) for i in range(count)]


@dataclass(frozen=True)
class TimeBucket:
    """
    One complete time bucket.

    Attributes:
        start (datetime): Bucket start (already truncated)
        granularity (Granularity): Bucketing unit
    """

    start: datetime
    granularity: Granularity

    @property
    def key(self) -> str:
        """Stable identifier used as metadata directory name."""
        return self.start.strftime(BUCKET_KEY_FORMAT)

    @property
    def end(self) -> datetime:
        return self.start + self.granularity.units(1)

    def format(self, template: str) -> str:
        """Render a strftime template for this bucket."""
        return self.start.strftime(template)

    def __str__(self) -> str:
        return f"{self.granularity.name.lower()}@{self.start.isoformat()}"
