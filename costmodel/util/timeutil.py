#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Time helpers for metric series."""
from datetime import datetime
from datetime import timezone

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

_DURATION_UNITS = (("d", SECONDS_PER_DAY), ("h", SECONDS_PER_HOUR), ("m", SECONDS_PER_MINUTE), ("s", 1))


def utcnow():
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def from_timestamp(timestamp):
    """Convert a unix timestamp in seconds to a UTC datetime, dropping fractions."""
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)


def duration_string(duration):
    """Render a timedelta as a Prometheus duration using its largest exact unit.

    Returns an empty string for non-positive durations.
    """
    seconds = int(duration.total_seconds())
    if seconds <= 0:
        return ""
    for suffix, size in _DURATION_UNITS:
        if seconds % size == 0:
            return f"{seconds // size}{suffix}"
    return f"{seconds}s"


def minutes_between(start, end):
    """Return the number of minutes between two datetimes."""
    return (end - start).total_seconds() / SECONDS_PER_MINUTE


def calculate_start_end(data, resolution, window):
    """Return the active (start, end) of a sample series within a window.

    A series observed at a single timestamp is credited one resolution of
    activity, centred on that sample. The result is clamped to the window
    and never extends past the current time. Returns None for empty series.
    """
    if not data:
        return None
    start = from_timestamp(data[0].timestamp)
    end = from_timestamp(data[-1].timestamp)

    if start == end:
        start = start - resolution / 2
        end = end + resolution / 2

    if window.start is not None and start < window.start:
        start = window.start
    if window.end is not None and end > window.end:
        end = window.end

    now = utcnow()
    if end > now:
        end = now

    return start, end
