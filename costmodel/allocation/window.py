#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Half-open UTC time windows."""
import re
from datetime import timedelta
from datetime import timezone

import ciso8601

from costmodel.util.timeutil import SECONDS_PER_MINUTE
from costmodel.util.timeutil import utcnow

_DURATION_RE = re.compile(r"^(\d+)([mhd])$")
_DURATION_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


class Window:
    """A half-open interval [start, end) of UTC datetimes.

    Either bound may be None for an open window. Windows are immutable; the
    expand and set helpers return new windows.
    """

    __slots__ = ("_start", "_end")

    def __init__(self, start, end):
        if start is not None and end is not None and end < start:
            raise ValueError(f"window end {end} precedes start {start}")
        self._start = start
        self._end = end

    @property
    def start(self):
        return self._start

    @property
    def end(self):
        return self._end

    def __eq__(self, other):
        if not isinstance(other, Window):
            return NotImplemented
        return self._start == other._start and self._end == other._end

    def __hash__(self):
        return hash((self._start, self._end))

    def __repr__(self):
        return f"Window({self._start!r}, {self._end!r})"

    def __str__(self):
        start = self._start.isoformat() if self._start else "nil"
        end = self._end.isoformat() if self._end else "nil"
        return f"[{start}, {end})"

    def clone(self):
        return Window(self._start, self._end)

    def is_open(self):
        return self._start is None or self._end is None

    def is_empty(self):
        return not self.is_open() and self._start == self._end

    def duration(self):
        if self.is_open():
            return timedelta(0)
        return self._end - self._start

    def minutes(self):
        return self.duration().total_seconds() / SECONDS_PER_MINUTE

    def hours(self):
        return self.minutes() / 60.0

    def contains(self, moment):
        if self._start is not None and moment < self._start:
            return False
        if self._end is not None and moment >= self._end:
            return False
        return True

    def contains_window(self, other):
        """Return True when other lies within this window."""
        if self._start is not None and (other.start is None or other.start < self._start):
            return False
        if self._end is not None and (other.end is None or other.end > self._end):
            return False
        return True

    def overlaps(self, other):
        if self.is_open() or other.is_open():
            return True
        return self._start < other.end and other.start < self._end

    def expand_start(self, start):
        if self._start is None or start < self._start:
            return Window(start, self._end)
        return self.clone()

    def expand_end(self, end):
        if self._end is None or end > self._end:
            return Window(self._start, end)
        return self.clone()

    def expand(self, other):
        """Return the smallest window containing both windows."""
        window = self
        if other.start is not None:
            window = window.expand_start(other.start)
        if other.end is not None:
            window = window.expand_end(other.end)
        return window

    def set_start(self, start):
        return Window(start, self._end)

    def set_end(self, end):
        return Window(self._start, end)

    def split(self, step):
        """Split the window into consecutive windows of at most step."""
        windows = []
        start = self._start
        while start < self._end:
            end = min(start + step, self._end)
            windows.append(Window(start, end))
            start = end
        return windows


def _parse_timestamp(text):
    moment = ciso8601.parse_datetime(text.strip())
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_window(text, now=None):
    """Parse a window from ``<start>,<end>`` ISO 8601 timestamps or a duration.

    A duration such as ``30m``, ``24h`` or ``7d`` names the window ending at
    the current minute. Timestamps without an offset are read as UTC.
    Raises ValueError for malformed input.
    """
    text = (text or "").strip()
    match = _DURATION_RE.match(text)
    if match:
        end = (now or utcnow()).replace(second=0, microsecond=0)
        length = timedelta(**{_DURATION_UNITS[match.group(2)]: int(match.group(1))})
        return Window(end - length, end)

    parts = text.split(",")
    if len(parts) != 2:
        raise ValueError(f"invalid window: {text!r}")
    return Window(_parse_timestamp(parts[0]), _parse_timestamp(parts[1]))
