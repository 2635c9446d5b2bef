#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Common helpers shared across the cost model."""
from datetime import datetime
from datetime import timedelta

from costmodel.util.timeutil import duration_string

JSON_SCALARS = (str, int, float, bool, type(None))


def _log_value(value):
    if isinstance(value, JSON_SCALARS):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return duration_string(value) or "0s"
    if isinstance(value, (list, tuple, set)):
        return [_log_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _log_value(item) for key, item in value.items()}
    return str(value)


def log_json(tracing_id="", *, msg, context=None, **kwargs):
    """Create a JSON-serializable statement for logging.

    Datetimes render as ISO 8601, durations as Prometheus duration strings,
    and any other object, such as a Window or an error, by its string form.
    """
    stmt = {"message": msg}
    if tracing_id:
        stmt["tracing_id"] = tracing_id
    if context:
        stmt |= context
    stmt |= kwargs
    return {key: _log_value(value) for key, value in stmt.items()}
