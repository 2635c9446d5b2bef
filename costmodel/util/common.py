#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Numeric helpers shared by the cost processors."""
import math

KIB = 1024.0
MIB = 1024.0 * KIB
GIB = 1024.0 * MIB
TIB = 1024.0 * GIB
PIB = 1024.0 * TIB


def is_nan_or_inf(value):
    """Return True when value is NaN or infinite."""
    return math.isnan(value) or math.isinf(value)


def sanitize_float(value):
    """Replace NaN and infinite values with zero."""
    if value is None or is_nan_or_inf(value):
        return 0.0
    return value


def parse_percent_string(percent):
    """Parse a percentage such as "30%" or "30" into a fraction.

    An empty string is zero. Raises ValueError on malformed input.
    """
    percent = percent.strip()
    if not percent:
        return 0.0
    if percent.endswith("%"):
        percent = percent[:-1]
    return float(percent) * 0.01


def safe_float(value, default=0.0):
    """Parse a float from a pricing string, returning default for blank values."""
    if value is None or value == "":
        return default
    return float(value)
