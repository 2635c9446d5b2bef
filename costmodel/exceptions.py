#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Cost Model Exceptions."""


class CostModelError(Exception):
    """Cost Model Error."""


class ConfigurationError(CostModelError):
    """Cost Model Configuration Error."""


class QueryError(CostModelError):
    """Metric Query Error."""

    def __init__(self, query, error):
        """Wrap an error raised while running a single query."""
        super().__init__(f"{query}: {error}")
        self.query = query
        self.error = error


class QueryGroupError(CostModelError):
    """Composite error for every failed query in a group."""

    def __init__(self, errors):
        """Collect the query errors of a group."""
        self.errors = list(errors)
        super().__init__("; ".join(str(err) for err in self.errors))


class PrometheusConnectionError(CostModelError):
    """Prometheus Connection Error."""


class PrometheusResponseError(CostModelError):
    """Prometheus Response Error."""


class AllocationComputeError(CostModelError):
    """Allocation Compute Error."""


class AccumulationError(CostModelError):
    """Allocation Accumulation Error."""


class FilterParseError(CostModelError):
    """Allocation Filter Parse Error."""
