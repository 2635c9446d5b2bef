#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""In-memory metric data source.

Serves pre-recorded series, typically from fixtures, without a metric
backend. Samples are sliced to the queried window so the same recording can
back both a single pass and a batched computation.
"""
from collections import defaultdict
from concurrent.futures import Future as ConcurrentFuture
from datetime import timedelta

from costmodel.source.datasource import DataSource
from costmodel.source.datasource import MetricsQuerier
from costmodel.source.datasource import QUERY_DECODERS
from costmodel.source.querygroup import Future
from costmodel.source.result import QueryResult


class InMemoryMetricsQuerier(MetricsQuerier):
    """Returns recorded QueryResult rows for each named query."""

    def __init__(self, results=None, errors=None):
        self.results = defaultdict(list)
        for name, rows in (results or {}).items():
            self.results[name].extend(rows)
        self.errors = dict(errors or {})
        self.calls = defaultdict(int)

    def add(self, name, metric, values):
        """Record a series for the named query."""
        self.results[name].append(QueryResult(metric, values))

    def _slice(self, name, start, end):
        lower, upper = start.timestamp(), end.timestamp()
        for result in self.results.get(name, []):
            values = [v for v in result.values if lower <= v.timestamp <= upper]
            if values:
                yield QueryResult(result.metric, values, cluster_label=result.cluster_label)

    def query(self, name, start, end):
        if name not in QUERY_DECODERS:
            raise KeyError(f"unknown query: {name}")
        self.calls[name] += 1
        pending = ConcurrentFuture()
        if name in self.errors:
            pending.set_exception(self.errors[name])
        else:
            pending.set_result(list(self._slice(name, start, end)))
        return Future(QUERY_DECODERS[name], pending, query=name)


class InMemoryDataSource(DataSource):
    """A DataSource over recorded series."""

    def __init__(self, results=None, errors=None, resolution=None, batch_duration=None, coverage=None):
        self._metrics = InMemoryMetricsQuerier(results, errors)
        self._resolution = resolution or timedelta(minutes=1)
        self._batch_duration = batch_duration or timedelta(days=1)
        self._coverage = coverage

    @property
    def metrics(self):
        return self._metrics

    @property
    def resolution(self):
        return self._resolution

    @property
    def batch_duration(self):
        return self._batch_duration

    def date_range(self, limit_days):
        if self._coverage is None:
            raise ValueError("no recorded data coverage")
        return self._coverage
