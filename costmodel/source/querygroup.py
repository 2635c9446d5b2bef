#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Scatter-gather primitives for metric queries.

A query is submitted to an executor and wrapped in a ``Future`` that decodes
the generic rows into typed rows when awaited. Futures registered with a
``QueryGroup`` share an error collector, so a caller can await every query
and then fail the whole computation if any required input is missing::

    grp = QueryGroup()
    pods = with_group(grp, querier.query(PODS, start, end))
    cpu = with_group(grp, querier.query(CPU_CORES_ALLOCATED, start, end))

    pod_rows = pods.await_()
    cpu_rows = cpu.await_()
    if grp.has_errors():
        raise grp.error()

Siblings are never cancelled when one of them fails.
"""
import threading

from costmodel.exceptions import QueryError
from costmodel.exceptions import QueryGroupError
from costmodel.source.decoders import decode_all


class QueryErrorCollector:
    """Thread safe, ordered collection of query errors."""

    def __init__(self):
        self._errors = []
        self._lock = threading.Lock()

    def append(self, error):
        with self._lock:
            self._errors.append(error)

    def is_error(self):
        with self._lock:
            return bool(self._errors)

    def errors(self):
        with self._lock:
            return list(self._errors)


class Future:
    """A pending query that resolves into decoded rows."""

    def __init__(self, decoder, pending=None, query="", results=None):
        self.decoder = decoder
        self.pending = pending
        self.query = query
        self._results = results

    @classmethod
    def from_results(cls, results, query=""):
        """Wrap rows that are already decoded."""
        return cls(None, query=query, results=list(results))

    def _resolve(self):
        if self._results is not None:
            return self._results
        try:
            raw = self.pending.result()
        except Exception as err:
            raise QueryError(self.query, err) from err
        return decode_all(raw, self.decoder)

    def await_(self):
        """Block until the query finishes and return its decoded rows.

        Raises QueryError when the query failed.
        """
        return self._resolve()


class QueryGroupFuture:
    """A future registered with a query group."""

    def __init__(self, collector, future):
        self._collector = collector
        self._future = future

    def await_(self):
        """Return the decoded rows, or an empty list after recording the error."""
        try:
            return self._future.await_()
        except QueryError as err:
            self._collector.append(err)
            return []


class QueryGroup:
    """Shared error collection for a set of concurrent queries."""

    def __init__(self):
        self._collector = QueryErrorCollector()

    def has_errors(self):
        return self._collector.is_error()

    def errors(self):
        return self._collector.errors()

    def error(self):
        """Return a composite error for every failed query, or None."""
        if not self._collector.is_error():
            return None
        return QueryGroupError(self._collector.errors())


def with_group(group, future):
    """Register a future with a query group."""
    return QueryGroupFuture(group._collector, future)


def await_queries(group, metrics, names, start, end):
    """Submit the named queries in one group and return their rows by name.

    Every query is started before any is awaited. Failed queries yield an
    empty list and are recorded on the group.
    """
    futures = {name: with_group(group, metrics.query(name, start, end)) for name in names}
    return {name: future.await_() for name, future in futures.items()}
