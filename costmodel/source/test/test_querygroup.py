#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test the query group primitives."""
from concurrent.futures import Future as ConcurrentFuture

from costmodel.exceptions import QueryError
from costmodel.exceptions import QueryGroupError
from costmodel.source import datasource as q
from costmodel.source.decoders import decode_pods
from costmodel.source.memory import InMemoryMetricsQuerier
from costmodel.source.querygroup import await_queries
from costmodel.source.querygroup import Future
from costmodel.source.querygroup import QueryGroup
from costmodel.source.querygroup import with_group
from costmodel.source.result import QueryResult
from costmodel.source.result import Vector
from costmodel.test import CostModelTestCase


def resolved(value=None, error=None):
    pending = ConcurrentFuture()
    if error is not None:
        pending.set_exception(error)
    else:
        pending.set_result(value)
    return pending


class FutureTest(CostModelTestCase):
    """Test cases for Future."""

    def test_decodes_results(self):
        """Test that awaited rows are decoded."""
        raw = [QueryResult({"namespace": "shop", "pod": "web-1"}, [Vector(1.0, 1.0)])]

        rows = Future(decode_pods, resolved(raw), query="pods").await_()

        self.assertEqual(rows[0].pod, "web-1")

    def test_wraps_error(self):
        """Test that a failed query raises QueryError naming the query."""
        future = Future(decode_pods, resolved(error=RuntimeError("boom")), query="pods")

        with self.assertRaises(QueryError) as ctx:
            future.await_()
        self.assertEqual(ctx.exception.query, "pods")
        self.assertEqual(str(ctx.exception), "pods: boom")

    def test_from_results(self):
        """Test that already decoded rows are returned as is."""
        self.assertEqual(Future.from_results(["row"]).await_(), ["row"])


class QueryGroupTest(CostModelTestCase):
    """Test cases for QueryGroup."""

    def test_collects_errors(self):
        """Test that failed members yield no rows and are collected."""
        group = QueryGroup()
        ok = with_group(group, Future(decode_pods, resolved([]), query="pods"))
        bad = with_group(group, Future(decode_pods, resolved(error=ValueError("bad")), query="pods_uid"))

        self.assertEqual(ok.await_(), [])
        self.assertFalse(group.has_errors())
        self.assertIsNone(group.error())

        self.assertEqual(bad.await_(), [])
        self.assertTrue(group.has_errors())
        error = group.error()
        self.assertIsInstance(error, QueryGroupError)
        self.assertEqual([err.query for err in error.errors], ["pods_uid"])
        self.assertIn("pods_uid: bad", str(error))

    def test_await_queries(self):
        """Test that every named query is awaited despite failures."""
        querier = InMemoryMetricsQuerier(errors={q.CPU_REQUESTS: RuntimeError("down")})
        querier.add(q.CPU_CORES_ALLOCATED, {"pod": "web-1"}, [Vector(1725148800.0, 0.5)])
        group = QueryGroup()

        rows = await_queries(
            group, querier, [q.CPU_CORES_ALLOCATED, q.CPU_REQUESTS, q.RAM_REQUESTS], self.start, self.end
        )

        self.assertEqual(len(rows[q.CPU_CORES_ALLOCATED]), 1)
        self.assertEqual(rows[q.CPU_REQUESTS], [])
        self.assertEqual(rows[q.RAM_REQUESTS], [])
        self.assertEqual(len(group.errors()), 1)
