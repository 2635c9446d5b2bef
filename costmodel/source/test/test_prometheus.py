#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test the Prometheus data source."""
import math
from datetime import timedelta

import requests
import requests_mock

from costmodel.exceptions import PrometheusConnectionError
from costmodel.exceptions import PrometheusResponseError
from costmodel.exceptions import QueryError
from costmodel.source import datasource as q
from costmodel.source.decoders import PodsResult
from costmodel.source.prometheus import parse_query_response
from costmodel.source.prometheus import PrometheusClient
from costmodel.source.prometheus import PrometheusDataSource
from costmodel.source.prometheus import QUERY_PATH
from costmodel.source.result import Vector
from costmodel.test import CostModelTestCase

ENDPOINT = "http://prometheus:9090"
QUERY_URL = f"{ENDPOINT}{QUERY_PATH}"


def vector_payload(*rows):
    """Return a successful instant vector payload for (metric, value) rows."""
    return {
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [{"metric": metric, "value": [1725148800, str(value)]} for metric, value in rows],
        },
    }


class ParseQueryResponseTest(CostModelTestCase):
    """Test cases for parse_query_response."""

    def test_vector(self):
        """Test that instant vectors become single sample results."""
        payload = vector_payload(({"namespace": "shop", "cluster_id": "c1"}, 2.5))

        results = parse_query_response("up", payload)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].get_namespace(), "shop")
        self.assertEqual(results[0].get_cluster(), "c1")
        self.assertEqual(results[0].values, [Vector(1725148800.0, 2.5)])

    def test_matrix(self):
        """Test that range vectors keep every sample."""
        payload = {
            "status": "success",
            "data": {"result": [{"metric": {}, "values": [[1, "1"], [61, "2"]]}]},
        }

        results = parse_query_response("up", payload)

        self.assertEqual([v.value for v in results[0].values], [1.0, 2.0])

    def test_custom_cluster_label(self):
        """Test that the cluster is read from the configured label."""
        payload = vector_payload(({"cluster": "c2"}, 1))

        results = parse_query_response("up", payload, cluster_label="cluster")

        self.assertEqual(results[0].get_cluster(), "c2")

    def test_nan_logged(self):
        """Test that NaN samples are kept and warned about."""
        payload = vector_payload(({}, "NaN"))

        with self.assertLogs("costmodel.source.prometheus", level="WARNING") as logger:
            results = parse_query_response("up", payload)

        self.assertTrue(math.isnan(results[0].values[0].value))
        self.assertIn("NaN or Inf", logger.output[0])

    def test_error_status(self):
        """Test that an error payload raises with its type and message."""
        payload = {"status": "error", "errorType": "bad_data", "error": "parse error"}

        with self.assertRaisesRegex(PrometheusResponseError, "bad_data: parse error"):
            parse_query_response("up{", payload)

    def test_malformed(self):
        """Test that malformed payloads are rejected."""
        for payload in (
            [],
            {"status": "success"},
            {"data": {"result": {}}},
            {"data": {"result": [{"value": [1, "1"]}]}},
            {"data": {"result": [{"metric": {}}]}},
            {"data": {"result": [{"metric": {}, "value": [1]}]}},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(PrometheusResponseError):
                    parse_query_response("up", payload)


class PrometheusClientTest(CostModelTestCase):
    """Test cases for PrometheusClient."""

    def setUp(self):
        """Set up a client."""
        super().setUp()
        self.client = PrometheusClient(endpoint=f"{ENDPOINT}/", max_retries=2, default_wait=0)

    @requests_mock.Mocker()
    def test_query(self, mock):
        """Test that a query sends the PromQL and evaluation time."""
        mock.get(QUERY_URL, json=vector_payload(({}, 1)))

        payload = self.client.query("up", self.end)

        self.assertEqual(payload["status"], "success")
        self.assertEqual(mock.last_request.qs["query"], ["up"])
        self.assertEqual(float(mock.last_request.qs["time"][0]), self.end.timestamp())

    @requests_mock.Mocker()
    def test_headers(self, mock):
        """Test that auth and tenant headers are sent when configured."""
        mock.get(QUERY_URL, json=vector_payload())
        client = PrometheusClient(endpoint=ENDPOINT, bearer_token="token", scope_org_id="tenant-1")

        client.query("up", self.end)

        headers = mock.last_request.headers
        self.assertEqual(headers["Authorization"], "Bearer token")
        self.assertEqual(headers["X-Scope-OrgID"], "tenant-1")

    @requests_mock.Mocker()
    def test_no_optional_headers(self, mock):
        """Test that empty credentials send no auth headers."""
        mock.get(QUERY_URL, json=vector_payload())
        client = PrometheusClient(endpoint=ENDPOINT, bearer_token="", scope_org_id="")

        client.query("up", self.end)

        self.assertNotIn("Authorization", mock.last_request.headers)
        self.assertNotIn("X-Scope-OrgID", mock.last_request.headers)

    @requests_mock.Mocker()
    def test_rate_limit_retried(self, mock):
        """Test that rate limited responses are retried."""
        mock.get(
            QUERY_URL,
            [
                {"status_code": 429, "headers": {"Retry-After": "0"}},
                {"status_code": 503},
                {"json": vector_payload(({}, 1))},
            ],
        )

        payload = self.client.query("up", self.end)

        self.assertEqual(mock.call_count, 3)
        self.assertEqual(payload["status"], "success")

    @requests_mock.Mocker()
    def test_rate_limit_exhausted(self, mock):
        """Test that retries stop after the configured maximum."""
        mock.get(QUERY_URL, status_code=503, text="unavailable")

        with self.assertRaises(PrometheusConnectionError):
            self.client.query("up", self.end)
        self.assertEqual(mock.call_count, 3)

    @requests_mock.Mocker()
    def test_rate_limit_not_retried_when_disabled(self, mock):
        """Test that rate limits are not retried when retry is disabled."""
        mock.get(QUERY_URL, status_code=429, json={"status": "error", "errorType": "rate", "error": "slow down"})
        client = PrometheusClient(endpoint=ENDPOINT, retry_on_rate_limit=False)

        payload = client.query("up", self.end)

        self.assertEqual(mock.call_count, 1)
        self.assertEqual(payload["errorType"], "rate")

    @requests_mock.Mocker()
    def test_server_error(self, mock):
        """Test that a 5xx response is a connection error."""
        mock.get(QUERY_URL, status_code=502, text="bad gateway")

        with self.assertRaisesRegex(PrometheusConnectionError, ">=500 Response from Prometheus: 502"):
            self.client.query("up", self.end)

    @requests_mock.Mocker()
    def test_connection_error(self, mock):
        """Test that transport failures are wrapped."""
        mock.get(QUERY_URL, exc=requests.exceptions.ConnectTimeout)

        with self.assertLogs("costmodel.source.prometheus", level="WARNING"):
            with self.assertRaises(PrometheusConnectionError):
                self.client.query("up", self.end)

    @requests_mock.Mocker()
    def test_invalid_json(self, mock):
        """Test that a non-JSON body is a response error."""
        mock.get(QUERY_URL, text="<html>")

        with self.assertRaisesRegex(PrometheusResponseError, "Error parsing Prometheus response"):
            self.client.query("up", self.end)


class PrometheusDataSourceTest(CostModelTestCase):
    """Test cases for PrometheusDataSource."""

    def setUp(self):
        """Set up a data source over a mocked server."""
        super().setUp()
        client = PrometheusClient(endpoint=ENDPOINT, default_wait=0)
        self.data_source = PrometheusDataSource(
            client=client,
            resolution=timedelta(minutes=1),
            batch_duration=timedelta(hours=6),
            max_concurrency=2,
            cluster_label="cluster_id",
            cluster_filter='cluster_id="c1"',
            offset_resolution=False,
        )

    def tearDown(self):
        """Stop the query executor."""
        self.data_source.close()
        super().tearDown()

    def test_sampling_parameters(self):
        """Test that the configured resolution and batch size are exposed."""
        self.assertEqual(self.data_source.resolution, timedelta(minutes=1))
        self.assertEqual(self.data_source.batch_duration, timedelta(hours=6))

    def test_render(self):
        """Test that templates are rendered with the window and filter."""
        promql = self.data_source.metrics.render(q.PODS, self.start, self.end)

        self.assertEqual(
            promql,
            'avg(kube_pod_container_status_running{cluster_id="c1"} != 0) by (pod, namespace, cluster_id)[1h:1m]',
        )

    def test_render_offset_resolution(self):
        """Test that subquery ranges are extended by one step when offset."""
        data_source = PrometheusDataSource(
            client=self.data_source.client, resolution=timedelta(minutes=5), offset_resolution=True
        )
        self.addCleanup(data_source.close)

        promql = data_source.metrics.render(q.PVC_INFO, self.start, self.end)

        self.assertIn("[65m:5m]", promql)

    def test_render_empty_window(self):
        """Test that an empty window cannot be rendered."""
        with self.assertRaises(ValueError):
            self.data_source.metrics.render(q.PODS, self.start, self.start)

    @requests_mock.Mocker()
    def test_query_decodes_rows(self, mock):
        """Test that a named query resolves into typed rows."""
        mock.get(QUERY_URL, json=vector_payload(({"cluster_id": "c1", "namespace": "shop", "pod": "web-1"}, 1)))

        rows = self.data_source.metrics.query(q.PODS, self.start, self.end).await_()

        self.assertEqual(rows, [PodsResult("c1", "shop", "web-1", "", [Vector(1725148800.0, 1.0)])])
        self.assertIn("kube_pod_container_status_running", mock.last_request.qs["query"][0])

    def test_unknown_query(self):
        """Test that a name outside the query catalogue is rejected."""
        with self.assertRaises(KeyError):
            self.data_source.metrics.query("bogus", self.start, self.end)

    @requests_mock.Mocker()
    def test_query_failure(self, mock):
        """Test that a failed query surfaces as a QueryError when awaited."""
        mock.get(QUERY_URL, status_code=500, text="boom")

        future = self.data_source.metrics.query(q.CPU_CORES_ALLOCATED, self.start, self.end)

        with self.assertRaises(QueryError):
            future.await_()

    @requests_mock.Mocker()
    def test_cpu_usage_max_falls_back_to_subquery(self, mock):
        """Test that the irate subquery runs when the recording rule is absent."""
        row = {"cluster_id": "c1", "namespace": "shop", "pod": "web-1", "container": "web", "node": "n1"}
        mock.get(QUERY_URL, [{"json": vector_payload()}, {"json": vector_payload((row, 0.7))}])

        rows = self.data_source.metrics.query(q.CPU_USAGE_MAX, self.start, self.end).await_()

        self.assertEqual(mock.call_count, 2)
        self.assertIn("kubecost_container_cpu_usage_irate", mock.request_history[0].qs["query"][0])
        self.assertIn("irate(container_cpu_usage_seconds_total", mock.request_history[1].qs["query"][0])
        self.assertEqual(rows[0].container, "web")
        self.assertEqual(rows[0].data[0].value, 0.7)

    @requests_mock.Mocker()
    def test_date_range(self, mock):
        """Test that data coverage is read from the oldest and newest samples."""
        mock.get(QUERY_URL, [{"json": vector_payload(({}, 1725148800))}, {"json": vector_payload(({}, 1725235200))}])

        oldest, newest = self.data_source.date_range(7)

        self.assertEqual(oldest, self.start)
        self.assertEqual(newest, self.start + timedelta(days=1))

    @requests_mock.Mocker()
    def test_date_range_no_data(self, mock):
        """Test that missing coverage samples are an error."""
        mock.get(QUERY_URL, json=vector_payload())

        with self.assertRaisesRegex(PrometheusResponseError, "no data"):
            self.data_source.date_range(7)
