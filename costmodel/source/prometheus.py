#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Prometheus backed metric data source."""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from http import HTTPStatus
from json.decoder import JSONDecodeError

import requests
from prometheus_client import Counter
from requests.exceptions import ConnectionError
from requests.exceptions import Timeout

from costmodel.common import log_json
from costmodel.common.log import deduped_warning
from costmodel.config import Config
from costmodel.exceptions import PrometheusConnectionError
from costmodel.exceptions import PrometheusResponseError
from costmodel.source import datasource as q
from costmodel.source.datasource import DataSource
from costmodel.source.datasource import MetricsQuerier
from costmodel.source.datasource import QUERY_DECODERS
from costmodel.source.querygroup import Future
from costmodel.source.result import QueryResult
from costmodel.source.result import Vector
from costmodel.util.timeutil import duration_string
from costmodel.util.timeutil import from_timestamp
from costmodel.util.timeutil import utcnow

LOG = logging.getLogger(__name__)
PROMETHEUS_CONNECTION_ERROR_COUNTER = Counter(
    "prometheus_connection_errors", "Number of Prometheus ConnectionErrors."
)
PROMETHEUS_QUERY_COUNTER = Counter("prometheus_queries", "Number of Prometheus queries issued.", ["query_name"])

QUERY_PATH = "/api/v1/query"
RETRYABLE_STATUSES = (HTTPStatus.TOO_MANY_REQUESTS, HTTPStatus.SERVICE_UNAVAILABLE)

# Templates are rendered with %-formatting because PromQL uses braces.
#   filter: optional cluster matcher, e.g. cluster_id="cluster-one"
#   label:  the cluster label name
#   dur:    the query range, e.g. 1h
#   res:    the resolution of range subqueries in minutes
# Templates rendered with `sub_dur` use the offset-adjusted range.
_ALLOCATION = "allocation"
_CLUSTER = "cluster"

PROMQL = {
    q.PODS: (
        'avg(kube_pod_container_status_running{%(filter)s} != 0) by (pod, namespace, %(label)s)[%(sub_dur)s:%(res)dm]'
    ),
    q.PODS_UID: (
        "avg(kube_pod_container_status_running{%(filter)s} != 0) "
        "by (pod, namespace, uid, %(label)s)[%(sub_dur)s:%(res)dm]"
    ),
    q.RAM_BYTES_ALLOCATED: (
        'avg(avg_over_time(container_memory_allocation_bytes{container!="", container!="POD", node!="", '
        "%(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s, provider_id)"
    ),
    q.RAM_REQUESTS: (
        'avg(avg_over_time(kube_pod_container_resource_requests{resource="memory", unit="byte", container!="", '
        'container!="POD", node!="", %(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s)'
    ),
    q.RAM_LIMITS: (
        'avg(avg_over_time(kube_pod_container_resource_limits{resource="memory", unit="byte", container!="", '
        'container!="POD", node!="", %(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s)'
    ),
    q.RAM_USAGE_AVG: (
        'avg(avg_over_time(container_memory_working_set_bytes{container!="", container_name!="POD", '
        'container!="POD", %(filter)s}[%(dur)s])) '
        "by (container_name, container, pod_name, pod, namespace, node, instance, %(label)s)"
    ),
    q.RAM_USAGE_MAX: (
        'max(max_over_time(container_memory_working_set_bytes{container!="", container_name!="POD", '
        'container!="POD", %(filter)s}[%(dur)s])) '
        "by (container_name, container, pod_name, pod, namespace, node, instance, %(label)s)"
    ),
    q.CPU_CORES_ALLOCATED: (
        'avg(avg_over_time(container_cpu_allocation{container!="", container!="POD", node!="", %(filter)s}'
        "[%(dur)s])) by (container, pod, namespace, node, %(label)s)"
    ),
    q.CPU_REQUESTS: (
        'avg(avg_over_time(kube_pod_container_resource_requests{resource="cpu", unit="core", container!="", '
        'container!="POD", node!="", %(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s)'
    ),
    q.CPU_LIMITS: (
        'avg(avg_over_time(kube_pod_container_resource_limits{resource="cpu", unit="core", container!="", '
        'container!="POD", node!="", %(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s)'
    ),
    q.CPU_USAGE_AVG: (
        'avg(rate(container_cpu_usage_seconds_total{container!="", container_name!="POD", container!="POD", '
        "%(filter)s}[%(dur)s])) by (container_name, container, pod_name, pod, namespace, node, instance, %(label)s)"
    ),
    q.GPUS_REQUESTED: (
        'avg(avg_over_time(kube_pod_container_resource_requests{resource="nvidia_com_gpu", container!="",'
        'container!="POD", node!="", %(filter)s}[%(dur)s])) by (container, pod, namespace, node, %(label)s)'
    ),
    q.GPUS_ALLOCATED: (
        'avg(avg_over_time(container_gpu_allocation{container!="", container!="POD", node!="", %(filter)s}'
        "[%(dur)s])) by (container, pod, namespace, node, %(label)s)"
    ),
    q.GPUS_USAGE_AVG: (
        'avg(avg_over_time(DCGM_FI_PROF_GR_ENGINE_ACTIVE{container!=""}[%(dur)s])) '
        "by (container, pod, namespace, %(label)s)"
    ),
    q.GPUS_USAGE_MAX: (
        'max(max_over_time(DCGM_FI_PROF_GR_ENGINE_ACTIVE{container!=""}[%(dur)s])) '
        "by (container, pod, namespace, %(label)s)"
    ),
    q.GPU_INFO: (
        'avg(avg_over_time(DCGM_FI_DEV_DEC_UTIL{container!="",%(filter)s}[%(dur)s])) '
        "by (container, pod, namespace, device, modelName, UUID, %(label)s)"
    ),
    q.IS_GPU_SHARED: (
        'avg(avg_over_time(kube_pod_container_resource_requests{container!="", node != "", pod != "", '
        'container!= "", unit = "integer",  %(filter)s}[%(dur)s])) '
        "by (container, pod, namespace, node, resource, %(label)s)"
    ),
    q.NODE_CPU_PRICE_PER_HR: (
        "avg(avg_over_time(node_cpu_hourly_cost{%(filter)s}[%(dur)s])) "
        "by (node, %(label)s, instance_type, provider_id)"
    ),
    q.NODE_RAM_PRICE_PER_GIB_HR: (
        "avg(avg_over_time(node_ram_hourly_cost{%(filter)s}[%(dur)s])) "
        "by (node, %(label)s, instance_type, provider_id)"
    ),
    q.NODE_GPU_PRICE_PER_HR: (
        "avg(avg_over_time(node_gpu_hourly_cost{%(filter)s}[%(dur)s])) "
        "by (node, %(label)s, instance_type, provider_id)"
    ),
    q.NODE_IS_SPOT: "avg_over_time(kubecost_node_is_spot{%(filter)s}[%(dur)s])",
    q.POD_PVC_ALLOCATION: (
        "avg(avg_over_time(pod_pvc_allocation{%(filter)s}[%(dur)s])) "
        "by (persistentvolume, persistentvolumeclaim, pod, namespace, %(label)s)"
    ),
    q.PVC_BYTES_REQUESTED: (
        "avg(avg_over_time(kube_persistentvolumeclaim_resource_requests_storage_bytes{%(filter)s}[%(dur)s])) "
        "by (persistentvolumeclaim, namespace, %(label)s)"
    ),
    q.PVC_INFO: (
        'avg(kube_persistentvolumeclaim_info{volumename != "", %(filter)s}) '
        "by (persistentvolumeclaim, storageclass, volumename, namespace, %(label)s)[%(sub_dur)s:%(res)dm]"
    ),
    q.PV_BYTES: (
        "avg(avg_over_time(kube_persistentvolume_capacity_bytes{%(filter)s}[%(dur)s])) "
        "by (persistentvolume, %(label)s)"
    ),
    q.PV_PRICE_PER_GIB_HOUR: (
        "avg(avg_over_time(pv_hourly_cost{%(filter)s}[%(dur)s])) "
        "by (%(label)s, persistentvolume, volumename, provider_id)"
    ),
    q.PV_INFO: (
        "avg(avg_over_time(kubecost_pv_info{%(filter)s}[%(dur)s])) "
        "by (%(label)s, storageclass, persistentvolume, provider_id)"
    ),
    q.PV_ACTIVE_MINUTES: (
        "avg(kube_persistentvolume_capacity_bytes{%(filter)s}) by (%(label)s, persistentvolume)[%(sub_dur)s:%(res)dm]"
    ),
    q.PV_USED_AVG: (
        "avg(avg_over_time(kubelet_volume_stats_used_bytes{%(filter)s}[%(dur)s])) "
        "by (%(label)s, persistentvolumeclaim, namespace)"
    ),
    q.PV_USED_MAX: (
        "max(max_over_time(kubelet_volume_stats_used_bytes{%(filter)s}[%(dur)s])) "
        "by (%(label)s, persistentvolumeclaim, namespace)"
    ),
    q.NET_ZONE_GIB: (
        'sum(increase(kubecost_pod_network_egress_bytes_total{internet="false", same_zone="false", '
        'same_region="true", %(filter)s}[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) '
        "/ 1024 / 1024 / 1024"
    ),
    q.NET_ZONE_PRICE_PER_GIB: (
        "avg(avg_over_time(kubecost_network_zone_egress_cost{%(filter)s}[%(dur)s])) by (%(label)s)"
    ),
    q.NET_REGION_GIB: (
        'sum(increase(kubecost_pod_network_egress_bytes_total{internet="false", same_zone="false", '
        'same_region="false", %(filter)s}[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) '
        "/ 1024 / 1024 / 1024"
    ),
    q.NET_REGION_PRICE_PER_GIB: (
        "avg(avg_over_time(kubecost_network_region_egress_cost{%(filter)s}[%(dur)s])) by (%(label)s)"
    ),
    q.NET_INTERNET_GIB: (
        'sum(increase(kubecost_pod_network_egress_bytes_total{internet="true", %(filter)s}'
        "[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) / 1024 / 1024 / 1024"
    ),
    q.NET_INTERNET_PRICE_PER_GIB: (
        "avg(avg_over_time(kubecost_network_internet_egress_cost{%(filter)s}[%(dur)s])) by (%(label)s)"
    ),
    q.NET_INTERNET_SERVICE_GIB: (
        'sum(increase(kubecost_pod_network_egress_bytes_total{internet="true", %(filter)s}'
        "[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, service, %(label)s) / 1024 / 1024 / 1024"
    ),
    q.NET_ZONE_INGRESS_GIB: (
        'sum(increase(kubecost_pod_network_ingress_bytes_total{internet="false", same_zone="false", '
        'same_region="true", %(filter)s}[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) '
        "/ 1024 / 1024 / 1024"
    ),
    q.NET_REGION_INGRESS_GIB: (
        'sum(increase(kubecost_pod_network_ingress_bytes_total{internet="false", same_zone="false", '
        'same_region="false", %(filter)s}[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) '
        "/ 1024 / 1024 / 1024"
    ),
    q.NET_INTERNET_INGRESS_GIB: (
        'sum(increase(kubecost_pod_network_ingress_bytes_total{internet="true", %(filter)s}'
        "[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, %(label)s) / 1024 / 1024 / 1024"
    ),
    q.NET_INTERNET_SERVICE_INGRESS_GIB: (
        'sum(increase(kubecost_pod_network_ingress_bytes_total{internet="true", %(filter)s}'
        "[%(sub_dur)s:%(res)dm])) by (pod_name, namespace, service, %(label)s) / 1024 / 1024 / 1024"
    ),
    q.NET_TRANSFER_BYTES: (
        'sum(increase(container_network_transmit_bytes_total{pod!="", %(filter)s}[%(sub_dur)s:%(res)dm])) '
        "by (pod_name, pod, namespace, %(label)s)"
    ),
    q.NET_RECEIVE_BYTES: (
        'sum(increase(container_network_receive_bytes_total{pod!="", %(filter)s}[%(sub_dur)s:%(res)dm])) '
        "by (pod_name, pod, namespace, %(label)s)"
    ),
    q.NODE_LABELS: "avg_over_time(kube_node_labels{%(filter)s}[%(dur)s])",
    q.NAMESPACE_LABELS: "avg_over_time(kube_namespace_labels{%(filter)s}[%(dur)s])",
    q.NAMESPACE_ANNOTATIONS: "avg_over_time(kube_namespace_annotations{%(filter)s}[%(dur)s])",
    q.POD_LABELS: "avg_over_time(kube_pod_labels{%(filter)s}[%(dur)s])",
    q.POD_ANNOTATIONS: "avg_over_time(kube_pod_annotations{%(filter)s}[%(dur)s])",
    q.SERVICE_LABELS: "avg_over_time(service_selector_labels{%(filter)s}[%(dur)s])",
    q.DEPLOYMENT_LABELS: "avg_over_time(deployment_match_labels{%(filter)s}[%(dur)s])",
    q.STATEFULSET_LABELS: "avg_over_time(statefulSet_match_labels{%(filter)s}[%(dur)s])",
    q.DAEMONSET_LABELS: (
        'sum(avg_over_time(kube_pod_owner{owner_kind="DaemonSet", %(filter)s}[%(dur)s])) '
        "by (pod, owner_name, namespace, %(label)s)"
    ),
    q.JOB_LABELS: (
        'sum(avg_over_time(kube_pod_owner{owner_kind="Job", %(filter)s}[%(dur)s])) '
        "by (pod, owner_name, namespace ,%(label)s)"
    ),
    q.PODS_WITH_REPLICASET_OWNER: (
        'sum(avg_over_time(kube_pod_owner{owner_kind="ReplicaSet", %(filter)s}[%(dur)s])) '
        "by (pod, owner_name, namespace ,%(label)s)"
    ),
    q.REPLICASETS_WITHOUT_OWNERS: (
        'avg(avg_over_time(kube_replicaset_owner{owner_kind="<none>", owner_name="<none>", %(filter)s}'
        "[%(dur)s])) by (replicaset, namespace, %(label)s)"
    ),
    q.REPLICASETS_WITH_ROLLOUT: (
        'avg(avg_over_time(kube_replicaset_owner{owner_kind="Rollout", %(filter)s}[%(dur)s])) '
        "by (replicaset, namespace, owner_kind, owner_name, %(label)s)"
    ),
    q.LB_PRICE_PER_HR: (
        "avg(avg_over_time(kubecost_load_balancer_cost{%(filter)s}[%(dur)s])) "
        "by (namespace, service_name, ingress_ip, %(label)s)"
    ),
    q.LB_ACTIVE_MINUTES: (
        "avg(kubecost_load_balancer_cost{%(filter)s}) "
        "by (namespace, service_name, %(label)s, ingress_ip)[%(sub_dur)s:%(res)dm]"
    ),
    q.CLUSTER_MANAGEMENT_DURATION: (
        "avg(kubecost_cluster_management_cost{%(filter)s}) by (%(label)s, provisioner_name)[%(sub_dur)s:%(res)dm]"
    ),
    q.CLUSTER_MANAGEMENT_PRICE_PER_HR: (
        "avg(avg_over_time(kubecost_cluster_management_cost{%(filter)s}[%(dur)s])) by (%(label)s, provisioner_name)"
    ),
    q.NODE_ACTIVE_MINUTES: (
        "avg(node_total_hourly_cost{%(filter)s}) by (node, %(label)s, provider_id)[%(sub_dur)s:%(res)dm]"
    ),
    q.NODE_CPU_CORES_CAPACITY: (
        "avg(avg_over_time(kube_node_status_capacity_cpu_cores{%(filter)s}[%(dur)s])) by (%(label)s, node)"
    ),
    q.NODE_CPU_CORES_ALLOCATABLE: (
        "avg(avg_over_time(kube_node_status_allocatable_cpu_cores{%(filter)s}[%(dur)s])) by (%(label)s, node)"
    ),
    q.NODE_RAM_BYTES_CAPACITY: (
        "avg(avg_over_time(kube_node_status_capacity_memory_bytes{%(filter)s}[%(dur)s])) by (%(label)s, node)"
    ),
    q.NODE_RAM_BYTES_ALLOCATABLE: (
        "avg(avg_over_time(kube_node_status_allocatable_memory_bytes{%(filter)s}[%(dur)s])) by (%(label)s, node)"
    ),
    q.NODE_GPU_COUNT: (
        "avg(avg_over_time(node_gpu_count{%(filter)s}[%(dur)s])) by (%(label)s, node, provider_id)"
    ),
    q.NODE_CPU_MODE_TOTAL: (
        "sum(rate(node_cpu_seconds_total{%(filter)s}[%(sub_dur)s:%(res)dm])) by (kubernetes_node, %(label)s, mode)"
    ),
    q.NODE_RAM_SYSTEM_PERCENT: (
        'sum(sum_over_time(container_memory_working_set_bytes{container_name!="POD",container_name!="",'
        'namespace="kube-system", %(filter)s}[%(sub_dur)s:%(res)dm])) by (instance, %(label)s) '
        "/ avg(label_replace(sum(sum_over_time(kube_node_status_capacity_memory_bytes{%(filter)s}"
        '[%(sub_dur)s:%(res)dm])) by (node, %(label)s), "instance", "$1", "node", "(.*)")) by (instance, %(label)s)'
    ),
    q.NODE_RAM_USER_PERCENT: (
        'sum(sum_over_time(container_memory_working_set_bytes{container_name!="POD",container_name!="",'
        'namespace!="kube-system", %(filter)s}[%(sub_dur)s:%(res)dm])) by (instance, %(label)s) '
        "/ avg(label_replace(sum(sum_over_time(kube_node_status_capacity_memory_bytes{%(filter)s}"
        '[%(sub_dur)s:%(res)dm])) by (node, %(label)s), "instance", "$1", "node", "(.*)")) by (instance, %(label)s)'
    ),
    q.LOCAL_STORAGE_ACTIVE_MINUTES: (
        "count(node_total_hourly_cost{%(filter)s}) by (%(label)s, node, instance, provider_id)[%(sub_dur)s:%(res)dm]"
    ),
    q.LOCAL_STORAGE_COST: (
        'sum_over_time(sum(container_fs_limit_bytes{device=~"/dev/(nvme|sda).*", id="/", %(filter)s}) '
        "by (instance, device, %(label)s)[%(sub_dur)s:%(res)dm]) / 1024 / 1024 / 1024 "
        "* %(hourly_to_cumulative)f * %(cost_per_gb_hr)f"
    ),
    q.LOCAL_STORAGE_USED_COST: (
        'sum_over_time(sum(container_fs_usage_bytes{device=~"/dev/(nvme|sda).*", id="/", %(filter)s}) '
        "by (instance, device, %(label)s)[%(sub_dur)s:%(res)dm]) / 1024 / 1024 / 1024 "
        "* %(hourly_to_cumulative)f * %(cost_per_gb_hr)f"
    ),
    q.LOCAL_STORAGE_USED_AVG: (
        'avg(sum(avg_over_time(container_fs_usage_bytes{device=~"/dev/(nvme|sda).*", id="/", %(filter)s}'
        "[%(dur)s])) by (instance, device, %(label)s, job)) by (instance, device, %(label)s)"
    ),
    q.LOCAL_STORAGE_USED_MAX: (
        'max(sum(max_over_time(container_fs_usage_bytes{device=~"/dev/(nvme|sda).*", id="/", %(filter)s}'
        "[%(dur)s])) by (instance, device, %(label)s, job)) by (instance, device, %(label)s)"
    ),
    q.LOCAL_STORAGE_BYTES: (
        'avg_over_time(sum(container_fs_limit_bytes{device=~"/dev/(nvme|sda).*", id="/", %(filter)s}) '
        "by (instance, device, %(label)s)[%(sub_dur)s:%(res)dm])"
    ),
}

CPU_USAGE_MAX_RECORDING_RULE = (
    "max(max_over_time(kubecost_container_cpu_usage_irate{%(filter)s}[%(dur)s])) "
    "by (container_name, container, pod_name, pod, namespace, node, instance, %(label)s)"
)
CPU_USAGE_MAX_SUBQUERY = (
    'max(max_over_time(irate(container_cpu_usage_seconds_total{container!="POD", container!="", %(filter)s}'
    "[%(irate_res)dm])[%(sub_dur)s:%(res)dm])) by (container, pod_name, pod, namespace, node, instance, %(label)s)"
)
OLDEST_SAMPLE = "min_over_time(timestamp(group(node_cpu_hourly_cost{%(filter)s}))[%(sub_dur)s:1h])"
NEWEST_SAMPLE = "max_over_time(timestamp(group(node_cpu_hourly_cost{%(filter)s}))[%(sub_dur)s:1h])"

# Placeholder local storage price, $/GiB-month over 730 hours
LOCAL_STORAGE_COST_PER_GB_HR = 0.04 / 730.0


def parse_data_point(query, point):
    """Parse a [timestamp, "value"] pair, returning (Vector, is_nan_or_inf)."""
    if not isinstance(point, (list, tuple)) or len(point) != 2:
        raise PrometheusResponseError(
            f"Error parsing Prometheus response: improperly formatted datapoint. Query: '{query}'. Response: '{point}'"
        )
    timestamp, value = point
    value = float(value)
    return Vector(float(timestamp), value), math.isnan(value) or math.isinf(value)


def parse_query_response(query, payload, cluster_label=None):
    """Parse a Prometheus query API payload into QueryResult rows."""
    cluster_label = cluster_label or Config.PROM_CLUSTER_ID_LABEL
    if not isinstance(payload, dict):
        raise PrometheusResponseError(
            f"Error parsing Prometheus response: unexpected response. Query: '{query}'. Response: '{payload}'"
        )
    if payload.get("status") == "error":
        raise PrometheusResponseError(f"{payload.get('errorType', 'error')}: {payload.get('error', '')}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise PrometheusResponseError(
            f"Error parsing Prometheus response: 'data' field improperly formatted. Query: '{query}'. "
            f"Response: '{payload}'"
        )
    raw_results = data.get("result")
    if not isinstance(raw_results, list):
        raise PrometheusResponseError(
            f"Error parsing Prometheus response: 'result' field improperly formatted. Query: '{query}'. "
            f"Response: '{data}'"
        )

    results = []
    for raw in raw_results:
        metric = raw.get("metric") if isinstance(raw, dict) else None
        if not isinstance(metric, dict):
            raise PrometheusResponseError(
                f"Error parsing Prometheus response: 'metric' field improperly formatted. Query: '{query}'. "
                f"Response: '{raw}'"
            )
        if "values" in raw:
            points = raw["values"]
        elif "value" in raw:
            points = [raw["value"]]
        else:
            raise PrometheusResponseError(
                f"Error parsing Prometheus response: 'value' field does not exist in data result vector. "
                f"Query: '{query}'. Response: '{raw}'"
            )
        values = []
        for point in points:
            vector, invalid = parse_data_point(query, point)
            if invalid:
                deduped_warning(LOG, "Found NaN or Inf value parsing vector data point for query: %s", query)
            values.append(vector)
        results.append(QueryResult(metric, values, cluster_label=cluster_label))
    return results


class PrometheusClient:
    """Issues instant queries against the Prometheus HTTP API."""

    def __init__(
        self,
        endpoint=None,
        timeout=None,
        bearer_token=None,
        scope_org_id=None,
        verify=None,
        retry_on_rate_limit=None,
        max_retries=None,
        default_wait=None,
        session=None,
    ):
        self.endpoint = (endpoint if endpoint is not None else Config.PROMETHEUS_SERVER_ENDPOINT).rstrip("/")
        self.timeout = timeout if timeout is not None else Config.PROMETHEUS_QUERY_TIMEOUT
        self.bearer_token = bearer_token if bearer_token is not None else Config.PROMETHEUS_BEARER_TOKEN
        self.scope_org_id = scope_org_id if scope_org_id is not None else Config.PROMETHEUS_HEADER_X_SCOPE_ORGID
        self.verify = verify if verify is not None else not Config.INSECURE_SKIP_VERIFY
        self.retry_on_rate_limit = (
            retry_on_rate_limit if retry_on_rate_limit is not None else Config.PROMETHEUS_RETRY_ON_RATE_LIMIT
        )
        self.max_retries = (
            max_retries if max_retries is not None else Config.PROMETHEUS_RETRY_ON_RATE_LIMIT_MAX_RETRIES
        )
        self.default_wait = (
            default_wait if default_wait is not None else Config.PROMETHEUS_RETRY_ON_RATE_LIMIT_DEFAULT_WAIT
        )
        self.session = session or requests.Session()

    def _headers(self):
        headers = {}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        if self.scope_org_id:
            headers["X-Scope-OrgID"] = self.scope_org_id
        return headers

    def _retry_wait(self, response, attempt):
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                LOG.debug("Unparseable Retry-After header: %s", retry_after)
        return self.default_wait * (2**attempt)

    def query(self, query, at_time):
        """Run an instant query evaluated at `at_time` and return the decoded JSON payload."""
        url = f"{self.endpoint}{QUERY_PATH}"
        params = {"query": query, "time": at_time.timestamp()}
        attempt = 0
        while True:
            try:
                response = self.session.get(
                    url, params=params, headers=self._headers(), timeout=self.timeout, verify=self.verify
                )
            except (ConnectionError, Timeout) as err:
                LOG.warning(log_json(msg="error querying prometheus", query=query, error=err))
                PROMETHEUS_CONNECTION_ERROR_COUNTER.inc()
                raise PrometheusConnectionError(err)

            if (
                response.status_code in RETRYABLE_STATUSES
                and self.retry_on_rate_limit
                and attempt < self.max_retries
            ):
                wait = self._retry_wait(response, attempt)
                LOG.info(
                    log_json(
                        msg="prometheus rate limited, retrying",
                        status=response.status_code,
                        attempt=attempt + 1,
                        wait=wait,
                    )
                )
                time.sleep(wait)
                attempt += 1
                continue

            if response.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
                msg = f">=500 Response from Prometheus: {response.status_code}"
                LOG.warning(msg)
                PROMETHEUS_CONNECTION_ERROR_COUNTER.inc()
                raise PrometheusConnectionError(msg)

            try:
                payload = response.json()
            except (JSONDecodeError, ValueError) as err:
                raise PrometheusResponseError(
                    f"Error parsing Prometheus response: {response.status_code} {err}. Query: '{query}'"
                ) from err

            if response.status_code != HTTPStatus.OK and not isinstance(payload, dict):
                raise PrometheusResponseError(f"Prometheus returned {response.status_code} for query '{query}'")
            return payload


class PrometheusMetricsQuerier(MetricsQuerier):
    """Renders the PromQL catalogue and runs it on a thread pool."""

    def __init__(
        self,
        client,
        executor,
        resolution,
        cluster_label=None,
        cluster_filter=None,
        offset_resolution=None,
    ):
        self.client = client
        self.executor = executor
        self.resolution = resolution
        self.cluster_label = cluster_label or Config.PROM_CLUSTER_ID_LABEL
        if cluster_filter is None:
            cluster_filter = ""
            if Config.CURRENT_CLUSTER_ID_FILTER_ENABLED:
                cluster_filter = f'{self.cluster_label}="{Config.CLUSTER_ID}"'
        self.cluster_filter = cluster_filter
        self.offset_resolution = (
            offset_resolution if offset_resolution is not None else Config.PROMETHEUS_OFFSET_RESOLUTION
        )

    @property
    def resolution_minutes(self):
        return max(int(self.resolution.total_seconds() // 60), 1)

    def _sub_duration_string(self, start, end, minutes_per_resolution):
        duration = end - start
        # Prometheus versions that drop the first subquery sample need one extra step
        if self.offset_resolution:
            duration += timedelta(minutes=minutes_per_resolution)
        return duration_string(duration)

    def render(self, name, start, end):
        """Render the PromQL for the named query."""
        template = PROMQL[name]
        return template % self._params(name, start, end)

    def _params(self, name, start, end):
        res = self.resolution_minutes
        dur = duration_string(end - start)
        sub_dur = self._sub_duration_string(start, end, res)
        if not dur or not sub_dur:
            raise ValueError(f"failed to parse duration string passed to {name}")
        return {
            "filter": self.cluster_filter,
            "label": self.cluster_label,
            "dur": dur,
            "sub_dur": sub_dur,
            "res": res,
            "irate_res": 2 * res,
            "hourly_to_cumulative": res / 60.0,
            "cost_per_gb_hr": LOCAL_STORAGE_COST_PER_GB_HR,
        }

    def _run(self, query, at_time):
        payload = self.client.query(query, at_time)
        return parse_query_response(query, payload, cluster_label=self.cluster_label)

    def _cpu_usage_max(self, start, end):
        params = self._params(q.CPU_USAGE_MAX, start, end)
        results = self._run(CPU_USAGE_MAX_RECORDING_RULE % params, end)
        if results:
            return results
        # Recording rule absent; fall back to the subquery
        return self._run(CPU_USAGE_MAX_SUBQUERY % params, end)

    def query(self, name, start, end):
        decoder = QUERY_DECODERS[name]
        PROMETHEUS_QUERY_COUNTER.labels(query_name=name).inc()
        if name == q.CPU_USAGE_MAX:
            pending = self.executor.submit(self._cpu_usage_max, start, end)
            return Future(decoder, pending, query=name)

        promql = self.render(name, start, end)
        LOG.debug("[PrometheusMetricsQuerier][%s][At Time: %d]: %s", name, int(end.timestamp()), promql)
        pending = self.executor.submit(self._run, promql, end)
        return Future(decoder, pending, query=promql)

    def data_coverage(self, limit_days):
        """Return the (oldest, newest) sample times of node pricing data."""
        end = utcnow().replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
        start = end - timedelta(days=limit_days)
        params = {"filter": self.cluster_filter, "sub_dur": self._sub_duration_string(start, end, 60)}
        oldest = self._run(OLDEST_SAMPLE % params, end)
        newest = self._run(NEWEST_SAMPLE % params, end)
        if not oldest or not oldest[0].values:
            raise PrometheusResponseError("querying oldest sample: no data")
        if not newest or not newest[0].values:
            raise PrometheusResponseError("querying newest sample: no data")
        return from_timestamp(oldest[0].values[0].value), from_timestamp(newest[0].values[0].value)


class PrometheusDataSource(DataSource):
    """A DataSource backed by a Prometheus server."""

    def __init__(self, client=None, resolution=None, batch_duration=None, max_concurrency=None, **querier_kwargs):
        self.client = client or PrometheusClient()
        self._resolution = resolution or timedelta(seconds=Config.PROMETHEUS_QUERY_RESOLUTION_SECONDS)
        self._batch_duration = batch_duration or timedelta(minutes=Config.PROMETHEUS_MAX_QUERY_DURATION_MINUTES)
        workers = max_concurrency or Config.MAX_QUERY_CONCURRENCY
        self.executor = ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix="prometheus-query")
        self._metrics = PrometheusMetricsQuerier(self.client, self.executor, self._resolution, **querier_kwargs)

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
        return self._metrics.data_coverage(limit_days)

    def close(self):
        self.executor.shutdown(wait=True)
