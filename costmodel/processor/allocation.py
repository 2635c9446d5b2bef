#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Allocation computation.

``CostModel.compute_allocation`` builds the pod map for a window, fans out
the metric queries, applies every result to the pod map and prices the
result. Windows longer than the data source's batch duration are computed
in sub-windows and accumulated.
"""
import logging

from costmodel.allocation.allocation import RawAllocationOnlyData
from costmodel.allocation.allocation_set import AllocationSet
from costmodel.allocation.allocation_set import AllocationSetRange
from costmodel.allocation.window import Window
from costmodel.common import log_json
from costmodel.common.log import deduped_warning
from costmodel.config import Config
from costmodel.exceptions import AllocationComputeError
from costmodel.exceptions import CostModelError
from costmodel.exceptions import QueryError
from costmodel.pricing.provider import CustomProvider
from costmodel.processor import load_balancers
from costmodel.processor import metadata
from costmodel.processor import nodes
from costmodel.processor import usage
from costmodel.processor import volumes
from costmodel.processor.pod import filter_uid_rows
from costmodel.processor.pod import PodMap
from costmodel.source import datasource as q
from costmodel.source.querygroup import await_queries
from costmodel.source.querygroup import QueryGroup
from costmodel.util.timeutil import duration_string
from costmodel.util.timeutil import utcnow

LOG = logging.getLogger(__name__)

POD_QUERY_MAX_TRIES = 3
DEFAULT_DATE_RANGE_LIMIT_DAYS = 90

ALLOCATION_QUERIES = (
    q.CPU_CORES_ALLOCATED,
    q.CPU_REQUESTS,
    q.CPU_LIMITS,
    q.CPU_USAGE_AVG,
    q.CPU_USAGE_MAX,
    q.RAM_BYTES_ALLOCATED,
    q.RAM_REQUESTS,
    q.RAM_LIMITS,
    q.RAM_USAGE_AVG,
    q.RAM_USAGE_MAX,
    q.GPUS_REQUESTED,
    q.GPUS_ALLOCATED,
    q.GPUS_USAGE_AVG,
    q.GPUS_USAGE_MAX,
    q.GPU_INFO,
    q.IS_GPU_SHARED,
    q.NODE_CPU_PRICE_PER_HR,
    q.NODE_RAM_PRICE_PER_GIB_HR,
    q.NODE_GPU_PRICE_PER_HR,
    q.NODE_IS_SPOT,
    q.PV_ACTIVE_MINUTES,
    q.PV_BYTES,
    q.PV_PRICE_PER_GIB_HOUR,
    q.PV_INFO,
    q.PVC_INFO,
    q.PVC_BYTES_REQUESTED,
    q.POD_PVC_ALLOCATION,
    q.NET_TRANSFER_BYTES,
    q.NET_RECEIVE_BYTES,
    q.NET_ZONE_GIB,
    q.NET_ZONE_PRICE_PER_GIB,
    q.NET_REGION_GIB,
    q.NET_REGION_PRICE_PER_GIB,
    q.NET_INTERNET_GIB,
    q.NET_INTERNET_PRICE_PER_GIB,
    q.NAMESPACE_LABELS,
    q.NAMESPACE_ANNOTATIONS,
    q.POD_LABELS,
    q.POD_ANNOTATIONS,
    q.SERVICE_LABELS,
    q.DEPLOYMENT_LABELS,
    q.STATEFULSET_LABELS,
    q.DAEMONSET_LABELS,
    q.JOB_LABELS,
    q.PODS_WITH_REPLICASET_OWNER,
    q.REPLICASETS_WITHOUT_OWNERS,
    q.REPLICASETS_WITH_ROLLOUT,
    q.LB_PRICE_PER_HR,
    q.LB_ACTIVE_MINUTES,
)


class CostModel:
    """Computes costed allocation sets from a metric data source."""

    def __init__(self, data_source, provider=None, ingest_pod_uid=None, ingest_node_labels=None):
        self.data_source = data_source
        self.provider = provider or CustomProvider()
        self.ingest_pod_uid = Config.INGEST_POD_UID if ingest_pod_uid is None else ingest_pod_uid
        self.ingest_node_labels = Config.INGEST_NODE_LABELS if ingest_node_labels is None else ingest_node_labels

    def can_compute(self, start, end):
        """Return True when the window starts before now."""
        return start < utcnow()

    def date_range(self, limit_days=DEFAULT_DATE_RANGE_LIMIT_DAYS):
        """Return the oldest and newest sample times the data source holds."""
        return self.data_source.date_range(limit_days)

    def compute_allocation(self, start, end):
        """Return the AllocationSet for [start, end).

        Windows longer than the batch duration are computed one sub-window at
        a time and accumulated into a single set spanning [start, end).

        Raises AllocationComputeError when a required query fails and
        AccumulationError when the sub-windows do not fold into one set.
        """
        window = Window(start, end)
        batch_duration = self.data_source.batch_duration
        if window.duration() <= batch_duration:
            result = self._compute_allocation(start, end)
            result.sanitize_nan()
            return result

        LOG.info(
            log_json(
                msg="computing allocation in batches",
                window=window,
                batch_duration=batch_duration,
            )
        )
        set_range = AllocationSetRange()
        labels, annotations, services = {}, {}, {}
        errors, warnings = [], []
        for sub_window in window.split(batch_duration):
            try:
                allocation_set = self._compute_allocation(sub_window.start, sub_window.end)
            except CostModelError as err:
                raise AllocationComputeError(f"error computing allocation for {sub_window}: {err}") from err

            for alloc in allocation_set:
                labels.setdefault(alloc.name, {}).update(alloc.properties.labels)
                annotations.setdefault(alloc.name, {}).update(alloc.properties.annotations)
                names = services.setdefault(alloc.name, {})
                for service in alloc.properties.services:
                    names[service] = True
            errors.extend(allocation_set.errors)
            warnings.extend(allocation_set.warnings)
            set_range.append(allocation_set)

        result = set_range.accumulate_to_set()

        for alloc in result:
            alloc.properties.labels = labels.get(alloc.name, {})
            alloc.properties.annotations = annotations.get(alloc.name, {})
            alloc.properties.services = list(services.get(alloc.name, {}))
            alloc.window = alloc.window.expand(window)

        _recompute_raw_allocation_data(set_range, result)

        result.window = result.window.expand(window)
        result.errors = errors
        result.warnings = warnings
        result.sanitize_nan()
        return result

    def _build_pod_map(self, window, pod_map):
        """Populate the pod map, retrying the pods query.

        Raises AllocationComputeError when the pods query fails on every try.
        """
        metrics = self.data_source.metrics
        rows, error = None, None
        for attempt in range(1, POD_QUERY_MAX_TRIES + 1):
            if self.ingest_pod_uid:
                future = metrics.query(q.PODS_UID, window.start, window.end)
            else:
                future = metrics.query(q.PODS, window.start, window.end)
            try:
                rows = future.await_()
            except QueryError as err:
                LOG.warning("pod query try %s failed: %s", attempt, err)
                rows, error = None, err
                continue
            error = None
            if rows:
                break

        if error is not None:
            raise AllocationComputeError(f"failed to query pods for {window}: {error}") from error

        rows = rows or []
        if self.ingest_pod_uid and rows:
            rows = filter_uid_rows(rows)
        pod_map.apply_pod_results(window, self.data_source.resolution, rows)

    def _compute_allocation(self, start, end):
        """Compute the AllocationSet of a single pass over [start, end)."""
        if end <= start or not duration_string(end - start):
            raise AllocationComputeError(f"illegal duration value for [{start}, {end})")

        window = Window(start, end)
        resolution = self.data_source.resolution
        allocation_set = AllocationSet(start, end)

        pod_map = PodMap(ingest_pod_uid=self.ingest_pod_uid)
        self._build_pod_map(window, pod_map)

        metrics = self.data_source.metrics
        grp = QueryGroup()
        names = list(ALLOCATION_QUERIES)
        if self.ingest_node_labels:
            names.append(q.NODE_LABELS)
        results = await_queries(grp, metrics, names, start, end)
        if grp.has_errors():
            for err in grp.errors():
                LOG.error("allocation query failed: %s", err)
            raise AllocationComputeError(f"failed to compute allocation for {window}: {grp.error()}")

        usage.apply_cpu_cores_allocated(pod_map, results[q.CPU_CORES_ALLOCATED])
        usage.apply_cpu_cores_requested(pod_map, results[q.CPU_REQUESTS])
        usage.apply_cpu_cores_limits(pod_map, results[q.CPU_LIMITS])
        usage.apply_cpu_cores_used_avg(pod_map, results[q.CPU_USAGE_AVG])
        usage.apply_cpu_cores_used_max(pod_map, results[q.CPU_USAGE_MAX])
        usage.apply_ram_bytes_allocated(pod_map, results[q.RAM_BYTES_ALLOCATED])
        usage.apply_ram_bytes_requested(pod_map, results[q.RAM_REQUESTS])
        usage.apply_ram_bytes_limits(pod_map, results[q.RAM_LIMITS])
        usage.apply_ram_bytes_used_avg(pod_map, results[q.RAM_USAGE_AVG])
        usage.apply_ram_bytes_used_max(pod_map, results[q.RAM_USAGE_MAX])
        usage.apply_gpu_usage_avg(pod_map, results[q.GPUS_USAGE_AVG])
        usage.apply_gpu_usage_max(pod_map, results[q.GPUS_USAGE_MAX])
        usage.apply_gpu_usage_shared(pod_map, results[q.IS_GPU_SHARED])
        usage.apply_gpu_info(pod_map, results[q.GPU_INFO])
        usage.apply_gpus_allocated(pod_map, results[q.GPUS_REQUESTED], results[q.GPUS_ALLOCATED])
        usage.apply_network_totals(pod_map, results[q.NET_TRANSFER_BYTES], results[q.NET_RECEIVE_BYTES])
        usage.apply_network_allocation(
            pod_map, results[q.NET_ZONE_GIB], results[q.NET_ZONE_PRICE_PER_GIB], usage.cross_zone_cost_attr
        )
        usage.apply_network_allocation(
            pod_map, results[q.NET_REGION_GIB], results[q.NET_REGION_PRICE_PER_GIB], usage.cross_region_cost_attr
        )
        usage.apply_network_allocation(
            pod_map, results[q.NET_INTERNET_GIB], results[q.NET_INTERNET_PRICE_PER_GIB], usage.internet_cost_attr
        )

        node_labels = {}
        if self.ingest_node_labels:
            node_labels = metadata.node_labels_by_key(results[q.NODE_LABELS])
        namespace_labels = metadata.namespace_labels_by_key(results[q.NAMESPACE_LABELS])
        namespace_annotations = metadata.namespace_annotations_by_name(results[q.NAMESPACE_ANNOTATIONS])
        pod_labels = metadata.pod_labels_by_key(results[q.POD_LABELS], pod_map)
        pod_annotations = metadata.pod_annotations_by_key(results[q.POD_ANNOTATIONS], pod_map)
        metadata.apply_labels(pod_map, node_labels, namespace_labels, pod_labels)
        metadata.apply_annotations(pod_map, namespace_annotations, pod_annotations)

        deployment_labels = metadata.deployment_labels_by_key(results[q.DEPLOYMENT_LABELS])
        statefulset_labels = metadata.statefulset_labels_by_key(results[q.STATEFULSET_LABELS])
        for pod_controllers in (
            metadata.labels_to_pod_controller_map(pod_labels, deployment_labels),
            metadata.labels_to_pod_controller_map(pod_labels, statefulset_labels),
            metadata.pod_daemonset_map(results[q.DAEMONSET_LABELS], pod_map),
            metadata.pod_job_map(results[q.JOB_LABELS], pod_map),
            metadata.pod_replicaset_map(
                results[q.PODS_WITH_REPLICASET_OWNER],
                results[q.REPLICASETS_WITHOUT_OWNERS],
                results[q.REPLICASETS_WITH_ROLLOUT],
                pod_map,
            ),
        ):
            metadata.apply_controllers_to_pods(pod_map, pod_controllers)

        service_labels = metadata.service_labels_by_key(results[q.SERVICE_LABELS])
        allocs_by_service = metadata.apply_services_to_pods(pod_map, pod_labels, service_labels)

        pv_map = volumes.build_pv_map(
            window, resolution, results[q.PV_ACTIVE_MINUTES], results[q.PV_PRICE_PER_GIB_HOUR], results[q.PV_INFO]
        )
        volumes.apply_pv_bytes(pv_map, results[q.PV_BYTES])
        pvc_map = volumes.build_pvc_map(window, resolution, pv_map, results[q.PVC_INFO])
        volumes.apply_pvc_bytes_requested(pvc_map, results[q.PVC_BYTES_REQUESTED])
        pod_pvc_map = volumes.build_pod_pvc_map(pod_map, pv_map, pvc_map, results[q.POD_PVC_ALLOCATION])
        volumes.apply_pvcs_to_pods(window, pod_map, pod_pvc_map, pvc_map, pv_map)
        volumes.apply_unmounted_pvcs(window, pod_map, pvc_map, pv_map)
        volumes.apply_unmounted_pvs(window, pod_map, pv_map, pvc_map)

        lb_map = load_balancers.build_lb_map(
            window, resolution, results[q.LB_ACTIVE_MINUTES], results[q.LB_PRICE_PER_HR]
        )
        load_balancers.apply_load_balancers_to_pods(window, pod_map, lb_map, allocs_by_service)

        node_map = nodes.build_node_map(
            results[q.NODE_CPU_PRICE_PER_HR], results[q.NODE_RAM_PRICE_PER_GIB_HR], results[q.NODE_GPU_PRICE_PER_HR]
        )
        nodes.apply_node_spot(node_map, results[q.NODE_IS_SPOT])
        nodes.apply_node_discount(node_map, self.provider)
        nodes.apply_nodes_to_pods(pod_map, node_map, self.provider.get_config())

        for _, pod in pod_map:
            for alloc in pod.allocations.values():
                props = alloc.properties
                alloc.name = f"{props.cluster}/{props.node}/{props.namespace}/{props.pod}/{props.container}"
                allocation_set.set(alloc)

        LOG.debug(log_json(msg="computed allocation", window=window, allocations=allocation_set.length))
        return allocation_set


def _recompute_raw_allocation_data(set_range, result):
    """Rebuild usage maxima and time-weighted limits lost by accumulation."""
    limits = {}
    for allocation_set in set_range:
        for alloc in allocation_set:
            accumulated = result.get(alloc.name)
            if accumulated is None:
                continue
            if alloc.raw_allocation_only is None:
                if not alloc.is_unmounted():
                    deduped_warning(LOG, "missing raw allocation data for %s", alloc.name)
                continue

            if accumulated.raw_allocation_only is None:
                accumulated.raw_allocation_only = RawAllocationOnlyData()
            raw = accumulated.raw_allocation_only
            sub = alloc.raw_allocation_only
            raw.cpu_core_usage_max = max(raw.cpu_core_usage_max, sub.cpu_core_usage_max)
            raw.ram_bytes_usage_max = max(raw.ram_bytes_usage_max, sub.ram_bytes_usage_max)
            raw.gpu_usage_max = max(raw.gpu_usage_max, sub.gpu_usage_max)

            minutes = alloc.minutes()
            totals = limits.setdefault(alloc.name, [0.0, 0.0, 0.0])
            totals[0] += sub.cpu_core_limit_average * minutes
            totals[1] += sub.ram_bytes_limit_average * minutes
            totals[2] += minutes

    for name, (cpu_limit, ram_limit, minutes) in limits.items():
        if minutes <= 0:
            continue
        raw = result.get(name).raw_allocation_only
        raw.cpu_core_limit_average = cpu_limit / minutes
        raw.ram_bytes_limit_average = ram_limit / minutes
