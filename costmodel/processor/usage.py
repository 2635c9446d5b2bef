#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Apply per-container CPU, RAM, GPU and network results to the pod map.

Every function walks one query's rows, resolves the pods a row refers to
(fanning out over pod UIDs when they are ingested) and writes resource-hours
into the container allocations. Rows for pods missing from the pod map are
ignored.
"""
import logging

from costmodel.allocation.allocation import GPUAllocation
from costmodel.allocation.allocation import RawAllocationOnlyData
from costmodel.common.log import deduped_info
from costmodel.common.log import deduped_warning
from costmodel.config import Config
from costmodel.processor.keys import new_result_pod_key

LOG = logging.getLogger(__name__)

CPU_SANITY_LIMIT = 512

GPU_SHARED_RESOURCE = "nvidia_com_gpu_shared"
GPU_RESOURCE = "nvidia_com_gpu"


def _pods_for_row(pod_map, row, what):
    try:
        key = new_result_pod_key(row.cluster, row.namespace, row.pod)
    except ValueError as err:
        deduped_warning(LOG, "%s result missing field: %s", what, err)
        return None, []
    return key, pod_map.lookup(key)


def _containers_for_row(pod_map, row, what):
    """Yield (pod, allocation) for every container a row refers to."""
    key, pods = _pods_for_row(pod_map, row, what)
    if key is None:
        return
    if not row.container:
        deduped_warning(LOG, "%s result missing field: container: %s", what, key)
        return
    if not row.data:
        return
    for pod in pods:
        yield pod, pod.container(row.container)


def _raw(alloc):
    if alloc.raw_allocation_only is None:
        alloc.raw_allocation_only = RawAllocationOnlyData()
    return alloc.raw_allocation_only


def _gpu(alloc):
    if alloc.gpu_allocation is None:
        alloc.gpu_allocation = GPUAllocation()
    return alloc.gpu_allocation


def _set_node(pod, alloc, row, what):
    if not row.node:
        deduped_warning(LOG, "%s result missing field: node: %s", what, pod.key)
        return
    alloc.properties.node = row.node
    pod.node = row.node


def apply_cpu_cores_allocated(pod_map, rows):
    for row in rows:
        for pod, alloc in _containers_for_row(pod_map, row, "CPU allocation"):
            cores = row.data[0].value
            if cores > CPU_SANITY_LIMIT:
                deduped_info(LOG, "very large cpu allocation %s for %s, clamping to zero", cores, pod.key)
                cores = 0.0
            alloc.cpu_core_hours = cores * alloc.hours()
            _set_node(pod, alloc, row, "CPU allocation")


def apply_cpu_cores_requested(pod_map, rows):
    """Record CPU requests, raising the allocation to the request when lower."""
    for row in rows:
        for pod, alloc in _containers_for_row(pod_map, row, "CPU request"):
            request = row.data[0].value
            alloc.cpu_core_request_average = request
            if alloc.cpu_cores() < request:
                alloc.cpu_core_hours = request * alloc.hours()
            if alloc.cpu_cores() > CPU_SANITY_LIMIT:
                deduped_info(LOG, "very large cpu request %s for %s", request, pod.key)
                alloc.cpu_core_hours = request * alloc.hours()
            _set_node(pod, alloc, row, "CPU request")


def apply_cpu_cores_limits(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "CPU limit"):
            _raw(alloc).cpu_core_limit_average = row.data[0].value


def apply_cpu_cores_used_avg(pod_map, rows):
    for row in rows:
        for pod, alloc in _containers_for_row(pod_map, row, "CPU usage avg"):
            usage = row.data[0].value
            if usage > CPU_SANITY_LIMIT:
                deduped_info(LOG, "very large cpu usage %s for %s, dropping outlier", usage, pod.key)
                usage = 0.0
            alloc.cpu_core_usage_average = usage


def apply_cpu_cores_used_max(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "CPU usage max"):
            _raw(alloc).cpu_core_usage_max = row.data[0].value


def apply_ram_bytes_allocated(pod_map, rows):
    for row in rows:
        for pod, alloc in _containers_for_row(pod_map, row, "RAM allocation"):
            alloc.ram_byte_hours = row.data[0].value * alloc.hours()
            _set_node(pod, alloc, row, "RAM allocation")


def apply_ram_bytes_requested(pod_map, rows):
    """Record RAM requests, raising the allocation to the request when lower."""
    for row in rows:
        for pod, alloc in _containers_for_row(pod_map, row, "RAM request"):
            request = row.data[0].value
            alloc.ram_bytes_request_average = request
            if alloc.ram_bytes() < request:
                alloc.ram_byte_hours = request * alloc.hours()
            _set_node(pod, alloc, row, "RAM request")


def apply_ram_bytes_limits(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "RAM limit"):
            _raw(alloc).ram_bytes_limit_average = row.data[0].value


def apply_ram_bytes_used_avg(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "RAM usage avg"):
            alloc.ram_bytes_usage_average = row.data[0].value


def apply_ram_bytes_used_max(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "RAM usage max"):
            _raw(alloc).ram_bytes_usage_max = row.data[0].value


def apply_gpu_usage_avg(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "GPU usage avg"):
            alloc.gpu_usage_average = row.data[0].value
            _gpu(alloc).gpu_usage_average = row.data[0].value


def apply_gpu_usage_max(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "GPU usage max"):
            _raw(alloc).gpu_usage_max = row.data[0].value


def apply_gpu_usage_shared(pod_map, rows):
    """Flag containers using a GPU as shared or exclusive.

    Containers without a GPU keep an unset flag.
    """
    for row in rows:
        if row.resource == GPU_SHARED_RESOURCE:
            shared = True
        elif row.resource == GPU_RESOURCE:
            shared = False
        else:
            continue
        for _, alloc in _containers_for_row(pod_map, row, "GPU shared"):
            if row.data[0].value == 1:
                _gpu(alloc).is_shared = shared


def sanitized_device_name(device):
    if "nvidia" in device:
        return "nvidia"
    return device


def apply_gpu_info(pod_map, rows):
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "GPU info"):
            gpu = _gpu(alloc)
            gpu.device = sanitized_device_name(row.device)
            gpu.model = row.model_name
            gpu.uuid = row.uuid


def apply_gpus_allocated(pod_map, requested_rows, allocated_rows):
    """Apply GPU hours, preferring allocated GPUs over requested when present."""
    rows = allocated_rows if allocated_rows else requested_rows
    for row in rows:
        for _, alloc in _containers_for_row(pod_map, row, "GPU request"):
            gpus = row.data[0].value
            alloc.gpu_hours = gpus * alloc.hours()
            alloc.gpu_request_average = gpus
            _gpu(alloc).gpu_request_average = gpus


def _apply_network_bytes(pod_map, rows, attr, what):
    for row in rows:
        key, pods = _pods_for_row(pod_map, row, what)
        if key is None or not row.data:
            continue
        for pod in pods:
            if not pod.allocations:
                continue
            share = row.data[0].value / len(pod.allocations) / len(pods)
            for alloc in pod.allocations.values():
                setattr(alloc, attr, share)


def apply_network_totals(pod_map, transfer_rows, receive_rows):
    """Split each pod's transfer and receive bytes evenly over its containers."""
    _apply_network_bytes(pod_map, transfer_rows, "network_transfer_bytes", "network transfer bytes")
    _apply_network_bytes(pod_map, receive_rows, "network_receive_bytes", "network receive bytes")


def cross_zone_cost_attr(alloc, cost):
    alloc.network_cross_zone_cost = cost


def cross_region_cost_attr(alloc, cost):
    alloc.network_cross_region_cost = cost


def internet_cost_attr(alloc, cost):
    alloc.network_internet_cost = cost


def apply_network_allocation(pod_map, gib_rows, price_rows, apply_cost):
    """Cost one class of egress, split evenly over containers and UID matches.

    The cost is divided by the container count and again by the number of
    pods the row fans out to.
    """
    price_by_cluster = {}
    for row in price_rows:
        if row.data:
            price_by_cluster[row.cluster or Config.CLUSTER_ID] = row.data[0].value

    for row in gib_rows:
        key, pods = _pods_for_row(pod_map, row, "network allocation")
        if key is None or not row.data:
            continue
        price = price_by_cluster.get(key.cluster, 0.0)
        for pod in pods:
            if not pod.allocations:
                continue
            gib = row.data[0].value / len(pod.allocations)
            cost = gib * price / len(pods)
            for alloc in pod.allocations.values():
                apply_cost(alloc, cost)
                alloc.network_cost += cost
