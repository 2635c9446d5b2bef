#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Persistent volume and claim costs.

Volumes are priced per GiB-hour. A claim's cost over its lifetime is split
between the pods mounting it: each stretch of time is shared evenly by the
pods active during it, and stretches with no mounting pod are charged to the
namespace's unmounted-PVC pod. Volumes that no claim references are charged
to the cluster's unmounted pod.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass

from costmodel.allocation.allocation import PVAllocation
from costmodel.common.log import deduped_warning
from costmodel.processor.keys import new_result_pod_key
from costmodel.processor.keys import new_result_pv_key
from costmodel.processor.keys import new_result_pvc_key
from costmodel.processor.keys import PVKey
from costmodel.util.common import GIB
from costmodel.util.common import PIB
from costmodel.util.timeutil import calculate_start_end
from costmodel.util.timeutil import minutes_between

LOG = logging.getLogger(__name__)

PV_BYTES_SANITY_LIMIT = 10 * PIB

INTERVAL_START = "start"
INTERVAL_END = "end"

# Coefficient key for stretches of a claim's life with no mounting pod
UNMOUNTED = None


class PV:
    """A persistent volume."""

    def __init__(self, cluster, name, start=None, end=None):
        self.cluster = cluster
        self.name = name
        self.start = start
        self.end = end
        self.bytes = 0.0
        self.cost_per_gib_hour = 0.0
        self.provider_id = ""
        self.storage_class = ""

    def __repr__(self):
        return f"PV({self.cluster}/{self.name}, bytes={self.bytes}, cost_per_gib_hour={self.cost_per_gib_hour})"

    @property
    def key(self):
        return PVKey(self.cluster, self.name)

    def minutes(self):
        if self.start is None or self.end is None:
            return 0.0
        return minutes_between(self.start, self.end)

    def hours(self):
        return self.minutes() / 60.0


class PVC:
    """A persistent volume claim bound to a volume."""

    def __init__(self, cluster, namespace, name, volume, start, end):
        self.cluster = cluster
        self.namespace = namespace
        self.name = name
        self.volume = volume
        self.start = start
        self.end = end
        self.bytes = 0.0
        self.mounted = False

    def __repr__(self):
        return f"PVC({self.cluster}/{self.namespace}/{self.name}, volume={self.volume}, mounted={self.mounted})"

    def minutes(self):
        return minutes_between(self.start, self.end)

    def hours(self):
        return self.minutes() / 60.0


@dataclass(frozen=True)
class IntervalPoint:
    time: object
    point_type: str
    key: object


@dataclass(frozen=True)
class CoefficientComponent:
    proportion: float
    time: float


def build_pv_map(window, resolution, active_rows, price_rows, info_rows):
    """Return PVs keyed by PVKey, with their active interval, price and provider id."""
    pv_map = {}
    for row in active_rows:
        try:
            key = new_result_pv_key(row.cluster, row.persistent_volume)
        except ValueError as err:
            deduped_warning(LOG, "pv active minutes result missing field: %s", err)
            continue
        interval = calculate_start_end(row.data, resolution, window)
        if interval is None:
            continue
        start, end = interval
        pv_map[key] = PV(key.cluster, key.persistent_volume, start, end)

    for row in price_rows:
        try:
            key = new_result_pv_key(row.cluster, row.volume_name or row.persistent_volume)
        except ValueError as err:
            deduped_warning(LOG, "pv price result missing field: %s", err)
            continue
        if not row.data:
            continue
        pv = pv_map.get(key)
        if pv is None:
            pv = PV(key.cluster, key.persistent_volume)
            pv_map[key] = pv
        pv.cost_per_gib_hour = row.data[0].value

    for row in info_rows:
        try:
            key = new_result_pv_key(row.cluster, row.persistent_volume)
        except ValueError as err:
            deduped_warning(LOG, "pv info result missing field: %s", err)
            continue
        pv = pv_map.get(key)
        if pv is not None:
            pv.provider_id = row.provider_id
    return pv_map


def apply_pv_bytes(pv_map, rows):
    for row in rows:
        try:
            key = new_result_pv_key(row.cluster, row.persistent_volume)
        except ValueError as err:
            deduped_warning(LOG, "pv bytes result missing field: %s", err)
            continue
        pv = pv_map.get(key)
        if pv is None:
            LOG.warning("pv bytes result for missing pv: %s", key)
            continue
        if not row.data:
            continue
        pv_bytes = row.data[0].value
        if pv_bytes < PV_BYTES_SANITY_LIMIT:
            pv.bytes = pv_bytes
        else:
            LOG.warning("pv bytes result outside of expected range (%s) for %s, setting to zero", pv_bytes, key)
            pv.bytes = 0.0


def build_pvc_map(window, resolution, pv_map, rows):
    """Return claims keyed by PVCKey for every claim bound to a known volume."""
    pvc_map = {}
    for row in rows:
        if not (row.namespace and row.persistent_volume_claim and row.volume_name and row.storage_class):
            deduped_warning(LOG, "pvc info result missing field: %s", row)
            continue
        try:
            pvc_key = new_result_pvc_key(row.cluster, row.namespace, row.persistent_volume_claim)
            pv_key = new_result_pv_key(row.cluster, row.volume_name)
        except ValueError as err:
            deduped_warning(LOG, "pvc info result missing field: %s", err)
            continue
        pv = pv_map.get(pv_key)
        if pv is None:
            continue
        interval = calculate_start_end(row.data, resolution, window)
        if interval is None:
            continue
        start, end = interval

        pv.storage_class = row.storage_class
        pvc_map[pvc_key] = PVC(
            pvc_key.cluster, pvc_key.namespace, pvc_key.persistent_volume_claim, pv_key, start, end
        )
    return pvc_map


def apply_pvc_bytes_requested(pvc_map, rows):
    for row in rows:
        try:
            key = new_result_pvc_key(row.cluster, row.namespace, row.persistent_volume_claim)
        except ValueError as err:
            deduped_warning(LOG, "pvc bytes requested result missing field: %s", err)
            continue
        pvc = pvc_map.get(key)
        if pvc is None or not row.data:
            continue
        pvc.bytes = row.data[0].value


def build_pod_pvc_map(pod_map, pv_map, pvc_map, rows):
    """Return the claims mounted by each pod, marking those claims as mounted."""
    pod_pvc_map = defaultdict(list)
    for row in rows:
        try:
            pod_key = new_result_pod_key(row.cluster, row.namespace, row.pod)
            pv_key = new_result_pv_key(row.cluster, row.persistent_volume)
            pvc_key = new_result_pvc_key(row.cluster, row.namespace, row.persistent_volume_claim)
        except ValueError as err:
            deduped_warning(LOG, "pod pvc allocation result missing field: %s", err)
            continue

        if pv_key not in pv_map:
            deduped_warning(LOG, "pod pvc allocation result for missing pv: %s", pv_key)
            continue
        pvc = pvc_map.get(pvc_key)
        if pvc is None:
            deduped_warning(LOG, "pod pvc allocation result for missing pvc: %s", pvc_key)
            continue

        for key in pod_map.expand_keys(pod_key):
            pod = pod_map.get(key)
            if pod is None or not pod.allocations:
                deduped_warning(LOG, "pod pvc allocation result for missing pod: %s", key)
                continue
            pvc.mounted = True
            if pvc not in pod_pvc_map[key]:
                pod_pvc_map[key].append(pvc)
    return pod_pvc_map


def interval_points(windows):
    """Return the start and end points of each keyed (start, end), in time order.

    At equal times, starts sort before ends.
    """
    points = []
    for key, (start, end) in windows.items():
        points.append(IntervalPoint(start, INTERVAL_START, key))
        points.append(IntervalPoint(end, INTERVAL_END, key))
    points.sort(key=lambda point: (point.time, 0 if point.point_type == INTERVAL_START else 1))
    return points


def pvc_cost_coefficients(points, pvc):
    """Return each key's share of a claim's lifetime as coefficient components.

    Every stretch between consecutive points is divided evenly between the
    keys active during it. Stretches with no active key, including any tail
    after the last point, are assigned to UNMOUNTED. The products of each
    component's proportion and time sum to one across all keys.
    """
    pvc_minutes = pvc.minutes()
    coefficients = defaultdict(list)
    if pvc_minutes <= 0:
        return coefficients

    active = {}
    current = pvc.start
    for point in points:
        if point.time != current:
            time = minutes_between(current, point.time) / pvc_minutes
            if active:
                for key in active:
                    coefficients[key].append(CoefficientComponent(1.0 / len(active), time))
            else:
                coefficients[UNMOUNTED].append(CoefficientComponent(1.0, time))

        if point.point_type == INTERVAL_START:
            active[point.key] = True
        else:
            active.pop(point.key, None)
        current = point.time

    if current < pvc.end:
        coefficients[UNMOUNTED].append(CoefficientComponent(1.0, minutes_between(current, pvc.end) / pvc_minutes))
    return coefficients


def coefficient(components):
    return sum(component.proportion * component.time for component in components)


def _add_pv_allocation(alloc, pv_key, byte_hours, cost, provider_id):
    pv_alloc = alloc.pvs.get(pv_key)
    if pv_alloc is None:
        alloc.pvs[pv_key] = PVAllocation(byte_hours=byte_hours, cost=cost, provider_id=provider_id)
        return
    pv_alloc.byte_hours += byte_hours
    pv_alloc.cost += cost


def _charge_pod(pod, pv, pvc_bytes, hours, share):
    """Split a claim's share between the containers of a pod."""
    count = len(pod.allocations)
    if count == 0:
        return
    byte_hours = pvc_bytes * hours * share / count
    cost = pv.cost_per_gib_hour * (pvc_bytes / GIB) * hours * share / count
    for alloc in pod.allocations.values():
        _add_pv_allocation(alloc, pv.key, byte_hours, cost, pv.provider_id)


def apply_pvcs_to_pods(window, pod_map, pod_pvc_map, pvc_map, pv_map):
    """Charge every mounted claim to the pods that mounted it.

    A pod's share of a claim is its coefficient over the claim's lifetime;
    the share of time nobody mounted the claim goes to the namespace's
    unmounted-PVC pod. A claim whose mounting pods never overlap its
    lifetime is charged to that pod in full.
    """
    pods_by_pvc = defaultdict(dict)
    for pod_key, pvcs in pod_pvc_map.items():
        pod = pod_map.get(pod_key)
        if pod is None:
            continue
        for pvc in pvcs:
            pvc_key = new_result_pvc_key(pvc.cluster, pvc.namespace, pvc.name)
            pod_windows = pods_by_pvc[pvc_key]
            start = max(pod.start, pvc.start)
            end = min(pod.end, pvc.end)
            if start < end:
                pod_windows[pod_key] = (start, end)

    for pvc_key, pod_windows in pods_by_pvc.items():
        pvc = pvc_map.get(pvc_key)
        if pvc is None:
            continue
        pv = pv_map.get(pvc.volume)
        if pv is None:
            continue
        hours = pvc.hours()
        if hours <= 0:
            continue

        coefficients = pvc_cost_coefficients(interval_points(pod_windows), pvc)
        for pod_key, components in coefficients.items():
            if pod_key is UNMOUNTED:
                pod = pod_map.unmounted_pod_for_namespace(window, pvc.cluster, pvc.namespace)
            else:
                pod = pod_map.get(pod_key)
                if pod is None:
                    continue
            _charge_pod(pod, pv, pvc.bytes, hours, coefficient(components))


def apply_unmounted_pvcs(window, pod_map, pvc_map, pv_map):
    """Charge claims no pod mounted to their namespace's unmounted-PVC pod."""
    for pvc in pvc_map.values():
        if pvc.mounted:
            continue
        pv = pv_map.get(pvc.volume)
        if pv is None:
            deduped_warning(LOG, "unmounted pvc %s references missing pv %s", pvc.name, pvc.volume)
            continue
        pod = pod_map.unmounted_pod_for_namespace(window, pvc.cluster, pvc.namespace)
        _charge_pod(pod, pv, pv.bytes, pv.hours(), 1.0)


def apply_unmounted_pvs(window, pod_map, pv_map, pvc_map):
    """Charge volumes no claim references to the cluster's unmounted pod."""
    claimed = {pvc.volume for pvc in pvc_map.values()}
    for key, pv in pv_map.items():
        if key in claimed:
            continue
        pod = pod_map.unmounted_pod_for_cluster(window, pv.cluster)
        _charge_pod(pod, pv, pv.bytes, pv.hours(), 1.0)
