#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Load balancer costs.

A LoadBalancer service's cost is shared between the allocations the service
selects, in proportion to the hours each overlapped with the load balancer.
Cost with no selected allocation to land on goes to the cluster's unmounted
pod.
"""
import ipaddress
import logging
from datetime import timedelta

from costmodel.allocation.allocation import LbAllocation
from costmodel.common.log import deduped_warning
from costmodel.processor.keys import new_result_service_key
from costmodel.util.timeutil import SECONDS_PER_HOUR
from costmodel.util.timeutil import calculate_start_end

LOG = logging.getLogger(__name__)

PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("fc00::/7"),
)


class LB:
    """A LoadBalancer service and its accumulated cost."""

    def __init__(self, key, start, end):
        self.key = key
        self.start = start
        self.end = end
        self.total_cost = 0.0
        self.ip = ""
        self.private = False

    def __repr__(self):
        return f"LB({self.key}, cost={self.total_cost}, ip={self.ip!r})"


def is_private_ip(ip):
    """Return True for RFC 1918 and IPv6 unique local addresses."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def _hours(start, end):
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def build_lb_map(window, resolution, active_rows, price_rows):
    """Return load balancers keyed by ServiceKey with their total cost."""
    lb_map = {}
    for row in active_rows:
        try:
            key = new_result_service_key(row.cluster, row.namespace, row.service)
        except ValueError as err:
            deduped_warning(LOG, "load balancer active minutes result missing field: %s", err)
            continue
        interval = calculate_start_end(row.data, resolution, window)
        if interval is None:
            continue
        lb_map[key] = LB(key, *interval)

    resolution_hours = resolution / timedelta(hours=1)
    for row in price_rows:
        try:
            key = new_result_service_key(row.cluster, row.namespace, row.service)
        except ValueError as err:
            deduped_warning(LOG, "load balancer price result missing field: %s", err)
            continue
        if not row.ingress_ip:
            deduped_warning(LOG, "load balancer price result missing ingress ip: %s", key)
            continue
        lb = lb_map.get(key)
        if lb is None:
            deduped_warning(LOG, "load balancer price result for missing load balancer: %s", key)
            continue
        if not row.data:
            continue
        result_hours = _hours(lb.start, lb.end)
        if result_hours <= 0:
            continue
        # credit the resolution missing between the first and last sample
        scale = (resolution_hours + result_hours) / result_hours
        lb.total_cost += row.data[0].value * result_hours * scale
        lb.end = lb.end + resolution
        lb.ip = row.ingress_ip
        lb.private = is_private_ip(row.ingress_ip)
    return lb_map


def apply_load_balancers_to_pods(window, pod_map, lb_map, allocs_by_service):
    """Distribute each load balancer's cost over the allocations of its service."""
    for service_key, lb in lb_map.items():
        allocs = allocs_by_service.get(service_key, [])
        overlaps = []
        for alloc in allocs:
            start = max(alloc.start, lb.start)
            end = min(alloc.end, lb.end)
            overlaps.append(_hours(start, end) if start < end else 0.0)
        total_hours = sum(overlaps)

        if total_hours <= 0:
            pod = pod_map.unmounted_pod_for_cluster(window, service_key.cluster)
            for alloc in pod.allocations.values():
                alloc.load_balancer_cost += lb.total_cost
                if service_key.service not in alloc.properties.services:
                    alloc.properties.services.append(service_key.service)
            continue

        for alloc, hours in zip(allocs, overlaps):
            if hours <= 0:
                continue
            cost = lb.total_cost * hours / total_hours
            alloc.load_balancer_cost += cost
            alloc.load_balancers[str(service_key)] = LbAllocation(
                service=f"{service_key.namespace}/{service_key.service}",
                cost=cost,
                private=lb.private,
                ip=lb.ip,
                hours=hours,
            )
