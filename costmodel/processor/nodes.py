#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Node pricing and the resource costs it puts on allocations."""
import copy
import logging
import math
from dataclasses import dataclass

from costmodel.common.log import deduped_warning
from costmodel.pricing.provider import node_discount
from costmodel.processor.keys import new_result_node_key
from costmodel.processor.keys import NodeKey
from costmodel.util.common import GIB
from costmodel.util.common import is_nan_or_inf
from costmodel.util.common import safe_float
from costmodel.util.providerid import parse_id

LOG = logging.getLogger(__name__)

SOURCE_PROMETHEUS = "prometheus"
SOURCE_CUSTOM = "custom"


@dataclass
class NodePricing:
    """Hourly unit prices of one node."""

    name: str = ""
    node_type: str = ""
    provider_id: str = ""
    preemptible: bool = False
    cost_per_cpu_hr: float = 0.0
    cost_per_ram_gib_hr: float = 0.0
    cost_per_gpu_hr: float = 0.0
    discount: float = 0.0
    source: str = SOURCE_PROMETHEUS


def _apply_node_prices(node_map, rows, attr, what):
    for row in rows:
        try:
            key = new_result_node_key(row.cluster, row.node)
        except ValueError as err:
            deduped_warning(LOG, "%s result missing field: %s", what, err)
            continue
        if not row.instance_type:
            deduped_warning(LOG, "%s result missing field: instance_type: %s", what, key)
        if not row.provider_id:
            deduped_warning(LOG, "%s result missing field: provider_id: %s", what, key)
        if not row.data:
            continue

        node = node_map.get(key)
        if node is None:
            node = NodePricing(name=key.node, node_type=row.instance_type, provider_id=parse_id(row.provider_id))
            node_map[key] = node
        setattr(node, attr, row.data[0].value)


def build_node_map(cpu_price_rows, ram_price_rows, gpu_price_rows):
    """Return NodePricing keyed by NodeKey from the per-node price series."""
    node_map = {}
    _apply_node_prices(node_map, cpu_price_rows, "cost_per_cpu_hr", "node CPU price")
    _apply_node_prices(node_map, ram_price_rows, "cost_per_ram_gib_hr", "node RAM price")
    _apply_node_prices(node_map, gpu_price_rows, "cost_per_gpu_hr", "node GPU price")
    return node_map


def apply_node_spot(node_map, rows):
    """Mark known nodes reported as spot instances as preemptible."""
    for row in rows:
        try:
            key = new_result_node_key(row.cluster, row.node)
        except ValueError as err:
            deduped_warning(LOG, "node spot result missing field: %s", err)
            continue
        node = node_map.get(key)
        if node is None:
            deduped_warning(LOG, "node spot result for missing node: %s", key)
            continue
        if row.data and row.data[0].value > 0:
            node.preemptible = True


def apply_node_discount(node_map, provider):
    for key, node in node_map.items():
        try:
            node.discount = node_discount(provider, node.node_type, node.preemptible)
        except ValueError as err:
            LOG.warning("failed to parse discount for node %s: %s", key, err)
            node.discount = 0.0


def custom_node_pricing(pricing, spot=False):
    """Return node prices taken from custom pricing.

    Raises ValueError when a configured price cannot be parsed.
    """
    if spot:
        cpu, ram, gpu = pricing.spot_cpu, pricing.spot_ram, pricing.spot_gpu
    else:
        cpu, ram, gpu = pricing.cpu, pricing.ram, pricing.gpu
    return NodePricing(
        preemptible=spot,
        cost_per_cpu_hr=safe_float(cpu),
        cost_per_ram_gib_hr=safe_float(ram),
        cost_per_gpu_hr=safe_float(gpu),
        source=SOURCE_CUSTOM,
    )


def get_node_pricing(node_map, key, pricing):
    """Return the unit prices for a node.

    Custom pricing replaces metric prices when enabled, and fills in any CPU
    or RAM price that is zero or NaN and any GPU price that is NaN. The
    node's discount is then taken off the CPU and RAM prices.
    """
    node = node_map.get(key)
    if node is None:
        deduped_warning(LOG, "failed to find node for %s", key)
        return custom_node_pricing(pricing)

    if pricing.is_custom_prices_enabled():
        result = custom_node_pricing(pricing, node.preemptible)
        result.name = node.name
        result.node_type = node.node_type
        result.provider_id = node.provider_id
        result.discount = node.discount
    else:
        result = copy.copy(node)
        custom = custom_node_pricing(pricing)
        if result.cost_per_cpu_hr == 0 or math.isnan(result.cost_per_cpu_hr):
            result.cost_per_cpu_hr = custom.cost_per_cpu_hr
            result.source += "/customCPU"
        if result.cost_per_ram_gib_hr == 0 or math.isnan(result.cost_per_ram_gib_hr):
            result.cost_per_ram_gib_hr = custom.cost_per_ram_gib_hr
            result.source += "/customRAM"
        if math.isnan(result.cost_per_gpu_hr):
            result.cost_per_gpu_hr = custom.cost_per_gpu_hr
            result.source += "/customGPU"

    for attr in ("cost_per_cpu_hr", "cost_per_ram_gib_hr", "cost_per_gpu_hr"):
        if is_nan_or_inf(getattr(result, attr)):
            LOG.warning("invalid %s for node %s, setting to zero", attr, key)
            setattr(result, attr, 0.0)

    result.cost_per_cpu_hr *= 1.0 - result.discount
    result.cost_per_ram_gib_hr *= 1.0 - result.discount
    return result


def apply_nodes_to_pods(pod_map, node_map, pricing):
    """Cost every allocation's CPU, RAM and GPU hours at its node's prices."""
    cache = {}
    for _, pod in pod_map:
        for alloc in pod.allocations.values():
            if alloc.is_unmounted():
                continue
            if not alloc.properties.node:
                deduped_warning(LOG, "missing node for %s", alloc.name)
                continue
            key = NodeKey(alloc.properties.cluster, alloc.properties.node)
            node = cache.get(key)
            if node is None:
                node = get_node_pricing(node_map, key, pricing)
                cache[key] = node

            alloc.properties.provider_id = node.provider_id
            alloc.cpu_cost = alloc.cpu_core_hours * node.cost_per_cpu_hr
            alloc.ram_cost = (alloc.ram_byte_hours / GIB) * node.cost_per_ram_gib_hr
            alloc.gpu_cost = alloc.gpu_hours * node.cost_per_gpu_hr
