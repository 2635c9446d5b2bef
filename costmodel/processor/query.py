#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Allocation queries: compute, filter, aggregate and accumulate by step."""
import logging

from costmodel.allocation.allocation import ANNOTATION_PROP
from costmodel.allocation.allocation import CLUSTER_PROP
from costmodel.allocation.allocation import CONTAINER_PROP
from costmodel.allocation.allocation import KNOWN_PROPS
from costmodel.allocation.allocation import LABEL_PROP
from costmodel.allocation.allocation import NAMESPACE_PROP
from costmodel.allocation.allocation import NODE_PROP
from costmodel.allocation.allocation import POD_PROP
from costmodel.allocation.allocation_set import ACCUMULATE_ALL
from costmodel.allocation.allocation_set import ACCUMULATE_NONE
from costmodel.allocation.allocation_set import ACCUMULATE_OPTIONS
from costmodel.allocation.allocation_set import AggregationOptions
from costmodel.allocation.allocation_set import AllocationSetRange
from costmodel.allocation.window import Window
from costmodel.common import log_json
from costmodel.filter.parser import parse_filter
from costmodel.processor.cluster import cluster_nodes
from costmodel.processor.cluster import node_resource_costs

LOG = logging.getLogger(__name__)

DEFAULT_AGGREGATION = [CLUSTER_PROP, NODE_PROP, NAMESPACE_PROP, POD_PROP, CONTAINER_PROP]
AGGREGATE_ALL = "all"

_PROPS_BY_LOWER = {prop.lower(): prop for prop in KNOWN_PROPS}


def parse_aggregation_properties(aggregations):
    """Return the aggregation properties named in a list of strings.

    No aggregations means per container; ``["all"]`` aggregates everything
    into one allocation. Unknown names are ignored.
    """
    if not aggregations:
        return list(DEFAULT_AGGREGATION)
    if len(aggregations) == 1 and aggregations[0] == AGGREGATE_ALL:
        return []

    aggregate_by = []
    for aggregation in aggregations:
        aggregation = aggregation.strip()
        if not aggregation:
            continue
        prop = _PROPS_BY_LOWER.get(aggregation.lower())
        if prop is not None:
            aggregate_by.append(prop)
        elif aggregation.startswith((f"{LABEL_PROP}:", f"{ANNOTATION_PROP}:")):
            aggregate_by.append(aggregation)
        else:
            LOG.debug("ignoring unknown aggregation property %r", aggregation)
    return aggregate_by


def query_allocation(
    cost_model,
    start,
    end,
    step=None,
    aggregate_by=None,
    include_idle=False,
    idle_by_node=False,
    include_proportional_asset_resource_costs=False,
    include_aggregated_metadata=False,
    share_lb=False,
    accumulate_by=ACCUMULATE_NONE,
    share_idle=False,
    filter_expr="",
):
    """Return an AllocationSetRange of one set per step of [start, end).

    Each set is given idle allocations when requested, filtered, and
    aggregated before the range is accumulated. Idle is computed against
    every allocation and survives the filter.

    Raises FilterParseError for a malformed filter, ValueError for an unknown
    accumulate option, and the computation errors of compute_allocation and
    cluster_nodes.
    """
    accumulate_by = accumulate_by or ACCUMULATE_NONE
    if accumulate_by not in ACCUMULATE_OPTIONS:
        raise ValueError(f"unknown accumulate option: {accumulate_by}")
    matcher = parse_filter(filter_expr) if filter_expr else None
    if aggregate_by is None:
        aggregate_by = list(DEFAULT_AGGREGATION)

    window = Window(start, end)
    step = step or window.duration()
    options = AggregationOptions(
        share_idle=share_idle,
        idle_by_node=idle_by_node,
        share_lb=share_lb,
        include_proportional_asset_resource_costs=include_proportional_asset_resource_costs,
        include_aggregated_metadata=include_aggregated_metadata,
    )

    set_range = AllocationSetRange()
    for step_window in window.split(step):
        allocation_set = cost_model.compute_allocation(step_window.start, step_window.end)
        if include_idle or share_idle:
            node_map = cluster_nodes(cost_model.data_source, cost_model.provider, step_window.start, step_window.end)
            allocation_set.compute_idle(node_resource_costs(node_map), idle_by_node)
        if matcher is not None:
            allocation_set = allocation_set.filter(matcher, keep_idle=True)
        allocation_set.aggregate_by(aggregate_by, options)
        set_range.append(allocation_set)

    LOG.info(
        log_json(
            msg="queried allocation",
            window=window,
            sets=set_range.length,
            aggregate_by=aggregate_by,
            accumulate_by=accumulate_by,
        )
    )
    if accumulate_by == ACCUMULATE_ALL:
        return set_range.accumulate()
    return set_range.accumulate_by(accumulate_by)
