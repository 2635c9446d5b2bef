#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Allocation sets and ranges of sets."""
import logging
from collections import defaultdict
from dataclasses import dataclass

import pandas as pd
from dateutil.relativedelta import MO
from dateutil.relativedelta import relativedelta

from costmodel.allocation.allocation import Allocation
from costmodel.allocation.allocation import AllocationProperties
from costmodel.allocation.allocation import CLUSTER_PROP
from costmodel.allocation.allocation import IDLE_SUFFIX
from costmodel.allocation.allocation import NODE_PROP
from costmodel.allocation.allocation import ProportionalAssetResourceCost
from costmodel.allocation.window import Window
from costmodel.common import log_json
from costmodel.exceptions import AccumulationError

LOG = logging.getLogger(__name__)

ALL_KEY = "__all__"

ACCUMULATE_NONE = "none"
ACCUMULATE_HOUR = "hour"
ACCUMULATE_DAY = "day"
ACCUMULATE_WEEK = "week"
ACCUMULATE_MONTH = "month"
ACCUMULATE_QUARTER = "quarter"
ACCUMULATE_ALL = "all"

ACCUMULATE_OPTIONS = (
    ACCUMULATE_NONE,
    ACCUMULATE_HOUR,
    ACCUMULATE_DAY,
    ACCUMULATE_WEEK,
    ACCUMULATE_MONTH,
    ACCUMULATE_QUARTER,
    ACCUMULATE_ALL,
)

DATAFRAME_COLUMNS = [
    "name",
    "cluster",
    "node",
    "namespace",
    "pod",
    "container",
    "controller_kind",
    "controller",
    "start",
    "end",
    "minutes",
    "cpu_core_hours",
    "cpu_cost",
    "gpu_hours",
    "gpu_cost",
    "ram_byte_hours",
    "ram_cost",
    "pv_byte_hours",
    "pv_cost",
    "network_cost",
    "load_balancer_cost",
    "shared_cost",
    "external_cost",
    "total_cost",
]


@dataclass
class NodeResourceCosts:
    """Discounted CPU, RAM and GPU cost of one node over a window."""

    cluster: str
    node: str
    cpu_cost: float = 0.0
    ram_cost: float = 0.0
    gpu_cost: float = 0.0


@dataclass
class AggregationOptions:
    share_idle: bool = False
    idle_by_node: bool = False
    share_lb: bool = False
    include_proportional_asset_resource_costs: bool = False
    include_aggregated_metadata: bool = False


class AllocationSet:
    """Allocations keyed by name over one window."""

    def __init__(self, start, end, *allocations):
        self.window = Window(start, end)
        self.allocations = {}
        self.errors = []
        self.warnings = []
        for alloc in allocations:
            self.insert(alloc)

    def __repr__(self):
        return f"AllocationSet(window={self.window}, length={self.length})"

    def __iter__(self):
        return iter(list(self.allocations.values()))

    def __len__(self):
        return len(self.allocations)

    @property
    def start(self):
        return self.window.start

    @property
    def end(self):
        return self.window.end

    @property
    def length(self):
        return len(self.allocations)

    def is_empty(self):
        return not self.allocations

    def get(self, name):
        return self.allocations.get(name)

    def set(self, alloc):
        """Store an allocation under its name, replacing any existing one."""
        self.allocations[alloc.name] = alloc

    def delete(self, name):
        self.allocations.pop(name, None)

    def insert(self, alloc):
        """Store an allocation, adding it into an existing one of the same name."""
        existing = self.allocations.get(alloc.name)
        if existing is None:
            self.allocations[alloc.name] = alloc
        else:
            existing.add_in_place(alloc)

    def clone(self):
        result = AllocationSet(self.window.start, self.window.end)
        result.allocations = {name: alloc.clone() for name, alloc in self.allocations.items()}
        result.errors = list(self.errors)
        result.warnings = list(self.warnings)
        return result

    def total_cost(self):
        return sum(alloc.total_cost() for alloc in self.allocations.values())

    def idle_allocations(self):
        return {name: alloc for name, alloc in self.allocations.items() if alloc.is_idle()}

    def accumulate(self, other):
        """Return a new set summing this set and other over their combined window."""
        if other is None:
            return self.clone()
        window = self.window.expand(other.window)
        result = AllocationSet(window.start, window.end)
        for alloc in self.allocations.values():
            result.insert(alloc.clone())
        for alloc in other.allocations.values():
            result.insert(alloc.clone())
        result.errors = self.errors + other.errors
        result.warnings = self.warnings + other.warnings
        return result

    def filter(self, matcher, keep_idle=False):
        """Return a new set holding the allocations the matcher accepts.

        Idle allocations are kept regardless of the matcher when keep_idle is set.
        """
        result = AllocationSet(self.window.start, self.window.end)
        result.errors = list(self.errors)
        result.warnings = list(self.warnings)
        for alloc in self.allocations.values():
            if matcher is None or (keep_idle and alloc.is_idle()) or matcher.matches(alloc):
                result.set(alloc.clone())
        return result

    def sanitize_nan(self):
        for alloc in self.allocations.values():
            alloc.sanitize_nan()

    def compute_idle(self, node_costs, idle_by_node=False):
        """Add idle allocations for node cost no allocation accounts for.

        Idle is computed per cluster, or per node when idle_by_node is set,
        as the discounted node cost minus the allocated cost.
        """
        totals = {}
        for nc in node_costs:
            key = (nc.cluster, nc.node) if idle_by_node else (nc.cluster,)
            total = totals.setdefault(key, [0.0, 0.0, 0.0])
            total[0] += nc.cpu_cost
            total[1] += nc.ram_cost
            total[2] += nc.gpu_cost

        for alloc in self.allocations.values():
            if alloc.is_idle():
                continue
            props = alloc.properties
            key = (props.cluster, props.node) if idle_by_node else (props.cluster,)
            if key not in totals:
                continue
            totals[key][0] -= alloc.cpu_total_cost()
            totals[key][1] -= alloc.ram_total_cost()
            totals[key][2] -= alloc.gpu_total_cost()

        for key, (cpu_cost, ram_cost, gpu_cost) in totals.items():
            props = AllocationProperties(cluster=key[0])
            if idle_by_node:
                props.node = key[1]
            name = "/".join(list(key) + [IDLE_SUFFIX])
            idle = Allocation(
                name=name,
                properties=props,
                window=self.window.clone(),
                start=self.window.start,
                end=self.window.end,
                cpu_cost=cpu_cost,
                ram_cost=ram_cost,
                gpu_cost=gpu_cost,
            )
            self.insert(idle)

    def _share_idle(self, idle_by_node):
        def group_of(alloc):
            props = alloc.properties
            return (props.cluster, props.node) if idle_by_node else (props.cluster,)

        groups = defaultdict(list)
        for alloc in self.allocations.values():
            if not alloc.is_idle():
                groups[group_of(alloc)].append(alloc)

        for name, idle in self.idle_allocations().items():
            members = groups.get(group_of(idle), [])
            for attr, idle_cost in (
                ("cpu_cost", idle.cpu_cost),
                ("ram_cost", idle.ram_cost),
                ("gpu_cost", idle.gpu_cost),
            ):
                total = sum(getattr(alloc, attr) for alloc in members)
                if total <= 0:
                    continue
                for alloc in members:
                    setattr(alloc, attr, getattr(alloc, attr) + idle_cost * getattr(alloc, attr) / total)
            if members:
                self.delete(name)

    def _share_load_balancers(self):
        by_cluster = defaultdict(list)
        for alloc in self.allocations.values():
            if not alloc.is_idle():
                by_cluster[alloc.properties.cluster].append(alloc)

        for allocs in by_cluster.values():
            lb_cost = sum(alloc.load_balancer_cost for alloc in allocs)
            if lb_cost == 0:
                continue
            weights = [alloc.total_cost() - alloc.load_balancer_cost for alloc in allocs]
            total_weight = sum(weights)
            for alloc, weight in zip(allocs, weights):
                share = weight / total_weight if total_weight > 0 else 1.0 / len(allocs)
                alloc.shared_cost += lb_cost * share
                alloc.load_balancer_cost = 0.0
                alloc.load_balancers = {}

    def _attach_proportional_asset_resource_costs(self):
        totals = defaultdict(lambda: [0.0, 0.0, 0.0])
        for alloc in self.allocations.values():
            node_key = (alloc.properties.cluster, alloc.properties.node)
            totals[node_key][0] += alloc.cpu_cost
            totals[node_key][1] += alloc.ram_cost
            totals[node_key][2] += alloc.gpu_cost
        for alloc in self.allocations.values():
            if alloc.is_idle():
                continue
            cluster, node = alloc.properties.cluster, alloc.properties.node
            cpu_total, ram_total, gpu_total = totals[(cluster, node)]
            node_total = cpu_total + ram_total + gpu_total
            alloc.proportional_asset_resource_costs[f"{cluster}/{node}"] = ProportionalAssetResourceCost(
                cluster=cluster,
                node=node,
                cpu_percentage=alloc.cpu_cost / cpu_total if cpu_total else 0.0,
                ram_percentage=alloc.ram_cost / ram_total if ram_total else 0.0,
                gpu_percentage=alloc.gpu_cost / gpu_total if gpu_total else 0.0,
                node_resource_cost_percentage=(alloc.cpu_cost + alloc.ram_cost + alloc.gpu_cost) / node_total
                if node_total
                else 0.0,
            )

    def _idle_key(self, alloc, aggregate_by):
        parts = []
        for prop in aggregate_by:
            if prop == CLUSTER_PROP:
                parts.append(alloc.properties.cluster)
            elif prop == NODE_PROP and alloc.properties.node:
                parts.append(alloc.properties.node)
        parts.append(IDLE_SUFFIX)
        return "/".join(parts)

    def aggregate_by(self, aggregate_by, options=None):
        """Aggregate the set in place by the given properties.

        Idle allocations are shared out first when requested, otherwise they
        aggregate into their own ``__idle__`` buckets.
        """
        options = options or AggregationOptions()
        if options.share_idle:
            self._share_idle(options.idle_by_node)
        if options.share_lb:
            self._share_load_balancers()
        if options.include_proportional_asset_resource_costs:
            self._attach_proportional_asset_resource_costs()

        aggregated = {}
        for alloc in self.allocations.values():
            if alloc.is_idle():
                key = self._idle_key(alloc, aggregate_by)
            elif aggregate_by:
                key = alloc.properties.generate_key(aggregate_by)
            else:
                key = ALL_KEY
            if key in aggregated:
                aggregated[key].add_in_place(alloc)
                continue
            agg = alloc.clone()
            agg.name = key
            if not options.include_aggregated_metadata and not alloc.is_idle():
                agg.properties = alloc.properties.restrict_to(aggregate_by)
            agg.raw_allocation_only = None
            aggregated[key] = agg

        LOG.debug(
            log_json(
                msg="aggregated allocation set",
                window=self.window,
                aggregate_by=aggregate_by,
                before=len(self.allocations),
                after=len(aggregated),
            )
        )
        self.allocations = aggregated

    def to_dataframe(self):
        """Return the set as a pandas DataFrame, one row per allocation."""
        rows = []
        for alloc in self.allocations.values():
            props = alloc.properties
            rows.append(
                {
                    "name": alloc.name,
                    "cluster": props.cluster,
                    "node": props.node,
                    "namespace": props.namespace,
                    "pod": props.pod,
                    "container": props.container,
                    "controller_kind": props.controller_kind,
                    "controller": props.controller,
                    "start": alloc.start,
                    "end": alloc.end,
                    "minutes": alloc.minutes(),
                    "cpu_core_hours": alloc.cpu_core_hours,
                    "cpu_cost": alloc.cpu_total_cost(),
                    "gpu_hours": alloc.gpu_hours,
                    "gpu_cost": alloc.gpu_total_cost(),
                    "ram_byte_hours": alloc.ram_byte_hours,
                    "ram_cost": alloc.ram_total_cost(),
                    "pv_byte_hours": alloc.pv_byte_hours(),
                    "pv_cost": alloc.pv_total_cost(),
                    "network_cost": alloc.network_total_cost(),
                    "load_balancer_cost": alloc.load_balancer_total_cost(),
                    "shared_cost": alloc.shared_cost,
                    "external_cost": alloc.external_cost,
                    "total_cost": alloc.total_cost(),
                }
            )
        return pd.DataFrame(rows, columns=DATAFRAME_COLUMNS)


def _bucket_start(moment, option):
    if option == ACCUMULATE_HOUR:
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if option == ACCUMULATE_DAY:
        return day
    if option == ACCUMULATE_WEEK:
        return day + relativedelta(weekday=MO(-1))
    if option == ACCUMULATE_MONTH:
        return day.replace(day=1)
    if option == ACCUMULATE_QUARTER:
        return day.replace(month=3 * ((day.month - 1) // 3) + 1, day=1)
    raise ValueError(f"unknown accumulate option: {option}")


class AllocationSetRange:
    """An ordered list of abutting allocation sets."""

    def __init__(self, *sets):
        self.sets = list(sets)

    def __iter__(self):
        return iter(self.sets)

    def __len__(self):
        return len(self.sets)

    @property
    def length(self):
        return len(self.sets)

    def append(self, allocation_set):
        self.sets.append(allocation_set)

    def window(self):
        if not self.sets:
            return Window(None, None)
        return Window(self.sets[0].start, self.sets[-1].end)

    def accumulate(self):
        """Fold every set into one, returned as a single-set range."""
        result = None
        for allocation_set in self.sets:
            result = allocation_set.clone() if result is None else result.accumulate(allocation_set)
        if result is None:
            return AllocationSetRange()
        return AllocationSetRange(result)

    def accumulate_to_set(self):
        """Fold every set into one set, failing unless exactly one results."""
        accumulated = self.accumulate()
        if accumulated.length != 1:
            raise AccumulationError(f"expected 1 accumulated allocation set, found {accumulated.length} sets")
        return accumulated.sets[0]

    def accumulate_by(self, option):
        """Accumulate sets sharing an hour, day, week, month or quarter."""
        if option in (None, "", ACCUMULATE_NONE):
            return AllocationSetRange(*(allocation_set.clone() for allocation_set in self.sets))
        if option == ACCUMULATE_ALL:
            return self.accumulate()

        result = AllocationSetRange()
        bucket, current = None, None
        for allocation_set in self.sets:
            start = _bucket_start(allocation_set.start, option)
            if current is not None and start == bucket:
                current = current.accumulate(allocation_set)
                continue
            if current is not None:
                result.append(current)
            bucket, current = start, allocation_set.clone()
        if current is not None:
            result.append(current)
        return result

    def sanitize_nan(self):
        for allocation_set in self.sets:
            allocation_set.sanitize_nan()
