#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Costed allocation records."""
import copy
import math
from dataclasses import dataclass
from dataclasses import field
from dataclasses import fields

from costmodel.allocation.window import Window
from costmodel.util.common import GIB

IDLE_SUFFIX = "__idle__"
SHARED_SUFFIX = "__shared__"
UNALLOCATED_SUFFIX = "__unallocated__"
UNMOUNTED_SUFFIX = "__unmounted__"

CLUSTER_PROP = "cluster"
NODE_PROP = "node"
NAMESPACE_PROP = "namespace"
CONTROLLER_KIND_PROP = "controllerKind"
CONTROLLER_PROP = "controller"
SERVICE_PROP = "service"
POD_PROP = "pod"
CONTAINER_PROP = "container"
PROVIDER_ID_PROP = "providerID"
LABEL_PROP = "label"
ANNOTATION_PROP = "annotation"

KNOWN_PROPS = (
    CLUSTER_PROP,
    NODE_PROP,
    NAMESPACE_PROP,
    CONTROLLER_KIND_PROP,
    CONTROLLER_PROP,
    SERVICE_PROP,
    POD_PROP,
    CONTAINER_PROP,
    PROVIDER_ID_PROP,
)

_PROP_ATTRS = {
    CLUSTER_PROP: "cluster",
    NODE_PROP: "node",
    NAMESPACE_PROP: "namespace",
    CONTROLLER_KIND_PROP: "controller_kind",
    CONTROLLER_PROP: "controller",
    POD_PROP: "pod",
    CONTAINER_PROP: "container",
    PROVIDER_ID_PROP: "provider_id",
}


def _intersect_dicts(left, right):
    return {key: value for key, value in left.items() if right.get(key) == value}


@dataclass
class AllocationProperties:
    """Identity of an allocation."""

    cluster: str = ""
    node: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""
    controller_kind: str = ""
    controller: str = ""
    services: list = field(default_factory=list)
    provider_id: str = ""
    labels: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    namespace_labels: dict = field(default_factory=dict)
    namespace_annotations: dict = field(default_factory=dict)

    def clone(self):
        return copy.deepcopy(self)

    def intersection(self, other):
        """Return the properties both allocations agree on."""
        result = AllocationProperties()
        for attr in _PROP_ATTRS.values():
            if getattr(self, attr) == getattr(other, attr):
                setattr(result, attr, getattr(self, attr))
        # controller kind is meaningless without its controller
        if result.controller_kind and not result.controller:
            result.controller_kind = ""
        result.services = [svc for svc in self.services if svc in other.services]
        result.labels = _intersect_dicts(self.labels, other.labels)
        result.annotations = _intersect_dicts(self.annotations, other.annotations)
        result.namespace_labels = _intersect_dicts(self.namespace_labels, other.namespace_labels)
        result.namespace_annotations = _intersect_dicts(self.namespace_annotations, other.namespace_annotations)
        return result

    def restrict_to(self, aggregate_by):
        """Return properties holding only what the aggregation keys on."""
        result = AllocationProperties()
        for prop in aggregate_by:
            if prop in _PROP_ATTRS:
                setattr(result, _PROP_ATTRS[prop], getattr(self, _PROP_ATTRS[prop]))
                if prop == CONTROLLER_PROP:
                    result.controller_kind = self.controller_kind
            elif prop == SERVICE_PROP:
                result.services = list(self.services)
            elif prop.startswith(f"{LABEL_PROP}:"):
                name = prop.split(":", 1)[1]
                if name in self.labels:
                    result.labels[name] = self.labels[name]
            elif prop.startswith(f"{ANNOTATION_PROP}:"):
                name = prop.split(":", 1)[1]
                if name in self.annotations:
                    result.annotations[name] = self.annotations[name]
        return result

    def aggregation_value(self, prop):
        """Return the key segment for one aggregation property."""
        if prop in _PROP_ATTRS:
            value = getattr(self, _PROP_ATTRS[prop])
            if prop == CONTROLLER_PROP and value and self.controller_kind:
                value = f"{self.controller_kind}:{value}"
            return value or UNALLOCATED_SUFFIX
        if prop == SERVICE_PROP:
            return sorted(self.services)[0] if self.services else UNALLOCATED_SUFFIX
        if prop.startswith(f"{LABEL_PROP}:"):
            name = prop.split(":", 1)[1]
            value = self.labels.get(name)
            return f"{name}={value}" if value else UNALLOCATED_SUFFIX
        if prop.startswith(f"{ANNOTATION_PROP}:"):
            name = prop.split(":", 1)[1]
            value = self.annotations.get(name)
            return f"{name}={value}" if value else UNALLOCATED_SUFFIX
        raise ValueError(f"unknown aggregation property: {prop}")

    def generate_key(self, aggregate_by):
        """Return the aggregation key for the given properties."""
        return "/".join(self.aggregation_value(prop) for prop in aggregate_by)

    def to_dict(self):
        return {
            "cluster": self.cluster,
            "node": self.node,
            "namespace": self.namespace,
            "pod": self.pod,
            "container": self.container,
            "controllerKind": self.controller_kind,
            "controller": self.controller,
            "services": list(self.services),
            "providerID": self.provider_id,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "namespaceLabels": dict(self.namespace_labels),
            "namespaceAnnotations": dict(self.namespace_annotations),
        }


def _sanitize_dataclass(obj):
    for fld in fields(obj):
        value = getattr(obj, fld.name)
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            setattr(obj, fld.name, 0.0)


@dataclass
class GPUAllocation:
    device: str = ""
    model: str = ""
    uuid: str = ""
    is_shared: bool = None
    gpu_usage_average: float = 0.0
    gpu_request_average: float = 0.0


@dataclass
class RawAllocationOnlyData:
    """Per-allocation values that cannot be summed across windows."""

    cpu_core_usage_max: float = 0.0
    ram_bytes_usage_max: float = 0.0
    gpu_usage_max: float = 0.0
    cpu_core_limit_average: float = 0.0
    ram_bytes_limit_average: float = 0.0


@dataclass
class PVAllocation:
    byte_hours: float = 0.0
    cost: float = 0.0
    provider_id: str = ""


@dataclass
class LbAllocation:
    service: str = ""
    cost: float = 0.0
    private: bool = False
    ip: str = ""
    hours: float = 0.0


@dataclass
class ProportionalAssetResourceCost:
    """An allocation's share of the node it ran on."""

    cluster: str = ""
    node: str = ""
    cpu_percentage: float = 0.0
    ram_percentage: float = 0.0
    gpu_percentage: float = 0.0
    node_resource_cost_percentage: float = 0.0


@dataclass
class Allocation:
    """Costed resource usage of one container over a window.

    Resource-hour totals and cost components are summed by ``add``; request
    and usage averages are combined weighted by running minutes.
    """

    name: str = ""
    properties: AllocationProperties = field(default_factory=AllocationProperties)
    window: Window = None
    start: object = None
    end: object = None
    cpu_core_hours: float = 0.0
    cpu_core_request_average: float = 0.0
    cpu_core_usage_average: float = 0.0
    cpu_cost: float = 0.0
    cpu_cost_adjustment: float = 0.0
    gpu_hours: float = 0.0
    gpu_request_average: float = 0.0
    gpu_usage_average: float = 0.0
    gpu_cost: float = 0.0
    gpu_cost_adjustment: float = 0.0
    gpu_allocation: GPUAllocation = None
    network_transfer_bytes: float = 0.0
    network_receive_bytes: float = 0.0
    network_cost: float = 0.0
    network_cross_zone_cost: float = 0.0
    network_cross_region_cost: float = 0.0
    network_internet_cost: float = 0.0
    network_cost_adjustment: float = 0.0
    load_balancer_cost: float = 0.0
    load_balancer_cost_adjustment: float = 0.0
    pvs: dict = field(default_factory=dict)
    pv_cost_adjustment: float = 0.0
    ram_byte_hours: float = 0.0
    ram_bytes_request_average: float = 0.0
    ram_bytes_usage_average: float = 0.0
    ram_cost: float = 0.0
    ram_cost_adjustment: float = 0.0
    shared_cost: float = 0.0
    external_cost: float = 0.0
    raw_allocation_only: RawAllocationOnlyData = None
    load_balancers: dict = field(default_factory=dict)
    proportional_asset_resource_costs: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.window is None:
            self.window = Window(self.start, self.end)
        if self.start is None:
            self.start = self.window.start
        if self.end is None:
            self.end = self.window.end

    def clone(self):
        return copy.deepcopy(self)

    def minutes(self):
        if self.start is None or self.end is None:
            return 0.0
        return (self.end - self.start).total_seconds() / 60.0

    def hours(self):
        return self.minutes() / 60.0

    def _per_hour(self, value):
        hrs = self.hours()
        if hrs <= 0:
            return 0.0
        return value / hrs

    def cpu_cores(self):
        return self._per_hour(self.cpu_core_hours)

    def ram_bytes(self):
        return self._per_hour(self.ram_byte_hours)

    def gpus(self):
        return self._per_hour(self.gpu_hours)

    def pv_byte_hours(self):
        return sum(pv.byte_hours for pv in self.pvs.values())

    def pv_bytes(self):
        return self._per_hour(self.pv_byte_hours())

    def pv_cost(self):
        return sum(pv.cost for pv in self.pvs.values())

    def cpu_total_cost(self):
        return self.cpu_cost + self.cpu_cost_adjustment

    def gpu_total_cost(self):
        return self.gpu_cost + self.gpu_cost_adjustment

    def ram_total_cost(self):
        return self.ram_cost + self.ram_cost_adjustment

    def pv_total_cost(self):
        return self.pv_cost() + self.pv_cost_adjustment

    def network_total_cost(self):
        return self.network_cost + self.network_cost_adjustment

    def load_balancer_total_cost(self):
        return self.load_balancer_cost + self.load_balancer_cost_adjustment

    def total_cost(self):
        return (
            self.cpu_total_cost()
            + self.gpu_total_cost()
            + self.ram_total_cost()
            + self.pv_total_cost()
            + self.network_total_cost()
            + self.load_balancer_total_cost()
            + self.shared_cost
            + self.external_cost
        )

    def is_idle(self):
        return IDLE_SUFFIX in self.name

    def is_unmounted(self):
        return UNMOUNTED_SUFFIX in self.name

    def is_unallocated(self):
        return UNALLOCATED_SUFFIX in self.name

    def add(self, other):
        """Return a new allocation combining this one and other."""
        result = self.clone()
        result.add_in_place(other)
        return result

    def add_in_place(self, other):
        if other is None:
            return

        self.properties = self.properties.intersection(other.properties)

        mine, theirs = self.minutes(), other.minutes()
        cpu_request_mins = self.cpu_core_request_average * mine + other.cpu_core_request_average * theirs
        cpu_usage_mins = self.cpu_core_usage_average * mine + other.cpu_core_usage_average * theirs
        ram_request_mins = self.ram_bytes_request_average * mine + other.ram_bytes_request_average * theirs
        ram_usage_mins = self.ram_bytes_usage_average * mine + other.ram_bytes_usage_average * theirs
        gpu_request_mins = self.gpu_request_average * mine + other.gpu_request_average * theirs
        gpu_usage_mins = self.gpu_usage_average * mine + other.gpu_usage_average * theirs
        gpu_alloc = _combine_gpu_allocations(self.gpu_allocation, mine, other.gpu_allocation, theirs)

        self.window = self.window.expand(other.window)
        if other.start is not None and (self.start is None or other.start < self.start):
            self.start = other.start
        if other.end is not None and (self.end is None or other.end > self.end):
            self.end = other.end

        self.cpu_core_hours += other.cpu_core_hours
        self.cpu_cost += other.cpu_cost
        self.cpu_cost_adjustment += other.cpu_cost_adjustment
        self.gpu_hours += other.gpu_hours
        self.gpu_cost += other.gpu_cost
        self.gpu_cost_adjustment += other.gpu_cost_adjustment
        self.ram_byte_hours += other.ram_byte_hours
        self.ram_cost += other.ram_cost
        self.ram_cost_adjustment += other.ram_cost_adjustment
        self.network_transfer_bytes += other.network_transfer_bytes
        self.network_receive_bytes += other.network_receive_bytes
        self.network_cost += other.network_cost
        self.network_cross_zone_cost += other.network_cross_zone_cost
        self.network_cross_region_cost += other.network_cross_region_cost
        self.network_internet_cost += other.network_internet_cost
        self.network_cost_adjustment += other.network_cost_adjustment
        self.load_balancer_cost += other.load_balancer_cost
        self.load_balancer_cost_adjustment += other.load_balancer_cost_adjustment
        self.pv_cost_adjustment += other.pv_cost_adjustment
        self.shared_cost += other.shared_cost
        self.external_cost += other.external_cost

        for key, pv in other.pvs.items():
            if key in self.pvs:
                self.pvs[key].byte_hours += pv.byte_hours
                self.pvs[key].cost += pv.cost
            else:
                self.pvs[key] = copy.copy(pv)

        for key, lb in other.load_balancers.items():
            if key in self.load_balancers:
                self.load_balancers[key].cost += lb.cost
                self.load_balancers[key].hours += lb.hours
            else:
                self.load_balancers[key] = copy.copy(lb)

        for key, parc in other.proportional_asset_resource_costs.items():
            if key in self.proportional_asset_resource_costs:
                mine_parc = self.proportional_asset_resource_costs[key]
                mine_parc.cpu_percentage += parc.cpu_percentage
                mine_parc.ram_percentage += parc.ram_percentage
                mine_parc.gpu_percentage += parc.gpu_percentage
                mine_parc.node_resource_cost_percentage += parc.node_resource_cost_percentage
            else:
                self.proportional_asset_resource_costs[key] = copy.copy(parc)

        minutes = self.minutes()
        if minutes > 0:
            self.cpu_core_request_average = cpu_request_mins / minutes
            self.cpu_core_usage_average = cpu_usage_mins / minutes
            self.ram_bytes_request_average = ram_request_mins / minutes
            self.ram_bytes_usage_average = ram_usage_mins / minutes
            self.gpu_request_average = gpu_request_mins / minutes
            self.gpu_usage_average = gpu_usage_mins / minutes
            if gpu_alloc is not None:
                gpu_alloc.gpu_request_average /= minutes
                gpu_alloc.gpu_usage_average /= minutes
        else:
            self.cpu_core_request_average = 0.0
            self.cpu_core_usage_average = 0.0
            self.ram_bytes_request_average = 0.0
            self.ram_bytes_usage_average = 0.0
            self.gpu_request_average = 0.0
            self.gpu_usage_average = 0.0
            if gpu_alloc is not None:
                gpu_alloc.gpu_request_average = 0.0
                gpu_alloc.gpu_usage_average = 0.0
        self.gpu_allocation = gpu_alloc

        # maxima cannot be combined; batched computation recomputes them
        self.raw_allocation_only = None

    def sanitize_nan(self):
        """Replace every NaN or infinite value with zero."""
        _sanitize_dataclass(self)
        for pv in self.pvs.values():
            _sanitize_dataclass(pv)
        for lb in self.load_balancers.values():
            _sanitize_dataclass(lb)
        for parc in self.proportional_asset_resource_costs.values():
            _sanitize_dataclass(parc)
        if self.raw_allocation_only is not None:
            _sanitize_dataclass(self.raw_allocation_only)
        if self.gpu_allocation is not None:
            _sanitize_dataclass(self.gpu_allocation)

    def to_dict(self):
        """Return a flat, serializable rendering of the allocation."""
        raw = self.raw_allocation_only
        return {
            "name": self.name,
            "properties": self.properties.to_dict(),
            "window": {"start": self.window.start, "end": self.window.end},
            "start": self.start,
            "end": self.end,
            "minutes": self.minutes(),
            "cpuCores": self.cpu_cores(),
            "cpuCoreRequestAverage": self.cpu_core_request_average,
            "cpuCoreUsageAverage": self.cpu_core_usage_average,
            "cpuCoreHours": self.cpu_core_hours,
            "cpuCost": self.cpu_cost,
            "cpuCostAdjustment": self.cpu_cost_adjustment,
            "gpuCount": self.gpus(),
            "gpuRequestAverage": self.gpu_request_average,
            "gpuUsageAverage": self.gpu_usage_average,
            "gpuHours": self.gpu_hours,
            "gpuCost": self.gpu_cost,
            "gpuCostAdjustment": self.gpu_cost_adjustment,
            "networkTransferBytes": self.network_transfer_bytes,
            "networkReceiveBytes": self.network_receive_bytes,
            "networkCost": self.network_cost,
            "networkCrossZoneCost": self.network_cross_zone_cost,
            "networkCrossRegionCost": self.network_cross_region_cost,
            "networkInternetCost": self.network_internet_cost,
            "networkCostAdjustment": self.network_cost_adjustment,
            "loadBalancerCost": self.load_balancer_cost,
            "loadBalancerCostAdjustment": self.load_balancer_cost_adjustment,
            "pvBytes": self.pv_bytes(),
            "pvByteHours": self.pv_byte_hours(),
            "pvCost": self.pv_cost(),
            "pvs": {str(key): {"byteHours": pv.byte_hours, "cost": pv.cost} for key, pv in self.pvs.items()},
            "pvCostAdjustment": self.pv_cost_adjustment,
            "ramBytes": self.ram_bytes(),
            "ramByteRequestAverage": self.ram_bytes_request_average,
            "ramByteUsageAverage": self.ram_bytes_usage_average,
            "ramByteHours": self.ram_byte_hours,
            "ramCost": self.ram_cost,
            "ramCostAdjustment": self.ram_cost_adjustment,
            "sharedCost": self.shared_cost,
            "externalCost": self.external_cost,
            "totalCost": self.total_cost(),
            "rawAllocationOnly": None
            if raw is None
            else {
                "cpuCoreUsageMax": raw.cpu_core_usage_max,
                "ramByteUsageMax": raw.ram_bytes_usage_max,
                "gpuUsageMax": raw.gpu_usage_max,
            },
        }


def _combine_gpu_allocations(left, left_minutes, right, right_minutes):
    """Combine GPU detail, leaving averages as unit-minutes for the caller to divide."""
    if left is None and right is None:
        return None
    left = left or GPUAllocation()
    right = right or GPUAllocation()
    return GPUAllocation(
        device=left.device if left.device == right.device else "",
        model=left.model if left.model == right.model else "",
        uuid=left.uuid if left.uuid == right.uuid else "",
        is_shared=left.is_shared if left.is_shared == right.is_shared else None,
        gpu_usage_average=left.gpu_usage_average * left_minutes + right.gpu_usage_average * right_minutes,
        gpu_request_average=left.gpu_request_average * left_minutes + right.gpu_request_average * right_minutes,
    )


def ram_gib_hours(alloc):
    """Return an allocation's RAM usage in GiB-hours."""
    return alloc.ram_byte_hours / GIB
