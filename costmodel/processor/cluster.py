#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Cluster scope asset summaries: disks, nodes, load balancers and management fees."""
import logging
from dataclasses import dataclass
from dataclasses import field

from costmodel.allocation.allocation_set import NodeResourceCosts
from costmodel.allocation.window import Window
from costmodel.common.log import deduped_warning
from costmodel.config import Config
from costmodel.exceptions import QueryGroupError
from costmodel.pricing.provider import node_discount
from costmodel.processor.load_balancers import is_private_ip
from costmodel.source import datasource as q
from costmodel.source.querygroup import await_queries
from costmodel.source.querygroup import QueryGroup
from costmodel.util.common import GIB
from costmodel.util.common import safe_float
from costmodel.util.common import TIB
from costmodel.util.providerid import parse_id
from costmodel.util.providerid import parse_lb_id
from costmodel.util.providerid import parse_local_disk_id
from costmodel.util.providerid import parse_pv_id
from costmodel.util.timeutil import calculate_start_end
from costmodel.util.timeutil import from_timestamp
from costmodel.util.timeutil import minutes_between

LOG = logging.getLogger(__name__)

LOCAL_STORAGE_CLASS = "__local__"
UNKNOWN_STORAGE_CLASS = "__unknown__"
LOCAL_PV_PREFIX = "local-pv-"
MAX_LOCAL_STORAGE_SIZE = TIB

# Instance types reporting more cores than they are billed for
PARTIAL_CPU = {
    "e2-micro": 0.25,
    "e2-small": 0.5,
    "e2-medium": 1.0,
}

DISK_QUERIES = (
    q.PV_PRICE_PER_GIB_HOUR,
    q.PV_BYTES,
    q.PV_ACTIVE_MINUTES,
    q.PV_INFO,
    q.PV_USED_AVG,
    q.PV_USED_MAX,
    q.PVC_INFO,
)
LOCAL_DISK_QUERIES = (
    q.LOCAL_STORAGE_COST,
    q.LOCAL_STORAGE_USED_COST,
    q.LOCAL_STORAGE_USED_AVG,
    q.LOCAL_STORAGE_USED_MAX,
    q.LOCAL_STORAGE_BYTES,
    q.LOCAL_STORAGE_ACTIVE_MINUTES,
)
REQUIRED_NODE_QUERIES = (
    q.NODE_CPU_PRICE_PER_HR,
    q.NODE_CPU_CORES_CAPACITY,
    q.NODE_CPU_CORES_ALLOCATABLE,
    q.NODE_RAM_PRICE_PER_GIB_HR,
    q.NODE_RAM_BYTES_CAPACITY,
    q.NODE_RAM_BYTES_ALLOCATABLE,
    q.NODE_GPU_COUNT,
    q.NODE_GPU_PRICE_PER_HR,
    q.NODE_ACTIVE_MINUTES,
    q.NODE_IS_SPOT,
)
OPTIONAL_NODE_QUERIES = (
    q.NODE_CPU_MODE_TOTAL,
    q.NODE_RAM_SYSTEM_PERCENT,
    q.NODE_RAM_USER_PERCENT,
    q.NODE_LABELS,
)


@dataclass
class CostBreakdown:
    """Fractions of a resource by use."""

    idle: float = 0.0
    other: float = 0.0
    system: float = 0.0
    user: float = 0.0

    def fill_idle(self):
        self.idle = 1.0 - (self.system + self.other + self.user)


@dataclass(frozen=True, order=True)
class DiskIdentifier:
    cluster: str
    name: str


@dataclass
class Disk:
    cluster: str
    name: str
    provider_id: str = ""
    storage_class: str = ""
    volume_name: str = ""
    claim_name: str = ""
    claim_namespace: str = ""
    cost: float = 0.0
    bytes: float = 0.0
    # None when the usage metrics are absent, as opposed to zero usage
    bytes_used_avg: float = None
    bytes_used_max: float = None
    local: bool = False
    start: object = None
    end: object = None
    minutes: float = 0.0
    breakdown: CostBreakdown = field(default_factory=CostBreakdown)


@dataclass(frozen=True, order=True)
class NodeIdentifier:
    cluster: str
    name: str
    provider_id: str


@dataclass
class NodeOverhead:
    cpu_overhead_fraction: float = 0.0
    ram_overhead_fraction: float = 0.0


@dataclass
class Node:
    cluster: str
    name: str
    provider_id: str = ""
    node_type: str = ""
    cpu_cost: float = 0.0
    cpu_cores: float = 0.0
    gpu_cost: float = 0.0
    gpu_count: float = 0.0
    ram_cost: float = 0.0
    ram_bytes: float = 0.0
    discount: float = 0.0
    preemptible: bool = False
    cpu_breakdown: CostBreakdown = field(default_factory=CostBreakdown)
    ram_breakdown: CostBreakdown = field(default_factory=CostBreakdown)
    start: object = None
    end: object = None
    minutes: float = 0.0
    labels: dict = field(default_factory=dict)
    overhead: NodeOverhead = field(default_factory=NodeOverhead)


@dataclass(frozen=True, order=True)
class LoadBalancerIdentifier:
    cluster: str
    namespace: str
    name: str
    ingress_ip: str


@dataclass
class LoadBalancer:
    cluster: str
    namespace: str
    name: str
    provider_id: str = ""
    cost: float = 0.0
    start: object = None
    end: object = None
    minutes: float = 0.0
    private: bool = False
    ip: str = ""


@dataclass(frozen=True, order=True)
class ClusterManagementIdentifier:
    cluster: str
    provisioner: str


@dataclass
class ClusterManagementCost:
    cluster: str
    provisioner: str
    cost: float = 0.0


def _cluster(row):
    return row.cluster or Config.CLUSTER_ID


def _first_value(row):
    return row.data[0].value if row.data else None


def _active_intervals(rows, key_fn, resolution, window):
    """Return (start, end, minutes) by key for rows with samples."""
    result = {}
    for row in rows:
        key = key_fn(row)
        if key is None or not row.data:
            continue
        start, end = calculate_start_end(row.data, resolution, window)
        result[key] = (start, end, minutes_between(start, end))
    return result


def _query(data_source, group, names, start, end):
    return await_queries(group, data_source.metrics, names, start, end)


def _claimed_volume(pvc_rows, row):
    """Return the volume bound to the claim a usage row reports on."""
    volume = ""
    for pvc in pvc_rows:
        if not (pvc.volume_name and pvc.persistent_volume_claim and pvc.namespace):
            continue
        if (
            _cluster(pvc) == _cluster(row)
            and pvc.persistent_volume_claim == row.persistent_volume_claim
            and pvc.namespace == row.namespace
        ):
            volume = pvc.volume_name
    return volume


def _disk(disk_map, key):
    disk = disk_map.get(key)
    if disk is None:
        disk = Disk(cluster=key.cluster, name=key.name)
        disk_map[key] = disk
    return disk


def cluster_disks(data_source, provider, start, end, include_local_disk_cost=None):
    """Return the cost of every persistent volume and local disk, keyed by DiskIdentifier.

    Raises QueryGroupError when any query fails.
    """
    if include_local_disk_cost is None:
        include_local_disk_cost = Config.INCLUDE_LOCAL_DISK_COST
    window = Window(start, end)
    resolution = data_source.resolution

    grp = QueryGroup()
    names = DISK_QUERIES + (LOCAL_DISK_QUERIES if include_local_disk_cost else ())
    res = _query(data_source, grp, names, start, end)
    if grp.has_errors():
        raise grp.error()

    disk_map = {}
    for row in res[q.PVC_INFO]:
        if not (row.volume_name and row.persistent_volume_claim and row.namespace):
            LOG.debug("pvc info result missing field: %s", row)
            continue
        disk = _disk(disk_map, DiskIdentifier(_cluster(row), row.volume_name))
        disk.volume_name = row.volume_name
        disk.claim_name = row.persistent_volume_claim
        disk.claim_namespace = row.namespace

    _apply_pv_costs(disk_map, res, provider, resolution, window)
    if include_local_disk_cost:
        _apply_local_disks(disk_map, res)

    untraced = []
    for row in res[q.PV_INFO]:
        key = DiskIdentifier(_cluster(row), row.persistent_volume)
        if key not in disk_map:
            if key not in untraced:
                untraced.append(key)
            continue
        if not row.data:
            continue
        disk_map[key].storage_class = row.storage_class or UNKNOWN_STORAGE_CLASS
    for key in untraced:
        LOG.warning("cluster %s has storage class information for unidentified disk %s", key.cluster, key.name)

    for disk in disk_map.values():
        disk.breakdown.fill_idle()
        if not disk.provider_id:
            disk.provider_id = disk.name

    if not include_local_disk_cost:
        return {key: disk for key, disk in disk_map.items() if not key.name.startswith(LOCAL_PV_PREFIX)}
    return disk_map


def _apply_pv_costs(disk_map, res, provider, resolution, window):
    for row in res[q.PV_ACTIVE_MINUTES]:
        if not row.persistent_volume:
            LOG.warning("pv active minutes result missing persistentvolume")
            continue
        interval = calculate_start_end(row.data, resolution, window)
        if interval is None:
            continue
        disk = _disk(disk_map, DiskIdentifier(_cluster(row), row.persistent_volume))
        disk.start, disk.end = interval
        disk.minutes = minutes_between(*interval)

    for row in res[q.PV_BYTES]:
        if not row.persistent_volume:
            LOG.warning("pv bytes result missing persistentvolume")
            continue
        if row.data:
            _disk(disk_map, DiskIdentifier(_cluster(row), row.persistent_volume)).bytes = row.data[0].value

    pricing = provider.get_config()
    custom = pricing.is_custom_prices_enabled()
    for row in res[q.PV_PRICE_PER_GIB_HOUR]:
        if not row.persistent_volume:
            LOG.warning("pv price result missing persistentvolume")
            continue
        if custom:
            try:
                price = safe_float(pricing.storage)
            except ValueError:
                LOG.warning("error parsing custom storage price: %s", pricing.storage)
                price = 0.0
        elif row.data:
            price = row.data[0].value
        else:
            continue
        disk = _disk(disk_map, DiskIdentifier(_cluster(row), row.persistent_volume))
        disk.cost = price * (disk.bytes / GIB) * (disk.minutes / 60.0)
        if row.provider_id:
            disk.provider_id = parse_pv_id(row.provider_id)

    for query, attr in ((q.PV_USED_AVG, "bytes_used_avg"), (q.PV_USED_MAX, "bytes_used_max")):
        for row in res[query]:
            if not (row.persistent_volume_claim and row.namespace) or not row.data:
                LOG.debug("pv usage result missing field: %s", row)
                continue
            volume = _claimed_volume(res[q.PVC_INFO], row)
            if not volume:
                continue
            setattr(_disk(disk_map, DiskIdentifier(_cluster(row), volume)), attr, row.data[0].value)


def _local_rows(rows):
    for row in rows:
        if not row.instance:
            LOG.warning("local storage result missing instance")
            continue
        if not row.device:
            LOG.warning("local storage result missing device")
            continue
        if not row.data:
            continue
        yield DiskIdentifier(_cluster(row), row.instance), row


def _apply_local_disks(disk_map, res):
    # largest device at or below the size limit per instance
    local = {}
    for key, row in _local_rows(res[q.LOCAL_STORAGE_BYTES]):
        size = row.data[0].value
        if size > MAX_LOCAL_STORAGE_SIZE:
            continue
        current = local.get(key)
        if current is None or current[1].bytes < size:
            disk = Disk(cluster=key.cluster, name=key.name, local=True, storage_class=LOCAL_STORAGE_CLASS, bytes=size)
            local[key] = (row.device, disk)

    def matching(rows):
        for key, row in _local_rows(rows):
            entry = local.get(key)
            if entry is not None and entry[0] == row.device:
                yield entry[1], row.data[0].value

    for disk, value in matching(res[q.LOCAL_STORAGE_COST]):
        disk.cost = value
    for disk, value in matching(res[q.LOCAL_STORAGE_USED_COST]):
        disk.breakdown.system = value / disk.cost if disk.cost else 0.0
    for disk, value in matching(res[q.LOCAL_STORAGE_USED_AVG]):
        disk.bytes_used_avg = value
    for disk, value in matching(res[q.LOCAL_STORAGE_USED_MAX]):
        disk.bytes_used_max = value

    for row in res[q.LOCAL_STORAGE_ACTIVE_MINUTES]:
        if not row.node:
            deduped_warning(LOG, "local storage active minutes result missing node")
            continue
        if not row.provider_id:
            deduped_warning(LOG, "local storage active minutes result missing provider_id")
            continue
        entry = local.get(DiskIdentifier(_cluster(row), row.node))
        if entry is None:
            continue
        disk = entry[1]
        disk.provider_id = parse_local_disk_id(row.provider_id)
        if not row.data:
            continue
        disk.start = from_timestamp(row.data[0].timestamp)
        disk.end = from_timestamp(row.data[-1].timestamp)
        disk.minutes = minutes_between(disk.start, disk.end)

    for key, (_, disk) in local.items():
        disk_map[key] = disk


def _node_id(row):
    if not row.node:
        deduped_warning(LOG, "node result missing node")
        return None
    return NodeIdentifier(_cluster(row), row.node, parse_id(row.provider_id))


def _by_cluster_and_name(rows, name_attr="node"):
    result = {}
    for row in rows:
        name = getattr(row, name_attr)
        value = _first_value(row)
        if not name or value is None:
            continue
        result[(_cluster(row), name)] = value
    return result


def _node_prices(rows, pricing, preemptible, spot_attr, attr, node_types):
    result = {}
    custom = pricing.is_custom_prices_enabled()
    for row in rows:
        key = _node_id(row)
        if key is None:
            continue
        if custom:
            price_str = getattr(pricing, spot_attr) if preemptible.get(key) else getattr(pricing, attr)
            try:
                price = safe_float(price_str)
            except ValueError:
                LOG.warning("error parsing custom %s price: %s", attr, price_str)
                price = 0.0
        else:
            price = _first_value(row)
            if price is None:
                continue
        node_types[(key.cluster, key.name)] = row.instance_type
        result[key] = price
    return result


def _cpu_breakdowns(rows):
    totals, by_mode = {}, {}
    for row in rows:
        if not row.node:
            deduped_warning(LOG, "node cpu mode result missing node")
            continue
        value = _first_value(row)
        if value is None:
            continue
        key = (_cluster(row), row.node)
        mode = row.mode or "other"
        totals[key] = totals.get(key, 0.0) + value
        modes = by_mode.setdefault(key, {})
        modes[mode] = modes.get(mode, 0.0) + value

    result = {}
    for key, total in totals.items():
        breakdown = CostBreakdown()
        for mode, subtotal in by_mode[key].items():
            pct = subtotal / total if total > 0 else 0.0
            if mode in ("idle", "system", "user"):
                setattr(breakdown, mode, getattr(breakdown, mode) + pct)
            else:
                breakdown.other += pct
        result[key] = breakdown
    return result


def _overhead(capacity, allocatable):
    if capacity <= 0:
        return 0.0
    return (capacity - allocatable) / capacity


def cluster_nodes(data_source, provider, start, end):
    """Return the cost of every node, keyed by NodeIdentifier.

    Failure of a price, capacity, allocatable, GPU count, activity or spot
    query fails the call with QueryGroupError; the breakdown and label
    queries only log a warning. Raises ValueError when a configured discount
    cannot be parsed.
    """
    window = Window(start, end)
    required, optional = QueryGroup(), QueryGroup()
    res = _query(data_source, required, REQUIRED_NODE_QUERIES, start, end)
    res.update(_query(data_source, optional, OPTIONAL_NODE_QUERIES, start, end))
    for err in optional.errors():
        LOG.warning("optional node query failed: %s", err)
    if required.has_errors():
        for err in required.errors():
            LOG.error("node query failed: %s", err)
        raise QueryGroupError(required.errors())

    active = _active_intervals(res[q.NODE_ACTIVE_MINUTES], _node_id, data_source.resolution, window)
    gpu_counts = {}
    for row in res[q.NODE_GPU_COUNT]:
        key = _node_id(row)
        if key is not None and row.data:
            gpu_counts[key] = row.data[0].value
    preemptible = {}
    for row in res[q.NODE_IS_SPOT]:
        key = _node_id(row)
        if key is not None and row.data:
            preemptible[key] = row.data[0].value > 0

    pricing = provider.get_config()
    node_types = {}
    cpu_prices = _node_prices(res[q.NODE_CPU_PRICE_PER_HR], pricing, preemptible, "spot_cpu", "cpu", node_types)
    ram_prices = _node_prices(res[q.NODE_RAM_PRICE_PER_GIB_HR], pricing, preemptible, "spot_ram", "ram", node_types)
    gpu_prices = _node_prices(res[q.NODE_GPU_PRICE_PER_HR], pricing, preemptible, "spot_gpu", "gpu", node_types)

    cpu_capacity = _by_cluster_and_name(res[q.NODE_CPU_CORES_CAPACITY])
    cpu_allocatable = _by_cluster_and_name(res[q.NODE_CPU_CORES_ALLOCATABLE])
    ram_capacity = _by_cluster_and_name(res[q.NODE_RAM_BYTES_CAPACITY])
    ram_allocatable = _by_cluster_and_name(res[q.NODE_RAM_BYTES_ALLOCATABLE])
    ram_user = _by_cluster_and_name(res[q.NODE_RAM_USER_PERCENT], "instance")
    ram_system = _by_cluster_and_name(res[q.NODE_RAM_SYSTEM_PERCENT], "instance")
    cpu_breakdowns = _cpu_breakdowns(res[q.NODE_CPU_MODE_TOTAL])
    labels = {}
    for row in res[q.NODE_LABELS]:
        if row.node:
            labels.setdefault((_cluster(row), row.node), {}).update(row.labels)

    node_map = {}

    def node_for(key):
        node = node_map.get(key)
        if node is None:
            node_type = node_types.get((key.cluster, key.name), "")
            if not node_type:
                LOG.warning("type does not exist for node %s", key)
            node = Node(cluster=key.cluster, name=key.name, provider_id=key.provider_id, node_type=node_type)
            node_map[key] = node
        return node

    for key, price in cpu_prices.items():
        node_for(key).cpu_cost = price
    for key, price in ram_prices.items():
        node_for(key).ram_cost = price / GIB
    for key, price in gpu_prices.items():
        node_for(key).gpu_cost = price * gpu_counts.get(key, 0.0)
    for key, count in gpu_counts.items():
        node_for(key).gpu_count = count
    for key, spot in preemptible.items():
        node_for(key).preemptible = spot
    for key, (node_start, node_end, minutes) in active.items():
        node = node_for(key)
        node.start, node.end, node.minutes = node_start, node_end, minutes

    for key, node in node_map.items():
        name_key = (key.cluster, key.name)
        hours = node.minutes / 60.0
        node.cpu_cores = cpu_capacity.get(name_key, 0.0)
        partial = PARTIAL_CPU.get(node.node_type)
        if partial is not None and node.cpu_cores > 0:
            node.cpu_cores = partial
        node.cpu_cost *= hours * node.cpu_cores
        node.ram_bytes = ram_capacity.get(name_key, 0.0)
        node.ram_cost *= hours * node.ram_bytes
        node.gpu_cost *= hours

        node.ram_breakdown.user = ram_user.get(name_key, 0.0)
        node.ram_breakdown.system = ram_system.get(name_key, 0.0)
        if name_key in cpu_breakdowns:
            node.cpu_breakdown = cpu_breakdowns[name_key]
        node.labels = labels.get(name_key, {})
        if name_key in cpu_capacity and name_key in cpu_allocatable:
            node.overhead.cpu_overhead_fraction = _overhead(cpu_capacity[name_key], cpu_allocatable[name_key])
        if name_key in ram_capacity and name_key in ram_allocatable:
            node.overhead.ram_overhead_fraction = _overhead(ram_capacity[name_key], ram_allocatable[name_key])

        node.discount = node_discount(provider, node.node_type, node.preemptible)
        node.cpu_breakdown.fill_idle()
        node.ram_breakdown.fill_idle()
    return node_map


def node_resource_costs(node_map):
    """Return the discounted resource cost of each node for idle computation."""
    return [
        NodeResourceCosts(
            cluster=node.cluster,
            node=node.name,
            cpu_cost=node.cpu_cost * (1.0 - node.discount),
            ram_cost=node.ram_cost * (1.0 - node.discount),
            gpu_cost=node.gpu_cost,
        )
        for node in node_map.values()
    ]


def _lb_id(row):
    if not row.namespace or not row.service:
        LOG.warning("load balancer result missing namespace or service")
        return None
    if not row.ingress_ip:
        deduped_warning(LOG, "load balancer result missing ingress_ip")
        return None
    return LoadBalancerIdentifier(_cluster(row), row.namespace, f"{row.namespace}/{row.service}", row.ingress_ip)


def cluster_load_balancers(data_source, start, end):
    """Return the cost of every load balancer, keyed by LoadBalancerIdentifier.

    Raises QueryGroupError when either query fails.
    """
    grp = QueryGroup()
    res = _query(data_source, grp, (q.LB_PRICE_PER_HR, q.LB_ACTIVE_MINUTES), start, end)
    if grp.has_errors():
        raise grp.error()

    active = _active_intervals(res[q.LB_ACTIVE_MINUTES], _lb_id, data_source.resolution, Window(start, end))
    result = {}
    for row in res[q.LB_PRICE_PER_HR]:
        key = _lb_id(row)
        price = _first_value(row)
        if key is None or price is None:
            continue
        lb = LoadBalancer(
            cluster=key.cluster,
            namespace=key.namespace,
            name=key.name,
            cost=price,
            ip=key.ingress_ip,
            private=is_private_ip(key.ingress_ip),
            provider_id=parse_lb_id(key.ingress_ip),
        )
        if key in active:
            lb.start, lb.end, lb.minutes = active[key]
            if lb.minutes > 0:
                lb.cost = price * lb.minutes / 60.0
            else:
                deduped_warning(LOG, "found zero minutes for load balancer %s", key)
        result[key] = lb
    return result


def _management_id(row):
    return ClusterManagementIdentifier(_cluster(row), row.provisioner)


def cluster_management(data_source, start, end):
    """Return cluster management fees keyed by ClusterManagementIdentifier.

    The fee is the hourly price times active hours, or the hourly price
    alone when no activity was recorded. Raises QueryGroupError when either
    query fails.
    """
    grp = QueryGroup()
    res = _query(
        data_source, grp, (q.CLUSTER_MANAGEMENT_PRICE_PER_HR, q.CLUSTER_MANAGEMENT_DURATION), start, end
    )
    if grp.has_errors():
        raise grp.error()

    active = _active_intervals(
        res[q.CLUSTER_MANAGEMENT_DURATION], _management_id, data_source.resolution, Window(start, end)
    )
    result = {}
    for row in res[q.CLUSTER_MANAGEMENT_PRICE_PER_HR]:
        price = _first_value(row)
        if price is None:
            continue
        key = _management_id(row)
        cost = ClusterManagementCost(cluster=key.cluster, provisioner=key.provisioner, cost=price)
        if key in active:
            minutes = active[key][2]
            if minutes > 0:
                cost.cost = price * minutes / 60.0
            else:
                deduped_warning(LOG, "found zero minutes for cluster management %s", key)
        result[key] = cost
    return result
