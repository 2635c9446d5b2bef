#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Network insight: per-pod network traffic and its cost by destination."""
import logging
from dataclasses import dataclass
from dataclasses import field
from enum import StrEnum

from costmodel.allocation.window import Window
from costmodel.common import log_json
from costmodel.config import Config
from costmodel.exceptions import CostModelError
from costmodel.exceptions import QueryGroupError
from costmodel.source import datasource as q
from costmodel.source.querygroup import await_queries
from costmodel.source.querygroup import QueryGroup

LOG = logging.getLogger(__name__)

SERVICE_UNKNOWN = "__unknown__"


class TrafficType(StrEnum):
    CROSS_ZONE = "crossZone"
    CROSS_REGION = "crossRegion"
    INTERNET = "internet"


class TrafficDirection(StrEnum):
    EGRESS = "egress"
    INGRESS = "ingress"


# (GiB query, price query or None, traffic type, direction); ingress carries no price
NETWORK_QUERIES = (
    (q.NET_ZONE_GIB, q.NET_ZONE_PRICE_PER_GIB, TrafficType.CROSS_ZONE, TrafficDirection.EGRESS),
    (q.NET_REGION_GIB, q.NET_REGION_PRICE_PER_GIB, TrafficType.CROSS_REGION, TrafficDirection.EGRESS),
    (q.NET_INTERNET_SERVICE_GIB, q.NET_INTERNET_PRICE_PER_GIB, TrafficType.INTERNET, TrafficDirection.EGRESS),
    (q.NET_ZONE_INGRESS_GIB, None, TrafficType.CROSS_ZONE, TrafficDirection.INGRESS),
    (q.NET_REGION_INGRESS_GIB, None, TrafficType.CROSS_REGION, TrafficDirection.INGRESS),
    (q.NET_INTERNET_SERVICE_INGRESS_GIB, None, TrafficType.INTERNET, TrafficDirection.INGRESS),
)


@dataclass
class NetworkDetail:
    cost: float
    bytes: float
    end_point: str
    traffic_type: TrafficType
    traffic_direction: TrafficDirection

    @property
    def key(self):
        return (self.end_point, self.traffic_type, self.traffic_direction)


@dataclass
class NetworkInsight:
    """Network traffic and cost of one pod."""

    cluster: str
    namespace: str
    pod: str
    network_total_cost: float = 0.0
    network_cross_zone_cost: float = 0.0
    network_cross_region_cost: float = 0.0
    network_internet_cost: float = 0.0
    network_details: dict = field(default_factory=dict)

    @property
    def key(self):
        return f"{self.cluster}/{self.namespace}/{self.pod}"

    def add_detail(self, detail):
        current = self.network_details.get(detail.key)
        if current is None:
            self.network_details[detail.key] = NetworkDetail(**vars(detail))
            return
        current.cost += detail.cost
        current.bytes += detail.bytes

    def add(self, other):
        """Fold another insight for the same pod into this one."""
        self.network_total_cost += other.network_total_cost
        self.network_cross_zone_cost += other.network_cross_zone_cost
        self.network_cross_region_cost += other.network_cross_region_cost
        self.network_internet_cost += other.network_internet_cost
        for detail in other.network_details.values():
            self.add_detail(detail)


class NetworkInsightSet:
    """Network insights for a window, keyed by cluster/namespace/pod."""

    def __init__(self, start, end):
        self.window = Window(start, end)
        self.insights = {}

    def __len__(self):
        return len(self.insights)

    def __iter__(self):
        return iter(self.insights.values())

    def get(self, key):
        return self.insights.get(key)

    def insert(self, insight):
        current = self.insights.get(insight.key)
        if current is None:
            self.insights[insight.key] = insight
        else:
            current.add(insight)

    def accumulate(self, other):
        """Fold another set into this one and widen the window."""
        for insight in other:
            self.insert(insight)
        self.window = self.window.expand(other.window)

    def total_cost(self):
        return sum(insight.network_total_cost for insight in self)


def network_costs(traffic_type, cost):
    """Return (cross zone, cross region, internet, total) for a cost of the given type."""
    if traffic_type == TrafficType.CROSS_ZONE:
        return cost, 0.0, 0.0, cost
    if traffic_type == TrafficType.CROSS_REGION:
        return 0.0, cost, 0.0, cost
    if traffic_type == TrafficType.INTERNET:
        return 0.0, 0.0, cost, cost
    LOG.warning("unknown network traffic type: %s", traffic_type)
    return 0.0, 0.0, 0.0, 0.0


def apply_network_costs(insight_set, gib_rows, price_rows, traffic_type, direction):
    price = 0.0
    if price_rows and price_rows[0].data:
        price = price_rows[0].data[0].value

    for row in gib_rows:
        if not row.data:
            continue
        gib = row.data[0].value
        if gib <= 0:
            continue
        cost = gib * price
        cross_zone, cross_region, internet, total = network_costs(traffic_type, cost)
        insight = NetworkInsight(
            cluster=row.cluster or Config.CLUSTER_ID,
            namespace=row.namespace,
            pod=row.pod,
            network_total_cost=total,
            network_cross_zone_cost=cross_zone,
            network_cross_region_cost=cross_region,
            network_internet_cost=internet,
        )
        insight.add_detail(NetworkDetail(cost, gib, row.service or SERVICE_UNKNOWN, traffic_type, direction))
        insight_set.insert(insight)


def get_network_insight_set(data_source, start, end):
    """Return the NetworkInsightSet of a single pass over [start, end).

    Raises QueryGroupError when any query fails.
    """
    names = []
    for gib_query, price_query, _, _ in NETWORK_QUERIES:
        names.append(gib_query)
        if price_query:
            names.append(price_query)
    grp = QueryGroup()
    res = await_queries(grp, data_source.metrics, names, start, end)
    if grp.has_errors():
        raise grp.error()

    result = NetworkInsightSet(start, end)
    for gib_query, price_query, traffic_type, direction in NETWORK_QUERIES:
        price_rows = res[price_query] if price_query else []
        apply_network_costs(result, res[gib_query], price_rows, traffic_type, direction)
    return result


def compute_network_insights(data_source, start, end):
    """Return the NetworkInsightSet for [start, end), batching long windows.

    Raises CostModelError naming the failed sub-window.
    """
    window = Window(start, end)
    batch_duration = data_source.batch_duration
    if window.duration() <= batch_duration:
        return get_network_insight_set(data_source, start, end)

    LOG.debug(log_json(msg="computing network insight in batches", window=window))
    total = NetworkInsightSet(start, end)
    for sub_window in window.split(batch_duration):
        try:
            insight_set = get_network_insight_set(data_source, sub_window.start, sub_window.end)
        except QueryGroupError as err:
            raise CostModelError(f"error computing network insight for {sub_window}: {err}") from err
        total.accumulate(insight_set)
    return total
