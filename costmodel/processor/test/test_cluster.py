#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test the cluster asset summaries."""
from datetime import timedelta

from costmodel.exceptions import QueryGroupError
from costmodel.pricing.provider import CustomPricing
from costmodel.pricing.provider import CustomProvider
from costmodel.processor.cluster import cluster_disks
from costmodel.processor.cluster import cluster_load_balancers
from costmodel.processor.cluster import cluster_management
from costmodel.processor.cluster import cluster_nodes
from costmodel.processor.cluster import ClusterManagementIdentifier
from costmodel.processor.cluster import CostBreakdown
from costmodel.processor.cluster import DiskIdentifier
from costmodel.processor.cluster import LOCAL_STORAGE_CLASS
from costmodel.processor.cluster import node_resource_costs
from costmodel.processor.cluster import UNKNOWN_STORAGE_CLASS
from costmodel.source import datasource as q
from costmodel.test import CLUSTER
from costmodel.test import CostModelTestCase
from costmodel.test import MetricFixture
from costmodel.test import PROVIDER_ID
from costmodel.util.common import GIB


def add_node(fixture, name, start, end, instance_type="m5.large", spot=False):
    """Record the price, capacity and activity series of a node."""
    fixture.node(name, start, end, cpu_price=0.04, ram_price=0.005, instance_type=instance_type)
    fixture.node_capacity(name, start, end, spot=spot)


class ClusterNodesTest(CostModelTestCase):
    """Test cases for cluster_nodes."""

    def setUp(self):
        """Set up an in-memory source."""
        super().setUp()
        self.fixture = MetricFixture()
        self.provider = CustomProvider()

    def test_node_cost(self):
        """Test that node cost is price times hours times capacity."""
        add_node(self.fixture, "node-1", self.start, self.end)

        nodes = cluster_nodes(self.fixture.data_source, self.provider, self.start, self.end)

        self.assertEqual(len(nodes), 1)
        key, node = next(iter(nodes.items()))
        self.assertEqual(key.cluster, CLUSTER)
        self.assertEqual(key.provider_id, "i-0123456789abcdef0")
        self.assertEqual(node.node_type, "m5.large")
        self.assertAlmostEqual(node.minutes, 60.0)
        self.assertAlmostEqual(node.cpu_cost, 0.08)
        self.assertAlmostEqual(node.ram_cost, 0.02)
        self.assertAlmostEqual(node.overhead.cpu_overhead_fraction, 0.1)
        self.assertAlmostEqual(node.overhead.ram_overhead_fraction, 0.25)
        self.assertAlmostEqual(node.cpu_breakdown.idle, 1.0)

    def test_partial_cpu_instance(self):
        """Test that shared-core instance types are billed for their fractional cores."""
        add_node(self.fixture, "node-1", self.start, self.end, instance_type="e2-micro")

        node = next(iter(cluster_nodes(self.fixture.data_source, self.provider, self.start, self.end).values()))

        self.assertEqual(node.cpu_cores, 0.25)
        self.assertAlmostEqual(node.cpu_cost, 0.04 * 0.25)

    def test_discount_applied_to_resource_costs(self):
        """Test that the configured discount reduces CPU and RAM but not GPU cost."""
        add_node(self.fixture, "node-1", self.start, self.end)
        provider = CustomProvider(CustomPricing(discount="10%"))

        node_map = cluster_nodes(self.fixture.data_source, provider, self.start, self.end)
        costs = node_resource_costs(node_map)

        self.assertEqual(len(costs), 1)
        self.assertAlmostEqual(costs[0].cpu_cost, 0.08 * 0.9)
        self.assertAlmostEqual(costs[0].ram_cost, 0.02 * 0.9)
        self.assertEqual(costs[0].gpu_cost, 0.0)

    def test_spot_node_not_discounted(self):
        """Test that spot nodes do not receive the configured discount."""
        add_node(self.fixture, "node-1", self.start, self.end, spot=True)
        provider = CustomProvider(CustomPricing(discount="10%"))

        node = next(iter(cluster_nodes(self.fixture.data_source, provider, self.start, self.end).values()))

        self.assertTrue(node.preemptible)
        self.assertEqual(node.discount, 0.0)

    def test_cpu_mode_breakdown(self):
        """Test that CPU mode totals become fractions of the node's CPU."""
        add_node(self.fixture, "node-1", self.start, self.end)
        for mode, value in (("idle", 50.0), ("system", 20.0), ("user", 25.0), ("iowait", 5.0)):
            self.fixture.add(
                q.NODE_CPU_MODE_TOTAL, {"kubernetes_node": "node-1", "mode": mode}, self.start, self.end, value
            )

        node = next(iter(cluster_nodes(self.fixture.data_source, self.provider, self.start, self.end).values()))

        self.assertAlmostEqual(node.cpu_breakdown.system, 0.2)
        self.assertAlmostEqual(node.cpu_breakdown.user, 0.25)
        self.assertAlmostEqual(node.cpu_breakdown.other, 0.05)
        self.assertAlmostEqual(node.cpu_breakdown.idle, 0.5)

    def test_required_query_failure(self):
        """Test that a failed price query fails the call."""
        fixture = MetricFixture(errors={q.NODE_CPU_PRICE_PER_HR: RuntimeError("boom")})

        with self.assertRaises(QueryGroupError) as context:
            cluster_nodes(fixture.data_source, self.provider, self.start, self.end)
        self.assertEqual(len(context.exception.errors), 1)

    def test_optional_query_failure(self):
        """Test that a failed label query only logs a warning."""
        fixture = MetricFixture(errors={q.NODE_LABELS: RuntimeError("boom")})
        add_node(fixture, "node-1", self.start, self.end)

        with self.assertLogs("costmodel.processor.cluster", level="WARNING"):
            nodes = cluster_nodes(fixture.data_source, self.provider, self.start, self.end)
        self.assertEqual(len(nodes), 1)


class ClusterDisksTest(CostModelTestCase):
    """Test cases for cluster_disks."""

    def setUp(self):
        """Set up an in-memory source."""
        super().setUp()
        self.fixture = MetricFixture()
        self.provider = CustomProvider()

    def add_local_disk(self):
        labels = {"instance": "node-1", "device": "/dev/nvme0n1"}
        self.fixture.add(q.LOCAL_STORAGE_BYTES, labels, self.start, self.end, 100 * GIB)
        self.fixture.add(q.LOCAL_STORAGE_COST, labels, self.start, self.end, 0.5)
        self.fixture.add(q.LOCAL_STORAGE_USED_COST, labels, self.start, self.end, 0.1)
        self.fixture.add(
            q.LOCAL_STORAGE_ACTIVE_MINUTES, {"node": "node-1", "provider_id": PROVIDER_ID}, self.start, self.end
        )

    def test_persistent_volume_cost(self):
        """Test that a volume costs price times GiB times hours."""
        self.fixture.volume("pv-1", self.start, self.end, price_per_gib_hour=0.10, size_gib=10)
        self.fixture.claim("data", "claim-1", "pv-1", self.start, self.end, size_gib=10)

        disks = cluster_disks(self.fixture.data_source, self.provider, self.start, self.end, False)

        disk = disks[DiskIdentifier(CLUSTER, "pv-1")]
        self.assertAlmostEqual(disk.cost, 1.0)
        self.assertEqual(disk.bytes, 10 * GIB)
        self.assertEqual(disk.claim_name, "claim-1")
        self.assertEqual(disk.claim_namespace, "data")
        self.assertEqual(disk.storage_class, UNKNOWN_STORAGE_CLASS)
        self.assertIsNone(disk.bytes_used_avg)
        self.assertAlmostEqual(disk.breakdown.idle, 1.0)

    def test_custom_storage_price(self):
        """Test that custom pricing replaces the metric storage price."""
        self.fixture.volume("pv-1", self.start, self.end, price_per_gib_hour=0.10, size_gib=10)
        provider = CustomProvider(CustomPricing(storage="0.2", custom_prices_enabled="true"))

        disks = cluster_disks(self.fixture.data_source, provider, self.start, self.end, False)

        self.assertAlmostEqual(disks[DiskIdentifier(CLUSTER, "pv-1")].cost, 2.0)

    def test_local_disks(self):
        """Test that local disks are reported when enabled."""
        self.add_local_disk()

        disks = cluster_disks(self.fixture.data_source, self.provider, self.start, self.end, True)

        disk = disks[DiskIdentifier(CLUSTER, "node-1")]
        self.assertTrue(disk.local)
        self.assertEqual(disk.storage_class, LOCAL_STORAGE_CLASS)
        self.assertAlmostEqual(disk.cost, 0.5)
        self.assertAlmostEqual(disk.breakdown.system, 0.2)
        self.assertAlmostEqual(disk.minutes, 60.0)

    def test_local_disks_excluded(self):
        """Test that local disks are neither queried nor reported when disabled."""
        self.add_local_disk()

        disks = cluster_disks(self.fixture.data_source, self.provider, self.start, self.end, False)

        self.assertNotIn(DiskIdentifier(CLUSTER, "node-1"), disks)
        self.assertEqual(self.fixture.calls[q.LOCAL_STORAGE_BYTES], 0)

    def test_query_failure(self):
        """Test that any failed disk query fails the call."""
        fixture = MetricFixture(errors={q.PV_BYTES: RuntimeError("boom")})

        with self.assertRaises(QueryGroupError):
            cluster_disks(fixture.data_source, self.provider, self.start, self.end, False)


class ClusterLoadBalancersTest(CostModelTestCase):
    """Test cases for cluster_load_balancers."""

    def test_load_balancer_cost(self):
        """Test that a load balancer costs its hourly price over its active time."""
        fixture = MetricFixture()
        labels = {"namespace": "web", "service_name": "frontend", "ingress_ip": "10.0.0.5"}
        half = self.start + timedelta(minutes=30)
        fixture.add(q.LB_PRICE_PER_HR, labels, self.start, self.end, 0.025)
        fixture.add(q.LB_ACTIVE_MINUTES, labels, self.start, half)

        lbs = cluster_load_balancers(fixture.data_source, self.start, self.end)

        self.assertEqual(len(lbs), 1)
        lb = next(iter(lbs.values()))
        self.assertEqual(lb.name, "web/frontend")
        self.assertTrue(lb.private)
        self.assertAlmostEqual(lb.minutes, 30.0)
        self.assertAlmostEqual(lb.cost, 0.0125)

    def test_missing_ingress_ip_skipped(self):
        """Test that load balancers without an ingress IP are skipped."""
        fixture = MetricFixture()
        fixture.add(q.LB_PRICE_PER_HR, {"namespace": "web", "service_name": "frontend"}, self.start, self.end, 0.025)

        self.assertEqual(cluster_load_balancers(fixture.data_source, self.start, self.end), {})


class ClusterManagementTest(CostModelTestCase):
    """Test cases for cluster_management."""

    def test_management_cost(self):
        """Test that the management fee is charged for active hours."""
        fixture = MetricFixture()
        labels = {"provisioner_name": "EKS"}
        fixture.add(q.CLUSTER_MANAGEMENT_PRICE_PER_HR, labels, self.start, self.end, 0.10)
        fixture.add(q.CLUSTER_MANAGEMENT_DURATION, labels, self.start, self.start + timedelta(minutes=30))

        costs = cluster_management(fixture.data_source, self.start, self.end)

        self.assertAlmostEqual(costs[ClusterManagementIdentifier(CLUSTER, "EKS")].cost, 0.05)

    def test_management_without_duration(self):
        """Test that the hourly price alone is reported without activity."""
        fixture = MetricFixture()
        fixture.add(q.CLUSTER_MANAGEMENT_PRICE_PER_HR, {"provisioner_name": "GKE"}, self.start, self.end, 0.10)

        costs = cluster_management(fixture.data_source, self.start, self.end)

        self.assertAlmostEqual(costs[ClusterManagementIdentifier(CLUSTER, "GKE")].cost, 0.10)


class CostBreakdownTest(CostModelTestCase):
    """Test cases for CostBreakdown."""

    def test_fill_idle(self):
        """Test that idle is the remainder of the other fractions."""
        breakdown = CostBreakdown(system=0.2, user=0.3, other=0.1)
        breakdown.fill_idle()
        self.assertAlmostEqual(breakdown.idle, 0.4)
