#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test node pricing."""
from costmodel.allocation.window import Window
from costmodel.pricing.provider import CustomPricing
from costmodel.pricing.provider import CustomProvider
from costmodel.processor import nodes
from costmodel.processor.keys import NodeKey
from costmodel.source.decoders import NodePriceResult
from costmodel.source.decoders import NodeResult
from costmodel.test import CLUSTER
from costmodel.test import CostModelTestCase
from costmodel.test import make_pod_map
from costmodel.test import PROVIDER_ID
from costmodel.test import series
from costmodel.util.common import GIB


class NodePricingTest(CostModelTestCase):
    """Test cases for building and resolving node prices."""

    def setUp(self):
        """Set up the price rows of one node."""
        super().setUp()
        self.key = NodeKey(CLUSTER, "node-1")
        self.pricing = CustomPricing(cpu="0.03", ram="0.004", gpu="0.9")

    def price_row(self, value):
        return NodePriceResult(
            cluster=CLUSTER,
            node="node-1",
            instance_type="m5.large",
            provider_id=PROVIDER_ID,
            data=series(self.start, self.end, value),
        )

    def node_map(self, cpu=0.04, ram=0.005, gpu=None):
        gpu_rows = [self.price_row(gpu)] if gpu is not None else []
        return nodes.build_node_map([self.price_row(cpu)], [self.price_row(ram)], gpu_rows)

    def test_build_node_map(self):
        """Test that price rows are joined into one node."""
        node = self.node_map(gpu=0.5)[self.key]

        self.assertEqual(node.node_type, "m5.large")
        self.assertEqual(node.provider_id, "i-0123456789abcdef0")
        self.assertEqual((node.cost_per_cpu_hr, node.cost_per_ram_gib_hr, node.cost_per_gpu_hr), (0.04, 0.005, 0.5))

    def test_zero_prices_filled_from_custom(self):
        """Test that zero CPU and RAM prices fall back to custom pricing."""
        node = nodes.get_node_pricing(self.node_map(cpu=0.0, ram=0.0), self.key, self.pricing)

        self.assertEqual(node.cost_per_cpu_hr, 0.03)
        self.assertEqual(node.cost_per_ram_gib_hr, 0.004)
        self.assertEqual(node.source, "prometheus/customCPU/customRAM")

    def test_zero_gpu_price_kept(self):
        """Test that only a NaN GPU price falls back to custom pricing."""
        self.assertEqual(nodes.get_node_pricing(self.node_map(gpu=0.0), self.key, self.pricing).cost_per_gpu_hr, 0.0)

        node = nodes.get_node_pricing(self.node_map(gpu=float("nan")), self.key, self.pricing)
        self.assertEqual(node.cost_per_gpu_hr, 0.9)
        self.assertTrue(node.source.endswith("/customGPU"))

    def test_missing_node_uses_custom(self):
        """Test that an unknown node is priced from custom pricing with a warning."""
        with self.assertLogs("costmodel.processor.nodes", level="WARNING"):
            node = nodes.get_node_pricing({}, self.key, self.pricing)

        self.assertEqual(node.source, nodes.SOURCE_CUSTOM)
        self.assertEqual(node.cost_per_cpu_hr, 0.03)

    def test_custom_prices_enabled(self):
        """Test that enabled custom prices replace metric prices."""
        pricing = CustomPricing(cpu="0.03", ram="0.004", custom_prices_enabled="true")

        node = nodes.get_node_pricing(self.node_map(), self.key, pricing)

        self.assertEqual((node.cost_per_cpu_hr, node.cost_per_ram_gib_hr), (0.03, 0.004))
        self.assertEqual(node.provider_id, "i-0123456789abcdef0")

    def test_discount_on_cpu_and_ram_only(self):
        """Test that the node discount reduces CPU and RAM prices but not GPU."""
        node_map = self.node_map(gpu=0.5)
        provider = CustomProvider(CustomPricing(discount="10%", negotiated_discount="20%"))
        nodes.apply_node_discount(node_map, provider)

        node = nodes.get_node_pricing(node_map, self.key, provider.get_config())

        self.assertAlmostEqual(node.discount, 0.28)
        self.assertAlmostEqual(node.cost_per_cpu_hr, 0.04 * 0.72)
        self.assertAlmostEqual(node.cost_per_ram_gib_hr, 0.005 * 0.72)
        self.assertEqual(node.cost_per_gpu_hr, 0.5)

    def test_spot_node_not_discounted(self):
        """Test that spot nodes get no discount."""
        node_map = self.node_map()
        spot = NodeResult(cluster=CLUSTER, node="node-1", data=series(self.start, self.end, 1.0))
        nodes.apply_node_spot(node_map, [spot])
        nodes.apply_node_discount(node_map, CustomProvider(CustomPricing(discount="10%")))

        self.assertTrue(node_map[self.key].preemptible)
        self.assertEqual(node_map[self.key].discount, 0.0)

    def test_invalid_discount_ignored(self):
        """Test that an unparseable discount is logged and treated as none."""
        node_map = self.node_map()

        with self.assertLogs("costmodel.processor.nodes", level="WARNING"):
            nodes.apply_node_discount(node_map, CustomProvider(CustomPricing(discount="lots")))

        self.assertEqual(node_map[self.key].discount, 0.0)

    def test_apply_nodes_to_pods(self):
        """Test that allocations are costed at their node's discounted prices."""
        pod_map = make_pod_map(Window(self.start, self.end), {("default", "web-1"): ["web"]})
        alloc = next(pod_map.allocations())
        alloc.cpu_core_hours = 2.0
        alloc.ram_byte_hours = 4 * GIB
        node_map = self.node_map()
        nodes.apply_node_discount(node_map, CustomProvider(CustomPricing(discount="50%")))

        nodes.apply_nodes_to_pods(pod_map, node_map, self.pricing)

        self.assertAlmostEqual(alloc.cpu_cost, 2.0 * 0.02)
        self.assertAlmostEqual(alloc.ram_cost, 4 * 0.0025)
        self.assertEqual(alloc.properties.provider_id, "i-0123456789abcdef0")
