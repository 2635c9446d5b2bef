#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test the CostModel allocation computation."""
from datetime import timedelta
from unittest.mock import patch

from costmodel.exceptions import AllocationComputeError
from costmodel.pricing.provider import CustomPricing
from costmodel.pricing.provider import CustomProvider
from costmodel.processor.allocation import CostModel
from costmodel.processor.allocation import POD_QUERY_MAX_TRIES
from costmodel.processor.keys import PVKey
from costmodel.source import datasource as q
from costmodel.test import CLUSTER
from costmodel.test import CostModelTestCase
from costmodel.test import HOUR
from costmodel.test import MetricFixture
from costmodel.util.common import GIB


class CostModelComputeAllocationTest(CostModelTestCase):
    """Test cases for CostModel.compute_allocation."""

    def setUp(self):
        """Set up a cluster with one node."""
        super().setUp()
        self.fixture = MetricFixture()

    def compute(self, start=None, end=None):
        cost_model = CostModel(self.fixture.data_source)
        return cost_model.compute_allocation(start or self.start, end or self.end)

    def test_single_container_cost(self):
        """Test that a container's CPU and RAM are priced at its node's rates."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5, ram=GIB)
        self.fixture.node("node-1", self.start, self.end, cpu_price=0.04, ram_price=0.005)

        result = self.compute()

        alloc = result.get(f"{CLUSTER}/node-1/default/web-1/web")
        self.assertIsNotNone(alloc)
        self.assertAlmostEqual(alloc.cpu_core_hours, 0.5)
        self.assertAlmostEqual(alloc.cpu_cost, 0.02)
        self.assertAlmostEqual(alloc.ram_cost, 0.005)
        self.assertAlmostEqual(alloc.total_cost(), 0.025)
        self.assertEqual(alloc.start, self.start)
        self.assertEqual(alloc.end, self.end)
        self.assertEqual(alloc.properties.provider_id, "i-0123456789abcdef0")

    def test_request_raises_allocation(self):
        """Test that a request above the allocated cores is what gets charged."""
        self.fixture.container(
            "default", "web-1", "web", "node-1", self.start, self.end, cpu=0.1, ram=GIB, cpu_request=0.5
        )
        self.fixture.node("node-1", self.start, self.end)

        alloc = self.compute().get(f"{CLUSTER}/node-1/default/web-1/web")

        self.assertAlmostEqual(alloc.cpu_core_hours, 0.5)
        self.assertAlmostEqual(alloc.cpu_core_request_average, 0.5)
        self.assertAlmostEqual(alloc.cpu_cost, 0.02)

    def test_shared_claim_split_by_overlap(self):
        """Test that a claim is split between pods by the time each mounted it."""
        half = self.start + timedelta(minutes=30)
        quarter = self.start + timedelta(minutes=15)
        self.fixture.container("data", "pod-a", "app", "node-1", self.start, half, cpu=0.1)
        self.fixture.container("data", "pod-b", "app", "node-1", quarter, self.end, cpu=0.1)
        self.fixture.node("node-1", self.start, self.end)
        self.fixture.volume("pv-1", self.start, self.end, price_per_gib_hour=0.10, size_gib=10)
        self.fixture.claim("data", "claim-1", "pv-1", self.start, self.end, size_gib=10)
        self.fixture.mount("data", "pod-a", "claim-1", "pv-1", self.start, half)
        self.fixture.mount("data", "pod-b", "claim-1", "pv-1", quarter, self.end)

        result = self.compute()

        pod_a = result.get(f"{CLUSTER}/node-1/data/pod-a/app")
        pod_b = result.get(f"{CLUSTER}/node-1/data/pod-b/app")
        self.assertAlmostEqual(pod_a.pv_cost(), 0.375)
        self.assertAlmostEqual(pod_b.pv_cost(), 0.625)
        self.assertAlmostEqual(pod_a.pv_cost() + pod_b.pv_cost(), 1.0)
        self.assertFalse([alloc for alloc in result if alloc.is_unmounted()])

    def test_unmounted_claim_charged_to_namespace(self):
        """Test that a claim no pod mounted is charged to its namespace's unmounted pod."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5)
        self.fixture.node("node-1", self.start, self.end)
        self.fixture.volume("pv-1", self.start, self.end, price_per_gib_hour=0.10, size_gib=2)
        self.fixture.claim("data", "claim-1", "pv-1", self.start, self.end, size_gib=2)

        result = self.compute()

        unmounted = [alloc for alloc in result if alloc.is_unmounted()]
        self.assertEqual(len(unmounted), 1)
        self.assertEqual(unmounted[0].properties.namespace, "data")
        self.assertAlmostEqual(unmounted[0].pv_cost(), 0.2)

    def test_orphan_volume_charged_to_cluster(self):
        """Test that a volume without a claim is charged to the cluster's unmounted allocation."""
        end = self.start + 2 * HOUR
        self.fixture.volume("pv-orphan", self.start, end, price_per_gib_hour=0.08, size_gib=5)

        result = self.compute(self.start, end)

        unmounted = [alloc for alloc in result if alloc.is_unmounted()]
        self.assertEqual(len(unmounted), 1)
        alloc = unmounted[0]
        self.assertEqual(alloc.properties.cluster, CLUSTER)
        self.assertEqual(alloc.properties.namespace, "__unmounted__")
        self.assertAlmostEqual(alloc.pv_cost(), 0.80)
        self.assertEqual(list(alloc.pvs), [PVKey(CLUSTER, "pv-orphan")])
        self.assertEqual(alloc.pvs[PVKey(CLUSTER, "pv-orphan")].provider_id, "vol-pv-orphan")
        self.assertEqual(alloc.cpu_cost, 0.0)

    def test_cronjob_controller(self):
        """Test that pods of a cronjob-generated job are attributed to the cronjob."""
        self.fixture.container("batch", "backup-28771234-x7k2p", "backup", "node-1", self.start, self.end, cpu=0.1)
        self.fixture.node("node-1", self.start, self.end)
        self.fixture.add(
            q.JOB_LABELS,
            {"namespace": "batch", "pod": "backup-28771234-x7k2p", "owner_name": "backup-28771234"},
            self.start,
            self.end,
        )

        alloc = self.compute().get(f"{CLUSTER}/node-1/batch/backup-28771234-x7k2p/backup")

        self.assertEqual(alloc.properties.controller_kind, "job")
        self.assertEqual(alloc.properties.controller, "backup")

    def test_cronjob_controller_timestamp_suffix(self):
        """Test that a job named with a unix timestamp resolves to its cronjob."""
        self.fixture.container("batch", "cronjob-1-1651057200-abcde", "task", "node-1", self.start, self.end)
        self.fixture.node("node-1", self.start, self.end)
        self.fixture.add(
            q.JOB_LABELS,
            {"namespace": "batch", "pod": "cronjob-1-1651057200-abcde", "owner_name": "cronjob-1-1651057200"},
            self.start,
            self.end,
        )

        alloc = self.compute().get(f"{CLUSTER}/node-1/batch/cronjob-1-1651057200-abcde/task")

        self.assertEqual((alloc.properties.controller_kind, alloc.properties.controller), ("job", "cronjob-1"))

    def test_controller_precedence(self):
        """Test that later controller kinds override earlier ones for the same pod."""
        for pod, app in (("web-7c9-abc", "web"), ("agent-xk2", "agent"), ("worker-5d8f-ghi", "worker")):
            self.fixture.container("shop", pod, app, "node-1", self.start, self.end, cpu=0.1)
            self.fixture.add(q.POD_LABELS, {"namespace": "shop", "pod": pod, "label_app": app}, self.start, self.end)
        self.fixture.node("node-1", self.start, self.end)
        for name in ("web", "agent"):
            labels = {"namespace": "shop", "deployment": name, "label_app": name}
            self.fixture.add(q.DEPLOYMENT_LABELS, labels, self.start, self.end)
        self.fixture.add(
            q.DAEMONSET_LABELS, {"namespace": "shop", "pod": "agent-xk2", "owner_name": "agent"}, self.start, self.end
        )
        for pod, owner in (("web-7c9-abc", "web-7c9"), ("worker-5d8f-ghi", "worker-5d8f")):
            labels = {"namespace": "shop", "pod": pod, "owner_name": owner}
            self.fixture.add(q.PODS_WITH_REPLICASET_OWNER, labels, self.start, self.end)
        self.fixture.add(
            q.REPLICASETS_WITHOUT_OWNERS, {"namespace": "shop", "replicaset": "worker-5d8f"}, self.start, self.end
        )

        result = self.compute()

        def controller(pod, container):
            props = result.get(f"{CLUSTER}/node-1/shop/{pod}/{container}").properties
            return props.controller_kind, props.controller

        self.assertEqual(controller("web-7c9-abc", "web"), ("deployment", "web"))
        self.assertEqual(controller("agent-xk2", "agent"), ("daemonset", "agent"))
        self.assertEqual(controller("worker-5d8f-ghi", "worker"), ("replicaset", "worker-5d8f"))

    def test_discount_reduces_cpu_and_ram_cost(self):
        """Test that flat and negotiated discounts compound on CPU and RAM but not GPU."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5, ram=GIB)
        labels = {"namespace": "default", "pod": "web-1", "container": "web", "node": "node-1"}
        self.fixture.add(q.GPUS_REQUESTED, labels, self.start, self.end, 1.0)
        self.fixture.node("node-1", self.start, self.end, cpu_price=0.04, ram_price=0.005, gpu_price=0.5)
        provider = CustomProvider(CustomPricing(discount="10%", negotiated_discount="20%"))

        result = CostModel(self.fixture.data_source, provider=provider).compute_allocation(self.start, self.end)

        alloc = result.get(f"{CLUSTER}/node-1/default/web-1/web")
        self.assertAlmostEqual(alloc.cpu_cost, 0.02 * 0.9 * 0.8)
        self.assertAlmostEqual(alloc.ram_cost, 0.005 * 0.9 * 0.8)
        self.assertAlmostEqual(alloc.gpu_cost, 0.5)

    def test_claim_outside_mounting_pods_charged_unmounted(self):
        """Test that a mounted claim no pod overlaps keeps its full cost as unmounted."""
        ten = self.start + timedelta(minutes=10)
        half = self.start + timedelta(minutes=30)
        self.fixture.container("data", "pod-a", "app", "node-1", self.start, ten, cpu=0.1)
        self.fixture.node("node-1", self.start, self.end)
        self.fixture.volume("pv-1", self.start, self.end, price_per_gib_hour=0.10, size_gib=10)
        self.fixture.claim("data", "claim-1", "pv-1", half, self.end, size_gib=10)
        self.fixture.mount("data", "pod-a", "claim-1", "pv-1", self.start, ten)

        result = self.compute()

        self.assertAlmostEqual(sum(alloc.pv_cost() for alloc in result), 0.5)
        self.assertEqual(result.get(f"{CLUSTER}/node-1/data/pod-a/app").pv_cost(), 0.0)
        unmounted = [alloc for alloc in result if alloc.is_unmounted()]
        self.assertEqual([alloc.properties.pod for alloc in unmounted], ["data-unmounted-pvcs"])
        self.assertAlmostEqual(unmounted[0].pv_cost(), 0.5)

    def test_labels_and_namespace_labels(self):
        """Test that pod labels and namespace labels are applied to allocations."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.1)
        self.fixture.node("node-1", self.start, self.end)
        labels = {"namespace": "default", "pod": "web-1", "label_app": "web"}
        self.fixture.add(q.POD_LABELS, labels, self.start, self.end)
        self.fixture.add(q.NAMESPACE_LABELS, {"namespace": "default", "label_team": "ops"}, self.start, self.end)

        alloc = self.compute().get(f"{CLUSTER}/node-1/default/web-1/web")

        self.assertEqual(alloc.properties.labels.get("app"), "web")
        self.assertEqual(alloc.properties.labels.get("team"), "ops")

    def test_load_balancer_cost_on_service_pods(self):
        """Test that a load balancer's cost lands on the pods its service selects."""
        self.fixture.container("web", "frontend-1", "nginx", "node-1", self.start, self.end, cpu=0.1)
        self.fixture.node("node-1", self.start, self.end)
        labels = {"namespace": "web", "pod": "frontend-1", "label_app": "fe"}
        self.fixture.add(q.POD_LABELS, labels, self.start, self.end)
        self.fixture.add(
            q.SERVICE_LABELS, {"namespace": "web", "service": "frontend", "label_app": "fe"}, self.start, self.end
        )
        lb_labels = {"namespace": "web", "service_name": "frontend", "ingress_ip": "34.1.2.3"}
        self.fixture.add(q.LB_ACTIVE_MINUTES, lb_labels, self.start, self.end)
        self.fixture.add(q.LB_PRICE_PER_HR, lb_labels, self.start, self.end, 0.025)

        alloc = self.compute().get(f"{CLUSTER}/node-1/web/frontend-1/nginx")

        self.assertEqual(alloc.properties.services, ["frontend"])
        self.assertAlmostEqual(alloc.load_balancer_cost, 0.025 * 61 / 60)
        lb = alloc.load_balancers[f"{CLUSTER}/web/frontend"]
        self.assertEqual(lb.service, "web/frontend")
        self.assertFalse(lb.private)
        self.assertAlmostEqual(lb.hours, 1.0)

    def test_batched_matches_single_pass(self):
        """Test that a window computed in batches matches a single pass."""
        end = self.start + 2 * HOUR
        single_fixture, batched_fixture = MetricFixture(), MetricFixture(batch_duration=HOUR)
        for fixture in (single_fixture, batched_fixture):
            fixture.container("default", "web-1", "web", "node-1", self.start, end, cpu=0.5, ram=GIB)
            fixture.node("node-1", self.start, end)

        single = CostModel(single_fixture.data_source).compute_allocation(self.start, end)
        batched = CostModel(batched_fixture.data_source).compute_allocation(self.start, end)

        self.assertEqual(batched_fixture.calls[q.CPU_CORES_ALLOCATED], 2)
        self.assertEqual(set(a.name for a in single), set(a.name for a in batched))
        for alloc in single:
            other = batched.get(alloc.name)
            self.assertAlmostEqual(other.cpu_core_hours, alloc.cpu_core_hours)
            self.assertAlmostEqual(other.ram_byte_hours, alloc.ram_byte_hours)
            self.assertAlmostEqual(other.total_cost(), alloc.total_cost())
            self.assertEqual(other.start, alloc.start)
            self.assertEqual(other.end, alloc.end)
        self.assertEqual(batched.start, self.start)
        self.assertEqual(batched.end, end)

    def test_batched_usage_max_recomputed(self):
        """Test that usage maxima are the largest of the sub-windows after batching."""
        end = self.start + 2 * HOUR
        fixture = MetricFixture(batch_duration=HOUR)
        fixture.container("default", "web-1", "web", "node-1", self.start, end, cpu=0.5)
        fixture.node("node-1", self.start, end)
        labels = {"namespace": "default", "pod": "web-1", "container": "web", "node": "node-1"}
        fixture.add(q.CPU_USAGE_MAX, labels, self.start, self.start + HOUR - timedelta(minutes=1), 0.2)
        fixture.add(q.CPU_USAGE_MAX, labels, self.start + HOUR + timedelta(minutes=1), end, 0.7)

        alloc = CostModel(fixture.data_source).compute_allocation(self.start, end).get(
            f"{CLUSTER}/node-1/default/web-1/web"
        )

        self.assertAlmostEqual(alloc.raw_allocation_only.cpu_core_usage_max, 0.7)

    def test_pod_query_retried(self):
        """Test that an empty pods result is retried before continuing."""
        result = self.compute()

        self.assertEqual(self.fixture.calls[q.PODS], POD_QUERY_MAX_TRIES)
        self.assertTrue(result.is_empty())

    def test_pod_query_failure(self):
        """Test that a failing pods query fails the computation."""
        fixture = MetricFixture(errors={q.PODS: RuntimeError("connection refused")})

        with self.assertRaises(AllocationComputeError):
            CostModel(fixture.data_source).compute_allocation(self.start, self.end)
        self.assertEqual(fixture.calls[q.PODS], POD_QUERY_MAX_TRIES)

    def test_required_query_failure(self):
        """Test that a failing allocation query fails the computation."""
        fixture = MetricFixture(errors={q.RAM_REQUESTS: RuntimeError("timeout")})
        fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5)

        with self.assertRaisesRegex(AllocationComputeError, "ram_requests"):
            CostModel(fixture.data_source).compute_allocation(self.start, self.end)

    def test_illegal_duration(self):
        """Test that an empty window is rejected."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5)

        with self.assertRaisesRegex(AllocationComputeError, "illegal duration"):
            self.compute(self.start, self.start)
        self.assertEqual(dict(self.fixture.calls), {})

    def test_ingest_pod_uid(self):
        """Test that pods with the same name but different UIDs stay separate."""
        half = self.start + timedelta(minutes=30)
        self.fixture.pod("default", "web-1", self.start, half, uid="uid-1")
        self.fixture.pod("default", "web-1", half + timedelta(minutes=1), self.end, uid="uid-2")
        labels = {"namespace": "default", "pod": "web-1", "container": "web", "node": "node-1"}
        self.fixture.add(q.CPU_CORES_ALLOCATED, labels, self.start, self.end, 1.0)
        self.fixture.node("node-1", self.start, self.end)

        cost_model = CostModel(self.fixture.data_source, ingest_pod_uid=True)
        result = cost_model.compute_allocation(self.start, self.end)

        pods = sorted(alloc.properties.pod for alloc in result)
        self.assertEqual(pods, ["web-1 uid-1", "web-1 uid-2"])

    def test_custom_pricing_fills_missing_price(self):
        """Test that a zero node CPU price is replaced by the custom CPU price."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=1.0)
        self.fixture.node("node-1", self.start, self.end, cpu_price=0.0, ram_price=0.005)

        alloc = self.compute().get(f"{CLUSTER}/node-1/default/web-1/web")

        self.assertAlmostEqual(alloc.cpu_cost, 0.031611)

    def test_can_compute(self):
        """Test that only windows starting in the past can be computed."""
        cost_model = CostModel(self.fixture.data_source)
        self.assertTrue(cost_model.can_compute(self.start, self.end))
        with patch("costmodel.processor.allocation.utcnow", return_value=self.start):
            self.assertFalse(cost_model.can_compute(self.start, self.end))

    def test_no_nan_costs(self):
        """Test that no NaN survives into the computed set."""
        self.fixture.container("default", "web-1", "web", "node-1", self.start, self.end, cpu=0.5)
        self.fixture.node("node-1", self.start, self.end, cpu_price=float("nan"))

        alloc = self.compute().get(f"{CLUSTER}/node-1/default/web-1/web")

        self.assertAlmostEqual(alloc.cpu_cost, 0.5 * 0.031611)
