#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Cost model test case and metric fixtures."""
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from unittest import TestCase

from faker import Faker

from costmodel.common.log import reset_deduped_logs
from costmodel.processor.keys import PodKey
from costmodel.processor.pod import Pod
from costmodel.processor.pod import PodMap
from costmodel.source import datasource as q
from costmodel.source.memory import InMemoryDataSource
from costmodel.source.result import Vector
from costmodel.util.common import GIB

FAKE = Faker()

CLUSTER = "cluster-one"
START = datetime(2024, 9, 1, tzinfo=timezone.utc)
MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)
PROVIDER_ID = "aws:///us-east-1a/i-0123456789abcdef0"


def series(start, end, value, step=MINUTE):
    """Return samples of a constant value every step over [start, end]."""
    values = []
    moment = start
    while moment <= end:
        values.append(Vector(moment.timestamp(), value))
        moment += step
    return values


class MetricFixture:
    """Builds an in-memory data source from pods, containers and nodes."""

    def __init__(self, cluster=CLUSTER, **kwargs):
        self.cluster = cluster
        self.data_source = InMemoryDataSource(**kwargs)

    @property
    def calls(self):
        return self.data_source.metrics.calls

    def add(self, name, labels, start, end, value=1.0):
        metric = {"cluster_id": self.cluster}
        metric.update(labels)
        self.data_source.metrics.add(name, metric, series(start, end, value))

    def pod(self, namespace, pod, start, end, uid=""):
        labels = {"namespace": namespace, "pod": pod}
        if uid:
            labels["uid"] = uid
        self.add(q.PODS_UID if uid else q.PODS, labels, start, end)

    def container(
        self, namespace, pod, container, node, start, end, cpu=0.0, ram=0.0, cpu_request=None, ram_request=None
    ):
        """Record a running pod and its container's CPU and RAM series."""
        self.pod(namespace, pod, start, end)
        labels = {"namespace": namespace, "pod": pod, "container": container, "node": node}
        self.add(q.CPU_CORES_ALLOCATED, labels, start, end, cpu)
        self.add(q.RAM_BYTES_ALLOCATED, labels, start, end, ram)
        if cpu_request is not None:
            self.add(q.CPU_REQUESTS, labels, start, end, cpu_request)
        if ram_request is not None:
            self.add(q.RAM_REQUESTS, labels, start, end, ram_request)

    def node(
        self,
        node,
        start,
        end,
        cpu_price=0.04,
        ram_price=0.005,
        gpu_price=None,
        instance_type="m5.large",
        provider_id=PROVIDER_ID,
    ):
        labels = {"node": node, "instance_type": instance_type, "provider_id": provider_id}
        self.add(q.NODE_CPU_PRICE_PER_HR, labels, start, end, cpu_price)
        self.add(q.NODE_RAM_PRICE_PER_GIB_HR, labels, start, end, ram_price)
        if gpu_price is not None:
            self.add(q.NODE_GPU_PRICE_PER_HR, labels, start, end, gpu_price)

    def node_capacity(self, node, start, end, cores=2, ram_gib=4, spot=False, provider_id=PROVIDER_ID):
        """Record the activity and capacity series cluster node summaries read."""
        labels = {"node": node, "provider_id": provider_id}
        self.add(q.NODE_ACTIVE_MINUTES, labels, start, end)
        self.add(q.NODE_CPU_CORES_CAPACITY, labels, start, end, cores)
        self.add(q.NODE_CPU_CORES_ALLOCATABLE, labels, start, end, cores * 0.9)
        self.add(q.NODE_RAM_BYTES_CAPACITY, labels, start, end, ram_gib * GIB)
        self.add(q.NODE_RAM_BYTES_ALLOCATABLE, labels, start, end, ram_gib * GIB * 0.75)
        if spot:
            self.add(q.NODE_IS_SPOT, labels, start, end, 1.0)

    def volume(self, name, start, end, price_per_gib_hour, size_gib):
        labels = {"persistentvolume": name}
        self.add(q.PV_ACTIVE_MINUTES, labels, start, end)
        price_labels = {"persistentvolume": name, "volumename": name}
        self.add(q.PV_PRICE_PER_GIB_HOUR, price_labels, start, end, price_per_gib_hour)
        self.add(q.PV_BYTES, labels, start, end, size_gib * GIB)
        self.add(q.PV_INFO, dict(labels, provider_id=f"vol-{name}"), start, end)

    def claim(self, namespace, name, volume, start, end, size_gib, storage_class="gp2"):
        labels = {
            "namespace": namespace,
            "persistentvolumeclaim": name,
            "volumename": volume,
            "storageclass": storage_class,
        }
        self.add(q.PVC_INFO, labels, start, end)
        self.add(q.PVC_BYTES_REQUESTED, labels, start, end, size_gib * GIB)

    def mount(self, namespace, pod, claim, volume, start, end):
        labels = {"namespace": namespace, "pod": pod, "persistentvolumeclaim": claim, "persistentvolume": volume}
        self.add(q.POD_PVC_ALLOCATION, labels, start, end)


class CostModelTestCase(TestCase):
    """Test case resetting log deduplication between tests."""

    @classmethod
    def setUpClass(cls):
        """Set up the test class."""
        super().setUpClass()
        cls.fake = FAKE

    def setUp(self):
        """Set up each test."""
        super().setUp()
        reset_deduped_logs()
        self.start = START
        self.end = START + HOUR


def make_pod_map(window, pods, node="node-1", ingest_pod_uid=False):
    """Return a PodMap of pods spanning the window.

    ``pods`` maps (namespace, pod) to the names of the pod's containers.
    """
    pod_map = PodMap(ingest_pod_uid=ingest_pod_uid)
    for (namespace, name), containers in pods.items():
        key = PodKey(CLUSTER, namespace, name)
        pod = Pod(key, window.clone(), window.start, window.end, node=node)
        for container in containers:
            pod.container(container)
        pod_map.pods[key] = pod
    return pod_map
