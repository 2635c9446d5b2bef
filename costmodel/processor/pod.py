#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""The pod map every allocation query joins against."""
import logging

from costmodel.allocation.allocation import Allocation
from costmodel.allocation.allocation import AllocationProperties
from costmodel.allocation.allocation import UNMOUNTED_SUFFIX
from costmodel.common.log import deduped_warning
from costmodel.config import Config
from costmodel.processor.keys import PodKey
from costmodel.processor.keys import unmounted_pod_key
from costmodel.processor.keys import unmounted_pvcs_pod_name
from costmodel.util.timeutil import calculate_start_end

LOG = logging.getLogger(__name__)


class Pod:
    """A running pod and the allocations of its containers."""

    def __init__(self, key, window, start, end, node=""):
        self.key = key
        self.window = window
        self.start = start
        self.end = end
        self.node = node
        self.allocations = {}

    def __repr__(self):
        return f"Pod({self.key}, start={self.start}, end={self.end}, containers={list(self.allocations)})"

    def minutes(self):
        return (self.end - self.start).total_seconds() / 60.0

    def hours(self):
        return self.minutes() / 60.0

    def append_container(self, container):
        """Create the allocation for a container of this pod."""
        alloc = Allocation(
            name=f"{self.key.cluster}/{self.key.namespace}/{self.key.pod}/{container}",
            properties=AllocationProperties(
                cluster=self.key.cluster,
                namespace=self.key.namespace,
                pod=self.key.pod,
                container=container,
                node=self.node,
            ),
            window=self.window.clone(),
            start=self.start,
            end=self.end,
        )
        self.allocations[container] = alloc
        return alloc

    def container(self, container):
        """Return the container's allocation, creating it on first touch."""
        alloc = self.allocations.get(container)
        if alloc is None:
            alloc = self.append_container(container)
        return alloc


class PodMap:
    """Pods keyed by PodKey, plus the UID-less to UID-ful key index."""

    def __init__(self, ingest_pod_uid=False):
        self.ingest_pod_uid = ingest_pod_uid
        self.pods = {}
        self.uid_keys = {}

    def __contains__(self, key):
        return key in self.pods

    def __iter__(self):
        return iter(list(self.pods.items()))

    def __len__(self):
        return len(self.pods)

    def get(self, key):
        return self.pods.get(key)

    def lookup(self, key):
        """Return the pods a metric row keyed without UID refers to."""
        pod = self.pods.get(key)
        if pod is not None:
            return [pod]
        return [self.pods[uid_key] for uid_key in self.uid_keys.get(key, []) if uid_key in self.pods]

    def expand_keys(self, key):
        """Return the pod keys a UID-less key stands for."""
        if self.ingest_pod_uid:
            return list(self.uid_keys.get(key, []))
        return [key]

    def allocations(self):
        for _, pod in self:
            yield from pod.allocations.values()

    def apply_pod_results(self, window, resolution, rows):
        """Insert or extend a pod for every row of the pods query."""
        for row in rows:
            if not row.data:
                LOG.warning("empty minutes result")
                continue
            if not row.namespace:
                deduped_warning(LOG, "pods query result missing field: namespace")
                continue
            if not row.pod:
                deduped_warning(LOG, "pods query result missing field: pod")
                continue
            cluster = row.cluster or Config.CLUSTER_ID
            key = PodKey(cluster, row.namespace, row.pod)

            if self.ingest_pod_uid:
                if not row.uid:
                    deduped_warning(LOG, "UID ingestion enabled, but pods result missing field: uid")
                else:
                    uid_key = PodKey(cluster, row.namespace, f"{row.pod} {row.uid}")
                    self.uid_keys.setdefault(key, [])
                    if uid_key not in self.uid_keys[key]:
                        self.uid_keys[key].append(uid_key)
                    key = uid_key

            interval = calculate_start_end(row.data, resolution, window)
            if interval is None:
                continue
            start, end = interval

            pod = self.pods.get(key)
            if pod is None:
                self.pods[key] = Pod(key, window.clone(), start, end)
                continue
            if start < pod.start:
                pod.start = start
            if end > pod.end:
                pod.end = end

    def _unmounted_pod(self, window, key, namespace, pod_name):
        pod = self.pods.get(key)
        if pod is None:
            pod = Pod(key, window.clone(), window.start, window.end)
            alloc = pod.append_container(UNMOUNTED_SUFFIX)
            alloc.properties.namespace = namespace
            alloc.properties.pod = pod_name
            self.pods[key] = pod
        return pod

    def unmounted_pod_for_cluster(self, window, cluster):
        """Return the cluster's unmounted pod, creating it over the full window."""
        return self._unmounted_pod(window, unmounted_pod_key(cluster), UNMOUNTED_SUFFIX, UNMOUNTED_SUFFIX)

    def unmounted_pod_for_namespace(self, window, cluster, namespace):
        """Return the namespace's unmounted PVC pod, creating it over the full window."""
        pod_name = unmounted_pvcs_pod_name(namespace)
        return self._unmounted_pod(window, PodKey(cluster, namespace, pod_name), namespace, pod_name)


def filter_uid_rows(rows):
    """Keep only rows carrying a pod UID, unless there are none."""
    uid_rows = [row for row in rows if row.uid]
    if uid_rows:
        return uid_rows
    deduped_warning(LOG, "UID ingestion enabled, but pods query did not return any results with UID")
    return rows
