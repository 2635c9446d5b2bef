#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Value keys joining metric rows across queries.

Each new_result_* constructor fills a missing cluster with the
configured cluster id and raises ValueError when a required field is empty.
"""
from dataclasses import dataclass

from costmodel.allocation.allocation import UNMOUNTED_SUFFIX
from costmodel.config import Config


def _cluster_or_default(cluster):
    return cluster or Config.CLUSTER_ID


def _require(value, name):
    if not value:
        raise ValueError(f"{name} is required")


@dataclass(frozen=True, order=True)
class NamespaceKey:
    cluster: str
    namespace: str

    def __str__(self):
        return f"{self.cluster}/{self.namespace}"


@dataclass(frozen=True, order=True)
class PodKey:
    cluster: str
    namespace: str
    pod: str

    def __str__(self):
        return f"{self.cluster}/{self.namespace}/{self.pod}"

    @property
    def namespace_key(self):
        return NamespaceKey(self.cluster, self.namespace)


@dataclass(frozen=True, order=True)
class ControllerKey:
    cluster: str
    namespace: str
    controller_kind: str
    controller: str

    def __str__(self):
        return f"{self.cluster}/{self.namespace}/{self.controller_kind}/{self.controller}"


@dataclass(frozen=True, order=True)
class ServiceKey:
    cluster: str
    namespace: str
    service: str

    def __str__(self):
        return f"{self.cluster}/{self.namespace}/{self.service}"


@dataclass(frozen=True, order=True)
class NodeKey:
    cluster: str
    node: str

    def __str__(self):
        return f"{self.cluster}/{self.node}"


@dataclass(frozen=True, order=True)
class PVKey:
    cluster: str
    persistent_volume: str

    def __str__(self):
        return f"{self.cluster}/{self.persistent_volume}"


@dataclass(frozen=True, order=True)
class PVCKey:
    cluster: str
    namespace: str
    persistent_volume_claim: str

    def __str__(self):
        return f"{self.cluster}/{self.namespace}/{self.persistent_volume_claim}"


def new_result_pod_key(cluster, namespace, pod):
    _require(namespace, "namespace")
    _require(pod, "pod")
    return PodKey(_cluster_or_default(cluster), namespace, pod)


def new_result_namespace_key(cluster, namespace):
    _require(namespace, "namespace")
    return NamespaceKey(_cluster_or_default(cluster), namespace)


def new_result_controller_key(cluster, namespace, controller, controller_kind):
    _require(namespace, "namespace")
    _require(controller, "controller")
    return ControllerKey(_cluster_or_default(cluster), namespace, controller_kind, controller)


def new_result_service_key(cluster, namespace, service):
    _require(namespace, "namespace")
    _require(service, "service")
    return ServiceKey(_cluster_or_default(cluster), namespace, service)


def new_result_node_key(cluster, node):
    _require(node, "node")
    return NodeKey(_cluster_or_default(cluster), node)


def new_result_pv_key(cluster, persistent_volume):
    _require(persistent_volume, "persistentvolume")
    return PVKey(_cluster_or_default(cluster), persistent_volume)


def new_result_pvc_key(cluster, namespace, persistent_volume_claim):
    _require(namespace, "namespace")
    _require(persistent_volume_claim, "persistentvolumeclaim")
    return PVCKey(_cluster_or_default(cluster), namespace, persistent_volume_claim)


def unmounted_pod_key(cluster):
    """Return the pod key collecting a cluster's unmounted cost."""
    return PodKey(cluster, UNMOUNTED_SUFFIX, UNMOUNTED_SUFFIX)


def unmounted_pvcs_pod_name(namespace):
    return f"{namespace}-unmounted-pvcs"
