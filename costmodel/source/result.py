#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Generic metric query results."""
from typing import NamedTuple

CLUSTER_ID_LABEL = "cluster_id"
NAMESPACE_LABEL = "namespace"
NODE_LABEL = "node"
INSTANCE_LABEL = "instance"
INSTANCE_TYPE_LABEL = "instance_type"
CONTAINER_LABEL = "container"
CONTAINER_NAME_LABEL = "container_name"
POD_LABEL = "pod"
POD_NAME_LABEL = "pod_name"
PROVIDER_ID_LABEL = "provider_id"
DEVICE_LABEL = "device"
PVC_LABEL = "persistentvolumeclaim"
PV_LABEL = "persistentvolume"
STORAGE_CLASS_LABEL = "storageclass"
VOLUME_NAME_LABEL = "volumename"
SERVICE_LABEL = "service"
SERVICE_NAME_LABEL = "service_name"
INGRESS_IP_LABEL = "ingress_ip"
PROVISIONER_NAME_LABEL = "provisioner_name"
UID_LABEL = "uid"
KUBERNETES_NODE_LABEL = "kubernetes_node"
MODE_LABEL = "mode"
MODEL_NAME_LABEL = "modelName"
UUID_LABEL = "UUID"
RESOURCE_LABEL = "resource"
DEPLOYMENT_LABEL = "deployment"
STATEFULSET_LABEL = "statefulSet"
REPLICASET_LABEL = "replicaset"
OWNER_NAME_LABEL = "owner_name"
OWNER_KIND_LABEL = "owner_kind"

NONE_LABEL_VALUE = "<none>"

LABEL_PREFIX = "label_"
ANNOTATION_PREFIX = "annotation_"


class Vector(NamedTuple):
    """A single (timestamp, value) sample."""

    timestamp: float
    value: float


class QueryResult:
    """One series returned by a metric query: its label set and samples."""

    def __init__(self, metric, values, cluster_label=CLUSTER_ID_LABEL):
        self.metric = dict(metric or {})
        self.values = list(values or [])
        self.cluster_label = cluster_label

    def __repr__(self):
        return f"QueryResult(metric={self.metric!r}, values={len(self.values)})"

    def get_string(self, key):
        """Return a label value, or an empty string when absent."""
        value = self.metric.get(key, "")
        return value if isinstance(value, str) else str(value)

    def get_cluster(self):
        return self.get_string(self.cluster_label)

    def get_namespace(self):
        return self.get_string(NAMESPACE_LABEL)

    def get_node(self):
        return self.get_string(NODE_LABEL)

    def get_instance(self):
        return self.get_string(INSTANCE_LABEL)

    def get_pod(self):
        return self.get_string(POD_LABEL) or self.get_string(POD_NAME_LABEL)

    def get_container(self):
        return self.get_string(CONTAINER_LABEL) or self.get_string(CONTAINER_NAME_LABEL)

    def _prefixed(self, prefix):
        return {
            key[len(prefix) :]: self.get_string(key)
            for key in self.metric
            if key.startswith(prefix) and len(key) > len(prefix)
        }

    def get_labels(self):
        """Return the kubernetes labels exported as label_<name> series labels."""
        return self._prefixed(LABEL_PREFIX)

    def get_annotations(self):
        """Return the kubernetes annotations exported as annotation_<name> series labels."""
        return self._prefixed(ANNOTATION_PREFIX)
