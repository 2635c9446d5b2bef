#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Typed rows decoded from generic query results."""
from dataclasses import dataclass
from dataclasses import field

from costmodel.source.result import DEPLOYMENT_LABEL
from costmodel.source.result import DEVICE_LABEL
from costmodel.source.result import INGRESS_IP_LABEL
from costmodel.source.result import INSTANCE_TYPE_LABEL
from costmodel.source.result import KUBERNETES_NODE_LABEL
from costmodel.source.result import MODE_LABEL
from costmodel.source.result import MODEL_NAME_LABEL
from costmodel.source.result import OWNER_KIND_LABEL
from costmodel.source.result import OWNER_NAME_LABEL
from costmodel.source.result import PROVIDER_ID_LABEL
from costmodel.source.result import PROVISIONER_NAME_LABEL
from costmodel.source.result import PV_LABEL
from costmodel.source.result import PVC_LABEL
from costmodel.source.result import REPLICASET_LABEL
from costmodel.source.result import RESOURCE_LABEL
from costmodel.source.result import SERVICE_LABEL
from costmodel.source.result import SERVICE_NAME_LABEL
from costmodel.source.result import STATEFULSET_LABEL
from costmodel.source.result import STORAGE_CLASS_LABEL
from costmodel.source.result import UID_LABEL
from costmodel.source.result import UUID_LABEL
from costmodel.source.result import VOLUME_NAME_LABEL


@dataclass
class PodsResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class ContainerMetricResult:
    """CPU, RAM and GPU per-container series."""

    cluster: str = ""
    node: str = ""
    instance: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class GPUInfoResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""
    device: str = ""
    model_name: str = ""
    uuid: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class IsGPUSharedResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""
    resource: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class NodePriceResult:
    """Per-node hourly CPU, RAM or GPU price."""

    cluster: str = ""
    node: str = ""
    instance_type: str = ""
    provider_id: str = ""
    data: list = field(default_factory=list)


@dataclass
class NodeResult:
    """Per-node scalar series: capacity, allocatable, spot, GPU count, activity."""

    cluster: str = ""
    node: str = ""
    provider_id: str = ""
    data: list = field(default_factory=list)


@dataclass
class NodeCPUModeTotalResult:
    cluster: str = ""
    node: str = ""
    mode: str = ""
    data: list = field(default_factory=list)


@dataclass
class NodeRAMPercentResult:
    cluster: str = ""
    instance: str = ""
    data: list = field(default_factory=list)


@dataclass
class PVResult:
    """Persistent volume price, size, info and activity."""

    cluster: str = ""
    persistent_volume: str = ""
    volume_name: str = ""
    storage_class: str = ""
    provider_id: str = ""
    data: list = field(default_factory=list)


@dataclass
class PVCResult:
    """Persistent volume claim info, requested bytes and usage."""

    cluster: str = ""
    namespace: str = ""
    persistent_volume_claim: str = ""
    volume_name: str = ""
    storage_class: str = ""
    data: list = field(default_factory=list)


@dataclass
class PodPVCAllocationResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    persistent_volume: str = ""
    persistent_volume_claim: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class NetworkGiBResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    service: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class NetworkPricePerGiBResult:
    cluster: str = ""
    data: list = field(default_factory=list)


@dataclass
class NetworkBytesResult:
    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    container: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class MetadataResult:
    """Labels or annotations attached to a node, namespace, pod or service."""

    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    node: str = ""
    service: str = ""
    uid: str = ""
    labels: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    data: list = field(default_factory=list)


@dataclass
class ControllerLabelsResult:
    """Match labels of a Deployment or StatefulSet."""

    cluster: str = ""
    namespace: str = ""
    name: str = ""
    labels: dict = field(default_factory=dict)
    data: list = field(default_factory=list)


@dataclass
class PodOwnerResult:
    """A pod owned by a DaemonSet, Job or ReplicaSet."""

    cluster: str = ""
    namespace: str = ""
    pod: str = ""
    owner_name: str = ""
    uid: str = ""
    data: list = field(default_factory=list)


@dataclass
class ReplicaSetResult:
    cluster: str = ""
    namespace: str = ""
    replica_set: str = ""
    owner_name: str = ""
    owner_kind: str = ""
    data: list = field(default_factory=list)


@dataclass
class LBResult:
    cluster: str = ""
    namespace: str = ""
    service: str = ""
    ingress_ip: str = ""
    data: list = field(default_factory=list)


@dataclass
class ClusterManagementResult:
    cluster: str = ""
    provisioner: str = ""
    data: list = field(default_factory=list)


@dataclass
class LocalStorageResult:
    cluster: str = ""
    instance: str = ""
    device: str = ""
    data: list = field(default_factory=list)


def decode_pods(result):
    return PodsResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_container_metric(result):
    node = result.get_node()
    instance = result.get_instance()
    # Inherit the instance as node where the exporter omitted the node label
    if not node:
        node = instance
    return ContainerMetricResult(
        cluster=result.get_cluster(),
        node=node,
        instance=instance,
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        container=result.get_container(),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_gpu_info(result):
    return GPUInfoResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        container=result.get_container(),
        device=result.get_string(DEVICE_LABEL),
        model_name=result.get_string(MODEL_NAME_LABEL),
        uuid=result.get_string(UUID_LABEL),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_is_gpu_shared(result):
    return IsGPUSharedResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        container=result.get_container(),
        resource=result.get_string(RESOURCE_LABEL),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_node_price(result):
    return NodePriceResult(
        cluster=result.get_cluster(),
        node=result.get_node(),
        instance_type=result.get_string(INSTANCE_TYPE_LABEL),
        provider_id=result.get_string(PROVIDER_ID_LABEL),
        data=result.values,
    )


def decode_node(result):
    return NodeResult(
        cluster=result.get_cluster(),
        node=result.get_node(),
        provider_id=result.get_string(PROVIDER_ID_LABEL),
        data=result.values,
    )


def decode_node_cpu_mode_total(result):
    return NodeCPUModeTotalResult(
        cluster=result.get_cluster(),
        node=result.get_string(KUBERNETES_NODE_LABEL),
        mode=result.get_string(MODE_LABEL),
        data=result.values,
    )


def decode_node_ram_percent(result):
    return NodeRAMPercentResult(cluster=result.get_cluster(), instance=result.get_instance(), data=result.values)


def decode_pv(result):
    return PVResult(
        cluster=result.get_cluster(),
        persistent_volume=result.get_string(PV_LABEL),
        volume_name=result.get_string(VOLUME_NAME_LABEL),
        storage_class=result.get_string(STORAGE_CLASS_LABEL),
        provider_id=result.get_string(PROVIDER_ID_LABEL),
        data=result.values,
    )


def decode_pvc(result):
    return PVCResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        persistent_volume_claim=result.get_string(PVC_LABEL),
        volume_name=result.get_string(VOLUME_NAME_LABEL),
        storage_class=result.get_string(STORAGE_CLASS_LABEL),
        data=result.values,
    )


def decode_pod_pvc_allocation(result):
    return PodPVCAllocationResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        persistent_volume=result.get_string(PV_LABEL),
        persistent_volume_claim=result.get_string(PVC_LABEL),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_network_gib(result):
    return NetworkGiBResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        service=result.get_string(SERVICE_LABEL),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_network_price(result):
    return NetworkPricePerGiBResult(cluster=result.get_cluster(), data=result.values)


def decode_network_bytes(result):
    return NetworkBytesResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        container=result.get_container(),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_metadata(result):
    return MetadataResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        node=result.get_node(),
        service=result.get_string(SERVICE_LABEL),
        uid=result.get_string(UID_LABEL),
        labels=result.get_labels(),
        annotations=result.get_annotations(),
        data=result.values,
    )


def _controller_labels_decoder(name_label):
    def decode(result):
        return ControllerLabelsResult(
            cluster=result.get_cluster(),
            namespace=result.get_namespace(),
            name=result.get_string(name_label),
            labels=result.get_labels(),
            data=result.values,
        )

    return decode


decode_deployment_labels = _controller_labels_decoder(DEPLOYMENT_LABEL)
decode_statefulset_labels = _controller_labels_decoder(STATEFULSET_LABEL)


def decode_pod_owner(result):
    return PodOwnerResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        pod=result.get_pod(),
        owner_name=result.get_string(OWNER_NAME_LABEL),
        uid=result.get_string(UID_LABEL),
        data=result.values,
    )


def decode_replicaset(result):
    return ReplicaSetResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        replica_set=result.get_string(REPLICASET_LABEL),
        owner_name=result.get_string(OWNER_NAME_LABEL),
        owner_kind=result.get_string(OWNER_KIND_LABEL),
        data=result.values,
    )


def decode_lb(result):
    return LBResult(
        cluster=result.get_cluster(),
        namespace=result.get_namespace(),
        service=result.get_string(SERVICE_NAME_LABEL),
        ingress_ip=result.get_string(INGRESS_IP_LABEL),
        data=result.values,
    )


def decode_cluster_management(result):
    return ClusterManagementResult(
        cluster=result.get_cluster(), provisioner=result.get_string(PROVISIONER_NAME_LABEL), data=result.values
    )


def decode_local_storage(result):
    return LocalStorageResult(
        cluster=result.get_cluster(),
        instance=result.get_instance(),
        device=result.get_string(DEVICE_LABEL),
        data=result.values,
    )


def decode_all(results, decoder):
    """Decode every generic result with the given decoder."""
    return [decoder(result) for result in results]
