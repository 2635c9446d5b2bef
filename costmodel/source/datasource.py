#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Metric data source interface.

Every query the cost model issues has a name in ``QUERY_DECODERS``. A data
source runs a named query over a window and returns a ``Future`` of typed
rows. Unknown names are rejected with KeyError.
"""
from abc import ABC
from abc import abstractmethod

from costmodel.source import decoders

PODS = "pods"
PODS_UID = "pods_uid"
RAM_BYTES_ALLOCATED = "ram_bytes_allocated"
RAM_REQUESTS = "ram_requests"
RAM_LIMITS = "ram_limits"
RAM_USAGE_AVG = "ram_usage_avg"
RAM_USAGE_MAX = "ram_usage_max"
CPU_CORES_ALLOCATED = "cpu_cores_allocated"
CPU_REQUESTS = "cpu_requests"
CPU_LIMITS = "cpu_limits"
CPU_USAGE_AVG = "cpu_usage_avg"
CPU_USAGE_MAX = "cpu_usage_max"
GPUS_REQUESTED = "gpus_requested"
GPUS_ALLOCATED = "gpus_allocated"
GPUS_USAGE_AVG = "gpus_usage_avg"
GPUS_USAGE_MAX = "gpus_usage_max"
GPU_INFO = "gpu_info"
IS_GPU_SHARED = "is_gpu_shared"
NODE_CPU_PRICE_PER_HR = "node_cpu_price_per_hr"
NODE_RAM_PRICE_PER_GIB_HR = "node_ram_price_per_gib_hr"
NODE_GPU_PRICE_PER_HR = "node_gpu_price_per_hr"
NODE_IS_SPOT = "node_is_spot"
POD_PVC_ALLOCATION = "pod_pvc_allocation"
PVC_BYTES_REQUESTED = "pvc_bytes_requested"
PVC_INFO = "pvc_info"
PV_BYTES = "pv_bytes"
PV_PRICE_PER_GIB_HOUR = "pv_price_per_gib_hour"
PV_INFO = "pv_info"
PV_ACTIVE_MINUTES = "pv_active_minutes"
PV_USED_AVG = "pv_used_avg"
PV_USED_MAX = "pv_used_max"
NET_ZONE_GIB = "net_zone_gib"
NET_ZONE_PRICE_PER_GIB = "net_zone_price_per_gib"
NET_REGION_GIB = "net_region_gib"
NET_REGION_PRICE_PER_GIB = "net_region_price_per_gib"
NET_INTERNET_GIB = "net_internet_gib"
NET_INTERNET_PRICE_PER_GIB = "net_internet_price_per_gib"
NET_INTERNET_SERVICE_GIB = "net_internet_service_gib"
NET_ZONE_INGRESS_GIB = "net_zone_ingress_gib"
NET_REGION_INGRESS_GIB = "net_region_ingress_gib"
NET_INTERNET_INGRESS_GIB = "net_internet_ingress_gib"
NET_INTERNET_SERVICE_INGRESS_GIB = "net_internet_service_ingress_gib"
NET_TRANSFER_BYTES = "net_transfer_bytes"
NET_RECEIVE_BYTES = "net_receive_bytes"
NODE_LABELS = "node_labels"
NAMESPACE_LABELS = "namespace_labels"
NAMESPACE_ANNOTATIONS = "namespace_annotations"
POD_LABELS = "pod_labels"
POD_ANNOTATIONS = "pod_annotations"
SERVICE_LABELS = "service_labels"
DEPLOYMENT_LABELS = "deployment_labels"
STATEFULSET_LABELS = "statefulset_labels"
DAEMONSET_LABELS = "daemonset_labels"
JOB_LABELS = "job_labels"
PODS_WITH_REPLICASET_OWNER = "pods_with_replicaset_owner"
REPLICASETS_WITHOUT_OWNERS = "replicasets_without_owners"
REPLICASETS_WITH_ROLLOUT = "replicasets_with_rollout"
LB_PRICE_PER_HR = "lb_price_per_hr"
LB_ACTIVE_MINUTES = "lb_active_minutes"
CLUSTER_MANAGEMENT_DURATION = "cluster_management_duration"
CLUSTER_MANAGEMENT_PRICE_PER_HR = "cluster_management_price_per_hr"
NODE_ACTIVE_MINUTES = "node_active_minutes"
NODE_CPU_CORES_CAPACITY = "node_cpu_cores_capacity"
NODE_CPU_CORES_ALLOCATABLE = "node_cpu_cores_allocatable"
NODE_RAM_BYTES_CAPACITY = "node_ram_bytes_capacity"
NODE_RAM_BYTES_ALLOCATABLE = "node_ram_bytes_allocatable"
NODE_GPU_COUNT = "node_gpu_count"
NODE_CPU_MODE_TOTAL = "node_cpu_mode_total"
NODE_RAM_SYSTEM_PERCENT = "node_ram_system_percent"
NODE_RAM_USER_PERCENT = "node_ram_user_percent"
LOCAL_STORAGE_ACTIVE_MINUTES = "local_storage_active_minutes"
LOCAL_STORAGE_COST = "local_storage_cost"
LOCAL_STORAGE_USED_COST = "local_storage_used_cost"
LOCAL_STORAGE_USED_AVG = "local_storage_used_avg"
LOCAL_STORAGE_USED_MAX = "local_storage_used_max"
LOCAL_STORAGE_BYTES = "local_storage_bytes"

QUERY_DECODERS = {
    PODS: decoders.decode_pods,
    PODS_UID: decoders.decode_pods,
    RAM_BYTES_ALLOCATED: decoders.decode_container_metric,
    RAM_REQUESTS: decoders.decode_container_metric,
    RAM_LIMITS: decoders.decode_container_metric,
    RAM_USAGE_AVG: decoders.decode_container_metric,
    RAM_USAGE_MAX: decoders.decode_container_metric,
    CPU_CORES_ALLOCATED: decoders.decode_container_metric,
    CPU_REQUESTS: decoders.decode_container_metric,
    CPU_LIMITS: decoders.decode_container_metric,
    CPU_USAGE_AVG: decoders.decode_container_metric,
    CPU_USAGE_MAX: decoders.decode_container_metric,
    GPUS_REQUESTED: decoders.decode_container_metric,
    GPUS_ALLOCATED: decoders.decode_container_metric,
    GPUS_USAGE_AVG: decoders.decode_container_metric,
    GPUS_USAGE_MAX: decoders.decode_container_metric,
    GPU_INFO: decoders.decode_gpu_info,
    IS_GPU_SHARED: decoders.decode_is_gpu_shared,
    NODE_CPU_PRICE_PER_HR: decoders.decode_node_price,
    NODE_RAM_PRICE_PER_GIB_HR: decoders.decode_node_price,
    NODE_GPU_PRICE_PER_HR: decoders.decode_node_price,
    NODE_IS_SPOT: decoders.decode_node,
    POD_PVC_ALLOCATION: decoders.decode_pod_pvc_allocation,
    PVC_BYTES_REQUESTED: decoders.decode_pvc,
    PVC_INFO: decoders.decode_pvc,
    PV_BYTES: decoders.decode_pv,
    PV_PRICE_PER_GIB_HOUR: decoders.decode_pv,
    PV_INFO: decoders.decode_pv,
    PV_ACTIVE_MINUTES: decoders.decode_pv,
    PV_USED_AVG: decoders.decode_pvc,
    PV_USED_MAX: decoders.decode_pvc,
    NET_ZONE_GIB: decoders.decode_network_gib,
    NET_ZONE_PRICE_PER_GIB: decoders.decode_network_price,
    NET_REGION_GIB: decoders.decode_network_gib,
    NET_REGION_PRICE_PER_GIB: decoders.decode_network_price,
    NET_INTERNET_GIB: decoders.decode_network_gib,
    NET_INTERNET_PRICE_PER_GIB: decoders.decode_network_price,
    NET_INTERNET_SERVICE_GIB: decoders.decode_network_gib,
    NET_ZONE_INGRESS_GIB: decoders.decode_network_gib,
    NET_REGION_INGRESS_GIB: decoders.decode_network_gib,
    NET_INTERNET_INGRESS_GIB: decoders.decode_network_gib,
    NET_INTERNET_SERVICE_INGRESS_GIB: decoders.decode_network_gib,
    NET_TRANSFER_BYTES: decoders.decode_network_bytes,
    NET_RECEIVE_BYTES: decoders.decode_network_bytes,
    NODE_LABELS: decoders.decode_metadata,
    NAMESPACE_LABELS: decoders.decode_metadata,
    NAMESPACE_ANNOTATIONS: decoders.decode_metadata,
    POD_LABELS: decoders.decode_metadata,
    POD_ANNOTATIONS: decoders.decode_metadata,
    SERVICE_LABELS: decoders.decode_metadata,
    DEPLOYMENT_LABELS: decoders.decode_deployment_labels,
    STATEFULSET_LABELS: decoders.decode_statefulset_labels,
    DAEMONSET_LABELS: decoders.decode_pod_owner,
    JOB_LABELS: decoders.decode_pod_owner,
    PODS_WITH_REPLICASET_OWNER: decoders.decode_pod_owner,
    REPLICASETS_WITHOUT_OWNERS: decoders.decode_replicaset,
    REPLICASETS_WITH_ROLLOUT: decoders.decode_replicaset,
    LB_PRICE_PER_HR: decoders.decode_lb,
    LB_ACTIVE_MINUTES: decoders.decode_lb,
    CLUSTER_MANAGEMENT_DURATION: decoders.decode_cluster_management,
    CLUSTER_MANAGEMENT_PRICE_PER_HR: decoders.decode_cluster_management,
    NODE_ACTIVE_MINUTES: decoders.decode_node,
    NODE_CPU_CORES_CAPACITY: decoders.decode_node,
    NODE_CPU_CORES_ALLOCATABLE: decoders.decode_node,
    NODE_RAM_BYTES_CAPACITY: decoders.decode_node,
    NODE_RAM_BYTES_ALLOCATABLE: decoders.decode_node,
    NODE_GPU_COUNT: decoders.decode_node,
    NODE_CPU_MODE_TOTAL: decoders.decode_node_cpu_mode_total,
    NODE_RAM_SYSTEM_PERCENT: decoders.decode_node_ram_percent,
    NODE_RAM_USER_PERCENT: decoders.decode_node_ram_percent,
    LOCAL_STORAGE_ACTIVE_MINUTES: decoders.decode_node,
    LOCAL_STORAGE_COST: decoders.decode_local_storage,
    LOCAL_STORAGE_USED_COST: decoders.decode_local_storage,
    LOCAL_STORAGE_USED_AVG: decoders.decode_local_storage,
    LOCAL_STORAGE_USED_MAX: decoders.decode_local_storage,
    LOCAL_STORAGE_BYTES: decoders.decode_local_storage,
}


class MetricsQuerier(ABC):
    """Runs named metric queries over a window."""

    @abstractmethod
    def query(self, name, start, end):
        """Start the named query for [start, end) and return a Future of typed rows."""


class DataSource(ABC):
    """A metric backend and the sampling parameters it was configured with."""

    @property
    @abstractmethod
    def metrics(self):
        """Return the MetricsQuerier for this source."""

    @property
    @abstractmethod
    def resolution(self):
        """Return the sampling resolution as a timedelta."""

    @property
    @abstractmethod
    def batch_duration(self):
        """Return the largest window computed in one pass as a timedelta."""

    @abstractmethod
    def date_range(self, limit_days):
        """Return the (oldest, newest) sample datetimes available."""
