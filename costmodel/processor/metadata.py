#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Labels, annotations, controllers and services of pods."""
import logging
import re

from costmodel.common.log import deduped_warning
from costmodel.processor.keys import ControllerKey
from costmodel.processor.keys import new_result_controller_key
from costmodel.processor.keys import new_result_namespace_key
from costmodel.processor.keys import new_result_node_key
from costmodel.processor.keys import new_result_pod_key
from costmodel.processor.keys import new_result_service_key
from costmodel.processor.keys import NodeKey
from costmodel.processor.keys import PodKey
from costmodel.processor.keys import ServiceKey

LOG = logging.getLogger(__name__)

DEPLOYMENT_KIND = "deployment"
STATEFULSET_KIND = "statefulset"
DAEMONSET_KIND = "daemonset"
JOB_KIND = "job"
REPLICASET_KIND = "replicaset"
ROLLOUT_KIND = "rollout"

CRONJOB_RE = re.compile(r"^(.+)-(\d{10}|\d{8})$")


def _merge_into(target, key, values):
    target.setdefault(key, {}).update(values)


def node_labels_by_key(rows):
    result = {}
    for row in rows:
        try:
            key = new_result_node_key(row.cluster, row.node)
        except ValueError:
            continue
        _merge_into(result, key, row.labels)
    return result


def namespace_labels_by_key(rows):
    result = {}
    for row in rows:
        try:
            key = new_result_namespace_key(row.cluster, row.namespace)
        except ValueError:
            continue
        _merge_into(result, key, row.labels)
    return result


def namespace_annotations_by_name(rows):
    result = {}
    for row in rows:
        if row.namespace:
            _merge_into(result, row.namespace, row.annotations)
    return result


def _pod_metadata_by_key(rows, pod_map, attr):
    result = {}
    for row in rows:
        try:
            key = new_result_pod_key(row.cluster, row.namespace, row.pod)
        except ValueError:
            continue
        for pod_key in pod_map.expand_keys(key):
            _merge_into(result, pod_key, getattr(row, attr))
    return result


def pod_labels_by_key(rows, pod_map):
    return _pod_metadata_by_key(rows, pod_map, "labels")


def pod_annotations_by_key(rows, pod_map):
    return _pod_metadata_by_key(rows, pod_map, "annotations")


def apply_labels(pod_map, node_labels, namespace_labels, pod_labels):
    """Apply node, then namespace, then pod labels so the narrowest wins."""
    for key, pod in pod_map:
        for alloc in pod.allocations.values():
            labels = alloc.properties.labels
            ns_labels = alloc.properties.namespace_labels
            if node_labels:
                labels.update(node_labels.get(NodeKey(key.cluster, pod.node), {}))
            for name, value in namespace_labels.get(key.namespace_key, {}).items():
                labels[name] = value
                ns_labels[name] = value
            labels.update(pod_labels.get(key, {}))


def apply_annotations(pod_map, namespace_annotations, pod_annotations):
    """Apply namespace, then pod annotations so pod annotations win."""
    for key, pod in pod_map:
        for alloc in pod.allocations.values():
            annotations = alloc.properties.annotations
            ns_annotations = alloc.properties.namespace_annotations
            for name, value in namespace_annotations.get(key.namespace, {}).items():
                annotations[name] = value
                ns_annotations[name] = value
            annotations.update(pod_annotations.get(key, {}))


def _prune_underscore_duplicates(by_key, rename):
    # a name also present with hyphens in place of underscores is a duplicate
    for key in list(by_key):
        renamed = rename(key)
        if renamed is not None and renamed != key and renamed in by_key:
            del by_key[key]


def _controller_labels(rows, kind):
    result = {}
    for row in rows:
        try:
            key = new_result_controller_key(row.cluster, row.namespace, row.name, kind)
        except ValueError:
            continue
        _merge_into(result, key, row.labels)

    def rename(key):
        if "_" not in key.controller:
            return None
        return ControllerKey(key.cluster, key.namespace, key.controller_kind, key.controller.replace("_", "-"))

    _prune_underscore_duplicates(result, rename)
    return result


def deployment_labels_by_key(rows):
    return _controller_labels(rows, DEPLOYMENT_KIND)


def statefulset_labels_by_key(rows):
    return _controller_labels(rows, STATEFULSET_KIND)


def selector_matches(selector, labels):
    """Return True when every selector label is present with the same value."""
    return all(labels.get(name) == value for name, value in selector.items())


def labels_to_pod_controller_map(pod_labels, controller_labels):
    """Map each pod to the controller whose labels select it."""
    result = {}
    for controller_key, selector in controller_labels.items():
        for pod_key, labels in pod_labels.items():
            if controller_key.cluster != pod_key.cluster or controller_key.namespace != pod_key.namespace:
                continue
            if selector_matches(selector, labels):
                if pod_key in result:
                    deduped_warning(
                        LOG,
                        "pod controller match already exists: %s matches %s and %s",
                        pod_key,
                        result[pod_key],
                        controller_key,
                    )
                result[pod_key] = controller_key
    return result


def _owned_pods(rows, pod_map, kind, rename=None):
    result = {}
    for row in rows:
        try:
            controller_key = new_result_controller_key(row.cluster, row.namespace, row.owner_name, kind)
        except ValueError:
            continue
        if rename is not None:
            controller_key = rename(controller_key)
        if not row.pod:
            deduped_warning(LOG, "%s owner result without pod: %s", kind, controller_key)
        key = PodKey(controller_key.cluster, controller_key.namespace, row.pod)
        for pod_key in pod_map.expand_keys(key):
            result[pod_key] = controller_key
    return result


def cronjob_name(job):
    """Return the CronJob name for a job it generated, else the job name."""
    match = CRONJOB_RE.match(job)
    if match:
        return match.group(1)
    return job


def pod_daemonset_map(rows, pod_map):
    return _owned_pods(rows, pod_map, DAEMONSET_KIND)


def pod_job_map(rows, pod_map):
    def to_cronjob(key):
        return ControllerKey(key.cluster, key.namespace, key.controller_kind, cronjob_name(key.controller))

    return _owned_pods(rows, pod_map, JOB_KIND, rename=to_cronjob)


def pod_replicaset_map(pod_rows, unowned_rows, rollout_rows, pod_map):
    """Map pods to ReplicaSets that are unowned or owned by a Rollout.

    ReplicaSets owned by anything else, such as a Deployment, are skipped so
    the owner resolved earlier stands.
    """
    replica_sets = set()
    for row in unowned_rows:
        try:
            replica_sets.add(new_result_controller_key(row.cluster, row.namespace, row.replica_set, REPLICASET_KIND))
        except ValueError:
            continue
    for row in rollout_rows:
        try:
            replica_sets.add(new_result_controller_key(row.cluster, row.namespace, row.replica_set, ROLLOUT_KIND))
        except ValueError:
            continue

    result = {}
    for row in pod_rows:
        try:
            controller_key = new_result_controller_key(row.cluster, row.namespace, row.owner_name, REPLICASET_KIND)
        except ValueError:
            continue
        if controller_key not in replica_sets:
            controller_key = ControllerKey(
                controller_key.cluster, controller_key.namespace, ROLLOUT_KIND, controller_key.controller
            )
            if controller_key not in replica_sets:
                continue
        if not row.pod:
            deduped_warning(LOG, "replicaset owner result without pod: %s", controller_key)
        key = PodKey(controller_key.cluster, controller_key.namespace, row.pod)
        for pod_key in pod_map.expand_keys(key):
            result[pod_key] = controller_key
    return result


def apply_controllers_to_pods(pod_map, pod_controller_map):
    for key, pod in pod_map:
        controller_key = pod_controller_map.get(key)
        if controller_key is None:
            continue
        for alloc in pod.allocations.values():
            alloc.properties.controller_kind = controller_key.controller_kind
            alloc.properties.controller = controller_key.controller


def service_labels_by_key(rows):
    result = {}
    for row in rows:
        try:
            key = new_result_service_key(row.cluster, row.namespace, row.service)
        except ValueError:
            continue
        _merge_into(result, key, row.labels)

    def rename(key):
        if "_" not in key.service:
            return None
        return ServiceKey(key.cluster, key.namespace, key.service.replace("_", "-"))

    _prune_underscore_duplicates(result, rename)
    return result


def apply_services_to_pods(pod_map, pod_labels, service_labels):
    """Tag allocations with the services selecting their pod.

    Returns the allocations of each service, keyed by ServiceKey.
    """
    pod_services = {}
    for service_key, selector in service_labels.items():
        for pod_key, labels in pod_labels.items():
            if service_key.cluster != pod_key.cluster or service_key.namespace != pod_key.namespace:
                continue
            if selector_matches(selector, labels):
                pod_services.setdefault(pod_key, []).append(service_key)

    allocs_by_service = {}
    for key, pod in pod_map:
        service_keys = pod_services.get(key)
        if not service_keys:
            continue
        for alloc in pod.allocations.values():
            alloc.properties.services = [service_key.service for service_key in service_keys]
            for service_key in service_keys:
                allocs_by_service.setdefault(service_key, []).append(alloc)
    return allocs_by_service
