#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Cloud provider resource identifiers.

Kubernetes reports provider ids in provider specific URI forms, for example
``aws:///us-east-2a/i-0123456789abcdef0`` for nodes or
``aws://us-east-2a/vol-0123`` for volumes. Cloud billing data keys the same
resources by their bare id, so each form is reduced to that id here.
"""
import re
from dataclasses import dataclass
from enum import StrEnum


class CloudProvider(StrEnum):
    AWS = "AWS"
    GCP = "GCP"
    UNKNOWN = "Unknown"


class ResourceType(StrEnum):
    NODE = "node"
    DISK = "disk"
    LOCAL_DISK = "local_disk"
    LOAD_BALANCER = "load_balancer"


# aws:///<zone>/<instance-id>
AWS_NODE_RE = re.compile(r"aws://[^/]*/[^/]*/([^/]+)")
# gce://<project>/<zone>/<instance-name>
GCE_NODE_RE = re.compile(r"gce://[^/]*/[^/]*/([^/]+)")
# aws:/<zone>/<volume-id> (kubelet collapses the empty host)
AWS_PV_RE = re.compile(r"aws:/[^/]*/[^/]*/([^/]+)")
# <lb-name>-<hash>.<region>.elb.amazonaws.com
AWS_LB_RE = re.compile(r"^([^-]+)-.+amazonaws\.com$")


@dataclass(frozen=True)
class ProviderID:
    """A provider resource id reduced to the form used by billing data."""

    provider: CloudProvider
    resource_type: ResourceType
    raw: str
    id: str

    def __str__(self):
        return self.id

    @classmethod
    def _match(cls, resource_type, raw, rules):
        for provider, regex in rules:
            match = regex.search(raw)
            if match:
                return cls(provider, resource_type, raw, match.group(1))
        return cls(CloudProvider.UNKNOWN, resource_type, raw, raw)

    @classmethod
    def parse_node_id(cls, raw):
        return cls._match(
            ResourceType.NODE, raw, ((CloudProvider.AWS, AWS_NODE_RE), (CloudProvider.GCP, GCE_NODE_RE))
        )

    @classmethod
    def parse_local_disk_id(cls, raw):
        return cls._match(
            ResourceType.LOCAL_DISK, raw, ((CloudProvider.AWS, AWS_NODE_RE), (CloudProvider.GCP, GCE_NODE_RE))
        )

    @classmethod
    def parse_pv_id(cls, raw):
        return cls._match(ResourceType.DISK, raw, ((CloudProvider.AWS, AWS_PV_RE),))

    @classmethod
    def parse_lb_id(cls, raw):
        return cls._match(ResourceType.LOAD_BALANCER, raw, ((CloudProvider.AWS, AWS_LB_RE),))


def parse_id(raw):
    """Return the bare node id for a provider id."""
    return str(ProviderID.parse_node_id(raw))


def parse_pv_id(raw):
    """Return the bare volume id for a provider id."""
    return str(ProviderID.parse_pv_id(raw))


def parse_lb_id(raw):
    """Return the bare load balancer id for an ingress hostname."""
    return str(ProviderID.parse_lb_id(raw))


def parse_local_disk_id(raw):
    """Return the bare id of the node backing a local disk."""
    return str(ProviderID.parse_local_disk_id(raw))
