#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Configuration loader for the cost model."""
from costmodel.env import ENVIRONMENT


DEFAULT_CLUSTER_ID = "default-cluster"
DEFAULT_PROMETHEUS_SERVER_ENDPOINT = ""
DEFAULT_PROMETHEUS_QUERY_TIMEOUT = 120
DEFAULT_PROMETHEUS_QUERY_RESOLUTION_SECONDS = 300
DEFAULT_PROMETHEUS_MAX_QUERY_DURATION_MINUTES = 60 * 24
DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT = True
DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT_MAX_RETRIES = 5
DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT_DEFAULT_WAIT = 0.1
DEFAULT_PROM_CLUSTER_ID_LABEL = "cluster_id"
DEFAULT_CURRENT_CLUSTER_ID_FILTER_ENABLED = False
DEFAULT_PROMETHEUS_HEADER_X_SCOPE_ORGID = ""
DEFAULT_PROMETHEUS_BEARER_TOKEN = ""
DEFAULT_INSECURE_SKIP_VERIFY = False
DEFAULT_PROMETHEUS_OFFSET_RESOLUTION = False
DEFAULT_MAX_QUERY_CONCURRENCY = 5
DEFAULT_INGEST_POD_UID = False
DEFAULT_INGEST_NODE_LABELS = True
DEFAULT_INCLUDE_LOCAL_DISK_COST = True
DEFAULT_LOG_DEDUPE_LIMIT = 5

DEFAULT_CUSTOM_PRICING_CPU = "0.031611"
DEFAULT_CUSTOM_PRICING_SPOT_CPU = "0.006655"
DEFAULT_CUSTOM_PRICING_RAM = "0.004237"
DEFAULT_CUSTOM_PRICING_SPOT_RAM = "0.000892"
DEFAULT_CUSTOM_PRICING_GPU = "0.95"
DEFAULT_CUSTOM_PRICING_SPOT_GPU = "0.308"
DEFAULT_CUSTOM_PRICING_STORAGE = "0.00005479452"
DEFAULT_CUSTOM_PRICING_ZONE_NETWORK_EGRESS = "0.01"
DEFAULT_CUSTOM_PRICING_REGION_NETWORK_EGRESS = "0.01"
DEFAULT_CUSTOM_PRICING_INTERNET_NETWORK_EGRESS = "0.12"
DEFAULT_CUSTOM_PRICING_DISCOUNT = ""
DEFAULT_CUSTOM_PRICING_NEGOTIATED_DISCOUNT = ""
DEFAULT_CUSTOM_PRICING_ENABLED = False


class Config:
    """Configuration for the cost model."""

    # Cluster id assigned to metric rows that do not carry one
    CLUSTER_ID = ENVIRONMENT.get_value("CLUSTER_ID", default=DEFAULT_CLUSTER_ID)

    PROMETHEUS_SERVER_ENDPOINT = ENVIRONMENT.get_value(
        "PROMETHEUS_SERVER_ENDPOINT", default=DEFAULT_PROMETHEUS_SERVER_ENDPOINT
    )
    # Seconds
    PROMETHEUS_QUERY_TIMEOUT = ENVIRONMENT.int("PROMETHEUS_QUERY_TIMEOUT", default=DEFAULT_PROMETHEUS_QUERY_TIMEOUT)
    PROMETHEUS_QUERY_RESOLUTION_SECONDS = ENVIRONMENT.int(
        "PROMETHEUS_QUERY_RESOLUTION_SECONDS", default=DEFAULT_PROMETHEUS_QUERY_RESOLUTION_SECONDS
    )

    # Largest window computed in a single pass; larger windows are batched
    PROMETHEUS_MAX_QUERY_DURATION_MINUTES = ENVIRONMENT.int(
        "PROMETHEUS_MAX_QUERY_DURATION_MINUTES", default=DEFAULT_PROMETHEUS_MAX_QUERY_DURATION_MINUTES
    )

    PROMETHEUS_RETRY_ON_RATE_LIMIT = ENVIRONMENT.bool(
        "PROMETHEUS_RETRY_ON_RATE_LIMIT", default=DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT
    )
    PROMETHEUS_RETRY_ON_RATE_LIMIT_MAX_RETRIES = ENVIRONMENT.int(
        "PROMETHEUS_RETRY_ON_RATE_LIMIT_MAX_RETRIES", default=DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT_MAX_RETRIES
    )
    PROMETHEUS_RETRY_ON_RATE_LIMIT_DEFAULT_WAIT = ENVIRONMENT.float(
        "PROMETHEUS_RETRY_ON_RATE_LIMIT_DEFAULT_WAIT", default=DEFAULT_PROMETHEUS_RETRY_ON_RATE_LIMIT_DEFAULT_WAIT
    )

    PROM_CLUSTER_ID_LABEL = ENVIRONMENT.get_value("PROM_CLUSTER_ID_LABEL", default=DEFAULT_PROM_CLUSTER_ID_LABEL)
    CURRENT_CLUSTER_ID_FILTER_ENABLED = ENVIRONMENT.bool(
        "CURRENT_CLUSTER_ID_FILTER_ENABLED", default=DEFAULT_CURRENT_CLUSTER_ID_FILTER_ENABLED
    )
    PROMETHEUS_HEADER_X_SCOPE_ORGID = ENVIRONMENT.get_value(
        "PROMETHEUS_HEADER_X_SCOPE_ORGID", default=DEFAULT_PROMETHEUS_HEADER_X_SCOPE_ORGID
    )
    PROMETHEUS_BEARER_TOKEN = ENVIRONMENT.get_value("PROMETHEUS_BEARER_TOKEN", default=DEFAULT_PROMETHEUS_BEARER_TOKEN)
    INSECURE_SKIP_VERIFY = ENVIRONMENT.bool("INSECURE_SKIP_VERIFY", default=DEFAULT_INSECURE_SKIP_VERIFY)

    # Older Prometheus versions drop the first sample of a subquery range
    PROMETHEUS_OFFSET_RESOLUTION = ENVIRONMENT.bool(
        "PROMETHEUS_OFFSET_RESOLUTION", default=DEFAULT_PROMETHEUS_OFFSET_RESOLUTION
    )
    MAX_QUERY_CONCURRENCY = ENVIRONMENT.int("MAX_QUERY_CONCURRENCY", default=DEFAULT_MAX_QUERY_CONCURRENCY)

    INGEST_POD_UID = ENVIRONMENT.bool("INGEST_POD_UID", default=DEFAULT_INGEST_POD_UID)
    INGEST_NODE_LABELS = ENVIRONMENT.bool("INGEST_NODE_LABELS", default=DEFAULT_INGEST_NODE_LABELS)
    INCLUDE_LOCAL_DISK_COST = ENVIRONMENT.bool("INCLUDE_LOCAL_DISK_COST", default=DEFAULT_INCLUDE_LOCAL_DISK_COST)

    # Number of times a deduplicated warning template is emitted
    LOG_DEDUPE_LIMIT = ENVIRONMENT.int("LOG_DEDUPE_LIMIT", default=DEFAULT_LOG_DEDUPE_LIMIT)

    CUSTOM_PRICING_CPU = ENVIRONMENT.get_value("CUSTOM_PRICING_CPU", default=DEFAULT_CUSTOM_PRICING_CPU)
    CUSTOM_PRICING_SPOT_CPU = ENVIRONMENT.get_value("CUSTOM_PRICING_SPOT_CPU", default=DEFAULT_CUSTOM_PRICING_SPOT_CPU)
    CUSTOM_PRICING_RAM = ENVIRONMENT.get_value("CUSTOM_PRICING_RAM", default=DEFAULT_CUSTOM_PRICING_RAM)
    CUSTOM_PRICING_SPOT_RAM = ENVIRONMENT.get_value("CUSTOM_PRICING_SPOT_RAM", default=DEFAULT_CUSTOM_PRICING_SPOT_RAM)
    CUSTOM_PRICING_GPU = ENVIRONMENT.get_value("CUSTOM_PRICING_GPU", default=DEFAULT_CUSTOM_PRICING_GPU)
    CUSTOM_PRICING_SPOT_GPU = ENVIRONMENT.get_value("CUSTOM_PRICING_SPOT_GPU", default=DEFAULT_CUSTOM_PRICING_SPOT_GPU)
    CUSTOM_PRICING_STORAGE = ENVIRONMENT.get_value("CUSTOM_PRICING_STORAGE", default=DEFAULT_CUSTOM_PRICING_STORAGE)
    CUSTOM_PRICING_ZONE_NETWORK_EGRESS = ENVIRONMENT.get_value(
        "CUSTOM_PRICING_ZONE_NETWORK_EGRESS", default=DEFAULT_CUSTOM_PRICING_ZONE_NETWORK_EGRESS
    )
    CUSTOM_PRICING_REGION_NETWORK_EGRESS = ENVIRONMENT.get_value(
        "CUSTOM_PRICING_REGION_NETWORK_EGRESS", default=DEFAULT_CUSTOM_PRICING_REGION_NETWORK_EGRESS
    )
    CUSTOM_PRICING_INTERNET_NETWORK_EGRESS = ENVIRONMENT.get_value(
        "CUSTOM_PRICING_INTERNET_NETWORK_EGRESS", default=DEFAULT_CUSTOM_PRICING_INTERNET_NETWORK_EGRESS
    )
    CUSTOM_PRICING_DISCOUNT = ENVIRONMENT.get_value("CUSTOM_PRICING_DISCOUNT", default=DEFAULT_CUSTOM_PRICING_DISCOUNT)
    CUSTOM_PRICING_NEGOTIATED_DISCOUNT = ENVIRONMENT.get_value(
        "CUSTOM_PRICING_NEGOTIATED_DISCOUNT", default=DEFAULT_CUSTOM_PRICING_NEGOTIATED_DISCOUNT
    )
    CUSTOM_PRICING_ENABLED = ENVIRONMENT.bool("CUSTOM_PRICING_ENABLED", default=DEFAULT_CUSTOM_PRICING_ENABLED)
