#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""SQL column expressions for Cost and Usage Report queries in Athena.

Builders take the frozenset of column names present in the report table so
that optional pricing columns are only referenced when they exist.
"""
import re

from dateutil.relativedelta import relativedelta

from costmodel.cloud.aws.athena import CUR_VERSION_1

PRICING_COLUMN = "line_item_unblended_cost"
NET_PRICING_COLUMN = "line_item_net_unblended_cost"
RI_PRICING_COLUMN = "reservation_effective_cost"
NET_RI_PRICING_COLUMN = "reservation_net_effective_cost"
SP_PRICING_COLUMN = "savings_plan_savings_plan_effective_cost"
NET_SP_PRICING_COLUMN = "savings_plan_net_savings_plan_effective_cost"
USAGE_START_COLUMN = "line_item_usage_start_date"

USER_TAG_PREFIX = "resource_tags_user_"

IS_KUBERNETES_TAG_COLUMNS = (
    "resource_tags_aws_eks_cluster_name",
    "resource_tags_user_eks_cluster_name",
    "resource_tags_user_alpha_eksctl_io_cluster_name",
    "resource_tags_user_kubernetes_io_service_name",
    "resource_tags_user_kubernetes_io_created_for_pvc_name",
    "resource_tags_user_kubernetes_io_created_for_pv_name",
)

_ALIAS_RE = re.compile(r"\s+as\s+\S+$", re.IGNORECASE)
_TAG_CHAR_RE = re.compile(r"[^A-Za-z0-9_]")


def get_list_cost_column():
    return (
        "SUM(CASE line_item_line_item_type WHEN 'EdpDiscount' THEN 0 WHEN 'PrivateRateDiscount' THEN 0 "
        f"ELSE {PRICING_COLUMN} END) as list_cost"
    )


def _net_pricing(all_columns):
    if NET_PRICING_COLUMN in all_columns:
        return f"COALESCE({NET_PRICING_COLUMN}, {PRICING_COLUMN}, 0)"
    return PRICING_COLUMN


def get_net_cost_column(all_columns):
    return f"SUM({_net_pricing(all_columns)}) as net_cost"


def _amortized_case(pricing, ri_column, sp_column, all_columns):
    whens = []
    if ri_column in all_columns:
        whens.append(f"WHEN 'DiscountedUsage' THEN {ri_column}")
    if sp_column in all_columns:
        whens.append(f"WHEN 'SavingsPlanCoveredUsage' THEN {sp_column}")
    if not whens:
        return pricing
    return f"CASE line_item_line_item_type {' '.join(whens)} ELSE {pricing} END"


def get_amortized_cost_case(all_columns):
    """Return the per row amortized cost, using unblended cost without RI or SP columns."""
    return _amortized_case(PRICING_COLUMN, RI_PRICING_COLUMN, SP_PRICING_COLUMN, all_columns)


def get_amortized_net_cost_case(all_columns):
    return _amortized_case(_net_pricing(all_columns), NET_RI_PRICING_COLUMN, NET_SP_PRICING_COLUMN, all_columns)


def get_amortized_cost_column(all_columns):
    return f"SUM({get_amortized_cost_case(all_columns)}) as amortized_cost"


def get_amortized_net_cost_column(all_columns):
    return f"SUM({get_amortized_net_cost_case(all_columns)}) as amortized_net_cost"


def get_is_kubernetes_column(all_columns):
    checks = ["line_item_product_code = 'AmazonEKS'"]
    checks.extend(f"{column} <> ''" for column in IS_KUBERNETES_TAG_COLUMNS if column in all_columns)
    return f"({' OR '.join(checks)}) as is_kubernetes"


def remove_column_aliases(columns):
    """Return the columns with any trailing ``as <alias>`` removed."""
    return [_ALIAS_RE.sub("", column) for column in columns]


def convert_label_to_aws_tag(label):
    """Return the report column holding a user tag for a kubernetes label."""
    if label.startswith(USER_TAG_PREFIX):
        return label
    return USER_TAG_PREFIX + _TAG_CHAR_RE.sub("_", label)


def get_partition_where(start, end, cur_version, has_billing_period_partitions=True):
    """Return the WHERE clause restricting a query to the months of [start, end).

    CUR 1.0 tables partition by year and month, CUR 2.0 tables by billing
    period. CUR 2.0 tables without billing period partitions fall back to
    the usage start date.
    """
    month = start.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    disjuncts = []
    while month < end:
        if cur_version == CUR_VERSION_1:
            disjuncts.append(f"(year = '{month.year}' AND month = '{month.month}')")
        elif has_billing_period_partitions:
            disjuncts.append(f"(billing_period = '{month:%Y-%m}')")
        else:
            disjuncts.append(
                f"(date_format({USAGE_START_COLUMN}, '%Y') = '{month.year}' AND "
                f"date_format({USAGE_START_COLUMN}, '%m') = '{month:%m}')"
            )
        month += relativedelta(months=1)
    return f"({' OR '.join(disjuncts)})"
