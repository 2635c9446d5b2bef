#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Allocation data model: windows, allocations, sets and ranges."""
