#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Allocation matchers built from parsed filter expressions."""
from enum import StrEnum


class Op(StrEnum):
    EQUALS = ":"
    NOT_EQUALS = "!:"
    CONTAINS = "~:"
    NOT_CONTAINS = "!~:"
    STARTS_WITH = "<~:"
    NOT_STARTS_WITH = "!<~:"
    ENDS_WITH = "~>:"
    NOT_ENDS_WITH = "!~>:"


NEGATED_OPS = {
    Op.NOT_EQUALS: Op.EQUALS,
    Op.NOT_CONTAINS: Op.CONTAINS,
    Op.NOT_STARTS_WITH: Op.STARTS_WITH,
    Op.NOT_ENDS_WITH: Op.ENDS_WITH,
}

# Filter field -> allocation property attribute
STRING_FIELDS = {
    "cluster": "cluster",
    "node": "node",
    "namespace": "namespace",
    "controllerKind": "controller_kind",
    "controllerName": "controller",
    "pod": "pod",
    "container": "container",
    "providerID": "provider_id",
}
LIST_FIELDS = {"services": "services"}
MAP_FIELDS = {"label": "labels", "annotation": "annotations"}


def _compare(op, value, target):
    if op == Op.EQUALS:
        return value == target
    if op == Op.CONTAINS:
        return target in value
    if op == Op.STARTS_WITH:
        return value.startswith(target)
    if op == Op.ENDS_WITH:
        return value.endswith(target)
    raise ValueError(f"unsupported operator: {op}")


class AllMatcher:
    """Matches every allocation."""

    def matches(self, alloc):
        return True

    def __repr__(self):
        return "AllMatcher()"


class NotMatcher:
    def __init__(self, matcher):
        self.matcher = matcher

    def matches(self, alloc):
        return not self.matcher.matches(alloc)

    def __repr__(self):
        return f"NotMatcher({self.matcher!r})"


class AndMatcher:
    def __init__(self, matchers):
        self.matchers = list(matchers)

    def matches(self, alloc):
        return all(matcher.matches(alloc) for matcher in self.matchers)

    def __repr__(self):
        return f"AndMatcher({self.matchers!r})"


class OrMatcher:
    def __init__(self, matchers):
        self.matchers = list(matchers)

    def matches(self, alloc):
        return any(matcher.matches(alloc) for matcher in self.matchers)

    def __repr__(self):
        return f"OrMatcher({self.matchers!r})"


class PropertyMatcher:
    """Compares one allocation property against a value with a positive operator.

    String fields compare the property itself; list fields match when any
    element matches; map fields compare the value under ``key``. An equality
    test against the empty string matches a missing map key.
    """

    def __init__(self, field, op, value, key=None):
        self.field = field
        self.op = op
        self.value = value
        self.key = key

    def __repr__(self):
        key = f"[{self.key}]" if self.key is not None else ""
        return f"PropertyMatcher({self.field}{key}{self.op}{self.value!r})"

    def matches(self, alloc):
        props = alloc.properties
        if self.field in STRING_FIELDS:
            return _compare(self.op, getattr(props, STRING_FIELDS[self.field]), self.value)
        if self.field in LIST_FIELDS:
            values = getattr(props, LIST_FIELDS[self.field])
            return any(_compare(self.op, value, self.value) for value in values)
        mapping = getattr(props, MAP_FIELDS[self.field])
        if self.key not in mapping:
            return self.op == Op.EQUALS and self.value == ""
        return _compare(self.op, mapping[self.key], self.value)


def comparison(field, op, values, key=None):
    """Return the matcher for ``field op values``.

    Values of a positive operator are alternatives; a negated operator
    requires that none of the values match.
    """
    op = Op(op)
    positive = NEGATED_OPS.get(op, op)
    matchers = [PropertyMatcher(field, positive, value, key) for value in values]
    matcher = matchers[0] if len(matchers) == 1 else OrMatcher(matchers)
    if op in NEGATED_OPS:
        return NotMatcher(matcher)
    return matcher
