#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Parser for allocation filter expressions.

A filter compares allocation properties against quoted values::

    namespace:"kube-system","monitoring" + label[app]!:"nginx"
    (cluster:"c1" | node<~:"gpu-") + services~:"api"

Comma separated values are alternatives, ``+`` binds tighter than ``|`` and
parentheses group. The grammar::

    filter     := or_expr EOF
    or_expr    := and_expr ('|' and_expr)*
    and_expr   := unary ('+' unary)*
    unary      := '(' or_expr ')' | comparison
    comparison := field ['[' key ']'] op string (',' string)*
"""
import logging
import re
from typing import NamedTuple

from costmodel.exceptions import FilterParseError
from costmodel.filter.matcher import AllMatcher
from costmodel.filter.matcher import AndMatcher
from costmodel.filter.matcher import comparison
from costmodel.filter.matcher import LIST_FIELDS
from costmodel.filter.matcher import MAP_FIELDS
from costmodel.filter.matcher import Op
from costmodel.filter.matcher import OrMatcher
from costmodel.filter.matcher import STRING_FIELDS

LOG = logging.getLogger(__name__)

OPERATOR = "operator"
STRING = "string"
KEY = "key"
IDENTIFIER = "identifier"
COMMA = "comma"
PLUS = "plus"
OR = "or"
OPEN = "open"
CLOSE = "close"
EOF = "eof"

# longest operators first so that "!~:" is not read as "!" then "~:"
_OPERATORS = sorted((op.value for op in Op), key=len, reverse=True)

TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
    |(?P<operator>{ops})
    |"(?P<string>[^"]*)"
    |\[(?P<key>[^\]]*)\]
    |(?P<identifier>[\w-]+)
    |(?P<comma>,)
    |(?P<plus>\+)
    |(?P<or>\|)
    |(?P<open>\()
    |(?P<close>\))
    """.format(ops="|".join(re.escape(op) for op in _OPERATORS)),
    re.VERBOSE,
)


class Token(NamedTuple):
    kind: str
    text: str
    position: int


def tokenize(text):
    """Split a filter expression into tokens.

    Raises FilterParseError on an unexpected character or an unterminated
    string or key.
    """
    tokens = []
    position = 0
    while position < len(text):
        match = TOKEN_RE.match(text, position)
        if match is None:
            char = text[position]
            if char == '"':
                raise FilterParseError(f"unterminated string starting at {position}")
            if char == "[":
                raise FilterParseError(f"unterminated access starting at {position}")
            raise FilterParseError(f"unexpected character {char!r} at position {position}")
        kind = match.lastgroup
        if kind != "space":
            tokens.append(Token(kind, match.group(kind), position))
        position = match.end()
    tokens.append(Token(EOF, "", position))
    return tokens


class Parser:
    """Recursive descent parser producing allocation matchers."""

    def __init__(self, text):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def peek(self):
        return self.tokens[self.index]

    def advance(self):
        token = self.tokens[self.index]
        if token.kind != EOF:
            self.index += 1
        return token

    def expect(self, kind, what):
        token = self.advance()
        if token.kind != kind:
            found = token.text or token.kind
            raise FilterParseError(f"expected {what} at position {token.position}, found {found!r}")
        return token

    def parse(self):
        if self.peek().kind == EOF:
            return AllMatcher()
        matcher = self.or_expr()
        self.expect(EOF, "end of filter")
        return matcher

    def or_expr(self):
        matchers = [self.and_expr()]
        while self.peek().kind == OR:
            self.advance()
            matchers.append(self.and_expr())
        return matchers[0] if len(matchers) == 1 else OrMatcher(matchers)

    def and_expr(self):
        matchers = [self.unary()]
        while self.peek().kind == PLUS:
            self.advance()
            matchers.append(self.unary())
        return matchers[0] if len(matchers) == 1 else AndMatcher(matchers)

    def unary(self):
        if self.peek().kind == OPEN:
            self.advance()
            matcher = self.or_expr()
            self.expect(CLOSE, "')'")
            return matcher
        return self.comparison()

    def comparison(self):
        field = self.expect(IDENTIFIER, "filter field")
        key = None
        if field.text in MAP_FIELDS:
            key = self.expect(KEY, f"[key] after {field.text}").text
        elif field.text not in STRING_FIELDS and field.text not in LIST_FIELDS:
            raise FilterParseError(f"unknown filter field {field.text!r} at position {field.position}")

        op = self.expect(OPERATOR, "operator")
        values = [self.expect(STRING, "quoted value").text]
        while self.peek().kind == COMMA:
            self.advance()
            values.append(self.expect(STRING, "quoted value").text)
        return comparison(field.text, op.text, values, key)


def parse_filter(text):
    """Return a matcher for a filter expression; empty text matches everything.

    Raises FilterParseError when the expression is malformed.
    """
    text = text or ""
    matcher = Parser(text).parse()
    LOG.debug("parsed filter %r into %r", text, matcher)
    return matcher
