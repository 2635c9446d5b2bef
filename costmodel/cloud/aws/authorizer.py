#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Credentials used to reach AWS billing data."""
from dataclasses import dataclass

from costmodel.exceptions import ConfigurationError

AUTHORIZER_TYPE_KEY = "authorizerType"
ACCESS_KEY_TYPE = "AWSAccessKey"
SERVICE_ACCOUNT_TYPE = "AWSServiceAccount"
ASSUME_ROLE_TYPE = "AWSAssumeRole"

REDACTED = "REDACTED"


@dataclass
class AccessKey:
    """Static access key credentials."""

    id: str = ""
    secret: str = ""

    authorizer_type = ACCESS_KEY_TYPE

    def validate(self):
        if not self.id:
            raise ConfigurationError("AccessKey: missing ID")
        if not self.secret:
            raise ConfigurationError("AccessKey: missing Secret")

    def sanitize(self):
        return AccessKey(id=self.id, secret=REDACTED)

    def to_dict(self):
        return {AUTHORIZER_TYPE_KEY: self.authorizer_type, "id": self.id, "secret": self.secret}


@dataclass
class ServiceAccount:
    """Credentials from the environment the cost model runs in."""

    authorizer_type = SERVICE_ACCOUNT_TYPE

    def validate(self):
        pass

    def sanitize(self):
        return ServiceAccount()

    def to_dict(self):
        return {AUTHORIZER_TYPE_KEY: self.authorizer_type}


@dataclass
class AssumeRole:
    """A role assumed with the credentials of another authorizer."""

    authorizer: object = None
    role_arn: str = ""

    authorizer_type = ASSUME_ROLE_TYPE

    def validate(self):
        if self.authorizer is None:
            raise ConfigurationError("AssumeRole: missing base Authorizer")
        self.authorizer.validate()
        if not self.role_arn:
            raise ConfigurationError("AssumeRole: missing RoleARN configuration")

    def sanitize(self):
        base = self.authorizer.sanitize() if self.authorizer is not None else None
        return AssumeRole(authorizer=base, role_arn=self.role_arn)

    def to_dict(self):
        base = self.authorizer.to_dict() if self.authorizer is not None else None
        return {AUTHORIZER_TYPE_KEY: self.authorizer_type, "authorizer": base, "roleARN": self.role_arn}


def authorizer_from_dict(data):
    """Build an authorizer from its dict form, selected by ``authorizerType``.

    Raises ConfigurationError for a missing or unknown type.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"authorizer must be an object, found {type(data).__name__}")
    authorizer_type = data.get(AUTHORIZER_TYPE_KEY)
    if authorizer_type == ACCESS_KEY_TYPE:
        return AccessKey(id=data.get("id", ""), secret=data.get("secret", ""))
    if authorizer_type == SERVICE_ACCOUNT_TYPE:
        return ServiceAccount()
    if authorizer_type == ASSUME_ROLE_TYPE:
        base = data.get("authorizer")
        return AssumeRole(
            authorizer=authorizer_from_dict(base) if base is not None else None, role_arn=data.get("roleARN", "")
        )
    if authorizer_type is None:
        raise ConfigurationError("authorizer missing authorizerType")
    raise ConfigurationError(f"unknown authorizer type: {authorizer_type}")
