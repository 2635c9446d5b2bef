#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Athena billing integration configuration."""
import logging
from dataclasses import dataclass

from costmodel.cloud.aws.authorizer import AccessKey
from costmodel.cloud.aws.authorizer import AssumeRole
from costmodel.cloud.aws.authorizer import authorizer_from_dict
from costmodel.cloud.aws.authorizer import ServiceAccount
from costmodel.exceptions import ConfigurationError
from costmodel.util.providerid import CloudProvider

LOG = logging.getLogger(__name__)

CUR_VERSION_1 = "1.0"
CUR_VERSION_2 = "2.0"
CUR_VERSIONS = (CUR_VERSION_1, CUR_VERSION_2)


def _required_string(data, key):
    value = data.get(key)
    if not isinstance(value, str):
        raise ConfigurationError(f"AthenaConfiguration: from_dict: missing or invalid {key}")
    return value


@dataclass
class AthenaConfiguration:
    """Location of a Cost and Usage Report table queried through Athena."""

    bucket: str = ""
    region: str = ""
    database: str = ""
    catalog: str = ""
    table: str = ""
    workgroup: str = ""
    account: str = ""
    authorizer: object = None
    cur_version: str = CUR_VERSION_2

    def validate(self):
        """Raise ConfigurationError naming the first missing or invalid field."""
        if self.authorizer is None:
            raise ConfigurationError("AthenaConfiguration: missing Authorizer")
        try:
            self.authorizer.validate()
        except ConfigurationError as err:
            raise ConfigurationError(f"AthenaConfiguration: {err}") from err

        for name in ("bucket", "region", "database", "table", "account"):
            if not getattr(self, name):
                raise ConfigurationError(f"AthenaConfiguration: missing {name}")

        if self.cur_version and self.cur_version not in CUR_VERSIONS:
            raise ConfigurationError(
                f"AthenaConfiguration: invalid CURVersion '{self.cur_version}', must be '1.0' or '2.0'"
            )

    def equals(self, other):
        if not isinstance(other, AthenaConfiguration):
            return False
        return self == other

    def sanitize(self):
        """Return a copy with secrets redacted."""
        authorizer = self.authorizer.sanitize() if self.authorizer is not None else None
        return AthenaConfiguration(
            bucket=self.bucket,
            region=self.region,
            database=self.database,
            catalog=self.catalog,
            table=self.table,
            workgroup=self.workgroup,
            account=self.account,
            authorizer=authorizer,
            cur_version=self.cur_version,
        )

    def key(self):
        return f"{self.account}/{self.bucket}"

    def provider(self):
        return str(CloudProvider.AWS)

    @classmethod
    def from_dict(cls, data):
        """Build a configuration from its JSON form.

        ``catalog`` and ``curVersion`` are optional; every other field is
        required. Raises ConfigurationError for a malformed document.
        """
        if "authorizer" not in data:
            raise ConfigurationError("AthenaConfiguration: from_dict: missing authorizer")
        config = cls(
            bucket=_required_string(data, "bucket"),
            region=_required_string(data, "region"),
            database=_required_string(data, "database"),
            table=_required_string(data, "table"),
            workgroup=_required_string(data, "workgroup"),
            account=_required_string(data, "account"),
            authorizer=authorizer_from_dict(data["authorizer"]),
        )
        if "catalog" in data:
            config.catalog = _required_string(data, "catalog")
        if "curVersion" in data:
            config.cur_version = _required_string(data, "curVersion")
        return config

    def to_dict(self):
        return {
            "bucket": self.bucket,
            "region": self.region,
            "database": self.database,
            "catalog": self.catalog,
            "table": self.table,
            "workgroup": self.workgroup,
            "account": self.account,
            "authorizer": self.authorizer.to_dict() if self.authorizer is not None else None,
            "curVersion": self.cur_version,
        }


@dataclass
class S3Configuration:
    """Location of Cost and Usage Report files read directly from S3."""

    bucket: str = ""
    region: str = ""
    account: str = ""
    authorizer: object = None

    def validate(self):
        if self.authorizer is None:
            raise ConfigurationError("S3Configuration: missing Authorizer")
        try:
            self.authorizer.validate()
        except ConfigurationError as err:
            raise ConfigurationError(f"S3Configuration: {err}") from err
        for name in ("bucket", "region", "account"):
            if not getattr(self, name):
                raise ConfigurationError(f"S3Configuration: missing {name}")

    def key(self):
        return f"{self.account}/{self.bucket}"

    def provider(self):
        return str(CloudProvider.AWS)


def convert_athena_info_to_config(info):
    """Convert a legacy flat AWS billing config into an integration configuration.

    Returns None for an empty config, an AthenaConfiguration when a table or
    database is named, and an S3Configuration otherwise.
    """
    if not any(value for value in info.values()):
        return None

    key_name = info.get("serviceKeyName", "")
    key_secret = info.get("serviceKeySecret", "")
    if not key_name and not key_secret:
        authorizer = ServiceAccount()
    else:
        authorizer = AccessKey(id=key_name, secret=key_secret)

    master_payer_arn = info.get("masterPayerARN", "")
    if master_payer_arn:
        authorizer = AssumeRole(authorizer=authorizer, role_arn=master_payer_arn)

    if info.get("athenaTable") or info.get("athenaDatabase"):
        return AthenaConfiguration(
            bucket=info.get("athenaBucketName", ""),
            region=info.get("athenaRegion", ""),
            catalog=info.get("athenaCatalog", ""),
            database=info.get("athenaDatabase", ""),
            table=info.get("athenaTable", ""),
            workgroup=info.get("athenaWorkgroup", ""),
            account=info.get("accountId", ""),
            authorizer=authorizer,
            cur_version=info.get("curVersion") or CUR_VERSION_2,
        )

    LOG.debug("legacy AWS config names no Athena table, using S3 configuration")
    return S3Configuration(
        bucket=info.get("athenaBucketName", ""),
        region=info.get("athenaRegion", ""),
        account=info.get("accountId", ""),
        authorizer=authorizer,
    )
