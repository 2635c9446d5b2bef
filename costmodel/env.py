#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Obtain the cost model environment.

Settings are read from the process environment. Development setups may also
keep them in a dotenv file, loaded when COSTMODEL_READ_DOT_ENV_FILE is set.
Variables already in the environment take precedence over the file.
"""
import logging
import os

import environ

LOG = logging.getLogger(__name__)

ROOT_DIR = environ.Path(__file__) - 2

ENVIRONMENT = environ.Env()

DEFAULT_ENV_FILE = str(ROOT_DIR.path(".env"))


def load_env_file(env_file=None):
    """Load a dotenv file into the environment.

    The file defaults to COSTMODEL_ENV_FILE, then to .env at the project root.
    Returns True when a file was read.
    """
    env_file = env_file or ENVIRONMENT.get_value("COSTMODEL_ENV_FILE", default=DEFAULT_ENV_FILE)
    if not os.path.isfile(env_file):
        LOG.warning("environment file %s not found", env_file)
        return False
    ENVIRONMENT.read_env(env_file)
    LOG.info("loaded environment file %s", env_file)
    return True


if ENVIRONMENT.bool("COSTMODEL_READ_DOT_ENV_FILE", default=False):
    load_env_file()
