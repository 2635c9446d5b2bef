#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Log helpers for warnings repeated once per metric row."""
import logging
import threading
from collections import Counter

from costmodel.config import Config

_SEEN = Counter()
_SEEN_LOCK = threading.Lock()


def _should_emit(template, limit):
    with _SEEN_LOCK:
        _SEEN[template] += 1
        return _SEEN[template] <= limit


def deduped_log(logger, level, template, *args, limit=None):
    """Log a message at most `limit` times per template.

    The count is keyed on the unformatted template so that rows differing
    only in their arguments share one budget.
    """
    if limit is None:
        limit = Config.LOG_DEDUPE_LIMIT
    if _should_emit(template, limit):
        logger.log(level, template, *args)
        return True
    return False


def deduped_warning(logger, template, *args, limit=None):
    """Log a deduplicated warning."""
    return deduped_log(logger, logging.WARNING, template, *args, limit=limit)


def deduped_info(logger, template, *args, limit=None):
    """Log a deduplicated info message."""
    return deduped_log(logger, logging.INFO, template, *args, limit=limit)


def reset_deduped_logs():
    """Forget which templates were emitted."""
    with _SEEN_LOCK:
        _SEEN.clear()
