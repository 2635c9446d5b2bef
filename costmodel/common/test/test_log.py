#
# Copyright 2021 Red Hat Inc.
# SPDX-License-Identifier: Apache-2.0
#
"""Test the logging helpers."""
import logging
from datetime import timedelta
from uuid import uuid4

from costmodel.allocation.window import Window
from costmodel.common import log_json
from costmodel.common.log import deduped_info
from costmodel.common.log import deduped_warning
from costmodel.common.log import reset_deduped_logs
from costmodel.test import CostModelTestCase
from costmodel.test import START

LOG = logging.getLogger(__name__)


class LogJsonTest(CostModelTestCase):
    """Test cases for log_json."""

    def test_log_json(self):
        """Test that keyword context is merged and UUIDs stringified."""
        uuid = uuid4()

        stmt = log_json("trace-1", msg="computed", context={"window": "1h"}, schema=uuid)

        self.assertEqual(stmt, {"message": "computed", "tracing_id": "trace-1", "window": "1h", "schema": str(uuid)})

    def test_log_json_renders_values(self):
        """Test that windows, times, durations and errors render as JSON values."""
        window = Window(START, START + timedelta(hours=1))

        stmt = log_json(
            msg="computing",
            window=window,
            start=START,
            step=timedelta(hours=1),
            error=ValueError("bad"),
            props=["namespace", window],
        )

        self.assertEqual(stmt["window"], str(window))
        self.assertEqual(stmt["start"], "2024-09-01T00:00:00+00:00")
        self.assertEqual(stmt["step"], "1h")
        self.assertEqual(stmt["error"], "bad")
        self.assertEqual(stmt["props"], ["namespace", str(window)])
        self.assertNotIn("tracing_id", stmt)


class DedupedLogTest(CostModelTestCase):
    """Test cases for deduplicated logging."""

    def test_limit(self):
        """Test that a template is only logged up to its limit."""
        with self.assertLogs(LOG, level="WARNING") as logger:
            emitted = [deduped_warning(LOG, "missing price for node %s", node, limit=2) for node in "abc"]

        self.assertEqual(emitted, [True, True, False])
        self.assertEqual(len(logger.output), 2)
        self.assertIn("missing price for node a", logger.output[0])

    def test_reset(self):
        """Test that resetting restores the budget of every template."""
        deduped_info(LOG, "template", limit=1)
        self.assertFalse(deduped_info(LOG, "template", limit=1))

        reset_deduped_logs()

        self.assertTrue(deduped_info(LOG, "template", limit=1))

    def test_templates_counted_separately(self):
        """Test that each template has its own budget."""
        self.assertTrue(deduped_info(LOG, "first", limit=1))
        self.assertTrue(deduped_info(LOG, "second", limit=1))
