# test_log_utils.py -- Tests for gitstream.log_utils
# Copyright (C) 2026 The gitstream developers
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitstream is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Tests for gitstream.log_utils."""

import logging
import os
import tempfile
from io import BytesIO

from gitstream.log_utils import (
    _GITSTREAM_LOGGER,
    _NULL_HANDLER,
    _get_trace_target,
    _NullHandler,
    _should_trace,
    default_logging_config,
    getLogger,
    packet_trace_enabled,
    remove_null_handler,
)
from gitstream.protocol import Protocol, pkt_line

from . import TestCase


class LogUtilsTests(TestCase):
    """Tests for log_utils."""

    def setUp(self) -> None:
        super().setUp()
        original_handlers = list(_GITSTREAM_LOGGER.handlers)

        def restore() -> None:
            _GITSTREAM_LOGGER.handlers = original_handlers

        self.addCleanup(restore)
        self.overrideEnv("GIT_TRACE", None)
        self.overrideEnv("GIT_TRACE_PACKET", None)

    def reset_root_logger(self) -> logging.Logger:
        root_logger = logging.getLogger()
        original_level = root_logger.level
        original_handlers = list(root_logger.handlers)

        def cleanup() -> None:
            for handler in root_logger.handlers:
                if handler not in original_handlers:
                    handler.close()
            root_logger.handlers = original_handlers
            root_logger.level = original_level

        self.addCleanup(cleanup)
        root_logger.handlers = []
        root_logger.level = logging.WARNING
        return root_logger

    def test_null_handler(self) -> None:
        handler = _NullHandler()
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="test_log_utils.py",
            lineno=1,
            msg="Test message",
            args=(),
            exc_info=None,
        )
        handler.emit(record)

    def test_null_handler_installed(self) -> None:
        self.assertIn(_NULL_HANDLER, _GITSTREAM_LOGGER.handlers)

    def test_get_logger(self) -> None:
        logger = getLogger("gitstream.test")
        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logger.name, "gitstream.test")

    def test_remove_null_handler(self) -> None:
        remove_null_handler()
        self.assertNotIn(_NULL_HANDLER, _GITSTREAM_LOGGER.handlers)

    def test_default_logging_config(self) -> None:
        root_logger = self.reset_root_logger()
        default_logging_config()
        self.assertNotIn(_NULL_HANDLER, _GITSTREAM_LOGGER.handlers)
        self.assertTrue(root_logger.handlers)
        self.assertEqual(logging.INFO, root_logger.level)

    def test_default_logging_config_with_trace(self) -> None:
        root_logger = self.reset_root_logger()
        self.overrideEnv("GIT_TRACE", "1")
        default_logging_config()
        self.assertTrue(root_logger.handlers)
        self.assertEqual(logging.DEBUG, root_logger.level)

    def test_default_logging_config_with_trace_directory(self) -> None:
        root_logger = self.reset_root_logger()
        with tempfile.TemporaryDirectory() as tmpdir:
            self.overrideEnv("GIT_TRACE", tmpdir)
            default_logging_config()
            getLogger("gitstream.test").debug("traced")
            for handler in root_logger.handlers:
                handler.flush()
            [name] = os.listdir(tmpdir)
            self.assertEqual(f"trace.{os.getpid()}", name)
            with open(os.path.join(tmpdir, name)) as f:
                self.assertIn("gitstream.test DEBUG: traced", f.read())
            for handler in root_logger.handlers:
                handler.close()

    def test_should_trace(self) -> None:
        self.assertFalse(_should_trace())
        for value in ["", "0", "false", "FALSE"]:
            self.overrideEnv("GIT_TRACE", value)
            self.assertFalse(_should_trace())
        for value in ["1", "/tmp/trace.log"]:
            self.overrideEnv("GIT_TRACE", value)
            self.assertTrue(_should_trace())

    def test_get_trace_target_disabled(self) -> None:
        self.assertIsNone(_get_trace_target())
        for value in ["", "0", "false"]:
            self.overrideEnv("GIT_TRACE", value)
            self.assertIsNone(_get_trace_target())

    def test_get_trace_target_stderr(self) -> None:
        for value in ["1", "2", "true", "TRUE"]:
            self.overrideEnv("GIT_TRACE", value)
            self.assertEqual(2, _get_trace_target())

    def test_get_trace_target_file_descriptor(self) -> None:
        for fd in range(3, 10):
            self.overrideEnv("GIT_TRACE", str(fd))
            self.assertEqual(fd, _get_trace_target())
        self.overrideEnv("GIT_TRACE", "10")
        self.assertIsNone(_get_trace_target())

    def test_get_trace_target_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            self.overrideEnv("GIT_TRACE", tmpdir)
            self.assertEqual(tmpdir, _get_trace_target())
            trace_file = os.path.join(tmpdir, "trace.log")
            self.overrideEnv("GIT_TRACE", trace_file)
            self.assertEqual(trace_file, _get_trace_target())

    def test_get_trace_target_relative_path(self) -> None:
        self.overrideEnv("GIT_TRACE", "relative/path")
        self.assertIsNone(_get_trace_target())


class PacketTraceTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.overrideEnv("GIT_TRACE_PACKET", None)

    def test_packet_trace_enabled(self) -> None:
        self.assertFalse(packet_trace_enabled())
        self.overrideEnv("GIT_TRACE_PACKET", "1")
        self.assertTrue(packet_trace_enabled())
        self.overrideEnv("GIT_TRACE_PACKET", "false")
        self.assertFalse(packet_trace_enabled())

    def test_packets_are_logged(self) -> None:
        self.overrideEnv("GIT_TRACE_PACKET", "1")
        rin = BytesIO(pkt_line(b"version 2\n"))
        rout = BytesIO()
        proto = Protocol(rin.read, rout.write)
        with self.assertLogs("gitstream.protocol.packet", level="DEBUG") as cm:
            proto.read_pkt_line()
            proto.write_pkt_line(b"command=ls-refs\n")
        self.assertEqual(2, len(cm.output))
        self.assertIn("version 2", cm.output[0])
        self.assertIn("command=ls-refs", cm.output[1])

    def test_packets_not_logged_by_default(self) -> None:
        rin = BytesIO(pkt_line(b"version 2\n"))
        proto = Protocol(rin.read, BytesIO().write)
        logger = logging.getLogger("gitstream.protocol.packet")
        with self.assertRaises(AssertionError):
            with self.assertLogs(logger, level="DEBUG"):
                proto.read_pkt_line()
