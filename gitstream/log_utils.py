# log_utils.py -- Logging utilities for gitstream
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

"""Logging utilities for gitstream.

gitstream is used as a library, so by default nothing is printed: a no-op
handler sits on the ``gitstream`` logger until an application either calls
:func:`remove_null_handler` and configures logging itself, or calls
:func:`default_logging_config`.

Two environment variables mirror C git:

* ``GIT_TRACE`` selects where :func:`default_logging_config` sends DEBUG
  output (``1``/``2``/``true`` for stderr, ``3``-``9`` for a file descriptor,
  or an absolute path to a file or directory).
* ``GIT_TRACE_PACKET`` turns on logging of every pkt-line sent or received,
  on the ``gitstream.protocol.packet`` logger.
"""

import logging
import os
import sys
from typing import Any, Optional, Union

getLogger = logging.getLogger


class _NullHandler(logging.Handler):
    """Handler that drops every record."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_GITSTREAM_LOGGER = getLogger("gitstream")
_GITSTREAM_LOGGER.addHandler(_NULL_HANDLER)

TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
STDERR_FD = 2


def _is_enabled(value: str) -> bool:
    return value.lower() not in ("", "0", "false")


def _should_trace() -> bool:
    return _is_enabled(os.environ.get("GIT_TRACE", ""))


def packet_trace_enabled() -> bool:
    """Whether GIT_TRACE_PACKET asks for every pkt-line to be logged."""
    return _is_enabled(os.environ.get("GIT_TRACE_PACKET", ""))


def _get_trace_target() -> Optional[Union[str, int]]:
    """Work out where GIT_TRACE output should go.

    Returns: STDERR_FD for ``1``, ``2`` or ``true``; a file descriptor for
      ``3`` to ``9``; the value itself when it is an absolute path; None
      when tracing is off or the value is not understood.
    """
    value = os.environ.get("GIT_TRACE", "")
    if not _is_enabled(value):
        return None
    if value.lower() in ("1", "2", "true"):
        return STDERR_FD
    if value.isdigit() and 3 <= int(value) <= 9:
        return int(value)
    if os.path.isabs(value):
        return value
    return None


def _configure_logging_from_trace() -> bool:
    """Send DEBUG output to the GIT_TRACE target.

    Returns: False if tracing is off or the target could not be opened
    """
    target = _get_trace_target()
    if target is None:
        return False
    options: dict[str, Any] = {"level": logging.DEBUG, "format": TRACE_FORMAT}
    try:
        if target == STDERR_FD:
            options["stream"] = sys.stderr
        elif isinstance(target, int):
            options["stream"] = os.fdopen(target, "w", buffering=1)
        else:
            if os.path.isdir(target):
                target = os.path.join(target, f"trace.{os.getpid()}")
            options["filename"] = target
            options["filemode"] = "a"
        logging.basicConfig(**options)
    except OSError as e:
        sys.stderr.write(f"Warning: cannot write GIT_TRACE output to {target}: {e}\n")
        return False
    return True


def default_logging_config() -> None:
    """Log INFO and above to stderr, or DEBUG to the GIT_TRACE target."""
    remove_null_handler()
    if not _configure_logging_from_trace():
        logging.basicConfig(level=logging.INFO, stream=sys.stderr, format=DEFAULT_FORMAT)


def remove_null_handler() -> None:
    """Detach the no-op handler, for applications configuring logging themselves."""
    _GITSTREAM_LOGGER.removeHandler(_NULL_HANDLER)
