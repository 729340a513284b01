# protocol.py -- Shared pkt-line and capability handling for the smart protocols
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

"""Generic functions for talking the git smart server protocol.

Everything on the wire is framed as pkt-lines: four lowercase hex digits
giving the total length (including the four length bytes) followed by the
payload. Lengths ``0000``, ``0001`` and ``0002`` are the flush, delimiter
and response-end control packets.
"""

import logging
from collections.abc import Callable, Iterable, Iterator
from io import BytesIO
from typing import NamedTuple, Optional, Union

from .errors import (
    HangupException,
    ProtocolError,
    RemoteError,
    TransportError,
    UnsupportedServer,
)
from .log_utils import packet_trace_enabled
from .objects import ZERO_SHA

__all__ = [
    "DELIM",
    "FLUSH",
    "RESPONSE_END",
    "ZERO_SHA",
    "Capabilities",
    "Data",
    "ErrorLine",
    "PktLineParser",
    "Protocol",
    "SidebandReader",
    "encode_frame",
    "iter_frames",
    "pkt_line",
    "read_frame",
]

logger = logging.getLogger(__name__)
packet_logger = logging.getLogger(__name__ + ".packet")

# A pkt-line may be at most 65520 bytes long, including its length prefix.
MAX_PKT_LINE = 65520
MAX_PKT_PAYLOAD = MAX_PKT_LINE - 4
# One byte of each sideband packet is taken by the channel number.
MAX_SIDEBAND_PAYLOAD = MAX_PKT_PAYLOAD - 1

FLUSH_PKT = b"0000"
DELIM_PKT = b"0001"
RESPONSE_END_PKT = b"0002"

SIDE_BAND_CHANNEL_DATA = 1
SIDE_BAND_CHANNEL_PROGRESS = 2
SIDE_BAND_CHANNEL_FATAL = 3

CAPABILITY_AGENT = b"agent"
CAPABILITY_DELETE_REFS = b"delete-refs"
CAPABILITY_FETCH = b"fetch"
CAPABILITY_LS_REFS = b"ls-refs"
CAPABILITY_NO_PROGRESS = b"no-progress"
CAPABILITY_OBJECT_FORMAT = b"object-format"
CAPABILITY_OFS_DELTA = b"ofs-delta"
CAPABILITY_QUIET = b"quiet"
CAPABILITY_REPORT_STATUS = b"report-status"
CAPABILITY_SHALLOW = b"shallow"
CAPABILITY_SIDE_BAND_64K = b"side-band-64k"
CAPABILITY_SYMREF = b"symref"
CAPABILITY_THIN_PACK = b"thin-pack"

COMMAND_DEEPEN = b"deepen"
COMMAND_DONE = b"done"
COMMAND_FETCH = b"fetch"
COMMAND_LS_REFS = b"ls-refs"
COMMAND_SHALLOW = b"shallow"
COMMAND_UNSHALLOW = b"unshallow"
COMMAND_WANT = b"want"

CAPABILITIES_REF = b"capabilities^{}"

Progress = Callable[[bytes], None]


class Data(NamedTuple):
    """A pkt-line carrying a payload."""

    payload: bytes


class ErrorLine(NamedTuple):
    """A pkt-line whose payload starts with ``ERR ``."""

    message: bytes

    @property
    def text(self) -> str:
        """The error message, decoded and without trailing newline."""
        return self.message.rstrip(b"\n").decode("utf-8", "replace")


class _ControlPacket:
    """One of the payload-less control packets."""

    __slots__ = ("encoded", "name")

    def __init__(self, name: str, encoded: bytes) -> None:
        self.name = name
        self.encoded = encoded

    def __repr__(self) -> str:
        return self.name


FLUSH = _ControlPacket("FLUSH", FLUSH_PKT)
DELIM = _ControlPacket("DELIM", DELIM_PKT)
RESPONSE_END = _ControlPacket("RESPONSE_END", RESPONSE_END_PKT)

_CONTROL_PACKETS = {0: FLUSH, 1: DELIM, 2: RESPONSE_END}

Frame = Union[Data, ErrorLine, _ControlPacket]

# Lengths are written in lowercase hex only, so every accepted frame
# re-encodes to the same bytes.
_HEXDIGITS = frozenset(b"0123456789abcdef")


def pkt_line(data: Optional[bytes]) -> bytes:
    """Wrap data in a pkt-line.

    Args:
      data: The data to wrap, or None to create a flush packet
    Returns: The data prefixed with its length in pkt-line format
    Raises:
      ValueError: if data does not fit in a single pkt-line
    """
    if data is None:
        return FLUSH_PKT
    if len(data) > MAX_PKT_PAYLOAD:
        raise ValueError(
            f"pkt-line payload of {len(data)} bytes exceeds {MAX_PKT_PAYLOAD}"
        )
    return f"{len(data) + 4:04x}".encode("ascii") + data


def pkt_seq(*seq: Optional[bytes]) -> bytes:
    """Wrap a sequence of data in pkt-lines, terminated by a flush."""
    return b"".join([pkt_line(s) for s in seq]) + pkt_line(None)


def encode_frame(frame: Frame) -> bytes:
    """Encode a decoded frame back into its wire form."""
    if isinstance(frame, _ControlPacket):
        return frame.encoded
    if isinstance(frame, ErrorLine):
        return pkt_line(b"ERR " + frame.message)
    return pkt_line(frame.payload)


def _read_exactly(read: Callable[[int], bytes], size: int) -> bytes:
    """Read size bytes, returning fewer only if the stream ends."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def parse_pkt_length(sizestr: bytes) -> int:
    """Parse the four byte length prefix of a pkt-line.

    Raises:
      ProtocolError: if the prefix is not a valid pkt-line length
    """
    if len(sizestr) != 4 or not _HEXDIGITS.issuperset(sizestr):
        raise ProtocolError(f"invalid pkt-line length {sizestr!r}")
    size = int(sizestr, 16)
    if size == 3 or size > MAX_PKT_LINE:
        raise ProtocolError(f"invalid pkt-line length {sizestr!r}")
    return size


def read_frame(read: Callable[[int], bytes]) -> Optional[Frame]:
    """Read a single frame from a stream.

    Args:
      read: Read function of the underlying stream
    Returns: The decoded frame, or None if the stream ended cleanly
      before the frame started
    Raises:
      ProtocolError: on a malformed length or a truncated frame
    """
    sizestr = _read_exactly(read, 4)
    if not sizestr:
        return None
    if len(sizestr) < 4:
        raise ProtocolError(f"truncated pkt-line length {sizestr!r}")
    size = parse_pkt_length(sizestr)
    if size in _CONTROL_PACKETS:
        return _CONTROL_PACKETS[size]
    payload = _read_exactly(read, size - 4)
    if len(payload) != size - 4:
        raise ProtocolError(
            f"pkt-line declared {size - 4} bytes of payload but only "
            f"{len(payload)} were available"
        )
    if payload.startswith(b"ERR "):
        return ErrorLine(payload[4:])
    return Data(payload)


def iter_frames(read: Callable[[int], bytes]) -> Iterator[Frame]:
    """Lazily decode frames until the stream ends.

    Args:
      read: Read function of the underlying stream
    """
    while True:
        frame = read_frame(read)
        if frame is None:
            return
        yield frame


def parse_capability(capability: bytes) -> tuple[bytes, Optional[bytes]]:
    """Split a capability into its name and optional value."""
    parts = capability.split(b"=", 1)
    if len(parts) == 1:
        return (parts[0], None)
    return (parts[0], parts[1])


def extract_capabilities(text: bytes) -> tuple[bytes, list[bytes]]:
    """Extract a capabilities list from a string, if present.

    Args:
      text: String to extract from
    Returns: Tuple with text with capabilities removed and list of capabilities
    """
    if b"\0" not in text:
        return text, []
    text, capabilities = text.rstrip().split(b"\0")
    return (text, capabilities.strip().split(b" "))


def agent_string() -> bytes:
    """Return the agent string this client announces."""
    from . import __version__

    return ("gitstream/" + ".".join(map(str, __version__))).encode("ascii")


class Capabilities:
    """The set of capabilities advertised by a server for one session.

    Capabilities are parsed once, when the advertisement is read, and the
    resulting value is passed to whatever needs to make decisions based on
    them.
    """

    def __init__(self, entries: Iterable[bytes] = ()) -> None:
        """Initialize a Capabilities set.

        Args:
          entries: Raw capability strings, e.g. ``b"agent=git/2.40"``
        """
        self._entries = [entry for entry in entries if entry]
        self._values: dict[bytes, Optional[bytes]] = {}
        for entry in self._entries:
            name, value = parse_capability(entry)
            self._values.setdefault(name, value)

    @classmethod
    def from_v1(cls, text: bytes) -> "Capabilities":
        """Parse the space separated list that follows the NUL in v0/v1."""
        return cls(text.strip().split(b" "))

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Capabilities) and set(self._entries) == set(
            other._entries
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._entries!r})"

    def get(self, name: bytes, default: Optional[bytes] = None) -> Optional[bytes]:
        """Return the value of a ``name=value`` capability."""
        value = self._values.get(name)
        if value is None:
            return default
        return value

    def features(self, name: bytes) -> frozenset[bytes]:
        """Return the space separated sub-features of a v2 capability.

        For example ``fetch=shallow filter`` has features ``shallow`` and
        ``filter``.
        """
        value = self._values.get(name)
        if not value:
            return frozenset()
        return frozenset(value.split(b" "))

    def require(self, *names: bytes) -> None:
        """Check that all of names are present.

        Raises:
          UnsupportedServer: naming the first missing capability
        """
        for name in names:
            if name not in self._values:
                raise UnsupportedServer(name)

    def require_feature(self, name: bytes, feature: bytes) -> None:
        """Check that capability name advertises feature."""
        self.require(name)
        if feature not in self.features(name):
            raise UnsupportedServer(name + b"=" + feature)

    @property
    def agent(self) -> Optional[bytes]:
        """The agent the server announced, if any."""
        return self.get(CAPABILITY_AGENT)

    def symrefs(self) -> dict[bytes, bytes]:
        """Return the ``symref=src:dst`` pairs of a v1 advertisement."""
        symrefs = {}
        for entry in self._entries:
            name, value = parse_capability(entry)
            if name == CAPABILITY_SYMREF and value is not None:
                src, dst = value.split(b":", 1)
                symrefs[src] = dst
        return symrefs


def format_capabilities(capabilities: Iterable[bytes]) -> bytes:
    """Format capabilities the way they are sent after a NUL byte."""
    return b" ".join(sorted(capabilities))


class Protocol:
    """Class for interacting with a remote git process over the wire.

    Parts of the git wire protocol use 'pkt-lines' to communicate. A pkt-line
    consists of the length of the line as a 4-byte hex string, followed by the
    payload data. The length includes the 4-byte header. The special line
    '0000' indicates the end of a section of input and is called a 'flush-pkt'.

    Errors raised by the underlying stream are reported as TransportError.
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        write: Callable[[bytes], object],
        close: Optional[Callable[[], None]] = None,
        report_activity: Optional[Callable[[int, str], None]] = None,
    ) -> None:
        """Initialize Protocol.

        Args:
          read: Function to read bytes from the transport
          write: Function to write bytes to the transport
          close: Optional function to close the transport
          report_activity: Optional function to report activity
        """
        self.read = read
        self.write = write
        self._close = close
        self.report_activity = report_activity
        self._readahead: list[Frame] = []
        self._trace = packet_trace_enabled()
        self.stderr_lines: Optional[Callable[[], list[bytes]]] = None

    def close(self) -> None:
        """Close the underlying transport if a close function was provided."""
        if self._close:
            self._close()
            self._close = None

    def __enter__(self) -> "Protocol":
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Exit context manager and close transport."""
        self.close()

    def _raw_read(self, size: int) -> bytes:
        try:
            return self.read(size)
        except OSError as e:
            raise TransportError(str(e)) from e

    def _hangup(self) -> HangupException:
        if self.stderr_lines is not None:
            return HangupException(self.stderr_lines())
        return HangupException()

    def read_frame(self) -> Frame:
        """Read the next frame from the remote.

        Raises:
          HangupException: if the remote closed the stream
          ProtocolError: if the stream is malformed
        """
        if self._readahead:
            return self._readahead.pop()
        frame = read_frame(self._raw_read)
        if frame is None:
            raise self._hangup()
        if self.report_activity:
            self.report_activity(len(encode_frame(frame)), "read")
        if self._trace:
            packet_logger.debug("< %r", frame)
        return frame

    def unread_frame(self, frame: Frame) -> None:
        """Push a frame back so the next read_frame returns it."""
        self._readahead.append(frame)

    def read_pkt_line(self) -> Optional[bytes]:
        """Read a pkt-line from the remote git process.

        Returns: The payload of the next pkt-line, or None for a flush,
          delimiter or response-end packet
        Raises:
          RemoteError: if the remote sent an ``ERR`` line
        """
        frame = self.read_frame()
        if isinstance(frame, Data):
            return frame.payload
        if isinstance(frame, ErrorLine):
            raise RemoteError(frame.text)
        return None

    def unread_pkt_line(self, data: Optional[bytes]) -> None:
        """Unread a single line of data into the readahead buffer.

        Args:
          data: The data to unread, without the length prefix, or None for
            a flush packet
        """
        self.unread_frame(FLUSH if data is None else Data(data))

    def read_pkt_seq(self) -> Iterator[bytes]:
        """Read a sequence of pkt-lines from the remote git process.

        Returns: Yields each line of data up to but not including the next
          control packet
        """
        pkt = self.read_pkt_line()
        while pkt is not None:
            yield pkt
            pkt = self.read_pkt_line()

    def eof(self) -> bool:
        """Test whether the remote has closed the stream."""
        if self._readahead:
            return False
        frame = read_frame(self._raw_read)
        if frame is None:
            return True
        self._readahead.append(frame)
        return False

    def _raw_write(self, data: bytes) -> None:
        try:
            self.write(data)
        except OSError as e:
            raise TransportError(str(e)) from e
        if self.report_activity:
            self.report_activity(len(data), "write")

    def write_pkt_line(self, line: Optional[bytes]) -> None:
        """Send a pkt-line to the remote git process.

        Args:
          line: A string containing the data to send, without the length
            prefix, or None for a flush packet
        """
        if self._trace:
            packet_logger.debug("> %r", FLUSH if line is None else line)
        self._raw_write(pkt_line(line))

    def write_flush(self) -> None:
        """Send a flush packet."""
        self.write_pkt_line(None)

    def write_delim(self) -> None:
        """Send a delimiter packet."""
        if self._trace:
            packet_logger.debug("> %r", DELIM)
        self._raw_write(DELIM_PKT)

    def send_cmd(
        self, command: bytes, capabilities: Iterable[bytes], args: Iterable[bytes]
    ) -> None:
        """Send a protocol v2 command request.

        Args:
          command: Name of the command, e.g. ``ls-refs``
          capabilities: Capability lines, such as ``agent=...``
          args: Command arguments, each sent as its own pkt-line
        """
        self.write_pkt_line(b"command=" + command + b"\n")
        for capability in capabilities:
            self.write_pkt_line(capability + b"\n")
        self.write_delim()
        for arg in args:
            self.write_pkt_line(arg + b"\n")
        self.write_flush()

    def write_data(self, data: bytes) -> None:
        """Write unframed data, such as a pack, to the remote."""
        self._raw_write(data)

    def write_sideband(self, channel: int, blob: bytes) -> None:
        """Write multiplexed data to the sideband.

        Args:
          channel: An int specifying the channel to write to.
          blob: A blob of data (as a string) to send on this channel.
        """
        while blob:
            self.write_pkt_line(bytes([channel]) + blob[:MAX_SIDEBAND_PAYLOAD])
            blob = blob[MAX_SIDEBAND_PAYLOAD:]


def _read_side_band64k_data(pkt_seq: Iterable[bytes]) -> Iterator[tuple[int, bytes]]:
    """Read per-channel data.

    This requires the side-band-64k capability.

    Args:
      pkt_seq: Sequence of packets to read
    """
    for pkt in pkt_seq:
        if not pkt:
            raise ProtocolError("empty sideband packet")
        channel = pkt[0]
        yield channel, pkt[1:]


def _handle_sideband_message(
    channel: int, payload: bytes, progress: Optional[Progress]
) -> None:
    """Handle a packet sent on a channel other than the data channel."""
    if channel == SIDE_BAND_CHANNEL_PROGRESS:
        if progress is not None:
            progress(payload)
        else:
            for line in payload.splitlines():
                if line.strip():
                    logger.info("remote: %s", line.decode("utf-8", "replace"))
    elif channel == SIDE_BAND_CHANNEL_FATAL:
        raise RemoteError(payload.rstrip(b"\n").decode("utf-8", "replace"))
    else:
        raise ProtocolError(f"Invalid sideband channel {channel}")


def demux_sideband(
    pkt_seq: Iterable[bytes],
    data: Callable[[bytes], None],
    progress: Optional[Progress] = None,
) -> None:
    """Demultiplex a sequence of side-band-64k packets.

    Args:
      pkt_seq: Sequence of packets, ending at the terminating flush
      data: Callback for channel 1 data
      progress: Optional callback for channel 2 progress messages
    Raises:
      RemoteError: if the remote sent a message on channel 3
    """
    for channel, payload in _read_side_band64k_data(pkt_seq):
        if channel == SIDE_BAND_CHANNEL_DATA:
            data(payload)
        else:
            _handle_sideband_message(channel, payload, progress)


class SidebandReader:
    """File-like view of the data channel of a side-band-64k stream.

    Packets are read from the protocol on demand, so that consumers like the
    pack decoder can stream their input. Reading returns ``b""`` once the
    terminating flush packet has been seen.
    """

    def __init__(self, proto: Protocol, progress: Optional[Progress] = None) -> None:
        """Initialize a SidebandReader.

        Args:
          proto: Protocol to read packets from
          progress: Optional callback for progress messages
        """
        self._proto = proto
        self._progress = progress
        self._buf = bytearray()
        self._done = False

    @property
    def done(self) -> bool:
        """Whether the terminating flush packet has been read."""
        return self._done

    def _fill(self) -> None:
        while not self._buf and not self._done:
            pkt = self._proto.read_pkt_line()
            if pkt is None:
                self._done = True
                return
            if not pkt:
                raise ProtocolError("empty sideband packet")
            channel, payload = pkt[0], pkt[1:]
            if channel == SIDE_BAND_CHANNEL_DATA:
                self._buf += payload
            else:
                _handle_sideband_message(channel, payload, self._progress)

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes of pack data."""
        if size < 0:
            chunks = []
            while True:
                self._fill()
                if not self._buf:
                    return b"".join(chunks)
                chunks.append(bytes(self._buf))
                del self._buf[:]
        self._fill()
        ret = bytes(self._buf[:size])
        del self._buf[:size]
        return ret

    def drain(self) -> None:
        """Read and discard anything left up to the terminating flush."""
        while not self._done:
            self._buf.clear()
            self._fill()
        self._buf.clear()


class PktLineParser:
    """Packet line parser that hands completed packets off to a callback."""

    def __init__(self, handle_pkt: Callable[[Optional[bytes]], None]) -> None:
        """Initialize PktLineParser.

        Args:
          handle_pkt: Callback for each complete packet; receives None for
            control packets
        """
        self.handle_pkt = handle_pkt
        self._readahead = BytesIO()

    def parse(self, data: bytes) -> None:
        """Parse a fragment of data and call back for any completed packets."""
        self._readahead.write(data)
        buf = self._readahead.getvalue()
        while len(buf) >= 4:
            size = parse_pkt_length(buf[:4])
            if size in _CONTROL_PACKETS:
                self.handle_pkt(None)
                buf = buf[4:]
            elif size <= len(buf):
                self.handle_pkt(buf[4:size])
                buf = buf[size:]
            else:
                break
        self._readahead = BytesIO()
        self._readahead.write(buf)

    def get_tail(self) -> bytes:
        """Read back any unused data."""
        return self._readahead.getvalue()
