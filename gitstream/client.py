# client.py -- Implementation of the client side git protocols
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

"""Client side of the git smart protocols.

Fetching uses protocol version 2 (``ls-refs`` and ``fetch`` commands);
pushing uses protocol version 1 (ref advertisement, update commands,
pack, ``report-status``). Both negotiations run over a :class:`Protocol`
provided by a transport and never touch the network themselves.
"""

import enum
import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import NamedTuple, Optional

from .errors import (
    NonFastForward,
    ProtocolError,
    RefNotFound,
    RejectedRef,
    RemoteError,
    UnsupportedServer,
)
from .object_store import (
    BaseObjectStore,
    GetParents,
    _default_get_parents,
    find_reachable,
    is_ancestor,
)
from .objects import ZERO_SHA, ShaFile
from .pack import unpack_into, write_pack_objects
from .protocol import (
    CAPABILITIES_REF,
    CAPABILITY_AGENT,
    CAPABILITY_DELETE_REFS,
    CAPABILITY_FETCH,
    CAPABILITY_LS_REFS,
    CAPABILITY_NO_PROGRESS,
    CAPABILITY_OFS_DELTA,
    CAPABILITY_REPORT_STATUS,
    CAPABILITY_SHALLOW,
    CAPABILITY_SIDE_BAND_64K,
    CAPABILITY_THIN_PACK,
    COMMAND_DEEPEN,
    COMMAND_DONE,
    COMMAND_FETCH,
    COMMAND_LS_REFS,
    COMMAND_SHALLOW,
    COMMAND_UNSHALLOW,
    COMMAND_WANT,
    DELIM,
    Capabilities,
    Data,
    ErrorLine,
    PktLineParser,
    Progress,
    Protocol,
    SidebandReader,
    agent_string,
    demux_sideband,
    extract_capabilities,
    format_capabilities,
)
from .refs import HEADREF, expand_ref, is_commit_id

logger = logging.getLogger(__name__)

COMMAND_HAVE = b"have"


class ReportStatusParser:
    """Handle status as reported by servers with 'report-status' capability."""

    def __init__(self) -> None:
        """Initialize ReportStatusParser."""
        self._done = False
        self._pack_status: Optional[bytes] = None
        self._ref_statuses: list[bytes] = []

    @property
    def done(self) -> bool:
        """Whether the terminating flush has been seen."""
        return self._done

    @property
    def pack_status(self) -> Optional[bytes]:
        """The ``unpack`` line, once received."""
        return self._pack_status

    def check(self) -> Iterator[tuple[bytes, Optional[str]]]:
        """Iterate over the reported ref statuses.

        Returns:
          iterator over (ref, error) pairs; error is None for refs that
          were updated
        Raises:
          ProtocolError: on a status line that is neither ``ok`` nor ``ng``
        """
        for status in self._ref_statuses:
            try:
                status, rest = status.split(b" ", 1)
            except ValueError:
                raise ProtocolError(f"invalid ref status {status!r}")
            if status == b"ng":
                ref, _, error = rest.partition(b" ")
                yield ref, error.decode("utf-8", "replace") or "rejected"
            elif status == b"ok":
                yield rest, None
            else:
                raise ProtocolError(f"invalid ref status {status!r}")

    def unpack_error(self) -> Optional[str]:
        """Return the error reported for unpacking, if any."""
        if self._pack_status is None:
            raise ProtocolError("no unpack status reported")
        if not self._pack_status.startswith(b"unpack "):
            raise ProtocolError(f"invalid unpack status {self._pack_status!r}")
        status = self._pack_status[len(b"unpack ") :]
        if status == b"ok":
            return None
        return status.decode("utf-8", "replace")

    def handle_packet(self, pkt: Optional[bytes]) -> None:
        """Handle a packet.

        Raises:
          ProtocolError: Raised when packets are received after a flush
          packet.
        """
        if self._done:
            raise ProtocolError("received more data after status report")
        if pkt is None:
            self._done = True
            return
        line = pkt.strip()
        if self._pack_status is None:
            self._pack_status = line
        else:
            self._ref_statuses.append(line)


def negotiate_protocol_version(proto: Protocol) -> int:
    """Negotiate protocol version with the server.

    Returns: 2 if the server speaks protocol version 2, 0 otherwise; in that
      case the first packet is left unread
    """
    pkt = proto.read_pkt_line()
    if pkt is not None and pkt.strip() == b"version 2":
        return 2
    proto.unread_pkt_line(pkt)
    return 0


def read_server_capabilities(pkt_seq: Iterable[bytes]) -> Capabilities:
    """Read the capability advertisement of a version 2 server."""
    return Capabilities(pkt.rstrip(b"\n") for pkt in pkt_seq)


def read_pkt_refs_v2(
    pkt_seq: Iterable[bytes],
) -> tuple[dict[bytes, Optional[bytes]], dict[bytes, bytes], dict[bytes, bytes]]:
    """Read references using protocol version 2.

    Returns: tuple of (refs, symrefs, peeled); unborn refs map to None
    """
    refs: dict[bytes, Optional[bytes]] = {}
    symrefs = {}
    peeled = {}
    for pkt in pkt_seq:
        try:
            oid, ref, *attributes = pkt.rstrip(b"\n").split(b" ")
        except ValueError:
            raise ProtocolError(f"invalid ls-refs line {pkt!r}")
        for attribute in attributes:
            key, _, value = attribute.partition(b":")
            if key == b"peeled":
                peeled[ref] = value
            elif key == b"symref-target":
                symrefs[ref] = value
            else:
                logger.warning("ignoring ls-refs attribute %r for %r", attribute, ref)
        refs[ref] = None if oid == b"unborn" else oid
    return refs, symrefs, peeled


def read_pkt_refs_v1(
    pkt_seq: Iterable[bytes],
) -> tuple[dict[bytes, bytes], Capabilities]:
    """Read a protocol version 0/1 ref advertisement.

    The capabilities follow a NUL byte on the first line. A repository
    without refs advertises ``capabilities^{}`` with the zero id.
    """
    server_capabilities: Optional[list[bytes]] = None
    refs: dict[bytes, bytes] = {}
    for pkt in pkt_seq:
        if server_capabilities is None and pkt.rstrip(b"\n") == b"version 1":
            continue
        try:
            (sha, ref) = pkt.rstrip(b"\n").split(None, 1)
        except ValueError:
            raise ProtocolError(f"invalid ref advertisement line {pkt!r}")
        if server_capabilities is None:
            (ref, server_capabilities) = extract_capabilities(ref)
        refs[ref] = sha

    if refs == {CAPABILITIES_REF: ZERO_SHA}:
        refs = {}
    return refs, Capabilities(server_capabilities or ())


def _read_shallow_updates(pkt_seq: Iterable[bytes]) -> tuple[set[bytes], set[bytes]]:
    new_shallow = set()
    new_unshallow = set()
    for pkt in pkt_seq:
        try:
            cmd, sha = pkt.split(b" ", 1)
        except ValueError:
            raise ProtocolError(f"unknown command {pkt!r}")
        if cmd == COMMAND_SHALLOW:
            new_shallow.add(sha.strip())
        elif cmd == COMMAND_UNSHALLOW:
            new_unshallow.add(sha.strip())
        else:
            raise ProtocolError(f"unknown command {pkt!r}")
    return (new_shallow, new_unshallow)


class FetchPackResult:
    """Result of a fetch-pack operation.

    Attributes:
      refs: Dictionary with all remote refs seen by ls-refs
      symrefs: Dictionary with remote symrefs
      peeled: Dictionary mapping annotated tag refs to the commit they peel to
      shallow: Shallow commits after the fetch
      new_shallow: Commits the server marked as shallow
      new_unshallow: Commits the server marked as no longer shallow
      agent: User agent string of the server
      ref: The full name of the ref that was fetched, if any
      tip: The id that was fetched, or None for an empty repository
      objects: Ids of the objects received
    """

    def __init__(
        self,
        refs: dict[bytes, Optional[bytes]],
        symrefs: dict[bytes, bytes],
        agent: Optional[bytes],
        peeled: Optional[dict[bytes, bytes]] = None,
        shallow: Optional[set[bytes]] = None,
        new_shallow: Optional[set[bytes]] = None,
        new_unshallow: Optional[set[bytes]] = None,
        ref: Optional[bytes] = None,
        tip: Optional[bytes] = None,
        objects: Optional[list[bytes]] = None,
    ) -> None:
        """Initialize FetchPackResult."""
        self.refs = refs
        self.symrefs = symrefs
        self.agent = agent
        self.peeled = peeled or {}
        self.new_shallow = new_shallow or set()
        self.new_unshallow = new_unshallow or set()
        self.shallow = shallow if shallow is not None else set(self.new_shallow)
        self.ref = ref
        self.tip = tip
        self.objects = objects or []

    @property
    def peeled_tip(self) -> Optional[bytes]:
        """The commit the fetched ref points at, peeling annotated tags."""
        if self.ref is not None and self.ref in self.peeled:
            return self.peeled[self.ref]
        return self.tip

    def __eq__(self, other: object) -> bool:
        """Check equality with another FetchPackResult."""
        if not isinstance(other, FetchPackResult):
            return False
        return (
            self.refs == other.refs
            and self.symrefs == other.symrefs
            and self.agent == other.agent
            and self.ref == other.ref
            and self.tip == other.tip
        )

    def __repr__(self) -> str:
        """Return string representation of FetchPackResult."""
        return (
            f"{self.__class__.__name__}({self.ref!r}, {self.tip!r}, "
            f"{self.symrefs!r}, {self.agent!r})"
        )


class RefStatus(NamedTuple):
    """Outcome of one ref update in a push.

    Attributes:
      ref: Full remote ref name
      old: Id the remote advertised, ZERO_SHA for a new ref
      new: Id that was pushed, ZERO_SHA for a deletion
      error: RejectedRef if the update failed, None otherwise
    """

    ref: bytes
    old: bytes
    new: bytes
    error: Optional[RejectedRef] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SendPackResult:
    """Result of a send-pack operation.

    Attributes:
      refs: Remote refs after the push, as far as the client knows
      agent: User agent string of the server
      statuses: Dictionary mapping ref name to RefStatus, in the order
        the updates were given
    """

    def __init__(
        self,
        refs: dict[bytes, bytes],
        agent: Optional[bytes] = None,
        statuses: Optional[dict[bytes, RefStatus]] = None,
    ) -> None:
        """Initialize SendPackResult."""
        self.refs = refs
        self.agent = agent
        self.statuses = statuses or {}

    @property
    def rejected(self) -> list[RefStatus]:
        """Statuses of the refs that failed to update."""
        return [status for status in self.statuses.values() if not status.ok]

    def check(self) -> None:
        """Raise the first rejection, if any.

        Raises:
          RejectedRef: if the remote refused one of the updates
        """
        for status in self.statuses.values():
            if status.error is not None:
                raise status.error

    def __eq__(self, other: object) -> bool:
        """Check equality with another SendPackResult."""
        if not isinstance(other, SendPackResult):
            return False
        return (
            self.refs == other.refs
            and self.agent == other.agent
            and self.statuses == other.statuses
        )

    def __repr__(self) -> str:
        """Return string representation of SendPackResult."""
        return f"{self.__class__.__name__}({self.refs!r}, {self.agent!r})"


class FetchState(enum.Enum):
    """States of a protocol v2 fetch."""

    ADVERTISE_CAPABILITIES = "advertise-capabilities"
    LS_REFS = "ls-refs"
    NEGOTIATE_WANTS = "negotiate-wants"
    RECEIVE_PACK = "receive-pack"
    DONE = "done"


class FetchNegotiation:
    """Fetch a single ref and its history using protocol version 2.

    Objects are added to ``store``, which callers normally make an
    :class:`OverlayObjectStore` so that nothing becomes visible before
    the whole exchange has succeeded.
    """

    def __init__(
        self,
        proto: Protocol,
        store: BaseObjectStore,
        ref: bytes = HEADREF,
        depth: Optional[int] = None,
        progress: Optional[Progress] = None,
        haves: Iterable[bytes] = (),
        shallow: Iterable[bytes] = (),
    ) -> None:
        """Initialize a FetchNegotiation.

        Args:
          proto: Protocol connected to git-upload-pack
          store: Object store to add received objects to
          ref: Ref to fetch; a short name, full ref name, ``HEAD`` or a
            commit id
          depth: Optional depth limit for a shallow fetch
          progress: Optional callback for server progress messages
          haves: Ids of commits that are already present locally
          shallow: Ids of local shallow boundary commits
        """
        if depth is not None and depth < 1:
            raise ValueError(f"depth must be positive, got {depth}")
        self.proto = proto
        self.store = store
        self.ref = ref
        self.depth = depth
        self.progress = progress
        self.haves = list(haves)
        self.shallow = set(shallow)
        self.state = FetchState.ADVERTISE_CAPABILITIES
        self.capabilities = Capabilities()

    def _write_command(self, command: bytes, args: Iterable[bytes]) -> None:
        self.proto.send_cmd(command, [CAPABILITY_AGENT + b"=" + agent_string()], args)

    def read_capabilities(self) -> Capabilities:
        """Read and check the server's capability advertisement.

        Raises:
          UnsupportedServer: if the server does not speak protocol version
            2, or lacks a capability this fetch needs
        """
        if negotiate_protocol_version(self.proto) != 2:
            raise UnsupportedServer("version 2")
        self.capabilities = read_server_capabilities(self.proto.read_pkt_seq())
        self.capabilities.require(CAPABILITY_LS_REFS, CAPABILITY_FETCH)
        if self.depth is not None:
            self.capabilities.require_feature(CAPABILITY_FETCH, CAPABILITY_SHALLOW)
        logger.debug("server capabilities: %r", self.capabilities)
        self.state = FetchState.LS_REFS
        return self.capabilities

    def ls_refs(
        self,
    ) -> tuple[dict[bytes, Optional[bytes]], dict[bytes, bytes], dict[bytes, bytes]]:
        """List every ref the server has.

        No ref-prefix filter is sent: telling an empty repository from one
        that lacks the requested ref needs the full listing.
        """
        args = [b"symrefs", b"peel"]
        if b"unborn" in self.capabilities.features(CAPABILITY_LS_REFS):
            args.append(b"unborn")
        self._write_command(COMMAND_LS_REFS, args)
        refs, symrefs, peeled = read_pkt_refs_v2(self.proto.read_pkt_seq())
        logger.debug("ls-refs returned %d refs", len(refs))
        self.state = FetchState.NEGOTIATE_WANTS
        return refs, symrefs, peeled

    def resolve(
        self, refs: Mapping[bytes, Optional[bytes]], symrefs: Mapping[bytes, bytes]
    ) -> tuple[Optional[bytes], Optional[bytes]]:
        """Pick the ref and id to fetch from an ls-refs listing.

        Returns: tuple of (full ref name, id); both are None for an empty
          repository
        Raises:
          RefNotFound: if the requested ref does not exist
        """
        if is_commit_id(self.ref):
            return None, self.ref
        for candidate in expand_ref(self.ref):
            if refs.get(candidate) is not None:
                if candidate == HEADREF and HEADREF in symrefs:
                    return symrefs[HEADREF], refs[candidate]
                return candidate, refs[candidate]
        # An empty repository has at most an unborn HEAD.
        if all(sha is None for sha in refs.values()):
            return None, None
        raise RefNotFound(self.ref)

    def send_wants(self, want: bytes) -> None:
        """Send the fetch command, asking for want and its history."""
        args = [CAPABILITY_OFS_DELTA]
        if self.progress is None:
            args.append(CAPABILITY_NO_PROGRESS)
        args.append(COMMAND_WANT + b" " + want)
        args.extend(COMMAND_HAVE + b" " + have for have in self.haves)
        args.extend(COMMAND_SHALLOW + b" " + sha for sha in sorted(self.shallow))
        if self.depth is not None:
            args.append(COMMAND_DEEPEN + b" " + str(self.depth).encode("ascii"))
        args.append(COMMAND_DONE)
        self._write_command(COMMAND_FETCH, args)
        self.state = FetchState.RECEIVE_PACK

    def _read_section(self) -> tuple[list[bytes], bool]:
        """Read the lines of one response section.

        Returns: tuple of (lines, more); more is False when the section was
          terminated by a flush rather than a delimiter
        """
        lines = []
        while True:
            frame = self.proto.read_frame()
            if isinstance(frame, Data):
                lines.append(frame.payload.rstrip(b"\n"))
            elif frame is DELIM:
                return lines, True
            elif isinstance(frame, ErrorLine):
                raise RemoteError(frame.text)
            else:
                return lines, False

    def receive_pack(self) -> tuple[list[bytes], set[bytes], set[bytes]]:
        """Read the fetch response and decode the pack into the store.

        Returns: tuple of (object ids, new shallow, new unshallow)
        """
        new_shallow: set[bytes] = set()
        new_unshallow: set[bytes] = set()
        while True:
            pkt = self.proto.read_pkt_line()
            if pkt is None:
                raise ProtocolError("fetch response ended before the packfile")
            section = pkt.rstrip(b"\n")
            if section == b"packfile":
                break
            lines, more = self._read_section()
            if section == b"shallow-info":
                new_shallow, new_unshallow = _read_shallow_updates(lines)
            elif section == b"acknowledgments":
                logger.debug("acknowledgments: %r", lines)
            else:
                logger.debug("ignoring response section %r", section)
            if not more:
                raise ProtocolError("fetch response ended before the packfile")
        reader = SidebandReader(self.proto, self.progress)
        shas = unpack_into(self.store, reader.read)
        reader.drain()
        self.state = FetchState.DONE
        return shas, new_shallow, new_unshallow

    def run(self) -> FetchPackResult:
        """Run the whole negotiation.

        Raises:
          UnsupportedServer: if the server lacks a required capability
          RefNotFound: if the requested ref does not exist on the remote
          RemoteError: if the server reports an error
          CorruptPack: if the received pack is invalid
        """
        self.read_capabilities()
        refs, symrefs, peeled = self.ls_refs()
        ref, tip = self.resolve(refs, symrefs)
        agent = self.capabilities.agent
        if tip is None:
            logger.debug("remote repository is empty")
            self.state = FetchState.DONE
            return FetchPackResult(
                refs, symrefs, agent, peeled=peeled, shallow=set(self.shallow)
            )
        if tip in self.store and self.depth is None:
            logger.debug("%s is already present", tip.decode("ascii"))
            self.state = FetchState.DONE
            return FetchPackResult(
                refs,
                symrefs,
                agent,
                peeled=peeled,
                shallow=set(self.shallow),
                ref=ref,
                tip=tip,
            )
        logger.debug("fetching %r at %s", ref, tip.decode("ascii"))
        self.send_wants(tip)
        shas, new_shallow, new_unshallow = self.receive_pack()
        shallow = (self.shallow | new_shallow) - new_unshallow
        return FetchPackResult(
            refs,
            symrefs,
            agent,
            peeled=peeled,
            shallow=shallow,
            new_shallow=new_shallow,
            new_unshallow=new_unshallow,
            ref=ref,
            tip=tip,
            objects=shas,
        )


class PushState(enum.Enum):
    """States of a protocol v1 push."""

    ADVERTISE_REFS = "advertise-refs"
    SEND_COMMANDS = "send-commands"
    SEND_PACK = "send-pack"
    READ_REPORT = "read-report"
    DONE = "done"


class PushNegotiation:
    """Update refs on a remote using protocol version 1.

    Every object reachable from the new ids that is not reachable from a
    tip the remote advertised is sent in full.
    """

    def __init__(
        self,
        proto: Protocol,
        store: BaseObjectStore,
        updates: Mapping[bytes, Optional[bytes]],
        force: bool = False,
        progress: Optional[Progress] = None,
        get_parents: GetParents = _default_get_parents,
    ) -> None:
        """Initialize a PushNegotiation.

        Args:
          proto: Protocol connected to git-receive-pack
          store: Object store holding the objects to push
          updates: Mapping of full remote ref name to the new id, or None
            to delete the ref
          force: Whether to allow updates that are not fast-forwards
          progress: Optional callback for server progress messages
          get_parents: Function returning the parents to follow for a commit
        """
        self.proto = proto
        self.store = store
        self.updates = dict(updates)
        self.force = force
        self.progress = progress
        self.get_parents = get_parents
        self.state = PushState.ADVERTISE_REFS
        self.capabilities = Capabilities()
        self.remote_refs: dict[bytes, bytes] = {}

    def read_advertisement(self) -> dict[bytes, bytes]:
        """Read the ref advertisement and check server capabilities."""
        self.remote_refs, self.capabilities = read_pkt_refs_v1(
            self.proto.read_pkt_seq()
        )
        logger.debug(
            "remote advertised %d refs, capabilities %r",
            len(self.remote_refs),
            self.capabilities,
        )
        self.capabilities.require(CAPABILITY_REPORT_STATUS)
        if any(new is None for new in self.updates.values()):
            self.capabilities.require(CAPABILITY_DELETE_REFS)
        self.state = PushState.SEND_COMMANDS
        return self.remote_refs

    def plan(self) -> list[tuple[bytes, bytes, bytes]]:
        """Work out the update commands to send.

        Returns: list of (old, new, ref) tuples in the order the updates
          were given; refs that are already up to date are left out
        Raises:
          NonFastForward: if an update would lose remote commits and force
            is not set
        """
        commands = []
        for ref, new in self.updates.items():
            old = self.remote_refs.get(ref, ZERO_SHA)
            new = new or ZERO_SHA
            if old == new:
                logger.debug("%r is up to date", ref)
                continue
            if (
                not self.force
                and old != ZERO_SHA
                and new != ZERO_SHA
                and not is_ancestor(self.store, old, new, self.get_parents)
            ):
                raise NonFastForward(ref, old, new)
            commands.append((old, new, ref))
        return commands

    def client_capabilities(self) -> list[bytes]:
        """Capabilities to announce on the first command."""
        caps = [CAPABILITY_REPORT_STATUS]
        for cap in (CAPABILITY_SIDE_BAND_64K, CAPABILITY_OFS_DELTA):
            if cap in self.capabilities:
                caps.append(cap)
        caps.append(CAPABILITY_AGENT + b"=" + agent_string())
        return caps

    def objects_to_send(
        self, commands: Iterable[tuple[bytes, bytes, bytes]]
    ) -> list[ShaFile]:
        """Find the objects the remote needs for commands.

        Raises:
          UnsupportedServer: if part of the history is not available
            locally and the server does not accept thin packs
          MissingObject: if a new id is not present locally
        """
        roots = [new for (_old, new, _ref) in commands if new != ZERO_SHA]
        have = [sha for ref, sha in self.remote_refs.items() if sha != ZERO_SHA]
        reachable = find_reachable(self.store, roots, have, self.get_parents)
        if reachable.omitted and CAPABILITY_THIN_PACK not in self.capabilities:
            raise UnsupportedServer(CAPABILITY_THIN_PACK)
        return [self.store[sha] for sha in reachable.shas]

    def send_commands(self, commands: list[tuple[bytes, bytes, bytes]]) -> None:
        caps = format_capabilities(self.client_capabilities())
        for i, (old, new, ref) in enumerate(commands):
            line = old + b" " + new + b" " + ref
            if i == 0:
                line += b"\0" + caps
            self.proto.write_pkt_line(line)
        self.proto.write_flush()
        self.state = PushState.SEND_PACK

    def send_pack(self, objects: list[ShaFile]) -> None:
        logger.debug("sending pack with %d objects", len(objects))
        write_pack_objects(self.proto.write_data, objects)
        self.state = PushState.READ_REPORT

    def read_report(self) -> ReportStatusParser:
        """Read the report-status response."""
        parser = ReportStatusParser()
        if CAPABILITY_SIDE_BAND_64K in self.capabilities:
            pktline_parser = PktLineParser(parser.handle_packet)
            demux_sideband(
                self.proto.read_pkt_seq(), pktline_parser.parse, self.progress
            )
            if pktline_parser.get_tail():
                raise ProtocolError("trailing data after status report")
        else:
            for pkt in self.proto.read_pkt_seq():
                parser.handle_packet(pkt)
            parser.handle_packet(None)
        self.state = PushState.DONE
        return parser

    def _statuses(
        self, commands: list[tuple[bytes, bytes, bytes]], parser: ReportStatusParser
    ) -> dict[bytes, RefStatus]:
        unpack_error = parser.unpack_error()
        reported = dict(parser.check())
        statuses = {}
        for old, new, ref in commands:
            error: Optional[RejectedRef] = None
            if ref in reported:
                if reported[ref] is not None:
                    error = RejectedRef(ref, reported[ref])
            elif unpack_error is not None:
                error = RejectedRef(ref, f"unpack failed: {unpack_error}")
            else:
                error = RejectedRef(ref, "no status reported")
            if error is not None:
                logger.warning("remote rejected %s", error)
            statuses[ref] = RefStatus(ref, old, new, error)
        return statuses

    def run(self) -> SendPackResult:
        """Run the whole negotiation.

        Nothing is written to the remote until every update has been
        checked locally.

        Raises:
          UnsupportedServer: if the server lacks a required capability
          NonFastForward: if an update is not a fast-forward and force is
            not set
          RemoteError: if the server reports an error
        """
        self.read_advertisement()
        commands = self.plan()
        agent = self.capabilities.agent
        refs = dict(self.remote_refs)
        if not commands:
            self.proto.write_flush()
            self.state = PushState.DONE
            return SendPackResult(refs, agent=agent)
        objects: list[ShaFile] = []
        if any(new != ZERO_SHA for (_old, new, _ref) in commands):
            objects = self.objects_to_send(commands)
        self.send_commands(commands)
        if any(new != ZERO_SHA for (_old, new, _ref) in commands):
            self.send_pack(objects)
        else:
            # The packfile must not be sent if the only command used is delete.
            self.state = PushState.READ_REPORT
        statuses = self._statuses(commands, self.read_report())
        for ref, status in statuses.items():
            if not status.ok:
                continue
            if status.new == ZERO_SHA:
                refs.pop(ref, None)
            else:
                refs[ref] = status.new
        return SendPackResult(refs, agent=agent, statuses=statuses)


def fetch(
    proto: Protocol,
    store: BaseObjectStore,
    ref: bytes = HEADREF,
    depth: Optional[int] = None,
    progress: Optional[Progress] = None,
) -> FetchPackResult:
    """Fetch ref from the server on the other end of proto into store."""
    return FetchNegotiation(proto, store, ref, depth=depth, progress=progress).run()


def push(
    proto: Protocol,
    store: BaseObjectStore,
    updates: Mapping[bytes, Optional[bytes]],
    force: bool = False,
    progress: Optional[Progress] = None,
    get_parents: GetParents = _default_get_parents,
) -> SendPackResult:
    """Push updates to the server on the other end of proto."""
    return PushNegotiation(
        proto, store, updates, force=force, progress=progress, get_parents=get_parents
    ).run()
