# utils.py -- Test utilities
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

"""Utility functions common to gitstream tests."""

from collections.abc import Iterable, Mapping
from io import BytesIO
from typing import Optional

from gitstream.object_store import (
    BaseObjectStore,
    commit_tree_changes,
    find_reachable,
)
from gitstream.objects import Blob, Commit, ShaFile, Tree
from gitstream.pack import pack_objects_to_bytes
from gitstream.protocol import (
    DELIM_PKT,
    FLUSH_PKT,
    SIDE_BAND_CHANNEL_DATA,
    Protocol,
    pkt_line,
)
from gitstream.transport import Transport

# Plain files are very frequently used in tests, so let the mode be very short.
F = 0o100644  # Shorthand mode for Files.

DEFAULT_TIME = 1262304000  # 2010-01-01
AUTHOR = b"Test Author <test@nodomain.com>"
COMMITTER = b"Test Committer <test@nodomain.com>"


def make_commit(**attrs: object) -> Commit:
    """Make a Commit object with a default set of members.

    Args:
      attrs: attributes to overwrite from the default values.
    Returns: A newly initialized Commit object.
    """
    all_attrs: dict[str, object] = {
        "author": AUTHOR,
        "author_time": DEFAULT_TIME,
        "author_timezone": 0,
        "committer": COMMITTER,
        "commit_time": DEFAULT_TIME,
        "commit_timezone": 0,
        "message": b"Test message.\n",
        "parents": [],
        "tree": Tree().id,
    }
    all_attrs.update(attrs)
    commit = Commit()
    for name, value in all_attrs.items():
        setattr(commit, name, value)
    return commit


def build_tree(store: BaseObjectStore, files: Mapping[bytes, bytes]) -> bytes:
    """Store blobs for files and the trees holding them.

    Returns: Id of the root tree
    """
    changes = []
    for path, data in files.items():
        changes.append((path, F, store.add_object(Blob.from_string(data))))
    return commit_tree_changes(store, Tree(), changes)


def build_commit(
    store: BaseObjectStore,
    files: Mapping[bytes, bytes],
    parents: Iterable[bytes] = (),
    **attrs: object,
) -> Commit:
    """Store a commit with the given files and return it."""
    commit = make_commit(tree=build_tree(store, files), parents=list(parents), **attrs)
    store.add_object(commit)
    return commit


def reachable_objects(store: BaseObjectStore, commit_id: bytes) -> list[ShaFile]:
    """Return the commit, tree and blob objects making up commit_id."""
    return [store[sha] for sha in find_reachable(store, [commit_id]).shas]


def sideband(data: bytes, chunk_size: int = 1000) -> bytes:
    """Frame data on sideband channel 1, followed by a flush."""
    ret = []
    for i in range(0, len(data), chunk_size):
        ret.append(
            pkt_line(bytes([SIDE_BAND_CHANNEL_DATA]) + data[i : i + chunk_size])
        )
    ret.append(FLUSH_PKT)
    return b"".join(ret)


def v2_advertisement(capabilities: Iterable[bytes] = ()) -> bytes:
    """The capability advertisement of a protocol v2 server."""
    caps = list(capabilities) or [
        b"agent=git/2.45.0",
        b"ls-refs=unborn",
        b"fetch=shallow",
        b"server-option",
        b"object-format=sha1",
    ]
    return (
        pkt_line(b"version 2\n")
        + b"".join(pkt_line(cap + b"\n") for cap in caps)
        + FLUSH_PKT
    )


def ls_refs_response(lines: Iterable[bytes]) -> bytes:
    return b"".join(pkt_line(line + b"\n") for line in lines) + FLUSH_PKT


def fetch_response(
    objects: Iterable[ShaFile], shallow: Iterable[bytes] = (), acks: bool = False
) -> bytes:
    """A fetch response carrying a pack of objects."""
    ret = []
    if acks:
        ret.append(pkt_line(b"acknowledgments\n"))
        ret.append(pkt_line(b"NAK\n"))
        ret.append(DELIM_PKT)
    shallow = list(shallow)
    if shallow:
        ret.append(pkt_line(b"shallow-info\n"))
        ret.extend(pkt_line(b"shallow " + sha + b"\n") for sha in shallow)
        ret.append(DELIM_PKT)
    ret.append(pkt_line(b"packfile\n"))
    ret.append(sideband(pack_objects_to_bytes(objects)))
    return b"".join(ret)


def v1_advertisement(
    refs: Mapping[bytes, bytes], capabilities: Iterable[bytes] = ()
) -> bytes:
    """A protocol v1 ref advertisement, as sent by git-receive-pack."""
    caps = b" ".join(
        list(capabilities)
        or [b"report-status", b"delete-refs", b"ofs-delta", b"agent=git/2.45.0"]
    )
    items = sorted(refs.items()) or [(b"capabilities^{}", b"0" * 40)]
    lines = []
    for i, (ref, sha) in enumerate(items):
        line = sha + b" " + ref
        if i == 0:
            line += b"\0" + caps
        lines.append(pkt_line(line + b"\n"))
    return b"".join(lines) + FLUSH_PKT


def report_status(lines: Iterable[bytes], side_band: bool = False) -> bytes:
    """A report-status response, optionally wrapped in side-band-64k."""
    report = b"".join(pkt_line(line + b"\n") for line in lines) + FLUSH_PKT
    if side_band:
        return sideband(report)
    return report


def split_pkt_lines(data: bytes) -> tuple[list[Optional[bytes]], bytes]:
    """Split data written by a client into pkt-lines up to the first flush.

    Returns: tuple of (packets, rest); DELIM packets are reported as b"".
    """
    pkts: list[Optional[bytes]] = []
    f = BytesIO(data)
    while True:
        size_str = f.read(4)
        if not size_str:
            return pkts, b""
        size = int(size_str, 16)
        if size == 0:
            pkts.append(None)
            return pkts, f.read()
        if size == 1:
            pkts.append(b"")
            continue
        pkts.append(f.read(size - 4))


class FakeTransport(Transport):
    """Transport that replays canned server output.

    What the client writes is collected per service in ``written``.
    """

    def __init__(self, responses: Mapping[bytes, bytes]) -> None:
        self.responses = dict(responses)
        self.written: dict[bytes, BytesIO] = {}
        self.opened: list[bytes] = []
        self.closed = 0

    def open(self, service: bytes) -> Protocol:
        self.opened.append(service)
        rin = BytesIO(self.responses[service])
        rout = self.written.setdefault(service, BytesIO())
        return Protocol(rin.read, rout.write, self._close)

    def _close(self) -> None:
        self.closed += 1

    def output(self, service: bytes) -> bytes:
        return self.written[service].getvalue()
