# pack.py -- For dealing with packed git objects.
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

"""Classes for dealing with packed git objects.

A pack is a stream of objects, each compressed with zlib, preceded by a
header that states the pack version and the number of objects, and
followed by the SHA-1 of everything before it.

Objects in a pack are either stored in full, or as a delta against a base
object. The base of an ofs-delta is an earlier object in the same pack,
identified by its offset; the base of a ref-delta is identified by its
object id and may live outside the pack.

Packs received from a server are consumed as a stream; they are never
written to disk.
"""

import hashlib
import logging
import struct
import zlib
from collections import defaultdict, deque
from collections.abc import Callable, Iterable, Iterator, Sequence
from difflib import SequenceMatcher
from io import BytesIO
from itertools import chain
from typing import Optional, Union

from .errors import (
    ApplyDeltaError,
    ChecksumMismatch,
    CorruptPack,
    MissingObject,
    ObjectFormatException,
    UnresolvedDeltas,
)
from .object_store import BaseObjectStore
from .objects import ShaFile, hash_object, hex_to_sha, sha_to_hex

logger = logging.getLogger(__name__)

OFS_DELTA = 6
REF_DELTA = 7

DELTA_TYPES = (OFS_DELTA, REF_DELTA)

PACK_SIGNATURE = b"PACK"
PACK_SHA_SIZE = 20

_ZLIB_BUFSIZE = 65536

# Returns (type_num, chunks) for an object outside the pack; raises KeyError.
ResolveExtRefFn = Callable[[bytes], tuple[int, list[bytes]]]


def take_msb_bytes(read: Callable[[int], bytes]) -> list[int]:
    """Read bytes marked with most significant bit.

    Args:
      read: Read function
    """
    ret: list[int] = []
    while len(ret) == 0 or ret[-1] & 0x80:
        b = read(1)
        if not b:
            raise CorruptPack("truncated object header")
        ret.append(b[0])
    return ret


class UnpackedObject:
    """One entry read from (or about to be written to) a pack stream.

    Delta entries start with ``obj_type_num`` and ``obj_chunks`` unset; the
    inflater fills them in once the base is known.
    """

    __slots__ = [
        "_sha",
        "decomp_chunks",
        "decomp_len",
        "delta_base",
        "obj_chunks",
        "obj_type_num",
        "offset",
        "pack_type_num",
    ]

    def __init__(
        self,
        pack_type_num: int,
        *,
        delta_base: Union[None, bytes, int] = None,
        decomp_len: Optional[int] = None,
        sha: Optional[bytes] = None,
        decomp_chunks: Optional[list[bytes]] = None,
        offset: Optional[int] = None,
    ) -> None:
        self.pack_type_num = pack_type_num
        # Offset for OFS_DELTA, hex id for REF_DELTA.
        self.delta_base = delta_base
        self.offset = offset
        self._sha = sha
        self.decomp_chunks: list[bytes] = decomp_chunks if decomp_chunks is not None else []
        if decomp_len is None and decomp_chunks is not None:
            decomp_len = sum(len(chunk) for chunk in decomp_chunks)
        self.decomp_len = decomp_len
        self.obj_type_num: Optional[int] = None
        self.obj_chunks: Optional[list[bytes]] = None
        if pack_type_num not in DELTA_TYPES:
            self.obj_type_num = pack_type_num
            self.obj_chunks = self.decomp_chunks

    def sha(self) -> bytes:
        """Hex id of the resolved object."""
        if self._sha is None:
            if self.obj_type_num is None or self.obj_chunks is None:
                raise ValueError("delta object has not been resolved")
            self._sha = hash_object(self.obj_type_num, b"".join(self.obj_chunks))
        return self._sha

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(type={self.pack_type_num}, "
            f"offset={self.offset}, delta_base={self.delta_base!r})"
        )


def read_zlib_chunks(
    read_some: Callable[[int], bytes],
    unpacked: UnpackedObject,
    buffer_size: int = _ZLIB_BUFSIZE,
) -> bytes:
    """Inflate one object body into ``unpacked.decomp_chunks``.

    Pack entries are followed by more data (at least the trailer), so the
    reader always overshoots; the overshoot is returned to the caller.

    Args:
      read_some: Callable returning between one and ``size`` bytes.
      unpacked: Object whose ``decomp_len`` gives the expected size.
      buffer_size: Read size.
    Returns: Bytes read past the end of the zlib stream.
    Raises:
      CorruptPack: on truncated or invalid zlib data, or a size mismatch
    """
    expected = unpacked.decomp_len
    if expected is None or expected < 0:
        raise ValueError("non-negative zlib data stream size expected")
    inflater = zlib.decompressobj()
    total = 0
    while not inflater.eof:
        data = read_some(buffer_size)
        if not data:
            raise CorruptPack("EOF before end of zlib stream")
        try:
            chunk = inflater.decompress(data)
        except zlib.error as e:
            raise CorruptPack(f"invalid zlib data: {e}") from e
        total += len(chunk)
        unpacked.decomp_chunks.append(chunk)
    if total != expected:
        raise CorruptPack(
            f"object inflated to {total} bytes, header announced {expected}"
        )
    return inflater.unused_data


def read_pack_header(read: Callable[[int], bytes]) -> tuple[int, int]:
    """Read the header of a pack file.

    Args:
      read: Read function
    Returns: Tuple of (pack version, number of objects).
    Raises:
      CorruptPack: if the header is missing or invalid
    """
    header = read(12)
    if len(header) < 12:
        raise CorruptPack("file too short to contain pack")
    if header[:4] != PACK_SIGNATURE:
        raise CorruptPack(f"Invalid pack header {header!r}")
    (version,) = struct.unpack_from(">L", header, 4)
    if version not in (2, 3):
        raise CorruptPack(f"Version was {version}")
    (num_objects,) = struct.unpack_from(">L", header, 8)
    return (version, num_objects)


def _read_varint_header(read_all: Callable[[int], bytes]) -> tuple[int, int]:
    raw = take_msb_bytes(read_all)
    type_num = (raw[0] >> 4) & 0x07
    size = raw[0] & 0x0F
    shift = 4
    for byte in raw[1:]:
        size |= (byte & 0x7F) << shift
        shift += 7
    return type_num, size


def _read_ofs_delta_base(read_all: Callable[[int], bytes]) -> int:
    # Each continuation byte adds one before shifting, so encodings are unique.
    raw = take_msb_bytes(read_all)
    offset = raw[0] & 0x7F
    for byte in raw[1:]:
        offset = ((offset + 1) << 7) | (byte & 0x7F)
    return offset


def unpack_object(
    read_all: Callable[[int], bytes],
    read_some: Optional[Callable[[int], bytes]] = None,
    zlib_bufsize: int = _ZLIB_BUFSIZE,
) -> tuple[UnpackedObject, bytes]:
    """Read one pack entry: header, optional delta base and zlib body.

    Args:
      read_all: Callable returning exactly the requested number of bytes.
      read_some: Callable that may return fewer bytes; defaults to read_all.
      zlib_bufsize: Read size used while inflating.
    Returns: Tuple of (unpacked object, bytes read past its end).
    """
    type_num, size = _read_varint_header(read_all)
    delta_base: Union[int, bytes, None] = None
    if type_num == OFS_DELTA:
        delta_base = _read_ofs_delta_base(read_all)
    elif type_num == REF_DELTA:
        delta_base = sha_to_hex(read_all(PACK_SHA_SIZE))
    elif type_num not in (1, 2, 3, 4):
        raise CorruptPack(f"invalid object type {type_num}")

    unpacked = UnpackedObject(type_num, delta_base=delta_base, decomp_len=size)
    unused = read_zlib_chunks(read_some or read_all, unpacked, buffer_size=zlib_bufsize)
    return unpacked, unused


class PackStreamReader:
    """Parse a pack as it streams in.

    ``read`` may return fewer bytes than asked for, as the data channel of
    a sideband stream does. Every byte except the trailing checksum is fed
    to a running SHA-1 so that the trailer can be verified at the end.
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        zlib_bufsize: int = _ZLIB_BUFSIZE,
    ) -> None:
        self.read_some = read
        self.sha = hashlib.sha1()
        self._num_objects = 0
        # Bytes taken off the wire so far.
        self._offset = 0
        # Bytes taken off the wire but not consumed by the parser yet.
        self._pending = bytearray()
        # The last PACK_SHA_SIZE bytes seen, which may be the trailer.
        self._trailer: deque[int] = deque()
        self._zlib_bufsize = zlib_bufsize

    def _pull(self, size: int) -> bytes:
        data = self.read_some(size)
        self._offset += len(data)
        # Hold back the newest PACK_SHA_SIZE bytes from the hash.
        if len(data) >= PACK_SHA_SIZE:
            self.sha.update(bytes(self._trailer))
            self.sha.update(data[:-PACK_SHA_SIZE])
            self._trailer = deque(data[-PACK_SHA_SIZE:])
            return data
        self._trailer.extend(data)
        overflow = len(self._trailer) - PACK_SHA_SIZE
        if overflow > 0:
            self.sha.update(bytes(self._trailer.popleft() for _ in range(overflow)))
        return data

    @property
    def offset(self) -> int:
        """Offset of the next unparsed byte."""
        return self._offset - len(self._pending)

    def read(self, size: int) -> bytes:
        """Return exactly size bytes."""
        out = bytearray(self._pending[:size])
        del self._pending[:size]
        while len(out) < size:
            chunk = self._pull(size - len(out))
            if not chunk:
                raise CorruptPack("unexpected end of pack stream")
            out += chunk
        return bytes(out)

    def recv(self, size: int) -> bytes:
        """Return between one and size bytes, or b"" at the end of the stream."""
        if not self._pending:
            return self._pull(size)
        out = bytes(self._pending[:size])
        del self._pending[:size]
        return out

    def __len__(self) -> int:
        return self._num_objects

    def read_objects(self) -> Iterator[UnpackedObject]:
        """Yield each entry of the pack, then verify the trailer.

        Deltas are yielded unresolved, with ``offset`` and ``delta_base``
        set so that a PackInflater can resolve them.

        Raises:
          ChecksumMismatch: if the trailer does not match the pack contents
          CorruptPack: if the stream is truncated or otherwise invalid
        """
        _version, self._num_objects = read_pack_header(self.read)
        for _ in range(self._num_objects):
            offset = self.offset
            unpacked, unused = unpack_object(
                self.read, read_some=self.recv, zlib_bufsize=self._zlib_bufsize
            )
            unpacked.offset = offset
            self._pending[:0] = unused
            yield unpacked

        # Consume the trailer.
        self.read(PACK_SHA_SIZE)
        pack_sha = bytes(self._trailer)
        if pack_sha != self.sha.digest():
            raise ChecksumMismatch(sha_to_hex(pack_sha), self.sha.hexdigest())


class PackInflater:
    """Resolve the deltas of a pack into full objects.

    Objects are recorded as they are read from the stream. Iterating then
    yields every object exactly once, in an order where each delta comes
    after its base: full objects first, each followed by the chain of deltas
    built on it, and finally chains whose base lives outside the pack.
    """

    def __init__(self, resolve_ext_ref: Optional[ResolveExtRefFn] = None) -> None:
        """Initialize a PackInflater.

        Args:
          resolve_ext_ref: Optional function to look up ref-delta bases
            (by hex id) that are not part of the pack
        """
        self._resolve_ext_ref = resolve_ext_ref
        self._pending_ofs: dict[int, list[UnpackedObject]] = defaultdict(list)
        self._pending_ref: dict[bytes, list[UnpackedObject]] = defaultdict(list)
        self._full: list[UnpackedObject] = []
        self._ext_refs: list[bytes] = []

    def record(self, unpacked: UnpackedObject) -> None:
        """Record an unpacked object for later processing."""
        type_num = unpacked.pack_type_num
        if type_num == OFS_DELTA:
            assert isinstance(unpacked.delta_base, int)
            assert unpacked.offset is not None
            base_offset = unpacked.offset - unpacked.delta_base
            self._pending_ofs[base_offset].append(unpacked)
        elif type_num == REF_DELTA:
            assert isinstance(unpacked.delta_base, bytes)
            self._pending_ref[unpacked.delta_base].append(unpacked)
        else:
            self._full.append(unpacked)

    def _resolve(
        self, unpacked: UnpackedObject, obj_type_num: int, base_chunks: list[bytes]
    ) -> UnpackedObject:
        unpacked.obj_type_num = obj_type_num
        unpacked.obj_chunks = apply_delta(base_chunks, unpacked.decomp_chunks)
        return unpacked

    def _follow_chain(self, base: UnpackedObject) -> Iterator[UnpackedObject]:
        todo = [base]
        while todo:
            unpacked = todo.pop()
            yield unpacked
            assert unpacked.obj_type_num is not None
            assert unpacked.obj_chunks is not None
            unblocked = chain(
                self._pending_ofs.pop(unpacked.offset, [])
                if unpacked.offset is not None
                else [],
                self._pending_ref.pop(unpacked.sha(), []),
            )
            todo.extend(
                self._resolve(dependent, unpacked.obj_type_num, unpacked.obj_chunks)
                for dependent in unblocked
            )

    def _walk_ref_chains(self) -> Iterator[UnpackedObject]:
        if self._resolve_ext_ref is not None:
            for base_sha in sorted(self._pending_ref):
                if base_sha not in self._pending_ref:
                    continue
                try:
                    type_num, chunks = self._resolve_ext_ref(base_sha)
                except KeyError:
                    continue
                self._ext_refs.append(base_sha)
                for dependent in self._pending_ref.pop(base_sha):
                    yield from self._follow_chain(
                        self._resolve(dependent, type_num, chunks)
                    )
        if self._pending_ref:
            raise UnresolvedDeltas(sorted(self._pending_ref))

    def __iter__(self) -> Iterator[UnpackedObject]:
        """Iterate over the resolved objects."""
        for unpacked in self._full:
            yield from self._follow_chain(unpacked)
        yield from self._walk_ref_chains()
        if self._pending_ofs:
            raise CorruptPack(
                "ofs-delta bases not found at offsets "
                + ", ".join(str(offset) for offset in sorted(self._pending_ofs))
            )

    def ext_refs(self) -> list[bytes]:
        """Return the ids of bases found outside the pack."""
        return self._ext_refs


def store_ext_ref_resolver(store: BaseObjectStore) -> ResolveExtRefFn:
    """Create a ResolveExtRefFn that looks bases up in an object store."""

    def resolve_ext_ref(sha: bytes) -> tuple[int, list[bytes]]:
        try:
            type_num, body = store.get_raw(sha)
        except MissingObject as e:
            raise KeyError(sha) from e
        return type_num, [body]

    return resolve_ext_ref


def unpack_into(
    store: BaseObjectStore,
    read: Callable[[int], bytes],
) -> list[bytes]:
    """Decode a pack stream and add all of its objects to store.

    Ref-delta bases that are not part of the pack are looked up in store.
    Each object is checked to parse as its type before it is added.

    Args:
      store: Object store to add objects to
      read: Read function for the pack stream
    Returns: Ids of the objects in the pack, in resolution order
    Raises:
      CorruptPack: if the pack is invalid in any way
    """
    reader = PackStreamReader(read)
    inflater = PackInflater(resolve_ext_ref=store_ext_ref_resolver(store))
    for unpacked in reader.read_objects():
        inflater.record(unpacked)
    shas = []
    for unpacked in inflater:
        assert unpacked.obj_type_num is not None and unpacked.obj_chunks is not None
        body = b"".join(unpacked.obj_chunks)
        try:
            ShaFile.from_raw_string(unpacked.obj_type_num, body).check()
        except ObjectFormatException as e:
            raise CorruptPack(f"invalid object at offset {unpacked.offset}: {e}") from e
        shas.append(store.add_raw(unpacked.obj_type_num, body))
    if len(shas) != len(reader):
        raise CorruptPack(
            f"pack announced {len(reader)} objects, resolved {len(shas)}"
        )
    logger.debug(
        "unpacked %d objects (%d external delta bases)",
        len(shas),
        len(inflater.ext_refs()),
    )
    return shas


def _encode_ofs_delta_base(distance: int) -> bytes:
    # Inverse of _read_ofs_delta_base: most significant group first.
    groups = [distance & 0x7F]
    distance >>= 7
    while distance:
        distance -= 1
        groups.append(0x80 | (distance & 0x7F))
        distance >>= 7
    return bytes(reversed(groups))


def pack_object_header(
    type_num: int, delta_base: Union[bytes, int, None], size: int
) -> bytearray:
    """Encode the header that precedes a packed object.

    Args:
      type_num: Pack type number (1-4, OFS_DELTA or REF_DELTA).
      delta_base: Distance back to the base for OFS_DELTA, raw base id for
        REF_DELTA, None otherwise.
      size: Size of the uncompressed body.
    """
    header = bytearray()
    byte = (type_num << 4) | (size & 0x0F)
    size >>= 4
    while size:
        header.append(byte | 0x80)
        byte = size & 0x7F
        size >>= 7
    header.append(byte)
    if type_num == OFS_DELTA:
        assert isinstance(delta_base, int)
        header += _encode_ofs_delta_base(delta_base)
    elif type_num == REF_DELTA:
        assert isinstance(delta_base, bytes) and len(delta_base) == PACK_SHA_SIZE
        header += delta_base
    return header


def pack_object_chunks(
    type: int,
    chunks: list[bytes],
    delta_base: Union[bytes, int, None] = None,
    compression_level: int = -1,
) -> Iterator[bytes]:
    """Generate chunks for a pack object.

    Args:
      type: Numeric type of the object
      chunks: Object contents (or delta instructions for delta types)
      delta_base: Offset distance or raw base id for delta types
      compression_level: the zlib compression level
    Returns: Chunks
    """
    yield bytes(pack_object_header(type, delta_base, sum(map(len, chunks))))
    compressor = zlib.compressobj(level=compression_level)
    for data in chunks:
        yield compressor.compress(data)
    yield compressor.flush()


def pack_header_chunks(num_objects: int) -> Iterator[bytes]:
    """Yield chunks for a pack header."""
    yield PACK_SIGNATURE
    yield struct.pack(b">L", 2)
    yield struct.pack(b">L", num_objects)


def full_unpacked_object(o: ShaFile) -> UnpackedObject:
    """Create an UnpackedObject that stores o in full."""
    return UnpackedObject(
        o.type_num,
        delta_base=None,
        decomp_chunks=o.as_raw_chunks(),
        sha=o.id,
    )


def delta_unpacked_object(base: ShaFile, target: ShaFile) -> UnpackedObject:
    """Create an UnpackedObject that stores target as a delta against base."""
    if base.type_num != target.type_num:
        raise ValueError("delta base must have the same type as the target")
    return UnpackedObject(
        REF_DELTA,
        delta_base=base.id,
        decomp_chunks=list(create_delta(base.as_raw_string(), target.as_raw_string())),
        sha=target.id,
    )


class PackChunkGenerator:
    """Generate the chunks of a pack from a sequence of records.

    Delta records name their base by hex id. When ofs_delta is enabled and
    the base was written earlier in the same pack, the record is emitted as
    an ofs-delta; otherwise as a ref-delta.
    """

    def __init__(
        self,
        records: Sequence[UnpackedObject],
        progress: Optional[Callable[[bytes], None]] = None,
        compression_level: int = -1,
        ofs_delta: bool = True,
    ) -> None:
        """Initialize a PackChunkGenerator.

        Args:
          records: Records to write
          progress: Optional progress reporting function
          compression_level: the zlib compression level
          ofs_delta: Whether ofs-deltas may be used
        """
        self.cs = hashlib.sha1()
        self.entries: dict[bytes, int] = {}
        self._records = records
        self._progress = progress
        self._compression_level = compression_level
        self._ofs_delta = ofs_delta

    def sha1digest(self) -> bytes:
        """Return the raw SHA-1 of the pack; valid once iteration finished."""
        return self.cs.digest()

    def __iter__(self) -> Iterator[bytes]:
        return self._pack_data_chunks()

    def _pack_data_chunks(self) -> Iterator[bytes]:
        num_records = len(self._records)
        offset = 0
        for chunk in pack_header_chunks(num_records):
            yield chunk
            self.cs.update(chunk)
            offset += len(chunk)
        for i, unpacked in enumerate(self._records):
            type_num = unpacked.pack_type_num
            delta_base: Union[bytes, int, None] = None
            if type_num in DELTA_TYPES:
                assert isinstance(unpacked.delta_base, bytes)
                base_offset = self.entries.get(unpacked.delta_base)
                if self._ofs_delta and base_offset is not None:
                    type_num = OFS_DELTA
                    delta_base = offset - base_offset
                else:
                    type_num = REF_DELTA
                    delta_base = hex_to_sha(unpacked.delta_base)
            if self._progress is not None and i % 1000 == 0:
                self._progress(
                    (f"writing pack data: {i}/{num_records}\r").encode("ascii")
                )
            object_size = 0
            for chunk in pack_object_chunks(
                type_num,
                unpacked.decomp_chunks,
                delta_base=delta_base,
                compression_level=self._compression_level,
            ):
                yield chunk
                self.cs.update(chunk)
                object_size += len(chunk)
            self.entries[unpacked.sha()] = offset
            offset += object_size
        pack_sha = self.cs.digest()
        yield pack_sha


def write_pack_data(
    write: Callable[[bytes], object],
    records: Sequence[UnpackedObject],
    progress: Optional[Callable[[bytes], None]] = None,
    compression_level: int = -1,
    ofs_delta: bool = True,
) -> bytes:
    """Write a new pack data stream.

    Args:
      write: Write function to use
      records: Sequence of UnpackedObjects to write
      progress: Optional progress reporting function
      compression_level: the zlib compression level
      ofs_delta: Whether ofs-deltas may be used
    Returns: Raw SHA-1 checksum of the pack
    """
    chunk_generator = PackChunkGenerator(
        records,
        progress=progress,
        compression_level=compression_level,
        ofs_delta=ofs_delta,
    )
    for chunk in chunk_generator:
        write(chunk)
    return chunk_generator.sha1digest()


def write_pack_objects(
    write: Callable[[bytes], object],
    objects: Iterable[ShaFile],
    progress: Optional[Callable[[bytes], None]] = None,
    compression_level: int = -1,
) -> bytes:
    """Write a pack that stores every object in full.

    Args:
      write: Write function to use
      objects: Objects to write to the pack
      progress: Optional progress reporting function
      compression_level: the zlib compression level
    Returns: Raw SHA-1 checksum of the pack
    """
    return write_pack_data(
        write,
        [full_unpacked_object(o) for o in objects],
        progress=progress,
        compression_level=compression_level,
    )


def pack_objects_to_bytes(objects: Iterable[ShaFile]) -> bytes:
    """Serialize objects into a complete pack held in memory."""
    f = BytesIO()
    write_pack_objects(f.write, objects)
    return f.getvalue()


# A single copy instruction carries at most two length bytes.
_MAX_COPY_LEN = 0xFFFF
_MAX_INSERT_LEN = 0x7F


def _delta_encode_size(size: int) -> bytes:
    out = bytearray()
    while True:
        byte = size & 0x7F
        size >>= 7
        if not size:
            out.append(byte)
            return bytes(out)
        out.append(byte | 0x80)


def _encode_copy_operation(start: int, length: int) -> bytes:
    # Only the non-zero bytes of offset and length are emitted; the low
    # seven bits of the opcode say which ones are present.
    opcode = 0x80
    args = bytearray()
    for bit, value in enumerate(start.to_bytes(4, "little") + length.to_bytes(2, "little")):
        if value:
            opcode |= 1 << bit
            args.append(value)
    return bytes([opcode]) + bytes(args)


def create_delta(base_buf: bytes, target_buf: bytes) -> Iterator[bytes]:
    """Compute a git delta that turns base_buf into target_buf.

    Matching blocks found by difflib become copy instructions; everything
    else in the target is inserted literally.

    Returns: Iterator over delta instruction chunks
    """
    yield _delta_encode_size(len(base_buf))
    yield _delta_encode_size(len(target_buf))
    matcher = SequenceMatcher(isjunk=None, a=base_buf, b=target_buf, autojunk=False)
    for opcode, i1, i2, j1, j2 in matcher.get_opcodes():
        if opcode == "equal":
            for start in range(i1, i2, _MAX_COPY_LEN):
                yield _encode_copy_operation(start, min(_MAX_COPY_LEN, i2 - start))
        elif opcode in ("replace", "insert"):
            for start in range(j1, j2, _MAX_INSERT_LEN):
                literal = target_buf[start : min(start + _MAX_INSERT_LEN, j2)]
                yield bytes([len(literal)])
                yield literal


def _read_delta_size(delta: bytes, index: int) -> tuple[int, int]:
    size = 0
    shift = 0
    while True:
        if index >= len(delta):
            raise ApplyDeltaError("truncated delta header")
        byte = delta[index]
        index += 1
        size |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return size, index


def apply_delta(
    src_buf: Union[bytes, list[bytes]], delta: Union[bytes, list[bytes]]
) -> list[bytes]:
    """Apply a git delta to its base.

    Args:
      src_buf: Base object body, whole or in chunks
      delta: Delta instructions, whole or in chunks
    Returns: Chunks of the resulting object body
    Raises:
      ApplyDeltaError: if the delta is malformed or does not fit src_buf
    """
    if not isinstance(src_buf, bytes):
        src_buf = b"".join(src_buf)
    if not isinstance(delta, bytes):
        delta = b"".join(delta)

    src_size, index = _read_delta_size(delta, 0)
    dest_size, index = _read_delta_size(delta, index)
    if src_size != len(src_buf):
        raise ApplyDeltaError(
            f"delta expects a {src_size} byte base, got {len(src_buf)} bytes"
        )

    out: list[bytes] = []
    while index < len(delta):
        opcode = delta[index]
        index += 1
        if opcode & 0x80:
            # Copy: up to four offset bytes, then up to three size bytes.
            args = bytearray(7)
            for bit in range(7):
                if opcode & (1 << bit):
                    if index >= len(delta):
                        raise ApplyDeltaError("truncated copy instruction")
                    args[bit] = delta[index]
                    index += 1
            offset = int.from_bytes(args[:4], "little")
            length = int.from_bytes(args[4:], "little") or 0x10000
            if offset + length > src_size or length > dest_size:
                raise ApplyDeltaError(
                    f"copy of {length} bytes at {offset} exceeds source"
                )
            out.append(src_buf[offset : offset + length])
        elif opcode:
            if index + opcode > len(delta):
                raise ApplyDeltaError("truncated insert instruction")
            out.append(delta[index : index + opcode])
            index += opcode
        else:
            raise ApplyDeltaError("invalid delta opcode 0")

    if sum(len(chunk) for chunk in out) != dest_size:
        raise ApplyDeltaError("delta result has the wrong size")
    return out


__all__ = [
    "DELTA_TYPES",
    "OFS_DELTA",
    "REF_DELTA",
    "PackChunkGenerator",
    "PackInflater",
    "PackStreamReader",
    "UnpackedObject",
    "apply_delta",
    "create_delta",
    "full_unpacked_object",
    "pack_objects_to_bytes",
    "unpack_into",
    "write_pack_data",
    "write_pack_objects",
]
