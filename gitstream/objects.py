# objects.py -- Access to base git objects
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

"""Access to base git objects.

Object ids are handled as 40 character hex strings (as ``bytes``). The raw
20 byte form only appears inside serialized trees and packs.
"""

import binascii
import enum
import hashlib
import stat
from collections.abc import Callable, Iterable, Iterator
from io import BytesIO
from typing import NamedTuple, Optional, Union

from .errors import NotTreeError, ObjectFormatException

ZERO_SHA = b"0" * 40

_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"
_ENCODING_HEADER = b"encoding"
_GPGSIG_HEADER = b"gpgsig"
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"
_TAG_HEADER = b"tag"
_TAGGER_HEADER = b"tagger"

S_IFGITLINK = 0o160000


class FileType(enum.IntEnum):
    """Modes a blob (or submodule link) can have in a tree."""

    REGULAR = 0o100644
    GROUP_WRITEABLE = 0o100664
    EXECUTABLE = 0o100755
    SYMLINK = 0o120000
    GITLINK = S_IFGITLINK


def S_ISGITLINK(m: int) -> bool:
    """Check if a mode indicates a submodule.

    Args:
      m: Mode to check
    Returns: a ``boolean``
    """
    return stat.S_IFMT(m) == S_IFGITLINK


def sha_to_hex(sha: bytes) -> bytes:
    """Takes a string and returns the hex of the sha within."""
    hexsha = binascii.hexlify(sha)
    assert len(hexsha) == 40, f"Incorrect length of sha1 string: {hexsha!r}"
    return hexsha


def hex_to_sha(hex: Union[bytes, str]) -> bytes:
    """Takes a hex sha and returns a binary sha."""
    assert len(hex) == 40, f"Incorrect length of hexsha: {hex!r}"
    try:
        return binascii.unhexlify(hex)
    except (TypeError, binascii.Error) as exc:
        if not isinstance(hex, bytes):
            raise
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: Union[bytes, str]) -> bool:
    """Check whether hex is a full, valid hex object id."""
    if len(hex) != 40:
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True


def object_class(type: Union[bytes, int]) -> type["ShaFile"]:
    """Get the object class corresponding to the given type.

    Args:
      type: Either a type name string or a numeric type.
    Returns: The ShaFile subclass corresponding to the given type.
    Raises:
      ObjectFormatException: for an unknown type
    """
    try:
        return _TYPE_MAP[type]
    except KeyError as exc:
        raise ObjectFormatException(f"unknown object type {type!r}") from exc


def object_header(num_type: int, length: int) -> bytes:
    """Return an object header for the given numeric type and text length."""
    cls = object_class(num_type)
    return cls.type_name + b" " + str(length).encode("ascii") + b"\0"


def hash_object(type_num: int, body: bytes) -> bytes:
    """Compute the hex id of an object from its type and raw body."""
    sha = hashlib.sha1(object_header(type_num, len(body)))
    sha.update(body)
    return sha.hexdigest().encode("ascii")


def serializable_property(name: str, docstring: Optional[str] = None) -> property:
    """A property that helps tracking whether serialization is necessary."""

    def set(obj: "ShaFile", value: object) -> None:
        obj._ensure_parsed()
        setattr(obj, "_" + name, value)
        obj._needs_serialization = True

    def get(obj: "ShaFile") -> object:
        obj._ensure_parsed()
        return getattr(obj, "_" + name)

    return property(get, set, doc=docstring)


def check_identity(identity: bytes, error_msg: str) -> None:
    """Check if the specified identity is valid.

    This will raise an exception if the identity is not valid.

    Args:
      identity: Identity string, e.g. ``b"Jane Doe <jane@example.com>"``
      error_msg: Error message to use in exception
    """
    email_start = identity.find(b"<")
    email_end = identity.find(b">")
    if (
        email_start < 0
        or email_end < 0
        or email_end <= email_start
        or identity.find(b"<", email_start + 1) >= 0
        or identity.find(b">", email_end + 1) >= 0
        or not identity.endswith(b">")
        or b"\n" in identity
        or b"\0" in identity
    ):
        raise ObjectFormatException(error_msg)


def format_identity(name: Union[bytes, str], email: Union[bytes, str]) -> bytes:
    """Build an identity string from a name and an email address.

    Raises:
      ObjectFormatException: if either part contains ``<``, ``>`` or a newline
    """
    if isinstance(name, str):
        name = name.encode("utf-8")
    if isinstance(email, str):
        email = email.encode("utf-8")
    for part in (name, email):
        if any(c in part for c in (b"<", b">", b"\n", b"\0")):
            raise ObjectFormatException(f"invalid identity component {part!r}")
    if name:
        return name + b" <" + email + b">"
    return b"<" + email + b">"


def parse_timezone(text: bytes) -> tuple[int, bool]:
    """Parse a timezone text fragment (e.g. '+0100').

    Args:
      text: Text to parse.
    Returns: Tuple with timezone as seconds difference to UTC
        and a boolean indicating whether this was a UTC timezone
        prefixed with a negative sign (-0000).
    """
    if not (text[:1] in (b"+", b"-") and text[1:].isdigit()):
        raise ObjectFormatException(f"invalid timezone {text!r}")
    sign = text[:1]
    offset = int(text[1:])
    if sign == b"-":
        offset = -offset
    unnecessary_negative_timezone = offset >= 0 and sign == b"-"
    signum = ((offset < 0) and -1) or 1
    offset = abs(offset)
    hours = int(offset / 100)
    minutes = offset % 100
    return (
        signum * (hours * 3600 + minutes * 60),
        unnecessary_negative_timezone,
    )


def format_timezone(offset: int, unnecessary_negative_timezone: bool = False) -> bytes:
    """Format a timezone for Git serialization.

    Args:
      offset: Timezone offset as seconds difference to UTC
      unnecessary_negative_timezone: Whether to use a minus sign for
        UTC or positive timezones (-0000 in current git)
    """
    if offset % 60 != 0:
        raise ValueError("Unable to handle non-minute offset.")
    if offset < 0 or unnecessary_negative_timezone:
        sign = "-"
        offset = -offset
    else:
        sign = "+"
    return ("%c%02d%02d" % (sign, offset / 3600, (offset / 60) % 60)).encode("ascii")  # noqa: UP031


def _parse_identity_line(value: bytes) -> tuple[bytes, int, tuple[int, bool]]:
    try:
        identity, timetext, timezonetext = value.rsplit(b" ", 2)
        time = int(timetext)
    except ValueError as exc:
        raise ObjectFormatException(f"invalid identity line {value!r}") from exc
    return identity, time, parse_timezone(timezonetext)


def _parse_message(
    chunks: Iterable[bytes],
) -> Iterator[Union[tuple[None, None], tuple[Optional[bytes], bytes]]]:
    """Parse a message with a list of fields and a body.

    Args:
      chunks: the raw chunks of the tag or commit object.
    Returns: iterator of tuples of (field, value), one per header line, in the
        order read from the text, possibly including duplicates. Includes a
        field named None for the freeform tag/commit text.
    """
    f = BytesIO(b"".join(chunks))
    k = None
    v = b""
    eof = False

    def _strip_last_newline(value: bytes) -> bytes:
        if value and value.endswith(b"\n"):
            return value[:-1]
        return value

    # Headers may span lines; continuation lines start with a space.
    for line in f:
        if line.startswith(b" "):
            v += line[1:]
        else:
            if k is not None:
                yield (k, _strip_last_newline(v))
            if line == b"\n":
                break
            try:
                (k, v) = line.split(b" ", 1)
            except ValueError as exc:
                raise ObjectFormatException(f"invalid header line {line!r}") from exc
    else:
        eof = True
        if k is not None:
            yield (k, _strip_last_newline(v))
        yield (None, None)

    if not eof:
        yield (None, f.read())


def _format_message(
    headers: Iterable[tuple[bytes, bytes]], body: Optional[bytes]
) -> Iterator[bytes]:
    for field, value in headers:
        lines = value.split(b"\n")
        yield field + b" " + lines[0] + b"\n"
        for line in lines[1:]:
            yield b" " + line + b"\n"
    yield b"\n"
    if body:
        yield body


class ShaFile:
    """A git SHA file."""

    __slots__ = ("_chunked_text", "_needs_parsing", "_needs_serialization", "_sha")

    type_name: bytes
    type_num: int

    def __init__(self) -> None:
        """Don't call this directly."""
        self._sha: Optional[bytes] = None
        self._chunked_text: list[bytes] = []
        self._needs_parsing = False
        self._needs_serialization = True

    def _deserialize(self, chunks: list[bytes]) -> None:
        raise NotImplementedError(self._deserialize)

    def _serialize(self) -> list[bytes]:
        raise NotImplementedError(self._serialize)

    def _ensure_parsed(self) -> None:
        if self._needs_parsing:
            self._deserialize(self._chunked_text)
            self._needs_parsing = False

    def as_raw_chunks(self) -> list[bytes]:
        """Return chunks with serialization of the object."""
        if self._needs_serialization:
            self._sha = None
            self._chunked_text = self._serialize()
            self._needs_serialization = False
        return self._chunked_text

    def as_raw_string(self) -> bytes:
        """Return raw string with serialization of the object."""
        return b"".join(self.as_raw_chunks())

    def set_raw_string(self, text: bytes) -> None:
        """Set the contents of this object from a serialized string."""
        if not isinstance(text, bytes):
            raise TypeError(f"Expected bytes for text, got {text!r}")
        self.set_raw_chunks([text])

    def set_raw_chunks(self, chunks: list[bytes], sha: Optional[bytes] = None) -> None:
        """Set the contents of this object from a list of chunks."""
        self._chunked_text = chunks
        self._sha = sha
        self._needs_parsing = True
        self._needs_serialization = False

    @staticmethod
    def from_raw_string(
        type_num: int, string: bytes, sha: Optional[bytes] = None
    ) -> "ShaFile":
        """Creates an object of the indicated type from the raw string given.

        Args:
          type_num: The numeric type of the object.
          string: The raw uncompressed contents.
          sha: Optional known hex id for the object
        """
        obj = object_class(type_num)()
        obj.set_raw_chunks([string], sha)
        return obj

    @classmethod
    def from_string(cls, string: bytes) -> "ShaFile":
        """Create a ShaFile from a string."""
        obj = cls()
        obj.set_raw_string(string)
        return obj

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed
        """
        self._ensure_parsed()

    def _header(self) -> bytes:
        return object_header(self.type_num, self.raw_length())

    def raw_length(self) -> int:
        """Returns the length of the raw string of this object."""
        return sum(map(len, self.as_raw_chunks()))

    def sha(self) -> "hashlib._Hash":
        """The SHA1 object that is the name of this object."""
        ret = hashlib.sha1(self._header())
        for chunk in self.as_raw_chunks():
            ret.update(chunk)
        return ret

    @property
    def id(self) -> bytes:
        """The hex SHA of this object."""
        if self._needs_serialization or self._sha is None:
            self._sha = self.sha().hexdigest().encode("ascii")
        return self._sha

    def copy(self) -> "ShaFile":
        """Create a new copy of this SHA1 object from its raw string."""
        return ShaFile.from_raw_string(self.type_num, self.as_raw_string(), self.id)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id!r}>"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Return True if the SHAs of the two objects match."""
        return isinstance(other, ShaFile) and self.id == other.id

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)


class Blob(ShaFile):
    """A Git Blob object."""

    __slots__ = ()

    type_name = b"blob"
    type_num = 3

    def __init__(self) -> None:
        super().__init__()
        self._needs_serialization = False

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._chunked_text = chunks

    def _serialize(self) -> list[bytes]:
        return self._chunked_text

    def _get_data(self) -> bytes:
        return self.as_raw_string()

    def _set_data(self, data: bytes) -> None:
        self.set_raw_string(data)

    data = property(
        _get_data, _set_data, doc="The text contained within the blob object."
    )

    @classmethod
    def from_string(cls, string: bytes) -> "Blob":
        """Create a blob from its contents."""
        blob = cls()
        blob.set_raw_string(string)
        return blob


class Tag(ShaFile):
    """A Git Tag object.

    Tags are read when they are fetched; gitstream does not create them
    except in tests.
    """

    __slots__ = (
        "_message",
        "_name",
        "_object_class",
        "_object_sha",
        "_tag_time",
        "_tag_timezone",
        "_tag_timezone_neg_utc",
        "_tagger",
    )

    type_name = b"tag"
    type_num = 4

    def __init__(self) -> None:
        super().__init__()
        self._tagger: Optional[bytes] = None
        self._tag_time: Optional[int] = None
        self._tag_timezone: Optional[int] = None
        self._tag_timezone_neg_utc = False
        self._message: Optional[bytes] = None

    def _serialize(self) -> list[bytes]:
        headers = []
        headers.append((_OBJECT_HEADER, self._object_sha))
        headers.append((_TYPE_HEADER, self._object_class.type_name))
        headers.append((_TAG_HEADER, self._name))
        if self._tagger:
            if self._tag_time is None:
                headers.append((_TAGGER_HEADER, self._tagger))
            else:
                assert self._tag_timezone is not None
                headers.append(
                    (
                        _TAGGER_HEADER,
                        b" ".join(
                            [
                                self._tagger,
                                str(self._tag_time).encode("ascii"),
                                format_timezone(
                                    self._tag_timezone, self._tag_timezone_neg_utc
                                ),
                            ]
                        ),
                    )
                )
        return list(_format_message(headers, self._message))

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the metadata attached to the tag."""
        self._tagger = None
        self._tag_time = None
        self._tag_timezone = None
        self._message = None
        for field, value in _parse_message(chunks):
            if field == _OBJECT_HEADER:
                self._object_sha = value
            elif field == _TYPE_HEADER:
                assert isinstance(value, bytes)
                self._object_class = object_class(value)
            elif field == _TAG_HEADER:
                self._name = value
            elif field == _TAGGER_HEADER:
                assert value is not None
                if b"> " not in value:
                    self._tagger = value
                else:
                    (
                        self._tagger,
                        self._tag_time,
                        (self._tag_timezone, self._tag_timezone_neg_utc),
                    ) = _parse_identity_line(value)
            elif field is None:
                self._message = value
            else:
                raise ObjectFormatException(f"Unknown field {field!r}")

    def _get_object(self) -> tuple[type[ShaFile], bytes]:
        """Get the object pointed to by this tag.

        Returns: tuple of (object class, sha).
        """
        self._ensure_parsed()
        return (self._object_class, self._object_sha)

    def _set_object(self, value: tuple[type[ShaFile], bytes]) -> None:
        self._ensure_parsed()
        (self._object_class, self._object_sha) = value
        self._needs_serialization = True

    object = property(_get_object, _set_object)

    name = serializable_property("name", "The name of this tag")
    tagger = serializable_property(
        "tagger", "Returns the name of the person who created this tag"
    )
    tag_time = serializable_property(
        "tag_time",
        "The creation timestamp of the tag. As the number of seconds since the epoch",
    )
    tag_timezone = serializable_property(
        "tag_timezone", "The timezone that tag_time is in."
    )
    message = serializable_property("message", "the message attached to this tag")


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: bytes

    def in_path(self, path: bytes) -> "TreeEntry":
        """Return a copy of this entry with the given path prepended."""
        if not isinstance(self.path, bytes):
            raise TypeError(f"Expected bytes for path, got {path!r}")
        return TreeEntry(posixpath_join(path, self.path), self.mode, self.sha)


def posixpath_join(base: bytes, name: bytes) -> bytes:
    """Join two tree paths, treating an empty base as the root."""
    if not base:
        return name
    return base + b"/" + name


def check_tree_name(name: bytes) -> None:
    """Check that name can be stored as a single tree entry.

    Raises:
      ObjectFormatException: if the name is empty, contains a slash or NUL,
        or is ``.`` or ``..``
    """
    if not name or b"/" in name or b"\0" in name or name in (b".", b".."):
        raise ObjectFormatException(f"invalid tree entry name {name!r}")


_OCTAL_DIGITS = frozenset(b"01234567")


def parse_tree(text: bytes) -> Iterator[tuple[bytes, int, bytes]]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
    Returns: iterator of tuples of (name, mode, sha)

    Raises:
      ObjectFormatException: if the object was malformed in some way
    """
    count = 0
    length = len(text)
    while count < length:
        mode_end = text.find(b" ", count)
        if mode_end < 0:
            raise ObjectFormatException("truncated tree entry mode")
        mode_text = text[count:mode_end]
        if not mode_text or not _OCTAL_DIGITS.issuperset(mode_text):
            raise ObjectFormatException(f"Invalid mode {mode_text!r}")
        mode = int(mode_text, 8)
        name_end = text.find(b"\0", mode_end)
        if name_end < 0:
            raise ObjectFormatException("truncated tree entry name")
        name = text[mode_end + 1 : name_end]
        count = name_end + 21
        sha = text[name_end + 1 : count]
        if len(sha) != 20:
            raise ObjectFormatException("Sha has invalid length")
        yield (name, mode, sha_to_hex(sha))


def key_entry(entry: tuple[bytes, tuple[int, bytes]]) -> bytes:
    """Sort key for tree entry.

    Args:
      entry: (name, value) tuple
    """
    (name, (mode, _sha)) = entry
    if stat.S_ISDIR(mode):
        name += b"/"
    return name


def sorted_tree_items(
    entries: dict[bytes, tuple[int, bytes]],
) -> Iterator[TreeEntry]:
    """Iterate over a tree entries dictionary in serialization order.

    Args:
      entries: Dictionary mapping names to (mode, sha) tuples
    Returns: Iterator over (name, mode, hexsha)
    """
    for name, entry in sorted(entries.items(), key=key_entry):
        mode, hexsha = entry
        yield TreeEntry(name, mode, hexsha)


def serialize_tree(items: Iterable[tuple[bytes, int, bytes]]) -> Iterator[bytes]:
    """Serialize the items in a tree to a text.

    Args:
      items: Sorted iterable over (name, mode, sha) tuples
    Returns: Serialized tree text as chunks
    """
    for name, mode, hexsha in items:
        yield (f"{mode:04o}").encode("ascii") + b" " + name + b"\0" + hex_to_sha(hexsha)


class Tree(ShaFile):
    """A Git tree object."""

    __slots__ = ("_entries",)

    type_name = b"tree"
    type_num = 2

    def __init__(self) -> None:
        super().__init__()
        self._entries: dict[bytes, tuple[int, bytes]] = {}

    def __contains__(self, name: bytes) -> bool:
        self._ensure_parsed()
        return name in self._entries

    def __getitem__(self, name: bytes) -> tuple[int, bytes]:
        self._ensure_parsed()
        return self._entries[name]

    def __setitem__(self, name: bytes, value: tuple[int, bytes]) -> None:
        """Set a tree entry by name.

        Args:
          name: The name of the entry, as a string.
          value: A tuple of (mode, hexsha), where mode is the mode of the
            entry as an integral type and hexsha is the hex SHA of the entry as
            a string.
        """
        check_tree_name(name)
        mode, hexsha = value
        self._ensure_parsed()
        self._entries[name] = (mode, hexsha)
        self._needs_serialization = True

    def __delitem__(self, name: bytes) -> None:
        self._ensure_parsed()
        del self._entries[name]
        self._needs_serialization = True

    def __len__(self) -> int:
        self._ensure_parsed()
        return len(self._entries)

    def __iter__(self) -> Iterator[bytes]:
        self._ensure_parsed()
        return iter(self._entries)

    def add(self, name: bytes, mode: int, hexsha: bytes) -> None:
        """Add an entry to the tree.

        Args:
          mode: The mode of the entry as an integral type. Not all
            possible modes are supported by git; see check() for details.
          name: The name of the entry, as a string.
          hexsha: The hex SHA of the entry as a string.
        """
        self[name] = (mode, hexsha)

    def iteritems(self) -> Iterator[TreeEntry]:
        """Iterate over entries in the order in which they would be serialized.

        Returns: Iterator over (name, mode, sha) tuples
        """
        self._ensure_parsed()
        return sorted_tree_items(self._entries)

    def items(self) -> list[TreeEntry]:
        """Return the sorted entries in this tree.

        Returns: List with (name, mode, sha) tuples
        """
        return list(self.iteritems())

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the entries in the tree."""
        entries = {}
        for name, mode, hexsha in parse_tree(b"".join(chunks)):
            if name in entries:
                raise ObjectFormatException(f"duplicate entry {name!r}")
            entries[name] = (mode, hexsha)
        self._entries = entries

    def _serialize(self) -> list[bytes]:
        return list(serialize_tree(self.iteritems()))

    def lookup_path(
        self, lookup_obj: Callable[[bytes], ShaFile], path: bytes
    ) -> tuple[int, bytes]:
        """Look up an object in a Git tree.

        Args:
          lookup_obj: Callback for retrieving object by SHA1
          path: Path to lookup
        Returns: A tuple of (mode, SHA) of the resulting path.
        Raises:
          KeyError: if a path component does not exist
          NotTreeError: if a path component is not a directory
        """
        parts = path.split(b"/")
        sha = self.id
        mode: Optional[int] = None
        for i, p in enumerate(parts):
            if not p:
                continue
            if mode is not None and not stat.S_ISDIR(mode):
                raise NotTreeError(sha)
            obj = lookup_obj(sha)
            if not isinstance(obj, Tree):
                raise NotTreeError(sha)
            mode, sha = obj[p]
        if mode is None:
            return stat.S_IFDIR, sha
        return mode, sha


class Commit(ShaFile):
    """A git commit object."""

    __slots__ = (
        "_author",
        "_author_time",
        "_author_timezone",
        "_author_timezone_neg_utc",
        "_commit_time",
        "_commit_timezone",
        "_commit_timezone_neg_utc",
        "_committer",
        "_encoding",
        "_extra",
        "_gpgsig",
        "_message",
        "_parents",
        "_tree",
    )

    type_name = b"commit"
    type_num = 1

    def __init__(self) -> None:
        super().__init__()
        self._parents: list[bytes] = []
        self._encoding: Optional[bytes] = None
        self._extra: list[tuple[bytes, bytes]] = []
        self._author_timezone_neg_utc = False
        self._commit_timezone_neg_utc = False
        self._gpgsig: Optional[bytes] = None
        self._message = b""

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._parents = []
        self._extra = []
        self._tree = None
        self._author = None
        self._committer = None
        self._encoding = None
        self._gpgsig = None
        self._message = b""
        author_info: tuple = (None, None, (None, None))
        commit_info: tuple = (None, None, (None, None))
        for field, value in _parse_message(chunks):
            if field == _TREE_HEADER:
                self._tree = value
            elif field == _PARENT_HEADER:
                assert value is not None
                self._parents.append(value)
            elif field == _AUTHOR_HEADER:
                assert value is not None
                author_info = _parse_identity_line(value)
            elif field == _COMMITTER_HEADER:
                assert value is not None
                commit_info = _parse_identity_line(value)
            elif field == _ENCODING_HEADER:
                self._encoding = value
            elif field == _GPGSIG_HEADER:
                self._gpgsig = value
            elif field is None:
                self._message = value or b""
            else:
                assert value is not None
                self._extra.append((field, value))
        if self._tree is None:
            raise ObjectFormatException("commit without tree")

        (
            self._author,
            self._author_time,
            (self._author_timezone, self._author_timezone_neg_utc),
        ) = author_info
        (
            self._committer,
            self._commit_time,
            (self._commit_timezone, self._commit_timezone_neg_utc),
        ) = commit_info

    def _serialize(self) -> list[bytes]:
        headers = []
        headers.append((_TREE_HEADER, self._tree))
        for p in self._parents:
            headers.append((_PARENT_HEADER, p))
        headers.append(
            (
                _AUTHOR_HEADER,
                b" ".join(
                    [
                        self._author,
                        str(self._author_time).encode("ascii"),
                        format_timezone(
                            self._author_timezone, self._author_timezone_neg_utc
                        ),
                    ]
                ),
            )
        )
        headers.append(
            (
                _COMMITTER_HEADER,
                b" ".join(
                    [
                        self._committer,
                        str(self._commit_time).encode("ascii"),
                        format_timezone(
                            self._commit_timezone, self._commit_timezone_neg_utc
                        ),
                    ]
                ),
            )
        )
        if self.encoding:
            headers.append((_ENCODING_HEADER, self.encoding))
        headers.extend(self._extra)
        if self._gpgsig:
            headers.append((_GPGSIG_HEADER, self._gpgsig))
        return list(_format_message(headers, self._message))

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed in some way
        """
        super().check()
        if self._author is None:
            raise ObjectFormatException("commit without author")
        if self._committer is None:
            raise ObjectFormatException("commit without committer")
        check_identity(self._author, "invalid author")
        check_identity(self._committer, "invalid committer")

    tree = serializable_property("tree", "Tree that is the state of this commit")

    def _get_parents(self) -> list[bytes]:
        """Return a list of parents of this commit."""
        self._ensure_parsed()
        return self._parents

    def _set_parents(self, value: list[bytes]) -> None:
        """Set a list of parents of this commit."""
        self._ensure_parsed()
        self._needs_serialization = True
        self._parents = value

    parents = property(
        _get_parents,
        _set_parents,
        doc="Parents of this commit, by their SHA1.",
    )

    def _get_extra(self) -> list[tuple[bytes, bytes]]:
        """Return extra settings of this commit."""
        self._ensure_parsed()
        return self._extra

    extra = property(
        _get_extra,
        doc="Extra header fields not understood (presumably added in a "
        "newer version of git). Kept verbatim so the object can "
        "be correctly reserialized. For private commit metadata, use "
        "pseudo-headers in Commit.message, rather than this field.",
    )

    author = serializable_property("author", "The name of the author of the commit")

    committer = serializable_property(
        "committer", "The name of the committer of the commit"
    )

    message = serializable_property("message", "The commit message")

    commit_time = serializable_property(
        "commit_time",
        "The timestamp of the commit. As the number of seconds since the epoch.",
    )

    commit_timezone = serializable_property(
        "commit_timezone", "The zone the commit time is in"
    )

    author_time = serializable_property(
        "author_time",
        "The timestamp the commit was written. As the number of "
        "seconds since the epoch.",
    )

    author_timezone = serializable_property(
        "author_timezone", "Returns the zone the author time is in."
    )

    encoding = serializable_property("encoding", "Encoding of the commit message.")

    gpgsig = serializable_property("gpgsig", "GPG Signature.")


OBJECT_CLASSES = (
    Commit,
    Tree,
    Blob,
    Tag,
)

_TYPE_MAP: dict[Union[bytes, int], type[ShaFile]] = {}

for cls in OBJECT_CLASSES:
    _TYPE_MAP[cls.type_name] = cls
    _TYPE_MAP[cls.type_num] = cls
