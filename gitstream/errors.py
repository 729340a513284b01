# errors.py -- errors for gitstream
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

"""Exception classes raised by gitstream.

Every exception derives from :class:`GitError`, so callers that only care
whether an operation failed can catch that single class.
"""

import binascii
from collections.abc import Sequence
from typing import Optional, Union


class GitError(Exception):
    """Base class for all gitstream errors."""

    def __eq__(self, other: object) -> bool:
        """Check equality between errors of the same class and arguments."""
        return (
            isinstance(other, GitError)
            and type(self) is type(other)
            and self.args == other.args
        )

    def __hash__(self) -> int:
        """Hash by class and arguments."""
        return hash((type(self), self.args))


class TransportError(GitError):
    """I/O failure at the transport boundary."""


class HangupException(TransportError):
    """The remote side closed the connection unexpectedly."""

    def __init__(self, stderr_lines: Optional[Sequence[bytes]] = None) -> None:
        """Initialize a HangupException.

        Args:
            stderr_lines: Optional list of stderr output lines from the remote.
        """
        message = "the remote end hung up unexpectedly"
        if stderr_lines:
            message = "\n".join(
                line.decode("utf-8", "surrogateescape") for line in stderr_lines
            )
        super().__init__(message)
        self.stderr_lines = stderr_lines

    def __eq__(self, other: object) -> bool:
        """Check equality between HangupException instances."""
        return (
            isinstance(other, HangupException)
            and self.stderr_lines == other.stderr_lines
        )

    __hash__ = GitError.__hash__


class ProtocolError(GitError):
    """Malformed framing or unexpected protocol data."""


class RemoteError(ProtocolError):
    """The remote reported a fatal error (ERR line or sideband channel 3)."""


class UnsupportedServer(GitError):
    """The remote lacks a capability required for the operation."""

    def __init__(self, capability: Union[bytes, str], *args: object) -> None:
        """Initialize an UnsupportedServer exception.

        Args:
            capability: Name of the missing capability.
            *args: Additional positional arguments.
        """
        if isinstance(capability, bytes):
            capability = capability.decode("ascii", "replace")
        self.capability = capability
        super().__init__(capability, *args)

    def __str__(self) -> str:
        """Return a readable message."""
        return f"server does not support required capability {self.capability!r}"


class RefNotFound(GitError, KeyError):
    """A requested reference does not exist."""

    def __init__(self, ref: bytes) -> None:
        """Initialize a RefNotFound exception.

        Args:
          ref: Name of the missing reference.
        """
        self.ref = ref
        GitError.__init__(self, ref)

    def __str__(self) -> str:
        """Return a readable message."""
        return f"reference {self.ref.decode('utf-8', 'replace')} not found"


class PathNotFound(GitError, KeyError):
    """A path does not exist in a tree."""

    def __init__(self, path: bytes) -> None:
        """Initialize a PathNotFound exception.

        Args:
          path: The path that could not be resolved.
        """
        self.path = path
        GitError.__init__(self, path)

    def __str__(self) -> str:
        """Return a readable message."""
        return f"path {self.path.decode('utf-8', 'replace')} not found"


class CorruptPack(GitError):
    """A pack could not be decoded."""


def _hex_digest(value: Union[bytes, str]) -> str:
    if isinstance(value, str):
        return value
    if len(value) == 20:
        return binascii.hexlify(value).decode("ascii")
    return value.decode("ascii")


class ChecksumMismatch(CorruptPack):
    """A pack or object checksum did not match its contents.

    Attributes:
      expected: Checksum recorded in the data, as hex.
      got: Checksum computed from the data, as hex.
    """

    def __init__(
        self,
        expected: Union[bytes, str],
        got: Union[bytes, str],
        extra: Optional[str] = None,
    ) -> None:
        self.expected = _hex_digest(expected)
        self.got = _hex_digest(got)
        self.extra = extra
        message = f"Checksum mismatch: Expected {self.expected}, got {self.got}"
        if extra is not None:
            message = f"{message}; {extra}"
        super().__init__(message)


class ApplyDeltaError(CorruptPack):
    """Applying a delta failed."""


class UnresolvedDeltas(CorruptPack):
    """Delta objects whose bases could not be found."""

    def __init__(self, shas: Sequence[bytes]) -> None:
        """Initialize an UnresolvedDeltas exception.

        Args:
          shas: Hex ids of the missing delta bases.
        """
        self.shas = list(shas)
        super().__init__(
            "unresolved delta bases: "
            + ", ".join(sha.decode("ascii") for sha in self.shas)
        )


class NonFastForward(GitError):
    """A push would discard commits on the remote."""

    def __init__(self, ref: bytes, old: bytes, new: bytes) -> None:
        """Initialize a NonFastForward exception.

        Args:
          ref: Remote reference name.
          old: Id currently advertised by the remote.
          new: Id the caller wanted to push.
        """
        self.ref = ref
        self.old = old
        self.new = new
        super().__init__(ref, old, new)

    def __str__(self) -> str:
        """Return a readable message."""
        return (
            f"{self.ref.decode('utf-8', 'replace')}: "
            f"{self.new.decode('ascii')} does not contain {self.old.decode('ascii')}"
        )


class RejectedRef(GitError):
    """The remote refused to update a reference."""

    def __init__(self, ref: bytes, reason: str) -> None:
        """Initialize a RejectedRef exception.

        Args:
          ref: Remote reference name.
          reason: Reason reported by the server.
        """
        self.ref = ref
        self.reason = reason
        super().__init__(ref, reason)

    def __str__(self) -> str:
        """Return a readable message."""
        return f"{self.ref.decode('utf-8', 'replace')} rejected: {self.reason}"


class MissingObject(GitError, KeyError):
    """A requested object is not in the object store."""

    def __init__(self, sha: bytes) -> None:
        """Initialize a MissingObject exception.

        Args:
          sha: Hex id of the missing object.
        """
        self.sha = sha
        GitError.__init__(self, sha)

    def __str__(self) -> str:
        """Return a readable message."""
        return f"{self.sha.decode('ascii', 'replace')} is not in the object store"


class ObjectFormatException(GitError):
    """Indicates an error parsing an object."""


class WrongObjectType(GitError):
    """Baseclass for all the _ is not a _ exceptions on objects.

    Do not instantiate directly.

    Subclasses should define a type_name attribute that indicates what
    was expected if they were raised.
    """

    type_name: str

    def __init__(self, sha: bytes) -> None:
        """Initialize a WrongObjectType exception.

        Args:
            sha: The id of the object that was not of the expected type.
        """
        self.sha = sha
        super().__init__(f"{sha.decode('ascii')} is not a {self.type_name}")


class NotCommitError(WrongObjectType):
    """Indicates that the id requested does not point to a commit."""

    type_name = "commit"


class NotTreeError(WrongObjectType):
    """Indicates that the id requested does not point to a tree."""

    type_name = "tree"


class NotBlobError(WrongObjectType):
    """Indicates that the id requested does not point to a blob."""

    type_name = "blob"


class InvalidPath(GitError, ValueError):
    """A path cannot be stored in a tree."""


class SymrefLoop(GitError):
    """There is a loop between one or more symrefs."""

    def __init__(self, ref: bytes, depth: int) -> None:
        """Initialize a SymrefLoop exception.

        Args:
          ref: Reference where the loop was detected.
          depth: Depth at which the loop was detected.
        """
        self.ref = ref
        self.depth = depth
        super().__init__(ref, depth)


class RefFormatError(GitError, ValueError):
    """Indicates an invalid ref name."""
