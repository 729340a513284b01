# staging.py -- Staging of in-memory changes and commit creation
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

"""Staging of in-memory file changes and creation of commits from them.

A :class:`StagingArea` holds pending edits keyed by path. Building a tree
applies them on top of a base tree, rewriting only the trees along the
edited paths so that every untouched subtree keeps its id.
"""

import logging
import time
from collections.abc import Iterator, Sequence
from typing import Optional, Union

from .errors import InvalidPath
from .object_store import BaseObjectStore, TreeChange, commit_tree_changes
from .objects import Blob, Commit, FileType, Tree, check_identity, format_identity

__all__ = [
    "Identity",
    "StagedContent",
    "StagingArea",
    "create_commit",
    "identity_bytes",
    "normalize_path",
]

logger = logging.getLogger(__name__)

StagedContent = Optional[tuple[bytes, FileType]]

_FORBIDDEN_SEGMENTS = (b"", b".", b"..")


def normalize_path(path: Union[bytes, str]) -> bytes:
    """Validate a ``/`` separated repository path and return it as bytes.

    Raises:
      InvalidPath: if the path is empty, absolute, contains a NUL byte or
        has an empty, ``.``, ``..`` or ``.git`` segment
    """
    if isinstance(path, str):
        path = path.encode("utf-8")
    if not path:
        raise InvalidPath("empty path")
    if path.startswith(b"/"):
        raise InvalidPath(f"absolute path {path!r}")
    if b"\0" in path:
        raise InvalidPath(f"NUL byte in path {path!r}")
    for segment in path.split(b"/"):
        if segment in _FORBIDDEN_SEGMENTS or segment.lower() == b".git":
            raise InvalidPath(f"invalid path {path!r}")
    return path


def _is_below(path: bytes, parent: bytes) -> bool:
    return path.startswith(parent + b"/")


class StagingArea:
    """Ordered set of pending changes, keyed by path.

    Each path maps to ``(content, mode)`` for a file to write or to None for
    a deletion. Staging a path replaces any earlier entry for it; staging a
    file also drops staged entries that could no longer exist next to it,
    i.e. files below it and files at any of its parent directories.
    """

    def __init__(self) -> None:
        self._entries: dict[bytes, StagedContent] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __getitem__(self, path: Union[bytes, str]) -> StagedContent:
        return self._entries[normalize_path(path)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._entries)!r})"

    def items(self) -> list[tuple[bytes, StagedContent]]:
        return list(self._entries.items())

    def stage(
        self,
        path: Union[bytes, str],
        content: Union[bytes, str, None],
        mode: FileType = FileType.REGULAR,
    ) -> bytes:
        """Record a change to path.

        Args:
          path: ``/`` separated path, relative to the repository root
          content: New file contents, or None to delete the path
          mode: File type for new contents
        Returns: The normalized path
        Raises:
          InvalidPath: if path is not acceptable
        """
        path = normalize_path(path)
        if isinstance(content, str):
            content = content.encode("utf-8")
        for other in list(self._entries):
            if _is_below(other, path):
                del self._entries[other]
            elif (
                content is not None
                and _is_below(path, other)
                and self._entries[other] is not None
            ):
                del self._entries[other]
        # Re-staging moves the path to the end.
        self._entries.pop(path, None)
        if content is None:
            self._entries[path] = None
        else:
            self._entries[path] = (content, FileType(mode))
        return path

    def unstage(self, path: Union[bytes, str]) -> None:
        """Forget the staged change to path.

        Raises:
          KeyError: if nothing is staged for path
        """
        del self._entries[normalize_path(path)]

    def clear(self) -> None:
        """Forget all staged changes."""
        self._entries.clear()

    def build_tree(
        self, store: BaseObjectStore, base_tree: Optional[bytes] = None
    ) -> bytes:
        """Apply the staged changes to base_tree and store the result.

        Blobs and the rewritten trees are added to store; staged entries are
        not cleared.

        Args:
          store: Object store to read base trees from and add objects to
          base_tree: Id of the tree to start from; None for an empty tree
        Returns: Id of the new root tree
        """
        tree_changes: list[TreeChange] = []
        for path, content in self._entries.items():
            if content is None:
                tree_changes.append((path, None, None))
            else:
                data, mode = content
                blob_id = store.add_object(Blob.from_string(data))
                tree_changes.append((path, int(mode), blob_id))
        base: Union[bytes, Tree] = Tree() if base_tree is None else base_tree
        tree_id = commit_tree_changes(store, base, tree_changes)
        logger.debug(
            "built tree %s from %d staged changes",
            tree_id.decode("ascii"),
            len(tree_changes),
        )
        return tree_id


Identity = Union[bytes, str, tuple[Union[bytes, str], Union[bytes, str]]]


def identity_bytes(identity: Identity) -> bytes:
    """Return an identity as ``b"Name <email>"``.

    A (name, email) pair is formatted with :func:`format_identity`; bytes
    and str are taken to be formatted already.

    Raises:
      ObjectFormatException: if the name or email contains ``<``, ``>`` or
        a newline
    """
    if isinstance(identity, tuple):
        name, email = identity
        return format_identity(name, email)
    if isinstance(identity, str):
        return identity.encode("utf-8")
    return identity


def create_commit(
    store: BaseObjectStore,
    tree: bytes,
    parents: Sequence[bytes],
    message: Union[bytes, str],
    author: Identity,
    committer: Optional[Identity] = None,
    author_time: Optional[int] = None,
    commit_time: Optional[int] = None,
    author_timezone: int = 0,
    commit_timezone: int = 0,
    encoding: Optional[bytes] = None,
) -> bytes:
    """Create a commit object and add it to store.

    Args:
      store: Object store to add the commit to; tree and parents must be
        present unless a parent is a shallow boundary the caller vouches for
      tree: Id of the root tree
      parents: Ids of the parent commits; empty for a root commit
      message: Commit message
      author: Author identity, ``b"Name <email>"`` or a (name, email) pair
      committer: Committer identity; defaults to author
      author_time: Author timestamp in seconds since the epoch; defaults to now
      commit_time: Commit timestamp; defaults to author_time
      author_timezone: Author timezone offset in seconds east of UTC
      commit_timezone: Committer timezone offset in seconds east of UTC
      encoding: Optional encoding of the message
    Returns: Id of the new commit
    Raises:
      ObjectFormatException: if an identity is malformed
      NotTreeError: if tree is not a tree
    """
    author = identity_bytes(author)
    committer = author if committer is None else identity_bytes(committer)
    check_identity(author, "invalid author identity")
    check_identity(committer, "invalid committer identity")
    store.get_tree(tree)
    if isinstance(message, str):
        message = message.encode(encoding.decode("ascii") if encoding else "utf-8")
    if author_time is None:
        author_time = int(time.time())
    if commit_time is None:
        commit_time = author_time

    commit = Commit()
    commit.tree = tree
    commit.parents = list(parents)
    commit.author = author
    commit.committer = committer
    commit.author_time = author_time
    commit.author_timezone = author_timezone
    commit.commit_time = commit_time
    commit.commit_timezone = commit_timezone
    if encoding is not None:
        commit.encoding = encoding
    commit.message = message
    return store.add_object(commit)
