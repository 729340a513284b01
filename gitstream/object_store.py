# object_store.py -- Object store for git objects
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

"""Content-addressed storage of git objects.

Objects are stored as ``(type_num, raw_bytes)`` keyed by their hex id. Once
written, stored bytes are never changed: adding an object that is already
present is a no-op.
"""

import heapq
import logging
import stat
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import NamedTuple, Optional, Union

from .errors import (
    MissingObject,
    NotBlobError,
    NotCommitError,
    NotTreeError,
    PathNotFound,
)
from .objects import (
    S_ISGITLINK,
    Blob,
    Commit,
    ShaFile,
    Tag,
    Tree,
    TreeEntry,
    hash_object,
    object_class,
    sha_to_hex,
)

logger = logging.getLogger(__name__)

GetParents = Callable[[Commit], list[bytes]]


class BaseObjectStore:
    """Object store interface."""

    def _get_raw(self, sha: bytes) -> Optional[tuple[int, bytes]]:
        raise NotImplementedError(self._get_raw)

    def _store_raw(self, sha: bytes, type_num: int, body: bytes) -> None:
        raise NotImplementedError(self._store_raw)

    def __iter__(self) -> Iterator[bytes]:
        raise NotImplementedError(self.__iter__)

    def __len__(self) -> int:
        return sum(1 for _ in self)

    @staticmethod
    def _to_hexsha(sha: bytes) -> bytes:
        if len(sha) == 40:
            return sha
        elif len(sha) == 20:
            return sha_to_hex(sha)
        else:
            raise ValueError(f"Invalid sha {sha!r}")

    def contains(self, sha: bytes) -> bool:
        """Check if a particular object is present by SHA1."""
        return self._get_raw(self._to_hexsha(sha)) is not None

    def __contains__(self, sha: object) -> bool:
        if not isinstance(sha, bytes):
            return False
        return self.contains(sha)

    def get_raw(self, name: bytes) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        Raises:
          MissingObject: if the object is not present
        """
        sha = self._to_hexsha(name)
        ret = self._get_raw(sha)
        if ret is None:
            raise MissingObject(sha)
        return ret

    def get_type(self, sha: bytes) -> int:
        """Return the numeric type of an object."""
        return self.get_raw(sha)[0]

    def __getitem__(self, sha: bytes) -> ShaFile:
        """Obtain an object by SHA1.

        A fresh object is returned on every call, so callers are free to
        modify it.
        """
        sha = self._to_hexsha(sha)
        type_num, body = self.get_raw(sha)
        return ShaFile.from_raw_string(type_num, body, sha=sha)

    get = __getitem__

    @staticmethod
    def hash(obj: ShaFile) -> bytes:
        """Compute the id of an object without storing it."""
        return obj.id

    def add_raw(self, type_num: int, body: bytes) -> bytes:
        """Add an object given its type and raw contents.

        Args:
          type_num: Numeric object type
          body: Raw (uncompressed, headerless) object contents
        Returns: The hex id of the object, hashed from body
        """
        object_class(type_num)
        sha = hash_object(type_num, body)
        if self._get_raw(sha) is None:
            self._store_raw(sha, type_num, body)
        return sha

    def add_object(self, obj: ShaFile) -> bytes:
        """Add a single object to this object store.

        Returns: The id of the object
        """
        return self.add_raw(obj.type_num, obj.as_raw_string())

    put = add_object

    def add_objects(self, objects: Iterable[ShaFile]) -> list[bytes]:
        """Add a set of objects to this object store."""
        return [self.add_object(obj) for obj in objects]

    def get_commit(self, sha: bytes) -> Commit:
        """Retrieve a commit, peeling annotated tags.

        Raises:
          NotCommitError: if sha does not lead to a commit
        """
        obj = self[sha]
        while isinstance(obj, Tag):
            obj = self[obj.object[1]]
        if not isinstance(obj, Commit):
            raise NotCommitError(sha)
        return obj

    def get_blob(self, sha: bytes) -> Blob:
        """Retrieve a blob.

        Raises:
          NotBlobError: if sha is not a blob
        """
        obj = self[sha]
        if not isinstance(obj, Blob):
            raise NotBlobError(sha)
        return obj

    def get_tree(self, sha: bytes) -> Tree:
        """Retrieve a tree, given the id of a tree, commit or tag.

        Raises:
          NotTreeError: if sha does not lead to a tree
        """
        obj = self[sha]
        while isinstance(obj, Tag):
            obj = self[obj.object[1]]
        if isinstance(obj, Commit):
            obj = self[obj.tree]
        if not isinstance(obj, Tree):
            raise NotTreeError(sha)
        return obj

    def lookup_path(self, root: bytes, path: Union[bytes, str]) -> tuple[int, bytes]:
        """Look up the entry at path below a tree.

        Args:
          root: Id of a tree, or of a commit whose tree to use
          path: Slash separated path; an empty path names the root itself
        Returns: A tuple of (mode, sha) of the resulting path.
        Raises:
          PathNotFound: if a component does not exist or is not a directory
        """
        if isinstance(path, str):
            path = path.encode("utf-8")
        tree = self.get_tree(root)
        mode, sha = stat.S_IFDIR, tree.id
        for part in path.split(b"/"):
            if not part:
                continue
            if not stat.S_ISDIR(mode):
                raise PathNotFound(path)
            tree = self.get_tree(sha)
            try:
                mode, sha = tree[part]
            except KeyError as exc:
                raise PathNotFound(path) from exc
        return mode, sha

    def resolve_tree(self, tree_id: bytes, path: Union[bytes, str]) -> bytes:
        """Walk tree entries from tree_id down path.

        Returns: The id of the object at path
        Raises:
          PathNotFound: if the path does not exist
        """
        return self.lookup_path(tree_id, path)[1]


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory."""

    def __init__(self) -> None:
        """Initialize a MemoryObjectStore.

        Creates an empty in-memory object store.
        """
        self._data: dict[bytes, tuple[int, bytes]] = {}

    def _get_raw(self, sha: bytes) -> Optional[tuple[int, bytes]]:
        return self._data.get(sha)

    def _store_raw(self, sha: bytes, type_num: int, body: bytes) -> None:
        self._data.setdefault(sha, (type_num, body))

    def __iter__(self) -> Iterator[bytes]:
        """Iterate over the SHAs that are present in this store."""
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)


class OverlayObjectStore(BaseObjectStore):
    """Object store that buffers new objects on top of a base store.

    Reads see both the base store and the pending objects. Nothing reaches
    the base store until :meth:`commit` is called, so an operation that fails
    half way can simply :meth:`discard` what it added.
    """

    def __init__(self, base: BaseObjectStore) -> None:
        """Initialize an OverlayObjectStore.

        Args:
          base: Store to read from and eventually commit to
        """
        self.base = base
        self._pending: dict[bytes, tuple[int, bytes]] = {}

    def _get_raw(self, sha: bytes) -> Optional[tuple[int, bytes]]:
        ret = self._pending.get(sha)
        if ret is not None:
            return ret
        return self.base._get_raw(sha)

    def _store_raw(self, sha: bytes, type_num: int, body: bytes) -> None:
        self._pending.setdefault(sha, (type_num, body))

    def __iter__(self) -> Iterator[bytes]:
        seen = set(self._pending)
        yield from self._pending
        for sha in self.base:
            if sha not in seen:
                yield sha

    @property
    def pending(self) -> list[bytes]:
        """Ids added since this overlay was created or last committed."""
        return list(self._pending)

    def commit(self) -> int:
        """Move all pending objects into the base store.

        Returns: Number of objects committed
        """
        count = len(self._pending)
        for sha, (type_num, body) in self._pending.items():
            if self.base._get_raw(sha) is None:
                self.base._store_raw(sha, type_num, body)
        self._pending.clear()
        return count

    def discard(self) -> None:
        """Drop all pending objects."""
        self._pending.clear()

    def __enter__(self) -> "OverlayObjectStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        if exc_type is None:
            self.commit()
        else:
            self.discard()


def _default_get_parents(commit: Commit) -> list[bytes]:
    return commit.parents


def shallow_get_parents(shallow: Iterable[bytes]) -> GetParents:
    """Return a get_parents function that stops at shallow commits."""
    shallow = frozenset(shallow)

    def get_parents(commit: Commit) -> list[bytes]:
        if commit.id in shallow:
            return []
        return commit.parents

    return get_parents


def iter_tree_contents(
    store: BaseObjectStore, tree_id: Optional[bytes], *, include_trees: bool = False
) -> Iterator[TreeEntry]:
    """Iterate the contents of a tree and all subtrees.

    Iteration is depth-first pre-order, as in e.g. os.walk.

    Args:
      store: Object store to get trees from
      tree_id: SHA1 of the tree.
      include_trees: If True, include tree objects in the iteration.
    Returns: Iterator over TreeEntry namedtuples for all the objects in a
      tree.
    """
    if tree_id is None:
        return
    todo = [TreeEntry(b"", stat.S_IFDIR, tree_id)]
    while todo:
        entry = todo.pop()
        if stat.S_ISDIR(entry.mode):
            tree = store.get_tree(entry.sha)
            todo.extend(
                reversed([subentry.in_path(entry.path) for subentry in tree.iteritems()])
            )
        if not stat.S_ISDIR(entry.mode) or include_trees:
            yield entry


class ReachableObjects(NamedTuple):
    """Result of a reachability walk.

    Attributes:
      shas: Ids of the reachable objects, in discovery order
      omitted: Ids that are referenced but were not walked, either because
        they are missing from the store or because they are parents of
        shallow commits
    """

    shas: list[bytes]
    omitted: set[bytes]


def _walk_reachable(
    store: BaseObjectStore,
    roots: Iterable[bytes],
    exclude: set[bytes],
    get_parents: GetParents,
    omitted: Optional[set[bytes]] = None,
) -> list[bytes]:
    found = []
    todo = list(roots)
    todo.reverse()
    while todo:
        sha = todo.pop()
        if sha in exclude:
            continue
        try:
            obj = store[sha]
        except MissingObject:
            logger.debug("skipping missing object %s", sha.decode("ascii"))
            if omitted is not None:
                omitted.add(sha)
            continue
        exclude.add(sha)
        found.append(sha)
        if isinstance(obj, Commit):
            parents = get_parents(obj)
            if omitted is not None and len(parents) < len(obj.parents):
                omitted.update(p for p in obj.parents if p not in parents)
            todo.extend(reversed(parents))
            todo.append(obj.tree)
        elif isinstance(obj, Tree):
            for entry in reversed(obj.items()):
                if not S_ISGITLINK(entry.mode):
                    todo.append(entry.sha)
        elif isinstance(obj, Tag):
            todo.append(obj.object[1])
    return found


def find_reachable(
    store: BaseObjectStore,
    roots: Iterable[bytes],
    exclude: Iterable[bytes] = (),
    get_parents: GetParents = _default_get_parents,
) -> ReachableObjects:
    """Find objects reachable from roots but not from any of exclude.

    Excluded tips that are not present locally are ignored. Objects that
    are missing from the store are skipped rather than treated as an error,
    so history truncated by a shallow clone can still be walked.

    Args:
      store: Object store to walk
      roots: Ids to start from (commits, trees, blobs or tags)
      exclude: Ids of tips whose closure should be left out
      get_parents: Function returning the parents to follow for a commit
    Returns: A ReachableObjects tuple
    Raises:
      MissingObject: if one of the roots is not present
    """
    roots = list(roots)
    for root in roots:
        if root not in store:
            raise MissingObject(root)
    excluded: set[bytes] = set()
    _walk_reachable(
        store, [sha for sha in exclude if sha in store], excluded, get_parents
    )
    omitted: set[bytes] = set()
    shas = _walk_reachable(store, roots, excluded, get_parents, omitted)
    return ReachableObjects(shas, omitted)


def is_ancestor(
    store: BaseObjectStore,
    ancestor: bytes,
    descendant: bytes,
    get_parents: GetParents = _default_get_parents,
) -> bool:
    """Check whether ancestor is in the history of descendant.

    A commit counts as its own ancestor. Commits missing from the store end
    the walk along their line of history.
    """
    if ancestor == descendant:
        return True
    seen = set()
    todo = [descendant]
    while todo:
        sha = todo.pop()
        if sha in seen:
            continue
        seen.add(sha)
        try:
            commit = store.get_commit(sha)
        except MissingObject:
            continue
        for parent in get_parents(commit):
            if parent == ancestor:
                return True
            todo.append(parent)
    return False


def walk_commits(
    store: BaseObjectStore,
    heads: Iterable[bytes],
    get_parents: GetParents = _default_get_parents,
) -> Iterator[Commit]:
    """Iterate over commits reachable from heads, newest first.

    Commits are ordered by commit time; missing parents are skipped.
    """
    seen: set[bytes] = set()
    queue: list[tuple[int, int, Commit]] = []
    counter = 0

    def push(sha: bytes) -> None:
        nonlocal counter
        if sha in seen:
            return
        seen.add(sha)
        try:
            commit = store.get_commit(sha)
        except MissingObject:
            return
        heapq.heappush(queue, (-commit.commit_time, counter, commit))
        counter += 1

    for head in heads:
        push(head)
    while queue:
        _, _, commit = heapq.heappop(queue)
        yield commit
        for parent in get_parents(commit):
            push(parent)


TreeChange = tuple[bytes, Optional[int], Optional[bytes]]


def commit_tree_changes(
    object_store: BaseObjectStore,
    tree: Union[bytes, Tree],
    changes: Sequence[TreeChange],
) -> bytes:
    """Commit a specified set of changes to a tree structure.

    This will apply a set of changes on top of an existing tree, storing new
    objects in object_store. Only the trees on the path to a change are
    rewritten; every other subtree keeps its existing id.

    changes are a list of tuples with (path, mode, object_sha).
    Paths can be both blobs and trees. Setting the mode and
    object sha to None deletes the path. Directories left empty by
    deletions are removed.

    Args:
      object_store: Object store to store new objects in
        and retrieve old ones from.
      tree: Original tree root (SHA or Tree object)
      changes: changes to apply
    Returns: New tree root id
    """
    if isinstance(tree, Tree):
        tree_obj = tree
    else:
        tree_obj = object_store.get_tree(tree)
    return object_store.add_object(_apply_tree_changes(object_store, tree_obj, changes))


def _apply_tree_changes(
    object_store: BaseObjectStore, tree_obj: Tree, changes: Sequence[TreeChange]
) -> Tree:
    """Apply changes to tree_obj in place, storing only non-empty subtrees."""
    nested_changes: dict[bytes, list[TreeChange]] = {}
    for path, new_mode, new_sha in changes:
        try:
            (dirname, subpath) = path.split(b"/", 1)
        except ValueError:
            if new_sha is None:
                if path in tree_obj:
                    del tree_obj[path]
            else:
                assert new_mode is not None
                tree_obj[path] = (new_mode, new_sha)
        else:
            nested_changes.setdefault(dirname, []).append((subpath, new_mode, new_sha))
    for name, subchanges in nested_changes.items():
        deletions_only = all(new_sha is None for (_, _, new_sha) in subchanges)
        try:
            mode, orig_sha = tree_obj[name]
        except KeyError:
            if deletions_only:
                continue
            subtree = Tree()
        else:
            if stat.S_ISDIR(mode):
                subtree = object_store.get_tree(orig_sha)
            elif deletions_only:
                # Deleting below a file leaves the file alone.
                continue
            else:
                subtree = Tree()
        subtree = _apply_tree_changes(object_store, subtree, subchanges)
        if len(subtree) == 0:
            if name in tree_obj:
                del tree_obj[name]
        else:
            tree_obj[name] = (stat.S_IFDIR, object_store.add_object(subtree))
    return tree_obj


__all__ = [
    "BaseObjectStore",
    "MemoryObjectStore",
    "OverlayObjectStore",
    "ReachableObjects",
    "commit_tree_changes",
    "find_reachable",
    "is_ancestor",
    "iter_tree_contents",
    "shallow_get_parents",
    "walk_commits",
]
