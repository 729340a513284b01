# repo.py -- In-memory git repository
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

"""The in-memory repository that ties the object store, refs and staging
area together.

A :class:`Repository` owns all mutable state. Every operation either
succeeds completely or leaves the repository as it was: objects received
from a remote are kept in an overlay until the exchange has finished, and
refs are only updated once the objects they point at are in place.
"""

import logging
import stat
from collections.abc import Iterable, Iterator, Mapping
from io import BytesIO
from typing import Optional, Union

from .client import FetchNegotiation, FetchPackResult, PushNegotiation, SendPackResult
from .config import Config, StackedConfig, get_user_identity
from .errors import MissingObject, NotBlobError, NotTreeError, RefNotFound
from .object_store import (
    MemoryObjectStore,
    OverlayObjectStore,
    walk_commits,
)
from .objects import Commit, FileType, TreeEntry
from .pack import unpack_into
from .protocol import Progress
from .refs import (
    HEADREF,
    LOCAL_BRANCH_PREFIX,
    LOCAL_REMOTE_PREFIX,
    LOCAL_TAG_PREFIX,
    RefsContainer,
    expand_ref,
    is_commit_id,
    remote_tracking_ref,
)
from .staging import (
    Identity,
    StagingArea,
    create_commit,
    identity_bytes,
    normalize_path,
)
from .transport import RECEIVE_PACK_SERVICE, UPLOAD_PACK_SERVICE, Transport

__all__ = ["Repository"]

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = b"master"

RefUpdates = Union[
    Mapping[Union[bytes, str], Optional[bytes]],
    Iterable[tuple[Union[bytes, str], Optional[bytes]]],
]


def _to_bytes(name: Union[bytes, str]) -> bytes:
    if isinstance(name, str):
        return name.encode("utf-8")
    return name


class Repository:
    """A git repository held entirely in memory.

    Attributes:
      object_store: Store holding every object of the repository
      refs: Local references, including ``HEAD``
      staging: Changes staged for the next commit
      shallow: Ids of commits whose parents are not present locally
      config: Configuration used for identities and transports
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        """Create an empty repository.

        ``HEAD`` points at the unborn branch named by ``init.defaultBranch``.
        """
        if config is None:
            config = StackedConfig.default()
        self.config = config
        self.object_store = MemoryObjectStore()
        self.refs = RefsContainer()
        self.staging = StagingArea()
        self.shallow: set[bytes] = set()
        try:
            default_branch = config.get((b"init",), b"defaultBranch")
        except KeyError:
            default_branch = DEFAULT_BRANCH
        self.refs.set_symbolic_ref(HEADREF, LOCAL_BRANCH_PREFIX + default_branch)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} head={self.head()!r}>"

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def close(self) -> None:
        """Release the repository, dropping any staged changes."""
        self.staging.clear()

    def head(self) -> Optional[bytes]:
        """Return the commit HEAD points at, or None on an unborn branch."""
        return self.refs.get(HEADREF)

    def current_branch(self) -> Optional[bytes]:
        """Return the full name of the checked out branch.

        Returns: e.g. ``refs/heads/main``, or None if HEAD is detached
        """
        refnames, _ = self.refs.follow(HEADREF)
        if len(refnames) > 1 and refnames[-1].startswith(LOCAL_BRANCH_PREFIX):
            return refnames[-1]
        return None

    def get_parents(self, commit_id: bytes) -> list[bytes]:
        """Return the parents of a commit, or [] at a shallow boundary."""
        if commit_id in self.shallow:
            return []
        return self.object_store.get_commit(commit_id).parents

    def _commit_parents(self, commit: Commit) -> list[bytes]:
        if commit.id in self.shallow:
            return []
        return commit.parents

    def resolve(self, ref: Optional[Union[bytes, str]] = None) -> bytes:
        """Resolve a ref name or commit id to an object id.

        Args:
          ref: ``HEAD``, a short or full ref name, or a commit id; None
            means ``HEAD``
        Raises:
          RefNotFound: if the name does not resolve
        """
        name = HEADREF if ref is None else _to_bytes(ref)
        if is_commit_id(name):
            return name
        candidates = expand_ref(name)
        if not name.startswith(b"refs/") and name != HEADREF:
            candidates.append(LOCAL_REMOTE_PREFIX + name)
            candidates.append(remote_tracking_ref(LOCAL_BRANCH_PREFIX + name))
        for candidate in candidates:
            sha = self.refs.get(candidate)
            if sha is not None:
                return sha
        raise RefNotFound(name)

    def _root_tree(self, ref: Optional[Union[bytes, str]]) -> bytes:
        return self.object_store.get_tree(self.resolve(ref)).id

    def clone(
        self,
        transport: Transport,
        ref: Union[bytes, str] = HEADREF,
        depth: Optional[int] = None,
        progress: Optional[Progress] = None,
    ) -> FetchPackResult:
        """Fetch a ref and its history from a remote.

        A branch becomes the checked out branch, with a remote-tracking ref
        under ``refs/remotes/origin``; tags and commit ids leave HEAD
        detached.

        Args:
          transport: Transport to the remote repository
          ref: Ref to fetch: ``HEAD``, a branch or tag name, or a commit id
          depth: Optional number of commits of history to fetch
          progress: Optional callback for server progress messages
        Returns: A FetchPackResult
        Raises:
          UnsupportedServer: if the server lacks a required capability
          RefNotFound: if the ref does not exist on the remote
          TransportError: if the connection fails
          CorruptPack: if the received pack is invalid
        """
        ref = _to_bytes(ref)
        overlay = OverlayObjectStore(self.object_store)
        with transport.open(UPLOAD_PACK_SERVICE) as proto:
            negotiation = FetchNegotiation(
                proto,
                overlay,
                ref,
                depth=depth,
                progress=progress,
                haves=sorted(
                    {sha for sha in self.refs.as_dict().values() if sha in overlay}
                ),
                shallow=self.shallow,
            )
            try:
                result = negotiation.run()
                if result.tip is not None:
                    peeled = result.peeled_tip
                    assert peeled is not None
                    overlay.get_commit(peeled)
            except BaseException:
                overlay.discard()
                raise
        overlay.commit()
        self.shallow = set(result.shallow)
        self._update_refs_after_clone(result)
        logger.info(
            "fetched %d objects for %s",
            len(result.objects),
            (result.ref or ref).decode("utf-8", "replace"),
        )
        return result

    def _update_refs_after_clone(self, result: FetchPackResult) -> None:
        if result.tip is None:
            target = result.symrefs.get(HEADREF)
            if target is not None and target.startswith(LOCAL_BRANCH_PREFIX):
                self.refs.set_symbolic_ref(HEADREF, target)
            return
        peeled = result.peeled_tip
        assert peeled is not None
        snapshot = self.refs.snapshot()
        try:
            if result.ref is not None and result.ref.startswith(LOCAL_BRANCH_PREFIX):
                tracking = remote_tracking_ref(result.ref)
                assert tracking is not None
                self.refs.apply({result.ref: result.tip, tracking: result.tip})
                self.refs.set_symbolic_ref(HEADREF, result.ref)
            else:
                updates: dict[bytes, Optional[bytes]] = {}
                if result.ref is not None and result.ref.startswith(LOCAL_TAG_PREFIX):
                    updates[result.ref] = result.tip
                self.refs.remove_if_equals(HEADREF, None)
                updates[HEADREF] = peeled
                self.refs.apply(updates)
        except BaseException:
            self.refs.restore(snapshot)
            raise

    def stage(
        self,
        path: Union[bytes, str],
        content: Union[bytes, str, None],
        mode: Optional[int] = None,
    ) -> bytes:
        """Stage new contents for path, or its deletion if content is None.

        Returns: The normalized path
        Raises:
          InvalidPath: if the path is not acceptable
        """
        if mode is None:
            return self.staging.stage(path, content)
        return self.staging.stage(path, content, FileType(mode))

    def commit(
        self,
        message: Union[bytes, str],
        author: Optional[Identity] = None,
        committer: Optional[Identity] = None,
        parents: Optional[Iterable[bytes]] = None,
        author_time: Optional[int] = None,
        commit_time: Optional[int] = None,
        timezone: int = 0,
    ) -> bytes:
        """Commit the staged changes on top of HEAD.

        Args:
          message: Commit message
          author: Author identity, a (name, email) pair or
            ``b"Name <email>"``; defaults to the configured identity
          committer: Committer identity, in the same forms; defaults to the
            configured identity
          parents: Parents to record instead of the current HEAD commit; an
            empty list creates a root commit
          author_time: Author timestamp; defaults to now
          commit_time: Commit timestamp; defaults to author_time
          timezone: Timezone offset in seconds east of UTC
        Returns: Id of the new commit
        Raises:
          ObjectFormatException: if a name or email contains ``<``, ``>`` or
            a newline; nothing is changed then
          MissingObject: if a parent is not present locally
        """
        if author is None:
            author = get_user_identity(self.config, "AUTHOR")
        if committer is None:
            committer = get_user_identity(self.config, "COMMITTER")
        author = identity_bytes(author)
        committer = identity_bytes(committer)
        refnames, _ = self.refs.follow(HEADREF)
        target = refnames[-1]
        head = self.head()
        if parents is None:
            parents = [] if head is None else [head]
        else:
            parents = list(parents)
        base_tree = None if head is None else self.object_store.get_commit(head).tree
        with OverlayObjectStore(self.object_store) as overlay:
            for parent in parents:
                if parent not in self.shallow:
                    overlay.get_commit(parent)
            tree_id = self.staging.build_tree(overlay, base_tree)
            commit_id = create_commit(
                overlay,
                tree_id,
                parents,
                message,
                author,
                committer,
                author_time=author_time,
                commit_time=commit_time,
                author_timezone=timezone,
                commit_timezone=timezone,
            )
        self.refs.apply({target: commit_id})
        self.staging.clear()
        logger.debug(
            "committed %s on %s",
            commit_id.decode("ascii"),
            target.decode("utf-8", "replace"),
        )
        return commit_id

    def _expand_push_ref(self, name: bytes) -> bytes:
        if name == HEADREF:
            branch = self.current_branch()
            if branch is None:
                raise RefNotFound(name)
            return branch
        if name.startswith(b"refs/"):
            return name
        if (
            LOCAL_TAG_PREFIX + name in self.refs
            and LOCAL_BRANCH_PREFIX + name not in self.refs
        ):
            return LOCAL_TAG_PREFIX + name
        return LOCAL_BRANCH_PREFIX + name

    def push(
        self,
        transport: Transport,
        updates: RefUpdates,
        force: bool = False,
        progress: Optional[Progress] = None,
    ) -> SendPackResult:
        """Update refs on a remote.

        Args:
          transport: Transport to the remote repository
          updates: Pairs of (remote ref, new id); short names are branches
            unless only a local tag by that name exists; a None id deletes
            the remote ref
          force: Allow updates that are not fast-forwards
          progress: Optional callback for server progress messages
        Returns: A SendPackResult; use its check() method to raise rejections
        Raises:
          NonFastForward: if an update would lose remote commits and force
            is not set; nothing is sent to the remote in that case
          UnsupportedServer: if the server lacks a required capability
          MissingObject: if a pushed id is not present locally
        """
        if isinstance(updates, Mapping):
            items = list(updates.items())
        else:
            items = list(updates)
        full_updates: dict[bytes, Optional[bytes]] = {}
        for name, sha in items:
            ref = self._expand_push_ref(_to_bytes(name))
            if sha is not None and sha not in self.object_store:
                raise MissingObject(sha)
            full_updates[ref] = sha
        with transport.open(RECEIVE_PACK_SERVICE) as proto:
            result = PushNegotiation(
                proto,
                self.object_store,
                full_updates,
                force=force,
                progress=progress,
                get_parents=self._commit_parents,
            ).run()
        tracking_updates: dict[bytes, Optional[bytes]] = {}
        for ref, status in result.statuses.items():
            tracking = remote_tracking_ref(ref)
            if status.ok and tracking is not None:
                tracking_updates[tracking] = full_updates[ref]
        self.refs.apply(tracking_updates)
        return result

    def read_file(
        self, path: Union[bytes, str], ref: Optional[Union[bytes, str]] = None
    ) -> bytes:
        """Return the contents of a file as committed.

        Args:
          path: ``/`` separated path of the file
          ref: Commit to read from; defaults to HEAD
        Raises:
          PathNotFound: if there is nothing at path
          NotBlobError: if path is a directory or submodule
        """
        path = normalize_path(path)
        mode, sha = self.object_store.lookup_path(self._root_tree(ref), path)
        if not stat.S_ISREG(mode) and not stat.S_ISLNK(mode):
            raise NotBlobError(sha)
        return self.object_store.get_blob(sha).data

    def read_text(
        self,
        path: Union[bytes, str],
        ref: Optional[Union[bytes, str]] = None,
        encoding: str = "utf-8",
    ) -> str:
        """Return the contents of a file, decoded."""
        return self.read_file(path, ref).decode(encoding)

    def read_dir(
        self, path: Union[bytes, str] = b"", ref: Optional[Union[bytes, str]] = None
    ) -> list[TreeEntry]:
        """List a directory as committed.

        Args:
          path: ``/`` separated path of the directory; empty for the root
          ref: Commit to read from; defaults to HEAD
        Returns: The entries of the directory, with paths relative to it
        Raises:
          PathNotFound: if there is nothing at path
          NotTreeError: if path is not a directory
        """
        path = _to_bytes(path).strip(b"/")
        root = self._root_tree(ref)
        if not path:
            return self.object_store.get_tree(root).items()
        mode, sha = self.object_store.lookup_path(root, normalize_path(path))
        if not stat.S_ISDIR(mode):
            raise NotTreeError(sha)
        return self.object_store.get_tree(sha).items()

    def discard_changes(self) -> None:
        """Drop all staged changes."""
        self.staging.clear()

    def discard_commits(self) -> None:
        """Reset the current branch to its remote-tracking ref.

        A branch that was never fetched or pushed becomes unborn again.
        Nothing happens when HEAD is detached.
        """
        branch = self.current_branch()
        if branch is None:
            logger.debug("HEAD is detached; no commits to discard")
            return
        tracking = remote_tracking_ref(branch)
        assert tracking is not None
        self.refs.apply({branch: self.refs.get(tracking)})

    def discard(self) -> None:
        """Drop staged changes and local commits."""
        self.discard_changes()
        self.discard_commits()

    def import_pack(self, data: bytes) -> list[bytes]:
        """Verify a pack and add all of its objects.

        Returns: The ids of the objects in the pack
        Raises:
          CorruptPack: if the pack is invalid; no object is added then
        """
        with OverlayObjectStore(self.object_store) as overlay:
            shas = unpack_into(overlay, BytesIO(data).read)
        return shas

    def log(self, ref: Optional[Union[bytes, str]] = None) -> Iterator[Commit]:
        """Iterate over the history of ref, newest commit first.

        The walk stops at shallow boundaries.
        """
        return walk_commits(
            self.object_store, [self.resolve(ref)], self._commit_parents
        )
