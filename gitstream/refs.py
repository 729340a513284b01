# refs.py -- For dealing with git refs
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

"""Ref handling.

References live in memory, in a :class:`RefsContainer` owned by a
repository. Symbolic references are stored the way git stores them on
disk, as ``ref: <target>``.
"""

import logging
from collections.abc import Iterator, Mapping
from typing import Optional, TypeVar

from .errors import RefFormatError, SymrefLoop
from .objects import valid_hexsha

logger = logging.getLogger(__name__)

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
LOCAL_REMOTE_PREFIX = b"refs/remotes/"
DEFAULT_REMOTE_NAME = b"origin"
BAD_REF_CHARS = set(b"\177 ~^:?*[")
PEELED_TAG_SUFFIX = b"^{}"
MAX_SYMREF_DEPTH = 5

T = TypeVar("T")


def parse_symref_value(contents: bytes) -> bytes:
    """Return the target of a ``ref: <target>`` value.

    Raises:
      ValueError: if contents is not a symbolic ref
    """
    if not contents.startswith(SYMREF):
        raise ValueError(contents)
    return contents[len(SYMREF) :].rstrip(b"\r\n")


_BAD_REF_SUBSTRINGS = (b"/.", b"..", b"//", b"@{", b"\\")


def check_ref_format(refname: bytes) -> bool:
    """Check a ref name against the rules of git-check-ref-format(1).

    The name must contain at least one ``/``.
    """
    if b"/" not in refname:
        return False
    if refname.startswith((b".", b"-")):
        return False
    if refname.endswith((b"/", b".", b".lock")):
        return False
    if any(bad in refname for bad in _BAD_REF_SUBSTRINGS):
        return False
    return not any(c < 0x20 or c in BAD_REF_CHARS for c in refname)


def _check_refname(name: bytes) -> None:
    """Ensure a refname is valid and lives in refs or is HEAD.

    Raises:
      RefFormatError: if the name is not acceptable
    """
    if name == HEADREF:
        return
    if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
        raise RefFormatError(name)


def expand_ref(name: bytes) -> list[bytes]:
    """Return the full ref names a short name may refer to, in order.

    ``main`` may be ``refs/heads/main`` or ``refs/tags/main``; full names
    and ``HEAD`` are returned unchanged.
    """
    if name == HEADREF or name.startswith(b"refs/"):
        return [name]
    return [LOCAL_BRANCH_PREFIX + name, LOCAL_TAG_PREFIX + name]


def is_commit_id(name: bytes) -> bool:
    """Whether name is a full hex object id rather than a ref name."""
    return valid_hexsha(name) and name == name.lower()


def strip_peeled_refs(refs: Mapping[bytes, T]) -> dict[bytes, T]:
    """Remove all peeled refs."""
    return {
        ref: sha for (ref, sha) in refs.items() if not ref.endswith(PEELED_TAG_SUFFIX)
    }


def remote_tracking_ref(ref: bytes, remote: bytes = DEFAULT_REMOTE_NAME) -> Optional[bytes]:
    """Return the remote-tracking ref that mirrors branch ref, if any."""
    if ref.startswith(LOCAL_BRANCH_PREFIX):
        return LOCAL_REMOTE_PREFIX + remote + b"/" + ref[len(LOCAL_BRANCH_PREFIX) :]
    return None


class RefsContainer:
    """In-memory container of references.

    Values are either hex object ids or ``ref: <target>`` for symbolic
    references.
    """

    def __init__(self, refs: Optional[Mapping[bytes, bytes]] = None) -> None:
        """Initialize a RefsContainer.

        Args:
          refs: Optional initial references
        """
        self._refs: dict[bytes, bytes] = dict(refs or {})

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._refs!r})"

    def allkeys(self) -> set[bytes]:
        """All refs present in this container."""
        return set(self._refs)

    def keys(self, base: Optional[bytes] = None) -> set[bytes]:
        """Ref names, or with base given the names below it (see subkeys)."""
        if base is not None:
            return self.subkeys(base)
        return self.allkeys()

    def subkeys(self, base: bytes) -> set[bytes]:
        """Names under base, with the ``base/`` prefix stripped."""
        prefix = base.rstrip(b"/") + b"/"
        return {name[len(prefix) :] for name in self._refs if name.startswith(prefix)}

    def as_dict(self, base: Optional[bytes] = None) -> dict[bytes, bytes]:
        """Resolve every ref (under base, if given) to an object id.

        Symbolic refs are followed; refs that do not resolve are left out.
        """
        prefix = b"" if base is None else base.rstrip(b"/") + b"/"
        ret = {}
        for key in self.keys(base):
            try:
                ret[key] = self[prefix + key]
            except (KeyError, SymrefLoop):
                continue
        return ret

    def read_ref(self, refname: bytes) -> Optional[bytes]:
        """Read a reference without following it.

        Returns: The contents of the ref (a hex sha or ``ref: <target>``),
          or None if it does not exist
        """
        return self._refs.get(refname)

    def get_symrefs(self) -> dict[bytes, bytes]:
        """Map each symbolic ref to the name it points at."""
        return {
            name: parse_symref_value(value)
            for name, value in self._refs.items()
            if value.startswith(SYMREF)
        }

    def follow(self, name: bytes) -> tuple[list[bytes], Optional[bytes]]:
        """Follow a chain of symbolic refs starting at name.

        Returns: Tuple of (names in the chain, starting with name; the id
          the last one holds, or None if it does not exist)
        Raises:
          SymrefLoop: if more than MAX_SYMREF_DEPTH symrefs are chained
        """
        chain = [name]
        value = self._refs.get(name)
        while value is not None and value.startswith(SYMREF):
            if len(chain) > MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, len(chain) - 1)
            target = parse_symref_value(value)
            chain.append(target)
            value = self._refs.get(target)
        return chain, value

    def __contains__(self, refname: object) -> bool:
        return isinstance(refname, bytes) and refname in self._refs

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.allkeys())

    def __getitem__(self, name: bytes) -> bytes:
        """Get the SHA1 for a reference name.

        This method follows all symbolic references.
        """
        _, sha = self.follow(name)
        if sha is None:
            raise KeyError(name)
        return sha

    def get(self, name: bytes, default: Optional[bytes] = None) -> Optional[bytes]:
        """Get the SHA1 for a reference name, or default if it does not resolve."""
        try:
            return self[name]
        except KeyError:
            return default

    def set_symbolic_ref(self, name: bytes, other: bytes) -> None:
        """Make a ref point at another ref.

        Args:
          name: Name of the ref to set
          other: Name of the ref to point at
        """
        _check_refname(name)
        _check_refname(other)
        self._refs[name] = SYMREF + other

    def set_if_equals(
        self, name: bytes, old_ref: Optional[bytes], new_ref: bytes
    ) -> bool:
        """Compare-and-swap the ref that name resolves to.

        Args:
          name: The refname to set.
          old_ref: The old sha the refname must refer to, or None to set
            unconditionally.
          new_ref: The new sha the refname will refer to.
        Returns: True if the set was successful, False otherwise.
        """
        realnames, _ = self.follow(name)
        realname = realnames[-1]
        _check_refname(realname)
        if old_ref is not None and self._refs.get(realname) != old_ref:
            return False
        self._refs[realname] = new_ref
        logger.debug("set %s to %s", realname.decode("utf-8", "replace"), new_ref)
        return True

    def add_if_new(self, name: bytes, ref: bytes) -> bool:
        """Add a new reference only if it does not already exist."""
        if name in self._refs:
            return False
        _check_refname(name)
        self._refs[name] = ref
        return True

    def __setitem__(self, name: bytes, ref: bytes) -> None:
        """Point name (or the ref it symbolically refers to) at ref."""
        self.set_if_equals(name, None, ref)

    def remove_if_equals(self, name: bytes, old_ref: Optional[bytes]) -> bool:
        """Remove a refname only if it currently equals old_ref.

        Symbolic references are removed themselves, not their targets.
        """
        if old_ref is not None and self._refs.get(name) != old_ref:
            return False
        self._refs.pop(name, None)
        return True

    def __delitem__(self, name: bytes) -> None:
        """Remove a refname."""
        self.remove_if_equals(name, None)

    def apply(self, updates: Mapping[bytes, Optional[bytes]]) -> None:
        """Apply a batch of updates, all or nothing.

        Every name is validated before anything changes. Symbolic refs are
        followed as for ``__setitem__``.

        Args:
          updates: Mapping of ref name to new sha, or None to delete
        Raises:
          RefFormatError: if any name is invalid; no ref is changed then
        """
        resolved = {}
        for name, sha in updates.items():
            realname = self.follow(name)[0][-1] if sha is not None else name
            _check_refname(realname)
            resolved[realname] = sha
        for name, sha in resolved.items():
            if sha is None:
                self._refs.pop(name, None)
            else:
                self._refs[name] = sha

    def snapshot(self) -> dict[bytes, bytes]:
        """Return a copy of the raw contents of this container."""
        return dict(self._refs)

    def restore(self, snapshot: Mapping[bytes, bytes]) -> None:
        """Replace the contents of this container with a snapshot."""
        self._refs = dict(snapshot)
