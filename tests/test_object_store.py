# test_object_store.py -- Tests for the object store
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

"""Tests for the object store interface."""

import stat

from gitstream.errors import (
    MissingObject,
    NotBlobError,
    NotCommitError,
    ObjectFormatException,
    PathNotFound,
)
from gitstream.object_store import (
    MemoryObjectStore,
    OverlayObjectStore,
    commit_tree_changes,
    find_reachable,
    is_ancestor,
    iter_tree_contents,
    shallow_get_parents,
    walk_commits,
)
from gitstream.objects import Blob, Commit, Tag, Tree, TreeEntry

from . import TestCase
from .utils import DEFAULT_TIME, F, build_commit, build_tree, make_commit


class MemoryObjectStoreTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()

    def test_add_and_get(self) -> None:
        blob = Blob.from_string(b"yummy data")
        self.assertEqual(blob.id, self.store.add_object(blob))
        self.assertIn(blob.id, self.store)
        self.assertEqual(blob, self.store[blob.id])
        self.assertEqual((Blob.type_num, b"yummy data"), self.store.get_raw(blob.id))
        self.assertEqual([blob.id], list(self.store))

    def test_add_is_idempotent(self) -> None:
        blob = Blob.from_string(b"yummy data")
        self.store.add_object(blob)
        self.store.add_object(blob)
        self.assertEqual(1, len(self.store))

    def test_get_returns_fresh_objects(self) -> None:
        tree = Tree()
        self.store.add_object(tree)
        fetched = self.store[tree.id]
        fetched[b"x"] = (F, Blob.from_string(b"x").id)
        self.assertEqual(0, len(self.store.get_tree(tree.id)))

    def test_missing(self) -> None:
        self.assertNotIn(b"1" * 40, self.store)
        self.assertRaises(MissingObject, self.store.__getitem__, b"1" * 40)
        self.assertNotIn("not bytes", self.store)

    def test_add_raw(self) -> None:
        blob = Blob.from_string(b"data")
        self.assertEqual(blob.id, self.store.add_raw(Blob.type_num, b"data"))
        self.assertEqual(blob.id, self.store.add_raw(Blob.type_num, b"data"))
        self.assertEqual(1, len(self.store))
        self.assertRaises(ObjectFormatException, self.store.add_raw, 5, b"data")
        self.assertEqual(1, len(self.store))

    def test_get_commit_peels_tags(self) -> None:
        commit = build_commit(self.store, {b"a": b"a"})
        tag = Tag()
        tag.object = (Commit, commit.id)
        tag.name = b"v1"
        tag.message = b"v1\n"
        self.store.add_object(tag)
        self.assertEqual(commit.id, self.store.get_commit(tag.id).id)
        self.assertEqual(commit.tree, self.store.get_tree(tag.id).id)
        self.assertRaises(NotCommitError, self.store.get_commit, commit.tree)

    def test_get_blob(self) -> None:
        blob = Blob.from_string(b"data")
        self.store.add_object(blob)
        self.assertEqual(b"data", self.store.get_blob(blob.id).data)
        self.store.add_object(Tree())
        self.assertRaises(NotBlobError, self.store.get_blob, Tree().id)

    def test_lookup_path(self) -> None:
        tree_id = build_tree(self.store, {b"a/b/c": b"c", b"d": b"d"})
        mode, sha = self.store.lookup_path(tree_id, b"a/b/c")
        self.assertEqual(F, mode)
        self.assertEqual(Blob.from_string(b"c").id, sha)
        mode, _ = self.store.lookup_path(tree_id, "a/b")
        self.assertEqual(stat.S_IFDIR, mode)
        self.assertEqual((stat.S_IFDIR, tree_id), self.store.lookup_path(tree_id, b""))
        self.assertRaises(PathNotFound, self.store.lookup_path, tree_id, b"a/x")
        self.assertRaises(PathNotFound, self.store.lookup_path, tree_id, b"d/x")

    def test_resolve_tree(self) -> None:
        commit = build_commit(self.store, {b"a/b": b"b"})
        self.assertEqual(
            Blob.from_string(b"b").id, self.store.resolve_tree(commit.id, b"a/b")
        )


class OverlayObjectStoreTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.base = MemoryObjectStore()
        self.base_blob = Blob.from_string(b"base")
        self.base.add_object(self.base_blob)

    def test_reads_see_both(self) -> None:
        overlay = OverlayObjectStore(self.base)
        blob = Blob.from_string(b"new")
        overlay.add_object(blob)
        self.assertIn(blob.id, overlay)
        self.assertIn(self.base_blob.id, overlay)
        self.assertNotIn(blob.id, self.base)
        self.assertEqual({blob.id, self.base_blob.id}, set(overlay))
        self.assertEqual([blob.id], overlay.pending)

    def test_commit(self) -> None:
        overlay = OverlayObjectStore(self.base)
        blob = Blob.from_string(b"new")
        overlay.add_object(blob)
        self.assertEqual(1, overlay.commit())
        self.assertIn(blob.id, self.base)
        self.assertEqual([], overlay.pending)

    def test_context_manager_discards_on_error(self) -> None:
        blob = Blob.from_string(b"new")
        with self.assertRaises(RuntimeError):
            with OverlayObjectStore(self.base) as overlay:
                overlay.add_object(blob)
                raise RuntimeError("boom")
        self.assertNotIn(blob.id, self.base)

    def test_context_manager_commits(self) -> None:
        blob = Blob.from_string(b"new")
        with OverlayObjectStore(self.base) as overlay:
            overlay.add_object(blob)
        self.assertIn(blob.id, self.base)


class WalkTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()
        self.c1 = build_commit(self.store, {b"a": b"1"}, commit_time=DEFAULT_TIME)
        self.c2 = build_commit(
            self.store, {b"a": b"2"}, [self.c1.id], commit_time=DEFAULT_TIME + 1
        )
        self.c3 = build_commit(
            self.store,
            {b"a": b"2", b"b": b"3"},
            [self.c2.id],
            commit_time=DEFAULT_TIME + 2,
        )

    def test_find_reachable(self) -> None:
        reachable = find_reachable(self.store, [self.c3.id])
        self.assertEqual(9, len(reachable.shas))
        self.assertEqual(self.c3.id, reachable.shas[0])
        self.assertEqual(set(), reachable.omitted)

    def test_find_reachable_excludes(self) -> None:
        reachable = find_reachable(self.store, [self.c3.id], [self.c2.id])
        self.assertEqual(
            {self.c3.id, self.c3.tree, Blob.from_string(b"3").id},
            set(reachable.shas),
        )

    def test_find_reachable_ignores_unknown_exclude(self) -> None:
        reachable = find_reachable(self.store, [self.c1.id], [b"f" * 40])
        self.assertEqual(3, len(reachable.shas))

    def test_find_reachable_missing_root(self) -> None:
        self.assertRaises(MissingObject, find_reachable, self.store, [b"f" * 40])

    def test_find_reachable_shallow(self) -> None:
        get_parents = shallow_get_parents([self.c2.id])
        reachable = find_reachable(self.store, [self.c3.id], get_parents=get_parents)
        self.assertNotIn(self.c1.id, reachable.shas)
        self.assertEqual({self.c1.id}, reachable.omitted)

    def test_find_reachable_missing_parent(self) -> None:
        orphan = make_commit(parents=[b"e" * 40], tree=self.c1.tree)
        self.store.add_object(orphan)
        reachable = find_reachable(self.store, [orphan.id])
        self.assertEqual({b"e" * 40}, reachable.omitted)

    def test_is_ancestor(self) -> None:
        self.assertTrue(is_ancestor(self.store, self.c1.id, self.c3.id))
        self.assertTrue(is_ancestor(self.store, self.c3.id, self.c3.id))
        self.assertFalse(is_ancestor(self.store, self.c3.id, self.c1.id))
        self.assertFalse(is_ancestor(self.store, b"f" * 40, self.c3.id))
        self.assertFalse(
            is_ancestor(
                self.store,
                self.c1.id,
                self.c3.id,
                shallow_get_parents([self.c2.id]),
            )
        )

    def test_walk_commits(self) -> None:
        self.assertEqual(
            [self.c3.id, self.c2.id, self.c1.id],
            [c.id for c in walk_commits(self.store, [self.c3.id])],
        )

    def test_iter_tree_contents(self) -> None:
        tree_id = build_tree(self.store, {b"a/b": b"b", b"c": b"c"})
        self.assertEqual(
            [b"a/b", b"c"],
            [entry.path for entry in iter_tree_contents(self.store, tree_id)],
        )
        with_trees = list(iter_tree_contents(self.store, tree_id, include_trees=True))
        self.assertEqual([b"", b"a", b"a/b", b"c"], [e.path for e in with_trees])


class CommitTreeChangesTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()
        self.blob_a = Blob.from_string(b"a")
        self.blob_c = Blob.from_string(b"c")
        self.store.add_objects([self.blob_a, self.blob_c])
        self.tree_id = build_tree(self.store, {b"a": b"a", b"d/c": b"c", b"e/f": b"c"})

    def test_add_nested(self) -> None:
        new_tree = commit_tree_changes(
            self.store, self.tree_id, [(b"x/y/z", F, self.blob_a.id)]
        )
        self.assertEqual(
            [b"a", b"d/c", b"e/f", b"x/y/z"],
            [e.path for e in iter_tree_contents(self.store, new_tree)],
        )

    def test_untouched_subtrees_keep_ids(self) -> None:
        new_tree = commit_tree_changes(
            self.store, self.tree_id, [(b"d/c", F, self.blob_a.id)]
        )
        old = self.store.get_tree(self.tree_id)
        new = self.store.get_tree(new_tree)
        self.assertEqual(old[b"e"], new[b"e"])
        self.assertNotEqual(old[b"d"], new[b"d"])

    def test_delete_prunes_empty_directories(self) -> None:
        new_tree = commit_tree_changes(self.store, self.tree_id, [(b"d/c", None, None)])
        self.assertEqual(
            [b"a", b"e/f"],
            [e.path for e in iter_tree_contents(self.store, new_tree)],
        )

    def test_delete_missing_is_noop(self) -> None:
        new_tree = commit_tree_changes(
            self.store, self.tree_id, [(b"nothere", None, None), (b"a/b", None, None)]
        )
        self.assertEqual(self.tree_id, new_tree)

    def test_delete_under_missing_directory_stores_nothing(self) -> None:
        before = len(self.store)
        new_tree = commit_tree_changes(
            self.store, self.tree_id, [(b"gone/deeper/file", None, None)]
        )
        self.assertEqual(self.tree_id, new_tree)
        self.assertEqual(before, len(self.store))
        self.assertNotIn(Tree().id, self.store)

    def test_emptied_directory_is_not_stored(self) -> None:
        commit_tree_changes(self.store, self.tree_id, [(b"d/c", None, None)])
        self.assertNotIn(Tree().id, self.store)

    def test_file_replaces_directory(self) -> None:
        new_tree = commit_tree_changes(self.store, self.tree_id, [(b"d", F, self.blob_a.id)])
        self.assertEqual(
            TreeEntry(b"d", F, self.blob_a.id),
            [e for e in self.store.get_tree(new_tree).items() if e.path == b"d"][0],
        )

    def test_directory_replaces_file(self) -> None:
        new_tree = commit_tree_changes(
            self.store, self.tree_id, [(b"a/b", F, self.blob_c.id)]
        )
        self.assertEqual(
            (F, self.blob_c.id), self.store.lookup_path(new_tree, b"a/b")
        )
