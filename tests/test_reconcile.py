"""Tests for vault reconciliation (full and incremental)."""

import os
from datetime import datetime

import pytest

from vaultindex.errors import ReconcileError
from vaultindex.reconcile import reconcile, scan_vault

from conftest import write_note


ALPHA = "---\ntitle: Alpha\ntags: [tag1, tag2]\n---\nBody with [[Beta]]\n- [ ] open item\n"


def _paths(store):
    return sorted(n.path for n in store.list_notes())


class TestScanVault:

    def test_finds_markdown_recursively(self, vault):
        write_note(vault, "a.md", "a")
        write_note(vault, "sub/Deep.MD", "deep")
        write_note(vault, "sub/inner/c.md", "c")
        write_note(vault, "notes.txt", "not markdown")
        write_note(vault, "README", "no suffix")

        names = [f.path.name for f in scan_vault(vault)]
        assert sorted(names) == ["Deep.MD", "a.md", "c.md"]

    def test_skips_hidden_entries(self, vault):
        write_note(vault, ".hidden.md", "h")
        write_note(vault, ".obsidian/workspace.md", "w")
        write_note(vault, "sub/.trash/old.md", "o")
        write_note(vault, "visible.md", "v")
        assert [f.path.name for f in scan_vault(vault)] == ["visible.md"]

    def test_captures_timestamps(self, vault):
        write_note(vault, "a.md", "a", mtime=1_000_000.0)
        (found,) = list(scan_vault(vault))
        assert found.modified == 1_000_000.0
        assert found.created is not None


class TestFullReconcile:

    def test_single_note_with_header(self, vault, store):
        write_note(vault, "alpha.md", ALPHA)
        result = reconcile(vault, store)

        assert result.mode == "full"
        assert result.inserted == 1
        assert store.count_notes() == 1
        (note,) = store.list_notes()
        assert note.title == "Alpha"
        assert note.tags == "tag1,tag2"
        assert note.path == str(vault.resolve() / "alpha.md")

    def test_links_and_tasks_stored(self, vault, store):
        write_note(vault, "alpha.md", ALPHA + "- [x] finished\n")
        result = reconcile(vault, store)

        (note,) = store.list_notes()
        assert [l.to_title for l in store.links_for_note(note.id)] == ["Beta"]
        tasks = store.tasks_for_note(note.id)
        assert [(t.line, t.text, t.state) for t in tasks] == [
            (2, "open item", "todo"),
            (3, "finished", "done"),
        ]
        assert (result.links, result.tasks) == (1, 2)

    def test_title_defaults_to_stem(self, vault, store):
        write_note(vault, "My Note.md", "no header here")
        write_note(vault, "numeric.md", "---\ntitle: 12\n---\nbody")
        reconcile(vault, store)
        assert sorted(n.title for n in store.list_notes()) == ["My Note", "numeric"]

    def test_non_string_tags_dropped(self, vault, store):
        write_note(vault, "a.md", "---\ntags: [a, 1, b]\n---\n")
        write_note(vault, "b.md", "no tags")
        reconcile(vault, store)
        assert [n.tags for n in store.list_notes()] == ["a,b", ""]

    def test_broken_header_still_indexed(self, vault, store):
        write_note(vault, "a.md", "---\ntitle: Foo\ntags: [x, y]\nbad: [\n---\nbody")
        reconcile(vault, store)
        (note,) = store.list_notes()
        assert note.title == "Foo"
        assert note.tags == "x,y"

    def test_impossible_date_does_not_abort_pass(self, vault, store):
        write_note(vault, "good.md", "---\ntitle: Good\n---\nfine")
        write_note(vault, "typo.md", "---\ntitle: Typo\ndate: 2024-13-01\n---\nbody")
        result = reconcile(vault, store)
        assert result.inserted == 2
        assert sorted(n.title for n in store.list_notes()) == ["Good", "Typo"]

    def test_crlf_note(self, vault, store):
        write_note(vault, "win.md", "---\r\ntitle: Windows\r\n---\r\n- [ ] task\r\n")
        reconcile(vault, store)
        (note,) = store.list_notes()
        assert note.title == "Windows"
        assert [t.text for t in store.tasks_for_note(note.id)] == ["task"]

    def test_modified_time_recorded(self, vault, store):
        write_note(vault, "a.md", "a", mtime=1_234_567.0)
        reconcile(vault, store)
        assert store.list_notes()[0].modified == 1_234_567.0

    def test_full_rebuild_drops_deleted_files(self, vault, store):
        write_note(vault, "a.md", "a")
        doomed = write_note(vault, "b.md", "b [[a]]\n- [ ] t")
        reconcile(vault, store)
        doomed.unlink()

        reconcile(vault, store)
        assert [n.title for n in store.list_notes()] == ["a"]
        assert store.count_links() == 0
        assert store.count_tasks() == 0

    def test_empty_vault(self, vault, store):
        result = reconcile(vault, store)
        assert result.scanned == 0
        assert store.count_notes() == 0


class TestIncrementalReconcile:

    def test_deletion_cascade(self, vault, store):
        one = write_note(vault, "one.md", "Links to [[two]]\n- [ ] one task\n")
        write_note(vault, "two.md", "Just text\n")
        reconcile(vault, store)
        assert store.count_links() == 1
        assert store.count_tasks() == 1

        one.unlink()
        result = reconcile(vault, store, since=datetime.now())

        assert result.deleted == 1
        (note,) = store.list_notes()
        assert note.title == "two"
        assert store.count_links() == 0
        assert store.count_tasks() == 0

    def test_modified_note_keeps_id(self, vault, store):
        path = write_note(vault, "a.md", "---\ntitle: Old\n---\n- [ ] old task\n", mtime=1000.0)
        reconcile(vault, store)
        original = store.list_notes()[0]

        write_note(vault, "a.md", "---\ntitle: New\n---\n- [x] new task\n[[Link]]\n", mtime=3000.0)
        result = reconcile(vault, store, since=2000.0)

        assert result.updated == 1
        note = store.get_by_path(str(path.resolve()))
        assert note.id == original.id
        assert note.title == "New"
        assert note.modified == 3000.0
        tasks = store.tasks_for_note(note.id)
        assert [(t.text, t.state) for t in tasks] == [("new task", "done")]
        assert [l.to_title for l in store.links_for_note(note.id)] == ["Link"]

    def test_unchanged_files_left_alone(self, vault, store):
        write_note(vault, "a.md", "---\ntitle: Indexed\n---\n", mtime=1000.0)
        reconcile(vault, store)
        # Content changes but mtime stays before the cutoff
        write_note(vault, "a.md", "---\ntitle: Changed\n---\n", mtime=1000.0)

        result = reconcile(vault, store, since=2000.0)
        assert result.skipped == 1
        assert store.list_notes()[0].title == "Indexed"

    def test_new_file_after_cutoff_inserted(self, vault, store):
        write_note(vault, "a.md", "a", mtime=1000.0)
        reconcile(vault, store)
        write_note(vault, "b.md", "b", mtime=3000.0)

        result = reconcile(vault, store, since=2000.0)
        assert result.inserted == 1
        assert [n.title for n in store.list_notes()] == ["a", "b"]

    def test_new_file_before_cutoff_skipped(self, vault, store):
        write_note(vault, "a.md", "a", mtime=1000.0)
        result = reconcile(vault, store, since=2000.0)
        assert result.skipped == 1
        assert store.count_notes() == 0

    def test_since_accepts_datetime(self, vault, store):
        write_note(vault, "a.md", "a", mtime=3000.0)
        result = reconcile(vault, store, since=datetime.fromtimestamp(2000.0))
        assert result.mode == "incremental"
        assert result.inserted == 1

    def test_ids_stable_for_untouched_notes(self, vault, store):
        write_note(vault, "a.md", "a", mtime=1000.0)
        write_note(vault, "b.md", "b", mtime=1000.0)
        reconcile(vault, store)
        before = {n.path: n.id for n in store.list_notes()}

        write_note(vault, "b.md", "b2", mtime=3000.0)
        reconcile(vault, store, since=2000.0)
        assert {n.path: n.id for n in store.list_notes()} == before


class TestReconcileFailures:

    def test_missing_vault(self, tmp_path, store):
        with pytest.raises(ReconcileError):
            reconcile(tmp_path / "nowhere", store)

    def test_missing_vault_leaves_index(self, tmp_path, vault, store):
        write_note(vault, "a.md", "a")
        reconcile(vault, store)
        with pytest.raises(ReconcileError):
            reconcile(tmp_path / "nowhere", store)
        assert store.count_notes() == 1

    def test_invalid_utf8_aborts_whole_pass(self, vault, store):
        write_note(vault, "a_good.md", "---\ntitle: Before\n---\n")
        reconcile(vault, store)

        write_note(vault, "a_good.md", "---\ntitle: After\n---\n- [ ] t\n")
        bad = vault / "z_bad.md"
        bad.write_bytes(b"\xff\xfe not utf-8 \x80")

        with pytest.raises(ReconcileError) as exc_info:
            reconcile(vault, store)

        assert exc_info.value.path == bad.resolve()
        assert "z_bad.md" in str(exc_info.value)
        (note,) = store.list_notes()
        assert note.title == "Before"
        assert store.count_tasks() == 0

    def test_incremental_abort_keeps_deleted_rows(self, vault, store):
        gone = write_note(vault, "gone.md", "[[x]]", mtime=1000.0)
        reconcile(vault, store)
        gone.unlink()
        bad = vault / "bad.md"
        bad.write_bytes(b"\xff")
        os.utime(bad, (3000.0, 3000.0))

        with pytest.raises(ReconcileError):
            reconcile(vault, store, since=2000.0)
        assert [n.title for n in store.list_notes()] == ["gone"]
        assert store.count_links() == 1

    @pytest.mark.skipif(
        not hasattr(os, "geteuid") or os.geteuid() == 0,
        reason="root can read any file",
    )
    def test_unreadable_file_aborts(self, vault, store):
        locked = write_note(vault, "locked.md", "secret")
        locked.chmod(0)
        try:
            with pytest.raises(ReconcileError) as exc_info:
                reconcile(vault, store)
            assert exc_info.value.path == locked.resolve()
            assert store.count_notes() == 0
        finally:
            locked.chmod(0o644)
