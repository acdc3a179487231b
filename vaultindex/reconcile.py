"""
Vault reconciliation: bring the note index in line with the files on disk.

Two modes:
- Full (no ``since``): wipe the index and re-read every note. Ids are
  reassigned, so deleted files simply never come back.
- Incremental (``since`` given): drop rows for paths that vanished, then
  re-read only files modified after ``since``. Existing notes keep their id.

A pass is all-or-nothing. If any file cannot be read the whole pass is
rolled back and ``ReconcileError`` names the file; the index is left
exactly as it was before the pass started.
"""

import logging
import os
import sqlite3
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .document import parse_document, parse_links, parse_tasks
from .errors import ReconcileError
from .note_store import NoteStore, Since, to_epoch

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"


@dataclass(frozen=True)
class VaultFile:
    """A markdown file found on disk. Timestamps are None if unavailable."""
    path: Path
    created: Optional[float]
    modified: Optional[float]


@dataclass
class ReconcileResult:
    """Counts from one reconciliation pass."""
    mode: str
    scanned: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    links: int = 0
    tasks: int = 0

    @property
    def indexed(self) -> int:
        return self.inserted + self.updated


def _raise_walk_error(err: OSError) -> None:
    raise ReconcileError(f"Cannot scan {err.filename}: {err}", path=Path(err.filename or ""))


def scan_vault(root: Path) -> Iterator[VaultFile]:
    """
    Find markdown notes under ``root``.

    Recurses into subdirectories, skipping hidden files and directories
    (names starting with '.'). The ``.md`` suffix match is case-insensitive.
    Files are yielded in sorted order per directory.

    Args:
        root: Vault directory (should already be absolute)

    Yields:
        VaultFile for each note
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            if os.path.splitext(name)[1].lower() != NOTE_SUFFIX:
                continue
            path = Path(dirpath) / name
            try:
                st = path.stat()
            except OSError as e:
                logger.debug("No attributes for %s: %s", path, e)
                yield VaultFile(path=path, created=None, modified=None)
                continue
            created = getattr(st, "st_birthtime", None)
            if created is None:
                created = st.st_ctime
            yield VaultFile(path=path, created=created, modified=st.st_mtime)


def read_note(path: Path) -> str:
    """
    Read a note as UTF-8 with line endings untouched.

    Raises:
        OSError: If the file cannot be read
        UnicodeDecodeError: If the file is not valid UTF-8
    """
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def reconcile(root: Path, store: NoteStore, since: Since = None) -> ReconcileResult:
    """
    Synchronize the index with the vault at ``root``.

    Args:
        root: Vault directory
        store: Open note store
        since: Incremental cutoff (datetime or epoch seconds). None runs a
            full rebuild.

    Returns:
        ReconcileResult with per-pass counts

    Raises:
        ReconcileError: If the vault is missing or a file is unreadable.
            Nothing from the pass is kept.
    """
    root = Path(root).expanduser().resolve()
    if not root.is_dir():
        raise ReconcileError(f"Vault directory not found: {root}", path=root)

    cutoff = to_epoch(since)
    result = ReconcileResult(mode="full" if cutoff is None else "incremental")
    logger.debug("Reconciling %s (%s, since=%s)", root, result.mode, cutoff)

    try:
        with store.transaction():
            files = list(scan_vault(root))
            result.scanned = len(files)

            if cutoff is None:
                store.clear()
                known: dict[str, int] = {}
            else:
                known = store.ids_by_path()
                present = {str(f.path) for f in files}
                for path, note_id in sorted(known.items(), key=lambda item: item[1]):
                    if path not in present:
                        store.delete_note(note_id)
                        result.deleted += 1
                        logger.debug("Removed %s (no longer on disk)", path)

            for vault_file in files:
                if (
                    cutoff is not None
                    and vault_file.modified is not None
                    and vault_file.modified <= cutoff
                ):
                    result.skipped += 1
                    continue
                _index_file(store, vault_file, known.get(str(vault_file.path)), result)
    except sqlite3.Error as e:
        raise ReconcileError(f"Index write failed, pass abandoned: {e}") from e

    logger.info(
        "Reconcile (%s) complete: %d scanned, %d inserted, %d updated, "
        "%d deleted, %d unchanged",
        result.mode, result.scanned, result.inserted, result.updated,
        result.deleted, result.skipped,
    )
    return result


def _index_file(
    store: NoteStore,
    vault_file: VaultFile,
    existing_id: Optional[int],
    result: ReconcileResult,
) -> None:
    """Parse one note and replace its rows. Raises ReconcileError if unreadable."""
    path = vault_file.path
    try:
        text = read_note(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Cannot read %s: %s", path, e)
        raise ReconcileError(f"Cannot read {path}: {e}", path=path) from e

    doc = parse_document(text)
    title = doc.title if doc.title is not None else path.stem
    tags = ",".join(doc.tags)
    now = time.time()
    created = vault_file.created if vault_file.created is not None else now
    modified = vault_file.modified if vault_file.modified is not None else now

    if existing_id is not None:
        store.delete_children(existing_id)
        store.update_note(existing_id, title, created, modified, tags)
        note_id = existing_id
        result.updated += 1
    else:
        note_id = store.insert_note(str(path), title, created, modified, tags)
        result.inserted += 1

    for link in parse_links(doc.body):
        store.insert_link(note_id, link.target)
        result.links += 1
    for task in parse_tasks(doc.body):
        store.insert_task(note_id, task.line, task.text, task.state.value)
        result.tasks += 1
