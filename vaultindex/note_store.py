"""
Note index using SQLite.

Three tables mirror the vault:
- notes: one row per markdown file, keyed by absolute path
- links: outgoing wiki links, owned by a note (target left unresolved)
- tasks: checklist items, owned by a note

Link and task rows carry no foreign key. Ownership is kept by always
deleting a note's tasks and links before the note itself.

The store holds a single connection. ``transaction()`` groups writes into
one unit of work; outside of it every write commits immediately.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_NOTE_COLUMNS = "id, path, title, created, modified, tags, embedding, last_embedded"

# Cutoffs may be given as datetimes (naive means local time) or epoch seconds
Since = Union[datetime, float, int, None]


def to_epoch(since: Since) -> Optional[float]:
    if since is None:
        return None
    if isinstance(since, datetime):
        return since.timestamp()
    return float(since)


@dataclass
class NoteRecord:
    """
    A persisted note.

    ``id`` is assigned on first sighting of a path and survives in-place
    updates. The embedding is only trustworthy while
    ``last_embedded >= modified``.
    """
    id: int
    path: str
    title: str
    created: float
    modified: float
    tags: str = ""
    embedding: Optional[bytes] = None
    last_embedded: Optional[float] = None

    @property
    def tag_list(self) -> list[str]:
        return [t for t in self.tags.split(",") if t] if self.tags else []

    @property
    def embedding_is_current(self) -> bool:
        return (
            bool(self.embedding)
            and self.last_embedded is not None
            and self.last_embedded >= self.modified
        )


@dataclass
class LinkRecord:
    from_id: int
    to_title: str


@dataclass
class TaskRecord:
    id: int
    note_id: int
    line: int
    text: str
    state: str

    @property
    def done(self) -> bool:
        return self.state == "done"


class NoteStore:
    """
    SQLite-backed index of notes, links and tasks.

    Embedding columns live on the notes table but are only written through
    ``set_embedding`` / ``reset_embeddings``. Note updates leave them alone.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file

        Raises:
            StoreUnavailableError: If the file or its directory cannot be
                created or opened
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False
        try:
            self._init_db()
        except (OSError, sqlite3.Error) as e:
            self.close()
            raise StoreUnavailableError(
                f"Cannot open index database at {self._db_path}: {e}"
            ) from e

    @property
    def path(self) -> Path:
        return self._db_path

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transaction() issues BEGIN/COMMIT itself
        self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id INTEGER PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                created DOUBLE NOT NULL,
                modified DOUBLE NOT NULL,
                tags TEXT NOT NULL DEFAULT '',
                embedding BLOB,
                last_embedded DOUBLE
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS links (
                from_id INTEGER NOT NULL,
                to_title TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY,
                note_id INTEGER NOT NULL,
                line_no INTEGER NOT NULL,
                text TEXT NOT NULL,
                state TEXT NOT NULL CHECK (state IN ('todo', 'done'))
            )
        """)

        # Databases written before embeddings existed lack these columns
        columns = {row["name"] for row in self._conn.execute("PRAGMA table_info(notes)")}
        if "embedding" not in columns:
            self._conn.execute("ALTER TABLE notes ADD COLUMN embedding BLOB")
        if "last_embedded" not in columns:
            self._conn.execute("ALTER TABLE notes ADD COLUMN last_embedded DOUBLE")

        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_links_from ON links(from_id)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_links_to ON links(to_title)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_note ON tasks(note_id)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_notes_modified ON notes(modified)")

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["NoteStore"]:
        """
        Run a block as one unit of work.

        Commits on normal exit. On any exception every write made inside the
        block is rolled back and the exception propagates. Nested calls join
        the outer transaction.
        """
        if self._in_transaction:
            yield self
            return

        self._conn.execute("BEGIN")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            logger.debug("Rolled back transaction on %s", self._db_path)
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_transaction = False

    # -------------------------------------------------------------------------
    # Note Write Operations
    # -------------------------------------------------------------------------

    def insert_note(
        self,
        path: str,
        title: str,
        created: float,
        modified: float,
        tags: str,
    ) -> int:
        """
        Insert a new note row.

        Returns:
            The freshly assigned note id
        """
        cursor = self._conn.execute("""
            INSERT INTO notes (path, title, created, modified, tags)
            VALUES (?, ?, ?, ?, ?)
        """, (path, title, created, modified, tags))
        return cursor.lastrowid

    def update_note(
        self,
        note_id: int,
        title: str,
        created: float,
        modified: float,
        tags: str,
    ) -> bool:
        """
        Update a note's mutable fields in place, keeping its id.

        Returns:
            True if the note was found and updated
        """
        cursor = self._conn.execute("""
            UPDATE notes
            SET title = ?, created = ?, modified = ?, tags = ?
            WHERE id = ?
        """, (title, created, modified, tags, note_id))
        return cursor.rowcount > 0

    def delete_children(self, note_id: int) -> None:
        """Delete a note's tasks, then its links."""
        self._conn.execute("DELETE FROM tasks WHERE note_id = ?", (note_id,))
        self._conn.execute("DELETE FROM links WHERE from_id = ?", (note_id,))

    def delete_note(self, note_id: int) -> bool:
        """
        Delete a note and everything it owns (tasks, links, then the note).

        Returns:
            True if the note existed
        """
        self.delete_children(note_id)
        cursor = self._conn.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        return cursor.rowcount > 0

    def clear(self) -> None:
        """Delete every note, link and task."""
        self._conn.execute("DELETE FROM tasks")
        self._conn.execute("DELETE FROM links")
        self._conn.execute("DELETE FROM notes")

    def insert_link(self, from_id: int, to_title: str) -> None:
        self._conn.execute(
            "INSERT INTO links (from_id, to_title) VALUES (?, ?)",
            (from_id, to_title),
        )

    def insert_task(self, note_id: int, line: int, text: str, state: str) -> int:
        cursor = self._conn.execute("""
            INSERT INTO tasks (note_id, line_no, text, state)
            VALUES (?, ?, ?, ?)
        """, (note_id, line, text, state))
        return cursor.lastrowid

    # -------------------------------------------------------------------------
    # Note Read Operations
    # -------------------------------------------------------------------------

    def get(self, note_id: int) -> Optional[NoteRecord]:
        """Get a note by id."""
        row = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ?", (note_id,)
        ).fetchone()
        return _row_to_note(row) if row is not None else None

    def get_by_path(self, path: str) -> Optional[NoteRecord]:
        """Get a note by its absolute path."""
        row = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE path = ?", (path,)
        ).fetchone()
        return _row_to_note(row) if row is not None else None

    def list_notes(self) -> list[NoteRecord]:
        """All notes in id order."""
        cursor = self._conn.execute(f"SELECT {_NOTE_COLUMNS} FROM notes ORDER BY id")
        return [_row_to_note(row) for row in cursor]

    def ids_by_path(self) -> dict[str, int]:
        """Map of every indexed path to its note id."""
        cursor = self._conn.execute("SELECT id, path FROM notes")
        return {row["path"]: row["id"] for row in cursor}

    def find_by_text(self, query: str, limit: int = 5) -> list[NoteRecord]:
        """
        Substring match on title or path.

        This is the non-semantic fallback for when no embeddings match.

        Args:
            query: Text to look for (case-insensitive for ASCII)
            limit: Maximum results

        Returns:
            Matching notes in id order
        """
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        cursor = self._conn.execute(f"""
            SELECT {_NOTE_COLUMNS} FROM notes
            WHERE title LIKE ? ESCAPE '\\' OR path LIKE ? ESCAPE '\\'
            ORDER BY id
            LIMIT ?
        """, (pattern, pattern, limit))
        return [_row_to_note(row) for row in cursor]

    def links_for_note(self, note_id: int) -> list[LinkRecord]:
        cursor = self._conn.execute(
            "SELECT from_id, to_title FROM links WHERE from_id = ? ORDER BY rowid",
            (note_id,),
        )
        return [LinkRecord(from_id=row["from_id"], to_title=row["to_title"]) for row in cursor]

    def backlinks(self, title: str) -> list[NoteRecord]:
        """Notes that link to ``title``."""
        cursor = self._conn.execute(f"""
            SELECT {_NOTE_COLUMNS} FROM notes
            WHERE id IN (SELECT from_id FROM links WHERE to_title = ?)
            ORDER BY id
        """, (title,))
        return [_row_to_note(row) for row in cursor]

    def notes_with_tag(self, tag: str) -> list[NoteRecord]:
        """
        Notes carrying ``tag`` as one of their comma-separated tags.

        Matches whole tags only (ASCII case-insensitive): ``project`` does
        not match ``projects``.
        """
        escaped = tag.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cursor = self._conn.execute(f"""
            SELECT {_NOTE_COLUMNS} FROM notes
            WHERE ',' || tags || ',' LIKE ? ESCAPE '\\'
            ORDER BY id
        """, (f"%,{escaped},%",))
        return [_row_to_note(row) for row in cursor]

    def get_by_title(self, title: str) -> Optional[NoteRecord]:
        """First note (lowest id) with exactly this title."""
        row = self._conn.execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE title = ? ORDER BY id LIMIT 1",
            (title,),
        ).fetchone()
        return _row_to_note(row) if row is not None else None

    def tasks_for_note(self, note_id: int) -> list[TaskRecord]:
        cursor = self._conn.execute("""
            SELECT id, note_id, line_no, text, state FROM tasks
            WHERE note_id = ?
            ORDER BY line_no, id
        """, (note_id,))
        return [_row_to_task(row) for row in cursor]

    def tasks_for_path(self, path: str) -> list[TaskRecord]:
        """Tasks of the note at ``path``; empty if the path is not indexed."""
        note = self.get_by_path(path)
        if note is None:
            return []
        return self.tasks_for_note(note.id)

    def open_tasks(self) -> list[TaskRecord]:
        """Every todo task across the vault, grouped by note."""
        cursor = self._conn.execute("""
            SELECT id, note_id, line_no, text, state FROM tasks
            WHERE state = 'todo'
            ORDER BY note_id, line_no, id
        """)
        return [_row_to_task(row) for row in cursor]

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------

    def notes_needing_embedding(self, since: Optional[float] = None) -> list[NoteRecord]:
        """
        Notes due for (re)embedding.

        Args:
            since: If given, every note modified after this epoch time,
                regardless of embedding state. Otherwise notes never
                embedded or modified after their last embedding.
        """
        if since is not None:
            cursor = self._conn.execute(f"""
                SELECT {_NOTE_COLUMNS} FROM notes
                WHERE modified > ?
                ORDER BY id
            """, (since,))
        else:
            cursor = self._conn.execute(f"""
                SELECT {_NOTE_COLUMNS} FROM notes
                WHERE embedding IS NULL
                   OR last_embedded IS NULL
                   OR modified > last_embedded
                ORDER BY id
            """)
        return [_row_to_note(row) for row in cursor]

    def set_embedding(self, note_id: int, blob: bytes, embedded_at: float) -> bool:
        cursor = self._conn.execute("""
            UPDATE notes SET embedding = ?, last_embedded = ?
            WHERE id = ?
        """, (blob, embedded_at, note_id))
        return cursor.rowcount > 0

    def reset_embeddings(self) -> int:
        """Clear every stored embedding. Returns the number of notes touched."""
        cursor = self._conn.execute("""
            UPDATE notes SET embedding = NULL, last_embedded = NULL
            WHERE embedding IS NOT NULL OR last_embedded IS NOT NULL
        """)
        return cursor.rowcount

    def iter_embedded(self) -> Iterator[NoteRecord]:
        """Notes with a non-empty embedding, in storage (id) order."""
        cursor = self._conn.execute(f"""
            SELECT {_NOTE_COLUMNS} FROM notes
            WHERE embedding IS NOT NULL AND length(embedding) > 0
            ORDER BY id
        """)
        for row in cursor:
            yield _row_to_note(row)

    # -------------------------------------------------------------------------
    # Counts
    # -------------------------------------------------------------------------

    def count_notes(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0]

    def count_links(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM links").fetchone()[0]

    def count_tasks(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM tasks").fetchone()[0]

    def count_embedded(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM notes WHERE embedding IS NOT NULL AND length(embedding) > 0"
        ).fetchone()[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()


def _row_to_note(row: sqlite3.Row) -> NoteRecord:
    embedding = row["embedding"]
    return NoteRecord(
        id=row["id"],
        path=row["path"],
        title=row["title"],
        created=row["created"],
        modified=row["modified"],
        tags=row["tags"] or "",
        embedding=bytes(embedding) if embedding is not None else None,
        last_embedded=row["last_embedded"],
    )


def _row_to_task(row: sqlite3.Row) -> TaskRecord:
    return TaskRecord(
        id=row["id"],
        note_id=row["note_id"],
        line=row["line_no"],
        text=row["text"],
        state=row["state"],
    )
