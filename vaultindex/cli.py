"""
CLI interface for vaultindex.

Usage:
    vaultindex index --vault ~/Obsidian
    vaultindex embed
    vaultindex search "meeting notes about the launch"
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .config import DEFAULT_VAULT_PATH, IndexConfig, load_or_create_config
from .document import parse_document
from .embeddings import embed_notes, search as semantic_search
from .errors import EmbeddingError, ReconcileError, StoreUnavailableError, log_exception
from .logging_config import (
    configure_ops_log,
    configure_quiet_mode,
    detach_ops_log,
    enable_debug_mode,
)
from .note_store import NoteStore
from .providers.base import EmbeddingProvider, get_registry
from .reconcile import reconcile

# Configure quiet mode by default (suppress verbose library output)
# Set VAULTINDEX_VERBOSE=1 to enable debug mode via environment
if os.environ.get("VAULTINDEX_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


def _parse_since(value: Optional[str]) -> Optional[datetime]:
    """Accept ISO-8601 datetimes or plain YYYY-MM-DD dates."""
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(
            f"Invalid timestamp: {value} (expected ISO-8601 or YYYY-MM-DD)"
        )


app = typer.Typer(
    name="vaultindex",
    help="Index a markdown vault and search it by meaning.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


VaultOption = Annotated[Optional[Path], typer.Option(
    "--vault",
    help="Path to the vault (default: config, then ~/Obsidian)",
)]

DbOption = Annotated[Optional[Path], typer.Option(
    "--db",
    help="Path to the SQLite index (default: config, then ~/.vaultindex/state.sqlite)",
)]

SinceOption = Annotated[Optional[str], typer.Option(
    "--since",
    help="ISO datetime or YYYY-MM-DD; only consider notes modified after it",
)]


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
):
    """Index a markdown vault and search it by meaning."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

_ops_handler: Optional[logging.Handler] = None
_log_dir: Optional[Path] = None  # error log goes beside the index


def _load_config() -> IndexConfig:
    global _log_dir
    try:
        config = load_or_create_config()
    except (OSError, ValueError, RuntimeError) as e:
        typer.echo(f"Error: cannot load config: {e}", err=True)
        raise typer.Exit(1)
    _log_dir = config.store.expanduser().parent
    return config


def _open_store(db: Optional[Path], config: IndexConfig) -> NoteStore:
    """Open the index, attaching the ops log beside it."""
    global _ops_handler, _log_dir
    db_path = (db or config.store).expanduser()
    _log_dir = db_path.parent
    try:
        store = NoteStore(db_path)
    except StoreUnavailableError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    detach_ops_log(_ops_handler)
    _ops_handler = configure_ops_log(db_path.parent)
    return store


def _make_provider(
    config: IndexConfig,
    model: Optional[str] = None,
    host: Optional[str] = None,
    required: bool = True,
) -> Optional[EmbeddingProvider]:
    """Build the configured provider. When not required, failure warns and returns None."""
    params = dict(config.embedding.params)
    if model:
        params["model"] = model
    if host:
        params["base_url"] = host
    try:
        return get_registry().create(config.embedding.name, params)
    except (ValueError, RuntimeError) as e:
        if not required:
            typer.echo(f"Warning: semantic search unavailable: {e}", err=True)
            return None
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def index(
    vault: VaultOption = None,
    db: DbOption = None,
    since: SinceOption = None,
):
    """
    Scan the vault and refresh the index.

    Without --since the index is rebuilt from scratch. With --since, notes
    deleted from disk are removed and only newer files are re-read.
    """
    config = _load_config()
    vault_path = (vault or config.vault or DEFAULT_VAULT_PATH).expanduser()
    since_dt = _parse_since(since)
    store = _open_store(db, config)
    try:
        typer.echo(
            f"Indexing vault at {vault_path} into DB at {store.path} "
            f"since={since_dt.isoformat() if since_dt else '<none>'}..."
        )
        try:
            result = reconcile(vault_path, store, since=since_dt)
        except ReconcileError as e:
            log_path = log_exception(e, context="vaultindex index", log_dir=_log_dir)
            typer.echo(f"Error: {e}", err=True)
            typer.echo("No changes were saved.", err=True)
            typer.echo(f"Details logged to {log_path}", err=True)
            raise typer.Exit(1)
        typer.echo(
            f"Index complete: {result.inserted} added, {result.updated} updated, "
            f"{result.deleted} removed, {result.skipped} unchanged."
        )
    finally:
        store.close()


@app.command()
def embed(
    db: DbOption = None,
    model: Annotated[Optional[str], typer.Option(
        "--model",
        help="Embedding model (overrides config)",
    )] = None,
    host: Annotated[Optional[str], typer.Option(
        "--host",
        help="Ollama host URL (overrides config)",
    )] = None,
    reset: Annotated[bool, typer.Option(
        "--reset",
        help="Clear existing embeddings and re-embed the entire vault",
    )] = False,
    since: SinceOption = None,
):
    """Compute and store embeddings for notes that need them."""
    config = _load_config()
    since_dt = _parse_since(since)
    provider = _make_provider(config, model=model, host=host)

    ensure = getattr(provider, "ensure_available", None)
    if ensure is not None:
        try:
            ensure()
        except EmbeddingError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)

    store = _open_store(db, config)
    try:
        if reset:
            typer.echo("Resetting all embeddings...")

        def progress(path: str, ok: bool) -> None:
            color = typer.colors.GREEN if ok else typer.colors.RED
            typer.echo(typer.style(".", fg=color), nl=False)

        result = embed_notes(
            store, provider, since=since_dt, reset=reset, on_progress=progress,
        )
        typer.echo("")
        for path, message in result.failures:
            typer.echo(f"Warning: failed to embed '{path}': {message}", err=True)
        typer.echo(f"Embedded {result.embedded} notes.")
        if result.failed:
            typer.echo(f"Skipped {result.failed} notes due to errors.")
    finally:
        store.close()


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Query text")],
    top: Annotated[Optional[int], typer.Option(
        "--top", "-n",
        help="Maximum number of results (default: config, then 5)",
    )] = None,
    db: DbOption = None,
):
    """
    Find the notes most related to a query.

    Falls back to a title/path substring match when no embeddings can be
    ranked.
    """
    config = _load_config()
    limit = top if top is not None else config.top_k
    store = _open_store(db, config)
    try:
        results = []
        if store.count_embedded():
            provider = _make_provider(config, required=False)
            if provider is not None:
                try:
                    results = semantic_search(store, provider, query, k=limit)
                except EmbeddingError as e:
                    typer.echo(f"Warning: semantic search unavailable: {e}", err=True)

        if results:
            for r in results:
                typer.echo(f"- {r.title} ({r.path}) [{r.score:.3f}]")
            return

        matches = store.find_by_text(query, limit=limit)
        if not matches:
            typer.echo(f"No matching notes found for query: '{query}'")
            return
        for note in matches:
            typer.echo(f"- {note.title} ({note.path})")
    finally:
        store.close()


@app.command()
def tasks(
    db: DbOption = None,
    path: Annotated[Optional[Path], typer.Option(
        "--path",
        help="Only tasks from this note",
    )] = None,
    show_all: Annotated[bool, typer.Option(
        "--all", "-a",
        help="Include completed tasks",
    )] = False,
):
    """List open tasks across the vault (or in one note)."""
    config = _load_config()
    store = _open_store(db, config)
    try:
        if path is not None:
            note_path = str(path.expanduser().resolve())
            note = store.get_by_path(note_path)
            if note is None:
                typer.echo(f"Not indexed: {note_path}", err=True)
                raise typer.Exit(1)
            notes = {note.id: note}
            items = store.tasks_for_note(note.id)
        else:
            notes = {n.id: n for n in store.list_notes()}
            if show_all:
                items = [t for note_id in notes for t in store.tasks_for_note(note_id)]
            else:
                items = store.open_tasks()

        if not show_all:
            items = [t for t in items if not t.done]
        if not items:
            typer.echo("No tasks.")
            return
        for t in items:
            mark = "x" if t.done else " "
            typer.echo(f"- [{mark}] {t.text} ({notes[t.note_id].title}:{t.line})")
    finally:
        store.close()


@app.command()
def status(db: DbOption = None):
    """Show index counts."""
    config = _load_config()
    store = _open_store(db, config)
    try:
        typer.echo(f"Index: {store.path}")
        typer.echo(f"Notes: {store.count_notes()}")
        typer.echo(f"Links: {store.count_links()}")
        typer.echo(f"Tasks: {store.count_tasks()}")
        typer.echo(f"Embedded: {store.count_embedded()}")
    finally:
        store.close()


# -----------------------------------------------------------------------------
# Collections
# -----------------------------------------------------------------------------

COLLECTION_TAG = "collection"

collections_app = typer.Typer(
    name="collections",
    help="Notes tagged 'collection'.",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(collections_app)


@collections_app.command("ls")
def collections_ls(db: DbOption = None):
    """List notes tagged 'collection'."""
    config = _load_config()
    store = _open_store(db, config)
    try:
        notes = store.notes_with_tag(COLLECTION_TAG)
        if not notes:
            typer.echo("No collections.")
            return
        for note in notes:
            typer.echo(f"- {note.title}")
    finally:
        store.close()


@collections_app.command("show")
def collections_show(
    name: Annotated[str, typer.Argument(help="Title of the collection note")],
    db: DbOption = None,
):
    """Print the body of a collection note, read fresh from disk."""
    config = _load_config()
    store = _open_store(db, config)
    try:
        note = store.get_by_title(name)
    finally:
        store.close()
    if note is None:
        typer.echo(f"Error: collection '{name}' not found", err=True)
        raise typer.Exit(1)
    try:
        text = Path(note.path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        typer.echo(f"Error: cannot read {note.path}: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(parse_document(text).body, nl=False)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="vaultindex CLI", log_dir=_log_dir)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
