"""
Vault Index

Indexes a directory of markdown notes (an Obsidian-style vault) into SQLite:
notes with their front matter title and tags, outgoing wiki links, and
checklist tasks. Notes can then be embedded and searched by meaning.

Quick Start:
    from vaultindex import NoteStore, reconcile, embed_notes, search
    from vaultindex.providers import get_registry

    store = NoteStore(Path("~/.vaultindex/state.sqlite").expanduser())
    reconcile(Path("~/Obsidian"), store)            # full rebuild
    provider = get_registry().create("ollama")
    embed_notes(store, provider)
    results = search(store, provider, "meeting notes about the launch")

CLI Usage:
    vaultindex index --vault ~/Obsidian
    vaultindex index --since 2024-06-01
    vaultindex embed --reset
    vaultindex search "launch plan"
    vaultindex tasks
    vaultindex collections ls

Environment Variables:
    VAULTINDEX_CONFIG_DIR       - Override the config directory
    VAULTINDEX_VAULT            - Override the vault path
    VAULTINDEX_DB               - Override the index database path
    VAULTINDEX_OPENAI_API_KEY   - API key for the OpenAI embedding provider
    OLLAMA_HOST                 - Ollama server URL
"""

from .document import (
    Document,
    FrontMatter,
    Link,
    Task,
    TaskState,
    parse_document,
    parse_links,
    parse_tasks,
    split,
)
from .embeddings import (
    EmbedResult,
    SearchResult,
    cosine_similarity,
    decode_vector,
    embed_notes,
    encode_vector,
    search,
)
from .errors import (
    EmbeddingError,
    ReconcileError,
    StoreUnavailableError,
    VaultIndexError,
    VectorDecodeError,
)
from .note_store import NoteRecord, NoteStore, TaskRecord
from .reconcile import ReconcileResult, reconcile

__version__ = "0.1.0"
__all__ = [
    "Document",
    "FrontMatter",
    "Link",
    "Task",
    "TaskState",
    "parse_document",
    "parse_links",
    "parse_tasks",
    "split",
    "NoteStore",
    "NoteRecord",
    "TaskRecord",
    "reconcile",
    "ReconcileResult",
    "embed_notes",
    "search",
    "EmbedResult",
    "SearchResult",
    "encode_vector",
    "decode_vector",
    "cosine_similarity",
    "VaultIndexError",
    "StoreUnavailableError",
    "ReconcileError",
    "EmbeddingError",
    "VectorDecodeError",
]
