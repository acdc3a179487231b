"""
Note embeddings and semantic search.

Vectors are stored on the notes table as raw little-endian IEEE-754
doubles: no header, ``8 * dimension`` bytes. Any implementation that can
read a double array can read the index.

Embedding is per-note work. A provider failure for one note is logged and
counted, and the batch carries on. Reconciliation works the other way
(all-or-nothing); see ``reconcile.py``.
"""

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .errors import EmbeddingError, VectorDecodeError
from .note_store import NoteRecord, NoteStore, Since, to_epoch
from .providers.base import EmbeddingProvider

logger = logging.getLogger(__name__)

VECTOR_DTYPE = np.dtype("<f8")

DEFAULT_TOP_K = 5


# -----------------------------------------------------------------------------
# Vector encoding
# -----------------------------------------------------------------------------

def encode_vector(vector: Sequence[float]) -> bytes:
    """Serialize a vector as little-endian float64, 8 bytes per component."""
    arr = np.asarray(vector, dtype=VECTOR_DTYPE)
    if arr.ndim != 1:
        raise ValueError(f"Expected a flat vector, got shape {arr.shape}")
    return arr.tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """
    Decode a stored embedding blob.

    Raises:
        VectorDecodeError: If the blob length is not a multiple of 8
    """
    if len(blob) % VECTOR_DTYPE.itemsize:
        raise VectorDecodeError(
            f"Embedding blob of {len(blob)} bytes is not a whole number of doubles"
        )
    return np.frombuffer(blob, dtype=VECTOR_DTYPE).astype(np.float64)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """
    Cosine similarity of two vectors of equal length.

    Returns:
        Score in [-1, 1], or None if either vector has zero norm (or is not
        finite). A zero vector has no direction, so it is unranked rather
        than scored 0.

    Raises:
        ValueError: If the lengths differ
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")
    return _score(va, float(np.linalg.norm(va)), vb)


def _score(query: np.ndarray, query_norm: float, candidate: np.ndarray) -> Optional[float]:
    candidate_norm = float(np.linalg.norm(candidate))
    if query_norm == 0.0 or candidate_norm == 0.0:
        return None
    score = float(np.dot(query, candidate)) / (query_norm * candidate_norm)
    if not math.isfinite(score):
        return None
    return max(-1.0, min(1.0, score))


# -----------------------------------------------------------------------------
# Embedding pass
# -----------------------------------------------------------------------------

@dataclass
class EmbedResult:
    """Outcome of an embedding pass. ``failures`` holds (path, error) pairs."""
    embedded: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def embed_note(store: NoteStore, provider: EmbeddingProvider, note: NoteRecord) -> int:
    """
    Embed one note from its file on disk and store the vector.

    Returns:
        Dimension of the stored vector

    Raises:
        OSError: If the file cannot be read
        EmbeddingError: If the provider returns no vector
        Exception: Whatever the provider raises
    """
    text = _read_text(note.path)
    vector = provider.embed(text)
    if vector is None or len(vector) == 0:
        raise EmbeddingError(f"Provider returned an empty vector for {note.path}")
    blob = encode_vector(vector)
    store.set_embedding(note.id, blob, time.time())
    return len(vector)


def embed_notes(
    store: NoteStore,
    provider: EmbeddingProvider,
    *,
    since: Since = None,
    reset: bool = False,
    on_progress: Optional[Callable[[str, bool], None]] = None,
) -> EmbedResult:
    """
    Compute embeddings for notes that need them.

    Candidates are notes never embedded or modified since their last
    embedding. An explicit ``since`` instead selects every note modified
    after that time.

    Args:
        store: Open note store
        provider: Embedding provider
        since: Optional modification cutoff (datetime or epoch seconds)
        reset: Clear all stored embeddings first (full re-embed)
        on_progress: Called as ``on_progress(path, ok)`` after each note

    Returns:
        EmbedResult with success and failure counts
    """
    if reset:
        cleared = store.reset_embeddings()
        logger.info("Cleared %d stored embeddings", cleared)

    candidates = store.notes_needing_embedding(to_epoch(since))
    logger.debug("%d notes to embed", len(candidates))

    result = EmbedResult()
    for note in candidates:
        try:
            embed_note(store, provider, note)
        except Exception as e:
            result.failed += 1
            result.failures.append((note.path, str(e)))
            logger.warning("Failed to embed %s: %s", note.path, e)
            ok = False
        else:
            result.embedded += 1
            ok = True
        if on_progress is not None:
            on_progress(note.path, ok)

    logger.info(
        "Embedding pass complete: %d embedded, %d failed",
        result.embedded, result.failed,
    )
    return result


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SearchResult:
    title: str
    path: str
    score: float


def search(
    store: NoteStore,
    provider: EmbeddingProvider,
    query: str,
    k: int = DEFAULT_TOP_K,
) -> list[SearchResult]:
    """
    Rank embedded notes by cosine similarity to ``query``.

    The provider is called once for the query. Notes with an undecodable
    blob, a different dimension, or a zero vector are left out. Ties keep
    storage order.

    An empty result means nothing could be ranked (for example, no
    embeddings yet). Falling back to ``NoteStore.find_by_text`` is up to
    the caller.

    Args:
        store: Open note store
        provider: The same provider that produced the stored vectors
        query: Query text
        k: Maximum number of results

    Returns:
        Up to ``k`` results, best first
    """
    if k <= 0:
        return []

    query_vec = np.asarray(provider.embed(query), dtype=np.float64)
    query_norm = float(np.linalg.norm(query_vec))
    if query_norm == 0.0 or not math.isfinite(query_norm):
        logger.warning("Query vector has no direction; nothing to rank")
        return []

    results: list[SearchResult] = []
    for note in store.iter_embedded():
        try:
            vec = decode_vector(note.embedding)
        except VectorDecodeError as e:
            logger.warning("Skipping %s: %s", note.path, e)
            continue
        if vec.shape != query_vec.shape:
            logger.warning(
                "Skipping %s: stored dimension %d, query dimension %d",
                note.path, vec.shape[0], query_vec.shape[0],
            )
            continue
        score = _score(query_vec, query_norm, vec)
        if score is None:
            continue
        results.append(SearchResult(title=note.title, path=note.path, score=score))

    # list.sort is stable, so equal scores keep storage order
    results.sort(key=lambda r: r.score, reverse=True)
    return results[:k]
