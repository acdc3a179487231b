"""Tests for vector encoding and the embedding pass."""

import math
import struct
import time

import numpy as np
import pytest

from vaultindex.embeddings import (
    cosine_similarity,
    decode_vector,
    embed_notes,
    encode_vector,
)
from vaultindex.errors import VectorDecodeError
from vaultindex.reconcile import reconcile

from conftest import MockEmbeddingProvider, TableEmbeddingProvider, write_note


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

class TestVectorEncoding:

    def test_little_endian_doubles(self):
        blob = encode_vector([1.0, -2.5, 0.1])
        assert len(blob) == 8 * 3
        assert blob == struct.pack("<3d", 1.0, -2.5, 0.1)

    def test_decode(self):
        vec = decode_vector(struct.pack("<2d", 0.25, 3.0))
        assert vec.dtype == np.float64
        assert vec.tolist() == [0.25, 3.0]

    def test_decode_rejects_partial_double(self):
        with pytest.raises(VectorDecodeError):
            decode_vector(b"\x00" * 12)

    def test_decode_empty(self):
        assert decode_vector(b"").size == 0

    def test_encode_rejects_nested(self):
        with pytest.raises(ValueError):
            encode_vector([[1.0, 2.0], [3.0, 4.0]])

    def test_decoded_vector_is_writable_copy(self):
        vec = decode_vector(encode_vector([1.0, 2.0]))
        vec[0] = 5.0
        assert vec[0] == 5.0


# ---------------------------------------------------------------------------
# Cosine similarity
# ---------------------------------------------------------------------------

class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([0.3, 0.4, 0.5], [0.3, 0.4, 0.5]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 5.0]) == pytest.approx(0.0)

    @pytest.mark.parametrize("a,b", [
        ([1e-300, 1e-300], [1e-300, 1e-300]),
        ([1e150, -3.0], [2e150, 7.0]),
        ([0.1, 0.2, 0.3], [-0.3, 0.2, 0.1]),
        ([1.0, 1.0, 1.0], [1.0, 1.0, 1.0000001]),
    ])
    def test_bounds(self, a, b):
        score = cosine_similarity(a, b)
        if score is not None:
            assert -1.0 <= score <= 1.0

    def test_zero_vector_is_unranked(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) is None
        assert cosine_similarity([1.0, 2.0], [0.0, 0.0]) is None

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_non_finite_is_unranked(self):
        assert cosine_similarity([math.inf, 1.0], [1.0, 1.0]) is None


# ---------------------------------------------------------------------------
# Embedding pass
# ---------------------------------------------------------------------------

@pytest.fixture
def indexed(vault, store):
    write_note(vault, "a.md", "alpha text")
    write_note(vault, "b.md", "beta text")
    write_note(vault, "c.md", "gamma text")
    reconcile(vault, store)
    return store


class TestEmbedNotes:

    def test_embeds_every_new_note(self, indexed, mock_embedding_provider):
        before = time.time()
        result = embed_notes(indexed, mock_embedding_provider)

        assert (result.embedded, result.failed) == (3, 0)
        assert mock_embedding_provider.embed_calls == 3
        for note in indexed.list_notes():
            assert len(note.embedding) == 8 * MockEmbeddingProvider.dimension
            assert note.last_embedded >= before
            assert note.embedding_is_current

    def test_embeds_raw_file_text(self, indexed):
        provider = TableEmbeddingProvider({
            "alpha text": [1.0, 0.0],
            "beta text": [0.0, 1.0],
            "gamma text": [1.0, 1.0],
        })
        embed_notes(indexed, provider)
        stored = {n.title: decode_vector(n.embedding).tolist() for n in indexed.list_notes()}
        assert stored == {"a": [1.0, 0.0], "b": [0.0, 1.0], "c": [1.0, 1.0]}

    def test_failure_is_isolated(self, indexed):
        provider = TableEmbeddingProvider({
            "alpha text": [1.0, 0.0],
            "gamma text": [1.0, 1.0],
        })
        progress = []
        result = embed_notes(
            indexed, provider, on_progress=lambda path, ok: progress.append(ok),
        )

        assert (result.embedded, result.failed) == (2, 1)
        assert result.failures[0][0].endswith("b.md")
        assert "beta text" in result.failures[0][1]
        assert progress == [True, False, True]
        assert indexed.count_embedded() == 2
        assert indexed.get_by_path(result.failures[0][0]).embedding is None

    def test_empty_vector_counts_as_failure(self, indexed):
        provider = TableEmbeddingProvider({
            "alpha text": [],
            "beta text": [1.0],
            "gamma text": [1.0],
        })
        result = embed_notes(indexed, provider)
        assert (result.embedded, result.failed) == (2, 1)

    def test_missing_file_counts_as_failure(self, vault, indexed, mock_embedding_provider):
        (vault / "b.md").unlink()
        result = embed_notes(indexed, mock_embedding_provider)
        assert (result.embedded, result.failed) == (2, 1)

    def test_second_pass_skips_current(self, indexed, mock_embedding_provider):
        embed_notes(indexed, mock_embedding_provider)
        result = embed_notes(indexed, mock_embedding_provider)
        assert result.embedded == 0
        assert mock_embedding_provider.embed_calls == 3

    def test_stale_note_reembedded(self, indexed, mock_embedding_provider):
        embed_notes(indexed, mock_embedding_provider)
        note = indexed.list_notes()[1]
        indexed.update_note(note.id, note.title, note.created, time.time() + 1000, note.tags)

        result = embed_notes(indexed, mock_embedding_provider)
        assert result.embedded == 1
        assert mock_embedding_provider.embed_calls == 4

    def test_failed_note_retried_next_pass(self, indexed):
        flaky = TableEmbeddingProvider({"alpha text": [1.0], "gamma text": [1.0]})
        embed_notes(indexed, flaky)
        flaky.vectors["beta text"] = [2.0]
        result = embed_notes(indexed, flaky)
        assert (result.embedded, result.failed) == (1, 0)

    def test_reset_reembeds_everything(self, indexed, mock_embedding_provider):
        embed_notes(indexed, mock_embedding_provider)
        result = embed_notes(indexed, mock_embedding_provider, reset=True)
        assert result.embedded == 3
        assert mock_embedding_provider.embed_calls == 6

    def test_since_selects_by_modification(self, vault, store, mock_embedding_provider):
        write_note(vault, "old.md", "old", mtime=1000.0)
        write_note(vault, "new.md", "new", mtime=3000.0)
        reconcile(vault, store)
        embed_notes(store, mock_embedding_provider)

        result = embed_notes(store, mock_embedding_provider, since=2000.0)
        assert result.embedded == 1
        assert mock_embedding_provider.embed_calls == 3

    def test_no_candidates(self, store, mock_embedding_provider):
        result = embed_notes(store, mock_embedding_provider)
        assert (result.embedded, result.failed, result.failures) == (0, 0, [])
