"""Tests for in-memory similarity indexes."""

import pytest

from docvault.vault import ChromaVectorIndex, NumpyVectorIndex, cosine_similarity, create_vector_index


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0], [1.0, 0.0])


class TestNumpyVectorIndex:
    """Tests for NumpyVectorIndex."""

    def test_empty_search(self):
        index = NumpyVectorIndex()
        assert index.search([1.0, 0.0], limit=5) == []
        assert len(index) == 0

    def test_search_ranked(self):
        index = NumpyVectorIndex()
        index.attach([
            ("c1", "d1", [0.0, 1.0]),
            ("c2", "d1", [1.0, 0.0]),
            ("c3", "d2", [1.0, 1.0]),
        ])

        results = index.search([1.0, 0.0], limit=3)

        assert [chunk_id for chunk_id, _ in results] == ["c2", "c3", "c1"]
        assert results[0][1] == pytest.approx(1.0, abs=1e-6)
        assert results[1][1] == pytest.approx(0.7071, abs=1e-4)

    def test_min_score(self):
        index = NumpyVectorIndex()
        index.add([("c1", "d1", [1.0, 0.0]), ("c2", "d1", [0.0, 1.0])])

        results = index.search([1.0, 0.0], limit=5, min_score=0.5)

        assert [chunk_id for chunk_id, _ in results] == ["c1"]

    def test_document_filter(self):
        index = NumpyVectorIndex()
        index.add([("c1", "d1", [1.0, 0.0]), ("c2", "d2", [1.0, 0.0])])

        results = index.search([1.0, 0.0], limit=5, document_ids={"d2"})

        assert [chunk_id for chunk_id, _ in results] == ["c2"]

    def test_remove(self):
        index = NumpyVectorIndex()
        index.add([("c1", "d1", [1.0, 0.0]), ("c2", "d1", [0.0, 1.0])])

        index.remove(["c1", "missing"])

        assert len(index) == 1
        assert [chunk_id for chunk_id, _ in index.search([1.0, 1.0], limit=5)] == ["c2"]

        index.remove(["c2"])
        assert index.search([1.0, 1.0], limit=5) == []

    def test_attach_replaces_contents(self):
        index = NumpyVectorIndex()
        index.add([("old", "d1", [1.0, 0.0])])

        index.attach([("new", "d2", [1.0, 0.0])])

        assert [chunk_id for chunk_id, _ in index.search([1.0, 0.0], limit=5)] == ["new"]

    def test_width_mismatch(self):
        index = NumpyVectorIndex()
        index.add([("c1", "d1", [1.0, 0.0])])

        with pytest.raises(ValueError):
            index.add([("c2", "d1", [1.0, 0.0, 0.0])])


class TestChromaVectorIndex:
    """Tests for ChromaVectorIndex (skipped without chromadb)."""

    def test_search_ranked(self):
        pytest.importorskip("chromadb")
        index = ChromaVectorIndex(collection_name="test_search_ranked")
        index.attach([
            ("c1", "d1", [0.0, 1.0, 0.0]),
            ("c2", "d1", [1.0, 0.0, 0.0]),
            ("c3", "d2", [1.0, 1.0, 0.0]),
        ])

        results = index.search([1.0, 0.0, 0.0], limit=2)

        assert [chunk_id for chunk_id, _ in results] == ["c2", "c3"]
        assert results[0][1] == pytest.approx(1.0, abs=1e-3)

    def test_document_filter_and_remove(self):
        pytest.importorskip("chromadb")
        index = ChromaVectorIndex(collection_name="test_filter_remove")
        index.attach([("c1", "d1", [1.0, 0.0]), ("c2", "d2", [1.0, 0.0])])

        assert [c for c, _ in index.search([1.0, 0.0], limit=5, document_ids={"d2"})] == ["c2"]

        index.remove(["c2"])
        assert len(index) == 1


class TestCreateVectorIndex:
    """Tests for create_vector_index."""

    def test_backends(self):
        assert isinstance(create_vector_index("numpy"), NumpyVectorIndex)
        assert isinstance(create_vector_index("chroma"), ChromaVectorIndex)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_vector_index("faiss")
