"""
Tests for tenant-scoped retrieval and its fail-open result type.
"""
from unittest.mock import MagicMock

import pytest

from flexybot.errors import StorageError, ValidationError
from flexybot.retrieval import RetrievalErr, RetrievalOk, Retriever
from flexybot.schemas import ChunkMatch, ChunkRecord, UNTITLED
from flexybot.stores import InMemoryChunkStore

from .conftest import DIMS, FakeEmbedder, unit


def _record(content, vector, org="org-a", bot=None, title="doc"):
    return ChunkRecord(content=content, embedding=vector, organization_id=org, chatbot_id=bot, title=title)


@pytest.fixture
def populated():
    """Store with orthogonal vectors so similarities are exact."""
    store = InMemoryChunkStore(dimensions=DIMS)
    store.insert(_record("refund policy", unit(0)))
    store.insert(_record("shipping times", [0.8, 0.6] + [0.0] * (DIMS - 2)))
    store.insert(_record("office hours", unit(1)))
    store.insert(_record("bot only", unit(0), bot="bot-1"))
    embedder = FakeEmbedder(vectors={"refunds?": unit(0), "hours?": unit(1)})
    return Retriever(embedder, store), store, embedder


class TestRetrieve:

    def test_ranked_and_thresholded(self, populated):
        retriever, _, _ = populated

        result = retriever.retrieve("refunds?", "org-a", similarity_threshold=0.7)

        assert isinstance(result, RetrievalOk)
        assert [c.content for c in result.chunks] == ["refund policy", "bot only", "shipping times"]
        assert result.chunks[0].similarity == pytest.approx(1.0)
        assert result.chunks[-1].similarity == pytest.approx(0.8)

    def test_threshold_excludes_lower_scores(self, populated):
        retriever, _, _ = populated

        chunks = retriever.retrieve_documents("refunds?", "org-a", similarity_threshold=0.9)

        assert all(c.similarity >= 0.9 for c in chunks)
        assert "shipping times" not in [c.content for c in chunks]

    def test_limit_truncates(self, populated):
        retriever, _, _ = populated

        chunks = retriever.retrieve_documents("refunds?", "org-a", limit=1)

        assert [c.content for c in chunks] == ["refund policy"]

    def test_chatbot_filter(self, populated):
        retriever, _, _ = populated

        chunks = retriever.retrieve_documents("refunds?", "org-a", chatbot_id="bot-1")

        assert [c.content for c in chunks] == ["bot only"]

    def test_nothing_above_threshold_is_empty_ok(self, populated):
        retriever, _, _ = populated

        result = retriever.retrieve("hours?", "org-b")

        assert result.ok
        assert result.chunks == []

    def test_missing_title_defaults(self):
        store = InMemoryChunkStore(dimensions=DIMS)
        store.insert(_record("untitled chunk", unit(2), title=None))
        retriever = Retriever(FakeEmbedder(vectors={"q": unit(2)}), store)

        (chunk,) = retriever.retrieve_documents("q", "org-a")

        assert chunk.title == UNTITLED


class TestTenantIsolation:

    def test_identical_content_in_two_tenants(self):
        store = InMemoryChunkStore(dimensions=DIMS)
        store.insert(_record("same text", unit(3), org="org-a"))
        store.insert(_record("same text", unit(3), org="org-b"))
        retriever = Retriever(FakeEmbedder(vectors={"same text": unit(3)}), store)

        a = retriever.retrieve_documents("same text", "org-a")
        b = retriever.retrieve_documents("same text", "org-b")

        assert len(a) == 1 and len(b) == 1
        a_ids = {r.id for r in store.all("org-a")}
        b_ids = {r.id for r in store.all("org-b")}
        assert a[0].id in a_ids
        assert b[0].id in b_ids

    def test_rows_from_other_tenants_are_dropped(self):
        store = MagicMock()
        store.dimensions = DIMS
        store.query.return_value = [
            ChunkMatch(id="1", organization_id="org-a", content="mine", similarity=0.95),
            ChunkMatch(id="2", organization_id="org-b", content="theirs", similarity=0.99),
            ChunkMatch(id="3", organization_id="org-a", content="weak", similarity=0.2),
        ]
        retriever = Retriever(FakeEmbedder(), store)

        chunks = retriever.retrieve_documents("anything", "org-a")

        assert [c.content for c in chunks] == ["mine"]

    def test_padded_ids_match_ingested_chunks(self, pipeline, store):
        pipeline.ingest_text("hello world", {"organization_id": " org-a ", "chatbot_id": " bot-1 ", "title": "t"})
        (row,) = store.all("org-a")
        retriever = Retriever(FakeEmbedder(vectors={"hello world": row.embedding}), store)

        chunks = retriever.retrieve_documents("hello world", " org-a ", chatbot_id=" bot-1 ")

        assert [c.id for c in chunks] == [row.id]

    def test_blank_chatbot_means_organization_wide(self, populated):
        retriever, _, _ = populated

        chunks = retriever.retrieve_documents("refunds?", "org-a", chatbot_id="  ")

        assert "refund policy" in [c.content for c in chunks]


class TestFailOpen:

    def test_embedding_failure_returns_err(self, store):
        embedder = FakeEmbedder(fail_on={1})
        retriever = Retriever(embedder, store)

        result = retriever.retrieve("q", "org-a")

        assert isinstance(result, RetrievalErr)
        assert result.reason == "embedding"
        assert result.chunks_or_empty() == []

    def test_storage_failure_returns_err(self, embedder):
        store = MagicMock()
        store.dimensions = DIMS
        store.query.side_effect = StorageError("connection reset")
        retriever = Retriever(embedder, store)

        result = retriever.retrieve("q", "org-a")

        assert not result.ok
        assert result.reason == "storage"
        assert retriever.retrieve_documents("q", "org-a") == []


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        {"query": "q", "organization_id": ""},
        {"query": "q", "organization_id": "   "},
        {"query": "  ", "organization_id": "org-a"},
        {"query": "q", "organization_id": "org-a", "limit": 0},
        {"query": "q", "organization_id": "org-a", "similarity_threshold": 1.5},
        {"query": "q", "organization_id": "org-a", "similarity_threshold": -0.1},
    ])
    def test_rejected_before_embedding(self, embedder, store, kwargs):
        retriever = Retriever(embedder, store)

        with pytest.raises(ValidationError):
            retriever.retrieve(**kwargs)

        assert embedder.calls == []

    def test_dimension_mismatch_rejected(self):
        with pytest.raises(ValueError):
            Retriever(FakeEmbedder(dimensions=3), InMemoryChunkStore(dimensions=DIMS))
