"""
Tests for the OpenAI embedding provider, using a stubbed client.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from flexybot.embedding import MAX_INPUT_CHARS, OpenAIEmbedder, preprocess_for_embedding
from flexybot.errors import EmbeddingError


def _response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


@pytest.fixture
def client():
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.1, 0.2, 0.3])
    return client


class TestPreprocess:

    def test_flattens_whitespace(self):
        assert preprocess_for_embedding("  a\n\nb\t c ") == "a b c"

    def test_truncates(self):
        assert len(preprocess_for_embedding("x" * (MAX_INPUT_CHARS + 500))) == MAX_INPUT_CHARS


class TestOpenAIEmbedder:

    def test_sends_preprocessed_input(self, client):
        embedder = OpenAIEmbedder(model="text-embedding-ada-002", dimensions=3, client=client)

        vec = embedder.embed("hello\n\nworld")

        assert vec == [0.1, 0.2, 0.3]
        client.embeddings.create.assert_called_once_with(model="text-embedding-ada-002", input="hello world")

    def test_dimension_mismatch_raises(self, client):
        embedder = OpenAIEmbedder(dimensions=1536, client=client)

        with pytest.raises(EmbeddingError):
            embedder.embed("hello")

    def test_empty_input_raises_without_call(self, client):
        embedder = OpenAIEmbedder(dimensions=3, client=client)

        with pytest.raises(EmbeddingError):
            embedder.embed(" \n ")
        client.embeddings.create.assert_not_called()

    def test_provider_error_wrapped(self, client):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client.embeddings.create.side_effect = openai.APIConnectionError(request=request)
        embedder = OpenAIEmbedder(dimensions=3, client=client)

        with pytest.raises(EmbeddingError) as exc_info:
            embedder.embed("hello")
        assert isinstance(exc_info.value.__cause__, openai.APIConnectionError)

    def test_empty_response_raises(self, client):
        client.embeddings.create.return_value = SimpleNamespace(data=[])
        embedder = OpenAIEmbedder(dimensions=3, client=client)

        with pytest.raises(EmbeddingError):
            embedder.embed("hello")

    def test_missing_api_key(self):
        with pytest.raises(RuntimeError):
            OpenAIEmbedder(api_key=None)
