from unittest.mock import MagicMock

import numpy as np
import pytest
import requests

from conftest import FakeEmbedder
from docrecall.embeddings import (
    EmbeddingCache,
    EmbeddingProvider,
    HashingEmbedding,
    OllamaEmbedding,
    create_embedding_provider,
    get_cache,
)
from docrecall.errors import EmbeddingUnavailable


@pytest.fixture(autouse=True)
def clear_global_cache():
    get_cache().clear()
    yield
    get_cache().clear()


class TestEmbeddingCache:
    def test_hit_and_miss_counts(self):
        cache = EmbeddingCache(maxsize=2)
        assert cache.get("a", "m") is None
        cache.set("a", "m", [1.0])
        assert cache.get("a", "m") == [1.0]

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    def test_evicts_least_recently_used(self):
        cache = EmbeddingCache(maxsize=2)
        cache.set("a", "m", [1.0])
        cache.set("b", "m", [2.0])
        cache.get("a", "m")
        cache.set("c", "m", [3.0])

        assert cache.get("b", "m") is None
        assert cache.get("a", "m") == [1.0]
        assert cache.get("c", "m") == [3.0]

    def test_keys_include_model(self):
        cache = EmbeddingCache()
        cache.set("a", "m1", [1.0])
        assert cache.get("a", "m2") is None

    def test_discard(self):
        cache = EmbeddingCache()
        cache.set("a", "m", [1.0])
        cache.discard("a", "m")
        assert cache.get("a", "m") is None


class TestHashingEmbedding:
    def test_deterministic_and_normalized(self):
        embedder = HashingEmbedding(dim=64)
        first = embedder.embed_text("Quarterly results show 12% growth.")
        second = embedder.embed_text("Quarterly results show 12% growth.")

        np.testing.assert_array_equal(first, second)
        assert first.shape == (64,)
        assert np.linalg.norm(first) == pytest.approx(1.0, abs=1e-5)

    def test_similar_text_scores_higher(self):
        embedder = HashingEmbedding(dim=256)
        base = embedder.embed_text("Quarterly results show 12% growth in revenue.")
        near = embedder.embed_text("Quarterly results show 12 percent growth in revenue.")
        far = embedder.embed_text("A recipe for lemon drizzle cake.")

        assert float(base @ near) > float(base @ far)


class TestEmbedText:
    def test_provider_failure_is_unavailable(self):
        embedder = FakeEmbedder({})
        embedder.fail = True
        with pytest.raises(EmbeddingUnavailable):
            embedder.embed_text("some text to embed")

    def test_empty_text_is_unavailable(self):
        with pytest.raises(EmbeddingUnavailable):
            FakeEmbedder({}).embed_text("   ")

    def test_wrong_dimension_is_unavailable(self):
        embedder = FakeEmbedder({"text": [1.0, 0.0]})
        with pytest.raises(EmbeddingUnavailable, match="Malformed"):
            embedder.embed_text("text", expected_dim=3)

    def test_malformed_vector_is_not_cached(self, monkeypatch):
        embedder = OllamaEmbedding(host="http://ollama.test")
        response = MagicMock()
        response.json.return_value = {"embedding": [1.0, "oops"]}
        monkeypatch.setattr(requests, "post", MagicMock(return_value=response))

        with pytest.raises(EmbeddingUnavailable):
            embedder.embed_text("some text to embed")
        assert get_cache().get("some text to embed", embedder.model) is None


class TestOllamaEmbedding:
    def test_posts_to_embeddings_endpoint(self, monkeypatch):
        response = MagicMock()
        response.json.return_value = {"embedding": [0.1, 0.2, 0.3]}
        post = MagicMock(return_value=response)
        monkeypatch.setattr(requests, "post", post)

        embedder = OllamaEmbedding("nomic-embed-text", host="http://ollama.test/", timeout=5)
        vector = embedder.embed_text("hello world", expected_dim=3)

        assert vector.tolist() == pytest.approx([0.1, 0.2, 0.3])
        post.assert_called_once_with(
            "http://ollama.test/api/embeddings",
            json={"model": "nomic-embed-text", "prompt": "hello world"},
            timeout=5,
        )

    def test_cached_on_second_call(self, monkeypatch):
        response = MagicMock()
        response.json.return_value = {"embedding": [0.1, 0.2, 0.3]}
        post = MagicMock(return_value=response)
        monkeypatch.setattr(requests, "post", post)

        embedder = OllamaEmbedding(host="http://ollama.test")
        embedder.embed_text("hello world")
        embedder.embed_text("hello world")

        assert post.call_count == 1

    def test_missing_embedding_is_unavailable(self, monkeypatch):
        response = MagicMock()
        response.json.return_value = {"error": "model not found"}
        monkeypatch.setattr(requests, "post", MagicMock(return_value=response))

        with pytest.raises(EmbeddingUnavailable):
            OllamaEmbedding(host="http://ollama.test").embed_text("hello world")

    def test_timeout_is_unavailable(self, monkeypatch):
        monkeypatch.setattr(requests, "post", MagicMock(side_effect=requests.Timeout("slow")))

        with pytest.raises(EmbeddingUnavailable, match="slow"):
            OllamaEmbedding(host="http://ollama.test").embed_text("hello world")

    def test_dimension_lookup(self):
        assert OllamaEmbedding("mxbai-embed-large").dimension == 1024
        assert OllamaEmbedding("unknown-model").dimension == 768


class TestFactory:
    def test_creates_hashing_provider(self):
        embedder = create_embedding_provider("hashing", dim=32)
        assert isinstance(embedder, HashingEmbedding)
        assert embedder.dimension == 32

    def test_creates_ollama_provider(self):
        embedder = create_embedding_provider("ollama", host="http://ollama.test")
        assert isinstance(embedder, OllamaEmbedding)
        assert embedder.model == "nomic-embed-text"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_embedding_provider("carrier-pigeon")


class TestOpenAIEmbedding:
    def test_orders_results_by_index(self):
        embedder = EmbeddingProvider("text-embedding-3-small", openai_api_key="sk-test")
        embedder.client = MagicMock()
        embedder.client.embeddings.create.return_value = MagicMock(data=[
            MagicMock(index=1, embedding=[0.0, 1.0]),
            MagicMock(index=0, embedding=[1.0, 0.0]),
        ])

        vectors = embedder.embed(["first text", "second text"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert embedder.dimension == 1536

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            EmbeddingProvider("text-embedding-3-small")

    def test_shortened_dimensions_are_requested(self):
        embedder = EmbeddingProvider("text-embedding-3-large", openai_api_key="sk-test", dimensions=768)
        embedder.client = MagicMock()
        embedder.client.embeddings.create.return_value = MagicMock(
            data=[MagicMock(index=0, embedding=[0.5] * 768)]
        )

        vector = embedder.embed_text("quarterly results", expected_dim=768)

        assert embedder.dimension == 768
        assert vector.shape == (768,)
        assert embedder.client.embeddings.create.call_args.kwargs["dimensions"] == 768

    def test_ada_cannot_be_shortened(self):
        with pytest.raises(ValueError):
            EmbeddingProvider("text-embedding-ada-002", openai_api_key="sk-test", dimensions=256)
