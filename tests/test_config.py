"""Tests for settings loading."""
import pytest

from pkc.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.chunk_size == 2000
        assert settings.embed_batch_size == 100
        assert settings.top_k == 5
        assert settings.similarity_threshold == 0.8
        assert settings.context_char_limit == 8000
        assert settings.history_limit == 10
        assert settings.gateway_retries == 0

    def test_hash_embeddings_imply_rerank(self):
        settings = Settings(embedding_backend="hash")
        assert settings.effective_retrieval_strategy == "rerank"
        assert settings.effective_candidate_limit == 50

    def test_real_embeddings_imply_vector_search(self):
        settings = Settings(embedding_backend="sentence-transformers")
        assert settings.effective_retrieval_strategy == "vector"
        assert settings.effective_candidate_limit is None

    def test_explicit_strategy_wins(self):
        settings = Settings(embedding_backend="hash", retrieval_strategy="vector", candidate_limit=200)
        assert settings.effective_retrieval_strategy == "vector"
        assert settings.effective_candidate_limit == 200

    def test_sentence_transformers_defaults_match_model(self):
        settings = Settings(embedding_backend="sentence-transformers")
        assert settings.effective_embed_model == "sentence-transformers/all-MiniLM-L6-v2"
        assert settings.effective_embedding_dim == 384

    def test_openai_defaults(self):
        settings = Settings(embedding_backend="openai")
        assert settings.effective_embed_model == "text-embedding-3-small"
        assert settings.effective_embedding_dim == 1536

    def test_explicit_dimension_wins(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_BACKEND", "sentence-transformers")
        monkeypatch.setenv("EMBED_MODEL", "sentence-transformers/all-mpnet-base-v2")
        monkeypatch.setenv("EMBEDDING_DIM", "768")

        settings = Settings.from_env()

        assert settings.effective_embed_model == "sentence-transformers/all-mpnet-base-v2"
        assert settings.effective_embedding_dim == 768

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CHUNK_SIZE", "500")
        monkeypatch.setenv("EMBEDDING_BACKEND", "OpenAI")
        monkeypatch.setenv("JSON_LOGS", "true")
        monkeypatch.setenv("CANDIDATE_LIMIT", "")

        settings = Settings.from_env()

        assert settings.chunk_size == 500
        assert settings.embedding_backend == "openai"
        assert settings.json_logs is True
        assert settings.candidate_limit is None

    @pytest.mark.parametrize(
        "name, value",
        [
            ("EMBEDDING_BACKEND", "word2vec"),
            ("RETRIEVAL_STRATEGY", "bm25"),
            ("CHUNK_SIZE", "0"),
            ("GATEWAY_RETRIES", "-1"),
            ("EMBEDDING_DIM", "0"),
        ],
    )
    def test_invalid_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(RuntimeError):
            Settings.from_env()
