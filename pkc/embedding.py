"""
Embedding gateways: a batch of strings in, fixed-dimension vectors out.
"""
import hashlib
from abc import ABC, abstractmethod
from typing import List

import numpy as np
from openai import OpenAI, OpenAIError

from .errors import ModelError
from .logging_config import logger


def check_dimensions(vectors: List[List[float]], dim: int, provider: str) -> List[List[float]]:
    """Reject vectors whose size differs from the configured column size."""
    for vector in vectors:
        if len(vector) != dim:
            raise ModelError(
                f"Embedding has {len(vector)} dimensions, expected {dim} (check EMBEDDING_DIM)",
                provider=provider,
            )
    return vectors


class EmbeddingGateway(ABC):
    dim: int

    @abstractmethod
    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Raises:
            ModelError: If the embedding backend fails.
        """
        ...


class HashEmbedder(EmbeddingGateway):
    """
    Deterministic pseudo-vectors derived from a hash of the text.

    Only a stand-in for deployments without an embedding model: identical
    texts get identical vectors, but similarity carries no meaning.
    """

    def __init__(self, dim: int = 1536):
        self.dim = dim

    def _vector(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:4], "big", signed=True)
        return (np.sin(seed + np.arange(self.dim)) * 0.1).tolist()

    def embed(self, texts: List[str]) -> List[List[float]]:
        return [self._vector(t) for t in texts]


class SentenceTransformerEmbedder(EmbeddingGateway):
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str, dim: int):
        self.model_name = model_name
        self.dim = dim
        self._model = None

    def preload(self):
        """Load the model up front to avoid first-request delay."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading embedding model", model=self.model_name)
            model = SentenceTransformer(
                self.model_name,
                tokenizer_kwargs={"clean_up_tokenization_spaces": False},
            )
            model_dim = model.get_sentence_embedding_dimension()
            if model_dim is not None and model_dim != self.dim:
                raise ModelError(
                    f"Model {self.model_name} emits {model_dim} dimensions, EMBEDDING_DIM is {self.dim}",
                    provider="sentence-transformers",
                )
            # Warm up with a test embedding
            model.encode(["test"], normalize_embeddings=True, show_progress_bar=False)
            self._model = model
            logger.info("Embedding model loaded", model=self.model_name)
        return self._model

    def embed(self, texts: List[str]) -> List[List[float]]:
        try:
            model = self.preload()
            vecs = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        except (OSError, RuntimeError, ValueError) as e:
            raise ModelError(f"Embedding failed: {e}", provider="sentence-transformers") from e
        vectors = vecs.tolist() if isinstance(vecs, np.ndarray) else [list(v) for v in vecs]
        return check_dimensions(vectors, self.dim, "sentence-transformers")


class OpenAIEmbedder(EmbeddingGateway):
    def __init__(self, client: OpenAI, model: str = "text-embedding-3-small", dim: int = 1536):
        self._client = client
        self.model = model
        self.dim = dim

    def embed(self, texts: List[str]) -> List[List[float]]:
        try:
            response = self._client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as e:
            logger.error("Embedding request failed", model=self.model, error=str(e))
            raise ModelError(f"Embedding failed: {e}", provider="openai") from e
        return check_dimensions([item.embedding for item in response.data], self.dim, "openai")
