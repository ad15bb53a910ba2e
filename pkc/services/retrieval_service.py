"""
Retrieval service.
Selects the chunks most relevant to a question, either by cosine similarity
over stored embeddings or by asking the completion model to rerank previews.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import perf_counter
from typing import List, Optional, Sequence

import numpy as np

from ..db.repository import ChunkRow
from ..embedding import EmbeddingGateway
from ..errors import ModelError
from ..llm import CompletionGateway, Parsed, parse_json_reply
from ..logging_config import logger

DEFAULT_TOP_K = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.8
PREVIEW_CHARS = 500


@dataclass
class ScoredChunk:
    chunk: ChunkRow
    score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors; 0.0 when either has no length."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class RetrievalStrategy(ABC):
    """
    Picks at most k chunks from a candidate list.

    Implementations are deterministic for identical inputs; ties keep the
    candidates' original order.
    """

    name = "base"
    candidate_limit: Optional[int] = None

    @abstractmethod
    def select(self, query: str, candidates: List[ChunkRow], k: int = DEFAULT_TOP_K) -> List[ScoredChunk]:
        ...


class VectorSimilarity(RetrievalStrategy):
    name = "vector"

    def __init__(
        self,
        embedder: EmbeddingGateway,
        threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        candidate_limit: Optional[int] = None,
    ):
        self.embedder = embedder
        self.threshold = threshold
        self.candidate_limit = candidate_limit

    def select(self, query: str, candidates: List[ChunkRow], k: int = DEFAULT_TOP_K) -> List[ScoredChunk]:
        """
        Embed the query and keep candidates scoring at or above the threshold.

        Returns:
            Up to k chunks, best first. Empty when nothing clears the threshold.

        Raises:
            ModelError: If the query cannot be embedded
        """
        if not candidates or k <= 0:
            return []

        t = perf_counter()
        query_vector = self.embedder.embed([query])[0]

        scored = []
        for position, chunk in enumerate(candidates):
            if chunk.embedding is None:
                continue
            score = cosine_similarity(query_vector, chunk.embedding)
            if score >= self.threshold:
                scored.append((position, score, chunk))

        # stable on position, so equal scores keep candidate order
        scored.sort(key=lambda item: (-item[1], item[0]))
        selected = [ScoredChunk(chunk=chunk, score=score) for _, score, chunk in scored[:k]]

        logger.info(
            "Vector retrieval finished",
            candidates=len(candidates),
            above_threshold=len(scored),
            selected=len(selected),
            time_ms=round((perf_counter() - t) * 1000, 2),
        )
        return selected


class LLMRerank(RetrievalStrategy):
    """
    Asks the completion model which numbered previews answer the query.

    Used when real embeddings are unavailable. A reply that is not a JSON
    array, or a failed call, falls back to the first k candidates.
    """

    name = "rerank"

    def __init__(self, completion: CompletionGateway, candidate_limit: Optional[int] = 50):
        self.completion = completion
        self.candidate_limit = candidate_limit

    @staticmethod
    def build_prompt(query: str, candidates: List[ChunkRow], k: int) -> str:
        chunks_text = "\n\n".join(
            f"[{index}] {chunk.chunk_text[:PREVIEW_CHARS]}..." for index, chunk in enumerate(candidates)
        )
        return (
            f'Find most relevant chunks for query: "{query}"\n\n'
            f"Chunks:\n{chunks_text}\n\n"
            f"Return JSON array of chunk indices (0-based), max {k}. Example: [2, 0, 4]"
        )

    @staticmethod
    def _fallback(candidates: List[ChunkRow], k: int) -> List[ScoredChunk]:
        return [
            ScoredChunk(chunk=chunk, score=1.0 - position * 0.1)
            for position, chunk in enumerate(candidates[:k])
        ]

    def select(self, query: str, candidates: List[ChunkRow], k: int = DEFAULT_TOP_K) -> List[ScoredChunk]:
        if not candidates or k <= 0:
            return []

        prompt = self.build_prompt(query, candidates, k)
        try:
            reply = self.completion.complete(
                [{"role": "user", "content": prompt}],
                max_tokens=100,
                temperature=0.1,
            )
        except ModelError as e:
            logger.warning("Rerank call failed, using first candidates", error=e.message)
            return self._fallback(candidates, k)

        parsed = parse_json_reply(reply)
        if not isinstance(parsed, Parsed) or not isinstance(parsed.value, list):
            logger.warning("Rerank reply was not a JSON array, using first candidates", reply=reply[:200])
            return self._fallback(candidates, k)

        indices = []
        for value in parsed.value:
            if isinstance(value, bool) or not isinstance(value, int):
                continue
            if 0 <= value < len(candidates) and value not in indices:
                indices.append(value)

        selected = [
            ScoredChunk(chunk=candidates[index], score=1.0 - position * 0.1)
            for position, index in enumerate(indices[:k])
        ]
        logger.info("Rerank retrieval finished", candidates=len(candidates), selected=len(selected))
        return selected
