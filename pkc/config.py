"""
Application settings loaded from environment variables.

Values come from the process environment, with a local .env file loaded
first for development (no effect in Docker when env vars are provided).
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

EMBEDDING_BACKENDS = ("hash", "sentence-transformers", "openai")
RETRIEVAL_STRATEGIES = ("vector", "rerank")

# Default model per backend and the vector size it emits
DEFAULT_EMBED_MODELS = {
    "sentence-transformers": "sentence-transformers/all-MiniLM-L6-v2",
    "openai": "text-embedding-3-small",
}
DEFAULT_EMBEDDING_DIMS = {
    "hash": 1536,
    "sentence-transformers": 384,
    "openai": 1536,
}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./pkc.db"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ollama_url: str = "http://ollama:11434"

    embedding_backend: str = "hash"
    embed_model: Optional[str] = None
    embedding_dim: Optional[int] = None
    retrieval_strategy: Optional[str] = None

    chunk_size: int = 2000
    embed_batch_size: int = 100
    top_k: int = 5
    similarity_threshold: float = 0.8
    candidate_limit: Optional[int] = None
    context_char_limit: int = 8000
    history_limit: int = 10

    max_file_size_bytes: int = 10 * 1024 * 1024
    max_message_chars: int = 8000
    storage_root: str = "./uploads"

    gateway_retries: int = 0
    gateway_backoff_seconds: float = 0.5

    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def effective_embed_model(self) -> Optional[str]:
        return self.embed_model or DEFAULT_EMBED_MODELS.get(self.embedding_backend)

    @property
    def effective_embedding_dim(self) -> int:
        """Configured vector size, or the size the backend's default model emits."""
        if self.embedding_dim is not None:
            return self.embedding_dim
        return DEFAULT_EMBEDDING_DIMS.get(self.embedding_backend, 1536)

    @property
    def effective_retrieval_strategy(self) -> str:
        """Configured strategy, or the one that suits the embedding backend.

        Hash pseudo-vectors carry no meaning, so similarity search over them
        is useless and reranking through the completion model is used instead.
        """
        if self.retrieval_strategy:
            return self.retrieval_strategy
        return "rerank" if self.embedding_backend == "hash" else "vector"

    @property
    def effective_candidate_limit(self) -> Optional[int]:
        if self.candidate_limit is not None:
            return self.candidate_limit
        # rerank previews every candidate inside one prompt
        return 50 if self.effective_retrieval_strategy == "rerank" else None

    @classmethod
    def from_env(cls) -> "Settings":
        candidate_limit = os.getenv("CANDIDATE_LIMIT")
        settings = cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            ollama_url=os.getenv("OLLAMA_URL", cls.ollama_url),
            embedding_backend=os.getenv("EMBEDDING_BACKEND", cls.embedding_backend).strip().lower(),
            embed_model=os.getenv("EMBED_MODEL") or None,
            embedding_dim=_env_int("EMBEDDING_DIM", None),
            retrieval_strategy=(os.getenv("RETRIEVAL_STRATEGY") or "").strip().lower() or None,
            chunk_size=_env_int("CHUNK_SIZE", cls.chunk_size),
            embed_batch_size=_env_int("EMBED_BATCH_SIZE", cls.embed_batch_size),
            top_k=_env_int("TOP_K", cls.top_k),
            similarity_threshold=_env_float("SIMILARITY_THRESHOLD", cls.similarity_threshold),
            candidate_limit=int(candidate_limit) if candidate_limit else None,
            context_char_limit=_env_int("CONTEXT_CHAR_LIMIT", cls.context_char_limit),
            history_limit=_env_int("HISTORY_LIMIT", cls.history_limit),
            max_file_size_bytes=_env_int("MAX_FILE_SIZE_BYTES", cls.max_file_size_bytes),
            max_message_chars=_env_int("MAX_MESSAGE_CHARS", cls.max_message_chars),
            storage_root=os.getenv("STORAGE_ROOT", cls.storage_root),
            gateway_retries=_env_int("GATEWAY_RETRIES", cls.gateway_retries),
            gateway_backoff_seconds=_env_float("GATEWAY_BACKOFF_SECONDS", cls.gateway_backoff_seconds),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            json_logs=_env_bool("JSON_LOGS", cls.json_logs),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.embedding_backend not in EMBEDDING_BACKENDS:
            raise RuntimeError(
                f"EMBEDDING_BACKEND must be one of {', '.join(EMBEDDING_BACKENDS)}, "
                f"got {self.embedding_backend!r}"
            )
        if self.retrieval_strategy and self.retrieval_strategy not in RETRIEVAL_STRATEGIES:
            raise RuntimeError(
                f"RETRIEVAL_STRATEGY must be one of {', '.join(RETRIEVAL_STRATEGIES)}, "
                f"got {self.retrieval_strategy!r}"
            )
        if self.chunk_size <= 0 or self.embed_batch_size <= 0:
            raise RuntimeError("CHUNK_SIZE and EMBED_BATCH_SIZE must be positive")
        if self.gateway_retries < 0:
            raise RuntimeError("GATEWAY_RETRIES cannot be negative")
        if self.effective_embedding_dim <= 0:
            raise RuntimeError("EMBEDDING_DIM must be positive")


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
