"""
Builds the service graph from settings and exposes it to FastAPI routes.

Every service gets its gateways and repository through its constructor, so
tests can assemble the same graph around fakes or override these
dependencies on the app.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .db import SessionLocal
from .db.repository import Repository
from .embedding import EmbeddingGateway, HashEmbedder, OpenAIEmbedder, SentenceTransformerEmbedder
from .errors import ValidationError
from .llm import CompletionGateway, OpenAIChatGateway, build_openai_client
from .retry import RetryingCompletionGateway, RetryingEmbeddingGateway
from .services.context_service import ContextAssembler
from .services.conversation_service import ConversationOrchestrator
from .services.ingestion_service import IngestionCoordinator
from .services.metadata_service import FileMetadataExtractor
from .services.model_service import resolve_model, validate_model
from .services.retrieval_service import LLMRerank, RetrievalStrategy, VectorSimilarity
from .services.summary_service import Summarizer
from .storage import BlobStorage, LocalBlobStorage


def build_completion(settings: Settings, provider: str = "openai", model: Optional[str] = None) -> CompletionGateway:
    if provider == "ollama":
        client = build_openai_client(base_url=f"{settings.ollama_url.rstrip('/')}/v1")
    else:
        client = build_openai_client(api_key=settings.openai_api_key)
    gateway = OpenAIChatGateway(client, model or settings.openai_model, provider=provider)
    return RetryingCompletionGateway(gateway, settings.gateway_retries, settings.gateway_backoff_seconds)


def build_embedder(settings: Settings) -> EmbeddingGateway:
    if settings.embedding_backend == "sentence-transformers":
        embedder = SentenceTransformerEmbedder(settings.effective_embed_model, settings.effective_embedding_dim)
    elif settings.embedding_backend == "openai":
        client = build_openai_client(api_key=settings.openai_api_key)
        embedder = OpenAIEmbedder(client, settings.effective_embed_model, settings.effective_embedding_dim)
    else:
        embedder = HashEmbedder(settings.effective_embedding_dim)
    return RetryingEmbeddingGateway(embedder, settings.gateway_retries, settings.gateway_backoff_seconds)


def build_retrieval(settings: Settings, completion: CompletionGateway, embedder: EmbeddingGateway) -> RetrievalStrategy:
    if settings.effective_retrieval_strategy == "vector":
        return VectorSimilarity(
            embedder,
            threshold=settings.similarity_threshold,
            candidate_limit=settings.effective_candidate_limit,
        )
    return LLMRerank(completion, candidate_limit=settings.effective_candidate_limit)


@dataclass
class Services:
    settings: Settings
    repository: Repository
    storage: BlobStorage
    completion: CompletionGateway
    embedder: EmbeddingGateway
    ingestion: IngestionCoordinator
    orchestrator: ConversationOrchestrator

    def completion_for(self, model_string: Optional[str]) -> CompletionGateway:
        """
        Gateway for a "provider:model" string; the default one when blank.

        Raises:
            ValidationError: If the model is not in the registry
        """
        if not model_string:
            return self.completion
        provider, model_name = resolve_model(model_string)
        if not validate_model(provider, model_name):
            raise ValidationError(f"Unknown model: {model_string}")
        if provider == self.completion.provider and model_name == self.completion.model:
            return self.completion
        return build_completion(self.settings, provider, model_name)


def build_services(
    settings: Settings,
    session_factory: sessionmaker,
    completion: Optional[CompletionGateway] = None,
    embedder: Optional[EmbeddingGateway] = None,
    storage: Optional[BlobStorage] = None,
) -> Services:
    repository = Repository(session_factory)
    completion = completion or build_completion(settings)
    embedder = embedder or build_embedder(settings)
    storage = storage or LocalBlobStorage(settings.storage_root)

    ingestion = IngestionCoordinator(
        repository,
        storage,
        embedder,
        chunk_size=settings.chunk_size,
        batch_size=settings.embed_batch_size,
        max_file_size_bytes=settings.max_file_size_bytes,
        metadata_extractor=FileMetadataExtractor(completion),
    )
    orchestrator = ConversationOrchestrator(
        repository,
        completion,
        build_retrieval(settings, completion, embedder),
        ContextAssembler(settings.context_char_limit, settings.history_limit),
        Summarizer(completion, repository),
        top_k=settings.top_k,
        history_limit=settings.history_limit,
        max_message_chars=settings.max_message_chars,
    )
    return Services(
        settings=settings,
        repository=repository,
        storage=storage,
        completion=completion,
        embedder=embedder,
        ingestion=ingestion,
        orchestrator=orchestrator,
    )


@lru_cache
def get_services() -> Services:
    return build_services(get_settings(), SessionLocal)


def get_owner_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    owner_id = x_user_id.strip()
    if not owner_id:
        raise ValidationError("X-User-Id header must not be empty")
    return owner_id


def get_ingestion(services: Services = Depends(get_services)) -> IngestionCoordinator:
    return services.ingestion


def get_orchestrator(services: Services = Depends(get_services)) -> ConversationOrchestrator:
    return services.orchestrator
