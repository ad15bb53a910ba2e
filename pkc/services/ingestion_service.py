"""
Ingestion service.
Deduplicates uploads per owner, stores the blob and file row, splits the
extracted text into fixed-size chunks and embeds them in bounded batches.
"""
import hashlib
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..db.repository import Repository
from ..embedding import EmbeddingGateway
from ..errors import DuplicateError, ModelError, NotFoundError, StorageError, ValidationError
from ..logging_config import logger
from ..models import Chunk, FileRecord, utcnow
from ..storage import BlobStorage, build_storage_path
from .metadata_service import FileMetadataExtractor

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_BATCH_SIZE = 100
MAX_STORED_TEXT_CHARS = 100_000


@dataclass
class IngestResult:
    file: FileRecord
    chunks_created: int
    duplicate: bool = False
    partial: bool = False
    error: Optional[str] = None


def compute_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def split_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[str]:
    """
    Cut text into consecutive windows of chunk_size characters.

    Boundaries are plain character offsets; the last window holds the
    remainder. Joining the result gives back the input exactly.

    >>> [len(c) for c in split_text("a" * 5000, 2000)]
    [2000, 2000, 1000]
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


def expected_chunk_count(text_length: int, chunk_size: int) -> int:
    return math.ceil(text_length / chunk_size)


class IngestionCoordinator:
    def __init__(
        self,
        repository: Repository,
        storage: BlobStorage,
        embedder: EmbeddingGateway,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_file_size_bytes: int = 10 * 1024 * 1024,
        metadata_extractor: Optional[FileMetadataExtractor] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.batch_size = batch_size
        self.max_file_size_bytes = max_file_size_bytes
        self.metadata_extractor = metadata_extractor

    def ingest(self, owner_id: str, filename: str, mime: str, data: bytes, text: str) -> IngestResult:
        """
        Ingest one file for an owner.

        Re-ingesting identical bytes for the same owner returns the stored
        record with zero chunks created.

        Args:
            owner_id: The requesting user
            filename: Original file name
            mime: Declared content type
            data: Raw file bytes (checksummed and stored as the blob)
            text: Already-extracted plain text, possibly empty

        Returns:
            IngestResult with the file record and the number of chunks stored

        Raises:
            ValidationError: On malformed input, before anything is written
            StorageError: If the blob, the file row or a chunk batch cannot be
                written. The row and blob are removed again in that case.
        """
        self._validate(owner_id, filename, data)

        checksum = compute_checksum(data)
        existing = self.repository.find_file_by_checksum(owner_id, checksum)
        if existing is not None:
            logger.info("File already exists", file_id=existing.id, filename=filename)
            return IngestResult(file=existing, chunks_created=0, duplicate=True)

        text = text or ""
        try:
            record = self._store_file(owner_id, filename, mime or "", data, checksum, text)
        except DuplicateError as e:
            existing = self.repository.get_file(owner_id, e.existing_id)
            logger.info("Concurrent upload already stored this file", file_id=existing.id)
            return IngestResult(file=existing, chunks_created=0, duplicate=True)

        result = IngestResult(file=record, chunks_created=0)
        if text:
            try:
                result.chunks_created, result.error = self._chunk_and_embed(owner_id, record.id, text)
            except StorageError:
                self._discard_file(record)
                raise
            result.partial = result.error is not None
            if self.metadata_extractor is not None:
                self._attach_metadata(owner_id, record, text)

        logger.info(
            "File ingested",
            file_id=record.id,
            filename=filename,
            chunks=result.chunks_created,
            partial=result.partial,
        )
        return result

    def _validate(self, owner_id: str, filename: str, data: bytes) -> None:
        if not owner_id:
            raise ValidationError("owner id is required")
        if not filename or not filename.strip():
            raise ValidationError("filename is required")
        if not data:
            raise ValidationError("No file content provided")
        if len(data) > self.max_file_size_bytes:
            raise ValidationError(
                f"File '{filename}' is too large. "
                f"Max size is {self.max_file_size_bytes // (1024 * 1024)} MB."
            )

    def _store_file(
        self, owner_id: str, filename: str, mime: str, data: bytes, checksum: str, text: str
    ) -> FileRecord:
        """Upload the blob, then write the row; undo the blob if the row fails."""
        storage_path = build_storage_path(owner_id, filename)
        self.storage.put(storage_path, data, content_type=mime)

        record = FileRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            filename=filename,
            mime=mime,
            size_bytes=len(data),
            checksum_sha256=checksum,
            storage_path=storage_path,
            text_content=text[:MAX_STORED_TEXT_CHARS] if text else None,
            created_at=utcnow(),
        )
        try:
            return self.repository.insert_file(record)
        except (DuplicateError, StorageError):
            self.storage.delete(storage_path)
            raise

    def _chunk_and_embed(self, owner_id: str, file_id: str, text: str):
        """
        Embed chunks batch by batch, persisting each batch before the next.

        Returns:
            (chunks persisted, error message or None). A model failure stops
            the remaining batches; rows already written are kept.
        """
        parts = split_text(text, self.chunk_size)
        logger.info("Created chunks", file_id=file_id, chunk_count=len(parts))

        persisted = 0
        for start in range(0, len(parts), self.batch_size):
            batch = parts[start:start + self.batch_size]
            try:
                vectors = self.embedder.embed(batch)
                if len(vectors) != len(batch):
                    raise ModelError(
                        f"Embedding returned {len(vectors)} vectors for {len(batch)} texts"
                    )
            except ModelError as e:
                logger.error(
                    "Embedding error for batch, aborting remaining batches",
                    file_id=file_id,
                    batch_start=start,
                    persisted=persisted,
                    error=e.message,
                )
                return persisted, e.message

            now = utcnow()
            rows = [
                Chunk(
                    id=str(uuid.uuid4()),
                    owner_id=owner_id,
                    file_id=file_id,
                    chunk_index=start + offset,
                    chunk_text=chunk_text,
                    embedding=vector,
                    created_at=now,
                    updated_at=now,
                )
                for offset, (chunk_text, vector) in enumerate(zip(batch, vectors))
            ]
            persisted += self.repository.insert_chunks(rows)

        return persisted, None

    def _discard_file(self, record: FileRecord) -> None:
        """Drop a file whose chunks could not be stored so a retry is not seen as a duplicate."""
        try:
            self.repository.delete_file(record.owner_id, record.id)
        except (NotFoundError, StorageError) as e:
            logger.error("Could not remove file after chunk write failure", file_id=record.id, error=e.message)
        self.storage.delete(record.storage_path)
        logger.warning("Removed file after chunk write failure", file_id=record.id)

    def _attach_metadata(self, owner_id: str, record: FileRecord, text: str) -> None:
        entities = self.metadata_extractor.extract_entities(text)
        tags = self.metadata_extractor.classify(text, record.filename)
        try:
            self.repository.update_file_metadata(owner_id, record.id, entities=entities, tags=tags)
        except StorageError as e:
            logger.warning("Skipping file metadata", file_id=record.id, error=e.message)
            return
        record.entities = entities
        record.tags = tags

    def list_files(self, owner_id: str) -> List[Dict[str, Any]]:
        return self.repository.list_files(owner_id)

    def delete_file(self, owner_id: str, file_id: str) -> None:
        """Delete the row (chunks cascade), then the blob on a best-effort basis."""
        record = self.repository.delete_file(owner_id, file_id)
        self.storage.delete(record.storage_path)
        logger.info("File deleted", file_id=file_id)
