"""
Persistence for files, chunks, threads, messages and summaries.

Every read and write that touches user data takes the owner id and filters
on it, so callers never see rows that belong to somebody else. Each public
method runs in its own transaction.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import DuplicateError, NotFoundError, StorageError
from ..logging_config import logger
from ..models import Chunk, FileRecord, Message, Summary, Thread, utcnow


@dataclass
class ChunkRow:
    """A stored chunk as seen by retrieval."""

    id: str
    file_id: str
    filename: str
    chunk_index: int
    chunk_text: str
    embedding: Optional[Sequence[float]]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Repository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        try:
            with self._session_factory() as db, db.begin():
                yield db
        except SQLAlchemyError as e:
            logger.error("Database operation failed", action=action, error=str(e))
            raise StorageError(f"Failed to {action}") from e

    # ==================== Files ====================

    def find_file_by_checksum(self, owner_id: str, checksum: str) -> Optional[FileRecord]:
        with self._transaction("look up file by checksum") as db:
            return db.execute(
                select(FileRecord).where(
                    FileRecord.checksum_sha256 == checksum,
                    FileRecord.owner_id == owner_id,
                )
            ).scalar_one_or_none()

    def insert_file(self, record: FileRecord) -> FileRecord:
        """
        Insert a file row.

        Raises:
            DuplicateError: If (checksum, owner) already exists, i.e. a
                concurrent upload of the same bytes won the race.
            StorageError: On any other database failure.
        """
        try:
            with self._session_factory() as db, db.begin():
                db.add(record)
        except IntegrityError as e:
            existing = self.find_file_by_checksum(record.owner_id, record.checksum_sha256)
            if existing is not None:
                raise DuplicateError("File already exists", existing_id=existing.id) from e
            logger.error("File insert rejected", filename=record.filename, error=str(e))
            raise StorageError("Failed to store file metadata") from e
        except SQLAlchemyError as e:
            logger.error("File insert failed", filename=record.filename, error=str(e))
            raise StorageError("Failed to store file metadata") from e
        return record

    def get_file(self, owner_id: str, file_id: str) -> FileRecord:
        with self._transaction("fetch file") as db:
            record = db.execute(
                select(FileRecord).where(FileRecord.id == file_id, FileRecord.owner_id == owner_id)
            ).scalar_one_or_none()
        if record is None:
            raise NotFoundError("File not found")
        return record

    def update_file_metadata(
        self,
        owner_id: str,
        file_id: str,
        entities: Optional[Dict[str, List[str]]] = None,
        tags: Optional[List[str]] = None,
    ) -> None:
        with self._transaction("update file metadata") as db:
            record = db.execute(
                select(FileRecord).where(FileRecord.id == file_id, FileRecord.owner_id == owner_id)
            ).scalar_one_or_none()
            if record is None:
                raise NotFoundError("File not found")
            if entities is not None:
                record.entities = entities
            if tags is not None:
                record.tags = tags

    def list_files(self, owner_id: str) -> List[Dict[str, Any]]:
        """Owner's files, newest first, with chunk counts."""
        with self._transaction("list files") as db:
            rows = db.execute(
                select(
                    FileRecord.id,
                    FileRecord.filename,
                    FileRecord.mime,
                    FileRecord.size_bytes,
                    FileRecord.tags,
                    FileRecord.entities,
                    FileRecord.created_at,
                    func.count(Chunk.id).label("num_chunks"),
                )
                .outerjoin(Chunk, Chunk.file_id == FileRecord.id)
                .where(FileRecord.owner_id == owner_id)
                .group_by(FileRecord.id)
                .order_by(FileRecord.created_at.desc(), FileRecord.id)
            ).mappings().all()
        return [dict(r) for r in rows]

    def delete_file(self, owner_id: str, file_id: str) -> FileRecord:
        """Delete a file row; its chunks cascade."""
        with self._transaction("delete file") as db:
            record = db.execute(
                select(FileRecord).where(FileRecord.id == file_id, FileRecord.owner_id == owner_id)
            ).scalar_one_or_none()
            if record is None:
                raise NotFoundError("File not found")
            db.delete(record)
        return record

    # ==================== Chunks ====================

    def insert_chunks(self, chunks: List[Chunk]) -> int:
        if not chunks:
            return 0
        with self._transaction("store chunks") as db:
            db.add_all(chunks)
        return len(chunks)

    def list_chunks(
        self,
        owner_id: str,
        file_ids: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> List[ChunkRow]:
        """
        Candidate chunks for retrieval, in a stable order: oldest file first,
        then chunk index.
        """
        stmt = (
            select(Chunk, FileRecord.filename)
            .join(FileRecord, FileRecord.id == Chunk.file_id)
            .where(Chunk.owner_id == owner_id)
            .order_by(FileRecord.created_at, FileRecord.id, Chunk.chunk_index)
        )
        if file_ids is not None:
            stmt = stmt.where(Chunk.file_id.in_(file_ids))
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._transaction("list chunks") as db:
            rows = db.execute(stmt).all()
        return [
            ChunkRow(
                id=chunk.id,
                file_id=chunk.file_id,
                filename=filename,
                chunk_index=chunk.chunk_index,
                chunk_text=chunk.chunk_text,
                embedding=chunk.embedding,
            )
            for chunk, filename in rows
        ]

    # ==================== Threads ====================

    def create_thread(self, owner_id: str, title: str) -> Thread:
        thread = Thread(owner_id=owner_id, title=title, created_at=utcnow())
        with self._transaction("create thread") as db:
            db.add(thread)
        logger.info("Created new thread", thread_id=thread.id)
        return thread

    def get_thread(self, owner_id: str, thread_id: int) -> Thread:
        with self._transaction("fetch thread") as db:
            thread = db.execute(
                select(Thread).where(Thread.id == thread_id, Thread.owner_id == owner_id)
            ).scalar_one_or_none()
        if thread is None:
            raise NotFoundError("Thread not found or access denied")
        return thread

    def list_threads(self, owner_id: str) -> List[Dict[str, Any]]:
        """Owner's threads, newest first, with message count and last message."""
        with self._transaction("list threads") as db:
            counts = (
                select(Message.thread_id, func.count(Message.id).label("message_count"))
                .group_by(Message.thread_id)
                .subquery()
            )
            rows = db.execute(
                select(Thread, func.coalesce(counts.c.message_count, 0))
                .outerjoin(counts, counts.c.thread_id == Thread.id)
                .where(Thread.owner_id == owner_id)
                .order_by(Thread.created_at.desc(), Thread.id.desc())
            ).all()

            threads = []
            for thread, message_count in rows:
                last = db.execute(
                    select(Message)
                    .where(Message.thread_id == thread.id)
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(1)
                ).scalar_one_or_none()
                threads.append({
                    "id": thread.id,
                    "title": thread.title,
                    "created_at": thread.created_at,
                    "message_count": message_count,
                    "last_message": None if last is None else {
                        "content": last.content[:100] + ("..." if len(last.content) > 100 else ""),
                        "role": last.role,
                        "created_at": last.created_at,
                    },
                })
        return threads

    def delete_thread(self, owner_id: str, thread_id: int) -> None:
        """Delete a thread; its messages and summary cascade."""
        with self._transaction("delete thread") as db:
            thread = db.execute(
                select(Thread).where(Thread.id == thread_id, Thread.owner_id == owner_id)
            ).scalar_one_or_none()
            if thread is None:
                raise NotFoundError("Thread not found or access denied")
            db.delete(thread)
        logger.info("Deleted thread", thread_id=thread_id)

    # ==================== Messages ====================

    def add_message(self, thread_id: int, role: str, content: str) -> Message:
        message = Message(thread_id=thread_id, role=role, content=content, created_at=utcnow())
        with self._transaction("store message") as db:
            db.add(message)
        logger.debug("Stored message", thread_id=thread_id, role=role)
        return message

    def last_messages(self, thread_id: int, limit: int) -> List[Message]:
        """The `limit` most recent messages, oldest first."""
        with self._transaction("fetch recent messages") as db:
            rows = db.execute(
                select(Message)
                .where(Message.thread_id == thread_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            ).scalars().all()
        return list(reversed(rows))

    def all_messages(self, thread_id: int) -> List[Message]:
        with self._transaction("fetch messages") as db:
            return list(
                db.execute(
                    select(Message)
                    .where(Message.thread_id == thread_id)
                    .order_by(Message.created_at, Message.id)
                ).scalars().all()
            )

    # ==================== Summaries ====================

    def get_summary(self, thread_id: int) -> Optional[Summary]:
        with self._transaction("fetch summary") as db:
            return db.get(Summary, thread_id)

    def upsert_summary(self, thread_id: int, short_summary: str, long_summary: str) -> Summary:
        """
        Insert or overwrite the single summary row of a thread.

        updated_at always moves forward, even when two upserts land within
        the clock's resolution.
        """
        with self._transaction("upsert summary") as db:
            previous = db.execute(
                select(Summary.updated_at).where(Summary.thread_id == thread_id)
            ).scalar_one_or_none()
            updated_at = utcnow()
            if previous is not None and updated_at <= _as_utc(previous):
                updated_at = _as_utc(previous) + timedelta(microseconds=1)

            values = {
                "thread_id": thread_id,
                "short_summary": short_summary,
                "long_summary": long_summary,
                "updated_at": updated_at,
            }
            dialect = db.get_bind().dialect.name
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            elif dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                insert = None

            if insert is not None:
                stmt = insert(Summary).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Summary.thread_id],
                    set_={
                        "short_summary": stmt.excluded.short_summary,
                        "long_summary": stmt.excluded.long_summary,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                db.execute(stmt)
            else:
                db.merge(Summary(**values))

        return Summary(**values)
