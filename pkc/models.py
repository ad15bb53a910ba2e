from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Text, Integer, ForeignKey, BigInteger, DateTime, JSON,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import declarative_base, relationship
from pgvector.sqlalchemy import Vector

from .config import get_settings

EMBEDDING_DIM = get_settings().effective_embedding_dim

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileRecord(Base):
    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("checksum_sha256", "owner_id", name="uq_files_checksum_owner"),
    )
    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    filename = Column(Text, nullable=False)
    mime = Column(Text, nullable=False, default="")
    size_bytes = Column(BigInteger, nullable=False)
    checksum_sha256 = Column(String(64), nullable=False)
    storage_path = Column(Text, nullable=False)
    text_content = Column(Text)
    entities = Column(JSON)
    tags = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    chunks = relationship(
        "Chunk",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Chunk.chunk_index",
    )


class Chunk(Base):
    __tablename__ = "file_chunks"
    __table_args__ = (
        UniqueConstraint("file_id", "chunk_index", name="uq_file_chunks_file_index"),
    )
    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    file_id = Column(String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_text = Column(Text, nullable=False)
    embedding = Column(Vector(EMBEDDING_DIM))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    file = relationship("FileRecord", back_populates="chunks")


class Thread(Base):
    __tablename__ = "threads"
    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messages = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    summary = relationship(
        "Summary",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="ck_messages_role"),
        Index("idx_messages_thread_id_created_at", "thread_id", "created_at"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Integer, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    thread = relationship("Thread", back_populates="messages")


class Summary(Base):
    __tablename__ = "summaries"
    thread_id = Column(Integer, ForeignKey("threads.id", ondelete="CASCADE"), primary_key=True)
    short_summary = Column(Text)
    long_summary = Column(Text)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    thread = relationship("Thread", back_populates="summary")
