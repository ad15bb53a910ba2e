"""
Conversation service.
Runs one user turn end to end: thread resolution, retrieval, prompt
assembly, completion, persistence and the rolling summary.
"""
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any, Dict, List, Optional

from ..db.repository import Repository
from ..errors import ModelError, StorageError, ValidationError
from ..llm import CompletionGateway, Turn
from ..logging_config import logger
from ..models import Message, Summary, Thread
from .context_service import ContextAssembler, PromptMode
from .retrieval_service import DEFAULT_TOP_K, RetrievalStrategy, ScoredChunk
from .summary_service import Summarizer

APOLOGY_MESSAGE = "Sorry, I could not process your request at this time."
FALLBACK_PHRASE = "I don't know based on the provided files."
TITLE_CHARS = 100


class TurnStage(str, Enum):
    RESOLVE_THREAD = "resolve_thread"
    PERSIST_USER_MSG = "persist_user_msg"
    RETRIEVE_CONTEXT = "retrieve_context"
    ASSEMBLE_PROMPT = "assemble_prompt"
    COMPLETE = "complete"
    PERSIST_ASSISTANT_MSG = "persist_assistant_msg"
    UPDATE_SUMMARY = "update_summary"
    RESPOND = "respond"


@dataclass
class TurnResult:
    thread_id: int
    mode: PromptMode
    messages: List[Message]
    sources: List[ScoredChunk] = field(default_factory=list)


def thread_title(message: str) -> str:
    return message[:TITLE_CHARS] + ("..." if len(message) > TITLE_CHARS else "")


def strip_fallback_phrase(reply: str) -> str:
    """
    Drop trailing copies of the fallback phrase when the reply has other content.

    A reply that is nothing but the phrase is returned unchanged; one made
    only of repeated copies collapses to a single phrase.
    """
    text = reply.strip()
    if text == FALLBACK_PHRASE or not text.endswith(FALLBACK_PHRASE):
        return reply

    body = text
    while body.endswith(FALLBACK_PHRASE):
        body = body[:-len(FALLBACK_PHRASE)].rstrip()
    return body or FALLBACK_PHRASE


def to_turns(messages: List[Message]) -> List[Turn]:
    return [{"role": m.role, "content": m.content} for m in messages]


class ConversationOrchestrator:
    def __init__(
        self,
        repository: Repository,
        completion: CompletionGateway,
        retrieval: RetrievalStrategy,
        assembler: ContextAssembler,
        summarizer: Summarizer,
        top_k: int = DEFAULT_TOP_K,
        history_limit: int = 10,
        max_message_chars: int = 8000,
    ):
        self.repository = repository
        self.completion = completion
        self.retrieval = retrieval
        self.assembler = assembler
        self.summarizer = summarizer
        self.top_k = top_k
        self.history_limit = history_limit
        self.max_message_chars = max_message_chars

    def handle_turn(
        self,
        owner_id: str,
        message: str,
        thread_id: Optional[int] = None,
        completion: Optional[CompletionGateway] = None,
    ) -> TurnResult:
        """
        Answer one user message.

        Completion failures never surface: the stored reply becomes a fixed
        apology. Summary failures are logged and skipped.

        Args:
            owner_id: The requesting user
            message: The user's message
            thread_id: Existing thread to continue, or None to start one
            completion: Gateway for this turn's answer (defaults to the configured one)

        Returns:
            TurnResult with every message of the thread in chronological order

        Raises:
            ValidationError: Blank or oversized message, before anything is written
            NotFoundError: thread_id does not belong to owner_id
            StorageError: A message could not be persisted
        """
        start = perf_counter()
        question = self._validate(owner_id, message)
        completion = completion or self.completion
        log = logger.bind(owner_id=owner_id)

        log.debug("Turn stage", stage=TurnStage.RESOLVE_THREAD.value)
        thread = self._resolve_thread(owner_id, question, thread_id)
        log = log.bind(thread_id=thread.id)

        log.debug("Turn stage", stage=TurnStage.PERSIST_USER_MSG.value)
        self.repository.add_message(thread.id, "user", question)
        history = to_turns(self.repository.last_messages(thread.id, self.history_limit))

        log.debug("Turn stage", stage=TurnStage.RETRIEVE_CONTEXT.value)
        sources = self._retrieve(owner_id, question)

        log.debug("Turn stage", stage=TurnStage.ASSEMBLE_PROMPT.value)
        prompt = self.assembler.assemble(
            question,
            [s.chunk.chunk_text for s in sources],
            summary=self._summary_text(thread.id),
            history=history,
        )

        log.debug("Turn stage", stage=TurnStage.COMPLETE.value, mode=prompt.mode.value)
        try:
            reply = completion.complete(prompt.turns)
            reply = strip_fallback_phrase(reply)
        except Exception as e:
            log.error("Completion failed, replying with apology", error=str(e), exc_info=e)
            reply = APOLOGY_MESSAGE

        log.debug("Turn stage", stage=TurnStage.PERSIST_ASSISTANT_MSG.value)
        self.repository.add_message(thread.id, "assistant", reply)

        log.debug("Turn stage", stage=TurnStage.UPDATE_SUMMARY.value)
        self.summarizer.update(thread.id, to_turns(self.repository.all_messages(thread.id)))

        log.debug("Turn stage", stage=TurnStage.RESPOND.value)
        messages = self.repository.all_messages(thread.id)
        log.info(
            "Turn completed",
            mode=prompt.mode.value,
            sources=len(sources),
            messages=len(messages),
            time_ms=round((perf_counter() - start) * 1000, 2),
        )
        return TurnResult(thread_id=thread.id, mode=prompt.mode, messages=messages, sources=sources)

    def _validate(self, owner_id: str, message: str) -> str:
        if not owner_id:
            raise ValidationError("owner id is required")
        question = (message or "").strip()
        if not question:
            raise ValidationError("message must not be empty")
        if len(question) > self.max_message_chars:
            raise ValidationError(f"message is longer than {self.max_message_chars} characters")
        return question

    def _resolve_thread(self, owner_id: str, question: str, thread_id: Optional[int]) -> Thread:
        if thread_id is None:
            return self.repository.create_thread(owner_id, thread_title(question))
        return self.repository.get_thread(owner_id, thread_id)

    def _retrieve(self, owner_id: str, question: str) -> List[ScoredChunk]:
        """Relevant chunks for the question; empty when retrieval is unavailable."""
        try:
            candidates = self.repository.list_chunks(owner_id, limit=self.retrieval.candidate_limit)
            if not candidates:
                return []
            return self.retrieval.select(question, candidates, self.top_k)
        except (ModelError, StorageError) as e:
            logger.error("File context fetch error", strategy=self.retrieval.name, error=e.message)
            return []

    def _summary_text(self, thread_id: int) -> Optional[str]:
        try:
            summary = self.repository.get_summary(thread_id)
        except StorageError:
            return None
        if summary is None:
            return None
        return summary.long_summary or summary.short_summary

    # ==================== Thread management ====================

    def list_threads(self, owner_id: str) -> List[Dict[str, Any]]:
        return self.repository.list_threads(owner_id)

    def get_thread(self, owner_id: str, thread_id: int) -> Dict[str, Any]:
        """
        A thread with its messages and current summary.

        Raises:
            NotFoundError: If the thread does not belong to owner_id
        """
        thread = self.repository.get_thread(owner_id, thread_id)
        summary: Optional[Summary] = self.repository.get_summary(thread.id)
        return {
            "thread": thread,
            "messages": self.repository.all_messages(thread.id),
            "summary": summary,
        }

    def delete_thread(self, owner_id: str, thread_id: int) -> None:
        self.repository.delete_thread(owner_id, thread_id)
