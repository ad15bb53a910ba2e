"""Tests for the conversation orchestrator."""
import pytest
from sqlalchemy import func, select

from fakes import KeywordEmbedder, ScriptedCompletion
from pkc.errors import NotFoundError, ValidationError
from pkc.models import Message, Summary, Thread
from pkc.services.context_service import FILE_CONTEXT_START, ContextAssembler, PromptMode
from pkc.services.conversation_service import (
    APOLOGY_MESSAGE,
    FALLBACK_PHRASE,
    ConversationOrchestrator,
    strip_fallback_phrase,
    thread_title,
)
from pkc.services.ingestion_service import IngestionCoordinator
from pkc.services.retrieval_service import LLMRerank, VectorSimilarity
from pkc.services.summary_service import Summarizer

INVOICE_TEXT = (
    "Invoice 2041 from Acme Corporation lists consulting services delivered in March "
    "with a total amount due of 4,500 euros payable within thirty days."
)


def count_rows(session_factory, model):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def make_orchestrator(repository):
    def make(completion=None, retrieval=None, **kwargs):
        completion = completion or ScriptedCompletion()
        return ConversationOrchestrator(
            repository,
            completion,
            retrieval or LLMRerank(completion),
            ContextAssembler(),
            Summarizer(completion, repository),
            **kwargs,
        )
    return make


class TestStripFallbackPhrase:
    def test_trailing_phrase_removed(self):
        assert strip_fallback_phrase(f"The total is 4,500 euros. {FALLBACK_PHRASE}") == "The total is 4,500 euros."

    def test_phrase_alone_kept(self):
        assert strip_fallback_phrase(FALLBACK_PHRASE) == FALLBACK_PHRASE

    def test_repeated_phrase_collapses(self):
        assert strip_fallback_phrase(f"{FALLBACK_PHRASE} {FALLBACK_PHRASE}") == FALLBACK_PHRASE

    def test_phrase_in_middle_untouched(self):
        reply = f"{FALLBACK_PHRASE} But generally, Paris is the capital."
        assert strip_fallback_phrase(reply) == reply


class TestThreadTitle:
    def test_short_message_used_verbatim(self):
        assert thread_title("Hello there") == "Hello there"

    def test_long_message_truncated(self):
        title = thread_title("x" * 150)
        assert title == "x" * 100 + "..."


class TestHandleTurn:
    def test_new_thread_gets_both_messages_and_summary(self, make_orchestrator, repository):
        result = make_orchestrator().handle_turn("user-1", "What is the capital of France?")

        assert [m.role for m in result.messages] == ["user", "assistant"]
        assert result.messages[0].content == "What is the capital of France?"
        assert result.messages[1].content == "Here is what I found."
        assert repository.get_thread("user-1", result.thread_id).title == "What is the capital of France?"
        assert repository.get_summary(result.thread_id).short_summary == "Short summary."

    def test_no_files_means_general_mode(self, make_orchestrator):
        completion = ScriptedCompletion()
        result = make_orchestrator(completion).handle_turn("user-1", "What is the tallest building?")

        assert result.mode is PromptMode.GENERAL
        assert result.sources == []
        (turns,) = completion.calls_of("answer")
        assert all(FILE_CONTEXT_START not in t["content"] for t in turns)
        assert completion.calls_of("rerank") == []

    def test_relevant_file_grounds_the_answer(self, make_orchestrator, repository, storage, hash_embedder):
        IngestionCoordinator(repository, storage, hash_embedder).ingest(
            "user-1", "invoice.txt", "text/plain", INVOICE_TEXT.encode(), INVOICE_TEXT
        )
        completion = ScriptedCompletion(rerank="[0]")

        result = make_orchestrator(completion).handle_turn("user-1", "How much is the Acme invoice?")

        assert result.mode is PromptMode.GROUNDED
        assert [s.chunk.filename for s in result.sources] == ["invoice.txt"]
        (turns,) = completion.calls_of("answer")
        assert INVOICE_TEXT in turns[0]["content"]

    def test_vector_retrieval_only_sees_own_files(self, make_orchestrator, repository, storage):
        embedder = KeywordEmbedder(["invoice", "acme"])
        IngestionCoordinator(repository, storage, embedder).ingest(
            "user-2", "invoice.txt", "text/plain", INVOICE_TEXT.encode(), INVOICE_TEXT
        )
        completion = ScriptedCompletion()
        orchestrator = make_orchestrator(completion, retrieval=VectorSimilarity(embedder, threshold=0.5))

        result = orchestrator.handle_turn("user-1", "How much is the Acme invoice?")

        assert result.sources == []
        assert result.mode is PromptMode.GENERAL

    def test_retrieval_failure_degrades_to_general(self, make_orchestrator, repository, storage, hash_embedder):
        IngestionCoordinator(repository, storage, hash_embedder).ingest(
            "user-1", "invoice.txt", "text/plain", INVOICE_TEXT.encode(), INVOICE_TEXT
        )
        broken = KeywordEmbedder(["invoice"], fail_after_calls=0)
        orchestrator = make_orchestrator(retrieval=VectorSimilarity(broken))

        result = orchestrator.handle_turn("user-1", "How much is the Acme invoice?")

        assert result.mode is PromptMode.GENERAL
        assert result.messages[-1].content == "Here is what I found."

    def test_completion_failure_stores_apology(self, make_orchestrator, repository):
        completion = ScriptedCompletion(fail=("answer",))

        result = make_orchestrator(completion).handle_turn("user-1", "Anything?")

        assert result.messages[-1].role == "assistant"
        assert result.messages[-1].content == APOLOGY_MESSAGE
        stored = repository.all_messages(result.thread_id)
        assert stored[-1].content == APOLOGY_MESSAGE

    def test_fallback_phrase_stripped_before_storing(self, make_orchestrator, repository):
        completion = ScriptedCompletion(answer=f"Paris is the capital. {FALLBACK_PHRASE}")

        result = make_orchestrator(completion).handle_turn("user-1", "Capital of France?")

        assert repository.all_messages(result.thread_id)[-1].content == "Paris is the capital."

    def test_summary_failure_does_not_fail_turn(self, make_orchestrator, repository):
        completion = ScriptedCompletion(fail=("summary",))

        result = make_orchestrator(completion).handle_turn("user-1", "Hello")

        assert len(result.messages) == 2
        assert repository.get_summary(result.thread_id) is None

    def test_two_turns_keep_one_summary_row(self, make_orchestrator, repository, session_factory):
        replies = iter(['{"short": "one", "long": "first"}', '{"short": "two", "long": "second"}'])
        completion = ScriptedCompletion(summary=lambda turns: next(replies))
        orchestrator = make_orchestrator(completion)

        first = orchestrator.handle_turn("user-1", "First question")
        before = repository.get_summary(first.thread_id)
        assert count_rows(session_factory, Summary) == 1

        second = orchestrator.handle_turn("user-1", "Second question", thread_id=first.thread_id)
        after = repository.get_summary(first.thread_id)

        assert second.thread_id == first.thread_id
        assert count_rows(session_factory, Summary) == 1
        assert (before.short_summary, after.short_summary) == ("one", "two")
        assert after.updated_at > before.updated_at
        assert [m.content for m in second.messages if m.role == "user"] == ["First question", "Second question"]

    def test_summary_sees_whole_thread_beyond_history_limit(self, make_orchestrator):
        completion = ScriptedCompletion()
        orchestrator = make_orchestrator(completion, history_limit=2)

        first = orchestrator.handle_turn("user-1", "First question")
        orchestrator.handle_turn("user-1", "Second question", thread_id=first.thread_id)
        orchestrator.handle_turn("user-1", "Third question", thread_id=first.thread_id)

        summarized = [t["content"] for t in completion.calls_of("summary")[-1][1:]]
        assert summarized == [
            "First question", "Here is what I found.",
            "Second question", "Here is what I found.",
            "Third question", "Here is what I found.",
        ]
        replayed = [t["content"] for t in completion.calls_of("answer")[-1] if t["role"] != "system"]
        assert replayed == ["Here is what I found.", "Third question"]

    def test_follow_up_replays_history_and_summary(self, make_orchestrator):
        completion = ScriptedCompletion()
        orchestrator = make_orchestrator(completion)

        first = orchestrator.handle_turn("user-1", "First question")
        orchestrator.handle_turn("user-1", "Second question", thread_id=first.thread_id)

        turns = completion.calls_of("answer")[-1]
        contents = [t["content"] for t in turns]
        assert contents[1] == "Conversation summary: Longer summary of the chat."
        assert contents[2:] == ["First question", "Here is what I found.", "Second question"]


class TestTurnValidation:
    @pytest.mark.parametrize("message", ["", "   ", None])
    def test_blank_message_rejected_before_writing(self, make_orchestrator, session_factory, message):
        with pytest.raises(ValidationError):
            make_orchestrator().handle_turn("user-1", message)
        assert count_rows(session_factory, Thread) == 0

    def test_oversized_message_rejected(self, make_orchestrator, session_factory):
        with pytest.raises(ValidationError):
            make_orchestrator(max_message_chars=10).handle_turn("user-1", "x" * 11)
        assert count_rows(session_factory, Message) == 0

    def test_other_owners_thread_is_not_found(self, make_orchestrator, session_factory):
        orchestrator = make_orchestrator()
        result = orchestrator.handle_turn("user-1", "Mine")

        with pytest.raises(NotFoundError):
            orchestrator.handle_turn("user-2", "Intruding", thread_id=result.thread_id)
        assert count_rows(session_factory, Message) == 2


class TestThreadManagement:
    def test_list_threads_newest_first(self, make_orchestrator):
        orchestrator = make_orchestrator()
        older = orchestrator.handle_turn("user-1", "Older")
        newer = orchestrator.handle_turn("user-1", "Newer")
        orchestrator.handle_turn("user-2", "Not mine")

        threads = orchestrator.list_threads("user-1")

        assert [t["id"] for t in threads] == [newer.thread_id, older.thread_id]
        assert threads[0]["message_count"] == 2
        assert threads[0]["last_message"]["role"] == "assistant"

    def test_get_thread_returns_messages_and_summary(self, make_orchestrator):
        orchestrator = make_orchestrator()
        result = orchestrator.handle_turn("user-1", "Hello")

        data = orchestrator.get_thread("user-1", result.thread_id)

        assert data["thread"].id == result.thread_id
        assert [m.role for m in data["messages"]] == ["user", "assistant"]
        assert data["summary"].short_summary == "Short summary."

    def test_delete_thread_cascades(self, make_orchestrator, session_factory):
        orchestrator = make_orchestrator()
        result = orchestrator.handle_turn("user-1", "Hello")

        orchestrator.delete_thread("user-1", result.thread_id)

        assert count_rows(session_factory, Thread) == 0
        assert count_rows(session_factory, Message) == 0
        assert count_rows(session_factory, Summary) == 0

    def test_cannot_delete_someone_elses_thread(self, make_orchestrator):
        orchestrator = make_orchestrator()
        result = orchestrator.handle_turn("user-1", "Hello")

        with pytest.raises(NotFoundError):
            orchestrator.delete_thread("user-2", result.thread_id)
