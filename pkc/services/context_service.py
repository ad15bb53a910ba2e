"""
Context assembly service.
Decides between document-grounded and general-knowledge answering and
builds the bounded list of turns sent to the completion model.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..llm import Turn
from ..logging_config import logger

DEFAULT_CONTEXT_CHAR_LIMIT = 8000
DEFAULT_HISTORY_LIMIT = 10
MIN_MEANINGFUL_WORDS = 10
MIN_ALPHA_CHARS = 3
MIN_QUERY_WORD_LENGTH = 3

FILE_CONTEXT_START = "--- FILE CONTEXT START ---"
FILE_CONTEXT_END = "--- FILE CONTEXT END ---"

STOP_WORDS = frozenset([
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "about", "tell", "me", "what", "how", "when", "where", "why", "who", "which",
])

_ALPHA_RE = re.compile(r"[a-zA-Z]")
_PUNCT_STRIP = "\"'`.,;:!?()[]{}<>"

GENERAL_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Answer the user's question using your general knowledge "
    "and training data. Provide informative and helpful responses about topics like geography, "
    "history, science, technology, culture, and other general knowledge subjects. Do not mention "
    "files or say 'I don't know based on the provided files.'\n\n"
    "IMPORTANT: You have access to the conversation history above. Use this context to provide "
    "relevant, contextual responses. Reference previous messages when appropriate to maintain "
    "conversation flow and continuity."
)


class PromptMode(str, Enum):
    GROUNDED = "grounded"
    GENERAL = "general"


@dataclass
class AssembledPrompt:
    mode: PromptMode
    context: str
    turns: List[Turn] = field(default_factory=list)


def build_context(chunk_texts: List[str], limit: int = DEFAULT_CONTEXT_CHAR_LIMIT) -> str:
    """Join chunk texts with blank lines and cut at exactly `limit` characters."""
    return "\n\n".join(chunk_texts)[:limit]


def is_meaningful_context(text: str) -> bool:
    """At least ten whitespace-separated words with three or more letters."""
    if not text:
        return False
    alpha_words = [w for w in text.split() if len(_ALPHA_RE.findall(w)) >= MIN_ALPHA_CHARS]
    return len(alpha_words) >= MIN_MEANINGFUL_WORDS


def query_keywords(question: str) -> List[str]:
    words = (w.strip(_PUNCT_STRIP) for w in question.lower().split())
    return [w for w in words if len(w) >= MIN_QUERY_WORD_LENGTH and w not in STOP_WORDS]


def is_relevant_context(context: str, question: str) -> bool:
    """True when any question keyword appears somewhere in the context."""
    if not context or not question:
        return False
    context_lower = context.lower()
    return any(word in context_lower for word in query_keywords(question))


def select_mode(context: str, question: str) -> PromptMode:
    if not context or not context.strip():
        return PromptMode.GENERAL
    if is_meaningful_context(context) and is_relevant_context(context, question):
        return PromptMode.GROUNDED
    return PromptMode.GENERAL


def grounded_system_prompt(context: str, question: str) -> str:
    return (
        "You are an assistant for the Personal Knowledge Console (PKC). The user has uploaded files "
        "as their personal knowledge base.\n"
        "IMPORTANT: First, determine if the user's question is asking about general knowledge (like "
        "'tallest buildings in the world', 'capital cities', 'historical facts', etc.) or if it's "
        "asking about specific content from their uploaded files.\n"
        "\nIf the question is about GENERAL KNOWLEDGE (facts about the world, history, geography, "
        "science, etc.), answer using your general knowledge and do NOT say 'I don't know based on "
        "the provided files.'\n"
        "\nIf the question is about SPECIFIC CONTENT from their uploaded files, prefer the file "
        "content below.\n"
        f"\n{FILE_CONTEXT_START}\n{context}\n{FILE_CONTEXT_END}\n"
        f"\nUser question: {question}\n\n"
        "Analyze the question and respond appropriately. If it's a general knowledge question, use "
        "your training data. If it's about specific file content, use the files above.\n\n"
        "CONVERSATION CONTEXT: You have access to the conversation history above. Use this context "
        "to provide relevant, contextual responses. Reference previous messages when appropriate to "
        "maintain conversation flow and continuity."
    )


class ContextAssembler:
    def __init__(
        self,
        context_char_limit: int = DEFAULT_CONTEXT_CHAR_LIMIT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.context_char_limit = context_char_limit
        self.history_limit = history_limit

    def assemble(
        self,
        query: str,
        chunk_texts: List[str],
        summary: Optional[str] = None,
        history: Optional[List[Turn]] = None,
    ) -> AssembledPrompt:
        """
        Build the turns for one answer.

        Order: system instruction, rolling summary (if any), the last
        `history_limit` history turns verbatim, then the current question
        unless it is already the newest history entry.

        Args:
            query: The user's question
            chunk_texts: Retrieved chunk texts, best first
            summary: Rolling conversation summary text, if one exists
            history: Previous turns in chronological order

        Returns:
            AssembledPrompt with the chosen mode, the truncated context and the turns
        """
        context = build_context(chunk_texts, self.context_char_limit)
        mode = select_mode(context, query)

        if mode is PromptMode.GROUNDED:
            turns = [{"role": "system", "content": grounded_system_prompt(context, query)}]
        else:
            turns = [{"role": "system", "content": GENERAL_SYSTEM_PROMPT}]

        if summary:
            turns.append({"role": "system", "content": f"Conversation summary: {summary}"})

        recent = list(history or [])[-self.history_limit:] if self.history_limit > 0 else []
        turns.extend({"role": t["role"], "content": t["content"]} for t in recent)

        last = turns[-1]
        if not (last["role"] == "user" and last["content"] == query):
            turns.append({"role": "user", "content": query})

        logger.info(
            "Assembled prompt",
            mode=mode.value,
            context_length=len(context),
            history_turns=len(recent),
            has_summary=bool(summary),
        )
        return AssembledPrompt(mode=mode, context=context, turns=turns)
