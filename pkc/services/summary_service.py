"""
Summary service.
Keeps one rolling short/long summary per thread, rewritten after every exchange.
"""
from typing import List, Optional

from ..db.repository import Repository
from ..llm import CompletionGateway, Parsed, Turn, parse_json_reply
from ..logging_config import logger
from ..models import Summary

SUMMARY_INSTRUCTION = (
    "Summarize the following conversation in 1-2 sentences (short) and 5-8 sentences (long). "
    "Return as JSON: { \"short\": \"\", \"long\": \"\" }"
)


def read_summary_reply(reply: str):
    """
    Split a summary reply into (short, long).

    Non-JSON replies, or JSON that is not an object, give the raw text for
    both; an object missing a field gives the raw text for that field.
    """
    raw = reply.strip()
    parsed = parse_json_reply(reply)
    if isinstance(parsed, Parsed) and isinstance(parsed.value, dict):
        short = parsed.value.get("short")
        long = parsed.value.get("long")
        return (str(short) if short else raw), (str(long) if long else raw)
    return raw, raw


class Summarizer:
    def __init__(self, completion: CompletionGateway, repository: Repository):
        self.completion = completion
        self.repository = repository

    def update(self, thread_id: int, history: List[Turn]) -> Optional[Summary]:
        """
        Regenerate and upsert the thread summary.

        Never raises: a failure is logged and the previous summary stays.

        Args:
            thread_id: The thread to summarize
            history: Conversation turns, including the newest user/assistant pair

        Returns:
            The stored summary, or None if this update was skipped
        """
        prompt = [{"role": "system", "content": SUMMARY_INSTRUCTION}]
        prompt.extend({"role": t["role"], "content": t["content"]} for t in history)

        try:
            reply = self.completion.complete(prompt, max_tokens=300)
            short_summary, long_summary = read_summary_reply(reply)
            summary = self.repository.upsert_summary(thread_id, short_summary, long_summary)
        except Exception as e:
            logger.error("Summary generation error", thread_id=thread_id, error=str(e), exc_info=e)
            return None

        logger.info("Summary updated", thread_id=thread_id)
        return summary
