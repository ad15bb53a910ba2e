"""
Completion gateway and helpers for parsing model replies.

One gateway serves chat answers, summaries, entity extraction,
classification and chunk reranking; callers differ only in the prompt they
send and in how they read the text that comes back.
"""
import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from openai import OpenAI, OpenAIError

from .errors import ModelError
from .logging_config import logger

Turn = Dict[str, str]

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class CompletionGateway(ABC):
    """Turns an ordered list of {role, content} turns into generated text."""

    provider = "unknown"
    model = ""

    @abstractmethod
    def complete(self, turns: List[Turn], **options: Any) -> str:
        """
        Raises:
            ModelError: If the provider call fails.
        """
        ...


class OpenAIChatGateway(CompletionGateway):
    """
    Chat completions through the OpenAI SDK.

    Also used for Ollama, which serves the same API under /v1.
    """

    def __init__(self, client: OpenAI, model: str, provider: str = "openai", temperature: float = 0.2):
        self._client = client
        self.model = model
        self.provider = provider
        self._temperature = temperature

    def complete(self, turns: List[Turn], **options: Any) -> str:
        options.setdefault("temperature", self._temperature)
        logger.info("Sent request to completion API", provider=self.provider, model=self.model, turns=len(turns))
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=turns,
                **options,
            )
        except OpenAIError as e:
            logger.error("Completion request failed", provider=self.provider, model=self.model, error=str(e))
            raise ModelError(f"Completion failed: {e}", provider=self.provider) from e

        if not response.choices:
            raise ModelError("Completion returned no choices", provider=self.provider)
        return response.choices[0].message.content or ""


def build_openai_client(api_key: str = None, base_url: str = None) -> OpenAI:
    if base_url is None and not api_key:
        raise RuntimeError("OPENAI_API_KEY is not set. Put it in env or .env (server-side only).")
    return OpenAI(api_key=api_key or "ollama", base_url=base_url)


# ==================== Reply parsing ====================

@dataclass(frozen=True)
class Parsed:
    """A reply that decoded as JSON."""

    value: Any


@dataclass(frozen=True)
class Raw:
    """A reply that did not decode; the stripped text is kept for fallbacks."""

    text: str


JsonReply = Union[Parsed, Raw]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if there is one."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def parse_json_reply(text: str) -> JsonReply:
    """
    Best-effort JSON decoding of a model reply.

    >>> parse_json_reply('```json\\n[2, 0]\\n```')
    Parsed(value=[2, 0])
    >>> parse_json_reply('no json here')
    Raw(text='no json here')
    """
    cleaned = strip_code_fences(text or "")
    try:
        return Parsed(json.loads(cleaned))
    except (json.JSONDecodeError, TypeError, ValueError):
        return Raw(cleaned)
