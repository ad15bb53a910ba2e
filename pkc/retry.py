"""
Bounded retry with exponential backoff around gateway calls.

Only ModelError is retried. retries=0 makes a single attempt, which is the
default everywhere.
"""
import time
from typing import Any, Callable, List, TypeVar

from .embedding import EmbeddingGateway
from .errors import ModelError
from .llm import CompletionGateway, Turn
from .logging_config import logger

T = TypeVar("T")


def call_with_retries(
    fn: Callable[[], T],
    retries: int = 0,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    operation: str = "gateway call",
) -> T:
    """
    Call fn, retrying up to `retries` times on ModelError.

    Waits backoff_seconds * 2**attempt between attempts and re-raises the
    last error once attempts run out.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except ModelError as e:
            if attempt >= retries:
                raise
            delay = backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.warning(
                "Retrying after model error",
                operation=operation,
                attempt=attempt,
                max_retries=retries,
                delay_s=delay,
                error=e.message,
            )
            sleep(delay)


class RetryingCompletionGateway(CompletionGateway):
    def __init__(self, inner: CompletionGateway, retries: int = 0, backoff_seconds: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        self.inner = inner
        self.provider = inner.provider
        self.model = inner.model
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def complete(self, turns: List[Turn], **options: Any) -> str:
        return call_with_retries(
            lambda: self.inner.complete(turns, **options),
            retries=self._retries,
            backoff_seconds=self._backoff_seconds,
            sleep=self._sleep,
            operation="complete",
        )


class RetryingEmbeddingGateway(EmbeddingGateway):
    def __init__(self, inner: EmbeddingGateway, retries: int = 0, backoff_seconds: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        self.inner = inner
        self.dim = inner.dim
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    def embed(self, texts: List[str]) -> List[List[float]]:
        return call_with_retries(
            lambda: self.inner.embed(texts),
            retries=self._retries,
            backoff_seconds=self._backoff_seconds,
            sleep=self._sleep,
            operation="embed",
        )
