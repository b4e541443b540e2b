"""
Client for the external completion provider.

The provider is treated as unreliable: each request gets a single attempt,
the core stops waiting after COMPLETION_TIMEOUT_SECONDS, and any failure is
answered with one of the configured fallback messages instead of an error.
"""
import os
import random
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from openai import APITimeoutError, OpenAI, OpenAIError

from groupbot.config import (
    COMPLETION_TIMEOUT_SECONDS,
    MAX_RESPONSE_LENGTH,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
)
from groupbot.constants import COMPLETION_MAX_WORKERS, FALLBACK_RESPONSES
from groupbot.errors import BoundaryError, BoundaryMalformed, BoundaryTimeout
from groupbot.logger import logger


@dataclass
class CompletionResult:
    text: str
    ok: bool = True
    error: Optional[BoundaryError] = None


def build_client() -> Optional[OpenAI]:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.warning("OPENAI_API_KEY is not set; every completion will use a fallback reply")
        return None
    # No retries: one attempt, then fallback
    return OpenAI(api_key=api_key, base_url=OPENAI_BASE_URL, max_retries=0)


class CompletionService:
    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = OPENAI_MODEL,
        timeout_seconds: float = COMPLETION_TIMEOUT_SECONDS,
        fallback_responses: Sequence[str] = FALLBACK_RESPONSES,
        choose: Callable[[Sequence[str]], str] = random.choice,
        max_response_length: int = MAX_RESPONSE_LENGTH,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """
        Args:
            client: OpenAI-compatible client, or None to always fall back
            model: Chat model name
            timeout_seconds: How long the core waits for an answer
            fallback_responses: Replies used when the provider fails
            choose: Picks one fallback; inject a deterministic one in tests
            max_response_length: Longer answers are truncated
            executor: Worker pool the request runs on
        """
        if not fallback_responses:
            raise ValueError("At least one fallback response is required")
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.fallback_responses = tuple(fallback_responses)
        self._choose = choose
        self.max_response_length = max_response_length
        self._executor = executor or ThreadPoolExecutor(
            max_workers=COMPLETION_MAX_WORKERS, thread_name_prefix="completion"
        )

    def fallback(self, error: BoundaryError) -> CompletionResult:
        return CompletionResult(text=self._choose(self.fallback_responses), ok=False, error=error)

    def complete(self, query: str, system_context: str = "") -> CompletionResult:
        if self.client is None:
            return self.fallback(BoundaryMalformed("completion provider is not configured"))

        future = self._executor.submit(self._request, query, system_context)
        try:
            text = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            # Not cancelled; a late answer is simply ignored
            logger.error("Completion provider timed out after %ss", self.timeout_seconds)
            return self.fallback(BoundaryTimeout(f"no answer within {self.timeout_seconds}s"))
        except BoundaryError as e:
            logger.error("Completion provider failed: %s", e)
            return self.fallback(e)
        except Exception as e:  # noqa: BLE001 - never surface provider errors to the chat
            logger.exception("Unexpected error talking to the completion provider")
            return self.fallback(BoundaryMalformed(str(e)))

        if len(text) > self.max_response_length:
            text = text[: self.max_response_length - 3].rstrip() + "..."
        return CompletionResult(text=text)

    def _request(self, query: str, system_context: str) -> str:
        messages = []
        if system_context:
            messages.append({"role": "system", "content": system_context})
        messages.append({"role": "user", "content": query})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.7,
                timeout=self.timeout_seconds,
            )
        except APITimeoutError as e:
            raise BoundaryTimeout(str(e)) from e
        except OpenAIError as e:
            raise BoundaryMalformed(f"provider error: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise BoundaryMalformed("response has no choices") from e

        if not isinstance(content, str) or not content.strip():
            raise BoundaryMalformed("response has no content")
        return content.strip()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
