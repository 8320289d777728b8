"""Chat-completion client with an explicit timeout and bounded retries."""

import logging
import time
from typing import Optional

import openai
from openai import OpenAI

from .errors import ModelError

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 30.0


class ModelClient:
    """Calls an OpenAI-compatible chat model.

    The SDK's own retry loop is disabled so the number of attempts is
    decided here: one call plus at most ``max_retries`` retries on timeouts,
    connection failures, rate limits and 5xx responses.
    """

    def __init__(
        self,
        api_key: str,
        model: str = 'gpt-4o-mini',
        timeout: float = 120.0,
        max_retries: int = 3,
        base_url: Optional[str] = None,
        client: Optional[OpenAI] = None,
        sleep=time.sleep,
    ):
        self.model = model
        self.max_retries = max(0, max_retries)
        self._sleep = sleep
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def _backoff(self, attempt: int) -> float:
        return min(MAX_BACKOFF_SECONDS, BACKOFF_SECONDS * (2 ** attempt))

    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int = 4096) -> str:
        """Return the text of one completion. Raises ModelError when it cannot be obtained."""
        attempt = 0
        while True:
            try:
                resp = self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=0.2,
                    max_tokens=max_tokens,
                )
                break
            except RETRYABLE_ERRORS as e:
                if attempt >= self.max_retries:
                    raise ModelError(f"Model call failed after {attempt + 1} attempts: {e}") from e
                delay = self._backoff(attempt)
                attempt += 1
                logger.warning("Model call failed (%s); retry %d/%d in %.1fs", e, attempt, self.max_retries, delay)
                self._sleep(delay)
            except openai.APIError as e:
                raise ModelError(f"Model call failed: {e}") from e

        if not resp.choices:
            raise ModelError("No choices in model response")
        choice = resp.choices[0]
        if choice.finish_reason == 'length':
            logger.warning("Model response hit the token limit and may be truncated")
        content = choice.message.content
        if not content:
            raise ModelError("No text response from model")
        return content
