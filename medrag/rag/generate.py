import os
import logging
import asyncio
import random
import threading
from typing import Callable, Iterator, Optional, Protocol

from medrag.errors import GenerationError

logger = logging.getLogger(__name__)


class Generator(Protocol):
    model: str

    async def generate(self, prompt: str) -> str: ...

    def stream(self, prompt: str, cancel: Optional[threading.Event] = None) -> Iterator[str]: ...


def _backoff_delay(attempt: int) -> float:
    return (2 ** (attempt - 1)) + random.uniform(0, 0.5)


class _RetryingGenerator:
    """Shared blocking-call retry loop: bounded attempts, exponential backoff with jitter."""

    model: str
    max_attempts: int = 3

    def _generate_sync(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate(self, prompt: str) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                text = (await asyncio.to_thread(self._generate_sync, prompt) or "").strip()
                if not text:
                    logger.warning("Generation backend returned empty text response.")
                return text
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(f"Generation failed after {attempt} attempts: {type(e).__name__}: {e}", exc_info=True)
                    raise GenerationError(f"Generation failed: {type(e).__name__}") from e
                backoff = _backoff_delay(attempt)
                logger.warning(
                    "Generation request failed on attempt %s/%s (%s). Retrying in %.2fs...",
                    attempt,
                    self.max_attempts,
                    type(e).__name__,
                    backoff,
                )
                await asyncio.sleep(backoff)
        raise GenerationError("Generation failed")  # unreachable


class OpenAIGenerator(_RetryingGenerator):
    def __init__(
        self,
        model: str = "gpt-3.5-turbo",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_s: float = 60.0,
        max_attempts: int = 3,
        client=None,
    ):
        if client is None:
            from openai import OpenAI

            if not os.environ.get("OPENAI_API_KEY"):
                raise RuntimeError("OPENAI_API_KEY environment variable is required")
            # Retries are handled here, not inside the SDK.
            client = OpenAI(timeout=timeout_s, max_retries=0)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_attempts = max_attempts

    def _messages(self, prompt: str):
        return [{"role": "user", "content": prompt}]

    def _generate_sync(self, prompt: str) -> str:
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(prompt),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return resp.choices[0].message.content or ""

    def stream(self, prompt: str, cancel: Optional[threading.Event] = None) -> Iterator[str]:
        stream = self.client.chat.completions.create(
            model=self.model,
            messages=self._messages(prompt),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        try:
            for chunk in stream:
                if cancel is not None and cancel.is_set():
                    logger.info("Generation stream cancelled by consumer")
                    return
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            close: Optional[Callable[[], None]] = getattr(stream, "close", None)
            if close is not None:
                close()


class GeminiGenerator(_RetryingGenerator):
    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_s: float = 60.0,
        max_attempts: int = 3,
        api_key_env: str = "GEMINI_API_KEY",
        client=None,
    ):
        from google.genai import types

        if client is None:
            from google import genai

            api_key = os.environ.get(api_key_env)
            if not api_key:
                raise RuntimeError(f"CRITICAL: {api_key_env} is missing.")
            client = genai.Client(api_key=api_key, http_options=types.HttpOptions(timeout=int(timeout_s * 1000)))
        self.client = client
        self.model = model
        self.max_attempts = max_attempts
        self._config = types.GenerateContentConfig(temperature=temperature, max_output_tokens=max_tokens)

    def _generate_sync(self, prompt: str) -> str:
        response = self.client.models.generate_content(model=self.model, contents=prompt, config=self._config)
        return getattr(response, "text", "") or ""

    def stream(self, prompt: str, cancel: Optional[threading.Event] = None) -> Iterator[str]:
        for chunk in self.client.models.generate_content_stream(model=self.model, contents=prompt, config=self._config):
            if cancel is not None and cancel.is_set():
                logger.info("Generation stream cancelled by consumer")
                return
            text = getattr(chunk, "text", None)
            if text:
                yield text
