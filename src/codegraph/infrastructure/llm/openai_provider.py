"""Text-completion providers for entity discovery."""

from __future__ import annotations

import threading
import time

from codegraph.config.logging import get_logger

logger = get_logger(__name__)


class OpenAITextCompletionProvider:
    """Text-completion provider using the OpenAI chat API.

    Enforces a minimum interval between requests so a document with many
    chunks does not burst the API.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        min_interval_seconds: float = 1.0,
        max_tokens: int = 2000,
        temperature: float = 0.1,
    ) -> None:
        """Initialize the provider.

        Args:
            model: OpenAI chat model to use.
            api_key: OpenAI API key. If None, uses OPENAI_API_KEY env var.
            min_interval_seconds: Minimum delay between two requests.
            max_tokens: Completion budget per request.
            temperature: Sampling temperature.
        """
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key
        self._client = None
        self._min_interval = min_interval_seconds
        self._last_request = 0.0
        self._lock = threading.Lock()

    @property
    def client(self):
        """Lazy initialize OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self._api_key)
        return self._client

    def _wait_for_slot(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request = time.monotonic()

    def generate(self, prompt: str) -> str:
        log = logger.bind(model=self.model, prompt_length=len(prompt))
        self._wait_for_slot()
        log.debug("llm.generate.start")
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        text = response.choices[0].message.content or ""
        log.debug("llm.generate.complete", response_length=len(text))
        return text


class StaticTextCompletionProvider:
    """Provider that replays canned responses (tests, offline runs).

    Responses are returned in order; the last one repeats.  An Exception
    instance in *responses* is raised instead of returned.
    """

    def __init__(self, *responses: str | Exception) -> None:
        self._responses = list(responses) or [""]
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts) - 1, len(self._responses) - 1)
        response = self._responses[index]
        if isinstance(response, Exception):
            raise response
        return response
