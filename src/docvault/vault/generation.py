"""Text generation gateways."""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from pydantic import BaseModel, Field

from docvault.exceptions import ModelNotLoadedError

from .base import BaseGenerator

logger = logging.getLogger(__name__)


class GenerationParams(BaseModel):
    """Sampling parameters for generation."""

    max_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40
    repeat_penalty: float = 1.1
    stop_sequences: list[str] = Field(default_factory=list)


class OpenAICompatibleGenerator(BaseGenerator):
    """Streaming generator for a local OpenAI-compatible server.

    llama.cpp's server, Ollama and LM Studio all expose this API, so the
    model runs on-device. ``top_k`` and ``repeat_penalty`` are passed as
    extra body fields, which those servers understand.

    Note: Requires the 'openai' extra to be installed.
    """

    def __init__(
        self,
        model: str = "local-model",
        base_url: Optional[str] = "http://localhost:8080/v1",
        api_key: Optional[str] = "local",
        system_prompt: Optional[str] = None,
    ):
        self.model = model
        self.base_url = base_url
        self.api_key = api_key
        self.system_prompt = system_prompt
        self._client = None

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install docvault[openai]"
                )

            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate(
        self,
        prompt: str,
        params: Optional[GenerationParams] = None,
    ) -> AsyncIterator[str]:
        """Stream a completion from the server."""
        params = params or GenerationParams()
        client = self._get_client()

        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})

        request: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "max_tokens": params.max_tokens,
            "stream": True,
            "extra_body": {
                "top_k": params.top_k,
                "repeat_penalty": params.repeat_penalty,
            },
        }
        if params.stop_sequences:
            request["stop"] = params.stop_sequences

        try:
            stream = await client.chat.completions.create(**request)
        except Exception as e:
            if getattr(e, "status_code", None) == 404:
                raise ModelNotLoadedError(self.model) from e
            raise

        try:
            async for chunk in stream:
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta is not None and delta.content:
                    yield delta.content
        finally:
            await stream.close()


class FakeGenerator(BaseGenerator):
    """Generator that streams scripted tokens.

    Useful for tests. Honours ``max_tokens`` and ``stop_sequences`` and
    records every prompt it receives.
    """

    def __init__(
        self,
        tokens: Optional[list[str]] = None,
        delay: float = 0.0,
    ):
        """Initialize the fake generator.

        Args:
            tokens: Tokens to emit (defaults to a short fixed answer)
            delay: Seconds to sleep before each token
        """
        self.tokens = tokens if tokens is not None else ["This ", "is ", "a ", "test ", "answer."]
        self.delay = delay
        self.prompts: list[str] = []
        self.closed = 0
        self.emitted = 0

    async def generate(
        self,
        prompt: str,
        params: Optional[GenerationParams] = None,
    ) -> AsyncIterator[str]:
        params = params or GenerationParams()
        self.prompts.append(prompt)
        output = ""

        try:
            for token in self.tokens[: params.max_tokens]:
                if self.delay:
                    await asyncio.sleep(self.delay)
                output += token
                if any(stop in output for stop in params.stop_sequences):
                    break
                self.emitted += 1
                yield token
        finally:
            self.closed += 1
