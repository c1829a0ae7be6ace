"""
Generative Text Client: OpenAI chat completions for AdRoom.

One injected client object serves the decision engine, the worker and the
intelligence cycle, so tests can substitute a double
(adroom.testing.mock_llm.MockTextClient).

Usage:
    from openai import OpenAI
    from adroom.llm.text_client import TextClient

    text = TextClient(openai_client=OpenAI())
    raw = await text.complete(
        "You are an expert marketing strategist.",
        {"goal": "sales"},
        json_mode=True,
    )
    plan = extract_json(raw)
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

from adroom.config.schema import LLMSettings
from adroom.exceptions import DependencyError, GenerationError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def extract_json(text: str) -> Any:
    """
    Parse a JSON value from a model reply.

    Accepts a bare JSON document or one wrapped in a markdown code fence.

    Raises:
        GenerationError: If no JSON value can be parsed.
    """
    candidate = (text or "").strip()
    match = _FENCE_RE.search(candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, TypeError) as e:
        raise GenerationError(
            f"Model reply is not valid JSON: {e}",
            raw_text=text or "",
        ) from e


def serialize_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str)


class TextClient:
    """
    Thin wrapper over an OpenAI client's chat completion endpoint.

    Thread-safe: each call is independent apart from the usage counters.
    """

    def __init__(
        self,
        openai_client: Any = None,
        settings: Optional[LLMSettings] = None,
    ):
        if openai_client is None:
            from openai import OpenAI
            openai_client = OpenAI()
        self._openai = openai_client
        self._settings = settings or LLMSettings()

        self._call_count: int = 0
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    @property
    def total_tokens(self) -> int:
        return self._total_input_tokens + self._total_output_tokens

    async def complete(
        self,
        system_prompt: str,
        context_payload: Any,
        *,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Send one system + user exchange and return the raw reply text.

        Args:
            system_prompt: System instructions.
            context_payload: User message; non-strings are JSON-serialized.
            json_mode: Ask the model for a JSON object response.
            temperature: Override the configured temperature.

        Raises:
            DependencyError: If the OpenAI call fails.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": serialize_payload(context_payload)},
        ]
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
            "temperature": (
                temperature if temperature is not None
                else self._settings.temperature
            ),
            "max_tokens": self._settings.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        try:
            response = self._openai.chat.completions.create(**kwargs)
        except Exception as e:
            logger.warning(
                "llm_call_failed",
                extra={"model": self._settings.model, "error": str(e)[:200]},
            )
            raise DependencyError(
                f"OpenAI completion failed: {e}", service="openai"
            ) from e

        elapsed = (time.monotonic() - start) * 1000
        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice and choice.message else ""

        usage = getattr(response, "usage", None)
        self._call_count += 1
        if usage:
            self._total_input_tokens += usage.prompt_tokens or 0
            self._total_output_tokens += usage.completion_tokens or 0

        logger.info(
            "llm_completed",
            extra={
                "model": self._settings.model,
                "json_mode": json_mode,
                "latency_ms": round(elapsed, 1),
            },
        )
        return text or ""

    async def complete_json(
        self,
        system_prompt: str,
        context_payload: Any,
        *,
        temperature: Optional[float] = None,
    ) -> Any:
        """complete() in JSON mode, parsed. Raises GenerationError."""
        raw = await self.complete(
            system_prompt,
            context_payload,
            json_mode=True,
            temperature=temperature,
        )
        return extract_json(raw)
