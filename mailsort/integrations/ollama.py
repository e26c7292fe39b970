"""Async client for the Ollama REST API with structured output support.

This is the AI capability behind AI conditions, field generation and
sender categorization.
"""

import asyncio
import json
import logging
from typing import TypeVar

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

MAX_RETRIES = 2
RETRY_DELAY = 1.0


class OllamaResponse(BaseModel):
    """Raw response from Ollama's /api/chat endpoint (non-streaming)."""

    model: str
    message: dict
    done: bool
    done_reason: str = ""
    total_duration: int = 0
    prompt_eval_count: int = 0
    eval_count: int = 0


class OllamaClient:
    """Async HTTP client for Ollama with structured output support.

    Usage::

        async with OllamaClient(base_url) as client:
            verdict, raw = await client.generate_structured(
                model="qwen2.5",
                schema_class=ConditionVerdict,
                system="You decide whether an email matches a rule.",
                prompt="...",
            )
    """

    def __init__(self, base_url: str, *, default_keep_alive: str = "5m") -> None:
        self._base_url = base_url.rstrip("/")
        self._default_keep_alive = default_keep_alive
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=120.0)

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _post_chat(self, payload: dict) -> OllamaResponse:
        """POST /api/chat, retrying when the server drops the connection."""
        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._client.post("/api/chat", json=payload)
                response.raise_for_status()
                return OllamaResponse.model_validate(response.json())
            except httpx.RemoteProtocolError:
                if attempt == MAX_RETRIES:
                    raise
                logger.warning(
                    "Ollama connection dropped (attempt %d/%d), retrying...",
                    attempt + 1,
                    MAX_RETRIES,
                )
                await asyncio.sleep(RETRY_DELAY)
        raise AssertionError("unreachable")

    async def generate_structured(
        self,
        model: str,
        schema_class: type[T],
        system: str,
        prompt: str,
        *,
        temperature: float = 0.2,
        keep_alive: str | None = None,
    ) -> tuple[T, OllamaResponse]:
        """Generate a response constrained to a Pydantic schema.

        Raises:
            httpx.HTTPStatusError: On non-2xx response from Ollama.
            pydantic.ValidationError: If the output doesn't match the schema.
        """
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "format": schema_class.model_json_schema(),
            "stream": False,
            "keep_alive": keep_alive or self._default_keep_alive,
            "options": {"temperature": temperature},
        }

        raw = await self._post_chat(payload)
        content = raw.message.get("content", "")
        parsed = schema_class.model_validate(json.loads(content))

        logger.debug(
            "Ollama %s: %d prompt tokens, %d eval tokens, %.1fs total",
            model,
            raw.prompt_eval_count,
            raw.eval_count,
            raw.total_duration / 1e9,
        )
        return parsed, raw

    async def list_models(self) -> list[dict]:
        """List models available on the Ollama server."""
        response = await self._client.get("/api/tags")
        response.raise_for_status()
        return response.json().get("models", [])

    async def pick_instruct_model(self) -> str | None:
        """Auto-detect the best instruct/chat model available on the server."""
        return pick_instruct_model(await self.list_models())


def pick_instruct_model(models: list[dict]) -> str | None:
    """Prefer 'instruct', 'chat', 'qwen' or 'gemma' models; else the first one."""
    for m in models:
        name = m["name"].lower()
        if "instruct" in name or "chat" in name or "qwen" in name or "gemma" in name:
            return m["name"]
    return models[0]["name"] if models else None
