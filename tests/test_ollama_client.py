"""Tests for the Ollama API client."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from mailsort.integrations.ollama import OllamaClient, pick_instruct_model
from mailsort.schemas.rules import ConditionVerdict


def _chat_response(content: dict) -> MagicMock:
    response = MagicMock()
    response.status_code = 200
    response.raise_for_status = MagicMock()
    response.json.return_value = {
        "model": "test",
        "message": {"role": "assistant", "content": json.dumps(content)},
        "done": True,
        "eval_count": 12,
    }
    return response


class TestGenerateStructured:
    async def test_payload_and_parsing(self):
        client = OllamaClient("http://localhost:11434")
        response = _chat_response({"matches": True, "reasoning": "It is an invoice"})

        with patch.object(client._client, "post", new_callable=AsyncMock, return_value=response) as mock_post:
            verdict, raw = await client.generate_structured(
                model="test-model",
                schema_class=ConditionVerdict,
                system="You decide.",
                prompt="Is this an invoice?",
                temperature=0.0,
            )

        assert verdict == ConditionVerdict(matches=True, reasoning="It is an invoice")
        assert raw.eval_count == 12

        payload = mock_post.call_args.kwargs["json"]
        assert payload["model"] == "test-model"
        assert payload["messages"] == [
            {"role": "system", "content": "You decide."},
            {"role": "user", "content": "Is this an invoice?"},
        ]
        assert payload["format"] == ConditionVerdict.model_json_schema()
        assert payload["stream"] is False
        assert payload["keep_alive"] == "5m"
        assert payload["options"] == {"temperature": 0.0}

        await client.close()

    async def test_retries_dropped_connection(self, monkeypatch):
        monkeypatch.setattr("mailsort.integrations.ollama.RETRY_DELAY", 0)
        client = OllamaClient("http://localhost:11434")
        response = _chat_response({"matches": False})

        with patch.object(
            client._client,
            "post",
            new_callable=AsyncMock,
            side_effect=[httpx.RemoteProtocolError("dropped"), response],
        ) as mock_post:
            verdict, _raw = await client.generate_structured(
                model="m", schema_class=ConditionVerdict, system="s", prompt="p"
            )

        assert verdict.matches is False
        assert mock_post.await_count == 2
        await client.close()

    async def test_gives_up_after_retries(self, monkeypatch):
        monkeypatch.setattr("mailsort.integrations.ollama.RETRY_DELAY", 0)
        client = OllamaClient("http://localhost:11434")

        with patch.object(
            client._client,
            "post",
            new_callable=AsyncMock,
            side_effect=httpx.RemoteProtocolError("dropped"),
        ) as mock_post:
            with pytest.raises(httpx.RemoteProtocolError):
                await client.generate_structured(
                    model="m", schema_class=ConditionVerdict, system="s", prompt="p"
                )

        assert mock_post.await_count == 3
        await client.close()


class TestPickInstructModel:
    def test_prefers_instruct_models(self):
        models = [{"name": "llama3:8b"}, {"name": "qwen2.5:7b"}]
        assert pick_instruct_model(models) == "qwen2.5:7b"

    def test_falls_back_to_first(self):
        assert pick_instruct_model([{"name": "llama3:8b"}]) == "llama3:8b"

    def test_no_models(self):
        assert pick_instruct_model([]) is None
