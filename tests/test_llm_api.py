"""
Tests for the generation client.
"""
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from interview_engine.core.config import EngineSettings
from interview_engine.core.errors import GenerationServiceError
from interview_engine.core.types import Evaluation
from interview_engine.logs import metrics
from interview_engine.nlp.llm_api import (
    GenerationConfig,
    OpenAIGenerationClient,
    parse_structured,
    strip_code_fences,
)

VALID_JSON = '{"score": 7, "feedback": "Good", "nextQuestion": "Why?", "citationIndices": [0]}'


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def client():
    """Client whose OpenAI SDK is replaced by a mock."""
    instance = OpenAIGenerationClient(GenerationConfig(api_key="test-key", timeout=0.05))
    instance._ensure_async_client()
    instance.async_client = MagicMock()
    instance.async_client.chat.completions.create = AsyncMock(return_value=completion("hello"))
    return instance


class TestParseStructured:

    def test_valid_payload(self):
        evaluation = parse_structured(VALID_JSON, Evaluation)
        assert evaluation.score == 7
        assert evaluation.next_question == "Why?"
        assert evaluation.citation_indices == [0]

    def test_code_fences_stripped(self):
        assert strip_code_fences("```json\n{\"a\": 1}\n```") == '{"a": 1}'
        assert parse_structured(f"```json\n{VALID_JSON}\n```", Evaluation).score == 7

    @pytest.mark.parametrize("payload", [
        "not json at all",
        '{"score": 11, "feedback": "x", "nextQuestion": "q", "citationIndices": []}',
        '{"score": "7", "feedback": "x", "nextQuestion": "q", "citationIndices": []}',
        '{"score": 7, "feedback": "x", "citationIndices": []}',
        '{"score": 7, "feedback": "x", "nextQuestion": "q", "citationIndices": [2]}',
    ])
    def test_invalid_payload_rejected(self, payload):
        with pytest.raises(GenerationServiceError) as exc_info:
            parse_structured(payload, Evaluation)
        assert exc_info.value.stage == "validate"


class TestGenerationConfig:

    def test_from_settings(self):
        config = GenerationConfig.from_settings(
            EngineSettings(LLM_API_KEY="k", LLM_MODEL="m", GENERATION_TIMEOUT=5)
        )
        assert config.api_key == "k"
        assert config.model == "m"
        assert config.timeout == 5

    def test_client_requires_key(self):
        with pytest.raises(ValueError):
            OpenAIGenerationClient(GenerationConfig(api_key=""))


class TestOpenAIGenerationClient:

    @pytest.mark.asyncio
    async def test_generate_returns_text(self, client):
        assert await client.generate("prompt") == "hello"
        kwargs = client.async_client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert "response_format" not in kwargs
        assert metrics.get("generation_requests") == 1

    @pytest.mark.asyncio
    async def test_generate_structured_sends_schema(self, client):
        client.async_client.chat.completions.create.return_value = completion(VALID_JSON)

        evaluation = await client.generate_structured("prompt", Evaluation)

        assert evaluation.feedback == "Good"
        response_format = client.async_client.chat.completions.create.call_args.kwargs["response_format"]
        assert response_format["type"] == "json_schema"
        assert "nextQuestion" in response_format["json_schema"]["schema"]["properties"]

    @pytest.mark.asyncio
    async def test_empty_content_is_error(self, client):
        client.async_client.chat.completions.create.return_value = completion("")
        with pytest.raises(GenerationServiceError):
            await client.generate("prompt")
        assert metrics.get("generation_requests_errors") == 1

    @pytest.mark.asyncio
    async def test_timeout_is_error(self, client):
        async def hang(**kwargs):
            await asyncio.sleep(1)

        client.async_client.chat.completions.create = AsyncMock(side_effect=hang)

        with pytest.raises(GenerationServiceError) as exc_info:
            await client.generate("prompt")
        assert exc_info.value.retryable
        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)

    @pytest.mark.asyncio
    async def test_close(self, client):
        await client.close()
        assert client.async_client is None
