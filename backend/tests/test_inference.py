"""Tests for the inference gateway."""
import httpx
import openai
import pytest
from opentelemetry.trace import StatusCode
from unittest.mock import Mock

from cogniflow.exceptions import AllModelsExhausted, ConfigurationError
from cogniflow.models.job import Chunk
from cogniflow.prompts import DEFAULT_SYSTEM_PROMPT, DEFAULT_TRANSFORM_TEMPLATE, TransformPrompt
from cogniflow.services.inference import GenerationParameters, InferenceGateway
from cogniflow.utils.tracer import ATTR_CHUNK_ID, ATTR_MODEL, ATTR_RESPONSE_TIME_MS, MODEL_ATTEMPT_SPAN

from conftest import RecordingSleep, completion

MODELS = ("model-a", "model-b", "model-c")
REQUEST = httpx.Request("POST", "https://api.cerebras.ai/v1/chat/completions")


def status_error(code: int) -> openai.APIStatusError:
    response = httpx.Response(code, request=REQUEST)
    if code == 429:
        return openai.RateLimitError("Too many requests", response=response, body=None)
    return openai.InternalServerError("Server error", response=response, body=None)


@pytest.fixture
def prompt():
    return TransformPrompt(system_message=DEFAULT_SYSTEM_PROMPT, template=DEFAULT_TRANSFORM_TEMPLATE)


@pytest.fixture
def chunk():
    return Chunk(id=7, source_text="The quick brown fox.")


@pytest.fixture
def gateway(mock_openai_client):
    sleep = RecordingSleep()
    gw = InferenceGateway(client_factory=Mock(return_value=mock_openai_client), sleep=sleep)
    gw.recorded_sleep = sleep
    return gw


def called_models(client):
    return [call.kwargs["model"] for call in client.chat.completions.create.call_args_list]


class TestInferenceGateway:
    """Tests for InferenceGateway.transform."""

    @pytest.mark.asyncio
    async def test_first_model_succeeds(self, gateway, mock_openai_client, chunk, prompt):
        result = await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())

        assert result.text == "rewritten text"
        assert result.model_used == "model-a"
        assert called_models(mock_openai_client) == ["model-a"]

    @pytest.mark.asyncio
    async def test_request_carries_prompt_and_parameters(self, gateway, mock_openai_client, chunk, prompt):
        params = GenerationParameters(temperature=0.2, max_output_tokens=1000, top_p=0.9, timeout=30.0)
        await gateway.transform(chunk, MODELS, "key", prompt, params)

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": DEFAULT_SYSTEM_PROMPT}
        assert "The quick brown fox." in kwargs["messages"][1]["content"]
        assert "{TEXT_CHUNK}" not in kwargs["messages"][1]["content"]
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 1000
        assert kwargs["top_p"] == 0.9
        assert kwargs["timeout"] == 30.0

    @pytest.mark.asyncio
    async def test_top_p_omitted_when_unset(self, gateway, mock_openai_client, chunk, prompt):
        await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())
        assert "top_p" not in mock_openai_client.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_falls_back_in_priority_order(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [
            status_error(500),
            completion(""),
            completion("from c"),
        ]

        result = await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())

        assert result.text == "from c"
        assert result.model_used == "model-c"
        assert called_models(mock_openai_client) == ["model-a", "model-b", "model-c"]

    @pytest.mark.asyncio
    async def test_no_calls_after_success(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [
            status_error(500),
            completion("from b"),
            completion("never used"),
        ]

        result = await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())

        assert result.model_used == "model-b"
        assert mock_openai_client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_all_models_exhausted(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [
            status_error(500),
            openai.APITimeoutError(request=REQUEST),
            completion("   "),
        ]

        with pytest.raises(AllModelsExhausted) as exc_info:
            await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())

        assert exc_info.value.attempted_models == list(MODELS)
        assert "empty response" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_blocked_and_missing_choices_fall_through(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [
            completion("partial", finish_reason="content_filter"),
            Mock(choices=[]),
            completion("ok"),
        ]

        result = await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())
        assert result.model_used == "model-c"

    @pytest.mark.asyncio
    async def test_rate_limit_waits_before_next_model(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [
            status_error(429),
            completion("ok"),
        ]

        result = await gateway.transform(
            chunk, MODELS, "key", prompt, GenerationParameters(), rate_limit_delay_ms=1500
        )

        assert result.model_used == "model-b"
        assert gateway.recorded_sleep.delays == [1.5]

    @pytest.mark.asyncio
    async def test_no_wait_for_other_errors(self, gateway, mock_openai_client, chunk, prompt):
        mock_openai_client.chat.completions.create.side_effect = [status_error(500), completion("ok")]

        await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters(), rate_limit_delay_ms=1500)
        assert gateway.recorded_sleep.delays == []

    @pytest.mark.asyncio
    async def test_missing_credential(self, gateway, chunk, prompt):
        with pytest.raises(ConfigurationError):
            await gateway.transform(chunk, MODELS, "", prompt, GenerationParameters())

    @pytest.mark.asyncio
    async def test_empty_model_list(self, gateway, chunk, prompt):
        with pytest.raises(ConfigurationError):
            await gateway.transform(chunk, (), "key", prompt, GenerationParameters())

    @pytest.mark.asyncio
    async def test_client_cached_per_credential(self, mock_openai_client, chunk, prompt):
        factory = Mock(return_value=mock_openai_client)
        gateway = InferenceGateway(client_factory=factory)

        await gateway.transform(chunk, MODELS, "key-1", prompt, GenerationParameters())
        await gateway.transform(chunk, MODELS, "key-1", prompt, GenerationParameters())
        await gateway.transform(chunk, MODELS, "key-2", prompt, GenerationParameters())

        assert [call.args[0] for call in factory.call_args_list] == ["key-1", "key-2"]


class TestListModels:
    """Tests for InferenceGateway.list_models."""

    @pytest.mark.asyncio
    async def test_list_models(self, gateway):
        assert await gateway.list_models("key") == ["llama-3.3-70b", "qwen-3-32b"]

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, gateway, mock_openai_client):
        await gateway.list_models("key")
        await gateway.close()
        mock_openai_client.close.assert_awaited_once()


class TestModelAttemptSpans:
    """Tests for the per-model tracing spans."""

    @pytest.mark.asyncio
    async def test_span_per_model_tried(self, mock_openai_client, chunk, prompt, tracing):
        mock_openai_client.chat.completions.create.side_effect = [status_error(500), completion("second model")]
        gateway = InferenceGateway(
            client_factory=Mock(return_value=mock_openai_client), sleep=RecordingSleep(), tracer=tracing.tracer
        )

        await gateway.transform(chunk, MODELS, "key", prompt, GenerationParameters())

        spans = [s for s in tracing.exporter.get_finished_spans() if s.name == MODEL_ATTEMPT_SPAN]
        assert [s.attributes[ATTR_MODEL] for s in spans] == ["model-a", "model-b"]
        assert all(s.attributes[ATTR_CHUNK_ID] == 7 for s in spans)
        assert spans[0].status.status_code == StatusCode.ERROR
        assert spans[1].status.status_code != StatusCode.ERROR
        assert ATTR_RESPONSE_TIME_MS in spans[1].attributes
