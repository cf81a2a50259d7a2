"""Inference gateway: chat completions with a fallback cascade across models."""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import openai
from openai import AsyncOpenAI
from opentelemetry import trace

from cogniflow.exceptions import (
    AllModelsExhausted,
    ConfigurationError,
    EmptyOrBlockedResponse,
    InferenceError,
    TransportFailure,
)
from cogniflow.models.job import Chunk
from cogniflow.prompts import TransformPrompt
from cogniflow.utils.logger import logger
from cogniflow.utils.metrics import INFERENCE_LATENCY, MODEL_ATTEMPTS
from cogniflow.utils.tracer import (
    ATTR_RESPONSE_TIME_MS,
    MODEL_ATTEMPT_SPAN,
    get_tracer,
    model_attempt_attributes,
)

DEFAULT_BASE_URL = "https://api.cerebras.ai/v1"

ClientFactory = Callable[[str], AsyncOpenAI]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling and transport parameters sent with every request."""

    temperature: float = 0.7
    max_output_tokens: int = 32768
    top_p: Optional[float] = None
    timeout: float = 120.0  # seconds


@dataclass(frozen=True)
class TransformResult:
    text: str
    model_used: str
    response_time_ms: float = 0.0


class InferenceGateway:
    """Stateless per call; clients are cached per credential."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client_factory: Optional[ClientFactory] = None,
        sleep: Sleep = asyncio.sleep,
        tracer: Optional[trace.Tracer] = None,
    ):
        """
        Initialize the gateway.

        Args:
            base_url: OpenAI-compatible API root (Cerebras by default)
            client_factory: Builds a client for a credential (tests inject fakes)
            sleep: Coroutine used for rate-limit waits
            tracer: Tracer for per-model attempt spans
        """
        self.base_url = base_url.rstrip("/")
        self._client_factory = client_factory or self._build_client
        self._sleep = sleep
        self._tracer = tracer or get_tracer()
        self._clients: Dict[str, AsyncOpenAI] = {}

    def _build_client(self, credential: str) -> AsyncOpenAI:
        # SDK retries are disabled: a failing model hands over to the next one
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(300.0, connect=10.0))
        return AsyncOpenAI(
            api_key=credential,
            base_url=self.base_url,
            http_client=http_client,
            max_retries=0,
        )

    def _get_client(self, credential: str) -> AsyncOpenAI:
        if not credential:
            raise ConfigurationError("Cerebras API key is not configured.")
        client = self._clients.get(credential)
        if client is None:
            client = self._client_factory(credential)
            self._clients[credential] = client
        return client

    async def transform(
        self,
        chunk: Chunk,
        model_priority: Sequence[str],
        credential: str,
        prompt: TransformPrompt,
        params: GenerationParameters,
        rate_limit_delay_ms: int = 0,
    ) -> TransformResult:
        """
        Rewrite one chunk, trying each model once in priority order.

        Args:
            chunk: Chunk whose source text is rewritten
            model_priority: Ordered model identifiers
            credential: API key for the provider
            prompt: System instruction and user template
            params: Generation parameters and per-request timeout
            rate_limit_delay_ms: Wait after an HTTP 429 before the next model

        Returns:
            Transformed text and the model that produced it

        Raises:
            ConfigurationError: If the credential or model list is missing
            AllModelsExhausted: If every model failed
        """
        if not model_priority:
            raise ConfigurationError("Model priority list is empty.")
        client = self._get_client(credential)
        user_prompt = prompt.build(chunk.source_text)

        attempted: List[str] = []
        last_error: Optional[Exception] = None

        for model in model_priority:
            attempted.append(model)
            try:
                with self._tracer.start_as_current_span(
                    MODEL_ATTEMPT_SPAN, attributes=model_attempt_attributes(chunk.id, model)
                ) as span:
                    result = await self._call_model(client, model, prompt.system_message, user_prompt, params)
                    span.set_attribute(ATTR_RESPONSE_TIME_MS, result.response_time_ms)
                MODEL_ATTEMPTS.labels(model=model, outcome="success").inc()
                return result
            except InferenceError as e:
                last_error = e
                MODEL_ATTEMPTS.labels(model=model, outcome=type(e).__name__).inc()
                logger.warning(
                    f"Model {model} failed for chunk {chunk.id}: {str(e)}",
                    extra={"chunk_id": chunk.id, "model_used": model},
                )
                if isinstance(e.__cause__, openai.RateLimitError) and rate_limit_delay_ms > 0:
                    await self._sleep(rate_limit_delay_ms / 1000)

        raise AllModelsExhausted(
            f"All AI models failed. Last error: {str(last_error) if last_error else 'Unknown error'}",
            attempted_models=attempted,
            last_error=last_error,
        )

    async def _call_model(
        self,
        client: AsyncOpenAI,
        model: str,
        system_message: str,
        user_prompt: str,
        params: GenerationParameters,
    ) -> TransformResult:
        """Issue one completion request and validate its content."""
        start_time = time.time()
        extra_args = {"top_p": params.top_p} if params.top_p is not None else {}

        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_message},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=params.temperature,
                max_tokens=params.max_output_tokens,
                timeout=params.timeout,
                **extra_args,
            )
        except openai.APIStatusError as e:
            raise TransportFailure(f"HTTP {e.status_code}: {e.message}", model=model) from e
        except (openai.APIError, httpx.HTTPError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"{type(e).__name__}: {str(e)}", model=model) from e
        finally:
            INFERENCE_LATENCY.labels(model=model).observe(time.time() - start_time)

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise EmptyOrBlockedResponse("Received a response without choices", model=model)

        choice = choices[0]
        if getattr(choice, "finish_reason", None) == "content_filter":
            raise EmptyOrBlockedResponse("Blocked by content filter", model=model)

        message = getattr(choice, "message", None)
        text = (getattr(message, "content", None) or "").strip()
        if not text:
            raise EmptyOrBlockedResponse("Received an empty response from the AI model.", model=model)

        response_time_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Completion received from {model}",
            extra={"model_used": model, "response_time_ms": response_time_ms},
        )
        return TransformResult(text=text, model_used=model, response_time_ms=response_time_ms)

    async def list_models(self, credential: str) -> List[str]:
        """List model ids the credential can use."""
        client = self._get_client(credential)
        try:
            page = await client.models.list()
        except (openai.APIError, httpx.HTTPError) as e:
            raise TransportFailure(f"Failed to fetch models: {str(e)}") from e
        return [model.id for model in page.data]

    async def close(self):
        """Close every cached client."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing inference client: {str(e)}")
