"""Pytest configuration and fixtures."""
import asyncio
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from cogniflow.exceptions import AllModelsExhausted
from cogniflow.models.job import Chunk
from cogniflow.models.settings import AppSettings
from cogniflow.prompts import DEFAULT_TRANSFORM_TEMPLATE, TransformPrompt
from cogniflow.services.activity_log import ActivityLog
from cogniflow.services.inference import GenerationParameters, TransformResult
from cogniflow.services.job_store import JobReady, JobStateStore
from cogniflow.services.persistence import InMemoryPersistence
from cogniflow.services.scheduler import SchedulerOptions


class FakeGateway:
    """
    Stand-in for the inference gateway.

    ``behaviors`` maps a chunk id to a callable receiving the attempt number
    (starting at 1) and returning the transformed text or raising.
    """

    def __init__(self, behaviors: Optional[Dict[int, Callable[[int], str]]] = None, delay: float = 0.0):
        self.behaviors = behaviors or {}
        self.delay = delay
        self.calls: List[int] = []
        self.active = 0
        self.max_active = 0

    async def transform(self, chunk, model_priority, credential, prompt, params, rate_limit_delay_ms=0):
        self.calls.append(chunk.id)
        attempt = self.calls.count(chunk.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            behavior = self.behaviors.get(chunk.id)
            text = behavior(attempt) if behavior else f"transformed {chunk.id}"
            return TransformResult(text=text, model_used=model_priority[0])
        finally:
            self.active -= 1


def exhausted(attempt: int) -> str:
    raise AllModelsExhausted("All AI models failed. Last error: HTTP 500", attempted_models=["a", "b"])


class RecordingSleep:
    """Records backoff waits without sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def persistence():
    """Fresh in-memory persistence."""
    return InMemoryPersistence()


@pytest.fixture
def store():
    return JobStateStore()


@pytest.fixture
def activity(persistence):
    return ActivityLog(persistence)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_ready_job(store):
    """Start a job and move it to ready with ``count`` chunks."""

    def _make(count: int = 3, name: str = "report.pdf"):
        job = store.start_job(name, 1024)
        chunks = tuple(Chunk(id=i, source_text=f"source {i}") for i in range(1, count + 1))
        return store.dispatch(JobReady(job.job_id, chunks))

    return _make


@pytest.fixture
def scheduler_options():
    """Run options with a short model list and fast retries."""

    def _options(**overrides):
        values = dict(
            credential="test-key",
            model_priority=("model-a", "model-b", "model-c"),
            prompt=TransformPrompt(system_message="system", template=DEFAULT_TRANSFORM_TEMPLATE),
            params=GenerationParameters(),
            concurrency_limit=2,
            max_retries=3,
            retry_delay_ms=1000,
            rate_limit_delay_ms=0,
        )
        values.update(overrides)
        return SchedulerOptions(**values)

    return _options


@pytest.fixture
def tracing():
    """Local tracer whose finished spans are kept in memory."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    yield SimpleNamespace(tracer=provider.get_tracer("cogniflow-tests"), exporter=exporter)
    provider.shutdown()


@pytest.fixture
def app_settings():
    return AppSettings(api_key="test-key")


def completion(content: Optional[str], finish_reason: str = "stop"):
    """Build a chat completion response shaped like the SDK's."""
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)])


@pytest.fixture
def mock_openai_client():
    """Mock AsyncOpenAI client; set ``chat.completions.create.side_effect`` per test."""
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=completion("rewritten text"))
    client.models.list = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(id="llama-3.3-70b"), SimpleNamespace(id="qwen-3-32b")])
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def sample_pdf_content():
    """Minimal structurally valid PDF bytes."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"2 0 obj\n<< /Type /Pages /Kids [] /Count 0 >>\nendobj\n"
        b"trailer\n<< /Root 1 0 R >>\n"
        b"%%EOF\n"
    )
