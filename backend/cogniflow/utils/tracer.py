"""OpenTelemetry tracing for chunk processing.

Each scheduler attempt on a chunk opens a ``cogniflow.chunk.attempt`` span and
each model tried by the gateway opens a ``cogniflow.model.attempt`` span inside
it, so a trace shows the retry and fallback path of every chunk. The OpenAI SDK
instrumentation adds the HTTP-level completion spans underneath.
"""
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.openai import OpenAIInstrumentor

from cogniflow.utils.logger import logger

TRACER_NAME = "cogniflow"

CHUNK_ATTEMPT_SPAN = "cogniflow.chunk.attempt"
MODEL_ATTEMPT_SPAN = "cogniflow.model.attempt"

ATTR_JOB_ID = "cogniflow.job_id"
ATTR_CHUNK_ID = "cogniflow.chunk_id"
ATTR_RETRY_COUNT = "cogniflow.retry_count"
ATTR_MODEL = "cogniflow.model"
ATTR_MODEL_USED = "cogniflow.model_used"
ATTR_RESPONSE_TIME_MS = "cogniflow.response_time_ms"


def get_tracer() -> trace.Tracer:
    """Tracer for scheduler and gateway spans; a no-op until a provider is installed."""
    return trace.get_tracer(TRACER_NAME)


def chunk_attempt_attributes(job_id: str, chunk_id: int, retry_count: int) -> dict:
    return {ATTR_JOB_ID: job_id, ATTR_CHUNK_ID: chunk_id, ATTR_RETRY_COUNT: retry_count}


def model_attempt_attributes(chunk_id: int, model: str) -> dict:
    return {ATTR_CHUNK_ID: chunk_id, ATTR_MODEL: model}


def build_exporter(otlp_endpoint: Optional[str]) -> SpanExporter:
    """OTLP over HTTP when an endpoint is configured, the console otherwise."""
    if otlp_endpoint:
        logger.info(f"Exporting spans to OTLP endpoint {otlp_endpoint}")
        return OTLPSpanExporter(endpoint=otlp_endpoint)
    logger.info("Exporting spans to the console")
    return ConsoleSpanExporter()


def initialize_tracing(
    service_name: str = "cogniflow",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    tracing_enabled: bool = False,
) -> Optional[TracerProvider]:
    """
    Install the global tracer provider used by the chunk and model spans.

    Args:
        service_name: Resource service name
        service_version: Resource service version
        otlp_endpoint: OTLP HTTP traces URL (e.g., http://localhost:4318/v1/traces)
        tracing_enabled: When False nothing is installed and spans stay no-ops

    Returns:
        The installed provider, or None when tracing is off or failed to start
    """
    if not tracing_enabled:
        logger.info("Tracing is disabled")
        return None

    try:
        provider = TracerProvider(
            resource=Resource.create({"service.name": service_name, "service.version": service_version})
        )
        provider.add_span_processor(BatchSpanProcessor(build_exporter(otlp_endpoint)))
        trace.set_tracer_provider(provider)

        # completion requests go through the OpenAI SDK
        OpenAIInstrumentor().instrument()
        return provider

    except Exception as e:
        logger.error(f"Failed to initialize tracing: {str(e)}", exc_info=True)
        return None


def shutdown_tracing(tracer_provider: Optional[TracerProvider]) -> None:
    """Flush pending spans and stop the provider."""
    if tracer_provider is None:
        return
    try:
        tracer_provider.shutdown()
        logger.info("Tracing shutdown completed")
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {str(e)}")
