"""Prometheus metrics for chunk processing and inference calls."""
from prometheus_client import Counter, Histogram

CHUNK_OUTCOMES = Counter(
    "cogniflow_chunks_total",
    "Chunks that reached a final status in a processing run",
    ["status"],
)

CHUNK_RETRIES = Counter(
    "cogniflow_chunk_retries_total",
    "Full model-priority passes repeated after exhaustion",
)

MODEL_ATTEMPTS = Counter(
    "cogniflow_model_attempts_total",
    "Completion requests per model and outcome",
    ["model", "outcome"],
)

INFERENCE_LATENCY = Histogram(
    "cogniflow_inference_seconds",
    "Latency of a single completion request",
    ["model"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
)
